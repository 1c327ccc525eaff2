"""Application-level constants for polyroute.

This module keeps only cross-cutting app/file/path constants.
"""

# ============================================================================
# Application identity
# ============================================================================

APP_NAME = "polyroute"

# ============================================================================
# File extensions
# ============================================================================

LOG_FILE_EXTENSION = ".log"

# ============================================================================
# Default directories and paths
# ============================================================================

# User data directory (created in home directory)
USER_DATA_DIR = f"~/.{APP_NAME}"

DEFAULT_SETTINGS_FILE = f"{USER_DATA_DIR}/settings.json"
DEFAULT_LOGS_DIR = f"{USER_DATA_DIR}/logs"

# Local runtime endpoint used when settings do not override it
DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434"

DATETIME_FORMAT_FILENAME = "%Y-%m-%d_%H-%M-%S"

# Display placeholders
DISPLAY_NEVER = "never"
