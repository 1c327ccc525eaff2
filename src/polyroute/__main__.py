"""Entry point for running polyroute as a module.

This allows running: python -m polyroute
"""

from .cli import main

if __name__ == "__main__":
    main()
