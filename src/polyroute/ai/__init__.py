"""Provider catalog, shared types, and backend adapters."""
