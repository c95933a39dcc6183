"""Process-wide configuration helpers (logging)."""
