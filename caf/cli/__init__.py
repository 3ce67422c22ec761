"""CLI package for caf."""
