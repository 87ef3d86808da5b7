"""User-facing entrypoints."""
