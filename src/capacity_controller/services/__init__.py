"""Controller services."""
