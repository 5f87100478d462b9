"""API support services."""
