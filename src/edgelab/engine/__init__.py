"""Event-driven simulation core and performance statistics."""
