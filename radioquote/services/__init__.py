"""Quote engine services."""
