"""Core infrastructure: settings, database pool, dependencies, audit log and errors."""
