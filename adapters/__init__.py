"""Framework adapters: HTTP transport and SQL persistence around the core services."""
