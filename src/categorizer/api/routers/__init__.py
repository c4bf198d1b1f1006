"""API routers: one module per resource (processing, sessions, health)."""
