"""API routers: provider change notifications and job control."""
