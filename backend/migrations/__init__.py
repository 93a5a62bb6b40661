"""Schema migrations for deployments that do not rely on init_db()."""
