"""Admin reporting."""
