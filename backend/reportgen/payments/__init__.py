"""Payment webhooks."""
