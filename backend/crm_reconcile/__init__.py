"""CRM deal/activity reconciliation service."""
