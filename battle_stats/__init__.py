"""Battle statistics reconciliation and remote sync service."""
