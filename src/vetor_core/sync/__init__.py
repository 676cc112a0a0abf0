"""External source synchronization: adapters, reconciliation, scheduling."""
