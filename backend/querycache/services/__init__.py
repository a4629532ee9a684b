"""Cache engine services: storage, query execution and scheduled refresh."""
