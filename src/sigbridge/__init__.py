"""sigbridge: Signal relay supervisor and message ingestion bridge."""
