"""Signal transport: relay supervisor, REST client and ingestion channel."""
