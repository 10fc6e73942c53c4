"""Background task pipeline: payload registry, client, processor, brokers."""
