"""Infrastructure layer: PostgreSQL and in-memory backends, configuration, repositories."""
