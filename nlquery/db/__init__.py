"""State database: ORM models and session management."""
