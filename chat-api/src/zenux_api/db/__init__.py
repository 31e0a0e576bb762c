"""Database engine and SQLModel tables."""
