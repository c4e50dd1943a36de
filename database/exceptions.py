"""Database exceptions."""


class DatabaseError(Exception):
    """Base class for document store errors."""
    pass


class DatabaseSchemaError(DatabaseError):
    """Raised when schema creation or migration fails."""
    pass
