"""Repository facades exposing typed accessors over the key/value store."""

from infrastructure.database.repositories.heating import HeatingStateRepository

__all__ = ["HeatingStateRepository"]
