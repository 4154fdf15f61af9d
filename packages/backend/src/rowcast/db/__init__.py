"""Database access — engine and the table-operation backend."""

from rowcast.db.backend import DataBackend, SqlAlchemyBackend

__all__ = ["DataBackend", "SqlAlchemyBackend"]
