"""DuckDB persistence for predictions, outcomes and stakes."""

from predbites.storage.db import Database, get_connection, init_schema

__all__ = ["Database", "get_connection", "init_schema"]
