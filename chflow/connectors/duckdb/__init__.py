from .session import DuckDBSession

__all__ = ["DuckDBSession"]
