from .session import ClickHouseSession

__all__ = ["ClickHouseSession"]
