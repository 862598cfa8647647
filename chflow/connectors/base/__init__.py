from chflow.connectors.base.session import ConnectionSession, SessionState

__all__ = ["ConnectionSession", "SessionState"]
