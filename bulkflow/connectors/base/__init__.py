from .session import BulkSession

__all__ = ["BulkSession"]
