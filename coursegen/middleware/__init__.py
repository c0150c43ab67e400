"""HTTP middleware and exception handlers."""

from .exception_handler import coursegen_exception_handler, database_unavailable_handler

__all__ = ["coursegen_exception_handler", "database_unavailable_handler"]
