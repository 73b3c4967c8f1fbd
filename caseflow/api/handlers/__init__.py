"""
HTTP Handlers Package for caseflow

Provides pre-built HTTP/REST task handlers for service tasks.
"""

from .http_handlers import HTTPHandlers, create_http_handler

__all__ = ["HTTPHandlers", "create_http_handler"]
