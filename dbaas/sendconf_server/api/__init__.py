"""
API module for SendConf server.

This module provides the external interface:
- HTTP server (REST API over the send configuration store)

Invariants:
    - All send configuration endpoints require the X-Actor header
    - Store errors map to stable HTTP status codes and error codes

How to change safely:
    - Add new endpoints, don't change the semantics of existing ones
    - Version the API if breaking changes are needed
"""

from .http_server import create_http_app, start_http_server

__all__ = [
    "create_http_app",
    "start_http_server",
]
