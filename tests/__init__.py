"""
SendConf Test Suite.

This package contains:
- unit/: Unit tests (single modules over a temporary SQLite file)
- integration/: Integration tests (store operations and the HTTP API)
"""
