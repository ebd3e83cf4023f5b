"""
SendConf Server - send configuration records for a multi-tenant entity store.

This package manages outbound mail transport profiles ("send configurations"):
sender identity, mailer type and mailer-specific settings. Every record lives
in exactly one namespace, and every operation is gated by per-entity
permissions materialized from namespace and entity shares.

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌──────────────────────┐
    │   Client    │────▶│    HTTP     │────▶│  SendConfigurations  │
    │             │     │   Server    │     │      (service)       │
    └─────────────┘     └─────────────┘     └──────────┬───────────┘
                                                       │ Transaction
                        ┌──────────────────┬───────────┼────────────────┐
                        ▼                  ▼           ▼                ▼
                 ┌────────────┐   ┌──────────────┐ ┌────────┐   ┌─────────────┐
                 │ Permission │   │  Namespace   │ │ Fields │   │   SQLite    │
                 │  Service   │   │  Validator   │ │ (hash) │   │  Database   │
                 └────────────┘   └──────────────┘ └────────┘   └─────────────┘

Invariants:
    - Every write runs inside exactly one SQLite transaction
    - Permission checks run inside the transaction they guard
    - Updates are rejected unless the caller's hash matches the stored record
    - The system send configuration can never be deleted

How to change safely:
    - New persisted fields must be added to ALLOWED_KEYS or they are dropped
    - Changing the hash canonicalization invalidates hashes held by clients
    - New roles must be additive

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
