"""
Store module for SendConf - transactional persistence and access control.

This module handles:
- SQLite database and unit-of-work transactions
- Field whitelisting and concurrency fingerprints
- Shares and materialized permissions
- Namespace and mailer validation
- Send configuration operations

Invariants:
    - All operations of one request run inside one Transaction
    - Permissions are always consistent with shares after a write commits
    - Failed operations leave no partial writes

How to change safely:
    - Use transactions for all multi-statement operations
    - Rebuild permissions after anything that can change visibility
"""

from .database import ROOT_NAMESPACE_ID, Database, Transaction
from .fields import ALLOWED_KEYS, PUBLIC_KEYS, compute_hash, filter_object
from .listing import ListingParams, Page
from .mailers import MailerType
from .namespaces import NamespaceValidator
from .send_configurations import SendConfigurations
from .shares import DEFAULT_ROLES, PermissionService

__all__ = [
    "ROOT_NAMESPACE_ID",
    "Database",
    "Transaction",
    "ALLOWED_KEYS",
    "PUBLIC_KEYS",
    "compute_hash",
    "filter_object",
    "ListingParams",
    "Page",
    "MailerType",
    "NamespaceValidator",
    "SendConfigurations",
    "DEFAULT_ROLES",
    "PermissionService",
]
