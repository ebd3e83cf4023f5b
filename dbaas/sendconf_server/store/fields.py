"""
Field whitelisting and fingerprinting for send configurations.

Only attributes in ALLOWED_KEYS ever reach storage or the fingerprint.
The fingerprint is the optimistic concurrency token: clients send back the
hash of the record they edited and the update is rejected if the stored
record no longer hashes the same.

Invariants:
    - ALLOWED_KEYS excludes id, created and permissions
    - compute_hash is independent of key order at every nesting level
    - filter_object never invents keys that were absent

How to change safely:
    - Adding a key to ALLOWED_KEYS changes every hash; clients holding an
      old hash will get one ChangedError and must reload
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Mapping
from typing import Any

ALLOWED_KEYS = frozenset(
    {
        "name",
        "description",
        "from_email",
        "from_email_overridable",
        "from_name",
        "from_name_overridable",
        "reply_to",
        "reply_to_overridable",
        "subject",
        "subject_overridable",
        "verp_hostname",
        "mailer_type",
        "mailer_settings",
        "namespace",
    }
)

# Reduced projection returned by public reads
PUBLIC_KEYS = (
    "id",
    "name",
    "description",
    "from_email",
    "from_email_overridable",
    "from_name",
    "from_name_overridable",
    "reply_to",
    "reply_to_overridable",
    "subject",
    "subject_overridable",
)

BOOLEAN_KEYS = frozenset(
    {
        "from_email_overridable",
        "from_name_overridable",
        "reply_to_overridable",
        "subject_overridable",
    }
)

# Columns declared NOT NULL; absent is fine on create (column default), None is not
NOT_NULL_KEYS = BOOLEAN_KEYS | {"name", "mailer_type", "namespace"}


def filter_object(record: Mapping[str, Any], allowed_keys: Iterable[str]) -> dict[str, Any]:
    """Project a record onto the allowed keys that are present in it.

    Args:
        record: Source record
        allowed_keys: Keys permitted in the result

    Returns:
        New dict; absent keys are omitted, not defaulted
    """
    return {key: record[key] for key in allowed_keys if key in record}


def canonical_json(value: Any, ensure_ascii: bool = False) -> str:
    """Serialize a value with sorted keys and no insignificant whitespace."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=ensure_ascii)


def find_unencodable(value: Any, path: str = "") -> list[str]:
    """Return the paths of strings that are not valid UTF-8 (lone surrogates).

    Walks dicts and lists; keys are checked as well as values.
    """
    if isinstance(value, str):
        try:
            value.encode("utf-8")
        except UnicodeEncodeError:
            return [path or "<value>"]
        return []
    if isinstance(value, Mapping):
        found = []
        for key, item in value.items():
            child = f"{path}.{key}" if path else str(key)
            found.extend(find_unencodable(key, child))
            found.extend(find_unencodable(item, child))
        return found
    if isinstance(value, (list, tuple)):
        found = []
        for index, item in enumerate(value):
            found.extend(find_unencodable(item, f"{path}[{index}]"))
        return found
    return []


def compute_hash(entity: Mapping[str, Any]) -> str:
    """Compute the concurrency fingerprint of a send configuration.

    Args:
        entity: Record with mailer_settings in structured (decoded) form

    Returns:
        Hex SHA-256 digest of the whitelisted projection
    """
    # ASCII escapes keep the digest defined for any str, surrogates included
    canonical = canonical_json(filter_object(entity, ALLOWED_KEYS), ensure_ascii=True)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
