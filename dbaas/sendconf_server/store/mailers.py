"""
Mailer types and their settings codecs.

mailer_settings is a nested object whose shape depends on mailer_type.
Each mailer type owns a codec that checks the keys it knows about and
encodes the settings to the text form stored in send_configurations.

Invariants:
    - Persisted mailer_settings is always valid JSON text of an object
    - Encoding is lossless: unknown keys are kept as they are
    - Encoding is canonical (sorted keys)

How to change safely:
    - New mailer types must be added to MailerType and MAILER_CODECS together
    - Tightening a codec can make existing records fail re-validation on update
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import ValidationError
from .fields import canonical_json


class MailerType(str, Enum):
    """Supported outbound transports."""

    ZONE_MTA = "zone_mta"
    SMTP = "smtp"
    AWS_SES = "aws_ses"


class Encryption(str, Enum):
    """Transport encryption for SMTP-like mailers."""

    NONE = "none"
    SSL = "ssl"
    STARTTLS = "starttls"


_SMTP_FIELDS: dict[str, type] = {
    "host": str,
    "port": int,
    "encryption": str,
    "use_auth": bool,
    "user": str,
    "password": str,
    "allow_self_signed": bool,
    "max_connections": int,
    "max_messages": int,
    "throttling": int,
    "log_transactions": bool,
}


@dataclass(frozen=True)
class MailerSettingsCodec:
    """Checks and serializes settings of one mailer type.

    Attributes:
        mailer_type: Type this codec belongs to
        field_types: Expected Python type of each known key
    """

    mailer_type: MailerType
    field_types: dict[str, type] = field(default_factory=dict)

    def check(self, settings: Any) -> list[str]:
        """Return a list of problems with the settings, empty if valid."""
        if not isinstance(settings, Mapping):
            return ["mailer_settings must be an object"]

        errors = []
        for key, expected in self.field_types.items():
            value = settings.get(key)
            if value is None:
                continue
            # bool is an int subclass, do not accept it for numeric fields
            if expected is int and isinstance(value, bool):
                errors.append(f"{key}: expected int, got bool")
            elif not isinstance(value, expected):
                errors.append(f"{key}: expected {expected.__name__}, got {type(value).__name__}")

        encryption = settings.get("encryption")
        if isinstance(encryption, str) and encryption not in {e.value for e in Encryption}:
            errors.append(f"encryption: unknown value '{encryption}'")

        return errors

    def encode(self, settings: Any) -> str:
        """Serialize settings for storage.

        Raises:
            ValidationError: If the settings do not pass check()
        """
        if settings is None:
            settings = {}

        errors = self.check(settings)
        if errors:
            raise ValidationError(
                f"Invalid settings for mailer type '{self.mailer_type.value}'",
                field_name="mailer_settings",
                errors=errors,
            )

        try:
            return canonical_json(dict(settings))
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"mailer_settings is not serializable: {e}",
                field_name="mailer_settings",
            ) from e

    def decode(self, text: str | None) -> dict[str, Any]:
        """Deserialize stored settings."""
        if not text:
            return {}
        return json.loads(text)


MAILER_CODECS: dict[MailerType, MailerSettingsCodec] = {
    MailerType.SMTP: MailerSettingsCodec(MailerType.SMTP, dict(_SMTP_FIELDS)),
    MailerType.ZONE_MTA: MailerSettingsCodec(
        MailerType.ZONE_MTA,
        {
            **_SMTP_FIELDS,
            "zone_mta_type": int,
            "dkim_domain": str,
            "dkim_selector": str,
            "dkim_private_key": str,
        },
    ),
    MailerType.AWS_SES: MailerSettingsCodec(
        MailerType.AWS_SES,
        {
            "key": str,
            "secret": str,
            "region": str,
            "max_messages": int,
            "throttling": int,
            "log_transactions": bool,
        },
    ),
}


def is_known_mailer_type(mailer_type: Any) -> bool:
    """Check whether a value names a supported mailer type."""
    try:
        MailerType(mailer_type)
    except ValueError:
        return False
    return True


def get_codec(mailer_type: Any) -> MailerSettingsCodec:
    """Get the codec for a mailer type.

    Raises:
        ValidationError: If the mailer type is not supported
    """
    if not is_known_mailer_type(mailer_type):
        raise ValidationError(
            f"Unknown mailer type: {mailer_type!r}",
            field_name="mailer_type",
        )
    return MAILER_CODECS[MailerType(mailer_type)]
