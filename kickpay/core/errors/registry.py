"""
Error registry: the KPY-* codes from registry.yaml.

Each entry decides how a KickpayError is rendered: HTTP status, the safe
user message, whether the provider detail is forwarded, and the log level.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List

import yaml

from kickpay.core.errors import CODE_PATTERN

logger = logging.getLogger(__name__)

VALID_DOMAINS = {"API", "CARD", "REC", "CPN", "UPS", "USR", "AUTH", "SYS"}
VALID_SEVERITIES = {"DEBUG", "INFO", "WARN", "ERROR", "CRITICAL"}
REQUIRED_FIELDS = {"code", "domain", "title", "severity", "retryable", "user_action_required", "http_status", "safe_message"}

_DEFAULT_PATH = os.path.join(os.path.dirname(__file__), "registry.yaml")


@dataclass(frozen=True)
class ErrorEntry:
    code: str
    domain: str
    title: str
    severity: str
    retryable: bool
    user_action_required: bool
    http_status: int
    safe_message: str
    remediation: List[str] = field(default_factory=list)
    # Upstream failures show the provider's own message instead of safe_message.
    forward_detail: bool = False


class RegistryValidationError(Exception):
    """Raised when registry.yaml has structural errors."""


def _parse_entry(index: int, raw: dict) -> ErrorEntry:
    missing = REQUIRED_FIELDS - set(raw)
    if missing:
        raise RegistryValidationError(f"Entry {index} ({raw.get('code', '?')}): missing fields {sorted(missing)}")

    code = raw["code"]
    if not CODE_PATTERN.match(code):
        raise RegistryValidationError(f"Invalid code format: {code!r}")

    # KPY-CARD-003 belongs to domain CARD
    domain = raw["domain"]
    if domain != code.split("-")[1] or domain not in VALID_DOMAINS:
        raise RegistryValidationError(f"{code}: domain {domain!r} is unknown or doesn't match the code")
    if raw["severity"] not in VALID_SEVERITIES:
        raise RegistryValidationError(f"{code}: unknown severity {raw['severity']!r}")

    return ErrorEntry(
        code=code,
        domain=domain,
        title=raw["title"],
        severity=raw["severity"],
        retryable=bool(raw["retryable"]),
        user_action_required=bool(raw["user_action_required"]),
        http_status=int(raw["http_status"]),
        safe_message=raw["safe_message"],
        remediation=list(raw.get("remediation") or []),
        forward_detail=bool(raw.get("forward_detail", False)),
    )


class ErrorRegistry:
    """Validated lookup table of error codes."""

    def __init__(self) -> None:
        self._entries: Dict[str, ErrorEntry] = {}
        self.schema_version: int = 0

    def load(self, path: str = _DEFAULT_PATH) -> None:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        raw_entries = data.get("errors", [])
        if not isinstance(raw_entries, list):
            raise RegistryValidationError("'errors' must be a list")

        entries: Dict[str, ErrorEntry] = {}
        for index, raw in enumerate(raw_entries):
            entry = _parse_entry(index, raw)
            if entry.code in entries:
                raise RegistryValidationError(f"Duplicate code: {entry.code}")
            entries[entry.code] = entry

        self._entries = entries
        self.schema_version = data.get("schema_version", 0)
        logger.info("error_registry_loaded", extra={"count": len(entries), "schema_version": self.schema_version})

    def get(self, code: str) -> ErrorEntry | None:
        return self._entries.get(code)

    def lookup(self, code: str) -> ErrorEntry:
        """Lookup by code, raising KeyError if not found."""
        try:
            return self._entries[code]
        except KeyError:
            raise KeyError(f"Unknown error code: {code!r}") from None

    def all_codes(self) -> List[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


# Loaded once in the app lifespan and in the test conftest
error_registry = ErrorRegistry()
