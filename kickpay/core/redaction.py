"""
Redaction for log entries.

Key-based redaction masks values whose key names look sensitive (billing
tokens, merchant secrets, card numbers). Value-based redaction scrubs JWTs
and URL query strings from any other string.
"""
from __future__ import annotations

import re
from typing import Any

# ── Key-based redaction (case-insensitive substring match) ───────────
_SENSITIVE_KEY_SUBSTRINGS = frozenset({
    "password", "passwd", "secret", "token", "apikey", "api_key",
    "authorization", "bearer", "cookie", "billing_key", "card_num",
    "card_pwd", "card_exp", "buyer_auth_num", "sub_mid_key", "credential",
})

# ── Value-based patterns ────────────────────────────────────────────
_JWT_PATTERN = re.compile(
    r"eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+"
)
_URL_QUERY_PATTERN = re.compile(
    r"(https?://[^\s?]+)\?[^\s]*"
)

# structlog bookkeeping keys that must pass through untouched
_PASSTHROUGH_KEYS = frozenset({"event", "level", "logger", "ts", "service", "version"})


def is_sensitive_key(key: str) -> bool:
    """Check if a key name indicates a sensitive value."""
    lower = key.lower()
    return any(s in lower for s in _SENSITIVE_KEY_SUBSTRINGS)


def _redact_sensitive_value(value: str) -> str:
    """Partially redact a sensitive value: first 4 + **** + last 4 chars."""
    if len(value) <= 8:
        return "[REDACTED]"
    return value[:4] + "****" + value[-4:]


def redact_value(key: str, value: Any) -> Any:
    """Redact a single value based on its key name."""
    if value is None:
        return value
    if is_sensitive_key(key):
        return _redact_sensitive_value(str(value))
    return value


def redact_log_entry(entry: dict) -> dict:
    """Apply both key-based and value-based redaction to a log entry."""
    result = {}
    for k, v in entry.items():
        if k in _PASSTHROUGH_KEYS:
            result[k] = v
        elif isinstance(v, dict):
            result[k] = redact_log_entry(v)
        elif is_sensitive_key(k) and v is not None:
            result[k] = _redact_sensitive_value(str(v))
        elif isinstance(v, str):
            result[k] = _redact_string_values(v)
        elif isinstance(v, list):
            result[k] = [
                redact_log_entry(item) if isinstance(item, dict)
                else _redact_string_values(item) if isinstance(item, str)
                else item
                for item in v
            ]
        else:
            result[k] = v
    return result


def _redact_string_values(value: str) -> str:
    """Apply value-based redaction patterns to a string."""
    value = _JWT_PATTERN.sub("[REDACTED_JWT]", value)
    value = _URL_QUERY_PATTERN.sub(r"\1?[QUERY_REDACTED]", value)
    return value


def structlog_redaction_processor(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Structlog processor wrapping redact_log_entry."""
    return redact_log_entry(event_dict)
