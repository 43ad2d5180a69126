"""
Error code system.

KickpayError is the base exception for all structured errors.
Raise one of the kind classes (or a named error below them) and the error
middleware produces a structured JSON response from the registry entry.

Usage:
    from kickpay.core.errors import NoAvailableCard
    raise NoAvailableCard(detail="3 cards declined", context={"record_id": rid})
"""

from __future__ import annotations

import re
from typing import ClassVar, Optional

CODE_PATTERN = re.compile(r"^KPY-[A-Z]{2,6}-\d{3}$")


class KickpayError(Exception):
    """Structured application error tied to the error registry.

    Args:
        code: Registry error code, e.g. "KPY-REC-002". Defaults to the
            class-level ``default_code``.
        detail: Internal-only detail message (never exposed to users unless
            the registry entry forwards it).
        context: Arbitrary key-value context for structured logging.
    """

    default_code: ClassVar[str] = "KPY-SYS-001"

    def __init__(
        self,
        detail: str | None = None,
        *,
        code: str | None = None,
        context: dict | None = None,
    ) -> None:
        code = code or self.default_code
        if not CODE_PATTERN.match(code):
            raise ValueError(f"Invalid error code format: {code!r}")
        self.code = code
        self.detail = detail
        self.context = context or {}
        super().__init__(f"{code}: {detail}" if detail else code)


# ---------------------------------------------------------------------------
# Kinds
# ---------------------------------------------------------------------------

class ValidationError(KickpayError):
    default_code = "KPY-API-001"


class NotFound(KickpayError):
    default_code = "KPY-API-002"


class Conflict(KickpayError):
    default_code = "KPY-API-003"


class PreconditionFailed(KickpayError):
    default_code = "KPY-API-004"


class UpstreamError(KickpayError):
    default_code = "KPY-UPS-001"


class AuthError(KickpayError):
    default_code = "KPY-AUTH-001"


# ---------------------------------------------------------------------------
# Named errors
# ---------------------------------------------------------------------------

class CardNotFound(NotFound):
    default_code = "KPY-CARD-001"


class DuplicateCard(Conflict):
    default_code = "KPY-CARD-002"


class NoAvailableCard(PreconditionFailed):
    default_code = "KPY-CARD-003"


class HasUnpaidRecord(PreconditionFailed):
    default_code = "KPY-CARD-004"


class RecordNotFound(NotFound):
    default_code = "KPY-REC-001"


CannotFindRecord = RecordNotFound


class AlreadyPaid(Conflict):
    default_code = "KPY-REC-002"


class AlreadyRefunded(Conflict):
    default_code = "KPY-REC-003"


class PaymentKeyNotFound(NotFound):
    default_code = "KPY-REC-004"


class CouponNotFound(NotFound):
    default_code = "KPY-CPN-001"


class CouponGroupNotFound(NotFound):
    default_code = "KPY-CPN-002"


class ExpiredCoupon(PreconditionFailed):
    default_code = "KPY-CPN-003"


class ExceededUsage(PreconditionFailed):
    default_code = "KPY-CPN-004"


class DuplicateCouponGroupName(Conflict):
    default_code = "KPY-CPN-005"


class DuplicateCouponGroupCode(Conflict):
    default_code = "KPY-CPN-006"


class InvalidState(PreconditionFailed):
    default_code = "KPY-CPN-007"


class PaymentProviderError(UpstreamError):
    """Non-success result code from the card billing gateway.

    ``detail`` carries the provider's ``result_msg`` verbatim.
    """

    default_code = "KPY-UPS-002"

    def __init__(
        self,
        detail: str | None = None,
        *,
        result_code: Optional[str] = None,
        code: str | None = None,
        context: dict | None = None,
    ) -> None:
        self.result_code = result_code
        ctx = dict(context or {})
        if result_code is not None:
            ctx.setdefault("result_code", result_code)
        super().__init__(detail, code=code, context=ctx)


class DiscountProviderError(UpstreamError):
    default_code = "KPY-UPS-003"


class CoreServiceError(UpstreamError):
    default_code = "KPY-UPS-004"


class UserNotFound(NotFound):
    default_code = "KPY-USR-001"


class SessionRequired(AuthError):
    default_code = "KPY-AUTH-001"


class InternalTokenRequired(AuthError):
    default_code = "KPY-AUTH-002"
