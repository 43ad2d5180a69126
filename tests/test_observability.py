"""
Tests for the ambient stack: error registry, error kinds, log context and
redaction, issue tracker, unit of work, billing token encryption and
internal token verification.
"""

import time

import jwt
import pytest
from cryptography.exceptions import InvalidTag
from sqlmodel import select

from kickpay.auth.internal_auth import INTERNAL_TOKEN_SUBJECT, verify_internal_token
from kickpay.core.database import get_session_context
from kickpay.core.errors import (
    CODE_PATTERN,
    InternalTokenRequired,
    KickpayError,
    NoAvailableCard,
    PaymentProviderError,
)
from kickpay.core.errors.registry import VALID_DOMAINS, ErrorRegistry, RegistryValidationError
from kickpay.core.issue_tracker import IssueTracker
from kickpay.core.redaction import is_sensitive_key, redact_log_entry
from kickpay.core.structured_logging import (
    APP_VERSION,
    SERVICE_NAME,
    _inject_context,
    request_id_var,
    run_id_var,
)
from kickpay.core.token_crypto import decrypt_billing_token, decrypt_with_fallback, encrypt_billing_token
from kickpay.core.unit_of_work import UnitOfWork
from kickpay.models.payment_key import PaymentKey


def _all_error_classes(cls=KickpayError):
    for sub in cls.__subclasses__():
        yield sub
        yield from _all_error_classes(sub)


# ═══════════════════════════════════════════════════════════════════════
# 1. Error registry
# ═══════════════════════════════════════════════════════════════════════

class TestErrorRegistry:

    def test_load_real_registry(self):
        registry = ErrorRegistry()
        registry.load()
        assert registry.schema_version == 1
        assert len(registry) >= 20

    def test_all_domains_covered(self):
        """Every domain must have at least 1 error code."""
        registry = ErrorRegistry()
        registry.load()
        covered = {code.split("-")[1] for code in registry.all_codes()}
        assert covered == VALID_DOMAINS

    def test_every_error_class_is_registered(self):
        """Each exception's default code resolves in the registry."""
        registry = ErrorRegistry()
        registry.load()
        for cls in _all_error_classes():
            assert registry.get(cls.default_code) is not None, cls.__name__

    def test_unknown_code_lookup(self):
        registry = ErrorRegistry()
        registry.load()
        with pytest.raises(KeyError):
            registry.lookup("KPY-API-999")

    def test_domain_must_match_code(self, tmp_path):
        path = tmp_path / "registry.yaml"
        path.write_text(
            "schema_version: 1\n"
            "errors:\n"
            "  - code: KPY-CARD-001\n"
            "    domain: REC\n"
            "    title: Card not found\n"
            "    severity: WARN\n"
            "    retryable: false\n"
            "    user_action_required: false\n"
            "    http_status: 404\n"
            "    safe_message: x\n",
            encoding="utf-8",
        )
        with pytest.raises(RegistryValidationError):
            ErrorRegistry().load(str(path))

    def test_card_exhaustion_is_retryable(self):
        registry = ErrorRegistry()
        registry.load()
        entry = registry.lookup("KPY-CARD-003")
        assert entry.retryable is True
        assert entry.http_status == 412


class TestErrorKinds:

    def test_code_pattern(self):
        assert CODE_PATTERN.match("KPY-CARD-001")
        assert not CODE_PATTERN.match("VAI-CARD-001")

    def test_invalid_code_rejected(self):
        with pytest.raises(ValueError):
            KickpayError("x", code="not-a-code")

    def test_named_error_defaults(self):
        exc = NoAvailableCard("2 card(s) declined", context={"record_id": "r1"})
        assert exc.code == "KPY-CARD-003"
        assert exc.detail == "2 card(s) declined"
        assert exc.context == {"record_id": "r1"}

    def test_provider_result_code_in_context(self):
        exc = PaymentProviderError("한도 초과", result_code="3021")
        assert exc.result_code == "3021"
        assert exc.context["result_code"] == "3021"


# ═══════════════════════════════════════════════════════════════════════
# 2. Logging context and redaction
# ═══════════════════════════════════════════════════════════════════════

class TestLogContext:

    def test_inject_context_adds_ids(self):
        rid = request_id_var.set("req-1")
        run = run_id_var.set("run-1")
        try:
            event = _inject_context("kickpay", "info", {"event": "x"})
        finally:
            request_id_var.reset(rid)
            run_id_var.reset(run)

        assert event["service"] == SERVICE_NAME
        assert event["version"] == APP_VERSION
        assert event["request_id"] == "req-1"
        assert event["run_id"] == "run-1"

    def test_no_ids_outside_request(self):
        event = _inject_context("kickpay", "info", {"event": "x"})
        assert "request_id" not in event


class TestRedaction:

    @pytest.mark.parametrize("key", ["billing_key", "card_num", "sub_mid_key", "Authorization", "api_key"])
    def test_sensitive_keys(self, key):
        assert is_sensitive_key(key)

    def test_entry_redaction(self):
        token = jwt.encode({"sub": "x"}, "k", algorithm="HS256")
        entry = redact_log_entry({
            "event": "card_registered",
            "billing_key": "bk-1234567890abcdef",
            "message": f"forwarding {token}",
            "nested": {"card_num": "5555666677771234"},
            "amount": 1000,
        })

        assert entry["event"] == "card_registered"
        assert entry["billing_key"] == "bk-1****cdef"
        assert "[REDACTED_JWT]" in entry["message"]
        assert entry["nested"]["card_num"] == "5555****1234"
        assert entry["amount"] == 1000


# ═══════════════════════════════════════════════════════════════════════
# 3. Issue tracker
# ═══════════════════════════════════════════════════════════════════════

class TestIssueTracker:

    def test_capture_groups_by_code(self, tmp_path):
        tracker = IssueTracker(persist_path=str(tmp_path / "issues.json"))
        tracker.capture(NoAvailableCard("a"), component="unpaid_scheduler")
        tracker.capture(NoAvailableCard("b"), component="unpaid_scheduler")
        tracker.capture(RuntimeError("boom"), component="unpaid_scheduler")

        issues = {i["code"]: i for i in tracker.get_active_issues()}
        assert issues["KPY-CARD-003"]["count"] == 2
        assert "RuntimeError" in issues

    def test_persist_and_reload(self, tmp_path):
        path = str(tmp_path / "issues.json")
        tracker = IssueTracker(persist_path=path)
        tracker.capture(NoAvailableCard("a"), component="records")
        tracker.persist()

        reloaded = IssueTracker(persist_path=path)
        reloaded.reload()
        assert len(reloaded) == 1


# ═══════════════════════════════════════════════════════════════════════
# 4. Unit of work
# ═══════════════════════════════════════════════════════════════════════

class TestUnitOfWork:

    def test_commits_all_operations(self):
        uow = UnitOfWork(get_session_context)
        uow.stage(lambda s: s.add(PaymentKey(name="a", identity="a", secret_key="a")))
        uow.stage(lambda s: s.add(PaymentKey(name="b", identity="b", secret_key="b")))
        assert len(uow) == 2

        uow.commit()

        with get_session_context() as session:
            assert len(session.exec(select(PaymentKey)).all()) == 2

    def test_failure_rolls_back_everything(self):
        """A failing operation undoes the ones staged before it."""
        def fail(session):
            raise NoAvailableCard("declined")

        uow = UnitOfWork(get_session_context)
        uow.stage(lambda s: s.add(PaymentKey(name="a", identity="a", secret_key="a")))
        uow.stage(fail)

        with pytest.raises(NoAvailableCard):
            uow.commit()

        with get_session_context() as session:
            assert session.exec(select(PaymentKey)).all() == []

    def test_results_are_returned_in_order(self):
        results = UnitOfWork(get_session_context).extend([lambda s: 1, lambda s: 2]).commit()
        assert results == [1, 2]


# ═══════════════════════════════════════════════════════════════════════
# 5. Billing token encryption
# ═══════════════════════════════════════════════════════════════════════

class TestTokenCrypto:

    def test_ciphertext_is_bound_to_card_row(self):
        stored = encrypt_billing_token("bk-1", "secret", "user-1", "CARD 0001")

        assert decrypt_billing_token(stored, "secret", "user-1", "CARD 0001") == "bk-1"
        with pytest.raises(InvalidTag):
            decrypt_billing_token(stored, "secret", "user-2", "CARD 0001")

    def test_previous_key_fallback(self):
        stored = encrypt_billing_token("bk-1", "old-secret", "user-1", "CARD 0001")

        assert decrypt_with_fallback(stored, "new-secret", "old-secret", "user-1", "CARD 0001") == "bk-1"
        with pytest.raises(InvalidTag):
            decrypt_with_fallback(stored, "new-secret", None, "user-1", "CARD 0001")


# ═══════════════════════════════════════════════════════════════════════
# 6. Internal token verification
# ═══════════════════════════════════════════════════════════════════════

class TestInternalToken:

    SECRET = "internal-secret"

    def _token(self, lifetime_s=3600, secret=None, **overrides):
        now = int(time.time())
        claims = {
            "sub": INTERNAL_TOKEN_SUBJECT,
            "iss": "coreservice-ride",
            "aud": "ops@hikick.kr",
            "iat": now,
            "exp": now + lifetime_s,
        }
        claims.update(overrides)
        return jwt.encode(claims, secret or self.SECRET, algorithm="HS256")

    def test_valid_token(self):
        claims = verify_internal_token(self._token(), self.SECRET, 6)
        assert claims["iss"] == "coreservice-ride"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"sub": "coreservice-accounts"},
            {"aud": "not-an-email"},
            {"iss": ""},
        ],
    )
    def test_bad_claims(self, overrides):
        with pytest.raises(InternalTokenRequired):
            verify_internal_token(self._token(**overrides), self.SECRET, 6)

    def test_lifetime_over_limit(self):
        with pytest.raises(InternalTokenRequired):
            verify_internal_token(self._token(lifetime_s=6 * 3600 + 1), self.SECRET, 6)

    def test_wrong_signature(self):
        with pytest.raises(InternalTokenRequired):
            verify_internal_token(self._token(secret="other"), self.SECRET, 6)

    def test_expired(self):
        now = int(time.time())
        token = self._token(iat=now - 7200, exp=now - 3600)
        with pytest.raises(InternalTokenRequired):
            verify_internal_token(token, self.SECRET, 6)
