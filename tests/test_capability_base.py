"""Tests for the capability descriptor, error mapping and e-mail validation."""

from __future__ import annotations

import pytest

from collaborator.capabilities.base import CapabilityDescriptor, failure_result, validate_emails
from collaborator.errors import AuthError, ConcurrencyError, GatewayError, ValidationError
from collaborator.models import ErrorKind, Result


def _noop(context, args):
    return Result.ok("ok")


class TestCapabilityDescriptor:
    def test_valid_descriptor(self):
        d = CapabilityDescriptor("email_sender", "sends mail", _noop)
        assert d.parameters == {"type": "object", "properties": {}}

    @pytest.mark.parametrize("name", ["", "has space", "dash-name", "dot.name"])
    def test_invalid_names_rejected(self, name):
        with pytest.raises(ValueError):
            CapabilityDescriptor(name, "x", _noop)


class TestFailureResult:
    def test_validation_message_is_passed_through(self):
        result = failure_result(ValidationError("'title' is required."), "create task")
        assert result.success is False
        assert result.error_kind is ErrorKind.VALIDATION
        assert result.message == "'title' is required."
        assert result.suggestion is None

    def test_auth(self):
        result = failure_result(AuthError("invalid_client"), "list plans")
        assert result.error_kind is ErrorKind.AUTH
        assert "invalid_client" not in result.render()
        assert "app registration" in result.suggestion

    def test_concurrency(self):
        result = failure_result(ConcurrencyError("stale", status_code=412), "update task")
        assert result.error_kind is ErrorKind.CONCURRENCY
        assert result.message.startswith("Sorry, I couldn't update task")

    @pytest.mark.parametrize(
        ("status", "kind"),
        [
            (403, ErrorKind.PERMISSION),
            (404, ErrorKind.NOT_FOUND),
            (400, ErrorKind.GATEWAY),
            (503, ErrorKind.GATEWAY),
            (None, ErrorKind.GATEWAY),
        ],
    )
    def test_gateway_status_mapping(self, status, kind):
        result = failure_result(GatewayError("boom", status_code=status), "send the e-mail")
        assert result.error_kind is kind
        assert result.suggestion
        assert "Suggestion:" in result.render()

    def test_permission_suggests_granting_access(self):
        result = failure_result(GatewayError("denied", status_code=403), "create task")
        assert "permission" in result.suggestion.lower()

    def test_unexpected_error_type_raises(self):
        with pytest.raises(TypeError):
            failure_result(RuntimeError("bug"), "do it")


class TestValidateEmails:
    @pytest.mark.parametrize(
        "email",
        [
            "alice@example.com",
            "bob.jones@contoso.co.uk",
            "jane+tag@gmail.com",
            "user@sub.domain.org",
            "UPPER@CASE.COM",
            "digits123@test456.io",
        ],
    )
    def test_accepts_valid_emails(self, email: str):
        assert validate_emails([email]) == [email]

    @pytest.mark.parametrize(
        "email",
        [
            "not-an-email",
            "missing@",
            "@no-local.com",
            "spaces in@email.com",
            "double@@at.com",
            "no-tld@localhost",
            "user@.leading-dot.com",
        ],
    )
    def test_rejects_invalid_emails(self, email: str):
        with pytest.raises(ValidationError, match="don't look like valid e-mail"):
            validate_emails(["ok@example.com", email])

    def test_names_every_invalid_address(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_emails(["bad-one", "ok@example.com", "bad-two"])
        assert "bad-one, bad-two" in str(exc_info.value)

    def test_single_string_and_blank_entries(self):
        assert validate_emails(" alice@example.com ") == ["alice@example.com"]
        assert validate_emails(["", "   "]) == []

    def test_non_list_rejected(self):
        with pytest.raises(ValidationError, match="cc_recipients"):
            validate_emails({"a": 1}, "cc_recipients")
