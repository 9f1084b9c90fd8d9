"""Tests for the validated value types shared by publish and delivery."""
from __future__ import annotations

import pytest

from newsletter.core.errors import InvalidEmailError, InvalidIdempotencyKeyError, PublishValidationError
from newsletter.domain.issue import IssueContent
from newsletter.domain.subscriber_email import SubscriberEmail
from newsletter.idempotency.key import IdempotencyKey


class TestSubscriberEmail:
    def test_valid_address_parses(self):
        assert str(SubscriberEmail.parse("ursula@example.com")) == "ursula@example.com"

    @pytest.mark.parametrize("raw", ["", "   ", "ursuladomain.com", "@domain.com", "ursula@"])
    def test_invalid_addresses_rejected(self, raw):
        with pytest.raises(InvalidEmailError):
            SubscriberEmail.parse(raw)

    def test_invalid_email_error_is_value_error(self):
        with pytest.raises(ValueError):
            SubscriberEmail.parse("not-an-email")


class TestIdempotencyKey:
    def test_short_key_accepted(self):
        assert IdempotencyKey.parse("abc-123").value == "abc-123"

    def test_empty_key_rejected(self):
        with pytest.raises(InvalidIdempotencyKeyError, match="cannot be empty"):
            IdempotencyKey.parse("")

    def test_missing_key_rejected(self):
        with pytest.raises(InvalidIdempotencyKeyError):
            IdempotencyKey.parse(None)

    def test_long_key_rejected(self):
        with pytest.raises(InvalidIdempotencyKeyError, match="shorter than 50"):
            IdempotencyKey.parse("k" * 50)

    def test_longest_allowed_key(self):
        assert IdempotencyKey.parse("k" * 49).value == "k" * 49


class TestIssueContent:
    def test_complete_content_parses(self):
        content = IssueContent.parse("Hello", "<p>Hi</p>", "Hi")
        assert content.title == "Hello"

    def test_missing_title_rejected(self):
        with pytest.raises(PublishValidationError, match="title"):
            IssueContent.parse(None, "<p>Hi</p>", "Hi")

    def test_blank_bodies_listed(self):
        with pytest.raises(PublishValidationError, match="html_content, text_content"):
            IssueContent.parse("Hello", " ", "")
