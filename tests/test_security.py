"""
Password hashing and token tests
"""

from datetime import datetime, timedelta, timezone

import pytest

from winzo.errors import InvalidToken
from winzo.schemas import Role
from winzo.security import (
    hash_password,
    issue_token,
    legacy_hash,
    verify_password,
    verify_token,
)


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = hash_password("admin123")
        assert hashed != "admin123"
        assert verify_password("admin123", hashed)
        assert not verify_password("admin124", hashed)

    def test_legacy_salted_hash(self):
        """Hashes written by the device app are still accepted"""
        stored = legacy_hash("user123", "winzo_salt_2024")
        assert stored.startswith("winzo_salt_2024:")
        assert verify_password("user123", stored)
        assert not verify_password("user124", stored)

    def test_empty_or_garbage_hash(self):
        assert not verify_password("x", "")
        assert not verify_password("x", "$not-a-hash")


class TestTokens:
    def test_round_trip(self):
        token = issue_token(7, "user@winzo.com", "user", secret="s3cret")
        claims = verify_token(token, secret="s3cret")

        assert claims.user_id == 7
        assert claims.email == "user@winzo.com"
        assert claims.role == Role.USER
        assert claims.expires_at - claims.issued_at == timedelta(days=7)

    def test_expired_token(self):
        issued = datetime.now(timezone.utc) - timedelta(days=8)
        token = issue_token(7, "user@winzo.com", "user", issued_at=issued, secret="s3cret")
        with pytest.raises(InvalidToken):
            verify_token(token, secret="s3cret")

    def test_token_valid_until_expiry(self):
        issued = datetime.now(timezone.utc) - timedelta(days=6)
        token = issue_token(1, "admin@winzo.com", Role.ADMIN, issued_at=issued, secret="s3cret")
        assert verify_token(token, secret="s3cret").role == Role.ADMIN

    def test_wrong_secret(self):
        token = issue_token(7, "user@winzo.com", "user", secret="s3cret")
        with pytest.raises(InvalidToken):
            verify_token(token, secret="other")

    @pytest.mark.parametrize("token", ["", "not-a-token", "a.b.c"])
    def test_malformed_token(self, token):
        with pytest.raises(InvalidToken):
            verify_token(token, secret="s3cret")

    def test_unknown_role_is_rejected_at_issue(self):
        with pytest.raises(ValueError):
            issue_token(7, "user@winzo.com", "superuser")
