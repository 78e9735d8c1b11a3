"""Tests for derived token minting."""

import base64
import hashlib
import hmac
import json

from rekey.secrets.model import TOKEN_LIFETIME_SECONDS, TokenRole
from rekey.secrets.tokens import TokenMinter

SECRET = "a" * 48
ISSUED_AT = 1700000000


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(segment: str) -> bytes:
    return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


class TestTokenMinter:
    """Test token minting and verification."""

    def setup_method(self):
        """Setup test environment."""
        self.minter = TokenMinter()

    def test_compact_form(self):
        """Header and payload are compact JSON in the documented key order."""
        token = self.minter.mint("anon", SECRET, now=ISSUED_AT).value
        header, payload, signature = token.split(".")

        assert b64url_decode(header) == b'{"alg":"HS256","typ":"JWT"}'
        assert b64url_decode(payload) == (
            b'{"role":"anon","iss":"supabase","iat":1700000000,"exp":' + str(ISSUED_AT + TOKEN_LIFETIME_SECONDS).encode() + b"}"
        )
        assert "=" not in token

        expected = hmac.new(SECRET.encode(), f"{header}.{payload}".encode(), hashlib.sha256).digest()
        assert signature == b64url(expected)

    def test_deterministic_in_time(self):
        """Same inputs and instant give the same token."""
        first = self.minter.mint("service_role", SECRET, now=ISSUED_AT)
        second = self.minter.mint("service_role", SECRET, now=ISSUED_AT)
        assert first == second

    def test_different_instants_give_different_valid_tokens(self):
        """Re-minting later yields a different token that still verifies."""
        first = self.minter.mint("anon", SECRET, now=ISSUED_AT)
        second = self.minter.mint("anon", SECRET, now=ISSUED_AT + 60)

        assert first.value != second.value
        assert self.minter.verify(first.value, SECRET)
        assert self.minter.verify(second.value, SECRET)

    def test_claims(self):
        """Claims carry role, issuer and the ten year horizon."""
        token = self.minter.mint("anon", SECRET, issuer="custom", now=ISSUED_AT)

        assert token.role == "anon"
        assert token.issuer == "custom"
        assert token.expires_at - token.issued_at == 315360000
        assert self.minter.decode_claims(token.value)["iss"] == "custom"

    def test_pair_uses_one_instant(self):
        """anon and service_role are minted from the same issue time."""
        tokens = self.minter.mint_pair(SECRET, now=ISSUED_AT)

        assert set(tokens) == {TokenRole.ANON, TokenRole.SERVICE_ROLE}
        assert tokens[TokenRole.ANON].issued_at == tokens[TokenRole.SERVICE_ROLE].issued_at == ISSUED_AT
        assert tokens[TokenRole.SERVICE_ROLE].role == "service_role"

    def test_verify_rejects_other_secret(self):
        """A token does not verify under a different signing secret."""
        token = self.minter.mint("anon", SECRET, now=ISSUED_AT).value
        assert not self.minter.verify(token, "b" * 48)

    def test_verify_rejects_garbage(self):
        """Malformed tokens are reported invalid."""
        assert not self.minter.verify("not-a-token", SECRET)
        assert self.minter.decode_claims("not-a-token") is None

    def test_expired_token_is_invalid(self):
        """A token past its expiry is reported invalid."""
        short = TokenMinter(lifetime_seconds=10)
        token = short.mint("anon", SECRET, now=ISSUED_AT).value
        assert not short.verify(token, SECRET)

    def test_token_string_conversion(self):
        """DerivedToken renders as its encoded value."""
        token = self.minter.mint("anon", SECRET, now=ISSUED_AT)
        assert str(token) == token.value
