"""Derived access token minting and verification."""

import time
from typing import Any, Dict, Optional

import jwt

from .model import TOKEN_LIFETIME_SECONDS, DerivedToken, TokenRole

ALGORITHM = "HS256"


class TokenMinter:
    """Mints role-scoped HS256 tokens from a signing secret.

    Tokens use the compact form {"alg":"HS256","typ":"JWT"} /
    {"role","iss","iat","exp"}, which is what PyJWT produces for these inputs,
    so services verifying with any standard JWT library accept them.
    """

    def __init__(self, issuer: str = "supabase", lifetime_seconds: int = TOKEN_LIFETIME_SECONDS):
        self.issuer = issuer
        self.lifetime_seconds = lifetime_seconds

    def mint(
        self,
        role: str,
        signing_secret: str,
        issuer: Optional[str] = None,
        now: Optional[int] = None,
    ) -> DerivedToken:
        """
        Mint a token for a role.

        Args:
            role: Role claim (anon or service_role)
            signing_secret: HMAC key
            issuer: Issuer claim (defaults to the minter's issuer)
            now: Issue time in epoch seconds (defaults to the current time)

        Returns:
            DerivedToken: The signed token and its claims
        """
        issued_at = int(time.time()) if now is None else int(now)
        issuer = issuer or self.issuer
        expires_at = issued_at + self.lifetime_seconds

        payload = {"role": role, "iss": issuer, "iat": issued_at, "exp": expires_at}
        value = jwt.encode(payload, signing_secret, algorithm=ALGORITHM, headers={"typ": "JWT"})

        return DerivedToken(role=role, issuer=issuer, issued_at=issued_at, expires_at=expires_at, value=value)

    def mint_pair(self, signing_secret: str, now: Optional[int] = None) -> Dict[TokenRole, DerivedToken]:
        """Mint the anon and service_role tokens from one issue-time snapshot."""
        issued_at = int(time.time()) if now is None else int(now)
        return {role: self.mint(role.value, signing_secret, now=issued_at) for role in TokenRole}

    def verify(self, token: str, signing_secret: str) -> bool:
        """Check a token's signature (and expiry) against a signing secret."""
        try:
            jwt.decode(
                token,
                signing_secret,
                algorithms=[ALGORITHM],
                options={"require": ["role", "exp"], "verify_iat": False},
            )
        except jwt.InvalidTokenError:
            return False
        return True

    def decode_claims(self, token: str) -> Optional[Dict[str, Any]]:
        """Read a token's claims without verifying the signature."""
        try:
            return jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError:
            return None
