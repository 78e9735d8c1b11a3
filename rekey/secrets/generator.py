"""Secure secret generation for rekey."""

import base64
import secrets
from typing import Callable, Optional

from ..utils.errors import EntropySourceUnavailable
from .model import SecretClass

EXCLUDED_CHARACTERS = "/+="

# 24 bytes = 192 bits read per draw at minimum
MIN_ENTROPY_BYTES = 24


class SecretGenerator:
    """Generates cryptographically secure secrets for each secret class."""

    def __init__(self, verbose: bool = False, token_bytes: Optional[Callable[[int], bytes]] = None):
        """
        Initialize secret generator.

        Args:
            verbose: Enable verbose output
            token_bytes: Secure random source (defaults to secrets.token_bytes)
        """
        self.verbose = verbose
        self._token_bytes = token_bytes or secrets.token_bytes

    def generate(self, secret_class: SecretClass) -> str:
        """
        Generate a value for a secret class.

        Passwords and encryption keys are 32 characters, signing secrets 48.
        Output is base64 text with '/', '+' and '=' removed.

        Args:
            secret_class: Class of the secret

        Returns:
            str: Generated value

        Raises:
            EntropySourceUnavailable: If the secure random source cannot be read
        """
        return self._draw(secret_class.length)

    def generate_password(self) -> str:
        return self.generate(SecretClass.PASSWORD)

    def generate_signing_secret(self) -> str:
        return self.generate(SecretClass.SIGNING_SECRET)

    def generate_encryption_key(self) -> str:
        return self.generate(SecretClass.ENCRYPTION_KEY)

    def generate_tenant_id(self) -> str:
        """Generate a connection pooler tenant id (tenant-<8 hex chars>)."""
        return f"tenant-{self._read(4).hex()}"

    def _draw(self, length: int) -> str:
        value = ""
        while len(value) < length:
            raw = self._read(max(length, MIN_ENTROPY_BYTES))
            encoded = base64.b64encode(raw).decode("ascii")
            value += "".join(c for c in encoded if c not in EXCLUDED_CHARACTERS)

        if self.verbose:
            print(f"Generated {length}-character secret")

        return value[:length]

    def _read(self, count: int) -> bytes:
        try:
            raw = self._token_bytes(count)
        except (OSError, NotImplementedError) as e:
            raise EntropySourceUnavailable(
                "Secure random source is unavailable",
                details=str(e),
                suggestions=["Check that the operating system exposes a working CSPRNG (/dev/urandom)"],
            ) from e

        if len(raw) < count:
            raise EntropySourceUnavailable(
                f"Secure random source returned {len(raw)} of {count} requested bytes"
            )

        return raw
