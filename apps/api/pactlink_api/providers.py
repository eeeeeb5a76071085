"""Clock and randomness providers.

Every service takes these as constructor arguments so tests can freeze time
and pin OTP codes without patching the standard library.
"""

import secrets
from abc import ABC, abstractmethod
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Clock(ABC):
    """Source of the current time."""

    @abstractmethod
    def now(self) -> datetime:
        pass


class SystemClock(Clock):
    def now(self) -> datetime:
        return utcnow()


class RandomSource:
    """Cryptographically secure randomness for secrets, codes and salts."""

    def __init__(self, secret_bytes: int = 32):
        if secret_bytes < 32:
            raise ValueError("Token secrets need at least 32 bytes (256 bits) of entropy")
        self.secret_bytes = secret_bytes

    def token_secret(self) -> str:
        return secrets.token_urlsafe(self.secret_bytes)

    def otp_code(self, digits: int = 6) -> str:
        """Uniform over the full 10**digits space, zero padded."""
        return f"{secrets.randbelow(10 ** digits):0{digits}d}"

    def salt(self) -> str:
        return secrets.token_hex(16)
