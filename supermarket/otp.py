"""
One-time passcodes for email verification.

Codes live in an :class:`OTPCache` owned by the app, never in the database.
There is at most one live code per email: issuing again replaces the old one.
Expired entries are dropped when read and by :meth:`OTPCache.sweep`.
"""

import hmac
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Optional

from supermarket.errors import OTPExpired, OTPMismatch

CODE_DIGITS = 6
DEFAULT_TTL_SECONDS = 180


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** CODE_DIGITS):0{CODE_DIGITS}d}"


@dataclass(frozen=True)
class OTPRecord:
    code: str
    expires_at: float


class OTPCache:
    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._records = {}
        self._lock = threading.Lock()

    def __len__(self):
        with self._lock:
            return len(self._records)

    def issue(self, email: str) -> str:
        """Create a fresh code for ``email``, invalidating any earlier one."""
        code = generate_code()
        with self._lock:
            self._records[email] = OTPRecord(code, self.clock() + self.ttl_seconds)
        return code

    def get(self, email: str) -> Optional[OTPRecord]:
        with self._lock:
            return self._live(email)

    def _live(self, email):
        record = self._records.get(email)
        if record is not None and self.clock() > record.expires_at:
            del self._records[email]
            return None
        return record

    def redeem(self, email: str, code: str):
        """Consume the code for ``email``.

        Raises OTPExpired when there is no live code and OTPMismatch when the
        digits differ; a mismatch leaves the code usable until it expires.
        """
        submitted = (code or "").strip()
        with self._lock:
            record = self._live(email)
            if record is None:
                raise OTPExpired()
            if not hmac.compare_digest(record.code, submitted):
                raise OTPMismatch()
            del self._records[email]

    def discard(self, email: str):
        with self._lock:
            self._records.pop(email, None)

    def sweep(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self.clock()
        with self._lock:
            expired = [email for email, rec in self._records.items() if now > rec.expires_at]
            for email in expired:
                del self._records[email]
        return len(expired)
