"""
Credential Pool for API key rotation.

Hands out the least-used credential for each request so that load spreads
across all configured API keys. Usage counts live on the pool instance and
are incremented at acquisition time, so a call that is cancelled in flight
still counts against its key.
"""

from __future__ import annotations

import threading
from typing import Iterable

from .exceptions import NoCredentialsError


def mask_credential(credential: str) -> str:
    """Render a credential for log output without leaking it."""
    if len(credential) <= 8:
        return "****"
    return f"{credential[:4]}...{credential[-4:]}"


class CredentialPool:
    """
    Least-used rotation over a fixed set of API credentials.

    Usage:
        pool = CredentialPool(["key-a", "key-b"])
        key = pool.acquire()   # "key-a"
        key = pool.acquire()   # "key-b"
        key = pool.acquire()   # "key-a"
    """

    def __init__(self, credentials: Iterable[str]):
        """
        Args:
            credentials: API keys in preference order. Blank entries are
                ignored and duplicates collapse into one credential.

        Raises:
            NoCredentialsError: If no usable credential remains
        """
        ordered: list[str] = []
        for credential in credentials:
            if not credential or not credential.strip():
                continue
            credential = credential.strip()
            if credential not in ordered:
                ordered.append(credential)

        if not ordered:
            raise NoCredentialsError()

        self._credentials = tuple(ordered)
        self._usage = {credential: 0 for credential in self._credentials}
        self._lock = threading.Lock()

    @property
    def size(self) -> int:
        """Number of distinct credentials in the pool."""
        return len(self._credentials)

    def __len__(self) -> int:
        return self.size

    @property
    def credentials(self) -> tuple[str, ...]:
        return self._credentials

    def acquire(self) -> str:
        """
        Return the least-used credential and count one use against it.

        Ties go to the credential configured first.
        """
        with self._lock:
            best = self._credentials[0]
            for credential in self._credentials[1:]:
                if self._usage[credential] < self._usage[best]:
                    best = credential
            self._usage[best] += 1
            return best

    def usage(self) -> dict[str, int]:
        """Snapshot of usage counts, keyed by credential."""
        with self._lock:
            return dict(self._usage)

    def usage_count(self, credential: str) -> int:
        with self._lock:
            return self._usage[credential]
