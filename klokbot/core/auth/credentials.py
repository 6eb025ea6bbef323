from __future__ import annotations

import logging
import os
import stat
import tempfile
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from ..message import M, emit, mask

logger = logging.getLogger(__name__)


class CredentialSource:
    """Line-oriented token file: one credential per line, blank lines ignored."""

    def __init__(self, path: str | os.PathLike[str]):
        self.path = Path(path)

    def read(self) -> list[str]:
        if not self.path.exists():
            return []
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.warning("Failed to read credential file %s: %s", self.path, exc)
            return []
        tokens = _clean(text.splitlines())
        logger.debug("Read %d credentials from %s", len(tokens), self.path)
        return tokens

    def write(self, tokens: list[str]) -> None:
        """Atomically replace the file; trailing newline iff the list is non-empty."""
        content = "\n".join(tokens) + ("\n" if tokens else "")
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.chmod(tmp_path, stat.S_IRUSR | stat.S_IWUSR)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def append(self, token: str) -> None:
        token = token.strip()
        if not token:
            return
        with self.path.open("a", encoding="utf-8") as f:
            f.write(f"{token}\n")


def _clean(raw: Iterable[str]) -> list[str]:
    return [line.strip() for line in raw if line and line.strip()]


@dataclass(frozen=True)
class PoolInfo:
    current_index: int
    total: int

    @property
    def has_multiple(self) -> bool:
        return self.total > 1


class CredentialPool:
    """Ring of interchangeable session credentials with a forward-only cursor.

    The ``(cursor, credentials)`` pair is only read or replaced under the
    pool lock, so concurrent readers never observe a half-applied rotation.
    """

    def __init__(self, credentials: Iterable[str] = (), source: CredentialSource | None = None):
        self._credentials: list[str] = _clean(credentials)
        self._index = 0
        self._source = source
        self._lock = threading.RLock()
        self._listeners: list[Callable[[str | None], None]] = []

    @classmethod
    def load(cls, raw: Iterable[str], source: CredentialSource | None = None) -> CredentialPool:
        pool = cls(raw, source=source)
        if not pool.size:
            logger.warning("Credential pool is empty")
        return pool

    @classmethod
    def from_source(cls, source: CredentialSource) -> CredentialPool:
        pool = cls(source=source)
        pool.reload()
        return pool

    # ── state ────────────────────────────────────────────────────

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._credentials)

    @property
    def credentials(self) -> list[str]:
        with self._lock:
            return list(self._credentials)

    def info(self) -> PoolInfo:
        with self._lock:
            return PoolInfo(current_index=self._index, total=len(self._credentials))

    def add_rotation_listener(self, listener: Callable[[str | None], None]) -> None:
        self._listeners.append(listener)

    # ── loading ──────────────────────────────────────────────────

    def reload(self) -> int:
        """Replace the pool with the source's current contents."""
        if self._source is None:
            return self.size
        tokens = self._source.read()
        with self._lock:
            self._credentials = tokens
            self._index = 0
        emit(M.CLOD, f"Loaded {len(tokens)} credential(s) from {self._source.path}")
        return len(tokens)

    def ensure_loaded(self) -> int:
        """Load from the source on first use (pool still empty)."""
        if self.size == 0:
            return self.reload()
        return self.size

    # ── cursor ───────────────────────────────────────────────────

    def active(self) -> str | None:
        with self._lock:
            if not self._credentials:
                return None
            if self._index >= len(self._credentials):
                self._index = 0
            return self._credentials[self._index]

    def rotate(self) -> str | None:
        """Advance the cursor circularly and return the new active credential."""
        self.ensure_loaded()
        with self._lock:
            if not self._credentials:
                return None
            self._index = (self._index + 1) % len(self._credentials)
            current = self._credentials[self._index]
            index, total = self._index, len(self._credentials)

        emit(M.CROT, f"Switched to account {index + 1}/{total}")
        logger.info("Rotated credential to index %d of %d (%s)", index, total, mask(current))
        for listener in list(self._listeners):
            listener(current)
        return current

    # ── maintenance ──────────────────────────────────────────────

    def verify_and_prune(self, verify: Callable[[str], bool]) -> int:
        """Keep only credentials ``verify`` accepts, reset the cursor, persist survivors.

        Runs to completion. Verification calls happen outside the lock so
        readers keep seeing the old pool until the survivors are swapped in.
        """
        candidates = self.credentials
        if not candidates:
            emit(M.SWRN, "No credentials found to verify")
            return 0

        emit(M.CVER, f"Verifying {len(candidates)} credential(s)...")
        valid: list[str] = []
        for position, credential in enumerate(candidates, start=1):
            if verify(credential):
                valid.append(credential)
                emit(M.CVER, f"Credential {position}/{len(candidates)} is valid")
            else:
                emit(M.CVER, f"Credential {position}/{len(candidates)} is invalid or expired")

        with self._lock:
            self._credentials = valid
            self._index = 0

        if self._source is not None:
            self._source.write(valid)
        emit(M.CPRN, f"Credential verification complete. {len(valid)}/{len(candidates)} valid")
        for listener in list(self._listeners):
            listener(self.active())
        return len(valid)
