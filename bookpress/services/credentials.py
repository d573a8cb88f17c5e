"""Process-wide pool of provider credentials and their rate-limit cooldowns.

Every publish in the process, whichever book it belongs to, goes through
one :class:`CredentialPool`.  All reads and writes of the pool happen under
a single lock and never span network I/O or sleeps; callers get
credentials one at a time and never iterate the pool directly.
"""

import json
import logging
import os
import time
from pathlib import Path
from threading import Lock
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from bookpress.models.page import Credential

logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    def load_all(self) -> List[Credential]:
        ...

    def append(self, credential: Credential) -> None:
        ...


class CredentialPool:
    """Round-robin credential selection with per-credential cooldowns.

    Pool membership only grows.  Cooldown deadlines only move forward: a
    shorter cooldown reported later never shortens an existing one.
    """

    def __init__(
        self,
        credentials: Iterable[Credential] = (),
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._lock = Lock()
        self._credentials: List[Credential] = []
        self._cooldowns: Dict[Credential, float] = {}
        self._next_index = 0
        for credential in credentials:
            self.add(credential)

    def __len__(self) -> int:
        with self._lock:
            return len(self._credentials)

    def __contains__(self, credential: Credential) -> bool:
        with self._lock:
            return credential in self._credentials

    def add(self, credential: Credential) -> bool:
        """Add *credential*; return False if it was already pooled."""
        with self._lock:
            if credential in self._credentials:
                return False
            self._credentials.append(credential)
            return True

    def acquire(self) -> Optional[Credential]:
        """Return the next usable credential in rotation, or *None* if all are cooling down."""
        with self._lock:
            now = self._clock()
            count = len(self._credentials)
            for offset in range(count):
                index = (self._next_index + offset) % count
                credential = self._credentials[index]
                if not self._cooling_locked(credential, now):
                    self._next_index = (index + 1) % count
                    return credential
            return None

    def mark_cooldown(self, credential: Credential, seconds: float) -> float:
        """Cool *credential* down for *seconds* from now; return the effective deadline."""
        with self._lock:
            deadline = self._clock() + seconds
            current = self._cooldowns.get(credential)
            if current is None or deadline > current:
                self._cooldowns[credential] = deadline
                return deadline
            return current

    def cooldown_remaining(self, credential: Credential) -> float:
        """Seconds until *credential* is usable again (0 when usable now)."""
        with self._lock:
            deadline = self._cooldowns.get(credential)
            if deadline is None:
                return 0.0
            return max(0.0, deadline - self._clock())

    def cooldown_until(self, credential: Credential) -> Optional[float]:
        with self._lock:
            return self._cooldowns.get(credential)

    def is_cooling(self, credential: Credential) -> bool:
        with self._lock:
            return self._cooling_locked(credential, self._clock())

    def _cooling_locked(self, credential: Credential, now: float) -> bool:
        deadline = self._cooldowns.get(credential)
        return deadline is not None and now < deadline


class JsonCredentialStore:
    """Credential store backed by a JSON list of access tokens."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = Lock()

    def load_all(self) -> List[Credential]:
        if not self.path.exists():
            return []
        try:
            tokens = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.error("Credentials: cannot read %s – %s", self.path, exc)
            return []
        if not isinstance(tokens, list):
            logger.error("Credentials: %s does not hold a list of tokens", self.path)
            return []
        credentials = [Credential(token) for token in tokens if isinstance(token, str) and token]
        logger.info("Credentials: loaded %d from %s", len(credentials), self.path)
        return credentials

    def append(self, credential: Credential) -> None:
        with self._lock:
            tokens = [c.access_token for c in self.load_all()]
            if credential.access_token in tokens:
                return
            tokens.append(credential.access_token)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(tokens, indent=2), encoding="utf-8")
            os.replace(tmp_path, self.path)
        logger.info("Credentials: saved %s to %s", credential.label, self.path)
