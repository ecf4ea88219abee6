from __future__ import annotations

import base64
import logging
import re
import secrets
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional

from webmail.core.logging import short_id

logger = logging.getLogger(__name__)

_SESSION_ID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-7[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$"
)


@dataclass(frozen=True)
class Credentials:
    username: str
    secret: str

    def authorization_header(self) -> str:
        token = base64.b64encode(f"{self.username}:{self.secret}".encode("utf-8")).decode("ascii")
        return f"Basic {token}"

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, secret='***')"


@dataclass(frozen=True)
class Session:
    id: str
    credentials: Credentials
    api_url: str
    account_id: str
    created_at: datetime
    download_url: Optional[str] = None

    @property
    def username(self) -> str:
        return self.credentials.username


class ReadWriteLock:
    """Many concurrent readers or one writer.

    Writers are preferred: once a writer is waiting, new readers queue behind
    it so a steady stream of lookups cannot starve login or logout.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class SessionIdFactory:
    """Time-ordered, unguessable identifiers in the UUIDv7 layout.

    48 bits of Unix milliseconds, a 12 bit sequence that increases within one
    millisecond, then 62 random bits. Ids sort by creation time and the random
    tail rules out enumeration.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last_ms = -1
        self._sequence = 0

    def __call__(self) -> str:
        with self._lock:
            now_ms = time.time_ns() // 1_000_000
            if now_ms <= self._last_ms:
                self._sequence += 1
                if self._sequence > 0xFFF:
                    # sequence exhausted: borrow the next millisecond
                    self._last_ms += 1
                    self._sequence = 0
                now_ms = self._last_ms
            else:
                self._sequence = secrets.randbits(8)
            self._last_ms = now_ms
            sequence = self._sequence

        value = (now_ms & 0xFFFF_FFFF_FFFF) << 80
        value |= 0x7 << 76
        value |= sequence << 64
        value |= 0b10 << 62
        value |= secrets.randbits(62)
        return str(uuid.UUID(int=value))


def is_session_id(value: str | None) -> bool:
    return bool(value) and bool(_SESSION_ID_PATTERN.match(value))


class SessionStore:
    """Process-local map of session id to :class:`Session`.

    Nothing is persisted: a restart logs every user out.
    """

    def __init__(self, id_factory: Optional[SessionIdFactory] = None) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = ReadWriteLock()
        self._new_id = id_factory or SessionIdFactory()

    def create(
        self,
        credentials: Credentials,
        api_url: str,
        account_id: str,
        download_url: Optional[str] = None,
    ) -> str:
        with self._lock.write():
            session_id = self._new_id()
            while session_id in self._sessions:
                session_id = self._new_id()
            self._sessions[session_id] = Session(
                id=session_id,
                credentials=credentials,
                api_url=api_url,
                account_id=account_id,
                created_at=datetime.now(timezone.utc),
                download_url=download_url,
            )
        logger.debug("Created session %s for %s", short_id(session_id), credentials.username)
        return session_id

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock.read():
            return self._sessions.get(session_id)

    def exists(self, session_id: str) -> bool:
        with self._lock.read():
            return session_id in self._sessions

    def remove(self, session_id: str) -> Optional[Session]:
        with self._lock.write():
            session = self._sessions.pop(session_id, None)
        if session is not None:
            logger.debug("Removed session %s", short_id(session_id))
        return session

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._sessions)


def make_session_cookie(session_id: str, name: str = "session", secure: bool = True) -> str:
    parts = [f"{name}={session_id}", "HttpOnly"]
    if secure:
        parts.append("Secure")
    parts.extend(["SameSite=Strict", "Path=/"])
    return "; ".join(parts)


def clear_session_cookie(name: str = "session", secure: bool = True) -> str:
    parts = [f"{name}=", "HttpOnly"]
    if secure:
        parts.append("Secure")
    parts.extend(["SameSite=Strict", "Path=/", "Max-Age=0"])
    return "; ".join(parts)


def parse_session_id(cookie_value: str | None) -> Optional[str]:
    """Return the cookie value if it is a well-formed session id."""
    if not cookie_value:
        return None
    value = cookie_value.strip().lower()
    return value if is_session_id(value) else None
