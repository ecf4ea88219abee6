from __future__ import annotations

import logging

from webmail.core.errors import (
    DiscoveryMalformed,
    DiscoveryUnauthorized,
    DiscoveryUnreachable,
    InvalidCredentials,
    ServiceUnavailable,
)
from webmail.core.logging import short_id
from webmail.core.sessions import Credentials, Session, SessionStore
from webmail.services.discovery import Discovery

logger = logging.getLogger(__name__)


class AuthService:
    """Validates credentials against the remote service and mints sessions."""

    def __init__(self, discovery: Discovery, sessions: SessionStore) -> None:
        self.discovery = discovery
        self.sessions = sessions

    def login(self, username: str, secret: str) -> Session:
        username = (username or "").strip()
        if not username or not secret:
            raise InvalidCredentials("Username and password required")

        credentials = Credentials(username=username, secret=secret)
        logger.info("Login attempt for %s", username)
        try:
            resource = self.discovery.resolve(credentials)
        except (DiscoveryUnauthorized, DiscoveryMalformed) as exc:
            logger.warning("Login failed for %s: %s", username, exc)
            raise InvalidCredentials() from exc
        except DiscoveryUnreachable as exc:
            logger.error("Login for %s could not reach the mail service: %s", username, exc)
            raise ServiceUnavailable() from exc

        session_id = self.sessions.create(
            credentials,
            resource.api_url,
            resource.mail_account_id,
            download_url=resource.download_url,
        )
        session = self.sessions.get(session_id)
        if session is None:
            # removed by a concurrent logout between create and get
            raise InvalidCredentials("Session ended before login completed")
        logger.info(
            "Login succeeded for %s (account %s, session %s)",
            username,
            session.account_id,
            short_id(session_id),
        )
        return session

    def logout(self, session_id: str) -> None:
        session = self.sessions.remove(session_id)
        if session is not None:
            logger.info("Logged out %s (session %s)", session.username, short_id(session_id))
