from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx

from webmail.core.config import Settings
from webmail.core.sessions import SessionStore
from webmail.services.auth import AuthService
from webmail.services.discovery import Discovery
from webmail.services.emails import EmailService
from webmail.services.jmap import ProtocolClient
from webmail.services.mailboxes import MailboxService


@dataclass
class ServiceRegistry:
    """The service graph, built once per process and shared by every request."""

    settings: Settings
    sessions: SessionStore
    auth: AuthService
    mailboxes: MailboxService
    emails: EmailService

    @classmethod
    def build(cls, settings: Settings, transport: Optional[httpx.BaseTransport] = None) -> "ServiceRegistry":
        sessions = SessionStore()
        discovery = Discovery(
            settings.jmap_well_known_url,
            timeout=settings.jmap_timeout,
            max_redirects=settings.jmap_max_redirects,
            trusted_origins=settings.jmap_trusted_origins,
            transport=transport,
        )
        client = ProtocolClient(timeout=settings.jmap_timeout, transport=transport)
        return cls(
            settings=settings,
            sessions=sessions,
            auth=AuthService(discovery, sessions),
            mailboxes=MailboxService(client),
            emails=EmailService(client),
        )
