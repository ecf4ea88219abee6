from __future__ import annotations

import logging
from typing import List

from pydantic import ValidationError

from webmail.core.errors import ProtocolError
from webmail.core.logging import short_id
from webmail.core.sessions import Session
from webmail.models import Mailbox
from webmail.services.jmap import MethodCall, ProtocolClient

logger = logging.getLogger(__name__)

MAILBOX_PROPERTIES = [
    "id",
    "name",
    "parentId",
    "role",
    "sortOrder",
    "totalEmails",
    "unreadEmails",
]


class MailboxService:
    def __init__(self, client: ProtocolClient) -> None:
        self.client = client

    def list_mailboxes(self, session: Session) -> List[Mailbox]:
        """All mailboxes of the session's account, in the order the server lists them."""
        call = MethodCall(
            "Mailbox/get",
            {"accountId": session.account_id, "ids": None, "properties": MAILBOX_PROPERTIES},
            "0",
        )
        (response,) = self.client.execute_batch(session.api_url, session.credentials, [call])
        items = response.result.get("list") or []
        if not isinstance(items, list):
            raise ProtocolError("Mailbox/get list is not an array")
        try:
            mailboxes = [Mailbox.model_validate(item) for item in items]
        except ValidationError as exc:
            raise ProtocolError(f"Mailbox/get returned an invalid mailbox: {exc}") from exc
        logger.info("Fetched %s mailboxes for session %s", len(mailboxes), short_id(session.id))
        return mailboxes
