from __future__ import annotations

import logging
from typing import Any, Dict, List, Tuple

from pydantic import ValidationError

from webmail.core.errors import EmailNotFound, ProtocolError
from webmail.core.logging import short_id
from webmail.core.sessions import Session
from webmail.models import EmailDetail, EmailSummary
from webmail.services.jmap import MethodCall, ProtocolClient
from webmail.utils.text import strip_html, tag_quoted_lines

logger = logging.getLogger(__name__)

SUMMARY_PROPERTIES = [
    "id",
    "mailboxIds",
    "keywords",
    "subject",
    "from",
    "to",
    "cc",
    "receivedAt",
    "preview",
]

DETAIL_PROPERTIES = SUMMARY_PROPERTIES + ["textBody", "htmlBody", "bodyValues"]

BODY_PART_PROPERTIES = ["partId", "type", "charset"]


def select_body(email: EmailDetail) -> Tuple[str, str]:
    """Pick the text to display and say where it came from.

    The first text/plain part wins and is returned verbatim. Without one, the
    first text/html part is reduced to plain text. The preview is the last
    resort.
    """
    values = email.body_values
    for part in email.text_body:
        if part.type.lower() == "text/plain" and part.part_id in values:
            return values[part.part_id], "text"
    for part in [*email.html_body, *email.text_body]:
        if part.type.lower() == "text/html" and part.part_id in values:
            return strip_html(values[part.part_id]), "html"
    return email.preview, "preview"


class EmailService:
    def __init__(self, client: ProtocolClient) -> None:
        self.client = client

    def list_emails(
        self, session: Session, mailbox_id: str, limit: int, position: int = 0
    ) -> List[EmailSummary]:
        """Newest-first page of a mailbox, fetched in one round trip.

        ``Email/get`` takes its ids from the ``Email/query`` result through a
        back-reference, so both calls travel in the same batch.
        """
        query = MethodCall(
            "Email/query",
            {
                "accountId": session.account_id,
                "filter": {"inMailbox": mailbox_id},
                "sort": [{"property": "receivedAt", "isAscending": False}],
                "position": position,
                "limit": limit,
            },
            "0",
        )
        fetch = MethodCall(
            "Email/get",
            {
                "accountId": session.account_id,
                "ids": query.reference("/ids"),
                "properties": SUMMARY_PROPERTIES,
            },
            "1",
        )
        query_response, fetch_response = self.client.execute_batch(
            session.api_url, session.credentials, [query, fetch]
        )
        ids: List[str] = list(query_response.result.get("ids") or [])
        items = fetch_response.result.get("list") or []
        by_id = {item.get("id"): item for item in items if isinstance(item, dict)}

        missing = [email_id for email_id in ids if email_id not in by_id]
        if missing:
            logger.warning(
                "Email/get returned %s of %s queried emails; missing %s",
                len(ids) - len(missing),
                len(ids),
                missing,
            )

        try:
            summaries = [EmailSummary.model_validate(by_id[email_id]) for email_id in ids if email_id in by_id]
        except ValidationError as exc:
            raise ProtocolError(f"Email/get returned an invalid email: {exc}") from exc
        logger.info(
            "Listed %s emails in mailbox %s for session %s",
            len(summaries),
            mailbox_id,
            short_id(session.id),
        )
        return summaries

    def get_email(self, session: Session, email_id: str) -> EmailDetail:
        item = self._fetch_one(
            session,
            email_id,
            {
                "properties": DETAIL_PROPERTIES,
                "bodyProperties": BODY_PART_PROPERTIES,
                "fetchTextBodyValues": True,
                "fetchHTMLBodyValues": True,
            },
        )
        try:
            email = EmailDetail.model_validate(item)
        except ValidationError as exc:
            raise ProtocolError(f"Email/get returned an invalid email: {exc}") from exc

        body, source = select_body(email)
        email.body = body
        email.body_source = source
        email.lines = tag_quoted_lines(body)
        logger.debug("Email %s rendered from %s body", email_id, source)
        return email

    def get_email_raw(self, session: Session, email_id: str) -> Dict[str, Any]:
        """The server's Email object as-is, with every body value fetched."""
        return self._fetch_one(session, email_id, {"properties": None, "fetchAllBodyValues": True})

    def _fetch_one(self, session: Session, email_id: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        call = MethodCall(
            "Email/get",
            {"accountId": session.account_id, "ids": [email_id], **arguments},
            "0",
        )
        (response,) = self.client.execute_batch(session.api_url, session.credentials, [call])
        result = response.result
        if email_id in (result.get("notFound") or []):
            raise EmailNotFound(email_id)
        for item in result.get("list") or []:
            if isinstance(item, dict) and item.get("id") == email_id:
                return item
        raise EmailNotFound(email_id)
