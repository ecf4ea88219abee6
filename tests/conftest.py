"""Shared pytest fixtures: an in-process fake JMAP server behind httpx.MockTransport."""

import base64
import json
from typing import Any

import httpx
import pytest

from webmail.core.config import Settings
from webmail.core.sessions import Credentials, SessionStore

WELL_KNOWN_URL = "https://mail.example.com/.well-known/jmap"
API_URL = "https://mail.example.com/jmap/api/"
ACCOUNT_ID = "u1a2b3c4"
MAIL_URN = "urn:ietf:params:jmap:mail"
CORE_URN = "urn:ietf:params:jmap:core"

USERNAME = "alice@example.com"
PASSWORD = "correct horse"


def _email(
    email_id: str,
    mailbox: str,
    received_at: str,
    subject: str,
    *,
    text: str | None = None,
    html: str | None = None,
    seen: bool = True,
) -> dict[str, Any]:
    body_values: dict[str, Any] = {}
    text_body: list[dict[str, Any]] = []
    html_body: list[dict[str, Any]] = []
    if text is not None:
        body_values["1"] = {"value": text, "isTruncated": False}
        text_body.append({"partId": "1", "type": "text/plain", "charset": "utf-8"})
    if html is not None:
        body_values["2"] = {"value": html, "isTruncated": False}
        html_body.append({"partId": "2", "type": "text/html", "charset": "utf-8"})
        if text is None:
            # without a plain alternative JMAP lists the html part in textBody too
            text_body.append({"partId": "2", "type": "text/html", "charset": "utf-8"})
    if text is not None and html is None:
        html_body = list(text_body)
    return {
        "id": email_id,
        "mailboxIds": {mailbox: True},
        "keywords": {"$seen": True} if seen else {},
        "subject": subject,
        "from": [{"name": "Bob", "email": "bob@example.com"}],
        "to": [{"name": None, "email": USERNAME}],
        "cc": None,
        "receivedAt": received_at,
        "preview": (text or "preview only")[:40],
        "bodyValues": body_values,
        "textBody": text_body,
        "htmlBody": html_body,
    }


class FakeJmapServer:
    """Just enough of a JMAP server for the tests.

    Resolves ``#``-prefixed back-references the way a real server does and can
    be told to answer a batch in reverse order.
    """

    def __init__(self) -> None:
        self.users = {USERNAME: PASSWORD}
        self.reverse_responses = False
        self.requests: list[httpx.Request] = []
        self.mailboxes = [
            {"id": "inbox", "name": "Inbox", "parentId": None, "role": "inbox", "sortOrder": 1,
             "totalEmails": 3, "unreadEmails": 1},
            {"id": "archive", "name": "Archive", "parentId": None, "role": "archive", "sortOrder": 3,
             "totalEmails": 1, "unreadEmails": 0},
            {"id": "lists", "name": "Lists", "parentId": "archive", "role": None, "sortOrder": 2,
             "totalEmails": 0, "unreadEmails": 0},
        ]
        self.emails = {
            item["id"]: item
            for item in [
                _email("m1", "inbox", "2026-03-01T08:00:00Z", "Oldest", text="first\n"),
                _email("m3", "inbox", "2026-03-03T08:00:00Z", "Newest", text="third\n", seen=False),
                _email("m2", "inbox", "2026-03-02T08:00:00Z", "Middle", text="second\n"),
                _email(
                    "both",
                    "archive",
                    "2026-02-01T08:00:00Z",
                    "Both parts",
                    text="Hi Alice,\n\n> you wrote\n  > nested quote\nThanks>\n",
                    html="<p>Hi <b>Alice</b></p>",
                ),
                _email(
                    "html-only",
                    "archive",
                    "2026-02-02T08:00:00Z",
                    "Newsletter",
                    html="<html><head><style>p {color: red}</style></head>"
                    "<body><p>Hello <a href='x'>there</a></p><div>Bye &amp; thanks</div></body></html>",
                ),
            ]
        }

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def session_resource(self) -> dict[str, Any]:
        return {
            "capabilities": {CORE_URN: {"maxCallsInRequest": 16}, MAIL_URN: {}},
            "accounts": {ACCOUNT_ID: {"name": USERNAME, "accountCapabilities": {MAIL_URN: {}}}},
            "primaryAccounts": {MAIL_URN: ACCOUNT_ID},
            "username": USERNAME,
            "apiUrl": API_URL,
            "downloadUrl": "https://mail.example.com/jmap/download/{accountId}/{blobId}/{name}",
            "state": "cafe01",
        }

    def _authorized(self, request: httpx.Request) -> bool:
        header = request.headers.get("authorization", "")
        if not header.startswith("Basic "):
            return False
        username, _, password = base64.b64decode(header[6:]).decode().partition(":")
        return self.users.get(username) == password

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self._authorized(request):
            return httpx.Response(401, text="Unauthorized")
        if request.method == "GET" and str(request.url) == WELL_KNOWN_URL:
            return httpx.Response(200, json=self.session_resource())
        if request.method == "POST" and str(request.url) == API_URL:
            return httpx.Response(200, json=self._batch(json.loads(request.content)))
        return httpx.Response(404)

    def _batch(self, body: dict[str, Any]) -> dict[str, Any]:
        results: dict[str, tuple[str, dict[str, Any]]] = {}
        responses = []
        for name, arguments, call_id in body["methodCalls"]:
            arguments = self._resolve(arguments, results)
            handler = {
                "Mailbox/get": self._mailbox_get,
                "Email/query": self._email_query,
                "Email/get": self._email_get,
            }.get(name)
            if handler is None:
                response = ["error", {"type": "unknownMethod"}, call_id]
            else:
                response = [name, handler(arguments), call_id]
            results[call_id] = (response[0], response[1])
            responses.append(response)
        if self.reverse_responses:
            responses.reverse()
        return {"methodResponses": responses, "sessionState": "cafe01"}

    def _resolve(self, arguments: dict[str, Any], results: dict[str, tuple[str, dict[str, Any]]]) -> dict[str, Any]:
        resolved = {}
        for key, value in arguments.items():
            if key.startswith("#"):
                name, result = results[value["resultOf"]]
                assert name == value["name"]
                assert value["path"].startswith("/")
                resolved[key[1:]] = result[value["path"][1:]]
            else:
                resolved[key] = value
        return resolved

    def _mailbox_get(self, arguments: dict[str, Any]) -> dict[str, Any]:
        return {"accountId": arguments["accountId"], "state": "m1", "list": self.mailboxes, "notFound": []}

    def _email_query(self, arguments: dict[str, Any]) -> dict[str, Any]:
        mailbox = arguments["filter"]["inMailbox"]
        matching = [item for item in self.emails.values() if mailbox in item["mailboxIds"]]
        matching.sort(key=lambda item: item["receivedAt"], reverse=True)
        position = arguments.get("position", 0)
        ids = [item["id"] for item in matching][position : position + arguments.get("limit", 50)]
        return {"accountId": arguments["accountId"], "ids": ids, "position": position}

    def _email_get(self, arguments: dict[str, Any]) -> dict[str, Any]:
        found = [self.emails[email_id] for email_id in arguments["ids"] if email_id in self.emails]
        # answer out of order; clients must not rely on list order
        found.sort(key=lambda item: item["id"])
        return {
            "accountId": arguments["accountId"],
            "list": found,
            "notFound": [email_id for email_id in arguments["ids"] if email_id not in self.emails],
        }


@pytest.fixture
def jmap_server() -> FakeJmapServer:
    return FakeJmapServer()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        JMAP_WELL_KNOWN_URL=WELL_KNOWN_URL,
        jmap_timeout=5,
        session_cookie_secure=False,
        log_level="DEBUG",
        _env_file=None,
    )


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(username=USERNAME, secret=PASSWORD)


@pytest.fixture
def session_store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def session(session_store: SessionStore, credentials: Credentials):
    session_id = session_store.create(credentials, API_URL, ACCOUNT_ID)
    return session_store.get(session_id)
