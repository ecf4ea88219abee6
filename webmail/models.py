from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

MAIL_CAPABILITY = "urn:ietf:params:jmap:mail"
CORE_CAPABILITY = "urn:ietf:params:jmap:core"


class _WireModel(BaseModel):
    """Base for models parsed from JMAP JSON (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class DiscoveryResource(_WireModel):
    capabilities: Set[str] = Field(default_factory=set)
    api_url: str = Field(alias="apiUrl")
    primary_accounts: Dict[str, str] = Field(default_factory=dict, alias="primaryAccounts")
    accounts: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    state: Optional[str] = None
    username: Optional[str] = None
    download_url: Optional[str] = Field(default=None, alias="downloadUrl")

    @field_validator("capabilities", mode="before")
    @classmethod
    def _capability_keys(cls, value: Any) -> Any:
        # servers send an object keyed by urn; only the keys matter here
        if isinstance(value, dict):
            return set(value)
        return value

    @property
    def mail_account_id(self) -> Optional[str]:
        account_id = self.primary_accounts.get(MAIL_CAPABILITY)
        if account_id:
            return account_id
        for candidate, account in self.accounts.items():
            if MAIL_CAPABILITY in (account.get("accountCapabilities") or {}):
                return candidate
        return None


class Mailbox(_WireModel):
    id: str
    name: str
    parent_id: Optional[str] = Field(default=None, alias="parentId")
    role: Optional[str] = None
    sort_order: int = Field(default=0, alias="sortOrder")
    unread_emails: int = Field(default=0, alias="unreadEmails")
    total_emails: int = Field(default=0, alias="totalEmails")


class EmailAddress(_WireModel):
    name: Optional[str] = None
    email: str = ""

    def __str__(self) -> str:
        if self.name and self.email:
            return f"{self.name} <{self.email}>"
        return self.email or self.name or ""


class BodyPart(_WireModel):
    part_id: Optional[str] = Field(default=None, alias="partId")
    type: str = "text/plain"
    charset: Optional[str] = None


class BodyLine(BaseModel):
    text: str
    quoted: bool = False


class EmailSummary(_WireModel):
    id: str
    mailbox_ids: Set[str] = Field(default_factory=set, alias="mailboxIds")
    keywords: Set[str] = Field(default_factory=set)
    subject: str = ""
    from_: List[EmailAddress] = Field(default_factory=list, alias="from")
    to: List[EmailAddress] = Field(default_factory=list)
    cc: List[EmailAddress] = Field(default_factory=list)
    received_at: Optional[datetime] = Field(default=None, alias="receivedAt")
    preview: str = ""

    @field_validator("mailbox_ids", "keywords", mode="before")
    @classmethod
    def _true_keys(cls, value: Any) -> Any:
        # JMAP encodes sets as {"key": true}
        if isinstance(value, dict):
            return {key for key, flag in value.items() if flag}
        return value or set()

    @field_validator("subject", "preview", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return value or ""

    @field_validator("from_", "to", "cc", mode="before")
    @classmethod
    def _none_to_list(cls, value: Any) -> Any:
        return value or []

    @computed_field  # type: ignore[prop-decorator]
    @property
    def unread(self) -> bool:
        return "$seen" not in self.keywords


class EmailDetail(EmailSummary):
    body_values: Dict[str, str] = Field(default_factory=dict, alias="bodyValues")
    text_body: List[BodyPart] = Field(default_factory=list, alias="textBody")
    html_body: List[BodyPart] = Field(default_factory=list, alias="htmlBody")

    body: str = ""
    body_source: Literal["text", "html", "preview"] = Field(default="preview", alias="bodySource")
    lines: List[BodyLine] = Field(default_factory=list)

    @field_validator("body_values", mode="before")
    @classmethod
    def _decoded_values(cls, value: Any) -> Any:
        # {"1": {"value": "...", "isTruncated": false}} -> {"1": "..."}
        if not value:
            return {}
        return {
            part_id: entry.get("value", "") if isinstance(entry, dict) else str(entry)
            for part_id, entry in value.items()
        }

    @field_validator("text_body", "html_body", mode="before")
    @classmethod
    def _parts_or_empty(cls, value: Any) -> Any:
        return value or []

    @computed_field(alias="textPartIds")  # type: ignore[prop-decorator]
    @property
    def text_part_ids(self) -> List[str]:
        return [part.part_id for part in self.text_body if part.part_id]

    @computed_field(alias="htmlPartIds")  # type: ignore[prop-decorator]
    @property
    def html_part_ids(self) -> List[str]:
        return [part.part_id for part in self.html_body if part.part_id]
