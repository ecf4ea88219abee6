from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from webmail.core.errors import InvalidCredentials, ServiceUnavailable, SessionNotFound
from webmail.core.sessions import Session, clear_session_cookie, make_session_cookie, parse_session_id
from webmail.models import EmailDetail, EmailSummary, Mailbox
from webmail.services.registry import ServiceRegistry

router = APIRouter()


class LoginResult(BaseModel):
    username: str
    account_id: str


class EmailPage(BaseModel):
    emails: List[EmailSummary]
    next_offset: Optional[int] = None


def get_services(request: Request) -> ServiceRegistry:
    return request.app.state.services


def current_session(request: Request, services: ServiceRegistry = Depends(get_services)) -> Session:
    session_id = parse_session_id(request.cookies.get(services.settings.session_cookie_name))
    session = services.sessions.get(session_id) if session_id else None
    if session is None:
        raise SessionNotFound("login required")
    return session


@router.post("/login", response_model=LoginResult)
def login(
    response: Response,
    username: str = Form(""),
    password: str = Form(""),
    services: ServiceRegistry = Depends(get_services),
) -> LoginResult:
    if not username.strip() or not password:
        raise HTTPException(status_code=400, detail="Username and password required")
    try:
        session = services.auth.login(username, password)
    except InvalidCredentials as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except ServiceUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    settings = services.settings
    response.headers["Set-Cookie"] = make_session_cookie(
        session.id, settings.session_cookie_name, settings.session_cookie_secure
    )
    return LoginResult(username=session.username, account_id=session.account_id)


@router.post("/logout")
def logout(
    request: Request,
    response: Response,
    services: ServiceRegistry = Depends(get_services),
) -> Dict[str, str]:
    settings = services.settings
    session_id = parse_session_id(request.cookies.get(settings.session_cookie_name))
    if session_id:
        services.auth.logout(session_id)
    response.headers["Set-Cookie"] = clear_session_cookie(
        settings.session_cookie_name, settings.session_cookie_secure
    )
    return {"status": "logged out"}


@router.get("/session", response_model=LoginResult)
def whoami(session: Session = Depends(current_session)) -> LoginResult:
    return LoginResult(username=session.username, account_id=session.account_id)


@router.get("/mailboxes", response_model=List[Mailbox])
def list_mailboxes(
    session: Session = Depends(current_session),
    services: ServiceRegistry = Depends(get_services),
) -> List[Mailbox]:
    return services.mailboxes.list_mailboxes(session)


@router.get("/mailbox/{mailbox_id}/emails", response_model=EmailPage)
def list_emails(
    mailbox_id: str,
    limit: Optional[int] = Query(None, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session: Session = Depends(current_session),
    services: ServiceRegistry = Depends(get_services),
) -> EmailPage:
    page_size = limit or services.settings.email_page_size
    emails = services.emails.list_emails(session, mailbox_id, page_size, position=offset)
    next_offset = offset + page_size if len(emails) == page_size else None
    return EmailPage(emails=emails, next_offset=next_offset)


@router.get("/email/{email_id}/raw")
def get_email_raw(
    email_id: str,
    session: Session = Depends(current_session),
    services: ServiceRegistry = Depends(get_services),
) -> JSONResponse:
    item: Dict[str, Any] = services.emails.get_email_raw(session, email_id)
    return JSONResponse(content=item)


@router.get("/email/{email_id}", response_model=EmailDetail)
def get_email(
    email_id: str,
    session: Session = Depends(current_session),
    services: ServiceRegistry = Depends(get_services),
) -> EmailDetail:
    return services.emails.get_email(session, email_id)
