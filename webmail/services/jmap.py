"""Batched JMAP method calls.

A batch is one POST carrying several method calls; the server answers all of
them in one response. Each call carries an id chosen by the caller and every
answer echoes the id of the call it belongs to, in whatever order the server
likes. Arguments may be back-references to the result of an earlier call in
the same batch; the server resolves those, never this client.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import httpx

from webmail.core.errors import MethodError, ProtocolError, TransportError
from webmail.core.sessions import Credentials
from webmail.models import CORE_CAPABILITY, MAIL_CAPABILITY

logger = logging.getLogger(__name__)

DEFAULT_CAPABILITIES: tuple[str, ...] = (CORE_CAPABILITY, MAIL_CAPABILITY)

ERROR_METHOD = "error"


@dataclass(frozen=True)
class ResultReference:
    """Argument value meaning "read ``path`` from the result of call ``result_of``"."""

    result_of: str
    name: str
    path: str

    def to_json(self) -> Dict[str, str]:
        return {"resultOf": self.result_of, "name": self.name, "path": self.path}


@dataclass(frozen=True)
class MethodCall:
    name: str
    arguments: Mapping[str, Any]
    call_id: str

    def reference(self, path: str) -> ResultReference:
        return ResultReference(result_of=self.call_id, name=self.name, path=path)

    def references(self) -> List[ResultReference]:
        return [value for value in self.arguments.values() if isinstance(value, ResultReference)]

    def to_json(self) -> List[Any]:
        arguments: Dict[str, Any] = {}
        for key, value in self.arguments.items():
            if isinstance(value, ResultReference):
                arguments[f"#{key}"] = value.to_json()
            else:
                arguments[key] = value
        return [self.name, arguments, self.call_id]


@dataclass(frozen=True)
class MethodResponse:
    name: str
    payload: Dict[str, Any]
    call_id: str
    call: MethodCall = field(repr=False)

    @property
    def is_error(self) -> bool:
        return self.name == ERROR_METHOD

    @property
    def result(self) -> Dict[str, Any]:
        """The method result, or :class:`MethodError` if the server reported one."""
        if self.is_error:
            raise MethodError(
                str(self.payload.get("type") or "serverFail"),
                self.payload.get("description"),
                call_id=self.call_id,
            )
        return self.payload


def validate_batch(calls: Sequence[MethodCall]) -> None:
    """Reject duplicate call ids and references to calls not made earlier."""
    seen: Dict[str, MethodCall] = {}
    for call in calls:
        if call.call_id in seen:
            raise ValueError(f"Duplicate call id {call.call_id!r} in batch")
        for ref in call.references():
            target = seen.get(ref.result_of)
            if target is None:
                raise ValueError(
                    f"Call {call.call_id!r} references {ref.result_of!r}, which is not an earlier call"
                )
            if target.name != ref.name:
                raise ValueError(
                    f"Call {call.call_id!r} references {ref.result_of!r} as {ref.name}, "
                    f"but that call is {target.name}"
                )
        seen[call.call_id] = call


def correlate(calls: Sequence[MethodCall], body: Any) -> List[MethodResponse]:
    """Pair each invocation in ``body`` with the call it answers.

    Returns responses in submission order. Every call must be answered
    exactly once and no answer may name an id that was not submitted.
    """
    if not isinstance(body, dict) or not isinstance(body.get("methodResponses"), list):
        raise ProtocolError("Response has no methodResponses array")

    by_id: Dict[str, MethodCall] = {call.call_id: call for call in calls}
    answered: Dict[str, MethodResponse] = {}
    for invocation in body["methodResponses"]:
        if (
            not isinstance(invocation, list)
            or len(invocation) != 3
            or not isinstance(invocation[0], str)
            or not isinstance(invocation[1], dict)
            or not isinstance(invocation[2], str)
        ):
            raise ProtocolError(f"Malformed invocation in response: {invocation!r}")
        name, payload, call_id = invocation
        call = by_id.get(call_id)
        if call is None:
            raise ProtocolError(f"Response for unknown call id {call_id!r}")
        if call_id in answered:
            raise ProtocolError(f"More than one response for call id {call_id!r}")
        answered[call_id] = MethodResponse(name=name, payload=payload, call_id=call_id, call=call)

    missing = [call.call_id for call in calls if call.call_id not in answered]
    if missing:
        raise ProtocolError(f"No response for call ids {', '.join(missing)}")
    return [answered[call.call_id] for call in calls]


class ProtocolClient:
    """Executes batches against a JMAP API endpoint.

    Holds configuration only. Each batch opens its own HTTP client, so one
    instance can serve any number of worker threads at once.
    """

    def __init__(self, timeout: float = 30.0, transport: Optional[httpx.BaseTransport] = None) -> None:
        self.timeout = timeout
        self._transport = transport

    def execute_batch(
        self,
        endpoint: str,
        credentials: Credentials,
        calls: Sequence[MethodCall],
        using: Sequence[str] = DEFAULT_CAPABILITIES,
    ) -> List[MethodResponse]:
        if not calls:
            return []
        validate_batch(calls)
        request_body = {
            "using": list(using),
            "methodCalls": [call.to_json() for call in calls],
        }
        headers = {
            "Authorization": credentials.authorization_header(),
            "Accept": "application/json",
        }
        method_names = ", ".join(call.name for call in calls)
        logger.debug("JMAP batch [%s] -> %s", method_names, endpoint)

        started = time.monotonic()
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(endpoint, json=request_body, headers=headers)
        except httpx.RequestError as exc:
            logger.warning("JMAP batch [%s] failed: %s", method_names, exc)
            raise TransportError(f"JMAP request failed: {exc}") from exc

        elapsed = time.monotonic() - started
        if response.is_error:
            logger.warning(
                "JMAP batch [%s] answered HTTP %s after %.2fs",
                method_names,
                response.status_code,
                elapsed,
            )
            raise TransportError(
                f"JMAP endpoint answered HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ProtocolError(f"JMAP response is not JSON: {exc}") from exc

        responses = correlate(calls, body)
        logger.debug("JMAP batch [%s] completed in %.2fs", method_names, elapsed)
        return responses
