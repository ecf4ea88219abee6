from __future__ import annotations

import logging
from typing import Iterable, Optional, Tuple

import httpx
from pydantic import ValidationError

from webmail.core.errors import DiscoveryMalformed, DiscoveryUnauthorized, DiscoveryUnreachable
from webmail.core.sessions import Credentials
from webmail.models import DiscoveryResource

logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {"http": 80, "https": 443}

Origin = Tuple[str, str, int]


def origin_of(url: httpx.URL) -> Origin:
    scheme = url.scheme.lower()
    return scheme, url.host.lower(), url.port or _DEFAULT_PORTS.get(scheme, 0)


def _parse_origin(value: str) -> Optional[Origin]:
    url = httpx.URL(value)
    if not url.scheme or not url.host:
        return None
    return origin_of(url)


class Discovery:
    """Resolves a user's credentials to their JMAP API endpoint and mail account.

    Redirects are followed by hand, and only while the target stays on the
    origin of the well-known URL or moves to an origin listed in
    ``trusted_origins``. A redirect anywhere else fails the lookup as
    unauthorized; the request is never re-sent there, with or without
    credentials.
    """

    def __init__(
        self,
        well_known_url: str,
        *,
        timeout: float = 30.0,
        max_redirects: int = 5,
        trusted_origins: Iterable[str] = (),
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.well_known_url = well_known_url
        self.timeout = timeout
        self.max_redirects = max_redirects
        self._origin = origin_of(httpx.URL(well_known_url))
        self._trusted = {self._origin}
        for value in trusted_origins:
            parsed = _parse_origin(value)
            if parsed is None:
                logger.warning("Ignoring trusted origin without scheme or host: %s", value)
                continue
            self._trusted.add(parsed)
        self._transport = transport

    def resolve(self, credentials: Credentials) -> DiscoveryResource:
        body = self._fetch(credentials)
        try:
            resource = DiscoveryResource.model_validate_json(body)
        except ValidationError as exc:
            logger.warning("Discovery resource did not parse: %s", exc.errors()[:3])
            raise DiscoveryMalformed("Discovery response is not a valid JMAP session object") from exc

        if not resource.api_url:
            raise DiscoveryMalformed("Discovery response has no apiUrl")
        if resource.mail_account_id is None:
            logger.warning(
                "No mail account in discovery resource; primaryAccounts=%s",
                sorted(resource.primary_accounts),
            )
            raise DiscoveryMalformed("Discovery response has no mail account")
        return resource

    def _fetch(self, credentials: Credentials) -> bytes:
        auth = credentials.authorization_header()
        url = httpx.URL(self.well_known_url)
        with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
            for hop in range(self.max_redirects + 1):
                headers = {"Accept": "application/json", "Authorization": auth}
                logger.debug("Discovery request %s to %s", hop + 1, url)
                try:
                    response = client.get(url, headers=headers, follow_redirects=False)
                except httpx.RequestError as exc:
                    logger.warning("Discovery request to %s failed: %s", url, exc)
                    raise DiscoveryUnreachable(f"Could not reach {url.host}") from exc

                if response.is_redirect:
                    location = response.headers.get("location")
                    if not location:
                        raise DiscoveryMalformed(f"Redirect {response.status_code} without Location header")
                    target = url.join(location)
                    if origin_of(target) not in self._trusted:
                        # only a resource fetched with the user's credentials proves them
                        logger.warning("Discovery redirected to untrusted origin %s; not following", target.host)
                        raise DiscoveryUnauthorized(f"Discovery redirected to untrusted origin {target.host}")
                    logger.info("Following discovery redirect %s -> %s", response.status_code, target)
                    url = target
                    continue

                return self._check(response)

        raise DiscoveryUnreachable(f"More than {self.max_redirects} redirects while discovering")

    def _check(self, response: httpx.Response) -> bytes:
        status = response.status_code
        if status in (401, 403):
            raise DiscoveryUnauthorized(f"Authentication rejected (HTTP {status})")
        if status >= 500:
            raise DiscoveryUnreachable(f"Discovery server error (HTTP {status})")
        if not response.is_success:
            raise DiscoveryMalformed(f"Unexpected discovery status HTTP {status}")
        if not response.content:
            raise DiscoveryMalformed(f"Empty discovery response (HTTP {status})")
        return response.content
