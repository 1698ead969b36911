"""JSON-over-HTTP transport shared by the speed-limit lookup and webhooks."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from fleetwatch._constants import USER_AGENT
from fleetwatch.exceptions import FleetwatchTransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface.

    Collaborators depend on this protocol so tests can pass small fakes
    while production uses :class:`HttpTransport`.
    """

    async def post_form(self, url: str, form: Mapping[str, str], *, timeout: float) -> Any:
        ...

    async def post_json(self, url: str, payload: Mapping[str, Any], *, timeout: float) -> int:
        ...


class HttpTransport:
    """aiohttp-backed transport.

    The session is borrowed, not owned: whoever created it closes it.
    """

    def __init__(self, http_session: aiohttp.ClientSession) -> None:
        self._http = http_session

    async def post_form(self, url: str, form: Mapping[str, str], *, timeout: float) -> Any:
        """POST an urlencoded form and return the decoded JSON reply."""
        headers = {"accept": "application/json", "user-agent": USER_AGENT}
        _logger.debug("POST %s", url)

        try:
            async with self._http.post(
                url,
                data=dict(form),
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise FleetwatchTransportError(
                        f"HTTP {resp.status} from {url}: {text[:200]}",
                        status_code=resp.status,
                        url=url,
                    )
        except FleetwatchTransportError:
            raise
        except aiohttp.ClientError as exc:
            raise FleetwatchTransportError(f"Request to {url} failed: {exc}", url=url) from exc

        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise FleetwatchTransportError(f"Invalid JSON from {url}: {text[:200]}", url=url) from exc

    async def post_json(self, url: str, payload: Mapping[str, Any], *, timeout: float) -> int:
        """POST a JSON body; returns the status code, raising on non-2xx."""
        headers = {"content-type": "application/json; charset=UTF-8", "user-agent": USER_AGENT}
        body = json.dumps(payload, separators=(",", ":"), default=str)
        _logger.debug("POST %s (%d bytes)", url, len(body))

        try:
            async with self._http.post(
                url,
                data=body,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                if not 200 <= resp.status < 300:
                    text = await resp.text()
                    raise FleetwatchTransportError(
                        f"HTTP {resp.status} from {url}: {text[:200]}",
                        status_code=resp.status,
                        url=url,
                    )
                return resp.status
        except FleetwatchTransportError:
            raise
        except aiohttp.ClientError as exc:
            raise FleetwatchTransportError(f"Request to {url} failed: {exc}", url=url) from exc
