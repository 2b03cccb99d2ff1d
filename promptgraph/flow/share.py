"""
Share transports.

A transport stores a compressed artifact and hands back an identifier, then
returns the same text for that identifier later. Identifiers are base36
strings; the share link carries them in the ``f`` query parameter.
"""
from __future__ import annotations

import re
import secrets
from abc import ABC, abstractmethod
from logging import getLogger
from typing import Dict, Optional
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import httpx

from promptgraph.core.Errors import TransportError

logger = getLogger(__name__)

SHARE_PARAM = "f"
_BASE36 = re.compile(r"^[0-9a-z]+$", re.IGNORECASE)
_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def is_valid_uid(uid: Optional[str]) -> bool:
    return bool(uid) and len(uid) > 1 and _BASE36.match(uid) is not None


def uid_from_url(url_or_uid: Optional[str]) -> Optional[str]:
    """
    Extract a shared-flow id from a share link, or accept a bare id.
    Returns None when nothing usable is present.
    """
    if not url_or_uid:
        return None
    if is_valid_uid(url_or_uid):
        return url_or_uid
    values = parse_qs(urlparse(url_or_uid).query).get(SHARE_PARAM) or []
    uid = values[0] if values else None
    return uid if is_valid_uid(uid) else None


def share_url(public_url: str, uid: str) -> str:
    parts = urlparse(public_url)
    query = parse_qs(parts.query)
    query[SHARE_PARAM] = [uid]
    return urlunparse(parts._replace(query=urlencode(query, doseq=True)))


def _to_base36(number: int) -> str:
    out = ""
    while number:
        number, rem = divmod(number, 36)
        out = _DIGITS[rem] + out
    return out or "0"


class ShareTransport(ABC):

    @abstractmethod
    async def put(self, payload: str) -> str:
        """Store *payload* and return its identifier."""

    @abstractmethod
    async def get(self, uid: str) -> str:
        """Return the payload stored under *uid*."""


class InMemoryShareTransport(ShareTransport):
    """Process-local share store, used when no share service is configured."""

    def __init__(self):
        self._flows: Dict[str, str] = {}

    async def put(self, payload: str) -> str:
        uid = _to_base36(secrets.randbits(48))
        while uid in self._flows or not is_valid_uid(uid):
            uid = _to_base36(secrets.randbits(48))
        self._flows[uid] = payload
        return uid

    async def get(self, uid: str) -> str:
        if uid not in self._flows:
            raise TransportError(f"Error: no shared flow with id '{uid}'")
        return self._flows[uid]


class HttpShareTransport(ShareTransport):

    def __init__(self, base_url: str, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout

    @staticmethod
    def _check(text: str) -> str:
        if not text:
            raise TransportError("Received no response from server.")
        if text.startswith("Error"):
            raise TransportError(text)
        return text

    async def put(self, payload: str) -> str:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(f"{self.base_url}/shareflow", content=payload.encode("utf-8"))
        except httpx.HTTPError as exc:
            raise TransportError(f"Could not reach share service: {exc}") from exc

        logger.info("share request to %s - Status Code: %s", self.base_url, response.status_code)
        if response.status_code >= 400:
            raise TransportError(f"Error: share service returned HTTP {response.status_code}")
        return self._check(response.text.strip())

    async def get(self, uid: str) -> str:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(f"{self.base_url}/sharedflow", params={SHARE_PARAM: uid})
        except httpx.HTTPError as exc:
            raise TransportError(f"Could not reach share service: {exc}") from exc

        if response.status_code >= 400:
            raise TransportError(f"Error: share service returned HTTP {response.status_code}")
        return self._check(response.text)
