"""`Response` plus its single-assignment body-load signal.

the body of a response can only be fetched once chrome has finished loading
it (`Network.loadingFinished`). `BodyLoaded` is resolved exactly once by the
`NetworkManager` (success, or an error such as "unavailable for redirect
responses") and `Response.buffer()` waits on it before fetching + caching the
bytes.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..errors import NetworkError
from ...utils import status_text

if TYPE_CHECKING:
    from ..connection import CDPSession
    from .request import Request

logger = logging.getLogger("nodrivernet.Response")

REDIRECT_BODY_ERROR = "Response body is unavailable for redirect responses"


class BodyLoaded:
    """write-once completion handle for "the body can now be fetched".

    `resolve()` only takes effect the first time; `wait()` may be awaited any
    number of times and re-raises the stored error, if any.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._error: BaseException | None = None

    @property
    def done(self) -> bool:
        return self._event.is_set()

    def resolve(self, error: BaseException | None = None) -> bool:
        """settle the signal. returns `False` if it was already settled."""
        if self._event.is_set():
            return False
        self._error = error
        self._event.set()
        return True

    async def wait(self):
        await self._event.wait()
        if self._error is not None:
            raise self._error


@dataclass(frozen=True)
class SecurityDetails:
    """TLS details reported with a response served over a secure transport."""

    protocol: str | None = None
    key_exchange: str | None = None
    key_exchange_group: str | None = None
    cipher: str | None = None
    mac: str | None = None
    certificate_id: int | None = None
    subject_name: str | None = None
    san_list: list[str] = field(default_factory=list)
    issuer: str | None = None
    valid_from: float | None = None
    valid_to: float | None = None
    certificate_transparency_compliance: str | None = None

    @classmethod
    def from_json(cls, payload: dict | None) -> SecurityDetails | None:
        if not payload:
            return None
        return cls(
            protocol=payload.get("protocol"),
            key_exchange=payload.get("keyExchange"),
            key_exchange_group=payload.get("keyExchangeGroup"),
            cipher=payload.get("cipher"),
            mac=payload.get("mac"),
            certificate_id=payload.get("certificateId"),
            subject_name=payload.get("subjectName"),
            san_list=list(payload.get("sanList") or []),
            issuer=payload.get("issuer"),
            valid_from=payload.get("validFrom"),
            valid_to=payload.get("validTo"),
            certificate_transparency_compliance=payload.get("certificateTransparencyCompliance"),
        )


class Response:
    """one HTTP response as observed through `Network.responseReceived`
    (or the `redirectResponse` carried on a redirect hop).

    :param session: session used to fetch the body.
    :param request: the owning `Request`.
    :param event: the protocol event; `redirectResponse` wins over `response`.
    """

    def __init__(self, session: CDPSession, request: Request, event: dict):
        self._session = session
        self._request = request
        self.body_loaded = BodyLoaded()
        self._content: bytes | None = None
        self._content_lock = asyncio.Lock()

        rinfo: dict = event.get("redirectResponse") or event.get("response") or {}
        self._url: str = rinfo.get("url", request.url)
        self._status: int = rinfo.get("status", 0)
        self._status_text: str = rinfo.get("statusText") or status_text(self._status)
        self._headers: dict = dict(rinfo.get("headers") or {})
        self._headers_text: str | None = rinfo.get("headersText")
        self._request_headers: dict | None = rinfo.get("requestHeaders")
        self._protocol: str | None = rinfo.get("protocol")
        self._mime_type: str | None = rinfo.get("mimeType")
        self._remote_ip_address: str | None = rinfo.get("remoteIPAddress")
        self._remote_port: int | None = rinfo.get("remotePort")
        self._from_disk_cache = bool(rinfo.get("fromDiskCache"))
        self._from_service_worker = bool(rinfo.get("fromServiceWorker"))
        self._encoded_data_length: float | None = rinfo.get("encodedDataLength")
        self._connection_reused: bool | None = rinfo.get("connectionReused")
        self._timing: dict | None = rinfo.get("timing")
        self._security_state: str | None = rinfo.get("securityState")
        self._security_details = SecurityDetails.from_json(rinfo.get("securityDetails"))
        self._timestamp: float | None = event.get("timestamp")

        # the response is where chrome reports what actually went on the wire
        request._update_from_response(
            self._request_headers, rinfo.get("requestHeadersText"), self._protocol
        )

    @property
    def request(self) -> Request:
        return self._request

    @property
    def request_id(self) -> str:
        return self._request.request_id

    @property
    def url(self) -> str:
        return self._url

    @property
    def status(self) -> int:
        return self._status

    @property
    def status_text(self) -> str:
        return self._status_text

    @property
    def ok(self) -> bool:
        return self._status == 0 or 200 <= self._status <= 299

    @property
    def headers(self) -> dict:
        return self._headers

    @property
    def headers_text(self) -> str | None:
        return self._headers_text

    @property
    def request_headers(self) -> dict | None:
        return self._request_headers

    @property
    def protocol(self) -> str | None:
        return self._protocol

    @property
    def mime_type(self) -> str | None:
        return self._mime_type

    @property
    def remote_address(self) -> tuple[str | None, int | None]:
        return (self._remote_ip_address, self._remote_port)

    @property
    def from_disk_cache(self) -> bool:
        return self._from_disk_cache

    @property
    def from_service_worker(self) -> bool:
        return self._from_service_worker

    @property
    def from_cache(self) -> bool:
        return self._from_disk_cache or self._request.from_memory_cache

    @property
    def encoded_data_length(self) -> float | None:
        return self._encoded_data_length

    @property
    def connection_reused(self) -> bool | None:
        return self._connection_reused

    @property
    def timing(self) -> dict | None:
        return self._timing

    @property
    def security_state(self) -> str | None:
        return self._security_state

    @property
    def security_details(self) -> SecurityDetails | None:
        return self._security_details

    @property
    def timestamp(self) -> float | None:
        return self._timestamp

    @property
    def frame(self):
        return self._request.frame

    def status_line(self, force_http11: bool = False) -> str:
        proto = "HTTP/1.1" if force_http11 or not self._protocol else self._protocol.upper()
        return f"{proto} {self._status} {self._status_text}"

    async def buffer(self) -> bytes:
        """response body bytes.

        waits for the body-load signal, then fetches `Network.getResponseBody`
        once; later calls return the cached bytes.

        :raises NetworkError: the body is unavailable (e.g. redirect response).
        :raises ProtocolError: chrome refused to hand out the body.
        """
        async with self._content_lock:
            if self._content is None:
                await self.body_loaded.wait()
                result = await self._session.send(
                    "Network.getResponseBody", {"requestId": self.request_id}
                )
                body = result.get("body", "")
                if result.get("base64Encoded"):
                    self._content = base64.b64decode(body)
                else:
                    self._content = body.encode("utf-8")
                logger.debug("fetched %d body bytes for %s", len(self._content), self._url)
        return self._content

    async def text(self) -> str:
        return (await self.buffer()).decode("utf-8")

    async def json(self) -> Any:
        return json.loads(await self.text())

    def to_dict(self) -> dict:
        return {
            "requestId": self.request_id,
            "url": self._url,
            "status": self._status,
            "statusText": self._status_text,
            "headers": self._headers,
            "protocol": self._protocol,
            "mimeType": self._mime_type,
            "remoteIPAddress": self._remote_ip_address,
            "remotePort": self._remote_port,
            "fromDiskCache": self._from_disk_cache,
            "fromServiceWorker": self._from_service_worker,
            "encodedDataLength": self._encoded_data_length,
            "timing": self._timing,
            "securityState": self._security_state,
        }

    def __repr__(self):
        return f"<Response {self._status} {self._url}>"


def redirect_body_error() -> NetworkError:
    return NetworkError(REDIRECT_BODY_ERROR)


__all__ = [
    "BodyLoaded",
    "SecurityDetails",
    "Response",
    "REDIRECT_BODY_ERROR",
    "redirect_body_error",
]
