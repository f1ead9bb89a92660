"""Authenticated request pipeline.

Stamps each signed request with the signer's address, a fresh nonce, a
timestamp and a signature over the canonical message, then hands it to the
HTTP transport. A new nonce is minted for every attempt, including retries.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .config import AuthPlacement
from .errors import AuthRejected, DecodeError, LighterClientError
from .http import HttpResponse, LighterHttpClient
from .nonce import NonceSource
from .protocol import canonical_message
from .signers import Signature, Signer, sign_async

_LOGGER = logging.getLogger(__name__)

HEADER_PREFIX = "X-Lighter-"
BODY_FIELD = "auth"


@dataclass(frozen=True)
class SignedEnvelope:
    """Signed canonical payload ready to attach to one request attempt."""

    payload: bytes
    nonce: int
    signature: Signature
    address: str
    timestamp: int

    def as_headers(self, prefix: str = HEADER_PREFIX) -> dict[str, str]:
        return {
            f"{prefix}Address": self.address,
            f"{prefix}Nonce": str(self.nonce),
            f"{prefix}Signature": self.signature.hex(),
            f"{prefix}Timestamp": str(self.timestamp),
        }

    def as_fields(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "nonce": self.nonce,
            "signature": self.signature.hex(),
            "timestamp": self.timestamp,
        }


class AuthenticatedTransport:
    """Signs requests with a wallet identity before delegating to HTTP.

    Usage:
        signer = PrivateKeySigner(key)
        auth = AuthenticatedTransport(LighterHttpClient(session, url), signer)
        response = await auth.execute("POST", "/orders", body=order)
    """

    def __init__(
        self,
        transport: LighterHttpClient,
        signer: Signer,
        nonce_source: NonceSource | None = None,
        *,
        placement: AuthPlacement = AuthPlacement.HEADERS,
        header_prefix: str = HEADER_PREFIX,
    ) -> None:
        self._transport = transport
        self._signer = signer
        self._nonces = nonce_source or NonceSource()
        self._placement = placement
        self._header_prefix = header_prefix

    @property
    def address(self) -> str:
        return self._signer.address

    @property
    def transport(self) -> LighterHttpClient:
        return self._transport

    @property
    def nonce_source(self) -> NonceSource:
        return self._nonces

    def _stamp(self, payload: Any) -> tuple[str, int, int, bytes]:
        address = self._signer.address
        nonce = self._nonces.next(address)
        timestamp = int(time.time() * 1000)
        return address, nonce, timestamp, canonical_message(payload, nonce, timestamp)

    def sign_request(self, payload: Any) -> SignedEnvelope:
        """Mint a nonce and sign ``payload``.

        Raises:
            SigningError: If the signer cannot sign
        """
        address, nonce, timestamp, message = self._stamp(payload)
        return SignedEnvelope(
            payload=message,
            nonce=nonce,
            signature=self._signer.sign(message),
            address=address,
            timestamp=timestamp,
        )

    async def sign_request_async(self, payload: Any) -> SignedEnvelope:
        """Like ``sign_request`` but keeps the event loop free while signing."""
        address, nonce, timestamp, message = self._stamp(payload)
        return SignedEnvelope(
            payload=message,
            nonce=nonce,
            signature=await sign_async(self._signer, message),
            address=address,
            timestamp=timestamp,
        )

    def _attach(
        self,
        envelope: SignedEnvelope,
        headers: Mapping[str, str] | None,
        body: Any,
    ) -> tuple[dict[str, str], Any]:
        extra = dict(headers or {})
        if self._placement is AuthPlacement.HEADERS:
            extra.update(envelope.as_headers(self._header_prefix))
            return extra, body
        if body is not None and not isinstance(body, Mapping):
            body = {"payload": body}
        return extra, {**(body or {}), BODY_FIELD: envelope.as_fields()}

    async def execute(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
        auth: bool = True,
        deadline: float | None = None,
    ) -> HttpResponse:
        """Send a request, signing it when ``auth`` is True.

        Raises:
            SigningError: Before any network attempt, never retried
            AuthRejected: The venue refused the signature or nonce
            TransportError: Transient failure beyond the retry policy
        """
        if not auth:
            return await self._transport.execute(
                method, path, body=body, headers=headers, deadline=deadline
            )

        last_nonce: int | None = None

        async def prepare() -> tuple[dict[str, str], Any]:
            nonlocal last_nonce
            envelope = await self.sign_request_async(body)
            last_nonce = envelope.nonce
            return self._attach(envelope, headers, body)

        try:
            return await self._transport.send(method, path, prepare, deadline=deadline)
        except AuthRejected as err:
            err.nonce = last_nonce
            _LOGGER.warning(
                "%s %s rejected by venue (status %d, nonce %s): %s",
                method,
                path,
                err.status,
                last_nonce,
                err.message,
            )
            raise
        except LighterClientError as err:
            err.nonce = last_nonce
            raise

    async def get(self, path: str, *, auth: bool = True) -> Any:
        return (await self.execute("GET", path, auth=auth)).body

    async def post(self, path: str, body: Any = None, *, auth: bool = True) -> Any:
        return (await self.execute("POST", path, body=body, auth=auth)).body

    async def sync_nonce(self, account_index: int, api_key_index: int) -> int:
        """Pin the nonce sequence to the venue's next expected nonce."""
        data = await self._transport.get(
            f"/nextNonce?account_index={account_index}&api_key_index={api_key_index}"
        )
        try:
            nonce = int(data["nonce"])
        except (KeyError, TypeError, ValueError) as err:
            raise DecodeError("nextNonce response has no nonce", raw=data) from err
        self._nonces.synchronise(self.address, nonce)
        _LOGGER.info("Synchronised nonce for %s at %d", self.address, nonce)
        return nonce
