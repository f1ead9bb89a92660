"""Authenticated transport and streaming core for the Lighter trading venue."""

__version__ = "0.1.0"

from .auth import AuthenticatedTransport, SignedEnvelope
from .config import AuthPlacement, ClientConfig, RetryPolicy
from .errors import (
    AuthRejected,
    ConfigError,
    DecodeError,
    HandshakeError,
    LighterClientError,
    RateLimited,
    ResponseError,
    SigningError,
    StreamClosed,
    StreamError,
    TransportConnectionError,
    TransportError,
    TransportTimeout,
)
from .http import HttpResponse, LighterHttpClient, create_session
from .log import init_logging, teardown_logging
from .nonce import NonceSource
from .protocol import StreamEvent, SubscriptionIntent
from .session import StreamSession, StreamState
from .signers import (
    AnySigner,
    ExternalProcessSigner,
    MnemonicSigner,
    PrivateKeySigner,
    Signature,
    Signer,
    recover_address,
    sign_async,
    verify,
)
from .sink import BufferSink, CallbackSink, EventSink, NullSink, TransportEvent

__all__ = [
    "AnySigner",
    "AuthPlacement",
    "AuthRejected",
    "AuthenticatedTransport",
    "BufferSink",
    "CallbackSink",
    "ClientConfig",
    "ConfigError",
    "DecodeError",
    "EventSink",
    "ExternalProcessSigner",
    "HandshakeError",
    "HttpResponse",
    "LighterClientError",
    "LighterHttpClient",
    "MnemonicSigner",
    "NonceSource",
    "NullSink",
    "PrivateKeySigner",
    "RateLimited",
    "ResponseError",
    "RetryPolicy",
    "Signature",
    "SignedEnvelope",
    "Signer",
    "SigningError",
    "StreamClosed",
    "StreamError",
    "StreamEvent",
    "StreamSession",
    "StreamState",
    "SubscriptionIntent",
    "TransportConnectionError",
    "TransportError",
    "TransportEvent",
    "TransportTimeout",
    "__version__",
    "create_session",
    "init_logging",
    "recover_address",
    "sign_async",
    "teardown_logging",
    "verify",
]
