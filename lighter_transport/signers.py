"""Wallet-style signers for authenticated venue requests.

Every signer exposes a checksummed ``address`` and ``sign(message)``. Messages
are hashed EIP-191 style (``"\\x19Ethereum Signed Message:\\n" + len`` prefix,
then keccak256) before signing, so a signed API payload can never be replayed
as a raw transaction.

The set of signers is closed: ``PrivateKeySigner``, ``MnemonicSigner`` and
``ExternalProcessSigner``. Code accepting any of them types against the
``Signer`` protocol or the ``AnySigner`` union.
"""

from __future__ import annotations

import asyncio
import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import ValidationError, is_address, to_checksum_address

from .errors import SigningError

_LOGGER = logging.getLogger(__name__)

# secp256k1 group order; valid private keys are in [1, N).
_SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

HD_PATH_TEMPLATE = "m/44'/60'/0'/0/{index}"
SIGNATURE_LENGTH = 65


@dataclass(frozen=True)
class Signature:
    """65-byte recoverable ECDSA signature (r || s || v)."""

    value: bytes

    def hex(self) -> str:
        return "0x" + self.value.hex()

    def __str__(self) -> str:
        return self.hex()

    @classmethod
    def from_hex(cls, text: str) -> Signature:
        """Parse a ``0x``-prefixed or bare hex signature."""
        raw = text.strip()
        if raw[:2].lower() == "0x":
            raw = raw[2:]
        try:
            value = bytes.fromhex(raw)
        except ValueError as err:
            raise SigningError("Signature is not valid hex") from err
        if len(value) != SIGNATURE_LENGTH:
            raise SigningError(
                f"Signature must be {SIGNATURE_LENGTH} bytes, got {len(value)}"
            )
        return cls(value)


@runtime_checkable
class Signer(Protocol):
    """Signing capability bound to one identity."""

    @property
    def address(self) -> str: ...

    def sign(self, message: bytes) -> Signature: ...


def _check_message(message: bytes) -> bytes:
    if not isinstance(message, (bytes, bytearray)):
        raise SigningError("Message to sign must be bytes")
    if not message:
        raise SigningError("Refusing to sign an empty message")
    return bytes(message)


def _parse_private_key(private_key: str | bytes) -> bytearray:
    if isinstance(private_key, str):
        text = private_key.strip()
        if text[:2].lower() == "0x":
            text = text[2:]
        try:
            raw = bytearray.fromhex(text)
        except ValueError as err:
            raise SigningError("Invalid private key format") from err
    elif isinstance(private_key, (bytes, bytearray)):
        raw = bytearray(private_key)
    else:
        raise SigningError("Private key must be a hex string or bytes")

    if len(raw) != 32:
        raise SigningError(f"Private key must be 32 bytes, got {len(raw)}")
    if not 0 < int.from_bytes(raw, "big") < _SECP256K1_N:
        raise SigningError("Private key is outside the secp256k1 range")
    return raw


def recover_address(message: bytes, signature: Signature) -> str:
    """Recover the checksummed address that produced ``signature``."""
    signable = encode_defunct(primitive=_check_message(message))
    try:
        recovered = Account.recover_message(signable, signature=signature.value)
    except Exception as err:  # eth_keys raises its own BadSignature hierarchy
        raise SigningError(f"Signature recovery failed: {err}") from err
    return to_checksum_address(recovered)


def verify(message: bytes, signature: Signature, address: str) -> bool:
    """Check that ``signature`` over ``message`` was made by ``address``."""
    try:
        return recover_address(message, signature) == to_checksum_address(address)
    except SigningError:
        return False


class PrivateKeySigner:
    """Signer holding a raw secp256k1 private key in memory."""

    def __init__(self, private_key: str | bytes) -> None:
        self._key = _parse_private_key(private_key)
        try:
            account = Account.from_key(bytes(self._key))
        except (ValueError, ValidationError) as err:
            self.dispose()
            raise SigningError(f"Invalid private key: {err}") from err
        self._address: str = to_checksum_address(account.address)
        self._disposed = False

    @property
    def address(self) -> str:
        return self._address

    def sign(self, message: bytes) -> Signature:
        if self._disposed:
            raise SigningError("Signer has been disposed")
        signable = encode_defunct(primitive=_check_message(message))
        try:
            signed = Account.sign_message(signable, private_key=bytes(self._key))
        except (ValueError, ValidationError) as err:
            raise SigningError(f"Failed to sign: {err}") from err
        return Signature(bytes(signed.signature))

    def dispose(self) -> None:
        """Zero the key bytes; the signer is unusable afterwards."""
        for i in range(len(self._key)):
            self._key[i] = 0
        self._disposed = True

    def __enter__(self) -> PrivateKeySigner:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()

    def __repr__(self) -> str:
        return f"PrivateKeySigner(address={self._address!r})"


class MnemonicSigner:
    """Signer derived from a BIP39 mnemonic at ``m/44'/60'/0'/0/{index}``."""

    def __init__(self, mnemonic: str, account_index: int = 0) -> None:
        if not 0 <= account_index < 2**31:
            raise SigningError(f"Account index out of range: {account_index}")

        Account.enable_unaudited_hdwallet_features()
        path = HD_PATH_TEMPLATE.format(index=account_index)
        try:
            account = Account.from_mnemonic(mnemonic, account_path=path)
        except (ValueError, ValidationError) as err:
            raise SigningError(f"Invalid mnemonic: {err}") from err

        self._inner = PrivateKeySigner(bytes(account.key))
        self.account_index = account_index
        _LOGGER.debug("Derived signer %s at %s", self._inner.address, path)

    @property
    def address(self) -> str:
        return self._inner.address

    def sign(self, message: bytes) -> Signature:
        return self._inner.sign(message)

    def dispose(self) -> None:
        self._inner.dispose()

    def __enter__(self) -> MnemonicSigner:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()

    def __repr__(self) -> str:
        return (
            f"MnemonicSigner(address={self.address!r}, "
            f"account_index={self.account_index})"
        )


class ExternalProcessSigner:
    """Signer that delegates to an out-of-process signing program.

    The program receives the raw message on stdin and must print the
    ``0x``-prefixed 65-byte signature on stdout.
    """

    def __init__(
        self,
        command: Sequence[str],
        address: str,
        *,
        timeout: float = 10.0,
        verify_output: bool = True,
    ) -> None:
        if not command:
            raise SigningError("Signer command must not be empty")
        if not is_address(address):
            raise SigningError(f"Invalid signer address: {address!r}")
        self._command = list(command)
        self._address = to_checksum_address(address)
        self._timeout = timeout
        self._verify_output = verify_output

    @property
    def address(self) -> str:
        return self._address

    def sign(self, message: bytes) -> Signature:
        payload = _check_message(message)
        try:
            result = subprocess.run(
                self._command,
                input=payload,
                capture_output=True,
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as err:
            raise SigningError("External signer timed out") from err
        except OSError as err:
            raise SigningError(f"External signer failed to start: {err}") from err
        return self._parse_output(
            payload, result.returncode, result.stdout, result.stderr
        )

    async def sign_async(self, message: bytes) -> Signature:
        """Sign without blocking the event loop while the program runs."""
        payload = _check_message(message)
        try:
            proc = await asyncio.create_subprocess_exec(
                *self._command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as err:
            raise SigningError(f"External signer failed to start: {err}") from err

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(payload), timeout=self._timeout
            )
        except TimeoutError as err:
            proc.kill()
            await proc.wait()
            raise SigningError("External signer timed out") from err
        return self._parse_output(payload, proc.returncode, stdout, stderr)

    def _parse_output(
        self, payload: bytes, returncode: int | None, stdout: bytes, stderr: bytes
    ) -> Signature:
        if returncode != 0:
            detail = stderr.decode("utf-8", "replace").strip()
            raise SigningError(f"External signer exited with {returncode}: {detail}")

        signature = Signature.from_hex(stdout.decode("ascii", "replace"))
        if self._verify_output and not verify(payload, signature, self._address):
            raise SigningError("External signer returned a signature for another key")
        return signature

    def dispose(self) -> None:
        """Nothing is held in process."""

    def __repr__(self) -> str:
        return f"ExternalProcessSigner(address={self._address!r})"


AnySigner = PrivateKeySigner | MnemonicSigner | ExternalProcessSigner


async def sign_async(signer: Signer, message: bytes) -> Signature:
    """Sign from a coroutine.

    Out-of-process signers run through asyncio's subprocess support; in-memory
    signers finish in microseconds and are called directly.
    """
    if isinstance(signer, ExternalProcessSigner):
        return await signer.sign_async(message)
    return signer.sign(message)
