"""
Intent codec.

Turns a transfer request into the opaque payload handed to the enclave, and
back. Encoding is canonical JSON so that ``decode_intent`` is an exact inverse
of ``encode_intent``; sealing encrypts that JSON to the enclave's public key
with a libsodium sealed box.
"""
import base64
import binascii
import json
import logging
from decimal import Decimal
from typing import Any, Optional, Tuple, Union, TYPE_CHECKING

import nacl.exceptions
import nacl.public
import pydantic

from .exceptions import ValidationError
from .models import Intent, format_amount
from .jobs.exceptions import AlreadyRegisteredError

if TYPE_CHECKING:
    from .jobs.transport import JobProvider

logger = logging.getLogger(__name__)

# Requester secret slot the enclave reads the intent from
DEFAULT_SECRET_SLOT = "1"

KeyLike = Union[str, bytes]


def build_intent(destination: str, amount: Any, vault_reference: str) -> Intent:
    """
    Validate the parts of a transfer request and build an Intent.

    Args:
        destination: Destination-network account identifier
        amount: Amount in whole token units (at most 6 fractional digits)
        vault_reference: Address of the source vault

    Returns:
        Validated Intent

    Raises:
        ValidationError: If any part fails validation
    """
    try:
        return Intent(destination=destination, amount=amount, vaultAddress=vault_reference)
    except pydantic.ValidationError as e:
        errors = e.errors()
        detail = errors[0]["msg"] if errors else str(e)
        raise ValidationError(f"Invalid intent: {detail}")


def encode_intent(intent: Intent) -> str:
    """Canonical JSON form of an intent (sorted keys, compact, amount as string)"""
    return json.dumps(
        {
            "amount": format_amount(intent.amount),
            "destination": intent.destination_account,
            "vaultAddress": intent.vault_reference,
        },
        sort_keys=True,
        separators=(",", ":"),
    )


def encode(
    destination: str,
    amount: Any,
    vault_reference: str,
    enclave_public_key: Optional[KeyLike] = None
) -> str:
    """
    Validate and encode a transfer request into an opaque payload.

    Args:
        destination: Destination-network account identifier
        amount: Amount in whole token units
        vault_reference: Address of the source vault
        enclave_public_key: If given, the canonical JSON is sealed to this key

    Returns:
        Canonical JSON, or a base64 sealed box when a key is supplied

    Raises:
        ValidationError: If the request fails validation
    """
    payload = encode_intent(build_intent(destination, amount, vault_reference))
    if enclave_public_key is not None:
        return seal_payload(payload, enclave_public_key)
    return payload


def decode_intent(payload: Union[str, bytes], enclave_private_key: Optional[KeyLike] = None) -> Intent:
    """
    Decode a payload produced by ``encode`` back into an Intent.

    Also accepts the loose shape older clients send, where ``amount`` is a
    JSON number.

    Args:
        payload: Canonical JSON, or a sealed box when ``enclave_private_key`` is given
        enclave_private_key: Key used to open a sealed payload

    Raises:
        ValidationError: If the payload cannot be opened, parsed or validated
    """
    if enclave_private_key is not None:
        payload = open_payload(payload, enclave_private_key)
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")

    try:
        data = json.loads(payload, parse_float=Decimal)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Intent payload is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise ValidationError(f"Intent payload must be a JSON object, got {type(data).__name__}")

    missing = [key for key in ("destination", "amount", "vaultAddress") if data.get(key) in (None, "")]
    if missing:
        raise ValidationError(f"Intent must contain destination, amount, vaultAddress (missing: {', '.join(missing)})")

    return build_intent(data["destination"], data["amount"], data["vaultAddress"])


def _decode_key(key: KeyLike) -> bytes:
    if isinstance(key, bytes) and len(key) == nacl.public.PrivateKey.SIZE:
        return key
    try:
        raw = base64.b64decode(key, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise ValidationError(f"Enclave key must be 32 raw bytes or base64: {e}")
    if len(raw) != nacl.public.PrivateKey.SIZE:
        raise ValidationError(f"Enclave key must decode to 32 bytes, got {len(raw)}")
    return raw


def generate_enclave_keypair() -> Tuple[str, str]:
    """
    Generate a keypair for sealing intents.

    Returns:
        Tuple of (private_key_b64, public_key_b64)
    """
    private_key = nacl.public.PrivateKey.generate()
    return (
        base64.b64encode(bytes(private_key)).decode("ascii"),
        base64.b64encode(bytes(private_key.public_key)).decode("ascii"),
    )


def seal_payload(payload: Union[str, bytes], enclave_public_key: KeyLike) -> str:
    """Encrypt a payload so only the holder of the enclave private key can read it"""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    box = nacl.public.SealedBox(nacl.public.PublicKey(_decode_key(enclave_public_key)))
    return base64.b64encode(box.encrypt(payload)).decode("ascii")


def open_payload(sealed: Union[str, bytes], enclave_private_key: KeyLike) -> str:
    """
    Decrypt a sealed payload.

    Raises:
        ValidationError: If the payload is not a sealed box for this key
    """
    box = nacl.public.SealedBox(nacl.public.PrivateKey(_decode_key(enclave_private_key)))
    try:
        ciphertext = base64.b64decode(sealed, validate=True)
        return box.decrypt(ciphertext).decode("utf-8")
    except (binascii.Error, ValueError, nacl.exceptions.CryptoError) as e:
        raise ValidationError(f"Failed to open sealed intent: {e}")


def register_intent(
    provider: "JobProvider",
    payload: str,
    slot: str = DEFAULT_SECRET_SLOT
) -> bool:
    """
    Register an encoded intent as a requester secret with a job provider.

    Providers that treat requester secrets as immutable reject a second push
    to the same slot; that outcome is not an error, the existing registration
    is used.

    Returns:
        True if the secret was newly stored, False if it already existed
    """
    try:
        provider.push_secret(slot, payload)
    except AlreadyRegisteredError:
        logger.warning("Requester secret %s already exists, reusing existing secret", slot)
        return False
    logger.debug("Requester secret %s registered", slot)
    return True
