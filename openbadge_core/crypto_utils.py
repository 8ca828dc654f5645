import nacl.signing
import nacl.encoding
from nacl.exceptions import CryptoError
import multibase
import json
import base64
import binascii
import logging
from collections.abc import Mapping
from dataclasses import replace
from typing import Dict, Any, NamedTuple, Union
from datetime import datetime, timezone

from openbadge_core.constants import CRYPTO_PK, ED25519_KEY_LENGTH, ED25519_MULTICODEC_PREFIX
from openbadge_core.build_openbadge_metadata import (
    OpenBadgeCredential,
    DataIntegrityProof,
    build_credential,
    build_verification_method,
    credential_to_dict,
    format_timestamp,
)

logger = logging.getLogger(__name__)

CredentialLike = Union[OpenBadgeCredential, Mapping]


class KeyPair(NamedTuple):
    """Base64 encoded raw 32 byte Ed25519 keys."""
    private_key: str
    public_key: str


def generate_key_id(issuer_id: str, key_index: int = 1) -> str:
    """
    Generate a unique key identifier for a verification method.

    Args:
        issuer_id (str): The issuer's URL identifier
        key_index (int): Sequential number for the key (default: 1)

    Returns:
        str: Unique key identifier in the format "{issuer_id}#key-{key_index}"

    Example:
        >>> generate_key_id("http://localhost:3000/api/issuers/org1", 1)
        'http://localhost:3000/api/issuers/org1#key-1'
    """
    return f"{issuer_id}#key-{key_index}"


def _decode_key(key_base64: str, label: str) -> bytes:
    try:
        key_bytes = base64.b64decode(key_base64, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise CryptoError(f"{label} is not valid base64") from e
    if len(key_bytes) != ED25519_KEY_LENGTH:
        raise CryptoError(f"{label} must decode to {ED25519_KEY_LENGTH} bytes, got {len(key_bytes)}")
    return key_bytes


def generate_key_pair() -> KeyPair:
    """
    Create a cryptographically secure Ed25519 key pair for signing credentials.

    Uses PyNaCl (libsodium) to draw a random 32 byte seed from the operating system CSPRNG
    and derives the matching public key.

    Returns:
        KeyPair: (private_key, public_key), both base64 encoded raw key bytes

    Note:
        The private key should be stored securely and never exposed in logs or credentials.
        Persisting the pair is the caller's responsibility.
    """
    signing_key = nacl.signing.SigningKey.generate()

    private_key_bytes = signing_key.encode(encoder=nacl.encoding.RawEncoder)
    public_key_bytes = signing_key.verify_key.encode(encoder=nacl.encoding.RawEncoder)

    return KeyPair(
        private_key=base64.b64encode(private_key_bytes).decode('utf-8'),
        public_key=base64.b64encode(public_key_bytes).decode('utf-8'),
    )


def derive_public_key(private_key: str) -> str:
    """
    Derive the base64 public key from a base64 Ed25519 private key.

    Raises:
        CryptoError: If the private key is not base64 or not 32 bytes long
    """
    signing_key = nacl.signing.SigningKey(_decode_key(private_key, "private key"))
    return base64.b64encode(signing_key.verify_key.encode()).decode('utf-8')


def public_key_multibase(public_key: str) -> str:
    """
    Encode a base64 Ed25519 public key as a multibase (base58btc, 'z' prefix) multikey value,
    as used by the ``publicKeyMultibase`` member of a verification method.
    """
    key_bytes = _decode_key(public_key, "public key")
    encoded = multibase.encode('base58btc', ED25519_MULTICODEC_PREFIX + key_bytes)
    return encoded.decode('utf-8') if isinstance(encoded, bytes) else encoded


def public_key_from_multibase(value: str) -> str:
    """Inverse of public_key_multibase(): returns the base64 raw public key."""
    try:
        decoded = multibase.decode(value)
    except ValueError as e:
        raise CryptoError("public key is not valid multibase") from e
    if decoded.startswith(ED25519_MULTICODEC_PREFIX):
        decoded = decoded[len(ED25519_MULTICODEC_PREFIX):]
    if len(decoded) != ED25519_KEY_LENGTH:
        raise CryptoError(f"public key must decode to {ED25519_KEY_LENGTH} bytes, got {len(decoded)}")
    return base64.b64encode(decoded).decode('utf-8')


def build_issuer_verification_method(issuer_id: str, public_key: str, key_index: int = 1) -> Dict[str, Any]:
    """Verification method document an issuer publishes for ``{issuer_id}#key-{n}``."""
    return build_verification_method(
        key_id=generate_key_id(issuer_id, key_index),
        public_key_multibase=public_key_multibase(public_key),
        controller=issuer_id,
    )


def get_current_timestamp() -> str:
    """
    Get the current UTC timestamp in ISO 8601 format.

    Returns:
        str: Current timestamp with millisecond precision and 'Z' suffix
            (e.g., "2025-07-15T14:30:00.000Z")
    """
    return format_timestamp(datetime.now(timezone.utc))


def canonicalize_credential(credential: CredentialLike) -> bytes:
    """
    Serialize a credential to the canonical bytes that are signed and verified.

    Removes any existing proof section, serializes to JSON with sorted keys and compact
    separators, and encodes the result as UTF-8. The signer and the verifier both go
    through this function; its output format must not change.

    Args:
        credential (Union[OpenBadgeCredential, Mapping]): Credential to serialize

    Returns:
        bytes: Canonical UTF-8 JSON of the credential without its proof

    Example:
        >>> canonicalize_credential({"type": ["VerifiableCredential"], "id": "urn:uuid:1"})
        b'{"id":"urn:uuid:1","type":["VerifiableCredential"]}'
    """
    credential_copy = credential_to_dict(credential)
    credential_copy.pop("proof", None)

    canonical_json = json.dumps(credential_copy, sort_keys=True, separators=(',', ':'), ensure_ascii=False)
    return canonical_json.encode('utf-8')


def sign_credential(
    credential: CredentialLike,
    private_key: str,
    verification_method: str
) -> CredentialLike:
    """
    Sign an Open Badge 3.0 credential with an Ed25519 DataIntegrityProof.

    Any proof already present is ignored: the signature always covers the credential
    without its proof, so re-signing replaces the old proof.

    Args:
        credential (Union[OpenBadgeCredential, Mapping]): The credential to sign. Not modified.
        private_key (str): Base64 encoded raw 32 byte Ed25519 private key
        verification_method (str): URI of the key a verifier should use, e.g. "{issuer_id}#key-1"

    Returns:
        Union[OpenBadgeCredential, Dict]: A new credential of the same kind with ``proof`` set

    Raises:
        CryptoError: If the private key is not base64 or not 32 bytes long
    """
    signing_key = nacl.signing.SigningKey(_decode_key(private_key, "private key"))

    message = canonicalize_credential(credential)
    signature = signing_key.sign(message).signature

    proof = DataIntegrityProof(
        verification_method=verification_method,
        proof_value=base64.b64encode(signature).decode('utf-8'),
        created=get_current_timestamp(),
    )
    logger.debug(f"Signed credential with verification method {verification_method}")

    if isinstance(credential, OpenBadgeCredential):
        return replace(credential, proof=proof)

    signed = credential_to_dict(credential)
    signed["proof"] = proof.to_dict()
    return signed


def verify_credential(credential: CredentialLike, public_key: str) -> bool:
    """
    Verify the Ed25519 proof of a signed credential against an issuer public key.

    This never raises: a missing proof, malformed base64, wrong key lengths and bad
    signatures all yield False.

    Args:
        credential (Union[OpenBadgeCredential, Mapping]): Signed credential, possibly untrusted
        public_key (str): Base64 encoded raw 32 byte Ed25519 public key

    Returns:
        bool: True only if the proof is a valid signature by ``public_key``
    """
    try:
        if isinstance(credential, OpenBadgeCredential):
            proof = credential.proof.to_dict() if credential.proof is not None else None
        else:
            proof = credential.get("proof")
        if not proof:
            logger.debug("Credential has no proof section")
            return False

        message = canonicalize_credential(credential)
        signature = base64.b64decode(proof["proofValue"], validate=True)
        verify_key = nacl.signing.VerifyKey(_decode_key(public_key, "public key"))
        verify_key.verify(message, signature)
        return True
    except Exception as e:
        logger.warning(f"Credential verification failed: {type(e).__name__}: {e}")
        return False


def issue_credential(
    credential_id: str,
    badge: Any,
    user: Any,
    organization: Any,
    earned_at: Union[datetime, str],
    private_key: str = None,
    verification_method: str = None,
    base_url: str = None
) -> OpenBadgeCredential:
    """
    Build and sign an Open Badge 3.0 credential in one step.

    Args:
        credential_id (str): Unique identifier for the credential (e.g., "urn:uuid:...")
        badge, user, organization: Records as accepted by build_credential()
        earned_at (Union[datetime, str]): When the badge was earned
        private_key (str, optional): Base64 Ed25519 private key. Defaults to the CRYPTO_PK setting.
        verification_method (str, optional): Defaults to "{issuer_id}#key-1".
        base_url (str, optional): Overrides BACKEND_URL for identifier construction.

    Returns:
        OpenBadgeCredential: The signed credential

    Raises:
        CryptoError: If no private key is available or it is malformed
        ValueError: If the badge alignments cannot be decoded
    """
    private_key = private_key or CRYPTO_PK
    if not private_key:
        raise CryptoError("No private key provided and CRYPTO_PK is not set")

    credential = build_credential(credential_id, badge, user, organization, earned_at, base_url=base_url)
    verification_method = verification_method or generate_key_id(credential.issuer.id, 1)

    signed = sign_credential(credential, private_key, verification_method)
    logger.info(f"Issued credential {credential_id} from {credential.issuer.id}")
    return signed
