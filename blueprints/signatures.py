"""
Blueprint Protocol v0.1 - Cryptographic Signatures

Implements signing and verification of blueprint hashes for two kinds of
publisher:

- Key holders, identified by their base64 DER public key. Ed25519 is
  recommended; ECDSA-P256/P384 and RSA-PSS are accepted.
- Programmatic publishers, which answer a delegated query
  ``is_valid_signature(hash, signature)`` with a fixed magic value.

Signature bytes are never used as an identity or lookup key: ECDSA admits
several valid signatures for the same (key, hash) pair.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import base64
import hmac
import logging
from abc import ABC, abstractmethod
from contextvars import ContextVar
from enum import Enum
from typing import Optional, Union

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, ec, padding
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.asymmetric.ec import (
    EllipticCurvePrivateKey,
    EllipticCurvePublicKey,
    SECP256R1,
    SECP384R1,
)
from cryptography.hazmat.primitives.asymmetric.rsa import (
    RSAPrivateKey,
    RSAPublicKey,
)
from cryptography.exceptions import (
    InvalidSignature as CryptoInvalidSignature,
    UnsupportedAlgorithm,
)

from .errors import InvalidHash, InvalidSignature
from .hashing import DomainSeparator, compute_blueprint_hash
from .records import Blueprint, SignedBlueprint


logger = logging.getLogger(__name__)

PrivateKey = Union[Ed25519PrivateKey, EllipticCurvePrivateKey, RSAPrivateKey]
PublicKey = Union[Ed25519PublicKey, EllipticCurvePublicKey, RSAPublicKey]

# Delegated verification answers; anything but MAGIC_VALUE is a rejection.
MAGIC_VALUE = bytes.fromhex("1626ba7e")
INVALID_VALUE = bytes.fromhex("ffffffff")

DEFAULT_MAX_DELEGATION_DEPTH = 4

# Nesting level of delegated queries in the current call chain. Shared by
# all verifiers so that chains crossing controller instances are bounded.
_delegation_depth: ContextVar[int] = ContextVar("delegation_depth", default=0)


class SignatureAlgorithm(str, Enum):
    """Acceptable signature algorithms for key-holding publishers."""
    ED25519 = "Ed25519"
    ECDSA_P256 = "ECDSA-P256"
    ECDSA_P384 = "ECDSA-P384"
    RSA_PSS = "RSA-PSS"


def generate_keypair(
    algorithm: SignatureAlgorithm = SignatureAlgorithm.ED25519
) -> tuple[PrivateKey, PublicKey]:
    """
    Generate a new key pair for the specified algorithm.

    Ed25519 is recommended.
    """
    if algorithm == SignatureAlgorithm.ED25519:
        private_key = ed25519.Ed25519PrivateKey.generate()
        return private_key, private_key.public_key()

    elif algorithm == SignatureAlgorithm.ECDSA_P256:
        private_key = ec.generate_private_key(SECP256R1())
        return private_key, private_key.public_key()

    elif algorithm == SignatureAlgorithm.ECDSA_P384:
        private_key = ec.generate_private_key(SECP384R1())
        return private_key, private_key.public_key()

    elif algorithm == SignatureAlgorithm.RSA_PSS:
        from cryptography.hazmat.primitives.asymmetric import rsa
        private_key = rsa.generate_private_key(
            public_exponent=65537,
            key_size=2048,
        )
        return private_key, private_key.public_key()

    else:
        raise ValueError(f"Unsupported algorithm: {algorithm}")


def algorithm_for_key(key: Union[PrivateKey, PublicKey]) -> SignatureAlgorithm:
    """Infer the signature algorithm from a key object."""
    if isinstance(key, (Ed25519PrivateKey, Ed25519PublicKey)):
        return SignatureAlgorithm.ED25519

    if isinstance(key, (EllipticCurvePrivateKey, EllipticCurvePublicKey)):
        if isinstance(key.curve, SECP256R1):
            return SignatureAlgorithm.ECDSA_P256
        if isinstance(key.curve, SECP384R1):
            return SignatureAlgorithm.ECDSA_P384
        raise ValueError(f"Unsupported curve: {key.curve.name}")

    if isinstance(key, (RSAPrivateKey, RSAPublicKey)):
        return SignatureAlgorithm.RSA_PSS

    raise ValueError(f"Unsupported key type: {type(key).__name__}")


def publisher_id(public_key: PublicKey) -> str:
    """
    Derive the publisher identity of a key holder.

    The identity is the base64-encoded DER SubjectPublicKeyInfo.
    """
    der_bytes = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return base64.b64encode(der_bytes).decode("ascii")


def load_publisher_key(identity: str) -> PublicKey:
    """Load the public key behind a key-holder publisher identity."""
    try:
        der_bytes = base64.b64decode(identity, validate=True)
        return serialization.load_der_public_key(der_bytes)
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise ValueError("Publisher is not a key identity") from exc


def private_key_to_pem(private_key: PrivateKey) -> bytes:
    """Serialize a private key to unencrypted PKCS8 PEM."""
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def load_private_key_pem(pem: bytes) -> PrivateKey:
    """Load an unencrypted PEM private key."""
    return serialization.load_pem_private_key(pem, password=None)


def sign_data(private_key: PrivateKey, data: bytes) -> bytes:
    """Sign data with the private key, using the key's algorithm."""
    algorithm = algorithm_for_key(private_key)

    if algorithm == SignatureAlgorithm.ED25519:
        return private_key.sign(data)

    elif algorithm in (SignatureAlgorithm.ECDSA_P256, SignatureAlgorithm.ECDSA_P384):
        return private_key.sign(data, ec.ECDSA(hashes.SHA256()))

    else:
        return private_key.sign(
            data,
            padding.PSS(
                mgf=padding.MGF1(hashes.SHA256()),
                salt_length=padding.PSS.MAX_LENGTH,
            ),
            hashes.SHA256(),
        )


def verify_data(public_key: PublicKey, signature: bytes, data: bytes) -> bool:
    """Verify a signature against data. Returns True if valid."""
    try:
        algorithm = algorithm_for_key(public_key)

        if algorithm == SignatureAlgorithm.ED25519:
            public_key.verify(signature, data)

        elif algorithm in (SignatureAlgorithm.ECDSA_P256, SignatureAlgorithm.ECDSA_P384):
            public_key.verify(signature, data, ec.ECDSA(hashes.SHA256()))

        else:
            public_key.verify(
                signature,
                data,
                padding.PSS(
                    mgf=padding.MGF1(hashes.SHA256()),
                    salt_length=padding.PSS.AUTO,
                ),
                hashes.SHA256(),
            )

        return True

    except (CryptoInvalidSignature, ValueError):
        return False


def sign_hash(private_key: PrivateKey, blueprint_hash: str) -> bytes:
    """Sign the raw 32 bytes of a blueprint hash."""
    return sign_data(private_key, bytes.fromhex(blueprint_hash))


def sign_blueprint(
    blueprint: Blueprint,
    private_key: PrivateKey,
    domain: DomainSeparator,
) -> SignedBlueprint:
    """
    Sign a blueprint for the controller identified by ``domain``.

    The signature is computed over the canonical, domain-separated hash.
    """
    blueprint_hash = compute_blueprint_hash(blueprint, domain)
    return SignedBlueprint(
        blueprint=blueprint,
        blueprint_hash=blueprint_hash,
        signature=sign_hash(private_key, blueprint_hash),
    )


def verify_key_signature(identity: str, blueprint_hash: str, signature: bytes) -> bool:
    """
    Check that the key holder ``identity`` signed ``blueprint_hash``.

    Returns False for identities that are not loadable public keys.
    """
    try:
        public_key = load_publisher_key(identity)
    except ValueError:
        return False

    try:
        return verify_data(public_key, signature, bytes.fromhex(blueprint_hash))
    except ValueError:
        # unsupported curve or malformed hash
        return False


class DelegatedSigner(ABC):
    """
    A programmatic publisher.

    Implementations answer whether a blueprint hash is authorized by them,
    returning MAGIC_VALUE to accept and anything else to reject.
    """

    @abstractmethod
    def is_valid_signature(self, blueprint_hash: str, signature: bytes = b"") -> bytes:
        """Return MAGIC_VALUE iff ``blueprint_hash`` is authorized."""


class SignatureVerifier:
    """
    Verifies that a SignedBlueprint was authorized by its publisher.

    Publishers found in the delegate directory are programmatic and are
    queried; every other publisher is treated as a key identity.
    """

    def __init__(
        self,
        domain: DomainSeparator,
        delegates: Optional[dict[str, DelegatedSigner]] = None,
        max_delegation_depth: int = DEFAULT_MAX_DELEGATION_DEPTH,
    ):
        if max_delegation_depth < 1:
            raise ValueError("max_delegation_depth must be at least 1")
        self.domain = domain
        self.max_delegation_depth = max_delegation_depth
        self._delegates: dict[str, DelegatedSigner] = dict(delegates or {})

    def register_delegate(self, address: str, signer: DelegatedSigner) -> None:
        """Declare ``address`` a programmatic publisher answered by ``signer``."""
        self._delegates[address] = signer

    def resolve_delegate(self, address: str) -> Optional[DelegatedSigner]:
        return self._delegates.get(address)

    def hash_blueprint(self, blueprint: Blueprint) -> str:
        return compute_blueprint_hash(blueprint, self.domain)

    def verify(self, signed: SignedBlueprint) -> str:
        """
        Verify a SignedBlueprint and return its blueprint hash.

        Raises InvalidHash if the attached hash does not match the
        recomputed one (the signature is not examined in that case), and
        InvalidSignature if the publisher did not authorize the hash.
        """
        # Step 1: Structural integrity
        expected_hash = self.hash_blueprint(signed.blueprint)
        attached_hash = str(signed.blueprint_hash).encode("utf-8")
        if not hmac.compare_digest(expected_hash.encode("ascii"), attached_hash):
            raise InvalidHash(
                f"Hash mismatch: expected {expected_hash}, got {signed.blueprint_hash}",
                blueprint_hash=expected_hash,
            )

        # Step 2-3: Publisher authorization
        if not self.is_authorized(signed.publisher, expected_hash, signed.signature):
            raise InvalidSignature(
                "Publisher did not authorize this blueprint",
                blueprint_hash=expected_hash,
            )

        return expected_hash

    def is_authorized(self, publisher: str, blueprint_hash: str, signature: bytes) -> bool:
        """Resolve the publisher's verification method and apply it."""
        delegate = self.resolve_delegate(publisher)
        if delegate is not None:
            return self._query_delegate(publisher, delegate, blueprint_hash, signature)
        return verify_key_signature(publisher, blueprint_hash, signature)

    def _query_delegate(
        self,
        publisher: str,
        delegate: DelegatedSigner,
        blueprint_hash: str,
        signature: bytes,
    ) -> bool:
        depth = _delegation_depth.get()
        if depth >= self.max_delegation_depth:
            logger.warning(
                "Delegation depth %d exceeded while verifying %s via %s",
                self.max_delegation_depth, blueprint_hash, publisher,
            )
            return False

        token = _delegation_depth.set(depth + 1)
        try:
            answer = delegate.is_valid_signature(blueprint_hash, signature)
        except Exception:
            # A failing delegate rejects; it never authorizes.
            logger.warning("Delegate %s raised during verification", publisher, exc_info=True)
            return False
        finally:
            _delegation_depth.reset(token)

        return isinstance(answer, bytes) and hmac.compare_digest(answer, MAGIC_VALUE)


class ForwardingSigner(DelegatedSigner):
    """
    Programmatic publisher that vouches for whatever its owner signed.

    Accepts a hash iff the presented signature is a valid authorization
    by ``owner`` under ``verifier``. The owner may itself be programmatic,
    so chains of forwarding signers nest delegated queries.
    """

    def __init__(self, owner: str, verifier: SignatureVerifier):
        self.owner = owner
        self.verifier = verifier

    def is_valid_signature(self, blueprint_hash: str, signature: bytes = b"") -> bytes:
        if self.verifier.is_authorized(self.owner, blueprint_hash, signature):
            return MAGIC_VALUE
        return INVALID_VALUE
