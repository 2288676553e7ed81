"""
Blueprint Protocol v0.1 - Record Types

Implements the Blueprint capability descriptor, the SignedBlueprint
envelope presented by operators, and the lifecycle notifications
emitted by the controller.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from .hashing import require_text


# Largest representable use count; a destroyed blueprint's count is set here.
MAX_USES = 2**256 - 1


class BlueprintState(str, Enum):
    """Observable lifecycle state of a blueprint hash."""
    FRESH = "fresh"
    ACTIVE = "active"
    EXHAUSTED = "exhausted"
    DESTROYED = "destroyed"


def _require_uint(name: str, value: Any, maximum: int = MAX_USES) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if value < 0 or value > maximum:
        raise ValueError(f"{name} out of range: {value}")


def _hex_to_bytes(name: str, value: Any) -> bytes:
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a hex string")
    text = value[2:] if value.startswith("0x") else value
    try:
        return bytes.fromhex(text)
    except ValueError as exc:
        raise ValueError(f"{name} is not valid hex") from exc


@dataclass(frozen=True)
class Blueprint:
    """
    A capability descriptor signed once by its publisher.

    Fields:
        publisher: identity of the authorizing principal. For key holders
            this is the base64 DER public key (see signatures.publisher_id);
            for programmatic publishers it is the entity's address.
        payload: opaque bytes; first byte is a type tag, the rest is
            interpreted only by the executor registered for that tag.
        use_ceiling: maximum number of successful counted uses (0 = unusable).
        valid_from / valid_until: Unix seconds; use is permitted strictly
            between the two.
    """
    publisher: str
    payload: bytes
    use_ceiling: int
    valid_from: int
    valid_until: int

    def __post_init__(self):
        require_text("publisher", self.publisher)
        if not isinstance(self.payload, bytes):
            raise TypeError("payload must be bytes")
        _require_uint("use_ceiling", self.use_ceiling)
        _require_uint("valid_from", self.valid_from)
        _require_uint("valid_until", self.valid_until)

    def is_active_at(self, now: int) -> bool:
        """Strict window check: valid_from < now < valid_until."""
        return self.valid_from < now < self.valid_until

    def to_dict(self) -> dict:
        return {
            "publisher": self.publisher,
            "payload": self.payload.hex(),
            "use_ceiling": self.use_ceiling,
            "valid_from": self.valid_from,
            "valid_until": self.valid_until,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Blueprint":
        try:
            return cls(
                publisher=data["publisher"],
                payload=_hex_to_bytes("payload", data["payload"]),
                use_ceiling=int(data["use_ceiling"]),
                valid_from=int(data["valid_from"]),
                valid_until=int(data["valid_until"]),
            )
        except KeyError as exc:
            raise ValueError(f"Missing blueprint field: {exc.args[0]}") from exc


@dataclass(frozen=True)
class SignedBlueprint:
    """
    A Blueprint with its precomputed canonical hash and the publisher's
    signature over that hash.

    The attached hash is checked against a fresh recomputation before
    anything else; see SignatureVerifier.verify.
    """
    blueprint: Blueprint
    blueprint_hash: str  # SHA-256 hex
    signature: bytes

    @property
    def publisher(self) -> str:
        return self.blueprint.publisher

    def to_dict(self) -> dict:
        """JSON-safe wire form; payload and signature are hex encoded."""
        return {
            "blueprint": self.blueprint.to_dict(),
            "hash": self.blueprint_hash,
            "signature": self.signature.hex(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SignedBlueprint":
        try:
            blueprint = Blueprint.from_dict(data["blueprint"])
            blueprint_hash = data["hash"]
            signature = _hex_to_bytes("signature", data["signature"])
        except KeyError as exc:
            raise ValueError(f"Missing signed blueprint field: {exc.args[0]}") from exc

        if not isinstance(blueprint_hash, str):
            raise ValueError("hash must be a hex string")

        return cls(
            blueprint=blueprint,
            blueprint_hash=blueprint_hash.lower(),
            signature=signature,
        )


@dataclass(frozen=True)
class PublishedBlueprint:
    """Emitted when a verified blueprint is announced."""
    blueprint: Blueprint
    blueprint_hash: str


@dataclass(frozen=True)
class DestroyedBlueprint:
    """Emitted when the publisher permanently exhausts a blueprint."""
    blueprint_hash: str


@dataclass(frozen=True)
class UsedBlueprint:
    """Emitted after a successful counted use."""
    caller: str
    blueprint_hash: str


LifecycleEvent = Union[PublishedBlueprint, DestroyedBlueprint, UsedBlueprint]
