"""
Blueprint Protocol v0.1 - Domain Separation and Canonical Hashing

Implements the domain separator and the canonical blueprint hash that
publishers sign over. The hash binds every blueprint field plus the
hosting application's name, version, network and instance, so the same
blueprint signed for another deployment never validates here.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import hashlib
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any


# Prefix of the final digest input; keeps blueprint hashes out of the
# domain of any other structure hashed with the same primitive.
HASH_PREFIX = b"\x19\x01"

DOMAIN_TYPE = "BlueprintDomain(string name,string version,uint256 network_id,string instance_id)"
BLUEPRINT_TYPE = (
    "Blueprint(string publisher,bytes payload,uint256 use_ceiling,"
    "uint256 valid_from,uint256 valid_until)"
)


def _serialize_value(value: Any) -> Any:
    """
    Convert a value to JSON-serializable format following canonical rules.

    Rules:
    - Integers as decimal strings (exact beyond the JSON safe range)
    - Bytes as lowercase hex
    - Enums as their value
    """
    if value is None:
        return None

    if isinstance(value, bool):
        return value

    if isinstance(value, int):
        return str(value)

    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()

    if isinstance(value, Enum):
        return value.value

    if isinstance(value, (list, tuple)):
        return [_serialize_value(item) for item in value]

    if isinstance(value, dict):
        return {k: _serialize_value(v) for k, v in value.items()}

    return value


def require_text(name: str, value: Any) -> None:
    """Reject anything that is not a non-empty, UTF-8 encodable string."""
    if not isinstance(value, str) or not value:
        raise ValueError(f"{name} must be a non-empty string")
    try:
        value.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise ValueError(f"{name} is not valid UTF-8 text") from exc


def _sort_keys_recursive(obj: Any) -> Any:
    """Recursively sort dictionary keys alphabetically."""
    if isinstance(obj, dict):
        return {k: _sort_keys_recursive(v) for k, v in sorted(obj.items())}
    if isinstance(obj, list):
        return [_sort_keys_recursive(item) for item in obj]
    return obj


def canonical_serialize(obj: dict) -> bytes:
    """
    Serialize a mapping to canonical JSON bytes.

    Canonical format:
    1. JSON format
    2. UTF-8 encoding
    3. Keys sorted alphabetically (recursive)
    4. No whitespace between elements
    5. No trailing newline
    """
    if not isinstance(obj, dict):
        raise TypeError(f"Cannot serialize {type(obj)}")

    obj = _sort_keys_recursive(_serialize_value(obj))

    json_str = json.dumps(
        obj,
        separators=(",", ":"),
        ensure_ascii=False,
        sort_keys=True,
    )
    try:
        return json_str.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise ValueError("Cannot serialize text that is not valid UTF-8") from exc


def compute_hash(obj: dict) -> str:
    """SHA-256 of the canonical serialization, as lowercase hex."""
    return hashlib.sha256(canonical_serialize(obj)).hexdigest()


@dataclass(frozen=True)
class DomainSeparator:
    """
    Context tag of one deployed controller instance.

    Two controllers that differ in any of these fields produce different
    blueprint hashes for identical blueprints.
    """
    name: str
    version: str
    network_id: int
    instance_id: str

    def __post_init__(self):
        require_text("name", self.name)
        require_text("version", self.version)
        require_text("instance_id", self.instance_id)
        if isinstance(self.network_id, bool) or not isinstance(self.network_id, int):
            raise TypeError("network_id must be an int")

    def digest(self) -> str:
        """Return the domain separator as a SHA-256 hex string."""
        return compute_hash({
            "type": DOMAIN_TYPE,
            "name": self.name,
            "version": self.version,
            "network_id": self.network_id,
            "instance_id": self.instance_id,
        })


def blueprint_struct_hash(blueprint) -> str:
    """
    Hash the blueprint fields without the domain.

    The payload enters as its full SHA-256 digest, so payloads that share
    a prefix or a length never collide.
    """
    return compute_hash({
        "type": BLUEPRINT_TYPE,
        "publisher": blueprint.publisher,
        "payload": hashlib.sha256(blueprint.payload).hexdigest(),
        "use_ceiling": blueprint.use_ceiling,
        "valid_from": blueprint.valid_from,
        "valid_until": blueprint.valid_until,
    })


def compute_blueprint_hash(blueprint, domain: DomainSeparator) -> str:
    """
    Compute the canonical, domain-separated blueprint hash.

    This is the value publishers sign and the key of the replay ledger.
    Returns the hash as a lowercase hexadecimal string.
    """
    hasher = hashlib.sha256()
    hasher.update(HASH_PREFIX)
    hasher.update(bytes.fromhex(domain.digest()))
    hasher.update(bytes.fromhex(blueprint_struct_hash(blueprint)))
    return hasher.hexdigest()
