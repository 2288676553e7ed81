"""
Blueprint Protocol v0.1 - Reference Implementation

This package implements an authorization envelope for off-band-signed,
limited-use capability tokens ("blueprints"), including:

- Domain-separated canonical blueprint hashes (SHA-256)
- Ed25519 / ECDSA / RSA-PSS publisher signatures
- Delegated verification for programmatic publishers
- Replay-protection ledger with a destroy sentinel (in-memory or SQLite)
- Publish / use / destroy lifecycle controller
- Type-tagged payload dispatch to pluggable executors

SPDX-License-Identifier: AGPL-3.0-or-later
"""

__version__ = "0.1.0"
__protocol_version__ = "0.1"

from .records import (
    Blueprint,
    SignedBlueprint,
    BlueprintState,
    PublishedBlueprint,
    DestroyedBlueprint,
    UsedBlueprint,
    MAX_USES,
)
from .errors import (
    RejectionReason,
    BlueprintError,
    InvalidHash,
    InvalidSignature,
    NotActive,
    CeilingReached,
    Unauthorized,
    MalformedPayload,
    UnknownType,
    DispatchError,
)
from .hashing import DomainSeparator, compute_blueprint_hash
from .signatures import (
    MAGIC_VALUE,
    INVALID_VALUE,
    DelegatedSigner,
    ForwardingSigner,
    SignatureVerifier,
    generate_keypair,
    publisher_id,
    sign_blueprint,
)
from .ledger import ReplayLedger, InMemoryReplayLedger, SQLiteReplayLedger
from .dispatch import PayloadDispatcher, pack_payload, unpack_payload
from .controller import BlueprintController

__all__ = [
    "Blueprint",
    "SignedBlueprint",
    "BlueprintState",
    "PublishedBlueprint",
    "DestroyedBlueprint",
    "UsedBlueprint",
    "MAX_USES",
    "RejectionReason",
    "BlueprintError",
    "InvalidHash",
    "InvalidSignature",
    "NotActive",
    "CeilingReached",
    "Unauthorized",
    "MalformedPayload",
    "UnknownType",
    "DispatchError",
    "DomainSeparator",
    "compute_blueprint_hash",
    "MAGIC_VALUE",
    "INVALID_VALUE",
    "DelegatedSigner",
    "ForwardingSigner",
    "SignatureVerifier",
    "generate_keypair",
    "publisher_id",
    "sign_blueprint",
    "ReplayLedger",
    "InMemoryReplayLedger",
    "SQLiteReplayLedger",
    "PayloadDispatcher",
    "pack_payload",
    "unpack_payload",
    "BlueprintController",
]
