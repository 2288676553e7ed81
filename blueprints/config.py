"""
Blueprint Protocol v0.1 - Configuration

Environment-driven settings for a controller deployment: the domain it
signs under, where its replay ledger lives, and logging.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .hashing import DomainSeparator
from .controller import BlueprintController
from .dispatch import PayloadDispatcher
from .ledger import InMemoryReplayLedger, ReplayLedger, SQLiteReplayLedger
from .signatures import DEFAULT_MAX_DELEGATION_DEPTH, SignatureVerifier


# ============================================================
# Environment Variables
# ============================================================

ENV_APP_NAME = "BLUEPRINTS_APP_NAME"
ENV_APP_VERSION = "BLUEPRINTS_APP_VERSION"
ENV_NETWORK_ID = "BLUEPRINTS_NETWORK_ID"
ENV_INSTANCE_ID = "BLUEPRINTS_INSTANCE_ID"
ENV_LEDGER_PATH = "BLUEPRINTS_LEDGER_PATH"  # empty = in-memory
ENV_MAX_DELEGATION_DEPTH = "BLUEPRINTS_MAX_DELEGATION_DEPTH"
ENV_LOG_LEVEL = "BLUEPRINTS_LOG_LEVEL"
ENV_LOG_JSON = "BLUEPRINTS_LOG_JSON"

DEFAULT_APP_NAME = "blueprints"
DEFAULT_APP_VERSION = "1"
DEFAULT_NETWORK_ID = 1
DEFAULT_INSTANCE_ID = "blueprint-controller-001"


def _get_int(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = env.get(name, "")
    if raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _get_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name, "")
    if raw == "":
        return default
    return raw.lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    """Resolved configuration of one controller deployment."""
    app_name: str = DEFAULT_APP_NAME
    app_version: str = DEFAULT_APP_VERSION
    network_id: int = DEFAULT_NETWORK_ID
    instance_id: str = DEFAULT_INSTANCE_ID
    ledger_path: Optional[str] = None
    max_delegation_depth: int = DEFAULT_MAX_DELEGATION_DEPTH
    log_level: str = "INFO"
    log_json: bool = False

    def domain(self) -> DomainSeparator:
        return DomainSeparator(
            name=self.app_name,
            version=self.app_version,
            network_id=self.network_id,
            instance_id=self.instance_id,
        )


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Read settings from ``env`` (the process environment by default)."""
    if env is None:
        env = os.environ

    return Settings(
        app_name=env.get(ENV_APP_NAME) or DEFAULT_APP_NAME,
        app_version=env.get(ENV_APP_VERSION) or DEFAULT_APP_VERSION,
        network_id=_get_int(env, ENV_NETWORK_ID, DEFAULT_NETWORK_ID),
        instance_id=env.get(ENV_INSTANCE_ID) or DEFAULT_INSTANCE_ID,
        ledger_path=env.get(ENV_LEDGER_PATH) or None,
        max_delegation_depth=_get_int(
            env, ENV_MAX_DELEGATION_DEPTH, DEFAULT_MAX_DELEGATION_DEPTH, minimum=1
        ),
        log_level=(env.get(ENV_LOG_LEVEL) or "INFO").upper(),
        log_json=_get_bool(env, ENV_LOG_JSON, False),
    )


def build_ledger(settings: Settings) -> ReplayLedger:
    """SQLite ledger when a path is configured, in-memory otherwise."""
    if settings.ledger_path:
        return SQLiteReplayLedger(settings.ledger_path)
    return InMemoryReplayLedger()


def build_controller(
    settings: Settings,
    dispatcher: Optional[PayloadDispatcher] = None,
) -> BlueprintController:
    """Assemble a controller for the configured deployment."""
    domain = settings.domain()
    verifier = SignatureVerifier(domain, max_delegation_depth=settings.max_delegation_depth)
    return BlueprintController(
        domain,
        build_ledger(settings),
        verifier=verifier,
        dispatcher=dispatcher,
    )
