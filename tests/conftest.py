"""
Pytest configuration and shared fixtures.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import sys
from pathlib import Path

# Add the project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from blueprints.controller import BlueprintController
from blueprints.dispatch import PayloadDispatcher, pack_payload
from blueprints.hashing import DomainSeparator
from blueprints.ledger import InMemoryReplayLedger
from blueprints.records import Blueprint
from blueprints.signatures import SignatureAlgorithm, generate_keypair, publisher_id


T0 = 1_700_000_000
T1 = T0 + 3600


class FakeClock:
    """Settable clock returning Unix seconds."""

    def __init__(self, now: int = T0 + 1):
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def domain():
    """Domain of the controller under test."""
    return DomainSeparator(
        name="blueprints-test",
        version="1",
        network_id=1,
        instance_id="controller-A",
    )


@pytest.fixture
def keypair():
    """Ed25519 key pair of the publisher."""
    return generate_keypair(SignatureAlgorithm.ED25519)


@pytest.fixture
def publisher(keypair):
    """Publisher identity of the Ed25519 key pair."""
    _, public_key = keypair
    return publisher_id(public_key)


@pytest.fixture
def make_blueprint(publisher):
    """Factory for blueprints published by the fixture key pair."""
    def _make(**overrides):
        fields = {
            "publisher": publisher,
            "payload": pack_payload(0x01, b"foo"),
            "use_ceiling": 2,
            "valid_from": T0,
            "valid_until": T1,
        }
        fields.update(overrides)
        return Blueprint(**fields)
    return _make


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger():
    return InMemoryReplayLedger()


@pytest.fixture
def executed():
    """Calls received by the 0x01 test executor."""
    return []


@pytest.fixture
def dispatcher(executed):
    """Dispatcher with an echo executor registered for type tag 0x01."""
    dispatcher = PayloadDispatcher()

    def echo(remainder, call_data):
        executed.append((remainder, call_data))
        return remainder + call_data

    dispatcher.register(0x01, echo)
    return dispatcher


@pytest.fixture
def controller(domain, ledger, dispatcher, clock):
    """Controller over an in-memory ledger and a fake clock."""
    return BlueprintController(domain, ledger, dispatcher=dispatcher, clock=clock)
