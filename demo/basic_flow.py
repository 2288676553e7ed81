#!/usr/bin/env python3
"""
Blueprint Protocol v0.1 - Basic Flow Demo

Demonstrates the complete flow of:
1. Signing a blueprint off-line
2. Publishing it to a controller
3. Two operators using it up to its ceiling
4. A third operator being turned away
5. The publisher destroying it

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import time

from blueprints.controller import BlueprintController
from blueprints.dispatch import PayloadDispatcher, pack_payload
from blueprints.errors import CeilingReached
from blueprints.hashing import DomainSeparator
from blueprints.ledger import SQLiteReplayLedger
from blueprints.logging_config import configure_logging
from blueprints.records import Blueprint
from blueprints.signatures import (
    SignatureAlgorithm,
    generate_keypair,
    publisher_id,
    sign_blueprint,
)


GREET = 0x01


def main():
    configure_logging("WARNING")

    print("=" * 60)
    print("Blueprint Protocol v0.1 - Basic Flow Demo")
    print("=" * 60)
    print()

    # Step 1: Publisher key pair
    print("[1] Generating Ed25519 key pair for publisher...")
    private_key, public_key = generate_keypair(SignatureAlgorithm.ED25519)
    publisher = publisher_id(public_key)
    print(f"    Publisher: {publisher[:32]}...")
    print()

    # Step 2: Controller
    print("[2] Starting controller...")
    domain = DomainSeparator(
        name="blueprints-demo",
        version="1",
        network_id=1,
        instance_id="demo-controller-001",
    )
    dispatcher = PayloadDispatcher()
    dispatcher.register(GREET, lambda name, call_data: f"hello {name.decode()} from {call_data.decode()}")
    controller = BlueprintController(domain, SQLiteReplayLedger(":memory:"), dispatcher=dispatcher)
    controller.subscribe(lambda event: print(f"    event: {event}"))
    print(f"    Domain separator: {controller.domain_separator}")
    print()

    # Step 3: Sign a blueprint
    print("[3] Signing blueprint (ceiling 2, valid for one hour)...")
    now = int(time.time())
    blueprint = Blueprint(
        publisher=publisher,
        payload=pack_payload(GREET, b"foo"),
        use_ceiling=2,
        valid_from=now - 1,
        valid_until=now + 3600,
    )
    signed = sign_blueprint(blueprint, private_key, domain)
    print(f"    Blueprint hash: {signed.blueprint_hash}")
    print()

    # Step 4: Publish
    print("[4] Publishing...")
    controller.publish(signed)
    print()

    # Step 5: Operators use it
    for step, operator in ((5, "operator-A"), (6, "operator-B"), (7, "operator-C")):
        print(f"[{step}] {operator} executes the blueprint...")
        try:
            result = controller.execute(signed, operator, operator.encode())
            print(f"    Result: {result}")
        except CeilingReached as exc:
            print(f"    Result: REJECTED ({exc.reason.value})")
        print(f"    Use count: {controller.use_count(signed.blueprint_hash)}")
        print()

    # Step 8: Destroy
    print("[8] Publisher destroys the blueprint...")
    controller.destroy(signed, publisher)
    print(f"    State: {controller.state_of(blueprint).value}")
    print()

    print("=" * 60)
    print("Demo completed successfully!")
    print()
    print("Key principles demonstrated:")
    print("  - Signed once, claimed later without the publisher online")
    print("  - Replay protection keyed by blueprint hash")
    print("  - Use ceiling enforced under the controller lock")
    print("  - Destroy is terminal")
    print("=" * 60)


if __name__ == "__main__":
    main()
