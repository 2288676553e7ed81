#!/usr/bin/env python3
"""
Blueprint Protocol v0.1 - Command Line Signing Client

Usage:
    blueprints keygen --output <file> [--algorithm Ed25519]
    blueprints domain
    blueprints hash --blueprint <file>
    blueprints sign --blueprint <file> --key <file> [--output <file>]
    blueprints verify --signed <file>

The domain is read from the BLUEPRINTS_* environment variables and can be
overridden with --app-name, --app-version, --network-id and --instance-id.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import argparse
import json
import sys
from dataclasses import replace
from typing import Optional

from .config import load_settings
from .errors import BlueprintError
from .logging_config import configure_logging
from .records import Blueprint, SignedBlueprint
from .signatures import (
    SignatureAlgorithm,
    SignatureVerifier,
    generate_keypair,
    load_private_key_pem,
    private_key_to_pem,
    publisher_id,
    sign_blueprint,
)


def load_json(path: str) -> dict:
    """Load JSON from file."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def save_json(data: dict, path: str):
    """Save JSON to file."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def _domain(args):
    settings = load_settings()
    overrides = {
        "app_name": args.app_name,
        "app_version": args.app_version,
        "network_id": args.network_id,
        "instance_id": args.instance_id,
    }
    settings = replace(settings, **{k: v for k, v in overrides.items() if v is not None})
    return settings.domain()


def cmd_keygen(args):
    """Generate a key pair and print the publisher identity."""
    private_key, public_key = generate_keypair(SignatureAlgorithm(args.algorithm))

    with open(args.output, "wb") as f:
        f.write(private_key_to_pem(private_key))

    print(publisher_id(public_key))
    print(f"Private key saved to: {args.output}", file=sys.stderr)
    return 0


def cmd_domain(args):
    """Print the domain separator."""
    print(_domain(args).digest())
    return 0


def cmd_hash(args):
    """Print the canonical hash a publisher must sign."""
    blueprint = Blueprint.from_dict(load_json(args.blueprint))
    verifier = SignatureVerifier(_domain(args))
    print(verifier.hash_blueprint(blueprint))
    return 0


def cmd_sign(args):
    """Sign a blueprint with a PEM private key."""
    blueprint = Blueprint.from_dict(load_json(args.blueprint))

    with open(args.key, "rb") as f:
        private_key = load_private_key_pem(f.read())

    if publisher_id(private_key.public_key()) != blueprint.publisher:
        print("✗ Key does not match the blueprint publisher", file=sys.stderr)
        return 1

    signed = sign_blueprint(blueprint, private_key, _domain(args))

    if args.output:
        save_json(signed.to_dict(), args.output)
        print(f"Signed blueprint saved to: {args.output}", file=sys.stderr)
    else:
        print(json.dumps(signed.to_dict(), indent=2))
    return 0


def cmd_verify(args):
    """Verify a signed blueprint issued by a key holder."""
    signed = SignedBlueprint.from_dict(load_json(args.signed))
    verifier = SignatureVerifier(_domain(args))

    try:
        blueprint_hash = verifier.verify(signed)
    except BlueprintError as exc:
        print(f"✗ {exc.reason.value}: {exc}")
        return 1

    print(f"✓ VALID {blueprint_hash}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="blueprints",
        description="Sign and verify blueprint capability tokens",
    )
    parser.add_argument("--app-name")
    parser.add_argument("--app-version")
    parser.add_argument("--network-id", type=int)
    parser.add_argument("--instance-id")
    parser.add_argument("--log-level", default=None)

    subparsers = parser.add_subparsers(dest="command", required=True)

    keygen = subparsers.add_parser("keygen", help="Generate a publisher key pair")
    keygen.add_argument("--output", required=True, help="PEM file for the private key")
    keygen.add_argument(
        "--algorithm",
        default=SignatureAlgorithm.ED25519.value,
        choices=[a.value for a in SignatureAlgorithm],
    )
    keygen.set_defaults(func=cmd_keygen)

    domain = subparsers.add_parser("domain", help="Print the domain separator")
    domain.set_defaults(func=cmd_domain)

    hash_cmd = subparsers.add_parser("hash", help="Print a blueprint's canonical hash")
    hash_cmd.add_argument("--blueprint", required=True)
    hash_cmd.set_defaults(func=cmd_hash)

    sign = subparsers.add_parser("sign", help="Sign a blueprint")
    sign.add_argument("--blueprint", required=True)
    sign.add_argument("--key", required=True)
    sign.add_argument("--output")
    sign.set_defaults(func=cmd_sign)

    verify = subparsers.add_parser("verify", help="Verify a signed blueprint")
    verify.add_argument("--signed", required=True)
    verify.set_defaults(func=cmd_verify)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    settings = load_settings()
    configure_logging(args.log_level or settings.log_level, json_format=settings.log_json)

    try:
        return args.func(args)
    except (OSError, ValueError) as exc:
        print(f"✗ {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
