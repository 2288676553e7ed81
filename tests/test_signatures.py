"""
Tests for publisher signatures and delegated verification.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import pytest
from dataclasses import replace

from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)

from blueprints.errors import InvalidHash, InvalidSignature
from blueprints.records import SignedBlueprint
from blueprints.signatures import (
    INVALID_VALUE,
    MAGIC_VALUE,
    DelegatedSigner,
    ForwardingSigner,
    SignatureAlgorithm,
    SignatureVerifier,
    generate_keypair,
    load_private_key_pem,
    load_publisher_key,
    private_key_to_pem,
    publisher_id,
    sign_blueprint,
    sign_hash,
    verify_key_signature,
)


# Order of the P-256 group
P256_N = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551


@pytest.fixture
def verifier(domain):
    return SignatureVerifier(domain)


class StaticSigner(DelegatedSigner):
    """Programmatic publisher returning a fixed answer."""

    def __init__(self, answer):
        self.answer = answer
        self.queries = []

    def is_valid_signature(self, blueprint_hash, signature=b""):
        self.queries.append(blueprint_hash)
        return self.answer


class ExplodingSigner(DelegatedSigner):
    def is_valid_signature(self, blueprint_hash, signature=b""):
        raise RuntimeError("delegate offline")


class TestKeyGeneration:
    """Tests for key pair generation."""

    @pytest.mark.parametrize("algorithm", list(SignatureAlgorithm))
    def test_generate_keypair(self, algorithm):
        private_key, public_key = generate_keypair(algorithm)
        assert private_key is not None
        assert public_key is not None

    def test_publisher_id_roundtrip(self, keypair):
        _, public_key = keypair
        identity = publisher_id(public_key)
        assert publisher_id(load_publisher_key(identity)) == identity

    def test_non_key_identity_rejected(self):
        with pytest.raises(ValueError):
            load_publisher_key("controller-A")

    def test_private_key_pem_roundtrip(self, keypair):
        private_key, public_key = keypair
        restored = load_private_key_pem(private_key_to_pem(private_key))
        assert publisher_id(restored.public_key()) == publisher_id(public_key)


class TestSignAndVerify:
    """Tests for key-holder signatures."""

    @pytest.mark.parametrize("algorithm", list(SignatureAlgorithm))
    def test_sign_and_verify(self, algorithm, domain, verifier, make_blueprint):
        private_key, public_key = generate_keypair(algorithm)
        blueprint = make_blueprint(publisher=publisher_id(public_key))

        signed = sign_blueprint(blueprint, private_key, domain)

        assert verifier.verify(signed) == signed.blueprint_hash

    def test_rsa_pss_signatures_are_salted(self, domain, verifier, make_blueprint):
        private_key, public_key = generate_keypair(SignatureAlgorithm.RSA_PSS)
        blueprint = make_blueprint(publisher=publisher_id(public_key))

        first = sign_blueprint(blueprint, private_key, domain)
        second = sign_blueprint(blueprint, private_key, domain)

        assert first.signature != second.signature
        assert verifier.verify(first) == verifier.verify(second)

    def test_modified_blueprint_fails_with_invalid_hash(self, keypair, domain, verifier, make_blueprint):
        """Test that mutating any field after signing is caught structurally."""
        private_key, _ = keypair
        signed = sign_blueprint(make_blueprint(), private_key, domain)

        tampered = replace(signed, blueprint=replace(signed.blueprint, use_ceiling=99))

        with pytest.raises(InvalidHash):
            verifier.verify(tampered)

    def test_invalid_hash_short_circuits(self, domain, make_blueprint):
        """Test the publisher is never consulted when the hash mismatches."""
        signer = StaticSigner(MAGIC_VALUE)
        verifier = SignatureVerifier(domain, delegates={"program": signer})
        blueprint = make_blueprint(publisher="program")
        forged = SignedBlueprint(blueprint, "00" * 32, b"")

        with pytest.raises(InvalidHash):
            verifier.verify(forged)
        assert signer.queries == []

    def test_wrong_key_fails(self, domain, verifier, make_blueprint):
        """Test that a signature by another key is rejected."""
        other_private, _ = generate_keypair(SignatureAlgorithm.ED25519)
        signed = sign_blueprint(make_blueprint(), other_private, domain)

        with pytest.raises(InvalidSignature):
            verifier.verify(signed)

    def test_signed_for_other_domain_fails(self, keypair, domain, verifier, make_blueprint):
        """Test a blueprint signed for another deployment is rejected here."""
        private_key, _ = keypair
        other = replace(domain, instance_id="controller-B")
        signed = sign_blueprint(make_blueprint(), private_key, other)

        with pytest.raises(InvalidHash):
            verifier.verify(signed)

    def test_corrupt_signature_fails(self, keypair, domain, verifier, make_blueprint):
        private_key, _ = keypair
        signed = sign_blueprint(make_blueprint(), private_key, domain)

        with pytest.raises(InvalidSignature):
            verifier.verify(replace(signed, signature=b"invalid"))

    def test_unknown_publisher_kind_fails(self, domain, verifier, make_blueprint):
        """Test a publisher that is neither a key nor a delegate is rejected."""
        blueprint = make_blueprint(publisher="nobody")
        signed = SignedBlueprint(blueprint, verifier.hash_blueprint(blueprint), b"")

        with pytest.raises(InvalidSignature):
            verifier.verify(signed)


class TestMalleability:
    """Several valid signatures exist for one (publisher, hash) pair."""

    def test_two_distinct_ecdsa_signatures_both_verify(self, domain, make_blueprint):
        private_key, public_key = generate_keypair(SignatureAlgorithm.ECDSA_P256)
        identity = publisher_id(public_key)
        blueprint = make_blueprint(publisher=identity)
        blueprint_hash = SignatureVerifier(domain).hash_blueprint(blueprint)

        sig1 = sign_hash(private_key, blueprint_hash)
        r, s = decode_dss_signature(sig1)
        sig2 = encode_dss_signature(r, P256_N - s)

        assert sig1 != sig2
        assert verify_key_signature(identity, blueprint_hash, sig1)
        assert verify_key_signature(identity, blueprint_hash, sig2)

    def test_resigning_yields_distinct_valid_signature(self, domain, verifier, make_blueprint):
        private_key, public_key = generate_keypair(SignatureAlgorithm.ECDSA_P256)
        blueprint = make_blueprint(publisher=publisher_id(public_key))

        first = sign_blueprint(blueprint, private_key, domain)
        second = sign_blueprint(blueprint, private_key, domain)

        assert first.signature != second.signature
        assert verifier.verify(first) == verifier.verify(second)


class TestDelegatedVerification:
    """Tests for programmatic publishers."""

    def test_magic_value_accepts(self, domain, make_blueprint):
        verifier = SignatureVerifier(domain, delegates={"program": StaticSigner(MAGIC_VALUE)})
        blueprint = make_blueprint(publisher="program")
        signed = SignedBlueprint(blueprint, verifier.hash_blueprint(blueprint), b"")

        assert verifier.verify(signed) == signed.blueprint_hash

    @pytest.mark.parametrize("answer", [INVALID_VALUE, b"", b"\x16\x26\xba", None, True, "1626ba7e"])
    def test_any_other_answer_rejects(self, domain, make_blueprint, answer):
        """Test only the exact magic value is an acceptance."""
        verifier = SignatureVerifier(domain, delegates={"program": StaticSigner(answer)})
        blueprint = make_blueprint(publisher="program")
        signed = SignedBlueprint(blueprint, verifier.hash_blueprint(blueprint), b"")

        with pytest.raises(InvalidSignature):
            verifier.verify(signed)

    def test_failing_delegate_rejects(self, domain, make_blueprint):
        verifier = SignatureVerifier(domain, delegates={"program": ExplodingSigner()})
        blueprint = make_blueprint(publisher="program")
        signed = SignedBlueprint(blueprint, verifier.hash_blueprint(blueprint), b"")

        with pytest.raises(InvalidSignature):
            verifier.verify(signed)

    def test_forwarding_signer_vouches_for_owner(self, keypair, publisher, domain, make_blueprint):
        """Test a smart-wallet style publisher backed by a key holder."""
        private_key, _ = keypair
        verifier = SignatureVerifier(domain)
        verifier.register_delegate("wallet", ForwardingSigner(publisher, verifier))

        blueprint = make_blueprint(publisher="wallet")
        blueprint_hash = verifier.hash_blueprint(blueprint)
        signed = SignedBlueprint(blueprint, blueprint_hash, sign_hash(private_key, blueprint_hash))

        assert verifier.verify(signed) == blueprint_hash

    def test_forwarding_chain_within_depth(self, keypair, publisher, domain, make_blueprint):
        private_key, _ = keypair
        verifier = SignatureVerifier(domain, max_delegation_depth=3)
        verifier.register_delegate("inner", ForwardingSigner(publisher, verifier))
        verifier.register_delegate("outer", ForwardingSigner("inner", verifier))

        blueprint = make_blueprint(publisher="outer")
        blueprint_hash = verifier.hash_blueprint(blueprint)
        signed = SignedBlueprint(blueprint, blueprint_hash, sign_hash(private_key, blueprint_hash))

        assert verifier.verify(signed) == blueprint_hash

    def test_chain_deeper_than_limit_rejected(self, keypair, publisher, domain, make_blueprint):
        private_key, _ = keypair
        verifier = SignatureVerifier(domain, max_delegation_depth=1)
        verifier.register_delegate("inner", ForwardingSigner(publisher, verifier))
        verifier.register_delegate("outer", ForwardingSigner("inner", verifier))

        blueprint = make_blueprint(publisher="outer")
        blueprint_hash = verifier.hash_blueprint(blueprint)
        signed = SignedBlueprint(blueprint, blueprint_hash, sign_hash(private_key, blueprint_hash))

        with pytest.raises(InvalidSignature):
            verifier.verify(signed)

    def test_delegation_cycle_terminates(self, domain, make_blueprint):
        """Test a publisher delegating to itself is rejected, not recursed forever."""
        verifier = SignatureVerifier(domain)
        verifier.register_delegate("loop", ForwardingSigner("loop", verifier))

        blueprint = make_blueprint(publisher="loop")
        signed = SignedBlueprint(blueprint, verifier.hash_blueprint(blueprint), b"")

        with pytest.raises(InvalidSignature):
            verifier.verify(signed)

    def test_depth_must_be_positive(self, domain):
        with pytest.raises(ValueError):
            SignatureVerifier(domain, max_delegation_depth=0)
