"""
Blueprint Protocol v0.1 - Lifecycle Controller

Implements publish, use and destroy on top of the signature verifier and
the replay ledger, and answers delegated verification queries for the
blueprints this instance attests itself.

Every operation:
- Verifies the SignedBlueprint before any side effect
- Runs as one serialized unit under the controller lock
- Either completes (including its notification) or changes nothing

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Optional

from .dispatch import PayloadDispatcher, unpack_payload
from .errors import BlueprintError, CeilingReached, DispatchError, NotActive, Unauthorized
from .hashing import DomainSeparator, compute_blueprint_hash
from .ledger import ReplayLedger
from .records import (
    Blueprint,
    BlueprintState,
    DestroyedBlueprint,
    LifecycleEvent,
    PublishedBlueprint,
    SignedBlueprint,
    UsedBlueprint,
)
from .signatures import (
    INVALID_VALUE,
    MAGIC_VALUE,
    DelegatedSigner,
    SignatureVerifier,
)


logger = logging.getLogger(__name__)

Listener = Callable[[LifecycleEvent], None]


class BlueprintController(DelegatedSigner):
    """
    Blueprint lifecycle controller.

    The replay ledger is passed in explicitly. It also keeps the self-signing
    registry, so attestations live exactly as long as the use counts do.

    The controller is itself a programmatic publisher: blueprints whose
    publisher is ``address`` are accepted iff this instance attested their
    hash through _self_sign().
    """

    def __init__(
        self,
        domain: DomainSeparator,
        ledger: ReplayLedger,
        verifier: Optional[SignatureVerifier] = None,
        dispatcher: Optional[PayloadDispatcher] = None,
        clock: Optional[Callable[[], int]] = None,
        address: Optional[str] = None,
    ):
        """
        Initialize the controller.

        Args:
            domain: Domain separator of this deployment
            ledger: Replay-protection store
            verifier: Signature verifier; built for ``domain`` if omitted
            dispatcher: Executor registry used by execute()
            clock: Returns the current time in Unix seconds
            address: Publisher identity of this instance (defaults to the
                     domain's instance_id)
        """
        if verifier is not None and verifier.domain != domain:
            raise ValueError("verifier is bound to a different domain")

        self.domain = domain
        self.ledger = ledger
        self.verifier = verifier or SignatureVerifier(domain)
        self.dispatcher = dispatcher or PayloadDispatcher()
        self.address = address or domain.instance_id
        self._clock = clock or (lambda: int(time.time()))
        self._in_flight: set[str] = set()
        self._listeners: list[Listener] = []
        self._lock = threading.RLock()

        self.verifier.register_delegate(self.address, self)

    # ------------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------------

    @property
    def domain_separator(self) -> str:
        """The domain separator signing clients must reproduce."""
        return self.domain.digest()

    def hash_blueprint(self, blueprint: Blueprint) -> str:
        return compute_blueprint_hash(blueprint, self.domain)

    def use_count(self, blueprint_hash: str) -> int:
        return self.ledger.use_count(blueprint_hash)

    def state_of(self, blueprint: Blueprint) -> BlueprintState:
        """Derive the lifecycle state of a blueprint from the ledger."""
        blueprint_hash = self.hash_blueprint(blueprint)
        if self.ledger.is_destroyed(blueprint_hash):
            return BlueprintState.DESTROYED

        count = self.ledger.use_count(blueprint_hash)
        if count >= blueprint.use_ceiling:
            return BlueprintState.EXHAUSTED
        if count == 0:
            return BlueprintState.FRESH
        return BlueprintState.ACTIVE

    def subscribe(self, listener: Listener) -> None:
        """Register an observer of lifecycle notifications."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    def publish(self, signed: SignedBlueprint) -> None:
        """
        Announce a verified blueprint.

        Purely observational: no ledger state is written, and publishing is
        not a precondition for use.
        """
        with self._operation("publish"):
            blueprint_hash = self.verifier.verify(signed)
            self._emit(PublishedBlueprint(signed.blueprint, blueprint_hash))

    def destroy(self, signed: SignedBlueprint, caller: str) -> None:
        """
        Permanently exhaust a blueprint.

        Only the publisher may destroy; a valid signature proves authorship
        at signing time, not the identity of the current caller.
        """
        with self._operation("destroy"):
            blueprint_hash = self.verifier.verify(signed)

            if caller != signed.publisher:
                raise Unauthorized(
                    "Only the publisher may destroy a blueprint",
                    blueprint_hash=blueprint_hash,
                )

            self.ledger.destroy(blueprint_hash)
            self._emit(DestroyedBlueprint(blueprint_hash))

    def validate_use(self, signed: SignedBlueprint) -> str:
        """
        Uncounted use: check that the blueprint may be used right now.

        Records nothing; intended for callers that keep their own usage
        accounting. Returns the blueprint hash.
        """
        with self._operation("validate_use"):
            return self._check_use(signed)

    def use(
        self,
        signed: SignedBlueprint,
        caller: str,
        effect: Optional[Callable[[], Any]] = None,
    ) -> Any:
        """
        Counted use.

        Runs ``effect`` once every check passed, then records the use and
        notifies observers. If the effect fails nothing is recorded and the
        error propagates (as DispatchError unless it is a BlueprintError).
        """
        with self._operation("use"):
            blueprint_hash = self._check_use(signed)

            # The enclosing use has not recorded yet, so its slot is taken.
            if blueprint_hash in self._in_flight:
                raise CeilingReached(
                    "Blueprint is already being used by an enclosing operation",
                    blueprint_hash=blueprint_hash,
                )

            result = None
            if effect is not None:
                self._in_flight.add(blueprint_hash)
                try:
                    result = effect()
                except BlueprintError as exc:
                    exc.blueprint_hash = exc.blueprint_hash or blueprint_hash
                    raise
                except Exception as exc:
                    raise DispatchError(
                        f"Delegated effect failed: {exc}",
                        blueprint_hash=blueprint_hash,
                    ) from exc
                finally:
                    self._in_flight.discard(blueprint_hash)

            self.ledger.record_use(blueprint_hash)
            self._emit(UsedBlueprint(caller, blueprint_hash))
            return result

    def execute(self, signed: SignedBlueprint, caller: str, call_data: bytes = b"") -> Any:
        """
        Counted use whose effect is the executor registered for the
        payload's type tag. Returns the executor's results.
        """
        def effect():
            type_tag, remainder = unpack_payload(signed.blueprint.payload)
            return self.dispatcher.dispatch(type_tag, remainder, call_data)

        return self.use(signed, caller, effect)

    # ------------------------------------------------------------------
    # Delegated verification
    # ------------------------------------------------------------------

    def is_valid_signature(self, blueprint_hash: str, signature: bytes = b"") -> bytes:
        """
        Answer MAGIC_VALUE iff this instance attested ``blueprint_hash``.

        The signature argument is part of the query protocol and ignored.
        """
        if self.ledger.is_attested(self.address, blueprint_hash):
            return MAGIC_VALUE
        return INVALID_VALUE

    def _self_sign(
        self,
        blueprint: Blueprint,
        domain: Optional[DomainSeparator] = None,
    ) -> SignedBlueprint:
        """
        Attest a blueprint published by this instance.

        ``domain`` selects the controller that will consume the blueprint
        (this one by default). Attestations are never withdrawn.
        """
        if blueprint.publisher != self.address:
            raise Unauthorized("Can only attest blueprints published by this instance")

        blueprint_hash = compute_blueprint_hash(blueprint, domain or self.domain)
        self.ledger.attest(self.address, blueprint_hash)

        logger.info("Attested blueprint %s as %s", blueprint_hash, self.address)
        return SignedBlueprint(blueprint=blueprint, blueprint_hash=blueprint_hash, signature=b"")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_use(self, signed: SignedBlueprint) -> str:
        # Step 1: Verify hash and signature
        blueprint_hash = self.verifier.verify(signed)

        # Step 2: Validity window, evaluated once
        now = self._clock()
        if not signed.blueprint.is_active_at(now):
            raise NotActive(
                f"Blueprint not active at {now} "
                f"(window {signed.blueprint.valid_from}..{signed.blueprint.valid_until})",
                blueprint_hash=blueprint_hash,
            )

        # Step 3: Replay protection
        self.ledger.check_usable(blueprint_hash, signed.blueprint.use_ceiling)
        return blueprint_hash

    @contextmanager
    def _operation(self, name: str):
        with self._lock:
            try:
                yield
            except BlueprintError as exc:
                logger.warning(
                    "%s rejected: %s (%s)",
                    name, exc.reason.value, exc.blueprint_hash or "-",
                )
                raise

    def _emit(self, event: LifecycleEvent) -> None:
        logger.info("%s %s", type(event).__name__, event.blueprint_hash)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                # observers never fail the operation
                logger.exception("Lifecycle listener failed on %s", type(event).__name__)
