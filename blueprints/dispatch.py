"""
Blueprint Protocol v0.1 - Payload Dispatcher

Payload framing is one type-tag byte followed by opaque, type-specific
bytes. The core never interprets the remainder; it hands it, together with
the operator's call data, to the executor registered for the tag.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import logging
import threading
from typing import Any, Callable

from .errors import BlueprintError, DispatchError, MalformedPayload, UnknownType


logger = logging.getLogger(__name__)

# executor(payload_remainder, call_data) -> results
Executor = Callable[[bytes, bytes], Any]


def _check_tag(type_tag: int) -> None:
    if isinstance(type_tag, bool) or not isinstance(type_tag, int) or not 0 <= type_tag <= 0xFF:
        raise ValueError(f"type tag must be an int in 0..255, got {type_tag!r}")


def pack_payload(type_tag: int, data: bytes = b"") -> bytes:
    """Frame ``data`` behind a one-byte type tag."""
    _check_tag(type_tag)
    return bytes([type_tag]) + bytes(data)


def unpack_payload(payload: bytes) -> tuple[int, bytes]:
    """
    Split a payload into (type_tag, remainder).

    The remainder is passed through unmodified. An empty payload carries no
    tag and is rejected with MalformedPayload.
    """
    if len(payload) < 1:
        raise MalformedPayload("Payload must contain at least a type tag byte")
    return payload[0], bytes(payload[1:])


class PayloadDispatcher:
    """
    Registry of executors keyed by payload type tag.

    Registration is explicit; an unregistered tag is a rejection, never a
    silent no-op.
    """

    def __init__(self):
        self._executors: dict[int, Executor] = {}
        self._lock = threading.Lock()

    def register(self, type_tag: int, executor: Executor, replace: bool = False) -> None:
        _check_tag(type_tag)
        if not callable(executor):
            raise TypeError("executor must be callable")

        with self._lock:
            if type_tag in self._executors and not replace:
                raise ValueError(f"Executor already registered for type tag {type_tag:#04x}")
            self._executors[type_tag] = executor

    def unregister(self, type_tag: int) -> None:
        with self._lock:
            self._executors.pop(type_tag, None)

    def is_registered(self, type_tag: int) -> bool:
        return type_tag in self._executors

    def dispatch(self, type_tag: int, remainder: bytes, call_data: bytes = b"") -> Any:
        """
        Run the executor registered for ``type_tag``.

        Raises UnknownType if none is registered. Executor failures surface
        as DispatchError with the original exception chained.
        """
        executor = self._executors.get(type_tag)
        if executor is None:
            raise UnknownType(type_tag)

        try:
            return executor(remainder, call_data)
        except BlueprintError:
            raise
        except Exception as exc:
            logger.warning("Executor for type tag %#04x failed: %s", type_tag, exc)
            raise DispatchError(f"Executor for type tag {type_tag:#04x} failed: {exc}") from exc

    def dispatch_payload(self, payload: bytes, call_data: bytes = b"") -> Any:
        """Unpack a framed payload and dispatch it."""
        type_tag, remainder = unpack_payload(payload)
        return self.dispatch(type_tag, remainder, call_data)
