"""
Tests for payload framing and executor dispatch.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import pytest

from blueprints.dispatch import PayloadDispatcher, pack_payload, unpack_payload
from blueprints.errors import DispatchError, MalformedPayload, UnknownType


class TestPayloadFraming:
    """Tests for the one-byte type tag framing."""

    def test_pack_prefixes_tag(self):
        assert pack_payload(0x01, b"foo") == b"\x01foo"

    def test_unpack_splits_tag(self):
        assert unpack_payload(b"\x01foo") == (0x01, b"foo")

    def test_tag_only_payload(self):
        """A single byte is a tag with an empty remainder."""
        assert unpack_payload(b"\x7f") == (0x7F, b"")

    def test_empty_payload_rejected(self):
        with pytest.raises(MalformedPayload):
            unpack_payload(b"")

    def test_remainder_passed_through_unmodified(self):
        data = bytes(range(256))
        assert unpack_payload(pack_payload(0xFF, data)) == (0xFF, data)

    @pytest.mark.parametrize("tag", [-1, 256, "1", True])
    def test_invalid_tag_rejected(self, tag):
        with pytest.raises(ValueError):
            pack_payload(tag, b"")


class TestPayloadDispatcher:
    """Tests for the executor registry."""

    def test_dispatch_to_registered_executor(self, dispatcher, executed):
        assert dispatcher.dispatch(0x01, b"foo", b"bar") == b"foobar"
        assert executed == [(b"foo", b"bar")]

    def test_unknown_tag_rejected(self, dispatcher):
        with pytest.raises(UnknownType) as exc_info:
            dispatcher.dispatch(0x02, b"foo")
        assert exc_info.value.type_tag == 0x02

    def test_unregistered_tag_rejected(self, dispatcher):
        dispatcher.unregister(0x01)
        assert not dispatcher.is_registered(0x01)
        with pytest.raises(UnknownType):
            dispatcher.dispatch(0x01, b"foo")

    def test_duplicate_registration_refused(self, dispatcher):
        with pytest.raises(ValueError):
            dispatcher.register(0x01, lambda remainder, call_data: None)

    def test_replace_registration(self, dispatcher):
        dispatcher.register(0x01, lambda remainder, call_data: "replaced", replace=True)
        assert dispatcher.dispatch(0x01, b"") == "replaced"

    def test_executor_failure_wrapped(self):
        dispatcher = PayloadDispatcher()

        def failing(remainder, call_data):
            raise RuntimeError("boom")

        dispatcher.register(0x03, failing)

        with pytest.raises(DispatchError) as exc_info:
            dispatcher.dispatch(0x03, b"")
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_dispatch_payload(self, dispatcher):
        assert dispatcher.dispatch_payload(b"\x01ab", b"c") == b"abc"

    def test_dispatch_empty_payload_rejected(self, dispatcher, executed):
        with pytest.raises(MalformedPayload):
            dispatcher.dispatch_payload(b"")
        assert executed == []
