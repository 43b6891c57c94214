from __future__ import annotations

import re

import pytest

from minisip.exceptions import SIPCallStateError
from minisip.sip import (
    CallHandle,
    CallState,
    DialogIdentity,
    ReceivedMessage,
    generate_call_id,
    generate_response_tag,
    generate_tag,
    generate_uuid,
    generate_via_branch,
)

from .conftest import invite


@pytest.fixture
def call():
    return CallHandle(number="0301234567", invite=ReceivedMessage.parse(invite()))


class TestCallState:
    def test_full_lifecycle(self, call):
        for state in (
            CallState.TRYING,
            CallState.RINGING,
            CallState.ANSWERED,
            CallState.ESTABLISHED,
            CallState.TERMINATED,
        ):
            call.advance(state)
            assert call.state is state

    def test_ringing_is_optional(self, call):
        call.advance(CallState.TRYING)
        call.advance(CallState.ANSWERED)
        assert call.state is CallState.ANSWERED

    @pytest.mark.parametrize("state", [CallState.RINGING, CallState.ANSWERED])
    def test_nothing_before_trying(self, call, state):
        with pytest.raises(SIPCallStateError):
            call.advance(state)
        assert call.state is CallState.IDLE

    def test_never_backwards(self, call):
        call.advance(CallState.TRYING)
        call.advance(CallState.RINGING)
        with pytest.raises(SIPCallStateError):
            call.advance(CallState.TRYING)
        assert call.state is CallState.RINGING

    def test_terminated_is_final(self, call):
        call.advance(CallState.TRYING)
        call.advance(CallState.TERMINATED)
        assert not call.active
        for state in CallState:
            with pytest.raises(SIPCallStateError):
                call.advance(state)

    def test_active(self, call):
        assert not call.active
        call.advance(CallState.TRYING)
        assert call.active

    def test_matches(self, call):
        other = CallHandle(number="0301234567", invite=call.invite)
        assert call.matches("0301234567")
        assert not call.matches("0897654321")
        assert call.matches(call)
        assert not call.matches(other)

    def test_call_id(self, call):
        assert call.call_id == call.invite.call_id


class TestIdentifiers:
    def test_branch(self):
        branch = generate_via_branch()
        assert re.fullmatch(r"z9hG4bK[0-9a-f]{20}", branch)
        assert branch != generate_via_branch()

    def test_tag(self):
        assert 1_000_000_000 <= int(generate_tag()) <= 9_999_999_999

    def test_call_id(self):
        call_id = generate_call_id("192.168.178.20")
        uuid_part, host = call_id.split("@")
        assert host == "192.168.178.20"
        assert uuid_part == uuid_part.upper()
        assert re.fullmatch(r"[0-9A-F]{8}-[0-9A-F]{4}-[0-9A-F]{4}-[0-9A-F]{4}-[0-9A-F]{12}", uuid_part)

    def test_uuid_independent(self):
        assert generate_uuid() != generate_uuid()

    def test_response_tag(self):
        assert generate_response_tag() != generate_response_tag()

    def test_dialog(self):
        dialog = DialogIdentity.new("192.168.178.20", cseq=5)
        branch = dialog.branch
        assert dialog.new_branch() != branch
        assert dialog.branch != branch
        dialog.follow_cseq(9)
        assert dialog.cseq == 10
        assert dialog.call_id.endswith("@192.168.178.20")
