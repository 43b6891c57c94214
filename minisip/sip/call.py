"""Inbound call state tracking."""

from __future__ import annotations

import enum
import logging
from dataclasses import field as dataclass_field

from minisip.exceptions import SIPCallStateError
from minisip.helpers import slots_dataclass

from .identity import generate_response_tag
from .messages import ReceivedMessage


__all__ = [
    "CallState",
    "CallHandle",
]


_logger = logging.getLogger(__name__)


class CallState(enum.IntEnum):
    """The states of an inbound call, in the order they are reached."""

    IDLE = 0
    TRYING = 1
    RINGING = 2
    ANSWERED = 3
    ESTABLISHED = 4
    TERMINATED = 5


_TRANSITIONS: dict[CallState, frozenset[CallState]] = {
    CallState.IDLE: frozenset({CallState.TRYING}),
    CallState.TRYING: frozenset({CallState.RINGING, CallState.ANSWERED, CallState.TERMINATED}),
    CallState.RINGING: frozenset({CallState.ANSWERED, CallState.TERMINATED}),
    CallState.ANSWERED: frozenset({CallState.ESTABLISHED, CallState.TERMINATED}),
    CallState.ESTABLISHED: frozenset({CallState.TERMINATED}),
    CallState.TERMINATED: frozenset(),
}


@slots_dataclass
class CallHandle:
    """
    An inbound call held by the user agent.

    :param number: the caller number, from the INVITE's From header.
    :param invite: the INVITE request that started the call.
    :param response_tag: our tag in the INVITE dialog, added to the To header.
    :param state: the current state of the call.
    :param cseq: the CSeq of the INVITE dialog.
    """

    number: str
    invite: ReceivedMessage
    response_tag: str = dataclass_field(default_factory=generate_response_tag)
    state: CallState = CallState.IDLE
    cseq: int = 1

    @property
    def call_id(self) -> str | None:
        """The Call-ID of the INVITE dialog."""
        return self.invite.call_id

    @property
    def active(self) -> bool:
        """Whether the call was started and not terminated yet."""
        return self.state not in (CallState.IDLE, CallState.TERMINATED)

    def advance(self, state: CallState) -> None:
        """
        Move the call to a new state.

        :raises SIPCallStateError: if the transition is not allowed, e.g. going backwards.
        """
        if state not in _TRANSITIONS[self.state]:
            raise SIPCallStateError(
                f"Invalid call state transition {self.state.name} -> {state.name} "
                f"for call from {self.number!r}"
            )
        _logger.debug(f"Call from {self.number!r}: {self.state.name} -> {state.name}")
        self.state = state

    def matches(self, call: CallHandle | str) -> bool:
        """
        Whether the given handle or caller number refers to this call.

        A call without a caller number can only be matched by its handle.
        """
        if isinstance(call, CallHandle):
            return call is self
        return bool(self.number) and call == self.number
