"""Control transactions (REGISTER, BYE) and registration lease scheduling."""

from __future__ import annotations

import enum
import logging
import time

from minisip.constants import (
    DEFAULT_EXPIRES,
    DEFAULT_LEAD_FRACTION,
    DEFAULT_LEAD_TIME,
    FATAL_STATUS_CODE,
    MAX_CONTROL_ATTEMPTS,
)
from minisip.exceptions import (
    SIPAuthenticationError,
    SIPParseError,
    SIPServerRejection,
    SIPTransactionExhausted,
    SIPTransportError,
)
from minisip.helpers import slots_dataclass

from .auth import Credentials
from .call import CallHandle
from .codec import MessageCodec
from .identity import DialogIdentity
from .messages import ReceivedMessage, SIPMethod, SIPRequest, SIPStatus
from .transport import SIPTransport


__all__ = [
    "LeaseStrategy",
    "RegistrationPolicy",
    "RegistrationLease",
    "TransactionEngine",
]


_logger = logging.getLogger(__name__)


class LeaseStrategy(enum.Enum):
    """How the next registration is scheduled from the granted lease time."""

    FRACTION = "fraction"
    """Re-register after a fraction of the lease time."""
    LEAD_TIME = "lead_time"
    """Re-register a fixed number of seconds before the lease expires."""


@slots_dataclass(frozen=True)
class RegistrationPolicy:
    """
    How control transactions are matched, and registrations scheduled.

    :param match_tag: whether a 200 OK must also echo our From tag to count as success.
    :param lease: the scheduling strategy for the next registration.
    :param lead_fraction: the fraction of the lease after which to re-register,
        with :attr:`LeaseStrategy.FRACTION`.
    :param lead_time: the seconds before expiry at which to re-register,
        with :attr:`LeaseStrategy.LEAD_TIME`. If the lease is not longer than
        this, the fraction is used instead.
    """

    match_tag: bool = False
    lease: LeaseStrategy = LeaseStrategy.FRACTION
    lead_fraction: float = DEFAULT_LEAD_FRACTION
    lead_time: int = DEFAULT_LEAD_TIME

    def __post_init__(self) -> None:
        if not 0 < self.lead_fraction < 1:
            raise ValueError(f"lead_fraction must be between 0 and 1, got {self.lead_fraction}")
        if self.lead_time < 0:
            raise ValueError(f"lead_time must not be negative, got {self.lead_time}")

    def next_registration(self, expires: int, now: float) -> float:
        """Compute the wall-clock deadline for the next registration."""
        if self.lease is LeaseStrategy.LEAD_TIME and self.lead_time < expires:
            return now + expires - self.lead_time
        return now + int(expires * self.lead_fraction)


@slots_dataclass
class RegistrationLease:
    """The registration state of the user agent."""

    expires: int = DEFAULT_EXPIRES
    """The lease time in seconds, as granted by the server or the configured default."""
    next_registration: float = 0.0
    """Wall-clock time (as in :func:`time.time`) when we should register again."""
    registered: bool = False

    @property
    def due(self) -> bool:
        """Whether it's time to register again."""
        return time.time() >= self.next_registration

    def renew(self, granted_expires: int | None, policy: RegistrationPolicy) -> None:
        """Record a successful registration, with the lease time granted by the server."""
        if granted_expires is not None:
            self.expires = granted_expires
        self.next_registration = policy.next_registration(self.expires, time.time())
        self.registered = True

    def lapse(self) -> None:
        """Record a failed registration."""
        self.registered = False


@slots_dataclass
class _Attempt:
    request: SIPRequest
    cseq: int
    reply: ReceivedMessage | None = None


class TransactionEngine:
    """
    Drives the bounded retry loop of control requests.

    Every attempt renews the Via branch and rebuilds the request, so a new
    challenge or sequence number is taken into account. The loop ends on a
    matching 200 OK, on a fatal server error, or when the attempts are used up.
    No backoff is applied between attempts, other than the transport timeout.

    :param codec: builds the requests.
    :param transport: sends the requests and returns the raw replies.
    :param policy: the success matching and lease scheduling policy.
    :param max_attempts: the maximum number of transmissions per control request.
    """

    def __init__(
        self,
        codec: MessageCodec,
        transport: SIPTransport,
        policy: RegistrationPolicy | None = None,
        max_attempts: int = MAX_CONTROL_ATTEMPTS,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.codec: MessageCodec = codec
        self.transport: SIPTransport = transport
        self.policy: RegistrationPolicy = policy or RegistrationPolicy()
        self.max_attempts: int = max_attempts
        self.credentials: Credentials = Credentials()

    def _build(
        self,
        method: SIPMethod,
        dialog: DialogIdentity,
        *,
        expires: int | None,
        call: CallHandle | None,
    ) -> SIPRequest:
        if method is SIPMethod.REGISTER:
            return self.codec.build_register(
                dialog, self.credentials, expires if expires is not None else DEFAULT_EXPIRES
            )
        if method is SIPMethod.BYE:
            if call is None:
                raise ValueError("A call is required to send a BYE")
            return self.codec.build_bye(call, dialog)
        raise ValueError(f"Unsupported control request method: {method}")

    def _is_success(
        self, reply: ReceivedMessage, method: SIPMethod, cseq: int, dialog: DialogIdentity
    ) -> bool:
        matched = (
            reply.status_code == SIPStatus.OK.code
            and reply.cseq == cseq
            and reply.cseq_method == method.value
            and reply.call_id == dialog.call_id
        )
        if matched and self.policy.match_tag:
            return reply.from_tag == dialog.tag
        return matched

    def send_control_request(
        self,
        method: SIPMethod,
        dialog: DialogIdentity,
        *,
        expires: int | None = None,
        call: CallHandle | None = None,
    ) -> ReceivedMessage:
        """
        Send a REGISTER or BYE request, retrying until it succeeds.

        :param method: the control request method.
        :param dialog: the dialog identifiers. Its branch is renewed for every attempt,
            and its CSeq follows the sequence echoed by the server.
        :param expires: the requested lease time, for REGISTER.
        :param call: the call to terminate, for BYE.
        :return: the matching 200 OK reply.
        :raises SIPServerRejection: if the server answered with a fatal error.
        :raises SIPAuthenticationError: if a REGISTER used up its attempts.
        :raises SIPTransactionExhausted: if a BYE used up its attempts.
        """
        self.credentials.clear()
        last: _Attempt | None = None
        last_error: Exception | None = None
        for attempt_num in range(1, self.max_attempts + 1):
            dialog.new_branch()
            attempt = last = _Attempt(
                request=self._build(method, dialog, expires=expires, call=call),
                cseq=dialog.cseq,
            )
            _logger.debug(f"Sending {method} (attempt {attempt_num}/{self.max_attempts})")
            try:
                raw = self.transport.send_request(attempt.request.serialize())
                attempt.reply = reply = ReceivedMessage.parse(raw)
            except (SIPTransportError, SIPParseError) as e:
                _logger.warning(f"{method} attempt {attempt_num} failed: {e}")
                last_error = e
                continue

            if reply.cseq is not None:
                dialog.follow_cseq(reply.cseq)

            if reply.status_code == FATAL_STATUS_CODE:
                _logger.error(f"Server rejected {method} with status {reply.status_code}")
                raise SIPServerRejection(
                    f"{method} rejected by the server with status {reply.status_code}",
                    request=attempt.request,
                    response=reply,
                )

            if self._is_success(reply, method, attempt.cseq, dialog):
                _logger.debug(f"{method} succeeded at attempt {attempt_num}")
                return reply

            if reply.has_challenge:
                self.credentials = Credentials.from_challenge(reply)
                _logger.debug(
                    f"{method} challenged with status {reply.status_code} "
                    f"in realm {reply.realm!r}"
                )

        exc_cls = SIPAuthenticationError if method is SIPMethod.REGISTER else SIPTransactionExhausted
        assert last is not None
        raise exc_cls(
            f"{method} got no matching 200 OK after {self.max_attempts} attempts",
            request=last.request,
            response=last.reply,
        ) from last_error

    def register(
        self, dialog: DialogIdentity, lease: RegistrationLease
    ) -> ReceivedMessage:
        """
        Register with the server, and renew the lease on success.

        The lease is marked as lapsed if the registration fails, and the error re-raised.
        """
        try:
            reply = self.send_control_request(SIPMethod.REGISTER, dialog, expires=lease.expires)
        except Exception:
            lease.lapse()
            raise
        lease.renew(reply.expires, self.policy)
        _logger.info(
            f"Registered as {self.codec.identity.user!r} on {self.codec.identity.server_host} "
            f"for {lease.expires} seconds"
        )
        return reply
