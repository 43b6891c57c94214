"""The SIP user agent of a headless softphone."""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Sequence

from typing_extensions import Self

from minisip.constants import (
    CALL_METHODS,
    DEFAULT_ACK_RETRANSMISSIONS,
    DEFAULT_DEVICE,
    DEFAULT_EXPIRES,
    DEFAULT_LOCAL_HOST,
    DEFAULT_SEND_RETRIES,
    DEFAULT_SERVER_HOST,
    DEFAULT_SIP_PORT,
    DEFAULT_TIMEOUT,
)
from minisip.exceptions import (
    MiniSIPException,
    SIPCallStateError,
    SIPParseError,
    SIPTimeout,
)
from minisip.helpers import get_own_ip

from .auth import DigestAuthenticator
from .call import CallHandle, CallState
from .codec import InviteResponseKind, MessageCodec
from .identity import DialogIdentity, Identity
from .messages import ReceivedMessage, SIPMethod
from .transaction import RegistrationLease, RegistrationPolicy, TransactionEngine
from .transport import SIPTransport, UDPTransport


__all__ = [
    "SIPUserAgent",
]


_logger = logging.getLogger(__name__)


class SIPUserAgent:
    """
    A minimal SIP user agent, registering on a SIP server and answering inbound calls.

    All operations block, and are driven by the caller's application loop,
    which must call :meth:`refresh_registration` periodically and
    :meth:`perceive_call` to wait for inbound calls. Only one call is held at a time.

    Failures never propagate out of the public operations: they are logged,
    reported through the return value, and the exception is kept in :attr:`last_error`.

    :param user: the SIP user (login) on the server.
    :param password: the password for the Digest authentication.
    :param server_host: the address of the SIP server (registrar).
    :param server_port: the SIP port of the server.
    :param client_port: the local SIP port, where inbound requests are received.
    :param local_host: the local address to bind the listening socket to.
    :param client_ip: the IP address advertised in our messages.
        If not provided, it's resolved towards the server before each registration.
    :param device: the device label, used as display name, User-Agent and Server.
    :param allow: the methods listed in the Allow header.
    :param expires: the requested registration lease time, in seconds.
        The server might grant a different one.
    :param timeout: the transport timeout for each datagram, in seconds.
    :param send_retries: how many times the transport sends a request before giving up.
    :param policy: the success matching and lease scheduling policy.
    :param ack_retransmissions: how many times a 200 OK is retransmitted while waiting
        for the ACK of a picked up call.
    :param transport: the transport to use instead of a :class:`UDPTransport`.
    """

    def __init__(  # noqa: PLR0913
        self,
        user: str,
        password: str,
        *,
        server_host: str = DEFAULT_SERVER_HOST,
        server_port: int = DEFAULT_SIP_PORT,
        client_port: int = DEFAULT_SIP_PORT,
        local_host: str = DEFAULT_LOCAL_HOST,
        client_ip: str | None = None,
        device: str = DEFAULT_DEVICE,
        allow: Sequence[str] | str = CALL_METHODS,
        expires: int = DEFAULT_EXPIRES,
        timeout: float = DEFAULT_TIMEOUT,
        send_retries: int = DEFAULT_SEND_RETRIES,
        policy: RegistrationPolicy | None = None,
        ack_retransmissions: int = DEFAULT_ACK_RETRANSMISSIONS,
        transport: SIPTransport | None = None,
    ):
        self._resolve_client_ip: bool = client_ip is None
        self.identity: Identity = Identity(
            user=user,
            password=password,
            client_ip=client_ip or get_own_ip(server_host),
            server_host=server_host,
            server_port=server_port,
            client_port=client_port,
            device=device,
        )
        if isinstance(allow, str):
            allow = [method.strip() for method in allow.split(",") if method.strip()]

        self.transport: SIPTransport = transport or UDPTransport(
            server_host,
            server_port,
            local_host=local_host,
            client_port=client_port,
            timeout=timeout,
            send_retries=send_retries,
        )
        self.codec: MessageCodec = MessageCodec(
            self.identity,
            DigestAuthenticator(user, password, self.identity.auth_uri),
            allow=allow,
        )
        self.engine: TransactionEngine = TransactionEngine(self.codec, self.transport, policy)
        self.ack_retransmissions: int = ack_retransmissions

        self.lease: RegistrationLease = RegistrationLease(expires=expires)
        self._register_dialog: DialogIdentity = DialogIdentity.new(self.identity.client_ip)
        self._call: CallHandle | None = None

        self.last_error: Exception | None = None
        """The error that made the last failed operation fail."""

    @property
    def registered(self) -> bool:
        """Whether the last registration succeeded."""
        return self.lease.registered

    @property
    def call(self) -> CallHandle | None:
        """The inbound call currently held, if any."""
        return self._call

    def _fail(self, action: str, exc: Exception) -> None:
        self.last_error = exc
        message = f"{action} failed: {exc}"
        if _logger.getEffectiveLevel() <= logging.DEBUG:
            _logger.exception(message, exc_info=exc)
        else:
            _logger.error(message)

    def register(self) -> bool:
        """
        Register on the server, authenticating if challenged.

        :return: True if the server confirmed the registration.
        """
        try:
            if self._resolve_client_ip:
                self.identity.client_ip = get_own_ip(self.identity.server_host)
            self.engine.register(self._register_dialog, self.lease)
        except (MiniSIPException, OSError) as e:
            self.lease.lapse()
            self._fail("Registration", e)
            return False
        self.last_error = None
        return True

    def refresh_registration(self) -> bool | None:
        """
        Register again if the lease is due for renewal, or we are not registered.

        :return: the result of :meth:`register`, or None if no registration was needed.
        """
        if self.lease.registered and not self.lease.due:
            return None
        _logger.info("Registration due, registering again")
        return self.register()

    def _receive(self) -> ReceivedMessage:
        data, peer = self.transport.receive_request()
        return ReceivedMessage.parse(data, peer=peer)

    def _respond(self, kind: InviteResponseKind, call: CallHandle) -> None:
        response = self.codec.build_invite_response(kind, call)
        self.transport.send_response(response.serialize())
        _logger.debug(f"Sent {response.status} to call from {call.number!r}")

    def _end_held_call(self, message: ReceivedMessage) -> None:
        call = self._call
        if call is None or message.call_id != call.call_id:
            _logger.debug(f"Ignoring {message.method} for an unknown call")
            return
        if call.active:
            _logger.info(f"Call from {call.number!r} ended by the caller ({message.method})")
            call.advance(CallState.TERMINATED)
        self._call = None

    def perceive_call(self, silent: bool = False) -> CallHandle | None:
        """
        Wait for one inbound message, and start ringing if it's an INVITE.

        The caller is sent a 100 Trying, then a 180 Ringing unless ``silent``,
        e.g. for a number the application is going to reject anyway.
        A CANCEL or BYE of the held call terminates it.

        :param silent: don't send the 180 Ringing.
        :return: the new call, or None if no INVITE was received.
        """
        if not self.registered:
            _logger.warning("Not registered, can't receive calls")
            return None

        try:
            message = self._receive()
        except SIPTimeout:
            return None
        except MiniSIPException as e:
            self._fail("Receiving a request", e)
            return None

        if message.method in (SIPMethod.CANCEL, SIPMethod.BYE):
            self._end_held_call(message)
            return None
        if message.method is not SIPMethod.INVITE:
            return None
        if self._call is not None and self._call.active:
            if message.call_id == self._call.call_id:
                _logger.debug(f"Ignoring retransmitted INVITE from {self._call.number!r}")
                return None
            _logger.warning(f"Dropping held call from {self._call.number!r} for a new INVITE")
            self._call.advance(CallState.TERMINATED)

        call = CallHandle(
            number=message.from_number or "",
            invite=message,
            cseq=message.cseq if message.cseq is not None else 1,
        )
        _logger.info(f"Incoming call from {call.number!r} ({message.from_name or 'unknown'})")
        try:
            call.advance(CallState.TRYING)
            self._respond(InviteResponseKind.TRYING, call)
            if not silent:
                call.advance(CallState.RINGING)
                self._respond(InviteResponseKind.RINGING, call)
        except MiniSIPException as e:
            self._fail(f"Answering the INVITE from {call.number!r}", e)
            self._call = None
            return None
        self._call = call
        return call

    def _held_call(self, call_or_number: CallHandle | str, action: str) -> CallHandle | None:
        call = self._call
        if call is None or not call.matches(call_or_number):
            self._fail(action, SIPCallStateError(f"No held call matches {call_or_number!r}"))
            return None
        return call

    def _await_ack(self, call: CallHandle) -> bool:
        try:
            message = self._receive()
        except SIPTimeout:
            _logger.debug(f"No ACK from {call.number!r} within the timeout")
            return False
        except SIPParseError as e:
            _logger.warning(f"Discarding malformed message while waiting for ACK: {e}")
            return False
        if message.method is SIPMethod.ACK and message.call_id == call.call_id:
            return True
        _logger.debug(f"Expected ACK from {call.number!r}, got {message!r}")
        return False

    def pick_up_call(self, call_or_number: CallHandle | str) -> bool:
        """
        Answer the held call with a 200 OK, and wait for the caller's ACK.

        The 200 OK is retransmitted while the ACK doesn't arrive, and if it never
        does the call is abandoned with a BYE.

        :param call_or_number: the call handle, or the caller number.
        :return: True if the call was established.
        """
        call = self._held_call(call_or_number, "Picking up")
        if call is None:
            return False
        try:
            call.advance(CallState.ANSWERED)
            self._respond(InviteResponseKind.OK, call)
            for retransmission in range(self.ack_retransmissions + 1):
                if self._await_ack(call):
                    call.advance(CallState.ESTABLISHED)
                    _logger.info(f"Call from {call.number!r} established")
                    self.last_error = None
                    return True
                if retransmission < self.ack_retransmissions:
                    self._respond(InviteResponseKind.OK, call)
        except MiniSIPException as e:
            self._fail(f"Picking up the call from {call.number!r}", e)
            if call.state is CallState.ANSWERED:
                _logger.warning(f"Abandoning the half-open call from {call.number!r}")
                self.hang_up(call)
                self.last_error = e
            return False

        _logger.warning(f"No ACK received from {call.number!r}, abandoning the call")
        self.hang_up(call)
        self.last_error = SIPTimeout(f"No ACK received from {call.number!r}")
        return False

    def hang_up(self, call_or_number: CallHandle | str) -> bool:
        """
        Terminate the held call with a BYE.

        The call is terminated locally in any case.

        :param call_or_number: the call handle, or the caller number.
        :return: True if the caller confirmed the BYE with a 200 OK.
        """
        call = self._held_call(call_or_number, "Hanging up")
        if call is None:
            return False
        if not call.active:
            self._fail("Hanging up", SIPCallStateError(f"Call is {call.state.name}"))
            return False

        assert call.call_id is not None
        dialog = DialogIdentity(call_id=call.call_id, tag=call.response_tag, cseq=call.cseq + 1)
        try:
            self.engine.send_control_request(SIPMethod.BYE, dialog, call=call)
        except MiniSIPException as e:
            self._fail(f"Hanging up the call from {call.number!r}", e)
            return False
        else:
            _logger.info(f"Call from {call.number!r} hung up")
            self.last_error = None
            return True
        finally:
            call.advance(CallState.TERMINATED)
            self._call = None

    def close(self) -> None:
        """Release the transport. Held calls are not hung up."""
        self.transport.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exctype: type[BaseException] | None,
        excinst: BaseException | None,
        exctb: TracebackType | None,
    ) -> None:
        self.close()
