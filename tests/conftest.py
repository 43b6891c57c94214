from __future__ import annotations

import hashlib
import logging
import socket
import threading
from typing import TYPE_CHECKING, Callable, Iterable, Iterator, Union

import pytest

from minisip.exceptions import SIPTimeout
from minisip.sip import CallHandle, ReceivedMessage, SIPUserAgent


if TYPE_CHECKING:
    from types import TracebackType


_logger = logging.getLogger(__name__)


USER = "620"
PASSWORD = "s3cr3t"
SERVER_HOST = "fritz.box"
SERVER_IP = "192.168.178.1"
CLIENT_IP = "192.168.178.20"
PEER = (SERVER_IP, 5060)

REALM = "fritz.box"
NONCE = "3B5D7F9A1C3E5F70"

CALLER_NUMBER = "0301234567"
INVITE_CALL_ID = "5C7A9E1B3D5F7A9C@192.168.178.1"
INVITE_CSEQ = 42

SDP_BODY = (
    "v=0\r\n"
    "o=user 1234 1234 IN IP4 192.168.178.1\r\n"
    "s=call\r\n"
    "c=IN IP4 192.168.178.1\r\n"
    "t=0 0\r\n"
    "m=audio 7078 RTP/AVP 8 0 101\r\n"
)


def md5(s: str) -> str:
    return hashlib.md5(s.encode("utf-8")).hexdigest()


def sip_text(*lines: str, body: str = "") -> bytes:
    """Join the start line and headers of a SIP message, as a FRITZ!Box would send it."""
    return ("\r\n".join(lines) + "\r\n\r\n" + body).encode("utf-8")


def response_to(
    request: ReceivedMessage,
    status: int = 200,
    reason: str = "OK",
    *extra_headers: str,
    to_tag: str = "9F1E2D3C4B5A",
) -> bytes:
    """Build a server response echoing the dialog headers of the given request."""
    return sip_text(
        f"SIP/2.0 {status} {reason}",
        f"Via: {request.headers['Via'].replace(';rport', ';rport=5060')}",
        f"From: {request.headers['From']}",
        f"To: {request.headers['To']};tag={to_tag}",
        f"Call-ID: {request.call_id}",
        f"CSeq: {request.cseq} {request.cseq_method}",
        *extra_headers,
        "User-Agent: FRITZ!OS",
        "Content-Length: 0",
    )


def challenge(request: ReceivedMessage, qop: str | None = None) -> bytes:
    qop_param = f', qop="{qop}"' if qop else ""
    return response_to(
        request,
        401,
        "Unauthorized",
        f'WWW-Authenticate: Digest realm="{REALM}", nonce="{NONCE}"{qop_param}',
    )


def register_ok(request: ReceivedMessage, expires: int = 300) -> bytes:
    contact = request.headers["Contact"]
    return response_to(request, 200, "OK", f"Contact: {contact};expires={expires}")


def server_error(request: ReceivedMessage) -> bytes:
    return response_to(request, 500, "Internal Server Error")


def invite(
    number: str = CALLER_NUMBER,
    call_id: str = INVITE_CALL_ID,
    cseq: int = INVITE_CSEQ,
    display_name: str = "Caller",
) -> bytes:
    return sip_text(
        f"INVITE sip:{USER}@{CLIENT_IP}:5060 SIP/2.0",
        f"Via: SIP/2.0/UDP {SERVER_IP}:5060;branch=z9hG4bK2F5E3A1B7C9D0E1F",
        f'From: "{display_name}" <sip:{number}@{SERVER_HOST}>;tag=abc',
        f"To: <sip:{USER}@{SERVER_HOST}>",
        f"Call-ID: {call_id}",
        f"CSeq: {cseq} INVITE",
        f"Contact: <sip:{number}@{SERVER_IP}:5060;transport=udp>",
        "Max-Forwards: 70",
        "User-Agent: FRITZ!OS",
        "Content-Type: application/sdp",
        f"Content-Length: {len(SDP_BODY.encode('utf-8'))}",
        body=SDP_BODY,
    )


def ack(call: CallHandle, call_id: str | None = None) -> bytes:
    return sip_text(
        f"ACK sip:{USER}@{CLIENT_IP}:5060 SIP/2.0",
        f"Via: SIP/2.0/UDP {SERVER_IP}:5060;branch=z9hG4bK7A8B9C0D1E2F3A4B",
        f'From: "Caller" <sip:{call.number}@{SERVER_HOST}>;tag=abc',
        f"To: <sip:{USER}@{SERVER_HOST}>;tag={call.response_tag}",
        f"Call-ID: {call_id or call.call_id}",
        f"CSeq: {call.cseq} ACK",
        "Content-Length: 0",
    )


Reply = Union[bytes, Exception, Callable[[ReceivedMessage], bytes]]
Inbound = Union[bytes, Exception, Callable[[], bytes]]


class FakeTransport:
    """
    Scripted transport, recording everything the user agent transmits.

    Replies to requests can be raw bytes, exceptions to raise, or callables
    building the reply from the parsed request. When the script runs out,
    every operation times out.
    """

    def __init__(self, replies: Iterable[Reply] = (), inbound: Iterable[Inbound] = ()):
        self.replies: Iterator[Reply] = iter(replies)
        self.inbound: Iterator[Inbound] = iter(inbound)
        self.sent_requests: list[bytes] = []
        self.sent_responses: list[bytes] = []
        self.closed: bool = False

    def script_replies(self, *replies: Reply) -> None:
        self.replies = iter(replies)

    def script_inbound(self, *inbound: Inbound) -> None:
        self.inbound = iter(inbound)

    @property
    def parsed_requests(self) -> list[ReceivedMessage]:
        return [ReceivedMessage.parse(data) for data in self.sent_requests]

    @property
    def parsed_responses(self) -> list[ReceivedMessage]:
        return [ReceivedMessage.parse(data) for data in self.sent_responses]

    def send_request(self, data: bytes) -> bytes:
        self.sent_requests.append(data)
        reply = next(self.replies, None)
        if reply is None:
            raise SIPTimeout("No scripted reply")
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(ReceivedMessage.parse(data))
        return reply

    def receive_request(self) -> tuple[bytes, tuple[str, int]]:
        item = next(self.inbound, None)
        if item is None:
            raise SIPTimeout("No scripted inbound message")
        if isinstance(item, Exception):
            raise item
        if callable(item):
            item = item()
        return item, PEER

    def send_response(self, data: bytes) -> None:
        self.sent_responses.append(data)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def user_agent(transport):
    with SIPUserAgent(USER, PASSWORD, client_ip=CLIENT_IP, transport=transport) as ua:
        yield ua


@pytest.fixture
def registered_agent(user_agent, transport):
    transport.script_replies(challenge, register_ok)
    assert user_agent.register()
    transport.sent_requests.clear()
    return user_agent


class MockServer:
    """Small mock UDP server, answering each received datagram with a scripted reply."""

    def __init__(
        self,
        responder: Callable[[bytes], bytes | None],
        server_address: tuple[str, int] = ("127.0.0.1", 0),
    ):
        self.responder = responder
        self.server_address = server_address
        self.received: list[bytes] = []

        self.socket: socket.socket | None = None
        self.thread: threading.Thread | None = None
        self.stop_event = threading.Event()

    @property
    def address(self) -> tuple[str, int]:
        assert self.socket is not None
        return self.socket.getsockname()

    def start(self):
        self.socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.socket.settimeout(0.05)
        self.socket.bind(self.server_address)
        self.stop_event.clear()
        self.thread = threading.Thread(target=self._run, daemon=True, name="MockServer._run")
        self.thread.start()

    def _run(self):
        assert self.socket is not None
        while not self.stop_event.is_set():
            try:
                data, addr = self.socket.recvfrom(4096)
            except socket.timeout:
                continue
            except OSError:
                break
            self.received.append(data)
            reply = self.responder(data)
            if reply is not None:
                self.socket.sendto(reply, addr)

    def stop(self):
        self.stop_event.set()
        if self.thread is not None:
            self.thread.join()
        if self.socket is not None:
            self.socket.close()

    def __enter__(self):
        self.start()
        return self

    def __exit__(
        self,
        exctype: type[BaseException] | None,
        excinst: BaseException | None,
        exctb: TracebackType | None,
    ) -> None:
        self.stop()
