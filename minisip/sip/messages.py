"""SIP messages and related structures."""

from __future__ import annotations

import enum
import re
from abc import ABC, abstractmethod
from dataclasses import field as dataclass_field
from typing import Any, Collection

from typing_extensions import Self, override

from minisip.constants import SIP_VERSION, SUPPORTED_SIP_VERSIONS
from minisip.exceptions import SIPParseError, SIPUnsupportedError
from minisip.helpers import CaseInsensitiveDict, SerializableRaw, slots_dataclass
from minisip.structures import SIPURI

from .headers import Headers


__all__ = [
    "SIPMethod",
    "SIPStatus",
    "SIPMessage",
    "SIPRequest",
    "SIPResponse",
    "ReceivedMessage",
    "SUPPORTED_METHODS",
]


class SIPMethod(str, enum.Enum):
    """SIP request methods understood by the user agent."""

    REGISTER = "REGISTER"
    """Register the client's contact address with the registrar."""
    INVITE = "INVITE"
    """Initiate a dialog for establishing a call."""
    ACK = "ACK"
    """Confirm that a final response to an INVITE has been received."""
    BYE = "BYE"
    """Terminate a dialog and end a call."""
    CANCEL = "CANCEL"
    """Cancel a pending request."""

    def __str__(self) -> str:
        return self.value


SUPPORTED_METHODS: frozenset[str] = frozenset(m.value for m in SIPMethod)


class SIPStatus(int, enum.Enum):
    """SIP response status codes sent or consumed by the user agent, with their reason."""

    reason: str

    def __new__(cls, code: int, reason: str) -> SIPStatus:  # noqa: D102
        obj = int.__new__(cls, code)
        obj._value_ = code
        obj.reason = reason
        return obj

    @property
    def code(self) -> int:
        """The numeric status code."""
        return self._value_

    def __str__(self) -> str:
        return f"{self.code} {self.reason}"

    TRYING = (100, "Trying")
    RINGING = (180, "Ringing")
    OK = (200, "OK")
    UNAUTHORIZED = (401, "Unauthorized")
    PROXY_AUTHENTICATION_REQUIRED = (407, "Proxy Authentication Required")
    INTERNAL_SERVER_ERROR = (500, "Internal Server Error")


class SIPMessage(SerializableRaw, ABC):
    """
    Abstract base class for outgoing SIP messages, defined in :rfc:`3261#section-7`.

    :param headers: SIP headers of the message, in wire order.
    :param body: SIP body of the message, if any.
    :param version: SIP version to use in the request line / status line.
    """

    def __init__(
        self,
        headers: Headers,
        body: str | None = None,
        version: str = SIP_VERSION,
    ):
        if version not in SUPPORTED_SIP_VERSIONS:
            raise SIPUnsupportedError(f"Unsupported SIP version: {version}")

        self.version: str = version
        self.headers: Headers = headers
        self.body: str | None = body

    @property
    @abstractmethod
    def start_line(self) -> str:
        """Start line of the SIP message."""

    def __str__(self) -> str:
        return f"{self.start_line}\r\n{self.headers}\r\n\r\n{self.body or ''}"

    def serialize(self) -> bytes:  # noqa: D102
        return str(self).encode("utf-8")

    def __bytes__(self) -> bytes:
        return self.serialize()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}> {self.start_line}"


class SIPRequest(SIPMessage):
    """
    SIP requests implementation, as defined in :rfc:`3261#section-7.1`.

    :param method: SIP method of the request.
    :param uri: the Request-URI.
    :param headers: SIP headers of the request.
    :param body: SIP body of the request, if any.
    """

    def __init__(
        self,
        method: SIPMethod,
        uri: SIPURI | str,
        headers: Headers,
        body: str | None = None,
        version: str = SIP_VERSION,
    ):
        super().__init__(headers, body, version)
        self.method: SIPMethod = method
        self.uri: SIPURI | str = uri

    @property
    @override
    def start_line(self) -> str:
        uri = self.uri.serialize(force_brackets=False) if isinstance(self.uri, SIPURI) else self.uri
        return f"{self.method} {uri} {self.version}"


class SIPResponse(SIPMessage):
    """
    SIP responses implementation, as defined in :rfc:`3261#section-7.2`.

    :param status: SIP status of the response.
    :param headers: SIP headers of the response.
    :param body: SIP body of the response, if any.
    """

    def __init__(
        self,
        status: SIPStatus,
        headers: Headers,
        body: str | None = None,
        version: str = SIP_VERSION,
    ):
        super().__init__(headers, body, version)
        self.status: SIPStatus = status

    @property
    @override
    def start_line(self) -> str:
        return f"{self.version} {self.status.code} {self.status.reason}"


_RPORT_RE = re.compile(r"rport=(\d+)")
_CONTACT_URI_RE = re.compile(r"sip:[^>]+")
_EXPIRES_RE = re.compile(r"expires=(\d+)")
_TAG_RE = re.compile(r";\s*tag=([^;\s>]+)")
_DISPLAY_NAME_RE = re.compile(r'"([^"]*)"')
_NUMBER_RE = re.compile(r'sip:([^@"<>;]*)@')
_REALM_RE = re.compile(r'realm="([^"]+)"')
_NONCE_RE = re.compile(r'nonce="([^"]+)"')
_QOP_RE = re.compile(r'qop=(?:"([^"]+)"|([\w-]+))')


def _search(pattern: re.Pattern[str], value: str | None) -> str | None:
    if value is None:
        return None
    match = pattern.search(value)
    if match is None:
        return None
    return next((group for group in match.groups() if group is not None), match.group(0))


@slots_dataclass(frozen=True)
class ReceivedMessage:
    """
    A SIP message received from the peer, parsed into a typed record.

    Parsing is deliberately shallow: the header fields are kept as raw strings,
    and only the values the user agent needs are extracted into derived fields.
    A new record is built on every parse, so no field carries over from a
    previously received message.
    """

    headers: CaseInsensitiveDict[str] = dataclass_field(default_factory=CaseInsensitiveDict)
    """The header fields, by name. The first occurrence of a repeated header wins."""
    fields: tuple[tuple[str, str], ...] = ()
    """All the header fields, in arrival order."""
    status_code: int | None = None
    method: SIPMethod | None = None
    cseq: int | None = None
    cseq_method: str | None = None
    content_length: int = 0
    content: str | None = None
    rport: int | None = None
    contact_uri: str | None = None
    expires: int | None = None
    from_tag: str | None = None
    from_name: str | None = None
    from_number: str | None = None
    realm: str | None = None
    nonce: str | None = None
    qop: str | None = None
    peer: tuple[str, int] | None = None

    @classmethod
    def parse(
        cls,
        data: bytes | str,
        *,
        peer: tuple[str, int] | None = None,
        methods: Collection[str] = SUPPORTED_METHODS,
    ) -> Self:
        """
        Parse a raw SIP message.

        :param data: the raw message. Empty input results in an empty record.
        :param peer: the address the message was received from, if known.
        :param methods: the request methods to recognize in a request line.
            Any other method results in a record without ``method``.
        :return: the parsed message.
        :raises SIPParseError: if a header line or a numeric field is malformed.
        """
        raw: bytes = data if isinstance(data, bytes) else data.encode("utf-8")
        text: str = raw.decode("utf-8", errors="replace")
        lines: list[str] = [line for line in text.split("\r\n") if line.strip()]
        if not lines:
            return cls(peer=peer)

        kwargs: dict[str, Any] = {}
        about: list[str] = lines[0].split(" ")
        if about[0] in SUPPORTED_SIP_VERSIONS and len(about) > 1 and about[1].isdigit():
            kwargs["status_code"] = int(about[1])
        elif about[0] in methods and about[0] in SUPPORTED_METHODS:
            kwargs["method"] = SIPMethod(about[0])
        # tolerate a leading token before the method
        elif len(about) > 1 and about[1] in methods and about[1] in SUPPORTED_METHODS:
            kwargs["method"] = SIPMethod(about[1])

        headers: CaseInsensitiveDict[str] = CaseInsensitiveDict()
        fields: list[tuple[str, str]] = []
        for line in lines[1:]:
            if ": " not in line:
                raise SIPParseError(f"Malformed header line {line!r} in SIP message")
            if "\r" in line or "\n" in line:
                raise SIPParseError(f"Stray line break in header line {line!r}")
            key, value = line.split(": ", 1)
            fields.append((key, value))
            if key not in headers:
                headers[key] = value
            if key.lower() == "content-length":
                break  # the payload is not parsed

        kwargs.update(cls._derive_fields(headers))
        if kwargs["content_length"] >= 1:
            kwargs["content"] = raw[-kwargs["content_length"]:].decode("utf-8", errors="replace")

        return cls(headers=headers, fields=tuple(fields), peer=peer, **kwargs)

    @staticmethod
    def _derive_fields(headers: CaseInsensitiveDict[str]) -> dict[str, Any]:
        derived: dict[str, Any] = {}

        if (cseq := headers.get("CSeq")) is not None:
            sequence, _, cseq_method = cseq.strip().partition(" ")
            if not sequence.isdigit():
                raise SIPParseError(f"Malformed CSeq header: {cseq!r}")
            derived["cseq"] = int(sequence)
            derived["cseq_method"] = cseq_method.strip() or None

        content_length = (headers.get("Content-Length") or "0").strip()
        if not content_length.isdigit():
            raise SIPParseError(f"Malformed Content-Length header: {content_length!r}")
        derived["content_length"] = int(content_length)

        if (rport := _search(_RPORT_RE, headers.get("Via"))) is not None:
            derived["rport"] = int(rport)

        contact = headers.get("Contact")
        derived["contact_uri"] = _search(_CONTACT_URI_RE, contact)
        expires = _search(_EXPIRES_RE, contact)
        if expires is None and (expires_hdr := headers.get("Expires")) is not None:
            expires = expires_hdr.strip() if expires_hdr.strip().isdigit() else None
        derived["expires"] = int(expires) if expires is not None else None

        from_ = headers.get("From")
        derived["from_tag"] = _search(_TAG_RE, from_)
        derived["from_name"] = _search(_DISPLAY_NAME_RE, from_)
        derived["from_number"] = _search(_NUMBER_RE, from_)

        authenticate = headers.get("WWW-Authenticate") or headers.get("Proxy-Authenticate")
        derived["realm"] = _search(_REALM_RE, authenticate)
        derived["nonce"] = _search(_NONCE_RE, authenticate)
        derived["qop"] = _search(_QOP_RE, authenticate)

        return derived

    @property
    def empty(self) -> bool:
        """Whether nothing could be parsed from the raw message."""
        return self.status_code is None and self.method is None and not self.fields

    @property
    def is_response(self) -> bool:
        """Whether this is a response (has a status line)."""
        return self.status_code is not None

    @property
    def is_request(self) -> bool:
        """Whether this is a request with a supported method."""
        return self.method is not None

    @property
    def call_id(self) -> str | None:
        """The Call-ID of the message, if any."""
        return self.headers.get("Call-ID")

    @property
    def has_challenge(self) -> bool:
        """Whether the message carries a Digest challenge (realm and nonce)."""
        return bool(self.realm and self.nonce)

    def get_all(self, name: str) -> list[str]:
        """Get all the values of the given header, in arrival order."""
        return [value for key, value in self.fields if key.lower() == name.lower()]

    def __repr__(self) -> str:
        start = (
            f"{self.status_code}" if self.status_code is not None else f"{self.method}"
        )
        return f"<{self.__class__.__name__}> {start} CSeq={self.cseq} {self.cseq_method}"
