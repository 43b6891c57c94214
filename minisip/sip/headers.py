"""SIP headers classes."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import field as dataclass_field
from typing import ClassVar, Iterator, Sequence, overload

from typing_extensions import override

from minisip.helpers import slots_dataclass
from minisip.structures import SIPAddress


__all__ = [
    "Header",
    "RawHeader",
    "StrHeader",
    "IntHeader",
    "ListHeader",
    "ViaHeader",
    "FromToHeader",
    "FromHeader",
    "ToHeader",
    "ContactHeader",
    "CallIDHeader",
    "CSeqHeader",
    "AllowHeader",
    "AllowEventsHeader",
    "SupportedHeader",
    "ExpiresHeader",
    "ContentLengthHeader",
    "MaxForwardsHeader",
    "UserAgentHeader",
    "ServerHeader",
    "AuthorizationHeader",
    "Headers",
]


_LINE_BREAK_RE = re.compile(r"[\r\n]")


class Header(ABC):
    """Abstract base dataclass for SIP headers."""

    _name: ClassVar[str]

    @property
    def name(self) -> str:
        """The name of the header."""
        return self._name

    @abstractmethod
    def serialize(self) -> str:
        """Serialize the header value to a string."""

    def __str__(self) -> str:
        """Serialize the entire header to a string."""
        return f"{self.name}: {self.serialize()}"


@slots_dataclass
class RawHeader(Header):
    """A header with any name, whose value is kept verbatim (e.g. echoed from a request)."""

    header: str
    value: str

    @property
    @override
    def name(self) -> str:
        return self.header

    def serialize(self) -> str:  # noqa: D102
        return self.value


@slots_dataclass
class StrHeader(Header, ABC):
    """Abstract base dataclass for headers with a single string value."""

    value: str

    def serialize(self) -> str:  # noqa: D102
        return self.value


@slots_dataclass
class IntHeader(Header, ABC):
    """Abstract base dataclass for headers with a single integer value."""

    value: int

    def serialize(self) -> str:  # noqa: D102
        return str(self.value)

    def __int__(self) -> int:
        return self.value


@slots_dataclass
class ListHeader(Header, ABC):
    """Abstract base dataclass for headers with a comma-separated list of values."""

    _separator: ClassVar[str] = ", "

    values: list[str]

    def serialize(self) -> str:  # noqa: D102
        return self._separator.join(self.values)


@slots_dataclass
class ViaHeader(Header):
    """Via header, as described in :rfc:`3261#section-20.42`."""

    _name = "Via"

    address: str
    port: int | None
    branch: str
    rport: bool = True
    transport: str = "SIP/2.0/UDP"

    def serialize(self) -> str:  # noqa: D102
        host = f"{self.address}:{self.port}" if self.port else self.address
        rport = ";rport" if self.rport else ""
        return f"{self.transport} {host};branch={self.branch}{rport}"


@slots_dataclass
class FromToHeader(Header, ABC):
    """Abstract base dataclass for From and To headers."""

    address: SIPAddress | str
    tag: str | None = None

    def serialize(self) -> str:  # noqa: D102
        if self.tag:
            return f"{self.address};tag={self.tag}"
        return str(self.address)


@slots_dataclass
class FromHeader(FromToHeader):
    """From header, as described in :rfc:`3261#section-20.20`."""

    _name = "From"


@slots_dataclass
class ToHeader(FromToHeader):
    """To header, as described in :rfc:`3261#section-20.39`."""

    _name = "To"


@slots_dataclass
class ContactHeader(Header):
    """
    Contact header, as described in :rfc:`3261#section-20.10`.

    Parameters are rendered in order, after the bracketed address.
    """

    _name = "Contact"

    address: SIPAddress | str
    params: dict[str, str | None] = dataclass_field(default_factory=dict)

    def serialize(self) -> str:  # noqa: D102
        params = [
            f";{name}={value}" if value is not None else f";{name}"
            for name, value in self.params.items()
        ]
        return f"{self.address}{''.join(params)}"


@slots_dataclass
class CallIDHeader(StrHeader):
    """Call-ID header, as described in :rfc:`3261#section-20.8`."""

    _name = "Call-ID"


@slots_dataclass
class CSeqHeader(Header):
    """CSeq header, as described in :rfc:`3261#section-20.16`."""

    _name = "CSeq"

    sequence: int
    method: str

    def serialize(self) -> str:  # noqa: D102
        return f"{self.sequence} {self.method}"


@slots_dataclass
class AllowHeader(ListHeader):
    """Allow header, as described in :rfc:`3261#section-20.5`."""

    _name = "Allow"


@slots_dataclass
class AllowEventsHeader(ListHeader):
    """Allow-Events header, as described in :rfc:`6665#section-8.2.2`."""

    _name = "Allow-Events"


@slots_dataclass
class SupportedHeader(ListHeader):
    """Supported header, as described in :rfc:`3261#section-20.37`."""

    _name = "Supported"


@slots_dataclass
class ExpiresHeader(IntHeader):
    """Expires header, as described in :rfc:`3261#section-20.19`."""

    _name = "Expires"


@slots_dataclass
class ContentLengthHeader(IntHeader):
    """Content-Length header, as described in :rfc:`3261#section-20.14`."""

    _name = "Content-Length"


@slots_dataclass
class MaxForwardsHeader(IntHeader):
    """Max-Forwards header, as described in :rfc:`3261#section-20.22`."""

    _name = "Max-Forwards"


@slots_dataclass
class UserAgentHeader(StrHeader):
    """User-Agent header, as described in :rfc:`3261#section-20.41`."""

    _name = "User-Agent"


@slots_dataclass
class ServerHeader(StrHeader):
    """Server header, as described in :rfc:`3261#section-20.35`."""

    _name = "Server"


@slots_dataclass
class AuthorizationHeader(Header):
    """
    Authorization header, as described in :rfc:`3261#section-20.7`.

    Only the Digest scheme is supported. The parameters are rendered in the
    order the registrar expects them: ``username, realm, nonce, uri, response,
    algorithm``, followed by ``qop, nc, cnonce`` when a qop was negotiated.
    """

    _name = "Authorization"

    username: str
    realm: str
    nonce: str
    uri: str
    response: str
    algorithm: str = "MD5"
    qop: str | None = None
    nc: str | None = None
    cnonce: str | None = None

    def serialize(self) -> str:  # noqa: D102
        params = [
            f'username="{self.username}"',
            f'realm="{self.realm}"',
            f'nonce="{self.nonce}"',
            f'uri="{self.uri}"',
            f'response="{self.response}"',
            f"algorithm={self.algorithm}",
        ]
        if self.qop:
            params += [f"qop={self.qop}", f"nc={self.nc}", f'cnonce="{self.cnonce}"']
        return f"Digest {', '.join(params)}"


class Headers(Sequence[Header]):
    """
    An ordered list of SIP headers, rendered to wire text by a single serializer.

    Headers with the same name (e.g. multiple echoed Via entries) are kept
    as separate lines, in insertion order. Lookups by name are case-insensitive
    and return the first matching header.

    :param headers: the headers, in wire order. ``None`` entries are skipped,
        so optional headers can be listed inline.
    """

    def __init__(self, *headers: Header | None):
        self._headers: list[Header] = [h for h in headers if h is not None]

    def get(self, name: str) -> Header | None:
        """Get the first header with the given name, or None."""
        return next((h for h in self._headers if h.name.lower() == name.lower()), None)

    def get_all(self, name: str) -> list[Header]:
        """Get all the headers with the given name, in order."""
        return [h for h in self._headers if h.name.lower() == name.lower()]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None

    @overload
    def __getitem__(self, index: int) -> Header: ...

    @overload
    def __getitem__(self, index: slice) -> Sequence[Header]: ...

    def __getitem__(self, index: int | slice) -> Header | Sequence[Header]:
        return self._headers[index]

    def __iter__(self) -> Iterator[Header]:
        return iter(self._headers)

    def __len__(self) -> int:
        return len(self._headers)

    def __str__(self) -> str:
        lines: list[str] = []
        for header in self._headers:
            line = str(header)
            if _LINE_BREAK_RE.search(line):
                raise ValueError(f"Line break in {header.name} header value: {line!r}")
            lines.append(line)
        return "\r\n".join(lines)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}> {[h.name for h in self._headers]}"
