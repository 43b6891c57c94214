"""Common SIP structures."""

from __future__ import annotations

from dataclasses import field as dataclass_field
from typing import Mapping

from frozendict import frozendict

from .helpers import slots_dataclass


DEFAULT_SCHEME: str = "sip"


@slots_dataclass(frozen=True)
class SIPURI:
    """A SIP URI, as used in request lines and From / To / Contact headers."""

    host: str
    port: int | None = None
    user: str | None = None
    scheme: str = DEFAULT_SCHEME
    params: Mapping[str, str | None] = dataclass_field(default_factory=frozendict)

    brackets: bool = False

    def serialize(self, *, force_brackets: bool | None = None) -> str:
        """Serialize the SIP URI to a string."""
        login: str = f"{self.user}@" if self.user else ""
        hostname: str = f"{self.host}:{self.port}" if self.port else self.host
        params: str = "".join(
            f";{name}={value}" if value is not None else f";{name}"
            for name, value in self.params.items()
        )
        brackets: bool = self.brackets if force_brackets is None else force_brackets
        uri: str = f"{self.scheme}:" + login + hostname + params
        if brackets:
            uri = f"<{uri}>"
        return uri

    def __str__(self) -> str:
        return self.serialize()


@slots_dataclass(frozen=True)
class SIPAddress:
    """A SIP contact address, with an optional display name and a SIP URI."""

    uri: SIPURI
    display_name: str | None = None

    def __str__(self) -> str:
        """Serialize the SIP address to a string."""
        if self.display_name:
            return f'"{self.display_name}" {self.uri.serialize(force_brackets=True)}'
        return self.uri.serialize(force_brackets=True)
