"""Identifiers of the user agent, its dialogs and transactions."""

from __future__ import annotations

import random
import uuid
from dataclasses import field as dataclass_field

from typing_extensions import Self

from minisip.constants import (
    BRANCH_PREFIX,
    BRANCH_RANDOM_LENGTH,
    DEFAULT_DEVICE,
    DEFAULT_SERVER_HOST,
    DEFAULT_SIP_PORT,
    TAG_RANGE,
)
from minisip.helpers import slots_dataclass


__all__ = [
    "generate_via_branch",
    "generate_tag",
    "generate_response_tag",
    "generate_uuid",
    "generate_call_id",
    "Identity",
    "DialogIdentity",
]


def generate_via_branch() -> str:
    """Generate a unique branch identifier for Via headers, with the RFC 3261 magic cookie."""
    return BRANCH_PREFIX + uuid.uuid4().hex[:BRANCH_RANDOM_LENGTH]


def generate_tag() -> str:
    """Generate a tag for the From header of our own dialogs."""
    return str(random.randint(*TAG_RANGE))


def generate_response_tag() -> str:
    """Generate the tag we add to the To header when answering an INVITE."""
    return uuid.uuid4().hex[:13]


def generate_uuid() -> str:
    """Generate an uppercase UUID, e.g. for the ``+sip.instance`` Contact parameter."""
    return str(uuid.uuid4()).upper()


def generate_call_id(local_host: str) -> str:
    """Generate a unique call ID for SIP dialogs, bound to the local host address."""
    return f"{generate_uuid()}@{local_host}"


@slots_dataclass
class Identity:
    """
    Who we are towards the SIP server.

    Everything except ``client_ip`` is fixed for the lifetime of the user agent;
    the client IP might be re-resolved when the network changes.
    """

    user: str
    password: str
    client_ip: str
    server_host: str = DEFAULT_SERVER_HOST
    server_port: int = DEFAULT_SIP_PORT
    client_port: int = DEFAULT_SIP_PORT
    device: str = DEFAULT_DEVICE
    instance_id: str = dataclass_field(default_factory=generate_uuid)
    """Stable UUID of this user agent instance, used in ``+sip.instance``."""

    @property
    def auth_uri(self) -> str:
        """The URI used in the Digest authentication (the registrar)."""
        return f"sip:{self.server_host}"


@slots_dataclass
class DialogIdentity:
    """
    The identifiers of one dialog, and of the transaction currently running in it.

    :param call_id: the Call-ID of the dialog, fixed for its lifetime.
    :param tag: our own tag in the dialog.
    :param cseq: the CSeq number of the next request.
    :param branch: the Via branch of the current transaction.
        Must be renewed with :meth:`new_branch` before every transmitted request.
    """

    call_id: str
    tag: str
    cseq: int = 1
    branch: str = dataclass_field(default_factory=generate_via_branch)

    @classmethod
    def new(cls, local_host: str, *, cseq: int = 1) -> Self:
        """Start a new dialog with fresh identifiers."""
        return cls(call_id=generate_call_id(local_host), tag=generate_tag(), cseq=cseq)

    def new_branch(self) -> str:
        """Renew the Via branch for the next transmitted request."""
        self.branch = generate_via_branch()
        return self.branch

    def follow_cseq(self, echoed_cseq: int) -> None:
        """Continue the sequence after the CSeq echoed by the peer."""
        self.cseq = echoed_cseq + 1
