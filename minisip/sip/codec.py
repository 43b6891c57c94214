"""Building of the SIP messages sent by the user agent."""

from __future__ import annotations

import enum
from typing import Sequence

from minisip.constants import (
    ALLOW_EVENTS,
    CALL_METHODS,
    INVITE_SUPPORTED,
    MAX_FORWARDS,
    REGISTER_SUPPORTED,
)
from minisip.exceptions import SIPParseError
from minisip.structures import SIPURI, SIPAddress

from .auth import Credentials, DigestAuthenticator
from .call import CallHandle
from .headers import (
    AllowEventsHeader,
    AllowHeader,
    CallIDHeader,
    ContactHeader,
    ContentLengthHeader,
    CSeqHeader,
    ExpiresHeader,
    FromHeader,
    Headers,
    MaxForwardsHeader,
    RawHeader,
    ServerHeader,
    SupportedHeader,
    ToHeader,
    UserAgentHeader,
    ViaHeader,
)
from .identity import DialogIdentity, Identity
from .messages import SIPMethod, SIPRequest, SIPResponse, SIPStatus


__all__ = [
    "InviteResponseKind",
    "MessageCodec",
]


class InviteResponseKind(enum.Enum):
    """The responses the user agent sends to an inbound INVITE."""

    TRYING = SIPStatus.TRYING
    RINGING = SIPStatus.RINGING
    OK = SIPStatus.OK

    @property
    def status(self) -> SIPStatus:
        """The SIP status of the response."""
        return self.value


class MessageCodec:
    """
    Builds the requests and responses of the user agent from its identity and dialogs.

    :param identity: who we are towards the server.
    :param authenticator: computes the Authorization header when a challenge is known.
    :param allow: the methods listed in the Allow header.
    """

    def __init__(
        self,
        identity: Identity,
        authenticator: DigestAuthenticator,
        allow: Sequence[str] = CALL_METHODS,
    ):
        self.identity: Identity = identity
        self.authenticator: DigestAuthenticator = authenticator
        self.allow: list[str] = list(allow)

    @property
    def own_address(self) -> SIPAddress:
        """Our address of record on the registrar, with the device label as display name."""
        uri = SIPURI(host=self.identity.server_host, user=self.identity.user)
        return SIPAddress(uri=uri, display_name=self.identity.device)

    @property
    def contact_uri(self) -> SIPURI:
        """The URI where the server can reach us."""
        return SIPURI(host=self.identity.client_ip, user=self.identity.user, brackets=True)

    def _via(self, dialog: DialogIdentity) -> ViaHeader:
        return ViaHeader(
            address=self.identity.client_ip,
            port=self.identity.client_port,
            branch=dialog.branch,
        )

    def build_register(
        self, dialog: DialogIdentity, credentials: Credentials, expires: int
    ) -> SIPRequest:
        """
        Build a REGISTER request for the registration dialog.

        The Via branch of the dialog must have been renewed by the caller.
        The Authorization header is added only if the credentials hold a challenge.
        """
        method = SIPMethod.REGISTER
        headers = Headers(
            self._via(dialog),
            FromHeader(self.own_address, tag=dialog.tag),
            ToHeader(self.own_address),
            CallIDHeader(dialog.call_id),
            CSeqHeader(dialog.cseq, method),
            ContactHeader(
                self.contact_uri,
                {"+sip.instance": f'"<urn:uuid:{self.identity.instance_id}>"'},
            ),
            self.authenticator.authorize(credentials, method),
            AllowHeader(self.allow),
            MaxForwardsHeader(MAX_FORWARDS),
            AllowEventsHeader([ALLOW_EVENTS]),
            UserAgentHeader(self.identity.device),
            SupportedHeader(REGISTER_SUPPORTED),
            ExpiresHeader(expires),
            ContentLengthHeader(0),
        )
        uri = SIPURI(host=self.identity.server_host)
        return SIPRequest(method, uri, headers)

    def build_invite_response(
        self, kind: InviteResponseKind, call: CallHandle
    ) -> SIPResponse:
        """
        Build a response to the INVITE of the given call.

        Via, From, To and Call-ID are echoed from the INVITE. Ringing and OK
        responses add our response tag to the To header, and a Contact.

        :raises SIPParseError: if the INVITE misses one of the echoed headers.
        """
        invite = call.invite
        vias = invite.get_all("Via")
        from_ = invite.headers.get("From")
        to = invite.headers.get("To")
        if not vias or from_ is None or to is None or invite.call_id is None:
            raise SIPParseError("INVITE is missing Via, From, To or Call-ID headers")

        provisional = kind is InviteResponseKind.TRYING
        if not provisional and ";tag=" not in to:
            to = f"{to};tag={call.response_tag}"

        headers = Headers(
            *(RawHeader("Via", via) for via in vias),
            RawHeader("From", from_),
            RawHeader("To", to),
            CallIDHeader(invite.call_id),
            CSeqHeader(call.cseq, SIPMethod.INVITE),
            ContactHeader(self.contact_uri) if not provisional else None,
            AllowHeader(self.allow),
            SupportedHeader(INVITE_SUPPORTED) if not provisional else None,
            ServerHeader(self.identity.device),
            ContentLengthHeader(0),
        )
        return SIPResponse(kind.status, headers)

    def build_bye(self, call: CallHandle, dialog: DialogIdentity) -> SIPRequest:
        """
        Build a BYE request terminating the given call.

        The request goes to the Contact of the INVITE, swapping its From and To.
        The dialog supplies the Call-ID, the Via branch and the CSeq.

        :raises SIPParseError: if the INVITE has no usable Contact, From or To.
        """
        invite = call.invite
        from_ = invite.headers.get("From")
        to = invite.headers.get("To")
        contact = invite.headers.get("Contact")
        if invite.contact_uri is None or contact is None or from_ is None or to is None:
            raise SIPParseError("INVITE is missing the Contact, From or To headers for a BYE")
        if ";tag=" not in to:
            to = f"{to};tag={call.response_tag}"

        method = SIPMethod.BYE
        headers = Headers(
            self._via(dialog),
            RawHeader("From", to),
            RawHeader("To", from_),
            CallIDHeader(dialog.call_id),
            CSeqHeader(dialog.cseq, method),
            RawHeader("Contact", contact),
            MaxForwardsHeader(MAX_FORWARDS),
            UserAgentHeader(self.identity.device),
            ContentLengthHeader(0),
        )
        return SIPRequest(method, invite.contact_uri, headers)
