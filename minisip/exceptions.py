"""Exception classes for the minisip library."""

from __future__ import annotations

from typing import Any


class MiniSIPException(Exception):
    """Base class for all custom library exceptions."""


class ParseError(MiniSIPException, ValueError):
    """Raised when a message cannot be parsed."""


class SIPException(MiniSIPException):
    """Base class for all exceptions raised by the SIP module."""


class SIPMessageException(SIPException):
    """Exceptions related to a specific SIP message exchange."""

    def __init__(self, *args: Any, **kwargs: Any):
        """Initialize SIPMessageException with optional `request` and `response`."""
        self.request = kwargs.pop("request", None)
        self.response = kwargs.pop("response", None)
        super().__init__(*args, **kwargs)


class SIPUnsupportedError(SIPMessageException, NotImplementedError):
    """Exception raised when a SIP message or feature is not supported."""


class SIPParseError(SIPException, ParseError):
    """Exceptions related to SIP messages / data parsing."""


class SIPTransportError(SIPException, IOError):
    """Raised when a datagram cannot be sent or received."""


class SIPTimeout(SIPTransportError, TimeoutError):
    """Raised when no datagram arrives within the transport timeout."""


class SIPServerRejection(SIPMessageException):
    """Raised when the server answers with a fatal status, aborting the transaction."""


class SIPTransactionExhausted(SIPMessageException):
    """Raised when a transaction used up its attempts without a matching 200 OK."""


class SIPAuthenticationError(SIPTransactionExhausted):
    """Raised when a REGISTER never got through the server authentication."""


class SIPCallStateError(SIPException):
    """Raised when a call operation is not valid for the call's current state."""
