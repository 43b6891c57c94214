"""Digest authentication against a SIP server challenge, as described in :rfc:`2617`."""

from __future__ import annotations

import hashlib
import logging
import random

from typing_extensions import Self

from minisip.constants import DIGEST_NONCE_COUNT
from minisip.exceptions import SIPUnsupportedError
from minisip.helpers import slots_dataclass

from .headers import AuthorizationHeader
from .messages import ReceivedMessage


__all__ = [
    "Credentials",
    "compute_digest_response",
    "DigestAuthenticator",
]


_logger = logging.getLogger(__name__)


def _digest(s: str) -> str:
    return hashlib.md5(s.encode("utf-8")).hexdigest()


def _generate_cnonce() -> str:
    return random.getrandbits(32).to_bytes(4, "big").hex()


@slots_dataclass
class Credentials:
    """
    The server challenge we authenticate against, and the last computed response.

    Populated only after a challenge was received, and cleared at the start
    of each new control request.
    """

    realm: str | None = None
    nonce: str | None = None
    qop: str | None = None
    response: str | None = None

    @classmethod
    def from_challenge(cls, message: ReceivedMessage) -> Self:
        """Take the challenge parameters from a received message."""
        return cls(realm=message.realm, nonce=message.nonce, qop=message.qop)

    @property
    def is_set(self) -> bool:
        """Whether both realm and nonce are known, so we can authenticate."""
        return bool(self.realm and self.nonce)

    def clear(self) -> None:
        """Forget the challenge and the computed response."""
        self.realm = self.nonce = self.qop = self.response = None


def _negotiate_qop(offered: str | None) -> str | None:
    if not offered:
        return None
    options = {option.strip() for option in offered.split(",") if option.strip()}
    if "auth" in options:
        return "auth"
    if "auth-int" in options:
        return "auth-int"
    raise SIPUnsupportedError(f"Unsupported qop={offered} in authentication challenge")


def compute_digest_response(
    *,
    username: str,
    password: str,
    realm: str,
    nonce: str,
    method: str,
    uri: str,
    qop: str | None = None,
    cnonce: str | None = None,
    nc: str = DIGEST_NONCE_COUNT,
    body: str = "",
) -> str:
    """
    Compute the MD5 Digest response hash.

    Without ``qop`` the legacy :rfc:`2069` formula is used.
    With ``qop`` the nonce count and the client nonce are included, and the quality
    of protection hashed into the response is always ``auth``.
    For ``auth-int`` the request body is still hashed into ``H(A2)``, so the result
    does not match what an :rfc:`2617` server recomputes for the ``qop=auth`` sent
    in the Authorization header: only registrars that hash ``auth-int`` that same
    way accept it.

    :param uri: the digest URI, e.g. ``sip:fritz.box``.
    :raises ValueError: if a qop is given without a client nonce.
    """
    ha1 = _digest(f"{username}:{realm}:{password}")
    if qop == "auth-int":
        ha2 = _digest(f"{method}:{uri}:{body}")
    else:
        ha2 = _digest(f"{method}:{uri}")
    if not qop:
        return _digest(f"{ha1}:{nonce}:{ha2}")
    if not cnonce:
        raise ValueError("A cnonce is required when qop is set")
    return _digest(f"{ha1}:{nonce}:{nc}:{cnonce}:auth:{ha2}")


class DigestAuthenticator:
    """
    Builds Authorization headers for the control requests of a user agent.

    :param username: the login name, also the user part of our contact.
    :param password: the password for the login.
    :param uri: the digest URI, i.e. the registrar ``sip:<server>``.
    """

    def __init__(self, username: str, password: str, uri: str):
        self._username: str = username
        self._password: str = password
        self._uri: str = uri

    @property
    def uri(self) -> str:
        """The digest URI."""
        return self._uri

    def authorize(
        self,
        credentials: Credentials,
        method: str,
        *,
        body: str = "",
        cnonce: str | None = None,
    ) -> AuthorizationHeader | None:
        """
        Compute the Digest response for the given request, and build its header.

        :param credentials: the current challenge. The computed response is stored back in it.
        :param method: the method of the request to authorize.
        :param body: the request body, only used with ``qop=auth-int``.
        :param cnonce: the client nonce to use, if a qop was offered. Generated when missing.
        :return: the Authorization header, or None if no challenge is known yet,
            in which case the request should go out unauthenticated.
        """
        if not credentials.is_set:
            return None
        assert credentials.realm is not None and credentials.nonce is not None

        qop = _negotiate_qop(credentials.qop)
        if qop is not None and not cnonce:
            cnonce = _generate_cnonce()
        credentials.response = compute_digest_response(
            username=self._username,
            password=self._password,
            realm=credentials.realm,
            nonce=credentials.nonce,
            method=method,
            uri=self._uri,
            qop=qop,
            cnonce=cnonce,
            body=body,
        )
        _logger.debug(f"Computed digest response for {method} in realm {credentials.realm!r}")
        return AuthorizationHeader(
            username=self._username,
            realm=credentials.realm,
            nonce=credentials.nonce,
            uri=self._uri,
            response=credentials.response,
            qop="auth" if qop else None,
            nc=DIGEST_NONCE_COUNT if qop else None,
            cnonce=cnonce if qop else None,
        )
