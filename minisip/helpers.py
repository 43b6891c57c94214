"""Helpers, utilities, and other miscellaneous functions and classes."""

from __future__ import annotations

import functools
import logging
import socket
import sys
from collections import OrderedDict
from dataclasses import dataclass as _dtcls
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Iterable,
    Iterator,
    Mapping,
    MutableMapping,
    Protocol,
    TypeVar,
    cast,
    runtime_checkable,
)

from typing_extensions import dataclass_transform


if TYPE_CHECKING:
    from _typeshed import SupportsKeysAndGetItem


_logger = logging.getLogger(__name__)


_dT = TypeVar("_dT")


@functools.wraps(_dtcls)
@dataclass_transform()
def slots_dataclass(*args: Any, **kwargs: Any) -> Callable[[_dT], _dT]:
    """Wrapper for dataclass decorator that adds slots if supported (py3.10+)."""
    if sys.version_info < (3, 10):
        kwargs.pop("slots", None)
    else:
        kwargs.setdefault("slots", True)
    return cast(Callable[[_dT], _dT], _dtcls(*args, **kwargs))


@runtime_checkable
class SerializableRaw(Protocol):
    """Generic protocol for objects serializable to bytes."""

    def serialize(self) -> bytes:
        """Serialize the object to bytes."""


_T = TypeVar("_T")


# copied from requests.structures
class CaseInsensitiveDict(MutableMapping[str, _T]):
    """
    A case-insensitive ``dict``-like object.

    The structure remembers the case of the last key to be set, and iteration
    yields the case-sensitive keys. Querying and contains testing is case
    insensitive, so ``headers["call-id"]`` returns the value of a ``Call-ID``
    header regardless of how the peer spelled it.
    """

    def __init__(
        self,
        data: SupportsKeysAndGetItem[str, _T] | Iterable[tuple[str, _T]] | None = None,
        **kwargs: _T,
    ) -> None:
        self._store: OrderedDict[str, tuple[str, _T]] = OrderedDict()
        if data is None:
            data = {}
        self.update(data, **kwargs)

    def __setitem__(self, key: str, value: _T) -> None:
        # Use the lowercased key for lookups, but store the actual
        # key alongside the value.
        self._store[key.lower()] = (key, value)

    def __getitem__(self, key: str) -> _T:
        return self._store[key.lower()][1]

    def __delitem__(self, key: str) -> None:
        del self._store[key.lower()]

    def __iter__(self) -> Iterator[str]:
        return (casedkey for casedkey, mappedvalue in self._store.values())

    def __len__(self) -> int:
        return len(self._store)

    def lower_items(self) -> Iterator[tuple[str, _T]]:
        """Like items(), but with all lowercase keys."""
        return ((lowerkey, keyval[1]) for (lowerkey, keyval) in self._store.items())

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Mapping):
            other = CaseInsensitiveDict(other)
        else:
            return NotImplemented
        return dict(self.lower_items()) == dict(other.lower_items())

    def __repr__(self) -> str:
        return str(dict(self.items()))


def get_local_ip_for_dest(host: str) -> str:
    """Get the IP address of the current machine relative to the given host on the local network."""
    host_ip = socket.gethostbyname(host)
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        # no datagram is sent, connecting a UDP socket only selects the route
        s.connect((host_ip, 0))
        return cast(str, s.getsockname()[0])


def get_own_ip(dest_host: str | None = None) -> str:
    """
    Resolve the IP address this machine advertises in SIP messages.

    The route towards ``dest_host`` is preferred; if it can't be determined
    (e.g. the host doesn't resolve), fall back to the address of our own hostname.
    """
    if dest_host:
        try:
            return get_local_ip_for_dest(dest_host)
        except OSError as e:
            _logger.warning(f"Failed to get local IP address towards {dest_host!r}: {e}")
    return socket.gethostbyname(socket.gethostname())
