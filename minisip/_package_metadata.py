from __future__ import annotations

import importlib.metadata as importlib_metadata
import warnings
from email.message import Message
from pathlib import Path
from typing import Any, Mapping, Sequence

import toml


def _load_metadata() -> Message | Mapping[str, Any] | None:
    try:
        return importlib_metadata.metadata(__package__ or __name__)
    except importlib_metadata.PackageNotFoundError:
        pass
    # running from a source checkout, read the project table directly
    package_path = Path(__file__).resolve().parent
    for pyproj_toml_path in (package_path.parent / "pyproject.toml",):
        if pyproj_toml_path.exists():
            return toml.load(pyproj_toml_path)
    warnings.warn(
        "Didn't find distinfo nor pyproject.toml for package metadata", stacklevel=2
    )
    return None


metadata: Message | Mapping[str, Any] | None = _load_metadata()


def get_metadata(distinfo_key: str, toml_path: Sequence[str | int]) -> Any:
    """
    Get a metadata value, either from the installed distribution info,
    or from the ``pyproject.toml`` file following the given keys path.
    """
    if metadata is None:
        return None
    if isinstance(metadata, Message):
        return metadata.get(distinfo_key)
    value: Any = metadata
    try:
        for key in toml_path:
            value = value[key]
    except (KeyError, IndexError, TypeError):
        return None
    return value
