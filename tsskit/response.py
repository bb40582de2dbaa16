"""Reading tickets and blobs out of a TSS response."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from .request import TSSError

logger = logging.getLogger(__name__)


def _data_by_key(response: Mapping, name: str) -> bytes | None:
    value = response.get(name)
    if not isinstance(value, bytes):
        logger.debug("No entry '%s' in TSS response", name)
        return None
    return value


def get_ap_img4_ticket(response: Mapping) -> bytes | None:
    """Return the Image4 AP ticket, or None if the response has none."""
    return _data_by_key(response, "ApImg4Ticket")


def get_ap_ticket(response: Mapping) -> bytes | None:
    """Return the IMG3 AP ticket, or None if the response has none."""
    return _data_by_key(response, "APTicket")


def get_baseband_ticket(response: Mapping) -> bytes | None:
    """Return the baseband ticket, or None if the response has none."""
    return _data_by_key(response, "BBTicket")


def get_path_by_entry(response: Mapping, entry: str) -> str | None:
    """Return the ``Path`` of a response entry, or None if it has none."""
    entry_node = response.get(entry)
    if not isinstance(entry_node, Mapping):
        logger.debug("No entry '%s' in TSS response", entry)
        return None
    path = entry_node.get("Path")
    if not isinstance(path, str):
        logger.debug("Unable to find %s path in TSS entry", entry)
        return None
    return path


def get_blob_by_path(response: Mapping, path: str) -> bytes | None:
    """Return the non-empty ``Blob`` of the entry whose ``Path`` is ``path``.

    Every dictionary entry met before the match must carry a ``Path``.
    """
    for name, entry in response.items():
        if not isinstance(entry, Mapping):
            continue
        entry_path = entry.get("Path")
        if not isinstance(entry_path, str):
            raise TSSError(f"Unable to find TSS path node in entry {name}")
        if entry_path != path:
            continue
        blob = entry.get("Blob")
        if not isinstance(blob, bytes):
            raise TSSError(f"Unable to find TSS blob node in entry {name}")
        return blob or None
    return None


def get_blob_by_entry(response: Mapping, entry: str) -> Any:
    """Return the ``Blob`` of a named entry, or None if the entry is absent."""
    entry_node = response.get(entry)
    if not isinstance(entry_node, Mapping):
        logger.debug("No entry '%s' in TSS response", entry)
        return None
    blob = entry_node.get("Blob")
    if not isinstance(blob, bytes):
        raise TSSError(f"Unable to find blob in {entry} entry")
    return blob