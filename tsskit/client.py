"""Sending a TSS request to a signing server and reading its reply."""

from __future__ import annotations

import logging
import plistlib
import re
import ssl
import time
import urllib.error
import urllib.request
from collections.abc import Mapping, Sequence
from typing import Any
from xml.parsers.expat import ExpatError

from .request import TSSError

logger = logging.getLogger(__name__)

MAX_RETRIES = 15
RETRY_DELAY = 2
USER_AGENT_STRING = "InetURL/1.0"

_SUCCESS_MARKER = b"MESSAGE=SUCCESS"
_MESSAGE_MARKER = b"MESSAGE="
_XML_MARKER = b"<?xml"
_STATUS_RE = re.compile(r"STATUS=\s*([+-]?\d+)")

# Status codes after which retrying makes no sense: malformed requests,
# invalid baseband data, or a device not eligible for the requested build.
_FATAL_STATUS_CODES = frozenset({8, 49, 69, 94, 100, 126})

_HEADERS = {
    "Cache-Control": "no-cache",
    "Content-type": 'text/xml; charset="utf-8"',
    "User-Agent": USER_AGENT_STRING,
}


def parse_status(content: str | bytes) -> int | None:
    """Return the number after the first ``STATUS=`` in a reply, or None."""
    if isinstance(content, bytes):
        content = content.decode("latin-1")
    position = content.find("STATUS=")
    if position < 0:
        return None
    match = _STATUS_RE.match(content, position)
    if match is None:
        return None
    return int(match.group(1))


def _unverified_context() -> ssl.SSLContext:
    # Signing servers are reached without certificate checks.
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def _post(url: str, body: bytes, context: ssl.SSLContext) -> tuple[bytes, str]:
    """POST ``body`` to ``url``; return the reply body and any transport error."""
    http_request = urllib.request.Request(url, data=body, headers=_HEADERS, method="POST")
    try:
        with urllib.request.urlopen(http_request, context=context) as reply:
            return reply.read(), ""
    except urllib.error.HTTPError as exc:
        try:
            content = exc.read() or b""
        except OSError:
            content = b""
        return content, str(exc)
    except (urllib.error.URLError, OSError) as exc:
        return b"", str(exc)


def _server_list(server_url: str | Sequence[str]) -> list[str]:
    urls = [server_url] if isinstance(server_url, str) else list(server_url)
    if not urls:
        raise TSSError("No TSS server URL given")
    return urls


def send_request(request: Mapping, server_url: str | Sequence[str]) -> Any:
    """Send ``request`` and return the plist of a successful reply.

    ``server_url`` is one URL, or a sequence of URLs that the attempts
    rotate through.
    """
    urls = _server_list(server_url)
    body = plistlib.dumps(dict(request), fmt=plistlib.FMT_XML)
    logger.debug("TSS request:\n%s", body.decode("utf-8", errors="replace"))

    context = _unverified_context()
    status_code = -1
    content = b""
    transport_error = ""

    for attempt in range(1, MAX_RETRIES + 1):
        url = urls[(attempt - 1) % len(urls)]
        logger.info("Request URL set to %s", url)
        logger.info("Sending TSS request attempt %d...", attempt)

        content, transport_error = _post(url, body, context)

        if _SUCCESS_MARKER in content:
            status_code = 0
            logger.info("response successfully received")
            break

        if content:
            logger.error("TSS server returned: %s", content.decode("utf-8", errors="replace"))

        parsed = parse_status(content)
        if parsed is not None:
            status_code = parsed

        if status_code == -1:
            logger.error("%s", transport_error)
            content = b""
            time.sleep(RETRY_DELAY)
            continue
        if status_code in _FATAL_STATUS_CODES:
            break
        logger.error("Unhandled status code %d", status_code)

    if status_code != 0:
        position = content.find(_MESSAGE_MARKER)
        if position >= 0:
            message = content[position + len(_MESSAGE_MARKER):].decode("utf-8", errors="replace")
            raise TSSError(f"TSS request failed (status={status_code}, message={message})")
        raise TSSError(f"TSS request failed: {transport_error} (status={status_code})")

    position = content.find(_XML_MARKER)
    if position < 0:
        raise TSSError("Incorrectly formatted TSS response")

    try:
        response = plistlib.loads(content[position:])
    except (plistlib.InvalidFileException, ExpatError, ValueError) as exc:
        raise TSSError(f"Unable to parse TSS response: {exc}") from exc

    logger.debug("TSS response: %r", response)
    return response