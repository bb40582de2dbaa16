"""Building the basic parts of a TSS signing request.

Property-list values are plain Python objects: ``dict`` for dictionaries,
``list`` for arrays, ``str`` for strings, ``bytes`` for data, ``bool`` for
booleans and ``int`` for unsigned integers.
"""

from __future__ import annotations

import copy
import logging
import re
import sys
import uuid
from collections.abc import Mapping
from typing import Any

logger = logging.getLogger(__name__)

TSS_CLIENT_VERSION_STRING = "libauthinstall-698.0.5"

_HEX_RE = re.compile(r"\s*([+-]?)(?:0[xX](?=[0-9a-fA-F]))?([0-9a-fA-F]+)")

_BASEBAND_HASH_KEYS = (
    "BbProvisioningManifestKeyHash",
    "BbActivationManifestKeyHash",
    "BbCalibrationManifestKeyHash",
    "BbFactoryActivationManifestKeyHash",
    "BbFDRSecurityKeyHash",
    "BbSkeyId",
)

_HEX_OR_COPY_KEYS = (
    "SE,ChipID",
    "Savage,ChipID",
    "Savage,PatchEpoch",
    "Yonkers,BoardID",
    "Yonkers,ChipID",
    "Yonkers,PatchEpoch",
)

_COPY_KEYS = (
    "Rap,BoardID",
    "Rap,ChipID",
    "Rap,SecurityDomain",
    "eUICC,ChipID",
    "PearlCertificationRootPub",
)

_COMMON_KEYS = (
    "ApECID",
    "UniqueBuildID",
    "ApChipID",
    "ApBoardID",
    "ApSecurityDomain",
)


class TSSError(Exception):
    """Raised when a TSS request cannot be built, sent or read."""


def _is_uint(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _parse_hex(text: str) -> int:
    """Read a hexadecimal number the way a 32-bit ``%x`` scan would.

    Unparsable text gives 0; the result is widened to 64 bits with the
    sign of the 32-bit value, as a C ``int`` stored into a uint64 is.
    """
    match = _HEX_RE.match(text)
    if match is None:
        return 0
    sign, digits = match.groups()
    value = int(digits, 16)
    if sign == "-":
        value = -value
    value &= 0xFFFFFFFF
    if value & 0x80000000:
        value |= 0xFFFFFFFF00000000
    return value


def _merge_overrides(request: dict, overrides: Mapping | None) -> None:
    if overrides:
        for key, value in overrides.items():
            request[key] = copy.deepcopy(value)


def ecid_to_string(ecid: int) -> str:
    """Return the decimal form of a device ECID; zero is rejected."""
    if ecid == 0:
        raise TSSError("Invalid ECID passed.")
    return str(ecid)


def new_request(overrides: Mapping | None = None) -> dict:
    """Create a request with the client header fields, then apply overrides."""
    platform = "windows" if sys.platform.startswith("win") else "mac"
    request = {
        "@Locality": "en_US",
        "@HostPlatformInfo": platform,
        "@VersionInfo": TSS_CLIENT_VERSION_STRING,
        "@UUID": str(uuid.uuid4()).upper(),
    }
    _merge_overrides(request, overrides)
    return request


def _required_hex(build_identity: Mapping, key: str) -> int:
    value = build_identity.get(key)
    if not isinstance(value, str):
        raise TSSError(f"Unable to find {key} node")
    return _parse_hex(value)


def add_parameters_from_manifest(parameters: dict, build_identity: Mapping) -> None:
    """Fill ``parameters`` with the identifiers found in a build identity."""
    unique_build_id = build_identity.get("UniqueBuildID")
    if not isinstance(unique_build_id, bytes):
        raise TSSError("Unable to find UniqueBuildID node")
    parameters["UniqueBuildID"] = unique_build_id

    for key in ("ApChipID", "ApBoardID", "ApSecurityDomain"):
        parameters[key] = _required_hex(build_identity, key)

    for key in ("BMU,BoardID", "BMU,ChipID"):
        if key in build_identity:
            parameters[key] = copy.deepcopy(build_identity[key])

    bb_chip_id = build_identity.get("BbChipID")
    if isinstance(bb_chip_id, str):
        parameters["BbChipID"] = _parse_hex(bb_chip_id)
    else:
        logger.debug("Unable to find BbChipID node")

    for key in _BASEBAND_HASH_KEYS:
        value = build_identity.get(key)
        if isinstance(value, bytes):
            parameters[key] = value
        else:
            logger.debug("Unable to find %s node", key)

    for key in _HEX_OR_COPY_KEYS:
        if key not in build_identity:
            continue
        value = build_identity[key]
        parameters[key] = _parse_hex(value) if isinstance(value, str) else copy.deepcopy(value)

    for key in _COPY_KEYS:
        if key in build_identity:
            parameters[key] = copy.deepcopy(build_identity[key])

    manifest = build_identity.get("Manifest")
    if not isinstance(manifest, dict):
        raise TSSError("Unable to find Manifest node")
    parameters["Manifest"] = copy.deepcopy(manifest)


def add_common_tags(request: dict, parameters: Mapping, overrides: Mapping | None = None) -> None:
    """Copy the identifiers every request carries, then apply overrides."""
    for key in _COMMON_KEYS:
        if key in parameters:
            request[key] = copy.deepcopy(parameters[key])
    _merge_overrides(request, overrides)


def add_ap_img4_tags(request: dict, parameters: Mapping | None) -> None:
    """Add the fields of an Image4 AP ticket request."""
    if parameters is None:
        raise TSSError("Missing required AP parameters")

    ap_nonce = parameters.get("ApNonce")
    if not isinstance(ap_nonce, bytes):
        raise TSSError("Unable to find required ApNonce in parameters")
    request["ApNonce"] = ap_nonce

    request["@ApImg4Ticket"] = True

    for key in ("ApSecurityMode", "ApProductionMode"):
        if key in request:
            continue
        value = parameters.get(key)
        if not isinstance(value, bool):
            raise TSSError(f"Unable to find required {key} in parameters")
        request[key] = value

    sep_nonce = parameters.get("ApSepNonce")
    if not isinstance(sep_nonce, bytes):
        raise TSSError("Unable to find required ApSepNonce in parameters")
    request["SepNonce"] = sep_nonce

    if "PearlCertificationRootPub" in parameters:
        request["PearlCertificationRootPub"] = copy.deepcopy(
            parameters["PearlCertificationRootPub"]
        )


def add_ap_img3_tags(request: dict, parameters: Mapping | None) -> None:
    """Add the fields of an IMG3 AP ticket request."""
    if parameters is None:
        raise TSSError("Missing required AP parameters")

    if "ApNonce" in parameters:
        ap_nonce = parameters["ApNonce"]
        if not isinstance(ap_nonce, bytes):
            raise TSSError("Unable to find required ApNonce in parameters")
        request["ApNonce"] = ap_nonce

    request["@APTicket"] = True

    for key in ("ApBoardID", "ApChipID", "ApSecurityDomain"):
        if not _is_uint(request.get(key)):
            raise TSSError(f"Unable to find required {key} in request")

    production_mode = parameters.get("ApProductionMode")
    if not isinstance(production_mode, bool):
        raise TSSError("Unable to find required ApProductionMode in parameters")
    request["ApProductionMode"] = production_mode