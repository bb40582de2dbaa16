"""Adding AP, baseband and secure-element components to a TSS request."""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from typing import Any

from .request import TSSError, _is_uint, _merge_overrides

logger = logging.getLogger(__name__)

# Condition names in RestoreRequestRules and the parameter each one reads.
_CONDITION_PARAMETERS = {
    "ApRawProductionMode": "ApProductionMode",
    "ApCurrentProductionMode": "ApProductionMode",
    "ApRawSecurityMode": "ApSecurityMode",
    "ApRequiresImage4": "ApSupportsImg4",
    "ApDemotionPolicyOverride": "DemotionPolicy",
    "ApInRomDFU": "ApInRomDFU",
}

_BASEBAND_COPY_KEYS = (
    "BbProvisioningManifestKeyHash",
    "BbActivationManifestKeyHash",
    "BbCalibrationManifestKeyHash",
    "BbFactoryActivationManifestKeyHash",
    "BbFDRSecurityKeyHash",
    "BbSkeyId",
    "BbNonce",
)

_SKIPPED_AP_COMPONENTS = frozenset({"BasebandFirmware", "Diags"})

_FIRMWARE_PAYLOAD_FLAGS = (
    "IsFirmwarePayload",
    "IsSecondaryFirmwarePayload",
    "IsFUDFirmware",
)

# Certificate ids whose PSI2 digests are dropped for baseband chip 0x68.
_PSI2_CERT_IDS = frozenset({0x26F3FACC, 0x5CF2EC4E, 0x8399785A})
_BASEBAND_CHIP_0x68 = 0x68


def _get_bool(container: Any, key: str) -> bool:
    if not isinstance(container, Mapping):
        return False
    value = container.get(key)
    if isinstance(value, bool):
        return value
    if _is_uint(value):
        return value != 0
    return False


def _get_uint(container: Any, key: str) -> int:
    if not isinstance(container, Mapping):
        return 0
    value = container.get(key)
    return value if _is_uint(value) else 0


def _same_value(left: Any, right: Any) -> bool:
    return type(left) is type(right) and left == right


def _manifest(parameters: Mapping, message: str) -> dict:
    manifest = parameters.get("Manifest")
    if not isinstance(manifest, dict):
        raise TSSError(message)
    return manifest


def _restore_rules(manifest_entry: Mapping) -> Any:
    info = manifest_entry.get("Info")
    if isinstance(info, Mapping):
        return info.get("RestoreRequestRules")
    return None


def _conditions_fulfilled(conditions: Any, parameters: Mapping) -> bool:
    if not isinstance(conditions, Mapping):
        return True
    for key, expected in conditions.items():
        parameter = _CONDITION_PARAMETERS.get(key)
        if parameter is None:
            logger.warning("Unhandled condition '%s' while parsing RestoreRequestRules", key)
            return False
        if parameter not in parameters:
            return False
        if not _same_value(expected, parameters[parameter]):
            return False
    return True


def apply_restore_request_rules(entry: dict | None, parameters: Mapping, rules: Any) -> None:
    """Set the boolean actions of every rule whose conditions all hold."""
    if entry is None or rules is None:
        return
    if not isinstance(entry, dict) or not isinstance(rules, list):
        return

    for rule in rules:
        if not isinstance(rule, Mapping):
            continue
        if not _conditions_fulfilled(rule.get("Conditions"), parameters):
            continue
        actions = rule.get("Actions")
        if not isinstance(actions, Mapping):
            continue
        for key, value in actions.items():
            if isinstance(value, bool):
                logger.debug("Adding %s=%s to TSS entry", key, "true" if value else "false")
                entry[key] = value


def _ensure_digest(tss_entry: dict, manifest_entry: Mapping, name: str) -> None:
    trusted = manifest_entry.get("Trusted")
    if trusted is True and "Digest" not in manifest_entry:
        logger.debug("No Digest data, using empty value for entry %s", name)
        tss_entry["Digest"] = b""


def _wanted_firmware_component(name: str, manifest_entry: Mapping) -> bool:
    if not _get_bool(manifest_entry, "Trusted"):
        logger.debug("Skipping '%s' as it is not trusted", name)
        return False
    info = manifest_entry.get("Info")
    if not any(_get_bool(info, flag) for flag in _FIRMWARE_PAYLOAD_FLAGS):
        logger.debug(
            "Skipping '%s' as it is neither firmware nor secondary nor FUD firmware payload",
            name,
        )
        return False
    return True


def add_ap_tags(request: dict, parameters: Mapping, overrides: Mapping | None = None) -> None:
    """Add every AP component of the build manifest to the request."""
    manifest = _manifest(parameters, "Unable to find restore manifest")
    only_firmware = _get_bool(parameters, "_OnlyFWComponents")

    for name, manifest_entry in manifest.items():
        if not isinstance(manifest_entry, dict):
            raise TSSError("Unable to fetch BuildManifest entry")
        if name in _SKIPPED_AP_COMPONENTS:
            continue
        if only_firmware and not _wanted_firmware_component(name, manifest_entry):
            continue

        tss_entry = copy.deepcopy(manifest_entry)
        tss_entry.pop("Info", None)

        rules = _restore_rules(manifest_entry)
        if rules is not None:
            logger.debug("Applying restore request rules for entry %s", name)
            apply_restore_request_rules(tss_entry, parameters, rules)

        _ensure_digest(tss_entry, manifest_entry, name)
        request[name] = tss_entry

    _merge_overrides(request, overrides)


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value & 0x80000000 else value


def add_baseband_tags(request: dict, parameters: Mapping, overrides: Mapping | None = None) -> None:
    """Add the fields and firmware entry of a baseband ticket request."""
    bb_chip_id = _get_uint(parameters, "BbChipID")
    if bb_chip_id:
        request["BbChipID"] = bb_chip_id

    for key in _BASEBAND_COPY_KEYS:
        if key in parameters:
            request[key] = copy.deepcopy(parameters[key])

    request["@BBTicket"] = True

    gold_cert_id = parameters.get("BbGoldCertId")
    if not _is_uint(gold_cert_id):
        raise TSSError("Unable to find required BbGoldCertId in parameters")
    bb_cert_id = _to_int32(gold_cert_id)
    request["BbGoldCertId"] = bb_cert_id & 0xFFFFFFFFFFFFFFFF

    snum = parameters.get("BbSNUM")
    if not isinstance(snum, bytes):
        raise TSSError("Unable to find required BbSNUM in parameters")
    request["BbSNUM"] = snum

    manifest = parameters.get("Manifest")
    firmware = manifest.get("BasebandFirmware") if isinstance(manifest, Mapping) else None
    if not isinstance(firmware, dict):
        raise TSSError("Unable to get BasebandFirmware node")
    firmware = copy.deepcopy(firmware)
    firmware.pop("Info", None)

    if bb_chip_id == _BASEBAND_CHIP_0x68:
        if (bb_cert_id & 0xFFFFFFFF) in _PSI2_CERT_IDS:
            firmware.pop("PSI2-PartialDigest", None)
            firmware.pop("RestorePSI2-PartialDigest", None)
        else:
            firmware.pop("PSI-PartialDigest", None)
            firmware.pop("RestorePSI-PartialDigest", None)

    request["BasebandFirmware"] = firmware
    _merge_overrides(request, overrides)


def add_se_tags(request: dict, parameters: Mapping, overrides: Mapping | None = None) -> None:
    """Add the fields and SE components of a secure-element ticket request."""
    manifest = _manifest(parameters, "Unable to get restore manifest from parameters")

    request["@BBTicket"] = True
    request["@SE,Ticket"] = True

    chip_id = parameters.get("SE,ChipID")
    if not _is_uint(chip_id):
        raise TSSError("Unable to find required SE,ChipID in parameters")
    request["SE,ChipID"] = chip_id

    for key in ("SE,ID", "SE,Nonce", "SE,RootKeyIdentifier"):
        if key not in parameters:
            raise TSSError(f"Unable to find required {key} in parameters")
        request[key] = copy.deepcopy(parameters[key])

    is_dev = parameters.get("SE,IsDev") is True
    if is_dev:
        dropped = ("ProductionCMAC", "ProductionUpdatePayloadHash")
    else:
        dropped = ("DevelopmentCMAC", "DevelopmentUpdatePayloadHash")

    for name, manifest_entry in manifest.items():
        if not isinstance(manifest_entry, dict):
            raise TSSError("Unable to fetch BuildManifest entry")
        if not name.startswith("SE,"):
            continue
        tss_entry = copy.deepcopy(manifest_entry)
        tss_entry.pop("Info", None)
        for key in dropped:
            tss_entry.pop(key, None)
        request[name] = tss_entry

    _merge_overrides(request, overrides)