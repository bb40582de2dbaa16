"""Adding Savage, Yonkers, eUICC, Rap and BMU coprocessor tags to a TSS request."""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from typing import Any

from .components import (
    _ensure_digest,
    _get_bool,
    _get_uint,
    _manifest,
    _restore_rules,
    apply_restore_request_rules,
)
from .request import TSSError, _is_uint, _merge_overrides

logger = logging.getLogger(__name__)

_MANIFEST_MESSAGE = "Unable to get restore manifest from parameters"

_YONKERS_KEYS = (
    "Yonkers,AllowOfflineBoot",
    "Yonkers,BoardID",
    "Yonkers,ChipID",
    "Yonkers,ECID",
    "Yonkers,Nonce",
    "Yonkers,PatchEpoch",
    "Yonkers,ProductionMode",
    "Yonkers,ReadECKey",
    "Yonkers,ReadFWKey",
)

_UINT64_MAX = 0xFFFFFFFFFFFFFFFF


def _copy_required(request: dict, parameters: Mapping, key: str) -> None:
    if key not in parameters:
        raise TSSError(f"Unable to find required {key} in parameters")
    request[key] = copy.deepcopy(parameters[key])


def _copy_if_present(request: dict, parameters: Mapping, key: str, target: str | None = None) -> None:
    if key in parameters:
        request[target or key] = copy.deepcopy(parameters[key])


def _add_sep_digest(request: dict, manifest: Mapping) -> None:
    sep = manifest.get("SEP")
    if not isinstance(sep, Mapping) or "Digest" not in sep:
        raise TSSError("Unable to get SEP digest from manifest")
    request["SEP"] = {"Digest": copy.deepcopy(sep["Digest"])}


def _without_info(entry: Any) -> Any:
    entry = copy.deepcopy(entry)
    if isinstance(entry, dict):
        entry.pop("Info", None)
    return entry


def _savage_component_name(parameters: Mapping, is_production: bool) -> str:
    kind = "Prod" if is_production else "Dev"
    stepping = "B0"
    revision = parameters.get("Savage,Revision")
    if isinstance(revision, bytes) and revision:
        first = revision[0]
        if ((first | 0x10) & 0xF0) == 0x30:
            stepping = "B2"
        elif (first & 0xF0) == 0xA0:
            stepping = "BA"
    return f"Savage,{stepping}-{kind}-Patch"


def add_savage_tags(request: dict, parameters: Mapping, overrides: Mapping | None = None) -> str:
    """Add the fields of a Savage ticket request; return the patch component name."""
    manifest = _manifest(parameters, _MANIFEST_MESSAGE)

    request["@BBTicket"] = True
    request["@Savage,Ticket"] = True

    _copy_required(request, parameters, "Savage,UID")
    _add_sep_digest(request, manifest)

    for key in (
        "Savage,PatchEpoch",
        "Savage,ChipID",
        "Savage,AllowOfflineBoot",
        "Savage,ReadFWKey",
        "Savage,ProductionMode",
    ):
        _copy_required(request, parameters, key)

    is_production = parameters["Savage,ProductionMode"] is True
    component_name = _savage_component_name(parameters, is_production)

    if component_name not in manifest:
        raise TSSError(f"Unable to get {component_name} entry from manifest")
    request[component_name] = _without_info(manifest[component_name])

    for key in ("Savage,Nonce", "Savage,ReadECKey"):
        _copy_required(request, parameters, key)

    _merge_overrides(request, overrides)
    return component_name


def _is_yonkers_target(entry: Any, is_production: bool, fab_revision: int) -> bool:
    if not isinstance(entry, Mapping):
        return True
    epro = entry.get("EPRO")
    if isinstance(epro, bool) and epro != is_production:
        return False
    revision = entry.get("FabRevision")
    if _is_uint(revision) and revision != fab_revision:
        return False
    return True


def add_yonkers_tags(request: dict, parameters: Mapping, overrides: Mapping | None = None) -> str:
    """Add the fields of a Yonkers ticket request; return the chosen component name."""
    manifest = _manifest(parameters, _MANIFEST_MESSAGE)

    request["@BBTicket"] = True
    request["@Yonkers,Ticket"] = True

    _add_sep_digest(request, manifest)

    for key in _YONKERS_KEYS:
        if key in parameters:
            request[key] = copy.deepcopy(parameters[key])
        else:
            logger.error("Unable to find required %s in parameters", key)

    production_mode = parameters.get("Yonkers,ProductionMode")
    is_production = production_mode if isinstance(production_mode, bool) else True

    fab_revision = parameters.get("Yonkers,FabRevision")
    if not _is_uint(fab_revision):
        fab_revision = _UINT64_MAX

    component_name = next(
        (
            name
            for name, entry in manifest.items()
            if name.startswith("Yonkers,") and _is_yonkers_target(entry, is_production, fab_revision)
        ),
        None,
    )
    if component_name is None:
        mode = "Production" if is_production else "Development"
        raise TSSError(f"No Yonkers node for {mode}/{fab_revision}")

    request[component_name] = _without_info(manifest[component_name])

    _merge_overrides(request, overrides)
    return component_name


def add_vinyl_tags(request: dict, parameters: Mapping, overrides: Mapping | None = None) -> None:
    """Add the fields of an eUICC ticket request."""
    _manifest(parameters, _MANIFEST_MESSAGE)

    request["@BBTicket"] = True
    request["@eUICC,Ticket"] = True

    for key in ("eUICC,ChipID", "eUICC,EID", "eUICC,RootKeyIdentifier"):
        _copy_if_present(request, parameters, key)

    for nonce_key, component in (("EUICCGoldNonce", "eUICC,Gold"), ("EUICCMainNonce", "eUICC,Main")):
        if nonce_key not in parameters:
            continue
        entry = request.get(component)
        if isinstance(entry, dict):
            entry["Nonce"] = copy.deepcopy(parameters[nonce_key])

    _merge_overrides(request, overrides)


def _add_prefixed_components(request: dict, parameters: Mapping, manifest: Mapping, prefix: str) -> None:
    for name, manifest_entry in manifest.items():
        if not name.startswith(prefix):
            continue
        entry = copy.deepcopy(manifest_entry)
        if isinstance(entry, dict):
            rules = _restore_rules(entry)
            if rules is not None:
                logger.debug("Applying restore request rules for entry %s", name)
                apply_restore_request_rules(entry, parameters, rules)
            _ensure_digest(entry, entry, name)
            entry.pop("Info", None)
        request[name] = entry


def add_rose_tags(request: dict, parameters: Mapping, overrides: Mapping | None = None) -> None:
    """Add the fields and Rap components of a Rap ticket request."""
    manifest = _manifest(parameters, _MANIFEST_MESSAGE)

    request["@BBTicket"] = True
    request["@Rap,Ticket"] = True

    request["Rap,BoardID"] = _get_uint(parameters, "Rap,BoardID")
    request["Rap,ChipID"] = _get_uint(parameters, "Rap,ChipID")
    request["Rap,ECID"] = _get_uint(parameters, "Rap,ECID")
    _copy_if_present(request, parameters, "Rap,Nonce")
    request["Rap,ProductionMode"] = _get_bool(parameters, "Rap,ProductionMode")
    request["Rap,SecurityDomain"] = _get_uint(parameters, "Rap,SecurityDomain")
    request["Rap,SecurityMode"] = _get_bool(parameters, "Rap,SecurityMode")

    _add_prefixed_components(request, parameters, manifest, "Rap,")
    _merge_overrides(request, overrides)


def add_veridian_tags(request: dict, parameters: Mapping, overrides: Mapping | None = None) -> None:
    """Add the fields and BMU components of a BMU ticket request."""
    manifest = _manifest(parameters, _MANIFEST_MESSAGE)

    request["@BBTicket"] = True
    request["@BMU,Ticket"] = True

    request["BMU,BoardID"] = _get_uint(parameters, "BMU,BoardID")
    request["BMU,ChipID"] = _get_uint(parameters, "ChipID")
    _copy_if_present(request, parameters, "Nonce", "BMU,Nonce")
    request["BMU,ProductionMode"] = _get_bool(parameters, "ProductionMode")
    request["BMU,UniqueID"] = _get_uint(parameters, "UniqueID")

    _add_prefixed_components(request, parameters, manifest, "BMU,")
    _merge_overrides(request, overrides)