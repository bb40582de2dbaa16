import uuid

import pytest

from tsskit.request import (
    TSSError,
    add_ap_img3_tags,
    add_ap_img4_tags,
    add_common_tags,
    add_parameters_from_manifest,
    ecid_to_string,
    new_request,
)


@pytest.fixture
def build_identity():
    return {
        "UniqueBuildID": b"\x01\x02\x03\x04",
        "ApChipID": "0x8960",
        "ApBoardID": "0x02",
        "ApSecurityDomain": "0x01",
        "BbChipID": "0x68",
        "BbSkeyId": b"\xaa\xbb",
        "BbFDRSecurityKeyHash": "not-bytes",
        "SE,ChipID": "0x20211",
        "Savage,ChipID": 7,
        "Rap,BoardID": 3,
        "Manifest": {"iBSS": {"Digest": b"\x00", "Trusted": True}},
    }


def test_ecid_to_string_decimal():
    assert ecid_to_string(1234) == "1234"


def test_ecid_to_string_rejects_zero():
    with pytest.raises(TSSError):
        ecid_to_string(0)


def test_new_request_header_fields():
    request = new_request()
    assert request["@Locality"] == "en_US"
    assert request["@VersionInfo"] == "libauthinstall-698.0.5"
    assert request["@HostPlatformInfo"] in ("mac", "windows")
    assert str(uuid.UUID(request["@UUID"])).upper() == request["@UUID"]


def test_new_request_uuid_differs_between_requests():
    uuids = {new_request()["@UUID"] for _ in range(5)}
    assert len(uuids) == 5


def test_new_request_platform_windows(monkeypatch):
    monkeypatch.setattr("sys.platform", "win32")
    assert new_request()["@HostPlatformInfo"] == "windows"


def test_new_request_platform_other(monkeypatch):
    monkeypatch.setattr("sys.platform", "darwin")
    assert new_request()["@HostPlatformInfo"] == "mac"


def test_new_request_overrides_replace_and_add():
    overrides = {"@Locality": "de_DE", "ApECID": 42}
    request = new_request(overrides)
    assert request["@Locality"] == "de_DE"
    assert request["ApECID"] == 42


def test_parameters_from_manifest(build_identity):
    parameters = {}
    add_parameters_from_manifest(parameters, build_identity)
    assert parameters["UniqueBuildID"] == b"\x01\x02\x03\x04"
    assert parameters["ApChipID"] == 0x8960
    assert parameters["ApBoardID"] == 0x02
    assert parameters["ApSecurityDomain"] == 0x01
    assert parameters["BbChipID"] == 0x68
    assert parameters["BbSkeyId"] == b"\xaa\xbb"
    assert "BbFDRSecurityKeyHash" not in parameters
    assert parameters["SE,ChipID"] == 0x20211
    assert parameters["Savage,ChipID"] == 7
    assert parameters["Rap,BoardID"] == 3
    assert parameters["Manifest"] == build_identity["Manifest"]


def test_parameters_manifest_is_copied(build_identity):
    parameters = {}
    add_parameters_from_manifest(parameters, build_identity)
    parameters["Manifest"]["iBSS"]["Digest"] = b"\xff"
    assert build_identity["Manifest"]["iBSS"]["Digest"] == b"\x00"


def test_parameters_hex_without_prefix(build_identity):
    build_identity["ApChipID"] = "8960"
    parameters = {}
    add_parameters_from_manifest(parameters, build_identity)
    assert parameters["ApChipID"] == 0x8960


def test_parameters_unparsable_hex_gives_zero(build_identity):
    build_identity["ApBoardID"] = "zz"
    parameters = {}
    add_parameters_from_manifest(parameters, build_identity)
    assert parameters["ApBoardID"] == 0


@pytest.mark.parametrize(
    "key", ["UniqueBuildID", "ApChipID", "ApBoardID", "ApSecurityDomain", "Manifest"]
)
def test_parameters_missing_required(build_identity, key):
    del build_identity[key]
    with pytest.raises(TSSError):
        add_parameters_from_manifest({}, build_identity)


def test_parameters_wrong_type_unique_build_id(build_identity):
    build_identity["UniqueBuildID"] = "text"
    with pytest.raises(TSSError):
        add_parameters_from_manifest({}, build_identity)


def test_common_tags_copies_present_keys():
    parameters = {"ApECID": 99, "ApChipID": 0x8960, "Other": 1}
    request = {}
    add_common_tags(request, parameters)
    assert request == {"ApECID": 99, "ApChipID": 0x8960}


def test_common_tags_overrides_win():
    request = {}
    add_common_tags(request, {"ApChipID": 1}, {"ApChipID": 2})
    assert request["ApChipID"] == 2


@pytest.fixture
def img4_parameters():
    return {
        "ApNonce": b"\x10" * 20,
        "ApSecurityMode": True,
        "ApProductionMode": True,
        "ApSepNonce": b"\x20" * 20,
    }


def test_img4_tags(img4_parameters):
    request = {}
    add_ap_img4_tags(request, img4_parameters)
    assert request["ApNonce"] == b"\x10" * 20
    assert request["@ApImg4Ticket"] is True
    assert request["ApSecurityMode"] is True
    assert request["ApProductionMode"] is True
    assert request["SepNonce"] == b"\x20" * 20
    assert "PearlCertificationRootPub" not in request


def test_img4_keeps_existing_modes(img4_parameters):
    request = {"ApSecurityMode": False, "ApProductionMode": False}
    add_ap_img4_tags(request, img4_parameters)
    assert request["ApSecurityMode"] is False
    assert request["ApProductionMode"] is False


def test_img4_pearl_copied(img4_parameters):
    img4_parameters["PearlCertificationRootPub"] = b"\x05"
    request = {}
    add_ap_img4_tags(request, img4_parameters)
    assert request["PearlCertificationRootPub"] == b"\x05"


@pytest.mark.parametrize(
    "key", ["ApNonce", "ApSecurityMode", "ApProductionMode", "ApSepNonce"]
)
def test_img4_missing_required(img4_parameters, key):
    del img4_parameters[key]
    with pytest.raises(TSSError):
        add_ap_img4_tags({}, img4_parameters)


def test_img4_mode_must_be_bool(img4_parameters):
    img4_parameters["ApSecurityMode"] = 1
    with pytest.raises(TSSError):
        add_ap_img4_tags({}, img4_parameters)


def test_img4_none_parameters():
    with pytest.raises(TSSError):
        add_ap_img4_tags({}, None)


@pytest.fixture
def img3_request():
    return {"ApBoardID": 2, "ApChipID": 0x8930, "ApSecurityDomain": 1}


def test_img3_tags(img3_request):
    add_ap_img3_tags(img3_request, {"ApNonce": b"\x01", "ApProductionMode": True})
    assert img3_request["@APTicket"] is True
    assert img3_request["ApNonce"] == b"\x01"
    assert img3_request["ApProductionMode"] is True


def test_img3_nonce_optional(img3_request):
    add_ap_img3_tags(img3_request, {"ApProductionMode": False})
    assert "ApNonce" not in img3_request
    assert img3_request["ApProductionMode"] is False


def test_img3_nonce_wrong_type(img3_request):
    with pytest.raises(TSSError):
        add_ap_img3_tags(img3_request, {"ApNonce": "abc", "ApProductionMode": True})


@pytest.mark.parametrize("key", ["ApBoardID", "ApChipID", "ApSecurityDomain"])
def test_img3_requires_uint_in_request(img3_request, key):
    img3_request[key] = True
    with pytest.raises(TSSError):
        add_ap_img3_tags(img3_request, {"ApProductionMode": True})


def test_img3_requires_production_mode(img3_request):
    with pytest.raises(TSSError):
        add_ap_img3_tags(img3_request, {})


def test_img3_none_parameters(img3_request):
    with pytest.raises(TSSError):
        add_ap_img3_tags(img3_request, None)