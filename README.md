# tsskit

`tsskit` builds ticket signing (TSS) requests from a firmware build identity,
sends them to a signing server and pulls tickets and blobs out of the reply.
Requests, parameters and responses are ordinary Python dictionaries in the
shape of property lists: `bytes` for data, `bool` for booleans, `int` for
unsigned integers, `str` for strings and `dict`/`list` for containers, so
they can be read from and written to disk with `plistlib`.

The package uses only the standard library.

## Installing

```
pip install tsskit
```

## Building a request

```python
import plistlib

from tsskit.request import (
    TSSError,
    add_ap_img4_tags,
    add_common_tags,
    add_parameters_from_manifest,
    new_request,
)
from tsskit.components import add_ap_tags

with open("BuildManifest.plist", "rb") as fh:
    manifest = plistlib.load(fh)
build_identity = manifest["BuildIdentities"][0]

parameters = {
    "ApECID": 1234567890,
    "ApNonce": bytes(32),
    "ApSepNonce": bytes(20),
    "ApSecurityMode": True,
    "ApProductionMode": True,
}
add_parameters_from_manifest(parameters, build_identity)

request = new_request(None)
add_common_tags(request, parameters, None)
add_ap_img4_tags(request, parameters)
add_ap_tags(request, parameters, None)
```

`new_request` fills in the client header fields (`@Locality`,
`@HostPlatformInfo`, `@VersionInfo` and a fresh `@UUID`).
`add_parameters_from_manifest` reads the chip, board and security-domain
identifiers (hexadecimal strings in the manifest) into integers and copies
the manifest and the other identifiers it knows about. For older IMG3
devices use `add_ap_img3_tags` in place of `add_ap_img4_tags`.
`ecid_to_string` gives the decimal form of an ECID.

A required value that is missing or of the wrong type raises `TSSError`.

The other kinds of request are built the same way:

- `tsskit.components`: `add_baseband_tags`, `add_se_tags`, and
  `apply_restore_request_rules`, which applies the `RestoreRequestRules` of
  a manifest entry to a request entry.
- `tsskit.coprocessors`: `add_savage_tags`, `add_yonkers_tags`,
  `add_vinyl_tags`, `add_rose_tags` and `add_veridian_tags`.
  `add_savage_tags` and `add_yonkers_tags` return the name of the manifest
  component they picked.

Each takes an optional `overrides` dictionary. Its keys are merged into the
request last.

## Sending it

```python
from tsskit.client import send_request

response = send_request(request, "https://tss.example.com/TSS/controller?action=2")
```

`send_request` posts the request as an XML property list and returns the
parsed plist of a successful reply. The server URL is required: give one URL,
or a sequence of URLs that the attempts rotate through. A reply without a
status is retried, after a short pause, up to 15 attempts; a status that
marks the request as malformed or the device as not eligible stops at once.
Any failure raises `TSSError`. Certificate checks are turned off for the
connection.

`parse_status` reads the `STATUS=` code out of a raw server reply and
returns `None` if there is none.

## Reading the response

```python
from tsskit.response import get_ap_img4_ticket, get_blob_by_path, get_path_by_entry

ticket = get_ap_img4_ticket(response)
path = get_path_by_entry(response, "iBEC")
blob = get_blob_by_path(response, path)
```

`get_ap_ticket`, `get_baseband_ticket` and `get_blob_by_entry` work the
same way. They return `None` when the response has no such entry, and raise
`TSSError` when an entry is there but lacks the expected `Path` or `Blob`.

## What it does not do

`tsskit` only deals with signing requests and their replies. It does not
talk to devices, read nonces or identifiers from them, or restore firmware;
the parameters have to come from elsewhere. It ships no list of signing
servers and no command-line tool.

## Tests

```
pip install -e ".[test]"
pytest
```