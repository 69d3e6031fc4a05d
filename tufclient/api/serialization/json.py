# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""JSON metadata files and their canonical form.

Metadata travels as JSON. Signatures are made over the OLPC Canonical JSON
encoding of the 'signed' object, which does not depend on key order or
whitespace of the file.
"""

import json
from typing import Any, Dict

from securesystemslib.formats import encode_canonical

from tufclient.api.metadata import Metadata
from tufclient.api.serialization import (
    DeserializationError,
    MetadataDeserializer,
)


def canonical_bytes(signed_dict: Dict[str, Any]) -> bytes:
    """Return the OLPC Canonical JSON encoding of a 'signed' object.

    Raises:
        securesystemslib.exceptions.FormatError: The object holds values
            without a canonical form, such as floats.
    """
    return encode_canonical(signed_dict).encode("utf-8")


class JSONDeserializer(MetadataDeserializer):
    """Parses utf-8 encoded JSON metadata files.

    The canonical bytes of the 'signed' object are taken from the decoded
    JSON before any typed object is built.
    """

    def deserialize(self, raw_data: bytes) -> Metadata:
        try:
            envelope = json.loads(raw_data.decode("utf-8"))
            if not isinstance(envelope, dict) or not isinstance(
                envelope.get("signed"), dict
            ):
                raise ValueError("Metadata must be an object with 'signed'")

            return Metadata.from_dict(
                envelope, canonical_bytes(envelope["signed"])
            )
        except Exception as e:
            raise DeserializationError("Failed to deserialize JSON") from e
