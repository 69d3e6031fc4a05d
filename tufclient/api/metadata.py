# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Signed metadata envelopes.

A ``Metadata`` object is one parsed metadata file: a typed payload (``Root``,
``Timestamp``, ``Snapshot`` or ``Targets``), the signatures over it, and the
canonical bytes of the payload as it was received. Signatures are only ever
verified against those bytes. ``Metadata`` can be type constrained: the
``signed`` attribute of ``Metadata[Root]`` is known to be a ``Root``.

The client never writes metadata, so there is no serialization or signing
here.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Generic, Type, cast

from securesystemslib.signer import Signature

# Expose payload classes via ``tufclient.api.metadata`` even if they are
# unused in the local scope.
from tufclient.api._payload import (  # noqa: F401
    SPECIFICATION_VERSION,
    TOP_LEVEL_ROLE_NAMES,
    DelegatedRole,
    Delegations,
    MetaFile,
    Role,
    Root,
    Signed,
    Snapshot,
    SuccinctRoles,
    T,
    TargetFile,
    Targets,
    Timestamp,
    VerificationResult,
    _Fields,
)

logger = logging.getLogger(__name__)

_PAYLOAD_TYPES: Dict[str, Type[Signed]] = {
    payload_type.type: payload_type
    for payload_type in (Root, Timestamp, Snapshot, Targets)
}


@dataclass
class Metadata(Generic[T]):
    """A parsed metadata file.

    Attributes:
        signed: The payload.
        signatures: keyid to ``Signature``. A keyid maps to at most one
            signature: the first one listed in the file.
        signed_bytes: Canonical bytes of the payload as parsed.
    """

    signed: T
    signatures: Dict[str, Signature]
    signed_bytes: bytes

    @classmethod
    def from_dict(
        cls, envelope: Dict[str, Any], signed_bytes: bytes
    ) -> "Metadata[T]":
        """Build ``Metadata`` from a parsed envelope.

        ``signed_bytes`` must be the canonical encoding of
        ``envelope["signed"]``, computed before anything else reads it.

        Raises:
            ValueError, KeyError, TypeError: Invalid envelope or payload.
        """
        fields = _Fields(envelope, "metadata")
        payload = fields.get("signed", dict)
        payload_type = _PAYLOAD_TYPES.get(payload.get("_type"))
        if payload_type is None:
            raise ValueError(f"Unknown metadata type {payload.get('_type')!r}")

        signatures: Dict[str, Signature] = {}
        for signature_data in fields.get("signatures", list):
            # Signature.from_dict() consumes the dict it is given
            signature = Signature.from_dict(dict(signature_data))
            if signature.keyid in signatures:
                logger.info("Ignoring extra signature by %s", signature.keyid)
                continue
            signatures[signature.keyid] = signature

        return cls(
            # The payload type is only known at runtime
            signed=cast(T, payload_type.from_dict(payload)),
            signatures=signatures,
            signed_bytes=signed_bytes,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "Metadata[T]":
        """Parse a JSON metadata file.

        Raises:
            tufclient.api.serialization.DeserializationError: ``data`` is not
                valid metadata.
        """
        # Local import: the deserializer module imports this one
        from tufclient.api.serialization.json import JSONDeserializer

        return JSONDeserializer().deserialize(data)
