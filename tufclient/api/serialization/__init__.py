# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Wire formats of metadata files.

The client only reads metadata: a ``MetadataDeserializer`` turns the bytes
of a metadata file into a ``Metadata`` object. ``DeserializationError`` is a
``MalformedMetadataError``, since unparseable metadata is just another form
of untrusted repository content.
"""

import abc
from typing import TYPE_CHECKING

from tufclient.api.exceptions import MalformedMetadataError

if TYPE_CHECKING:
    from tufclient.api.metadata import Metadata


class DeserializationError(MalformedMetadataError):
    """Error during deserialization."""


class MetadataDeserializer(metaclass=abc.ABCMeta):
    """Abstract base class for deserialization of Metadata objects."""

    @abc.abstractmethod
    def deserialize(self, raw_data: bytes) -> "Metadata":
        """Deserialize bytes to Metadata object."""
        raise NotImplementedError
