# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Local persistent storage of trusted metadata.

``MetadataCache`` stores the raw bytes of metadata files in a local directory.
Every write is atomic (temporary file plus rename), so a crash during a write
never leaves a torn file behind: readers see either the old or the new
content.
"""

import contextlib
import logging
import os
import tempfile
from typing import Optional
from urllib import parse

logger = logging.getLogger(__name__)

# Roles that are always addressed by a fixed name
_FIXED_NAME_ROLES = {"root", "timestamp"}


class MetadataCache:
    """Metadata file store in ``directory``.

    Role names are URL encoded to form file names, so that e.g. path
    separators in delegated role names cannot escape the directory.

    Args:
        directory: Local metadata directory. Must be writable.
    """

    def __init__(self, directory: str):
        self.directory = directory

    @staticmethod
    def filename_for(
        role: str,
        version: Optional[int] = None,
        consistent_snapshot: bool = False,
    ) -> str:
        """Return the file name that metadata for ``role`` is addressed by.

        With consistent snapshots enabled, metadata other than root and
        timestamp is addressed by version: ``<version>.<role>.json``.
        """
        encoded_name = parse.quote(role, "")
        if (
            consistent_snapshot
            and version is not None
            and role not in _FIXED_NAME_ROLES
        ):
            return f"{version}.{encoded_name}.json"

        return f"{encoded_name}.json"

    def _path(self, role: str) -> str:
        return os.path.join(self.directory, self.filename_for(role))

    def load(self, role: str) -> bytes:
        """Return the stored bytes for ``role``.

        Raises:
            OSError: The file cannot be read (``FileNotFoundError`` if it does
                not exist).
        """
        with open(self._path(role), "rb") as f:
            return f.read()

    def store(self, role: str, data: bytes) -> None:
        """Write metadata to disk atomically to avoid data loss.

        Raises:
            OSError: The file cannot be written.
        """
        temp_file_name: Optional[str] = None
        try:
            with tempfile.NamedTemporaryFile(
                dir=self.directory, delete=False
            ) as temp_file:
                temp_file_name = temp_file.name
                temp_file.write(data)
            os.replace(temp_file.name, self._path(role))
        except OSError as e:
            # remove tempfile if we managed to create one,
            # then let the exception happen
            if temp_file_name is not None:
                with contextlib.suppress(FileNotFoundError):
                    os.remove(temp_file_name)
            raise e
        logger.debug("Stored %s", role)

    def remove(self, role: str) -> None:
        """Remove stored metadata for ``role``, if any."""
        with contextlib.suppress(FileNotFoundError):
            os.remove(self._path(role))
            logger.debug("Removed %s", role)
