# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""
Define the exceptions raised by the tufclient metadata API and client.

Every failure mode of the client workflow has its own class so that callers
can branch on the kind of failure instead of parsing messages. Repository
errors mean the repository (or someone between it and us) served metadata
that must not be trusted: they are never retried. Transport errors are the
only ones a caller may want to retry.
"""


#### Repository errors ####


class RepositoryError(Exception):
    """An error with a repository's state, such as a missing file.

    It covers all exceptions that come from the repository side when
    looking from the perspective of users of metadata API or client.
    """


class SignatureThresholdError(RepositoryError):
    """Metadata is not signed by a threshold of distinct authorized keys."""


class RollbackError(RepositoryError):
    """Metadata version is lower than the trusted one, or the version is equal
    but the content differs from the trusted metadata.
    """


class ExpiredMetadataError(RepositoryError):
    """Indicate that a TUF Metadata file has expired."""


class PinMismatchError(RepositoryError):
    """Length, hashes or version of metadata do not match the values pinned
    by the metadata that references it.
    """


class RoleRemovedError(RepositoryError):
    """New snapshot no longer lists a role the trusted snapshot listed."""


class DelegationNotFoundError(RepositoryError):
    """A terminating delegation matched the target path but the search
    ended without finding the target.
    """


class MalformedMetadataError(RepositoryError):
    """Metadata could not be parsed or does not follow the metadata schema."""


class BootstrapMissingError(RepositoryError):
    """No trusted root metadata is available locally and no initial trust
    anchor was provided.
    """


#### Transport errors ####


class TransportError(Exception):
    """An error occurred while attempting to download a file."""


class LengthExceededError(TransportError):
    """More bytes were received than the maximum allowed length."""


class SlowRetrievalError(TransportError):
    """Indicate that downloading a file took an unreasonably long time."""


class HTTPStatusError(TransportError):
    """
    Returned by FetcherInterface implementations for HTTP errors.

    Args:
        message: The HTTP error messsage
        status_code: The HTTP status code
    """

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code
