# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Public API for ``tufclient.api``."""

from .metadata import (
    DelegatedRole,
    Delegations,
    MetaFile,
    Metadata,
    Role,
    Root,
    SPECIFICATION_VERSION,
    Signed,
    Snapshot,
    SuccinctRoles,
    TOP_LEVEL_ROLE_NAMES,
    TargetFile,
    Targets,
    Timestamp,
    VerificationResult,
)

from .exceptions import (
    BootstrapMissingError,
    DelegationNotFoundError,
    ExpiredMetadataError,
    HTTPStatusError,
    LengthExceededError,
    MalformedMetadataError,
    PinMismatchError,
    RepositoryError,
    RoleRemovedError,
    RollbackError,
    SignatureThresholdError,
    SlowRetrievalError,
    TransportError,
)

__all__ = [
    "SPECIFICATION_VERSION",
    "TOP_LEVEL_ROLE_NAMES",
    BootstrapMissingError.__name__,
    DelegatedRole.__name__,
    DelegationNotFoundError.__name__,
    Delegations.__name__,
    ExpiredMetadataError.__name__,
    HTTPStatusError.__name__,
    LengthExceededError.__name__,
    MalformedMetadataError.__name__,
    MetaFile.__name__,
    Metadata.__name__,
    PinMismatchError.__name__,
    RepositoryError.__name__,
    Role.__name__,
    RoleRemovedError.__name__,
    RollbackError.__name__,
    Root.__name__,
    SignatureThresholdError.__name__,
    Signed.__name__,
    SlowRetrievalError.__name__,
    Snapshot.__name__,
    SuccinctRoles.__name__,
    TargetFile.__name__,
    Targets.__name__,
    Timestamp.__name__,
    TransportError.__name__,
    VerificationResult.__name__,
]
