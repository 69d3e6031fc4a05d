# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Read-only payload classes for the 'signed' part of metadata files.

Objects here are built from untrusted JSON by their ``from_dict()``
constructors. Parsing is strict about the fields the client relies on: a
missing field raises ``KeyError``, a field of the wrong JSON type raises
``TypeError`` and a value out of range raises ``ValueError``. Fields the
client does not use are ignored. They still count for signature
verification, which always runs over the payload bytes exactly as parsed.
"""

import abc
import fnmatch
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import (
    IO,
    Any,
    ClassVar,
    Dict,
    Iterator,
    List,
    Optional,
    Set,
    Tuple,
    Type,
    TypeVar,
    Union,
)

from securesystemslib import exceptions as sslib_exceptions
from securesystemslib import hash as sslib_hash
from securesystemslib.signer import Key, Signature

from tufclient.api.exceptions import PinMismatchError, SignatureThresholdError

# Metadata with a different major version is rejected
SPECIFICATION_VERSION = "1.0.31"

TOP_LEVEL_ROLE_NAMES = frozenset({"root", "timestamp", "snapshot", "targets"})

EXPIRY_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

logger = logging.getLogger(__name__)

T = TypeVar("T", "Root", "Timestamp", "Snapshot", "Targets")

_REQUIRED = object()


class _Fields:
    """Typed access to the members of one JSON object."""

    def __init__(self, data: Any, where: str) -> None:
        if not isinstance(data, dict):
            raise TypeError(f"{where} must be an object, got {data!r}")
        self._data = data
        self._where = where

    def get(self, name: str, kind: Type, default: Any = _REQUIRED) -> Any:
        """Return member ``name``, which must be of JSON type ``kind``.

        ``default`` is returned for a missing member. Without a default the
        member is required.
        """
        if name not in self._data:
            if default is _REQUIRED:
                raise KeyError(f"{self._where} has no '{name}'")
            return default

        value = self._data[name]
        # JSON booleans are not numbers
        if not isinstance(value, kind) or (
            kind is int and isinstance(value, bool)
        ):
            raise TypeError(
                f"{self._where}.{name} must be {kind.__name__}, "
                f"got {value!r}"
            )
        return value

    def strings(
        self, name: str, default: Any = _REQUIRED
    ) -> Optional[List[str]]:
        values = self.get(name, list, default)
        if values is not None and not all(isinstance(v, str) for v in values):
            raise TypeError(f"{self._where}.{name} must only hold strings")
        return values


def _check_integer(name: str, value: int, minimum: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an integer, got {value!r}")
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")


def _check_hashes(hashes: Dict[str, str]) -> None:
    if not isinstance(hashes, dict) or not hashes:
        raise ValueError("hashes must be a non-empty object")
    for algorithm, digest in hashes.items():
        if not isinstance(digest, str):
            raise TypeError(f"{algorithm} hash must be a string")


def _read_keys(data: Dict[str, Any]) -> Dict[str, Key]:
    # Key.from_dict() consumes the dict it is given
    return {
        keyid: Key.from_dict(keyid, dict(key_data))
        for keyid, key_data in data.items()
    }


def _hexdigest(data: Union[bytes, IO[bytes]], algorithm: str) -> str:
    try:
        if isinstance(data, bytes):
            hasher = sslib_hash.digest(algorithm)
            hasher.update(data)
        else:
            hasher = sslib_hash.digest_fileobject(data, algorithm)
    except (
        sslib_exceptions.UnsupportedAlgorithmError,
        sslib_exceptions.FormatError,
    ) as e:
        raise PinMismatchError(f"Unsupported hash algorithm {algorithm}") from e

    return hasher.hexdigest()


def _check_pin(
    data: Union[bytes, IO[bytes]],
    length: Optional[int],
    hashes: Optional[Dict[str, str]],
) -> None:
    """Raise ``PinMismatchError`` unless ``data`` has the expected length
    and hashes. Expectations that are None are not checked.
    """
    if length is not None:
        if isinstance(data, bytes):
            observed = len(data)
        else:
            data.seek(0, io.SEEK_END)
            observed = data.tell()
        if observed != length:
            raise PinMismatchError(
                f"Expected length {length}, got {observed}"
            )

    for algorithm, expected in (hashes or {}).items():
        observed_hash = _hexdigest(data, algorithm)
        if observed_hash != expected:
            raise PinMismatchError(
                f"Expected {algorithm} {expected}, got {observed_hash}"
            )


def _match_path(target_path: str, pattern: str) -> bool:
    """Match a shell-style ``pattern`` one path segment at a time, so that
    wildcards never match a "/".
    """
    target_parts = target_path.split("/")
    pattern_parts = pattern.split("/")
    return len(target_parts) == len(pattern_parts) and all(
        fnmatch.fnmatchcase(part, pat)
        for part, pat in zip(target_parts, pattern_parts)
    )


@dataclass
class Signed:
    """Fields common to every payload type."""

    type: ClassVar[str] = "signed"

    version: int
    spec_version: str
    expires: datetime

    def __post_init__(self) -> None:
        _check_integer("version", self.version, 1)

        parts = self.spec_version.split(".")
        # X.Y is accepted for older metadata
        if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
            raise ValueError(f"Invalid spec_version {self.spec_version}")
        if parts[0] != SPECIFICATION_VERSION.split(".")[0]:
            raise ValueError(f"Unsupported spec_version {self.spec_version}")

    @classmethod
    def _read_common(cls, fields: _Fields) -> Tuple[int, str, datetime]:
        signed_type = fields.get("_type", str)
        if signed_type != cls.type:
            raise ValueError(f"Expected {cls.type} payload, got {signed_type}")

        expires = datetime.strptime(fields.get("expires", str), EXPIRY_FORMAT)
        return (
            fields.get("version", int),
            fields.get("spec_version", str),
            expires.replace(tzinfo=timezone.utc),
        )

    def is_expired(self, reference_time: Optional[datetime] = None) -> bool:
        """Return True if ``reference_time`` (default: now) is at or past
        the expiry date.
        """
        if reference_time is None:
            reference_time = datetime.now(timezone.utc)

        return reference_time >= self.expires


@dataclass
class Role:
    """Keys authorized to sign a role and how many of them must sign."""

    keyids: List[str]
    threshold: int

    def __post_init__(self) -> None:
        if len(set(self.keyids)) != len(self.keyids):
            raise ValueError(f"Duplicate keyids in {self.keyids}")
        _check_integer("threshold", self.threshold, 1)

    @classmethod
    def from_dict(cls, data: Any) -> "Role":
        fields = _Fields(data, "role")
        return cls(fields.strings("keyids"), fields.get("threshold", int))


@dataclass
class DelegatedRole(Role):
    """A role delegated by a Targets role.

    The delegated paths are given either as shell-style patterns
    (``paths``) or as prefixes of the hex sha256 digest of the target path
    (``path_hash_prefixes``), never both.
    """

    name: str
    terminating: bool
    paths: Optional[List[str]] = None
    path_hash_prefixes: Optional[List[str]] = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if (self.paths is None) == (self.path_hash_prefixes is None):
            raise ValueError(
                f"{self.name} needs either paths or path_hash_prefixes"
            )

    @classmethod
    def from_dict(cls, data: Any) -> "DelegatedRole":
        fields = _Fields(data, "delegated role")
        return cls(
            keyids=fields.strings("keyids"),
            threshold=fields.get("threshold", int),
            name=fields.get("name", str),
            terminating=fields.get("terminating", bool),
            paths=fields.strings("paths", None),
            path_hash_prefixes=fields.strings("path_hash_prefixes", None),
        )

    def is_delegated_path(self, target_path: str) -> bool:
        """Return True if this role is trusted to provide ``target_path``.

        Paths are compared in their canonical form: only "/" separates
        directories, and a leading "/" is an ordinary character.
        """
        if self.path_hash_prefixes is not None:
            path_hash = _hexdigest(target_path.encode("utf-8"), "sha256")
            return any(path_hash.startswith(p) for p in self.path_hash_prefixes)

        return any(_match_path(target_path, p) for p in self.paths or [])


@dataclass
class SuccinctRoles(Role):
    """Hash bin delegation to ``2**bit_length`` terminating roles.

    A target belongs to the bin picked by the leftmost ``bit_length`` bits
    of the sha256 digest of its path. Bins are named
    ``<name_prefix>-<index>`` with the index in zero-padded lowercase hex.
    All bins share ``keyids`` and ``threshold``.
    """

    bit_length: int
    name_prefix: str

    def __post_init__(self) -> None:
        super().__post_init__()
        _check_integer("bit_length", self.bit_length, 1)
        if self.bit_length > 32:
            raise ValueError(f"bit_length must be <= 32, got {self.bit_length}")

    @classmethod
    def from_dict(cls, data: Any) -> "SuccinctRoles":
        fields = _Fields(data, "succinct_roles")
        return cls(
            keyids=fields.strings("keyids"),
            threshold=fields.get("threshold", int),
            bit_length=fields.get("bit_length", int),
            name_prefix=fields.get("name_prefix", str),
        )

    @property
    def number_of_bins(self) -> int:
        return 2**self.bit_length

    @property
    def suffix_len(self) -> int:
        return len(f"{self.number_of_bins - 1:x}")

    def _bin_name(self, index: int) -> str:
        return f"{self.name_prefix}-{index:0{self.suffix_len}x}"

    def get_role_for_target(self, target_path: str) -> str:
        """Return the name of the bin responsible for ``target_path``."""
        hasher = sslib_hash.digest("sha256")
        hasher.update(target_path.encode("utf-8"))
        leading = int.from_bytes(hasher.digest()[:4], byteorder="big")
        return self._bin_name(leading >> (32 - self.bit_length))

    def is_delegated_role(self, role_name: str) -> bool:
        """Return True if ``role_name`` is one of the bins."""
        prefix = f"{self.name_prefix}-"
        if not role_name.startswith(prefix):
            return False

        try:
            index = int(role_name[len(prefix) :], 16)
        except ValueError:
            return False

        return (
            0 <= index < self.number_of_bins
            and self._bin_name(index) == role_name
        )


@dataclass
class Delegations:
    """Keys and roles a Targets role delegates to.

    Exactly one of ``roles`` (ordered by search priority) and
    ``succinct_roles`` is set.
    """

    keys: Dict[str, Key]
    roles: Optional[Dict[str, DelegatedRole]] = None
    succinct_roles: Optional[SuccinctRoles] = None

    def __post_init__(self) -> None:
        if (self.roles is None) == (self.succinct_roles is None):
            raise ValueError("Exactly one of roles and succinct_roles is set")

        for name in self.roles or {}:
            if not name or name in TOP_LEVEL_ROLE_NAMES:
                raise ValueError(f"Invalid delegated role name '{name}'")

    @classmethod
    def from_dict(cls, data: Any) -> "Delegations":
        fields = _Fields(data, "delegations")

        roles = None
        role_list = fields.get("roles", list, None)
        if role_list is not None:
            roles = {}
            for role_data in role_list:
                role = DelegatedRole.from_dict(role_data)
                if role.name in roles:
                    raise ValueError(f"Role {role.name} is delegated twice")
                roles[role.name] = role

        succinct_roles = None
        succinct_data = fields.get("succinct_roles", dict, None)
        if succinct_data is not None:
            succinct_roles = SuccinctRoles.from_dict(succinct_data)

        return cls(_read_keys(fields.get("keys", dict)), roles, succinct_roles)

    def get_roles_for_target(
        self, target_path: str
    ) -> Iterator[Tuple[str, bool]]:
        """Yield (name, terminating) of every role responsible for
        ``target_path``, in search order.
        """
        if self.succinct_roles is not None:
            yield self.succinct_roles.get_role_for_target(target_path), True
            return

        for role in (self.roles or {}).values():
            if role.is_delegated_path(target_path):
                yield role.name, role.terminating


@dataclass
class VerificationResult:
    """Outcome of counting the signatures over a delegated role payload.

    Attributes:
        threshold: Number of required signatures.
        signed: keyid to Key for the keys with a valid signature.
        unsigned: keyid to Key for listed keys without a valid signature.
    """

    threshold: int
    signed: Dict[str, Key] = field(default_factory=dict)
    unsigned: Dict[str, Key] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return self.verified

    @property
    def verified(self) -> bool:
        return len(self.signed) >= self.threshold

    @property
    def missing(self) -> int:
        """Number of signatures still needed to reach the threshold."""
        return max(0, self.threshold - len(self.signed))


def _key_identity(key: Key) -> Tuple[str, str, str]:
    """Identify the key material independently of its keyid."""
    keyval = getattr(key, "keyval", {})
    return (key.keytype, key.scheme, str(keyval.get("public", keyval)))


class _Delegator(metaclass=abc.ABCMeta):
    """Signature threshold verification for the roles a payload delegates
    to: Root for the top-level roles, Targets for delegated targets roles.
    """

    @abc.abstractmethod
    def get_delegated_role(self, role_name: str) -> Role:
        """Return the authorization of ``role_name``.

        Raises ValueError if ``role_name`` is not delegated.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def _delegated_keys(self) -> Dict[str, Key]:
        raise NotImplementedError

    def get_verification_result(
        self,
        role_name: str,
        payload: bytes,
        signatures: Dict[str, Signature],
    ) -> VerificationResult:
        """Count the valid signatures over ``payload`` by keys authorized
        for ``role_name``.

        Signatures by keys not listed for the role are ignored. A key counts
        once, even when its key material is listed under several keyids.

        Raises:
            ValueError: ``role_name`` is not delegated.
        """
        role = self.get_delegated_role(role_name)
        keys = self._delegated_keys()
        result = VerificationResult(role.threshold)
        counted: Set[Tuple[str, str, str]] = set()

        for keyid in role.keyids:
            key = keys.get(keyid)
            if key is None:
                logger.info("Keyid %s of %s has no key", keyid, role_name)
                continue

            signature = signatures.get(keyid)
            if signature is None:
                result.unsigned[keyid] = key
                continue

            identity = _key_identity(key)
            if identity in counted:
                logger.info("Key %s already counted for %s", keyid, role_name)
                continue

            try:
                key.verify_signature(signature, payload)
            except sslib_exceptions.UnverifiedSignatureError:
                logger.info("Bad signature by %s over %s", keyid, role_name)
                result.unsigned[keyid] = key
                continue

            counted.add(identity)
            result.signed[keyid] = key

        return result

    def verify_delegate(
        self,
        role_name: str,
        payload: bytes,
        signatures: Dict[str, Signature],
    ) -> None:
        """Verify that a threshold of keys authorized for ``role_name``
        signed ``payload``.

        Raises:
            SignatureThresholdError: The threshold is not met, or
                ``role_name`` is not delegated by this payload.
        """
        try:
            result = self.get_verification_result(
                role_name, payload, signatures
            )
        except ValueError as e:
            raise SignatureThresholdError(
                f"No keys are authorized for {role_name}"
            ) from e

        if not result:
            raise SignatureThresholdError(
                f"{role_name} is signed by {len(result.signed)} of the "
                f"{result.threshold} required keys"
            )


@dataclass
class Root(Signed, _Delegator):
    """Root payload: keys and thresholds of the top-level roles."""

    type = "root"

    keys: Dict[str, Key]
    roles: Dict[str, Role]
    consistent_snapshot: bool = False

    def __post_init__(self) -> None:
        super().__post_init__()
        if set(self.roles) != TOP_LEVEL_ROLE_NAMES:
            raise ValueError(
                f"Root must define exactly {sorted(TOP_LEVEL_ROLE_NAMES)}"
            )

    @classmethod
    def from_dict(cls, data: Any) -> "Root":
        fields = _Fields(data, "root")
        roles = {
            name: Role.from_dict(role_data)
            for name, role_data in fields.get("roles", dict).items()
        }
        return cls(
            *cls._read_common(fields),
            keys=_read_keys(fields.get("keys", dict)),
            roles=roles,
            consistent_snapshot=fields.get("consistent_snapshot", bool, False),
        )

    def get_delegated_role(self, role_name: str) -> Role:
        if role_name not in self.roles:
            raise ValueError(f"{role_name} is not a top-level role")

        return self.roles[role_name]

    def _delegated_keys(self) -> Dict[str, Key]:
        return self.keys

    def role_keys_changed(self, other: "Root", role_name: str) -> bool:
        """Return True if ``other`` authorizes ``role_name`` with different
        keys or a different threshold. Keyid order does not matter.
        """
        mine = self.get_delegated_role(role_name)
        theirs = other.get_delegated_role(role_name)
        return (mine.threshold, set(mine.keyids)) != (
            theirs.threshold,
            set(theirs.keyids),
        )


@dataclass
class MetaFile:
    """The version, and optionally length and hashes, that a parent role
    pins a metadata file to.
    """

    version: int
    length: Optional[int] = None
    hashes: Optional[Dict[str, str]] = None

    def __post_init__(self) -> None:
        _check_integer("meta version", self.version, 1)
        if self.length is not None:
            _check_integer("meta length", self.length, 0)
        if self.hashes is not None:
            _check_hashes(self.hashes)

    @classmethod
    def from_dict(cls, data: Any) -> "MetaFile":
        fields = _Fields(data, "meta")
        return cls(
            fields.get("version", int),
            fields.get("length", int, None),
            fields.get("hashes", dict, None),
        )

    def verify_length_and_hashes(self, data: Union[bytes, IO[bytes]]) -> None:
        """Check the pinned length and hashes, where present, against
        ``data``.

        Raises:
            PinMismatchError: A pinned value does not match, or a hash
                algorithm is not supported.
        """
        _check_pin(data, self.length, self.hashes)


@dataclass
class Timestamp(Signed):
    """Timestamp payload: the pin of the current snapshot."""

    type = "timestamp"

    snapshot_meta: MetaFile

    @classmethod
    def from_dict(cls, data: Any) -> "Timestamp":
        fields = _Fields(data, "timestamp")
        meta = fields.get("meta", dict)
        return cls(
            *cls._read_common(fields),
            snapshot_meta=MetaFile.from_dict(meta["snapshot.json"]),
        )


@dataclass
class Snapshot(Signed):
    """Snapshot payload: pins of all targets roles, keyed by file name
    (``<role>.json``).
    """

    type = "snapshot"

    meta: Dict[str, MetaFile]

    @classmethod
    def from_dict(cls, data: Any) -> "Snapshot":
        fields = _Fields(data, "snapshot")
        meta = {
            filename: MetaFile.from_dict(meta_data)
            for filename, meta_data in fields.get("meta", dict).items()
        }
        return cls(*cls._read_common(fields), meta=meta)


@dataclass
class TargetFile:
    """Length, hashes and opaque custom data of one target file.

    ``path`` is the URL path of the target relative to the targets base
    URL. ``custom`` is passed on to the caller unvalidated.
    """

    length: int
    hashes: Dict[str, str]
    path: str
    custom: Any = None

    def __post_init__(self) -> None:
        _check_integer("target length", self.length, 0)
        _check_hashes(self.hashes)

    @classmethod
    def from_dict(cls, data: Any, path: str) -> "TargetFile":
        fields = _Fields(data, f"target {path}")
        return cls(
            fields.get("length", int),
            fields.get("hashes", dict),
            path,
            fields.get("custom", object, None),
        )

    def verify_length_and_hashes(self, data: Union[bytes, IO[bytes]]) -> None:
        """Raise ``PinMismatchError`` unless ``data`` has the expected
        length and hashes.
        """
        _check_pin(data, self.length, self.hashes)

    def get_prefixed_paths(self) -> List[str]:
        """Return the path with the file name prefixed by each hash, as
        published under consistent snapshots.
        """
        parent, sep, name = self.path.rpartition("/")
        return [
            f"{parent}{sep}{digest}.{name}" for digest in self.hashes.values()
        ]


@dataclass
class Targets(Signed, _Delegator):
    """Targets payload: target files and delegations."""

    type = "targets"

    targets: Dict[str, TargetFile]
    delegations: Optional[Delegations] = None

    @classmethod
    def from_dict(cls, data: Any) -> "Targets":
        fields = _Fields(data, "targets")
        targets = {
            path: TargetFile.from_dict(target_data, path)
            for path, target_data in fields.get("targets", dict).items()
        }
        delegations = None
        delegations_data = fields.get("delegations", dict, None)
        if delegations_data is not None:
            delegations = Delegations.from_dict(delegations_data)

        return cls(
            *cls._read_common(fields),
            targets=targets,
            delegations=delegations,
        )

    def get_delegated_role(self, role_name: str) -> Role:
        role: Optional[Role] = None
        if self.delegations is not None:
            if self.delegations.roles is not None:
                role = self.delegations.roles.get(role_name)
            elif self.delegations.succinct_roles.is_delegated_role(role_name):
                role = self.delegations.succinct_roles

        if role is None:
            raise ValueError(f"{role_name} is not delegated by {self.type}")

        return role

    def _delegated_keys(self) -> Dict[str, Key]:
        if self.delegations is None:
            return {}

        return self.delegations.keys
