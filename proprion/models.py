from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from .errors import BundleAssemblyError, UsageError


APP_ROLE_PREFIX = "proprion-"
APPS_ROOT = "apps/"


class ProviderKind(str, Enum):
    SCALEWAY = "scaleway"
    EXOSCALE = "exoscale"


class BucketStatus(str, Enum):
    READY = "ready"
    CREATED = "created"


class DeleteResult(str, Enum):
    DELETED = "deleted"
    NOT_FOUND = "not_found"


class RoleStatus(str, Enum):
    PENDING = "pending"
    USABLE = "usable"


class WaitStatus(str, Enum):
    USABLE = "usable"
    TIMED_OUT = "timed_out"


class WorkflowStep(str, Enum):
    INIT = "init"
    BUCKET_ENSURED = "bucket_ensured"
    ROLE_CREATED = "role_created"
    ROLE_PROPAGATED = "role_propagated"
    KEY_CREATED = "key_created"
    BUNDLE_RETURNED = "bundle_returned"


class PolicyCategory(str, Enum):
    READ = "read"
    WRITE = "write"
    LIST = "list"
    DELETE = "delete"


class ResourceKind(str, Enum):
    OBJECT = "object"
    BUCKET = "bucket"


# Settings each provider kind needs besides name/region/bucket.
_REQUIRED_SETTINGS: dict[ProviderKind, tuple[str, ...]] = {
    ProviderKind.SCALEWAY: ("access_key", "secret_key", "organization_id", "project_id"),
    ProviderKind.EXOSCALE: ("api_key", "api_secret"),
}

# Name of the region field in the stored representation.
_REGION_FIELD: dict[ProviderKind, str] = {
    ProviderKind.SCALEWAY: "region",
    ProviderKind.EXOSCALE: "zone",
}


@dataclass(frozen=True)
class ProviderConfig:
    """One configured cloud account.

    ``settings`` holds the base authentication material and any other
    provider-specific identifiers; only the matching adapter reads it.
    """

    kind: ProviderKind
    name: str
    region: str
    bucket: str
    settings: Mapping[str, str] = field(default_factory=dict, repr=False)

    def setting(self, key: str) -> str:
        val = str(self.settings.get(key) or "").strip()
        if not val:
            raise UsageError(f"provider {self.name!r} is missing setting {key!r}")
        return val

    def validate(self) -> "ProviderConfig":
        if not self.name.strip():
            raise UsageError("provider name cannot be empty")
        if not self.region.strip():
            raise UsageError(f"provider {self.name!r} is missing {_REGION_FIELD[self.kind]}")
        if not self.bucket.strip():
            raise UsageError(f"provider {self.name!r} is missing bucket")
        for key in _REQUIRED_SETTINGS[self.kind]:
            self.setting(key)
        return self

    def to_dict(self) -> dict[str, str]:
        out = {"type": self.kind.value, _REGION_FIELD[self.kind]: self.region, "bucket": self.bucket}
        for key in _REQUIRED_SETTINGS[self.kind]:
            out[key] = str(self.settings.get(key) or "")
        return out

    @classmethod
    def from_dict(cls, name: str, raw: Mapping[str, Any]) -> "ProviderConfig":
        try:
            kind = ProviderKind(str(raw.get("type") or "").strip().lower())
        except ValueError as e:
            raise UsageError(f"provider {name!r} has unknown type {raw.get('type')!r}") from e
        settings = {
            key: str(raw.get(key) or "").strip() for key in _REQUIRED_SETTINGS[kind]
        }
        return cls(
            kind=kind,
            name=name,
            region=str(raw.get(_REGION_FIELD[kind]) or "").strip(),
            bucket=str(raw.get("bucket") or "").strip(),
            settings=settings,
        )


@dataclass(frozen=True)
class ScopePrefix:
    app_name: str
    value: str

    def contains(self, key: str) -> bool:
        return key.startswith(self.value)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class PolicyGrant:
    category: PolicyCategory
    resource: ResourceKind
    bucket: str
    prefix: str

    def pattern(self) -> str:
        return f"{self.bucket}/{self.prefix}*"

    def matches(self, bucket: str, key: str) -> bool:
        return bucket == self.bucket and key.startswith(self.prefix)


@dataclass(frozen=True)
class PolicyDocument:
    """Provider-agnostic least-privilege policy for one scope prefix."""

    bucket: str
    scope: ScopePrefix
    grants: tuple[PolicyGrant, ...]

    def __post_init__(self) -> None:
        for grant in self.grants:
            if grant.bucket != self.bucket or grant.prefix != self.scope.value:
                raise ValueError(
                    f"grant {grant.category.value} escapes scope {self.scope.value!r} in bucket {self.bucket!r}"
                )

    def categories(self) -> tuple[PolicyCategory, ...]:
        return tuple(g.category for g in self.grants)

    def allows(self, category: PolicyCategory, bucket: str, key: str) -> bool:
        return any(g.category == category and g.matches(bucket, key) for g in self.grants)


@dataclass(frozen=True)
class Role:
    role_id: str
    name: str
    description: str = ""
    created_at: str | None = None
    status: RoleStatus = RoleStatus.PENDING
    metadata: Mapping[str, str] = field(default_factory=dict)

    @property
    def app_name(self) -> str | None:
        if self.name.startswith(APP_ROLE_PREFIX) and len(self.name) > len(APP_ROLE_PREFIX):
            return self.name[len(APP_ROLE_PREFIX) :]
        return None


@dataclass(frozen=True)
class AccessKey:
    key_id: str
    role_id: str
    secret: str | None = field(default=None, repr=False)


@dataclass(frozen=True)
class AppSummary:
    app_name: str
    role_id: str
    description: str

    def to_dict(self) -> dict[str, str]:
        return {"appName": self.app_name, "roleId": self.role_id, "description": self.description}


@dataclass(frozen=True)
class WaitOutcome:
    status: WaitStatus
    probes: int
    waited_seconds: float

    @property
    def usable(self) -> bool:
        return self.status == WaitStatus.USABLE


@dataclass(frozen=True)
class DeletionReport:
    role_id: str | None
    role_result: DeleteResult
    deleted_keys: tuple[str, ...] = ()
    missing_keys: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "roleId": self.role_id,
            "role": self.role_result.value,
            "deletedKeys": list(self.deleted_keys),
            "missingKeys": list(self.missing_keys),
        }


BUNDLE_FIELDS = ("accessKeyId", "secretKey", "endpoint", "bucket", "prefix", "roleId")


@dataclass(frozen=True)
class CredentialBundle:
    """Credentials handed back once to the caller; never stored by this package."""

    access_key_id: str
    secret_key: str = field(repr=False)
    endpoint: str
    bucket: str
    prefix: str
    role_id: str

    @classmethod
    def assemble(
        cls,
        *,
        key: AccessKey,
        role: Role,
        bucket: str,
        scope: ScopePrefix,
        endpoint: str,
    ) -> "CredentialBundle":
        if not key.secret:
            raise BundleAssemblyError("access key carries no secret material")
        if key.role_id != role.role_id:
            raise BundleAssemblyError(
                f"access key {key.key_id} belongs to role {key.role_id}, not {role.role_id}"
            )
        if not scope.value.startswith(APPS_ROOT) or not scope.value.endswith("/"):
            raise BundleAssemblyError(f"scope prefix {scope.value!r} is not an app prefix")
        if not (key.key_id and bucket and endpoint):
            raise BundleAssemblyError("bundle is missing key id, bucket or endpoint")
        return cls(
            access_key_id=key.key_id,
            secret_key=key.secret,
            endpoint=endpoint,
            bucket=bucket,
            prefix=scope.value,
            role_id=role.role_id,
        )

    def to_dict(self) -> dict[str, str]:
        values = (
            self.access_key_id,
            self.secret_key,
            self.endpoint,
            self.bucket,
            self.prefix,
            self.role_id,
        )
        return dict(zip(BUNDLE_FIELDS, values))
