from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterator

import boto3

from ..models import (
    APP_ROLE_PREFIX,
    AccessKey,
    BucketStatus,
    DeleteResult,
    PolicyDocument,
    ProviderConfig,
    ProviderKind,
    Role,
)
from ..transport import HttpTransport
from . import buckets


class ProviderClient(ABC):
    """Scoped-credential capabilities of one provider account.

    Each adapter owns the translation from ``PolicyDocument`` into its
    native policy form, so callers never branch on provider kind.
    """

    kind: ProviderKind
    # True only when deleting a role is known to invalidate its access keys.
    cascades_key_deletion: bool = False
    propagation_budget_seconds: float = 15.0

    def __init__(
        self,
        config: ProviderConfig,
        *,
        transport: HttpTransport | None = None,
        session: Any = None,
    ) -> None:
        if config.kind != self.kind:
            raise ValueError(f"{type(self).__name__} cannot serve a {config.kind.value} provider")
        self.config = config.validate()
        self.transport = transport or HttpTransport()
        self._session = session
        self._s3: Any = None

    @property
    def name(self) -> str:
        return self.config.name

    @property
    @abstractmethod
    def endpoint(self) -> str:
        """S3 endpoint URL handed to apps."""

    @abstractmethod
    def s3_credentials(self) -> tuple[str, str]:
        """Base access/secret pair for bucket management."""

    def s3(self) -> Any:
        if self._s3 is None:
            session = self._session
            if session is None:
                session = boto3.session.Session()
            access_key, secret_key = self.s3_credentials()
            self._s3 = buckets.s3_client(
                session,
                endpoint=self.endpoint,
                region=self.config.region,
                access_key=access_key,
                secret_key=secret_key,
            )
        return self._s3

    def role_name(self, app_name: str) -> str:
        return f"{APP_ROLE_PREFIX}{app_name}"

    def ensure_bucket(self, name: str) -> BucketStatus:
        return buckets.ensure_bucket(self.s3(), bucket=name, region=self.config.region)

    def check_reachable(self) -> None:
        self.check_iam_access()
        buckets.check_s3_access(self.s3())

    @abstractmethod
    def check_iam_access(self) -> None: ...

    @abstractmethod
    def create_role(self, name: str, description: str, policy: PolicyDocument) -> Role: ...

    @abstractmethod
    def list_roles(self) -> Iterator[Role]:
        """Roles managed by this tool. Each call restarts from the first page."""

    @abstractmethod
    def get_role(self, role_id: str) -> Role:
        """Raises ``NotFound`` when the role does not exist."""

    @abstractmethod
    def delete_role(self, role_id: str) -> DeleteResult: ...

    @abstractmethod
    def create_access_key(self, role_id: str) -> AccessKey:
        """Returns the only copy of the secret; it cannot be fetched again."""

    @abstractmethod
    def list_access_keys(self, role_id: str) -> list[AccessKey]: ...

    @abstractmethod
    def delete_access_key(self, key_id: str) -> DeleteResult: ...

    @abstractmethod
    def probe(self, role: Role) -> bool:
        """Read-only check that ``role`` is visible and carries its policy."""
