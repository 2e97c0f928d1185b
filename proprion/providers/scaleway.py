"""Scaleway IAM adapter.

A Role is a Scaleway IAM application. Its native policy lives in the target
bucket's policy as statements whose principal is that application, each
restricted to the app's prefix. Access keys are IAM API keys of the
application.
"""

from __future__ import annotations

import json
import threading
import weakref
from typing import Any, Iterator
from urllib.parse import urlencode

from ..errors import (
    KeyCreationFailed,
    NotFound,
    OpError,
    PolicyTranslationError,
    ProviderApiError,
    RoleConflict,
    RoleCreationFailed,
)
from ..models import (
    APP_ROLE_PREFIX,
    AccessKey,
    DeleteResult,
    PolicyCategory,
    PolicyDocument,
    ProviderKind,
    ResourceKind,
    Role,
    RoleStatus,
)
from ..transport import HttpResponse, check_response, json_object
from . import buckets
from .base import ProviderClient

IAM_API_BASE = "https://api.scaleway.com/iam/v1alpha1"
BUCKET_POLICY_VERSION = "2023-04-17"
LIST_PAGE_SIZE = 100

BUCKET_ACTIONS: dict[PolicyCategory, tuple[str, ...]] = {
    PolicyCategory.READ: ("s3:GetObject",),
    PolicyCategory.WRITE: ("s3:PutObject",),
    PolicyCategory.DELETE: ("s3:DeleteObject",),
    PolicyCategory.LIST: ("s3:ListBucket",),
}

# Statement ids live in two namespaces so no app name can collide with another app's list statement.
OBJECTS_SID_PREFIX = "proprion-objects-"
LISTING_SID_PREFIX = "proprion-listing-"

# Bucket policies are read-modify-write; serialize edits per bucket in this process.
_POLICY_LOCKS: weakref.WeakValueDictionary[tuple[str, str], threading.Lock] = weakref.WeakValueDictionary()
_POLICY_LOCKS_GUARD = threading.Lock()


def _bucket_lock(endpoint: str, bucket: str) -> threading.Lock:
    with _POLICY_LOCKS_GUARD:
        return _POLICY_LOCKS.setdefault((endpoint, bucket), threading.Lock())


def _principal(application_id: str) -> dict[str, str]:
    return {"SCW": f"application_id:{application_id}"}


def translate_policy(policy: PolicyDocument, *, application_id: str) -> list[dict[str, Any]]:
    """Render ``policy`` as bucket-policy statements for one application."""

    object_actions: list[str] = []
    list_actions: list[str] = []
    for grant in policy.grants:
        actions = BUCKET_ACTIONS.get(grant.category)
        if not actions:
            raise PolicyTranslationError(
                f"no Scaleway bucket action for policy category {grant.category.value!r}"
            )
        target = object_actions if grant.resource == ResourceKind.OBJECT else list_actions
        target.extend(a for a in actions if a not in target)

    app = policy.scope.app_name
    statements: list[dict[str, Any]] = []
    if object_actions:
        statements.append(
            {
                "Sid": f"{OBJECTS_SID_PREFIX}{app}",
                "Effect": "Allow",
                "Principal": _principal(application_id),
                "Action": object_actions,
                "Resource": [f"{policy.bucket}/{policy.scope.value}*"],
            }
        )
    if list_actions:
        statements.append(
            {
                "Sid": f"{LISTING_SID_PREFIX}{app}",
                "Effect": "Allow",
                "Principal": _principal(application_id),
                "Action": list_actions,
                "Resource": [policy.bucket],
                "Condition": {"StringLike": {"s3:prefix": [f"{policy.scope.value}*"]}},
            }
        )
    return statements


def _statement_principal(stmt: dict[str, Any]) -> str:
    principal = stmt.get("Principal")
    if isinstance(principal, dict):
        val = principal.get("SCW")
        if isinstance(val, list):
            return ",".join(str(v) for v in val)
        return str(val or "")
    return str(principal or "")


class ScalewayClient(ProviderClient):
    kind = ProviderKind.SCALEWAY
    # Deleting an IAM application deletes its API keys.
    cascades_key_deletion = True
    propagation_budget_seconds = 15.0

    @property
    def endpoint(self) -> str:
        return f"https://s3.{self.config.region}.scw.cloud"

    def s3_credentials(self) -> tuple[str, str]:
        return self.config.setting("access_key"), self.config.setting("secret_key")

    def _call(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        *,
        query: dict[str, Any] | None = None,
    ) -> HttpResponse:
        url = f"{IAM_API_BASE}{path}"
        if query:
            url += "?" + urlencode(query)
        headers = {
            "X-Auth-Token": self.config.setting("secret_key"),
            "Content-Type": "application/json",
        }
        body = json.dumps(payload, separators=(",", ":")).encode("utf-8") if payload is not None else None
        return self.transport.request(method=method, url=url, headers=headers, body=body)

    def _role_from_item(self, item: dict[str, Any]) -> Role:
        return Role(
            role_id=str(item.get("id") or ""),
            name=str(item.get("name") or ""),
            description=str(item.get("description") or ""),
            created_at=item.get("created_at"),
            status=RoleStatus.USABLE,
        )

    def _edit_bucket_policy(self, *, drop_principal: str, add: list[dict[str, Any]]) -> None:
        bucket = self.config.bucket
        with _bucket_lock(self.endpoint, bucket):
            current = buckets.get_bucket_policy(self.s3(), bucket=bucket) or {}
            existing = [s for s in (current.get("Statement") or []) if isinstance(s, dict)]
            add_sids = {s["Sid"] for s in add}
            statements = [
                s
                for s in existing
                if _statement_principal(s) != drop_principal and s.get("Sid") not in add_sids
            ]
            statements.extend(add)
            if statements == existing:
                return
            if not statements:
                buckets.delete_bucket_policy(self.s3(), bucket=bucket)
                return
            doc = {"Version": str(current.get("Version") or BUCKET_POLICY_VERSION), "Statement": statements}
            buckets.put_bucket_policy(self.s3(), bucket=bucket, policy=doc)

    def _has_bucket_statements(self, application_id: str) -> bool:
        current = buckets.get_bucket_policy(self.s3(), bucket=self.config.bucket) or {}
        wanted = _principal(application_id)["SCW"]
        return any(
            isinstance(s, dict) and _statement_principal(s) == wanted
            for s in (current.get("Statement") or [])
        )

    def check_iam_access(self) -> None:
        check_response(
            self._call(
                "GET",
                "/applications",
                query={"organization_id": self.config.setting("organization_id"), "page_size": 1},
            ),
            label="scaleway list-applications",
        )

    def create_role(self, name: str, description: str, policy: PolicyDocument) -> Role:
        if policy.bucket != self.config.bucket:
            raise PolicyTranslationError(
                f"policy targets bucket {policy.bucket!r}, provider manages {self.config.bucket!r}"
            )
        # Translate before creating anything so an untranslatable policy leaves nothing behind.
        translate_policy(policy, application_id="pending")

        resp = self._call(
            "POST",
            "/applications",
            {
                "name": name,
                "description": description,
                "organization_id": self.config.setting("organization_id"),
            },
        )
        if resp.status == 409:
            raise RoleConflict(f"scaleway IAM application {name!r} already exists")
        try:
            check_response(resp, label="scaleway create-application")
        except ProviderApiError as e:
            raise RoleCreationFailed(str(e)) from e
        role = self._role_from_item(json_object(resp, label="scaleway create-application"))
        if not role.role_id:
            raise RoleCreationFailed("scaleway create-application returned no application id")

        try:
            self._edit_bucket_policy(
                drop_principal=_principal(role.role_id)["SCW"],
                add=translate_policy(policy, application_id=role.role_id),
            )
        except OpError as e:
            self._rollback_application(role.role_id, cause=e)
            raise RoleCreationFailed(f"applying bucket policy failed: {e}") from e
        return Role(
            role_id=role.role_id,
            name=role.name or name,
            description=role.description or description,
            created_at=role.created_at,
            status=RoleStatus.PENDING,
        )

    def _rollback_application(self, application_id: str, *, cause: Exception) -> None:
        try:
            self.delete_role(application_id)
        except OpError as e:
            raise RoleCreationFailed(
                f"applying bucket policy failed ({cause}) and rollback failed: {e}",
                resources={"roleId": application_id},
            ) from e

    def list_roles(self) -> Iterator[Role]:
        page = 1
        seen = 0
        while True:
            resp = check_response(
                self._call(
                    "GET",
                    "/applications",
                    query={
                        "organization_id": self.config.setting("organization_id"),
                        "page": page,
                        "page_size": LIST_PAGE_SIZE,
                    },
                ),
                label="scaleway list-applications",
            )
            doc = json_object(resp, label="scaleway list-applications")
            items = [i for i in (doc.get("applications") or []) if isinstance(i, dict)]
            for item in items:
                role = self._role_from_item(item)
                if role.name.startswith(APP_ROLE_PREFIX):
                    yield role
            seen += len(items)
            total = int(doc.get("total_count") or 0)
            if not items or seen >= total:
                return
            page += 1

    def get_role(self, role_id: str) -> Role:
        resp = self._call("GET", f"/applications/{role_id}")
        if resp.status == 404:
            raise NotFound(f"scaleway IAM application {role_id} not found")
        check_response(resp, label="scaleway get-application")
        return self._role_from_item(json_object(resp, label="scaleway get-application"))

    def delete_role(self, role_id: str) -> DeleteResult:
        self._edit_bucket_policy(drop_principal=_principal(role_id)["SCW"], add=[])
        resp = self._call("DELETE", f"/applications/{role_id}")
        if resp.status == 404:
            return DeleteResult.NOT_FOUND
        check_response(resp, label="scaleway delete-application")
        return DeleteResult.DELETED

    def create_access_key(self, role_id: str) -> AccessKey:
        resp = self._call(
            "POST",
            "/api-keys",
            {
                "application_id": role_id,
                "description": f"{APP_ROLE_PREFIX}key for application {role_id}",
                "default_project_id": self.config.setting("project_id"),
            },
        )
        try:
            check_response(resp, label="scaleway create-api-key")
            item = json_object(resp, label="scaleway create-api-key")
        except ProviderApiError as e:
            raise KeyCreationFailed(str(e), resources={"roleId": role_id}) from e
        key_id = str(item.get("access_key") or "").strip()
        secret = str(item.get("secret_key") or "").strip()
        if not key_id:
            raise KeyCreationFailed(
                "scaleway create-api-key returned no access key", resources={"roleId": role_id}
            )
        if not secret:
            try:
                self.delete_access_key(key_id)
            except OpError as e:
                raise KeyCreationFailed(
                    f"scaleway create-api-key returned no secret for {key_id} and deleting it failed: {e}",
                    resources={"roleId": role_id, "accessKeyId": key_id},
                ) from e
            raise KeyCreationFailed(
                f"scaleway create-api-key returned no secret for {key_id}; key deleted",
                resources={"roleId": role_id},
            )
        return AccessKey(key_id=key_id, role_id=role_id, secret=secret)

    def list_access_keys(self, role_id: str) -> list[AccessKey]:
        resp = check_response(
            self._call("GET", "/api-keys", query={"application_id": role_id}),
            label="scaleway list-api-keys",
        )
        items = json_object(resp, label="scaleway list-api-keys").get("api_keys") or []
        return [
            AccessKey(key_id=str(item.get("access_key") or ""), role_id=role_id)
            for item in items
            if isinstance(item, dict) and str(item.get("application_id") or role_id) == role_id
        ]

    def delete_access_key(self, key_id: str) -> DeleteResult:
        resp = self._call("DELETE", f"/api-keys/{key_id}")
        if resp.status == 404:
            return DeleteResult.NOT_FOUND
        check_response(resp, label="scaleway delete-api-key")
        return DeleteResult.DELETED

    def probe(self, role: Role) -> bool:
        resp = self._call("GET", f"/applications/{role.role_id}")
        if resp.status == 404:
            return False
        check_response(resp, label="scaleway get-application")
        return self._has_bucket_statements(role.role_id)
