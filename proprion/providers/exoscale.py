"""Exoscale IAM adapter.

A Role is an Exoscale IAM role whose SOS service policy is a list of
rule expressions; access keys are IAM API keys attached to that role.
Requests are signed with EXO2-HMAC-SHA256.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from typing import Any, Iterator

from ..errors import (
    KeyCreationFailed,
    NotFound,
    OpError,
    PolicyRejected,
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
from .base import ProviderClient

SIGNATURE_TTL_SECONDS = 600

# SOS operations granted per policy category.
SOS_OPERATIONS: dict[PolicyCategory, tuple[str, ...]] = {
    PolicyCategory.READ: ("get-object", "head-object"),
    PolicyCategory.WRITE: ("put-object",),
    PolicyCategory.DELETE: ("delete-object",),
    PolicyCategory.LIST: ("list-objects",),
}

_OPERATION_FAILED_STATES = {"failure", "timeout"}


def _quote(value: str) -> str:
    if "'" in value or "\\" in value:
        raise PolicyTranslationError(f"value {value!r} cannot be embedded in an SOS rule expression")
    return f"'{value}'"


def translate_policy(policy: PolicyDocument) -> dict[str, Any]:
    """Render ``policy`` as an Exoscale role policy with a deny default."""

    object_ops: list[str] = []
    rules: list[dict[str, str]] = []
    bucket = _quote(policy.bucket)
    for grant in policy.grants:
        ops = SOS_OPERATIONS.get(grant.category)
        if not ops:
            raise PolicyTranslationError(
                f"no SOS operation for policy category {grant.category.value!r}"
            )
        if grant.resource == ResourceKind.OBJECT:
            object_ops.extend(op for op in ops if op not in object_ops)
            continue
        for op in ops:
            rules.append(
                {
                    "action": "allow",
                    "expression": (
                        f"operation == '{op}' && resources.bucket == {bucket} "
                        f"&& parameters.prefix.startsWith({_quote(grant.prefix)})"
                    ),
                }
            )
    if object_ops:
        ops_list = ", ".join(f"'{op}'" for op in object_ops)
        rules.insert(
            0,
            {
                "action": "allow",
                "expression": (
                    f"operation in [{ops_list}] && resources.bucket == {bucket} "
                    f"&& parameters.key.startsWith({_quote(policy.scope.value)})"
                ),
            },
        )
    return {
        "default-service-strategy": "deny",
        "services": {"sos": {"type": "rules", "rules": rules}},
    }


class ExoscaleClient(ProviderClient):
    kind = ProviderKind.EXOSCALE
    cascades_key_deletion = False
    propagation_budget_seconds = 30.0

    @property
    def endpoint(self) -> str:
        return f"https://sos-{self.config.region}.exo.io"

    @property
    def api_base(self) -> str:
        return f"https://api-{self.config.region}.exoscale.com"

    def s3_credentials(self) -> tuple[str, str]:
        return self.config.setting("api_key"), self.config.setting("api_secret")

    def _sign(self, method: str, path: str, body: str, *, expires: int | None = None) -> str:
        if expires is None:
            expires = int(time.time()) + SIGNATURE_TTL_SECONDS
        # "<METHOD> <path>", body, query values, header values, expiry.
        message = f"{method} {path}\n{body}\n\n\n{expires}"
        digest = hmac.new(
            self.config.setting("api_secret").encode("utf-8"),
            message.encode("utf-8"),
            hashlib.sha256,
        ).digest()
        signature = base64.b64encode(digest).decode("ascii")
        return (
            f"EXO2-HMAC-SHA256 credential={self.config.setting('api_key')},"
            f"expires={expires},signature={signature}"
        )

    def _call(self, method: str, path: str, payload: dict[str, Any] | None = None) -> HttpResponse:
        full_path = f"/v2{path}"
        body = json.dumps(payload, separators=(",", ":")) if payload is not None else ""
        headers = {
            "Authorization": self._sign(method, full_path, body),
            "Content-Type": "application/json",
        }
        return self.transport.request(
            method=method,
            url=f"{self.api_base}{full_path}",
            headers=headers,
            body=body.encode("utf-8") if body else None,
        )

    def _role_from_item(self, item: dict[str, Any]) -> Role:
        return Role(
            role_id=str(item.get("id") or ""),
            name=str(item.get("name") or ""),
            description=str(item.get("description") or ""),
            created_at=item.get("created-at"),
            status=RoleStatus.USABLE,
        )

    def check_iam_access(self) -> None:
        check_response(self._call("GET", "/iam-role"), label="exoscale list-iam-roles")

    def create_role(self, name: str, description: str, policy: PolicyDocument) -> Role:
        payload = {
            "name": name,
            "description": description,
            "editable": False,
            "policy": translate_policy(policy),
        }
        resp = self._call("POST", "/iam-role", payload)
        if resp.status == 409:
            raise RoleConflict(f"exoscale IAM role {name!r} already exists")
        try:
            check_response(resp, label="exoscale create-iam-role")
        except ProviderApiError as e:
            raise RoleCreationFailed(str(e)) from e
        op = json_object(resp, label="exoscale create-iam-role")
        reference = op.get("reference") or {}
        role_id = str(reference.get("id") or "").strip() if isinstance(reference, dict) else ""
        if not role_id:
            raise RoleCreationFailed(
                f"exoscale create-iam-role returned no role reference (operation {op.get('id')})"
            )
        return Role(
            role_id=role_id,
            name=name,
            description=description,
            status=RoleStatus.PENDING,
            metadata={"operationId": str(op.get("id") or "")},
        )

    def list_roles(self) -> Iterator[Role]:
        resp = check_response(self._call("GET", "/iam-role"), label="exoscale list-iam-roles")
        items = json_object(resp, label="exoscale list-iam-roles").get("iam-roles") or []
        for item in items:
            if not isinstance(item, dict):
                continue
            role = self._role_from_item(item)
            if role.name.startswith(APP_ROLE_PREFIX):
                yield role

    def get_role(self, role_id: str) -> Role:
        resp = self._call("GET", f"/iam-role/{role_id}")
        if resp.status == 404:
            raise NotFound(f"exoscale IAM role {role_id} not found")
        check_response(resp, label="exoscale get-iam-role")
        return self._role_from_item(json_object(resp, label="exoscale get-iam-role"))

    def delete_role(self, role_id: str) -> DeleteResult:
        resp = self._call("DELETE", f"/iam-role/{role_id}")
        if resp.status == 404:
            return DeleteResult.NOT_FOUND
        check_response(resp, label="exoscale delete-iam-role")
        return DeleteResult.DELETED

    def create_access_key(self, role_id: str) -> AccessKey:
        payload = {"name": f"{APP_ROLE_PREFIX}key-{role_id}", "role-id": role_id}
        resp = self._call("POST", "/api-key", payload)
        try:
            check_response(resp, label="exoscale create-api-key")
            item = json_object(resp, label="exoscale create-api-key")
        except ProviderApiError as e:
            raise KeyCreationFailed(str(e), resources={"roleId": role_id}) from e
        key_id = str(item.get("key") or "").strip()
        secret = str(item.get("secret") or "").strip()
        if not key_id:
            raise KeyCreationFailed(
                "exoscale create-api-key returned no key id", resources={"roleId": role_id}
            )
        if not secret:
            # A key whose secret we never saw can never be handed out; remove it.
            try:
                self.delete_access_key(key_id)
            except OpError as e:
                raise KeyCreationFailed(
                    f"exoscale create-api-key returned no secret for {key_id} and deleting it failed: {e}",
                    resources={"roleId": role_id, "accessKeyId": key_id},
                ) from e
            raise KeyCreationFailed(
                f"exoscale create-api-key returned no secret for {key_id}; key deleted",
                resources={"roleId": role_id},
            )
        return AccessKey(key_id=key_id, role_id=role_id, secret=secret)

    def list_access_keys(self, role_id: str) -> list[AccessKey]:
        resp = check_response(self._call("GET", "/api-key"), label="exoscale list-api-keys")
        items = json_object(resp, label="exoscale list-api-keys").get("api-keys") or []
        return [
            AccessKey(key_id=str(item.get("key") or ""), role_id=role_id)
            for item in items
            if isinstance(item, dict) and str(item.get("role-id") or "") == role_id
        ]

    def delete_access_key(self, key_id: str) -> DeleteResult:
        resp = self._call("DELETE", f"/api-key/{key_id}")
        if resp.status == 404:
            return DeleteResult.NOT_FOUND
        check_response(resp, label="exoscale delete-api-key")
        return DeleteResult.DELETED

    def probe(self, role: Role) -> bool:
        op_id = str(role.metadata.get("operationId") or "").strip()
        if op_id:
            resp = check_response(self._call("GET", f"/operation/{op_id}"), label="exoscale get-operation")
            state = str(json_object(resp, label="exoscale get-operation").get("state") or "")
            if state in _OPERATION_FAILED_STATES:
                raise PolicyRejected(
                    f"exoscale rejected IAM role {role.role_id} (operation {op_id} state={state})"
                )
            if state != "success":
                return False
        resp = self._call("GET", f"/iam-role/{role.role_id}")
        if resp.status == 404:
            return False
        check_response(resp, label="exoscale get-iam-role")
        item = json_object(resp, label="exoscale get-iam-role")
        policy_doc = item.get("policy")
        services = policy_doc.get("services") if isinstance(policy_doc, dict) else None
        if not isinstance(services, dict) or "sos" not in services:
            raise PolicyRejected(f"exoscale IAM role {role.role_id} carries no SOS policy")
        return True
