import base64
import hashlib
import hmac
import json
from urllib.parse import urlsplit

import pytest

from proprion.errors import (
    KeyCreationFailed,
    NotFound,
    PolicyRejected,
    PolicyTranslationError,
    RoleConflict,
    RoleCreationFailed,
)
from proprion.models import DeleteResult, ProviderConfig, ProviderKind, Role
from proprion.policy import scope_prefix, synthesize
from proprion.providers.exoscale import ExoscaleClient, translate_policy
from proprion.transport import HttpResponse


class FakeTransport:
    def __init__(self, routes):
        self.routes = routes
        self.calls: list[dict] = []

    def request(self, *, method, url, headers, body=None):
        parts = urlsplit(url)
        self.calls.append(
            {
                "method": method,
                "host": parts.netloc,
                "path": parts.path,
                "headers": headers,
                "body": json.loads(body) if body else None,
            }
        )
        resp = self.routes[(method, parts.path)]
        if isinstance(resp, list):
            resp = resp.pop(0)
        status, payload = resp
        return HttpResponse(status=status, headers={}, body=json.dumps(payload).encode("utf-8"))


def _config():
    return ProviderConfig(
        kind=ProviderKind.EXOSCALE,
        name="exo",
        region="ch-gva-2",
        bucket="shared",
        settings={"api_key": "EXOkey", "api_secret": "s3cr3t"},
    )


def _client(routes):
    transport = FakeTransport(routes)
    return ExoscaleClient(_config(), transport=transport), transport


def test_translate_policy_scopes_every_rule_to_prefix():
    doc = translate_policy(synthesize("shared", scope_prefix("notes")))

    assert doc["default-service-strategy"] == "deny"
    rules = doc["services"]["sos"]["rules"]
    assert [r["action"] for r in rules] == ["allow", "allow"]
    objects, listing = (r["expression"] for r in rules)
    assert "'get-object', 'head-object', 'put-object', 'delete-object'" in objects
    assert "resources.bucket == 'shared'" in objects
    assert "parameters.key.startsWith('apps/notes/')" in objects
    assert listing.startswith("operation == 'list-objects'")
    assert "parameters.prefix.startsWith('apps/notes/')" in listing


def test_translate_policy_refuses_unquotable_bucket():
    with pytest.raises(PolicyTranslationError):
        translate_policy(synthesize("bad'bucket", scope_prefix("notes")))


def test_endpoints_follow_zone():
    client, _ = _client({})
    assert client.endpoint == "https://sos-ch-gva-2.exo.io"
    assert client.api_base == "https://api-ch-gva-2.exoscale.com"


def test_signature_matches_exo2_scheme():
    client, _ = _client({})
    header = client._sign("GET", "/v2/iam-role", "", expires=1700000000)

    digest = hmac.new(b"s3cr3t", b"GET /v2/iam-role\n\n\n\n1700000000", hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    assert header == f"EXO2-HMAC-SHA256 credential=EXOkey,expires=1700000000,signature={expected}"


def test_create_role_returns_pending_role_with_operation():
    client, transport = _client(
        {("POST", "/v2/iam-role"): (200, {"id": "op-1", "state": "pending", "reference": {"id": "role-1"}})}
    )
    role = client.create_role("proprion-notes", "notes app", synthesize("shared", scope_prefix("notes")))

    assert role.role_id == "role-1"
    assert role.metadata == {"operationId": "op-1"}
    sent = transport.calls[0]
    assert sent["host"] == "api-ch-gva-2.exoscale.com"
    assert sent["headers"]["Authorization"].startswith("EXO2-HMAC-SHA256 credential=EXOkey,")
    assert sent["body"]["name"] == "proprion-notes"
    assert sent["body"]["policy"]["default-service-strategy"] == "deny"


def test_create_role_conflict_and_failure():
    policy = synthesize("shared", scope_prefix("notes"))
    client, _ = _client({("POST", "/v2/iam-role"): (409, {"message": "exists"})})
    with pytest.raises(RoleConflict):
        client.create_role("proprion-notes", "", policy)

    client, _ = _client({("POST", "/v2/iam-role"): (400, {"message": "bad expression"})})
    with pytest.raises(RoleCreationFailed) as ei:
        client.create_role("proprion-notes", "", policy)
    assert "bad expression" in str(ei.value)


def test_list_roles_only_reports_managed_roles():
    client, _ = _client(
        {
            ("GET", "/v2/iam-role"): (
                200,
                {
                    "iam-roles": [
                        {"id": "r1", "name": "proprion-notes", "description": "n"},
                        {"id": "r2", "name": "ops-admin"},
                    ]
                },
            )
        }
    )
    roles = list(client.list_roles())
    assert [(r.role_id, r.app_name) for r in roles] == [("r1", "notes")]


def test_get_role_missing_is_not_found():
    client, _ = _client({("GET", "/v2/iam-role/r9"): (404, {"message": "not found"})})
    with pytest.raises(NotFound):
        client.get_role("r9")


def test_probe_follows_operation_then_role():
    role = Role(role_id="role-1", name="proprion-notes", metadata={"operationId": "op-1"})
    client, _ = _client(
        {
            ("GET", "/v2/operation/op-1"): [
                (200, {"state": "pending"}),
                (200, {"state": "success"}),
            ],
            ("GET", "/v2/iam-role/role-1"): (
                200,
                {"id": "role-1", "policy": {"services": {"sos": {"type": "rules"}}}},
            ),
        }
    )
    assert client.probe(role) is False
    assert client.probe(role) is True


def test_probe_failed_operation_is_rejection():
    role = Role(role_id="role-1", name="proprion-notes", metadata={"operationId": "op-1"})
    client, _ = _client({("GET", "/v2/operation/op-1"): (200, {"state": "failure"})})
    with pytest.raises(PolicyRejected):
        client.probe(role)


def test_create_access_key_without_secret_is_compensated():
    client, transport = _client(
        {
            ("POST", "/v2/api-key"): (200, {"key": "EXOnew", "role-id": "role-1"}),
            ("DELETE", "/v2/api-key/EXOnew"): (200, {}),
        }
    )
    with pytest.raises(KeyCreationFailed) as ei:
        client.create_access_key("role-1")
    assert ei.value.resources == {"roleId": "role-1"}
    assert [c["method"] for c in transport.calls] == ["POST", "DELETE"]


def test_create_access_key_returns_secret_once():
    client, transport = _client(
        {("POST", "/v2/api-key"): (200, {"key": "EXOnew", "secret": "sek", "role-id": "role-1"})}
    )
    key = client.create_access_key("role-1")
    assert (key.key_id, key.secret, key.role_id) == ("EXOnew", "sek", "role-1")
    assert "sek" not in repr(key)
    assert transport.calls[0]["body"] == {"name": "proprion-key-role-1", "role-id": "role-1"}


def test_list_and_delete_access_keys():
    client, _ = _client(
        {
            ("GET", "/v2/api-key"): (
                200,
                {"api-keys": [{"key": "EXOa", "role-id": "role-1"}, {"key": "EXOb", "role-id": "role-2"}]},
            ),
            ("DELETE", "/v2/api-key/EXOa"): (404, {"message": "gone"}),
        }
    )
    assert [k.key_id for k in client.list_access_keys("role-1")] == ["EXOa"]
    assert client.delete_access_key("EXOa") == DeleteResult.NOT_FOUND


def test_client_refuses_wrong_kind():
    cfg = ProviderConfig(
        kind=ProviderKind.SCALEWAY,
        name="scw",
        region="fr-par",
        bucket="b",
        settings={"access_key": "a", "secret_key": "s", "organization_id": "o", "project_id": "p"},
    )
    with pytest.raises(ValueError):
        ExoscaleClient(cfg, transport=FakeTransport({}))
