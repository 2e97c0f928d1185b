import pytest

from proprion.errors import BundleAssemblyError, ProvisioningError
from proprion.models import BUNDLE_FIELDS, AccessKey, CredentialBundle, Role, ScopePrefix
from proprion.policy import scope_prefix


def _assemble(**overrides):
    kwargs = {
        "key": AccessKey(key_id="AK", role_id="r-1", secret="sek"),
        "role": Role(role_id="r-1", name="proprion-notes"),
        "bucket": "shared",
        "scope": scope_prefix("notes"),
        "endpoint": "https://s3.fr-par.scw.cloud",
    }
    kwargs.update(overrides)
    return CredentialBundle.assemble(**kwargs)


def test_bundle_has_exactly_the_six_fields():
    out = _assemble().to_dict()
    assert tuple(out) == BUNDLE_FIELDS
    assert out["prefix"] == "apps/notes/"
    assert out["secretKey"] == "sek"


def test_bundle_repr_hides_secret():
    assert "sek" not in repr(_assemble())


@pytest.mark.parametrize(
    "overrides",
    [
        {"key": AccessKey(key_id="AK", role_id="r-1")},
        {"key": AccessKey(key_id="AK", role_id="r-2", secret="sek")},
        {"scope": ScopePrefix(app_name="notes", value="apps/notes")},
        {"bucket": ""},
        {"endpoint": ""},
    ],
)
def test_incomplete_bundle_is_refused(overrides):
    with pytest.raises(BundleAssemblyError):
        _assemble(**overrides)


def test_role_app_name_comes_from_managed_prefix():
    assert Role(role_id="r", name="proprion-notes").app_name == "notes"
    assert Role(role_id="r", name="proprion-").app_name is None
    assert Role(role_id="r", name="admins").app_name is None


def test_provisioning_error_renders_step_and_resources():
    err = ProvisioningError("boom")
    err.attach(step="role_created", resources={"roleId": "r-1"})
    assert str(err) == "boom; furthest step: role_created; resources left behind: roleId=r-1"
    err.attach(step="key_created", resources={"roleId": "other", "accessKeyId": "AK"})
    assert err.step == "role_created"
    assert err.resources == {"roleId": "r-1", "accessKeyId": "AK"}
