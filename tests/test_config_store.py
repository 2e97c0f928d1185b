import json
import os
import stat

import pytest

from proprion.config_store import ConfigStore, default_config_path
from proprion.errors import NotFound, UsageError
from proprion.models import ProviderConfig, ProviderKind


def _scaleway(name="scw"):
    return ProviderConfig(
        kind=ProviderKind.SCALEWAY,
        name=name,
        region="fr-par",
        bucket="shared",
        settings={"access_key": "SCWX", "secret_key": "sek", "organization_id": "org", "project_id": "proj"},
    )


def test_default_path_prefers_env_override(monkeypatch, tmp_path):
    monkeypatch.setenv("PROPRION_CONFIG", str(tmp_path / "custom.json"))
    assert default_config_path() == tmp_path / "custom.json"


def test_default_path_uses_xdg_config_home(monkeypatch, tmp_path):
    monkeypatch.delenv("PROPRION_CONFIG", raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
    assert default_config_path() == tmp_path / "proprion" / "config.json"


def test_set_persists_with_private_permissions(tmp_path):
    path = tmp_path / "nested" / "config.json"
    store = ConfigStore(path)
    store.set(_scaleway())

    mode = stat.S_IMODE(os.stat(path).st_mode)
    assert mode == 0o600
    doc = json.loads(path.read_text(encoding="utf-8"))
    assert doc["version"] == 1
    assert doc["providers"]["scw"]["type"] == "scaleway"
    assert doc["providers"]["scw"]["region"] == "fr-par"

    reloaded = ConfigStore(path).get("scw")
    assert reloaded == _scaleway()


def test_exoscale_region_is_stored_as_zone(tmp_path):
    store = ConfigStore(tmp_path / "c.json")
    store.set(
        ProviderConfig(
            kind=ProviderKind.EXOSCALE,
            name="exo",
            region="de-fra-1",
            bucket="b",
            settings={"api_key": "EXO", "api_secret": "s"},
        )
    )
    raw = json.loads((tmp_path / "c.json").read_text(encoding="utf-8"))["providers"]["exo"]
    assert raw["zone"] == "de-fra-1"
    assert "region" not in raw


def test_get_missing_provider_is_not_found(tmp_path):
    with pytest.raises(NotFound):
        ConfigStore(tmp_path / "absent.json").get("nope")


def test_incomplete_provider_is_refused(tmp_path):
    cfg = ProviderConfig(kind=ProviderKind.EXOSCALE, name="exo", region="ch-gva-2", bucket="b", settings={})
    with pytest.raises(UsageError):
        ConfigStore(tmp_path / "c.json").set(cfg)
    assert not (tmp_path / "c.json").exists()


def test_remove_reports_whether_anything_changed(tmp_path):
    store = ConfigStore(tmp_path / "c.json")
    store.set(_scaleway("a"))
    store.set(_scaleway("b"))
    assert store.remove("a") is True
    assert store.remove("a") is False
    assert ConfigStore(tmp_path / "c.json").names() == ["b"]


def test_corrupt_file_is_usage_error(tmp_path):
    path = tmp_path / "c.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(UsageError):
        ConfigStore(path).names()


def test_unknown_provider_type_is_usage_error(tmp_path):
    path = tmp_path / "c.json"
    path.write_text(json.dumps({"providers": {"x": {"type": "aws"}}}), encoding="utf-8")
    with pytest.raises(UsageError):
        ConfigStore(path).providers()


def test_settings_are_hidden_from_repr():
    assert "sek" not in repr(_scaleway())
