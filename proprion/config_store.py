from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from .errors import NotFound, OpError, UsageError
from .models import ProviderConfig

PROPRION_CONFIG = "PROPRION_CONFIG"
CONFIG_SCHEMA_VERSION = 1


def default_config_path() -> Path:
    override = (os.environ.get(PROPRION_CONFIG) or "").strip()
    if override:
        return Path(override).expanduser()
    base = (os.environ.get("XDG_CONFIG_HOME") or "").strip()
    root = Path(base).expanduser() if base else Path.home() / ".config"
    return root / "proprion" / "config.json"


def _write_secure_json(*, path: Path, obj: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    try:
        os.chmod(path, 0o600)
    except OSError as e:
        raise OpError(f"failed to apply 0600 permissions to {path}: {e}") from e


class ConfigStore:
    """Provider configurations keyed by display name, stored as one JSON file."""

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path).expanduser() if path else default_config_path()
        self._providers: dict[str, ProviderConfig] | None = None

    def _read(self) -> dict[str, ProviderConfig]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as e:
            raise UsageError(f"failed to read config file {self.path}: {e}") from e
        if not isinstance(raw, dict):
            raise UsageError(f"invalid config file {self.path}: expected JSON object")
        providers = raw.get("providers") or {}
        if not isinstance(providers, dict):
            raise UsageError(f"invalid config file {self.path}: 'providers' must be an object")
        out: dict[str, ProviderConfig] = {}
        for name, item in providers.items():
            if not isinstance(item, dict):
                raise UsageError(f"invalid config file {self.path}: provider {name!r} must be an object")
            out[str(name)] = ProviderConfig.from_dict(str(name), item)
        return out

    def providers(self) -> dict[str, ProviderConfig]:
        if self._providers is None:
            self._providers = self._read()
        return self._providers

    def names(self) -> list[str]:
        return sorted(self.providers())

    def get(self, name: str) -> ProviderConfig:
        key = (name or "").strip()
        try:
            return self.providers()[key]
        except KeyError:
            raise NotFound(
                f"provider {key!r} not found (run 'proprion list-providers' to see configured providers)"
            ) from None

    def set(self, config: ProviderConfig) -> None:
        config.validate()
        self.providers()[config.name] = config
        self.save()

    def remove(self, name: str) -> bool:
        removed = self.providers().pop((name or "").strip(), None)
        if removed is None:
            return False
        self.save()
        return True

    def save(self) -> None:
        doc = {
            "version": CONFIG_SCHEMA_VERSION,
            "providers": {name: cfg.to_dict() for name, cfg in sorted(self.providers().items())},
        }
        _write_secure_json(path=self.path, obj=doc)
