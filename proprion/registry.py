from __future__ import annotations

from typing import Any

from .config_store import ConfigStore
from .models import ProviderConfig, ProviderKind
from .providers import ExoscaleClient, ProviderClient, ScalewayClient
from .transport import HttpTransport

ADAPTERS: dict[ProviderKind, type[ProviderClient]] = {
    ProviderKind.SCALEWAY: ScalewayClient,
    ProviderKind.EXOSCALE: ExoscaleClient,
}

_missing = [k.value for k in ProviderKind if k not in ADAPTERS]
if _missing:
    raise RuntimeError(f"no provider adapter registered for: {', '.join(_missing)}")


class ProviderRegistry:
    """Turns configured provider names into live clients."""

    def __init__(
        self,
        store: ConfigStore | None = None,
        *,
        transport: HttpTransport | None = None,
        session: Any = None,
    ) -> None:
        self.store = store
        self.transport = transport
        self.session = session
        self._clients: dict[str, ProviderClient] = {}

    def client_for(self, config: ProviderConfig) -> ProviderClient:
        cached = self._clients.get(config.name)
        if cached is not None and cached.config == config:
            return cached
        adapter = ADAPTERS[config.kind]
        client = adapter(config, transport=self.transport, session=self.session)
        self._clients[config.name] = client
        return client

    def resolve(self, name: str) -> ProviderClient:
        if self.store is None:
            raise ValueError("registry has no config store to resolve provider names")
        return self.client_for(self.store.get(name))
