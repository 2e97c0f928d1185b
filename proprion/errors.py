from __future__ import annotations

from typing import Any, Mapping


class ProprionError(Exception):
    pass


class UsageError(ProprionError):
    pass


class OpError(ProprionError):
    pass


class ProviderApiError(OpError):
    """A provider API answered with a non-success status."""

    def __init__(self, *, status: int, message: str, label: str = "") -> None:
        self.status = int(status)
        self.message = message
        self.label = label
        prefix = f"{label} failed: " if label else ""
        super().__init__(f"{prefix}{message} (status: {self.status})")

    @property
    def transient(self) -> bool:
        return self.status == 404 or self.status == 429 or self.status >= 500


class NotFound(OpError):
    pass


class ProvisioningError(OpError):
    """Failure inside a provisioning sequence.

    ``step`` is the furthest workflow step reached before the failure and
    ``resources`` maps resource kinds to provider-native IDs that still exist.
    """

    def __init__(
        self,
        message: str,
        *,
        step: Any = None,
        resources: Mapping[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.step = step
        self.resources = dict(resources or {})
        super().__init__(self._render())

    def attach(self, *, step: Any, resources: Mapping[str, Any] | None = None) -> "ProvisioningError":
        if self.step is None:
            self.step = step
        for k, v in (resources or {}).items():
            self.resources.setdefault(k, v)
        self.args = (self._render(),)
        return self

    def _render(self) -> str:
        parts = [self.message]
        if self.step is not None:
            parts.append(f"furthest step: {getattr(self.step, 'value', self.step)}")
        if self.resources:
            left = ", ".join(f"{k}={v}" for k, v in sorted(self.resources.items()))
            parts.append(f"resources left behind: {left}")
        return "; ".join(parts)


class ProviderUnreachable(ProvisioningError):
    """Transport-level failure talking to a provider endpoint."""


class InvalidScope(ProvisioningError, UsageError):
    pass


class BucketConflict(ProvisioningError):
    pass


class PolicyTranslationError(ProvisioningError):
    pass


class PolicyRejected(ProvisioningError):
    pass


class RoleCreationFailed(ProvisioningError):
    pass


class RoleConflict(RoleCreationFailed):
    pass


class PropagationTimedOut(ProvisioningError):
    pass


class KeyCreationFailed(ProvisioningError):
    pass


class KeyDeletionFailed(ProvisioningError):
    pass


class AmbiguousApp(ProvisioningError):
    pass


class BundleAssemblyError(ProvisioningError):
    pass


class ProvisioningCancelled(ProvisioningError):
    pass
