"""App provisioning and teardown on top of a ``ProviderClient``.

Create runs strictly in order::

    init -> bucket_ensured -> role_created -> role_propagated -> key_created -> bundle_returned

Failures carry the furthest step reached and the IDs of anything that
already exists. Nothing created before a failure is deleted automatically,
with one exception: an access key whose secret could not be handed to the
caller is deleted, since nobody can ever use it.
"""

from __future__ import annotations

import contextlib
import threading
import weakref
from typing import Any, Callable, Iterator

from . import events
from .errors import (
    AmbiguousApp,
    BundleAssemblyError,
    KeyCreationFailed,
    KeyDeletionFailed,
    NotFound,
    OpError,
    PolicyRejected,
    ProprionError,
    PropagationTimedOut,
    ProvisioningCancelled,
    ProvisioningError,
    RoleConflict,
    RoleCreationFailed,
    UsageError,
)
from .models import (
    AppSummary,
    CredentialBundle,
    DeleteResult,
    DeletionReport,
    PolicyDocument,
    ProviderConfig,
    Role,
    ScopePrefix,
    WorkflowStep,
)
from .policy import scope_prefix, synthesize
from .propagation import PropagationWaiter
from .providers import ProviderClient
from .registry import ProviderRegistry

# Entries vanish once no caller holds the lock.
_APP_LOCKS: weakref.WeakValueDictionary[tuple[str, str], threading.Lock] = weakref.WeakValueDictionary()
_APP_LOCKS_GUARD = threading.Lock()


def _app_lock(provider_name: str, app_name: str) -> threading.Lock:
    with _APP_LOCKS_GUARD:
        return _APP_LOCKS.setdefault((provider_name, app_name), threading.Lock())


class _Run:
    def __init__(self, event: dict[str, Any]) -> None:
        self.event = event
        self.step = WorkflowStep.INIT
        self.resources: dict[str, str] = {}

    def advance(self, step: WorkflowStep, **resources: str) -> None:
        self.step = step
        self.resources.update(resources)
        self.event["step"] = step.value
        self.event.update(
            {
                {"roleId": "role_id", "accessKeyId": "access_key_id"}.get(k, k): v
                for k, v in resources.items()
            }
        )


class ProvisioningWorkflow:
    def __init__(
        self,
        client: ProviderClient,
        *,
        waiter: PropagationWaiter | None = None,
        emit: Callable[[dict[str, Any]], None] = events.emit,
    ) -> None:
        self.client = client
        self.waiter = waiter or PropagationWaiter(budget_seconds=client.propagation_budget_seconds)
        self._emit = emit

    def _new_event(self, name: str, **fields: Any) -> dict[str, Any]:
        return events.new_event(
            name,
            provider=self.client.name,
            provider_kind=self.client.kind.value,
            bucket=self.client.config.bucket,
            **fields,
        )

    @contextlib.contextmanager
    def _guard(self, run: _Run, error_cls: type[ProvisioningError], label: str) -> Iterator[None]:
        try:
            yield
        except ProvisioningError as e:
            raise e.attach(step=run.step, resources=run.resources)
        except NotFound:
            raise
        except OpError as e:
            raise error_cls(f"{label} failed: {e}", step=run.step, resources=run.resources) from e
        except KeyboardInterrupt as e:
            raise ProvisioningCancelled(
                f"cancelled during {label}", step=run.step, resources=run.resources
            ) from e

    def _run_operation(self, event: dict[str, Any], run: _Run, body: Callable[[], Any]) -> Any:
        try:
            result = body()
            event["outcome"] = "success"
            return result
        except ProprionError as e:
            events.record_error(event, e)
            raise
        finally:
            event["step"] = run.step.value
            self._emit(event)

    # -- create ---------------------------------------------------------

    def create_app(self, app_name: str, description: str) -> CredentialBundle:
        event = self._new_event("proprion.create_app", app=str(app_name))
        run = _Run(event)

        def body() -> CredentialBundle:
            with self._guard(run, ProvisioningError, "policy synthesis"):
                scope = scope_prefix(app_name)
                policy = synthesize(self.client.config.bucket, scope)
            event["app"] = scope.app_name
            event["prefix"] = scope.value
            with _app_lock(self.client.name, scope.app_name):
                return self._create(run, scope, policy, description)

        return self._run_operation(event, run, body)

    def _create(
        self,
        run: _Run,
        scope: ScopePrefix,
        policy: PolicyDocument,
        description: str,
    ) -> CredentialBundle:
        with self._guard(run, ProvisioningError, "ensure bucket"):
            bucket_status = self.client.ensure_bucket(policy.bucket)
        run.event["bucket_status"] = bucket_status.value
        run.advance(WorkflowStep.BUCKET_ENSURED)

        with self._guard(run, RoleCreationFailed, "create role"):
            existing = [r for r in self.client.list_roles() if r.app_name == scope.app_name]
            if existing:
                ids = ", ".join(r.role_id for r in existing)
                raise RoleConflict(f"app {scope.app_name!r} already exists as role {ids}")
            role = self.client.create_role(
                self.client.role_name(scope.app_name), description, policy
            )
        run.advance(WorkflowStep.ROLE_CREATED, roleId=role.role_id)

        with self._guard(run, RoleCreationFailed, "verify role"):
            self._settle_duplicates(run, role, scope)
        return self._finish(run, role, scope)

    def _settle_duplicates(self, run: _Run, role: Role, scope: ScopePrefix) -> None:
        # Another process may have created the same app concurrently. The oldest
        # role survives; every other creator withdraws its own role.
        rivals = [
            r for r in self.client.list_roles()
            if r.app_name == scope.app_name and r.role_id != role.role_id
        ]
        if not rivals:
            return
        keeper = min([role, *rivals], key=lambda r: (r.created_at or "", r.role_id))
        if keeper.role_id == role.role_id:
            return
        self.client.delete_role(role.role_id)
        run.resources.pop("roleId", None)
        run.event["role_withdrawn"] = role.role_id
        raise RoleConflict(f"app {scope.app_name!r} was created concurrently as role {keeper.role_id}")

    def _finish(self, run: _Run, role: Role, scope: ScopePrefix) -> CredentialBundle:
        with self._guard(run, PolicyRejected, "propagation wait"):
            outcome = self.waiter.wait_until_usable(role, self.client.probe)
        run.event["propagation_probes"] = outcome.probes
        run.event["propagation_wait_ms"] = int(outcome.waited_seconds * 1000)
        if not outcome.usable:
            raise PropagationTimedOut(
                f"role {role.role_id} not confirmed usable after {outcome.waited_seconds:.1f}s "
                f"({outcome.probes} probes); retry key issuance later or delete the role",
                step=run.step,
                resources=run.resources,
            )
        run.advance(WorkflowStep.ROLE_PROPAGATED)

        with self._guard(run, KeyCreationFailed, "create access key"):
            key = self.client.create_access_key(role.role_id)
        run.advance(WorkflowStep.KEY_CREATED, accessKeyId=key.key_id)

        try:
            bundle = CredentialBundle.assemble(
                key=key,
                role=role,
                bucket=self.client.config.bucket,
                scope=scope,
                endpoint=self.client.endpoint,
            )
        except BundleAssemblyError as e:
            self._discard_key(run, key.key_id)
            raise e.attach(step=run.step, resources=run.resources)
        except KeyboardInterrupt as e:
            self._discard_key(run, key.key_id)
            raise ProvisioningCancelled(
                "cancelled before credentials were returned",
                step=run.step,
                resources=run.resources,
            ) from e
        run.advance(WorkflowStep.BUNDLE_RETURNED)
        return bundle

    def _discard_key(self, run: _Run, key_id: str) -> None:
        try:
            self.client.delete_access_key(key_id)
        except OpError as e:
            run.event["key_discard_error"] = str(e)
            return
        run.resources.pop("accessKeyId", None)
        run.event["key_discarded"] = True

    # -- resume ---------------------------------------------------------

    def issue_key(self, role_id: str) -> CredentialBundle:
        """Mint a key for an app role that already exists."""

        event = self._new_event("proprion.issue_key", role_id=str(role_id))
        run = _Run(event)

        def body() -> CredentialBundle:
            target = _require_text(role_id, "role id")
            role = self.client.get_role(target)
            if role.app_name is None:
                raise NotFound(f"role {target} is not an app role managed by proprion")
            with self._guard(run, ProvisioningError, "policy synthesis"):
                scope = scope_prefix(role.app_name)
            event["app"] = scope.app_name
            event["prefix"] = scope.value
            with _app_lock(self.client.name, scope.app_name):
                run.advance(WorkflowStep.ROLE_CREATED, roleId=role.role_id)
                return self._finish(run, role, scope)

        return self._run_operation(event, run, body)

    # -- delete ---------------------------------------------------------

    def _lookup(self, identifier: str) -> list[Role]:
        roles = list(self.client.list_roles())
        by_id = [r for r in roles if r.role_id == identifier]
        if by_id:
            return by_id
        matches: dict[str, Role] = {}
        for r in roles:
            if identifier in (r.app_name, r.name) or (r.description and r.description == identifier):
                matches[r.role_id] = r
        return list(matches.values())

    def delete_app(self, app_identifier: str | None = None, *, role_id: str | None = None) -> DeletionReport:
        event = self._new_event(
            "proprion.delete_app",
            app_identifier=str(app_identifier or ""),
            role_id=str(role_id or ""),
        )
        run = _Run(event)

        def body() -> DeletionReport:
            if role_id:
                target = _require_text(role_id, "role id")
                try:
                    role = self.client.get_role(target)
                except NotFound:
                    event["role_result"] = DeleteResult.NOT_FOUND.value
                    return DeletionReport(role_id=target, role_result=DeleteResult.NOT_FOUND)
                if role.app_name is None:
                    raise NotFound(f"role {target} is not an app role managed by proprion")
            else:
                ident = _require_text(app_identifier, "app name or role id")
                matches = self._lookup(ident)
                if len(matches) > 1:
                    ids = ", ".join(sorted(r.role_id for r in matches))
                    raise AmbiguousApp(
                        f"{ident!r} matches {len(matches)} roles ({ids}); pass an explicit role id",
                        step=run.step,
                    )
                if not matches:
                    event["role_result"] = DeleteResult.NOT_FOUND.value
                    return DeletionReport(role_id=None, role_result=DeleteResult.NOT_FOUND)
                target = matches[0].role_id
            event["role_id"] = target
            return self._teardown(run, target)

        return self._run_operation(event, run, body)

    def _teardown(self, run: _Run, role_id: str) -> DeletionReport:
        deleted: list[str] = []
        missing: list[str] = []
        if not self.client.cascades_key_deletion:
            failures: dict[str, str] = {}
            for key in self.client.list_access_keys(role_id):
                try:
                    result = self.client.delete_access_key(key.key_id)
                except OpError as e:
                    failures[key.key_id] = str(e)
                    continue
                (deleted if result == DeleteResult.DELETED else missing).append(key.key_id)
            run.event["keys_deleted"] = len(deleted)
            if failures:
                detail = "; ".join(f"{k}: {v}" for k, v in sorted(failures.items()))
                raise KeyDeletionFailed(
                    f"role {role_id} was not deleted because {len(failures)} access key(s) remain ({detail})",
                    step=run.step,
                    resources={"roleId": role_id, "accessKeyIds": ",".join(sorted(failures))},
                )
        role_result = self.client.delete_role(role_id)
        run.event["role_result"] = role_result.value
        return DeletionReport(
            role_id=role_id,
            role_result=role_result,
            deleted_keys=tuple(deleted),
            missing_keys=tuple(missing),
        )

    # -- read-only ------------------------------------------------------

    def list_apps(self) -> list[AppSummary]:
        event = self._new_event("proprion.list_apps")
        run = _Run(event)

        def body() -> list[AppSummary]:
            apps = [
                AppSummary(app_name=r.app_name, role_id=r.role_id, description=r.description)
                for r in self.client.list_roles()
                if r.app_name
            ]
            event["apps"] = len(apps)
            return sorted(apps, key=lambda a: (a.app_name, a.role_id))

        return self._run_operation(event, run, body)

    def ensure_reachable(self) -> None:
        event = self._new_event("proprion.check_provider")
        run = _Run(event)
        self._run_operation(event, run, self.client.check_reachable)


def _require_text(val: str | None, name: str) -> str:
    out = (val or "").strip()
    if not out:
        raise UsageError(f"missing {name}")
    return out


_DEFAULT_REGISTRY = ProviderRegistry()


def _workflow(provider_config: ProviderConfig, registry: ProviderRegistry | None) -> ProvisioningWorkflow:
    return ProvisioningWorkflow((registry or _DEFAULT_REGISTRY).client_for(provider_config))


def create_app(
    provider_config: ProviderConfig,
    app_name: str,
    description: str,
    *,
    registry: ProviderRegistry | None = None,
) -> CredentialBundle:
    return _workflow(provider_config, registry).create_app(app_name, description)


def issue_app_key(
    provider_config: ProviderConfig,
    role_id: str,
    *,
    registry: ProviderRegistry | None = None,
) -> CredentialBundle:
    return _workflow(provider_config, registry).issue_key(role_id)


def delete_app(
    provider_config: ProviderConfig,
    app_identifier: str | None = None,
    *,
    role_id: str | None = None,
    registry: ProviderRegistry | None = None,
) -> DeletionReport:
    return _workflow(provider_config, registry).delete_app(app_identifier, role_id=role_id)


def list_apps(
    provider_config: ProviderConfig,
    *,
    registry: ProviderRegistry | None = None,
) -> list[AppSummary]:
    return _workflow(provider_config, registry).list_apps()


def ensure_provider_reachable(
    provider_config: ProviderConfig,
    *,
    registry: ProviderRegistry | None = None,
) -> None:
    _workflow(provider_config, registry).ensure_reachable()
