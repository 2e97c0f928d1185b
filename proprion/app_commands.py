from __future__ import annotations

import argparse

from . import workflow
from .cli_shared import (
    EXOSCALE_API_KEY,
    EXOSCALE_API_SECRET,
    EXOSCALE_ZONE,
    SCW_ACCESS_KEY,
    SCW_DEFAULT_ORGANIZATION_ID,
    SCW_DEFAULT_PROJECT_ID,
    SCW_DEFAULT_REGION,
    SCW_SECRET_KEY,
    GlobalOpts,
    UsageError,
    _env_or_none,
    _eprint,
    _print_json,
    _require_str,
)
from .config_store import ConfigStore
from .models import ProviderConfig, ProviderKind
from .registry import ProviderRegistry

DEFAULT_SCALEWAY_REGION = "fr-par"
DEFAULT_EXOSCALE_ZONE = "ch-gva-2"


def _store(g: GlobalOpts) -> ConfigStore:
    return ConfigStore(g.config_path or None)


def _registry(g: GlobalOpts) -> ProviderRegistry:
    return ProviderRegistry(_store(g))


def _provider(g: GlobalOpts, name: str | None) -> tuple[ProviderConfig, ProviderRegistry]:
    key = _require_str(name, "provider", hint="pass --provider; see 'proprion list-providers'")
    registry = _registry(g)
    return registry.resolve(key).config, registry


def _save_provider(cfg: ProviderConfig, *, check: bool, g: GlobalOpts) -> int:
    cfg.validate()
    if check:
        workflow.ensure_provider_reachable(cfg, registry=_registry(g))
    _store(g).set(cfg)
    _print_json(
        {"provider": cfg.name, "type": cfg.kind.value, "bucket": cfg.bucket, "checked": check, "saved": True},
        pretty=g.pretty,
    )
    return 0


def cmd_add_provider_scaleway(args: argparse.Namespace, g: GlobalOpts) -> int:
    name = _require_str(args.name, "name", hint="pass --name")
    settings = {
        "access_key": _require_str(
            args.access_key or _env_or_none(SCW_ACCESS_KEY),
            "access key",
            hint=f"pass --access-key or set {SCW_ACCESS_KEY}",
        ),
        "secret_key": _require_str(
            args.secret_key or _env_or_none(SCW_SECRET_KEY),
            "secret key",
            hint=f"pass --secret-key or set {SCW_SECRET_KEY}",
        ),
        "organization_id": _require_str(
            args.organization_id or _env_or_none(SCW_DEFAULT_ORGANIZATION_ID),
            "organization id",
            hint=f"pass --organization-id or set {SCW_DEFAULT_ORGANIZATION_ID}",
        ),
        "project_id": _require_str(
            args.project_id or _env_or_none(SCW_DEFAULT_PROJECT_ID),
            "project id",
            hint=f"pass --project-id or set {SCW_DEFAULT_PROJECT_ID}",
        ),
    }
    cfg = ProviderConfig(
        kind=ProviderKind.SCALEWAY,
        name=name,
        region=args.region or _env_or_none(SCW_DEFAULT_REGION) or DEFAULT_SCALEWAY_REGION,
        bucket=_require_str(args.bucket, "bucket", hint="pass --bucket"),
        settings=settings,
    )
    return _save_provider(cfg, check=not args.no_check, g=g)


def cmd_add_provider_exoscale(args: argparse.Namespace, g: GlobalOpts) -> int:
    name = _require_str(args.name, "name", hint="pass --name")
    settings = {
        "api_key": _require_str(
            args.api_key or _env_or_none(EXOSCALE_API_KEY),
            "api key",
            hint=f"pass --api-key or set {EXOSCALE_API_KEY}",
        ),
        "api_secret": _require_str(
            args.api_secret or _env_or_none(EXOSCALE_API_SECRET),
            "api secret",
            hint=f"pass --api-secret or set {EXOSCALE_API_SECRET}",
        ),
    }
    cfg = ProviderConfig(
        kind=ProviderKind.EXOSCALE,
        name=name,
        region=args.zone or _env_or_none(EXOSCALE_ZONE) or DEFAULT_EXOSCALE_ZONE,
        bucket=_require_str(args.bucket, "bucket", hint="pass --bucket"),
        settings=settings,
    )
    return _save_provider(cfg, check=not args.no_check, g=g)


def cmd_list_providers(args: argparse.Namespace, g: GlobalOpts) -> int:
    store = _store(g)
    out = [
        {"name": cfg.name, "type": cfg.kind.value, "region": cfg.region, "bucket": cfg.bucket}
        for cfg in (store.providers()[n] for n in store.names())
    ]
    _print_json(out, pretty=g.pretty)
    return 0


def cmd_remove_provider(args: argparse.Namespace, g: GlobalOpts) -> int:
    name = _require_str(args.name, "name", hint="pass the provider name")
    removed = _store(g).remove(name)
    _print_json({"provider": name, "removed": removed}, pretty=g.pretty)
    return 0


def cmd_config_path(args: argparse.Namespace, g: GlobalOpts) -> int:
    print(str(_store(g).path))
    return 0


def cmd_check_provider(args: argparse.Namespace, g: GlobalOpts) -> int:
    cfg, registry = _provider(g, args.provider)
    workflow.ensure_provider_reachable(cfg, registry=registry)
    _print_json({"provider": cfg.name, "type": cfg.kind.value, "reachable": True}, pretty=g.pretty)
    return 0


def cmd_create_app(args: argparse.Namespace, g: GlobalOpts) -> int:
    cfg, registry = _provider(g, args.provider)
    name = _require_str(args.name, "app name", hint="pass --name")
    bundle = workflow.create_app(cfg, name, str(args.description or ""), registry=registry)
    _print_json(bundle.to_dict(), pretty=g.pretty)
    if not g.quiet:
        _eprint("note: secretKey is shown only once and cannot be retrieved again; store it now.")
    return 0


def cmd_issue_key(args: argparse.Namespace, g: GlobalOpts) -> int:
    cfg, registry = _provider(g, args.provider)
    role_id = _require_str(args.role_id, "role id", hint="pass --role-id")
    bundle = workflow.issue_app_key(cfg, role_id, registry=registry)
    _print_json(bundle.to_dict(), pretty=g.pretty)
    if not g.quiet:
        _eprint("note: secretKey is shown only once and cannot be retrieved again; store it now.")
    return 0


def cmd_list_apps(args: argparse.Namespace, g: GlobalOpts) -> int:
    cfg, registry = _provider(g, args.provider)
    apps = workflow.list_apps(cfg, registry=registry)
    _print_json([a.to_dict() for a in apps], pretty=g.pretty)
    return 0


def cmd_delete_app(args: argparse.Namespace, g: GlobalOpts) -> int:
    app = (args.app or "").strip()
    role_id = (args.role_id or "").strip()
    if bool(app) == bool(role_id):
        raise UsageError("pass exactly one of --app or --role-id")
    cfg, registry = _provider(g, args.provider)
    report = workflow.delete_app(cfg, app or None, role_id=role_id or None, registry=registry)
    _print_json(report.to_dict(), pretty=g.pretty)
    return 0
