from __future__ import annotations

import argparse
import contextlib
import io
import sys
from typing import Any

import click
import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape

from .. import __version__, events
from ..app_commands import (
    cmd_add_provider_exoscale,
    cmd_add_provider_scaleway,
    cmd_check_provider,
    cmd_config_path,
    cmd_create_app,
    cmd_delete_app,
    cmd_issue_key,
    cmd_list_apps,
    cmd_list_providers,
    cmd_remove_provider,
)
from ..cli_shared import GlobalOpts, OpError, UsageError, _eprint


def _bootstrap_env() -> None:
    # Discover and load .env without overriding already-exported values.
    load_dotenv()


_ERROR_CONSOLE = Console(stderr=True)


def _rich_error(msg: str) -> None:
    _ERROR_CONSOLE.print(f"[bold red]error:[/bold red] {escape(msg)}", highlight=False, soft_wrap=True)


def _root_help_text(*, root_app: typer.Typer, prog_name: str) -> str:
    buf = io.StringIO()
    with contextlib.redirect_stdout(buf):
        try:
            root_app(args=["--help"], prog_name=prog_name, standalone_mode=False)
        except (typer.Exit, click.ClickException):
            pass
    return str(buf.getvalue() or "").strip()


def _render_usage_error_with_help(
    *,
    message: str,
    ctx: click.Context | None = None,
    fallback_help: str = "",
) -> None:
    _rich_error(message)
    help_text = ""
    if isinstance(ctx, click.Context):
        help_text = str(ctx.get_help() or "").strip()
    if not help_text:
        help_text = str(fallback_help or "").strip()
    if help_text:
        _eprint("")
        _eprint(help_text)


def _namespace(**kwargs: Any) -> argparse.Namespace:
    return argparse.Namespace(**kwargs)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"proprion {__version__}")
        raise typer.Exit(code=0)


app = typer.Typer(
    name="proprion",
    help="Per-app, prefix-scoped object storage credentials on Scaleway and Exoscale.",
    no_args_is_help=True,
    add_completion=False,
)
add_provider_app = typer.Typer(help="Register a provider account", no_args_is_help=True)
app.add_typer(add_provider_app, name="add-provider")


@app.callback()
def app_callback(
    ctx: typer.Context,
    config: str | None = typer.Option(
        None,
        "--config",
        help="Path to the provider config JSON (env override: PROPRION_CONFIG)",
    ),
    plain_json: bool = typer.Option(False, "--plain-json", help="Emit compact JSON output"),
    quiet: bool = typer.Option(False, "--quiet", help="Silence stderr event logging and notes"),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    del version
    events.set_sink(None if quiet else events.stderr_sink)
    ctx.obj = {"g": GlobalOpts(config_path=(config or "").strip(), pretty=not plain_json, quiet=quiet)}


def _ctx_global(ctx: typer.Context) -> GlobalOpts:
    root = ctx.find_root()
    if isinstance(root.obj, dict) and isinstance(root.obj.get("g"), GlobalOpts):
        return root.obj["g"]
    return GlobalOpts()


def _invoke(ctx: typer.Context, func: Any, **kwargs: Any) -> None:
    g = _ctx_global(ctx)
    args = _namespace(**kwargs)
    try:
        code = int(func(args, g))
    except UsageError as e:
        _render_usage_error_with_help(message=str(e), ctx=ctx)
        raise typer.Exit(code=2)
    except OpError as e:
        _rich_error(str(e))
        raise typer.Exit(code=1)

    if code:
        raise typer.Exit(code=code)


def _invoke_from_locals(
    ctx: typer.Context,
    func: Any,
    local_vars: dict[str, Any],
    *,
    drop: tuple[str, ...] = ("ctx",),
) -> None:
    _invoke(ctx, func, **{k: v for k, v in local_vars.items() if k not in drop})


@add_provider_app.command("scaleway", help="Register a Scaleway project (checks reachability first).")
def add_provider_scaleway(
    ctx: typer.Context,
    name: str = typer.Option(..., "--name", help="Display name for this provider"),
    bucket: str = typer.Option(..., "--bucket", help="Bucket that holds every app prefix"),
    region: str | None = typer.Option(None, "--region", help="Region (default: SCW_DEFAULT_REGION or fr-par)"),
    access_key: str | None = typer.Option(None, "--access-key", help="API access key (default: SCW_ACCESS_KEY)"),
    secret_key: str | None = typer.Option(None, "--secret-key", help="API secret key (default: SCW_SECRET_KEY)"),
    organization_id: str | None = typer.Option(
        None, "--organization-id", help="Organization ID (default: SCW_DEFAULT_ORGANIZATION_ID)"
    ),
    project_id: str | None = typer.Option(
        None, "--project-id", help="Project ID (default: SCW_DEFAULT_PROJECT_ID)"
    ),
    no_check: bool = typer.Option(False, "--no-check", help="Save without contacting the provider"),
) -> None:
    _invoke_from_locals(ctx, cmd_add_provider_scaleway, locals())


@add_provider_app.command("exoscale", help="Register an Exoscale organization (checks reachability first).")
def add_provider_exoscale(
    ctx: typer.Context,
    name: str = typer.Option(..., "--name", help="Display name for this provider"),
    bucket: str = typer.Option(..., "--bucket", help="Bucket that holds every app prefix"),
    zone: str | None = typer.Option(None, "--zone", help="Zone (default: EXOSCALE_ZONE or ch-gva-2)"),
    api_key: str | None = typer.Option(None, "--api-key", help="API key (default: EXOSCALE_API_KEY)"),
    api_secret: str | None = typer.Option(None, "--api-secret", help="API secret (default: EXOSCALE_API_SECRET)"),
    no_check: bool = typer.Option(False, "--no-check", help="Save without contacting the provider"),
) -> None:
    _invoke_from_locals(ctx, cmd_add_provider_exoscale, locals())


@app.command("list-providers", help="List configured providers (no secrets).")
def list_providers(ctx: typer.Context) -> None:
    _invoke(ctx, cmd_list_providers)


@app.command("remove-provider", help="Forget a configured provider. Cloud resources are untouched.")
def remove_provider(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Provider display name"),
) -> None:
    _invoke_from_locals(ctx, cmd_remove_provider, locals())


@app.command("config-path", help="Print the config file location.")
def config_path(ctx: typer.Context) -> None:
    _invoke(ctx, cmd_config_path)


@app.command("check-provider", help="Verify IAM and object storage access for a provider.")
def check_provider(
    ctx: typer.Context,
    provider: str = typer.Option(..., "--provider", "-p", help="Provider display name"),
) -> None:
    _invoke_from_locals(ctx, cmd_check_provider, locals())


@app.command("create-app", help="Provision an app and print its credential bundle once.")
def create_app(
    ctx: typer.Context,
    provider: str = typer.Option(..., "--provider", "-p", help="Provider display name"),
    name: str = typer.Option(..., "--name", "-n", help="App name; becomes the apps/<name>/ prefix"),
    description: str = typer.Option("", "--description", "-d", help="Free-text description stored on the role"),
) -> None:
    _invoke_from_locals(ctx, cmd_create_app, locals())


@app.command("issue-key", help="Issue a fresh key for an existing app role.")
def issue_key(
    ctx: typer.Context,
    provider: str = typer.Option(..., "--provider", "-p", help="Provider display name"),
    role_id: str = typer.Option(..., "--role-id", help="Role ID reported by create-app"),
) -> None:
    _invoke_from_locals(ctx, cmd_issue_key, locals())


@app.command("list-apps", help="List apps provisioned on a provider.")
def list_apps(
    ctx: typer.Context,
    provider: str = typer.Option(..., "--provider", "-p", help="Provider display name"),
) -> None:
    _invoke_from_locals(ctx, cmd_list_apps, locals())


@app.command("delete-app", help="Delete an app's keys and role.")
def delete_app(
    ctx: typer.Context,
    provider: str = typer.Option(..., "--provider", "-p", help="Provider display name"),
    app_name: str | None = typer.Option(None, "--app", help="App name, role name or exact description"),
    role_id: str | None = typer.Option(None, "--role-id", help="Role ID (skips lookup)"),
) -> None:
    _invoke(ctx, cmd_delete_app, provider=provider, app=app_name, role_id=role_id)


def _run_cli(*, root_app: typer.Typer, prog_name: str, argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    _bootstrap_env()
    try:
        result = root_app(args=argv, prog_name=prog_name, standalone_mode=False)
        if result is None:
            return 0
        return int(result)
    except typer.Exit as e:
        return int(e.exit_code)
    except click.exceptions.Abort:
        _rich_error("aborted")
        return 1
    except click.ClickException as e:
        if isinstance(e, click.UsageError):
            _render_usage_error_with_help(message=e.format_message(), ctx=getattr(e, "ctx", None))
            return int(e.exit_code)
        _rich_error(e.format_message())
        return int(e.exit_code)
    except UsageError as e:
        _render_usage_error_with_help(
            message=str(e),
            fallback_help=_root_help_text(root_app=root_app, prog_name=prog_name),
        )
        return 2
    except OpError as e:
        _rich_error(str(e))
        return 1


def main(argv: list[str] | None = None) -> int:
    return _run_cli(root_app=app, prog_name="proprion", argv=argv)


if __name__ == "__main__":
    raise SystemExit(main())
