"""CLI for gridsync. Runs single lifecycle operations against SendGrid."""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

import click
from pydantic import BaseModel

from gridsync import __version__
from gridsync.client import SendGridClient
from gridsync.config import ConfigError, GridsyncConfig, config_from_env, load_config
from gridsync.core.logging import configure_logging
from gridsync.core.telemetry import init_telemetry
from gridsync.errors import GridsyncError, build_structured_error
from gridsync.lifecycle import (
    APIKeyLifecycle,
    APIKeySpec,
    SubuserLifecycle,
    SubuserSpec,
)
from gridsync.transport import SendGridTransport

T = TypeVar("T")

# Exit code for a `show` of a resource that does not exist.
EXIT_NOT_FOUND = 3

_SECRET_FIELDS = {"password", "signup_session_token", "authorization_token"}


@dataclass
class _CliOptions:
    config_path: Path | None
    log_level: str | None


def _build_client(config: GridsyncConfig) -> SendGridClient:
    transport = SendGridTransport(
        config.sendgrid.api_key,
        base_url=config.sendgrid.base_url,
        timeout_seconds=config.sendgrid.request_timeout_seconds,
    )
    return SendGridClient(transport)


def _load(options: _CliOptions) -> GridsyncConfig:
    try:
        if options.config_path is not None:
            return load_config(options.config_path)
        return config_from_env()
    except ConfigError as exc:
        raise click.ClickException(f"Config error: {exc}") from exc


def _run(
    options: _CliOptions,
    operation: Callable[[SendGridClient, GridsyncConfig], Awaitable[T]],
) -> T:
    config = _load(options)
    configure_logging(
        level=options.log_level or config.logging.level,
        fmt=config.logging.format,
        log_root=Path(config.logging.log_root) if config.logging.log_root else None,
    )
    init_telemetry("gridsync")

    async def _main() -> T:
        async with _build_client(config) as client:
            return await operation(client, config)

    try:
        return asyncio.run(_main())
    except GridsyncError as exc:
        click.echo(json.dumps(build_structured_error(exc)), err=True)
        sys.exit(1)


def _emit(state: BaseModel | None, *, exclude: set[str] | None = None) -> None:
    if state is None:
        return
    click.echo(json.dumps(state.model_dump(mode="json", exclude=exclude), sort_keys=True))


def _emit_not_found(resource_type: str, identifier: str) -> None:
    payload: dict[str, Any] = {
        "status": "not_found",
        "resource_type": resource_type,
        "identifier": identifier,
    }
    click.echo(json.dumps(payload))
    sys.exit(EXIT_NOT_FOUND)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to gridsync.toml (defaults to SENDGRID_API_KEY from the environment)",
)
@click.option("--log-level", default=None, help="Override the configured log level")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, log_level: str | None) -> None:
    """gridsync: reconcile SendGrid subusers and API keys."""
    ctx.obj = _CliOptions(config_path=config_path, log_level=log_level)


# ---------------------------------------------------------------------------
# Subusers
# ---------------------------------------------------------------------------


@cli.group()
def subuser() -> None:
    """Manage subusers (identified by username)."""


@subuser.command("create")
@click.option("--username", required=True)
@click.option("--email", required=True)
@click.option("--password", prompt=True, hide_input=True, envvar="GRIDSYNC_SUBUSER_PASSWORD")
@click.option("--ip", "ips", multiple=True, required=True, help="IP address (repeatable)")
@click.option("--disabled", is_flag=True, default=False, help="Disable right after creation")
@click.pass_obj
def subuser_create(
    options: _CliOptions,
    username: str,
    email: str,
    password: str,
    ips: tuple[str, ...],
    disabled: bool,
) -> None:
    """Create a subuser."""
    spec = SubuserSpec(
        username=username, email=email, password=password, ips=list(ips), disabled=disabled
    )

    async def _op(client: SendGridClient, config: GridsyncConfig):
        return await SubuserLifecycle(client, config.retry).create(spec)

    _emit(_run(options, _op), exclude=_SECRET_FIELDS)


@subuser.command("show")
@click.argument("username")
@click.pass_obj
def subuser_show(options: _CliOptions, username: str) -> None:
    """Show a subuser."""

    async def _op(client: SendGridClient, config: GridsyncConfig):
        return await SubuserLifecycle(client, config.retry).read(username)

    state = _run(options, _op)
    if state is None:
        _emit_not_found("subuser", username)
    _emit(state, exclude=_SECRET_FIELDS)


@subuser.command("update")
@click.argument("username")
@click.option("--disable/--enable", "disabled", default=None, help="Disable or re-enable")
@click.option("--ip", "ips", multiple=True, help="Replace the IP set (repeatable)")
@click.pass_obj
def subuser_update(
    options: _CliOptions,
    username: str,
    disabled: bool | None,
    ips: tuple[str, ...],
) -> None:
    """Update a subuser's disabled flag and/or IP set."""

    async def _op(client: SendGridClient, config: GridsyncConfig):
        lifecycle = SubuserLifecycle(client, config.retry)
        prior = await lifecycle.import_state(username)
        desired = SubuserSpec(
            username=prior.username,
            email=prior.email,
            password=prior.password,
            ips=list(ips) if ips else prior.ips,
            disabled=prior.disabled if disabled is None else disabled,
        )
        return await lifecycle.update(prior, desired)

    state = _run(options, _op)
    if state is None:
        _emit_not_found("subuser", username)
    _emit(state, exclude=_SECRET_FIELDS)


@subuser.command("delete")
@click.argument("username")
@click.pass_obj
def subuser_delete(options: _CliOptions, username: str) -> None:
    """Delete a subuser (succeeds if it is already gone)."""

    async def _op(client: SendGridClient, config: GridsyncConfig):
        return await SubuserLifecycle(client, config.retry).delete(username)

    deleted = _run(options, _op)
    click.echo(json.dumps({"status": "deleted", "identifier": username, "deleted": deleted}))


@subuser.command("import")
@click.argument("username")
@click.pass_obj
def subuser_import(options: _CliOptions, username: str) -> None:
    """Adopt an existing subuser and print its full state."""

    async def _op(client: SendGridClient, config: GridsyncConfig):
        return await SubuserLifecycle(client, config.retry).import_state(username)

    _emit(_run(options, _op), exclude=_SECRET_FIELDS)


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------


@cli.group("api-key")
def api_key() -> None:
    """Manage API keys (identified by API key ID)."""


@api_key.command("create")
@click.option("--name", required=True)
@click.option("--scope", "scopes", multiple=True, help="Scope (repeatable)")
@click.pass_obj
def api_key_create(options: _CliOptions, name: str, scopes: tuple[str, ...]) -> None:
    """Create an API key.  The secret is printed once."""
    spec = APIKeySpec(name=name, scopes=list(scopes))

    async def _op(client: SendGridClient, config: GridsyncConfig):
        return await APIKeyLifecycle(client, config.retry).create(spec)

    _emit(_run(options, _op))


@api_key.command("show")
@click.argument("api_key_id")
@click.pass_obj
def api_key_show(options: _CliOptions, api_key_id: str) -> None:
    """Show an API key."""

    async def _op(client: SendGridClient, config: GridsyncConfig):
        return await APIKeyLifecycle(client, config.retry).read(api_key_id)

    state = _run(options, _op)
    if state is None:
        _emit_not_found("api_key", api_key_id)
    _emit(state, exclude={"api_key"})


@api_key.command("update")
@click.argument("api_key_id")
@click.option("--name", default=None)
@click.option("--scope", "scopes", multiple=True, help="Replace the scope set (repeatable)")
@click.pass_obj
def api_key_update(
    options: _CliOptions,
    api_key_id: str,
    name: str | None,
    scopes: tuple[str, ...],
) -> None:
    """Rename an API key and/or replace its scopes."""

    async def _op(client: SendGridClient, config: GridsyncConfig):
        lifecycle = APIKeyLifecycle(client, config.retry)
        prior = await lifecycle.import_state(api_key_id)
        desired = APIKeySpec(
            name=name if name is not None else prior.name,
            scopes=list(scopes) if scopes else prior.scopes,
        )
        return await lifecycle.update(prior, desired)

    state = _run(options, _op)
    if state is None:
        _emit_not_found("api_key", api_key_id)
    _emit(state, exclude={"api_key"})


@api_key.command("delete")
@click.argument("api_key_id")
@click.pass_obj
def api_key_delete(options: _CliOptions, api_key_id: str) -> None:
    """Delete an API key (succeeds if it is already gone)."""

    async def _op(client: SendGridClient, config: GridsyncConfig):
        return await APIKeyLifecycle(client, config.retry).delete(api_key_id)

    deleted = _run(options, _op)
    click.echo(json.dumps({"status": "deleted", "identifier": api_key_id, "deleted": deleted}))


@api_key.command("import")
@click.argument("api_key_id")
@click.pass_obj
def api_key_import(options: _CliOptions, api_key_id: str) -> None:
    """Adopt an existing API key and print its state."""

    async def _op(client: SendGridClient, config: GridsyncConfig):
        return await APIKeyLifecycle(client, config.retry).import_state(api_key_id)

    _emit(_run(options, _op), exclude={"api_key"})


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
