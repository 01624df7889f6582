"""Click entry point for kubenav.

Every command builds one ``App``, blocks on the first context load (progress
printed to stderr), runs against the active repository, and stops the app.
``KubeNavError`` is reported as ``Error: ...`` with exit code 1.
"""

from __future__ import annotations

import asyncio
import dataclasses
import signal
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

import click

from kubenav import __version__
from kubenav.app import App
from kubenav.cache.kubeconfig import parse_kubeconfig
from kubenav.cache.repository import Repository, format_age
from kubenav.config import load_config, validate_log_level
from kubenav.errors import KubeNavError, ValidationError
from kubenav.models.config import MAX_CONTEXTS, MIN_CONTEXTS, KubeNavConfig
from kubenav.models.messages import (
    ContextLoadCompleteMsg,
    ContextLoadFailedMsg,
    ContextLoadProgressMsg,
    ContextSwitchCompleteMsg,
    Message,
    StatusMsg,
)
from kubenav.models.progress import ContextLoadProgress
from kubenav.models.resources import GroupVersionResource, Resource, ResourceKind

# Row fields that are not list columns.
_HIDDEN_FIELDS = frozenset({"namespace", "name", "uid", "labels", "owners", "created_at", "raw", "gvr"})


def _echo_progress(p: ContextLoadProgress) -> None:
    click.echo(f"[{p.context}] {p.message}", err=True)


def _parse_kind(value: str) -> ResourceKind:
    try:
        return ResourceKind.parse(value)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc


def _parse_type(value: str, namespaced: bool = True) -> ResourceKind | GroupVersionResource:
    """A built-in kind, or ``resource.version.group`` for a custom resource."""
    try:
        return ResourceKind.parse(value)
    except ValueError as exc:
        if value.count(".") < 2:
            raise click.BadParameter(str(exc)) from exc
    try:
        return GroupVersionResource.parse(value, namespaced=namespaced)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc


def _run(config: KubeNavConfig, body: Callable[[App], Awaitable[Any]]) -> Any:
    async def runner() -> Any:
        app = App(config)
        try:
            await app.start(on_progress=_echo_progress)
            return await body(app)
        finally:
            await app.stop()

    try:
        return asyncio.run(runner())
    except KubeNavError as exc:
        raise click.ClickException(str(exc)) from exc


def _active(app: App) -> Repository:
    repo = app.active_repository()
    if repo is None:
        raise KubeNavError("no active context")
    return repo


def _default_namespace(app: App) -> str:
    info = app.pool.kubeconfig.find(app.active_context())
    return (info.namespace if info else "") or "default"


def _cell(value: Any) -> str:
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, timedelta):
        return format_age(value)
    if isinstance(value, datetime):
        return format_age(datetime.now(tz=value.tzinfo) - value)
    if isinstance(value, dict):
        return ",".join(f"{k}={v}" for k, v in sorted(value.items())) or "<none>"
    if isinstance(value, tuple):
        return ",".join(str(v) for v in value) or "<none>"
    if value is None or value == "":
        return "<none>"
    return str(value)


def format_table(rows: list[Resource], all_namespaces: bool) -> str:
    """kubectl-style table of rows of one kind."""
    if not rows:
        return "No resources found."
    columns = [f.name for f in dataclasses.fields(rows[0]) if f.name not in _HIDDEN_FIELDS]
    header = (["NAMESPACE"] if all_namespaces else []) + ["NAME"] + [c.upper() for c in columns] + ["AGE"]
    table = [header]
    for row in rows:
        cells = [row.namespace] if all_namespaces else []
        cells.append(row.name)
        cells.extend(_cell(getattr(row, c)) for c in columns)
        cells.append(format_age(row.age) if row.created_at else "<unknown>")
        table.append(cells)
    widths = [max(len(r[i]) for r in table) for i in range(len(header))]
    return "\n".join("   ".join(cell.ljust(w) for cell, w in zip(r, widths, strict=True)).rstrip() for r in table)


def format_message(msg: Message) -> str:
    if isinstance(msg, ContextLoadProgressMsg):
        return f"[{msg.context}] {msg.message}"
    if isinstance(msg, ContextLoadCompleteMsg):
        return f"[{msg.context}] ready"
    if isinstance(msg, ContextLoadFailedMsg):
        return f"[{msg.context}] failed: {msg.error}"
    if isinstance(msg, ContextSwitchCompleteMsg):
        return f"switched {msg.old_context or '<none>'} -> {msg.new_context}"
    if isinstance(msg, StatusMsg):
        return f"{msg.kind.upper()}: {msg.message}"
    return str(msg)


@click.group()
@click.version_option(__version__, prog_name="kubenav")
@click.option("--kubeconfig", "kubeconfig", default=None, help="Path to kubeconfig file.")
@click.option(
    "--context",
    "contexts",
    multiple=True,
    help="Context to load; repeat to preload more. The first becomes active.",
)
@click.option(
    "--max-contexts",
    type=click.IntRange(MIN_CONTEXTS, MAX_CONTEXTS),
    default=None,
    help="Maximum number of contexts kept loaded.",
)
@click.option("--sync-timeout", type=click.FloatRange(min=0.1), default=None, help="Seconds to wait for informers.")
@click.option("--log-level", default=None, help="debug, info, warning or error.")
@click.option("--log-file", default=None, help="Write logs to this file instead of stderr.")
@click.pass_context
def cli(
    ctx: click.Context,
    kubeconfig: str | None,
    contexts: tuple[str, ...],
    max_contexts: int | None,
    sync_timeout: float | None,
    log_level: str | None,
    log_file: str | None,
) -> None:
    """Browse Kubernetes resources across kubeconfig contexts."""
    try:
        config = load_config()
        if log_level is not None:
            validate_log_level(log_level)
    except ValidationError as exc:
        raise click.ClickException(str(exc)) from exc

    if kubeconfig:
        config = dataclasses.replace(config, kubeconfig_path=kubeconfig)
    if contexts:
        config = dataclasses.replace(config, contexts=contexts)
    if max_contexts is not None:
        config = dataclasses.replace(config, max_contexts=max_contexts)
    if sync_timeout is not None:
        config = dataclasses.replace(config, cache=dataclasses.replace(config.cache, sync_timeout=sync_timeout))
    if log_level is not None or log_file is not None:
        config = dataclasses.replace(
            config,
            log=dataclasses.replace(
                config.log,
                level=(log_level or config.log.level).lower(),
                file=log_file if log_file is not None else config.log.file,
            ),
        )
    ctx.obj = config


@cli.command()
@click.pass_obj
def contexts(config: KubeNavConfig) -> None:
    """List kubeconfig contexts."""
    try:
        kubeconfig = parse_kubeconfig(config.kubeconfig_path)
    except KubeNavError as exc:
        raise click.ClickException(str(exc)) from exc
    rows = [["CURRENT", "NAME", "CLUSTER", "USER", "NAMESPACE"]]
    for info in kubeconfig.contexts:
        current = "*" if info.name == kubeconfig.current_context else ""
        rows.append([current, info.name, info.cluster, info.user, info.namespace])
    widths = [max(len(r[i]) for r in rows) for i in range(len(rows[0]))]
    for r in rows:
        click.echo("   ".join(c.ljust(w) for c, w in zip(r, widths, strict=True)).rstrip())


@cli.command()
@click.option("--follow/--no-follow", default=False, help="Keep printing messages until interrupted.")
@click.pass_obj
def browse(config: KubeNavConfig, follow: bool) -> None:
    """Load contexts and print UI messages as they arrive."""

    async def body(app: App) -> None:
        repo = _active(app)
        click.echo(f"active context: {app.active_context()}")
        for stats in repo.resource_stats():
            click.echo(f"  {str(stats.kind):<26} {stats.readiness:<12} {stats.count}")

        loop = asyncio.get_running_loop()
        stop = asyncio.Event()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop.set)

        while not stop.is_set():
            if not follow and not app.pending_tasks() and app.messages.empty():
                break
            try:
                msg = await asyncio.wait_for(app.messages.get(), timeout=0.5)
            except TimeoutError:
                continue
            click.echo(format_message(msg))

        click.echo("contexts:")
        for status in app.pool.get_all_contexts():
            marker = "*" if status.is_active else " "
            detail = f" ({status.error})" if status.error else ""
            click.echo(f" {marker} {status.name:<30} {status.state}{detail}")

    _run(config, body)


@cli.command()
@click.argument("kind")
@click.option("-n", "--namespace", default=None, help="Namespace to list.")
@click.option("-A", "--all-namespaces", is_flag=True, help="List across all namespaces.")
@click.option("-l", "--selector", default="", help="Label selector, e.g. app=web,tier!=db.")
@click.option("--cluster-scoped", is_flag=True, help="The custom resource is not namespaced.")
@click.pass_obj
def get(
    config: KubeNavConfig,
    kind: str,
    namespace: str | None,
    all_namespaces: bool,
    selector: str,
    cluster_scoped: bool,
) -> None:
    """List cached resources of KIND.

    KIND is a built-in kind or alias, or a custom resource written as
    resource.version.group (e.g. certificates.v1.cert-manager.io).
    """
    resource_type = _parse_type(kind, namespaced=not cluster_scoped)

    async def body(app: App) -> None:
        ns = "" if all_namespaces else (namespace or _default_namespace(app))
        repo = _active(app)
        if isinstance(resource_type, GroupVersionResource):
            await repo.ensure_resource_synced(resource_type, app.config.cache.sync_timeout)
            rows = repo.list_resources(resource_type, ns, selector)
        else:
            rows = repo.list(resource_type, ns, selector)
        click.echo(format_table(rows, all_namespaces=all_namespaces))

    _run(config, body)


@cli.command()
@click.argument("kind")
@click.argument("name")
@click.option("-n", "--namespace", default=None)
@click.pass_obj
def describe(config: KubeNavConfig, kind: str, name: str, namespace: str | None) -> None:
    """Describe one resource (live)."""
    resource_kind = _parse_kind(kind)

    async def body(app: App) -> None:
        text = await _active(app).describe(resource_kind, namespace or _default_namespace(app), name)
        click.echo(text, nl=False)

    _run(config, body)


@cli.command()
@click.argument("kind")
@click.argument("name")
@click.option("-n", "--namespace", default=None)
@click.pass_obj
def yaml(config: KubeNavConfig, kind: str, name: str, namespace: str | None) -> None:
    """Print one resource as YAML (live, managedFields stripped)."""
    resource_kind = _parse_kind(kind)

    async def body(app: App) -> None:
        text = await _active(app).get_yaml(resource_kind, namespace or _default_namespace(app), name)
        click.echo(text, nl=False)

    _run(config, body)


@cli.command()
@click.argument("pod")
@click.option("-n", "--namespace", default=None)
@click.option("-c", "--container", default=None)
@click.option("--tail", type=click.IntRange(min=0), default=100, show_default=True)
@click.option("-f", "--follow", is_flag=True)
@click.pass_obj
def logs(
    config: KubeNavConfig,
    pod: str,
    namespace: str | None,
    container: str | None,
    tail: int,
    follow: bool,
) -> None:
    """Print container logs."""

    async def body(app: App) -> None:
        ns = namespace or _default_namespace(app)
        result = await _active(app).get_logs(ns, pod, container=container, tail=tail, follow=follow)
        if isinstance(result, str):
            click.echo(result, nl=False)
            return
        async for line in result:
            click.echo(line)

    _run(config, body)


@cli.command()
@click.argument("kind")
@click.argument("name")
@click.argument("replicas", type=click.IntRange(min=0))
@click.option("-n", "--namespace", default=None)
@click.pass_obj
def scale(config: KubeNavConfig, kind: str, name: str, replicas: int, namespace: str | None) -> None:
    """Scale a deployment, statefulset or replicaset."""
    resource_kind = _parse_kind(kind)

    async def body(app: App) -> None:
        ns = namespace or _default_namespace(app)
        await _active(app).scale(resource_kind, ns, name, replicas)
        click.echo(f"{resource_kind}/{name} scaled to {replicas}")

    _run(config, body)


@cli.command()
@click.argument("kind")
@click.argument("name")
@click.option("-n", "--namespace", default=None)
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
@click.pass_obj
def delete(config: KubeNavConfig, kind: str, name: str, namespace: str | None, yes: bool) -> None:
    """Delete one resource."""
    resource_kind = _parse_kind(kind)
    if not yes:
        click.confirm(f"Delete {resource_kind}/{name}?", abort=True)

    async def body(app: App) -> None:
        ns = namespace or _default_namespace(app)
        await _active(app).delete(resource_kind, ns, name)
        click.echo(f"{resource_kind}/{name} deleted")

    _run(config, body)
