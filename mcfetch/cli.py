from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, TypeVar

import httpx
import typer
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.text import Text

from .api import create_client
from .config import (
    DEFAULT_CONFIG_FILENAME,
    USER_CONFIG_PATH,
    FetchConfig,
    describe_config,
    load_config,
    load_user_config,
    mask_secret,
    save_user_config,
)
from .dependencies import resolve_missing_dependencies
from .errors import ConfigError, ErrorLevel, FetchError, presentation_for
from .hashindex import ContentHashIndex, sha1_of
from .install import install_project
from .models import GameInfo
from .ping import ping_many
from .resolver import VersionResolver, build_resolver

app = typer.Typer(help="Resolve and install Minecraft content, and ping servers (mcfetch)")
user_config_app = typer.Typer(help="Manage user-level defaults")

app.add_typer(user_config_app, name="config")

_rich_console = Console()
logger = logging.getLogger("mcfetch")

T = TypeVar("T")


class ResourceType(str, Enum):
    mod = "mod"
    datapack = "datapack"
    shader = "shader"
    resourcepack = "resourcepack"


class Source(str, Enum):
    modrinth = "modrinth"
    curseforge = "curseforge"


def _fail(message: str, code: int = 1) -> None:
    typer.secho(message, err=True, fg="red")
    raise typer.Exit(code=code)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=verbose)],
        force=True,
    )
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def _report_error(exc: FetchError) -> None:
    level = presentation_for(exc)
    code = 2 if isinstance(exc, ConfigError) else 1
    if level in (ErrorLevel.POPUP, ErrorLevel.NOTIFICATION):
        _fail(str(exc), code=code)
    if level == ErrorLevel.SILENT:
        logger.warning("%s", exc)
        raise typer.Exit(code=code)


def _run(coro: Awaitable[T]) -> T:
    try:
        return asyncio.run(coro)
    except FetchError as exc:
        _report_error(exc)
        raise


def _config_or_exit(load: Callable[..., T], *args: Any) -> T:
    try:
        return load(*args)
    except ConfigError as exc:
        _fail(str(exc), code=2)


def _get_config(ctx: typer.Context) -> FetchConfig:
    ctx.obj = ctx.obj if ctx.obj is not None else {}
    if "config" not in ctx.obj:
        ctx.obj["config"] = _config_or_exit(load_config)
    return ctx.obj["config"]


def _update_user_config(**changes: Any) -> None:
    current = _config_or_exit(load_user_config)
    save_user_config(current.model_copy(update=changes))


def _game_info(cfg: FetchConfig, mc_version: Optional[str], loader: Optional[str]) -> GameInfo:
    game_version = mc_version or cfg.minecraft_version
    if not game_version:
        raise ConfigError(
            "Minecraft version missing. Pass --mc-version, set MCFETCH_MINECRAFT_VERSION "
            f"or add minecraft_version to {DEFAULT_CONFIG_FILENAME}."
        )
    return GameInfo(game_version=game_version, loader=loader or cfg.loader, instance_dir=cfg.instance_root)


@asynccontextmanager
async def _session(cfg: FetchConfig) -> AsyncIterator[tuple[httpx.AsyncClient, VersionResolver]]:
    async with create_client(cfg) as client:
        yield client, build_resolver(cfg, client)


@user_config_app.command("show")
def user_config_show(ctx: typer.Context):
    """Show the configuration commands would run with, and where it came from."""
    cfg = _get_config(ctx)
    stored = _config_or_exit(load_user_config)
    table = Table(title="mcfetch configuration", box=box.MINIMAL_DOUBLE_HEAD)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for label, value in describe_config(cfg):
        table.add_row(label, value)
    instance_file = cfg.instance_root / DEFAULT_CONFIG_FILENAME
    table.add_row("Instance file", str(instance_file) if instance_file.is_file() else "(none, defaults apply)")
    table.add_row("Stored root", str(stored.instance_root) if stored.instance_root else "(not set)")
    table.add_row("User file", str(USER_CONFIG_PATH))
    _rich_console.print(table)


@user_config_app.command("set-root")
def user_config_set_root(
    path: Path = typer.Argument(..., help="Instance directory to use when no --root is given"),
):
    resolved = path.expanduser().resolve()
    if not resolved.is_dir():
        _fail(f"{resolved} is not an existing directory.")
    if not (resolved / DEFAULT_CONFIG_FILENAME).is_file():
        typer.secho(f"No {DEFAULT_CONFIG_FILENAME} in {resolved}; commands will use defaults there.", fg="yellow")
    _update_user_config(instance_root=resolved)
    typer.secho(f"Default instance is now {resolved}", fg="green")


@user_config_app.command("clear-root")
def user_config_clear_root():
    _update_user_config(instance_root=None)
    typer.secho("Default instance cleared.", fg="yellow")


@user_config_app.command("set-key")
def user_config_set_key(
    key: str = typer.Argument(..., help="CurseForge API key used when no instance or environment key is set"),
):
    if not key.strip():
        _fail("The CurseForge API key cannot be empty.")
    _update_user_config(curseforge_api_key=key.strip())
    typer.secho(f"CurseForge API key saved ({mask_secret(key.strip())}).", fg="green")


@user_config_app.command("clear-key")
def user_config_clear_key():
    _update_user_config(curseforge_api_key=None)
    typer.secho("CurseForge API key removed from the user config.", fg="yellow")


@app.callback()
def main(
    ctx: typer.Context,
    root: Path = typer.Option(None, "--root", help="Instance directory (defaults to the nearest .mcfetch.json)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    _configure_logging(verbose)
    ctx.obj = ctx.obj or {}
    if root is not None:
        ctx.obj["config"] = _config_or_exit(load_config, root)


@app.command("versions")
def versions_command(
    ctx: typer.Context,
    project: str = typer.Argument(..., help="Modrinth id/slug, or cf-<id> for CurseForge"),
    mc_version: str = typer.Option(None, "--mc-version", help="Minecraft version override"),
    loader: str = typer.Option(None, "--loader", help="Loader override (fabric, forge, quilt, neoforge)"),
    resource_type: ResourceType = typer.Option(ResourceType.mod, "--type", case_sensitive=False),
):
    """List versions of a project compatible with the instance."""
    cfg = _get_config(ctx)

    async def _collect():
        game = _game_info(cfg, mc_version, loader)
        async with _session(cfg) as (_, resolver):
            return await resolver.resolve(project, game.game_versions, game.loaders, resource_type.value)

    versions = _run(_collect())
    if not versions:
        typer.secho("No compatible versions found.", fg="yellow")
        return

    table = Table(title=f"Versions of {project}", box=box.MINIMAL_DOUBLE_HEAD)
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Game versions")
    table.add_column("Loaders")
    table.add_column("File")
    for index, version in enumerate(versions):
        primary = version.primary_file()
        table.add_row(
            Text(version.id, style="bold green" if index == 0 else "cyan"),
            version.name,
            ", ".join(version.game_versions) or "-",
            ", ".join(version.loaders) or "-",
            primary.filename if primary else "-",
        )
    _rich_console.print(table)


@app.command("deps")
def deps_command(
    ctx: typer.Context,
    project: str = typer.Argument(..., help="Modrinth id/slug, or cf-<id> for CurseForge"),
    mc_version: str = typer.Option(None, "--mc-version", help="Minecraft version override"),
    loader: str = typer.Option(None, "--loader", help="Loader override"),
    resource_type: ResourceType = typer.Option(ResourceType.mod, "--type", case_sensitive=False),
):
    """Show required dependencies that are not installed yet."""
    cfg = _get_config(ctx)

    async def _collect():
        game = _game_info(cfg, mc_version, loader)
        async with _session(cfg) as (_, resolver):
            versions = await resolver.resolve(project, game.game_versions, game.loaders, resource_type.value)
            if not versions:
                return None, []
            missing = await resolve_missing_dependencies(
                versions[0],
                game,
                resource_type.value,
                resolver=resolver,
                index=ContentHashIndex(),
                concurrency=cfg.concurrency.dependency,
            )
            return versions[0], missing

    version, missing = _run(_collect())
    if version is None:
        _fail(f"No version of {project} is compatible with this instance.")
    if not missing:
        typer.secho(f"All required dependencies of {version.name} are installed.", fg="green")
        return

    table = Table(title=f"Missing dependencies of {version.name}", box=box.SIMPLE_HEAVY)
    table.add_column("Project", style="cyan")
    table.add_column("Title")
    table.add_column("Version")
    table.add_column("File")
    for dep in missing:
        primary = dep.version.primary_file()
        table.add_row(dep.project.id, dep.project.title, dep.version.name, primary.filename if primary else "-")
    _rich_console.print(table)


@app.command("install")
def install_command(
    ctx: typer.Context,
    project: str = typer.Argument(..., help="Modrinth id/slug, or cf-<id> for CurseForge"),
    version_id: str = typer.Option(None, "--version", help="Install this version id instead of the newest match"),
    no_deps: bool = typer.Option(False, "--no-deps", help="Skip required dependencies"),
    mc_version: str = typer.Option(None, "--mc-version", help="Minecraft version override"),
    loader: str = typer.Option(None, "--loader", help="Loader override"),
    resource_type: ResourceType = typer.Option(ResourceType.mod, "--type", case_sensitive=False),
):
    """Download a project and its missing required dependencies into the instance."""
    cfg = _get_config(ctx)

    async def _install():
        game = _game_info(cfg, mc_version, loader)
        async with _session(cfg) as (client, resolver):
            return await install_project(
                project,
                game,
                resource_type.value,
                resolver=resolver,
                index=ContentHashIndex(),
                client=client,
                cfg=cfg,
                version_id=version_id,
                include_dependencies=not no_deps,
            )

    report = _run(_install())
    table = Table(title=f"{report.project.title} {report.version.name}", box=box.SIMPLE_HEAVY)
    table.add_column("File")
    table.add_column("Result")
    for path in report.installed:
        table.add_row(path.name, Text("installed", style="green"))
    for path in report.already_present:
        table.add_row(path.name, Text("already present", style="bright_black"))
    for name, error in report.failed:
        table.add_row(name, Text(f"failed: {error}", style="red"))
    _rich_console.print(table)
    if not report.ok:
        raise typer.Exit(code=1)


@app.command("search")
def search_command(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="Search text"),
    source: Source = typer.Option(Source.modrinth, "--source", case_sensitive=False),
    resource_type: ResourceType = typer.Option(ResourceType.mod, "--type", case_sensitive=False),
    limit: int = typer.Option(20, "--limit", min=1, max=100),
    categories: List[str] = typer.Option(
        [], "--category", "-c", help="Category to require (repeatable); CurseForge takes numeric ids"
    ),
):
    """Search a registry, filtered by the instance's game version and loader when configured."""
    cfg = _get_config(ctx)

    async def _search():
        game_versions: List[str] = [cfg.minecraft_version] if cfg.minecraft_version else []
        loaders: List[str] = [cfg.loader] if cfg.loader else []
        async with _session(cfg) as (_, resolver):
            return await resolver.search(
                query, source.value, resource_type.value, game_versions, loaders, limit, categories=categories
            )

    hits = _run(_search())
    table = Table(title=f"{source.value} results for '{query}'", box=box.MINIMAL_DOUBLE_HEAD)
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Author")
    table.add_column("Downloads", justify="right")
    table.add_column("Description")
    for hit in hits:
        table.add_row(hit.project_id, hit.title, hit.author or "-", f"{hit.downloads:,}", hit.description)
    _rich_console.print(table)


@app.command("categories")
def categories_command(
    ctx: typer.Context,
    source: Source = typer.Option(Source.modrinth, "--source", case_sensitive=False),
    resource_type: Optional[ResourceType] = typer.Option(None, "--type", case_sensitive=False),
):
    """List the categories a registry accepts for `search --category`."""
    cfg = _get_config(ctx)
    kind = resource_type.value if resource_type else None

    async def _collect():
        async with _session(cfg) as (_, resolver):
            return await resolver.categories(source.value, kind)

    categories = _run(_collect())
    table = Table(title=f"{source.value} categories", box=box.SIMPLE_HEAVY)
    table.add_column("Use as", style="cyan")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Group")
    for category in sorted(categories, key=lambda item: (item.project_type or "", item.header, item.name)):
        table.add_row(category.id or category.slug, category.name, category.project_type or "-", category.header or "-")
    _rich_console.print(table)


@app.command("game-versions")
def game_versions_command(
    ctx: typer.Context,
    source: Source = typer.Option(Source.modrinth, "--source", case_sensitive=False),
    snapshots: bool = typer.Option(False, "--snapshots", help="Include snapshots and pre-releases"),
):
    """List the Minecraft versions a registry knows about."""
    cfg = _get_config(ctx)

    async def _collect():
        async with _session(cfg) as (_, resolver):
            return await resolver.game_versions(source.value, snapshots)

    for value in _run(_collect()):
        typer.echo(value)


@app.command("identify")
def identify_command(
    ctx: typer.Context,
    files: List[Path] = typer.Argument(..., exists=True, dir_okay=False, help="Downloaded files to look up"),
):
    """Find which Modrinth project and version each file was published as."""
    cfg = _get_config(ctx)

    async def _collect():
        async with _session(cfg) as (_, resolver):
            return [(path, await resolver.identify(sha1_of(path))) for path in files]

    table = Table(title="Identified files", box=box.SIMPLE_HEAVY)
    table.add_column("File", style="cyan")
    table.add_column("Project")
    table.add_column("Version")
    for path, match in _run(_collect()):
        if match is None:
            table.add_row(path.name, Text("unknown", style="yellow"), "-")
            continue
        project, version = match
        table.add_row(path.name, f"{project.title} ({project.id})", f"{version.name} ({version.id})")
    _rich_console.print(table)


@app.command("ping")
def ping_command(
    ctx: typer.Context,
    addresses: List[str] = typer.Argument(..., help="Server addresses (host, host:port or [v6]:port)"),
    timeout: float = typer.Option(None, "--timeout", help="Seconds before a server counts as offline"),
):
    """Query one or more servers with the status ping protocol."""
    cfg = _get_config(ctx)
    results = _run(
        ping_many(
            addresses,
            limit=cfg.concurrency.server_ping,
            timeout=timeout or cfg.ping_timeout,
        )
    )

    table = Table(title="Server status", box=box.SIMPLE_HEAVY)
    table.add_column("Address", style="cyan")
    table.add_column("State")
    table.add_column("Version")
    table.add_column("Players", justify="right")
    table.add_column("MOTD")
    for address, info in results:
        if info is None:
            table.add_row(address, Text("offline", style="red"), "-", "-", "-")
            continue
        table.add_row(
            address,
            Text("online", style="green"),
            info.version.name or "-",
            f"{info.players.online}/{info.players.max}",
            info.motd.replace("\n", " ").strip(),
        )
    _rich_console.print(table)
