"""Command-line interface for storyfetch."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import click
import structlog
from rich.console import Console

from storyfetch import __version__
from storyfetch.client import ContentClient
from storyfetch.config import ClientConfig, find_config_file
from storyfetch.observability import configure_logging, start_metrics_server
from storyfetch.protocols import ContentApiError

console = Console()
err_console = Console(stderr=True)
logger = structlog.get_logger(__name__)


def parse_params(pairs: Tuple[str, ...]) -> Dict[str, Any]:
    """Turn repeated ``key=value`` options into a params dict. Repeated keys become lists."""
    params: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected key=value, got {pair!r}", param_hint="--param")
        if key in params:
            existing = params[key]
            params[key] = existing + [value] if isinstance(existing, list) else [existing, value]
        else:
            params[key] = value
    return params


def load_config(config_path: Optional[Path]) -> ClientConfig:
    path = config_path or find_config_file()
    if path is not None:
        return ClientConfig.from_yaml(path)
    return ClientConfig()


def request_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by every request command."""
    options = [
        click.option("--token", "-t", envvar="STORYFETCH_ACCESS_TOKEN", help="Delivery API access token"),
        click.option("--version", "content_version", type=click.Choice(["draft", "published"]), help="Content version"),
        click.option("--region", type=click.Choice(["eu", "us", "ap", "ca", "cn"]), help="Service region"),
        click.option("--param", "-p", "params", multiple=True, help="Query parameter as key=value (repeatable)"),
        click.option("--resolve-relations", help="Comma separated component.field patterns to resolve"),
        click.option(
            "--resolve-links", type=click.Choice(["story", "url", "link", "1"]), help="Resolve story links"
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_request(
    params: Tuple[str, ...], content_version: Optional[str], resolve_relations: Optional[str], resolve_links: Optional[str]
) -> Dict[str, Any]:
    query = parse_params(params)
    if content_version:
        query["version"] = content_version
    if resolve_relations:
        query["resolve_relations"] = resolve_relations
    if resolve_links:
        query["resolve_links"] = resolve_links
    return query


def run_request(
    ctx: click.Context,
    token: Optional[str],
    region: Optional[str],
    call: Callable[[ContentClient], Awaitable[Any]],
) -> None:
    """Build a client from the context, run ``call`` and print its JSON result."""
    overrides: Dict[str, Any] = {}
    if token:
        overrides["access_token"] = token
    if region:
        overrides["region"] = region

    async def execute() -> Any:
        async with ContentClient(ctx.obj["config"], **overrides) as client:
            return await call(client)

    try:
        result = asyncio.run(execute())
    except ContentApiError as e:
        logger.error("Request failed", status=e.status, error=e.message)
        err_console.print(f"[red]Request failed ({e.status or 'network'}): {e.message}[/red]")
        sys.exit(1)

    console.print_json(json.dumps(result, default=str))


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", type=click.Path(exists=True, dir_okay=False), help="Configuration file path")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], log_level: Optional[str]) -> None:
    """storyfetch - Rate-governed content API client."""
    ctx.ensure_object(dict)
    client_config = load_config(Path(config) if config else None)
    if log_level:
        client_config.monitoring.log_level = log_level

    configure_logging(client_config.monitoring)
    start_metrics_server(client_config.monitoring.prometheus_port)
    ctx.obj["config"] = client_config


@cli.command()
@click.argument("slug")
@request_options
@click.pass_context
def get(
    ctx: click.Context,
    slug: str,
    token: Optional[str],
    content_version: Optional[str],
    region: Optional[str],
    params: Tuple[str, ...],
    resolve_relations: Optional[str],
    resolve_links: Optional[str],
) -> None:
    """Fetch a single path, e.g. cdn/stories/home."""
    query = build_request(params, content_version, resolve_relations, resolve_links)

    async def call(client: ContentClient) -> Any:
        return (await client.get(slug, query)).data

    run_request(ctx, token, region, call)


@cli.command(name="all")
@click.argument("slug")
@click.option("--entity", help="Response key holding the items. Defaults to the last path segment")
@request_options
@click.pass_context
def fetch_all(
    ctx: click.Context,
    slug: str,
    entity: Optional[str],
    token: Optional[str],
    content_version: Optional[str],
    region: Optional[str],
    params: Tuple[str, ...],
    resolve_relations: Optional[str],
    resolve_links: Optional[str],
) -> None:
    """Fetch every page of a listing, e.g. cdn/stories."""
    query = build_request(params, content_version, resolve_relations, resolve_links)

    async def call(client: ContentClient) -> Any:
        return await client.get_all(slug, query, entity)

    run_request(ctx, token, region, call)


@cli.command()
@click.argument("slug")
@request_options
@click.pass_context
def story(
    ctx: click.Context,
    slug: str,
    token: Optional[str],
    content_version: Optional[str],
    region: Optional[str],
    params: Tuple[str, ...],
    resolve_relations: Optional[str],
    resolve_links: Optional[str],
) -> None:
    """Fetch one story by slug or id."""
    query = build_request(params, content_version, resolve_relations, resolve_links)

    async def call(client: ContentClient) -> Any:
        return (await client.get_story(slug, query)).data

    run_request(ctx, token, region, call)


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
