#!/usr/bin/env python3
"""
Command-Line Interface for the scrape configuration compiler.

Usage:
    # Compile manifests into a scrape configuration on stdout
    python3 -m scrape_compiler compile -f scrapes.yaml -f secrets.yaml --owner default/vmagent

    # Persist the gzipped document and lay out TLS files
    python3 -m scrape_compiler compile -f scrapes.yaml --owner default/vmagent \\
        --persist-dir out/ --tls-dir out/tls

    # Resolve credentials against the API server of the current cluster
    python3 -m scrape_compiler compile -f scrapes.yaml --owner default/vmagent --in-cluster

    # Schema-check manifests
    python3 -m scrape_compiler validate -f scrapes.yaml

    # Derive VMServiceScrape manifests from Services
    python3 -m scrape_compiler service-scrape -f services.yaml --path /metrics --port http
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .assembler import Owner
from .compiler import ScrapeConfigCompiler
from .config import load_config
from .credentials import CredentialStore, InMemoryCredentialStore, KubernetesCredentialStore
from .errors import CompilerError, ValidationError
from .manifests import (
    MANIFEST_KINDS,
    ManifestLister,
    load_manifests,
    service_scrape_for_service,
    validate_manifest,
)
from .persistence import FilePersister, write_tls_assets

# Set up logging with rich handler
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True, show_time=False, console=Console(stderr=True))],
)
logger = logging.getLogger(__name__)
console = Console(stderr=True)


class CLIContext:
    """Context object for CLI commands."""

    def __init__(self):
        self.verbose = False
        self.config_path: Optional[Path] = None


pass_context = click.make_pass_decorator(CLIContext, ensure=True)


def validate_owner(ctx, param, value):
    """Validate the --owner option."""
    try:
        return Owner.parse(value)
    except ValueError as e:
        raise click.BadParameter(str(e))


manifest_option = click.option(
    "-f", "--filename", "filenames",
    multiple=True,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Manifest file with scrape resources, Secrets and ConfigMaps (repeatable)",
)


@click.group()
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose output"
)
@click.option(
    "-c", "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to compiler configuration file"
)
@click.version_option(version="0.1.0", prog_name="scrape-compiler")
@pass_context
def cli(ctx: CLIContext, verbose: bool, config: Optional[Path]):
    """
    Scrape configuration compiler.

    Translates scrape intent resources into a metrics agent scrape configuration.
    """
    ctx.verbose = verbose
    ctx.config_path = config

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Verbose mode enabled")


@cli.command()
@manifest_option
@click.option(
    "--owner",
    required=True,
    callback=validate_owner,
    help="Agent instance the configuration is compiled for, as namespace/name"
)
@click.option(
    "--output", "-o",
    type=click.Path(dir_okay=False, allow_dash=True, path_type=Path),
    default=None,
    help="Write the document to this file ('-' for stdout, the default)"
)
@click.option(
    "--persist-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Persist the gzipped document below this directory"
)
@click.option(
    "--tls-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Write materialized TLS files into this directory"
)
@click.option(
    "--scrape-interval",
    type=str,
    default=None,
    help="Global scrape interval (overrides config)"
)
@click.option(
    "--workers",
    type=click.IntRange(min=1),
    default=None,
    help="Number of resources synthesized in parallel"
)
@click.option(
    "--in-cluster",
    is_flag=True,
    help="Resolve credentials through the Kubernetes API of the current cluster"
)
@click.option(
    "--kube-api",
    type=str,
    default=None,
    help="Resolve credentials through this Kubernetes API server URL"
)
@click.option(
    "--kube-token",
    type=str,
    envvar="SCRAPE_COMPILER_KUBE_TOKEN",
    default=None,
    help="Bearer token for --kube-api"
)
@pass_context
def compile(
    ctx: CLIContext,
    filenames: tuple[Path, ...],
    owner: Owner,
    output: Optional[Path],
    persist_dir: Optional[Path],
    tls_dir: Optional[Path],
    scrape_interval: Optional[str],
    workers: Optional[int],
    in_cluster: bool,
    kube_api: Optional[str],
    kube_token: Optional[str],
):
    """Compile manifests into a scrape configuration document."""
    store: Optional[CredentialStore] = None
    try:
        config = load_config(
            config_path=ctx.config_path,
            scrape_interval=scrape_interval,
            workers=workers,
        )
        objects = load_manifests(filenames)
        lister = ManifestLister.from_objects(objects)

        if in_cluster:
            store = KubernetesCredentialStore.in_cluster()
        elif kube_api:
            store = KubernetesCredentialStore(kube_api, token=kube_token)
        else:
            store = InMemoryCredentialStore.from_manifests(objects)

        compiler = ScrapeConfigCompiler(store, config)
        if persist_dir:
            result = compiler.compile_and_save(owner, lister, FilePersister(persist_dir))
        else:
            result = compiler.compile_from_lister(owner, lister)

        if tls_dir and result.tls_assets:
            for path in write_tls_assets(tls_dir, result.tls_assets):
                logger.debug("Wrote TLS asset %s", path)

        if output is None or str(output) == "-":
            sys.stdout.write(result.text)
        else:
            output.write_bytes(result.document)
            console.print(f"Document written to [cyan]{output}[/cyan]")

        for unit in result.dropped:
            console.print(
                f"[yellow]Dropped[/yellow] {unit.kind.value} {unit.namespace}/{unit.name} "
                f"endpoint {unit.endpoint_index}: {unit.reason}"
            )
        sys.exit(0)

    except ValidationError as e:
        console.print(f"[bold red]Validation Error:[/bold red] {e}")
        for error in e.errors:
            console.print(f"  • {error}")
        sys.exit(1)
    except (CompilerError, FileNotFoundError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}", style="red")
        if ctx.verbose:
            console.print_exception()
        sys.exit(1)
    finally:
        if isinstance(store, KubernetesCredentialStore):
            store.close()


@cli.command()
@manifest_option
@pass_context
def validate(ctx: CLIContext, filenames: tuple[Path, ...]):
    """Validate scrape manifests against their schemas."""
    try:
        objects = load_manifests(filenames)
    except (OSError, CompilerError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}", style="red")
        sys.exit(1)

    table = Table(title="Manifest Validation")
    table.add_column("Kind", style="cyan")
    table.add_column("Namespace")
    table.add_column("Name")
    table.add_column("Status")

    failed = 0
    for obj in objects:
        kind = obj.get("kind", "")
        if kind not in MANIFEST_KINDS:
            continue
        metadata = obj.get("metadata") or {}
        errors = validate_manifest(obj)
        if errors:
            failed += 1
            status = "[red]✗ " + "; ".join(errors) + "[/red]"
        else:
            status = "[green]✓ valid[/green]"
        table.add_row(kind, metadata.get("namespace", "default"), metadata.get("name", ""), status)

    console.print(table)
    sys.exit(1 if failed else 0)


@cli.command("service-scrape")
@manifest_option
@click.option(
    "--path", "metrics_path",
    type=str,
    default="",
    help="Metrics path of every generated endpoint"
)
@click.option(
    "--port", "port_names",
    multiple=True,
    help="Only generate endpoints for Service ports with this name (repeatable)"
)
@pass_context
def service_scrape(ctx: CLIContext, filenames: tuple[Path, ...], metrics_path: str,
                   port_names: tuple[str, ...]):
    """Derive VMServiceScrape manifests from Service manifests."""
    try:
        objects = load_manifests(filenames)
    except (OSError, CompilerError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}", style="red")
        sys.exit(1)

    services = [obj for obj in objects if obj.get("kind") == "Service"]
    if not services:
        console.print("[bold red]Error:[/bold red] no Service manifests found", style="red")
        sys.exit(1)

    scrapes = []
    for service in services:
        if not (service.get("metadata") or {}).get("name"):
            console.print("[yellow]Skipping[/yellow] Service without a name")
            continue
        scrapes.append(service_scrape_for_service(
            service, metrics_path=metrics_path, filter_port_names=port_names))
        logger.debug("Derived VMServiceScrape for Service %s", service["metadata"]["name"])

    sys.stdout.write(yaml.safe_dump_all(scrapes, sort_keys=False, default_flow_style=False))
    sys.exit(0)


def main():
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
