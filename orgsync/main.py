#!/usr/bin/env python3
"""CLI entry point for orgsync."""

import argparse
import logging
import sys
import time
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.tree import Tree

from .core.auth import Credentials
from .core.client import PlatformAPIError, PlatformClient
from .core.keychain import KeychainError
from .core.package import PackageDescriptor, PackageError
from .core.project import Project, ProjectError, ProjectValidationError
from .models.config import OrgSyncConfig

console = Console()
logger = logging.getLogger("orgsync")

# Errors reported to the user as a one-line failure
CLI_ERRORS = (ProjectError, PlatformAPIError, PackageError, KeychainError, ValueError)


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[
            RichHandler(
                console=Console(stderr=True),
                rich_tracebacks=True,
                show_level=True,
                show_time=True,
                show_path=False,
            )
        ],
    )


def _connect(config: OrgSyncConfig) -> PlatformClient:
    credentials = Credentials.from_env()
    client = PlatformClient(
        credentials,
        api_version=config.api_version,
        poll_interval=config.poll_interval,
        poll_timeout=config.poll_timeout,
    )
    return client.initialize()


def _open_project(args: argparse.Namespace, config: OrgSyncConfig) -> Project:
    project = Project(path=Path(args.path) if args.path else Path.cwd(), config=config)
    return project.initialize()


def cmd_verify_auth(args: argparse.Namespace) -> int:
    """Verify org credentials."""
    console.print("Verifying org credentials...", style="blue")

    try:
        client = _connect(OrgSyncConfig.load())
    except PlatformAPIError as e:
        console.print(f"[red]Authentication failed: {e}")
        return 1
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}")
        return 1

    console.print("[green]Authentication successful!")
    console.print(f"  Username:  {client.username}")
    console.print(f"  Instance:  {client.instance_url}")
    console.print(f"  Namespace: {client.namespace or '[dim]none[/dim]'}")
    return 0


def cmd_new(args: argparse.Namespace) -> int:
    """Create a new project from the org."""
    config = OrgSyncConfig.load()
    try:
        client = _connect(config)
        project = Project(
            name=args.name,
            workspace=args.workspace,
            subscription=args.subscription,
            package=args.package,
            password=client.credentials.password,
            client=client,
            config=config,
        )
        project.initialize(is_new=True)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            progress.add_task(description=f"Retrieving metadata into {project.path}...", total=None)
            project.retrieve_and_write_to_disk()
    except CLI_ERRORS as e:
        console.print(f"[red]Error: {e}")
        return 1

    console.print(f"[green]Created project {project.name} ({len(project.local_store)} files)")
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    """Turn an existing src/package.xml directory into a project."""
    config = OrgSyncConfig.load()
    origin = Path(args.origin).resolve()
    try:
        client = _connect(config)
        project = Project(
            name=args.name or origin.name,
            workspace=args.workspace or config.workspace,
            origin=origin,
            subscription=args.subscription,
            password=client.credentials.password,
            client=client,
            config=config,
        )
        project.initialize(is_new=True, is_existing_directory=True)
    except CLI_ERRORS as e:
        console.print(f"[red]Error: {e}")
        return 1

    console.print(f"[green]Imported project {project.name} into {project.path}")
    return 0


def cmd_refresh(args: argparse.Namespace) -> int:
    """Replace local sources with the server copy."""
    try:
        project = _open_project(args, OrgSyncConfig.load())
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            progress.add_task(description=f"Refreshing {project.name}...", total=None)
            project.refresh_from_server()
    except CLI_ERRORS as e:
        console.print(f"[red]Error: {e}")
        return 1

    console.print(f"[green]Refreshed {len(project.local_store)} files from server")
    return 0


def cmd_clean(args: argparse.Namespace) -> int:
    """Refresh sources, describe and metadata index."""
    try:
        project = _open_project(args, OrgSyncConfig.load())
        project.clean()
    except CLI_ERRORS as e:
        console.print(f"[red]Error: {e}")
        return 1

    console.print("[green]Project cleaned")
    return 0


def cmd_compile(args: argparse.Namespace) -> int:
    """Deploy the project and report component failures."""
    try:
        project = _open_project(args, OrgSyncConfig.load())
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            progress.add_task(description=f"Deploying {project.name}...", total=None)
            result = project.compile()
    except CLI_ERRORS as e:
        console.print(f"[red]Error: {e}")
        return 1

    if result.success:
        console.print(
            f"[green]Compile succeeded ({result.number_components_deployed} components)"
        )
        return 0

    console.print(f"[red]Compile failed: {result.status}")
    if result.error_message:
        console.print(f"[red]{result.error_message}")
    failures = result.details.component_failures
    if failures:
        table = Table(title="Component Failures")
        table.add_column("File")
        table.add_column("Line")
        table.add_column("Problem")
        for failure in failures:
            table.add_row(
                failure.get("fileName", ""),
                str(failure.get("lineNumber") or ""),
                failure.get("problem", ""),
            )
        console.print(table)
    return 1


def cmd_edit(args: argparse.Namespace) -> int:
    """Change which metadata the project contains."""
    try:
        if args.package_xml:
            package = PackageDescriptor(Path(args.package_xml)).init().subscription
        else:
            package = args.types
        project = _open_project(args, OrgSyncConfig.load())
        project.edit(package)
    except CLI_ERRORS as e:
        console.print(f"[red]Error: {e}")
        return 1

    console.print(f"[green]Project now contains {len(project.local_store)} files")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show project settings and tracked files."""
    try:
        project = _open_project(args, OrgSyncConfig.load())
    except CLI_ERRORS as e:
        console.print(f"[red]Error: {e}")
        return 1

    settings = project.settings
    console.print(f"\n[bold]Project:[/bold] {settings.project_name}")
    console.print(f"[bold]Username:[/bold] {settings.username}")
    console.print(f"[bold]Environment:[/bold] {settings.environment}")
    console.print(f"[bold]Subscription:[/bold] {', '.join(settings.subscription)}")

    store = project.local_store
    console.print(f"\n[bold]Tracked Files:[/bold] {len(store)}")
    if store:
        table = Table()
        table.add_column("Key")
        table.add_column("Type")
        table.add_column("Last Modified")
        table.add_column("By")
        table.add_column("State")
        for key, entry in sorted(store.items()):
            table.add_row(
                key,
                entry.type,
                entry.last_modified_date[:19],
                entry.last_modified_by_name,
                entry.mm_state,
            )
        console.print(table)
    else:
        console.print("[dim]No files tracked yet. Run 'refresh' to start syncing.[/dim]")
    return 0


def _add_index_nodes(parent: Tree, nodes: list[dict]) -> None:
    """Recursively add visible index nodes to tree."""
    for node in nodes:
        if not node.get("visibility", True):
            continue
        mark = "[green]+[/green]" if node.get("select") else "[dim]-[/dim]"
        text = f"[blue]{node['text']}[/blue]" if node.get("isFolder") else node["text"]
        label = f"{mark} {text}"
        branch = parent.add(label)
        _add_index_nodes(branch, node.get("children", []))


def cmd_index(args: argparse.Namespace) -> int:
    """Show the org metadata index with current selections."""
    try:
        project = _open_project(args, OrgSyncConfig.load())
        nodes = project.get_org_metadata_index_with_selections(keyword=args.keyword)
    except CLI_ERRORS as e:
        console.print(f"[red]Error: {e}")
        return 1

    if not nodes:
        console.print("[yellow]No metadata indexed. Run 'index-metadata' first.")
        return 0

    tree = Tree(f"[bold blue]{project.name}[/bold blue]")
    _add_index_nodes(tree, nodes)
    console.print(tree)
    return 0


def cmd_index_metadata(args: argparse.Namespace) -> int:
    """Index server metadata for the project's subscription."""
    try:
        project = _open_project(args, OrgSyncConfig.load())
        project.index_metadata()
    except CLI_ERRORS as e:
        console.print(f"[red]Error: {e}")
        return 1

    count = sum(1 for _ in project.org_metadata.walk())
    console.print(f"[green]Indexed {count} metadata nodes")
    return 0


def cmd_download_log(args: argparse.Namespace) -> int:
    """Download one debug log into debug/logs."""
    try:
        project = _open_project(args, OrgSyncConfig.load())
        target = project.log_service.download_log(args.log_id)
    except (*CLI_ERRORS, OSError) as e:
        console.print(f"[red]Error: {e}")
        return 1

    console.print(f"[green]Saved log to {target}")
    return 0


def cmd_watch_logs(args: argparse.Namespace) -> int:
    """Download new debug logs until interrupted."""
    try:
        project = _open_project(args, OrgSyncConfig.load())
        console.print(f"Watching [blue]{project.name}[/blue] for debug logs (Ctrl+C to stop)...")
        while True:
            for path in project.poll_logs():
                console.print(f"[green]Saved log to {path}")
            time.sleep(project.config.poll_interval)
    except KeyboardInterrupt:
        console.print("[dim]Stopped watching logs[/dim]")
        return 0
    except CLI_ERRORS as e:
        console.print(f"[red]Error: {e}")
        return 1


def cmd_update_creds(args: argparse.Namespace) -> int:
    """Point the project at new credentials (from the environment)."""
    config = OrgSyncConfig.load()
    project = Project(path=Path(args.path) if args.path else Path.cwd(), config=config)
    try:
        credentials = Credentials.from_env()
        try:
            project.initialize()
        except ProjectValidationError:
            raise
        except CLI_ERRORS as e:
            # stale credentials are what this command fixes
            logger.debug("project not valid with current credentials: %s", e)
        project.update_creds(credentials)
    except CLI_ERRORS as e:
        console.print(f"[red]Error: {e}")
        return 1

    console.print(f"[green]Credentials updated for {project.name}")
    return 0


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="orgsync",
        description="Keep a local project in sync with an org",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--path", help="Project directory (default: current directory)")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("verify-auth", help="Verify org credentials")

    new_parser = subparsers.add_parser("new", help="Create a new project from the org")
    new_parser.add_argument("name", help="Project name")
    new_parser.add_argument("--workspace", help="Workspace directory (default: first configured)")
    new_parser.add_argument("--subscription", nargs="+", help="Metadata types to subscribe to")
    new_parser.add_argument("--package", nargs="+", help="Metadata types to retrieve")

    import_parser = subparsers.add_parser("import", help="Import an existing src/package.xml directory")
    import_parser.add_argument("origin", help="Directory containing src/package.xml")
    import_parser.add_argument("--name", help="Project name (default: directory name)")
    import_parser.add_argument("--workspace", help="Workspace directory (default: first configured)")
    import_parser.add_argument("--subscription", nargs="+", help="Metadata types to subscribe to")

    subparsers.add_parser("refresh", help="Replace local sources with the server copy")
    subparsers.add_parser("clean", help="Refresh sources, describe and metadata index")
    subparsers.add_parser("compile", help="Deploy the project to the org")

    edit_parser = subparsers.add_parser("edit", help="Change the project's contents")
    edit_group = edit_parser.add_mutually_exclusive_group(required=True)
    edit_group.add_argument("--types", nargs="+", help="Metadata types to retrieve (all members)")
    edit_group.add_argument("--package-xml", help="package.xml describing the new contents")

    subparsers.add_parser("status", help="Show project settings and tracked files")

    index_parser = subparsers.add_parser("index", help="Show the org metadata index")
    index_parser.add_argument("--keyword", help="Only show nodes matching keyword")

    subparsers.add_parser("index-metadata", help="Index server metadata for the subscription")

    log_parser = subparsers.add_parser("download-log", help="Download a debug log")
    log_parser.add_argument("log_id", help="ApexLog id")

    subparsers.add_parser("watch-logs", help="Download new debug logs as they are created")

    subparsers.add_parser("update-creds", help="Update org credentials from the environment")

    args = parser.parse_args()
    setup_logging(args.verbose)

    if args.command == "verify-auth":
        return cmd_verify_auth(args)
    elif args.command == "new":
        return cmd_new(args)
    elif args.command == "import":
        return cmd_import(args)
    elif args.command == "refresh":
        return cmd_refresh(args)
    elif args.command == "clean":
        return cmd_clean(args)
    elif args.command == "compile":
        return cmd_compile(args)
    elif args.command == "edit":
        return cmd_edit(args)
    elif args.command == "status":
        return cmd_status(args)
    elif args.command == "index":
        return cmd_index(args)
    elif args.command == "index-metadata":
        return cmd_index_metadata(args)
    elif args.command == "download-log":
        return cmd_download_log(args)
    elif args.command == "watch-logs":
        return cmd_watch_logs(args)
    elif args.command == "update-creds":
        return cmd_update_creds(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
