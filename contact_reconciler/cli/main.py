"""
Command-line interface for contact_reconciler.

Provides commands to connect directories, preview and run imports, run
incremental syncs, push local edits and work through conflicts.

Usage:
    # Show help
    contact-reconciler --help

    # Connect a directory
    contact-reconciler connect --user u1 --provider google --write-back

    # Preview and import
    contact-reconciler preview --integration <id>
    contact-reconciler import --integration <id> --update-existing

    # Keep in step
    contact-reconciler sync --integration <id>
"""

import json
import sys
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional

import click

from contact_reconciler import __version__
from contact_reconciler.api.base import DirectoryClient, DirectoryError
from contact_reconciler.api.google_people import GooglePeopleClient
from contact_reconciler.api.microsoft_graph import MicrosoftGraphClient
from contact_reconciler.auth.tokens import (
    EnvTokenProvider,
    GoogleCredentialsTokenProvider,
    TokenProvider,
)
from contact_reconciler.config.import_config import (
    ImportConfig,
    ImportConfigError,
    load_import_config,
)
from contact_reconciler.config.loader import ConfigError, ConfigLoader, Settings
from contact_reconciler.storage.db import ContactStore
from contact_reconciler.sync.conflict import ConflictStrategy
from contact_reconciler.sync.jobs import ImportJob, JobError
from contact_reconciler.sync.pipeline import IntegrationError
from contact_reconciler.sync.records import PROVIDER_GOOGLE, PROVIDERS, Integration
from contact_reconciler.sync.service import ContactNotFoundError, ContactSyncService
from contact_reconciler.utils.logging import (
    cleanup_old_logs,
    get_logger,
    setup_logging,
    setup_matching_logger,
)
from contact_reconciler.utils.paths import resolve_config_dir, resolve_db_path

# Google authorized-user file looked up in the config directory
DEFAULT_GOOGLE_CREDENTIALS_FILE = "google_token.json"

# Errors reported as a one-line message rather than a traceback
EXPECTED_ERRORS = (
    ConfigError,
    ImportConfigError,
    IntegrationError,
    ContactNotFoundError,
    JobError,
    DirectoryError,
)

STRATEGY_CHOICES = [s.value for s in ConflictStrategy]


def fail(message: str) -> None:
    """Print an error in red and exit with status 1."""
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(1)


def build_client(
    integration: Integration, config_dir: Path, credentials: Optional[str] = None
) -> DirectoryClient:
    """
    Build the directory client for an integration.

    Google uses an authorized-user credentials file when one is given (or
    present in the config directory); otherwise each provider reads its
    bearer token from CONTACT_RECONCILER_<PROVIDER>_TOKEN.
    """
    token_provider: TokenProvider
    if integration.provider == PROVIDER_GOOGLE:
        credentials_path = (
            Path(credentials) if credentials else config_dir / DEFAULT_GOOGLE_CREDENTIALS_FILE
        )
        if credentials or credentials_path.exists():
            token_provider = GoogleCredentialsTokenProvider.from_authorized_user_file(
                credentials_path
            )
        else:
            token_provider = EnvTokenProvider.for_provider(integration.provider)
        return GooglePeopleClient(token_provider)

    return MicrosoftGraphClient(EnvTokenProvider.for_provider(integration.provider))


@contextmanager
def open_service(ctx: click.Context) -> Generator[ContactSyncService, None, None]:
    """Open the store and a service for one command, closing both afterwards."""
    settings: Settings = ctx.obj["settings"]
    config_dir: Path = ctx.obj["config_dir"]
    credentials: Optional[str] = ctx.obj.get("credentials")

    db_path = resolve_db_path(config_dir, settings.db_path)
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    store = ContactStore(db_path)
    store.initialize()

    service = ContactSyncService(
        store,
        lambda integration: build_client(integration, config_dir, credentials),
        settings=settings,
    )
    try:
        yield service
    finally:
        service.close()
        store.close()


def parse_tag_mapping(
    ctx: click.Context, param: click.Parameter, value: tuple[str, ...]
) -> dict[str, str]:
    """Parse repeated OLD=NEW options into a tag mapping."""
    mapping = {}
    for item in value:
        source, sep, target = item.partition("=")
        if not sep or not source.strip() or not target.strip():
            raise click.BadParameter(f"Expected OLD=NEW, got '{item}'")
        mapping[source.strip()] = target.strip()
    return mapping


def build_import_config(
    config_json: Optional[str],
    skip_duplicates: bool,
    update_existing: bool,
    selected: tuple[str, ...],
    tag_mapping: dict[str, str],
    exclude_tags: tuple[str, ...],
    preserve_tags: bool,
    folder: Optional[str],
) -> ImportConfig:
    """Build an ImportConfig from a JSON file, or from command-line flags."""
    if config_json:
        return load_import_config(config_json)
    return ImportConfig.from_dict(
        {
            "skipDuplicates": skip_duplicates,
            "updateExisting": update_existing,
            "selectedExternalIds": list(selected) or None,
            "tagMapping": tag_mapping,
            "excludeTags": list(exclude_tags),
            "preserveOriginalTags": preserve_tags,
            "folderFilter": folder,
        }
    )


def echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def show_job(job: ImportJob) -> None:
    """Print a job's status block."""
    status_colors = {"COMPLETED": "green", "FAILED": "red"}
    status = click.style(job.status.value, fg=status_colors.get(job.status.value, "yellow"))
    click.echo(f"Job {job.id} ({job.kind.value}): {status}")
    click.echo(f"  Progress: {job.progress}% ({job.processed_count}/{job.total_count})")
    click.echo(f"  Imported: {job.imported_count}")
    click.echo(f"  Updated: {job.updated_count}")
    click.echo(f"  Skipped: {job.skipped_count}")
    if job.deleted_count:
        click.echo(f"  Deleted: {job.deleted_count}")
    if job.failed_count:
        click.echo(click.style(f"  Failed: {job.failed_count}", fg="yellow"))
    if job.error_message:
        click.echo(click.style(f"  Error: {job.error_message}", fg="red"))
    if job.errors:
        click.echo(f"  Recent record errors ({len(job.errors)}):")
        for error in list(job.errors)[-5:]:
            click.echo(f"    {error.external_id}: {error.message}")


# Import config options shared by preview and import
_IMPORT_OPTIONS = [
    click.option(
        "--config-json",
        type=click.Path(exists=False, dir_okay=False),
        help="JSON import configuration file (overrides the flags below).",
    ),
    click.option(
        "--select",
        "selected",
        multiple=True,
        help="Only import this external id (repeatable).",
    ),
    click.option(
        "--tag-map",
        "tag_mapping",
        multiple=True,
        callback=parse_tag_mapping,
        help="Rename a provider tag, as OLD=NEW (repeatable).",
    ),
    click.option("--exclude-tag", "exclude_tags", multiple=True, help="Drop this tag (repeatable)."),
    click.option("--preserve-tags", is_flag=True, help="Keep provider tags alongside mapped ones."),
    click.option("--folder", help="Only import contacts from this folder or group id."),
]


def import_options(func: Any) -> Any:
    for option in reversed(_IMPORT_OPTIONS):
        func = option(func)
    return func


@click.group()
@click.version_option(version=__version__, prog_name="contact-reconciler")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar="CONTACT_RECONCILER_CONFIG_DIR",
    help="Configuration directory path (default: ~/.contact-reconciler).",
)
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    envvar="CONTACT_RECONCILER_CONFIG_FILE",
    help="Configuration file path (default: <config-dir>/config.yaml).",
)
@click.option(
    "--credentials",
    type=click.Path(exists=False, dir_okay=False),
    help="Google authorized-user credentials file.",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    config_dir: Optional[str],
    config_file: Optional[str],
    credentials: Optional[str],
) -> None:
    """
    Contact import and sync for Google Contacts and Microsoft 365.

    Imports directory contacts into a local contact set without creating
    duplicates, keeps them in step with incremental syncs and resolves
    conflicting edits.
    """
    ctx.ensure_object(dict)

    resolved_config_dir = resolve_config_dir(config_dir)
    ctx.obj["config_dir"] = resolved_config_dir
    ctx.obj["credentials"] = credentials

    # Load configuration file
    config: dict[str, Any] = {}
    try:
        loader = ConfigLoader(config_dir=resolved_config_dir)
        config = loader.load_and_validate(config_file)
    except ConfigError as e:
        # Show error but don't fail - allow CLI to work without config file
        click.echo(
            click.style(f"Warning: Configuration error: {e}", fg="yellow"), err=True
        )
        config = {}

    settings = Settings.from_config(config)
    # CLI arg takes precedence over config file
    if verbose:
        settings = settings.with_overrides(verbose=True)
    ctx.obj["settings"] = settings
    ctx.obj["verbose"] = settings.verbose

    log_dir = (
        Path(settings.log_dir).expanduser() if settings.log_dir else resolved_config_dir / "logs"
    )
    setup_logging(verbose=settings.verbose, log_dir=log_dir, enable_file_logging=True)
    if settings.verbose:
        setup_matching_logger()

    if settings.log_retention_count > 0:
        cleanup_old_logs(log_dir=log_dir, keep_count=settings.log_retention_count)


# =============================================================================
# Integration Commands
# =============================================================================


@cli.command("connect")
@click.option("--user", "-u", "user_id", required=True, help="Owner of the local contact set.")
@click.option(
    "--provider",
    "-p",
    required=True,
    type=click.Choice([p.lower() for p in PROVIDERS], case_sensitive=False),
    help="Directory provider.",
)
@click.option("--name", "-n", default="", help="Label for the integration.")
@click.option(
    "--strategy",
    "-s",
    type=click.Choice(STRATEGY_CHOICES, case_sensitive=False),
    help="Conflict strategy (default: from config, else last_write_wins).",
)
@click.option("--write-back", is_flag=True, help="Push local edits back to the directory.")
@click.pass_context
def connect_command(
    ctx: click.Context,
    user_id: str,
    provider: str,
    name: str,
    strategy: Optional[str],
    write_back: bool,
) -> None:
    """
    Connect a directory for a user.

    Example:

        contact-reconciler connect --user u1 --provider microsoft --write-back
    """
    logger = get_logger(__name__)
    try:
        with open_service(ctx) as service:
            integration = service.connect_integration(
                user_id,
                provider,
                name=name,
                conflict_strategy=strategy,
                write_back=write_back,
            )
        click.echo(click.style(f"Connected {integration.provider} integration.", fg="green"))
        click.echo(f"Integration id: {integration.id}")
        click.echo(f"Conflict strategy: {integration.conflict_strategy}")
        click.echo(f"Write-back: {'enabled' if integration.write_back else 'disabled'}")
    except EXPECTED_ERRORS as e:
        fail(str(e))
    except Exception as e:
        logger.exception(f"Connect failed: {e}")
        fail(str(e))


@cli.command("status")
@click.option("--integration", "-i", "integration_id", help="Show one integration in detail.")
@click.option("--user", "-u", "user_id", help="Only list this user's integrations.")
@click.option("--json", "as_json", is_flag=True, help="Output JSON.")
@click.pass_context
def status_command(
    ctx: click.Context,
    integration_id: Optional[str],
    user_id: Optional[str],
    as_json: bool,
) -> None:
    """
    Show integrations and their sync status.

    Example:

        contact-reconciler status
        contact-reconciler status --integration <id>
    """
    logger = get_logger(__name__)
    try:
        with open_service(ctx) as service:
            if integration_id:
                statuses = [service.get_integration_status(integration_id)]
            else:
                statuses = [
                    service.get_integration_status(i.id)
                    for i in service.list_integrations(user_id)
                ]

        if as_json:
            echo_json(statuses)
            return

        click.echo("=== Contact Reconciler Status ===\n")
        if not statuses:
            click.echo("No integrations connected.")
            click.echo("Run 'contact-reconciler connect' to add one.")
            return

        for status in statuses:
            state = (
                click.style("Connected", fg="green")
                if status["connected"]
                else click.style("Disconnected", fg="red")
            )
            click.echo(f"{status['name']} ({status['provider']}) [{status['integrationId']}]: {state}")
            click.echo(f"  Last sync: {status['lastSyncAt'] or 'Never'}")
            click.echo(f"  Sync cursor: {'Yes' if status['hasCursor'] else 'No'}")
            click.echo(f"  Synced contacts: {status['syncedContacts']}")
            click.echo(
                f"  Write-back: {'enabled' if status['writeBack'] else 'disabled'} "
                f"({status['conflictStrategy']})"
            )
            if status["pendingConflicts"]:
                click.echo(
                    click.style(
                        f"  Pending conflicts: {status['pendingConflicts']}", fg="yellow"
                    )
                )
            click.echo()
    except EXPECTED_ERRORS as e:
        fail(str(e))
    except Exception as e:
        logger.exception(f"Error getting status: {e}")
        fail(str(e))


@cli.command("disconnect")
@click.option("--integration", "-i", "integration_id", required=True, help="Integration id.")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def disconnect_command(ctx: click.Context, integration_id: str, yes: bool) -> None:
    """
    Disconnect an integration.

    Deletes its contact links and sync cursor. Local contacts are kept.
    """
    logger = get_logger(__name__)
    if not yes:
        click.confirm(
            "This will unlink every contact from this integration.\nContinue?",
            abort=True,
        )
    try:
        with open_service(ctx) as service:
            result = service.disconnect(integration_id)
        click.echo(click.style("Integration disconnected.", fg="green"))
        click.echo(f"Links deleted: {result['links_deleted']}")
    except EXPECTED_ERRORS as e:
        fail(str(e))
    except Exception as e:
        logger.exception(f"Disconnect failed: {e}")
        fail(str(e))


@cli.command("reset-cursor")
@click.option("--integration", "-i", "integration_id", required=True, help="Integration id.")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def reset_cursor_command(ctx: click.Context, integration_id: str, yes: bool) -> None:
    """
    Reset the sync cursor (forces a full sync on next run).

    This does NOT delete contacts or links.
    """
    logger = get_logger(__name__)
    if not yes:
        click.confirm("The next sync will list every contact again.\nContinue?", abort=True)
    try:
        with open_service(ctx) as service:
            cleared = service.reset_cursor(integration_id)
        if cleared:
            click.echo(click.style("Sync cursor has been reset.", fg="green"))
        else:
            click.echo("No sync cursor stored. Nothing to reset.")
    except EXPECTED_ERRORS as e:
        fail(str(e))
    except Exception as e:
        logger.exception(f"Reset failed: {e}")
        fail(str(e))


# =============================================================================
# Import Commands
# =============================================================================


@cli.command("preview")
@click.option("--integration", "-i", "integration_id", required=True, help="Integration id.")
@import_options
@click.option("--json", "as_json", is_flag=True, help="Output JSON.")
@click.pass_context
def preview_command(
    ctx: click.Context,
    integration_id: str,
    config_json: Optional[str],
    selected: tuple[str, ...],
    tag_mapping: dict[str, str],
    exclude_tags: tuple[str, ...],
    preserve_tags: bool,
    folder: Optional[str],
    as_json: bool,
) -> None:
    """
    Preview an import without changing anything.

    Example:

        contact-reconciler preview --integration <id> --exclude-tag starred
    """
    logger = get_logger(__name__)
    try:
        config = build_import_config(
            config_json, True, False, selected, tag_mapping, exclude_tags, preserve_tags, folder
        )
        with open_service(ctx) as service:
            preview = service.preview_import(integration_id, config)

        if as_json:
            echo_json(preview.to_dict())
            return

        summary = preview.summary
        click.echo("=== Import Preview ===\n")
        click.echo(f"Fetched: {preview.total_fetched}")
        click.echo(f"Selected: {summary.total}")
        click.echo(click.style(f"New: {summary.new}", fg="green"))
        click.echo(f"Exact duplicates: {summary.exact}")
        click.echo(f"Potential duplicates: {summary.potential}")
        if preview.duplicates and ctx.obj["verbose"]:
            click.echo("\nDuplicates:")
            for match in preview.duplicates:
                click.echo(f"  {match}")
        if preview.tags_preview:
            click.echo(f"\nTags: {', '.join(preview.tags_preview)}")
    except EXPECTED_ERRORS as e:
        fail(str(e))
    except Exception as e:
        logger.exception(f"Preview failed: {e}")
        fail(str(e))


@cli.command("import")
@click.option("--integration", "-i", "integration_id", required=True, help="Integration id.")
@click.option(
    "--skip-duplicates/--no-skip-duplicates",
    default=True,
    help="Skip records matching an existing contact (default: skip).",
)
@click.option(
    "--update-existing/--no-update-existing",
    default=False,
    help="Update matched contacts in place (default: no).",
)
@import_options
@click.pass_context
def import_command(
    ctx: click.Context,
    integration_id: str,
    skip_duplicates: bool,
    update_existing: bool,
    config_json: Optional[str],
    selected: tuple[str, ...],
    tag_mapping: dict[str, str],
    exclude_tags: tuple[str, ...],
    preserve_tags: bool,
    folder: Optional[str],
) -> None:
    """
    Import contacts from a directory.

    Runs the import job and waits for it to finish.

    Examples:

        contact-reconciler import --integration <id>
        contact-reconciler import --integration <id> --update-existing
        contact-reconciler import --integration <id> --config-json import.json
    """
    logger = get_logger(__name__)
    try:
        config = build_import_config(
            config_json,
            skip_duplicates,
            update_existing,
            selected,
            tag_mapping,
            exclude_tags,
            preserve_tags,
            folder,
        )
        with open_service(ctx) as service:
            click.echo("Importing contacts...")
            job_id = service.start_import(integration_id, config)
            job = service.wait_for_job(job_id)

        show_job(job)
        if not job.status.is_terminal or job.error_message:
            sys.exit(1)
    except EXPECTED_ERRORS as e:
        fail(str(e))
    except Exception as e:
        logger.exception(f"Import failed: {e}")
        fail(str(e))


@cli.command("job-status")
@click.argument("job_id")
@click.option("--json", "as_json", is_flag=True, help="Output JSON.")
@click.pass_context
def job_status_command(ctx: click.Context, job_id: str, as_json: bool) -> None:
    """Show the status of an import or sync job."""
    logger = get_logger(__name__)
    try:
        with open_service(ctx) as service:
            job = service.get_job_status(job_id)
        if as_json:
            echo_json(job.to_dict())
        else:
            show_job(job)
    except EXPECTED_ERRORS as e:
        fail(str(e))
    except Exception as e:
        logger.exception(f"Error getting job status: {e}")
        fail(str(e))


# =============================================================================
# Sync Commands
# =============================================================================


@cli.command("sync")
@click.option("--integration", "-i", "integration_id", required=True, help="Integration id.")
@click.option("--full", is_flag=True, help="Force full sync (drop the stored cursor first).")
@click.option("--json", "as_json", is_flag=True, help="Output JSON.")
@click.pass_context
def sync_command(ctx: click.Context, integration_id: str, full: bool, as_json: bool) -> None:
    """
    Pull directory changes since the last sync.

    Examples:

        contact-reconciler sync --integration <id>
        contact-reconciler sync --integration <id> --full
    """
    logger = get_logger(__name__)
    try:
        with open_service(ctx) as service:
            if full:
                service.reset_cursor(integration_id)
            integration = service.store.get_integration(integration_id)
            result = service.start_incremental_sync(integration_id)

        if as_json:
            echo_json(result.to_dict())
            return
        label = integration.name if integration else integration_id
        click.echo(result.summary(label))
        if result.conflicts_deferred:
            click.echo(
                click.style(
                    f"\n{result.conflicts_deferred} conflict(s) need review. "
                    f"Run 'contact-reconciler conflicts'.",
                    fg="yellow",
                )
            )
        if not result.has_changes:
            click.echo(click.style("Everything is in sync.", fg="green"))
    except EXPECTED_ERRORS as e:
        fail(str(e))
    except Exception as e:
        logger.exception(f"Sync failed: {e}")
        fail(str(e))


@cli.command("push")
@click.argument("contact_id")
@click.option("--integration", "-i", "integration_id", help="Write-back integration id.")
@click.pass_context
def push_command(ctx: click.Context, contact_id: str, integration_id: Optional[str]) -> None:
    """Push a local contact to a write-back directory."""
    logger = get_logger(__name__)
    try:
        with open_service(ctx) as service:
            result = service.push_contact(contact_id, integration_id)
        click.echo(click.style(f"Contact {result.action}: {result.external_id}", fg="green"))
        if result.pushed_fields:
            click.echo(f"Pushed fields: {', '.join(result.pushed_fields)}")
        if result.conflicts_found:
            click.echo(
                f"Conflicts: {result.conflicts_found} found, "
                f"{result.auto_resolved} auto-resolved, {result.deferred} deferred"
            )
    except EXPECTED_ERRORS as e:
        fail(str(e))
    except Exception as e:
        logger.exception(f"Push failed: {e}")
        fail(str(e))


# =============================================================================
# Conflict Commands
# =============================================================================


@cli.command("conflicts")
@click.option("--integration", "-i", "integration_id", help="Only this integration.")
@click.option("--json", "as_json", is_flag=True, help="Output JSON.")
@click.pass_context
def conflicts_command(ctx: click.Context, integration_id: Optional[str], as_json: bool) -> None:
    """List conflicts waiting for manual review."""
    logger = get_logger(__name__)
    try:
        with open_service(ctx) as service:
            conflicts = service.list_pending_conflicts(integration_id)

        if as_json:
            echo_json(
                [
                    {
                        "id": c.id,
                        "integrationId": c.integration_id,
                        "contactId": c.contact_id,
                        "field": c.field,
                        "localValue": c.local_value,
                        "remoteValue": c.remote_value,
                    }
                    for c in conflicts
                ]
            )
            return

        if not conflicts:
            click.echo("No pending conflicts.")
            return
        click.echo(f"Pending conflicts: {len(conflicts)}\n")
        for c in conflicts:
            click.echo(f"[{c.id}] contact {c.contact_id} {c.field}:")
            click.echo(f"    local:  {c.local_value!r}")
            click.echo(f"    remote: {c.remote_value!r}")
    except EXPECTED_ERRORS as e:
        fail(str(e))
    except Exception as e:
        logger.exception(f"Error listing conflicts: {e}")
        fail(str(e))


@cli.command("resolve-conflicts")
@click.option(
    "--strategy",
    "-s",
    required=True,
    type=click.Choice(STRATEGY_CHOICES, case_sensitive=False),
    help="Strategy to resolve with.",
)
@click.option("--integration", "-i", "integration_id", help="Only this integration.")
@click.option("--id", "conflict_ids", type=int, multiple=True, help="Only this conflict (repeatable).")
@click.pass_context
def resolve_conflicts_command(
    ctx: click.Context,
    strategy: str,
    integration_id: Optional[str],
    conflict_ids: tuple[int, ...],
) -> None:
    """
    Resolve pending conflicts with a strategy.

    Example:

        contact-reconciler resolve-conflicts --strategy crm_priority --id 3
    """
    logger = get_logger(__name__)
    try:
        with open_service(ctx) as service:
            conflicts = service.list_pending_conflicts(integration_id)
            if conflict_ids:
                wanted = set(conflict_ids)
                conflicts = [c for c in conflicts if c.id in wanted]
            if not conflicts:
                click.echo("No pending conflicts to resolve.")
                return
            resolutions = service.resolve_conflicts(conflicts, strategy)

        resolved = [r for r in resolutions if not r.is_deferred]
        for r in resolved:
            assert r.winner is not None
            click.echo(f"[{r.conflict_id}] {r.field}: {r.winner.value} wins ({r.resolved_value!r})")
        click.echo(click.style(f"Resolved {len(resolved)} of {len(resolutions)} conflict(s).", fg="green"))
    except EXPECTED_ERRORS as e:
        fail(str(e))
    except Exception as e:
        logger.exception(f"Resolve failed: {e}")
        fail(str(e))


@cli.command("folders")
@click.option("--integration", "-i", "integration_id", required=True, help="Integration id.")
@click.pass_context
def folders_command(ctx: click.Context, integration_id: str) -> None:
    """List the contact folders of a directory (Microsoft 365)."""
    logger = get_logger(__name__)
    try:
        with open_service(ctx) as service:
            folders = service.list_folders(integration_id)
        if not folders:
            click.echo("No contact folders.")
            return
        for folder in folders:
            click.echo(f"{folder.get('id')}  {folder.get('displayName', '')}")
    except EXPECTED_ERRORS as e:
        fail(str(e))
    except Exception as e:
        logger.exception(f"Error listing folders: {e}")
        fail(str(e))
