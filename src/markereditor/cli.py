"""CLI entry point for the marker editor."""

import logging
from pathlib import Path

import click

from markereditor import __version__
from markereditor.client import MarkerEditorAPIError, MarkerEditorClient
from markereditor.config import Settings
from markereditor.plex.markers import BulkMarkerResolveType, MarkerEnum, MarkerType
from markereditor.purge_cache import PurgedMarkerManager
from markereditor.timestamp import TimestampExpression, ms_to_hms

logger = logging.getLogger(__name__)

_APPLY_TO = {
    "intro": MarkerEnum.INTRO,
    "credits": MarkerEnum.CREDITS,
    "commercial": MarkerEnum.AD,
    "all": MarkerEnum.ALL,
}

_RESOLVE = {
    "fail": BulkMarkerResolveType.FAIL,
    "merge": BulkMarkerResolveType.MERGE,
    "ignore": BulkMarkerResolveType.IGNORE,
    "overwrite": BulkMarkerResolveType.OVERWRITE,
    "dry-run": BulkMarkerResolveType.DRY_RUN,
}


@click.group()
@click.version_option(__version__, "--version", "-v", help="Show version and exit.")
@click.option(
    "--config",
    type=click.Path(exists=False),
    default=None,
    help="Path to configuration file.",
)
@click.pass_context
def cli(ctx, config):
    """Plex Marker Editor - view and bulk edit intro, credits, and ad markers."""
    ctx.ensure_object(dict)
    if config:
        ctx.obj["config"] = Settings(_env_file=config)
    else:
        ctx.obj["config"] = Settings()
    logging.basicConfig(
        level=ctx.obj["config"].log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _client(ctx) -> MarkerEditorClient:
    config = ctx.obj["config"]
    return MarkerEditorClient(config.server_url, timeout=config.request_timeout)


def _apply_to(values) -> int:
    flags = 0
    for value in values or ("all",):
        flags |= _APPLY_TO[value]
    return flags


def _parse_time(value: str, allow_negative: bool = False) -> int:
    expression = TimestampExpression(plain_only=True, allow_negative=allow_negative)
    state = expression.parse(value)
    if not state.valid:
        raise click.BadParameter(f"'{value}': {state.invalid_reason}")
    return expression.ms()


def _format_duration(ms: int) -> str:
    """Format milliseconds as [HH:]MM:SS.mmm.

    Args:
        ms: Duration in milliseconds

    Returns:
        Formatted duration string
    """
    return ms_to_hms(ms, minify=True)


def _format_marker(marker) -> str:
    final = " (final)" if marker.is_final else ""
    return (
        f"[{_format_duration(marker.start)} - {_format_duration(marker.end)}] "
        f"{click.style(marker.marker_type.value.upper(), fg='yellow')}{final} "
        f"id={marker.id} index={marker.index}"
    )


@cli.command()
@click.option("--host", default=None, help="Interface to listen on.")
@click.option("--port", type=int, default=None, help="Port to listen on.")
@click.pass_context
def serve(ctx, host, port):
    """Start the HTTP server."""
    import uvicorn

    from markereditor.commands import ServerContext
    from markereditor.db import RepositoryError
    from markereditor.server import create_app

    config = ctx.obj["config"]
    try:
        context = ServerContext.from_settings(config)
    except RepositoryError as e:
        raise click.ClickException(f"Unable to open the Plex database: {e}") from e

    host = host or config.host
    port = port or config.port
    click.echo(click.style(f"Serving marker editor on http://{host}:{port}", fg="cyan", bold=True))
    try:
        uvicorn.run(create_app(context), host=host, port=port, log_level=config.log_level.lower())
    finally:
        context.close()


@cli.command()
@click.pass_context
def sections(ctx):
    """List movie and TV libraries."""
    try:
        libraries = _client(ctx).get_sections()
    except MarkerEditorAPIError as e:
        raise click.ClickException(str(e)) from e

    if not libraries:
        click.echo("No libraries found.")
        return
    for library in libraries:
        kind = "Movies" if library.type == 1 else "TV"
        click.echo(f"  {library.id}: {library.name} ({kind})")


@cli.command()
@click.argument("metadata_id", type=int)
@click.argument("start_shift")
@click.argument("end_shift", required=False)
@click.option(
    "--apply-to",
    type=click.Choice(sorted(_APPLY_TO)),
    multiple=True,
    help="Marker types to shift (default: all).",
)
@click.option("--force", is_flag=True, help="Shift even if an episode has several markers.")
@click.option("--dry-run", is_flag=True, help="Show what would be shifted without doing it.")
@click.option("--output", type=click.Path(), default=None, help="Output JSON file path.")
@click.pass_context
def shift(ctx, metadata_id, start_shift, end_shift, apply_to, force, dry_run, output):
    """Shift markers under an episode, season, or show.

    Shifts are milliseconds or [-][hh:]mm:ss[.mmm]. END_SHIFT defaults to START_SHIFT.
    """
    start_ms = _parse_time(start_shift, allow_negative=True)
    end_ms = _parse_time(end_shift, allow_negative=True) if end_shift else start_ms
    client = _client(ctx)
    try:
        if dry_run:
            result = client.check_shift(metadata_id, start_ms, end_ms, _apply_to(apply_to))
        else:
            result = client.shift(metadata_id, start_ms, end_ms, _apply_to(apply_to), force)
    except MarkerEditorAPIError as e:
        raise click.ClickException(str(e)) from e

    if result.overflow:
        click.echo(click.style("Shift would move a marker outside its episode.", fg="red"))
    elif result.conflict and not result.applied:
        click.echo(
            click.style("Some episodes have multiple markers, use --force to shift them all.", fg="yellow")
        )
    status = "Shifted" if result.applied else "Would shift" if not result.overflow else "Not shifted"
    click.echo(click.style(f"{status} {len(result.all_markers)} marker(s):", fg="blue", bold=True))
    for marker in result.all_markers:
        click.echo(f"  {_format_marker(marker)}")

    if output:
        result.to_file(Path(output))
        click.echo(click.style(f"✓ Result saved to {output}", fg="green"))


@cli.command("bulk-delete")
@click.argument("metadata_id", type=int)
@click.option(
    "--apply-to",
    type=click.Choice(sorted(_APPLY_TO)),
    multiple=True,
    help="Marker types to delete (default: all).",
)
@click.option("--dry-run", is_flag=True, help="Show what would be deleted without doing it.")
@click.pass_context
def bulk_delete(ctx, metadata_id, apply_to, dry_run):
    """Delete markers under an episode, season, or show."""
    try:
        result = _client(ctx).bulk_delete(metadata_id, dry_run, _apply_to(apply_to))
    except MarkerEditorAPIError as e:
        raise click.ClickException(str(e)) from e

    verb = "Deleted" if result.applied else "Would delete"
    click.echo(click.style(f"{verb} {len(result.deleted_markers)} marker(s):", fg="blue", bold=True))
    for marker in result.deleted_markers:
        click.echo(f"  {_format_marker(marker)}")
    click.echo(f"{len(result.markers)} marker(s) kept.")


@cli.command("bulk-add")
@click.argument("metadata_id", type=int)
@click.argument("start")
@click.argument("end")
@click.option(
    "--type",
    "marker_type",
    type=click.Choice([t.value for t in MarkerType]),
    default=MarkerType.INTRO.value,
    help="Type of marker to add.",
)
@click.option("--final", is_flag=True, help="Mark credits as the final credits.")
@click.option(
    "--resolve",
    type=click.Choice(list(_RESOLVE)),
    default="fail",
    help="How to handle overlap with existing markers.",
)
@click.option("--output", type=click.Path(), default=None, help="Output JSON file path.")
@click.pass_context
def bulk_add(ctx, metadata_id, start, end, marker_type, final, resolve, output):
    """Add a marker to every episode under a season or show."""
    start_ms = _parse_time(start)
    end_ms = _parse_time(end)
    try:
        result = _client(ctx).bulk_add(
            metadata_id, start_ms, end_ms, marker_type, final, _RESOLVE[resolve]
        )
    except MarkerEditorAPIError as e:
        raise click.ClickException(str(e)) from e

    if not result.applied:
        if result.conflict:
            click.echo(click.style("Markers overlap existing markers, nothing was added.", fg="yellow"))
        else:
            click.echo(click.style("Dry run, nothing was added.", fg="yellow"))
    for episode_id, entry in sorted(result.episode_map.items()):
        episode = entry.episode_data
        label = f"S{episode.season_index:02}E{episode.index:02} {episode.title}".rstrip()
        if entry.changed_marker is not None:
            action = "added" if entry.is_add else "merged"
            click.echo(f"  {label}: {action} {_format_marker(entry.changed_marker)}")
        elif entry.overflow:
            click.echo(f"  {label}: outside episode bounds")
        elif entry.conflict:
            click.echo(f"  {label}: conflicts with {len(entry.existing_markers)} marker(s)")
        else:
            click.echo(f"  {label}: no conflicts")
    if result.ignored_episodes:
        click.echo(f"Skipped {len(result.ignored_episodes)} conflicting episode(s).")

    if output:
        result.to_file(Path(output))
        click.echo(click.style(f"✓ Result saved to {output}", fg="green"))


@cli.command()
@click.argument("section_id", type=int)
@click.option("--restore", is_flag=True, help="Restore every purged marker found.")
@click.pass_context
def purges(ctx, section_id, restore):
    """Find markers Plex removed from a library section."""
    manager = PurgedMarkerManager(_client(ctx), section_id)
    try:
        section = manager.find_purged_markers()
        actions = sorted(section.actions(), key=lambda action: action.episode_id)
        click.echo(click.style(f"Found {section.count} purged marker(s).", fg="blue", bold=True))
        for action in actions:
            click.echo(
                f"  episode {action.episode_id}: [{_format_duration(action.start)} - "
                f"{_format_duration(action.end)}] {action.marker_type.value} (marker {action.marker_id})"
            )
        if restore and actions:
            result = manager.restore_markers([action.marker_id for action in actions])
            click.echo(
                click.style(
                    f"✓ Restored {len(result.new_markers)} marker(s), "
                    f"{len(result.existing_markers)} already existed",
                    fg="green",
                )
            )
    except MarkerEditorAPIError as e:
        raise click.ClickException(str(e)) from e


@cli.command("parse-time")
@click.argument("text")
@click.option("--end", "is_end", is_flag=True, help="Parse as an end timestamp.")
def parse_time(text, is_end):
    """Parse a timestamp or '=' expression and print its value."""
    expression = TimestampExpression(is_end=is_end, allow_negative=True)
    state = expression.parse(text)
    if not state.valid:
        raise click.ClickException(f"Invalid timestamp: {state.invalid_reason}")
    if expression.is_advanced():
        click.echo(f"{expression} (references marker {state.marker_ref.key()}, offset {state.ms}ms)")
        return
    click.echo(f"{state.ms} ({ms_to_hms(state.ms)})")


if __name__ == "__main__":
    cli()
