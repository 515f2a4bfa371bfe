"""Command-line interface for Journeys."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Optional

import typer

from journeys import __version__
from journeys.config import (
    ClusteringOptions,
    JourneysConfig,
    Orientation,
    VideoOptions,
    load_user_settings,
    save_home,
)
from journeys.incremental import IncrementalBoundaryTracker
from journeys.models.schema import HomeLocation
from journeys.orchestrator import NO_IMAGES_FOUND, ClusteringOrchestrator
from journeys.stages.cluster import LoggingEventSink
from journeys.stages.compose import ChunkedVideoComposer
from journeys.stages.home import detect_home
from journeys.stages.music import MusicProvider
from journeys.store.local import FilesystemImageIndex, LocalFileStorage, LoggingNotifier
from journeys.store.sqlite import SQLiteStore
from journeys.utils.ffmpeg import FFmpegRunner, RenderError, RendererNotInstalledError
from journeys.utils.logging import configure_cli_logging
from journeys.utils.tools import detect_renderer
from journeys.video import ClusterNotFoundError, ClusterVideoService, NoImagesFoundError

app = typer.Typer(
    name="journeys",
    help="Discover trips in a photo library and render them as highlight videos.",
    add_completion=False,
    no_args_is_help=True,
)

renderer_logger = logging.getLogger("journeys.renderer")


@dataclass
class CliState:
    """Shared state for subcommands."""

    config: JourneysConfig
    quiet: bool = False
    verbose: bool = False


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"journeys {__version__}")
        raise typer.Exit()


def _fail(message: str) -> typer.Exit:
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    return typer.Exit(1)


def _open_store(config: JourneysConfig) -> SQLiteStore:
    return SQLiteStore(config.database_path)


def _parse_coordinates(value: str) -> tuple[float, float]:
    try:
        lat_text, lon_text = value.split(",")
        return float(lat_text), float(lon_text)
    except ValueError as e:
        raise typer.BadParameter(f"Expected LAT,LON but got {value!r}") from e


def _log_renderer_output(stream: str, line: str) -> None:
    if stream == "progress":
        renderer_logger.debug(line)
    else:
        renderer_logger.info(line)


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    data_dir: Annotated[
        Optional[Path],
        typer.Option(
            "--data-dir",
            "-d",
            help="Directory holding the state database (env: JOURNEYS_DATA_DIR)",
        ),
    ] = None,
    storage_root: Annotated[
        Optional[Path],
        typer.Option(
            "--storage-root",
            help="Root of per-user photo storage (env: JOURNEYS_STORAGE_ROOT)",
        ),
    ] = None,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Only show warnings, errors and results"),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug output, including split decisions"),
    ] = False,
) -> None:
    """Journeys: turn a photo timeline into trips and trip videos."""
    configure_cli_logging(quiet=quiet, verbose=verbose)
    config = JourneysConfig.from_env(
        data_dir=str(data_dir) if data_dir else None,
        storage_root=str(storage_root) if storage_root else None,
    )
    ctx.obj = CliState(config=config, quiet=quiet, verbose=verbose)


def _orchestrator(config: JourneysConfig, store: SQLiteStore) -> ClusteringOrchestrator:
    return ClusteringOrchestrator(
        index=FilesystemImageIndex(config.storage_root, config.secondary_roots),
        albums=store,
        boundaries=store,
        config_store=store,
        places=store,
        notifier=LoggingNotifier(),
        notification_link=config.notification_link,
    )


@app.command()
def cluster(
    ctx: typer.Context,
    user: Annotated[str, typer.Argument(help="User whose library is clustered")],
    from_scratch: Annotated[
        bool,
        typer.Option("--from-scratch", help="Delete tracked albums and re-cluster everything"),
    ] = False,
    home_aware: Annotated[
        Optional[bool],
        typer.Option("--home-aware/--flat", help="Use near/away thresholds (default: user setting)"),
    ] = None,
    time_gap: Annotated[
        int,
        typer.Option("--time-gap", help="Flat-mode maximum gap in seconds"),
    ] = 86400,
    distance: Annotated[
        float,
        typer.Option("--distance", help="Flat-mode maximum distance in km"),
    ] = 100.0,
    min_size: Annotated[
        int,
        typer.Option("--min-size", help="Smallest cluster turned into an album"),
    ] = 3,
    recent_days: Annotated[
        int,
        typer.Option("--recent-days", help="Skip clusters ending within the last N days"),
    ] = 0,
    home: Annotated[
        Optional[str],
        typer.Option("--home", help="Home location as LAT,LON for this run"),
    ] = None,
    home_radius: Annotated[
        float,
        typer.Option("--home-radius", help="Home radius in km"),
    ] = 50.0,
    secondary: Annotated[
        Optional[bool],
        typer.Option("--secondary/--no-secondary", help="Include secondary storage (default: user setting)"),
    ] = None,
) -> None:
    """Cluster one user's new photos into journey albums.

    Example:
        journeys cluster alice --recent-days 5
    """
    state: CliState = ctx.obj
    values: dict[str, object] = {
        "max_time_gap": time_gap,
        "max_distance_km": distance,
        "min_cluster_size": min_size,
        "recent_cutoff_days": recent_days,
        "from_scratch": from_scratch,
    }
    if home_aware is not None:
        values["home_aware"] = home_aware
    if secondary is not None:
        values["include_secondary_storage"] = secondary
    home_coordinates = _parse_coordinates(home) if home is not None else None

    try:
        if home_coordinates is not None:
            lat, lon = home_coordinates
            values["home"] = HomeLocation(lat=lat, lon=lon, radius_km=home_radius)
        options = ClusteringOptions(**values)
        with _open_store(state.config) as store:
            sink = LoggingEventSink() if state.verbose else None
            result = _orchestrator(state.config, store).run(user, options, sink=sink)
    except ValueError as e:
        raise _fail(str(e))
    except Exception as e:
        typer.secho(f"Unexpected error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    if result.error:
        typer.echo(f"{user}: {result.error}")
        return

    typer.echo(
        f"{user}: {result.processed_items} new items, {result.clusters_found} clusters, "
        f"{result.albums_created} album(s) created"
    )
    for album in result.albums:
        typer.echo(f"  [{album.album_id}] {album.name} ({album.item_count} items)")


@app.command("cluster-all")
def cluster_all(
    ctx: typer.Context,
    from_scratch: Annotated[
        bool,
        typer.Option("--from-scratch", help="Delete tracked albums and re-cluster everything"),
    ] = False,
) -> None:
    """Run the daily clustering job for every known user."""
    state: CliState = ctx.obj
    root = Path(state.config.storage_root)

    with _open_store(state.config) as store:
        users = set(store.list_users())
        if root.is_dir():
            users.update(p.name for p in root.iterdir() if p.is_dir())
        if not users:
            typer.echo("No users found")
            return

        options = ClusteringOptions.daily()
        if from_scratch:
            options = options.model_copy(update={"from_scratch": True})
        results = _orchestrator(state.config, store).run_for_users(
            sorted(users), options, show_progress=not state.quiet
        )

    failed = 0
    for user, result in results.items():
        if result.error and result.error != NO_IMAGES_FOUND:
            failed += 1
            typer.secho(f"{user}: failed: {result.error}", fg=typer.colors.RED, err=True)
        else:
            typer.echo(f"{user}: {result.albums_created} album(s) created")

    if failed:
        raise typer.Exit(1)


@app.command("list-clusters")
def list_clusters(
    ctx: typer.Context,
    user: Annotated[str, typer.Argument(help="User to list")],
) -> None:
    """List a user's journey albums with their time boundaries."""
    state: CliState = ctx.obj
    with _open_store(state.config) as store:
        albums = store.list_albums(user)
        records = {record.album_id: record for record in store.list_records(user)}

    if not albums:
        typer.echo(f"No journey albums for {user}")
        return

    for position, album in enumerate(albums, start=1):
        record = records.get(album.album_id)
        span = ""
        if record is not None and record.start and record.end:
            span = f"  {record.start:%Y-%m-%d %H:%M} -> {record.end:%Y-%m-%d %H:%M}"
        typer.echo(f"{position:3d}. [{album.album_id}] {album.name} ({album.item_count} items){span}")


@app.command("latest-end")
def latest_end(
    ctx: typer.Context,
    user: Annotated[str, typer.Argument(help="User to inspect")],
) -> None:
    """Show the timestamp up to which photos were already clustered."""
    state: CliState = ctx.obj
    config = state.config
    with _open_store(config) as store:
        tracker = IncrementalBoundaryTracker(store, store)
        items = ()
        if store.max_end(user) is None:
            items = FilesystemImageIndex(config.storage_root, config.secondary_roots).fetch_for_user(
                user, include_secondary=True
            )
        mark = tracker.low_water_mark(user, items)

    typer.echo(mark.isoformat() if mark else "none")


@app.command("remove-albums")
def remove_albums(
    ctx: typer.Context,
    user: Annotated[str, typer.Argument(help="User whose journey albums are removed")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation")] = False,
) -> None:
    """Delete every journey album of a user and forget the clustering state."""
    state: CliState = ctx.obj
    if not yes:
        typer.confirm(f"Delete all journey albums of {user}?", abort=True)

    with _open_store(state.config) as store:
        removed = IncrementalBoundaryTracker(store, store).reset(user)
    typer.echo(f"Removed {removed} album(s)")


def _video_service(config: JourneysConfig, store: SQLiteStore, show_progress: bool) -> ClusterVideoService:
    storage = LocalFileStorage(config.storage_root, config.secondary_roots)
    composer = ChunkedVideoComposer(
        runner=FFmpegRunner(ffmpeg=config.ffmpeg_binary, ffprobe=config.ffprobe_binary),
        music=MusicProvider(config.music_dir, config.music_urls, config.get_music_cache_dir()),
        storage=storage,
        title_font=config.title_font,
        show_progress=show_progress,
    )
    return ClusterVideoService(
        index=FilesystemImageIndex(config.storage_root, config.secondary_roots),
        albums=store,
        storage=storage,
        composer=composer,
        faces=store,
        config_store=store,
    )


@app.command()
def playlist(
    ctx: typer.Context,
    user: Annotated[str, typer.Argument(help="Owner of the library")],
    number: Annotated[int, typer.Argument(help="1-based cluster number")],
    output: Annotated[
        Path,
        typer.Option("--output", "-o", help="Playlist file to write"),
    ] = Path("journey.m3u"),
    max_images: Annotated[int, typer.Option("--max-images", help="Maximum items listed")] = 80,
) -> None:
    """Write the story selection of a cluster as an M3U playlist.

    Example:
        journeys playlist alice 3 -o lisbon.m3u
    """
    state: CliState = ctx.obj
    config = state.config
    storage = LocalFileStorage(config.storage_root, config.secondary_roots)

    try:
        with _open_store(config) as store:
            service = _video_service(config, store, show_progress=False)
            selection = service.select_for_cluster_index(
                user, number, VideoOptions(max_images=max_images), include_secondary=True
            )
        path = service.write_playlist(selection, output, lambda p: str(storage.resolve(user, p)))
    except ClusterNotFoundError as e:
        typer.secho(f"Not found: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except NoImagesFoundError as e:
        raise _fail(str(e))

    typer.echo(f"{selection.cluster_name}: {selection.selected_count} items written to {path}")


@app.command()
def render(
    ctx: typer.Context,
    user: Annotated[str, typer.Argument(help="Owner of the album")],
    album_id: Annotated[int, typer.Argument(help="Album id, as shown by list-clusters")],
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Output file (default: the user's Journeys Movies folder)"),
    ] = None,
    landscape: Annotated[
        bool,
        typer.Option("--landscape", help="Render a 16:9 video from landscape photos only"),
    ] = False,
    duration: Annotated[
        float,
        typer.Option("--duration", help="Seconds per image"),
    ] = 2.5,
    width: Annotated[
        int,
        typer.Option("--width", help="Long edge of the video in pixels"),
    ] = 1920,
    fps: Annotated[int, typer.Option("--fps", help="Frame rate")] = 30,
    max_images: Annotated[int, typer.Option("--max-images", help="Maximum images in the video")] = 80,
    audio: Annotated[bool, typer.Option("--audio/--no-audio", help="Add background music")] = True,
    motion: Annotated[bool, typer.Option("--motion/--no-motion", help="Use motion photo clips")] = True,
    title: Annotated[
        Optional[bool],
        typer.Option("--title/--no-title", help="Show the journey name (default: user setting)"),
    ] = None,
    boost_faces: Annotated[
        Optional[bool],
        typer.Option("--boost-faces/--no-boost-faces", help="Prefer photos with faces (default: user setting)"),
    ] = None,
) -> None:
    """Render a journey album into a highlight video.

    Example:
        journeys render alice 4 --landscape -o lisbon.mp4
    """
    state: CliState = ctx.obj
    values: dict[str, object] = {
        "duration_per_image": duration,
        "width": width,
        "fps": fps,
        "max_images": max_images,
        "include_audio": audio,
        "include_motion": motion,
        "orientation": Orientation.LANDSCAPE if landscape else Orientation.PORTRAIT,
        "renderer_verbose": state.verbose,
    }
    if title is not None:
        values["show_title"] = title
    if boost_faces is not None:
        values["boost_faces"] = boost_faces

    try:
        options = VideoOptions(**values)
        with _open_store(state.config) as store:
            service = _video_service(state.config, store, show_progress=not state.quiet)
            result = service.render_for_album(
                user, album_id, options, output_path=output, on_output=_log_renderer_output
            )
    except ClusterNotFoundError as e:
        typer.secho(f"Not found: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except RendererNotInstalledError as e:
        raise _fail(str(e))
    except RenderError as e:
        raise _fail(f"Render failed: {e}")
    except (NoImagesFoundError, ValueError) as e:
        raise _fail(str(e))
    except Exception as e:
        typer.secho(f"Unexpected error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    location = "stored at" if result.stored_in_user_files else "written to"
    typer.echo(
        f"Video {location}: {result.path} "
        f"({result.duration:.1f}s, {result.width}x{result.height}, {result.segment_count} segments)"
    )


@app.command()
def home(
    ctx: typer.Context,
    user: Annotated[str, typer.Argument(help="User whose home is shown or changed")],
    set_home: Annotated[
        Optional[str],
        typer.Option("--set", help="Store a home location as LAT,LON"),
    ] = None,
    radius: Annotated[float, typer.Option("--radius", help="Home radius in km")] = 50.0,
    name: Annotated[Optional[str], typer.Option("--name", help="Display name of the home")] = None,
    detect: Annotated[
        bool,
        typer.Option("--detect", help="Detect the home from the photo library and store it"),
    ] = False,
) -> None:
    """Show, set or detect a user's home location."""
    state: CliState = ctx.obj
    config = state.config

    with _open_store(config) as store:
        if set_home is not None:
            lat, lon = _parse_coordinates(set_home)
            try:
                location = HomeLocation(lat=lat, lon=lon, radius_km=radius, name=name)
            except ValueError as e:
                raise _fail(str(e))
            save_home(store, user, location)
        elif detect:
            items = FilesystemImageIndex(config.storage_root, config.secondary_roots).fetch_for_user(user)
            location = detect_home(items, resolver=store, radius_km=radius)
            if location is None:
                raise _fail(f"No geotagged photos for {user}")
            save_home(store, user, location)
        else:
            location = load_user_settings(store, user).home

    if location is None:
        typer.echo(f"No home set for {user}")
        return
    label = f" ({location.name})" if location.name else ""
    typer.echo(f"{location.lat:.5f},{location.lon:.5f} radius {location.radius_km:g} km{label}")


@app.command()
def info(ctx: typer.Context) -> None:
    """Show configuration and detected renderer."""
    state: CliState = ctx.obj
    config = state.config
    typer.echo(f"Journeys v{__version__}")
    typer.echo("")
    typer.echo("Configuration:")
    typer.echo(f"  Database: {config.database_path}")
    typer.echo(f"  Storage root: {config.storage_root}")
    if config.secondary_roots:
        typer.echo(f"  Secondary storage: {', '.join(config.secondary_roots)}")
    typer.echo(f"  Music: {config.music_dir or 'none'} ({len(config.music_urls)} URLs)")

    renderer = detect_renderer(config.ffmpeg_binary, config.ffprobe_binary)
    typer.echo("")
    typer.echo("Renderer:")
    typer.echo(f"  ffmpeg: {renderer.ffmpeg_version or 'not found'}")
    typer.echo(f"  ffprobe: {renderer.ffprobe_version or 'not found'}")
    if not renderer.is_available:
        typer.echo("")
        typer.echo("Video rendering is unavailable until ffmpeg and ffprobe are installed.")


if __name__ == "__main__":
    app()
