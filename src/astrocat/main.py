# astrocat/main.py
import logging
import os
from pathlib import Path
from typing import Optional, Tuple

import click

from . import config, log_manager
from .errors import AstrocatError


def setup_logging(database_path: str):
    """Sets up logging to a file next to the catalog database for warnings and errors."""
    log_file = Path(database_path).expanduser().parent / "astrocat.log"
    log_file.parent.mkdir(parents=True, exist_ok=True)
    # Use a custom handler to prevent huge log files from repetitive errors.
    handler = log_manager.DeduplicatingLogHandler(log_file, mode='a')
    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(name)s - %(message)s')
    handler.setFormatter(formatter)

    # Configure the root logger
    logging.basicConfig(level=logging.WARNING, handlers=[handler])


class CliState:
    """The loaded configuration and where it should be saved back to."""

    def __init__(self, cfg: config.Config, config_path: Optional[Path]):
        self.config = cfg
        self.config_path = config_path or (config.get_app_dir() / config.CONFIG_FILE_NAME)

    def save(self) -> None:
        config.save_config(self.config, self.config_path)

    def open_app(self):
        from .app import CatalogApp
        try:
            return CatalogApp(self.config).open()
        except AstrocatError as e:
            raise click.ClickException(str(e))

    def open_repository(self):
        from .database import init_db
        from .repository import FileRepository
        try:
            database = init_db(self.config.database_path)
        except AstrocatError as e:
            raise click.ClickException(str(e))
        return FileRepository(database, self.config.filter_stat_keys)


@click.group()
@click.option('--config', 'config_file', type=click.Path(dir_okay=False, path_type=Path),
              help='Path to astrocat.toml. Defaults to ./astrocat.toml, then the user app directory.')
@click.pass_context
def cli(ctx: click.Context, config_file: Optional[Path]):
    """Catalogs astronomical images (FITS, XISF and common raster formats)."""
    cfg, config_path = config.load_config_with_path(config_file)
    ctx.obj = CliState(cfg, config_path or config_file)
    setup_logging(cfg.database_path)


@cli.command(name="import")
@click.argument('paths', nargs=-1, required=True, type=click.Path(exists=True, resolve_path=True))
@click.pass_obj
def import_files(state: CliState, paths: Tuple[str, ...]):
    """
    Imports files and folders into the catalog.

    Folders become search roots (saved to the config); single files add
    their parent folder.
    """
    from tqdm import tqdm

    app = state.open_app()
    roots = [p if os.path.isdir(p) else os.path.dirname(p) for p in paths]
    for root in app.catalog.add_search_folder(roots):
        click.echo(f"Added search root {root}")
    state.config.search_roots = app.catalog.search_folders()
    state.save()

    try:
        with tqdm(desc="Importing", unit=" files") as pbar:
            app.importer.astrofile_imported.connect(lambda astro_file: pbar.update(1))
            app.importer.astrofile_is_in_catalog.connect(lambda path: pbar.update(1))
            app.import_paths(paths)
            try:
                while not app.wait_for_import(timeout=0.2):
                    pbar.set_postfix(queue=app.db_service.queue_length, refresh=False)
            except KeyboardInterrupt:
                tqdm.write(click.style("Canceling import...", fg="yellow"))
                app.cancel_import()
        stats = app.importer.stats
        click.echo(
            f"Found {stats['found']}, imported {stats['imported']}, failed {stats['failed']}, "
            f"already current {stats['in_catalog']}."
        )
        if stats["failed"]:
            click.echo(click.style(f"{stats['failed']} file(s) could not be decoded; see astrocat.log.", fg="red"))
    finally:
        app.close()


@cli.group()
def roots():
    """Manages the catalog's search roots."""
    pass


@roots.command(name="add")
@click.argument('folders', nargs=-1, required=True, type=click.Path(exists=True, file_okay=False, resolve_path=True))
@click.pass_obj
def roots_add(state: CliState, folders: Tuple[str, ...]):
    """Adds search roots without importing them."""
    for folder in folders:
        if folder in state.config.search_roots:
            click.echo(f"Already a search root: {folder}")
            continue
        state.config.search_roots.append(folder)
        click.echo(f"Added search root {folder}")
    state.save()


@roots.command(name="remove")
@click.argument('folder', type=click.Path(resolve_path=True))
@click.pass_obj
def roots_remove(state: CliState, folder: str):
    """Removes a search root and every catalog entry under it."""
    if folder not in state.config.search_roots:
        raise click.ClickException(f"Not a search root: {folder}")
    app = state.open_app()
    try:
        removed = app.remove_folder(folder)
    finally:
        app.close()
    state.config.search_roots.remove(folder)
    state.save()
    click.echo(f"Removed search root {folder} ({len(removed)} catalog entries).")


@roots.command(name="list")
@click.pass_obj
def roots_list(state: CliState):
    """Lists the search roots."""
    if not state.config.search_roots:
        click.echo("No search roots configured.")
        return
    for folder in state.config.search_roots:
        click.echo(folder)


@cli.command(name="remove")
@click.argument('path', type=click.Path(resolve_path=True))
@click.pass_obj
def remove(state: CliState, path: str):
    """Removes one file from the catalog. The file on disk is left alone."""
    app = state.open_app()
    try:
        astro_file = app.catalog.get_astrofile_by_path(path)
        if astro_file is None:
            raise click.ClickException(f"Not in catalog: {path}")
        app.remove_astrofile(astro_file)
    finally:
        app.close()
    click.echo(f"Removed {path} from the catalog.")


@cli.command(name="list")
@click.option('--ext', 'file_extension', help='Only files with this extension (e.g. fits).')
@click.option('--tag', 'tags', multiple=True, help='KEY=VALUE tag filter. Can be used multiple times.')
@click.option('--json', 'as_json', is_flag=True, help='Print JSON instead of a table.')
@click.pass_obj
def list_files(state: CliState, file_extension: Optional[str], tags: Tuple[str, ...], as_json: bool):
    """Lists catalog entries matching all given filters."""
    from .filtering import FilterQuery
    from .reporter import Reporter, parse_tag_filters
    query = FilterQuery(file_extension, parse_tag_filters(tags))
    reporter = Reporter(state.open_repository())
    reporter.list_files(query, as_json=as_json)


@cli.command(name="stats")
@click.option('--ext', 'file_extension', help='Only files with this extension (e.g. fits).')
@click.option('--tag', 'tags', multiple=True, help='KEY=VALUE tag filter. Can be used multiple times.')
@click.pass_obj
def stats(state: CliState, file_extension: Optional[str], tags: Tuple[str, ...]):
    """Shows extension and tag-value counts for the entries matching the filters."""
    from .filtering import FilterQuery
    from .reporter import Reporter, parse_tag_filters
    query = FilterQuery(file_extension, parse_tag_filters(tags))
    reporter = Reporter(state.open_repository())
    reporter.stats(query)


@cli.command(name="find-dupes")
@click.option('--by', type=click.Choice(["file", "image"]), default="file", show_default=True,
              help='Compare whole-file hashes or decoded pixel hashes.')
@click.pass_obj
def find_dupes(state: CliState, by: str):
    """Finds catalog entries with identical content."""
    from .reporter import Reporter
    reporter = Reporter(state.open_repository())
    reporter.find_dupes(by=by)


@cli.command(name="info")
@click.argument('path', type=click.Path(resolve_path=True))
@click.pass_obj
def info(state: CliState, path: str):
    """Shows one catalog entry and its tags."""
    from .reporter import Reporter
    reporter = Reporter(state.open_repository())
    if reporter.show_info(path) is None:
        raise SystemExit(1)


if __name__ == "__main__":
    cli()
