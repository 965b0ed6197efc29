# astrocat/reporter.py
from typing import Dict, List, Optional, Sequence, Tuple

import click
import orjson

from .filtering import FilterQuery, stats_to_dict
from .models import AstroFile
from .repository import FileRepository


def astrofile_to_dict(astro_file: AstroFile) -> Dict:
    return {
        "id": astro_file.id,
        "file_name": astro_file.file_name,
        "full_path": astro_file.full_path,
        "directory_path": astro_file.directory_path,
        "volume_name": astro_file.volume_name,
        "volume_root": astro_file.volume_root,
        "file_extension": astro_file.file_extension,
        "file_type": astro_file.file_type.value if astro_file.file_type else None,
        "created_time": astro_file.created_time,
        "last_modified_time": astro_file.last_modified_time,
        "file_hash": astro_file.file_hash,
        "image_hash": astro_file.image_hash,
        "tag_status": astro_file.tag_status.name,
        "thumbnail_status": astro_file.thumbnail_status.name,
        "process_status": astro_file.process_status.name,
        "tags": astro_file.tags,
    }


class Reporter:
    """Handles querying the catalog database and reporting results."""

    def __init__(self, repository: FileRepository):
        self.repository = repository

    def find_dupes(self, by: str = "file", print_output: bool = True) -> List[List[AstroFile]]:
        """Finds catalog rows with identical file bytes (or identical decoded pixels)."""
        if by == "image":
            click.echo("Querying for duplicate images by pixel hash...")
            groups = self.repository.get_duplicate_files_by_image_hash()
            hash_attr = "image_hash"
        else:
            click.echo("Querying for duplicate files by file hash...")
            groups = self.repository.get_duplicate_files_by_file_hash()
            hash_attr = "file_hash"

        if not groups:
            click.echo("No duplicate files found.")
            return []

        if print_output:
            for i, files in enumerate(groups, 1):
                hash_val = getattr(files[0], hash_attr)
                click.echo(f"\n--- Set {i} ({len(files)} files, hash: {hash_val}) ---")
                click.echo(click.style(f"  Source: {files[0].full_path}", fg="green"))
                for file in files[1:]:
                    click.echo(f"  - Dup:  {file.full_path}")
        return groups

    def _filtered(self, query: FilterQuery) -> List[AstroFile]:
        ids = self.repository.load_astrofiles(query.file_extension, query.filters)
        astro_files = [af for af in self.repository.load_model() if af.id in ids]
        astro_files.sort(key=lambda af: (af.created_time, af.id))
        return astro_files

    def list_files(self, query: FilterQuery, as_json: bool = False, print_output: bool = True) -> List[AstroFile]:
        """Lists the rows accepted by a filter query."""
        astro_files = self._filtered(query)
        if not print_output:
            return astro_files
        if as_json:
            click.echo(orjson.dumps([astrofile_to_dict(af) for af in astro_files], option=orjson.OPT_INDENT_2).decode())
            return astro_files
        if not astro_files:
            click.echo("No files match.")
            return astro_files
        click.echo(f"{'Id':>6} | {'Object':<20} | {'Filter':<8} | {'Type':<5} | Path")
        click.echo("-" * 86)
        for af in astro_files:
            click.echo(f"{af.id:>6} | {af.tag('OBJECT'):<20} | {af.tag('FILTER'):<8} | {af.file_extension:<5} | {af.full_path}")
        click.echo(f"\n{len(astro_files)} file(s).")
        return astro_files

    def stats(self, query: FilterQuery, print_output: bool = True) -> Tuple[Dict[str, Dict[str, int]], Dict[str, int]]:
        """Shows tag-value counts and extension counts under a filter query."""
        tag_stats = stats_to_dict(self.repository.load_filter_stats(query.file_extension, query.filters))
        extension_stats = self.repository.load_file_extension_stats(query.file_extension, query.filters)
        if print_output:
            if not extension_stats:
                click.echo("No files found in the catalog.")
                return tag_stats, extension_stats
            click.echo(f"{'Extension':<20} | {'Count':>10}")
            click.echo("-" * 33)
            for ext, count in sorted(extension_stats.items()):
                click.echo(f"{ext:<20} | {count:>10}")
            for key, values in tag_stats.items():
                click.echo(click.style(f"\n{key}", bold=True))
                for value, count in sorted(values.items()):
                    click.echo(f"  {value:<40} | {count:>10}")
        return tag_stats, extension_stats

    def show_info(self, path: str, print_output: bool = True) -> Optional[AstroFile]:
        """Shows one row and its tags."""
        astro_file = self.repository.get_astrofile(path)
        if astro_file is None:
            click.echo(f"Not in catalog: {path}", err=True)
            return None
        if print_output:
            for key, value in astrofile_to_dict(astro_file).items():
                if key != "tags":
                    click.echo(f"{key:<20}: {value}")
            click.echo(click.style("Tags:", bold=True))
            for key, value in astro_file.tags.items():
                click.echo(f"  {key:<18}= {value}")
        return astro_file


def parse_tag_filters(tags: Sequence[str]) -> List[Tuple[str, str]]:
    """'OBJECT=M31' -> ('OBJECT', 'M31')."""
    filters = []
    for tag in tags:
        key, sep, value = tag.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"Expected KEY=VALUE, got '{tag}'", param_hint="--tag")
        filters.append((key, value))
    return filters
