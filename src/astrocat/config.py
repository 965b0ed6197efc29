# astrocat/config.py
import tomllib
import tomli_w
import attrs
import click
from pathlib import Path
from typing import Any, Dict, List, Optional

APP_NAME = "astrocat"
CONFIG_FILE_NAME = "astrocat.toml"
DATABASE_FILE_NAME = "astrocat.db"

# Tag keys whose values drive the filter checkboxes.
DEFAULT_FILTER_STAT_KEYS = ["OBJECT", "INSTRUME", "FILTER"]


def get_app_dir() -> Path:
    """Returns the per-user application-data directory (not created here)."""
    return Path(click.get_app_dir(APP_NAME))


def default_database_path() -> str:
    return str(get_app_dir() / DATABASE_FILE_NAME)


@attrs.define(slots=True)
class Config:
    """Structured configuration for the astrocat catalog."""
    workers: int = 3
    database_path: str = attrs.field(factory=default_database_path)
    search_roots: List[str] = attrs.field(factory=list)
    thumbnail_size: int = 200
    tiny_thumbnail_size: int = 20
    display_thumbnail_size: int = 400
    thumbnail_cache_size: int = 500
    coalesce_interval_ms: int = 500
    queue_size: int = 1000
    filter_stat_keys: List[str] = attrs.field(factory=lambda: list(DEFAULT_FILTER_STAT_KEYS))


def find_config_path() -> Optional[Path]:
    """
    Looks for 'astrocat.toml' in the current directory first, then in the
    per-user application directory.
    """
    for directory in (Path.cwd(), get_app_dir()):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate
    return None


def load_config_with_path(config_path: Optional[Path] = None) -> tuple[Config, Optional[Path]]:
    """
    Loads configuration from 'astrocat.toml'.
    If not found, it returns a default configuration and None for the path.
    Returns a tuple of (Config, Optional[Path]).
    """
    config_path = config_path or find_config_path()

    config_data: Dict[str, Any] = {}
    if config_path and config_path.is_file():
        with config_path.open("rb") as f:
            config_data = tomllib.load(f)

    # Get the [tool.astrocat] table from the TOML file
    astrocat_config = config_data.get("tool", {}).get(APP_NAME, {})

    # Resolve the database path to be absolute relative to the config file
    db_path_str = astrocat_config.get("database_path", default_database_path())
    if config_path and not Path(db_path_str).expanduser().is_absolute():
        db_path_str = str((config_path.parent / db_path_str).resolve())
    else:
        db_path_str = str(Path(db_path_str).expanduser())

    search_roots = []
    for root in astrocat_config.get("search_roots", []):
        resolved = str(Path(root).expanduser().resolve())
        if resolved not in search_roots:
            search_roots.append(resolved)

    loaded_config = Config(
        workers=astrocat_config.get("workers", 3),
        database_path=db_path_str,
        search_roots=search_roots,
        thumbnail_size=astrocat_config.get("thumbnail_size", 200),
        tiny_thumbnail_size=astrocat_config.get("tiny_thumbnail_size", 20),
        display_thumbnail_size=astrocat_config.get("display_thumbnail_size", 400),
        thumbnail_cache_size=astrocat_config.get("thumbnail_cache_size", 500),
        coalesce_interval_ms=astrocat_config.get("coalesce_interval_ms", 500),
        queue_size=astrocat_config.get("queue_size", 1000),
        filter_stat_keys=astrocat_config.get("filter_stat_keys", list(DEFAULT_FILTER_STAT_KEYS)),
    )
    return loaded_config, config_path


def load_config() -> Config:
    """
    Loads configuration from 'astrocat.toml'.
    This is a convenience wrapper around load_config_with_path.
    """
    return load_config_with_path()[0]


def config_to_dict(cfg: Config) -> Dict[str, Any]:
    """Converts a Config object to a dictionary suitable for TOML serialization."""
    data = attrs.asdict(cfg)
    # Filter out None values to prevent serialization errors with tomli-w
    return {k: v for k, v in data.items() if v is not None}


def save_config(cfg: Config, path: Path) -> None:
    """
    Writes the config under [tool.astrocat], preserving any other tables
    already present in the file.
    """
    full_toml_data: Dict[str, Any] = {}
    if path.is_file():
        with path.open("rb") as f:
            full_toml_data = tomllib.load(f)
    full_toml_data.setdefault("tool", {})[APP_NAME] = config_to_dict(cfg)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        tomli_w.dump(full_toml_data, f)
