"""
Configuration management for catalog stores.

The configuration is stored as a TOML file in the store directory.
It specifies tag policy, how imported files are kept, and which
external viewer opens documents.
"""

import os
import platform
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import tomli_w


CONFIG_FILENAME = "odinsource.toml"
CONFIG_VERSION = 1
DATABASE_FILENAME = "odinsource.db"
DOCUMENTS_DIRNAME = "documents"
DEFAULT_EXTENSIONS = ["pdf"]


def default_viewer_command() -> str:
    """Platform default for opening a file with its associated application."""
    system = platform.system()
    if system == "Darwin":
        return "open"
    if system == "Windows":
        return "explorer"
    return "xdg-open"


def get_default_store_path() -> Path:
    """Store directory from ODINSOURCE_STORE_PATH, else ~/.odinsource."""
    env = os.environ.get("ODINSOURCE_STORE_PATH")
    if env:
        return Path(env).expanduser().resolve()
    return Path.home() / ".odinsource"


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    # Unknown tag names are created on first use; False rejects them
    auto_create_tags: bool = True

    # Keep a copy of every imported file under <store>/documents
    copy_files: bool = True
    extensions: list[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))

    viewer_command: str = field(default_factory=default_viewer_command)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def database_path(self) -> Path:
        return self.path / DATABASE_FILENAME

    @property
    def documents_dir(self) -> Path:
        return self.path / DOCUMENTS_DIRNAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid config {config_path}: {e}") from e

    # Validate version
    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    tags = data.get("tags", {})
    documents = data.get("documents", {})
    viewer = data.get("viewer", {})

    extensions = documents.get("extensions", DEFAULT_EXTENSIONS)
    if not isinstance(extensions, list) or not all(isinstance(e, str) for e in extensions):
        raise ValueError(f"Invalid config {config_path}: documents.extensions must be a list of strings")

    return StoreConfig(
        path=store_path,
        version=version,
        created=data.get("store", {}).get("created", ""),
        auto_create_tags=bool(tags.get("auto_create", True)),
        copy_files=bool(documents.get("copy_files", True)),
        extensions=[e.lower().lstrip(".") for e in extensions],
        viewer_command=viewer.get("command") or default_viewer_command(),
    )


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist. Written to a temporary file
    first and moved into place, so a crash never leaves a truncated config.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "tags": {
            "auto_create": config.auto_create_tags,
        },
        "documents": {
            "copy_files": config.copy_files,
            "extensions": list(config.extensions),
        },
        "viewer": {
            "command": config.viewer_command,
        },
    }

    tmp_path = config.config_path.with_suffix(".toml.tmp")
    with open(tmp_path, "wb") as f:
        tomli_w.dump(data, f)
    os.replace(tmp_path, config.config_path)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    else:
        config = StoreConfig(path=store_path)
        save_config(config)
        return config
