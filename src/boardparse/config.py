"""Configuration loader for boardparse.toml."""

import logging
import threading
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .core.board import BoardConfig, BoardSnapshot, NestingPolicy
from .core.errors import ConfigError
from .core.pipeline import SyncMode
from .core.ports import BoardConfigSource

log = logging.getLogger(__name__)

CONFIG_NAME = "boardparse.toml"

BOARD_KEYS = {
    "allowed_markup",
    "reference_sigil",
    "nesting_policy",
    "max_nesting_depth",
    "max_body_length",
    "delimiters",
}


@dataclass
class StorageConfig:
    """Where the SQLite store lives."""
    db: Path = Path("boardparse.sqlite")


@dataclass
class SyncConfig:
    """What to do when a backlink sync fails."""
    mode: SyncMode = SyncMode.STRICT


@dataclass
class WatchConfig:
    """Config hot-reload settings."""
    debounce_ms: int = 150


@dataclass
class AppConfig:
    """Complete boardparse configuration."""
    path: Path | None = None
    storage: StorageConfig = field(default_factory=StorageConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    boards: BoardSnapshot = field(default_factory=BoardSnapshot)


def _positive_int(value: Any, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer, got {value!r}")
    if value < 1:
        raise ConfigError(f"{key} must be positive, got {value}")
    return value


def _board_config(data: Any, base: BoardConfig, name: str) -> BoardConfig:
    """Overlay one [boards.*] table on top of base."""
    if not isinstance(data, dict):
        raise ConfigError(f"[boards.{name}] must be a table")

    unknown = set(data) - BOARD_KEYS
    if unknown:
        raise ConfigError(f"[boards.{name}] has unknown keys: {', '.join(sorted(unknown))}")

    changes: dict[str, Any] = {}

    if "allowed_markup" in data:
        kinds = data["allowed_markup"]
        if not isinstance(kinds, list) or not all(isinstance(k, str) for k in kinds):
            raise ConfigError(f"[boards.{name}] allowed_markup must be a list of strings")
        changes["allowed_markup"] = frozenset(kinds)

    if "reference_sigil" in data:
        if not isinstance(data["reference_sigil"], str):
            raise ConfigError(f"[boards.{name}] reference_sigil must be a string")
        changes["reference_sigil"] = data["reference_sigil"]

    if "nesting_policy" in data:
        try:
            changes["nesting_policy"] = NestingPolicy(data["nesting_policy"])
        except ValueError as e:
            raise ConfigError(
                f"[boards.{name}] nesting_policy must be 'reject' or 'allow'"
            ) from e

    for key in ("max_nesting_depth", "max_body_length"):
        if key in data:
            changes[key] = _positive_int(data[key], f"[boards.{name}] {key}")

    if "delimiters" in data:
        table = data["delimiters"]
        if not isinstance(table, dict):
            raise ConfigError(f"[boards.{name}.delimiters] must be a table")
        delimiters = dict(base.delimiters)
        for kind, pair in table.items():
            if not isinstance(pair, list):
                raise ConfigError(f"[boards.{name}.delimiters] {kind} must be [open, close]")
            delimiters[kind] = tuple(pair)
        changes["delimiters"] = delimiters

    # replace() re-runs BoardConfig validation
    return replace(base, **changes)


def parse_boards(data: dict[str, Any]) -> BoardSnapshot:
    """
    Build a snapshot from the [boards] table.

    [boards.defaults] overlays the built-in defaults; every other
    [boards.<id>] overlays the resulting defaults.
    """
    if not isinstance(data, dict):
        raise ConfigError("[boards] must be a table")
    defaults = _board_config(data.get("defaults", {}), BoardConfig(), "defaults")
    boards = {
        str(board_id): _board_config(table, defaults, str(board_id))
        for board_id, table in data.items()
        if board_id != "defaults"
    }
    return BoardSnapshot(defaults=defaults, boards=boards)


def _section(toml_data: dict[str, Any], name: str) -> dict[str, Any]:
    data = toml_data.get(name, {})
    if not isinstance(data, dict):
        raise ConfigError(f"[{name}] must be a table")
    return data


def parse_config(toml_data: dict[str, Any], path: Path | None = None) -> AppConfig:
    # Parse storage config
    storage_data = _section(toml_data, "storage")
    db_value = storage_data.get("db", StorageConfig.db)
    if not isinstance(db_value, (str, Path)):
        raise ConfigError(f"[storage] db must be a path string, got {db_value!r}")
    db = Path(db_value)
    if path is not None and not db.is_absolute():
        db = path.parent / db

    # Parse sync config
    sync_data = _section(toml_data, "sync")
    try:
        mode = SyncMode(sync_data.get("mode", SyncMode.STRICT.value))
    except ValueError as e:
        raise ConfigError("[sync] mode must be 'strict' or 'eventual'") from e

    # Parse watch config
    watch_data = _section(toml_data, "watch")
    debounce_ms = _positive_int(watch_data.get("debounce_ms", 150), "[watch] debounce_ms")

    return AppConfig(
        path=path,
        storage=StorageConfig(db=db),
        sync=SyncConfig(mode=mode),
        watch=WatchConfig(debounce_ms=debounce_ms),
        boards=parse_boards(toml_data.get("boards", {})),
    )


def find_config(config_path: Path | None = None) -> Path | None:
    """
    Search order:
    1. config_path (if provided)
    2. cwd/boardparse.toml
    """
    search_paths = []
    if config_path:
        search_paths.append(config_path)
    search_paths.append(Path.cwd() / CONFIG_NAME)

    for path in search_paths:
        if path.exists():
            return path
    return None


def load_config(config_path: Path | None = None) -> AppConfig:
    """
    Load configuration from boardparse.toml, falling back to defaults.

    Raises:
        ConfigError: the file exists but is not valid
    """
    path = find_config(config_path)
    if path is None:
        return AppConfig()

    try:
        with open(path, "rb") as f:
            toml_data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{path}: {e}") from e

    return parse_config(toml_data, path)


class ConfigProvider(BoardConfigSource):
    """
    Holds the current board snapshot and swaps it on reload.

    Readers grab snapshot() once and keep using it, so a reload never
    changes the grammar under an in-flight parse.
    """

    def __init__(self, snapshot: BoardSnapshot | None = None, path: Path | None = None):
        self._snapshot = snapshot or BoardSnapshot()
        self.path = path
        self._reload_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: AppConfig) -> "ConfigProvider":
        return cls(config.boards, config.path)

    def snapshot(self) -> BoardSnapshot:
        return self._snapshot

    def get_board_config(self, board_id: str) -> BoardConfig:
        return self._snapshot.for_board(board_id)

    def reload(self) -> bool:
        """Re-read the config file; keep the old snapshot if it is invalid."""
        if self.path is None:
            return False
        with self._reload_lock:
            if not self.path.exists():
                log.warning("Config file %s disappeared, keeping previous", self.path)
                return False
            try:
                config = load_config(self.path)
            except (ConfigError, OSError) as e:
                log.warning("Config reload from %s failed, keeping previous: %s", self.path, e)
                return False
            self._snapshot = config.boards
        log.info("Reloaded board config from %s", self.path)
        return True
