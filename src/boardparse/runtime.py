"""Runtime wiring helper for CLI applications."""

from dataclasses import dataclass
from pathlib import Path

from .adapters.sqlite_gateway import SQLiteGateway
from .config import AppConfig, ConfigProvider, load_config
from .core.pipeline import PostParser


@dataclass
class Runtime:
    """Container for all wired components."""
    config: AppConfig
    provider: ConfigProvider
    gateway: SQLiteGateway
    parser: PostParser


def build_runtime(
    config_path: Path | None = None,
    db_path: Path | None = None,
) -> Runtime:
    """Build and wire all components."""
    config = load_config(config_path=config_path)

    # Use config values if CLI args not provided
    if db_path is None:
        db_path = config.storage.db

    provider = ConfigProvider.from_config(config)
    gateway = SQLiteGateway(db_path=db_path)
    parser = PostParser(provider, gateway, sync_mode=config.sync.mode)

    return Runtime(
        config=config,
        provider=provider,
        gateway=gateway,
        parser=parser,
    )
