"""
Configuration loader for the media side-channel.
Loads from config.yaml and allows CLI argument overrides.
"""

import yaml
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


@dataclass
class ToolsConfig:
    ffmpeg_path: Optional[str] = None   # None = search app folder + PATH
    ffprobe_path: Optional[str] = None
    validate_timeout: float = 2.0


@dataclass
class ThumbnailConfig:
    enabled: bool = True
    interval_ms: int = 10000
    max_cache_size: int = 60
    width: int = 200
    height: int = 112
    quality: int = 5
    generation_timeout: float = 3.0
    guard_wait: float = 0.05
    pre_seek_ms: int = 15000
    temp_dir: Optional[str] = None


@dataclass
class SubtitleConfig:
    probe_timeout: float = 10.0
    extract_timeout: float = 30.0


@dataclass
class SyncConfig:
    tick_interval: float = 0.1
    hover_debounce: float = 0.15
    seek_tolerance_ms: int = 2000
    position_epsilon_ms: int = 10


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class AppConfig:
    """Top-level application configuration."""
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    thumbnails: ThumbnailConfig = field(default_factory=ThumbnailConfig)
    subtitles: SubtitleConfig = field(default_factory=SubtitleConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def update_from_args(self, args):
        """Override config values from CLI arguments."""
        if getattr(args, "ffmpeg", None):
            self.tools.ffmpeg_path = str(args.ffmpeg)
        if getattr(args, "ffprobe", None):
            self.tools.ffprobe_path = str(args.ffprobe)
        if getattr(args, "timeout", None):
            self.subtitles.probe_timeout = args.timeout
            self.subtitles.extract_timeout = max(args.timeout, self.subtitles.extract_timeout)
        if getattr(args, "no_thumbnails", False):
            self.thumbnails.enabled = False


def _dict_to_dataclass(cls, data: dict):
    """Convert a dict to a dataclass, ignoring unknown keys."""
    if data is None:
        return cls()
    if not isinstance(data, dict):
        logger.warning(f"Ignoring malformed '{cls.__name__}' section: {data!r}")
        return cls()
    field_names = {f.name for f in cls.__dataclass_fields__.values()}
    filtered = {k: v for k, v in data.items() if k in field_names}
    return cls(**filtered)


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """
    Load configuration from a YAML file.
    Falls back to defaults if file is missing.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if not path.exists():
        logger.warning(f"Config file not found at {path}, using defaults.")
        return AppConfig()

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    config = AppConfig(
        tools=_dict_to_dataclass(ToolsConfig, raw.get("tools")),
        thumbnails=_dict_to_dataclass(ThumbnailConfig, raw.get("thumbnails")),
        subtitles=_dict_to_dataclass(SubtitleConfig, raw.get("subtitles")),
        sync=_dict_to_dataclass(SyncConfig, raw.get("sync")),
        logging=_dict_to_dataclass(LoggingConfig, raw.get("logging")),
    )

    logger.info(f"Configuration loaded from {path}")
    return config
