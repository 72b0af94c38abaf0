from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
import fcntl
from typing import Any, Dict
import yaml

from trailbot.util.logger import get_logger

logger = get_logger("app_configuration")


CONFIG_PATH = Path("./config/app_config.yml").resolve()
DEFAULT_DATABASE_PATH = Path("./data/trailbot.db")


@dataclass(frozen=True, slots=True)
class ReminderLimits:
    """Caller-side limits applied before a reminder reaches the scheduler."""
    max_per_user: int = 5
    min_seconds: int = 60
    max_seconds: int = 30 * 24 * 60 * 60


@dataclass(frozen=True, slots=True)
class CountdownSettings:
    """Cadence and bounds for live countdown displays."""
    tick_seconds: float = 1.0
    min_seconds: int = 1
    max_seconds: int = 24 * 60 * 60


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key, {})
    return value if isinstance(value, dict) else {}


class AppConfig:
    """File-lock based accessor around the YAML-based application configuration.

    The class caches the contents of ``./config/app_config.yml`` and exposes
    typed views over the sections the bot cares about. Uses fcntl file locks
    for safe concurrent access across processes.
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        self.reload()

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                data = yaml.safe_load(f)
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
                if not isinstance(data, dict):
                    logger.warning("[APP CONFIGURATION] Config %s is not a mapping; ignoring.", self.config_path)
                    return {}
                return data
        except FileNotFoundError:
            logger.error("[APP CONFIGURATION] Config file %s not found.", self.config_path)
        except Exception as exc:
            logger.error("[APP CONFIGURATION] Failed to load config %s: %s", self.config_path, exc)
        return {}

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Re-read the YAML file, replace the in-memory cache and return it.

        Returns an empty dict when the file is missing or malformed.
        """
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        """The cached configuration mapping. Callers should not mutate it."""
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Safe lookup for top-level configuration keys."""
        return self._data.get(key, default)

    # --------------------------
    # High-level shortcuts
    # --------------------------
    @property
    def database_path(self) -> Path:
        """Location of the SQLite file that holds pending delayed actions."""
        value = _section(self._data, "database").get("path")
        return Path(value) if value else DEFAULT_DATABASE_PATH

    @property
    def reminder_limits(self) -> ReminderLimits:
        section = _section(self._data, "reminders")
        defaults = ReminderLimits()
        return ReminderLimits(
            max_per_user=int(section.get("max_per_user", defaults.max_per_user)),
            min_seconds=int(section.get("min_seconds", defaults.min_seconds)),
            max_seconds=int(section.get("max_seconds", defaults.max_seconds)),
        )

    @property
    def countdown_settings(self) -> CountdownSettings:
        section = _section(self._data, "countdowns")
        defaults = CountdownSettings()
        return CountdownSettings(
            tick_seconds=float(section.get("tick_seconds", defaults.tick_seconds)),
            min_seconds=int(section.get("min_seconds", defaults.min_seconds)),
            max_seconds=int(section.get("max_seconds", defaults.max_seconds)),
        )

    @property
    def log_channel_id(self) -> int | None:
        """Default moderation log channel, used when a guild has none configured."""
        value = _section(self._data, "moderation").get("log_channel_id")
        return int(value) if value else None


# Shared application-wide configuration instance
app_config = AppConfig(CONFIG_PATH)
