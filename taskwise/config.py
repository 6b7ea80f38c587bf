"""
TaskWise settings.

Values come from ``~/.taskwise/config.ini``; a ``TASKWISE_*`` environment
variable beats the file, and a built-in default covers anything missing.

Example config.ini:

    [store]
    database_url = sqlite+aiosqlite:////home/me/tasks.db
    owner_id = student-1

    [view]
    default_sort = priority
    default_filter = all
    upcoming_limit = 5

    [display]
    timezone = Europe/Berlin
"""

import configparser
import os
from pathlib import Path
from typing import Any, Dict, Optional

from taskwise.logging_config import get_logger
from taskwise.models import SortOption, StatusFilter

logger = get_logger(__name__)

CONFIG_DIR = Path.home() / ".taskwise"
DEFAULT_DATABASE_URL = f"sqlite+aiosqlite:///{CONFIG_DIR / 'taskwise.db'}"

DEFAULT_SORT = SortOption.DEADLINE.value
DEFAULT_FILTER = StatusFilter.INCOMPLETE.value
DEFAULT_UPCOMING_LIMIT = 3


class Config:
    """Reads TaskWise settings from an INI file plus environment overrides."""

    def __init__(self, config_path: Optional[Path] = None):
        """
        Args:
            config_path: INI file to read (default ~/.taskwise/config.ini).
                A missing or unreadable file just means defaults.
        """
        self.config_path = config_path or CONFIG_DIR / "config.ini"
        self._config = configparser.ConfigParser()
        self._read_file()

    def _read_file(self) -> None:
        if not self.config_path.exists():
            logger.debug(f"No config file at {self.config_path}, using defaults")
            return
        try:
            self._config.read(self.config_path)
        except configparser.Error as e:
            logger.warning(f"Ignoring unreadable config file {self.config_path}: {e}")
            return
        logger.info(f"Read settings from {self.config_path}")

    def _setting(self, env_var: str, section: str, key: str, fallback: Optional[str]) -> Optional[str]:
        """Environment variable first, then the INI file, then the fallback."""
        return os.getenv(env_var) or self._config.get(section, key, fallback=fallback)

    def _choice(self, env_var: str, key: str, allowed: set, default: str) -> str:
        value = self._setting(env_var, 'view', key, default)
        if value not in allowed:
            logger.warning(f"Unknown {key} '{value}', falling back to '{default}'")
            return default
        return value

    def get_store_config(self) -> Dict[str, Any]:
        """
        Where tasks live and whose tasks to watch.

        Keys: ``database_url`` (TASKWISE_DATABASE_URL) and
        ``owner_id`` (TASKWISE_OWNER_ID, None when unset).
        """
        return {
            'database_url': self._setting('TASKWISE_DATABASE_URL', 'store', 'database_url', DEFAULT_DATABASE_URL),
            'owner_id': self._setting('TASKWISE_OWNER_ID', 'store', 'owner_id', None),
        }

    def get_view_config(self) -> Dict[str, Any]:
        """
        Initial view settings.

        Keys:
            default_sort: One of the SortOption values (TASKWISE_DEFAULT_SORT)
            default_filter: One of the StatusFilter values (TASKWISE_DEFAULT_FILTER)
            upcoming_limit: Number of upcoming tasks in the stats (TASKWISE_UPCOMING_LIMIT)

        Invalid values are logged and replaced by their defaults.
        """
        raw_limit = self._setting('TASKWISE_UPCOMING_LIMIT', 'view', 'upcoming_limit', str(DEFAULT_UPCOMING_LIMIT))
        try:
            upcoming_limit = max(int(raw_limit), 0)
        except ValueError:
            logger.warning(f"upcoming_limit '{raw_limit}' is not a number, using {DEFAULT_UPCOMING_LIMIT}")
            upcoming_limit = DEFAULT_UPCOMING_LIMIT

        config = {
            'default_sort': self._choice(
                'TASKWISE_DEFAULT_SORT', 'default_sort', {o.value for o in SortOption}, DEFAULT_SORT
            ),
            'default_filter': self._choice(
                'TASKWISE_DEFAULT_FILTER', 'default_filter', {f.value for f in StatusFilter}, DEFAULT_FILTER
            ),
            'upcoming_limit': upcoming_limit,
        }
        logger.debug(f"View settings: {config}")
        return config

    def get_display_config(self) -> Dict[str, Any]:
        """Display settings: ``timezone`` (TASKWISE_DISPLAY_TIMEZONE, default UTC)."""
        return {'timezone': self._setting('TASKWISE_DISPLAY_TIMEZONE', 'display', 'timezone', 'UTC')}

    # Raw INI access, without environment overrides.

    def get(self, section: str, key: str, fallback: Any = None) -> Any:
        return self._config.get(section, key, fallback=fallback)

    def get_bool(self, section: str, key: str, fallback: bool = False) -> bool:
        return self._config.getboolean(section, key, fallback=fallback)

    def get_int(self, section: str, key: str, fallback: int = 0) -> int:
        return self._config.getint(section, key, fallback=fallback)

    def has_section(self, section: str) -> bool:
        return self._config.has_section(section)

    def sections(self) -> list:
        return self._config.sections()
