"""
Watcher type definitions.

- WatchMode: how changes are detected
- NativeEvent: the two raw notification kinds a native watch reports
- WatcherOptions: construction options shared by both watchers
"""

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Mapping, Optional, Union

from fylo.config import get_settings
from fylo.errors import ValidationError


class WatchMode(Enum):
    """Change detection strategy."""

    POLLING = "polling"  # Periodic stat/list snapshots
    EVENT_BASED = "event_based"  # OS notifications through watchdog


class NativeEvent(Enum):
    """Raw native notification kinds."""

    CHANGE = "change"  # Content of an entry changed
    RENAME = "rename"  # Entry appeared, disappeared or was moved


@dataclass
class WatcherOptions:
    """
    Watcher construction options.

    Attributes:
        use_polling: Poll instead of using OS notifications
        polling_interval: Milliseconds between polls
        restart_delay: Seconds a DirectoryWatcher waits before restarting after an error
    """

    use_polling: bool = False
    polling_interval: Optional[int] = None
    restart_delay: Optional[float] = None

    def __post_init__(self) -> None:
        settings = get_settings()
        if self.polling_interval is None:
            self.polling_interval = settings.polling_interval_ms
        if self.restart_delay is None:
            self.restart_delay = settings.restart_delay

        if not isinstance(self.use_polling, bool):
            raise ValidationError(f"Invalid use_polling: {self.use_polling!r}. It must be a boolean.")
        if isinstance(self.polling_interval, bool) or not isinstance(self.polling_interval, (int, float)) or self.polling_interval <= 0:
            raise ValidationError(f"Invalid polling_interval: {self.polling_interval!r}. It must be a positive number.")
        if isinstance(self.restart_delay, bool) or not isinstance(self.restart_delay, (int, float)) or self.restart_delay < 0:
            raise ValidationError(f"Invalid restart_delay: {self.restart_delay!r}. It must be >= 0.")

    @property
    def mode(self) -> WatchMode:
        return WatchMode.POLLING if self.use_polling else WatchMode.EVENT_BASED

    @classmethod
    def from_value(cls, value: Union[None, "WatcherOptions", Mapping[str, Any]]) -> "WatcherOptions":
        """Accept None, an instance, or a mapping (snake_case or camelCase keys)."""
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        if not isinstance(value, Mapping):
            raise ValidationError(f"Invalid watcher options: {value!r}")

        aliases = {
            "usePolling": "use_polling",
            "pollingInterval": "polling_interval",
            "restartDelay": "restart_delay",
        }
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, item in value.items():
            name = aliases.get(key, key)
            if name not in known:
                raise ValidationError(f"Unknown watcher option: {key}.")
            kwargs[name] = item
        return cls(**kwargs)
