"""
Notification channel for the Financial Info step.

The step never talks to a UI directly; it is handed a Notifier and reports
success/warning/error notices through it.
"""

import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, List

logger = logging.getLogger(__name__)


class NoticeLevel(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class Notice:
    level: NoticeLevel
    message: str

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["level"] = self.level.value
        return data


class Notifier:
    """Base notifier. Subclasses implement `notify`."""

    def notify(self, level: NoticeLevel, message: str):
        raise NotImplementedError

    def success(self, message: str):
        self.notify(NoticeLevel.SUCCESS, message)

    def info(self, message: str):
        self.notify(NoticeLevel.INFO, message)

    def warning(self, message: str):
        self.notify(NoticeLevel.WARNING, message)

    def error(self, message: str):
        self.notify(NoticeLevel.ERROR, message)


class LoggingNotifier(Notifier):
    """Writes notices to the application log."""

    _LEVELS = {
        NoticeLevel.SUCCESS: logging.INFO,
        NoticeLevel.INFO: logging.INFO,
        NoticeLevel.WARNING: logging.WARNING,
        NoticeLevel.ERROR: logging.ERROR,
    }

    def notify(self, level: NoticeLevel, message: str):
        logger.log(self._LEVELS[level], f"Notice ({level.value}): {message}")


class CollectingNotifier(Notifier):
    """
    Buffers notices until they are drained.

    The HTTP layer drains the buffer into each response so the frontend can
    show them as toasts.
    """

    def __init__(self):
        self._notices: List[Notice] = []

    @property
    def notices(self) -> List[Notice]:
        return list(self._notices)

    def notify(self, level: NoticeLevel, message: str):
        self._notices.append(Notice(level=level, message=message))

    def drain(self) -> List[Notice]:
        notices, self._notices = self._notices, []
        return notices
