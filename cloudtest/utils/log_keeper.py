"""Captured log sink used to make assertions on diagnostic output."""

import logging
import threading
from typing import Optional

ROOT_LOGGER = "cloudtest"


class LogKeeper(logging.Handler):
    """Keeps every message logged under the cloudtest logger while started.

    Usage:
        with LogKeeper() as keeper:
            perform_testing(...)
        keeper.message_count("OnFail: running on fail script")
    """

    def __init__(self, logger_name: str = ROOT_LOGGER, level: int = logging.DEBUG):
        super().__init__(level=level)
        self._logger = logging.getLogger(logger_name)
        self._saved_level: Optional[int] = None
        self._messages: list[str] = []
        self._messages_lock = threading.Lock()
        self._started = False

    def start(self) -> "LogKeeper":
        if self._started:
            return self
        self._saved_level = self._logger.level
        if self._logger.getEffectiveLevel() > self.level:
            self._logger.setLevel(self.level)
        self._logger.addHandler(self)
        self._started = True
        return self

    def stop(self) -> None:
        if not self._started:
            return
        self._logger.removeHandler(self)
        if self._saved_level is not None:
            self._logger.setLevel(self._saved_level)
        self._started = False

    def emit(self, record: logging.LogRecord) -> None:
        message = record.getMessage()
        with self._messages_lock:
            self._messages.append(message)

    @property
    def messages(self) -> list[str]:
        with self._messages_lock:
            return list(self._messages)

    def message_count(self, substring: str) -> int:
        """Number of captured messages containing substring."""
        return sum(1 for m in self.messages if substring in m)

    def __enter__(self):
        return self.start()

    def __exit__(self, *args):
        self.stop()
