"""Observer interface for upload lifecycle events."""

import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class UploadNotifier:
    """Receives upload events. Every method is a no-op unless overridden."""

    def ready(self) -> None:
        pass

    def start(self) -> None:
        pass

    def progress(self, loaded: int, total: int) -> None:
        pass

    def complete(self, location: str) -> None:
        pass

    def error(self, message: str) -> None:
        pass

    def retry(self, attempt: int) -> None:
        pass

    def cancel(self) -> None:
        pass


class CallbackNotifier(UploadNotifier):
    """Forwards events to plain callables; unset hooks do nothing."""

    def __init__(
        self,
        on_ready: Optional[Callable[[], None]] = None,
        on_start: Optional[Callable[[], None]] = None,
        on_progress: Optional[Callable[[int, int], None]] = None,
        on_complete: Optional[Callable[[str], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
        on_retry: Optional[Callable[[int], None]] = None,
        on_cancel: Optional[Callable[[], None]] = None,
    ) -> None:
        self.on_ready = on_ready
        self.on_start = on_start
        self.on_progress = on_progress
        self.on_complete = on_complete
        self.on_error = on_error
        self.on_retry = on_retry
        self.on_cancel = on_cancel

    def ready(self) -> None:
        if self.on_ready:
            self.on_ready()

    def start(self) -> None:
        if self.on_start:
            self.on_start()

    def progress(self, loaded: int, total: int) -> None:
        if self.on_progress:
            self.on_progress(loaded, total)

    def complete(self, location: str) -> None:
        if self.on_complete:
            self.on_complete(location)

    def error(self, message: str) -> None:
        if self.on_error:
            self.on_error(message)

    def retry(self, attempt: int) -> None:
        if self.on_retry:
            self.on_retry(attempt)

    def cancel(self) -> None:
        if self.on_cancel:
            self.on_cancel()


class LoggingNotifier(UploadNotifier):
    def __init__(self, log: logging.Logger = logger) -> None:
        self.log = log

    def ready(self) -> None:
        self.log.info("Uploader ready")

    def start(self) -> None:
        self.log.info("Upload started")

    def progress(self, loaded: int, total: int) -> None:
        self.log.debug(f"Progress: {loaded}/{total} bytes")

    def complete(self, location: str) -> None:
        self.log.info(f"Upload complete: {location}")

    def error(self, message: str) -> None:
        self.log.error(f"Upload failed: {message}")

    def retry(self, attempt: int) -> None:
        self.log.warning(f"Retrying (attempt {attempt})")

    def cancel(self) -> None:
        self.log.info("Upload cancelled")


class CompositeNotifier(UploadNotifier):
    """Fans every event out to several notifiers in order."""

    def __init__(self, *notifiers: UploadNotifier) -> None:
        self.notifiers = list(notifiers)

    def ready(self) -> None:
        for notifier in self.notifiers:
            notifier.ready()

    def start(self) -> None:
        for notifier in self.notifiers:
            notifier.start()

    def progress(self, loaded: int, total: int) -> None:
        for notifier in self.notifiers:
            notifier.progress(loaded, total)

    def complete(self, location: str) -> None:
        for notifier in self.notifiers:
            notifier.complete(location)

    def error(self, message: str) -> None:
        for notifier in self.notifiers:
            notifier.error(message)

    def retry(self, attempt: int) -> None:
        for notifier in self.notifiers:
            notifier.retry(attempt)

    def cancel(self) -> None:
        for notifier in self.notifiers:
            notifier.cancel()
