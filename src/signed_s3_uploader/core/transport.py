"""HTTP transport used by the uploader for signing-backend and storage requests."""

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import requests
from requests.structures import CaseInsensitiveDict

from .exceptions import TransferAborted, TransportError
from .source import ByteRange

logger = logging.getLogger(__name__)

Body = Union[None, str, bytes, ByteRange]


@dataclass
class HttpRequest:
    """Description of one HTTP request."""

    method: str
    url: str
    params: Dict[str, Any] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    body: Body = None

    def describe(self) -> str:
        return f"{self.method} {self.url}"


@dataclass
class HttpResponse:
    """Status, headers and body of a completed request."""

    status_code: int
    headers: Mapping[str, str] = field(default_factory=CaseInsensitiveDict)
    content: bytes = b""

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.content)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class RequestHandle:
    """Tracks one in-flight request and lets the uploader abort it.

    Transports register abort callbacks (closing a live response, for instance)
    so an abort interrupts a request that is waiting on the network.
    """

    def __init__(self, request: HttpRequest) -> None:
        self.request = request
        self._aborted = threading.Event()
        self._lock = threading.Lock()
        self._on_abort: List[Callable[[], None]] = []

    def abort(self) -> None:
        with self._lock:
            self._aborted.set()
            callbacks, self._on_abort = self._on_abort, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.debug(f"Abort callback for {self.request.describe()} failed: {e}")

    def add_abort_callback(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` on abort, or right away if the handle is already aborted."""
        with self._lock:
            if not self._aborted.is_set():
                self._on_abort.append(callback)
                return
        callback()

    def is_aborted(self) -> bool:
        return self._aborted.is_set()

    def wait_aborted(self, timeout: Optional[float] = None) -> bool:
        return self._aborted.wait(timeout)


class Transport(ABC):
    """Sends requests and reports the response or raises :class:`TransportError`."""

    @abstractmethod
    def send(
        self,
        request: HttpRequest,
        handle: RequestHandle,
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> HttpResponse:
        """Send ``request``; raise TransportError on network failure or non-2xx."""

    def close(self) -> None:
        """Release pooled connections."""


class RequestsTransport(Transport):
    """Transport backed by a shared ``requests.Session``."""

    def __init__(self, timeout: float = 60.0, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(
        self,
        request: HttpRequest,
        handle: RequestHandle,
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> HttpResponse:
        if handle.is_aborted():
            raise TransferAborted()

        body = request.body
        if isinstance(body, ByteRange):
            body = body.source.open_range(body.start, body.end, on_progress, handle.is_aborted)

        try:
            response = self.session.request(
                request.method,
                request.url,
                params=request.params or None,
                headers=request.headers,
                data=body,
                timeout=self.timeout,
                stream=True,
            )
        except requests.exceptions.Timeout as e:
            raise TransportError(f"{request.describe()} timed out: {e}")
        except requests.exceptions.RequestException as e:
            raise TransportError(f"{request.describe()} failed: {e}")
        finally:
            if hasattr(body, "close"):
                body.close()

        # Closing the response on abort unblocks a read still waiting for the body.
        handle.add_abort_callback(response.close)
        try:
            if handle.is_aborted():
                raise TransferAborted()
            try:
                content = response.content
            except requests.exceptions.RequestException as e:
                if handle.is_aborted():
                    raise TransferAborted()
                raise TransportError(f"{request.describe()} failed reading the response: {e}")
            except Exception:
                if handle.is_aborted():
                    raise TransferAborted()
                raise
            if handle.is_aborted():
                raise TransferAborted()
        finally:
            response.close()

        if not response.ok:
            logger.debug(f"Response content: {content[:500]!r}")
            raise TransportError(
                f"{request.describe()} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        return HttpResponse(
            status_code=response.status_code,
            headers=response.headers,
            content=content,
        )

    def close(self) -> None:
        self.session.close()
