"""Multipart upload engine driven by signatures from an external signing backend.

The upload runs as a chain of asynchronous phases on a worker pool:

1. get the init signature from the signing backend
2. initiate the multipart upload and receive an UploadId
3. get signatures for every part, the part listing and the completion call
4. PUT every chunk concurrently
5. once every part has an ETag, list the parts and reconcile
6. complete the upload, or re-send the parts that did not check out

Every phase retries through :class:`RetryPolicy`. Shared state (status, session,
in-flight handles, retry timers) is only touched while ``_lock`` is held, and
notifier hooks are always called without it.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

from .exceptions import (
    InvalidTransitionError,
    ProtocolError,
    TransportError,
    UploadCancelledError,
    UploadFailedError,
    UploadTimeoutError,
    ValidationError,
)
from .models import RemotePart, UploaderSettings, UploadStatus
from .notifications import LoggingNotifier, UploadNotifier
from .planner import plan_chunks
from .reconcile import ReconciliationOutcome, reconcile
from .retry import RetryPolicy
from .session import UploadSession
from .signing import SignatureClient
from .source import FileSource, UploadSource
from .storage import (
    StorageRequests,
    extract_etag,
    parse_location,
    parse_parts_page,
    parse_upload_id,
)
from .transport import HttpRequest, HttpResponse, RequestHandle, RequestsTransport, Transport

logger = logging.getLogger(__name__)

_TRANSITIONS = {
    UploadStatus.READY: {UploadStatus.UPLOADING, UploadStatus.FAILED},
    UploadStatus.UPLOADING: {UploadStatus.COMPLETED, UploadStatus.CANCELLED, UploadStatus.FAILED},
    UploadStatus.COMPLETED: set(),
    UploadStatus.CANCELLED: set(),
    UploadStatus.FAILED: set(),
}

TOO_LARGE_MESSAGE = (
    "The file could not be uploaded because it exceeds the maximum file size allowed."
)
UNREADABLE_MESSAGE = "The file could not be uploaded because it cannot be read."


class SignedMultipartUploader:
    """Upload one file to S3 with backend-signed multipart requests.

    Example:
        settings = UploaderSettings(
            signing_backend_url="https://example.com/signatures",
            bucket="my-bucket",
            access_key_id="AKIA...",
        )
        with SignedMultipartUploader("video.mp4", settings) as uploader:
            location = uploader.upload()
    """

    def __init__(
        self,
        source: Union[str, Path, UploadSource],
        settings: UploaderSettings,
        notifier: Optional[UploadNotifier] = None,
        transport: Optional[Transport] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        """Initialize the uploader and notify ``ready``.

        Args:
            source: Path of the file to upload, or an :class:`UploadSource`
            settings: Upload configuration
            notifier: Receives lifecycle events (no-op by default, logging if ``settings.log``)
            transport: HTTP transport (a ``requests`` based one by default)
            retry_policy: Backoff policy (built from ``settings`` by default)
        """
        if not isinstance(source, UploadSource):
            source = FileSource(source)
        self.source = source
        self.settings = settings
        self.notifier = notifier or (LoggingNotifier() if settings.log else UploadNotifier())
        self._owns_transport = transport is None
        self.transport = transport or RequestsTransport(timeout=settings.request_timeout)
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=settings.max_retries, base_delay=settings.retry_base_delay
        )

        self.filename = source.name
        self.content_type = settings.resolve_content_type(self.filename)
        self.key = settings.resolve_key(self.filename, int(time.time() * 1000))
        self._storage = StorageRequests(
            settings, key=self.key, filename=self.filename, content_type=self.content_type
        )
        self._signer: Optional[SignatureClient] = None

        self._lock = threading.RLock()
        self._done = threading.Event()
        self._status = UploadStatus.READY
        self._finishing = False
        self._handles: List[RequestHandle] = []
        self._timers: List[threading.Timer] = []
        self._executor: Optional[ThreadPoolExecutor] = None
        self._session: Optional[UploadSession] = None
        self._file_size = 0
        self._location: Optional[str] = None
        self._error_message: Optional[str] = None

        self._notify("ready")

    def __enter__(self) -> "SignedMultipartUploader":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    # Public API
    @property
    def status(self) -> UploadStatus:
        return self._status

    @property
    def location(self) -> Optional[str]:
        return self._location

    @property
    def error_message(self) -> Optional[str]:
        return self._error_message

    @property
    def session(self) -> Optional[UploadSession]:
        return self._session

    def start_upload(self) -> None:
        """Validate the file and start the upload in the background.

        Does nothing while an upload is already running.
        """
        problem = None
        with self._lock:
            if self._status is UploadStatus.UPLOADING or self._finishing:
                logger.debug("start_upload called while an upload is running; ignoring")
                return
            if self._status is not UploadStatus.READY:
                raise InvalidTransitionError(self._status, UploadStatus.UPLOADING)

            try:
                self._validate_source()
            except ValidationError as e:
                problem = e.message
                self._finishing = True
                self._error_message = problem
            else:
                chunks = plan_chunks(self._file_size, self.settings.chunk_size)
                self._session = UploadSession.from_chunks(chunks)
                self._signer = SignatureClient(
                    self.settings,
                    key=self.key,
                    filename=self.filename,
                    file_size=self._file_size,
                    content_type=self.content_type,
                )
                self._executor = ThreadPoolExecutor(
                    max_workers=len(chunks) + 1, thread_name_prefix="s3-upload"
                )
                self._transition(UploadStatus.UPLOADING)

        if problem:
            logger.error(f"Cannot upload {self.filename}: {problem}")
            self._settle(UploadStatus.FAILED, "error", problem)
            return

        logger.info(
            f"Uploading {self.filename} ({self._file_size} bytes) to {self.key} "
            f"in {self._session.total_chunks} parts"
        )
        self._notify("start")
        self._request_init_signature()

    def cancel_upload(self) -> None:
        """Abort every in-flight request and move to Cancelled.

        Does nothing unless an upload is running.
        """
        if self._finish(UploadStatus.CANCELLED, "cancel"):
            logger.info(f"Upload of {self.filename} cancelled")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the upload reaches a terminal state; False on timeout."""
        return self._done.wait(timeout)

    def upload(self, timeout: Optional[float] = None) -> str:
        """Run the whole upload and return the object location.

        Raises:
            UploadFailedError: If the upload failed
            UploadCancelledError: If the upload was cancelled
            UploadTimeoutError: If it did not finish within ``timeout`` and was cancelled
        """
        self.start_upload()
        if not self.wait(timeout):
            self.cancel_upload()
            # A terminal transition claimed by another thread may still be settling.
            self.wait()
            if self._status is UploadStatus.CANCELLED:
                raise UploadTimeoutError(timeout)
        if self._status is UploadStatus.COMPLETED:
            return self._location
        if self._status is UploadStatus.CANCELLED:
            raise UploadCancelledError()
        raise UploadFailedError(self._error_message or "Upload failed", file_path=self.filename)

    def close(self) -> None:
        """Cancel a running upload, then release the worker pool and transport.

        Must not be called from a notifier hook.
        """
        self.cancel_upload()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        if self._owns_transport:
            self.transport.close()

    # State machine
    def _transition(self, target: UploadStatus) -> None:
        if target not in _TRANSITIONS[self._status]:
            raise InvalidTransitionError(self._status, target)
        logger.debug(f"Upload status: {self._status.value} -> {target.value}")
        self._status = target
        if target.is_terminal:
            self._done.set()

    def _is_active(self) -> bool:
        return self._status is UploadStatus.UPLOADING and not self._finishing

    def _finish(self, target: UploadStatus, event: str, *args) -> bool:
        """Claim the terminal transition, stop all work, notify, then transition.

        Only the first caller wins; late results from requests started earlier
        find the upload inactive and are dropped.
        """
        with self._lock:
            if not self._is_active():
                return False
            self._finishing = True
            if target is UploadStatus.FAILED:
                self._error_message = args[0]
            self._abort_in_flight()
        self._settle(target, event, *args)
        return True

    def _settle(self, target: UploadStatus, event: str, *args) -> None:
        self._notify(event, *args)
        with self._lock:
            self._transition(target)
            self._finishing = False

    def _fail(self, message: str) -> None:
        if self._finish(UploadStatus.FAILED, "error", message):
            logger.error(f"Upload of {self.filename} failed: {message}")

    def _abort_in_flight(self) -> None:
        for handle in self._handles:
            handle.abort()
        self._handles.clear()
        for timer in self._timers:
            timer.cancel()
        self._timers.clear()
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def _validate_source(self) -> None:
        try:
            file_size = self.source.size
        except OSError:
            raise ValidationError("file", self.filename, UNREADABLE_MESSAGE)
        if file_size > self.settings.max_file_size:
            raise ValidationError("file_size", file_size, TOO_LARGE_MESSAGE)
        if not self.source.probe():
            raise ValidationError("file", self.filename, UNREADABLE_MESSAGE)
        self._file_size = file_size

    # Dispatch and retry
    def _notify(self, event: str, *args) -> None:
        try:
            getattr(self.notifier, event)(*args)
        except Exception as e:
            logger.warning(f"Notifier {event} hook error: {e}")

    def _trace(self, message: str) -> None:
        logger.log(logging.INFO if self.settings.log else logging.DEBUG, message)

    def _dispatch(
        self,
        request: HttpRequest,
        on_success: Callable[[HttpResponse], None],
        on_failure: Callable[[TransportError], None],
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> None:
        with self._lock:
            if not self._is_active():
                return
            handle = RequestHandle(request)
            self._handles.append(handle)
            self._executor.submit(self._perform, handle, on_success, on_failure, on_progress)

    def _perform(
        self,
        handle: RequestHandle,
        on_success: Callable[[HttpResponse], None],
        on_failure: Callable[[TransportError], None],
        on_progress: Optional[Callable[[int], None]],
    ) -> None:
        self._trace(f"Sending {handle.request.describe()}")
        try:
            try:
                response = self.transport.send(handle.request, handle, on_progress)
            except TransportError as e:
                if not handle.is_aborted():
                    logger.warning(str(e))
                    on_failure(e)
                return
            finally:
                self._release(handle)

            if handle.is_aborted():
                return
            try:
                on_success(response)
            except TransportError as e:
                logger.warning(str(e))
                on_failure(e)
        except ProtocolError as e:
            self._fail(e.message)
        except Exception as e:
            logger.exception(f"Unexpected error during {handle.request.describe()}")
            self._fail(f"Unexpected error during upload: {e}")

    def _release(self, handle: RequestHandle) -> None:
        with self._lock:
            if handle in self._handles:
                self._handles.remove(handle)

    def _retry(
        self,
        attempts: int,
        operation: Callable[[int], None],
        exhausted_message: str,
        error: Exception,
    ) -> None:
        """Schedule ``operation(attempts + 1)`` or fail if the budget is spent."""
        with self._lock:
            if not self._is_active():
                return
            scheduled = self.retry_policy.can_retry(attempts, self._status)
            if scheduled:
                self._schedule(attempts + 1, operation)
        if not scheduled:
            self._fail(exhausted_message)

    def _schedule(self, attempt: int, operation: Callable[[int], None]) -> None:
        delay = self.retry_policy.delay_for(attempt)
        logger.info(f"Retrying in {delay:.1f}s (attempt {attempt})")
        timer = threading.Timer(delay, self._fire_retry, args=(attempt, operation))
        timer.daemon = True
        self._timers.append(timer)
        timer.start()

    def _fire_retry(self, attempt: int, operation: Callable[[int], None]) -> None:
        with self._lock:
            current = threading.current_thread()
            self._timers = [t for t in self._timers if t is not current]
            if not self._is_active():
                return
        self._notify("retry", attempt)
        operation(attempt)

    # Phase 1: init signature
    def _request_init_signature(self, attempts: int = 0) -> None:
        self._dispatch(
            self._signer.init_signature_request(),
            self._on_init_signature,
            partial(
                self._retry,
                attempts,
                self._request_init_signature,
                "Max number of retries have been met. Unable to get init signature!",
            ),
        )

    def _on_init_signature(self, response: HttpResponse) -> None:
        signature = SignatureClient.parse_init_signature(response)
        with self._lock:
            if not self._is_active():
                return
            self._session.init_signature = signature
        self._initiate_upload()

    # Phase 2: initiate
    def _initiate_upload(self, attempts: int = 0) -> None:
        self._dispatch(
            self._storage.initiate(self._session.init_signature),
            self._on_initiated,
            partial(
                self._retry,
                attempts,
                self._initiate_upload,
                "Max number of retries have been met. Unable to initiate an upload request!",
            ),
        )

    def _on_initiated(self, response: HttpResponse) -> None:
        upload_id = parse_upload_id(response)
        with self._lock:
            if not self._is_active():
                return
            self._session.upload_id = upload_id
        self._trace(f"Initiated multipart upload: UploadId={upload_id}")
        self._request_all_signatures()

    # Phase 3: remaining signatures
    def _request_all_signatures(self, attempts: int = 0) -> None:
        self._dispatch(
            self._signer.all_signatures_request(
                self._session.upload_id, self._session.total_chunks
            ),
            self._on_all_signatures,
            partial(
                self._retry,
                attempts,
                self._request_all_signatures,
                "Max number of retries have been met. Unable to retrieve remaining signatures!",
            ),
        )

    def _on_all_signatures(self, response: HttpResponse) -> None:
        signatures = SignatureClient.parse_all_signatures(response, self._session.part_numbers)
        with self._lock:
            if not self._is_active():
                return
            self._session.assign_signatures(signatures)
            part_numbers = self._session.part_numbers
        for part_number in part_numbers:
            self._upload_chunk(part_number)

    # Phase 4: chunk transfer
    def _upload_chunk(self, part_number: int, attempt: int = 0) -> None:
        with self._lock:
            if not self._is_active():
                return
            chunk = self._session.chunks[part_number]
            chunk.loaded = 0
            request = self._storage.upload_part(chunk, self._session.upload_id, self.source)
        self._trace(
            f"Part {part_number}: sending bytes {chunk.start}-{chunk.end} (attempt {attempt})"
        )
        self._dispatch(
            request,
            partial(self._on_chunk_uploaded, part_number),
            partial(self._retry_chunk, part_number),
            partial(self._on_chunk_progress, part_number),
        )

    def _on_chunk_progress(self, part_number: int, loaded: int) -> None:
        with self._lock:
            if not self._is_active():
                return
            total_loaded = self._session.record_progress(part_number, loaded)
        self._notify("progress", total_loaded, self._file_size)

    def _on_chunk_uploaded(self, part_number: int, response: HttpResponse) -> None:
        etag = extract_etag(response)
        if not etag:
            raise TransportError(f"Part {part_number}: response had no ETag header")
        with self._lock:
            if not self._is_active():
                return
            table_complete = self._session.confirm_etag(part_number, etag)
        self._trace(f"Part {part_number}: uploaded, ETag {etag}")
        if table_complete:
            self._verify_parts()

    def _retry_chunk(self, part_number: int, error: Optional[Exception] = None) -> None:
        """Re-send one part against that part's own attempt budget."""
        with self._lock:
            if not self._is_active():
                return
            chunk = self._session.chunks[part_number]
            scheduled = self.retry_policy.can_retry(chunk.attempts, self._status)
            if scheduled:
                chunk.attempts += 1
                self._schedule(chunk.attempts, partial(self._upload_chunk, part_number))
        if not scheduled:
            self._fail(
                f"Max number of retries have been met. Upload of chunk #{part_number} failed!"
            )

    # Phase 5: reconciliation
    def _verify_parts(
        self,
        attempts: int = 0,
        marker: Optional[str] = None,
        collected: Tuple[RemotePart, ...] = (),
    ) -> None:
        """List one page of parts; ``collected`` holds the parts of earlier pages."""
        self._dispatch(
            self._storage.list_parts(
                self._session.list_signature, self._session.upload_id, marker
            ),
            partial(self._on_parts_listed, collected),
            partial(
                self._retry,
                attempts,
                partial(self._verify_parts, marker=marker, collected=collected),
                "Max number of retries have been met. Unable to verify all chunks have uploaded!",
            ),
        )

    def _on_parts_listed(self, collected: Tuple[RemotePart, ...], response: HttpResponse) -> None:
        page, next_marker = parse_parts_page(response)
        remote_parts = collected + tuple(page)
        if next_marker:
            self._trace(f"Part listing truncated; continuing after part {next_marker}")
            self._verify_parts(marker=next_marker, collected=remote_parts)
            return

        with self._lock:
            if not self._is_active():
                return
            result = reconcile(self._session.chunks, self._session.etag_table(), remote_parts)
            if result.outcome is not ReconciliationOutcome.COMPLETE:
                self._session.invalidate(result.resubmit)

        if result.outcome is ReconciliationOutcome.COMPLETE:
            self._complete_upload()
            return

        logger.warning(
            f"Reconciliation found {result.outcome.value}: "
            f"re-sending parts {list(result.resubmit)}"
        )
        for part_number in result.resubmit:
            self._retry_chunk(part_number)

    # Phase 6: completion
    def _complete_upload(self, attempts: int = 0) -> None:
        with self._lock:
            etags = self._session.etag_table()
        self._dispatch(
            self._storage.complete(
                self._session.complete_signature, self._session.upload_id, etags
            ),
            self._on_completed,
            partial(
                self._retry,
                attempts,
                self._complete_upload,
                "Max number of retries have been met. Unable to complete multipart upload!",
            ),
        )

    def _on_completed(self, response: HttpResponse) -> None:
        location = parse_location(response)
        with self._lock:
            if not self._is_active():
                return
            self._location = location
        if self._finish(UploadStatus.COMPLETED, "complete", location):
            logger.info(f"Upload of {self.filename} complete: {location}")
