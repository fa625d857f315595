"""Shared fixtures: an in-memory S3 + signing backend and a recording notifier."""

import hashlib
import json
import threading
from collections import Counter
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from signed_s3_uploader.core.exceptions import TransportError
from signed_s3_uploader.core.models import UploaderSettings
from signed_s3_uploader.core.notifications import UploadNotifier
from signed_s3_uploader.core.source import BytesSource
from signed_s3_uploader.core.transport import HttpRequest, HttpResponse, RequestHandle, Transport
from signed_s3_uploader.core.uploader import SignedMultipartUploader

S3_NS = "http://s3.amazonaws.com/doc/2006-03-01/"
UPLOAD_ID = "upload-123"
LOCATION = "https://my-bucket.s3.amazonaws.com/my-bucket/video.mp4"


class FakeStore(Transport):
    """Answers signing-backend and S3 multipart requests from memory.

    ``handlers`` maps a route name to ``fn(store, request, handle, on_progress)``
    which replaces the default behaviour for that route.
    """

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.calls: List[Tuple[str, HttpRequest]] = []
        self.parts: Dict[int, Tuple[str, int]] = {}
        self.handlers: Dict[str, Callable] = {}
        self.max_parts = 1000

    @staticmethod
    def route(request: HttpRequest) -> str:
        if request.url.endswith("/get_init_signature"):
            return "init_signature"
        if request.url.endswith("/get_all_signatures"):
            return "all_signatures"
        if request.method == "POST" and request.url.endswith("?uploads"):
            return "initiate"
        if request.method == "PUT":
            return "upload_part"
        if request.method == "GET":
            return "list_parts"
        return "complete"

    def send(
        self,
        request: HttpRequest,
        handle: RequestHandle,
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> HttpResponse:
        route = self.route(request)
        with self.lock:
            self.calls.append((route, request))
        handler = self.handlers.get(route)
        if handler is not None:
            return handler(self, request, handle, on_progress)
        return self.default(route, request, handle, on_progress)

    # Inspection helpers
    def count(self, route: str) -> int:
        with self.lock:
            return sum(1 for name, _ in self.calls if name == route)

    def requests(self, route: str) -> List[HttpRequest]:
        with self.lock:
            return [request for name, request in self.calls if name == route]

    def part_uploads(self) -> Counter:
        return Counter(request.params["partNumber"] for request in self.requests("upload_part"))

    # Response helpers
    @staticmethod
    def json_response(payload) -> HttpResponse:
        return HttpResponse(status_code=200, content=json.dumps(payload).encode())

    @staticmethod
    def xml_response(body: str, headers: Optional[Dict[str, str]] = None) -> HttpResponse:
        return HttpResponse(status_code=200, headers=headers or {}, content=body.encode())

    @staticmethod
    def list_parts_xml(
        parts: Dict[int, Tuple[str, int]], next_marker: Optional[int] = None
    ) -> str:
        items = "".join(
            f"<Part><PartNumber>{number}</PartNumber><ETag>&quot;{etag}&quot;</ETag>"
            f"<Size>{size}</Size></Part>"
            for number, (etag, size) in sorted(parts.items())
        )
        if next_marker is None:
            paging = "<IsTruncated>false</IsTruncated>"
        else:
            paging = (
                f"<IsTruncated>true</IsTruncated>"
                f"<NextPartNumberMarker>{next_marker}</NextPartNumberMarker>"
            )
        return (
            f'<ListPartsResult xmlns="{S3_NS}"><UploadId>{UPLOAD_ID}</UploadId>'
            f"{paging}{items}</ListPartsResult>"
        )

    def list_parts_page(self, parts: Dict[int, Tuple[str, int]], request: HttpRequest) -> str:
        """Render the page of ``parts`` after the request's part-number-marker."""
        marker = int(request.params.get("part-number-marker", 0))
        numbers = [n for n in sorted(parts) if n > marker]
        page = numbers[: self.max_parts]
        next_marker = page[-1] if len(numbers) > len(page) else None
        return self.list_parts_xml({n: parts[n] for n in page}, next_marker)

    def default(self, route, request, handle, on_progress) -> HttpResponse:
        if route == "init_signature":
            return self.json_response({"signature": "init-sig", "date": "20240101T000000Z"})
        if route == "all_signatures":
            total = int(request.params["total_chunks"])
            return self.json_response(
                {
                    "chunk_signatures": {
                        str(n): {"signature": f"sig-{n}", "date": f"date-{n}"}
                        for n in range(1, total + 1)
                    },
                    "complete_signature": {"signature": "complete-sig", "date": "date-c"},
                    "list_signature": {"signature": "list-sig", "date": "date-l"},
                }
            )
        if route == "initiate":
            return self.xml_response(
                f'<InitiateMultipartUploadResult xmlns="{S3_NS}"><Bucket>my-bucket</Bucket>'
                f"<Key>video.mp4</Key><UploadId>{UPLOAD_ID}</UploadId>"
                f"</InitiateMultipartUploadResult>"
            )
        if route == "upload_part":
            return self.store_part(request, handle, on_progress)
        if route == "list_parts":
            with self.lock:
                parts = dict(self.parts)
            return self.xml_response(self.list_parts_page(parts, request))
        return self.xml_response(
            f'<CompleteMultipartUploadResult xmlns="{S3_NS}"><Location>{LOCATION}</Location>'
            f"<ETag>&quot;final-etag&quot;</ETag></CompleteMultipartUploadResult>"
        )

    def store_part(self, request, handle, on_progress) -> HttpResponse:
        body = request.body
        stream = body.source.open_range(body.start, body.end, on_progress, handle.is_aborted)
        data = b""
        with stream:
            while True:
                block = stream.read(1000)
                if not block:
                    break
                data += block
        etag = hashlib.md5(data).hexdigest()
        with self.lock:
            self.parts[int(request.params["partNumber"])] = (etag, len(data))
        return HttpResponse(status_code=200, headers={"ETag": f'"{etag}"'})


class RecordingNotifier(UploadNotifier):
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.events: List[Tuple] = []

    def _record(self, *event) -> None:
        with self.lock:
            self.events.append(event)

    def of(self, name: str) -> List[Tuple]:
        with self.lock:
            return [event[1:] for event in self.events if event[0] == name]

    def ready(self):
        self._record("ready")

    def start(self):
        self._record("start")

    def progress(self, loaded, total):
        self._record("progress", loaded, total)

    def complete(self, location):
        self._record("complete", location)

    def error(self, message):
        self._record("error", message)

    def retry(self, attempt):
        self._record("retry", attempt)

    def cancel(self):
        self._record("cancel")


def always_fail(store, request, handle, on_progress):
    raise TransportError(f"{request.describe()} returned HTTP 500", status_code=500)


def fail_times(count: int, error_status: int = 503):
    """Handler that fails ``count`` times, then defers to the store's default."""
    remaining = {"n": count}
    lock = threading.Lock()

    def handler(store, request, handle, on_progress):
        with lock:
            should_fail = remaining["n"] > 0
            remaining["n"] -= 1
        if should_fail:
            raise TransportError("injected failure", status_code=error_status)
        return store.default(store.route(request), request, handle, on_progress)

    return handler


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def events() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_settings():
    def factory(**overrides) -> UploaderSettings:
        values = {
            "signing_backend_url": "https://signer.example.com/",
            "bucket": "my-bucket",
            "access_key_id": "AKIDEXAMPLE",
            "chunk_size": 1000,
            "retry_base_delay": 0,
            "max_retries": 3,
        }
        values.update(overrides)
        return UploaderSettings(**values)

    return factory


@pytest.fixture
def make_uploader(store, events, make_settings):
    created = []

    def factory(data: bytes = b"x" * 2500, filename: str = "video.mp4", source=None, **overrides):
        uploader = SignedMultipartUploader(
            source or BytesSource(data, filename),
            make_settings(**overrides),
            notifier=events,
            transport=store,
        )
        created.append(uploader)
        return uploader

    yield factory

    for uploader in created:
        uploader.close()
