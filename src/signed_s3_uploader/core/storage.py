"""Request builders and response parsers for the S3 multipart-upload REST calls."""

import logging
import xml.etree.ElementTree as ET
from typing import Dict, List, Mapping, Optional, Tuple

from .exceptions import ProtocolError, TransportError
from .models import Chunk, RemotePart, SignaturePair, UploaderSettings
from .source import ByteRange, UploadSource
from .transport import HttpRequest, HttpResponse

logger = logging.getLogger(__name__)


def _local_name(tag: str) -> str:
    """Drop the ``{namespace}`` prefix ElementTree puts on qualified tags."""
    return tag.rsplit("}", 1)[-1]


def _parse_xml(text: str, phase: str) -> ET.Element:
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise ProtocolError(f"Malformed XML response: {e}", phase=phase)
    if _local_name(root.tag) == "Error":
        code = _find_text(root, "Code") or "unknown"
        message = _find_text(root, "Message") or ""
        raise TransportError(f"Storage returned error {code}: {message}".strip())
    return root


def _find_text(element: ET.Element, name: str) -> Optional[str]:
    for child in element.iter():
        if _local_name(child.tag) == name:
            return (child.text or "").strip()
    return None


def _children(element: ET.Element, name: str) -> List[ET.Element]:
    return [child for child in element.iter() if _local_name(child.tag) == name]


def strip_etag(value: Optional[str]) -> Optional[str]:
    """Remove the quote characters S3 wraps around ETags."""
    if value is None:
        return None
    stripped = value.strip().strip('"')
    return stripped or None


def parse_upload_id(response: HttpResponse) -> str:
    upload_id = _find_text(_parse_xml(response.text, "initiate"), "UploadId")
    if not upload_id:
        raise ProtocolError("Initiate response did not contain an UploadId", phase="initiate")
    return upload_id


def extract_etag(response: HttpResponse) -> Optional[str]:
    return strip_etag(response.headers.get("ETag"))


def parse_parts_page(response: HttpResponse) -> Tuple[List[RemotePart], Optional[str]]:
    """Read one page of a list-parts response.

    Returns the page's parts and the ``NextPartNumberMarker`` to request the
    following page with, or None when the listing is not truncated.
    """
    root = _parse_xml(response.text, "list_parts")
    parts = []
    for element in _children(root, "Part"):
        number = _find_text(element, "PartNumber")
        etag = _find_text(element, "ETag")
        size = _find_text(element, "Size")
        if number is None or etag is None or size is None:
            raise ProtocolError("List parts response has an incomplete Part", phase="list_parts")
        try:
            parts.append(
                RemotePart(part_number=int(number), etag=strip_etag(etag) or "", size=int(size))
            )
        except ValueError as e:
            raise ProtocolError(f"List parts response has an invalid Part: {e}", phase="list_parts")

    if (_find_text(root, "IsTruncated") or "").lower() != "true":
        return parts, None
    marker = _find_text(root, "NextPartNumberMarker")
    if not marker:
        raise ProtocolError(
            "Truncated list parts response has no NextPartNumberMarker", phase="list_parts"
        )
    return parts, marker


def parse_parts(response: HttpResponse) -> List[RemotePart]:
    """Read every ``Part`` element of a single list-parts page."""
    return parse_parts_page(response)[0]


def parse_location(response: HttpResponse) -> str:
    location = _find_text(_parse_xml(response.text, "complete"), "Location")
    if not location:
        raise ProtocolError("Complete response did not contain a Location", phase="complete")
    return location


def build_complete_body(etags: Mapping[int, str]) -> str:
    """Render the ``CompleteMultipartUpload`` document in ascending part order."""
    root = ET.Element("CompleteMultipartUpload")
    for part_number in sorted(etags):
        part = ET.SubElement(root, "Part")
        ET.SubElement(part, "PartNumber").text = str(part_number)
        ET.SubElement(part, "ETag").text = etags[part_number]
    return ET.tostring(root, encoding="unicode")


class StorageRequests:
    """Builds the four signed requests of a multipart upload against one object."""

    def __init__(
        self,
        settings: UploaderSettings,
        *,
        key: str,
        filename: str,
        content_type: str,
    ) -> None:
        self.settings = settings
        self.key = key
        self.filename = filename
        self.content_type = content_type

    @property
    def object_url(self) -> str:
        return f"{self.settings.storage_host}/{self.key.lstrip('/')}"

    def _signed_headers(self, signature: SignaturePair) -> Dict[str, str]:
        return {
            "Authorization": f"AWS {self.settings.access_key_id}:{signature.signature}",
            "x-amz-date": signature.date,
        }

    @property
    def _disposition(self) -> str:
        return f"attachment; filename={self.filename}"

    def initiate(self, signature: SignaturePair) -> HttpRequest:
        headers = self._signed_headers(signature)
        headers["x-amz-acl"] = self.settings.acl
        headers["Content-Disposition"] = self._disposition
        if self.settings.encrypted:
            headers["x-amz-server-side-encryption"] = "AES256"
        return HttpRequest(method="POST", url=f"{self.object_url}?uploads", headers=headers)

    def upload_part(self, chunk: Chunk, upload_id: str, source: UploadSource) -> HttpRequest:
        if chunk.signature is None:
            raise ProtocolError(f"No signature for part {chunk.part_number}", phase="upload_part")
        headers = self._signed_headers(chunk.signature)
        headers["Content-Disposition"] = self._disposition
        headers["Content-Type"] = self.content_type
        return HttpRequest(
            method="PUT",
            url=self.object_url,
            params={"uploadId": upload_id, "partNumber": chunk.part_number},
            headers=headers,
            body=ByteRange(source, chunk.start, chunk.end),
        )

    def list_parts(
        self, signature: SignaturePair, upload_id: str, marker: Optional[str] = None
    ) -> HttpRequest:
        params = {"uploadId": upload_id}
        if marker:
            params["part-number-marker"] = marker
        return HttpRequest(
            method="GET",
            url=self.object_url,
            params=params,
            headers=self._signed_headers(signature),
        )

    def complete(
        self, signature: SignaturePair, upload_id: str, etags: Mapping[int, str]
    ) -> HttpRequest:
        headers = self._signed_headers(signature)
        headers["Content-Type"] = self.content_type
        headers["Content-Disposition"] = self._disposition
        return HttpRequest(
            method="POST",
            url=self.object_url,
            params={"uploadId": upload_id},
            headers=headers,
            body=build_complete_body(etags),
        )
