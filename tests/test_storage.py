import xml.etree.ElementTree as ET

import pytest

from signed_s3_uploader.core.exceptions import ProtocolError, TransportError
from signed_s3_uploader.core.models import Chunk, SignaturePair, UploaderSettings
from signed_s3_uploader.core.source import BytesSource, ByteRange
from signed_s3_uploader.core.storage import (
    StorageRequests,
    build_complete_body,
    extract_etag,
    parse_location,
    parse_parts,
    parse_parts_page,
    parse_upload_id,
    strip_etag,
)
from signed_s3_uploader.core.transport import HttpResponse

NS = "http://s3.amazonaws.com/doc/2006-03-01/"
SIGNATURE = SignaturePair(signature="abc123", date="Mon, 01 Jan 2024 00:00:00 GMT")


def xml(text):
    return HttpResponse(status_code=200, content=text.encode())


@pytest.fixture
def settings():
    return UploaderSettings(
        signing_backend_url="https://signer.example.com",
        bucket="my-bucket",
        access_key_id="AKIDEXAMPLE",
    )


@pytest.fixture
def storage(settings):
    return StorageRequests(
        settings, key="/my-bucket/123_video.mp4", filename="video.mp4", content_type="video/mp4"
    )


class TestCompleteBody:
    def test_parts_in_ascending_order(self):
        root = ET.fromstring(build_complete_body({2: "etag-b", 1: "etag-a"}))

        assert root.tag == "CompleteMultipartUpload"
        parts = root.findall("Part")
        assert [(p.findtext("PartNumber"), p.findtext("ETag")) for p in parts] == [
            ("1", "etag-a"),
            ("2", "etag-b"),
        ]


class TestParsers:
    def test_upload_id_from_namespaced_document(self):
        response = xml(
            f'<InitiateMultipartUploadResult xmlns="{NS}"><Bucket>b</Bucket><Key>k</Key>'
            f"<UploadId>VXBsb2FkIElE</UploadId></InitiateMultipartUploadResult>"
        )

        assert parse_upload_id(response) == "VXBsb2FkIElE"

    def test_missing_upload_id_is_protocol_error(self):
        with pytest.raises(ProtocolError):
            parse_upload_id(xml("<InitiateMultipartUploadResult/>"))

    def test_malformed_xml_is_protocol_error(self):
        with pytest.raises(ProtocolError):
            parse_upload_id(xml("<not-closed"))

    def test_error_document_is_transport_error(self):
        with pytest.raises(TransportError, match="SlowDown"):
            parse_location(
                xml("<Error><Code>SlowDown</Code><Message>Reduce your rate</Message></Error>")
            )

    def test_parts_with_quoted_etags(self):
        response = xml(
            f'<ListPartsResult xmlns="{NS}"><UploadId>u</UploadId>'
            f"<Part><PartNumber>1</PartNumber><ETag>&quot;aaa&quot;</ETag><Size>1000</Size></Part>"
            f"<Part><PartNumber>2</PartNumber><ETag>&quot;bbb&quot;</ETag><Size>500</Size></Part>"
            f"</ListPartsResult>"
        )

        parts = parse_parts(response)

        assert [(p.part_number, p.etag, p.size) for p in parts] == [
            (1, "aaa", 1000),
            (2, "bbb", 500),
        ]

    def test_empty_part_listing(self):
        assert parse_parts(xml(f'<ListPartsResult xmlns="{NS}"></ListPartsResult>')) == []

    def test_incomplete_part_is_protocol_error(self):
        with pytest.raises(ProtocolError):
            parse_parts(
                xml("<ListPartsResult><Part><PartNumber>1</PartNumber></Part></ListPartsResult>")
            )

    def test_truncated_listing_returns_next_marker(self):
        response = xml(
            f'<ListPartsResult xmlns="{NS}"><IsTruncated>true</IsTruncated>'
            f"<NextPartNumberMarker>1</NextPartNumberMarker>"
            f"<Part><PartNumber>1</PartNumber><ETag>&quot;aaa&quot;</ETag><Size>1000</Size></Part>"
            f"</ListPartsResult>"
        )

        parts, marker = parse_parts_page(response)

        assert [p.part_number for p in parts] == [1]
        assert marker == "1"

    def test_complete_listing_has_no_marker(self):
        response = xml(
            f'<ListPartsResult xmlns="{NS}"><IsTruncated>false</IsTruncated></ListPartsResult>'
        )

        assert parse_parts_page(response) == ([], None)

    def test_truncated_listing_without_marker_is_protocol_error(self):
        with pytest.raises(ProtocolError):
            parse_parts_page(
                xml("<ListPartsResult><IsTruncated>true</IsTruncated></ListPartsResult>")
            )

    def test_location(self):
        response = xml(
            f'<CompleteMultipartUploadResult xmlns="{NS}">'
            f"<Location>https://my-bucket.s3.amazonaws.com/video.mp4</Location>"
            f"</CompleteMultipartUploadResult>"
        )

        assert parse_location(response) == "https://my-bucket.s3.amazonaws.com/video.mp4"

    def test_missing_location_is_protocol_error(self):
        with pytest.raises(ProtocolError):
            parse_location(xml("<CompleteMultipartUploadResult/>"))

    @pytest.mark.parametrize(
        "raw,expected", [('"abc"', "abc"), ("abc", "abc"), ('""', None), (None, None)]
    )
    def test_strip_etag(self, raw, expected):
        assert strip_etag(raw) == expected

    def test_extract_etag_from_headers(self):
        response = HttpResponse(status_code=200, headers={"ETag": '"abc"'})
        assert extract_etag(response) == "abc"
        assert extract_etag(HttpResponse(status_code=200, headers={})) is None


class TestStorageRequests:
    def test_object_url_joins_host_and_key(self, storage):
        assert storage.object_url == "http://my-bucket.s3.amazonaws.com/my-bucket/123_video.mp4"

    def test_custom_host(self, settings):
        custom = settings.model_copy(update={"host": "https://storage.example.com"})
        requests = StorageRequests(custom, key="k.bin", filename="k.bin", content_type="x/y")

        assert requests.object_url == "https://storage.example.com/k.bin"

    def test_initiate(self, storage):
        request = storage.initiate(SIGNATURE)

        assert request.method == "POST"
        assert request.url.endswith("/my-bucket/123_video.mp4?uploads")
        assert request.headers["Authorization"] == "AWS AKIDEXAMPLE:abc123"
        assert request.headers["x-amz-date"] == SIGNATURE.date
        assert request.headers["x-amz-acl"] == "public-read"
        assert request.headers["Content-Disposition"] == "attachment; filename=video.mp4"
        assert "x-amz-server-side-encryption" not in request.headers

    def test_initiate_encrypted(self, settings):
        encrypted = settings.model_copy(update={"encrypted": True})
        request = StorageRequests(
            encrypted, key="k", filename="f", content_type="x/y"
        ).initiate(SIGNATURE)

        assert request.headers["x-amz-server-side-encryption"] == "AES256"

    def test_upload_part(self, storage):
        source = BytesSource(b"x" * 2500, "video.mp4")
        chunk = Chunk(part_number=2, start=1000, end=1999, signature=SIGNATURE)

        request = storage.upload_part(chunk, "upload-1", source)

        assert request.method == "PUT"
        assert request.params == {"uploadId": "upload-1", "partNumber": 2}
        assert request.headers["Content-Type"] == "video/mp4"
        assert request.body == ByteRange(source, 1000, 1999)
        assert len(request.body) == 1000

    def test_upload_part_without_signature(self, storage):
        chunk = Chunk(part_number=1, start=0, end=9)

        with pytest.raises(ProtocolError):
            storage.upload_part(chunk, "upload-1", BytesSource(b"x" * 10, "f"))

    def test_list_parts(self, storage):
        request = storage.list_parts(SIGNATURE, "upload-1")

        assert request.method == "GET"
        assert request.params == {"uploadId": "upload-1"}
        assert request.body is None

    def test_list_parts_from_marker(self, storage):
        request = storage.list_parts(SIGNATURE, "upload-1", "1000")

        assert request.params == {"uploadId": "upload-1", "part-number-marker": "1000"}

    def test_complete(self, storage):
        request = storage.complete(SIGNATURE, "upload-1", {1: "a", 2: "b"})

        assert request.method == "POST"
        assert request.params == {"uploadId": "upload-1"}
        assert "<PartNumber>2</PartNumber><ETag>b</ETag>" in request.body
