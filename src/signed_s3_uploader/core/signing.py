"""Client for the signing backend that authorizes each multipart-upload request."""

import logging
from typing import Iterable

from pydantic import ValidationError as PydanticValidationError

from .exceptions import ProtocolError
from .models import AllSignaturesResponse, SignaturePair, UploaderSettings
from .transport import HttpRequest, HttpResponse

logger = logging.getLogger(__name__)


class SignatureClient:
    """Builds signing-backend requests and validates their responses.

    The backend is expected to answer ``GET /get_init_signature`` with::

        {"signature": "...", "date": "..."}

    and ``GET /get_all_signatures`` with::

        {
            "chunk_signatures": {"1": {"signature": "...", "date": "..."}, ...},
            "complete_signature": {"signature": "...", "date": "..."},
            "list_signature": {"signature": "...", "date": "..."}
        }

    where the keys of ``chunk_signatures`` are part numbers.
    """

    def __init__(
        self,
        settings: UploaderSettings,
        *,
        key: str,
        filename: str,
        file_size: int,
        content_type: str,
    ) -> None:
        self.settings = settings
        self.key = key
        self.filename = filename
        self.file_size = file_size
        self.content_type = content_type

    def init_signature_request(self) -> HttpRequest:
        return HttpRequest(
            method="GET",
            url=f"{self.settings.signing_backend_url}/get_init_signature",
            params={
                "key": self.key,
                "filename": self.filename,
                "filesize": self.file_size,
                "mime_type": self.content_type,
                "bucket": self.settings.bucket,
                "acl": self.settings.acl,
                "encrypted": str(self.settings.encrypted).lower(),
            },
        )

    def all_signatures_request(self, upload_id: str, total_chunks: int) -> HttpRequest:
        return HttpRequest(
            method="GET",
            url=f"{self.settings.signing_backend_url}/get_all_signatures",
            params={
                "upload_id": upload_id,
                "total_chunks": total_chunks,
                "mime_type": self.content_type,
                "bucket": self.settings.bucket,
                "key": self.key,
            },
        )

    @staticmethod
    def parse_init_signature(response: HttpResponse) -> SignaturePair:
        try:
            return SignaturePair.model_validate(response.json())
        except (ValueError, PydanticValidationError) as e:
            raise ProtocolError(f"Invalid init signature response: {e}", phase="init_signature")

    @staticmethod
    def parse_all_signatures(
        response: HttpResponse, part_numbers: Iterable[int]
    ) -> AllSignaturesResponse:
        """Parse the signature bundle and check that every part has a signature."""
        try:
            signatures = AllSignaturesResponse.model_validate(response.json())
        except (ValueError, PydanticValidationError) as e:
            raise ProtocolError(f"Invalid signatures response: {e}", phase="all_signatures")

        missing = sorted(set(part_numbers) - set(signatures.chunk_signatures))
        if missing:
            raise ProtocolError(
                f"Signing backend returned no signature for parts {missing}",
                phase="all_signatures",
            )
        return signatures
