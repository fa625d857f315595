"""
Pydantic models for the signed S3 uploader.

These models validate the uploader configuration and the JSON/XML payloads
exchanged with the signing backend and the object store.
"""

import mimetypes
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ConfigurationError

MB = 1024 * 1024
GB = 1024 * MB

DEFAULT_CHUNK_SIZE = 10 * MB
DEFAULT_MAX_FILE_SIZE = 5 * GB
DEFAULT_CONTENT_TYPE = "application/octet-stream"


class UploadStatus(str, Enum):
    """Upload status enumeration."""

    READY = "ready"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadStatus.COMPLETED, UploadStatus.CANCELLED, UploadStatus.FAILED)


# Configuration Models
class UploaderSettings(BaseModel):
    """Immutable configuration for one upload."""

    model_config = ConfigDict(frozen=True)

    signing_backend_url: str = Field(
        ...,
        min_length=1,
        description="Base URL of the backend that issues request signatures",
        examples=["https://uploads.example.com/signatures"],
    )
    bucket: str = Field(..., min_length=1, description="Target bucket name")
    access_key_id: str = Field(
        ..., min_length=1, description="Public access key id placed in Authorization headers"
    )
    host: Optional[str] = Field(
        None, description="Storage host (defaults to the bucket's virtual-hosted S3 URL)"
    )
    key: Optional[str] = Field(
        None, description="Object key (defaults to /<bucket>/<epochMillis>_<filename>)"
    )
    content_type: Optional[str] = Field(
        None, description="MIME type sent with the parts (guessed from the filename if unset)"
    )
    chunk_size: int = Field(
        DEFAULT_CHUNK_SIZE, gt=0, description="Chunk size for multipart upload in bytes"
    )
    encrypted: bool = Field(False, description="Request AES256 server-side encryption")
    max_retries: int = Field(5, ge=0, description="Retries allowed per operation")
    max_file_size: int = Field(
        DEFAULT_MAX_FILE_SIZE, gt=0, description="Largest file accepted in bytes"
    )
    acl: str = Field("public-read", description="Value passed through as x-amz-acl")
    retry_base_delay: float = Field(
        2.0, ge=0, description="Seconds multiplied by the attempt number between retries"
    )
    request_timeout: float = Field(60.0, gt=0, description="Per-request timeout in seconds")
    log: bool = Field(False, description="Log every request at INFO level")

    @field_validator("signing_backend_url", "host")
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        """Normalize base URLs so paths can be appended with a single slash."""
        if v is None:
            return v
        return v.rstrip("/")

    @property
    def storage_host(self) -> str:
        return self.host or f"http://{self.bucket}.s3.amazonaws.com"

    def resolve_content_type(self, filename: str) -> str:
        """Return the configured content type or one guessed from ``filename``."""
        if self.content_type:
            return self.content_type
        guessed, _ = mimetypes.guess_type(filename)
        return guessed or DEFAULT_CONTENT_TYPE

    def resolve_key(self, filename: str, epoch_millis: int) -> str:
        """Return the configured object key or the timestamped default."""
        if self.key:
            return self.key
        return f"/{self.bucket}/{epoch_millis}_{filename}"


# Signing backend responses
class SignaturePair(BaseModel):
    """A signature and the date it was computed for."""

    signature: str = Field(..., min_length=1)
    date: str = Field(..., min_length=1)


class AllSignaturesResponse(BaseModel):
    """Signatures for every part plus the list and complete calls."""

    chunk_signatures: Dict[int, SignaturePair]
    complete_signature: SignaturePair
    list_signature: SignaturePair


# Object store responses
class RemotePart(BaseModel):
    """One ``Part`` element from a list-parts response."""

    model_config = ConfigDict(frozen=True)

    part_number: int
    etag: str
    size: int


@dataclass
class Chunk:
    """A contiguous byte range of the source file, uploaded as one part.

    ``end`` is inclusive, so the chunk carries ``end - start + 1`` bytes.
    """

    part_number: int
    start: int
    end: int
    attempts: int = 0
    signature: Optional[SignaturePair] = None
    loaded: int = 0
    etag: Optional[str] = None

    @property
    def size(self) -> int:
        return self.end - self.start + 1


def load_settings(**values: Any) -> UploaderSettings:
    """Build settings, reporting invalid values as a :class:`ConfigurationError`."""
    try:
        return UploaderSettings(**values)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid uploader settings: {e}")
