"""Programmatic shortcuts for one-shot uploads."""

from pathlib import Path
from typing import Any, Optional, Union

from .models import load_settings
from .notifications import UploadNotifier
from .source import BytesSource
from .transport import Transport
from .uploader import SignedMultipartUploader


def upload_file(
    local_path: Union[str, Path],
    *,
    signing_backend_url: str,
    bucket: str,
    access_key_id: str,
    notifier: Optional[UploadNotifier] = None,
    transport: Optional[Transport] = None,
    timeout: Optional[float] = None,
    **options: Any,
) -> str:
    """Upload a local file and return its location.

    Args:
        local_path: Local file path
        signing_backend_url: Base URL of the signing backend
        bucket: Target bucket
        access_key_id: Public access key id
        notifier: Optional receiver for progress and lifecycle events
        transport: HTTP transport (a ``requests`` based one by default)
        timeout: Seconds to wait before cancelling (no limit by default)
        **options: Any other :class:`UploaderSettings` field

    Returns:
        The object location reported by the store
    """
    settings = load_settings(
        signing_backend_url=signing_backend_url,
        bucket=bucket,
        access_key_id=access_key_id,
        **options,
    )
    with SignedMultipartUploader(
        local_path, settings, notifier=notifier, transport=transport
    ) as uploader:
        return uploader.upload(timeout)


def upload_bytes(
    data: bytes,
    filename: str,
    *,
    signing_backend_url: str,
    bucket: str,
    access_key_id: str,
    notifier: Optional[UploadNotifier] = None,
    transport: Optional[Transport] = None,
    timeout: Optional[float] = None,
    **options: Any,
) -> str:
    """Upload an in-memory payload under ``filename`` and return its location."""
    settings = load_settings(
        signing_backend_url=signing_backend_url,
        bucket=bucket,
        access_key_id=access_key_id,
        **options,
    )
    source = BytesSource(data, filename)
    with SignedMultipartUploader(
        source, settings, notifier=notifier, transport=transport
    ) as uploader:
        return uploader.upload(timeout)
