#!/usr/bin/env python3
"""
Basic usage examples for the signed S3 uploader.

This script demonstrates the most common operations:
- Uploading a file with the one-shot helper
- Driving an upload with lifecycle callbacks
- Cancelling an upload
- Error handling
"""

import os
import tempfile
import threading

from signed_s3_uploader import (
    CallbackNotifier,
    ConfigurationError,
    SignedMultipartUploader,
    UploadFailedError,
    UploadStatus,
    load_settings,
    upload_file,
)
from signed_s3_uploader.core.models import MB


def main():
    """Demonstrate basic upload operations."""

    backend = os.getenv("S3_UPLOAD_SIGNING_BACKEND")
    bucket = os.getenv("S3_UPLOAD_BUCKET")
    access_key_id = os.getenv("S3_UPLOAD_ACCESS_KEY_ID")
    if not (backend and bucket and access_key_id):
        print("Set S3_UPLOAD_SIGNING_BACKEND, S3_UPLOAD_BUCKET and S3_UPLOAD_ACCESS_KEY_ID first")
        return

    print("\n" + "=" * 50)
    print("SIGNED MULTIPART UPLOADS")
    print("=" * 50)

    with tempfile.NamedTemporaryFile(suffix=".bin", delete=False) as f:
        f.write(os.urandom(12 * MB))
        test_file_path = f.name

    try:
        # 1. One call, blocking until the store returns a location
        print("\n1. Uploading with upload_file()...")
        try:
            location = upload_file(
                test_file_path,
                signing_backend_url=backend,
                bucket=bucket,
                access_key_id=access_key_id,
                chunk_size=5 * MB,
            )
            print(f"   Uploaded to {location}")
        except UploadFailedError as e:
            print(f"   Upload failed: {e}")

        # 2. Callbacks for progress and retries
        print("\n2. Uploading with callbacks...")
        settings = load_settings(
            signing_backend_url=backend,
            bucket=bucket,
            access_key_id=access_key_id,
            chunk_size=5 * MB,
        )
        notifier = CallbackNotifier(
            on_progress=lambda loaded, total: print(f"   {loaded * 100 // total}%", end="\r"),
            on_retry=lambda attempt: print(f"   retry #{attempt}"),
            on_complete=lambda location: print(f"\n   Uploaded to {location}"),
            on_error=lambda message: print(f"\n   Failed: {message}"),
        )
        with SignedMultipartUploader(test_file_path, settings, notifier=notifier) as uploader:
            uploader.start_upload()
            uploader.wait()

        # 3. Cancelling a running upload
        print("\n3. Cancelling an upload...")
        with SignedMultipartUploader(test_file_path, settings) as uploader:
            uploader.start_upload()
            threading.Timer(0.5, uploader.cancel_upload).start()
            uploader.wait()
            print(f"   Final status: {uploader.status.value}")
            if uploader.status is UploadStatus.CANCELLED:
                print("   Upload cancelled before completion")

        # 4. Configuration errors are reported before anything is sent
        print("\n4. Demonstrating error handling...")
        try:
            load_settings(
                signing_backend_url=backend,
                bucket=bucket,
                access_key_id=access_key_id,
                chunk_size=0,
            )
        except ConfigurationError as e:
            print(f"   Invalid settings rejected: {type(e).__name__}")

    finally:
        os.unlink(test_file_path)

    print("\n" + "=" * 50)
    print("DEMO COMPLETED")
    print("=" * 50)
    print("\nNext steps:")
    print("- Try the CLI: signed-s3-upload upload <file>")
    print("- Preview the part layout: signed-s3-upload plan <file>")


if __name__ == "__main__":
    main()
