"""Uploaded file storage.

S3 when AWS_S3_BUCKET is configured, otherwise a local upload folder. Stored
files are addressed by a relative path (``<owner>/<timestamp>_<name>``) which
is what a note keeps as its file reference.
"""
from __future__ import annotations

import logging
import os
import re
import time
from typing import Any, Mapping

import boto3

logger = logging.getLogger(__name__)


class StorageError(Exception):
    pass


def safe_filename(filename: str) -> str:
    base = os.path.basename((filename or "").strip()) or "upload.bin"
    return re.sub(r"[^a-zA-Z0-9._-]", "_", base)


def make_upload_path(owner_id: str, filename: str) -> str:
    safe_owner = re.sub(r"[^a-zA-Z0-9_-]", "", str(owner_id or "anon")) or "anon"
    return f"{safe_owner}/{int(time.time() * 1000)}_{safe_filename(filename)}"


class UploadStore:
    """Minimal blob store interface used by notes and the extraction pipeline."""

    def save(self, owner_id: str, filename: str, data: bytes, content_type: str = "") -> str:
        raise NotImplementedError

    def read(self, path: str) -> bytes:
        raise NotImplementedError

    def delete(self, path: str) -> None:
        raise NotImplementedError


class LocalUploadStore(UploadStore):
    def __init__(self, root: str):
        self.root = os.path.abspath(root)

    def _full_path(self, path: str) -> str:
        full = os.path.abspath(os.path.join(self.root, path))
        if not full.startswith(self.root + os.sep):
            raise StorageError(f"Invalid storage path: {path}")
        return full

    def save(self, owner_id, filename, data, content_type=""):
        path = make_upload_path(owner_id, filename)
        full = self._full_path(path)
        try:
            os.makedirs(os.path.dirname(full), exist_ok=True)
            with open(full, "wb") as f:
                f.write(data)
        except OSError as e:
            raise StorageError(f"Failed to store upload: {e}") from e
        return path

    def read(self, path):
        try:
            with open(self._full_path(path), "rb") as f:
                return f.read()
        except OSError as e:
            raise StorageError(f"Failed to read upload: {e}") from e

    def delete(self, path):
        try:
            os.remove(self._full_path(path))
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(f"Failed to delete upload: {e}") from e


class S3UploadStore(UploadStore):
    def __init__(self, bucket: str, region: str = "", prefix: str = "uploads/notes/"):
        self.bucket = bucket
        self.prefix = prefix if prefix.endswith("/") else prefix + "/"
        self.s3 = boto3.client("s3", region_name=region or None)

    def _key(self, path: str) -> str:
        return f"{self.prefix}{path}"

    def save(self, owner_id, filename, data, content_type=""):
        path = make_upload_path(owner_id, filename)
        extra = {"ContentType": content_type} if content_type else {}
        try:
            self.s3.put_object(Bucket=self.bucket, Key=self._key(path), Body=data, **extra)
        except Exception as e:
            raise StorageError(f"S3 upload failed: {e}") from e
        return path

    def read(self, path):
        try:
            obj = self.s3.get_object(Bucket=self.bucket, Key=self._key(path))
            return obj["Body"].read()
        except Exception as e:
            raise StorageError(f"S3 read failed: {e}") from e

    def delete(self, path):
        try:
            self.s3.delete_object(Bucket=self.bucket, Key=self._key(path))
        except Exception as e:
            raise StorageError(f"S3 delete failed: {e}") from e


def create_upload_store(config: Mapping[str, Any]) -> UploadStore:
    bucket = (config.get("AWS_S3_BUCKET") or "").strip()
    if bucket:
        logger.info("Using S3 upload store (bucket=%s)", bucket)
        return S3UploadStore(bucket, (config.get("AWS_REGION") or "").strip())
    return LocalUploadStore(config.get("UPLOAD_FOLDER") or "/tmp/studyflow_uploads")
