"""Blob storage client for user-uploaded images."""

import logging
import re
from urllib.parse import unquote, urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from src.config import STORAGE_CONFIG

logger = logging.getLogger(__name__)

# Download URLs of the form https://host/v0/b/<bucket>/o/<encoded path>?alt=media
_OBJECT_PATH_PATTERN = re.compile(r"/o/(.+?)(?:\?|$)")

_NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")


class BlobStoreError(Exception):
    pass


class BlobNotFoundError(BlobStoreError):
    pass


class BlobStore:
    def __init__(self, config: dict | None = None, client=None):
        self.config = {**STORAGE_CONFIG, **(config or {})}
        self.bucket = self.config["bucket"]
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                region_name=self.config["region"],
                endpoint_url=self.config["endpoint_url"],
            )
        return self._client

    def is_managed_url(self, url) -> bool:
        """True if the URL points at an object in the managed bucket."""
        return isinstance(url, str) and self.config["url_marker"] in url

    @staticmethod
    def object_path_from_url(url: str) -> str | None:
        """Extract the object path encoded in a storage URL."""
        decoded = unquote(url)
        match = _OBJECT_PATH_PATTERN.search(decoded)
        if match:
            return match.group(1)
        path = urlparse(decoded).path.lstrip("/")
        return path or None

    def delete(self, path: str) -> None:
        """
        Delete an object.

        Raises:
            BlobNotFoundError: If the object does not exist
            BlobStoreError: For any other failure
        """
        try:
            self.client.head_object(Bucket=self.bucket, Key=path)
            self.client.delete_object(Bucket=self.bucket, Key=path)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                raise BlobNotFoundError(path) from e
            raise BlobStoreError(f"Failed to delete {path}: {e}") from e
        except BotoCoreError as e:
            raise BlobStoreError(f"Failed to delete {path}: {e}") from e
        logger.info(f"Storage file deleted: {path}")

    def delete_url(self, url: str) -> bool:
        """
        Best-effort deletion of the object behind a URL.

        A missing object counts as deleted; other failures are logged.
        Returns True when the object is gone afterwards.
        """
        path = self.object_path_from_url(url)
        if not path:
            logger.warning(f"Could not extract storage path from {url}")
            return False
        try:
            self.delete(path)
        except BlobNotFoundError:
            logger.info(f"Storage file already gone: {path}")
        except BlobStoreError as e:
            logger.warning(f"Failed to delete storage file {url}: {e}")
            return False
        return True
