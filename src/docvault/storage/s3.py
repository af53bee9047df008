import re
from typing import Optional
from urllib.parse import quote, unquote, urlparse

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from docvault.errors import DownloadError, InvalidLocatorError, MoveError, UploadError
from docvault.storage.backend import (
    BackendKind,
    StorageLocator,
    UploadRequest,
    ensure_relative,
)

BUCKET_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9.-]{1,61}[a-z0-9]$")
_VIRTUAL_HOST_PATTERN = re.compile(r"^(?P<bucket>.+)\.s3(?:[.-](?P<region>[a-z0-9.-]+))?\.amazonaws\.com$")


def _validate_bucket(bucket: str, url: str) -> str:
    if not BUCKET_NAME_PATTERN.match(bucket) or ".." in bucket:
        raise InvalidLocatorError(f"Invalid bucket name {bucket!r} in {url}")
    return bucket


def parse_s3_url(url: str) -> tuple[str, str]:
    """Split an object URL into ``(bucket, key)``.

    Accepts ``s3://bucket/key``, virtual-hosted
    ``https://bucket.s3.region.amazonaws.com/key`` (including dualstack hosts)
    and path-style ``https://s3.region.amazonaws.com/bucket/key`` URLs. Any
    other https host is read path-style, which covers S3 compatible endpoints.
    """
    if not url:
        raise InvalidLocatorError("Object URL is required")

    parsed = urlparse(url)
    if parsed.scheme == "s3":
        bucket = parsed.netloc
        key = parsed.path.lstrip("/")
        return _validate_bucket(bucket, url), key

    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise InvalidLocatorError(f"Unrecognized object URL scheme: {url}")

    host = parsed.hostname
    path = unquote(parsed.path.lstrip("/"))

    virtual = _VIRTUAL_HOST_PATTERN.match(host)
    if virtual:
        return _validate_bucket(virtual.group("bucket"), url), path

    bucket, _, key = path.partition("/")
    return _validate_bucket(bucket, url), key


class S3Storage:
    kind = BackendKind.OBJECT_STORE

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        prefix: str = "",
        endpoint_url: Optional[str] = None,
    ):
        self.bucket = bucket
        self.region = region
        self.prefix = prefix.strip("/")
        self.endpoint_url = endpoint_url
        self._session = aioboto3.Session()

    def _get_client_kwargs(self) -> dict:
        kwargs = {"region_name": self.region}
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url
        return kwargs

    def resolve(self, relative_path: str) -> str:
        relative_path = ensure_relative(relative_path)
        if not self.prefix:
            return relative_path
        return f"{self.prefix}/{relative_path}"

    def relative_key(self, key: str) -> str:
        if self.prefix and key.startswith(f"{self.prefix}/"):
            return key[len(self.prefix) + 1 :]
        return key

    def object_url(self, key: str) -> str:
        quoted = quote(key)
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{quoted}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{quoted}"

    def owns_url(self, url: str) -> bool:
        bucket, _ = parse_s3_url(url)
        return bucket == self.bucket

    def relative_path_from_url(self, url: str) -> str:
        bucket, key = parse_s3_url(url)
        if bucket != self.bucket:
            raise InvalidLocatorError(
                f"{url} is in bucket {bucket}, expected {self.bucket}"
            )
        return self.relative_key(key)

    async def upload(self, request: UploadRequest) -> StorageLocator:
        key = self.resolve(request.relative_path)
        try:
            async with self._session.client("s3", **self._get_client_kwargs()) as s3:
                await s3.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=request.payload,
                    ContentType=request.content_type,
                )
        except (ClientError, BotoCoreError) as e:
            raise UploadError(f"S3 upload of {key} failed: {e}") from e

        logger.info(f"Uploaded {request.relative_path} to s3://{self.bucket}/{key}")
        return StorageLocator(
            backend_kind=self.kind,
            relative_path=request.relative_path,
            absolute_uri=self.object_url(key),
            size_hint=len(request.payload),
        )

    async def download(self, relative_path: str) -> bytes:
        key = self.resolve(relative_path)
        try:
            async with self._session.client("s3", **self._get_client_kwargs()) as s3:
                response = await s3.get_object(Bucket=self.bucket, Key=key)
                async with response["Body"] as stream:
                    content = await stream.read()
        except (ClientError, BotoCoreError) as e:
            raise DownloadError(f"S3 download of {key} failed: {e}") from e

        if not content:
            raise DownloadError(f"S3 object {key} is empty")
        logger.debug(f"Downloaded s3://{self.bucket}/{key} ({len(content)} bytes)")
        return content

    async def copy(self, source_path: str, destination_path: str) -> None:
        source_key = self.resolve(source_path)
        destination_key = self.resolve(destination_path)
        try:
            async with self._session.client("s3", **self._get_client_kwargs()) as s3:
                await s3.copy_object(
                    Bucket=self.bucket,
                    CopySource={"Bucket": self.bucket, "Key": source_key},
                    Key=destination_key,
                )
        except (ClientError, BotoCoreError) as e:
            raise MoveError(f"S3 copy {source_key} -> {destination_key} failed: {e}") from e
        logger.debug(f"Copied s3://{self.bucket}/{source_key} to {destination_key}")

    async def delete(self, relative_path: str) -> None:
        key = self.resolve(relative_path)
        try:
            async with self._session.client("s3", **self._get_client_kwargs()) as s3:
                await s3.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise MoveError(f"S3 delete of {key} failed: {e}") from e
        logger.debug(f"Deleted s3://{self.bucket}/{key}")

    async def list(self, prefix: str) -> list[str]:
        key_prefix = self.resolve(prefix) if prefix else self.prefix
        paths = []
        try:
            async with self._session.client("s3", **self._get_client_kwargs()) as s3:
                paginator = s3.get_paginator("list_objects_v2")
                async for page in paginator.paginate(
                    Bucket=self.bucket, Prefix=key_prefix
                ):
                    for obj in page.get("Contents", []):
                        paths.append(self.relative_key(obj["Key"]))
        except (ClientError, BotoCoreError) as e:
            raise DownloadError(f"S3 listing of {key_prefix} failed: {e}") from e
        return paths
