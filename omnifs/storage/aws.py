from __future__ import annotations

import logging

from contextlib import AsyncExitStack
from typing import AsyncIterator

import aioboto3

from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .abstract import LIST_PAGE_SIZE, AbstractStorage, Content, to_timestamp
from .attributes import Attribute, DirectoryAttribute, FileAttribute, normalize_path
from .errors import StorageError, TransientError
from .options import AwsOptions
from .stream import AsyncReadStream, ReadStream

logger = logging.getLogger(__name__)

#-----------------------------------------------------------------------------

class AwsStorage(AbstractStorage):
    """
    AWS S3 storage implementation

    A client is opened from the shared aioboto3 session for every operation.
    With an endpoint configured, requests and public URLs are path-style so
    S3-compatible services work as well.
    """

    def __init__(self, options: AwsOptions):
        super().__init__(options)
        self._require_options("bucket")

        self.region = options.region.strip() if options.region else ""
        self.endpoint = self._endpoint_url(options.endpoint)

        # Initialize aioboto3 session
        session_params = {
            "aws_access_key_id": options.access_key_id or None,
            "aws_secret_access_key": options.secret_access_key or None,
            "region_name": self.region or None
        }

        self.session = aioboto3.Session(**session_params)
        self._client_params = {
            "use_ssl": options.secure,
            "config": BotoConfig(
                connect_timeout     = options.timeout,
                read_timeout        = options.timeout,
                signature_version   = "s3v4",
                s3                  = {"addressing_style": "path" if self.endpoint else "virtual"}
            )
        }

        # Add endpoint URL if provided (for S3-compatible services)
        if self.endpoint:
            self._client_params["endpoint_url"] = self.endpoint

        logger.info(f"AWS S3 storage initialized: bucket={self.bucket}, region={self.region}, endpoint={self.endpoint}")

    def _client(self):
        return self.session.client("s3", **self._client_params)

    #-----------------------------------------------------

    async def info(self, path: str) -> Attribute:
        key = self._build_object_key(path)

        try:
            async with self._client() as client:
                response = await client.head_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise self._error("get info of", e, path) from e

        return FileAttribute(
            path            = normalize_path(path),
            visibility      = self.visibility,
            last_modified   = to_timestamp(response.get("LastModified")),
            file_size       = response.get("ContentLength", 0),
            mime_type       = response.get("ContentType", "")
        )

    async def read(self, path: str) -> ReadStream:
        key = self._build_object_key(path)

        # The client has to stay open until the body is consumed.
        stack = AsyncExitStack()
        try:
            client = await stack.enter_async_context(self._client())
            response = await client.get_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            await stack.aclose()
            raise self._error("read", e, path) from e

        return AsyncReadStream(
            response["Body"],
            path            = path,
            on_close        = stack.aclose,
            translate_error = self._translate_error
        )

    async def save(self, path: str, content: Content, mime_type: str = ""):
        key = self._build_object_key(path)
        mime_type = mime_type or self.get_content_type_from_filename(path)

        try:
            async with self._upload_source(content, seekable=False) as (fileobj, _):
                async with self._client() as client:
                    await client.upload_fileobj(
                        fileobj,
                        self.bucket,
                        key,
                        ExtraArgs = {"ContentType": mime_type}
                    )
        except (ClientError, BotoCoreError) as e:
            raise self._error("save", e, path) from e

        logger.info(f"File uploaded to S3 successfully: {key}")

    async def copy(self, src: str, dst: str):
        src_key = self._build_object_key(src)
        dst_key = self._build_object_key(dst)

        try:
            async with self._client() as client:
                await client.copy_object(
                    Bucket      = self.bucket,
                    Key         = dst_key,
                    CopySource  = {"Bucket": self.bucket, "Key": src_key}
                )
        except (ClientError, BotoCoreError) as e:
            raise self._error("copy", e, src) from e

        logger.info(f"File copied in S3: {src_key} -> {dst_key}")

    async def delete(self, path: str):
        key = self._build_object_key(path)

        try:
            async with self._client() as client:
                await client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise self._error("delete", e, path) from e

        logger.info(f"File deleted from S3 successfully: {key}")

    async def _delete_batch(self, paths: list[str]) -> dict[str, str]:
        keys = {self._build_object_key(p): p for p in paths}

        try:
            async with self._client() as client:
                response = await client.delete_objects(
                    Bucket = self.bucket,
                    Delete = {
                        "Objects": [{"Key": key} for key in keys],
                        "Quiet": False
                    }
                )
        except (ClientError, BotoCoreError) as e:
            raise self._error("delete objects in", e, self.bucket) from e

        failed = {}
        for error in response.get("Errors", []):
            path = keys.get(error.get("Key"), error.get("Key", ""))
            failed[path] = f"{error.get('Code', '')}: {error.get('Message', '')}"
        return failed

    #-----------------------------------------------------

    async def list(self, path: str = "", recursive: bool = False) -> AsyncIterator[Attribute]:
        prefix = self._dir_key(path)

        params = {
            "Bucket": self.bucket,
            "Prefix": prefix,
            "PaginationConfig": {"PageSize": LIST_PAGE_SIZE}
        }
        if not recursive:
            params["Delimiter"] = "/"

        try:
            async with self._client() as client:
                paginator = client.get_paginator("list_objects_v2")

                async for page in paginator.paginate(**params):
                    for common_prefix in page.get("CommonPrefixes", []):
                        yield DirectoryAttribute(
                            path        = self._strip_object_key(common_prefix["Prefix"]),
                            visibility  = self.visibility
                        )

                    for obj in page.get("Contents", []):
                        attribute = self._object_attribute(obj["Key"], prefix, obj.get("Size", 0), obj.get("LastModified"))
                        if attribute:
                            yield attribute

        except (ClientError, BotoCoreError) as e:
            raise self._error("list", e, path) from e

    def _object_attribute(self, key: str, prefix: str, size: int, last_modified) -> Attribute | None:
        """Attribute of a listed key, None for the directory marker itself"""
        if key == prefix:
            return None

        relative = self._strip_object_key(key)
        if key.endswith("/"):
            return DirectoryAttribute(
                path            = relative,
                visibility      = self.visibility,
                last_modified   = to_timestamp(last_modified)
            )

        return FileAttribute(
            path            = relative,
            visibility      = self.visibility,
            last_modified   = to_timestamp(last_modified),
            file_size       = int(size or 0),
            mime_type       = self.get_content_type_from_filename(relative)
        )

    #-----------------------------------------------------

    async def _sign_url(self, key: str, expires: int) -> str:
        async with self._client() as client:
            return await client.generate_presigned_url(
                "get_object",
                Params      = {"Bucket": self.bucket, "Key": key},
                ExpiresIn   = expires
            )

    def _url_bases(self) -> list[str]:
        scheme = self.scheme
        bases = []

        if self.cdn:
            bases.append(self._endpoint_url(self.cdn))

        if self.endpoint:
            bases.append(f"{self.endpoint}/{self.bucket}")
        else:
            if self.region:
                bases.append(f"{scheme}://{self.bucket}.s3.{self.region}.amazonaws.com")
            bases.append(f"{scheme}://{self.bucket}.s3.amazonaws.com")

        return bases

    async def _check_bucket(self):
        try:
            async with self._client() as client:
                await client.head_bucket(Bucket=self.bucket)
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, self.bucket) from e

    def _translate_error(self, e: Exception, path: str = "") -> StorageError:
        if isinstance(e, ClientError):
            error = e.response.get("Error", {})
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
            return self._error_from_status(status, error.get("Code", ""), error.get("Message", ""), path)

        if isinstance(e, BotoCoreError):
            return TransientError(str(e), path)

        return super()._translate_error(e, path)

#-----------------------------------------------------------------------------
