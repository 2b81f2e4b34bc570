from __future__ import annotations

import logging

from typing import Any, AsyncIterator

from qcloud_cos import CosConfig, CosS3Client
from qcloud_cos.cos_exception import CosClientError, CosServiceError

from .abstract import LIST_PAGE_SIZE, AbstractStorage, Content, to_timestamp
from .attributes import Attribute, DirectoryAttribute, FileAttribute, normalize_path
from .errors import NotFoundError, StorageConfigurationError, StorageError, TransientError
from .image import thumbnail_rule
from .options import TencentOptions
from .stream import ExecutorReadStream, ReadStream

logger = logging.getLogger(__name__)

#-----------------------------------------------------------------------------

class TencentStorage(AbstractStorage):
    """
    Tencent Cloud COS storage implementation

    The bucket name carries the APPID suffix, e.g. "assets-1250000000".
    """

    def __init__(self, options: TencentOptions):
        super().__init__(options)
        self._require_options("bucket", "region")

        self.region = options.region.strip()

        try:
            config = CosConfig(
                Region      = self.region,
                SecretId    = options.secret_id,
                SecretKey   = options.secret_key,
                Token       = options.token or None,
                Scheme      = options.scheme,
                Timeout     = options.timeout
            )
            self._client = CosS3Client(config)

        except CosClientError as e:
            logger.error(f"Failed to initialize Tencent COS client: {str(e)}", exc_info=True)
            raise StorageConfigurationError(f"Failed to initialize Tencent COS client: {str(e)}") from e

        logger.info(f"Tencent COS client initialized: bucket={self.bucket}, region={self.region}")

    #-----------------------------------------------------

    async def info(self, path: str) -> Attribute:
        key = self._build_object_key(path)

        try:
            headers = await self._run(self._client.head_object, Bucket=self.bucket, Key=key)
        except (CosClientError, CosServiceError) as e:
            raise self._error("get info of", e, path) from e

        return FileAttribute(
            path            = normalize_path(path),
            visibility      = self.visibility,
            last_modified   = to_timestamp(headers.get("Last-Modified")),
            file_size       = int(headers.get("Content-Length") or 0),
            mime_type       = headers.get("Content-Type", "")
        )

    async def has_file(self, path: str) -> bool:
        # Directory marker keys are not files.
        name = normalize_path(path)
        if not name or name.endswith("/"):
            return False

        try:
            return await self._run(self._client.object_exists, Bucket=self.bucket, Key=self._build_object_key(path))
        except Exception as e:
            logger.debug(f"has_file({path}) is false: {str(e)}")
            return False

    async def read(self, path: str) -> ReadStream:
        key = self._build_object_key(path)

        try:
            response = await self._run(self._client.get_object, Bucket=self.bucket, Key=key)
        except (CosClientError, CosServiceError) as e:
            raise self._error("read", e, path) from e

        return ExecutorReadStream(response["Body"].get_raw_stream(), path=path, translate_error=self._translate_error)

    async def save(self, path: str, content: Content, mime_type: str = ""):
        key = self._build_object_key(path)
        mime_type = mime_type or self.get_content_type_from_filename(path)

        try:
            async with self._upload_source(content) as (fileobj, _):
                await self._run(
                    self._client.put_object,
                    Bucket      = self.bucket,
                    Body        = fileobj,
                    Key         = key,
                    ContentType = mime_type
                )
        except (CosClientError, CosServiceError) as e:
            raise self._error("save", e, path) from e

        logger.info(f"File uploaded to Tencent COS successfully: {key}")

    async def copy(self, src: str, dst: str):
        src_key = self._build_object_key(src)
        dst_key = self._build_object_key(dst)

        try:
            await self._run(
                self._client.copy_object,
                Bucket      = self.bucket,
                Key         = dst_key,
                CopySource  = {"Bucket": self.bucket, "Key": src_key, "Region": self.region}
            )
        except (CosClientError, CosServiceError) as e:
            raise self._error("copy", e, src) from e

        logger.info(f"File copied in Tencent COS: {src_key} -> {dst_key}")

    #-----------------------------------------------------

    async def cover(self, src: str, dst: str, width: int = 0, height: int = 0):
        """Fetch the source through the COS CI thumbnail rule and upload the result"""
        if not self.options.remote_image_process:
            return await self._cover_locally(src, dst, width, height)

        if width <= 0 and height <= 0:
            return await self.copy(src, dst)

        src_key = self._build_object_key(src)

        try:
            headers, data = await self._run(
                self._client.ci_get_image_info,
                Bucket  = self.bucket,
                Key     = src_key,
                Param   = thumbnail_rule(width, height)
            )

        except (CosClientError, CosServiceError) as e:
            error = self._translate_error(e, src)
            if isinstance(error, NotFoundError):
                raise error from e

            logger.warning(f"COS image processing failed for {src}, resizing locally: {str(e)}")
            return await self._cover_locally(src, dst, width, height)

        mime_type = (headers or {}).get("Content-Type") or self.get_content_type_from_filename(dst)
        await self.save(dst, data, mime_type)

        logger.info(f"Cover generated by COS: {src} -> {dst} ({width}x{height})")

    async def delete(self, path: str):
        key = self._build_object_key(path)

        try:
            await self._run(self._client.delete_object, Bucket=self.bucket, Key=key)
        except (CosClientError, CosServiceError) as e:
            raise self._error("delete", e, path) from e

        logger.info(f"File deleted from Tencent COS successfully: {key}")

    async def _delete_batch(self, paths: list[str]) -> dict[str, str]:
        keys = {self._build_object_key(p): p for p in paths}

        try:
            response = await self._run(
                self._client.delete_objects,
                Bucket = self.bucket,
                Delete = {
                    "Object": [{"Key": key} for key in keys],
                    "Quiet": "false"
                }
            )
        except (CosClientError, CosServiceError) as e:
            raise self._error("delete objects in", e, self.bucket) from e

        failed = {}
        for error in _as_list(response.get("Error")):
            failed[keys.get(error.get("Key"), error.get("Key", ""))] = f"{error.get('Code', '')}: {error.get('Message', '')}"
        return failed

    #-----------------------------------------------------

    async def list(self, path: str = "", recursive: bool = False) -> AsyncIterator[Attribute]:
        prefix = self._dir_key(path)
        delimiter = "" if recursive else "/"
        marker = ""

        while True:
            try:
                response = await self._run(
                    self._client.list_objects,
                    Bucket      = self.bucket,
                    Prefix      = prefix,
                    Delimiter   = delimiter,
                    Marker      = marker,
                    MaxKeys     = LIST_PAGE_SIZE
                )
            except (CosClientError, CosServiceError) as e:
                raise self._error("list", e, path) from e

            for common_prefix in _as_list(response.get("CommonPrefixes")):
                yield DirectoryAttribute(
                    path        = self._strip_object_key(common_prefix["Prefix"]),
                    visibility  = self.visibility
                )

            last_key = ""
            for obj in _as_list(response.get("Contents")):
                key = obj["Key"]
                last_key = key
                if key == prefix:
                    continue

                relative = self._strip_object_key(key)
                if key.endswith("/"):
                    yield DirectoryAttribute(
                        path            = relative,
                        visibility      = self.visibility,
                        last_modified   = to_timestamp(obj.get("LastModified"))
                    )
                else:
                    yield FileAttribute(
                        path            = relative,
                        visibility      = self.visibility,
                        last_modified   = to_timestamp(obj.get("LastModified")),
                        file_size       = int(obj.get("Size") or 0),
                        mime_type       = self.get_content_type_from_filename(relative)
                    )

            marker = response.get("NextMarker") or last_key
            if str(response.get("IsTruncated", "false")).lower() != "true" or not marker:
                break

    #-----------------------------------------------------

    async def _sign_url(self, key: str, expires: int) -> str:
        return await self._run(self._client.get_presigned_download_url, Bucket=self.bucket, Key=key, Expired=expires)

    def _url_bases(self) -> list[str]:
        bases = [f"{self.scheme}://{self.bucket}.cos.{self.region}.myqcloud.com"]
        if self.cdn:
            bases.insert(0, self._endpoint_url(self.cdn))
        return bases

    async def _check_bucket(self):
        try:
            await self._run(self._client.head_bucket, Bucket=self.bucket)
        except (CosClientError, CosServiceError) as e:
            raise self._translate_error(e, self.bucket) from e

    def _translate_error(self, e: Exception, path: str = "") -> StorageError:
        if isinstance(e, CosServiceError):
            return self._error_from_status(
                int(e.get_status_code() or 0),
                e.get_error_code(),
                e.get_error_msg(),
                path
            )

        if isinstance(e, CosClientError):
            return TransientError(str(e), path)

        return super()._translate_error(e, path)

#-----------------------------------------------------------------------------

def _as_list(value: Any) -> list:
    """XML responses collapse single-element lists into a dict"""
    if not value:
        return []
    if isinstance(value, dict):
        return [value]
    return value

#-----------------------------------------------------------------------------
