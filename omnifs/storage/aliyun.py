from __future__ import annotations

import base64
import logging
import warnings

from typing import AsyncIterator

# oss2 still ships a few invalid escape sequences
warnings.filterwarnings("ignore", category=SyntaxWarning, module="oss2")
import oss2

from .abstract import LIST_PAGE_SIZE, AbstractStorage, Content
from .attributes import Attribute, DirectoryAttribute, FileAttribute, normalize_path
from .errors import NotFoundError, StorageConfigurationError, StorageError, TransientError
from .image import resize_style
from .options import AliyunOptions
from .stream import ExecutorReadStream, ReadStream

logger = logging.getLogger(__name__)

#-----------------------------------------------------------------------------

class AliyunStorage(AbstractStorage):
    """Aliyun OSS storage implementation"""

    def __init__(self, options: AliyunOptions):
        super().__init__(options)
        self._require_options("bucket", "endpoint")

        self.endpoint = self._endpoint_host(options.endpoint)
        self.region = options.region.strip() if options.region else ""

        try:
            bucket_params = {"connect_timeout": options.timeout}

            # V4 signatures need the region
            if self.region:
                auth = oss2.AuthV4(options.access_key_id, options.secret_access_key)
                bucket_params["region"] = self.region
            else:
                auth = oss2.Auth(options.access_key_id, options.secret_access_key)

            self._bucket = oss2.Bucket(auth, self._endpoint_url(options.endpoint), self.bucket, **bucket_params)

        except (oss2.exceptions.OssError, ValueError) as e:
            logger.error(f"Failed to initialize Aliyun OSS client: {str(e)}", exc_info=True)
            raise StorageConfigurationError(f"Failed to initialize Aliyun OSS client: {str(e)}") from e

        logger.info(f"Aliyun OSS client initialized: bucket={self.bucket}, endpoint={self.endpoint}")

    #-----------------------------------------------------

    async def info(self, path: str) -> Attribute:
        key = self._build_object_key(path)

        try:
            result = await self._run(self._bucket.head_object, key)
        except oss2.exceptions.OssError as e:
            raise self._error("get info of", e, path) from e

        return FileAttribute(
            path            = normalize_path(path),
            visibility      = self.visibility,
            last_modified   = int(result.last_modified or 0),
            file_size       = int(result.content_length or 0),
            mime_type       = result.content_type or ""
        )

    async def has_file(self, path: str) -> bool:
        # Directory marker keys are not files.
        name = normalize_path(path)
        if not name or name.endswith("/"):
            return False

        try:
            return await self._run(self._bucket.object_exists, self._build_object_key(path))
        except Exception as e:
            logger.debug(f"has_file({path}) is false: {str(e)}")
            return False

    async def read(self, path: str) -> ReadStream:
        key = self._build_object_key(path)

        try:
            result = await self._run(self._bucket.get_object, key)
        except oss2.exceptions.OssError as e:
            raise self._error("read", e, path) from e

        return ExecutorReadStream(result, path=path, translate_error=self._translate_error)

    async def save(self, path: str, content: Content, mime_type: str = ""):
        key = self._build_object_key(path)
        mime_type = mime_type or self.get_content_type_from_filename(path)

        try:
            async with self._upload_source(content) as (fileobj, _):
                await self._run(self._bucket.put_object, key, fileobj, headers={"Content-Type": mime_type})
        except oss2.exceptions.OssError as e:
            raise self._error("save", e, path) from e

        logger.info(f"File uploaded to Aliyun OSS successfully: {key}")

    async def copy(self, src: str, dst: str):
        src_key = self._build_object_key(src)
        dst_key = self._build_object_key(dst)

        try:
            await self._run(self._bucket.copy_object, self.bucket, src_key, dst_key)
        except oss2.exceptions.OssError as e:
            raise self._error("copy", e, src) from e

        logger.info(f"File copied in Aliyun OSS: {src_key} -> {dst_key}")

    async def delete(self, path: str):
        key = self._build_object_key(path)

        try:
            await self._run(self._bucket.delete_object, key)
        except oss2.exceptions.OssError as e:
            raise self._error("delete", e, path) from e

        logger.info(f"File deleted from Aliyun OSS successfully: {key}")

    async def _delete_batch(self, paths: list[str]) -> dict[str, str]:
        keys = {self._build_object_key(p): p for p in paths}

        try:
            result = await self._run(self._bucket.batch_delete_objects, list(keys))
        except oss2.exceptions.OssError as e:
            raise self._error("delete objects in", e, self.bucket) from e

        deleted = set(result.deleted_keys or [])
        return {path: "not reported as deleted" for key, path in keys.items() if key not in deleted}

    #-----------------------------------------------------

    async def cover(self, src: str, dst: str, width: int = 0, height: int = 0):
        """Resize with the OSS image pipeline and save the result in place"""
        if not self.options.remote_image_process:
            return await self._cover_locally(src, dst, width, height)

        if width <= 0 and height <= 0:
            return await self.copy(src, dst)

        src_key = self._build_object_key(src)
        dst_key = self._build_object_key(dst)

        target = base64.urlsafe_b64encode(dst_key.encode()).decode()
        process = f"{resize_style(width, height)}|sys/saveas,o_{target}"

        try:
            await self._run(self._bucket.process_object, src_key, process)

        except oss2.exceptions.OssError as e:
            error = self._translate_error(e, src)
            if isinstance(error, NotFoundError):
                raise error from e

            logger.warning(f"OSS image processing failed for {src}, resizing locally: {str(e)}")
            return await self._cover_locally(src, dst, width, height)

        logger.info(f"Cover generated by OSS: {src_key} -> {dst_key} ({width}x{height})")

    #-----------------------------------------------------

    async def list(self, path: str = "", recursive: bool = False) -> AsyncIterator[Attribute]:
        prefix = self._dir_key(path)
        delimiter = "" if recursive else "/"
        token = ""

        while True:
            try:
                result = await self._run(
                    self._bucket.list_objects_v2,
                    prefix              = prefix,
                    delimiter           = delimiter,
                    continuation_token  = token,
                    max_keys            = LIST_PAGE_SIZE
                )
            except oss2.exceptions.OssError as e:
                raise self._error("list", e, path) from e

            for common_prefix in result.prefix_list:
                yield DirectoryAttribute(
                    path        = self._strip_object_key(common_prefix),
                    visibility  = self.visibility
                )

            for obj in result.object_list:
                if obj.key == prefix:
                    continue

                relative = self._strip_object_key(obj.key)
                if obj.key.endswith("/"):
                    yield DirectoryAttribute(
                        path            = relative,
                        visibility      = self.visibility,
                        last_modified   = int(obj.last_modified or 0)
                    )
                else:
                    yield FileAttribute(
                        path            = relative,
                        visibility      = self.visibility,
                        last_modified   = int(obj.last_modified or 0),
                        file_size       = int(obj.size or 0),
                        mime_type       = self.get_content_type_from_filename(relative)
                    )

            if not result.is_truncated or not result.next_continuation_token:
                break
            token = result.next_continuation_token

    #-----------------------------------------------------

    async def _sign_url(self, key: str, expires: int) -> str:
        return await self._run(self._bucket.sign_url, "GET", key, expires, slash_safe=True)

    def _url_bases(self) -> list[str]:
        bases = [f"{self.scheme}://{self.bucket}.{self.endpoint}"]
        if self.cdn:
            bases.insert(0, self._endpoint_url(self.cdn))
        return bases

    async def _check_bucket(self):
        try:
            await self._run(self._bucket.get_bucket_info)
        except oss2.exceptions.OssError as e:
            raise self._translate_error(e, self.bucket) from e

    def _translate_error(self, e: Exception, path: str = "") -> StorageError:
        if isinstance(e, oss2.exceptions.RequestError):
            return TransientError(str(e), path)

        if isinstance(e, oss2.exceptions.OssError):
            return self._error_from_status(e.status, e.code, e.message, path)

        return super()._translate_error(e, path)

#-----------------------------------------------------------------------------
