from __future__ import annotations

import logging

from http.client import HTTPException
from typing import Any, AsyncIterator, Callable

from obs import DeleteObjectsRequest, GetObjectRequest, Object, ObsClient, PutObjectHeader

from .abstract import LIST_PAGE_SIZE, AbstractStorage, Content, to_timestamp
from .attributes import Attribute, DirectoryAttribute, FileAttribute, normalize_path
from .errors import NotFoundError, StorageConfigurationError, StorageError, TransientError
from .image import resize_style
from .options import HuaweiOptions
from .stream import ExecutorReadStream, ReadStream

logger = logging.getLogger(__name__)

#-----------------------------------------------------------------------------

class ObsResponseError(Exception):
    """Non-2xx response, ObsClient reports these in the response instead of raising"""

    def __init__(self, status: int, code: str = "", message: str = ""):
        super().__init__(f"{status} {code}: {message}".strip())
        self.status = status
        self.code = code or ""
        self.message = message or ""

#-----------------------------------------------------------------------------

class HuaweiStorage(AbstractStorage):
    """Huawei Cloud OBS storage implementation"""

    def __init__(self, options: HuaweiOptions):
        super().__init__(options)
        self._require_options("bucket", "endpoint")

        self.endpoint = self._endpoint_host(options.endpoint)

        try:
            self._client = ObsClient(
                access_key_id       = options.access_key_id,
                secret_access_key   = options.secret_access_key,
                server              = self._endpoint_url(options.endpoint),
                timeout             = options.timeout
            )
        except (ValueError, TypeError) as e:
            logger.error(f"Failed to initialize Huawei OBS client: {str(e)}", exc_info=True)
            raise StorageConfigurationError(f"Failed to initialize Huawei OBS client: {str(e)}") from e

        logger.info(f"Huawei OBS client initialized: bucket={self.bucket}, endpoint={self.endpoint}")

    async def _call(self, action: str, path: str, method: Callable, *args, **kwargs) -> Any:
        """Run an ObsClient call and raise on a failed response"""
        try:
            resp = await self._run(method, *args, **kwargs)
        except (OSError, HTTPException) as e:
            raise self._error(action, e, path) from e

        if resp.status >= 300:
            raise self._error(action, ObsResponseError(resp.status, resp.errorCode, resp.errorMessage), path)

        return resp

    #-----------------------------------------------------

    async def info(self, path: str) -> Attribute:
        key = self._build_object_key(path)
        resp = await self._call("get info of", path, self._client.getObjectMetadata, self.bucket, key)

        return FileAttribute(
            path            = normalize_path(path),
            visibility      = self.visibility,
            last_modified   = to_timestamp(resp.body.lastModified),
            file_size       = int(resp.body.contentLength or 0),
            mime_type       = resp.body.contentType or ""
        )

    async def read(self, path: str) -> ReadStream:
        key = self._build_object_key(path)
        resp = await self._call("read", path, self._client.getObject, self.bucket, key, loadStreamInMemory=False)

        return ExecutorReadStream(resp.body.response, path=path, translate_error=self._translate_error)

    async def save(self, path: str, content: Content, mime_type: str = ""):
        key = self._build_object_key(path)
        mime_type = mime_type or self.get_content_type_from_filename(path)

        async with self._upload_source(content) as (fileobj, _):
            await self._call(
                "save",
                path,
                self._client.putContent,
                self.bucket,
                key,
                content = fileobj,
                headers = PutObjectHeader(contentType=mime_type)
            )

        logger.info(f"File uploaded to Huawei OBS successfully: {key}")

    async def copy(self, src: str, dst: str):
        src_key = self._build_object_key(src)
        dst_key = self._build_object_key(dst)

        await self._call("copy", src, self._client.copyObject, self.bucket, src_key, self.bucket, dst_key)

        logger.info(f"File copied in Huawei OBS: {src_key} -> {dst_key}")

    async def delete(self, path: str):
        key = self._build_object_key(path)
        await self._call("delete", path, self._client.deleteObject, self.bucket, key)

        logger.info(f"File deleted from Huawei OBS successfully: {key}")

    async def _delete_batch(self, paths: list[str]) -> dict[str, str]:
        keys = {self._build_object_key(p): p for p in paths}

        request = DeleteObjectsRequest(quiet=False, objects=[Object(key=key) for key in keys])
        resp = await self._call("delete objects in", self.bucket, self._client.deleteObjects, self.bucket, request)

        failed = {}
        for error in resp.body.error or []:
            failed[keys.get(error.key, error.key)] = f"{error.code}: {error.message}"
        return failed

    #-----------------------------------------------------

    async def cover(self, src: str, dst: str, width: int = 0, height: int = 0):
        """Fetch the source through the OBS image pipeline and upload the result"""
        if not self.options.remote_image_process:
            return await self._cover_locally(src, dst, width, height)

        if width <= 0 and height <= 0:
            return await self.copy(src, dst)

        src_key = self._build_object_key(src)

        try:
            resp = await self._call(
                "process image",
                src,
                self._client.getObject,
                self.bucket,
                src_key,
                getObjectRequest    = GetObjectRequest(imageProcess=resize_style(width, height)),
                loadStreamInMemory  = True
            )
        except NotFoundError:
            raise
        except StorageError as e:
            logger.warning(f"OBS image processing failed for {src}, resizing locally: {str(e)}")
            return await self._cover_locally(src, dst, width, height)

        mime_type = getattr(resp.body, "contentType", "") or self.get_content_type_from_filename(dst)
        await self.save(dst, resp.body.buffer, mime_type)

        logger.info(f"Cover generated by OBS: {src} -> {dst} ({width}x{height})")

    #-----------------------------------------------------

    async def list(self, path: str = "", recursive: bool = False) -> AsyncIterator[Attribute]:
        prefix = self._dir_key(path)
        delimiter = None if recursive else "/"
        marker = None

        while True:
            resp = await self._call(
                "list",
                path,
                self._client.listObjects,
                self.bucket,
                prefix      = prefix,
                marker      = marker,
                max_keys    = LIST_PAGE_SIZE,
                delimiter   = delimiter
            )
            body = resp.body

            for common_prefix in body.commonPrefixs or []:
                yield DirectoryAttribute(
                    path        = self._strip_object_key(common_prefix.prefix),
                    visibility  = self.visibility
                )

            last_key = None
            for obj in body.contents or []:
                last_key = obj.key
                if obj.key == prefix:
                    continue

                relative = self._strip_object_key(obj.key)
                if obj.key.endswith("/"):
                    yield DirectoryAttribute(
                        path            = relative,
                        visibility      = self.visibility,
                        last_modified   = to_timestamp(obj.lastModified)
                    )
                else:
                    yield FileAttribute(
                        path            = relative,
                        visibility      = self.visibility,
                        last_modified   = to_timestamp(obj.lastModified),
                        file_size       = int(obj.size or 0),
                        mime_type       = self.get_content_type_from_filename(relative)
                    )

            # next_marker is only returned when a delimiter is set
            marker = body.next_marker or last_key
            if not body.is_truncated or not marker:
                break

    #-----------------------------------------------------

    async def _sign_url(self, key: str, expires: int) -> str:
        resp = await self._run(self._client.createSignedUrl, "GET", self.bucket, key, expires=expires)
        return resp.signedUrl

    def _url_bases(self) -> list[str]:
        bases = [f"{self.scheme}://{self.bucket}.{self.endpoint}"]
        if self.cdn:
            bases.insert(0, self._endpoint_url(self.cdn))
        return bases

    async def _check_bucket(self):
        try:
            await self._call("check bucket", self.bucket, self._client.headBucket, self.bucket)
        except NotFoundError as e:
            raise StorageConfigurationError(f"Bucket '{self.bucket}' does not exist") from e

    def _translate_error(self, e: Exception, path: str = "") -> StorageError:
        if isinstance(e, StorageError):
            return e

        if isinstance(e, ObsResponseError):
            return self._error_from_status(e.status, e.code, e.message, path)

        if isinstance(e, OSError | HTTPException):
            return TransientError(str(e), path)

        return super()._translate_error(e, path)

#-----------------------------------------------------------------------------
