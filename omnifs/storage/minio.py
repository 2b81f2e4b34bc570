from __future__ import annotations

import logging

from datetime import timedelta
from itertools import islice
from typing import AsyncIterator
from urllib.parse import urlparse, urlunparse

import urllib3

from minio import Minio
from minio.commonconfig import CopySource
from minio.deleteobjects import DeleteObject
from minio.error import MinioException, S3Error

from .abstract import LIST_PAGE_SIZE, AbstractStorage, Content, to_timestamp
from .attributes import Attribute, DirectoryAttribute, FileAttribute, normalize_path
from .errors import StorageConfigurationError, StorageError, TransientError
from .options import MinioOptions
from .stream import ExecutorReadStream, ReadStream

logger = logging.getLogger(__name__)

#-----------------------------------------------------------------------------

class MinioStorage(AbstractStorage):
    """
    MinIO storage implementation

    Supports both public and private bucket access:
    - Public bucket: Returns direct URL (no signature required)
    - Private bucket: Returns signed URL with expiration

    Distinguishes between:
    - endpoint: Internal host for API calls (e.g., minio:9000 in Docker)
    - public_url: External URL for browser access (e.g., http://localhost:9000)

    Public URLs are path-style unless is_aws_s3 is set, then the bucket
    becomes part of the host name.
    """

    def __init__(self, options: MinioOptions):
        super().__init__(options)
        self._require_options("bucket", "endpoint")

        # Parse endpoint URL to extract host and determine secure mode
        endpoint = options.endpoint.strip()
        parsed = urlparse(endpoint if "://" in endpoint else f"//{endpoint}")
        self.endpoint = parsed.netloc
        self.secure = parsed.scheme == "https" if parsed.scheme else options.secure
        self.scheme = "https" if self.secure else "http"

        self.public_url = self._endpoint_url(options.public_url or self.endpoint)
        self.is_aws_s3 = options.is_aws_s3

        try:
            http_client = urllib3.PoolManager(
                timeout = urllib3.Timeout(connect=options.timeout, read=options.timeout),
                retries = urllib3.Retry(total=3, backoff_factor=0.2, status_forcelist=[500, 502, 503, 504])
            )

            # Build client kwargs
            client_kwargs = {
                "endpoint": self.endpoint,
                "access_key": options.access_key_id,
                "secret_key": options.secret_access_key,
                "secure": self.secure,
                "http_client": http_client
            }

            # Only add region if specified
            if options.region:
                client_kwargs["region"] = options.region

            self._client = Minio(**client_kwargs)

        except ValueError as e:
            logger.error(f"Failed to initialize MinIO client: {str(e)}", exc_info=True)
            raise StorageConfigurationError(f"Failed to initialize MinIO client: {str(e)}") from e

        logger.info(
            f"MinIO storage initialized: endpoint={self.endpoint}, "
            f"public_url={self.public_url}, bucket={self.bucket}, public={options.public}"
        )

    #-----------------------------------------------------

    async def info(self, path: str) -> Attribute:
        key = self._build_object_key(path)

        try:
            stat = await self._run(self._client.stat_object, bucket_name=self.bucket, object_name=key)
        except (MinioException, urllib3.exceptions.HTTPError) as e:
            raise self._error("get info of", e, path) from e

        return FileAttribute(
            path            = normalize_path(path),
            visibility      = self.visibility,
            last_modified   = to_timestamp(stat.last_modified),
            file_size       = int(stat.size or 0),
            mime_type       = stat.content_type or ""
        )

    async def read(self, path: str) -> ReadStream:
        key = self._build_object_key(path)

        try:
            response = await self._run(self._client.get_object, bucket_name=self.bucket, object_name=key)
        except (MinioException, urllib3.exceptions.HTTPError) as e:
            raise self._error("read", e, path) from e

        return ExecutorReadStream(response, path=path, translate_error=self._translate_error)

    async def save(self, path: str, content: Content, mime_type: str = ""):
        key = self._build_object_key(path)
        mime_type = mime_type or self.get_content_type_from_filename(path)

        try:
            async with self._upload_source(content) as (fileobj, length):
                await self._run(
                    self._client.put_object,
                    bucket_name     = self.bucket,
                    object_name     = key,
                    data            = fileobj,
                    length          = length,
                    content_type    = mime_type
                )
        except (MinioException, urllib3.exceptions.HTTPError) as e:
            raise self._error("save", e, path) from e

        logger.info(f"File uploaded to MinIO successfully: {key}")

    async def copy(self, src: str, dst: str):
        src_key = self._build_object_key(src)
        dst_key = self._build_object_key(dst)

        try:
            await self._run(
                self._client.copy_object,
                bucket_name = self.bucket,
                object_name = dst_key,
                source      = CopySource(self.bucket, src_key)
            )
        except (MinioException, urllib3.exceptions.HTTPError) as e:
            raise self._error("copy", e, src) from e

        logger.info(f"File copied in MinIO: {src_key} -> {dst_key}")

    async def delete(self, path: str):
        key = self._build_object_key(path)

        try:
            await self._run(self._client.remove_object, bucket_name=self.bucket, object_name=key)
        except (MinioException, urllib3.exceptions.HTTPError) as e:
            raise self._error("delete", e, path) from e

        logger.info(f"File deleted from MinIO successfully: {key}")

    async def _delete_batch(self, paths: list[str]) -> dict[str, str]:
        keys = {self._build_object_key(p): p for p in paths}

        def remove() -> list:
            # remove_objects is lazy, nothing is sent until it is iterated
            errors = self._client.remove_objects(
                bucket_name         = self.bucket,
                delete_object_list  = [DeleteObject(key) for key in keys]
            )
            return [error for error in errors]

        try:
            errors = await self._run(remove)
        except (MinioException, urllib3.exceptions.HTTPError) as e:
            raise self._error("delete objects in", e, self.bucket) from e

        failed = {}
        for error in errors:
            failed[keys.get(error.name, error.name)] = f"{error.code}: {error.message}"
        return failed

    #-----------------------------------------------------

    async def list(self, path: str = "", recursive: bool = False) -> AsyncIterator[Attribute]:
        prefix = self._dir_key(path)

        # The SDK pages internally, pull its generator one batch at a time
        objects = self._client.list_objects(bucket_name=self.bucket, prefix=prefix, recursive=recursive)

        while True:
            try:
                batch = await self._run(lambda: [obj for obj in islice(objects, LIST_PAGE_SIZE)])
            except (MinioException, urllib3.exceptions.HTTPError) as e:
                raise self._error("list", e, path) from e

            for obj in batch:
                if obj.object_name == prefix:
                    continue

                relative = self._strip_object_key(obj.object_name)
                if obj.is_dir or obj.object_name.endswith("/"):
                    yield DirectoryAttribute(
                        path            = relative,
                        visibility      = self.visibility,
                        last_modified   = to_timestamp(obj.last_modified)
                    )
                else:
                    yield FileAttribute(
                        path            = relative,
                        visibility      = self.visibility,
                        last_modified   = to_timestamp(obj.last_modified),
                        file_size       = int(obj.size or 0),
                        mime_type       = self.get_content_type_from_filename(relative)
                    )

            if len(batch) < LIST_PAGE_SIZE:
                break

    #-----------------------------------------------------

    async def _sign_url(self, key: str, expires: int) -> str:
        url = await self._run(
            self._client.presigned_get_object,
            bucket_name = self.bucket,
            object_name = key,
            expires     = timedelta(seconds=expires)
        )

        # Signed against the internal endpoint, served through the public host
        public = urlparse(self.public_url)
        parsed = urlparse(url)
        if public.netloc and parsed.netloc != public.netloc:
            netloc = public.netloc
            if parsed.netloc.startswith(f"{self.bucket}."):
                netloc = f"{self.bucket}.{public.netloc}"
            url = urlunparse(parsed._replace(scheme=public.scheme or self.scheme, netloc=netloc))

        return url

    def _with_scheme(self, url: str) -> str:
        # Signed URLs already carry the scheme of the public URL
        return url

    def _url_bases(self) -> list[str]:
        bases = []

        if self.cdn:
            bases.append(f"{self._endpoint_url(self.cdn)}/{self.bucket}")

        public = urlparse(self.public_url)
        hosts = [(public.scheme or self.scheme, public.netloc)]
        if self.endpoint != public.netloc:
            hosts.append((self.scheme, self.endpoint))

        for scheme, host in hosts:
            path_style = f"{scheme}://{host}/{self.bucket}"
            virtual_hosted = f"{scheme}://{self.bucket}.{host}"
            bases.extend([virtual_hosted, path_style] if self.is_aws_s3 else [path_style, virtual_hosted])

        return bases

    async def _check_bucket(self):
        try:
            exists = await self._run(self._client.bucket_exists, bucket_name=self.bucket)
        except (MinioException, urllib3.exceptions.HTTPError) as e:
            raise self._translate_error(e, self.bucket) from e

        if not exists:
            raise StorageConfigurationError(f"Bucket '{self.bucket}' does not exist")

    def _translate_error(self, e: Exception, path: str = "") -> StorageError:
        if isinstance(e, S3Error):
            response = getattr(e, "response", None)
            status = getattr(response, "status", 0) or 0
            return self._error_from_status(status, e.code, e.message, path)

        if isinstance(e, MinioException | urllib3.exceptions.HTTPError):
            return TransientError(str(e), path)

        return super()._translate_error(e, path)

#-----------------------------------------------------------------------------
