from __future__ import annotations

import asyncio
import inspect
import io
import logging
import tempfile

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from functools import partial
from typing import IO, Any, AsyncIterable, AsyncIterator, Callable, Iterable
from urllib.parse import unquote, urlparse, urlunparse

import magic

from PIL import UnidentifiedImageError

from .attributes import Attribute, Visibility, normalize_path
from .errors import (
    InvalidUrlError,
    NotFoundError,
    PartialFailureError,
    PartialMoveError,
    PermissionDeniedError,
    StorageConfigurationError,
    StorageError,
    TransientError
)
from .image import resize_image
from .options import StorageOptions
from .stream import ReadStream

logger = logging.getLogger(__name__)

#-----------------------------------------------------------------------------

Content = bytes | bytearray | memoryview | IO[bytes] | AsyncIterable[bytes] | Iterable[bytes]

# Spool uploads of unknown length in memory up to this size, on disk beyond.
SPOOL_MAX_MEMORY = 8 * 1024 * 1024

UPLOAD_CHUNK_SIZE = 1024 * 1024

# Bulk delete APIs accept at most 1000 keys per request.
DELETE_BATCH_SIZE = 1000

LIST_PAGE_SIZE = 1000

# Service error codes shared by the S3-style APIs.
NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket", "ResourceNotFound"}

ACCESS_DENIED_CODES = {
    "401",
    "403",
    "AccessDenied",
    "Forbidden",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "InvalidSecurity",
    "AllAccessDisabled",
}

#-----------------------------------------------------------------------------

class AbstractStorage:
    """
    Abstract base class for all storage backends

    Every operation is a coroutine. Paths are relative to the backend root,
    use "/" separators and never start with "/". The configured prefix is
    added on the way in and removed on the way out.

    Object storage has no real directories: has_dir() always reports True,
    mk_dir() and delete_dir() succeed without doing anything. The local
    backend overrides all three.
    """

    def __init__(self, options: StorageOptions):
        self.options = options

        self.bucket = options.bucket.strip() if options.bucket else ""
        self.cdn = options.cdn.strip() if options.cdn else ""

        # Clean prefix: remove quotes and whitespace, treat "", '', "null", "none" as empty
        prefix = options.prefix.strip().strip('"').strip("'") if options.prefix else ""
        if prefix.lower() in ("", "null", "none"):
            prefix = ""
        self.prefix = prefix.replace("\\", "/").strip("/")

        self.visibility = Visibility.PUBLIC if options.public else Visibility.PRIVATE
        self.scheme = options.scheme

    #-----------------------------------------------------
    # Contract
    #-----------------------------------------------------

    async def info(self, path: str) -> Attribute:
        """
        Get file or directory attributes

        Raises:
            NotFoundError: Target does not exist
            PermissionDeniedError: Access was refused
            TransientError: Network or service failure
        """
        raise NotImplementedError

    async def has_file(self, path: str) -> bool:
        """Check whether a file exists, any failure counts as absent"""
        # Directory marker keys are not files.
        name = normalize_path(path)
        if not name or name.endswith("/"):
            return False

        try:
            attribute = await self.info(path)
            return attribute.is_file
        except Exception as e:
            logger.debug(f"has_file({path}) is false: {str(e)}")
            return False

    async def has_dir(self, path: str) -> bool:
        """Directories cannot be verified on object storage"""
        return True

    async def read(self, path: str) -> ReadStream:
        """
        Open a file for reading

        The returned stream must be closed by the caller, preferably with
        "async with".
        """
        raise NotImplementedError

    async def read_bytes(self, path: str) -> bytes:
        """Read a whole file into memory"""
        async with await self.read(path) as stream:
            return await stream.read()

    async def save(self, path: str, content: Content, mime_type: str = ""):
        """
        Create or overwrite a file

        Args:
            path: Destination path
            content: Bytes, a binary file-like object, or an (async) iterable of bytes
            mime_type: MIME type, detected from the file name when empty
        """
        raise NotImplementedError

    async def copy(self, src: str, dst: str):
        raise NotImplementedError

    async def move(self, src: str, dst: str):
        """
        Copy then delete the source

        Raises:
            PartialMoveError: The copy succeeded but the source could not be
                deleted, both files now exist.
        """
        if self._build_object_key(src) == self._build_object_key(dst):
            # Moving onto itself, the source must exist and stays in place.
            await self.info(src)
            logger.info(f"Move skipped, same object: {src} -> {dst}")
            return

        await self.copy(src, dst)

        try:
            await self.delete(src)
        except StorageError as e:
            logger.error(f"Failed to delete {src} after copying it to {dst}: {str(e)}")
            raise PartialMoveError(src, dst, str(e)) from e

        logger.info(f"File moved: {src} -> {dst}")

    async def cover(self, src: str, dst: str, width: int = 0, height: int = 0):
        """
        Save a resized copy of an image

        Args:
            src: Source image path
            dst: Destination path, written in the source image format
            width: Maximum width, 0 to scale with the height
            height: Maximum height, 0 to scale with the width
        """
        await self._cover_locally(src, dst, width, height)

    async def delete(self, path: str):
        raise NotImplementedError

    async def delete_multiple(self, paths: Iterable[str]):
        """
        Delete several files

        Nothing is deleted when any of the files is missing. Failures reported
        per key by the backend are raised together as a PartialFailureError.
        """
        paths = self._unique_paths(paths)
        if not paths:
            return

        await self._ensure_all_exist(paths)

        failed: dict[str, str] = {}
        deleted = []

        for i in range(0, len(paths), DELETE_BATCH_SIZE):
            batch = paths[i:i + DELETE_BATCH_SIZE]
            batch_failed = await self._delete_batch(batch)
            failed.update(batch_failed)
            deleted.extend(p for p in batch if p not in batch_failed)

        if failed:
            error = PartialFailureError(failed=failed, deleted=deleted)
            logger.error(str(error))
            raise error

        logger.info(f"Deleted {len(deleted)} files from {self.get_storage_type()}")

    async def mk_dir(self, path: str, mode: int = 0o755):
        return None

    async def delete_dir(self, path: str):
        return None

    def list(self, path: str = "", recursive: bool = False) -> AsyncIterator[Attribute]:
        """
        Iterate over the entries of a directory

        Backend pages are fetched as the iteration goes and the sequence
        always runs to the last page. The directory marker object itself is
        never yielded.
        """
        raise NotImplementedError

    async def full_path(self, path: str) -> str:
        """Public URL, or a signed time-limited URL for private storage"""
        key = self._build_object_key(path)

        if self.visibility == Visibility.PUBLIC:
            return self._public_url(key)

        try:
            url = await self._sign_url(key, self.options.sign_expires)
        except Exception as e:
            raise self._error("sign url for", e, path) from e

        return self._with_scheme(url)

    def original_path(self, url: str) -> str:
        """
        Recover the path from a URL returned by full_path()

        Raises:
            InvalidUrlError: The URL was not produced by this storage.
        """
        parsed = urlparse((url or "").strip())
        if not parsed.scheme or not parsed.netloc:
            raise InvalidUrlError(f"Not an absolute URL: {url}")

        for base in self._url_bases():
            base_parsed = urlparse(base)
            if _host(parsed) != _host(base_parsed):
                continue

            base_path = base_parsed.path.rstrip("/") + "/"
            if not parsed.path.startswith(base_path):
                continue

            key = unquote(parsed.path[len(base_path):]).lstrip("/")
            if not key:
                break

            return self._strip_object_key(key, url)

        raise InvalidUrlError(f"URL was not produced by {self.get_storage_type()} storage: {url}")

    async def health_check(self) -> tuple[bool, str]:
        """
        Check if the storage service is available

        Returns:
            Tuple of (is_healthy, message)
        """
        name = self.get_storage_type()
        try:
            await self._check_bucket()
            logger.info(f"{name} health check passed: bucket={self.bucket}")
            return True, f"{name} storage is healthy"

        except Exception as e:
            error_msg = f"{name} health check failed: {str(e)}"
            logger.warning(error_msg, exc_info=True)
            return False, error_msg

    def get_storage_type(self) -> str:
        """
        Get storage type identifier
        """
        return self.options.storage_type or self.__class__.__name__.lower().removesuffix("storage")

    #-----------------------------------------------------
    # Backend hooks
    #-----------------------------------------------------

    async def _sign_url(self, key: str, expires: int) -> str:
        raise NotImplementedError

    def _public_url(self, key: str) -> str:
        return f"{self._url_bases()[0].rstrip('/')}/{key}"

    def _url_bases(self) -> list[str]:
        """URL prefixes this backend produces, the public one first"""
        raise NotImplementedError

    async def _delete_batch(self, paths: list[str]) -> dict[str, str]:
        """Delete paths, return the ones that failed with their reasons"""
        failed = {}
        for path in paths:
            try:
                await self.delete(path)
            except StorageError as e:
                failed[path] = str(e)
        return failed

    async def _check_bucket(self):
        raise NotImplementedError

    def _translate_error(self, e: Exception, path: str = "") -> StorageError:
        """Map a backend exception to the storage error taxonomy"""
        if isinstance(e, StorageError):
            return e
        if isinstance(e, FileNotFoundError):
            return NotFoundError(path=path)
        return TransientError(str(e), path)

    def _error_from_status(self, status: int, code: str, message: str = "", path: str = "") -> StorageError:
        """Map an HTTP status and service error code to the storage error taxonomy"""
        code = str(code or "")
        detail = f"{code or status}: {message}" if message else str(code or status)

        if status == 404 or code in NOT_FOUND_CODES:
            return NotFoundError(path=path)
        if status in (401, 403) or code in ACCESS_DENIED_CODES:
            return PermissionDeniedError(f"Access denied ({detail})", path)

        return TransientError(detail, path)

    #-----------------------------------------------------
    # Helpers
    #-----------------------------------------------------

    def _require_options(self, *names: str):
        missing = [name for name in names if not getattr(self.options, name, "")]
        if missing:
            raise StorageConfigurationError(
                f"{self.get_storage_type()} storage is missing required options: {', '.join(missing)}"
            )

    def _build_object_key(self, path: str) -> str:
        """
        Build full object key with prefix.
        Handles empty prefix correctly without adding extra slashes.
        """
        path = normalize_path(path)
        if self.prefix:
            return f"{self.prefix}/{path}"
        return path

    def _strip_object_key(self, key: str, url: str = "") -> str:
        """Remove the prefix from an object key"""
        if not self.prefix:
            return key

        prefix = self.prefix + "/"
        if not key.startswith(prefix):
            raise InvalidUrlError(f"Object key {key} is outside prefix {self.prefix}: {url}")
        return key[len(prefix):]

    def _dir_key(self, path: str) -> str:
        """Listing prefix for a directory, "" for the root"""
        key = self._build_object_key(path).rstrip("/")
        return f"{key}/" if key else ""

    def _endpoint_host(self, endpoint: str) -> str:
        """Endpoint without scheme or trailing slash"""
        endpoint = (endpoint or "").strip().rstrip("/")
        if "://" in endpoint:
            endpoint = endpoint.split("://", 1)[1]
        return endpoint

    def _endpoint_url(self, endpoint: str) -> str:
        """Endpoint with a scheme, the configured one unless it already has its own"""
        endpoint = (endpoint or "").strip().rstrip("/")
        if endpoint and "://" not in endpoint:
            endpoint = f"{self.scheme}://{endpoint}"
        return endpoint

    def _with_scheme(self, url: str) -> str:
        parsed = urlparse(url)
        return urlunparse(parsed._replace(scheme=self.scheme))

    def _unique_paths(self, paths: Iterable[str]) -> list[str]:
        # Normalized, order kept, duplicates and empty paths dropped
        return [p for p in dict.fromkeys(normalize_path(p) for p in paths) if p]

    async def _ensure_all_exist(self, paths: list[str]):
        semaphore = asyncio.Semaphore(16)

        async def check(path: str):
            async with semaphore:
                return await self.info(path)

        results = await asyncio.gather(*(check(p) for p in paths), return_exceptions=True)

        missing = []
        for path, result in zip(paths, results):
            if isinstance(result, NotFoundError):
                missing.append(path)
            elif isinstance(result, BaseException):
                raise result

        if missing:
            raise NotFoundError(f"Files do not exist: {', '.join(missing)}", missing[0])

    async def _run(self, func: Callable, *args, **kwargs) -> Any:
        """Run a blocking SDK call in the default executor"""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    def _error(self, action: str, e: Exception, path: str = "") -> StorageError:
        error = self._translate_error(e, path)

        if isinstance(error, NotFoundError):
            logger.debug(f"Failed to {action} {path} on {self.get_storage_type()}: {str(e)}")
        else:
            logger.error(f"Failed to {action} {path} on {self.get_storage_type()}: {str(e)}", exc_info=True)

        return error

    async def _cover_locally(self, src: str, dst: str, width: int, height: int):
        content = await self.read_bytes(src)

        try:
            data, mime_type = await self._run(resize_image, content, width, height, src)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            logger.error(f"Failed to generate cover for {src}: {str(e)}", exc_info=True)
            raise StorageError(f"Failed to generate cover for {src}: {str(e)}", src) from e

        await self.save(dst, data, mime_type)

        logger.info(f"Cover generated: {src} -> {dst} ({width}x{height})")

    #-----------------------------------------------------

    @asynccontextmanager
    async def _upload_source(self, content: Content, seekable: bool = True):
        """
        Yield (file object, length) for an upload

        Backends that need the length up front get seekable data. Sources of
        unknown length are spooled to a temporary file first. With
        seekable=False, readable file objects are passed through as they
        are and the length may be None.
        """
        if isinstance(content, bytes | bytearray | memoryview):
            data = bytes(content)
            yield io.BytesIO(data), len(data)
            return

        read = getattr(content, "read", None)

        if callable(read) and not inspect.iscoroutinefunction(read):
            if _is_seekable(content):
                start = content.tell()
                end = content.seek(0, io.SEEK_END)
                content.seek(start)
                yield content, end - start
                return

            if not seekable:
                yield content, None
                return

        with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_MEMORY) as spool:
            if callable(read) and inspect.iscoroutinefunction(read):
                while chunk := await read(UPLOAD_CHUNK_SIZE):
                    spool.write(chunk)

            elif callable(read):
                await self._run(_copy_file, content, spool)

            elif hasattr(content, "__aiter__"):
                async for chunk in content:
                    spool.write(chunk)

            elif hasattr(content, "__iter__"):
                await self._run(_copy_chunks, content, spool)

            else:
                raise TypeError(f"Unsupported content type: {type(content).__name__}")

            length = spool.tell()
            spool.seek(0)
            yield spool, length

    #-----------------------------------------------------

    def get_content_type(self, content: bytes) -> str:
        """
        Detect content type from file content using magic numbers
        """
        try:
            return magic.from_buffer(content, mime=True)
        except magic.MagicException as e:
            logger.debug(f"Failed to detect content type: {str(e)}")
            return "application/octet-stream"

    def get_content_type_from_filename(self, filename: str) -> str:
        """
        Get content type based on file extension
        """
        ext = ""
        if filename and "." in filename:
            ext = filename.rsplit(".", 1)[-1].lower()

        return CONTENT_TYPES.get(ext, "application/octet-stream")

#-----------------------------------------------------------------------------

def to_timestamp(value: Any) -> int:
    """
    Convert an SDK timestamp to Unix seconds

    Accepts datetimes, numbers, RFC 1123 dates ("Wed, 11 Jan 2023 08:36:32 GMT"),
    ISO 8601 dates and "2023/01/11 08:36:32". Unparseable values give 0.
    """
    if value is None or value == "":
        return 0

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())

    if isinstance(value, int | float):
        return int(value)

    text = str(value).strip()
    if text.isdigit():
        return int(text)

    try:
        return to_timestamp(parsedate_to_datetime(text))
    except (TypeError, ValueError, IndexError):
        pass

    for parse in (
        lambda s: datetime.fromisoformat(s.replace("Z", "+00:00")),
        lambda s: datetime.strptime(s, "%Y/%m/%d %H:%M:%S"),
    ):
        try:
            return to_timestamp(parse(text))
        except ValueError:
            continue

    logger.debug(f"Unrecognized timestamp: {text}")
    return 0


def _host(parsed) -> str:
    """Lower-cased host, with the port only when it is not the scheme default"""
    host = (parsed.hostname or "").lower()
    try:
        port = parsed.port
    except ValueError:
        port = None

    if port and (parsed.scheme, port) not in (("http", 80), ("https", 443)):
        return f"{host}:{port}"
    return host


def _is_seekable(f: Any) -> bool:
    try:
        return bool(f.seekable()) if hasattr(f, "seekable") else (hasattr(f, "seek") and hasattr(f, "tell"))
    except (OSError, ValueError):
        return False


def _copy_file(src: IO[bytes], dst: IO[bytes]):
    while chunk := src.read(UPLOAD_CHUNK_SIZE):
        dst.write(chunk)


def _copy_chunks(chunks: Iterable[bytes], dst: IO[bytes]):
    for chunk in chunks:
        dst.write(chunk)


async def iter_chunks(content: Content, chunk_size: int = UPLOAD_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Yield upload content chunk by chunk without blocking the event loop"""
    if isinstance(content, bytes | bytearray | memoryview):
        yield bytes(content)
        return

    loop = asyncio.get_running_loop()
    read = getattr(content, "read", None)

    if callable(read) and inspect.iscoroutinefunction(read):
        while chunk := await read(chunk_size):
            yield chunk

    elif callable(read):
        while chunk := await loop.run_in_executor(None, read, chunk_size):
            yield chunk

    elif hasattr(content, "__aiter__"):
        async for chunk in content:
            yield chunk

    elif hasattr(content, "__iter__"):
        for chunk in content:
            yield chunk

    else:
        raise TypeError(f"Unsupported content type: {type(content).__name__}")

#-----------------------------------------------------------------------------

CONTENT_TYPES = {
    # Images
    "jpg"   : "image/jpeg",
    "jpeg"  : "image/jpeg",
    "png"   : "image/png",
    "gif"   : "image/gif",
    "webp"  : "image/webp",
    "bmp"   : "image/bmp",
    "tif"   : "image/tiff",
    "tiff"  : "image/tiff",
    "svg"   : "image/svg+xml",
    "ico"   : "image/x-icon",
    # Documents
    "pdf"   : "application/pdf",
    "doc"   : "application/msword",
    "docx"  : "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls"   : "application/vnd.ms-excel",
    "xlsx"  : "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "ppt"   : "application/vnd.ms-powerpoint",
    "pptx"  : "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "txt"   : "text/plain",
    "csv"   : "text/csv",
    "md"    : "text/markdown",
    # Audio/Video
    "mp3"   : "audio/mpeg",
    "wav"   : "audio/wav",
    "mp4"   : "video/mp4",
    "mov"   : "video/quicktime",
    "avi"   : "video/x-msvideo",
    "webm"  : "video/webm",
    # Web
    "html"  : "text/html",
    "htm"   : "text/html",
    "css"   : "text/css",
    "js"    : "application/javascript",
    "json"  : "application/json",
    "xml"   : "application/xml",
    # Archives
    "zip"   : "application/zip",
    "rar"   : "application/x-rar-compressed",
    "7z"    : "application/x-7z-compressed",
    "tar"   : "application/x-tar",
    "gz"    : "application/gzip",
}

#-----------------------------------------------------------------------------
