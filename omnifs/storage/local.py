from __future__ import annotations

import errno
import logging
import os
import shutil

from pathlib import Path
from typing import AsyncIterator

import aiofiles

from .abstract import AbstractStorage, Content, iter_chunks
from .attributes import Attribute, DirectoryAttribute, FileAttribute, normalize_path
from .errors import NotFoundError, PermissionDeniedError, StorageError
from .options import LocalOptions
from .stream import AsyncReadStream, ReadStream

logger = logging.getLogger(__name__)

#-----------------------------------------------------------------------------

class LocalStorage(AbstractStorage):
    """
    Local filesystem storage implementation

    Stores files in a local directory without requiring external services.
    Suitable for single-instance deployments and development environments.

    Read and write permissions are checked explicitly before each operation
    so a permission problem is reported as PermissionDeniedError, never as
    a missing file.
    """

    def __init__(self, options: LocalOptions):
        super().__init__(options)

        self.base_path = Path(options.base_path).expanduser().resolve()
        self.base_url = options.base_url.strip().rstrip("/") if options.base_url else ""

        # Ensure base directory exists
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
            logger.info(f"Local storage initialized: base_path={self.base_path}, base_url={self.base_url}")
        except OSError as e:
            logger.error(f"Failed to create base directory {self.base_path}: {str(e)}")
            raise

    #-----------------------------------------------------

    def _get_file_path(self, path: str) -> Path:
        """
        Get full file path from a storage path

        Raises:
            PermissionDeniedError: The path escapes the base directory.
        """
        file_path = (self.base_path / self._build_object_key(path)).resolve()

        if file_path != self.base_path and self.base_path not in file_path.parents:
            raise PermissionDeniedError(f"Path escapes the storage root: {path}", path)

        return file_path

    def _relative_path(self, file_path: Path) -> str:
        key = file_path.relative_to(self.base_path).as_posix()
        return self._strip_object_key(key)

    def _check_readable(self, file_path: Path, path: str):
        if not os.access(file_path, os.R_OK):
            raise PermissionDeniedError(f"File is not readable: {path}", path)

    def _check_writable(self, file_path: Path, path: str):
        """Check the file itself if it exists, else its nearest existing parent"""
        target = file_path
        while not target.exists() and target != self.base_path:
            target = target.parent

        if not os.access(target, os.W_OK):
            raise PermissionDeniedError(f"Not writable: {path}", path)

    #-----------------------------------------------------

    async def info(self, path: str) -> Attribute:
        file_path = self._get_file_path(path)

        try:
            stat = await self._run(file_path.stat)
        except OSError as e:
            raise self._error("stat", e, path) from e

        self._check_readable(file_path, path)

        if file_path.is_dir():
            return DirectoryAttribute(
                path            = normalize_path(path),
                visibility      = self.visibility,
                last_modified   = int(stat.st_mtime)
            )

        return FileAttribute(
            path            = normalize_path(path),
            visibility      = self.visibility,
            last_modified   = int(stat.st_mtime),
            file_size       = stat.st_size,
            mime_type       = await self._sniff_content_type(file_path)
        )

    async def _sniff_content_type(self, file_path: Path) -> str:
        def head() -> bytes:
            with open(file_path, "rb") as f:
                return f.read(2048)

        try:
            content = await self._run(head)
        except OSError:
            content = b""

        content_type = self.get_content_type(content) if content else ""
        if not content_type or content_type in ("application/octet-stream", "text/plain", "inode/x-empty"):
            by_name = self.get_content_type_from_filename(file_path.name)
            if by_name != "application/octet-stream" or not content_type:
                content_type = by_name

        return content_type

    async def has_file(self, path: str) -> bool:
        if normalize_path(path).endswith("/"):
            return False

        try:
            return self._get_file_path(path).is_file()
        except (StorageError, OSError):
            return False

    async def has_dir(self, path: str) -> bool:
        try:
            return self._get_file_path(path).is_dir()
        except (StorageError, OSError):
            return False

    #-----------------------------------------------------

    async def read(self, path: str) -> ReadStream:
        file_path = self._get_file_path(path)

        if not file_path.is_file():
            raise NotFoundError(path=path)
        self._check_readable(file_path, path)

        try:
            f = await aiofiles.open(file_path, "rb")
        except OSError as e:
            raise self._error("read", e, path) from e

        return AsyncReadStream(f, path=path, translate_error=self._translate_error)

    async def save(self, path: str, content: Content, mime_type: str = ""):
        file_path = self._get_file_path(path)
        if file_path.is_dir():
            raise StorageError(f"Cannot overwrite a directory: {path}", path)

        self._check_writable(file_path, path)

        try:
            # Create parent directories
            await self._run(file_path.parent.mkdir, parents=True, exist_ok=True)

            async with aiofiles.open(file_path, "wb") as f:
                async for chunk in iter_chunks(content):
                    await f.write(chunk)

        except OSError as e:
            raise self._error("save", e, path) from e

        logger.info(f"File saved to local storage: {file_path}")

    async def copy(self, src: str, dst: str):
        src_path = self._get_file_path(src)
        dst_path = self._get_file_path(dst)

        if not src_path.is_file():
            raise NotFoundError(path=src)
        self._check_readable(src_path, src)
        self._check_writable(dst_path, dst)

        try:
            await self._run(dst_path.parent.mkdir, parents=True, exist_ok=True)
            await self._run(shutil.copyfile, src_path, dst_path)
        except OSError as e:
            raise self._error("copy", e, src) from e

        logger.info(f"File copied in local storage: {src_path} -> {dst_path}")

    async def delete(self, path: str):
        file_path = self._get_file_path(path)

        if not file_path.is_file():
            raise NotFoundError(path=path)
        if not os.access(file_path.parent, os.W_OK):
            raise PermissionDeniedError(f"Directory is not writable: {normalize_path(path).rsplit('/', 1)[0]}", path)

        try:
            await self._run(file_path.unlink)
        except OSError as e:
            raise self._error("delete", e, path) from e

        logger.info(f"File deleted from local storage: {file_path}")

    #-----------------------------------------------------

    async def mk_dir(self, path: str, mode: int = 0o755):
        dir_path = self._get_file_path(path)
        if dir_path.is_dir():
            return

        self._check_writable(dir_path, path)

        try:
            await self._run(os.makedirs, dir_path, mode, exist_ok=True)
        except OSError as e:
            raise self._error("create directory", e, path) from e

        logger.info(f"Directory created in local storage: {dir_path}")

    async def delete_dir(self, path: str):
        dir_path = self._get_file_path(path)

        if not dir_path.is_dir():
            raise NotFoundError(path=path)
        if dir_path == self.base_path:
            raise PermissionDeniedError(f"Cannot delete the storage root: {path}", path)
        if not os.access(dir_path.parent, os.W_OK):
            raise PermissionDeniedError(path=path)

        try:
            await self._run(dir_path.rmdir)
        except OSError as e:
            if e.errno in (errno.ENOTEMPTY, errno.EEXIST):
                raise StorageError(f"Directory is not empty: {path}", path) from e
            raise self._error("delete directory", e, path) from e

        logger.info(f"Directory deleted from local storage: {dir_path}")

    #-----------------------------------------------------

    async def list(self, path: str = "", recursive: bool = False) -> AsyncIterator[Attribute]:
        dir_path = self._get_file_path(path)
        if not dir_path.is_dir():
            raise NotFoundError(path=path)
        self._check_readable(dir_path, path)

        pending = [dir_path]
        while pending:
            current = pending.pop(0)

            try:
                entries = await self._run(_scan, current)
            except OSError as e:
                raise self._error("list", e, path) from e

            subdirs = []
            for entry_path, is_dir, size, mtime in entries:
                relative = self._relative_path(entry_path)

                if is_dir:
                    subdirs.append(entry_path)
                    yield DirectoryAttribute(
                        path            = relative,
                        visibility      = self.visibility,
                        last_modified   = int(mtime)
                    )
                else:
                    yield FileAttribute(
                        path            = relative,
                        visibility      = self.visibility,
                        last_modified   = int(mtime),
                        file_size       = size,
                        mime_type       = self.get_content_type_from_filename(entry_path.name)
                    )

            if recursive:
                pending[0:0] = subdirs

    #-----------------------------------------------------

    async def full_path(self, path: str) -> str:
        """Local files are served as they are, there is nothing to sign"""
        return self._public_url(self._build_object_key(path))

    def _url_bases(self) -> list[str]:
        return [self.base_url]

    async def _check_bucket(self):
        if not self.base_path.is_dir():
            raise NotFoundError(path=str(self.base_path))
        if not os.access(self.base_path, os.R_OK | os.W_OK):
            raise PermissionDeniedError(path=str(self.base_path))

    def _translate_error(self, e: Exception, path: str = "") -> StorageError:
        if isinstance(e, StorageError):
            return e
        if isinstance(e, FileNotFoundError):
            return NotFoundError(path=path)
        if isinstance(e, PermissionError):
            return PermissionDeniedError(path=path)
        return StorageError(str(e), path)

#-----------------------------------------------------------------------------

def _scan(dir_path: Path) -> list[tuple[Path, bool, int, float]]:
    """Directory entries sorted by name, symlinks are not followed"""
    entries = []
    with os.scandir(dir_path) as it:
        for entry in it:
            stat = entry.stat(follow_symlinks=False)
            is_dir = entry.is_dir(follow_symlinks=False)
            entries.append((Path(entry.path), is_dir, 0 if is_dir else stat.st_size, stat.st_mtime))

    entries.sort(key=lambda item: item[0].name)
    return entries

#-----------------------------------------------------------------------------
