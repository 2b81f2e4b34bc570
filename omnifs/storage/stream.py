"""
Lazily-consumed byte streams returned by AbstractStorage.read()

Usage:
    async with await storage.read("docs/report.pdf") as stream:
        async for chunk in stream:
            ...
"""

import asyncio
import logging

from functools import partial
from typing import Any, Awaitable, Callable

from .errors import StorageError, TransientError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

#-----------------------------------------------------------------------------

class ReadStream:
    """
    Async byte stream over a backend response body

    Subclasses implement _read() and _close(). The stream is closed once,
    either explicitly or when leaving the async context. Body failures
    surface as StorageError, mapped by translate_error when given.
    """

    def __init__(
        self,
        path            : str = "",
        chunk_size      : int = CHUNK_SIZE,
        translate_error : Callable[[Exception, str], StorageError] | None = None
    ):
        self.path = path
        self.chunk_size = chunk_size
        self._translate_error = translate_error
        self._closed = False

    #-----------------------------------------------------

    async def read(self, size: int = -1) -> bytes:
        """Read up to size bytes, or everything left when size < 0"""
        if self._closed:
            raise ValueError(f"I/O operation on closed stream: {self.path}")

        if size is not None and size >= 0:
            return await self._read_chunk(size)

        buffer = bytearray()
        while True:
            chunk = await self._read_chunk(self.chunk_size)
            if not chunk:
                break
            buffer.extend(chunk)
        return bytes(buffer)

    async def _read_chunk(self, size: int) -> bytes:
        try:
            return await self._read(size)
        except StorageError:
            raise
        except Exception as e:
            logger.warning(f"Failed to read stream {self.path}: {str(e)}")

            error = self._translate_error(e, self.path) if self._translate_error else None
            if not isinstance(error, StorageError):
                error = TransientError(str(e), self.path)
            raise error from e

    async def close(self):
        if self._closed:
            return
        self._closed = True
        await self._close()

    @property
    def closed(self) -> bool:
        return self._closed

    #-----------------------------------------------------

    async def __aenter__(self) -> "ReadStream":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        chunk = await self.read(self.chunk_size)
        if not chunk:
            raise StopAsyncIteration
        return chunk

    #-----------------------------------------------------

    async def _read(self, size: int) -> bytes: ...

    async def _close(self): ...

#-----------------------------------------------------------------------------

class ExecutorReadStream(ReadStream):
    """
    Stream over a synchronous file-like body (oss2, minio, obs, cos)

    Every read runs in the default executor so the event loop never blocks
    on the network.
    """

    def __init__(
        self,
        body            : Any,
        path            : str = "",
        chunk_size      : int = CHUNK_SIZE,
        on_close        : Callable[[], Any] | None = None,
        translate_error : Callable[[Exception, str], StorageError] | None = None
    ):
        super().__init__(path, chunk_size, translate_error)
        self._body = body
        self._on_close = on_close

    async def _read(self, size: int) -> bytes:
        loop = asyncio.get_running_loop()
        data = await loop.run_in_executor(None, partial(self._body.read, size))
        return bytes(data or b"")

    async def _close(self):
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._release)

    def _release(self):
        # urllib3 responses need both close() and release_conn().
        for name in ("close", "release_conn"):
            method = getattr(self._body, name, None)
            if callable(method):
                method()

        if self._on_close:
            self._on_close()

#-----------------------------------------------------------------------------

class AsyncReadStream(ReadStream):
    """Stream over an awaitable body (aiofiles, aiobotocore)"""

    def __init__(
        self,
        body            : Any,
        path            : str = "",
        chunk_size      : int = CHUNK_SIZE,
        on_close        : Callable[[], Awaitable[Any]] | None = None,
        translate_error : Callable[[Exception, str], StorageError] | None = None
    ):
        super().__init__(path, chunk_size, translate_error)
        self._body = body
        self._on_close = on_close

    async def _read(self, size: int) -> bytes:
        data = await self._body.read(size)
        return bytes(data or b"")

    async def _close(self):
        try:
            result = self._body.close()
            if asyncio.iscoroutine(result):
                await result
        finally:
            if self._on_close:
                await self._on_close()

#-----------------------------------------------------------------------------
