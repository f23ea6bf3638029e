# services/request_stream.py
import io
from typing import AsyncIterator, Optional

import anyio.from_thread


class RequestBodyReader(io.RawIOBase):
    """Blocking file-like view over an async request body.

    Reads must happen in a worker thread started by anyio (starlette's
    ``run_in_threadpool`` does this); every refill hops back to the event
    loop to pull the next block of the body.
    """

    def __init__(self, body: AsyncIterator[bytes]):
        self._body = body.__aiter__()
        self._pending = b""
        self._done = False

    def readable(self) -> bool:
        return True

    async def _next_block(self) -> Optional[bytes]:
        try:
            return await self._body.__anext__()
        except StopAsyncIteration:
            return None

    def readinto(self, buffer) -> int:
        while not self._pending and not self._done:
            block = anyio.from_thread.run(self._next_block)
            if block is None:
                self._done = True
            else:
                self._pending = bytes(block)

        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size
