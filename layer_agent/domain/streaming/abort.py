from typing import AsyncIterable, AsyncIterator, Optional, TypeVar
import asyncio
import contextlib


T = TypeVar("T")


class AbortHandle:
    """Cooperative cancellation signal for one streaming network call.

    The signal is honoured at read boundaries only: ``guard`` checks it before
    every chunk read and races each pending read against it.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def abort(self, reason: str = "aborted"):
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    async def wait(self):
        await self._event.wait()

    async def guard(self, chunks: AsyncIterable[T]) -> AsyncIterator[T]:
        """Yield from ``chunks`` until exhausted or aborted"""

        iterator = chunks.__aiter__()
        waiter = asyncio.ensure_future(self._event.wait())
        read: Optional[asyncio.Future] = None
        try:
            while not self._event.is_set():
                read = asyncio.ensure_future(iterator.__anext__())
                done, _ = await asyncio.wait({read, waiter}, return_when=asyncio.FIRST_COMPLETED)
                if read not in done:
                    break
                pending_read, read = read, None
                try:
                    chunk = pending_read.result()
                except StopAsyncIteration:
                    return
                yield chunk
        finally:
            waiter.cancel()
            if read is not None and not read.done():
                read.cancel()
                with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
                    await read
