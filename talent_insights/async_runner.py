"""Run coroutines from synchronous code on one long-lived event loop

The database pool and its connections belong to the loop they were opened on,
so every request from Flask's worker threads is submitted to the same loop.
"""
import asyncio
import concurrent.futures
import logging
import threading
import time
from typing import Any, Coroutine, Optional

logger = logging.getLogger(__name__)


class BackgroundLoop:
    """A dedicated event loop running in a daemon thread"""

    def __init__(self, timeout: Optional[float] = 120.0):
        self.timeout = timeout
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def _run_forever(self, loop: asyncio.AbstractEventLoop):
        asyncio.set_event_loop(loop)
        loop.run_forever()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None or not self._loop.is_running():
                loop = asyncio.new_event_loop()
                self._thread = threading.Thread(target=self._run_forever, args=(loop,), daemon=True)
                self._thread.start()
                for _ in range(50):  # up to 5 seconds
                    if loop.is_running():
                        break
                    time.sleep(0.1)
                if not loop.is_running():
                    raise RuntimeError("Failed to start async event loop")
                self._loop = loop
        return self._loop

    def run(self, coro: Coroutine) -> Any:
        """Submit a coroutine and block until it finishes

        Raises:
            TimeoutError: If the coroutine outlives the timeout; it is cancelled
        """
        future = asyncio.run_coroutine_threadsafe(coro, self._get_loop())
        try:
            return future.result(timeout=self.timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            logger.error(f"Async execution timed out after {self.timeout}s")
            raise
        except Exception as e:
            logger.error(f"Async execution error: {e}")
            raise

    def stop(self):
        with self._lock:
            if self._loop is not None and self._loop.is_running():
                self._loop.call_soon_threadsafe(self._loop.stop)
                if self._thread is not None:
                    self._thread.join(timeout=5)
            self._loop = None
            self._thread = None
