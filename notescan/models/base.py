import logging
from abc import ABC, abstractmethod
from concurrent.futures import Executor, Future, TimeoutError as FutureTimeoutError
from typing import Callable, List, Optional, TypeVar

from PIL import Image

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _log_abandoned(label: str):
    def _done(future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.warning("%s failed after its timeout: %s", label, exc)
        else:
            logger.debug("%s finished after its timeout", label)
    return _done


def call_with_timeout(pool: Executor, fn: Callable[..., T], timeout_s: float, *args,
                      default: Optional[T] = None, label: str = "call",
                      abandoned: Optional[List[Future]] = None) -> Optional[T]:
    """
    Run ``fn(*args)`` on ``pool`` and give up after ``timeout_s`` seconds.

    A call that is already running cannot be stopped. On timeout its future
    is appended to ``abandoned`` so the caller can hold on to shared
    resources until it returns, and its outcome is logged when it does.

    Returns:
        The call's result, or ``default`` on timeout
    """
    future = pool.submit(fn, *args)
    try:
        return future.result(timeout=timeout_s)
    except FutureTimeoutError:
        logger.warning("%s timed out after %.0fs", label, timeout_s)
        if not future.cancel():
            future.add_done_callback(_log_abandoned(label))
            if abandoned is not None:
                abandoned.append(future)
        return default


class OcrEngine(ABC):
    """Interface for page OCR: a rendered page in, plain text out."""

    @abstractmethod
    def recognize(self, image: Image.Image) -> str:
        raise NotImplementedError
