import logging
from concurrent.futures import Future, ThreadPoolExecutor
from threading import Lock
from typing import Any, Callable

from app.config import get_settings

logger = logging.getLogger(__name__)

_EXECUTOR: ThreadPoolExecutor | None = None
_EXECUTOR_LOCK = Lock()


def get_executor() -> ThreadPoolExecutor:
    global _EXECUTOR
    with _EXECUTOR_LOCK:
        if _EXECUTOR is None:
            try:
                workers = max(1, int(get_settings().side_effect_workers))
            except Exception:  # noqa: BLE001
                workers = 4
            _EXECUTOR = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="side-effect")
        return _EXECUTOR


def shutdown_executor(wait: bool = True) -> None:
    global _EXECUTOR
    with _EXECUTOR_LOCK:
        executor, _EXECUTOR = _EXECUTOR, None
    if executor is not None:
        executor.shutdown(wait=wait)


def _run_logged(label: str, fn: Callable[..., Any], args: tuple, kwargs: dict) -> None:
    try:
        fn(*args, **kwargs)
    except Exception as exc:  # noqa: BLE001
        logger.warning("side_effect_failed label=%s error=%s", label, exc)


def fire_and_forget(fn: Callable[..., Any], *args, label: str = "side_effect", **kwargs) -> Future:
    """Run ``fn`` off the request path; failures are logged, never raised."""
    return get_executor().submit(_run_logged, label, fn, args, kwargs)


def run_inline(fn: Callable[..., Any], *args, label: str = "side_effect", **kwargs) -> None:
    _run_logged(label, fn, args, kwargs)
