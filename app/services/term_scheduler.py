import logging
from datetime import date
from threading import Event, Lock, Thread
from typing import Callable

from app.config import get_settings, local_today
from app.db import get_connection
from app.services.repository import PostgresRepository
from app.services.sk_terms import TermSweepResult, run_term_status_sweep

logger = logging.getLogger(__name__)

TERM_SCHEDULER_STATE = {
    "enabled": False,
    "running": False,
    "last_run_date": None,
    "last_success": None,
    "last_error": None,
}

_RUN_LOCK = Lock()


def run_sweep_once(
    repo,
    today: date | None = None,
    *,
    audit=None,
    notifier=None,
) -> TermSweepResult:
    """Run the term status sweep unless one is already running in this process."""
    today = today or local_today()
    with _RUN_LOCK:
        if TERM_SCHEDULER_STATE["running"]:
            logger.info("term_status_sweep_skipped reason=already_running run_date=%s", today)
            return TermSweepResult(run_date=today, success=True, skipped=True)
        TERM_SCHEDULER_STATE["running"] = True

    try:
        result = run_term_status_sweep(repo, today, audit=audit, notifier=notifier)
    finally:
        with _RUN_LOCK:
            TERM_SCHEDULER_STATE["running"] = False

    TERM_SCHEDULER_STATE["last_run_date"] = today.isoformat()
    TERM_SCHEDULER_STATE["last_success"] = result.success
    TERM_SCHEDULER_STATE["last_error"] = "; ".join(result.errors) or None
    return result


def _sweep_with_own_connection(audit=None, notifier=None) -> TermSweepResult:
    with get_connection() as conn:
        return run_sweep_once(PostgresRepository(conn), audit=audit, notifier=notifier)


class TermStatusScheduler:
    """Daemon thread that runs the sweep once at start and then every interval.

    The running flag is per process; deployments with several instances should
    disable it and call the job endpoint from one external cron instead.
    """

    def __init__(
        self,
        interval_sec: float,
        run_fn: Callable[[], TermSweepResult] = _sweep_with_own_connection,
    ):
        self.interval_sec = max(1.0, float(interval_sec))
        self._run_fn = run_fn
        self._stop = Event()
        self._thread: Thread | None = None

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_alive:
            return
        self._stop.clear()
        self._thread = Thread(target=self._loop, name="term-status-scheduler", daemon=True)
        self._thread.start()
        TERM_SCHEDULER_STATE["enabled"] = True
        logger.info("term_status_scheduler_started interval_sec=%s", self.interval_sec)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        self._thread = None
        TERM_SCHEDULER_STATE["enabled"] = False
        logger.info("term_status_scheduler_stopped")

    def tick(self) -> TermSweepResult | None:
        try:
            return self._run_fn()
        except Exception as exc:  # noqa: BLE001
            TERM_SCHEDULER_STATE["last_success"] = False
            TERM_SCHEDULER_STATE["last_error"] = str(exc)
            logger.exception("term_status_scheduler_tick_failed")
            return None

    def _loop(self) -> None:
        while not self._stop.is_set():
            self.tick()
            if self._stop.wait(self.interval_sec):
                break


_SCHEDULER: TermStatusScheduler | None = None


def start_term_scheduler_from_settings(audit=None, notifier=None) -> TermStatusScheduler | None:
    global _SCHEDULER
    settings = get_settings()
    if not settings.term_status_sweep_enabled:
        logger.info("term_status_scheduler_disabled")
        return None
    if _SCHEDULER is None:
        _SCHEDULER = TermStatusScheduler(
            settings.term_status_sweep_interval_sec,
            run_fn=lambda: _sweep_with_own_connection(audit=audit, notifier=notifier),
        )
    _SCHEDULER.start()
    return _SCHEDULER


def stop_term_scheduler() -> None:
    global _SCHEDULER
    if _SCHEDULER is not None:
        _SCHEDULER.stop()
        _SCHEDULER = None
