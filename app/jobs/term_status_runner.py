"""Trigger the SK term status sweep over HTTP, retrying transient failures.

Meant for an external daily cron when the in-process scheduler is disabled,
for example with several API instances behind a load balancer.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

import httpx

JOB_PATH = "/api/v1/jobs/update-term-statuses"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class SweepAttempt:
    attempt: int
    http_status: int | None
    job_status: str | None
    failure_class: str | None
    retryable: bool
    request_timeout_seconds: float
    error: str | None = None
    detail: str | None = None
    cause_code: str | None = None
    started_at: str | None = None
    duration_seconds: float | None = None
    next_backoff_seconds: float | None = None


@dataclass
class SweepRunnerResult:
    success: bool
    attempts: list[SweepAttempt]
    finished_at: str
    started_at: str | None = None
    activated: list[str] | None = None
    completed: list[str] | None = None
    officials_affected: int = 0
    failure_class: str | None = None
    cause_code: str | None = None
    failure_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["attempts"] = [asdict(item) for item in self.attempts]
        return payload


RequestFn = Callable[[str, dict[str, str], float], httpx.Response]
EventLogFn = Callable[[dict[str, Any]], None]


def default_request_fn(url: str, headers: dict[str, str], timeout: float) -> httpx.Response:
    return httpx.post(url, headers=headers, json={}, timeout=timeout)


def _job_status(body: Any) -> str | None:
    if not isinstance(body, dict) or "success" not in body:
        return None
    if body.get("skipped"):
        return "skipped"
    return "success" if body.get("success") else "failed"


def _classify_failure(http_status: int | None, job_status: str | None, error: str | None) -> str | None:
    if error is not None:
        return "timeout" if "timeout" in error.lower() else "request_error"
    if http_status is None:
        return "request_error"
    if http_status in {401, 403}:
        return "auth_rejected"
    if http_status in {408, 429}:
        return f"http_{http_status}"
    if 400 <= http_status < 500:
        return "http_4xx"
    if http_status >= 500:
        return "http_5xx"
    if job_status in {"success", "skipped"}:
        return None
    if job_status == "failed":
        return "job_failed"
    return "unknown_failure"


def _derive_cause_code(failure_class: str | None, http_status: int | None, detail: str | None) -> str | None:
    lowered = (detail or "").lower()
    if failure_class is None:
        return None
    if "database is not configured" in lowered:
        return "db_config_missing"
    if "database schema" in lowered:
        return "db_schema_mismatch"
    if "database connection failed" in lowered:
        return "db_connection_error"
    if "database query failed" in lowered:
        return "db_query_error"
    if "internal job token is not configured" in lowered:
        return "job_token_missing"
    if failure_class == "http_5xx" and http_status is not None:
        return f"http_{http_status}"
    return failure_class


def _is_retryable(failure_class: str | None) -> bool:
    return failure_class not in {None, "auth_rejected", "http_4xx"}


def _next_backoff_seconds(failure_class: str | None, base_backoff_seconds: float, attempt: int) -> float:
    step = max(0.0, base_backoff_seconds) * max(1, attempt)
    if failure_class == "timeout":
        return max(step, 5.0)
    if failure_class in {"http_408", "http_429", "http_5xx", "request_error"}:
        return max(step, 2.0)
    return step


def _to_error_detail(body: Any) -> str | None:
    if isinstance(body, dict):
        detail = body.get("detail")
        if detail is None and body.get("errors"):
            detail = "; ".join(str(item) for item in body["errors"])
        return None if detail is None else str(detail)
    return None if body is None else str(body)


def _emit_event(event_log_fn: EventLogFn | None, *, event: str, **fields: Any) -> None:
    if event_log_fn is None:
        return
    try:
        event_log_fn({"ts": utc_now(), "event": event, **fields})
    except Exception:  # noqa: BLE001
        return


def run_term_sweep_with_retry(
    *,
    api_base_url: str,
    token: str,
    max_retries: int = 2,
    backoff_seconds: float = 1.0,
    request_timeout: float = 60.0,
    request_fn: RequestFn = default_request_fn,
    sleep_fn: Callable[[float], None] = time.sleep,
    event_log_fn: EventLogFn | None = None,
) -> SweepRunnerResult:
    started_at = utc_now()
    max_attempts = max(1, max_retries + 1)
    url = api_base_url.rstrip("/") + JOB_PATH
    headers = {"Authorization": f"Bearer {token}"}
    timeout = max(1.0, request_timeout)
    attempts: list[SweepAttempt] = []
    _emit_event(event_log_fn, event="run_start", url=url, max_attempts=max_attempts)

    for attempt in range(1, max_attempts + 1):
        attempt_started_at = utc_now()
        attempt_started = time.monotonic()
        http_status: int | None = None
        error: str | None = None
        body: Any = None
        try:
            response = request_fn(url, headers, timeout)
            http_status = response.status_code
            try:
                body = response.json()
            except Exception:  # noqa: BLE001
                body = {"detail": (getattr(response, "text", "") or "non-json response")[:300]}
        except Exception as exc:  # noqa: BLE001
            error = f"{exc.__class__.__name__}: {exc}"

        job_status = _job_status(body)
        detail = _to_error_detail(body) if job_status != "success" else None
        failure_class = _classify_failure(http_status, job_status, error)
        retryable = _is_retryable(failure_class)
        next_backoff = (
            _next_backoff_seconds(failure_class, backoff_seconds, attempt)
            if retryable and attempt < max_attempts
            else None
        )
        attempts.append(
            SweepAttempt(
                attempt=attempt,
                http_status=http_status,
                job_status=job_status,
                failure_class=failure_class,
                retryable=retryable,
                request_timeout_seconds=timeout,
                error=error,
                detail=detail,
                cause_code=_derive_cause_code(failure_class, http_status, detail),
                started_at=attempt_started_at,
                duration_seconds=round(time.monotonic() - attempt_started, 3),
                next_backoff_seconds=next_backoff,
            )
        )
        _emit_event(
            event_log_fn,
            event="attempt_result",
            attempt=attempt,
            http_status=http_status,
            job_status=job_status,
            failure_class=failure_class,
            retryable=retryable,
        )

        if failure_class is None:
            _emit_event(event_log_fn, event="run_end", success=True, attempt_count=len(attempts))
            return SweepRunnerResult(
                success=True,
                attempts=attempts,
                started_at=started_at,
                finished_at=utc_now(),
                activated=[item.get("term_id") for item in body.get("activated", [])],
                completed=[item.get("term_id") for item in body.get("completed", [])],
                officials_affected=int(body.get("officials_affected") or 0),
            )

        if next_backoff is None:
            break
        _emit_event(event_log_fn, event="retry_wait", attempt=attempt, backoff_seconds=next_backoff)
        sleep_fn(next_backoff)

    last = attempts[-1]
    reason = last.error or last.detail or f"http_status={last.http_status}"
    _emit_event(event_log_fn, event="run_end", success=False, attempt_count=len(attempts))
    return SweepRunnerResult(
        success=False,
        attempts=attempts,
        started_at=started_at,
        finished_at=utc_now(),
        failure_class=last.failure_class,
        cause_code=last.cause_code,
        failure_reason=f"{last.failure_class}: {reason}",
    )


def write_runner_report(path: str | Path, result: SweepRunnerResult) -> None:
    report_path = Path(path)
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(result.to_dict(), ensure_ascii=False, indent=2) + "\n", encoding="utf-8")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Trigger the SK term status sweep over HTTP")
    parser.add_argument("--api-base-url", default=os.getenv("API_BASE_URL", "http://127.0.0.1:8000"))
    parser.add_argument("--token", default=os.getenv("INTERNAL_JOB_TOKEN"))
    parser.add_argument("--max-retries", type=int, default=2)
    parser.add_argument("--backoff-seconds", type=float, default=1.0)
    parser.add_argument("--request-timeout", type=float, default=60.0)
    parser.add_argument("--report", help="Write the run report as JSON to this path")
    args = parser.parse_args(argv)

    if not args.token:
        parser.error("--token or INTERNAL_JOB_TOKEN is required")

    result = run_term_sweep_with_retry(
        api_base_url=args.api_base_url,
        token=args.token,
        max_retries=args.max_retries,
        backoff_seconds=args.backoff_seconds,
        request_timeout=args.request_timeout,
        event_log_fn=lambda event: print(json.dumps(event, ensure_ascii=False), file=sys.stderr),
    )
    if args.report:
        write_runner_report(args.report, result)
    print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    return 0 if result.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
