"""Revenue report jobs.

``SendRevenueReportJob`` computes a revenue figure, calls the verification
and reporting endpoints and chains ``ConfirmRevenueReportJob`` with the
report id it gets back. Both jobs run their ``handle()`` under
``run_with_retry`` with a bounded number of attempts and a fixed backoff
schedule; the final failure is re-raised to the caller.

Endpoints and timeouts come from Django settings (``REVENUE_*_URL``,
``HTTP_TIMEOUT_SECS``). ``sleep`` is injectable so tests do not wait.
"""

import logging
import time
from datetime import date
from typing import Callable, Optional, Sequence

import httpx
from django.conf import settings
from django.utils import timezone

from gateway.middleware import REQUEST_ID_CTX

from .revenue import RevenueManager

logger = logging.getLogger("reports.jobs")

REPORT_TYPES = ("daily", "weekly", "monthly", "custom")


def run_with_retry(
    fn: Callable[[], object],
    attempts: int,
    backoff: Sequence[float],
    sleep: Callable[[float], None] = time.sleep,
    name: str = "job",
):
    """Call ``fn`` until it succeeds or ``attempts`` calls have failed.

    The delay before retry ``n`` is ``backoff[n - 1]``; once the schedule is
    exhausted its last value is reused.

    Raises:
        Exception: Whatever the last attempt raised.
    """
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as e:
            if attempt >= attempts:
                logger.error(
                    "job failed permanently",
                    exc_info=True,
                    extra={"job": name, "attempt": attempt},
                )
                raise
            delay = backoff[min(attempt - 1, len(backoff) - 1)] if backoff else 0
            logger.warning(
                "job attempt failed; retrying",
                extra={"job": name, "attempt": attempt, "delay": delay, "error": str(e)},
            )
            sleep(delay)


def _headers() -> dict:
    rid = REQUEST_ID_CTX.get()
    return {"X-Request-ID": rid} if rid and rid != "-" else {}


def _response_id(resp):
    try:
        body = resp.json()
    except ValueError:
        return None
    return body.get("id") if isinstance(body, dict) else None


class ConfirmRevenueReportJob:
    """Confirms a submitted report with the reporting service.

    Attributes:
        tries (int): Attempts before giving up.
        backoff (tuple[int, ...]): Seconds to wait before each retry.
    """

    tries = 5
    backoff = (30, 60, 120, 300)

    def __init__(self, report_id: Optional[str], sleep: Callable[[float], None] = time.sleep):
        self.report_id = report_id
        self.sleep = sleep

    def run(self):
        return run_with_retry(self.handle, self.tries, self.backoff, sleep=self.sleep, name="confirm_revenue_report")

    def handle(self):
        if not self.report_id:
            logger.warning("confirm skipped: missing report id")
            return None

        logger.info("confirming revenue report", extra={"report_id": self.report_id})
        with httpx.Client(timeout=settings.HTTP_TIMEOUT_SECS) as client:
            resp = client.post(
                settings.REVENUE_CONFIRM_URL,
                json={"report_id": self.report_id, "timestamp": int(timezone.now().timestamp())},
                headers=_headers(),
            )
            resp.raise_for_status()
        logger.info("revenue report confirmed", extra={"report_id": self.report_id})
        return self.report_id


class SendRevenueReportJob:
    """Computes and submits a revenue report.

    Args:
        report_type: ``daily``, ``weekly``, ``monthly`` or ``custom``.
        start: First day for ``custom`` reports.
        end: Last day for ``custom`` reports.
        revenue: Revenue source; a ``RevenueManager`` by default.
        sleep: Used for retry backoff and the confirmation delay.
        confirm_delay: Seconds to wait before chaining the confirmation.

    Raises:
        ValueError: Unknown report type, or a ``custom`` report without both
            dates.
    """

    tries = 3
    backoff = (60, 120, 300)

    def __init__(
        self,
        report_type: str = "daily",
        start: Optional[date] = None,
        end: Optional[date] = None,
        revenue: Optional[RevenueManager] = None,
        sleep: Callable[[float], None] = time.sleep,
        confirm_delay: float = 10,
    ):
        if report_type not in REPORT_TYPES:
            raise ValueError(f"unknown report type: {report_type!r}")
        if report_type == "custom" and not (start and end):
            raise ValueError("custom report requires both start and end dates")
        self.report_type = report_type
        self.start = start
        self.end = end
        self.revenue = revenue or RevenueManager(ttl=getattr(settings, "REVENUE_CACHE_TTL", 3600))
        self.sleep = sleep
        self.confirm_delay = confirm_delay

    def run(self):
        report_id = run_with_retry(self.handle, self.tries, self.backoff, sleep=self.sleep, name="send_revenue_report")
        if self.confirm_delay:
            self.sleep(self.confirm_delay)
        ConfirmRevenueReportJob(report_id, sleep=self.sleep).run()
        return report_id

    def calculate(self):
        if self.report_type == "weekly":
            return self.revenue.weekly_revenue()
        if self.report_type == "monthly":
            return self.revenue.monthly_revenue()
        if self.report_type == "custom":
            return self.revenue.revenue_between(self.start, self.end)
        return self.revenue.daily_revenue()

    def handle(self) -> Optional[str]:
        """Submit the report once; returns the report id (may be ``None``)."""
        logger.info(
            "revenue report started",
            extra={"type": self.report_type, "from": str(self.start), "to": str(self.end)},
        )
        total = self.calculate()
        payload = {
            "type": self.report_type,
            "from": self.start.isoformat() if self.start else None,
            "to": self.end.isoformat() if self.end else None,
            "total_revenue": str(total),
        }
        headers = _headers()
        with httpx.Client(timeout=settings.HTTP_TIMEOUT_SECS) as client:
            verify = client.post(settings.REVENUE_VERIFY_URL, headers=headers)
            verify.raise_for_status()
            report = client.post(settings.REVENUE_REPORT_URL, json=payload, headers=headers)
            report.raise_for_status()

        verification_id = _response_id(verify)
        report_id = _response_id(report)
        logger.info(
            "revenue report submitted",
            extra={"type": self.report_type, "verification_id": verification_id, "report_id": report_id},
        )
        return str(report_id) if report_id is not None else None
