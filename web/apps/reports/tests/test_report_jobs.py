"""Tests for the revenue report jobs and their retry policy."""
from datetime import date
from decimal import Decimal

import httpx
import pytest
from django.core.management import CommandError, call_command

from apps.reports.jobs import ConfirmRevenueReportJob, SendRevenueReportJob, run_with_retry


class FakeRevenue:
    def daily_revenue(self):
        return Decimal("12.00")

    def weekly_revenue(self):
        return Decimal("84.00")

    def monthly_revenue(self):
        return Decimal("360.00")

    def revenue_between(self, start, end):
        return Decimal("7.00")


class Resp:
    def __init__(self, status_code=200, body=None, url="http://x"):
        self.status_code = status_code
        self._body = body
        self.request = httpx.Request("POST", url)

    def json(self):
        if self._body is None:
            raise ValueError("empty body")
        return self._body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise httpx.HTTPStatusError("error", request=self.request, response=None)


@pytest.fixture()
def endpoints(settings):
    settings.REVENUE_VERIFY_URL = "http://verify"
    settings.REVENUE_REPORT_URL = "http://report"
    settings.REVENUE_CONFIRM_URL = "http://confirm"
    return settings


def _patch_post(monkeypatch, handler):
    calls = []

    def fake_post(self, url, json=None, headers=None, **kw):
        calls.append((url, json))
        return handler(url, len(calls))

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    return calls


def test_run_with_retry_uses_backoff_schedule():
    sleeps, attempts = [], []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise RuntimeError("try again")
        return "done"

    assert run_with_retry(flaky, 5, (30, 60), sleep=sleeps.append) == "done"
    assert sleeps == [30, 60]


def test_run_with_retry_reraises_after_last_attempt():
    sleeps = []

    def broken():
        raise RuntimeError("down")

    with pytest.raises(RuntimeError):
        run_with_retry(broken, 3, (60, 120, 300), sleep=sleeps.append)
    assert sleeps == [60, 120]


def test_custom_report_requires_dates():
    with pytest.raises(ValueError):
        SendRevenueReportJob("custom", start=date(2025, 1, 1), revenue=FakeRevenue())


def test_unknown_report_type():
    with pytest.raises(ValueError):
        SendRevenueReportJob("yearly", revenue=FakeRevenue())


def test_report_is_sent_and_confirmed(monkeypatch, endpoints):
    def handler(url, n):
        return {
            "http://verify": Resp(200, {"id": "v-1"}),
            "http://report": Resp(200, {"id": "r-1"}),
            "http://confirm": Resp(200, {"ok": True}),
        }[url]

    calls = _patch_post(monkeypatch, handler)
    sleeps = []
    job = SendRevenueReportJob("weekly", revenue=FakeRevenue(), sleep=sleeps.append)

    assert job.run() == "r-1"
    assert [c[0] for c in calls] == ["http://verify", "http://report", "http://confirm"]
    assert calls[1][1] == {"type": "weekly", "from": None, "to": None, "total_revenue": "84.00"}
    assert calls[2][1]["report_id"] == "r-1"
    assert sleeps == [10]


def test_custom_report_payload(monkeypatch, endpoints):
    calls = _patch_post(monkeypatch, lambda url, n: Resp(200, {"id": "r-2"}))
    job = SendRevenueReportJob(
        "custom", start=date(2025, 1, 1), end=date(2025, 1, 31), revenue=FakeRevenue(), confirm_delay=0
    )
    job.run()
    assert calls[1][1] == {"type": "custom", "from": "2025-01-01", "to": "2025-01-31", "total_revenue": "7.00"}


def test_report_failure_is_retried_then_raised(monkeypatch, endpoints):
    calls = _patch_post(monkeypatch, lambda url, n: Resp(503))
    sleeps = []
    job = SendRevenueReportJob("daily", revenue=FakeRevenue(), sleep=sleeps.append)

    with pytest.raises(httpx.HTTPStatusError):
        job.run()
    assert len(calls) == 3
    assert sleeps == [60, 120]


def test_confirm_without_report_id_is_a_noop(monkeypatch, endpoints, caplog):
    calls = _patch_post(monkeypatch, lambda url, n: Resp(200, {}))
    with caplog.at_level("WARNING", logger="reports.jobs"):
        assert ConfirmRevenueReportJob(None).run() is None
    assert calls == []
    assert "missing report id" in caplog.text


def test_confirm_retries_with_its_own_schedule(monkeypatch, endpoints):
    _patch_post(monkeypatch, lambda url, n: Resp(500))
    sleeps = []
    with pytest.raises(httpx.HTTPStatusError):
        ConfirmRevenueReportJob("r-9", sleep=sleeps.append).run()
    assert sleeps == [30, 60, 120, 300]


def test_management_command_rejects_incomplete_custom_report():
    with pytest.raises(CommandError):
        call_command("send_revenue_report", "--type", "custom", "--from", "2025-01-01")
