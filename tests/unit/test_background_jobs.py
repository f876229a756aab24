import asyncio

import pytest

from app.jobs.metrics import JobMetrics, run_periodically


def test_job_metrics_summary():
    metrics = JobMetrics("demo")
    metrics.record_success("a")
    metrics.record_failure("b", "boom")
    metrics.increment("widgets", 3)
    metrics.finalize()

    summary = metrics.to_dict()

    assert summary["job_run"] == "demo"
    assert summary["processed"] == 2
    assert summary["success_rate_percent"] == 50.0
    assert summary["errors_count"] == 1
    assert summary["widgets"] == 3


@pytest.mark.asyncio
async def test_run_periodically_survives_failed_runs():
    stop = asyncio.Event()
    calls = []

    async def run_once():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first run fails")
        stop.set()
        return {}

    await asyncio.wait_for(run_periodically("demo", run_once, 0.01, stop), timeout=1)

    assert len(calls) == 2


@pytest.mark.asyncio
async def test_scan_job_counts_accounts_and_emails(pipeline, fake_gateway, make_message):
    fake_gateway.add(make_message("m1", "Your Netflix receipt"))
    fake_gateway.add(make_message("m2", "Spotify invoice"))

    metrics = await pipeline.scan_job.run_once()

    assert metrics["succeeded"] == 1
    assert metrics["accounts_scanned"] == 1
    assert metrics["emails_queued"] == 2
    assert pipeline.scan_job.get_job_status()["is_running"] is False


@pytest.mark.asyncio
async def test_alert_generation_job_runs_every_user(pipeline, now):
    metrics = await pipeline.alert_generation_job.run_once(now)

    assert metrics["job_run"] == "alert_generation"
    assert metrics["succeeded"] == 1
    assert metrics["alerts_created"] == 0


@pytest.mark.asyncio
async def test_enrichment_worker_records_missing_vendor(pipeline):
    pipeline.vendor_queue.submit("missing-vendor")

    metrics = await pipeline.enrichment_worker.drain()

    assert metrics["failed"] == 1
    assert pipeline.vendor_queue.qsize() == 0
