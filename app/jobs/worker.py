"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable, builds the pipeline from PIPELINE_FACTORY and runs the job.
The in-memory scheduler is process-local, so "pipeline" (the default) runs
the processor together with every periodic job.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from app.bootstrap import Pipeline, load_object
from app.config import settings
from app.infrastructure.observability.logging import bind_job_context, get_logger, setup_logging
from app.jobs.metrics import run_periodically

logger = get_logger(__name__)

JobCoroutine = Callable[[Pipeline], Awaitable[None]]


async def run_email_processor(pipeline: Pipeline) -> None:
    await pipeline.processor.run(asyncio.Event())


async def run_vendor_enrichment(pipeline: Pipeline) -> None:
    await pipeline.enrichment_worker.run(asyncio.Event())


async def start_email_scan_scheduler(pipeline: Pipeline) -> None:
    await run_periodically(
        "email_scan", pipeline.scan_job.run_once, settings.SCAN_JOB_INTERVAL_SECONDS
    )


async def start_alert_generation_scheduler(pipeline: Pipeline) -> None:
    await run_periodically(
        "alert_generation",
        pipeline.alert_generation_job.run_once,
        settings.ALERT_JOB_INTERVAL_SECONDS,
    )


async def start_alert_delivery_scheduler(pipeline: Pipeline) -> None:
    await run_periodically(
        "alert_delivery",
        pipeline.alert_delivery_job.run_once,
        settings.DELIVERY_JOB_INTERVAL_SECONDS,
    )


async def start_maintenance_scheduler(pipeline: Pipeline) -> None:
    await run_periodically(
        "subscription_maintenance",
        pipeline.maintenance_job.run_once,
        settings.MAINTENANCE_JOB_INTERVAL_SECONDS,
    )


async def run_full_pipeline(pipeline: Pipeline) -> None:
    await asyncio.gather(
        run_email_processor(pipeline),
        run_vendor_enrichment(pipeline),
        start_email_scan_scheduler(pipeline),
        start_alert_generation_scheduler(pipeline),
        start_alert_delivery_scheduler(pipeline),
        start_maintenance_scheduler(pipeline),
    )


JOB_REGISTRY: dict[str, JobCoroutine] = {
    "pipeline": run_full_pipeline,
    "email_processor": run_email_processor,
    "vendor_enrichment": run_vendor_enrichment,
    "email_scan": start_email_scan_scheduler,
    "alert_generation": start_alert_generation_scheduler,
    "alert_delivery": start_alert_delivery_scheduler,
    "subscription_maintenance": start_maintenance_scheduler,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "pipeline").strip().lower()


async def run_worker(job_name: str | None = None, pipeline: Pipeline | None = None) -> None:
    """Run the requested background job."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    if pipeline is None:
        pipeline = load_object(settings.PIPELINE_FACTORY)()

    bind_job_context(name)
    logger.info("Starting background worker", job=name)
    await JOB_REGISTRY[name](pipeline)


def main() -> None:
    """CLI entrypoint."""
    setup_logging(settings.LOG_LEVEL)
    job_name = _resolve_job_name()
    asyncio.run(run_worker(job_name))


if __name__ == "__main__":
    main()
