"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable and delegates to the matching entry point.
"""

import asyncio
import sys
from collections.abc import Awaitable, Callable

from groupkeeper.config import settings
from groupkeeper.features.authorization.sweep_job import run_authorization_sweep
from groupkeeper.features.group_membership.jobs.membership_job import start_membership_worker
from groupkeeper.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[None]]

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "membership": start_membership_worker,
    "authorization_sweep": run_authorization_sweep,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or the WORKER_JOB setting."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return settings.WORKER_JOB.strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    """Run the requested background job."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name)
    await JOB_REGISTRY[name]()


def main() -> None:
    """CLI entrypoint."""
    job_name = _resolve_job_name()
    asyncio.run(run_worker(job_name))


if __name__ == "__main__":
    main()
