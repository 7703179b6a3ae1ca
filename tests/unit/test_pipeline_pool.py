import asyncio
import threading

import pytest

from pixelforge.domain.errors import PipelineBusyError, PipelineError, PipelineTimeoutError
from pixelforge.infrastructure.workers.pipeline_pool import PipelineWorkerPool


@pytest.fixture()
def pool():
    p = PipelineWorkerPool(max_workers=1, max_queue=1)
    yield p
    p.shutdown(wait=False)


def test_run_returns_result(pool):
    assert asyncio.run(pool.run(lambda a, b: a + b, 2, 3)) == 5


def test_saturated_pool_rejects_immediately(pool):
    release = threading.Event()
    first = pool.submit(release.wait, 5)
    second = pool.submit(release.wait, 5)
    with pytest.raises(PipelineBusyError):
        pool.submit(release.wait, 5)
    release.set()
    first.result(timeout=5)
    second.result(timeout=5)
    # slots come back once jobs finish
    assert pool.submit(lambda: "ok").result(timeout=5) == "ok"


def test_timeout_raises_pipeline_timeout(pool):
    release = threading.Event()

    async def main():
        with pytest.raises(PipelineTimeoutError):
            await pool.run(release.wait, 5, timeout=0.05)

    try:
        asyncio.run(main())
    finally:
        release.set()


def test_timeout_is_a_pipeline_error():
    assert issubclass(PipelineTimeoutError, PipelineError)
    assert not issubclass(PipelineBusyError, PipelineError)


def test_job_errors_propagate(pool):
    def boom():
        raise PipelineError("codec failure")

    with pytest.raises(PipelineError, match="codec failure"):
        asyncio.run(pool.run(boom))
