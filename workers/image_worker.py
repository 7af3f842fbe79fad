"""RQ worker entrypoint for deferred image jobs.

This module connects to a Redis instance using connection details from
environment variables and listens on the `images` queue. When jobs are
submitted by the API (e.g., via `/images/responsive` with `defer=true`),
they are executed in this worker process. The tasks themselves are defined
in `image_library.jobs`.
"""

from __future__ import annotations

import os

from redis import Redis
from rq import Queue, Worker

from image_library.config import load_settings, setup_logging


def run_worker() -> None:
    """Start an RQ worker listening on the configured image queue."""
    settings = load_settings()
    setup_logging(settings)
    conn = Redis(
        host=settings.queue.redis_host,
        port=settings.queue.redis_port,
        db=int(os.getenv("REDIS_DB", "0")),
    )
    queue = Queue(os.getenv("RQ_QUEUES", settings.queue.queue_name), connection=conn)
    Worker([queue], connection=conn).work(with_scheduler=True)


if __name__ == "__main__":
    run_worker()
