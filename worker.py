"""
Temporal Worker — registers the pipeline workflow and activity, then polls for tasks.

Usage:
    python worker.py
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor

from temporalio.client import Client
from temporalio.worker import Worker

import config
from workflows.pipeline import PhasePipelineWorkflow, run_pipeline

logging.basicConfig(
    level=config.LOG_LEVEL,
    format=config.LOG_FORMAT,
    datefmt="%H:%M:%S",
)
log = logging.getLogger(__name__)

ALL_ACTIVITIES = [run_pipeline]


async def main():
    log.info("Connecting to Temporal at %s", config.TEMPORAL_HOST)
    client = await Client.connect(config.TEMPORAL_HOST, namespace=config.TEMPORAL_NAMESPACE)

    log.info("Starting worker on queue: %s", config.TEMPORAL_TASK_QUEUE)
    # run_pipeline is synchronous (blocking generator calls), so it needs a thread pool
    with ThreadPoolExecutor(max_workers=4) as activity_executor:
        worker = Worker(
            client,
            task_queue=config.TEMPORAL_TASK_QUEUE,
            workflows=[PhasePipelineWorkflow],
            activities=ALL_ACTIVITIES,
            activity_executor=activity_executor,
        )
        log.info("Worker ready — listening for tasks")
        await worker.run()


if __name__ == "__main__":
    asyncio.run(main())
