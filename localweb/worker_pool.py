#!/usr/bin/env python3
"""
Worker Pool Module for LocalWeb

Runs blocking filesystem work (directory walks, large stats) on a thread
pool so a slow disk never stalls the event loop serving other requests.
"""

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple, Type

logger = logging.getLogger(__name__)


@dataclass
class WorkerConfig:
    """Configuration for worker pool"""
    max_workers: int = 16
    task_timeout: Optional[float] = 60.0
    retry_attempts: int = 1
    retry_delay: float = 0.5  # seconds
    # Exceptions that are a final answer, not a transient failure
    no_retry: Tuple[Type[BaseException], ...] = ()


@dataclass
class TaskResult:
    """Result of a worker task"""
    success: bool
    task_id: str
    result: Any = None
    error: Optional[str] = None
    exception: Optional[BaseException] = None
    duration: float = 0.0
    retries: int = 0


@dataclass
class TaskMetrics:
    """Metrics for tracking worker pool performance"""
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    start_time: float = field(default_factory=time.time)

    @property
    def success_rate(self) -> float:
        """Calculate success rate as a percentage"""
        if self.total_tasks == 0:
            return 0.0
        return (self.completed_tasks / self.total_tasks) * 100.0

    @property
    def elapsed_time(self) -> float:
        """Get elapsed time since start"""
        return time.time() - self.start_time


class WorkerPool:
    """
    Thread pool for blocking filesystem operations.

    Tasks never raise into the caller: every submission comes back as a
    TaskResult, carrying the last exception when all attempts failed.
    """

    def __init__(self, config: Optional[WorkerConfig] = None):
        """
        Initialize worker pool with configuration.

        Args:
            config: WorkerConfig instance or None for defaults
        """
        self.config = config or WorkerConfig()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._active_tasks = 0
        self._shutdown = False
        self.metrics = TaskMetrics()

        logger.info(f"Initializing WorkerPool with {self.config.max_workers} thread workers")

    @property
    def started(self) -> bool:
        return self._executor is not None

    async def start(self):
        """Start the worker pool"""
        if self._executor is not None:
            logger.warning("WorkerPool already started")
            return

        self._shutdown = False
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="localweb-worker",
        )
        logger.info(f"WorkerPool started with {self.config.max_workers} workers")

    async def shutdown(self, wait: bool = True):
        """
        Shutdown the worker pool.

        Args:
            wait: Wait for pending tasks to complete
        """
        self._shutdown = True

        if self._executor is not None:
            if wait and self._active_tasks:
                logger.info(f"Waiting for {self._active_tasks} active tasks to complete")
            executor = self._executor
            self._executor = None
            await asyncio.get_running_loop().run_in_executor(None, lambda: executor.shutdown(wait=wait))

        logger.info("WorkerPool shutdown complete")

    async def submit_task(
        self,
        task_id: str,
        func: Callable,
        *args,
        **kwargs
    ) -> TaskResult:
        """
        Run a blocking function on the pool.

        Args:
            task_id: Identifier used in log lines
            func: Function to execute
            *args: Positional arguments for the function
            **kwargs: Keyword arguments for the function

        Returns:
            TaskResult with execution details
        """
        if self._shutdown:
            return TaskResult(
                success=False,
                task_id=task_id,
                error="WorkerPool is shutting down"
            )

        if self._executor is None:
            await self.start()

        self.metrics.total_tasks += 1
        self._active_tasks += 1
        start_time = time.time()
        loop = asyncio.get_running_loop()

        last_error = None
        last_exception = None
        attempts = max(1, self.config.retry_attempts)
        try:
            for attempt in range(attempts):
                try:
                    result = await asyncio.wait_for(
                        loop.run_in_executor(self._executor, lambda: func(*args, **kwargs)),
                        timeout=self.config.task_timeout
                    )

                    duration = time.time() - start_time
                    self.metrics.completed_tasks += 1

                    logger.debug(
                        f"Task {task_id} completed successfully in {duration:.2f}s "
                        f"(attempt {attempt + 1})"
                    )

                    return TaskResult(
                        success=True,
                        task_id=task_id,
                        result=result,
                        duration=duration,
                        retries=attempt
                    )

                except asyncio.TimeoutError as e:
                    last_error = f"Task timeout after {self.config.task_timeout}s"
                    last_exception = e
                    logger.warning(f"Task {task_id} timed out (attempt {attempt + 1})")

                except Exception as e:
                    last_error = str(e)
                    last_exception = e
                    logger.warning(f"Task {task_id} failed (attempt {attempt + 1}): {e}")
                    if isinstance(e, self.config.no_retry):
                        break

                if attempt < attempts - 1:
                    await asyncio.sleep(self.config.retry_delay * (attempt + 1))
        finally:
            self._active_tasks -= 1

        duration = time.time() - start_time
        self.metrics.failed_tasks += 1

        logger.error(f"Task {task_id} failed: {last_error}")

        return TaskResult(
            success=False,
            task_id=task_id,
            error=last_error,
            exception=last_exception,
            duration=duration,
            retries=attempt
        )

    def get_metrics(self) -> Dict[str, Any]:
        """Get current worker pool metrics"""
        return {
            "total_tasks": self.metrics.total_tasks,
            "completed_tasks": self.metrics.completed_tasks,
            "failed_tasks": self.metrics.failed_tasks,
            "active_tasks": self._active_tasks,
            "success_rate": self.metrics.success_rate,
            "elapsed_time": self.metrics.elapsed_time,
            "max_workers": self.config.max_workers,
        }
