"""Dependency-aware parallel task scheduling over a bounded worker pool."""

from __future__ import annotations

import os
import threading
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import UTC, datetime
from typing import Callable, Dict, List, Optional, Sequence, Union

from .config import ConfigError
from .errors import SchedulerError
from .executors import TaskExecutor
from .graph import topological_sort
from .logging import get_logger
from .models import ExecutionResult, RunOutcome, RunResult, Task, TaskReport, TaskStatus

ExecutorLike = Union[TaskExecutor, Callable[[Task], object]]

DEFAULT_POLL_INTERVAL = 0.05


class ParallelScheduler:
    """Runs tasks in dependency order with at most ``max_workers`` in flight.

    The thread calling :meth:`run` is the only writer of task state. Workers
    run the executor and hand results back through futures; the coordinator
    sleeps in ``concurrent.futures.wait`` until a task finishes, a deadline
    passes or (when a cancel event is supplied) the poll interval elapses.
    """

    def __init__(
        self,
        executor: ExecutorLike,
        *,
        max_workers: int | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        strict: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_workers is None:
            max_workers = os.cpu_count() or 1
        if max_workers < 1:
            raise ConfigError(f"max_workers must be at least 1 (got {max_workers})")
        if poll_interval <= 0:
            raise ConfigError("poll_interval must be positive")
        self._execute = executor.execute if isinstance(executor, TaskExecutor) else executor
        self.max_workers = max_workers
        self.poll_interval = poll_interval
        self.strict = strict
        self._clock = clock
        self.logger = get_logger("scheduler")
        self._pool: Optional[ThreadPoolExecutor] = None
        self._pool_generation = 0

    def run(
        self,
        tasks: Sequence[Task],
        *,
        cancel_event: threading.Event | None = None,
        run_id: str | None = None,
    ) -> RunResult:
        """Execute ``tasks`` and return the aggregated run result."""
        by_id = self._validate(tasks)
        position = {task.id: index for index, task in enumerate(tasks)}
        run_id = run_id or uuid.uuid4().hex
        started_at = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        start = self._clock()

        running: Dict[Future, Task] = {}
        pools: Dict[Future, int] = {}
        deadlines: Dict[str, float] = {}
        cancelled = False
        retired: List[ThreadPoolExecutor] = []
        self._pool = self._new_pool()

        try:
            while True:
                if cancel_event is not None and cancel_event.is_set() and not cancelled:
                    cancelled = True
                    self._cancel_pending(tasks)

                self._skip_blocked(tasks, by_id)

                if not cancelled:
                    free_slots = self.max_workers - len(running)
                    for task in self._eligible(tasks, by_id, position)[: max(free_slots, 0)]:
                        future = self._dispatch(task)
                        running[future] = task
                        pools[future] = self._pool_generation
                        if task.timeout is not None:
                            deadlines[task.id] = (task.started_at or 0.0) + task.timeout

                if not running:
                    stuck = [task.id for task in tasks if task.status is TaskStatus.PENDING]
                    if stuck:
                        raise SchedulerError(f"Tasks can never become eligible: {', '.join(stuck)}")
                    break

                done, _ = wait(
                    list(running),
                    timeout=self._wait_timeout(running, deadlines, cancel_event),
                    return_when=FIRST_COMPLETED,
                )
                for future in done:
                    task = running.pop(future)
                    pools.pop(future, None)
                    self._complete(task, future)

                now = self._clock()
                for future, task in list(running.items()):
                    deadline = deadlines.get(task.id)
                    if deadline is None or now < deadline:
                        continue
                    running.pop(future)
                    generation = pools.pop(future, None)
                    self._mark_timeout(task, now)
                    if generation == self._pool_generation:
                        retired.append(self._pool)
                        self._pool.shutdown(wait=False)
                        self._pool = self._new_pool()
        finally:
            for pool in retired:
                pool.shutdown(wait=False, cancel_futures=True)
            self._pool.shutdown(wait=False, cancel_futures=True)
            self._pool = None

        if cancelled:
            outcome = RunOutcome.CANCELLED
        elif any(task.status in (TaskStatus.FAILED, TaskStatus.TIMEOUT) for task in tasks):
            outcome = RunOutcome.FAILED
        else:
            outcome = RunOutcome.SUCCESS

        result = RunResult(
            run_id=run_id,
            started_at=started_at,
            duration=self._clock() - start,
            outcome=outcome,
            tasks=[TaskReport.from_task(task) for task in tasks],
            strict=self.strict,
        )
        self.logger.info(
            "Run %s finished: %s (%d succeeded, %d failed, %d skipped, %d cancelled) in %.2fs",
            run_id[:8],
            outcome.value,
            result.succeeded,
            result.failed,
            result.skipped,
            result.cancelled,
            result.duration,
        )
        return result

    # ------------------------------------------------------------------
    # Internal helpers

    def _validate(self, tasks: Sequence[Task]) -> Dict[str, Task]:
        by_id: Dict[str, Task] = {}
        for task in tasks:
            if task.id in by_id:
                raise SchedulerError(f"Duplicate task id '{task.id}'")
            if task.status is not TaskStatus.PENDING:
                raise SchedulerError(f"Task '{task.id}' is not pending ({task.status.value})")
            if task.timeout is not None and task.timeout <= 0:
                raise ConfigError(f"Task '{task.id}' has a non-positive timeout")
            by_id[task.id] = task
        for task in tasks:
            for dependency in task.depends_on:
                if dependency not in by_id:
                    raise SchedulerError(f"Task '{task.id}' depends on unknown task '{dependency}'")
        topological_sort({task.id: task.depends_on for task in tasks}, kind="task")
        return by_id

    def _new_pool(self) -> ThreadPoolExecutor:
        self._pool_generation += 1
        return ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix=f"incbuild-worker-{self._pool_generation}",
        )

    @staticmethod
    def _eligible(tasks: Sequence[Task], by_id: Dict[str, Task], position: Dict[str, int]) -> List[Task]:
        eligible = [
            task
            for task in tasks
            if task.status is TaskStatus.PENDING
            and all(by_id[dependency].status is TaskStatus.SUCCESS for dependency in task.depends_on)
        ]
        eligible.sort(key=lambda task: (task.estimated_cost, position[task.id]))
        return eligible

    def _skip_blocked(self, tasks: Sequence[Task], by_id: Dict[str, Task]) -> None:
        changed = True
        while changed:
            changed = False
            for task in tasks:
                if task.status is not TaskStatus.PENDING:
                    continue
                blockers = [
                    dependency
                    for dependency in task.depends_on
                    if by_id[dependency].status.blocks_dependents
                ]
                if not blockers:
                    continue
                task.status = TaskStatus.SKIPPED
                task.error = f"skipped: dependency {blockers[0]} ended {by_id[blockers[0]].status.value}"
                changed = True
                self.logger.warning("Skipping %s (%s)", task.id, task.error)

    def _cancel_pending(self, tasks: Sequence[Task]) -> None:
        self.logger.warning("Cancellation requested; no further tasks will be started")
        for task in tasks:
            if task.status is TaskStatus.PENDING:
                task.status = TaskStatus.CANCELLED
                task.error = "run cancelled before the task started"

    def _dispatch(self, task: Task) -> Future:
        assert self._pool is not None
        task.status = TaskStatus.RUNNING
        task.started_at = self._clock()
        self.logger.info("Starting %s (%d files)", task.id, len(task.files))
        return self._pool.submit(self._execute, task)

    def _complete(self, task: Task, future: Future) -> None:
        task.ended_at = self._clock()
        error = future.exception()
        if error is not None:
            task.status = TaskStatus.FAILED
            task.error = f"{type(error).__name__}: {error}"
            self.logger.error("Task %s raised %s", task.id, task.error)
            return

        try:
            result = ExecutionResult.coerce(future.result())
        except TypeError as exc:
            task.status = TaskStatus.FAILED
            task.error = str(exc)
            self.logger.error("Task %s: %s", task.id, task.error)
            return

        task.output = result.output
        task.error = result.error
        if result.success:
            task.status = TaskStatus.SUCCESS
            self.logger.info("Completed %s in %.2fs", task.id, task.duration or 0.0)
        else:
            task.status = TaskStatus.FAILED
            self.logger.error(
                "Task %s (%s) failed after %.2fs: %s",
                task.id,
                task.category,
                task.duration or 0.0,
                result.error or "no error output",
            )

    def _mark_timeout(self, task: Task, now: float) -> None:
        task.status = TaskStatus.TIMEOUT
        task.ended_at = now
        task.error = f"timed out after {task.timeout}s"
        self.logger.error("Task %s (%s) %s", task.id, task.category, task.error)

    def _wait_timeout(
        self,
        running: Dict[Future, Task],
        deadlines: Dict[str, float],
        cancel_event: threading.Event | None,
    ) -> Optional[float]:
        candidates: List[float] = []
        now = self._clock()
        for task in running.values():
            deadline = deadlines.get(task.id)
            if deadline is not None:
                candidates.append(max(0.0, deadline - now))
        if cancel_event is not None:
            candidates.append(self.poll_interval)
        return min(candidates) if candidates else None


__all__ = ["ParallelScheduler"]
