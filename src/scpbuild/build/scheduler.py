"""Dependency-Ordered Task Scheduling.

This module runs a set of tasks on a thread pool, submitting each task as
soon as every task it depends on has completed.

Design:
    - Independent tasks run concurrently, dependent tasks never start early
    - The first failure aborts the run: pending work is cancelled, the
      abort hook terminates running tool processes, and the failure is
      re-raised once the running tasks have returned
    - Results of completed tasks are not rolled back
"""

import logging
import os
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, Iterable, Mapping, Optional, Set, TypeVar


T = TypeVar("T")


class SchedulingError(Exception):
    """Raised when the dependency graph cannot be scheduled."""
    pass


class DependencyScheduler:
    """Runs callables in dependency order on a thread pool.

    Example:
        scheduler = DependencyScheduler(jobs=4)
        results = scheduler.execute(
            {"a": build_a, "b": build_b, "c": build_c},
            {"c": ["a", "b"]},
        )
    """

    def __init__(self, jobs: Optional[int] = None, on_abort: Optional[Callable[[], object]] = None):
        """Initialize scheduler.

        Args:
            jobs: Maximum number of concurrent tasks (defaults to CPU count)
            on_abort: Called once when a task fails, before waiting for the
                tasks that are still running
        """
        self.jobs = max(1, jobs or os.cpu_count() or 1)
        self.on_abort = on_abort

    @staticmethod
    def check(work: Mapping[str, object], dependencies: Mapping[str, Iterable[str]]) -> None:
        """Validate that every dependency exists and that there is no cycle.

        Raises:
            SchedulingError: On an unknown dependency or a cycle
        """
        for task_id, deps in dependencies.items():
            for dep in deps:
                if dep not in work:
                    raise SchedulingError(f"'{task_id}' depends on unknown task '{dep}'")

        visiting: Set[str] = set()
        visited: Set[str] = set()

        def visit(task_id: str) -> None:
            if task_id in visited:
                return
            if task_id in visiting:
                raise SchedulingError(f"Dependency cycle through '{task_id}'")
            visiting.add(task_id)
            for dep in dependencies.get(task_id, ()):
                visit(dep)
            visiting.discard(task_id)
            visited.add(task_id)

        for task_id in work:
            visit(task_id)

    def execute(
        self,
        work: Mapping[str, Callable[[], T]],
        dependencies: Mapping[str, Iterable[str]],
    ) -> Dict[str, T]:
        """Run every task once all of its dependencies completed.

        Args:
            work: Task id -> callable
            dependencies: Task id -> ids it depends on

        Returns:
            Task id -> result of its callable

        Raises:
            SchedulingError: If the graph is invalid
            Exception: The first exception raised by a task
        """
        self.check(work, dependencies)

        pending: Dict[str, Set[str]] = {
            task_id: set(dependencies.get(task_id, ())) for task_id in work
        }
        done: Set[str] = set()
        results: Dict[str, T] = {}
        failure: Optional[BaseException] = None

        with ThreadPoolExecutor(max_workers=self.jobs) as pool:
            running: Dict[Future, str] = {}

            def submit_ready() -> None:
                for task_id in list(pending):
                    if pending[task_id] <= done:
                        del pending[task_id]
                        running[pool.submit(work[task_id])] = task_id

            submit_ready()
            while running:
                finished, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in finished:
                    task_id = running.pop(future)
                    error = future.exception()
                    if error is not None:
                        if failure is None:
                            failure = error
                        logging.debug(f"Task {task_id} failed: {error}")
                    else:
                        results[task_id] = future.result()
                        done.add(task_id)

                if failure is not None:
                    break
                submit_ready()

            if failure is not None:
                if self.on_abort is not None:
                    self.on_abort()
                for future in running:
                    future.cancel()
                wait(list(running))

        if failure is not None:
            raise failure

        return results
