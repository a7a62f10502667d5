"""Parallel Executor - runs independent per-scene work with bounded concurrency."""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Optional

from scenecast.core.config import Settings


class ParallelExecutor:
    """Manages controlled parallelism for independent tasks."""

    def __init__(self, settings: Settings, logger: Any):
        """
        Initialize parallel executor.

        Args:
            settings: Application settings
            logger: Logger instance
        """
        self.settings = settings
        self.logger = logger
        self.max_workers = max(1, settings.max_parallel_frame_workers)

    def execute_batch(
        self,
        tasks: list[Callable[[], Any]],
        task_names: Optional[list[str]] = None,
        max_workers: Optional[int] = None,
    ) -> list[tuple[Any, Optional[Exception]]]:
        """
        Execute tasks with controlled concurrency.

        Results come back in submission order regardless of completion order.

        Args:
            tasks: Callables taking no arguments
            task_names: Optional names used in log lines
            max_workers: Override for the configured worker count

        Returns:
            List of (result, exception) tuples, one per task
        """
        if not tasks:
            return []

        max_workers = max_workers or self.max_workers

        def name_of(i: int) -> str:
            return task_names[i] if task_names and i < len(task_names) else f"task_{i + 1}"

        start_time = time.time()

        if max_workers == 1:
            results = []
            for i, task in enumerate(tasks):
                try:
                    results.append((task(), None))
                    self.logger.debug(f"{name_of(i)} completed")
                except Exception as e:
                    self.logger.error(f"❌ {name_of(i)} failed: {e}")
                    results.append((None, e))
            return results

        self.logger.debug(f"Parallel execution: {len(tasks)} tasks with max {max_workers} workers")
        results: list[tuple[Any, Optional[Exception]]] = [(None, None)] * len(tasks)
        completed_count = 0

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            future_to_index = {executor.submit(task): i for i, task in enumerate(tasks)}

            for future in as_completed(future_to_index):
                index = future_to_index[future]
                completed_count += 1
                try:
                    results[index] = (future.result(), None)
                    self.logger.debug(f"✅ {name_of(index)} completed ({completed_count}/{len(tasks)})")
                except Exception as e:
                    self.logger.error(f"❌ {name_of(index)} failed ({completed_count}/{len(tasks)}): {e}")
                    results[index] = (None, e)

        successful = sum(1 for _, error in results if error is None)
        self.logger.debug(
            f"Batch complete: {successful}/{len(tasks)} successful in {time.time() - start_time:.2f}s"
        )
        return results
