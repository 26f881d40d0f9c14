"""Shared task pool with atomic claims.

Claim state lives in a MemoryStore under three key families:

    teams:<pool_id>:claimed:<task_id>    -> claimant agent id
    teams:<pool_id>:completed:<task_id>  -> completion note
    teams:<pool_id>:failed:<task_id>     -> failure note

A claim is a single compare-and-set on the claimed key. The claimed key is
kept after completion or failure, so finished tasks can never be claimed
again; only a release by the holder frees a task.
"""

from ..exceptions import ClaimConflictError, TaskNotFoundError
from ..logging import get_logger
from ..tools.memory import TASK_POOL_PREFIX, MemoryStore
from ..types import Task, TaskStatus

logger = get_logger(__name__)


class TaskPool:
    """Registry of work items that agents claim, complete, or fail themselves."""

    def __init__(
        self,
        pool_id: str,
        tasks: list[Task],
        store: MemoryStore | None = None,
    ):
        """Create a pool.

        Args:
            pool_id: Namespace for the pool's keys in the store
            tasks: Work items; only id, title and description are read
            store: Shared store (a private one is created when omitted)
        """
        ids = [task.id for task in tasks]
        if len(set(ids)) != len(ids):
            raise ValueError("task ids must be unique within a pool")

        self.pool_id = pool_id
        self.store = store if store is not None else MemoryStore()
        self._tasks: dict[str, Task] = {
            task.id: Task(id=task.id, title=task.title, description=task.description)
            for task in tasks
        }

    def _key(self, kind: str, task_id: str) -> str:
        return f"{TASK_POOL_PREFIX}{self.pool_id}:{kind}:{task_id}"

    def _require(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def _is_finished(self, task_id: str) -> bool:
        return (
            self.store.get(self._key("completed", task_id)) is not None
            or self.store.get(self._key("failed", task_id)) is not None
        )

    # ==================== transitions ====================

    def claim(self, task_id: str, agent_id: str) -> Task:
        """Claim a task for an agent.

        Returns:
            Snapshot of the claimed task.

        Raises:
            TaskNotFoundError: If the task is not in the pool
            ClaimConflictError: If any agent (including this one) already holds it
        """
        self._require(task_id)
        claimed_key = self._key("claimed", task_id)
        if not self.store.compare_and_set(claimed_key, None, agent_id):
            holder = self.store.get(claimed_key)
            logger.debug(f"claim conflict on {task_id}: {agent_id} lost to {holder}")
            raise ClaimConflictError(task_id, holder)

        logger.info(f"task {task_id} claimed by {agent_id}")
        return self.get_task(task_id)

    def release(self, task_id: str, agent_id: str) -> bool:
        """Give a claimed, unfinished task back to the pool.

        Returns:
            True if the agent held the task and it is free again.
        """
        self._require(task_id)
        if self._is_finished(task_id):
            return False
        released = self.store.compare_and_set(self._key("claimed", task_id), agent_id, None)
        if released:
            logger.info(f"task {task_id} released by {agent_id}")
        return released

    def complete(self, task_id: str, agent_id: str, result: str = "") -> Task:
        """Record completion by the task's holder.

        Raises:
            TaskNotFoundError: If the task is not in the pool
            ClaimConflictError: If the agent does not hold the task or it is finished
        """
        self._check_holder(task_id, agent_id)
        if not self.store.compare_and_set(self._key("completed", task_id), None, result):
            raise ClaimConflictError(task_id, agent_id)
        logger.info(f"task {task_id} completed by {agent_id}")
        return self.get_task(task_id)

    def fail(self, task_id: str, agent_id: str, error: str = "") -> Task:
        """Record failure by the task's holder.

        Raises:
            TaskNotFoundError: If the task is not in the pool
            ClaimConflictError: If the agent does not hold the task or it is finished
        """
        self._check_holder(task_id, agent_id)
        if not self.store.compare_and_set(self._key("failed", task_id), None, error):
            raise ClaimConflictError(task_id, agent_id)
        logger.info(f"task {task_id} failed by {agent_id}: {error}")
        return self.get_task(task_id)

    def _check_holder(self, task_id: str, agent_id: str) -> None:
        self._require(task_id)
        holder = self.store.get(self._key("claimed", task_id))
        if holder != agent_id or self._is_finished(task_id):
            raise ClaimConflictError(task_id, holder)

    # ==================== observation ====================

    def get_task(self, task_id: str) -> Task:
        """Return a snapshot of one task with its current status."""
        base = self._require(task_id)
        claimant = self.store.get(self._key("claimed", task_id))
        completed = self.store.get(self._key("completed", task_id))
        failed = self.store.get(self._key("failed", task_id))

        if completed is not None:
            status = TaskStatus.COMPLETED
        elif failed is not None:
            status = TaskStatus.FAILED
        elif claimant is not None:
            status = TaskStatus.CLAIMED
        else:
            status = TaskStatus.PENDING

        return Task(
            id=base.id,
            title=base.title,
            description=base.description,
            status=status,
            claimant_id=claimant,
            result=completed,
            error=failed,
        )

    def snapshot(self) -> list[Task]:
        """Return snapshots of every task, in pool order."""
        return [self.get_task(task_id) for task_id in self._tasks]

    def summary(self) -> dict[str, int]:
        """Count tasks per status."""
        counts = {status.value: 0 for status in TaskStatus}
        for task in self.snapshot():
            counts[task.status.value] += 1
        return counts

    def is_drained(self) -> bool:
        """True when no task is pending or in progress."""
        counts = self.summary()
        return counts[TaskStatus.PENDING.value] == 0 and counts[TaskStatus.CLAIMED.value] == 0

    def completion_fraction(self) -> float:
        """Share of tasks completed (1.0 for an empty pool)."""
        if not self._tasks:
            return 1.0
        return self.summary()[TaskStatus.COMPLETED.value] / len(self._tasks)
