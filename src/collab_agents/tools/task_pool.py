"""Backend exposing a task pool to agents as tools.

Agents in decentralized pool mode coordinate only through these tools; the
backend is shared by every agent, so each call names the acting agent.
"""

from typing import TYPE_CHECKING, Any

from ..exceptions import ClaimConflictError, TaskNotFoundError, UnknownToolError
from ..types import ToolDescriptor, ToolParameter, ToolResult
from .base import BaseBackend

if TYPE_CHECKING:
    from ..orchestration.task_pool import TaskPool


class TaskPoolBackend(BaseBackend):
    """pool_list_tasks / pool_claim_task / pool_complete_task / pool_fail_task / pool_release_task."""

    def __init__(self, pool: "TaskPool"):
        self.pool = pool

    def list_tools(self) -> list[ToolDescriptor]:
        task_id = ToolParameter("task_id", "string", True, "Id of the task")
        agent_id = ToolParameter("agent_id", "string", True, "Your agent id")
        return [
            ToolDescriptor(
                "pool_list_tasks",
                "List tasks in the shared pool with their status and claimant",
                [ToolParameter("status", "string", False, "Only tasks with this status (pending, claimed, completed, failed)")],
            ),
            ToolDescriptor(
                "pool_claim_task",
                "Atomically claim a pending task. Fails if another agent already holds it",
                [task_id, agent_id],
            ),
            ToolDescriptor(
                "pool_complete_task",
                "Mark a task you hold as completed and record its result",
                [task_id, agent_id, ToolParameter("result", "string", False, "Summary of the work done")],
            ),
            ToolDescriptor(
                "pool_fail_task",
                "Mark a task you hold as failed and record why",
                [task_id, agent_id, ToolParameter("error", "string", False, "Why the task failed")],
            ),
            ToolDescriptor(
                "pool_release_task",
                "Give a task you hold back to the pool without finishing it",
                [task_id, agent_id],
            ),
        ]

    async def execute(self, tool_name: str, params: dict[str, Any]) -> ToolResult:
        if tool_name == "pool_list_tasks":
            status = params.get("status")
            tasks = [
                task.to_dict()
                for task in self.pool.snapshot()
                if status is None or task.status.value == status
            ]
            return ToolResult.ok({"pool_id": self.pool.pool_id, "tasks": tasks})

        handlers = {
            "pool_claim_task": self._claim,
            "pool_complete_task": self._complete,
            "pool_fail_task": self._fail,
            "pool_release_task": self._release,
        }
        handler = handlers.get(tool_name)
        if handler is None:
            raise UnknownToolError(tool_name)

        missing = [name for name in ("task_id", "agent_id") if not params.get(name)]
        if missing:
            return ToolResult.failure(f"{tool_name} requires {', '.join(missing)}")

        try:
            return handler(params)
        except TaskNotFoundError as e:
            return ToolResult.failure(str(e))
        except ClaimConflictError as e:
            # losing a race is an expected outcome; the agent should pick another task
            return ToolResult.failure(str(e), task_id=e.task_id, holder=e.holder)

    def _claim(self, params: dict[str, Any]) -> ToolResult:
        task = self.pool.claim(params["task_id"], params["agent_id"])
        return ToolResult.ok(task.to_dict())

    def _complete(self, params: dict[str, Any]) -> ToolResult:
        task = self.pool.complete(params["task_id"], params["agent_id"], str(params.get("result", "")))
        return ToolResult.ok(task.to_dict())

    def _fail(self, params: dict[str, Any]) -> ToolResult:
        task = self.pool.fail(params["task_id"], params["agent_id"], str(params.get("error", "")))
        return ToolResult.ok(task.to_dict())

    def _release(self, params: dict[str, Any]) -> ToolResult:
        if not self.pool.release(params["task_id"], params["agent_id"]):
            return ToolResult.failure(
                f"Task '{params['task_id']}' is not held by '{params['agent_id']}' or is already finished"
            )
        return ToolResult.ok(self.pool.get_task(params["task_id"]).to_dict())
