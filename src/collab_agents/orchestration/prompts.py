"""Prompt templates for the collaboration modes."""

from ..types import Task, TaskStatus

DEFAULT_SYSTEM_CONTEXT = "You are participating in a collaborative discussion with other AI agents."

PEER_MESSAGE = "[{name}]: {content}"

MODERATOR_PROMPT = """{prompt}

Available experts: {experts}

Which expert should address this question? Respond with ONLY the expert name."""

MODERATOR_FOLLOWUP_PROMPT = """Based on the discussion so far, who should speak next to continue the discussion?

Available experts: {experts}

Which expert should address this question? Respond with ONLY the expert name."""

DEBATE_PROMPT = """Round {round} of debate: {prompt}

Consider the arguments presented and provide your position. Acknowledge strong points and challenge weak ones."""

CHECKLIST_PROMPT = """=== RALPH Iteration {iteration}/{max_iterations} ===

## Original Request
{prompt}

## PRD Task Status
{checklist}
## Instructions
Work on the next incomplete task. When done, include [TASK_COMPLETE:task_id].
You may complete multiple tasks in a single response."""

POOL_PROMPT = """=== Task Pool Iteration {iteration}/{max_iterations} ===

## Goal
{prompt}

## Shared Task Pool '{pool_id}'
{summary}

## Instructions
You are agent '{agent_id}'. Coordinate with the other agents only through the pool tools:
1. Call pool_list_tasks to see which tasks are still pending.
2. Call pool_claim_task with your agent id to claim ONE pending task. If the claim fails, another agent owns it: pick a different task.
3. Do the work for the task you claimed.
4. Call pool_complete_task with your result, or pool_fail_task with the reason if you cannot finish it.
If no task is pending, say so and stop."""


def format_peer_message(name: str, content: str) -> str:
    return PEER_MESSAGE.format(name=name, content=content)


def format_experts(experts: list[tuple[str, str]]) -> str:
    """Render ``(id, name)`` pairs as ``id (name)``, or just the id when they match."""
    return ", ".join(
        agent_id if agent_id == name else f"{agent_id} ({name})"
        for agent_id, name in experts
    )


def moderator_prompt(prompt: str, experts: list[tuple[str, str]], cycle: int) -> str:
    if cycle == 1:
        return MODERATOR_PROMPT.format(prompt=prompt, experts=format_experts(experts))
    return MODERATOR_FOLLOWUP_PROMPT.format(experts=format_experts(experts))


def layer_prompt(prompt: str, previous_layers: list[list[tuple[str, str]]]) -> str:
    """Input for a hierarchical layer.

    Args:
        prompt: The original task
        previous_layers: Per earlier layer, ``(display name, content)`` pairs
    """
    if not previous_layers:
        return prompt

    sections = [f"Original task: {prompt}"]
    for index, replies in enumerate(previous_layers, start=1):
        body = "\n\n".join(f"{name}: {content}" for name, content in replies)
        sections.append(f"Layer {index} results:\n{body}")
    return "\n\n".join(sections)


def debate_prompt(prompt: str, round_number: int) -> str:
    return DEBATE_PROMPT.format(round=round_number, prompt=prompt)


def format_checklist(tasks: list[Task]) -> str:
    lines = []
    for task in tasks:
        mark = "x" if task.status == TaskStatus.COMPLETED else " "
        lines.append(f"- [{mark}] {task.title} - {task.description} (id: {task.id})\n")
    return "".join(lines)


def checklist_prompt(prompt: str, tasks: list[Task], iteration: int, max_iterations: int) -> str:
    return CHECKLIST_PROMPT.format(
        iteration=iteration,
        max_iterations=max_iterations,
        prompt=prompt,
        checklist=format_checklist(tasks),
    )


def pool_prompt(
    prompt: str,
    pool_id: str,
    summary: dict[str, int],
    agent_id: str,
    iteration: int,
    max_iterations: int,
) -> str:
    counts = ", ".join(f"{status}: {count}" for status, count in summary.items())
    return POOL_PROMPT.format(
        iteration=iteration,
        max_iterations=max_iterations,
        prompt=prompt,
        pool_id=pool_id,
        summary=counts,
        agent_id=agent_id,
    )
