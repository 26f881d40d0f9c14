"""Main entry point for the collab-agents CLI.

Loads a team file, builds one client per agent, runs the team's
collaboration mode on a prompt, and prints the transcript.
"""

import argparse
import asyncio
import json
import sys

from .agent import Agent
from .clients.factory import create_client
from .config import AgentSpec, ModeSpec, TeamConfig, get_settings, load_team_config
from .exceptions import AgentError, ConfigurationError
from .logging import get_logger, setup_logging
from .orchestration import (
    Checklist,
    CollaborationMode,
    Debate,
    DecentralizedPool,
    Hierarchical,
    LoggingEventSink,
    Moderated,
    Orchestration,
    Parallel,
    RoundRobin,
)
from .tools import MemoryBackend, MemoryStore, ToolRouter
from .types import RunResult, Task

logger = get_logger(__name__)


def build_agent(spec: AgentSpec, config: TeamConfig, router: ToolRouter | None = None) -> Agent:
    """Create an agent and its client from a team file entry.

    Priority for provider and model:
    1. The agent entry
    2. Environment variables (via pydantic settings)
    3. Auto-detection based on available API keys

    Raises:
        ConfigurationError: If no provider can be determined or the client
            cannot be created
    """
    settings = get_settings()
    provider = spec.provider or settings.detect_provider()
    model = spec.model or settings.llm_model

    if not provider:
        raise ConfigurationError(
            f"No provider for agent '{spec.id}': set it in the team file, set LLM_PROVIDER, "
            "or set one of ANTHROPIC_API_KEY, OPENAI_API_KEY, TOGETHER_API_KEY, GOOGLE_API_KEY"
        )

    try:
        client = create_client(provider, model, spec.client_config)
    except ValueError as e:
        raise ConfigurationError(f"Cannot create client for agent '{spec.id}': {e}") from e

    logger.info(f"agent {spec.id}: {provider}/{model or 'default model'}")
    return Agent(
        id=spec.id,
        client=client,
        name=spec.display_name,
        expertise=spec.expertise,
        personality=spec.personality,
        metadata=spec.metadata,
        token_budget=spec.token_budget,
        tool_router=router,
        budget_policy=config.budget_policy,
    )


def build_mode(mode: ModeSpec, tasks: list[Task], store: MemoryStore | None = None) -> CollaborationMode:
    """Translate a team file mode section into a collaboration mode."""
    if mode.type == "parallel":
        return Parallel()
    if mode.type == "round_robin":
        return RoundRobin(order=tuple(mode.order))
    if mode.type == "moderated":
        if not mode.moderator:
            raise ConfigurationError("moderated mode needs a moderator")
        return Moderated(moderator_id=mode.moderator, respondents=tuple(mode.respondents))
    if mode.type == "hierarchical":
        return Hierarchical(layers=tuple(tuple(layer) for layer in mode.layers))
    if mode.type == "debate":
        return Debate(
            max_rounds=mode.max_rounds,
            convergence_threshold=mode.convergence_threshold,
            sequential=mode.sequential,
        )
    if mode.type == "checklist":
        return Checklist(tasks=tuple(tasks), max_iterations=mode.max_iterations)
    if mode.type == "pool":
        return DecentralizedPool(
            pool_id=mode.pool_id or "default",
            tasks=tuple(tasks),
            max_iterations=mode.max_iterations,
            store=store,
        )
    raise ConfigurationError(f"Unknown mode type: {mode.type}")


def build_orchestration(config: TeamConfig) -> Orchestration:
    """Build a ready-to-run orchestration from a validated team file.

    In pool mode every agent shares one tool router, which also carries a
    memory backend on the same store as the pool.
    """
    tasks = [Task(id=t.id, title=t.title, description=t.description) for t in config.tasks]

    router: ToolRouter | None = None
    store: MemoryStore | None = None
    if config.mode.type == "pool":
        store = MemoryStore()
        router = ToolRouter(default_timeout=get_settings().tool_timeout)
        router.register("memory", MemoryBackend(store))

    orchestration = Orchestration(
        id=config.name,
        mode=build_mode(config.mode, tasks, store),
        system_context=config.system_context,
        event_sink=LoggingEventSink(),
        budget_policy=config.budget_policy,
    )
    for spec in config.agents:
        orchestration.add_agent(build_agent(spec, config, router))
    for agent_id, spec in config.fallbacks.items():
        orchestration.set_fallback(agent_id, build_agent(spec, config, router))
    return orchestration


def format_result(result: RunResult) -> str:
    """Render a run result as plain text."""
    lines = []
    current_round = None
    for record in result.transcript:
        if record.round != current_round:
            current_round = record.round
            lines.append(f"=== Round {current_round} ===")
        lines.append(f"[{record.display_name or record.agent_id}]: {record.content}")
        lines.append("")

    if result.task_status:
        lines.append("=== Tasks ===")
        for task in result.task_status:
            lines.append(f"- {task.id} ({task.title}): {task.status.value}")
        lines.append("")

    for failure in result.failures:
        lines.append(f"[failed] {failure.agent_id} in round {failure.round}: {failure.error}")

    summary = f"rounds: {result.rounds_completed}, complete: {result.is_complete}, tokens: {result.total_tokens}"
    if result.convergence_score is not None:
        summary += f", score: {result.convergence_score:.2f}"
    lines.append(summary)
    return "\n".join(lines)


def result_to_dict(result: RunResult) -> dict:
    """Convert a run result to a JSON-serializable dictionary."""
    return {
        "rounds_completed": result.rounds_completed,
        "is_complete": result.is_complete,
        "convergence_score": result.convergence_score,
        "total_tokens": result.total_tokens,
        "transcript": [
            {
                "agent_id": record.agent_id,
                "name": record.display_name,
                "round": record.round,
                "layer": record.layer,
                "content": record.content,
                "metadata": record.metadata,
            }
            for record in result.transcript
        ],
        "failures": [
            {"agent_id": f.agent_id, "round": f.round, "error": f.error, "task_id": f.task_id}
            for f in result.failures
        ],
        "tasks": [task.to_dict() for task in result.task_status],
    }


def main():
    """Main entry point for the collab-agents CLI."""
    parser = argparse.ArgumentParser(description="Run a team of agents on a prompt")
    parser.add_argument("team", help="Path to the team YAML file")
    parser.add_argument("prompt", help="Prompt given to the team")
    parser.add_argument(
        "--rounds",
        type=int,
        default=1,
        help="Rounds for round_robin, cycles for moderated (default: 1)"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (also settable via COLLAB_AGENTS_LOG_LEVEL env var)"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the run result as JSON"
    )
    args = parser.parse_args()

    # setup logging early
    setup_logging(args.log_level)

    try:
        config = load_team_config(args.team)
        orchestration = build_orchestration(config)
        result = asyncio.run(orchestration.run(args.prompt, rounds=args.rounds))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except AgentError as e:
        print(f"Run failed: {e}", file=sys.stderr)
        sys.exit(2)

    if args.json:
        print(json.dumps(result_to_dict(result), indent=2))
    else:
        print(format_result(result))


if __name__ == "__main__":
    main()
