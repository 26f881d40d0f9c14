"""Orchestration engine.

The engine owns a set of agents and one collaboration mode, and drives a run
to completion. Every mode uses the same loop shape,

    while not state.terminal:
        await step(state)

where each mode's step issues one round, cycle, layer, or iteration of
calls. Concurrent steps fan out over agent forks and are joined before the
transcript is touched; sequential steps call the persistent agents in turn.
Peers' replies reach a persistent agent as ``[name]: content`` messages,
delivered just before that agent is called.
"""

import asyncio
import re
import time
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable

from ..agent import Agent
from ..exceptions import (
    AgentNotFoundError,
    BudgetExceededError,
    ClientError,
    ConfigurationError,
    DuplicateToolError,
    OrchestrationError,
)
from ..logging import get_logger
from ..tools.task_pool import TaskPoolBackend
from ..types import (
    AgentFailure,
    AgentReply,
    BudgetPolicy,
    MessageRole,
    ReplyRecord,
    RunResult,
    Task,
    TaskStatus,
    UsageStats,
)
from . import prompts
from .convergence import convergence_score
from .events import EventSink, EventType, OrchestrationEvent
from .modes import (
    Checklist,
    CollaborationMode,
    Debate,
    DecentralizedPool,
    Hierarchical,
    Moderated,
    Parallel,
    RoundRobin,
)
from .task_pool import TaskPool

logger = get_logger(__name__)

TASK_COMPLETE_MARKER = re.compile(r"\[TASK_COMPLETE:\s*([^\]\s]+)\s*\]")


def parse_completion_markers(text: str) -> list[str]:
    """Task ids named by ``[TASK_COMPLETE:<id>]`` markers, in order, without repeats."""
    seen: list[str] = []
    for task_id in TASK_COMPLETE_MARKER.findall(text):
        if task_id not in seen:
            seen.append(task_id)
    return seen


def _add_usage(a: UsageStats | None, b: UsageStats | None) -> UsageStats | None:
    if a is None:
        return b
    if b is None:
        return a
    return a + b


@dataclass
class _CallOutcome:
    """Result of calling one agent, after retries and fallback."""
    requested_id: str
    agent: Agent
    prompt: str
    reply: AgentReply | None = None
    error: Exception | None = None
    fallback_for: str | None = None
    spent: UsageStats | None = None  # usage of calls that did not end in a reply
    finished_at: float = 0.0

    @property
    def ok(self) -> bool:
        return self.reply is not None


@dataclass
class _RunState:
    """Mutable state of one run, owned by the driving loop."""
    prompt: str
    rounds: int
    transcript: list[ReplyRecord] = field(default_factory=list)
    usage: UsageStats = field(default_factory=UsageStats)
    failures: list[AgentFailure] = field(default_factory=list)
    cursors: dict[str, int] = field(default_factory=dict)
    round_index: int = 0
    terminal: bool = False
    is_complete: bool = False
    convergence_score: float | None = None
    tasks: list[Task] = field(default_factory=list)
    pool: TaskPool | None = None
    layer_outputs: list[list[tuple[str, str]]] = field(default_factory=list)


class Orchestration:
    """Coordinates a team of agents under one collaboration mode.

    Example:
        team = Orchestration("panel", mode=Debate(max_rounds=3))
        team.add_agent(Agent("a", client_a))
        team.add_agent(Agent("b", client_b))
        result = await team.run("Is Python a good first language?")
    """

    def __init__(
        self,
        id: str,
        name: str | None = None,
        mode: CollaborationMode | None = None,
        system_context: str | None = None,
        event_sink: EventSink | None = None,
        budget_policy: BudgetPolicy | None = None,
    ):
        """Initialize the orchestration.

        Args:
            id: Identifier carried by every emitted event
            name: Human readable name (defaults to id)
            mode: Collaboration mode (defaults to Parallel)
            system_context: Base system prompt given to every agent
            event_sink: Optional receiver of lifecycle events
            budget_policy: Budget policy for agents that do not set their own
        """
        self.id = id
        self.name = name or id
        self.mode: CollaborationMode = mode or Parallel()
        self.system_context = system_context or prompts.DEFAULT_SYSTEM_CONTEXT
        self.event_sink = event_sink
        self.budget_policy = budget_policy

        self._agents: dict[str, Agent] = {}
        self._fallbacks: dict[str, Agent] = {}
        self._history: list[ReplyRecord] = []
        self._running = False

    # ==================== team management ====================

    def add_agent(self, agent: Agent) -> None:
        """Register an agent.

        Raises:
            ConfigurationError: If an agent with the same id is registered
        """
        if agent.id in self._agents:
            raise ConfigurationError(f"Agent with id '{agent.id}' already exists")
        self._agents[agent.id] = agent

    def remove_agent(self, agent_id: str) -> Agent | None:
        self._fallbacks.pop(agent_id, None)
        return self._agents.pop(agent_id, None)

    def get_agent(self, agent_id: str) -> Agent | None:
        return self._agents.get(agent_id)

    def list_agents(self) -> list[Agent]:
        """Agents in registration order."""
        return list(self._agents.values())

    def set_fallback(self, agent_id: str, substitute: Agent) -> None:
        """Use ``substitute`` when ``agent_id``'s client fails for good.

        Raises:
            AgentNotFoundError: If ``agent_id`` is not registered
        """
        if agent_id not in self._agents:
            raise AgentNotFoundError(agent_id)
        self._fallbacks[agent_id] = substitute

    def set_mode(self, mode: CollaborationMode) -> None:
        self.mode = mode

    def get_conversation_history(self) -> list[ReplyRecord]:
        """Every reply recorded across runs, oldest first."""
        return list(self._history)

    def clear_history(self) -> None:
        """Forget recorded replies and every agent's private history."""
        self._history = []
        for agent in list(self._agents.values()) + list(self._fallbacks.values()):
            agent.clear_history()

    # ==================== validation ====================

    def _require_agent(self, agent_id: str) -> Agent:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)
        return agent

    def _round_robin_order(self, mode: RoundRobin) -> list[str]:
        return list(mode.order) if mode.order else list(self._agents)

    def _respondents(self, mode: Moderated) -> list[str]:
        if mode.respondents:
            return list(mode.respondents)
        return [agent_id for agent_id in self._agents if agent_id != mode.moderator_id]

    def _validate(self, rounds: int) -> None:
        """Reject configurations that cannot run, before any call is issued."""
        if not self._agents:
            raise ConfigurationError("No agents registered")
        if rounds < 1:
            raise ConfigurationError("rounds must be at least 1")

        mode = self.mode
        if isinstance(mode, RoundRobin):
            order = self._round_robin_order(mode)
            for agent_id in order:
                self._require_agent(agent_id)
        elif isinstance(mode, Moderated):
            self._require_agent(mode.moderator_id)
            respondents = self._respondents(mode)
            if not respondents:
                raise ConfigurationError("Moderated mode needs at least one respondent")
            for agent_id in respondents:
                self._require_agent(agent_id)
        elif isinstance(mode, Hierarchical):
            if not mode.layers:
                raise ConfigurationError("Hierarchical mode needs at least one layer")
            for index, layer in enumerate(mode.layers):
                if not layer:
                    raise ConfigurationError(f"Layer {index} is empty")
                for agent_id in layer:
                    self._require_agent(agent_id)
            if len(mode.layers[-1]) != 1:
                raise ConfigurationError("The final layer must contain exactly one agent")
        elif isinstance(mode, Debate):
            if mode.max_rounds < 1:
                raise ConfigurationError("Debate needs max_rounds >= 1")
            if not 0.0 <= mode.threshold <= 1.0:
                raise ConfigurationError("convergence_threshold must be within [0, 1]")
        elif isinstance(mode, (Checklist, DecentralizedPool)):
            if mode.max_iterations < 1:
                raise ConfigurationError("max_iterations must be at least 1")
            ids = [task.id for task in mode.tasks]
            if len(set(ids)) != len(ids):
                raise ConfigurationError("Task ids must be unique")
            if isinstance(mode, DecentralizedPool):
                missing = [a.id for a in self._agents.values() if a.tool_router is None]
                if missing:
                    raise ConfigurationError(
                        f"Pool mode needs a tool router on every agent; missing on: {', '.join(missing)}"
                    )
        elif not isinstance(mode, Parallel):
            raise ConfigurationError(f"Unknown collaboration mode: {mode!r}")

    # ==================== run ====================

    async def run(self, prompt: str, rounds: int = 1) -> RunResult:
        """Drive one run of the active mode to completion.

        Args:
            prompt: The request given to the team
            rounds: Rounds for RoundRobin, cycles for Moderated; the other
                    modes use their own limits

        Returns:
            RunResult with the run's transcript, usage, and failures. Agent
            failures never raise; they are listed in ``failures``.

        Raises:
            ConfigurationError: If the team or mode is invalid
            OrchestrationError: If a run is already in progress
            BudgetExceededError: If an agent under the STRICT policy cannot fit
                its prompt
        """
        if self._running:
            raise OrchestrationError(f"Orchestration '{self.id}' is already running")
        self._validate(rounds)

        state = _RunState(prompt=prompt, rounds=rounds)
        mode = self.mode
        step = self._step_for(mode)

        self._running = True
        pool_backend_name: str | None = None
        participants = list(self._agents.values()) + list(self._fallbacks.values())
        # agents without a policy of their own follow the engine's for this run only
        inherited = [a for a in participants if a.budget_policy is None] if self.budget_policy else []
        try:
            for agent in participants:
                agent.set_system_prompt(self.system_context)
            for agent in inherited:
                agent.budget_policy = self.budget_policy

            if isinstance(mode, Checklist):
                state.tasks = [Task(id=t.id, title=t.title, description=t.description) for t in mode.tasks]
            elif isinstance(mode, DecentralizedPool):
                state.pool = TaskPool(mode.pool_id, list(mode.tasks), mode.store)
                pool_backend_name = self._attach_pool(state.pool)

            logger.info(f"run {self.id} started in {mode.name} mode with {len(self._agents)} agents")
            await self._emit(EventType.RUN_STARTED, data={"mode": mode.name, "agents": len(self._agents)})

            while not state.terminal:
                await step(state)
        finally:
            if pool_backend_name is not None:
                self._detach_pool(pool_backend_name)
            for agent in inherited:
                agent.budget_policy = None
            self._running = False

        self._history.extend(state.transcript)

        if state.pool is not None:
            task_status = state.pool.snapshot()
        else:
            task_status = [replace(task) for task in state.tasks]

        result = RunResult(
            transcript=list(state.transcript),
            rounds_completed=state.round_index,
            is_complete=state.is_complete,
            convergence_score=state.convergence_score,
            total_usage=state.usage,
            failures=list(state.failures),
            task_status=task_status,
        )
        await self._emit(
            EventType.RUN_COMPLETED,
            data={
                "rounds": result.rounds_completed,
                "complete": result.is_complete,
                "tokens": result.total_tokens,
                "failures": len(result.failures),
            },
        )
        logger.info(
            f"run {self.id} finished after {result.rounds_completed} rounds, "
            f"{result.total_tokens} tokens, complete={result.is_complete}"
        )
        return result

    def _step_for(self, mode: CollaborationMode) -> Callable[[_RunState], Awaitable[None]]:
        steps: dict[type, Callable[[_RunState], Awaitable[None]]] = {
            Parallel: self._step_parallel,
            RoundRobin: self._step_round_robin,
            Moderated: self._step_moderated,
            Hierarchical: self._step_hierarchical,
            Debate: self._step_debate,
            Checklist: self._step_checklist,
            DecentralizedPool: self._step_pool,
        }
        return steps[type(mode)]

    # ==================== events ====================

    async def _emit(
        self,
        event_type: EventType,
        round: int | None = None,
        agent: Agent | None = None,
        agent_id: str | None = None,
        task_id: str | None = None,
        data: dict | None = None,
    ) -> None:
        if self.event_sink is None:
            return
        event = OrchestrationEvent(
            type=event_type,
            orchestration_id=self.id,
            round=round,
            agent_id=agent.id if agent is not None else agent_id,
            agent_name=agent.name if agent is not None else None,
            task_id=task_id,
            data=data or {},
        )
        try:
            await self.event_sink.emit(event)
        except Exception:
            logger.warning(f"event sink failed on {event_type.value}", exc_info=True)

    # ==================== calling agents ====================

    def _deliver(self, agent: Agent, state: _RunState) -> None:
        """Hand ``agent`` the peers' replies it has not seen yet."""
        cursor = state.cursors.get(agent.id, 0)
        for record in state.transcript[cursor:]:
            if record.agent_id == agent.id:
                continue
            name = record.display_name or record.agent_id or "unknown"
            agent.receive_message(MessageRole.USER, prompts.format_peer_message(name, record.content))
        state.cursors[agent.id] = len(state.transcript)

    async def _invoke(self, agent: Agent, prompt: str, use_fork: bool) -> _CallOutcome:
        """Call one agent, falling back to its substitute on a client failure."""
        target = agent.fork() if use_fork else agent

        outcome = _CallOutcome(requested_id=agent.id, agent=agent, prompt=prompt)
        try:
            outcome.reply = await target.respond(prompt)
        except BudgetExceededError as e:
            if e.policy == BudgetPolicy.STRICT.value:
                raise
            outcome.error = e
        except ClientError as e:
            outcome.error = e
            outcome.spent = e.usage
            substitute = self._fallbacks.get(agent.id)
            if substitute is not None:
                logger.warning(f"agent {agent.id} failed ({e}); falling back to {substitute.id}")
                outcome = await self._invoke_fallback(agent, substitute, prompt, use_fork, e)
                outcome.spent = _add_usage(e.usage, outcome.spent)

        outcome.finished_at = time.monotonic()
        return outcome

    async def _invoke_fallback(
        self,
        agent: Agent,
        substitute: Agent,
        prompt: str,
        use_fork: bool,
        original_error: Exception,
    ) -> _CallOutcome:
        target = substitute.fork() if use_fork else substitute

        outcome = _CallOutcome(requested_id=agent.id, agent=substitute, prompt=prompt, fallback_for=agent.id)
        try:
            outcome.reply = await target.respond(prompt)
        except BudgetExceededError as e:
            if e.policy == BudgetPolicy.STRICT.value:
                raise
            outcome.error = e
        except ClientError as e:
            outcome.error = ClientError(f"{original_error}; fallback {substitute.id} also failed: {e}")
            outcome.spent = e.usage
        return outcome

    async def _fan_out(self, calls: list[tuple[Agent, str]], ordered: bool = True) -> list[_CallOutcome]:
        """Call agents concurrently on forks and join them all.

        Args:
            calls: ``(agent, prompt)`` pairs
            ordered: Keep declaration order; otherwise order by completion

        Returns:
            One outcome per call. Agent failures are outcomes, not exceptions.
        """
        results = await asyncio.gather(
            *(self._invoke(agent, prompt, use_fork=True) for agent, prompt in calls),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

        outcomes: list[_CallOutcome] = list(results)
        # forks are discarded; the persistent agents keep the exchange
        for outcome in outcomes:
            if outcome.ok:
                outcome.agent.receive_message(MessageRole.USER, outcome.prompt)
                outcome.agent.receive_message(MessageRole.ASSISTANT, outcome.reply.content)

        if not ordered:
            outcomes.sort(key=lambda o: o.finished_at)
        return outcomes

    async def _record(
        self,
        outcome: _CallOutcome,
        state: _RunState,
        round_no: int,
        layer: int | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None:
        """Append a successful reply to the transcript and count its usage."""
        reply = outcome.reply
        meta = dict(metadata or {})
        if outcome.fallback_for:
            meta["fallback_for"] = outcome.fallback_for

        state.transcript.append(ReplyRecord(
            agent_id=outcome.agent.id,
            display_name=outcome.agent.name,
            role=MessageRole.ASSISTANT,
            content=reply.content,
            round=round_no,
            layer=layer,
            usage=reply.usage,
            metadata=meta,
        ))
        if reply.usage is not None:
            state.usage = state.usage + reply.usage
        if outcome.spent is not None:
            state.usage = state.usage + outcome.spent

        await self._emit(
            EventType.AGENT_RESPONDED,
            round=round_no,
            agent=outcome.agent,
            data={"tokens": reply.usage.total_tokens if reply.usage else 0},
        )

    async def _record_failure(
        self,
        outcome: _CallOutcome,
        state: _RunState,
        round_no: int,
        task_id: str | None = None,
    ) -> None:
        logger.warning(f"agent {outcome.requested_id} failed in round {round_no}: {outcome.error}")
        if outcome.spent is not None:
            state.usage = state.usage + outcome.spent
        state.failures.append(AgentFailure(
            agent_id=outcome.requested_id,
            error=str(outcome.error),
            round=round_no,
            task_id=task_id,
        ))
        await self._emit(
            EventType.AGENT_FAILED,
            round=round_no,
            agent_id=outcome.requested_id,
            task_id=task_id,
            data={"error": str(outcome.error)},
        )

    async def _collect(
        self,
        outcomes: list[_CallOutcome],
        state: _RunState,
        round_no: int,
        layer: int | None = None,
        metadata: dict[str, str] | None = None,
    ) -> list[_CallOutcome]:
        """Record every outcome; return the successful ones."""
        succeeded = []
        for outcome in outcomes:
            if outcome.ok:
                await self._record(outcome, state, round_no, layer, metadata)
                succeeded.append(outcome)
            else:
                await self._record_failure(outcome, state, round_no)
        return succeeded

    # ==================== parallel ====================

    async def _step_parallel(self, state: _RunState) -> None:
        round_no = 1
        await self._emit(EventType.ROUND_STARTED, round=round_no)

        outcomes = await self._fan_out(
            [(agent, state.prompt) for agent in self._agents.values()],
            ordered=False,
        )
        await self._collect(outcomes, state, round_no)

        state.round_index = round_no
        state.terminal = True
        state.is_complete = True
        await self._emit(EventType.ROUND_COMPLETED, round=round_no)

    # ==================== round robin ====================

    async def _step_round_robin(self, state: _RunState) -> None:
        round_no = state.round_index + 1
        logger.info(f"round robin round {round_no}/{state.rounds}")
        await self._emit(EventType.ROUND_STARTED, round=round_no)

        for agent_id in self._round_robin_order(self.mode):
            agent = self._agents[agent_id]
            self._deliver(agent, state)
            outcome = await self._invoke(agent, state.prompt, use_fork=False)
            await self._collect([outcome], state, round_no)

        state.round_index = round_no
        await self._emit(EventType.ROUND_COMPLETED, round=round_no)
        if round_no >= state.rounds:
            state.terminal = True
            state.is_complete = True

    # ==================== moderated ====================

    @staticmethod
    def select_respondents(reply: str, candidates: list[Agent]) -> list[Agent]:
        """Agents named in a moderator reply, by id or display name.

        Matching is case-insensitive and word-bounded; results keep the
        candidates' order. An empty list means nobody was named.
        """
        selected = []
        for agent in candidates:
            for token in {agent.id, agent.name}:
                pattern = r"(?<!\w)" + re.escape(token) + r"(?!\w)"
                if re.search(pattern, reply, flags=re.IGNORECASE):
                    selected.append(agent)
                    break
        return selected

    async def _step_moderated(self, state: _RunState) -> None:
        mode: Moderated = self.mode
        cycle = state.round_index + 1
        moderator = self._agents[mode.moderator_id]
        candidates = [self._agents[agent_id] for agent_id in self._respondents(mode)]

        logger.info(f"moderated cycle {cycle}/{state.rounds}")
        await self._emit(EventType.ROUND_STARTED, round=cycle)

        directive = prompts.moderator_prompt(
            state.prompt, [(agent.id, agent.name) for agent in candidates], cycle
        )
        self._deliver(moderator, state)
        outcome = await self._invoke(moderator, directive, use_fork=False)
        await self._collect([outcome], state, cycle, metadata={"role": "moderator"})

        selected = self.select_respondents(outcome.reply.content, candidates) if outcome.ok else []
        if not selected:
            logger.info(f"moderator named no eligible respondent; defaulting to {candidates[0].id}")
            selected = [candidates[0]]

        for agent in selected:
            await self._emit(EventType.AGENT_SELECTED, round=cycle, agent=agent, data={"moderator": moderator.id})
            self._deliver(agent, state)

        outcomes = await self._fan_out([(agent, state.prompt) for agent in selected])
        await self._collect(outcomes, state, cycle, metadata={"selected_by": moderator.id})

        state.round_index = cycle
        await self._emit(EventType.ROUND_COMPLETED, round=cycle)
        if cycle >= state.rounds:
            state.terminal = True
            state.is_complete = True

    # ==================== hierarchical ====================

    async def _step_hierarchical(self, state: _RunState) -> None:
        mode: Hierarchical = self.mode
        layer = state.round_index
        agents = [self._agents[agent_id] for agent_id in mode.layers[layer]]

        logger.info(f"hierarchical layer {layer + 1}/{len(mode.layers)} with {len(agents)} agents")
        await self._emit(EventType.ROUND_STARTED, round=layer + 1, data={"layer": layer})

        layer_input = prompts.layer_prompt(state.prompt, state.layer_outputs)
        outcomes = await self._fan_out([(agent, layer_input) for agent in agents])
        succeeded = await self._collect(outcomes, state, layer + 1, layer=layer)
        state.layer_outputs.append([(o.agent.name, o.reply.content) for o in succeeded])

        state.round_index = layer + 1
        await self._emit(EventType.ROUND_COMPLETED, round=layer + 1, data={"layer": layer})
        if state.round_index >= len(mode.layers):
            state.terminal = True
            state.is_complete = bool(succeeded)

    # ==================== debate ====================

    async def _step_debate(self, state: _RunState) -> None:
        mode: Debate = self.mode
        round_no = state.round_index + 1
        agents = list(self._agents.values())

        logger.info(f"debate round {round_no}/{mode.max_rounds}")
        await self._emit(EventType.ROUND_STARTED, round=round_no)

        round_prompt = prompts.debate_prompt(state.prompt, round_no)
        if mode.sequential:
            succeeded = []
            for agent in agents:
                self._deliver(agent, state)
                outcome = await self._invoke(agent, round_prompt, use_fork=False)
                succeeded.extend(await self._collect([outcome], state, round_no))
        else:
            for agent in agents:
                self._deliver(agent, state)
            outcomes = await self._fan_out([(agent, round_prompt) for agent in agents])
            succeeded = await self._collect(outcomes, state, round_no)

        score = convergence_score([o.reply.content for o in succeeded])
        state.convergence_score = score
        state.round_index = round_no
        await self._emit(
            EventType.CONVERGENCE_CHECKED,
            round=round_no,
            data={"score": round(score, 4), "threshold": mode.threshold},
        )
        await self._emit(EventType.ROUND_COMPLETED, round=round_no)

        if score >= mode.threshold:
            logger.info(f"debate converged in round {round_no} with score {score:.2f}")
            state.terminal = True
            state.is_complete = True
        elif round_no >= mode.max_rounds:
            state.terminal = True
            state.is_complete = True

    # ==================== checklist ====================

    def _apply_markers(self, state: _RunState, agent_id: str, text: str) -> list[str]:
        """Mark tasks named by completion markers; unknown or finished ids are ignored."""
        by_id = {task.id: task for task in state.tasks}
        newly = []
        for task_id in parse_completion_markers(text):
            task = by_id.get(task_id)
            if task is None or task.status == TaskStatus.COMPLETED:
                continue
            task.status = TaskStatus.COMPLETED
            task.claimant_id = agent_id
            newly.append(task_id)
        return newly

    def _checklist_fraction(self, state: _RunState) -> float:
        if not state.tasks:
            return 1.0
        done = sum(1 for task in state.tasks if task.status == TaskStatus.COMPLETED)
        return done / len(state.tasks)

    async def _step_checklist(self, state: _RunState) -> None:
        mode: Checklist = self.mode
        if not state.tasks:
            state.terminal = True
            state.is_complete = True
            state.convergence_score = 1.0
            return

        iteration = state.round_index + 1
        logger.info(
            f"checklist iteration {iteration}/{mode.max_iterations}, "
            f"{self._checklist_fraction(state):.0%} of tasks complete"
        )
        await self._emit(EventType.ROUND_STARTED, round=iteration)

        agents = list(self._agents.values())
        for agent in agents:
            self._deliver(agent, state)
        iteration_prompt = prompts.checklist_prompt(state.prompt, state.tasks, iteration, mode.max_iterations)
        outcomes = await self._fan_out([(agent, iteration_prompt) for agent in agents])

        for outcome in outcomes:
            if not outcome.ok:
                await self._record_failure(outcome, state, iteration)
                continue
            newly = self._apply_markers(state, outcome.agent.id, outcome.reply.content)
            metadata = {"tasks_completed": ",".join(newly)} if newly else None
            await self._record(outcome, state, iteration, metadata=metadata)
            for task_id in newly:
                await self._emit(EventType.TASK_COMPLETED, round=iteration, agent=outcome.agent, task_id=task_id)

        state.round_index = iteration
        state.convergence_score = self._checklist_fraction(state)
        await self._emit(
            EventType.ROUND_COMPLETED,
            round=iteration,
            data={"completion": round(state.convergence_score, 4)},
        )

        if all(task.status == TaskStatus.COMPLETED for task in state.tasks):
            state.terminal = True
            state.is_complete = True
        elif iteration >= mode.max_iterations:
            state.terminal = True

    # ==================== decentralized pool ====================

    def _pool_backend_name(self, pool: TaskPool) -> str:
        return f"pool:{pool.pool_id}"

    def _routers(self) -> list:
        routers = []
        for agent in list(self._agents.values()) + list(self._fallbacks.values()):
            router = agent.tool_router
            if router is not None and all(router is not r for r in routers):
                routers.append(router)
        return routers

    def _attach_pool(self, pool: TaskPool) -> str:
        """Register the pool's tools on every agent router."""
        name = self._pool_backend_name(pool)
        backend = TaskPoolBackend(pool)
        for router in self._routers():
            router.unregister(name)
            try:
                router.register(name, backend, strict=True)
            except DuplicateToolError as e:
                self._detach_pool(name)
                raise ConfigurationError(f"Cannot expose task pool tools: {e}") from e
        return name

    def _detach_pool(self, name: str) -> None:
        for router in self._routers():
            router.unregister(name)

    async def _emit_pool_transitions(self, before: dict[str, Task], after: list[Task], iteration: int) -> None:
        for task in after:
            previous = before[task.id]
            if previous.status == task.status:
                continue
            if previous.status == TaskStatus.PENDING and task.status != TaskStatus.PENDING:
                await self._emit(EventType.TASK_CLAIMED, round=iteration, agent_id=task.claimant_id, task_id=task.id)
            if task.status == TaskStatus.COMPLETED:
                await self._emit(
                    EventType.TASK_COMPLETED, round=iteration, agent_id=task.claimant_id, task_id=task.id,
                )
            elif task.status == TaskStatus.FAILED:
                await self._emit(
                    EventType.TASK_FAILED, round=iteration, agent_id=task.claimant_id, task_id=task.id,
                    data={"error": task.error or ""},
                )

    async def _step_pool(self, state: _RunState) -> None:
        mode: DecentralizedPool = self.mode
        pool = state.pool
        if pool.is_drained():
            state.terminal = True
            state.is_complete = True
            state.convergence_score = pool.completion_fraction()
            return

        iteration = state.round_index + 1
        summary = pool.summary()
        logger.info(f"pool iteration {iteration}/{mode.max_iterations}: {summary}")
        await self._emit(EventType.ROUND_STARTED, round=iteration, data=summary)

        before = {task.id: task for task in pool.snapshot()}
        agents = list(self._agents.values())
        calls = []
        for agent in agents:
            self._deliver(agent, state)
            calls.append((
                agent,
                prompts.pool_prompt(state.prompt, pool.pool_id, summary, agent.id, iteration, mode.max_iterations),
            ))
        outcomes = await self._fan_out(calls)

        for outcome in outcomes:
            if outcome.ok:
                await self._record(outcome, state, iteration)
                continue
            # a failed agent gives back whatever it still holds
            held = [
                task.id for task in pool.snapshot()
                if task.status == TaskStatus.CLAIMED and task.claimant_id == outcome.requested_id
            ]
            for task_id in held:
                pool.release(task_id, outcome.requested_id)
            await self._record_failure(outcome, state, iteration, task_id=held[0] if held else None)

        await self._emit_pool_transitions(before, pool.snapshot(), iteration)

        state.round_index = iteration
        state.convergence_score = pool.completion_fraction()
        await self._emit(EventType.ROUND_COMPLETED, round=iteration, data=pool.summary())

        if pool.is_drained():
            state.terminal = True
            state.is_complete = True
        elif iteration >= mode.max_iterations:
            state.terminal = True
