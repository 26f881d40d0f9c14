"""Tests for the orchestration engine and its collaboration modes."""

import asyncio
import json

import pytest

from collab_agents.clients.base import BaseLLMClient
from collab_agents.exceptions import (
    AgentNotFoundError,
    AuthenticationError,
    BudgetExceededError,
    ConfigurationError,
    OrchestrationError,
)
from collab_agents.orchestration import (
    CallbackEventSink,
    Checklist,
    CollectingEventSink,
    Debate,
    DecentralizedPool,
    EventType,
    Hierarchical,
    Moderated,
    Orchestration,
    Parallel,
    RoundRobin,
)
from collab_agents.tools import MemoryBackend, MemoryStore, ToolRouter
from collab_agents.types import BudgetPolicy, ClientReply, Task, TaskStatus


def team_of(mode, *agents, **kwargs) -> Orchestration:
    team = Orchestration("team", mode=mode, **kwargs)
    for agent in agents:
        team.add_agent(agent)
    return team


def tool_call(name: str, **parameters) -> str:
    return json.dumps({"tool_call": {"name": name, "parameters": parameters}})


class TestTeamManagement:

    def test_duplicate_agent_id(self, make_agent):
        team = Orchestration("team")
        team.add_agent(make_agent("a")[0])
        with pytest.raises(ConfigurationError):
            team.add_agent(make_agent("a")[0])

    def test_lookup_and_removal(self, make_agent):
        a, _ = make_agent("a")
        b, _ = make_agent("b")
        team = team_of(Parallel(), a, b)

        assert team.get_agent("a") is a
        assert team.list_agents() == [a, b]
        assert team.remove_agent("a") is a
        assert team.get_agent("a") is None
        assert team.remove_agent("a") is None

    def test_fallback_for_unknown_agent(self, make_agent):
        team = Orchestration("team")
        with pytest.raises(AgentNotFoundError):
            team.set_fallback("ghost", make_agent("s")[0])


class TestValidation:

    def test_no_agents(self):
        with pytest.raises(ConfigurationError):
            asyncio.run(Orchestration("empty").run("hi"))

    def test_rounds_must_be_positive(self, make_agent):
        agent, client = make_agent("a")
        with pytest.raises(ConfigurationError):
            asyncio.run(team_of(RoundRobin(), agent).run("hi", rounds=0))
        assert client.call_count == 0

    def test_unknown_round_robin_agent(self, make_agent):
        agent, client = make_agent("a")
        with pytest.raises(AgentNotFoundError):
            asyncio.run(team_of(RoundRobin(order=("a", "ghost")), agent).run("hi"))
        assert client.call_count == 0

    def test_unknown_moderator(self, make_agent):
        with pytest.raises(AgentNotFoundError):
            asyncio.run(team_of(Moderated("ghost"), make_agent("a")[0]).run("hi"))

    def test_moderator_without_respondents(self, make_agent):
        with pytest.raises(ConfigurationError):
            asyncio.run(team_of(Moderated("mod"), make_agent("mod")[0]).run("hi"))

    @pytest.mark.parametrize("layers", [
        (),
        (("a",), ()),
        (("a", "b"),),
        (("a",), ("ghost",)),
    ])
    def test_invalid_layers(self, make_agent, layers):
        a, client_a = make_agent("a")
        b, client_b = make_agent("b")
        with pytest.raises(ConfigurationError):
            asyncio.run(team_of(Hierarchical(layers), a, b).run("hi"))
        assert client_a.call_count == client_b.call_count == 0

    def test_invalid_threshold(self, make_agent):
        with pytest.raises(ConfigurationError):
            asyncio.run(team_of(Debate(convergence_threshold=1.5), make_agent("a")[0]).run("hi"))

    def test_pool_needs_routers(self, make_agent):
        with pytest.raises(ConfigurationError):
            asyncio.run(team_of(DecentralizedPool("p", (Task("t1", "x"),)), make_agent("a")[0]).run("hi"))

    def test_concurrent_run_rejected(self, make_agent):
        class GatedClient(BaseLLMClient):
            def __init__(self):
                super().__init__()
                self.started = asyncio.Event()
                self.release = asyncio.Event()

            async def invoke(self, messages, budget_hint=None):
                self.started.set()
                await self.release.wait()
                return ClientReply(content="done")

        async def scenario():
            client = GatedClient()
            team = team_of(Parallel(), make_agent("a", client=client)[0])
            first = asyncio.create_task(team.run("x"))
            await client.started.wait()
            with pytest.raises(OrchestrationError):
                await team.run("y")
            client.release.set()
            return await first

        result = asyncio.run(scenario())
        assert [r.content for r in result.transcript] == ["done"]


class TestParallel:

    def test_every_agent_answers_once(self, make_agent):
        agents = [make_agent(f"a{i}") for i in range(3)]
        team = team_of(Parallel(), *(a for a, _ in agents))
        result = asyncio.run(team.run("question"))

        assert sorted(r.agent_id for r in result.transcript) == ["a0", "a1", "a2"]
        assert all(r.round == 1 for r in result.transcript)
        assert result.rounds_completed == 1
        assert result.is_complete
        assert result.total_tokens == 45
        for _, client in agents:
            assert client.user_messages(0) == ["question"]

    def test_partial_failure_does_not_abort(self, make_agent):
        a1, _ = make_agent("a1")
        a2, _ = make_agent("a2", replies=[AuthenticationError("bad key")])
        a3, _ = make_agent("a3")
        a4, _ = make_agent("a4")
        result = asyncio.run(team_of(Parallel(), a1, a2, a3, a4).run("question"))

        assert sorted(r.agent_id for r in result.transcript) == ["a1", "a3", "a4"]
        assert [f.agent_id for f in result.failures] == ["a2"]
        assert "bad key" in result.failures[0].error
        assert result.is_complete

    def test_persistent_agents_keep_the_exchange(self, make_agent):
        agent, _ = make_agent("a", replies=["answer"])
        asyncio.run(team_of(Parallel(), agent).run("question"))
        assert [m.content for m in agent.history] == ["question", "answer"]


class TestRoundRobin:

    def test_peers_see_earlier_replies(self, make_agent):
        a, client_a = make_agent("a", replies=["a1", "a2"])
        b, client_b = make_agent("b", replies=["b1", "b2"])
        result = asyncio.run(team_of(RoundRobin(), a, b).run("prompt", rounds=2))

        assert [r.content for r in result.transcript] == ["a1", "b1", "a2", "b2"]
        assert [r.round for r in result.transcript] == [1, 1, 2, 2]
        assert result.rounds_completed == 2
        assert result.is_complete

        assert client_a.user_messages(0) == ["prompt"]
        assert client_b.user_messages(0) == ["[a]: a1", "prompt"]
        assert client_a.user_messages(1) == ["prompt", "[b]: b1", "prompt"]
        assert client_b.user_messages(1) == ["[a]: a1", "prompt", "[a]: a2", "prompt"]

    def test_explicit_order(self, make_agent):
        a, _ = make_agent("a")
        b, _ = make_agent("b")
        result = asyncio.run(team_of(RoundRobin(order=("b", "a")), a, b).run("prompt"))
        assert [r.agent_id for r in result.transcript] == ["b", "a"]

    def test_failure_is_skipped(self, make_agent):
        a, _ = make_agent("a", replies=[AuthenticationError("nope")])
        b, client_b = make_agent("b")
        result = asyncio.run(team_of(RoundRobin(), a, b).run("prompt"))

        assert [r.agent_id for r in result.transcript] == ["b"]
        assert result.failures[0].agent_id == "a"
        assert client_b.user_messages(0) == ["prompt"]


class TestModerated:

    def test_moderator_selects_by_name(self, make_agent):
        mod, _ = make_agent("mod", replies=["I think Bob should answer this."])
        alice, client_alice = make_agent("alice", name="Alice")
        bob, client_bob = make_agent("bob", name="Bob", replies=["Bob here"])
        sink = CollectingEventSink()
        team = team_of(Moderated("mod"), mod, alice, bob, event_sink=sink)
        result = asyncio.run(team.run("What is recursion?"))

        assert [r.agent_id for r in result.transcript] == ["mod", "bob"]
        assert result.transcript[0].metadata == {"role": "moderator"}
        assert result.transcript[1].metadata == {"selected_by": "mod"}
        assert client_alice.call_count == 0
        assert client_bob.last_user_message(0) == "What is recursion?"
        assert [e.agent_id for e in sink.of_type(EventType.AGENT_SELECTED)] == ["bob"]

    def test_directive_lists_experts(self, make_agent):
        mod, client_mod = make_agent("mod")
        alice, _ = make_agent("alice", name="Alice")
        asyncio.run(team_of(Moderated("mod"), mod, alice).run("Q"))
        assert "Available experts: alice (Alice)" in client_mod.last_user_message(0)

    def test_defaults_to_first_respondent(self, make_agent):
        mod, _ = make_agent("mod", replies=["no idea"])
        alice, client_alice = make_agent("alice", name="Alice")
        bob, client_bob = make_agent("bob", name="Bob")
        asyncio.run(team_of(Moderated("mod"), mod, alice, bob).run("Q"))

        assert client_alice.call_count == 1
        assert client_bob.call_count == 0

    def test_followup_cycles(self, make_agent):
        mod, client_mod = make_agent("mod", default="alice")
        alice, _ = make_agent("alice")
        result = asyncio.run(team_of(Moderated("mod"), mod, alice).run("Q", rounds=2))

        assert result.rounds_completed == 2
        assert client_mod.last_user_message(1).startswith("Based on the discussion so far")

    def test_selection_is_word_bounded(self, make_agent):
        al, _ = make_agent("al")
        alice, _ = make_agent("alice")
        selected = Orchestration.select_respondents("ALICE please", [al, alice])
        assert selected == [alice]


class TestHierarchical:

    def test_layers_feed_forward(self, make_agent):
        w1, client_w1 = make_agent("w1", replies=["w1 says"])
        w2, client_w2 = make_agent("w2", replies=["w2 says"])
        boss, client_boss = make_agent("boss", replies=["final"])
        team = team_of(Hierarchical((("w1", "w2"), ("boss",))), w1, w2, boss)
        result = asyncio.run(team.run("task"))

        assert [(r.agent_id, r.layer) for r in result.transcript] == [("w1", 0), ("w2", 0), ("boss", 1)]
        assert result.rounds_completed == 2
        assert result.is_complete

        # siblings in a layer never see each other
        assert client_w1.user_messages(0) == ["task"]
        assert client_w2.user_messages(0) == ["task"]
        assert client_boss.last_user_message(0) == (
            "Original task: task\n\nLayer 1 results:\nw1: w1 says\n\nw2: w2 says"
        )

    def test_incomplete_when_final_agent_fails(self, make_agent):
        w, _ = make_agent("w")
        boss, _ = make_agent("boss", replies=[AuthenticationError("down")])
        result = asyncio.run(team_of(Hierarchical((("w",), ("boss",))), w, boss).run("task"))
        assert not result.is_complete
        assert result.failures[0].agent_id == "boss"


class TestDebate:

    def test_identical_replies_converge_in_first_round(self, make_agent):
        agents = [make_agent(i, default="We agree Python is a fine first language")[0] for i in "abc"]
        sink = CollectingEventSink()
        result = asyncio.run(team_of(Debate(max_rounds=3), *agents, event_sink=sink).run("Python?"))

        assert result.rounds_completed == 1
        assert result.convergence_score == 1.0
        assert result.is_complete
        assert len(result.transcript) == 3
        assert sink.of_type(EventType.CONVERGENCE_CHECKED)[0].data["score"] == 1.0

    def test_divergent_debate_runs_all_rounds(self, make_agent):
        a, client_a = make_agent("a", replies=["apples oranges bananas", "apples grapes melons"])
        b, client_b = make_agent("b", replies=["rockets planets comets", "rockets moons stars"])
        result = asyncio.run(team_of(Debate(max_rounds=2), a, b).run("Topic"))

        assert result.rounds_completed == 2
        assert result.is_complete
        assert result.convergence_score == 0.0
        assert client_b.user_messages(1)[-2] == "[a]: apples oranges bananas"
        assert client_a.last_user_message(1).startswith("Round 2 of debate: Topic")

    def test_sequential_round_sees_earlier_speakers(self, make_agent):
        a, client_a = make_agent("a", replies=["apples oranges bananas"])
        b, client_b = make_agent("b", replies=["rockets planets comets"])
        result = asyncio.run(team_of(Debate(max_rounds=1, sequential=True), a, b).run("Topic"))

        assert [r.agent_id for r in result.transcript] == ["a", "b"]
        assert client_b.user_messages(0)[0] == "[a]: apples oranges bananas"
        assert len(client_a.user_messages(0)) == 1
        assert result.convergence_score == 0.0

    def test_concurrent_round_hides_same_round_replies(self, make_agent):
        a, _ = make_agent("a", replies=["apples oranges bananas"])
        b, client_b = make_agent("b", replies=["rockets planets comets"])
        asyncio.run(team_of(Debate(max_rounds=1), a, b).run("Topic"))
        assert len(client_b.user_messages(0)) == 1

    def test_single_reply_scores_zero(self, make_agent):
        a, _ = make_agent("a", default="same words here")
        b, _ = make_agent("b", replies=[AuthenticationError("x")] * 2)
        result = asyncio.run(team_of(Debate(max_rounds=1), a, b).run("Topic"))
        assert result.convergence_score == 0.0


class TestChecklist:

    TASKS = (Task("t1", "First"), Task("t2", "Second"), Task("t3", "Third"))

    def test_completes_over_two_iterations(self, make_agent):
        worker, client = make_agent("w", replies=[
            "Did both. [TASK_COMPLETE:t1] [TASK_COMPLETE:t2] [TASK_COMPLETE:zzz]",
            "Last one. [TASK_COMPLETE:t3]",
        ])
        sink = CollectingEventSink()
        result = asyncio.run(team_of(Checklist(self.TASKS), worker, event_sink=sink).run("Build it"))

        assert result.rounds_completed == 2
        assert result.is_complete
        assert result.convergence_score == 1.0
        assert [t.status for t in result.task_status] == [TaskStatus.COMPLETED] * 3
        assert all(t.claimant_id == "w" for t in result.task_status)
        assert result.transcript[0].metadata == {"tasks_completed": "t1,t2"}
        assert [e.task_id for e in sink.of_type(EventType.TASK_COMPLETED)] == ["t1", "t2", "t3"]
        assert "- [x] First" in client.last_user_message(1)
        assert "- [ ] Third" in client.last_user_message(1)

    def test_stops_at_max_iterations(self, make_agent):
        worker, _ = make_agent("w", default="still thinking")
        result = asyncio.run(team_of(Checklist(self.TASKS, max_iterations=2), worker).run("Build it"))

        assert result.rounds_completed == 2
        assert not result.is_complete
        assert result.convergence_score == 0.0

    def test_empty_checklist(self, make_agent):
        worker, client = make_agent("w")
        result = asyncio.run(team_of(Checklist(()), worker).run("Build it"))

        assert result.rounds_completed == 0
        assert result.is_complete
        assert result.convergence_score == 1.0
        assert client.call_count == 0


class TestDecentralizedPool:

    TASKS = (Task("t1", "First"), Task("t2", "Second"))

    def test_agents_claim_and_complete_through_tools(self, make_agent):
        router = ToolRouter()
        a, _ = make_agent("a", tool_router=router, replies=[
            tool_call("pool_claim_task", task_id="t1", agent_id="a"),
            tool_call("pool_complete_task", task_id="t1", agent_id="a", result="t1 done"),
            "a finished",
        ])
        b, _ = make_agent("b", tool_router=router, replies=[
            tool_call("pool_claim_task", task_id="t2", agent_id="b"),
            tool_call("pool_complete_task", task_id="t2", agent_id="b", result="t2 done"),
            "b finished",
        ])
        sink = CollectingEventSink()
        team = team_of(DecentralizedPool("p", self.TASKS), a, b, event_sink=sink)
        result = asyncio.run(team.run("Share the work"))

        assert result.is_complete
        assert result.rounds_completed == 1
        assert result.convergence_score == 1.0
        assert [(t.id, t.status, t.claimant_id) for t in result.task_status] == [
            ("t1", TaskStatus.COMPLETED, "a"),
            ("t2", TaskStatus.COMPLETED, "b"),
        ]
        assert result.task_status[0].result == "t1 done"
        assert sorted(e.task_id for e in sink.of_type(EventType.TASK_CLAIMED)) == ["t1", "t2"]
        assert sorted(e.task_id for e in sink.of_type(EventType.TASK_COMPLETED)) == ["t1", "t2"]
        # pool tools are only routed while the run lasts
        assert router.list_backends() == []

    def test_lost_claim_is_reported_to_the_agent(self, make_agent):
        store = MemoryStore()
        store.put("teams:p:claimed:t1", "ghost")
        router = ToolRouter()
        a, client = make_agent("a", tool_router=router, replies=[
            tool_call("pool_claim_task", task_id="t1", agent_id="a"),
            tool_call("pool_claim_task", task_id="t2", agent_id="a"),
            tool_call("pool_complete_task", task_id="t2", agent_id="a"),
            "done what I could",
        ])
        mode = DecentralizedPool("p", self.TASKS, max_iterations=1, store=store)
        result = asyncio.run(team_of(mode, a).run("Share the work"))

        assert "already claimed by 'ghost'" in client.last_user_message(1)
        assert not result.is_complete
        assert result.convergence_score == 0.5

    def test_failed_agent_releases_its_claim(self, make_agent):
        router = ToolRouter()
        a, _ = make_agent("a", tool_router=router, replies=[
            tool_call("pool_claim_task", task_id="t1", agent_id="a"),
            AuthenticationError("revoked"),
        ])
        result = asyncio.run(team_of(DecentralizedPool("p", self.TASKS, max_iterations=1), a).run("Go"))

        assert result.failures[0].agent_id == "a"
        assert result.failures[0].task_id == "t1"
        assert result.task_status[0].status == TaskStatus.PENDING

    def test_tool_name_clash_is_a_configuration_error(self, make_agent):
        from collab_agents.tools import TaskPoolBackend
        from collab_agents.orchestration import TaskPool

        router = ToolRouter()
        router.register("other", TaskPoolBackend(TaskPool("other", [])))
        a, client = make_agent("a", tool_router=router)
        with pytest.raises(ConfigurationError):
            asyncio.run(team_of(DecentralizedPool("p", self.TASKS), a).run("Go"))
        assert client.call_count == 0


class TestFallbackAndBudget:

    def test_fallback_substitutes_failed_agent(self, make_agent):
        primary, _ = make_agent("p", replies=[AuthenticationError("bad key")])
        backup, _ = make_agent("s", replies=["backup answer"])
        team = team_of(Parallel(), primary)
        team.set_fallback("p", backup)
        result = asyncio.run(team.run("question"))

        assert result.failures == []
        record = result.transcript[0]
        assert (record.agent_id, record.content) == ("s", "backup answer")
        assert record.metadata == {"fallback_for": "p"}

    def test_failed_fallback_is_one_failure(self, make_agent):
        primary, _ = make_agent("p", replies=[AuthenticationError("bad key")])
        backup, _ = make_agent("s", replies=[AuthenticationError("also bad")])
        team = team_of(Parallel(), primary)
        team.set_fallback("p", backup)
        result = asyncio.run(team.run("question"))

        assert result.transcript == []
        assert [f.agent_id for f in result.failures] == ["p"]

    def test_usage_of_a_broken_tool_loop_is_counted(self, make_agent):
        router = ToolRouter()
        router.register("memory", MemoryBackend())
        a, client = make_agent("a", tool_router=router, replies=[
            tool_call("memory_list"),
            AuthenticationError("revoked"),
        ])
        result = asyncio.run(team_of(Parallel(), a).run("question"))

        assert client.call_count == 2
        assert result.transcript == []
        assert [f.agent_id for f in result.failures] == ["a"]
        assert result.total_tokens == 15

    def test_fallback_run_counts_primary_partial_usage(self, make_agent):
        router = ToolRouter()
        router.register("memory", MemoryBackend())
        primary, _ = make_agent("p", tool_router=router, replies=[
            tool_call("memory_list"),
            AuthenticationError("revoked"),
        ])
        backup, _ = make_agent("s", replies=["backup answer"])
        team = team_of(Parallel(), primary)
        team.set_fallback("p", backup)
        result = asyncio.run(team.run("question"))

        assert [r.content for r in result.transcript] == ["backup answer"]
        assert result.transcript[0].usage.total_tokens == 15
        assert result.total_tokens == 30

    def test_strict_budget_aborts_run(self, make_agent):
        tight, _ = make_agent("tight", token_budget=5, budget_policy=BudgetPolicy.STRICT)
        with pytest.raises(BudgetExceededError):
            asyncio.run(team_of(Parallel(), tight).run("a prompt that cannot fit"))

    def test_engine_policy_applies_for_the_run_only(self, make_agent):
        tight, client = make_agent("tight", token_budget=5)
        team = team_of(Parallel(), tight, budget_policy=BudgetPolicy.STRICT)
        with pytest.raises(BudgetExceededError):
            asyncio.run(team.run("a prompt that cannot fit"))

        assert tight.budget_policy is None
        assert client.call_count == 0

        # a second run is allowed once the first one has ended
        tight.memory.token_budget = 10_000
        assert asyncio.run(team.run("ok now")).is_complete


class TestEventsAndHistory:

    def test_event_sequence(self, make_agent):
        sink = CollectingEventSink()
        team = team_of(Parallel(), make_agent("a")[0], make_agent("b")[0], event_sink=sink)
        asyncio.run(team.run("hi"))

        assert sink.types[0] == EventType.RUN_STARTED
        assert sink.types[-1] == EventType.RUN_COMPLETED
        assert len(sink.of_type(EventType.AGENT_RESPONDED)) == 2
        assert all(e.orchestration_id == "team" for e in sink.events)

    def test_failing_sink_does_not_abort(self, make_agent):
        def broken(event):
            raise RuntimeError("sink down")

        team = team_of(Parallel(), make_agent("a")[0], event_sink=CallbackEventSink(broken))
        assert asyncio.run(team.run("hi")).is_complete

    def test_async_callback_sink(self, make_agent):
        seen = []

        async def record(event):
            seen.append(event.type)

        team = team_of(Parallel(), make_agent("a")[0], event_sink=CallbackEventSink(record))
        asyncio.run(team.run("hi"))
        assert EventType.AGENT_RESPONDED in seen

    def test_history_accumulates_across_runs(self, make_agent):
        agent, _ = make_agent("a")
        team = team_of(Parallel(), agent)
        asyncio.run(team.run("one"))
        asyncio.run(team.run("two"))
        assert len(team.get_conversation_history()) == 2

        team.clear_history()
        assert team.get_conversation_history() == []
        assert agent.history == []
