"""Tests for the CLI helpers."""

import json

import pytest

import collab_agents.main as main_module
from collab_agents.clients.factory import create_client
from collab_agents.config import ModeSpec, TeamConfig, get_settings
from collab_agents.exceptions import ConfigurationError
from collab_agents.main import build_mode, build_orchestration, format_result, result_to_dict
from collab_agents.orchestration import Checklist, Debate, DecentralizedPool, Hierarchical, Moderated, Parallel
from collab_agents.types import (
    AgentFailure,
    MessageRole,
    ReplyRecord,
    RunResult,
    Task,
    TaskStatus,
    UsageStats,
)


@pytest.fixture
def result():
    return RunResult(
        transcript=[
            ReplyRecord("a", "Alice", MessageRole.ASSISTANT, "first", 1),
            ReplyRecord("b", "Bob", MessageRole.ASSISTANT, "second", 2),
        ],
        rounds_completed=2,
        is_complete=False,
        convergence_score=0.5,
        total_usage=UsageStats(10, 5, 15),
        failures=[AgentFailure("c", "timed out", 2)],
        task_status=[Task("t1", "Scope", status=TaskStatus.COMPLETED)],
    )


class TestBuildMode:

    def test_simple_modes(self):
        assert isinstance(build_mode(ModeSpec(), []), Parallel)
        debate = build_mode(ModeSpec(type="debate", max_rounds=4, convergence_threshold=0.9), [])
        assert debate == Debate(max_rounds=4, convergence_threshold=0.9)

    def test_layers_become_tuples(self):
        mode = build_mode(ModeSpec(type="hierarchical", layers=[["a", "b"], ["c"]]), [])
        assert mode == Hierarchical((("a", "b"), ("c",)))

    def test_task_modes(self):
        tasks = [Task("t1", "Scope")]
        checklist = build_mode(ModeSpec(type="checklist", max_iterations=2), tasks)
        assert isinstance(checklist, Checklist)
        assert checklist.tasks == (tasks[0],)

        pool = build_mode(ModeSpec(type="pool"), tasks)
        assert isinstance(pool, DecentralizedPool)
        assert pool.pool_id == "default"

    def test_moderated_needs_moderator(self):
        with pytest.raises(ConfigurationError):
            build_mode(ModeSpec(type="moderated"), [])
        assert build_mode(ModeSpec(type="moderated", moderator="m"), []) == Moderated("m")


class TestBuildOrchestration:

    def test_pool_team_shares_one_router(self, monkeypatch):
        config = TeamConfig.model_validate({
            "name": "pool-team",
            "mode": {"type": "pool", "pool_id": "work"},
            "agents": [
                {"id": "a", "provider": "openai"},
                {"id": "b", "provider": "openai"},
            ],
            "tasks": [{"id": "t1", "title": "Scope"}],
        })
        # explicit key keeps the test independent of the environment
        monkeypatch.setattr(
            main_module,
            "create_client",
            lambda provider, model, client_config: create_client(provider, model, client_config, api_key="fake"),
        )
        orchestration = build_orchestration(config)

        a, b = orchestration.list_agents()
        assert a.tool_router is b.tool_router
        assert a.tool_router.list_backends() == ["memory"]
        assert orchestration.mode.pool_id == "work"
        assert orchestration.mode.store is not None

    def test_missing_provider(self, monkeypatch):
        for var in ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "TOGETHER_API_KEY",
                    "GOOGLE_API_KEY", "GEMINI_API_KEY", "LLM_PROVIDER"):
            monkeypatch.setenv(var, "")
        get_settings.cache_clear()
        try:
            with pytest.raises(ConfigurationError):
                build_orchestration(TeamConfig.model_validate({"agents": [{"id": "a"}]}))
        finally:
            get_settings.cache_clear()


class TestOutput:

    def test_format_result(self, result):
        text = format_result(result)
        assert "=== Round 1 ===\n[Alice]: first" in text
        assert "=== Round 2 ===\n[Bob]: second" in text
        assert "- t1 (Scope): completed" in text
        assert "[failed] c in round 2: timed out" in text
        assert text.endswith("rounds: 2, complete: False, tokens: 15, score: 0.50")

    def test_result_to_dict_is_json_ready(self, result):
        data = json.loads(json.dumps(result_to_dict(result)))
        assert data["total_tokens"] == 15
        assert [r["agent_id"] for r in data["transcript"]] == ["a", "b"]
        assert data["tasks"][0]["status"] == "completed"
        assert data["failures"][0]["error"] == "timed out"
