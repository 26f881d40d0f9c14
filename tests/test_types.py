"""Tests for shared types."""

import pytest

from collab_agents.types import (
    BudgetPolicy,
    Message,
    MessageRole,
    RunResult,
    Task,
    TaskStatus,
    ToolDescriptor,
    ToolParameter,
    ToolResult,
    UsageStats,
)


class TestMessageRole:
    """Tests for MessageRole enum."""

    def test_enum_values(self):
        """Test that enum has expected values."""
        assert MessageRole.SYSTEM.value == "system"
        assert MessageRole.USER.value == "user"
        assert MessageRole.ASSISTANT.value == "assistant"


class TestBudgetPolicy:

    def test_enum_values(self):
        assert BudgetPolicy("strict") is BudgetPolicy.STRICT
        assert BudgetPolicy("adaptive") is BudgetPolicy.ADAPTIVE
        assert BudgetPolicy("permissive") is BudgetPolicy.PERMISSIVE


class TestMessage:
    """Tests for Message dataclass."""

    def test_simple_message(self):
        msg = Message(role=MessageRole.USER, content="Hello!")
        assert msg.role == MessageRole.USER
        assert msg.content == "Hello!"
        assert msg.metadata is None
        assert msg.timestamp.tzinfo is not None

    def test_is_immutable(self):
        msg = Message(role=MessageRole.USER, content="Hello!")
        with pytest.raises(AttributeError):
            msg.content = "changed"

    def test_to_dict_simple(self):
        """Test converting simple message to dict."""
        d = Message(role=MessageRole.USER, content="Hello!").to_dict()
        assert d["role"] == "user"
        assert d["content"] == "Hello!"
        assert "metadata" not in d

    def test_to_dict_with_metadata(self):
        d = Message(role=MessageRole.USER, content="x", metadata={"tool": "add"}).to_dict()
        assert d["metadata"] == {"tool": "add"}


class TestUsageStats:

    def test_addition(self):
        total = UsageStats(10, 5, 15) + UsageStats(1, 2, 3)
        assert total == UsageStats(11, 7, 18)

    def test_run_result_total_tokens(self):
        result = RunResult(transcript=[], rounds_completed=0, is_complete=True, total_usage=UsageStats(3, 4, 7))
        assert result.total_tokens == 7
        assert result.failures == []
        assert result.convergence_score is None


class TestTask:

    def test_defaults(self):
        task = Task(id="t1", title="Write docs")
        assert task.status == TaskStatus.PENDING
        assert task.claimant_id is None

    def test_to_dict(self):
        task = Task(id="t1", title="Write docs", status=TaskStatus.CLAIMED, claimant_id="a")
        d = task.to_dict()
        assert d["status"] == "claimed"
        assert d["claimant_id"] == "a"


class TestToolTypes:

    def test_descriptor_schema(self):
        descriptor = ToolDescriptor(
            "add",
            "Add two numbers",
            [ToolParameter("a", "number", True), ToolParameter("b", "number", False)],
        )
        schema = descriptor.to_schema()
        assert schema["type"] == "object"
        assert set(schema["properties"]) == {"a", "b"}
        assert schema["required"] == ["a"]

    def test_result_constructors(self):
        ok = ToolResult.ok(5, source="calc")
        assert ok.success and ok.output == 5 and ok.metadata == {"source": "calc"}

        failed = ToolResult.failure("boom")
        assert not failed.success
        assert failed.error == "boom"
