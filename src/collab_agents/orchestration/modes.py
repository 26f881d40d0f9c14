"""Collaboration modes.

Each mode is a small immutable description of a protocol; exactly one is
active per run. The engine interprets them.
"""

from dataclasses import dataclass, field
from typing import Union

from ..tools.memory import MemoryStore
from ..types import Task

DEFAULT_CONVERGENCE_THRESHOLD = 0.75


@dataclass(frozen=True)
class Parallel:
    """Every agent answers the same prompt concurrently, once."""

    name = "parallel"


@dataclass(frozen=True)
class RoundRobin:
    """Agents take turns in ``order`` (registration order when empty)."""

    order: tuple[str, ...] = ()
    name = "round_robin"


@dataclass(frozen=True)
class Moderated:
    """A moderator picks which respondents answer each cycle.

    ``respondents`` defaults to every agent except the moderator.
    """

    moderator_id: str
    respondents: tuple[str, ...] = ()
    name = "moderated"


@dataclass(frozen=True)
class Hierarchical:
    """Layers run in order; the last layer must hold exactly one agent."""

    layers: tuple[tuple[str, ...], ...]
    name = "hierarchical"


@dataclass(frozen=True)
class Debate:
    """Rounds of argument until the replies converge or rounds run out.

    By default a round's agents answer concurrently and see the transcript
    up to the previous round. With ``sequential`` they answer one after
    another, each seeing the replies already given in the same round.
    """

    max_rounds: int = 3
    convergence_threshold: float | None = None
    sequential: bool = False
    name = "debate"

    @property
    def threshold(self) -> float:
        if self.convergence_threshold is None:
            return DEFAULT_CONVERGENCE_THRESHOLD
        return self.convergence_threshold


@dataclass(frozen=True)
class Checklist:
    """Iterate until every task is reported done with ``[TASK_COMPLETE:<id>]``."""

    tasks: tuple[Task, ...] = ()
    max_iterations: int = 5
    name = "checklist"


@dataclass(frozen=True)
class DecentralizedPool:
    """Agents claim and finish tasks from a shared pool through tools."""

    pool_id: str
    tasks: tuple[Task, ...] = ()
    max_iterations: int = 5
    store: MemoryStore | None = field(default=None, compare=False)
    name = "pool"


CollaborationMode = Union[
    Parallel,
    RoundRobin,
    Moderated,
    Hierarchical,
    Debate,
    Checklist,
    DecentralizedPool,
]
