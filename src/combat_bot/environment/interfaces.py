"""Interfaces to the collaborators the training engine drives but does not own.

The game simulation, feature encoder, reward function and scripted bots live
outside this package. The trainer only relies on the shapes below; game
state is an opaque value passed straight through.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Protocol, Sequence, runtime_checkable

from combat_bot.environment.action_space import ActionBundle

PLAYER1 = "player1"
PLAYER2 = "player2"

State = Any

# (state, actor_id, target_id) -> action bundle
ScriptedOpponent = Callable[[State, str, str], ActionBundle]


@dataclass
class StepInfo:
    """Per-step information reported by the environment."""

    damage_dealt: dict[str, float] = field(default_factory=dict)
    damage_taken: dict[str, float] = field(default_factory=dict)
    events: list[Any] = field(default_factory=list)
    winner: str | None = None


@dataclass
class StepResult:
    """Result of a single environment step."""

    done: bool
    info: StepInfo = field(default_factory=StepInfo)


@runtime_checkable
class Environment(Protocol):
    def reset(self) -> State: ...

    def step(self, actions: Mapping[str, ActionBundle]) -> StepResult: ...

    def get_state(self) -> State: ...


@runtime_checkable
class FeatureEncoder(Protocol):
    """Turns game state into a fixed-length observation for one role."""

    @property
    def observation_size(self) -> int: ...

    def encode(self, state: State, role: str, style: str | None = None) -> Sequence[float]: ...


@runtime_checkable
class RewardFunction(Protocol):
    def reset(self, state: State) -> None: ...

    def calculate_reward(
        self,
        prev_state: State,
        curr_state: State,
        role: str,
        events: list[Any],
    ) -> float: ...


@runtime_checkable
class StateProbe(Protocol):
    """Optional read-only view into game state used for engagement stats."""

    def distance(self, state: State) -> float: ...

    def health(self, state: State, role: str) -> float: ...


def other_role(role: str) -> str:
    """Return the opposing role id."""
    return PLAYER2 if role == PLAYER1 else PLAYER1
