"""Environment-facing types: collaborator interfaces and the action space."""

from combat_bot.environment.action_space import ActionBundle, DiscreteActionSpace, DEFAULT_ACTIONS
from combat_bot.environment.interfaces import (
    PLAYER1,
    PLAYER2,
    Environment,
    FeatureEncoder,
    RewardFunction,
    ScriptedOpponent,
    StateProbe,
    StepInfo,
    StepResult,
    other_role,
)

__all__ = [
    "ActionBundle",
    "DiscreteActionSpace",
    "DEFAULT_ACTIONS",
    "PLAYER1",
    "PLAYER2",
    "Environment",
    "FeatureEncoder",
    "RewardFunction",
    "ScriptedOpponent",
    "StateProbe",
    "StepInfo",
    "StepResult",
    "other_role",
]
