"""Training module for PPO and self-play."""

from combat_bot.training.buffer import RolloutBuffer
from combat_bot.training.ppo import PPO, PPOStats
from combat_bot.training.scripted import ScriptedOpponentCache
from combat_bot.training.opponent_pool import (
    OpponentPool,
    OpponentMetadata,
    OpponentSnapshot,
    PoolStatistics,
)
from combat_bot.training.trainer import (
    PPOTrainer,
    EngagementStats,
    RolloutStats,
    TrainerStatistics,
    TrainingMetrics,
)

__all__ = [
    "RolloutBuffer",
    "PPO",
    "PPOStats",
    "ScriptedOpponentCache",
    "OpponentPool",
    "OpponentMetadata",
    "OpponentSnapshot",
    "PoolStatistics",
    "PPOTrainer",
    "EngagementStats",
    "RolloutStats",
    "TrainerStatistics",
    "TrainingMetrics",
]
