"""Configuration and hyperparameters for self-play training."""

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

SamplingStrategy = Literal["uniform", "mixed", "recent", "strong", "weak", "curriculum"]
OpponentMode = Literal["auto", "pool", "scripted-easy", "scripted-tight"]
ScriptedVariant = Literal["easy", "tight"]


class PPOConfig(BaseSettings):
    """PPO hyperparameters used by ActorCriticPolicy.update."""

    learning_rate: float = Field(default=3e-4, description="Initial learning rate for Adam")
    final_learning_rate: float = Field(default=3e-5, description="Final learning rate (linear decay)")
    gamma: float = Field(default=0.99, ge=0.0, le=1.0, description="Discount factor for rewards")
    gae_lambda: float = Field(default=0.95, ge=0.0, le=1.0, description="GAE lambda for advantage estimation")
    clip_range: float = Field(default=0.2, gt=0.0, description="PPO clipping parameter")
    entropy_coef: float = Field(default=0.01, description="Entropy bonus coefficient")
    value_coef: float = Field(default=0.5, description="Value loss coefficient")
    max_grad_norm: float = Field(default=0.5, gt=0.0, description="Max gradient norm for clipping")
    target_kl: float | None = Field(default=None, description="Optional KL early-stopping threshold")

    # Training schedule
    minibatch_size: int = Field(default=64, gt=0, description="Minibatch size")
    epochs_per_batch: int = Field(default=4, gt=0, description="PPO epochs per update")
    steps_per_rollout: int = Field(default=2048, gt=0, description="Steps per rollout before update")

    # Model architecture
    hidden_dim: int = Field(default=128, gt=0, description="Width of the two shared trunk layers")

    class Config:
        env_prefix = "COMBAT_PPO_"


class EloConfig(BaseSettings):
    """Elo rating parameters."""

    initial_rating: float = Field(default=1500.0, description="Rating assigned on registration")
    k_factor: float = Field(default=32.0, gt=0.0, description="Sensitivity to wins/losses")
    min_rating: float = Field(default=0.0, description="Lower clamp for ratings")
    max_rating: float = Field(default=5000.0, description="Upper clamp for ratings")

    class Config:
        env_prefix = "COMBAT_ELO_"

    @model_validator(mode="after")
    def _check_bounds(self) -> "EloConfig":
        if self.min_rating >= self.max_rating:
            raise ValueError("min_rating must be below max_rating")
        return self


class PoolConfig(BaseSettings):
    """Opponent pool sizing, sampling and persistence."""

    max_snapshots: int = Field(default=18, gt=0, description="Maximum pool size (soft cap)")
    snapshot_frequency: int = Field(default=100_000, gt=0, description="Steps between snapshots")
    sampling_strategy: SamplingStrategy = Field(default="mixed", description="Default sampling strategy")
    keep_best: int = Field(default=5, ge=0, description="Always keep top N by Elo")
    keep_recent: int = Field(default=5, ge=0, description="Always keep the last N added")
    keep_baselines: int = Field(default=3, ge=0, description="Keep up to N baseline snapshots")
    save_path: str = Field(default="models/opponent_pool", description="Directory for snapshot storage")
    persist: bool = Field(default=True, description="Write snapshots to disk in the background")

    class Config:
        env_prefix = "COMBAT_POOL_"


class TrainerConfig(BaseSettings):
    """Rollout scheduling and run-level settings for PPOTrainer."""

    total_steps: int = Field(default=10_000_000, gt=0, description="Total environment steps")

    # Opponent scheduling
    opponent_mode: OpponentMode = Field(default="auto", description="How opponents are chosen")
    scripted_variant: ScriptedVariant = Field(
        default="tight", description="Scripted bot used when mixing scripted episodes"
    )
    scripted_difficulty: int = Field(default=5, ge=1, le=10, description="Difficulty for scripted bots")
    scripted_mix_prob: float = Field(
        default=0.0, ge=0.0, le=1.0, description="Chance to swap a snapshot for a scripted bot"
    )
    scripted_min_episodes: int = Field(
        default=0, ge=0, description="Minimum scripted episodes started per rollout"
    )
    p2_scripted_min_episodes: int = Field(
        default=0, ge=0, description="Minimum policy-as-player2 vs aggressive bot episodes per rollout"
    )
    swap_role_prob: float = Field(default=0.0, ge=0.0, le=1.0, description="Chance the policy plays player2")

    # Episode shaping
    max_episode_frames: int = Field(default=0, ge=0, description="Frame cap per episode (0 = none)")
    timeout_penalty: float = Field(default=-100.0, description="Reward added when the frame cap hits")
    bootstrap_mirror_frames: int = Field(default=0, ge=0, description="Opening frames eligible for mirroring")
    bootstrap_prob: float = Field(default=0.0, ge=0.0, le=1.0, description="Chance to mirror the opponent")

    # Logging
    log_interval: int = Field(default=1, gt=0, description="Rollouts between log lines")
    save_interval: int = Field(default=1_000_000, gt=0, description="Steps between checkpoints")
    save_dir: str = Field(default="models/checkpoints", description="Directory for trainer checkpoints")
    log_dir: str = Field(default="runs", description="Directory for TensorBoard logs")
    progress_path: str = Field(
        default="models/training-progress.jsonl", description="Append-only JSONL progress file"
    )

    class Config:
        env_prefix = "COMBAT_"


# Global config instances
ppo_config = PPOConfig()
elo_config = EloConfig()
pool_config = PoolConfig()
trainer_config = TrainerConfig()
