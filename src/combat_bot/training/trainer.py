"""Self-play PPO training loop for the two-player combat game."""

import json
import logging
import random
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import torch
from torch.utils.tensorboard import SummaryWriter

from combat_bot.config import PPOConfig, TrainerConfig, trainer_config
from combat_bot.config import ppo_config as default_ppo_config
from combat_bot.environment.action_space import ActionBundle, DiscreteActionSpace
from combat_bot.environment.interfaces import (
    PLAYER1,
    PLAYER2,
    Environment,
    FeatureEncoder,
    RewardFunction,
    State,
    StateProbe,
    StepResult,
    other_role,
)
from combat_bot.errors import ConfigurationError, EmptyPoolError
from combat_bot.models.policy import ActorCriticPolicy
from combat_bot.training.buffer import RolloutBuffer
from combat_bot.training.opponent_pool import OpponentMetadata, OpponentPool, OpponentSnapshot, PoolStatistics
from combat_bot.training.ppo import PPOStats
from combat_bot.training.scripted import ScriptedOpponentCache

logger = logging.getLogger(__name__)

# Ledger id the live policy plays under when rating snapshot matches
LIVE_POLICY_ID = "live_policy"

# Scripted bot kind used for the forced "policy as player2" episodes
AGGRESSIVE_SCRIPTED = "tight"

CHECKPOINT_FILENAME = "trainer_state.pt"


@dataclass
class EngagementStats:
    """Interaction counters for an episode or a whole rollout."""

    damage_dealt: float = 0.0
    damage_taken: float = 0.0
    distance_closed: float = 0.0
    any_damage: bool = False
    first_hit_resolved: bool = False
    first_hit_dealt: bool = False
    proxy_outcome: str = "draw"
    final_health_diff: float = 0.0

    def record_step(self, dealt: float, taken: float, closed: float) -> None:
        if dealt > 0:
            self.damage_dealt += dealt
            self.any_damage = True
        if taken > 0:
            self.damage_taken += taken
        self.distance_closed += closed

        # First non-simultaneous damage decides who hit first
        if not self.first_hit_resolved:
            if dealt > 0 and taken == 0:
                self.first_hit_resolved = True
                self.first_hit_dealt = True
            elif taken > 0 and dealt == 0:
                self.first_hit_resolved = True
                self.first_hit_dealt = False


@dataclass
class RolloutStats:
    """Episode outcomes and engagement for one collected rollout."""

    steps: int = 0
    episodes: int = 0
    wins: int = 0
    losses: int = 0
    draws: int = 0
    any_damage_rate: float = 0.0
    first_hit_rate: float = 0.0
    avg_damage_dealt: float = 0.0
    avg_damage_taken: float = 0.0
    avg_distance_closed: float = 0.0
    total_reward: float = 0.0
    episode_rewards: list[float] = field(default_factory=list)
    scripted_episodes: int = 0
    snapshot_episodes: int = 0
    player2_episodes: int = 0
    # (winner_id, loser_id) for decisive games against pool snapshots
    snapshot_results: list[tuple[str, str]] = field(default_factory=list)
    engagement: EngagementStats = field(default_factory=EngagementStats)

    @property
    def avg_reward(self) -> float:
        """Mean per-step reward (dense signal, includes unfinished episodes)."""
        return self.total_reward / self.steps if self.steps > 0 else 0.0

    @property
    def avg_episode_length(self) -> float:
        return self.steps / self.episodes if self.episodes > 0 else 0.0

    @property
    def win_rate(self) -> float:
        return self.wins / self.episodes if self.episodes > 0 else 0.0


@dataclass
class TrainingMetrics:
    """Per-rollout metrics emitted after a successful update."""

    step: int
    avg_reward: float
    avg_episode_length: float
    policy_loss: float
    value_loss: float
    entropy: float
    clip_fraction: float
    explained_variance: float
    approx_kl: float
    learning_rate: float
    episodes: int = 0
    wins: int = 0
    losses: int = 0
    draws: int = 0
    any_damage_rate: float = 0.0
    first_hit_rate: float = 0.0
    avg_damage_dealt: float = 0.0
    avg_damage_taken: float = 0.0
    avg_distance_closed: float = 0.0
    scripted_episodes: int = 0
    snapshot_episodes: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TrainerStatistics:
    """Running totals across the whole run."""

    total_steps: int
    total_updates: int
    total_episodes: int
    match_wins: int
    match_losses: int
    match_draws: int
    win_rate: float
    last_snapshot_step: int
    pool: PoolStatistics | None = None


@dataclass
class _EpisodeSetup:
    """Who the policy plays as, and against what, for one episode."""

    policy_role: str = PLAYER1
    opponent: OpponentSnapshot | None = None
    scripted_kind: str | None = None

    @property
    def opponent_role(self) -> str:
        return other_role(self.policy_role)


class PPOTrainer:
    """Collects self-play rollouts and updates the live policy with PPO.

    The trainer owns the episode schedule (roles, opponent source) and the
    run counters. Counters move only after `ActorCriticPolicy.update`
    returns, so a failed update never shows up as progress.
    """

    def __init__(
        self,
        env: Environment,
        policy: ActorCriticPolicy,
        encoder: FeatureEncoder,
        reward_fn: RewardFunction,
        config: TrainerConfig | None = None,
        ppo_config: PPOConfig | None = None,
        opponent_pool: OpponentPool | None = None,
        scripted_opponents: ScriptedOpponentCache | None = None,
        action_space: DiscreteActionSpace | None = None,
        state_probe: StateProbe | None = None,
    ):
        """Initialize trainer.

        Args:
            env: Two-player game environment
            policy: Live policy to train
            encoder: Turns game state into observations for a role
            reward_fn: Per-step reward for the policy's role
            config: Rollout scheduling and run settings
            ppo_config: PPO hyperparameters and rollout length
            opponent_pool: Historical opponents (scripted only if None)
            scripted_opponents: Scripted bots by kind ("easy", "tight")
            action_space: Maps policy actions to environment bundles
            state_probe: Optional distance/health reader for engagement stats

        Raises:
            ConfigurationError: If encoder or action space sizes do not match
                the policy.
        """
        self.env = env
        self.policy = policy
        self.encoder = encoder
        self.reward_fn = reward_fn
        self.config = config or trainer_config
        self.ppo_config = ppo_config or default_ppo_config
        self.opponent_pool = opponent_pool
        self.scripted_opponents = scripted_opponents if scripted_opponents is not None else ScriptedOpponentCache()
        self.action_space = action_space or DiscreteActionSpace()
        self.state_probe = state_probe

        if encoder.observation_size != policy.obs_size:
            raise ConfigurationError(
                f"Encoder produces {encoder.observation_size} features, policy expects {policy.obs_size}"
            )
        if self.action_space.size != policy.action_size:
            raise ConfigurationError(
                f"Action space has {self.action_space.size} actions, policy has {policy.action_size}"
            )

        # Run counters (committed after each successful update)
        self.total_steps = 0
        self.total_updates = 0
        self.total_episodes = 0
        self.match_wins = 0
        self.match_losses = 0
        self.match_draws = 0
        self.last_snapshot_step = 0
        self.training_start_time = time.time()

        self._last_rollout_stats: RolloutStats | None = None
        self._last_checkpoint_step = 0
        self._warned_no_scripted: set[str] = set()

        # TensorBoard writer - set by setup_logging
        self.writer: SummaryWriter | None = None
        self._run_name: str | None = None

    # ------------------------------------------------------------------
    # Episode scheduling
    # ------------------------------------------------------------------

    def _scripted_kind_for_mode(self) -> str:
        if self.config.opponent_mode == "scripted-easy":
            return "easy"
        if self.config.opponent_mode == "scripted-tight":
            return "tight"
        return self.config.scripted_variant

    def _configure_episode(self, scheduled: dict[str, int]) -> _EpisodeSetup:
        """Pick role and opponent source for the next episode.

        Args:
            scheduled: Per-rollout counts of forced episodes, updated in place
        """
        if scheduled["player2"] < self.config.p2_scripted_min_episodes:
            scheduled["player2"] += 1
            return _EpisodeSetup(policy_role=PLAYER2, scripted_kind=AGGRESSIVE_SCRIPTED)

        role = PLAYER2 if random.random() < self.config.swap_role_prob else PLAYER1
        scripted = _EpisodeSetup(policy_role=role, scripted_kind=self._scripted_kind_for_mode())

        if self.config.opponent_mode in ("scripted-easy", "scripted-tight"):
            return scripted

        if scheduled["scripted"] < self.config.scripted_min_episodes:
            scheduled["scripted"] += 1
            return scripted

        if self.opponent_pool is None:
            return scripted
        try:
            snapshot = self.opponent_pool.sample_opponent()
        except EmptyPoolError:
            return scripted

        if random.random() < self.config.scripted_mix_prob:
            return scripted
        return _EpisodeSetup(policy_role=role, opponent=snapshot)

    def _opponent_action(self, setup: _EpisodeSetup, state: State, style: str | None) -> ActionBundle:
        if setup.opponent is not None:
            opponent_style = setup.opponent.metadata.style or style
            obs = self.encoder.encode(state, setup.opponent_role, opponent_style)
            sample = setup.opponent.policy.sample_action(obs)
            return self.action_space.to_bundle(sample.action)

        kind = setup.scripted_kind or self.config.scripted_variant
        if not self.scripted_opponents.has(kind):
            if kind not in self._warned_no_scripted:
                logger.warning(f"No scripted opponent registered for '{kind}', opponent will stand idle")
                self._warned_no_scripted.add(kind)
            return ActionBundle()
        bot = self.scripted_opponents.get(kind, self.config.scripted_difficulty)
        return bot(state, setup.opponent_role, setup.policy_role)

    def _mirror_index(self, setup: _EpisodeSetup, episode_frame: int, opponent_bundle: ActionBundle) -> int | None:
        """Forced action that mirrors the opponent's opening, or None to sample."""
        if setup.policy_role != PLAYER1:
            return None
        if self.config.bootstrap_mirror_frames <= 0 or episode_frame >= self.config.bootstrap_mirror_frames:
            return None
        if random.random() >= self.config.bootstrap_prob:
            return None
        return self.action_space.to_index(opponent_bundle.mirrored())

    def _health_diff(self, state: State, role: str) -> float:
        if self.state_probe is None:
            return 0.0
        return self.state_probe.health(state, role) - self.state_probe.health(state, other_role(role))

    def _distance_closed(self, prev_state: State, state: State) -> float:
        if self.state_probe is None:
            return 0.0
        return max(0.0, self.state_probe.distance(prev_state) - self.state_probe.distance(state))

    # ------------------------------------------------------------------
    # Rollout collection
    # ------------------------------------------------------------------

    def collect_rollout(self, style: str | None = None) -> tuple[RolloutBuffer, RolloutStats]:
        """Play `steps_per_rollout` steps and fill a fresh buffer.

        Does not touch run counters; `train_step` commits them after the
        update succeeds.

        Args:
            style: Fighting style passed to the encoder for the policy

        Returns:
            Tuple of (buffer, rollout statistics)
        """
        steps = self.ppo_config.steps_per_rollout
        buffer = RolloutBuffer(
            buffer_size=steps,
            obs_size=self.policy.obs_size,
            action_size=self.policy.action_size,
            device=self.policy.device,
        )
        stats = RolloutStats()

        self.scripted_opponents.reset()

        scheduled = {"player2": 0, "scripted": 0}
        # Episodes are reset and configured on their first step
        setup: _EpisodeSetup | None = None
        state = None

        episode = EngagementStats()
        episode_reward = 0.0
        episode_frame = 0
        sum_damage_dealt = 0.0
        sum_damage_taken = 0.0
        sum_distance_closed = 0.0
        episodes_with_damage = 0
        episodes_first_hit = 0

        for _ in range(steps):
            if setup is None:
                state = self.env.reset()
                self.reward_fn.reset(state)
                setup = self._start_episode(scheduled, stats)

            role = setup.policy_role
            obs = self.encoder.encode(state, role, style)

            opponent_bundle = self._opponent_action(setup, state, style)
            forced = self._mirror_index(setup, episode_frame, opponent_bundle)
            sample = self.policy.sample_action(obs, forced_action=forced)

            result: StepResult = self.env.step({
                role: self.action_space.to_bundle(sample.action),
                setup.opponent_role: opponent_bundle,
            })
            prev_state = state
            state = self.env.get_state()
            reward = float(self.reward_fn.calculate_reward(prev_state, state, role, result.info.events))

            truncated = (
                self.config.max_episode_frames > 0
                and episode_frame + 1 >= self.config.max_episode_frames
                and not result.done
            )
            episode_done = result.done or truncated
            if truncated:
                reward += self.config.timeout_penalty

            buffer.add(obs, sample.action, sample.log_prob, reward, episode_done, sample.value)

            stats.steps += 1
            stats.total_reward += reward
            episode_reward += reward
            episode_frame += 1

            dealt = float(result.info.damage_dealt.get(role, 0.0))
            taken = float(result.info.damage_taken.get(role, 0.0))
            closed = self._distance_closed(prev_state, state)
            episode.record_step(dealt, taken, closed)
            stats.engagement.record_step(dealt, taken, closed)

            if not episode_done:
                continue

            # Outcome from the policy's point of view
            winner = result.info.winner if result.done else None
            health_diff = self._health_diff(state, role)
            if winner == role or (truncated and health_diff > 0):
                stats.wins += 1
                outcome = "win"
            elif winner == setup.opponent_role or (truncated and health_diff < 0):
                stats.losses += 1
                outcome = "loss"
            else:
                stats.draws += 1
                outcome = "draw"

            if setup.opponent is not None and outcome != "draw":
                pair = (LIVE_POLICY_ID, setup.opponent.id)
                stats.snapshot_results.append(pair if outcome == "win" else pair[::-1])

            stats.episodes += 1
            stats.episode_rewards.append(episode_reward)
            sum_damage_dealt += episode.damage_dealt
            sum_damage_taken += episode.damage_taken
            sum_distance_closed += episode.distance_closed
            if episode.any_damage:
                episodes_with_damage += 1
            if episode.first_hit_resolved and episode.first_hit_dealt:
                episodes_first_hit += 1

            episode = EngagementStats()
            episode_reward = 0.0
            episode_frame = 0
            setup = None

        if stats.episodes > 0:
            stats.any_damage_rate = episodes_with_damage / stats.episodes
            stats.first_hit_rate = episodes_first_hit / stats.episodes
            stats.avg_damage_dealt = sum_damage_dealt / stats.episodes
            stats.avg_damage_taken = sum_damage_taken / stats.episodes
            stats.avg_distance_closed = sum_distance_closed / stats.episodes

        # Rollout-level proxy outcome from the final state
        final_diff = self._health_diff(state, role)
        stats.engagement.final_health_diff = final_diff
        stats.engagement.proxy_outcome = "win" if final_diff > 0 else "loss" if final_diff < 0 else "draw"

        return buffer, stats

    def _start_episode(self, scheduled: dict[str, int], stats: RolloutStats) -> _EpisodeSetup:
        setup = self._configure_episode(scheduled)
        if setup.opponent is not None:
            stats.snapshot_episodes += 1
        else:
            stats.scripted_episodes += 1
        if setup.policy_role == PLAYER2:
            stats.player2_episodes += 1
        return setup

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def train_step(self, style: str | None = None) -> TrainingMetrics:
        """Collect one rollout, update the policy, then commit counters."""
        buffer, rollout = self.collect_rollout(style)
        ppo_stats = self.policy.update(buffer, self.ppo_config)

        self.total_steps += buffer.size
        self.total_updates += 1
        self.total_episodes += rollout.episodes
        self.match_wins += rollout.wins
        self.match_losses += rollout.losses
        self.match_draws += rollout.draws
        self._last_rollout_stats = rollout

        if self.opponent_pool is not None:
            for winner_id, loser_id in rollout.snapshot_results:
                self.opponent_pool.update_elo(winner_id, loser_id)

        return self._build_metrics(rollout, ppo_stats)

    def _build_metrics(self, rollout: RolloutStats, ppo_stats: PPOStats) -> TrainingMetrics:
        return TrainingMetrics(
            step=self.total_steps,
            avg_reward=rollout.avg_reward,
            avg_episode_length=rollout.avg_episode_length,
            policy_loss=ppo_stats.policy_loss,
            value_loss=ppo_stats.value_loss,
            entropy=ppo_stats.entropy,
            clip_fraction=ppo_stats.clip_fraction,
            explained_variance=ppo_stats.explained_variance,
            approx_kl=ppo_stats.approx_kl,
            learning_rate=self.policy.optimizer.param_groups[0]["lr"],
            episodes=rollout.episodes,
            wins=rollout.wins,
            losses=rollout.losses,
            draws=rollout.draws,
            any_damage_rate=rollout.any_damage_rate,
            first_hit_rate=rollout.first_hit_rate,
            avg_damage_dealt=rollout.avg_damage_dealt,
            avg_damage_taken=rollout.avg_damage_taken,
            avg_distance_closed=rollout.avg_distance_closed,
            scripted_episodes=rollout.scripted_episodes,
            snapshot_episodes=rollout.snapshot_episodes,
        )

    def train(self, total_steps: int | None = None, style: str | None = None) -> list[TrainingMetrics]:
        """Run rollouts until `total_steps` environment steps have been taken.

        Decays the learning rate linearly over the run, writes telemetry,
        takes pool snapshots and saves periodic checkpoints.

        Args:
            total_steps: Step budget (defaults to config.total_steps)
            style: Fighting style passed to the encoder

        Returns:
            Metrics for every rollout in this call
        """
        target = total_steps or self.config.total_steps
        history: list[TrainingMetrics] = []

        logger.info(
            f"Training to {target:,} steps ({self.policy.num_parameters:,} parameters, "
            f"mode: {self.config.opponent_mode})"
        )

        while self.total_steps < target:
            self.policy.update_learning_rate(self.total_steps / target)
            metrics = self.train_step(style)
            history.append(metrics)

            self._log_training(metrics)
            self._append_progress(metrics)

            if self.total_updates % self.config.log_interval == 0:
                logger.info(
                    f"Step {metrics.step:,} | Reward: {metrics.avg_reward:.3f} | "
                    f"Policy Loss: {metrics.policy_loss:.4f} | Value Loss: {metrics.value_loss:.4f} | "
                    f"Entropy: {metrics.entropy:.4f} | W/L/D: {metrics.wins}/{metrics.losses}/{metrics.draws}"
                )

            if self.should_create_snapshot():
                self.create_snapshot(avg_reward=metrics.avg_reward, style=style)
                pool_stats = self.opponent_pool.get_statistics()
                logger.info(
                    f"  Pool: {pool_stats.count} snapshots | Avg Elo: {pool_stats.avg_elo:.0f} | "
                    f"Win rate: {self.get_statistics().win_rate:.1%}"
                )

            if self.total_steps - self._last_checkpoint_step >= self.config.save_interval:
                self.save_checkpoint(Path(self.config.save_dir) / f"checkpoint_{self.total_steps}")
                self._last_checkpoint_step = self.total_steps

        return history

    def should_create_snapshot(self) -> bool:
        """Whether enough steps have passed since the last snapshot."""
        if self.opponent_pool is None or self.total_steps <= 0:
            return False
        return self.total_steps - self.last_snapshot_step >= self.opponent_pool.config.snapshot_frequency

    def create_snapshot(
        self,
        avg_reward: float | None = None,
        style: str | None = None,
        difficulty: int | None = None,
    ) -> OpponentSnapshot | None:
        """Freeze the live policy into the opponent pool.

        Resets the rolling match counters. Without a pool this only logs a
        warning.
        """
        if self.opponent_pool is None:
            logger.warning("Cannot create snapshot: no opponent pool configured")
            return None

        metadata = OpponentMetadata(
            checkpoint_step=self.total_steps,
            style=style,
            difficulty=difficulty,
            avg_reward=avg_reward,
            training_time=time.time() - self.training_start_time,
        )
        snapshot = self.opponent_pool.add_snapshot(self.policy, metadata)
        self.opponent_pool.save_metadata()
        logger.info(f"Created snapshot {snapshot.id} at step {self.total_steps:,}")

        self.last_snapshot_step = self.total_steps
        self.match_wins = 0
        self.match_losses = 0
        self.match_draws = 0
        return snapshot

    def get_statistics(self) -> TrainerStatistics:
        games = self.match_wins + self.match_losses + self.match_draws
        return TrainerStatistics(
            total_steps=self.total_steps,
            total_updates=self.total_updates,
            total_episodes=self.total_episodes,
            match_wins=self.match_wins,
            match_losses=self.match_losses,
            match_draws=self.match_draws,
            win_rate=self.match_wins / games if games > 0 else 0.0,
            last_snapshot_step=self.last_snapshot_step,
            pool=self.opponent_pool.get_statistics() if self.opponent_pool is not None else None,
        )

    @property
    def last_rollout_stats(self) -> RolloutStats | None:
        """Stats of the most recent rollout whose update succeeded."""
        return self._last_rollout_stats

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    def setup_logging(self, log_dir: str | Path | None = None, run_name: str | None = None) -> None:
        """Start writing TensorBoard scalars under `log_dir/run_name`."""
        log_root = Path(log_dir or self.config.log_dir)
        log_root.mkdir(parents=True, exist_ok=True)
        self._run_name = run_name or self._run_name or datetime.now().strftime("%Y%m%d-%H%M%S")
        self.writer = SummaryWriter(log_dir=str(log_root / self._run_name))

    def _log_training(self, metrics: TrainingMetrics) -> None:
        """Log per-rollout scalars to TensorBoard."""
        if self.writer is None:
            return

        step = metrics.step
        self.writer.add_scalar("rollout/avg_reward", metrics.avg_reward, step)
        self.writer.add_scalar("rollout/avg_episode_length", metrics.avg_episode_length, step)
        self.writer.add_scalar("rollout/episodes", metrics.episodes, step)
        self.writer.add_scalar("rollout/wins", metrics.wins, step)
        self.writer.add_scalar("rollout/losses", metrics.losses, step)
        self.writer.add_scalar("rollout/draws", metrics.draws, step)

        self.writer.add_scalar("train/policy_loss", metrics.policy_loss, step)
        self.writer.add_scalar("train/value_loss", metrics.value_loss, step)
        self.writer.add_scalar("train/entropy", metrics.entropy, step)
        self.writer.add_scalar("train/approx_kl", metrics.approx_kl, step)
        self.writer.add_scalar("train/clip_fraction", metrics.clip_fraction, step)
        self.writer.add_scalar("train/explained_variance", metrics.explained_variance, step)
        self.writer.add_scalar("train/learning_rate", metrics.learning_rate, step)

        self.writer.add_scalar("engagement/any_damage_rate", metrics.any_damage_rate, step)
        self.writer.add_scalar("engagement/first_hit_rate", metrics.first_hit_rate, step)
        self.writer.add_scalar("engagement/avg_damage_dealt", metrics.avg_damage_dealt, step)
        self.writer.add_scalar("engagement/avg_damage_taken", metrics.avg_damage_taken, step)
        self.writer.add_scalar("engagement/avg_distance_closed", metrics.avg_distance_closed, step)

        if self.opponent_pool is not None:
            pool_stats = self.opponent_pool.get_statistics()
            self.writer.add_scalar("self_play/pool_size", pool_stats.count, step)
            self.writer.add_scalar("self_play/pool_avg_elo", pool_stats.avg_elo, step)
            if self.opponent_pool.elo.has_player(LIVE_POLICY_ID):
                live = self.opponent_pool.elo.get_player(LIVE_POLICY_ID)
                self.writer.add_scalar("self_play/live_elo", live.rating, step)

    def _append_progress(self, metrics: TrainingMetrics) -> None:
        """Append one JSON line per rollout to the progress file."""
        if not self.config.progress_path:
            return
        record = {"timestamp": time.time(), **metrics.to_dict()}
        path = Path(self.config.progress_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a") as f:
                f.write(json.dumps(record) + "\n")
        except OSError as e:
            logger.warning(f"Could not append progress to {path}: {e}")

    def close(self) -> None:
        """Close the TensorBoard writer and flush pending pool saves."""
        if self.writer is not None:
            self.writer.close()
            self.writer = None
        if self.opponent_pool is not None:
            self.opponent_pool.flush()

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def save_checkpoint(self, path: str | Path) -> None:
        """Save policy weights and trainer counters under directory `path`."""
        directory = Path(path)
        self.policy.save(directory)
        torch.save(
            {
                "optimizer_state_dict": self.policy.optimizer.state_dict(),
                "stats": {
                    "total_steps": self.total_steps,
                    "total_updates": self.total_updates,
                    "total_episodes": self.total_episodes,
                    "match_wins": self.match_wins,
                    "match_losses": self.match_losses,
                    "match_draws": self.match_draws,
                    "last_snapshot_step": self.last_snapshot_step,
                },
                "run_name": self._run_name,
            },
            directory / CHECKPOINT_FILENAME,
        )
        logger.info(f"Saved checkpoint: {directory}")

    def load_checkpoint(self, path: str | Path) -> None:
        """Restore policy weights and counters saved by `save_checkpoint`.

        Raises:
            ConfigurationError: If the stored policy sizes differ.
        """
        directory = Path(path)
        self.policy.load(directory)

        state_path = directory / CHECKPOINT_FILENAME
        if not state_path.exists():
            logger.info(f"Loaded weights from {directory} (no trainer state)")
            return

        checkpoint = torch.load(state_path, map_location=self.policy.device, weights_only=False)
        optimizer_state = checkpoint.get("optimizer_state_dict", {})
        if optimizer_state and "param_groups" in optimizer_state:
            try:
                self.policy.optimizer.load_state_dict(optimizer_state)
            except (ValueError, RuntimeError, KeyError):
                logger.warning("Optimizer state incompatible, using fresh optimizer")

        stats = checkpoint.get("stats", {})
        self.total_steps = stats.get("total_steps", 0)
        self.total_updates = stats.get("total_updates", 0)
        self.total_episodes = stats.get("total_episodes", 0)
        self.match_wins = stats.get("match_wins", 0)
        self.match_losses = stats.get("match_losses", 0)
        self.match_draws = stats.get("match_draws", 0)
        self.last_snapshot_step = stats.get("last_snapshot_step", 0)
        self._last_checkpoint_step = self.total_steps
        self._run_name = checkpoint.get("run_name") or self._run_name

        logger.info(f"Loaded checkpoint: {directory} (steps: {self.total_steps:,})")