"""Tests for the self-play PPO trainer."""

import json

import pytest
import torch

from combat_bot.config import EloConfig, PoolConfig
from combat_bot.environment.action_space import DEFAULT_ACTIONS, ActionBundle, DiscreteActionSpace
from combat_bot.errors import ConfigurationError
from combat_bot.models.policy import ActionSample, ActorCriticPolicy
from combat_bot.training.opponent_pool import OpponentMetadata, OpponentPool
from combat_bot.training.ppo import log_prob_of
from combat_bot.training.trainer import LIVE_POLICY_ID, PPOTrainer

from conftest import DuelEncoder


@pytest.fixture
def make_trainer(duel_env, policy, encoder, reward_fn, small_ppo_config, trainer_cfg, scripted, probe, action_space):
    """Build a trainer around the duel game with config overrides."""

    def build(pool=None, **overrides):
        return PPOTrainer(
            env=duel_env,
            policy=policy,
            encoder=encoder,
            reward_fn=reward_fn,
            config=trainer_cfg.model_copy(update=overrides),
            ppo_config=small_ppo_config,
            opponent_pool=pool,
            scripted_opponents=scripted,
            action_space=action_space,
            state_probe=probe,
        )

    return build


@pytest.fixture
def pool_with_snapshot(memory_pool, policy):
    memory_pool.add_snapshot(policy, OpponentMetadata(checkpoint_step=0, notes="baseline"))
    return memory_pool


def walk_and_punch(obs, temperature=1.0, forced_action=None):
    """Policy stub: walk right until adjacent, then heavy punch."""
    action = 6 if obs[4] <= 0.1 else 1
    return ActionSample(action=action, log_prob=-1.0, value=0.0)


class TestConstruction:
    """Test size validation at construction."""

    def test_encoder_size_mismatch(self, duel_env, policy, reward_fn):
        """Test an encoder of the wrong width is rejected."""

        class WideEncoder(DuelEncoder):
            observation_size = 7

        with pytest.raises(ConfigurationError):
            PPOTrainer(duel_env, policy, WideEncoder(), reward_fn)

    def test_action_space_mismatch(self, duel_env, policy, encoder, reward_fn):
        """Test an action space smaller than the policy head is rejected."""
        with pytest.raises(ConfigurationError):
            PPOTrainer(duel_env, policy, encoder, reward_fn, action_space=DiscreteActionSpace(DEFAULT_ACTIONS[:5]))


class TestCollectRollout:
    """Test rollout collection and episode scheduling."""

    def test_fills_buffer_without_committing(self, make_trainer, reward_fn):
        """Test a rollout fills the buffer but leaves run counters alone."""
        trainer = make_trainer()
        buffer, stats = trainer.collect_rollout()

        assert buffer.size == 20
        assert stats.steps == 20
        assert trainer.total_steps == 0
        assert trainer.total_updates == 0
        assert trainer.last_rollout_stats is None
        assert reward_fn.reset_calls >= 1

    def test_empty_pool_falls_back_to_scripted(self, make_trainer, memory_pool):
        """Test an empty pool never crashes the rollout."""
        trainer = make_trainer(pool=memory_pool, opponent_mode="auto")
        _, stats = trainer.collect_rollout()

        assert stats.scripted_episodes >= 1
        assert stats.snapshot_episodes == 0

    def test_no_pool_falls_back_to_scripted(self, make_trainer):
        """Test pool mode without a pool uses scripted opponents."""
        _, stats = make_trainer(opponent_mode="pool").collect_rollout()
        assert stats.snapshot_episodes == 0

    def test_frame_cap_is_terminal_with_penalty(self, make_trainer, duel_env):
        """Test the frame cap ends episodes and adds the timeout penalty."""
        trainer = make_trainer(max_episode_frames=5, timeout_penalty=-100.0, opponent_mode="scripted-easy")
        buffer, stats = trainer.collect_rollout()

        assert stats.episodes == 4
        assert [i for i in range(20) if buffer.dones[i]] == [4, 9, 14, 19]
        for i in (4, 9, 14, 19):
            assert buffer.rewards[i] <= -99.0
        assert duel_env.reset_count == 4

    def test_forced_player2_episodes(self, make_trainer):
        """Test the per-rollout minimum of policy-as-player2 episodes."""
        trainer = make_trainer(max_episode_frames=5, p2_scripted_min_episodes=2, swap_role_prob=0.0)
        _, stats = trainer.collect_rollout()

        assert stats.player2_episodes == 2

    def test_scripted_minimum_then_snapshots(self, make_trainer, pool_with_snapshot):
        """Test scripted_min_episodes comes first, then pool snapshots."""
        trainer = make_trainer(
            pool=pool_with_snapshot,
            opponent_mode="pool",
            max_episode_frames=5,
            scripted_min_episodes=2,
            scripted_mix_prob=0.0,
        )
        _, stats = trainer.collect_rollout()

        assert stats.scripted_episodes == 2
        assert stats.snapshot_episodes == 2

    def test_forced_scripted_mode_ignores_pool(self, make_trainer, pool_with_snapshot):
        """Test scripted-* modes never sample snapshots."""
        trainer = make_trainer(pool=pool_with_snapshot, opponent_mode="scripted-easy", max_episode_frames=5)
        _, stats = trainer.collect_rollout()
        assert stats.snapshot_episodes == 0

    def test_scripted_mix_replaces_snapshots(self, make_trainer, pool_with_snapshot):
        """Test scripted_mix_prob=1 swaps every sampled snapshot for a bot."""
        trainer = make_trainer(pool=pool_with_snapshot, max_episode_frames=5, scripted_mix_prob=1.0)
        _, stats = trainer.collect_rollout()
        assert stats.snapshot_episodes == 0
        assert stats.scripted_episodes == 4

    def test_bootstrap_mirrors_opening(self, make_trainer, action_space):
        """Test opening frames copy the mirrored scripted action."""
        trainer = make_trainer(opponent_mode="scripted-tight", bootstrap_mirror_frames=3, bootstrap_prob=1.0)
        buffer, _ = trainer.collect_rollout()

        # player2 walks left toward player1; mirrored that is walking right
        walk_right = action_space.to_index(ActionBundle("right"))
        assert list(buffer.actions[:3]) == [walk_right] * 3

    def test_mirrored_brawl_engagement(self, make_trainer):
        """Test engagement stats on a fully mirrored double knockout."""
        trainer = make_trainer(opponent_mode="scripted-tight", bootstrap_mirror_frames=1000, bootstrap_prob=1.0)
        _, stats = trainer.collect_rollout()

        assert stats.episodes == 1
        assert stats.draws == 1
        assert stats.avg_damage_dealt == pytest.approx(100.0)
        assert stats.avg_damage_taken == pytest.approx(100.0)
        assert stats.any_damage_rate == 1.0
        # Simultaneous hits never resolve a first hit
        assert stats.first_hit_rate == 0.0
        assert stats.avg_distance_closed == pytest.approx(10.0)
        assert stats.engagement.distance_closed == pytest.approx(20.0)
        assert not stats.engagement.first_hit_resolved

    def test_win_is_counted(self, make_trainer, policy, monkeypatch):
        """Test an environment-reported win counts for the policy."""
        monkeypatch.setattr(policy, "sample_action", walk_and_punch)
        trainer = make_trainer(opponent_mode="scripted-easy")
        _, stats = trainer.collect_rollout()

        assert stats.episodes == 1
        assert stats.wins == 1
        assert stats.first_hit_rate == 1.0
        assert stats.avg_damage_dealt == pytest.approx(100.0)
        assert stats.avg_damage_taken == 0.0

    def test_truncated_episode_uses_health_proxy(self, make_trainer, policy, monkeypatch):
        """Test a frame-capped episode is decided by the health difference."""
        monkeypatch.setattr(policy, "sample_action", walk_and_punch)
        trainer = make_trainer(opponent_mode="scripted-easy", max_episode_frames=12)
        _, stats = trainer.collect_rollout()

        # 9 steps to close in, 3 hits landed before the cap
        assert stats.wins == 1
        assert stats.engagement.proxy_outcome == "draw"

    def test_only_played_episodes_are_counted(self, make_trainer, pool_with_snapshot):
        """Test a rollout ending on an episode boundary starts no extra episode."""
        trainer = make_trainer(pool=pool_with_snapshot, opponent_mode="pool", max_episode_frames=5)
        _, stats = trainer.collect_rollout()

        assert stats.episodes == 4
        assert stats.scripted_episodes + stats.snapshot_episodes == 4

    def test_proxy_outcome_reads_last_played_state(self, make_trainer, policy, duel_env, monkeypatch):
        """Test the rollout proxy outcome comes from the final played frame."""
        monkeypatch.setattr(policy, "sample_action", walk_and_punch)
        trainer = make_trainer(opponent_mode="scripted-easy", max_episode_frames=10)
        _, stats = trainer.collect_rollout()

        # Each capped episode lands one punch on its tenth frame
        assert stats.wins == 2
        assert duel_env.reset_count == 2
        assert stats.engagement.final_health_diff == pytest.approx(10.0)
        assert stats.engagement.proxy_outcome == "win"

    def test_stored_log_probs_are_on_policy(self, make_trainer, policy):
        """Test rollout log-probs match what the PPO update recomputes."""
        buffer, _ = make_trainer(max_episode_frames=5).collect_rollout()

        with torch.no_grad():
            probs, _ = policy.network(torch.as_tensor(buffer.observations[:buffer.size]))
        recomputed = log_prob_of(probs, torch.as_tensor(buffer.actions[:buffer.size]))

        assert torch.allclose(recomputed, torch.as_tensor(buffer.log_probs[:buffer.size]), atol=1e-5)

    def test_snapshot_results_recorded(self, make_trainer, policy, pool_with_snapshot, monkeypatch):
        """Test decisive games against snapshots are queued for Elo."""
        monkeypatch.setattr(policy, "sample_action", walk_and_punch)
        trainer = make_trainer(pool=pool_with_snapshot, opponent_mode="pool", max_episode_frames=12)
        _, stats = trainer.collect_rollout()

        decisive = stats.wins + stats.losses
        assert stats.snapshot_episodes >= 1
        assert len(stats.snapshot_results) == decisive
        for winner, loser in stats.snapshot_results:
            assert LIVE_POLICY_ID in (winner, loser)


class TestTrainStep:
    """Test update and counter commit."""

    def test_counters_committed_after_update(self, make_trainer):
        """Test a successful step advances every counter."""
        trainer = make_trainer(max_episode_frames=5)
        metrics = trainer.train_step()

        assert trainer.total_steps == 20
        assert trainer.total_updates == 1
        assert trainer.total_episodes == 4
        assert metrics.step == 20
        assert metrics.episodes == 4
        assert trainer.match_wins + trainer.match_losses + trainer.match_draws == 4
        assert trainer.last_rollout_stats is not None

    def test_failed_update_commits_nothing(self, make_trainer, policy, monkeypatch):
        """Test an exception in update leaves counters untouched."""

        def broken_update(buffer, config=None):
            raise RuntimeError("update failed")

        monkeypatch.setattr(policy, "update", broken_update)
        trainer = make_trainer(max_episode_frames=5)

        with pytest.raises(RuntimeError):
            trainer.train_step()

        assert trainer.total_steps == 0
        assert trainer.total_updates == 0
        assert trainer.total_episodes == 0
        assert trainer.match_wins == trainer.match_losses == trainer.match_draws == 0
        assert trainer.last_rollout_stats is None

    def test_elo_updated_after_commit(self, make_trainer, policy, pool_with_snapshot, monkeypatch):
        """Test snapshot results reach the pool's Elo only after the update."""
        monkeypatch.setattr(policy, "sample_action", walk_and_punch)
        trainer = make_trainer(pool=pool_with_snapshot, opponent_mode="pool", max_episode_frames=12)
        trainer.train_step()

        results = trainer.last_rollout_stats.snapshot_results
        snapshot = pool_with_snapshot.get_all_snapshots()[0]
        assert snapshot.games_played == len(results)


class TestSnapshots:
    """Test snapshot scheduling."""

    def test_snapshot_schedule(self, make_trainer):
        """Test snapshots are due once snapshot_frequency steps have passed."""
        pool = OpponentPool(PoolConfig(persist=False, snapshot_frequency=20), EloConfig())
        trainer = make_trainer(pool=pool, max_episode_frames=5)

        assert not trainer.should_create_snapshot()
        trainer.train_step()
        assert trainer.should_create_snapshot()

        snapshot = trainer.create_snapshot(avg_reward=0.5, style="rushdown", difficulty=3)

        assert pool.size == 1
        assert snapshot.metadata.checkpoint_step == 20
        assert snapshot.metadata.style == "rushdown"
        assert snapshot.metadata.difficulty == 3
        assert trainer.last_snapshot_step == 20
        assert trainer.match_wins == trainer.match_losses == trainer.match_draws == 0
        assert not trainer.should_create_snapshot()
        pool.close()

    def test_create_snapshot_without_pool(self, make_trainer):
        """Test snapshot creation without a pool is a logged no-op."""
        trainer = make_trainer()
        assert trainer.create_snapshot() is None
        assert not trainer.should_create_snapshot()


class TestTrainLoop:
    """Test the full training loop, telemetry and checkpoints."""

    def test_train_runs_to_budget(self, make_trainer, trainer_cfg):
        """Test train() stops at the step budget and writes progress lines."""
        pool = OpponentPool(PoolConfig(persist=False, snapshot_frequency=20), EloConfig())
        trainer = make_trainer(pool=pool, max_episode_frames=5)

        history = trainer.train(total_steps=40)

        assert len(history) == 2
        assert trainer.total_steps == 40
        assert pool.size == 2

        with open(trainer_cfg.progress_path) as f:
            records = [json.loads(line) for line in f]
        assert [r["step"] for r in records] == [20, 40]
        assert {"avg_reward", "policy_loss", "wins", "first_hit_rate"} <= set(records[0])
        pool.close()

    def test_tensorboard_logging(self, make_trainer, tmp_path):
        """Test setup_logging writes event files."""
        trainer = make_trainer()
        trainer.setup_logging(tmp_path / "runs", run_name="unit")
        trainer.train(total_steps=20)
        trainer.close()

        assert any((tmp_path / "runs" / "unit").iterdir())

    def test_statistics(self, make_trainer, memory_pool, policy, monkeypatch):
        """Test run statistics include win rate and pool summary."""
        monkeypatch.setattr(policy, "sample_action", walk_and_punch)
        trainer = make_trainer(pool=memory_pool, opponent_mode="scripted-easy")
        trainer.train_step()

        stats = trainer.get_statistics()
        assert stats.total_steps == 20
        assert stats.match_wins == 1
        assert stats.win_rate == 1.0
        assert stats.pool is not None and stats.pool.count == 0

    def test_checkpoint_round_trip(self, make_trainer, duel_env, encoder, reward_fn, small_ppo_config, tmp_path):
        """Test weights and counters survive save/load."""
        trainer = make_trainer(max_episode_frames=5)
        trainer.train_step()
        trainer.save_checkpoint(tmp_path / "ckpt")

        fresh_policy = ActorCriticPolicy(obs_size=6, action_size=10, hidden_dim=16)
        fresh = PPOTrainer(duel_env, fresh_policy, encoder, reward_fn, ppo_config=small_ppo_config)
        fresh.load_checkpoint(tmp_path / "ckpt")

        obs = [0.0, 1.0, 1.0, 1.0, 1.0, 0.0]
        assert fresh.total_steps == 20
        assert fresh.total_updates == 1
        assert fresh.total_episodes == 4
        assert fresh_policy.predict(obs).policy == pytest.approx(trainer.policy.predict(obs).policy)
