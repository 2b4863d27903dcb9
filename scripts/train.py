#!/usr/bin/env python3
"""Main self-play training script for the combat bot.

The game simulation lives outside this package, so the environment is
supplied through `--env-factory module:callable`. The callable takes no
arguments and returns a dict with:

    env        Environment
    encoder    FeatureEncoder
    reward_fn  RewardFunction
    state_probe  (optional) StateProbe
    scripted     (optional) {kind: factory(difficulty) -> scripted bot}
"""

import argparse
import importlib
import logging
import sys
from pathlib import Path
from typing import Any, Callable

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import torch

from combat_bot.config import PoolConfig, pool_config, ppo_config, trainer_config
from combat_bot.environment.action_space import DiscreteActionSpace
from combat_bot.models.policy import ActorCriticPolicy
from combat_bot.training.opponent_pool import OpponentMetadata, OpponentPool
from combat_bot.training.scripted import ScriptedOpponentCache
from combat_bot.training.trainer import PPOTrainer

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def get_device() -> torch.device:
    """Get the best available device."""
    if torch.cuda.is_available():
        device = torch.device("cuda")
        logger.info(f"Using GPU: {torch.cuda.get_device_name()}")
    else:
        device = torch.device("cpu")
        logger.info("Using CPU")
    return device


def load_factory(target: str) -> Callable[[], dict[str, Any]]:
    """Resolve a `module:callable` string."""
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise SystemExit(f"--env-factory must look like module:callable, got '{target}'")
    module = importlib.import_module(module_name)
    return getattr(module, attr)


def find_latest_checkpoint(save_dir: str) -> Path | None:
    """Find the checkpoint directory with the highest step in save_dir."""
    save_path = Path(save_dir)
    if not save_path.exists():
        return None

    checkpoints = [p for p in save_path.glob("checkpoint_*") if p.is_dir()]
    if not checkpoints:
        return None

    def get_step(p: Path) -> int:
        try:
            return int(p.name.split("_")[1])
        except (IndexError, ValueError):
            return 0

    return max(checkpoints, key=get_step)


def train(args: argparse.Namespace) -> None:
    """Main training function."""
    device = get_device()
    setup = load_factory(args.env_factory)()

    encoder = setup["encoder"]
    action_space = DiscreteActionSpace()

    policy = ActorCriticPolicy.from_config(
        obs_size=encoder.observation_size,
        action_size=action_space.size,
        config=ppo_config,
        device=device,
    )
    logger.info(f"Model parameters: {policy.num_parameters:,}")

    pool = None
    if not args.no_pool:
        pool = OpponentPool(PoolConfig(**{**pool_config.model_dump(), "save_path": args.pool_dir}))
        loaded = pool.load_all_snapshots(encoder.observation_size, action_space.size)
        logger.info(f"Opponent pool: {loaded} snapshots loaded from {args.pool_dir}")

    config = trainer_config.model_copy(update={
        "opponent_mode": args.opponent_mode,
        "swap_role_prob": args.swap_role_prob,
        "scripted_mix_prob": args.scripted_mix_prob,
        "scripted_min_episodes": args.scripted_min_episodes,
        "p2_scripted_min_episodes": args.p2_scripted_min_episodes,
        "max_episode_frames": args.max_episode_frames,
        "save_dir": args.save_dir,
        "log_dir": args.log_dir,
    })

    trainer = PPOTrainer(
        env=setup["env"],
        policy=policy,
        encoder=encoder,
        reward_fn=setup["reward_fn"],
        config=config,
        ppo_config=ppo_config,
        opponent_pool=pool,
        scripted_opponents=ScriptedOpponentCache(setup.get("scripted")),
        action_space=action_space,
        state_probe=setup.get("state_probe"),
    )

    # Load checkpoint if provided
    if args.resume:
        checkpoint_path = find_latest_checkpoint(args.save_dir) if args.resume == "auto" else Path(args.resume)
        if checkpoint_path:
            logger.info(f"Resuming from: {checkpoint_path}")
            trainer.load_checkpoint(checkpoint_path)
        else:
            logger.info("No checkpoint found, starting fresh training")

    # Seed an empty pool so snapshot episodes are available from the start
    if pool is not None and pool.size == 0 and args.seed_baseline:
        pool.add_snapshot(policy, OpponentMetadata(checkpoint_step=trainer.total_steps, notes="baseline"))

    trainer.setup_logging(args.log_dir)
    try:
        trainer.train(total_steps=args.steps, style=args.style)
    except KeyboardInterrupt:
        logger.info("Interrupted, saving checkpoint")
    finally:
        trainer.save_checkpoint(Path(args.save_dir) / f"checkpoint_{trainer.total_steps}")
        trainer.close()
        if pool is not None:
            pool.close()

    stats = trainer.get_statistics()
    logger.info(
        f"Finished at step {stats.total_steps:,}: {stats.total_updates} updates, "
        f"{stats.total_episodes} episodes, win rate {stats.win_rate:.1%}"
    )


def main() -> None:
    """Entry point."""
    parser = argparse.ArgumentParser(
        description="Train the combat bot with self-play PPO",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--env-factory",
        type=str,
        required=True,
        help="module:callable returning env, encoder and reward_fn",
    )
    parser.add_argument(
        "--steps",
        "-t",
        type=int,
        default=trainer_config.total_steps,
        help="Total environment steps to train for",
    )
    parser.add_argument("--style", type=str, default=None, help="Fighting style for the encoder")
    parser.add_argument(
        "--opponent-mode",
        choices=["auto", "pool", "scripted-easy", "scripted-tight"],
        default=trainer_config.opponent_mode,
        help="How opponents are chosen",
    )
    parser.add_argument("--swap-role-prob", type=float, default=trainer_config.swap_role_prob)
    parser.add_argument("--scripted-mix-prob", type=float, default=trainer_config.scripted_mix_prob)
    parser.add_argument("--scripted-min-episodes", type=int, default=trainer_config.scripted_min_episodes)
    parser.add_argument("--p2-scripted-min-episodes", type=int, default=trainer_config.p2_scripted_min_episodes)
    parser.add_argument("--max-episode-frames", type=int, default=trainer_config.max_episode_frames)
    parser.add_argument(
        "--save-dir",
        type=str,
        default=trainer_config.save_dir,
        help="Directory for saving checkpoints",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default=trainer_config.log_dir,
        help="Directory for TensorBoard logs",
    )
    parser.add_argument(
        "--pool-dir",
        type=str,
        default=pool_config.save_path,
        help="Directory for the opponent pool",
    )
    parser.add_argument(
        "--no-pool",
        action="store_true",
        help="Train against scripted opponents only",
    )
    parser.add_argument(
        "--seed-baseline",
        action="store_true",
        help="Add the initial policy to an empty pool as a baseline",
    )
    parser.add_argument(
        "--resume",
        "-r",
        type=str,
        nargs="?",
        const="auto",
        default=None,
        help="Resume from checkpoint. Use without argument to auto-find latest, or specify path",
    )

    args = parser.parse_args()
    train(args)


if __name__ == "__main__":
    main()
