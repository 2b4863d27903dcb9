"""Proximal Policy Optimization (PPO) algorithm implementation."""

from dataclasses import dataclass

import torch
import torch.nn as nn
import torch.nn.functional as F

from combat_bot.config import PPOConfig
from combat_bot.models.network import ActorCriticNetwork
from combat_bot.training.buffer import RolloutBuffer

LOG_EPS = 1e-8

# PPOStats fields averaged over minibatch steps
_TRACKED = ("policy_loss", "value_loss", "entropy", "clip_fraction", "total_loss", "approx_kl")


@dataclass
class PPOStats:
    """Statistics from a PPO update."""

    policy_loss: float
    value_loss: float
    entropy: float
    clip_fraction: float
    total_loss: float = 0.0
    approx_kl: float = 0.0
    explained_variance: float = 0.0

    @classmethod
    def empty(cls) -> "PPOStats":
        return cls(policy_loss=0.0, value_loss=0.0, entropy=0.0, clip_fraction=0.0)


def log_prob_of(probs: torch.Tensor, actions: torch.Tensor) -> torch.Tensor:
    """Log-probability of the chosen actions under a batch of distributions."""
    chosen = probs.gather(-1, actions.long().unsqueeze(-1)).squeeze(-1)
    return torch.log(chosen + LOG_EPS)


def entropy_of(probs: torch.Tensor) -> torch.Tensor:
    """Mean entropy of a batch of categorical distributions."""
    return -(probs * torch.log(probs + LOG_EPS)).sum(dim=-1).mean()


class PPO:
    """Proximal Policy Optimization algorithm.

    Implements the clipped surrogate objective with an MSE value loss and an
    entropy bonus for exploration. Owns the optimizer for the network it
    trains.
    """

    def __init__(
        self,
        model: ActorCriticNetwork,
        learning_rate: float = 3e-4,
        final_learning_rate: float = 3e-5,
        max_grad_norm: float = 0.5,
        device: torch.device | None = None,
    ):
        """Initialize PPO.

        Args:
            model: Policy and value network
            learning_rate: Initial learning rate for optimizer
            final_learning_rate: Final learning rate (for linear decay)
            max_grad_norm: Maximum gradient norm for clipping
            device: Device to train on
        """
        self.model = model
        self.initial_lr = learning_rate
        self.final_lr = final_learning_rate
        self.max_grad_norm = max_grad_norm
        self.device = device or torch.device("cpu")

        self.optimizer = torch.optim.Adam(model.parameters(), lr=learning_rate, eps=1e-5)

    def update(self, buffer: RolloutBuffer, config: PPOConfig) -> PPOStats:
        """Run clipped-surrogate minibatch steps over an advantage-ready buffer.

        Args:
            buffer: Rollout buffer with advantages and returns computed
            config: Clip range, coefficients and minibatch schedule

        Returns:
            Statistics averaged over every minibatch step taken
        """
        if buffer.size == 0:
            return PPOStats.empty()

        sums = dict.fromkeys(_TRACKED, 0.0)
        steps = 0
        clip = config.clip_range
        self.model.train()

        for _ in range(config.epochs_per_batch):
            for batch in buffer.get_batches(config.minibatch_size, shuffle=True):
                probs, values = self.model(batch["observations"])
                log_ratio = log_prob_of(probs, batch["actions"]) - batch["old_log_probs"]
                ratio = log_ratio.exp()

                advantages = batch["advantages"]
                clipped_ratio = ratio.clamp(1.0 - clip, 1.0 + clip)
                policy_loss = -torch.minimum(ratio * advantages, clipped_ratio * advantages).mean()
                value_loss = F.mse_loss(values, batch["returns"])
                entropy = entropy_of(probs)
                loss = policy_loss + config.value_coef * value_loss - config.entropy_coef * entropy

                self.optimizer.zero_grad()
                loss.backward()
                nn.utils.clip_grad_norm_(self.model.parameters(), self.max_grad_norm)
                self.optimizer.step()

                with torch.no_grad():
                    sums["approx_kl"] += (ratio - 1.0 - log_ratio).mean().item()
                    sums["clip_fraction"] += (ratio != clipped_ratio).float().mean().item()
                sums["policy_loss"] += policy_loss.item()
                sums["value_loss"] += value_loss.item()
                sums["entropy"] += entropy.item()
                sums["total_loss"] += loss.item()
                steps += 1

            if config.target_kl is not None and sums["approx_kl"] / steps > config.target_kl:
                break

        self.model.eval()

        means = {key: total / steps for key, total in sums.items()}
        return PPOStats(**means, explained_variance=self._explained_variance(buffer))

    @staticmethod
    def _explained_variance(buffer: RolloutBuffer) -> float:
        """1 - Var(returns - values) / Var(returns), or 0 for constant returns."""
        returns = buffer.returns[:buffer.size]
        residual = returns - buffer.values[:buffer.size]
        spread = returns.var()
        if spread <= 0:
            return 0.0
        return float(1.0 - residual.var() / spread)

    def update_learning_rate(self, progress: float) -> float:
        """Linearly interpolate the learning rate for `progress` in [0, 1]."""
        fraction = min(max(progress, 0.0), 1.0)
        lr = (1.0 - fraction) * self.initial_lr + fraction * self.final_lr
        for group in self.optimizer.param_groups:
            group["lr"] = lr
        return lr
