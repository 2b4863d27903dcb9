"""Actor-critic policy: action sampling, greedy play, PPO updates and persistence."""

import copy
import math
import random
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Sequence

import numpy as np
import torch

from combat_bot.config import PPOConfig, ppo_config
from combat_bot.errors import ConfigurationError
from combat_bot.models.network import ActorCriticNetwork

if TYPE_CHECKING:
    from combat_bot.training.buffer import RolloutBuffer
    from combat_bot.training.ppo import PPOStats

MODEL_FILENAME = "model.pt"


@dataclass(frozen=True)
class PolicyOutput:
    """Joint policy and value estimate for one observation."""

    policy: list[float]
    value: float


@dataclass(frozen=True)
class ActionSample:
    """A sampled (or forced) action with its log-probability and value."""

    action: int
    log_prob: float
    value: float


class ActorCriticPolicy:
    """Discrete-action policy backed by an ActorCriticNetwork.

    The live training policy is mutated only by `update`. Anything that must
    stay fixed afterwards (an opponent snapshot) takes a `clone()`.
    """

    def __init__(
        self,
        obs_size: int,
        action_size: int,
        learning_rate: float = 3e-4,
        hidden_dim: int = 128,
        max_grad_norm: float = 0.5,
        final_learning_rate: float | None = None,
        device: torch.device | None = None,
    ):
        # Import here to avoid circular imports
        from combat_bot.training.ppo import PPO

        if obs_size <= 0 or action_size <= 0:
            raise ConfigurationError(
                f"obs_size and action_size must be positive, got {obs_size} and {action_size}"
            )

        self.obs_size = obs_size
        self.action_size = action_size
        self.hidden_dim = hidden_dim
        self.learning_rate = learning_rate
        self.max_grad_norm = max_grad_norm
        self.device = device or torch.device("cpu")

        self.network = ActorCriticNetwork(obs_size, action_size, hidden_dim).to(self.device)
        self.network.eval()
        self.ppo = PPO(
            self.network,
            learning_rate=learning_rate,
            final_learning_rate=learning_rate if final_learning_rate is None else final_learning_rate,
            max_grad_norm=max_grad_norm,
            device=self.device,
        )

    @classmethod
    def from_config(
        cls,
        obs_size: int,
        action_size: int,
        config: PPOConfig | None = None,
        device: torch.device | None = None,
    ) -> "ActorCriticPolicy":
        """Create a policy from PPO config (uses global config if not provided)."""
        cfg = config or ppo_config
        return cls(
            obs_size=obs_size,
            action_size=action_size,
            learning_rate=cfg.learning_rate,
            hidden_dim=cfg.hidden_dim,
            max_grad_norm=cfg.max_grad_norm,
            final_learning_rate=cfg.final_learning_rate,
            device=device,
        )

    @property
    def optimizer(self) -> torch.optim.Optimizer:
        return self.ppo.optimizer

    @property
    def num_parameters(self) -> int:
        return sum(p.numel() for p in self.network.parameters())

    def _to_tensor(self, observation: Sequence[float] | np.ndarray) -> torch.Tensor:
        obs = torch.as_tensor(np.asarray(observation, dtype=np.float32), device=self.device).reshape(1, -1)
        if obs.shape[1] != self.obs_size:
            raise ConfigurationError(
                f"Observation has {obs.shape[1]} features, policy expects {self.obs_size}"
            )
        return obs

    def predict(self, observation: Sequence[float] | np.ndarray) -> PolicyOutput:
        """Forward pass for a single observation."""
        with torch.no_grad():
            probs, value = self.network(self._to_tensor(observation))
        return PolicyOutput(policy=probs[0].cpu().tolist(), value=float(value[0].item()))

    def sample_action(
        self,
        observation: Sequence[float] | np.ndarray,
        temperature: float = 1.0,
        forced_action: int | None = None,
    ) -> ActionSample:
        """Sample an action from the temperature-scaled policy.

        Args:
            observation: Encoded observation
            temperature: Values above 1 flatten the distribution, below 1 sharpen it
            forced_action: Use this action instead of sampling (clamped to the
                valid range); its log-probability is still reported

        Returns:
            The action, its log-probability and the value estimate
        """
        if temperature <= 0:
            raise ValueError(f"temperature must be positive, got {temperature}")

        output = self.predict(observation)
        probs = [p ** (1.0 / temperature) for p in output.policy]
        total = sum(probs)
        probs = [p / total for p in probs]

        if forced_action is not None:
            action = max(0, min(len(probs) - 1, int(forced_action)))
        else:
            action = self._categorical_sample(probs)

        return ActionSample(action=action, log_prob=math.log(probs[action] + 1e-8), value=output.value)

    @staticmethod
    def _categorical_sample(probs: list[float]) -> int:
        """Inverse-CDF draw from a categorical distribution."""
        r = random.random()
        cumulative = 0.0
        for i, p in enumerate(probs):
            cumulative += p
            if r < cumulative:
                return i
        return len(probs) - 1

    def select_best_action(self, observation: Sequence[float] | np.ndarray) -> int:
        """Greedy action (argmax of the policy)."""
        policy = self.predict(observation).policy
        return max(range(len(policy)), key=policy.__getitem__)

    def update(self, buffer: "RolloutBuffer", config: PPOConfig | None = None) -> "PPOStats":
        """Run GAE over the buffer, then several epochs of PPO minibatch steps.

        Raises:
            ConfigurationError: If the buffer was built for different sizes.
        """
        cfg = config or ppo_config
        if buffer.obs_size != self.obs_size or buffer.action_size != self.action_size:
            raise ConfigurationError(
                f"Buffer sizes ({buffer.obs_size}, {buffer.action_size}) do not match "
                f"policy sizes ({self.obs_size}, {self.action_size})"
            )

        buffer.compute_advantages(cfg.gamma, cfg.gae_lambda)
        return self.ppo.update(buffer, cfg)

    def update_learning_rate(self, progress: float) -> float:
        return self.ppo.update_learning_rate(progress)

    def clone(self) -> "ActorCriticPolicy":
        """Independent copy with identical architecture and copied weights."""
        cloned = ActorCriticPolicy(
            obs_size=self.obs_size,
            action_size=self.action_size,
            learning_rate=self.learning_rate,
            hidden_dim=self.hidden_dim,
            max_grad_norm=self.max_grad_norm,
            device=self.device,
        )
        cloned.network.load_state_dict(copy.deepcopy(self.network.state_dict()))
        return cloned

    def save(self, path: str | Path) -> None:
        """Save weights and architecture dims to `<path>/model.pt`."""
        directory = Path(path)
        directory.mkdir(parents=True, exist_ok=True)
        torch.save(
            {
                "obs_size": self.obs_size,
                "action_size": self.action_size,
                "hidden_dim": self.hidden_dim,
                "model_state_dict": self.network.state_dict(),
            },
            directory / MODEL_FILENAME,
        )

    def load(self, path: str | Path) -> None:
        """Load weights saved by `save`.

        Raises:
            ConfigurationError: If the stored sizes differ from this policy's.
        """
        checkpoint = self._read_checkpoint(path, self.device)
        stored = (checkpoint["obs_size"], checkpoint["action_size"], checkpoint["hidden_dim"])
        expected = (self.obs_size, self.action_size, self.hidden_dim)
        if stored != expected:
            raise ConfigurationError(
                f"Checkpoint at {path} has (obs, actions, hidden) = {stored}, expected {expected}"
            )
        self.network.load_state_dict(checkpoint["model_state_dict"])

    @classmethod
    def from_checkpoint(cls, path: str | Path, device: torch.device | None = None) -> "ActorCriticPolicy":
        """Build a policy whose sizes come from the checkpoint itself."""
        checkpoint = cls._read_checkpoint(path, device or torch.device("cpu"))
        policy = cls(
            obs_size=checkpoint["obs_size"],
            action_size=checkpoint["action_size"],
            hidden_dim=checkpoint["hidden_dim"],
            device=device,
        )
        policy.network.load_state_dict(checkpoint["model_state_dict"])
        return policy

    @staticmethod
    def _read_checkpoint(path: str | Path, device: torch.device) -> dict:
        return torch.load(Path(path) / MODEL_FILENAME, map_location=device, weights_only=True)
