"""Rollout buffer for storing experiences during training."""

from dataclasses import dataclass, field
from typing import Sequence

import numpy as np
import torch

from combat_bot.errors import ConfigurationError


@dataclass
class RolloutBuffer:
    """Buffer for storing one rollout of single-environment transitions.

    Transitions are appended in step order. `dones[t]` marks the last step of
    an episode, and advantage estimation never carries values or advantages
    across such a boundary.
    """

    buffer_size: int
    obs_size: int
    action_size: int
    device: torch.device = field(default_factory=lambda: torch.device("cpu"))

    # Storage - initialized in __post_init__
    observations: np.ndarray = field(init=False)
    actions: np.ndarray = field(init=False)
    log_probs: np.ndarray = field(init=False)
    rewards: np.ndarray = field(init=False)
    dones: np.ndarray = field(init=False)
    values: np.ndarray = field(init=False)
    advantages: np.ndarray = field(init=False)
    returns: np.ndarray = field(init=False)

    ptr: int = field(init=False, default=0)
    full: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        """Initialize storage arrays."""
        if self.buffer_size <= 0:
            raise ConfigurationError(f"buffer_size must be positive, got {self.buffer_size}")

        self.observations = np.zeros((self.buffer_size, self.obs_size), dtype=np.float32)
        self.actions = np.zeros(self.buffer_size, dtype=np.int64)
        self.log_probs = np.zeros(self.buffer_size, dtype=np.float32)
        self.rewards = np.zeros(self.buffer_size, dtype=np.float32)
        self.dones = np.zeros(self.buffer_size, dtype=np.float32)
        self.values = np.zeros(self.buffer_size, dtype=np.float32)

        # Computed during finalization
        self.advantages = np.zeros(self.buffer_size, dtype=np.float32)
        self.returns = np.zeros(self.buffer_size, dtype=np.float32)

    def add(
        self,
        observation: Sequence[float] | np.ndarray,
        action: int,
        log_prob: float,
        reward: float,
        done: bool,
        value: float,
    ) -> None:
        """Add a transition to the buffer.

        Raises:
            ConfigurationError: If the buffer is full, the observation has the
                wrong length or the action is outside the action space.
        """
        if self.full:
            raise ConfigurationError(f"Rollout buffer is full ({self.buffer_size} transitions)")

        obs = np.asarray(observation, dtype=np.float32).reshape(-1)
        if obs.shape[0] != self.obs_size:
            raise ConfigurationError(
                f"Observation has {obs.shape[0]} features, buffer expects {self.obs_size}"
            )
        if not 0 <= int(action) < self.action_size:
            raise ConfigurationError(f"Action {action} outside action space of size {self.action_size}")

        self.observations[self.ptr] = obs
        self.actions[self.ptr] = action
        self.log_probs[self.ptr] = log_prob
        self.rewards[self.ptr] = reward
        self.dones[self.ptr] = float(done)
        self.values[self.ptr] = value

        self.ptr += 1
        if self.ptr >= self.buffer_size:
            self.full = True

    def compute_advantages(self, gamma: float, gae_lambda: float, last_value: float = 0.0) -> None:
        """Compute GAE advantages and returns by walking the buffer backward.

        delta_t = r_t + gamma * V_{t+1} * (1 - done_t) - V_t
        A_t = delta_t + gamma * lambda * A_{t+1} * (1 - done_t)
        return_t = A_t + V_t

        Args:
            gamma: Discount factor
            gae_lambda: GAE lambda
            last_value: Value used for V_{t+1} after the final stored step
                (0.0 treats the rollout end as a cut with no bootstrap)
        """
        if self.ptr == 0:
            return

        last_gae = 0.0
        next_value = last_value
        for t in reversed(range(self.ptr)):
            next_non_terminal = 1.0 - self.dones[t]
            delta = self.rewards[t] + gamma * next_value * next_non_terminal - self.values[t]
            last_gae = delta + gamma * gae_lambda * last_gae * next_non_terminal
            self.advantages[t] = last_gae
            next_value = self.values[t]

        self.returns[:self.ptr] = self.advantages[:self.ptr] + self.values[:self.ptr]

    def normalized_advantages(self) -> np.ndarray:
        """Advantages rescaled to zero mean and unit std over the whole buffer."""
        adv = self.advantages[:self.ptr]
        return (adv - adv.mean()) / (adv.std() + 1e-8)

    def get_batches(
        self, batch_size: int, shuffle: bool = True
    ) -> list[dict[str, torch.Tensor]]:
        """Get minibatches for training.

        Advantages are normalized across the full buffer before slicing.

        Args:
            batch_size: Size of each minibatch
            shuffle: Whether to shuffle the data

        Returns:
            List of dictionaries containing batched tensors
        """
        total_size = self.ptr

        # Handle empty buffer or zero batch size
        if total_size == 0 or batch_size <= 0:
            return []

        indices = np.arange(total_size)
        if shuffle:
            np.random.shuffle(indices)

        flat_advantages = self.normalized_advantages()

        batches = []
        for start in range(0, total_size, batch_size):
            batch_indices = indices[start:start + batch_size]
            batches.append({
                "observations": torch.tensor(self.observations[batch_indices], device=self.device),
                "actions": torch.tensor(self.actions[batch_indices], device=self.device),
                "old_log_probs": torch.tensor(self.log_probs[batch_indices], device=self.device),
                "advantages": torch.tensor(flat_advantages[batch_indices], device=self.device),
                "returns": torch.tensor(self.returns[batch_indices], device=self.device),
                "old_values": torch.tensor(self.values[batch_indices], device=self.device),
            })

        return batches

    def reset(self) -> None:
        """Reset the buffer for a new rollout."""
        self.ptr = 0
        self.full = False

    @property
    def size(self) -> int:
        """Current number of transitions stored."""
        return self.ptr

    @property
    def episode_count(self) -> int:
        """Number of completed episodes in the stored transitions."""
        return int(self.dones[:self.ptr].sum())
