"""Neural network architecture for the actor-critic policy."""

import torch
import torch.nn as nn
import torch.nn.functional as F


class ActorCriticNetwork(nn.Module):
    """Shared-trunk policy and value network.

    Architecture:
    - Two dense ReLU layers shared by both heads
    - Softmax policy head over the discrete action space
    - Linear scalar value head

    A single forward pass yields both the action distribution and the value
    estimate.
    """

    def __init__(
        self,
        obs_size: int,
        action_size: int,
        hidden_dim: int = 128,
    ):
        super().__init__()
        self.obs_size = obs_size
        self.action_size = action_size
        self.hidden_dim = hidden_dim

        self.trunk = nn.Sequential(
            nn.Linear(obs_size, hidden_dim),
            nn.ReLU(),
            nn.Linear(hidden_dim, hidden_dim),
            nn.ReLU(),
        )
        self.policy_head = nn.Linear(hidden_dim, action_size)
        self.value_head = nn.Linear(hidden_dim, 1)

        self._init_weights()

    def _init_weights(self) -> None:
        for module in self.trunk:
            if isinstance(module, nn.Linear):
                nn.init.kaiming_normal_(module.weight, nonlinearity="relu")
                nn.init.zeros_(module.bias)
        # Small policy init keeps the starting distribution close to uniform
        nn.init.orthogonal_(self.policy_head.weight, gain=0.01)
        nn.init.zeros_(self.policy_head.bias)
        nn.init.orthogonal_(self.value_head.weight, gain=1.0)
        nn.init.zeros_(self.value_head.bias)

    def forward(self, obs: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        """Forward pass.

        Args:
            obs: Observations (batch, obs_size)

        Returns:
            probs: Action probabilities (batch, action_size)
            values: Value estimates (batch,)
        """
        hidden = self.trunk(obs)
        probs = F.softmax(self.policy_head(hidden), dim=-1)
        values = self.value_head(hidden).squeeze(-1)
        return probs, values
