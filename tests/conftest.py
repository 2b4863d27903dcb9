"""Shared fixtures: a tiny deterministic duel game for driving the trainer."""

from dataclasses import dataclass, field

import pytest

from combat_bot.config import EloConfig, PoolConfig, PPOConfig, TrainerConfig
from combat_bot.environment.action_space import ActionBundle, DiscreteActionSpace
from combat_bot.environment.interfaces import PLAYER1, PLAYER2, StepInfo, StepResult, other_role
from combat_bot.models.policy import ActorCriticPolicy
from combat_bot.training.opponent_pool import OpponentPool
from combat_bot.training.scripted import ScriptedOpponentCache

OBS_SIZE = 6
ARENA_WIDTH = 10
MAX_HEALTH = 100.0
HIT_DAMAGE = 10.0
ATTACK_BUTTONS = {"lp", "hp", "lk", "hk"}


@dataclass
class DuelState:
    position: dict[str, int] = field(default_factory=lambda: {PLAYER1: 0, PLAYER2: ARENA_WIDTH})
    health: dict[str, float] = field(default_factory=lambda: {PLAYER1: MAX_HEALTH, PLAYER2: MAX_HEALTH})
    frame: int = 0

    def copy(self) -> "DuelState":
        return DuelState(dict(self.position), dict(self.health), self.frame)


class DuelEnv:
    """One-dimensional duel: walk, punch when adjacent, first to zero health loses."""

    def __init__(self, max_frames: int = 200):
        self.max_frames = max_frames
        self.state = DuelState()
        self.reset_count = 0

    def reset(self) -> DuelState:
        self.state = DuelState()
        self.reset_count += 1
        return self.state.copy()

    def get_state(self) -> DuelState:
        return self.state.copy()

    def step(self, actions: dict[str, ActionBundle]) -> StepResult:
        s = self.state
        for role, bundle in actions.items():
            if bundle.direction == "right":
                s.position[role] = min(ARENA_WIDTH, s.position[role] + 1)
            elif bundle.direction == "left":
                s.position[role] = max(0, s.position[role] - 1)

        info = StepInfo(
            damage_dealt={PLAYER1: 0.0, PLAYER2: 0.0},
            damage_taken={PLAYER1: 0.0, PLAYER2: 0.0},
        )
        in_range = abs(s.position[PLAYER1] - s.position[PLAYER2]) <= 1
        for role, bundle in actions.items():
            target = other_role(role)
            blocked = actions.get(target, ActionBundle()).button == "block"
            if in_range and bundle.button in ATTACK_BUTTONS and not blocked:
                s.health[target] = max(0.0, s.health[target] - HIT_DAMAGE)
                info.damage_dealt[role] += HIT_DAMAGE
                info.damage_taken[target] += HIT_DAMAGE
                info.events.append(("hit", role))

        s.frame += 1
        ko = [r for r in (PLAYER1, PLAYER2) if s.health[r] <= 0]
        done = bool(ko) or s.frame >= self.max_frames
        if done:
            if len(ko) == 1:
                info.winner = other_role(ko[0])
            elif not ko and s.health[PLAYER1] != s.health[PLAYER2]:
                info.winner = max((PLAYER1, PLAYER2), key=lambda r: s.health[r])
        return StepResult(done=done, info=info)


class DuelEncoder:
    observation_size = OBS_SIZE

    def encode(self, state: DuelState, role: str, style: str | None = None) -> list[float]:
        opp = other_role(role)
        return [
            state.position[role] / ARENA_WIDTH,
            state.position[opp] / ARENA_WIDTH,
            state.health[role] / MAX_HEALTH,
            state.health[opp] / MAX_HEALTH,
            abs(state.position[role] - state.position[opp]) / ARENA_WIDTH,
            1.0 if style == "rushdown" else 0.0,
        ]


class DamageReward:
    """Health swing from the role's point of view."""

    def __init__(self):
        self.reset_calls = 0

    def reset(self, state: DuelState) -> None:
        self.reset_calls += 1

    def calculate_reward(self, prev_state, curr_state, role, events) -> float:
        opp = other_role(role)
        dealt = prev_state.health[opp] - curr_state.health[opp]
        taken = prev_state.health[role] - curr_state.health[role]
        return (dealt - taken) / MAX_HEALTH


class DuelProbe:
    def distance(self, state: DuelState) -> float:
        return float(abs(state.position[PLAYER1] - state.position[PLAYER2]))

    def health(self, state: DuelState, role: str) -> float:
        return state.health[role]


def tight_bot(difficulty: int):
    """Walks toward the target and punches when adjacent."""

    def act(state: DuelState, actor: str, target: str) -> ActionBundle:
        gap = state.position[target] - state.position[actor]
        if abs(gap) <= 1:
            return ActionBundle(button="hp")
        return ActionBundle(direction="right" if gap > 0 else "left")

    return act


def easy_bot(difficulty: int):
    """Stands still."""

    def act(state: DuelState, actor: str, target: str) -> ActionBundle:
        return ActionBundle()

    return act


@pytest.fixture
def duel_env():
    return DuelEnv()


@pytest.fixture
def encoder():
    return DuelEncoder()


@pytest.fixture
def reward_fn():
    return DamageReward()


@pytest.fixture
def probe():
    return DuelProbe()


@pytest.fixture
def action_space():
    return DiscreteActionSpace()


@pytest.fixture
def scripted():
    return ScriptedOpponentCache({"tight": tight_bot, "easy": easy_bot})


@pytest.fixture
def policy():
    return ActorCriticPolicy(obs_size=OBS_SIZE, action_size=10, hidden_dim=16)


@pytest.fixture
def small_ppo_config():
    return PPOConfig(steps_per_rollout=20, minibatch_size=10, epochs_per_batch=1, hidden_dim=16)


@pytest.fixture
def trainer_cfg(tmp_path):
    return TrainerConfig(
        progress_path=str(tmp_path / "progress.jsonl"),
        save_dir=str(tmp_path / "checkpoints"),
        log_dir=str(tmp_path / "runs"),
    )


@pytest.fixture
def memory_pool():
    """Pool that never touches disk."""
    pool = OpponentPool(PoolConfig(persist=False), EloConfig())
    yield pool
    pool.close()
