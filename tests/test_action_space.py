"""Tests for the discrete action space and the scripted opponent cache."""

import pytest

from combat_bot.environment.action_space import DEFAULT_ACTIONS, ActionBundle, DiscreteActionSpace
from combat_bot.environment.interfaces import PLAYER1, PLAYER2, other_role
from combat_bot.training.scripted import ScriptedOpponentCache


class TestDiscreteActionSpace:
    """Test index and bundle conversion."""

    @pytest.fixture
    def space(self):
        return DiscreteActionSpace()

    def test_default_table(self, space):
        """Test the ten default actions."""
        assert space.size == 10
        assert space.to_bundle(0) == ActionBundle()
        assert space.to_bundle(1) == ActionBundle("right")
        assert space.to_bundle(9) == ActionBundle(button="block")

    def test_to_bundle_wraps(self, space):
        """Test out-of-range indices wrap around."""
        assert space.to_bundle(12) == space.to_bundle(2)

    def test_every_default_action_round_trips(self, space):
        """Test index -> bundle -> index is the identity on the table."""
        for i, bundle in enumerate(DEFAULT_ACTIONS):
            assert space.to_index(bundle) == i

    def test_hold_duration_ignored(self, space):
        """Test hold duration does not affect the lookup."""
        assert space.to_index(ActionBundle("left", "none", 12)) == 2

    def test_button_preferred_over_direction(self, space):
        """Test unsupported direction+button combos keep the button."""
        assert space.to_index(ActionBundle("right", "hk")) == 8

    def test_direction_fallback(self, space):
        """Test an unknown button falls back to the direction."""
        assert space.to_index(ActionBundle("down", "taunt")) == 4

    def test_unknown_falls_back_to_neutral(self, space):
        """Test nothing recognizable maps to action 0."""
        assert space.to_index(ActionBundle("diagonal", "taunt")) == 0

    def test_empty_table_rejected(self):
        """Test an action space needs at least one action."""
        with pytest.raises(ValueError):
            DiscreteActionSpace(())

    def test_mirrored(self):
        """Test mirroring swaps left and right only."""
        assert ActionBundle("left", "lp", 3).mirrored() == ActionBundle("right", "lp", 0)
        assert ActionBundle("up").mirrored() == ActionBundle("up")

    def test_other_role(self):
        """Test role flipping."""
        assert other_role(PLAYER1) == PLAYER2
        assert other_role(PLAYER2) == PLAYER1


class TestScriptedOpponentCache:
    """Test the scripted bot cache."""

    class CountingBot:
        def __init__(self, difficulty):
            self.difficulty = difficulty
            self.resets = 0

        def __call__(self, state, actor, target):
            return ActionBundle()

        def reset(self):
            self.resets += 1

    def test_builds_once_per_kind_and_difficulty(self):
        """Test bots are created lazily and reused."""
        built = []

        def factory(difficulty):
            built.append(difficulty)
            return self.CountingBot(difficulty)

        cache = ScriptedOpponentCache({"tight": factory})

        first = cache.get("tight", 5)
        assert cache.get("tight", 5) is first
        assert cache.get("tight", 7) is not first
        assert built == [5, 7]
        assert len(cache) == 2

    def test_unknown_kind(self):
        """Test requesting an unregistered kind raises KeyError."""
        with pytest.raises(KeyError):
            ScriptedOpponentCache().get("tight")

    def test_register_replaces_cached_bots(self):
        """Test re-registering a kind drops its cached instances."""
        cache = ScriptedOpponentCache({"easy": self.CountingBot})
        old = cache.get("easy")
        cache.register("easy", self.CountingBot)

        assert cache.get("easy") is not old
        assert cache.kinds == ["easy"]
        assert cache.has("easy") and not cache.has("tight")

    def test_reset_and_clear(self):
        """Test reset reaches bots that support it and clear empties the cache."""
        cache = ScriptedOpponentCache({"easy": self.CountingBot})
        bot = cache.get("easy")
        cache.reset()
        assert bot.resets == 1

        cache.clear()
        assert len(cache) == 0
