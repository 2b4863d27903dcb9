"""Scripted opponent registry used as a fallback and anti-forgetting mix-in."""

import logging
from typing import Callable

from combat_bot.environment.interfaces import ScriptedOpponent

logger = logging.getLogger(__name__)

# difficulty -> scripted opponent
ScriptedFactory = Callable[[int], ScriptedOpponent]


class ScriptedOpponentCache:
    """Builds scripted bots on first use and reuses them afterwards.

    Owned by the trainer (or a test harness) and passed by reference, so bot
    instances are never shared through module state.
    """

    def __init__(self, factories: dict[str, ScriptedFactory] | None = None):
        self._factories: dict[str, ScriptedFactory] = dict(factories or {})
        self._bots: dict[tuple[str, int], ScriptedOpponent] = {}

    def register(self, kind: str, factory: ScriptedFactory) -> None:
        """Register (or replace) the factory for a bot kind."""
        self._factories[kind] = factory
        for key in [k for k in self._bots if k[0] == kind]:
            del self._bots[key]

    @property
    def kinds(self) -> list[str]:
        return list(self._factories)

    def has(self, kind: str) -> bool:
        return kind in self._factories

    def get(self, kind: str, difficulty: int = 5) -> ScriptedOpponent:
        """Return the cached bot for (kind, difficulty), creating it if needed.

        Raises:
            KeyError: If no factory is registered for `kind`.
        """
        key = (kind, difficulty)
        bot = self._bots.get(key)
        if bot is None:
            if kind not in self._factories:
                raise KeyError(f"No scripted opponent registered for '{kind}'")
            bot = self._factories[kind](difficulty)
            self._bots[key] = bot
            logger.debug(f"Created scripted opponent {kind} (difficulty {difficulty})")
        return bot

    def reset(self) -> None:
        """Reset per-episode state on every cached bot that keeps any."""
        for bot in self._bots.values():
            reset = getattr(bot, "reset", None)
            if callable(reset):
                reset()

    def clear(self) -> None:
        self._bots.clear()

    def __len__(self) -> int:
        return len(self._bots)
