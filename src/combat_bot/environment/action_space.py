"""Discrete action space and conversion to environment action bundles."""

from dataclasses import dataclass

NEUTRAL = "neutral"
NO_BUTTON = "none"


@dataclass(frozen=True)
class ActionBundle:
    """A directional input plus a button, as consumed by the environment."""

    direction: str = NEUTRAL
    button: str = NO_BUTTON
    hold_duration: int = 0

    def mirrored(self) -> "ActionBundle":
        """Same intent seen from the other side of the screen (left/right swapped)."""
        direction = _MIRRORED_DIRECTIONS.get(self.direction, self.direction)
        return ActionBundle(direction, self.button, 0)


_MIRRORED_DIRECTIONS = {"left": "right", "right": "left"}

DEFAULT_ACTIONS: tuple[ActionBundle, ...] = (
    ActionBundle(NEUTRAL, NO_BUTTON),
    ActionBundle("right", NO_BUTTON),
    ActionBundle("left", NO_BUTTON),
    ActionBundle("up", NO_BUTTON),
    ActionBundle("down", NO_BUTTON),
    ActionBundle(NEUTRAL, "lp"),
    ActionBundle(NEUTRAL, "hp"),
    ActionBundle(NEUTRAL, "lk"),
    ActionBundle(NEUTRAL, "hk"),
    ActionBundle(NEUTRAL, "block"),
)


class DiscreteActionSpace:
    """Maps policy action indices to bundles and back."""

    def __init__(self, actions: tuple[ActionBundle, ...] = DEFAULT_ACTIONS):
        if not actions:
            raise ValueError("Action space needs at least one action")
        self.actions = actions

    @property
    def size(self) -> int:
        return len(self.actions)

    def to_bundle(self, index: int) -> ActionBundle:
        return self.actions[index % len(self.actions)]

    def to_index(self, bundle: ActionBundle) -> int:
        """Nearest supported action for an arbitrary bundle.

        Exact (direction, button) match first, then the button alone, then the
        direction alone, else the neutral action. Hold duration is ignored.
        """
        for i, action in enumerate(self.actions):
            if action.direction == bundle.direction and action.button == bundle.button:
                return i

        if bundle.button != NO_BUTTON:
            for i, action in enumerate(self.actions):
                if action.direction == NEUTRAL and action.button == bundle.button:
                    return i

        if bundle.direction != NEUTRAL:
            for i, action in enumerate(self.actions):
                if action.direction == bundle.direction and action.button == NO_BUTTON:
                    return i

        return 0
