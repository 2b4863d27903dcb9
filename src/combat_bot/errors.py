"""Exception types raised by the training engine."""


class CombatBotError(Exception):
    """Base class for training engine errors."""


class EmptyPoolError(CombatBotError):
    """Raised when sampling from an opponent pool with no snapshots."""


class DuplicateIdError(CombatBotError):
    """Raised when registering a competitor id that already exists."""


class ConfigurationError(CombatBotError, ValueError):
    """Raised for mismatched sizes between policy, encoder, buffer or checkpoint."""


class PersistenceWarning(UserWarning):
    """Category for snapshot save/load/delete failures.

    Never raised into the training loop; failures are logged with this
    category name and training continues.
    """
