"""Elo rating system for ranking policies and snapshots."""

import math
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from combat_bot.config import EloConfig, elo_config
from combat_bot.errors import DuplicateIdError


class MatchResult(float, Enum):
    """Outcome of a match, scored from the winner slot's point of view."""

    WIN = 1.0
    DRAW = 0.5
    LOSS = 0.0


@dataclass
class RatedPlayer:
    """A competitor tracked by the rating ledger."""

    id: str
    rating: float
    games_played: int = 0
    wins: int = 0
    losses: int = 0
    draws: int = 0

    @property
    def win_rate(self) -> float:
        """Calculate overall win rate."""
        if self.games_played == 0:
            return 0.0
        return self.wins / self.games_played

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RatedPlayer":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            rating=data["rating"],
            games_played=data.get("games_played", 0),
            wins=data.get("wins", 0),
            losses=data.get("losses", 0),
            draws=data.get("draws", 0),
        )


@dataclass(frozen=True)
class EloStatistics:
    """Summary of the rating distribution."""

    mean: float = 0.0
    median: float = 0.0
    std_dev: float = 0.0
    min: float = 0.0
    max: float = 0.0
    count: int = 0


class EloRating:
    """Pairwise Elo ratings for any set of named competitors.

    `update_ratings` is the only path that moves a rating; everything else
    here is a read-side derivation over the registered players.
    """

    def __init__(self, config: EloConfig | None = None):
        self.config = config or elo_config
        self._players: dict[str, RatedPlayer] = {}

    def register_player(self, player_id: str, initial_rating: float | None = None) -> RatedPlayer:
        """Register a new competitor.

        Raises:
            DuplicateIdError: If the id is already registered.
        """
        if player_id in self._players:
            raise DuplicateIdError(f"Player {player_id} already registered")

        player = RatedPlayer(
            id=player_id,
            rating=self.config.initial_rating if initial_rating is None else initial_rating,
        )
        self._players[player_id] = player
        return player

    def has_player(self, player_id: str) -> bool:
        return player_id in self._players

    def get_player(self, player_id: str) -> RatedPlayer | None:
        return self._players.get(player_id)

    def get_all_players(self) -> list[RatedPlayer]:
        return list(self._players.values())

    def get_leaderboard(self) -> list[RatedPlayer]:
        """Players sorted by rating, highest first."""
        return sorted(self._players.values(), key=lambda p: p.rating, reverse=True)

    def get_top_players(self, n: int) -> list[RatedPlayer]:
        return self.get_leaderboard()[:n]

    def get_players_in_range(self, min_rating: float, max_rating: float) -> list[RatedPlayer]:
        return [p for p in self._players.values() if min_rating <= p.rating <= max_rating]

    @staticmethod
    def calculate_expected_score(rating_a: float, rating_b: float) -> float:
        """Expected score of A against B under the logistic Elo curve."""
        return 1.0 / (1.0 + 10 ** ((rating_b - rating_a) / 400.0))

    def get_win_probability(self, player_a: str, player_b: str) -> float:
        return self.calculate_expected_score(self._rating_or_default(player_a), self._rating_or_default(player_b))

    def get_rating_difference(self, player_a: str, player_b: str) -> float:
        return self._rating_or_default(player_a) - self._rating_or_default(player_b)

    def update_ratings(
        self,
        winner_id: str,
        loser_id: str,
        result: MatchResult = MatchResult.WIN,
    ) -> tuple[RatedPlayer, RatedPlayer]:
        """Update both ratings after a match.

        Unknown ids are registered at the initial rating first. `result` is
        scored for the winner slot, so a draw or an upset can be recorded
        through the same call.

        Args:
            winner_id: Competitor in the winner slot
            loser_id: Competitor in the loser slot
            result: Outcome for the winner slot

        Returns:
            Tuple of (winner, loser) records after the update
        """
        return self._apply_update(winner_id, loser_id, MatchResult(result), self.config.k_factor)

    @staticmethod
    def calculate_adaptive_k(games_played: int) -> float:
        """K-factor that shrinks as a competitor accumulates games."""
        if games_played < 20:
            return 64.0
        elif games_played < 100:
            return 32.0
        return 16.0

    def update_ratings_adaptive(
        self,
        winner_id: str,
        loser_id: str,
        result: MatchResult = MatchResult.WIN,
    ) -> tuple[RatedPlayer, RatedPlayer]:
        """Update ratings using the average of both players' adaptive K."""
        winner = self._players.get(winner_id)
        loser = self._players.get(loser_id)
        if winner is None or loser is None:
            return self.update_ratings(winner_id, loser_id, result)

        k_factor = (
            self.calculate_adaptive_k(winner.games_played)
            + self.calculate_adaptive_k(loser.games_played)
        ) / 2
        return self._apply_update(winner_id, loser_id, MatchResult(result), k_factor)

    def _apply_update(
        self,
        winner_id: str,
        loser_id: str,
        result: MatchResult,
        k_factor: float,
    ) -> tuple[RatedPlayer, RatedPlayer]:
        winner = self._players.get(winner_id) or self.register_player(winner_id)
        loser = self._players.get(loser_id) or self.register_player(loser_id)

        expected_winner = self.calculate_expected_score(winner.rating, loser.rating)
        expected_loser = self.calculate_expected_score(loser.rating, winner.rating)

        actual_winner = result.value
        actual_loser = 1.0 - actual_winner

        winner.rating = self._clamp(winner.rating + k_factor * (actual_winner - expected_winner))
        loser.rating = self._clamp(loser.rating + k_factor * (actual_loser - expected_loser))

        winner.games_played += 1
        loser.games_played += 1
        if result is MatchResult.WIN:
            winner.wins += 1
            loser.losses += 1
        elif result is MatchResult.LOSS:
            winner.losses += 1
            loser.wins += 1
        else:
            winner.draws += 1
            loser.draws += 1

        return winner, loser

    def _clamp(self, rating: float) -> float:
        return max(self.config.min_rating, min(self.config.max_rating, rating))

    def _rating_or_default(self, player_id: str) -> float:
        player = self._players.get(player_id)
        return player.rating if player is not None else self.config.initial_rating

    def get_statistics(self) -> EloStatistics:
        """Mean, median, population std dev and range of all ratings."""
        if not self._players:
            return EloStatistics()

        ratings = sorted(p.rating for p in self._players.values())
        mean = sum(ratings) / len(ratings)
        variance = sum((r - mean) ** 2 for r in ratings) / len(ratings)
        return EloStatistics(
            mean=mean,
            median=ratings[len(ratings) // 2],
            std_dev=math.sqrt(variance),
            min=ratings[0],
            max=ratings[-1],
            count=len(ratings),
        )

    def reset(self) -> None:
        """Remove every registered player."""
        self._players.clear()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "config": self.config.model_dump(),
            "players": [p.to_dict() for p in self._players.values()],
        }

    def load_dict(self, data: dict[str, Any]) -> None:
        """Replace config and players with previously exported data."""
        if "config" in data:
            self.config = EloConfig(**data["config"])
        self._players = {}
        for entry in data.get("players", []):
            player = RatedPlayer.from_dict(entry)
            self._players[player.id] = player

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EloRating":
        """Create from dictionary."""
        rating = cls()
        rating.load_dict(data)
        return rating

    def __len__(self) -> int:
        return len(self._players)
