"""Evaluation module for Elo ratings."""

from combat_bot.evaluation.elo import EloRating, EloStatistics, MatchResult, RatedPlayer

__all__ = ["EloRating", "EloStatistics", "MatchResult", "RatedPlayer"]
