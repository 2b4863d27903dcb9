"""Opponent pool of frozen policy snapshots ranked by Elo."""

import json
import logging
import math
import pickle
import random
import re
import shutil
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from combat_bot.config import EloConfig, PoolConfig, SamplingStrategy, pool_config
from combat_bot.errors import EmptyPoolError, PersistenceWarning
from combat_bot.evaluation.elo import EloRating, MatchResult
from combat_bot.models.policy import ActorCriticPolicy

logger = logging.getLogger(__name__)

SNAPSHOT_PREFIX = "snapshot_"
METADATA_FILENAME = "metadata.json"
BASELINE_NOTE = "baseline"
_SNAPSHOT_DIR_RE = re.compile(r"^snapshot_(\d+)$")


class OpponentMetadata(BaseModel):
    """Where and how a snapshot was taken."""

    checkpoint_step: int = Field(ge=0, description="Training step when the snapshot was taken")
    timestamp: float = Field(default_factory=time.time, description="Unix timestamp")
    style: str | None = Field(default=None, description="Fighting style the policy trained with")
    difficulty: int | None = Field(default=None, ge=1, le=10, description="Intended difficulty")
    avg_reward: float | None = Field(default=None, description="Average reward at checkpoint")
    training_time: float | None = Field(default=None, ge=0.0, description="Seconds of training so far")
    notes: str = Field(default="", description="Free-form notes; 'baseline' protects from pruning")

    class Config:
        extra = "forbid"
        frozen = True

    @property
    def is_baseline(self) -> bool:
        return self.notes == BASELINE_NOTE


@dataclass
class OpponentSnapshot:
    """A frozen policy clone kept as a training opponent."""

    id: str
    policy: ActorCriticPolicy
    metadata: OpponentMetadata
    elo: float = 1500.0
    games_played: int = 0
    win_rate: float = 0.5

    def to_dict(self) -> dict[str, Any]:
        """Serializable view without the policy weights."""
        return {
            "id": self.id,
            "elo": self.elo,
            "games_played": self.games_played,
            "win_rate": self.win_rate,
            "metadata": self.metadata.model_dump(),
        }


@dataclass(frozen=True)
class PoolStatistics:
    """Summary of the snapshots currently in the pool."""

    count: int = 0
    avg_elo: float = 0.0
    min_elo: float = 0.0
    max_elo: float = 0.0
    avg_games_played: float = 0.0
    avg_win_rate: float = 0.0
    style_distribution: dict[str, int] = field(default_factory=dict)


class OpponentPool:
    """Bounded pool of historical opponents for self-play training.

    In-memory state is only touched by the training loop. Disk writes go
    through a single-worker FIFO queue so saves never interleave, and a
    pruned snapshot's files are deleted only after its pending save (if any)
    has finished.
    """

    def __init__(
        self,
        config: PoolConfig | None = None,
        elo_config: EloConfig | None = None,
    ):
        """Initialize opponent pool.

        Args:
            config: Pool sizing, sampling and persistence settings
            elo_config: Rating parameters for the embedded Elo ledger
        """
        self.config = config or pool_config
        self.save_path = Path(self.config.save_path)
        self.elo = EloRating(elo_config)

        self._snapshots: list[OpponentSnapshot] = []
        self._next_snapshot_id = 1

        self._save_queue = ThreadPoolExecutor(max_workers=1, thread_name_prefix="opponent-pool-save")
        self._in_flight_saves: dict[str, Future] = {}

        if self.config.persist:
            self._ensure_save_dir()

    # ------------------------------------------------------------------
    # Snapshot lifecycle
    # ------------------------------------------------------------------

    def add_snapshot(self, policy: ActorCriticPolicy, metadata: OpponentMetadata) -> OpponentSnapshot:
        """Freeze a clone of `policy` into the pool.

        Registers the snapshot with the Elo ledger at the initial rating and
        prunes if the pool is over capacity. Persistence is queued and never
        blocks or fails this call.

        Args:
            policy: The live policy to snapshot (cloned, not aliased)
            metadata: Checkpoint step, style and notes for the snapshot

        Returns:
            The created OpponentSnapshot
        """
        snapshot_id = self._allocate_id()
        player = self.elo.register_player(snapshot_id)

        snapshot = OpponentSnapshot(
            id=snapshot_id,
            policy=policy.clone(),
            metadata=metadata,
            elo=player.rating,
        )
        self._snapshots.append(snapshot)
        logger.info(f"Added snapshot {snapshot_id} at step {metadata.checkpoint_step} (elo: {snapshot.elo:.0f})")

        if len(self._snapshots) > self.config.max_snapshots:
            self._prune_snapshots()

        if self.config.persist and snapshot in self._snapshots:
            self._enqueue_save(snapshot)

        return snapshot

    def _allocate_id(self) -> str:
        """Next unused id, skipping anything already in memory, in the ledger or on disk."""
        while True:
            candidate = f"{SNAPSHOT_PREFIX}{self._next_snapshot_id}"
            self._next_snapshot_id += 1
            if self.get_snapshot(candidate) is not None or self.elo.has_player(candidate):
                continue
            if (self.save_path / candidate).exists():
                continue
            return candidate

    def update_elo(self, winner_id: str, loser_id: str) -> None:
        """Record a win and mirror the new ratings onto the matching snapshots."""
        winner, loser = self.elo.update_ratings(winner_id, loser_id, MatchResult.WIN)

        for player in (winner, loser):
            snapshot = self.get_snapshot(player.id)
            if snapshot is None:
                continue
            snapshot.elo = player.rating
            snapshot.games_played = player.games_played
            snapshot.win_rate = player.win_rate

    def _prune_snapshots(self) -> None:
        """Drop the oldest unprotected snapshots until the pool fits.

        Protected: top `keep_best` by Elo, the `keep_recent` most recently
        added and up to `keep_baselines` baselines. If the protected set alone
        exceeds `max_snapshots` the pool stays above the cap.
        """
        if len(self._snapshots) <= self.config.max_snapshots:
            return

        to_keep: set[str] = set()
        to_keep.update(s.id for s in self.get_leaderboard()[:self.config.keep_best])
        if self.config.keep_recent > 0:
            to_keep.update(s.id for s in self._snapshots[-self.config.keep_recent:])
        baselines = [s for s in self._snapshots if s.metadata.is_baseline]
        to_keep.update(s.id for s in baselines[:self.config.keep_baselines])

        candidates = sorted(
            (s for s in self._snapshots if s.id not in to_keep),
            key=lambda s: s.metadata.checkpoint_step,
        )
        num_to_remove = len(self._snapshots) - self.config.max_snapshots
        removed = {s.id for s in candidates[:num_to_remove]}

        if len(removed) < num_to_remove:
            logger.debug(
                f"Pool keeps {len(self._snapshots) - len(removed)} snapshots "
                f"(cap {self.config.max_snapshots}): protected set exceeds the cap"
            )

        self._snapshots = [s for s in self._snapshots if s.id not in removed]
        for snapshot_id in removed:
            logger.debug(f"Pruned snapshot {snapshot_id}")
            if self.config.persist:
                self._delete_snapshot(snapshot_id)

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def sample_opponent(self, strategy: SamplingStrategy | None = None) -> OpponentSnapshot:
        """Sample an opponent from the pool.

        Args:
            strategy: Sampling strategy (defaults to the configured one):
                - "uniform" / "mixed": Random selection over the whole pool
                - "recent": Random selection over the `keep_recent` newest
                - "strong": 80% top half by Elo, 20% bottom half
                - "weak": 80% bottom half by Elo, 20% top half
                - "curriculum": Random selection over the weakest 70%

        Raises:
            EmptyPoolError: If the pool has no snapshots.
        """
        if not self._snapshots:
            raise EmptyPoolError("Opponent pool is empty")

        strategy = strategy or self.config.sampling_strategy

        if strategy in ("uniform", "mixed"):
            return random.choice(self._snapshots)

        elif strategy == "recent":
            count = max(1, min(self.config.keep_recent, len(self._snapshots)))
            return random.choice(self._snapshots[-count:])

        elif strategy in ("strong", "weak"):
            ranked = self.get_leaderboard()
            midpoint = len(ranked) // 2
            top_half = ranked[:midpoint or 1]
            bottom_half = ranked[midpoint:]
            preferred, other = (top_half, bottom_half) if strategy == "strong" else (bottom_half, top_half)
            return random.choice(preferred if random.random() < 0.8 else other)

        elif strategy == "curriculum":
            weakest_first = self.get_leaderboard()[::-1]
            size = math.ceil(len(weakest_first) * 0.7)
            return random.choice(weakest_first[:size])

        raise ValueError(f"Unknown sampling strategy: {strategy}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_snapshot(self, snapshot_id: str) -> OpponentSnapshot | None:
        for snapshot in self._snapshots:
            if snapshot.id == snapshot_id:
                return snapshot
        return None

    def get_all_snapshots(self) -> list[OpponentSnapshot]:
        return list(self._snapshots)

    def get_leaderboard(self) -> list[OpponentSnapshot]:
        """Snapshots sorted by Elo, highest first."""
        return sorted(self._snapshots, key=lambda s: s.elo, reverse=True)

    def get_snapshots_by_style(self, style: str) -> list[OpponentSnapshot]:
        return [s for s in self._snapshots if s.metadata.style == style]

    def get_snapshots_in_elo_range(self, min_elo: float, max_elo: float) -> list[OpponentSnapshot]:
        return [s for s in self._snapshots if min_elo <= s.elo <= max_elo]

    def get_statistics(self) -> PoolStatistics:
        if not self._snapshots:
            return PoolStatistics()

        elos = [s.elo for s in self._snapshots]
        styles: dict[str, int] = {}
        for snapshot in self._snapshots:
            style = snapshot.metadata.style or "unknown"
            styles[style] = styles.get(style, 0) + 1

        count = len(self._snapshots)
        return PoolStatistics(
            count=count,
            avg_elo=sum(elos) / count,
            min_elo=min(elos),
            max_elo=max(elos),
            avg_games_played=sum(s.games_played for s in self._snapshots) / count,
            avg_win_rate=sum(s.win_rate for s in self._snapshots) / count,
            style_distribution=styles,
        )

    @property
    def size(self) -> int:
        """Number of snapshots in the pool."""
        return len(self._snapshots)

    # ------------------------------------------------------------------
    # Full-state serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Convert pool state (without weights) to a dictionary."""
        return {
            "config": self.config.model_dump(),
            "next_snapshot_id": self._next_snapshot_id,
            "snapshots": [s.to_dict() for s in self._snapshots],
            "elo": self.elo.to_dict(),
        }

    def load_dict(
        self,
        data: dict[str, Any],
        policies: dict[str, ActorCriticPolicy] | None = None,
    ) -> None:
        """Replace pool state with exported data.

        Args:
            data: Output of `to_dict`
            policies: Policies by snapshot id, taken as-is; ids missing here
                are loaded from disk, and skipped if that fails
        """
        if "config" in data:
            self.config = PoolConfig(**data["config"])
            self.save_path = Path(self.config.save_path)

        self.elo.load_dict(data.get("elo", {}))
        self._snapshots = []

        for entry in data.get("snapshots", []):
            snapshot_id = entry["id"]
            policy = (policies or {}).get(snapshot_id)
            if policy is None:
                policy = self._load_policy(self.save_path / snapshot_id)
            if policy is None:
                logger.warning(f"{PersistenceWarning.__name__}: no weights for snapshot {snapshot_id}, skipping")
                continue
            self._snapshots.append(
                OpponentSnapshot(
                    id=snapshot_id,
                    policy=policy,
                    metadata=OpponentMetadata(**entry["metadata"]),
                    elo=entry["elo"],
                    games_played=entry.get("games_played", 0),
                    win_rate=entry.get("win_rate", 0.5),
                )
            )

        self._next_snapshot_id = max(data.get("next_snapshot_id", 1), self._max_numeric_id() + 1)

    def clear(self) -> None:
        """Drop every snapshot, reset the id counter and the Elo ledger."""
        self._snapshots = []
        self.elo.reset()
        self._next_snapshot_id = 1

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _enqueue_save(self, snapshot: OpponentSnapshot) -> None:
        """Queue a snapshot write behind every earlier write."""
        self._forget_finished_saves()
        payload = snapshot.to_dict()
        try:
            future = self._save_queue.submit(self._save_snapshot_task, snapshot.id, snapshot.policy, payload)
        except RuntimeError as e:
            logger.warning(f"{PersistenceWarning.__name__}: could not queue save of {snapshot.id}: {e}")
            return
        self._in_flight_saves[snapshot.id] = future

    def save_metadata(self) -> None:
        """Queue a metadata.json rewrite for every snapshot (keeps Elo on disk current)."""
        if not self.config.persist:
            return
        for snapshot in self._snapshots:
            try:
                self._save_queue.submit(self._write_metadata_task, snapshot.id, snapshot.to_dict())
            except RuntimeError as e:
                logger.warning(f"{PersistenceWarning.__name__}: could not queue metadata for {snapshot.id}: {e}")
                return

    def _save_snapshot_task(self, snapshot_id: str, policy: ActorCriticPolicy, payload: dict[str, Any]) -> None:
        try:
            snapshot_dir = self.save_path / snapshot_id
            snapshot_dir.mkdir(parents=True, exist_ok=True)
            policy.save(snapshot_dir)
            self._write_json(snapshot_dir / METADATA_FILENAME, payload)
        except (OSError, RuntimeError, pickle.PicklingError) as e:
            logger.warning(f"{PersistenceWarning.__name__}: failed to save snapshot {snapshot_id}: {e}")

    def _write_metadata_task(self, snapshot_id: str, payload: dict[str, Any]) -> None:
        snapshot_dir = self.save_path / snapshot_id
        if not snapshot_dir.is_dir():
            return
        try:
            self._write_json(snapshot_dir / METADATA_FILENAME, payload)
        except OSError as e:
            logger.warning(f"{PersistenceWarning.__name__}: failed to write metadata for {snapshot_id}: {e}")

    @staticmethod
    def _write_json(path: Path, payload: dict[str, Any]) -> None:
        with open(path, "w") as f:
            json.dump(payload, f, indent=2)

    def _delete_snapshot(self, snapshot_id: str) -> None:
        """Delete a snapshot's files, waiting for its in-flight save first."""
        pending = self._in_flight_saves.pop(snapshot_id, None)
        if pending is not None and not pending.done():
            pending.add_done_callback(lambda _: self._delete_snapshot_now(snapshot_id))
            return
        self._delete_snapshot_now(snapshot_id)

    def _delete_snapshot_now(self, snapshot_id: str) -> None:
        snapshot_dir = self.save_path / snapshot_id
        try:
            if snapshot_dir.exists():
                shutil.rmtree(snapshot_dir)
        except OSError as e:
            logger.warning(f"{PersistenceWarning.__name__}: failed to delete snapshot {snapshot_id}: {e}")

    def _forget_finished_saves(self) -> None:
        for snapshot_id in [k for k, f in self._in_flight_saves.items() if f.done()]:
            del self._in_flight_saves[snapshot_id]

    def has_pending_save(self, snapshot_id: str) -> bool:
        future = self._in_flight_saves.get(snapshot_id)
        return future is not None and not future.done()

    def flush(self) -> None:
        """Block until every queued save and deferred deletion has finished."""
        try:
            self._save_queue.submit(lambda: None).result()
        except RuntimeError:
            # Queue already shut down; nothing left to wait for
            pass
        self._forget_finished_saves()

    def close(self) -> None:
        """Flush pending writes and stop the save worker."""
        self.flush()
        self._save_queue.shutdown(wait=True)

    def _ensure_save_dir(self) -> None:
        try:
            self.save_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"{PersistenceWarning.__name__}: cannot create {self.save_path}: {e}")

    def _max_numeric_id(self) -> int:
        highest = 0
        for snapshot in self._snapshots:
            match = _SNAPSHOT_DIR_RE.match(snapshot.id)
            if match:
                highest = max(highest, int(match.group(1)))
        return highest

    def load_all_snapshots(
        self,
        expected_obs_size: int | None = None,
        expected_action_size: int | None = None,
    ) -> int:
        """Load snapshots saved under `save_path`, one directory at a time.

        A directory that fails to load, or whose policy sizes differ from the
        expected ones, is logged and skipped.

        Returns:
            Number of snapshots added to the pool
        """
        if not self.save_path.is_dir():
            return 0

        try:
            directories = [p for p in self.save_path.iterdir() if p.is_dir()]
        except OSError as e:
            logger.warning(f"{PersistenceWarning.__name__}: cannot list {self.save_path}: {e}")
            return 0

        def sort_key(path: Path) -> tuple[int, str]:
            match = _SNAPSHOT_DIR_RE.match(path.name)
            return (int(match.group(1)) if match else 0, path.name)

        directories.sort(key=sort_key)

        # Keep the id counter ahead of everything on disk
        highest = max((sort_key(p)[0] for p in directories), default=0)
        self._next_snapshot_id = max(self._next_snapshot_id, highest + 1)

        loaded = 0
        for directory in directories:
            if self.get_snapshot(directory.name) is not None:
                continue
            try:
                snapshot = self._load_snapshot(directory)
            except (OSError, ValueError, KeyError, RuntimeError, pickle.UnpicklingError) as e:
                logger.warning(f"{PersistenceWarning.__name__}: failed to load snapshot {directory.name}: {e}")
                continue
            if snapshot is None:
                continue

            if (expected_obs_size is not None and snapshot.policy.obs_size != expected_obs_size) or (
                expected_action_size is not None and snapshot.policy.action_size != expected_action_size
            ):
                logger.warning(
                    f"{PersistenceWarning.__name__}: snapshot {snapshot.id} has sizes "
                    f"({snapshot.policy.obs_size}, {snapshot.policy.action_size}), skipping"
                )
                continue

            if not self.elo.has_player(snapshot.id):
                self._register_restored(snapshot)
            self._snapshots.append(snapshot)
            loaded += 1

        self._next_snapshot_id = max(self._next_snapshot_id, len(self._snapshots) + 1)
        if loaded:
            logger.info(f"Loaded {loaded} snapshots from {self.save_path} (avg elo: {self.get_statistics().avg_elo:.0f})")
        return loaded

    def _register_restored(self, snapshot: OpponentSnapshot) -> None:
        """Seed the ledger with a restored snapshot's rating and match record."""
        player = self.elo.register_player(snapshot.id, snapshot.elo)
        player.games_played = snapshot.games_played
        player.wins = round(snapshot.win_rate * snapshot.games_played)
        player.losses = snapshot.games_played - player.wins

    def _load_snapshot(self, directory: Path) -> OpponentSnapshot | None:
        metadata_path = directory / METADATA_FILENAME
        if not metadata_path.exists():
            return None

        with open(metadata_path) as f:
            data = json.load(f)

        policy = ActorCriticPolicy.from_checkpoint(directory)
        return OpponentSnapshot(
            id=data.get("id", directory.name),
            policy=policy,
            metadata=OpponentMetadata(**data["metadata"]),
            elo=data["elo"],
            games_played=data.get("games_played", 0),
            win_rate=data.get("win_rate", 0.5),
        )

    def _load_policy(self, directory: Path) -> ActorCriticPolicy | None:
        try:
            return ActorCriticPolicy.from_checkpoint(directory)
        except (OSError, ValueError, KeyError, RuntimeError, pickle.UnpicklingError) as e:
            logger.debug(f"Could not load weights from {directory}: {e}")
            return None
