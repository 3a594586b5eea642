"""SQLite-backed store for sales, player snapshots and the multiplier grid."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Tuple
from uuid import uuid4

from cardvalue.config.positions import MAX_GRID_AGE, MIN_GRID_AGE
from cardvalue.models import MS_PER_DAY, Clock, PlayerProfile, SaleRecord, system_clock
from cardvalue.multipliers.grid import MultiplierEntry

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path("data/cardvalue.sqlite")

RUN_RUNNING = "running"
RUN_COMPLETED = "completed"
RUN_FAILED = "failed"

MIN_SEARCH_OVERALL = 45
MAX_SEARCH_OVERALL = 99
TARGET_COMPARABLES = 3
MAX_SEARCH_ATTEMPTS = 8
ELITE_LOOKBACK_DAYS = 540
STANDARD_LOOKBACK_DAYS = 180


@dataclass(frozen=True)
class SearchAttempt:
    attempt: int
    age_range: int
    overall_range: int
    exact_position: bool


@dataclass
class ComparableSearch:
    sales: List[SaleRecord]
    search_criteria: str
    attempts: int = 0
    min_price: float = 0.0
    lookback_days: int = STANDARD_LOOKBACK_DAYS

    @property
    def sample_size(self) -> int:
        return len(self.sales)


@dataclass
class GridRun:
    run_id: str
    status: str
    started_at: datetime
    completed_at: Optional[datetime]
    window_days: int
    min_sample_size: int
    force_update: bool
    metrics: dict = field(default_factory=dict)
    error_message: Optional[str] = None


@dataclass(frozen=True)
class MultiplierSummary:
    total_multipliers: int
    direct_multipliers: int
    average_confidence: float
    last_updated: Optional[datetime]


def search_attempt(attempt: int) -> SearchAttempt:
    """Widening schedule for comparable searches, 0-based."""

    if attempt < 3:
        return SearchAttempt(attempt, 1 + attempt, 1 + attempt, True)
    if attempt < 6:
        return SearchAttempt(attempt, 2 + (attempt - 3) * 2, 3 + (attempt - 3) * 2, True)
    return SearchAttempt(attempt, 8 + (attempt - 6) * 3, 8 + (attempt - 6) * 3, False)


def minimum_price(overall: int) -> float:
    if overall >= 85:
        return 10
    if overall >= 75:
        return 5
    if overall >= 65:
        return 3
    if overall >= 55:
        return 1
    return 0


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class MarketStore:
    """Simple SQLite-backed store for marketplace data and grid rebuild history."""

    def __init__(self, db_path: Path | str = DEFAULT_DB_PATH, *, clock: Clock = system_clock):
        self._use_uri = False
        self._clock = clock
        env_db = os.getenv("CARDVALUE_DB_PATH")
        target = env_db or db_path
        if isinstance(target, str) and target.startswith("file:"):
            self.db_path: Path | str = target
            self._use_uri = True
        else:
            self.db_path = Path(target)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path)
        else:
            conn = sqlite3.connect(self.db_path, uri=self._use_uri)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            self._create_schema(conn)

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS sales (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sale_id TEXT UNIQUE,
                player_id TEXT,
                price REAL NOT NULL,
                purchase_timestamp_ms INTEGER,
                seller_address TEXT,
                buyer_address TEXT,
                player_overall INTEGER,
                player_age INTEGER,
                player_position TEXT,
                imported_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_sales_position_ts ON sales (player_position, purchase_timestamp_ms)"
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS players (
                player_id TEXT PRIMARY KEY,
                overall INTEGER NOT NULL,
                age INTEGER NOT NULL,
                primary_position TEXT NOT NULL,
                pace INTEGER NOT NULL DEFAULT 0,
                shooting INTEGER NOT NULL DEFAULT 0,
                passing INTEGER NOT NULL DEFAULT 0,
                dribbling INTEGER NOT NULL DEFAULT 0,
                defense INTEGER NOT NULL DEFAULT 0,
                physical INTEGER NOT NULL DEFAULT 0,
                goalkeeping INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS market_multipliers (
                position TEXT NOT NULL,
                age INTEGER NOT NULL,
                overall_bracket TEXT NOT NULL,
                multiplier REAL NOT NULL,
                sample_size INTEGER NOT NULL,
                avg_price REAL NOT NULL,
                confidence_score REAL NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (position, age, overall_bracket)
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS multiplier_runs (
                id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                window_days INTEGER NOT NULL,
                min_sample_size INTEGER NOT NULL,
                force_update INTEGER NOT NULL,
                metrics_json TEXT,
                error_message TEXT
            )
            """
        )
        conn.commit()

    # -- sales and player snapshots -------------------------------------------------

    def save_sales(self, sales: Iterable[SaleRecord]) -> int:
        now = datetime.now(timezone.utc).isoformat()
        rows = [
            (
                sale.sale_id,
                sale.player_id,
                sale.price,
                sale.purchase_timestamp_ms,
                sale.seller_address,
                sale.buyer_address,
                sale.seller_player_overall,
                sale.seller_player_age,
                sale.seller_player_position.upper() if sale.seller_player_position else None,
                now,
            )
            for sale in sales
        ]
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT OR REPLACE INTO sales (
                    sale_id, player_id, price, purchase_timestamp_ms, seller_address,
                    buyer_address, player_overall, player_age, player_position, imported_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            conn.commit()
        return len(rows)

    def save_players(self, players: Iterable[PlayerProfile]) -> int:
        now = datetime.now(timezone.utc).isoformat()
        rows = []
        for player in players:
            if not player.player_id:
                logger.warning("Skipping player snapshot without id: %s", player.label())
                continue
            rows.append(
                (
                    player.player_id,
                    player.overall,
                    player.age,
                    player.primary_position,
                    player.pace,
                    player.shooting,
                    player.passing,
                    player.dribbling,
                    player.defense,
                    player.physical,
                    player.goalkeeping,
                    now,
                )
            )
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT OR REPLACE INTO players (
                    player_id, overall, age, primary_position, pace, shooting, passing,
                    dribbling, defense, physical, goalkeeping, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            conn.commit()
        return len(rows)

    def get_player(self, player_id: str) -> Optional[PlayerProfile]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM players WHERE player_id = ?", (player_id,)).fetchone()
        return self._row_to_player(row) if row is not None else None

    def count_sales(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM sales").fetchone()[0]

    def fetch_comparable_sales(
        self,
        profile: PlayerProfile,
        *,
        max_results: int = 50,
        expand_search: bool = True,
    ) -> ComparableSearch:
        """Progressively widen the search until at least three comparables turn up."""

        overall = profile.overall
        age = profile.age
        position = profile.primary_position
        base_min_price = minimum_price(overall)
        lookback_days = ELITE_LOOKBACK_DAYS if overall >= 85 else STANDARD_LOOKBACK_DAYS
        cutoff_ms = self._clock() - lookback_days * MS_PER_DAY
        max_attempts = MAX_SEARCH_ATTEMPTS if expand_search else 1

        sales: List[SaleRecord] = []
        attempt = search_attempt(0)
        min_price = max(1, base_min_price)
        with self._connect() as conn:
            for index in range(max_attempts):
                attempt = search_attempt(index)
                min_price = max(1, base_min_price - index)
                query = """
                    SELECT * FROM sales
                    WHERE price >= ?
                      AND player_age BETWEEN ? AND ?
                      AND player_overall BETWEEN ? AND ?
                      AND purchase_timestamp_ms >= ?
                """
                params: list = [
                    min_price,
                    max(MIN_GRID_AGE, age - attempt.age_range),
                    min(MAX_GRID_AGE, age + attempt.age_range),
                    max(MIN_SEARCH_OVERALL, overall - attempt.overall_range),
                    min(MAX_SEARCH_OVERALL, overall + attempt.overall_range),
                    cutoff_ms,
                ]
                if attempt.exact_position:
                    query += " AND player_position = ?"
                    params.append(position)
                elif position == "GK":
                    query += " AND player_position = 'GK'"
                else:
                    query += " AND player_position != 'GK'"
                query += " ORDER BY purchase_timestamp_ms DESC, id DESC LIMIT ?"
                params.append(max_results)
                rows = conn.execute(query, tuple(params)).fetchall()
                sales = [self._row_to_sale(row) for row in rows]
                logger.debug(
                    "Comparable search %d for %s: age +/-%d overall +/-%d -> %d sales",
                    index + 1,
                    profile.label(),
                    attempt.age_range,
                    attempt.overall_range,
                    len(sales),
                )
                if len(sales) >= TARGET_COMPARABLES:
                    break

        if attempt.exact_position:
            position_criteria = position
        else:
            position_criteria = "GK only" if position == "GK" else "outfield players"
        criteria = (
            f"age: {age}±{attempt.age_range}, overall: {overall}±{attempt.overall_range}, "
            f"position: {position_criteria}"
        )
        return ComparableSearch(
            sales=sales,
            search_criteria=criteria,
            attempts=attempt.attempt + 1,
            min_price=min_price,
            lookback_days=lookback_days,
        )

    def fetch_sales_page(self, since_ms: int, offset: int, limit: int) -> List[SaleRecord]:
        """Sales with a full player profile, for grid aggregation."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM sales
                WHERE price >= 1
                  AND player_age IS NOT NULL
                  AND player_overall IS NOT NULL
                  AND player_position IS NOT NULL
                  AND purchase_timestamp_ms >= ?
                ORDER BY id
                LIMIT ? OFFSET ?
                """,
                (since_ms, limit, offset),
            ).fetchall()
        return [self._row_to_sale(row) for row in rows]

    def fetch_training_sales(self, since_ms: int) -> List[Tuple[SaleRecord, PlayerProfile]]:
        """Recent sales paired with the attribute snapshot of the player sold."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT s.*,
                       p.overall AS p_overall, p.age AS p_age, p.primary_position AS p_position,
                       p.pace, p.shooting, p.passing, p.dribbling, p.defense, p.physical, p.goalkeeping
                FROM sales s
                JOIN players p ON p.player_id = s.player_id
                WHERE s.price > 0 AND s.purchase_timestamp_ms >= ?
                ORDER BY s.player_id, s.purchase_timestamp_ms
                """,
                (since_ms,),
            ).fetchall()
        pairs: List[Tuple[SaleRecord, PlayerProfile]] = []
        for row in rows:
            player = PlayerProfile(
                player_id=row["player_id"],
                overall=row["p_overall"],
                age=row["p_age"],
                primary_position=row["p_position"],
                pace=row["pace"],
                shooting=row["shooting"],
                passing=row["passing"],
                dribbling=row["dribbling"],
                defense=row["defense"],
                physical=row["physical"],
                goalkeeping=row["goalkeeping"],
            )
            pairs.append((self._row_to_sale(row), player))
        return pairs

    # -- multiplier grid -----------------------------------------------------------

    def load_multipliers(self) -> List[MultiplierEntry]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM market_multipliers").fetchall()
        return [self._row_to_entry(row) for row in rows]

    def apply_multiplier_changes(self, entries: Iterable[MultiplierEntry]) -> int:
        """Upsert grid entries in a single transaction; nothing is written if any row fails."""

        now = datetime.now(timezone.utc).isoformat()
        rows = [
            (
                entry.position,
                entry.age,
                entry.overall_bracket,
                entry.multiplier,
                entry.sample_size,
                entry.avg_price,
                entry.confidence_score,
                now,
            )
            for entry in entries
        ]
        conn = self._connect()
        try:
            with conn:
                conn.executemany(
                    """
                    INSERT INTO market_multipliers (
                        position, age, overall_bracket, multiplier, sample_size,
                        avg_price, confidence_score, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (position, age, overall_bracket) DO UPDATE SET
                        multiplier = excluded.multiplier,
                        sample_size = excluded.sample_size,
                        avg_price = excluded.avg_price,
                        confidence_score = excluded.confidence_score,
                        updated_at = excluded.updated_at
                    """,
                    rows,
                )
        finally:
            conn.close()
        return len(rows)

    def multiplier_summary(self) -> MultiplierSummary:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS total,
                       SUM(CASE WHEN sample_size > 0 THEN 1 ELSE 0 END) AS direct,
                       AVG(confidence_score) AS avg_confidence,
                       MAX(updated_at) AS last_updated
                FROM market_multipliers
                """
            ).fetchone()
        return MultiplierSummary(
            total_multipliers=row["total"] or 0,
            direct_multipliers=row["direct"] or 0,
            average_confidence=row["avg_confidence"] or 0.0,
            last_updated=_parse_ts(row["last_updated"]),
        )

    # -- rebuild history -----------------------------------------------------------

    def create_run(self, *, window_days: int, min_sample_size: int, force_update: bool) -> GridRun:
        run_id = uuid4().hex
        started_at = datetime.now(timezone.utc).isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO multiplier_runs (
                    id, status, started_at, window_days, min_sample_size, force_update
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (run_id, RUN_RUNNING, started_at, window_days, min_sample_size, int(force_update)),
            )
            conn.commit()
        run = self.get_run(run_id)
        if run is None:  # pragma: no cover
            raise KeyError(f"Run {run_id} not found after insert")
        return run

    def finish_run(
        self,
        run_id: str,
        *,
        status: str,
        metrics: dict | None = None,
        error_message: str | None = None,
    ) -> GridRun:
        completed_at = datetime.now(timezone.utc).isoformat()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE multiplier_runs
                SET status = ?, completed_at = ?, metrics_json = ?, error_message = ?
                WHERE id = ?
                """,
                (status, completed_at, json.dumps(metrics or {}), error_message, run_id),
            )
            conn.commit()
            if cursor.rowcount == 0:
                raise KeyError(f"Run {run_id} not found")
        run = self.get_run(run_id)
        if run is None:  # pragma: no cover
            raise KeyError(f"Run {run_id} not found after update")
        return run

    def get_run(self, run_id: str) -> Optional[GridRun]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM multiplier_runs WHERE id = ?", (run_id,)).fetchone()
            if row is None:
                return None
            return self._row_to_run(row)

    def list_runs(self, limit: int = 10) -> List[GridRun]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM multiplier_runs ORDER BY datetime(started_at) DESC, rowid DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._row_to_run(row) for row in rows]

    # -- row mapping ---------------------------------------------------------------

    def _row_to_sale(self, row: sqlite3.Row) -> SaleRecord:
        return SaleRecord(
            price=row["price"],
            purchase_timestamp_ms=row["purchase_timestamp_ms"],
            sale_id=row["sale_id"],
            player_id=row["player_id"],
            seller_address=row["seller_address"],
            buyer_address=row["buyer_address"],
            seller_player_overall=row["player_overall"],
            seller_player_age=row["player_age"],
            seller_player_position=row["player_position"],
        )

    def _row_to_player(self, row: sqlite3.Row) -> PlayerProfile:
        return PlayerProfile(
            player_id=row["player_id"],
            overall=row["overall"],
            age=row["age"],
            primary_position=row["primary_position"],
            pace=row["pace"],
            shooting=row["shooting"],
            passing=row["passing"],
            dribbling=row["dribbling"],
            defense=row["defense"],
            physical=row["physical"],
            goalkeeping=row["goalkeeping"],
        )

    def _row_to_entry(self, row: sqlite3.Row) -> MultiplierEntry:
        return MultiplierEntry(
            position=row["position"],
            age=row["age"],
            overall_bracket=row["overall_bracket"],
            multiplier=row["multiplier"],
            sample_size=row["sample_size"],
            avg_price=row["avg_price"],
            confidence_score=row["confidence_score"],
        )

    def _row_to_run(self, row: sqlite3.Row) -> GridRun:
        return GridRun(
            run_id=row["id"],
            status=row["status"],
            started_at=datetime.fromisoformat(row["started_at"]),
            completed_at=_parse_ts(row["completed_at"]),
            window_days=row["window_days"],
            min_sample_size=row["min_sample_size"],
            force_update=bool(row["force_update"]),
            metrics=json.loads(row["metrics_json"]) if row["metrics_json"] else {},
            error_message=row["error_message"],
        )
