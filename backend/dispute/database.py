"""
SQLite Database for dispute arbitration.
Provides persistent storage for disputes, votes, the stake ledger and slash events.
"""

import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

# Database file path - use environment variable or fallback to local storage
DEFAULT_DB_PATH = os.path.join(os.path.dirname(os.path.dirname(__file__)), "storage", "disputes.db")
DB_PATH = os.environ.get("DISPUTE_DB_PATH", DEFAULT_DB_PATH)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_db_path() -> str:
    """Get database path, ensuring directory exists."""
    db_dir = os.path.dirname(DB_PATH)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)
    return DB_PATH


@contextmanager
def get_connection():
    """Context manager for database connections."""
    conn = sqlite3.connect(get_db_path())
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_database():
    """Initialize the database schema."""
    with get_connection() as conn:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS disputes (
                market_id INTEGER PRIMARY KEY,
                original_outcome INTEGER NOT NULL,
                challenger TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'open',
                opened_at TEXT NOT NULL,
                window_ends_at TEXT NOT NULL,
                final_outcome INTEGER,
                resolution_reason TEXT,
                finalized_at TEXT
            )
        """)

        # One vote per voter per dispute
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS dispute_votes (
                vote_id TEXT PRIMARY KEY,
                market_id INTEGER NOT NULL,
                voter TEXT NOT NULL,
                choice INTEGER NOT NULL,
                staked_amount REAL NOT NULL,
                stake_weight REAL NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY (market_id) REFERENCES disputes(market_id),
                UNIQUE(market_id, voter)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS stake_ledger (
                voter TEXT PRIMARY KEY,
                staked_amount REAL NOT NULL DEFAULT 0.0,
                correct_votes INTEGER DEFAULT 0,
                total_votes INTEGER DEFAULT 0,
                slashed_total REAL DEFAULT 0.0,
                rewarded_total REAL DEFAULT 0.0,
                tier INTEGER DEFAULT 0,
                updated_at TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS slash_events (
                event_id TEXT PRIMARY KEY,
                market_id INTEGER NOT NULL,
                voter TEXT NOT NULL,
                kind TEXT NOT NULL,  -- 'slash' or 'reward'
                amount REAL NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_disputes_status ON disputes(status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_dispute_votes_market ON dispute_votes(market_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_slash_events_voter ON slash_events(voter)")


# ==================== DISPUTE OPERATIONS ====================

def create_dispute(data: Dict[str, Any]) -> int:
    """Insert a dispute. Raises sqlite3.IntegrityError if the market already has one."""
    with get_connection() as conn:
        conn.execute("""
            INSERT INTO disputes (
                market_id, original_outcome, challenger, status, opened_at, window_ends_at
            ) VALUES (?, ?, ?, ?, ?, ?)
        """, (
            data["market_id"],
            data["original_outcome"],
            data["challenger"],
            data.get("status", "open"),
            data["opened_at"],
            data["window_ends_at"],
        ))
        return data["market_id"]


def get_dispute(market_id: int) -> Optional[Dict[str, Any]]:
    with get_connection() as conn:
        row = conn.execute("SELECT * FROM disputes WHERE market_id = ?", (market_id,)).fetchone()
        return dict(row) if row else None


def get_disputes_by_status(status: str) -> List[Dict[str, Any]]:
    with get_connection() as conn:
        cursor = conn.execute(
            "SELECT * FROM disputes WHERE status = ? ORDER BY opened_at", (status,)
        )
        return [dict(row) for row in cursor.fetchall()]


def update_dispute(
    market_id: int,
    updates: Dict[str, Any],
    from_statuses: Optional[Sequence[str]] = None,
) -> bool:
    """Update a dispute row, optionally only while it is in one of from_statuses."""
    with get_connection() as conn:
        set_clause = ", ".join([f"{k} = ?" for k in updates.keys()])
        values = list(updates.values()) + [market_id]
        query = f"UPDATE disputes SET {set_clause} WHERE market_id = ?"
        if from_statuses:
            query += f" AND status IN ({', '.join(['?' for _ in from_statuses])})"
            values += list(from_statuses)
        cursor = conn.execute(query, values)
        return cursor.rowcount > 0


# ==================== VOTE OPERATIONS ====================

def create_vote(vote_data: Dict[str, Any]) -> str:
    """Insert a vote. Raises sqlite3.IntegrityError on a duplicate voter."""
    with get_connection() as conn:
        conn.execute("""
            INSERT INTO dispute_votes (
                vote_id, market_id, voter, choice, staked_amount, stake_weight, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            vote_data["vote_id"],
            vote_data["market_id"],
            vote_data["voter"],
            vote_data["choice"],
            vote_data["staked_amount"],
            vote_data["stake_weight"],
            vote_data["created_at"],
        ))
        return vote_data["vote_id"]


def get_votes_for_dispute(market_id: int) -> List[Dict[str, Any]]:
    with get_connection() as conn:
        cursor = conn.execute(
            "SELECT * FROM dispute_votes WHERE market_id = ? ORDER BY created_at", (market_id,)
        )
        return [dict(row) for row in cursor.fetchall()]


# ==================== STAKE LEDGER OPERATIONS ====================

def get_stake_position(voter: str) -> Optional[Dict[str, Any]]:
    with get_connection() as conn:
        row = conn.execute("SELECT * FROM stake_ledger WHERE voter = ?", (voter,)).fetchone()
        return dict(row) if row else None


def upsert_stake(voter: str, staked_amount: float, tier: int) -> None:
    with get_connection() as conn:
        conn.execute("""
            INSERT INTO stake_ledger (voter, staked_amount, tier, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(voter) DO UPDATE SET
                staked_amount = excluded.staked_amount,
                tier = excluded.tier,
                updated_at = excluded.updated_at
        """, (voter, staked_amount, tier, _now()))


def apply_settlement(
    market_id: int,
    stake_updates: List[Dict[str, Any]],
    dispute_updates: Dict[str, Any],
    from_statuses: Sequence[str],
    tier_for: Callable[[float], int],
) -> bool:
    """
    Close the dispute and apply its stake movements in one transaction.

    The status transition runs first and only matches a dispute still in one
    of from_statuses; when another caller already settled it nothing is
    written and False is returned.

    Each stake update: {voter, correct (bool), slashed, rewarded}. Balances
    move by delta so concurrent deposits are preserved.
    """
    now = _now()
    with get_connection() as conn:
        set_clause = ", ".join([f"{k} = ?" for k in dispute_updates.keys()])
        placeholders = ", ".join(["?" for _ in from_statuses])
        values = list(dispute_updates.values()) + [market_id] + list(from_statuses)
        cursor = conn.execute(
            f"UPDATE disputes SET {set_clause} WHERE market_id = ? AND status IN ({placeholders})",
            values,
        )
        if cursor.rowcount == 0:
            conn.rollback()
            return False

        for update in stake_updates:
            delta = update["rewarded"] - update["slashed"]
            conn.execute("""
                UPDATE stake_ledger SET
                    staked_amount = MAX(staked_amount + ?, 0),
                    total_votes = total_votes + 1,
                    correct_votes = correct_votes + ?,
                    slashed_total = slashed_total + ?,
                    rewarded_total = rewarded_total + ?,
                    updated_at = ?
                WHERE voter = ?
            """, (
                delta,
                1 if update["correct"] else 0,
                update["slashed"],
                update["rewarded"],
                now,
                update["voter"],
            ))
            row = conn.execute(
                "SELECT staked_amount FROM stake_ledger WHERE voter = ?", (update["voter"],)
            ).fetchone()
            if row is not None:
                conn.execute(
                    "UPDATE stake_ledger SET tier = ? WHERE voter = ?",
                    (tier_for(row["staked_amount"]), update["voter"]),
                )
            for kind in ("slashed", "rewarded"):
                if update[kind] > 0:
                    conn.execute("""
                        INSERT INTO slash_events (event_id, market_id, voter, kind, amount, created_at)
                        VALUES (?, ?, ?, ?, ?, ?)
                    """, (
                        f"se_{uuid.uuid4().hex[:12]}",
                        market_id,
                        update["voter"],
                        "slash" if kind == "slashed" else "reward",
                        update[kind],
                        now,
                    ))
        return True


def get_slash_events(market_id: Optional[int] = None, limit: int = 100) -> List[Dict[str, Any]]:
    with get_connection() as conn:
        if market_id is None:
            cursor = conn.execute(
                "SELECT * FROM slash_events ORDER BY created_at DESC LIMIT ?", (limit,)
            )
        else:
            cursor = conn.execute(
                "SELECT * FROM slash_events WHERE market_id = ? ORDER BY created_at DESC LIMIT ?",
                (market_id, limit),
            )
        return [dict(row) for row in cursor.fetchall()]
