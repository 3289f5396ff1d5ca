"""
Resolution History Storage - Oraculum

Stores every consensus round the pipeline runs, for:
1. Audit of submitted resolutions (votes, outcome, tx hash)
2. Deferred rounds (no quorum, timeouts) and failed submissions
3. Dispute context

Uses SQLite for persistence.
"""

import hashlib
import json
import logging
import os
import sqlite3
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# Round states
STATUS_SUBMITTED = "submitted"
STATUS_DEFERRED = "deferred"
STATUS_FAILED = "failed"


@dataclass
class ResolutionRecord:
    """A stored consensus round."""
    id: str
    market_id: int
    status: str  # submitted, deferred, failed
    question: str = ""
    outcome: Optional[str] = None
    confidence: Optional[float] = None
    consensus_count: int = 0
    total_models: int = 0
    votes: List[Dict[str, Any]] = field(default_factory=list)

    # Submission
    strategy: Optional[str] = None
    tx_hash: Optional[str] = None
    task_id: Optional[str] = None
    error: Optional[str] = None

    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def generate_record_id(market_id: int) -> str:
    """Generate a unique ID for a round."""
    timestamp = datetime.now(timezone.utc).isoformat()
    return hashlib.sha256(f"{market_id}:{timestamp}:{os.urandom(4).hex()}".encode()).hexdigest()[:16]


class ResolutionHistoryDB:
    """SQLite-based resolution history storage."""

    def __init__(self, db_path: str = None):
        if db_path:
            self.db_path = db_path
        else:
            default_path = os.path.join(os.path.dirname(os.path.dirname(__file__)), "storage", "resolutions.db")
            self.db_path = os.getenv("RESOLUTION_DB_PATH", default_path)

        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._init_db()
        logger.info(f"ResolutionHistoryDB initialized at {self.db_path}")

    def _init_db(self):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS resolutions (
                    id TEXT PRIMARY KEY,
                    market_id INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    question TEXT,
                    outcome TEXT,
                    confidence REAL,
                    consensus_count INTEGER DEFAULT 0,
                    total_models INTEGER DEFAULT 0,
                    votes TEXT,
                    strategy TEXT,
                    tx_hash TEXT,
                    task_id TEXT,
                    error TEXT,
                    created_at TEXT NOT NULL,
                    duration_seconds REAL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_resolutions_market
                ON resolutions(market_id, created_at DESC)
            """)
            conn.commit()

    def save(self, record: ResolutionRecord) -> str:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                INSERT OR REPLACE INTO resolutions (
                    id, market_id, status, question, outcome, confidence,
                    consensus_count, total_models, votes,
                    strategy, tx_hash, task_id, error,
                    created_at, duration_seconds
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.id,
                record.market_id,
                record.status,
                record.question,
                record.outcome,
                record.confidence,
                record.consensus_count,
                record.total_models,
                json.dumps(record.votes),
                record.strategy,
                record.tx_hash,
                record.task_id,
                record.error,
                record.created_at,
                record.duration_seconds,
            ))
            conn.commit()

        logger.info(f"Saved resolution round {record.id} for market {record.market_id}: {record.status}")
        return record.id

    def get_by_market(self, market_id: int, limit: int = 50) -> List[ResolutionRecord]:
        """Rounds for one market, newest first."""
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            cursor = conn.execute("""
                SELECT * FROM resolutions
                WHERE market_id = ?
                ORDER BY created_at DESC
                LIMIT ?
            """, (market_id, limit))
            return [self._row_to_record(row) for row in cursor.fetchall()]

    def get_stats(self) -> Dict[str, Any]:
        with sqlite3.connect(self.db_path) as conn:
            total = conn.execute("SELECT COUNT(*) FROM resolutions").fetchone()[0]

            by_status = {}
            for status in (STATUS_SUBMITTED, STATUS_DEFERRED, STATUS_FAILED):
                by_status[status] = conn.execute(
                    "SELECT COUNT(*) FROM resolutions WHERE status = ?", (status,)
                ).fetchone()[0]

            avg_confidence = conn.execute(
                "SELECT AVG(confidence) FROM resolutions WHERE status = ?", (STATUS_SUBMITTED,)
            ).fetchone()[0] or 0

            return {
                "total_rounds": total,
                "by_status": by_status,
                "average_confidence": round(avg_confidence, 2),
            }

    def _row_to_record(self, row: sqlite3.Row) -> ResolutionRecord:
        return ResolutionRecord(
            id=row["id"],
            market_id=row["market_id"],
            status=row["status"],
            question=row["question"] or "",
            outcome=row["outcome"],
            confidence=row["confidence"],
            consensus_count=row["consensus_count"],
            total_models=row["total_models"],
            votes=json.loads(row["votes"]) if row["votes"] else [],
            strategy=row["strategy"],
            tx_hash=row["tx_hash"],
            task_id=row["task_id"],
            error=row["error"],
            created_at=row["created_at"],
            duration_seconds=row["duration_seconds"] or 0.0,
        )
