"""Database connection and schema management."""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

DEFAULT_DB_PATH = Path.home() / ".local" / "share" / "curtail" / "curtail.db"

SCHEMA = """
-- Curtailment rules (thresholds and affected priority groups)
CREATE TABLE IF NOT EXISTS rules (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    hard_ceiling_price REAL NOT NULL,
    soft_ceiling_price REAL,
    floor_price REAL NOT NULL,
    affected_priority_groups TEXT NOT NULL,  -- comma-separated
    is_active INTEGER NOT NULL DEFAULT 1,
    grace_period_seconds INTEGER DEFAULT 0,
    trigger_count INTEGER DEFAULT 0,
    last_triggered_at TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

-- Threshold-crossing alerts
CREATE TABLE IF NOT EXISTS alerts (
    id INTEGER PRIMARY KEY,
    alert_type TEXT NOT NULL,
    current_price REAL NOT NULL,
    threshold_price REAL NOT NULL,
    price_direction TEXT,
    forecast_breach_hours INTEGER,
    grid_stress_level TEXT,
    rule_id INTEGER,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    acknowledged_at TEXT
);

-- Executed shutdowns and resumes
CREATE TABLE IF NOT EXISTS automation_log (
    id INTEGER PRIMARY KEY,
    action_type TEXT NOT NULL,
    trigger_price REAL,
    estimated_savings REAL,
    duration_seconds INTEGER,
    rule_id INTEGER,
    affected_devices TEXT,  -- comma-separated device ids
    affected_priority_groups TEXT,
    total_load_affected_kw REAL,
    grid_stress_level TEXT,
    decision_confidence REAL,
    status TEXT,
    executed_at TEXT NOT NULL,
    completed_at TEXT
);

-- Evaluated decisions (optional history)
CREATE TABLE IF NOT EXISTS decisions (
    id INTEGER PRIMARY KEY,
    timestamp TEXT NOT NULL,
    decision TEXT NOT NULL,
    current_price REAL,
    predicted_price_1h REAL,
    predicted_price_6h REAL,
    grid_stress_level TEXT,
    affected_priority_groups TEXT,
    reason TEXT,
    confidence_score REAL,
    estimated_savings REAL,
    rule_id INTEGER
);

CREATE INDEX IF NOT EXISTS idx_alerts_created ON alerts(created_at);
CREATE INDEX IF NOT EXISTS idx_alerts_type_rule ON alerts(alert_type, rule_id, is_active);
CREATE INDEX IF NOT EXISTS idx_log_executed ON automation_log(executed_at);
CREATE INDEX IF NOT EXISTS idx_decisions_timestamp ON decisions(timestamp);
"""


def get_db_path() -> Path:
    """Get the database path, creating parent directories if needed."""
    db_path = Path(DEFAULT_DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return db_path


@contextmanager
def get_connection(db_path: Path | None = None) -> Iterator[sqlite3.Connection]:
    """Get a database connection with row factory enabled."""
    path = db_path or get_db_path()
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: Path | None = None) -> None:
    """Initialize the database schema."""
    with get_connection(db_path) as conn:
        conn.executescript(SCHEMA)
        conn.commit()


def get_stats(db_path: Path | None = None) -> dict:
    """Get database statistics."""
    with get_connection(db_path) as conn:
        stats = {}

        row = conn.execute(
            "SELECT COUNT(*) as count, SUM(is_active) as active FROM rules"
        ).fetchone()
        stats["rules"] = {"count": row["count"], "active": row["active"] or 0}

        row = conn.execute(
            "SELECT COUNT(*) as count, SUM(is_active) as active, MIN(created_at) as earliest, MAX(created_at) as latest FROM alerts"
        ).fetchone()
        stats["alerts"] = {
            "count": row["count"],
            "active": row["active"] or 0,
            "earliest": row["earliest"],
            "latest": row["latest"],
        }

        # Log entries by action
        rows = conn.execute(
            "SELECT action_type, COUNT(*) as count FROM automation_log GROUP BY action_type"
        ).fetchall()
        stats["automation_log_by_action"] = {row["action_type"]: row["count"] for row in rows}

        row = conn.execute(
            "SELECT COUNT(*) as count, MIN(executed_at) as earliest, MAX(executed_at) as latest FROM automation_log"
        ).fetchone()
        stats["automation_log"] = {
            "count": row["count"],
            "earliest": row["earliest"],
            "latest": row["latest"],
        }

        row = conn.execute(
            "SELECT COUNT(*) as count, MIN(timestamp) as earliest, MAX(timestamp) as latest FROM decisions"
        ).fetchone()
        stats["decisions"] = {
            "count": row["count"],
            "earliest": row["earliest"],
            "latest": row["latest"],
        }

        return stats
