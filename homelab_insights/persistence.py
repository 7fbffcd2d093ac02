"""
Insights Persistence

Durable storage for anomaly history, capacity and disk prediction history,
and the live insight table. History tables are append-only; insights are
replaced by id so repeated cycles never duplicate a live insight.
"""

import json
import logging
import os
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .exceptions import PersistenceException
from .records import (
    AnomalyFinding,
    CapacityPrediction,
    DiskRiskAssessment,
    Insight,
    to_db_timestamp,
    utc_now,
)
from .stats import severity_rank

logger = logging.getLogger("homelab_insights.persistence")

DEFAULT_INSIGHTS_DB_PATH = os.getenv("INSIGHTS_DB_PATH", "./data/insights.db")


def rank_insights(insights: Sequence[Insight]) -> List[Insight]:
    """Severity descending, then type, then title"""
    return sorted(insights, key=lambda i: (-severity_rank(i.severity), i.type, i.title))


def insight_key(insight_id: str) -> str:
    """The type and subject part of an id, without its trailing window number"""
    head, _, window = insight_id.rpartition("-")
    return head if head and window.isdigit() else insight_id


class InsightsPersistence(ABC):
    """Write and read contract used by the aggregator and the API"""

    @abstractmethod
    def append_anomaly(self, finding: AnomalyFinding, detected_at: Optional[datetime] = None) -> None:
        pass

    @abstractmethod
    def append_capacity_prediction(
        self, prediction: CapacityPrediction, predicted_at: Optional[datetime] = None
    ) -> None:
        pass

    @abstractmethod
    def append_disk_prediction(
        self, assessment: DiskRiskAssessment, predicted_at: Optional[datetime] = None
    ) -> None:
        pass

    @abstractmethod
    def upsert_insights(self, insights: Sequence[Insight]) -> int:
        """Insert or replace insights by id, expiring live predecessors on the same subject"""

    @abstractmethod
    def get_insight(self, insight_id: str) -> Optional[Insight]:
        pass

    @abstractmethod
    def list_insights(
        self,
        include_expired: bool = False,
        include_dismissed: bool = False,
        insight_type: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[Insight]:
        pass

    @abstractmethod
    def dismiss_insight(self, insight_id: str) -> bool:
        pass

    @abstractmethod
    def get_anomaly_history(self, since: Optional[datetime] = None, limit: int = 100) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def get_capacity_history(self, resource: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def latest_disk_predictions(self) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def cleanup_expired(self, now: Optional[datetime] = None, history_days: int = 90) -> int:
        pass


class SQLiteInsightsStore(InsightsPersistence):
    """SQLite-backed insights store

    The database path can be configured via the INSIGHTS_DB_PATH environment
    variable. Every call opens its own connection and the history queries are
    scoped by time or id, so other writers may share the database.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = Path(db_path or DEFAULT_INSIGHTS_DB_PATH)
        self._init_db()

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper cleanup"""
        conn = sqlite3.connect(str(self.db_path), timeout=10.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self):
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with self._get_connection() as conn:
                conn.executescript("""
                    CREATE TABLE IF NOT EXISTS ai_insights (
                        id TEXT PRIMARY KEY,
                        type TEXT NOT NULL,
                        title TEXT NOT NULL,
                        summary TEXT NOT NULL,
                        details TEXT NOT NULL,
                        severity TEXT NOT NULL,
                        actionable INTEGER DEFAULT 0,
                        actions TEXT,
                        generated_at TEXT NOT NULL,
                        expires_at TEXT,
                        dismissed INTEGER DEFAULT 0
                    );

                    CREATE TABLE IF NOT EXISTS anomaly_history (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        metric TEXT NOT NULL,
                        dimension TEXT,
                        anomaly_type TEXT NOT NULL,
                        severity TEXT NOT NULL,
                        current_value REAL NOT NULL,
                        expected_value REAL NOT NULL,
                        deviation_percent REAL NOT NULL,
                        description TEXT,
                        recommendation TEXT,
                        detected_at TEXT NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS capacity_predictions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        resource TEXT NOT NULL,
                        current_usage REAL NOT NULL,
                        current_usage_percent REAL NOT NULL,
                        growth_rate REAL NOT NULL,
                        predicted_full_date TEXT,
                        days_until_full INTEGER,
                        confidence REAL NOT NULL,
                        recommendations TEXT NOT NULL DEFAULT '[]',
                        trend_analysis TEXT,
                        predicted_at TEXT NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS disk_predictions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        disk_name TEXT NOT NULL,
                        failure_probability REAL NOT NULL,
                        days_until_failure INTEGER,
                        confidence REAL NOT NULL,
                        contributing_factors TEXT NOT NULL,
                        recommended_action TEXT NOT NULL,
                        prediction_date TEXT NOT NULL
                    );

                    CREATE INDEX IF NOT EXISTS idx_ai_insights_type ON ai_insights(type);
                    CREATE INDEX IF NOT EXISTS idx_ai_insights_expires ON ai_insights(expires_at);
                    CREATE INDEX IF NOT EXISTS idx_anomaly_detected ON anomaly_history(detected_at);
                    CREATE INDEX IF NOT EXISTS idx_capacity_resource ON capacity_predictions(resource);
                    CREATE INDEX IF NOT EXISTS idx_disk_predictions_disk ON disk_predictions(disk_name);
                """)
                conn.commit()
        except (OSError, sqlite3.Error) as e:
            raise PersistenceException("initialization", str(e)) from e

    def _write(self, operation: str, sql: str, params: Sequence[Any]) -> int:
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(sql, params)
                conn.commit()
                return cursor.rowcount
        except sqlite3.Error as e:
            raise PersistenceException(operation, str(e)) from e

    def _read(self, operation: str, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        try:
            with self._get_connection() as conn:
                return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceException(operation, str(e)) from e

    def append_anomaly(self, finding: AnomalyFinding, detected_at: Optional[datetime] = None) -> None:
        self._write("append_anomaly", """
            INSERT INTO anomaly_history
            (metric, dimension, anomaly_type, severity, current_value,
             expected_value, deviation_percent, description, recommendation, detected_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            finding.metric,
            finding.dimension,
            finding.kind,
            finding.severity,
            finding.current_value,
            finding.expected_value,
            finding.deviation_percent,
            finding.description,
            finding.recommendation,
            to_db_timestamp(detected_at or utc_now()),
        ))

    def append_capacity_prediction(
        self, prediction: CapacityPrediction, predicted_at: Optional[datetime] = None
    ) -> None:
        self._write("append_capacity_prediction", """
            INSERT INTO capacity_predictions
            (resource, current_usage, current_usage_percent, growth_rate,
             predicted_full_date, days_until_full, confidence, recommendations,
             trend_analysis, predicted_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            prediction.resource,
            prediction.current_usage,
            prediction.current_usage_percent,
            prediction.growth_rate_per_day,
            to_db_timestamp(prediction.predicted_full_date) if prediction.predicted_full_date else None,
            prediction.days_until_full,
            prediction.confidence,
            json.dumps(prediction.recommendations),
            prediction.trend_analysis,
            to_db_timestamp(predicted_at or utc_now()),
        ))

    def append_disk_prediction(
        self, assessment: DiskRiskAssessment, predicted_at: Optional[datetime] = None
    ) -> None:
        self._write("append_disk_prediction", """
            INSERT INTO disk_predictions
            (disk_name, failure_probability, days_until_failure, confidence,
             contributing_factors, recommended_action, prediction_date)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            assessment.disk_name,
            assessment.failure_probability,
            assessment.days_until_failure,
            assessment.confidence,
            json.dumps(assessment.contributing_factors),
            assessment.recommended_action,
            to_db_timestamp(predicted_at or utc_now()),
        ))
        logger.info(
            f"Stored prediction for {assessment.disk_name}: "
            f"{assessment.failure_probability:.1f}% failure probability"
        )

    def _supersede(self, conn: sqlite3.Connection, insight: Insight) -> bool:
        """Expire live rows that an insight replaces from an earlier id window.

        Returns True when any replaced row had been dismissed.
        """
        generated_at = to_db_timestamp(insight.generated_at)
        key = insight_key(insight.id)
        rows = conn.execute("""
            SELECT id, dismissed FROM ai_insights
            WHERE type = ? AND id != ? AND generated_at <= ?
              AND (expires_at IS NULL OR expires_at > ?)
        """, (insight.type, insight.id, generated_at, generated_at)).fetchall()

        replaced = [row for row in rows if insight_key(row["id"]) == key]
        for row in replaced:
            conn.execute(
                "UPDATE ai_insights SET expires_at = ? WHERE id = ?",
                (generated_at, row["id"]),
            )
        if replaced:
            logger.debug(f"Insight {insight.id} supersedes {[row['id'] for row in replaced]}")
        return any(row["dismissed"] for row in replaced)

    def upsert_insights(self, insights: Sequence[Insight]) -> int:
        """Replace insights by id, keeping a prior dismissal of the same subject.

        A live insight on the same subject from an earlier id window expires
        as soon as its successor is written.
        """
        if not insights:
            return 0

        try:
            with self._get_connection() as conn:
                for insight in insights:
                    dismissed = self._supersede(conn, insight) or insight.dismissed
                    conn.execute("""
                        INSERT INTO ai_insights
                        (id, type, title, summary, details, severity, actionable,
                         actions, generated_at, expires_at, dismissed)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(id) DO UPDATE SET
                            type = excluded.type,
                            title = excluded.title,
                            summary = excluded.summary,
                            details = excluded.details,
                            severity = excluded.severity,
                            actionable = excluded.actionable,
                            actions = excluded.actions,
                            generated_at = excluded.generated_at,
                            expires_at = excluded.expires_at,
                            dismissed = MAX(ai_insights.dismissed, excluded.dismissed)
                    """, (
                        insight.id,
                        insight.type,
                        insight.title,
                        insight.summary,
                        insight.details,
                        insight.severity,
                        1 if insight.actionable else 0,
                        json.dumps(list(insight.actions)),
                        to_db_timestamp(insight.generated_at),
                        to_db_timestamp(insight.expires_at) if insight.expires_at else None,
                        1 if dismissed else 0,
                    ))
                conn.commit()
        except sqlite3.Error as e:
            raise PersistenceException("upsert_insights", str(e)) from e

        logger.debug(f"Upserted {len(insights)} insights")
        return len(insights)

    @staticmethod
    def _row_to_insight(row: sqlite3.Row) -> Insight:
        return Insight(
            id=row["id"],
            type=row["type"],
            title=row["title"],
            summary=row["summary"],
            details=row["details"],
            severity=row["severity"],
            actionable=bool(row["actionable"]),
            actions=json.loads(row["actions"]) if row["actions"] else [],
            generated_at=datetime.fromisoformat(row["generated_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]) if row["expires_at"] else None,
            dismissed=bool(row["dismissed"]),
        )

    def get_insight(self, insight_id: str) -> Optional[Insight]:
        rows = self._read("get_insight", "SELECT * FROM ai_insights WHERE id = ?", (insight_id,))
        return self._row_to_insight(rows[0]) if rows else None

    def list_insights(
        self,
        include_expired: bool = False,
        include_dismissed: bool = False,
        insight_type: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[Insight]:
        query = "SELECT * FROM ai_insights WHERE 1=1"
        params: list = []

        if not include_expired:
            query += " AND (expires_at IS NULL OR expires_at > ?)"
            params.append(to_db_timestamp(now or utc_now()))

        if not include_dismissed:
            query += " AND dismissed = 0"

        if insight_type:
            query += " AND type = ?"
            params.append(insight_type)

        rows = self._read("list_insights", query, params)
        return rank_insights([self._row_to_insight(row) for row in rows])

    def dismiss_insight(self, insight_id: str) -> bool:
        updated = self._write(
            "dismiss_insight",
            "UPDATE ai_insights SET dismissed = 1 WHERE id = ?",
            (insight_id,),
        )
        return updated > 0

    def get_anomaly_history(self, since: Optional[datetime] = None, limit: int = 100) -> List[Dict[str, Any]]:
        query = "SELECT * FROM anomaly_history"
        params: list = []
        if since:
            query += " WHERE detected_at >= ?"
            params.append(to_db_timestamp(since))
        query += " ORDER BY detected_at DESC, id DESC LIMIT ?"
        params.append(limit)
        return [dict(row) for row in self._read("get_anomaly_history", query, params)]

    def get_capacity_history(self, resource: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        query = "SELECT * FROM capacity_predictions"
        params: list = []
        if resource:
            query += " WHERE resource = ?"
            params.append(resource)
        query += " ORDER BY predicted_at DESC, id DESC LIMIT ?"
        params.append(limit)
        predictions = []
        for row in self._read("get_capacity_history", query, params):
            data = dict(row)
            data["recommendations"] = json.loads(data["recommendations"])
            predictions.append(data)
        return predictions

    def latest_disk_predictions(self) -> List[Dict[str, Any]]:
        """Most recent prediction per disk, riskiest first"""
        rows = self._read("latest_disk_predictions", """
            SELECT * FROM disk_predictions
            WHERE id IN (SELECT MAX(id) FROM disk_predictions GROUP BY disk_name)
            ORDER BY failure_probability DESC, disk_name ASC
        """)
        predictions = []
        for row in rows:
            data = dict(row)
            data["contributing_factors"] = json.loads(data["contributing_factors"])
            predictions.append(data)
        return predictions

    def cleanup_expired(self, now: Optional[datetime] = None, history_days: int = 90) -> int:
        """Delete expired insights and history rows older than history_days"""
        now = now or utc_now()
        cutoff = to_db_timestamp(now - timedelta(days=history_days))

        try:
            with self._get_connection() as conn:
                deleted = conn.execute(
                    "DELETE FROM ai_insights WHERE expires_at IS NOT NULL AND expires_at <= ?",
                    (to_db_timestamp(now),),
                ).rowcount
                for table, column in (
                    ("anomaly_history", "detected_at"),
                    ("capacity_predictions", "predicted_at"),
                    ("disk_predictions", "prediction_date"),
                ):
                    deleted += conn.execute(
                        f"DELETE FROM {table} WHERE {column} < ?", (cutoff,)
                    ).rowcount
                conn.commit()
        except sqlite3.Error as e:
            raise PersistenceException("cleanup_expired", str(e)) from e

        logger.info(f"Cleaned up {deleted} expired insight and history rows")
        return deleted
