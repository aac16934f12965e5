"""Telemetry and usage metrics tracking for the imagine bot."""
from __future__ import annotations

import json
import logging
import os
import sqlite3
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class MetricType(Enum):
    """Types of metrics tracked."""
    COMMAND_USAGE = "command_usage"
    ERROR_RATE = "error_rate"
    PERFORMANCE = "performance"
    GENERATION = "generation"
    SYSTEM_EVENT = "system_event"


@dataclass
class MetricEvent:
    """Individual metric event."""
    timestamp: float
    metric_type: MetricType
    name: str
    value: float
    tags: Dict[str, str] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)


class TelemetryCollector:
    """Collects and stores bot telemetry in a small sqlite table."""

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize telemetry collector with database storage."""
        self.db_path = db_path or Path("telemetry.db")
        self._init_database()
        self._start_time = time.time()
        self._metrics_buffer: List[MetricEvent] = []
        self._flush_interval = 60  # Flush to DB every 60 seconds
        self._last_flush = time.time()

    def _init_database(self):
        """Initialize telemetry database schema."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS metrics (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp REAL NOT NULL,
                    metric_type TEXT NOT NULL,
                    name TEXT NOT NULL,
                    value REAL NOT NULL,
                    tags TEXT,
                    metadata TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_metrics_timestamp
                ON metrics(timestamp DESC)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_metrics_type_name
                ON metrics(metric_type, name)
            """)
            conn.commit()

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self._start_time

    def track_command(
        self,
        command_name: str,
        chat_id: str,
        success: bool = True,
        duration_ms: Optional[float] = None,
        outcome: Optional[str] = None,
    ):
        """Track chat command usage."""
        tags = {
            "chat_id": chat_id,
            "success": str(success),
        }
        if outcome:
            tags["outcome"] = outcome

        self.record(
            MetricType.COMMAND_USAGE,
            command_name,
            1.0,
            tags=tags,
            metadata={"duration_ms": duration_ms} if duration_ms else {}
        )

    def track_error(
        self,
        error_type: str,
        command: Optional[str] = None,
        chat_id: Optional[str] = None,
        error_details: Optional[str] = None
    ):
        """Track errors and failures."""
        tags = {}
        if command:
            tags["command"] = command
        if chat_id:
            tags["chat_id"] = chat_id

        self.record(
            MetricType.ERROR_RATE,
            error_type,
            1.0,
            tags=tags,
            metadata={"error_details": error_details} if error_details else {}
        )

    def track_performance(
        self,
        operation: str,
        duration_ms: float,
        tags: Optional[Dict[str, str]] = None,
    ):
        """Track operation latency."""
        self.record(MetricType.PERFORMANCE, operation, duration_ms, tags=tags or {})

    def track_generation(
        self,
        operation: str,
        model: str,
        success: bool,
        duration_ms: float,
        size_bytes: Optional[int] = None,
        error: Optional[str] = None,
    ):
        """Track a single call to the generative image API."""
        metadata: Dict[str, Any] = {"duration_ms": duration_ms}
        if size_bytes is not None:
            metadata["size_bytes"] = size_bytes
        if error:
            metadata["error"] = error
        self.record(
            MetricType.GENERATION,
            operation,
            1.0 if success else 0.0,
            tags={"model": model, "success": str(success)},
            metadata=metadata,
        )

    def track_system_event(self, event: str, details: Optional[Dict[str, Any]] = None):
        """Track lifecycle events such as startup or credential checks."""
        self.record(MetricType.SYSTEM_EVENT, event, 1.0, metadata=details or {})

    def record(
        self,
        metric_type: MetricType,
        name: str,
        value: float,
        tags: Optional[Dict[str, str]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ):
        """Record a metric event."""
        event = MetricEvent(
            timestamp=time.time(),
            metric_type=metric_type,
            name=name,
            value=value,
            tags=tags or {},
            metadata=metadata or {}
        )

        self._metrics_buffer.append(event)

        # Auto-flush if buffer is getting large or enough time has passed
        if len(self._metrics_buffer) >= 100 or \
           time.time() - self._last_flush > self._flush_interval:
            self.flush()

    def flush(self):
        """Flush buffered metrics to database."""
        if not self._metrics_buffer:
            return

        try:
            with sqlite3.connect(self.db_path) as conn:
                for event in self._metrics_buffer:
                    conn.execute("""
                        INSERT INTO metrics
                        (timestamp, metric_type, name, value, tags, metadata)
                        VALUES (?, ?, ?, ?, ?, ?)
                    """, (
                        event.timestamp,
                        event.metric_type.value,
                        event.name,
                        event.value,
                        json.dumps(event.tags),
                        json.dumps(event.metadata)
                    ))
                conn.commit()

            logger.debug("Flushed %d metrics to database", len(self._metrics_buffer))
            self._metrics_buffer.clear()
            self._last_flush = time.time()

        except sqlite3.Error as e:
            logger.error(f"Failed to flush metrics: {e}")

    def get_command_stats(
        self,
        start_time: Optional[float] = None,
        end_time: Optional[float] = None
    ) -> Dict[str, Dict[str, Any]]:
        """Get command usage statistics."""
        self.flush()
        query = """
            SELECT
                name as command,
                COUNT(*) as usage_count,
                AVG(CASE WHEN json_extract(tags, '$.success') = 'True'
                    THEN 1 ELSE 0 END) as success_rate,
                COUNT(DISTINCT json_extract(tags, '$.chat_id')) as unique_chats,
                AVG(json_extract(metadata, '$.duration_ms')) as avg_duration_ms
            FROM metrics
            WHERE metric_type = ?
        """
        params: List[Any] = [MetricType.COMMAND_USAGE.value]

        if start_time:
            query += " AND timestamp >= ?"
            params.append(start_time)
        if end_time:
            query += " AND timestamp <= ?"
            params.append(end_time)

        query += " GROUP BY name"

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(query, params)
            results = {}
            for row in cursor.fetchall():
                results[row[0]] = {
                    "usage_count": row[1],
                    "success_rate": row[2],
                    "unique_chats": row[3],
                    "avg_duration_ms": row[4],
                }
            return results

    def get_error_summary(self, hours: int = 24) -> Dict[str, int]:
        """Count errors by type over the trailing window."""
        self.flush()
        cutoff = time.time() - hours * 3600
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                """
                SELECT name, COUNT(*) FROM metrics
                WHERE metric_type = ? AND timestamp >= ?
                GROUP BY name
                """,
                (MetricType.ERROR_RATE.value, cutoff),
            )
            return {row[0]: row[1] for row in cursor.fetchall()}

    def get_generation_summary(self, hours: int = 24) -> Dict[str, Dict[str, Any]]:
        """Summarise generative API calls per model."""
        self.flush()
        cutoff = time.time() - hours * 3600
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                """
                SELECT
                    json_extract(tags, '$.model') as model,
                    COUNT(*) as calls,
                    SUM(value) as successes,
                    AVG(json_extract(metadata, '$.duration_ms')) as avg_duration_ms
                FROM metrics
                WHERE metric_type = ? AND timestamp >= ?
                GROUP BY model
                """,
                (MetricType.GENERATION.value, cutoff),
            )
            summary = {}
            for model, calls, successes, avg_duration in cursor.fetchall():
                summary[model] = {
                    "calls": calls,
                    "successes": int(successes or 0),
                    "avg_duration_ms": avg_duration,
                }
            return summary

    def generate_report(self) -> Dict[str, Any]:
        """Build a JSON-friendly snapshot for the stats endpoint."""
        return {
            "uptime_seconds": round(self.uptime_seconds, 1),
            "commands": self.get_command_stats(),
            "errors_24h": self.get_error_summary(24),
            "generation_24h": self.get_generation_summary(24),
        }

    def cleanup_old_data(self, days_to_keep: int = 30):
        """Clean up old telemetry data."""
        cutoff_time = time.time() - (days_to_keep * 86400)

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM metrics WHERE timestamp < ?",
                (cutoff_time,)
            )
            deleted = cursor.rowcount
            conn.commit()

        logger.info(f"Cleaned up {deleted} old metric events")
        return deleted


# Singleton instance
_telemetry: Optional[TelemetryCollector] = None


def get_telemetry() -> TelemetryCollector:
    """Get or create singleton telemetry collector."""
    global _telemetry
    if _telemetry is None:
        _telemetry = TelemetryCollector(Path(os.getenv("IMAGINE_TELEMETRY_DB", "telemetry.db")))
    return _telemetry


def set_telemetry(collector: Optional[TelemetryCollector]) -> None:
    """Replace the singleton collector (used at startup and in tests)."""
    global _telemetry
    _telemetry = collector


# Context manager for timing operations
class track_duration:
    """Context manager for tracking operation duration."""

    def __init__(self, operation: str, tags: Optional[Dict[str, str]] = None):
        self.operation = operation
        self.tags = tags or {}
        self.start_time = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = (time.time() - self.start_time) * 1000
        telemetry = get_telemetry()
        telemetry.track_performance(self.operation, duration_ms, self.tags)

        # Track error if exception occurred
        if exc_type:
            telemetry.track_error(
                exc_type.__name__,
                command=self.operation,
                error_details=str(exc_val)
            )


__all__ = [
    "MetricType",
    "MetricEvent",
    "TelemetryCollector",
    "get_telemetry",
    "set_telemetry",
    "track_duration",
]
