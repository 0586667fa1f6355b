"""
Ingest run tracking for the roadgrid routing substrate.

Each region ingest is recorded in INGEST_RUNS with its status, the phase it
reached and per-phase record counts, so a failed run can be diagnosed and
simply re-run.
"""

import json
import uuid
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, asdict, field
from datetime import datetime
from enum import Enum

from ..common import get_logger, get_core_connection, SnowflakeConnection

logger = get_logger("state.state_store")


class ProcessingStatus(Enum):
    """Processing status enumeration."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class IngestRun:
    """State of one region ingest."""

    run_id: str
    region_id: str
    status: ProcessingStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    current_phase: Optional[str] = None
    phase_counts: Dict[str, int] = field(default_factory=dict)
    error_message: Optional[str] = None

    def start_phase(self, phase: str) -> None:
        self.status = ProcessingStatus.RUNNING
        self.current_phase = phase

    def finish_phase(self, phase: str, records: int) -> None:
        self.phase_counts[phase] = records

    def complete(self) -> None:
        self.status = ProcessingStatus.COMPLETED
        self.current_phase = None
        self.completed_at = datetime.utcnow()

    def fail(self, error: BaseException) -> None:
        self.status = ProcessingStatus.FAILED
        self.error_message = f"{type(error).__name__}: {error}"
        self.completed_at = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        result = asdict(self)
        result["status"] = self.status.value
        result["started_at"] = self.started_at.isoformat()
        if self.completed_at:
            result["completed_at"] = self.completed_at.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IngestRun":
        """Create from dictionary."""
        data = data.copy()
        data["status"] = ProcessingStatus(data["status"])
        data["started_at"] = datetime.fromisoformat(data["started_at"])
        if data.get("completed_at"):
            data["completed_at"] = datetime.fromisoformat(data["completed_at"])
        return cls(**data)


def _as_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class StateStore:
    """Persists ingest runs in Snowflake."""

    def __init__(self, connection: Optional[SnowflakeConnection] = None):
        """
        Args:
            connection: Connection to use (defaults to the core schema)
        """
        self.connection = connection or get_core_connection()
        self.logger = logger
        self.runs_table = "INGEST_RUNS"

    def save_run(self, run: IngestRun) -> bool:
        """
        Upsert an ingest run.

        Returns:
            True if successful; failures are logged, never raised
        """
        try:
            merge_sql = f"""
            MERGE INTO {self.runs_table} AS target
            USING (
                SELECT
                    %(run_id)s as run_id,
                    %(region_id)s as region_id,
                    %(status)s as status,
                    %(current_phase)s as current_phase,
                    PARSE_JSON(%(phase_counts)s) as phase_counts,
                    %(error_message)s as error_message,
                    %(started_at)s as started_at,
                    %(completed_at)s as completed_at
            ) AS source
            ON target.run_id = source.run_id
            WHEN MATCHED THEN UPDATE SET
                status = source.status,
                current_phase = source.current_phase,
                phase_counts = source.phase_counts,
                error_message = source.error_message,
                completed_at = source.completed_at,
                updated_at = CURRENT_TIMESTAMP()
            WHEN NOT MATCHED THEN INSERT (
                run_id, region_id, status, current_phase, phase_counts,
                error_message, started_at, completed_at
            ) VALUES (
                source.run_id, source.region_id, source.status, source.current_phase,
                source.phase_counts, source.error_message, source.started_at,
                source.completed_at
            )
            """

            params = {
                "run_id": run.run_id,
                "region_id": run.region_id,
                "status": run.status.value,
                "current_phase": run.current_phase,
                "phase_counts": json.dumps(run.phase_counts),
                "error_message": run.error_message,
                "started_at": run.started_at.isoformat(),
                "completed_at": run.completed_at.isoformat() if run.completed_at else None,
            }

            self.connection.execute_query(merge_sql, params)
            self.logger.debug(f"Saved ingest run {run.run_id}")
            return True

        except Exception as e:
            self.logger.error(f"Failed to save ingest run {run.run_id}: {e}")
            return False

    def _row_to_run(self, row: Dict[str, Any]) -> IngestRun:
        counts = row.get("PHASE_COUNTS") or {}
        if isinstance(counts, str):
            counts = json.loads(counts)
        return IngestRun(
            run_id=row["RUN_ID"],
            region_id=row["REGION_ID"],
            status=ProcessingStatus(row["STATUS"]),
            started_at=_as_datetime(row["STARTED_AT"]),
            completed_at=_as_datetime(row.get("COMPLETED_AT")),
            current_phase=row.get("CURRENT_PHASE"),
            phase_counts=counts,
            error_message=row.get("ERROR_MESSAGE"),
        )

    def get_run(self, run_id: str) -> Optional[IngestRun]:
        """
        Get an ingest run by id.

        Returns:
            IngestRun or None if not found or unreadable
        """
        try:
            results = self.connection.execute_query(
                f"""
                SELECT run_id, region_id, status, current_phase, phase_counts,
                       error_message, started_at, completed_at
                FROM {self.runs_table}
                WHERE run_id = %(run_id)s
                """,
                {"run_id": run_id},
                fetch=True,
            )
            if not results:
                return None
            return self._row_to_run(results[0])

        except Exception as e:
            self.logger.error(f"Failed to get ingest run {run_id}: {e}")
            return None

    def recent_runs(self, region_id: str, limit: int = 10) -> List[IngestRun]:
        """Most recent runs for a region, newest first."""
        try:
            results = self.connection.execute_query(
                f"""
                SELECT run_id, region_id, status, current_phase, phase_counts,
                       error_message, started_at, completed_at
                FROM {self.runs_table}
                WHERE region_id = %(region_id)s
                ORDER BY started_at DESC
                LIMIT %(limit)s
                """,
                {"region_id": region_id, "limit": limit},
                fetch=True,
            )
            return [self._row_to_run(row) for row in results or []]

        except Exception as e:
            self.logger.error(f"Failed to list ingest runs for {region_id}: {e}")
            return []


# Convenience functions
def get_state_store() -> StateStore:
    """Get state store instance."""
    return StateStore()


def create_ingest_run(region_id: str) -> IngestRun:
    """Create a new pending ingest run."""
    return IngestRun(
        run_id=f"ingest_{region_id}_{datetime.utcnow().strftime('%Y%m%dT%H%M%S')}_{uuid.uuid4().hex[:8]}",
        region_id=region_id,
        status=ProcessingStatus.PENDING,
        started_at=datetime.utcnow(),
    )
