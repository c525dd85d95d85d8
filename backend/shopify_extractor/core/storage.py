from __future__ import annotations

import asyncio
import datetime as dt
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from shopify_extractor.core.errors import ExtractionCancelled, ExtractionConflictError
from shopify_extractor.core.models import (
    ExtractionKind,
    ExtractionRecord,
    ExtractionStatus,
    ExtractionStatusResponse,
    LogsResponse,
    settings,
)

logger = logging.getLogger(__name__)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class ExtractionRegistry:
    """Extraction sessions keyed by run id. Only one session may be non-terminal at a time."""

    def __init__(self, runs_dir: Optional[Path] = None, data_dir: Optional[Path] = None) -> None:
        self.runs_dir = Path(runs_dir or settings.runs_dir)
        self.data_dir = Path(data_dir or settings.DATA_DIR)
        self._runs: Dict[str, ExtractionRecord] = {}
        self._logs: Dict[str, List[str]] = {}
        self._latest: Optional[str] = None
        self._lock = asyncio.Lock()

    def new_run_id(self) -> str:
        return uuid.uuid4().hex

    async def create_run(
        self,
        resource: str,
        kind: ExtractionKind = ExtractionKind.resource,
        query: Optional[str] = None,
        label: Optional[str] = None,
    ) -> ExtractionRecord:
        async with self._lock:
            for record in self._runs.values():
                if not record.status.is_terminal:
                    raise ExtractionConflictError(record.run_id)
            run_id = self.new_run_id()
            run_path = self.runs_dir / run_id
            run_path.mkdir(parents=True, exist_ok=True)
            record = ExtractionRecord(
                runId=run_id,
                kind=kind,
                resource=resource,
                status=ExtractionStatus.initializing,
                query=query,
                logs_path=run_path / "logs.txt",
            )
            self._runs[run_id] = record
            self._logs[run_id] = []
            self._latest = run_id
        prefix = "Starting dependent extraction for" if kind == ExtractionKind.dependent else "Starting extraction for"
        await self.append_log(run_id, f"{prefix} {label or resource}")
        return record

    async def append_log(self, run_id: str, message: str) -> None:
        async with self._lock:
            lines = self._logs.setdefault(run_id, [])
            line = f"[{_utcnow().isoformat()}] {message}"
            lines.append(line)
            record = self._runs.get(run_id)
            if record and record.logs_path:
                record.logs_path.parent.mkdir(parents=True, exist_ok=True)
                with record.logs_path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")

    async def update_status(
        self,
        run_id: str,
        *,
        status: Optional[ExtractionStatus] = None,
        progress: Optional[int] = None,
        records_processed: Optional[int] = None,
        total_records: Optional[int] = None,
        query: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Optional[ExtractionRecord]:
        async with self._lock:
            record = self._runs.get(run_id)
            if not record:
                return None
            if status:
                record.status = status
                if status.is_terminal:
                    record.finished_at = _utcnow()
            if progress is not None:
                # progress only moves forward within a run
                record.progress = max(record.progress, min(max(int(progress), 0), 100))
            if records_processed is not None:
                record.records_processed = records_processed
            if total_records is not None:
                record.total_records = total_records
            if query is not None:
                record.query = query
            if error:
                record.error = error
            return record

    async def get_record(self, run_id: str) -> Optional[ExtractionRecord]:
        async with self._lock:
            return self._runs.get(run_id)

    async def latest_run_id(self) -> Optional[str]:
        async with self._lock:
            return self._latest

    async def active_run(self) -> Optional[ExtractionRecord]:
        async with self._lock:
            for record in self._runs.values():
                if not record.status.is_terminal:
                    return record
            return None

    async def get_status(self, run_id: str) -> Optional[ExtractionStatusResponse]:
        async with self._lock:
            record = self._runs.get(run_id)
            if not record:
                return None
            lines = self._logs.get(run_id) or []
            return ExtractionStatusResponse(
                runId=record.run_id,
                resource=record.resource,
                status=record.status,
                progress=record.progress,
                recordsProcessed=record.records_processed,
                totalRecords=record.total_records,
                log=lines[-1] if lines else None,
                error=record.error,
                data=record.data if record.status == ExtractionStatus.completed else None,
                startedAt=record.started_at,
                finishedAt=record.finished_at,
            )

    async def get_logs(self, run_id: str, cursor: int = 0) -> Optional[LogsResponse]:
        async with self._lock:
            if run_id not in self._logs:
                return None
            lines = self._logs[run_id]
            subset = lines[cursor:]
            return LogsResponse(lines=subset, next_cursor=cursor + len(subset))

    async def save_results(self, run_id: str, resource: str, data: Any) -> Optional[Path]:
        async with self._lock:
            record = self._runs.get(run_id)
            if not record:
                return None
            # only the newest result set stays in memory, older runs read theirs back from disk
            for other in self._runs.values():
                if other is not record:
                    other.data = None
            record.data = data
            path = self.data_dir / f"{resource}_{_utcnow().date().isoformat()}.json"
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(data, indent=2), encoding="utf-8")
            record.result_path = path
            return path

    async def load_results(self, run_id: str) -> Any:
        async with self._lock:
            record = self._runs.get(run_id)
            if not record:
                return None
            if record.data is not None:
                return record.data
            if record.result_path and record.result_path.exists():
                return json.loads(record.result_path.read_text(encoding="utf-8"))
            return None

    async def request_cancel(self, run_id: str) -> bool:
        async with self._lock:
            record = self._runs.get(run_id)
            if not record or record.status.is_terminal:
                return False
            record.cancel_requested = True
            return True

    async def is_cancelled(self, run_id: str) -> bool:
        async with self._lock:
            record = self._runs.get(run_id)
            return bool(record and record.cancel_requested)


class ExtractionTracker:
    """Progress handle for one session, handed to the fetcher and the executor."""

    def __init__(self, registry: ExtractionRegistry, run_id: str) -> None:
        self.registry = registry
        self.run_id = run_id

    async def log(self, message: str) -> None:
        logger.debug("[%s] %s", self.run_id, message)
        await self.registry.append_log(self.run_id, message)

    async def set_status(self, status: ExtractionStatus, **fields: Any) -> None:
        await self.registry.update_status(self.run_id, status=status, **fields)

    async def set_progress(
        self,
        progress: int,
        records_processed: Optional[int] = None,
        total_records: Optional[int] = None,
    ) -> None:
        await self.registry.update_status(
            self.run_id,
            progress=progress,
            records_processed=records_processed,
            total_records=total_records,
        )

    async def raise_if_cancelled(self) -> None:
        if await self.registry.is_cancelled(self.run_id):
            raise ExtractionCancelled(self.run_id)
