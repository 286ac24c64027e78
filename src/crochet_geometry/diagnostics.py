"""Append-only diagnostics log injected into a generate pass."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _jsonable(value: Any) -> Any:
    if hasattr(value, "tolist"):
        return value.tolist()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


@dataclass
class DiagnosticRecord:
    seq: int
    stage: str
    code: str
    message: str
    object_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp_utc: str = field(default_factory=_utc_now_iso)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "stage": self.stage,
            "code": self.code,
            "message": self.message,
            "object_id": self.object_id,
            "payload": _jsonable(self.payload),
            "timestamp_utc": self.timestamp_utc,
        }


class DiagnosticsLog:
    """Collects skipped-geometry and fallback notices for one pass."""

    def __init__(self) -> None:
        self._records: List[DiagnosticRecord] = []

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[DiagnosticRecord]:
        return iter(list(self._records))

    @property
    def records(self) -> List[DiagnosticRecord]:
        return list(self._records)

    def record(
        self,
        stage: str,
        code: str,
        message: str,
        *,
        object_id: Optional[str] = None,
        **payload: Any,
    ) -> DiagnosticRecord:
        entry = DiagnosticRecord(
            seq=len(self._records) + 1,
            stage=stage,
            code=code,
            message=message,
            object_id=object_id,
            payload=dict(payload),
        )
        self._records.append(entry)
        logger.debug("[%s] %s %s: %s", stage, code, object_id or "-", message)
        return entry

    def by_stage(self, stage: str) -> List[DiagnosticRecord]:
        return [r for r in self._records if r.stage == stage]

    def codes(self) -> List[str]:
        return [r.code for r in self._records]

    def to_payload(self) -> List[Dict[str, Any]]:
        return [r.to_payload() for r in self._records]

    def write_jsonl(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as handle:
            for entry in self._records:
                handle.write(json.dumps(entry.to_payload(), sort_keys=True) + "\n")
        return path


def record(
    diagnostics: Optional[DiagnosticsLog],
    stage: str,
    code: str,
    message: str,
    **kwargs: Any,
) -> None:
    """Record into ``diagnostics`` when a sink was supplied."""
    if diagnostics is not None:
        diagnostics.record(stage, code, message, **kwargs)
