"""
Generation progress tracking
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from .models import utc_now


class GenerationStage(Enum):
    """Report generation state machine"""
    PENDING = "pending"
    INITIALIZING = "initializing"
    FETCHING_DATA = "fetching_data"
    PROCESSING_SECTIONS = "processing_sections"
    GENERATING_EXPORT = "generating_export"
    SAVING = "saving"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (GenerationStage.COMPLETED, GenerationStage.FAILED)


_PIPELINE = [
    GenerationStage.PENDING,
    GenerationStage.INITIALIZING,
    GenerationStage.FETCHING_DATA,
    GenerationStage.PROCESSING_SECTIONS,
    GenerationStage.GENERATING_EXPORT,
    GenerationStage.SAVING,
    GenerationStage.COMPLETED,
]

ALLOWED_TRANSITIONS: Dict[GenerationStage, Tuple[GenerationStage, ...]] = {
    stage: (stage, _PIPELINE[i + 1], GenerationStage.FAILED)
    for i, stage in enumerate(_PIPELINE[:-1])
}
ALLOWED_TRANSITIONS[GenerationStage.COMPLETED] = ()
ALLOWED_TRANSITIONS[GenerationStage.FAILED] = ()


@dataclass
class GenerationProgress:
    report_id: str
    status: GenerationStage = GenerationStage.PENDING
    progress: int = 0
    message: str = "Queued"
    current_section: Optional[str] = None
    error: Optional[str] = None
    started_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "report_id": self.report_id,
            "status": self.status.value,
            "progress": self.progress,
            "message": self.message,
            "current_section": self.current_section,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class ProgressStore(ABC):
    """Short-lived progress records keyed by report id"""

    @abstractmethod
    def set(self, progress: GenerationProgress) -> None:
        ...

    @abstractmethod
    def get(self, report_id: str) -> Optional[GenerationProgress]:
        ...

    @abstractmethod
    def delete(self, report_id: str) -> None:
        ...

    @abstractmethod
    def purge_expired(self) -> int:
        ...


class InMemoryProgressStore(ProgressStore):
    """
    Progress map with time-to-live after a terminal state.

    Entries for running generations never expire; once an entry reaches
    completed or failed it is kept for ttl_seconds and then dropped.
    """

    def __init__(self, ttl_seconds: float = 3600.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[str, Tuple[GenerationProgress, Optional[float]]] = {}

    def set(self, progress: GenerationProgress) -> None:
        expires_at = self.clock() + self.ttl_seconds if progress.status.is_terminal else None
        self._entries[progress.report_id] = (progress, expires_at)

    def get(self, report_id: str) -> Optional[GenerationProgress]:
        self.purge_expired()
        entry = self._entries.get(report_id)
        return entry[0] if entry else None

    def delete(self, report_id: str) -> None:
        self._entries.pop(report_id, None)

    def purge_expired(self) -> int:
        now = self.clock()
        expired = [
            report_id for report_id, (_, expires_at) in self._entries.items()
            if expires_at is not None and expires_at <= now
        ]
        for report_id in expired:
            del self._entries[report_id]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class ProgressTracker:
    """Advances one report through the stage machine"""

    def __init__(self, store: ProgressStore, report_id: str):
        self.store = store
        self.progress = GenerationProgress(report_id=report_id)
        self.store.set(self.progress)

    @property
    def stage(self) -> GenerationStage:
        return self.progress.status

    def advance(
        self,
        stage: GenerationStage,
        percent: int,
        message: str,
        current_section: Optional[str] = None,
    ) -> GenerationProgress:
        if stage not in ALLOWED_TRANSITIONS[self.progress.status]:
            raise ValueError(
                f"Invalid progress transition {self.progress.status.value} -> {stage.value}"
            )
        self.progress.status = stage
        self.progress.progress = max(self.progress.progress, min(percent, 100))
        self.progress.message = message
        self.progress.current_section = current_section
        self.progress.updated_at = utc_now()
        self.store.set(self.progress)
        return self.progress

    def fail(self, error: str) -> GenerationProgress:
        if self.progress.status.is_terminal:
            return self.progress
        self.progress.status = GenerationStage.FAILED
        self.progress.message = "Report generation failed"
        self.progress.error = error
        self.progress.current_section = None
        self.progress.updated_at = utc_now()
        self.store.set(self.progress)
        return self.progress
