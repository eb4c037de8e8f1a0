from enum import Enum
from dataclasses import dataclass, field
from pathlib import Path
import uuid
from typing import Optional, List


class JobState(str, Enum):
    CREATED             = "created"
    FETCHING            = "fetching"
    TRANSCODING         = "transcoding"
    COMPLETED           = "completed"
    PARTIALLY_COMPLETED = "partially_completed"
    FAILED              = "failed"
    UPLOADING           = "uploading"
    UPLOADED            = "uploaded"
    UPLOAD_FAILED       = "upload_failed"
    CLEANED             = "cleaned"


class Trigger(str, Enum):
    """The three ways a transcode can end."""
    COMPLETED    = "completed"
    WORKER_ERROR = "worker_error"
    FORCED       = "forced"


class TerminationReason(str, Enum):
    DEADLINE       = "deadline"
    STALLED        = "stalled"
    TARGET_REACHED = "target_reached"


class WorkerEventKind(str, Enum):
    START    = "start"
    PROGRESS = "progress"
    ERROR    = "error"
    END      = "end"


@dataclass
class WorkerEvent:
    kind: WorkerEventKind
    timemark: Optional[str]              = None
    command_line: Optional[str]          = None
    error: Optional[BaseException]       = None


@dataclass
class Job:
    source_url: str
    start_offset: int
    end_offset: int
    artifact_path: Optional[Path]        = None
    id: str                              = field(default_factory=lambda: uuid.uuid4().hex)
    state: JobState                      = JobState.CREATED
    history: List[JobState]              = field(default_factory=lambda: [JobState.CREATED])
    title: Optional[str]                 = None
    termination_reason: Optional[TerminationReason] = None
    error: Optional[str]                 = None

    @property
    def duration(self) -> int:
        return self.end_offset - self.start_offset
