"""Job data model and its mapping to store rows and push messages."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple
from pydantic import BaseModel, Field, field_validator
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    THREE_D = "3d"
    CAD = "cad"


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    UPSCALING = "upscaling"
    ENCODING = "encoding"
    COMPLETED = "completed"
    FAILED = "failed"


COMPOSITING_STAGE = "compositing"

_REFERENCE_PREFIXES = ("http://", "https://")


def is_reference(entry: Any) -> bool:
    """True for a dereferenceable link; inline payloads (``data:...``) are not."""
    return isinstance(entry, str) and entry.lower().startswith(_REFERENCE_PREFIXES)


def filter_references(entries: Optional[Iterable[Any]]) -> Tuple[List[str], int]:
    """Split ``entries`` into valid references and a count of dropped ones."""
    kept: List[str] = []
    dropped = 0
    for entry in entries or []:
        if is_reference(entry):
            kept.append(entry)
        else:
            dropped += 1
    return kept, dropped


class JobProgress(BaseModel):
    """Progress as reported by the backend. Percent may go down between stages."""
    stage: str = JobStatus.QUEUED.value
    percent: int = Field(default=0, ge=0, le=100)
    message: str = ""
    current_step: Optional[int] = None
    total_steps: Optional[int] = None
    eta: Optional[int] = None

    @classmethod
    def from_wire(cls, data: Dict[str, Any], default_stage: Optional[str] = None) -> "JobProgress":
        """Build from the camelCase push payload.

        A payload without ``stage`` takes ``default_stage`` (the message status).
        """
        percent = data.get("progress", data.get("percent", 0)) or 0
        return cls(
            stage=str(data.get("stage") or default_stage or JobStatus.QUEUED.value),
            percent=_clamp_percent(percent),
            message=data.get("message") or "",
            current_step=data.get("currentStep"),
            total_steps=data.get("totalSteps"),
            eta=data.get("eta"),
        )

    def observable(self) -> Tuple[str, int, str]:
        return (self.stage, self.percent, self.message)


def _clamp_percent(value: Any) -> int:
    return max(0, min(100, int(round(float(value)))))


class GenerationOptions(BaseModel):
    """What the user asked to generate."""
    prompt: str
    negative_prompt: Optional[str] = None
    type: JobType
    width: int = Field(default=1024, gt=0)
    height: int = Field(default=1024, gt=0)

    # Video
    duration: Optional[int] = None
    fps: Optional[int] = None
    video_model: Optional[str] = None  # veo, haiper, animatediff, wan
    num_videos: Optional[int] = Field(default=None, ge=1)
    scene_prompts: Optional[List[str]] = None

    # Image
    num_images: Optional[int] = Field(default=None, ge=1)

    # Advanced
    seed: Optional[int] = None
    steps: Optional[int] = None
    cfg_scale: Optional[float] = None

    @field_validator("prompt")
    @classmethod
    def _prompt_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("prompt must not be empty")
        return value


class Job(BaseModel):
    """A tracked unit of asynchronous generation work."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: Optional[str] = None
    type: JobType
    options: Optional[GenerationOptions] = None
    status: JobStatus = JobStatus.QUEUED
    progress: JobProgress = Field(default_factory=JobProgress)
    outputs: List[str] = Field(default_factory=list)
    manifest: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @field_validator("created_at", "started_at", "completed_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def to_row(self) -> Dict[str, Any]:
        """Full row for ``JobStore.insert``."""
        row: Dict[str, Any] = {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type.value,
            "status": self.status.value,
            "outputs": list(self.outputs),
            "manifest": self.manifest,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }
        row.update(_progress_columns(self.progress))
        if self.options is not None:
            opts = self.options
            row.update({
                "prompt": opts.prompt,
                "negative_prompt": opts.negative_prompt,
                "width": opts.width,
                "height": opts.height,
                "duration": opts.duration,
                "fps": opts.fps,
                "seed": opts.seed,
                "steps": opts.steps,
                "cfg_scale": opts.cfg_scale,
                "num_images": opts.num_images,
            })
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Job":
        """Build a Job from a store row. Missing ``outputs`` means not hydrated."""
        outputs, _ = filter_references(row.get("outputs"))
        options = None
        if row.get("prompt"):
            options = GenerationOptions(
                prompt=row["prompt"],
                negative_prompt=row.get("negative_prompt"),
                type=row["type"],
                width=row.get("width") or 1024,
                height=row.get("height") or 1024,
                duration=row.get("duration"),
                fps=row.get("fps"),
                seed=row.get("seed"),
                steps=row.get("steps"),
                cfg_scale=row.get("cfg_scale"),
                num_images=row.get("num_images"),
            )
        return cls(
            id=row["id"],
            user_id=row.get("user_id"),
            type=row["type"],
            options=options,
            status=row["status"],
            progress=_progress_from_columns(row, default_stage=row["status"]),
            outputs=outputs,
            manifest=row.get("manifest"),
            error=row.get("error"),
            created_at=row["created_at"],
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
        )


class JobPatch(BaseModel):
    """Partial update to a Job. Only explicitly set fields are applied."""
    status: Optional[JobStatus] = None
    progress: Optional[JobProgress] = None
    outputs: Optional[List[str]] = None
    manifest: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def changes(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}

    def is_empty(self) -> bool:
        return not self.model_fields_set

    def to_row(self) -> Dict[str, Any]:
        """Store columns for the present fields."""
        row: Dict[str, Any] = {}
        for name, value in self.changes().items():
            if name == "progress":
                row.update(_progress_columns(value))
            elif name == "status":
                row["status"] = value.value
            elif name in ("started_at", "completed_at"):
                row[name] = _iso(value)
            elif name == "outputs":
                row["outputs"] = list(value)
            else:
                row[name] = value
        return row

    @classmethod
    def from_job(cls, job: Job, include_outputs: bool = True) -> "JobPatch":
        """Every mutable field of ``job`` as a patch (used for poll results).

        Pass ``include_outputs=False`` when ``job`` came from a metadata-only
        read, so its empty ``outputs`` is not taken for the real value.
        """
        fields: Dict[str, Any] = {
            "status": job.status,
            "progress": job.progress,
            "manifest": job.manifest,
            "error": job.error,
            "started_at": job.started_at,
            "completed_at": job.completed_at,
        }
        if include_outputs:
            fields["outputs"] = job.outputs
        return cls(**fields)

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "JobPatch":
        """Build from a push ``job.update`` message. Null keys count as absent."""
        fields: Dict[str, Any] = {}
        if message.get("status") is not None:
            fields["status"] = JobStatus(message["status"])
        if isinstance(message.get("progress"), dict):
            fields["progress"] = JobProgress.from_wire(
                message["progress"], default_stage=message.get("status")
            )
        if message.get("outputs") is not None:
            fields["outputs"], _ = filter_references(message["outputs"])
        if message.get("error") is not None:
            fields["error"] = str(message["error"])
        return cls(**fields)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _progress_columns(progress: JobProgress) -> Dict[str, Any]:
    return {
        "progress_stage": progress.stage,
        "progress_percent": progress.percent,
        "current_step": progress.current_step,
        "total_steps": progress.total_steps,
        "eta": progress.eta,
        "progress_message": progress.message,
    }


def _progress_from_columns(row: Dict[str, Any], default_stage: str) -> JobProgress:
    return JobProgress(
        stage=row.get("progress_stage") or default_stage,
        percent=_clamp_percent(row.get("progress_percent") or 0),
        message=row.get("progress_message") or "",
        current_step=row.get("current_step"),
        total_steps=row.get("total_steps"),
        eta=row.get("eta"),
    )
