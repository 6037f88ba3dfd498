"""Token cost table used to size the ledger debit before a job starts."""

from typing import Dict

from jobsync.jobs.models import GenerationOptions, JobType

IMAGE_TOKENS = 1
THREE_D_TOKENS = 10
CAD_TOKENS = 10

VIDEO_MODEL_TOKENS: Dict[str, int] = {
    "wan": 15,
    "haiper": 30,
    "animatediff": 30,
    "veo": 120,
}
DEFAULT_VIDEO_MODEL = "haiper"

ACTION_TYPES: Dict[JobType, str] = {
    JobType.IMAGE: "image_generation",
    JobType.VIDEO: "video_generation",
    JobType.THREE_D: "3d_generation",
    JobType.CAD: "cad_generation",
}


def action_type(options: GenerationOptions) -> str:
    return ACTION_TYPES[options.type]


def quantity(options: GenerationOptions) -> int:
    """Number of billable units: images, videos, or scenes of a multi-part video."""
    if options.type == JobType.IMAGE:
        return options.num_images or 1
    if options.type == JobType.VIDEO:
        if options.scene_prompts:
            return len(options.scene_prompts)
        return options.num_videos or 1
    return 1


def estimate_cost(options: GenerationOptions) -> int:
    if options.type == JobType.IMAGE:
        unit = IMAGE_TOKENS
    elif options.type == JobType.VIDEO:
        model = (options.video_model or DEFAULT_VIDEO_MODEL).lower()
        if model not in VIDEO_MODEL_TOKENS:
            raise ValueError(f"Unknown video model '{options.video_model}'")
        unit = VIDEO_MODEL_TOKENS[model]
    elif options.type == JobType.THREE_D:
        unit = THREE_D_TOKENS
    else:
        unit = CAD_TOKENS
    return unit * quantity(options)
