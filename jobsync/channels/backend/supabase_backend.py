"""Starts generation through the ``generate-<type>`` edge functions."""

import logging
from typing import Any, Callable, Dict

from jobsync.channels.backend.base import GenerationBackend
from jobsync.db.functions import invoke_function
from jobsync.db.supabase_client import get_supabase
from jobsync.jobs.errors import BackendError
from jobsync.jobs.models import GenerationOptions, JobType

logger = logging.getLogger(__name__)

FUNCTION_NAMES = {
    JobType.IMAGE: "generate-image",
    JobType.VIDEO: "generate-video",
    JobType.THREE_D: "generate-3d",
    JobType.CAD: "generate-cad",
}


def build_request(job_id: str, user_id: str, options: GenerationOptions) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "jobId": job_id,
        "userId": user_id,
        "prompt": options.prompt,
        "negativePrompt": options.negative_prompt,
        "width": options.width,
        "height": options.height,
        "numImages": options.num_images,
        "duration": options.duration,
        "fps": options.fps,
        "videoModel": options.video_model,
        "numVideos": options.num_videos,
        "scenePrompts": options.scene_prompts,
        "seed": options.seed,
        "steps": options.steps,
        "cfgScale": options.cfg_scale,
    }
    return {k: v for k, v in body.items() if v is not None}


class SupabaseGenerationBackend(GenerationBackend):

    def __init__(self, client_factory: Callable = get_supabase):
        self._client_factory = client_factory

    async def start(self, job_id: str, user_id: str, options: GenerationOptions) -> None:
        name = FUNCTION_NAMES[options.type]
        try:
            await invoke_function(
                name, build_request(job_id, user_id, options), self._client_factory
            )
        except Exception as e:
            raise BackendError(f"{name} failed for job {job_id}: {e}") from e
        logger.info(f"Started {options.type.value} generation for job {job_id}")
