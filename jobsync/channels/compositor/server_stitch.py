"""Compositor that stitches video scenes server-side (``stitch-videos-server``)."""

from typing import Callable, List, Optional

from jobsync.channels.compositor.base import Compositor, ProgressCallback
from jobsync.db.functions import invoke_function
from jobsync.db.supabase_client import get_supabase
from jobsync.jobs.errors import CompositorError

# Seconds per scene when the caller has no per-scene duration
DEFAULT_SCENE_DURATION = 5


class ServerStitchCompositor(Compositor):

    def __init__(self, user_id: str, client_factory: Callable = get_supabase):
        self._user_id = user_id
        self._client_factory = client_factory

    async def compose(
        self,
        refs: List[str],
        on_progress: ProgressCallback,
        job_id: Optional[str] = None,
    ) -> str:
        scenes = [
            {
                "id": f"scene-{i}",
                "videoUrl": url,
                "prompt": f"Scene {i + 1}",
                "duration": DEFAULT_SCENE_DURATION,
                "trimStart": 0,
                "trimEnd": DEFAULT_SCENE_DURATION,
                "transitionType": "none",
                "transitionDuration": 0.5,
                "order": i,
            }
            for i, url in enumerate(refs)
        ]
        await on_progress(0)
        try:
            data = await invoke_function(
                "stitch-videos-server",
                {"scenes": scenes, "jobId": job_id, "userId": self._user_id},
                self._client_factory,
            )
        except Exception as e:
            raise CompositorError(f"Server stitching failed: {e}") from e

        video_url = data.get("videoUrl")
        if not video_url:
            raise CompositorError("Server stitching returned no video URL")
        await on_progress(100)
        return video_url
