"""Generation backend interface."""

from abc import ABC, abstractmethod

from jobsync.jobs.models import GenerationOptions


class GenerationBackend(ABC):
    """Starts server-side generation under a client-assigned job id."""

    @abstractmethod
    async def start(self, job_id: str, user_id: str, options: GenerationOptions) -> None:
        """Raise ``BackendError`` if the backend refuses the job."""
        ...
