"""Engine configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_anon_key: str = ""
    jobs_table: str = "jobs"

    # Owning principal for this engine instance
    owner_id: str = ""

    # Push channel ("websocket" or "queue" for in-process delivery)
    push_mode: str = "websocket"
    push_ws_url: Optional[str] = None
    push_max_reconnect_attempts: int = 5
    push_reconnect_delay_seconds: float = 2.0

    # Poll scheduler
    poll_base_interval_seconds: float = 2.0
    poll_max_interval_seconds: float = 30.0
    poll_backoff_step_seconds: float = 30.0

    # Timeout sentinel
    timeout_scan_interval_seconds: float = 30.0
    job_timeout_minutes: int = 15
    video_job_timeout_minutes: int = 30

    # Bulk loader
    page_size: int = 20
    hydrate_batch_size: int = 10
    load_max_retries: int = 3
    load_retry_base_seconds: float = 2.0
    recent_job_window_seconds: float = 5.0

    # Compositor retry
    compositor_max_retries: int = 3
    compositor_initial_delay_seconds: float = 1.0
    compositor_max_delay_seconds: float = 10.0
    compositor_backoff_multiplier: float = 2.0

    # Local control API
    api_port: int = 8002
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
