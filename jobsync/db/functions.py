"""Helpers for invoking Supabase edge functions from async code."""

import asyncio
import json
from typing import Any, Callable, Dict

from jobsync.db.supabase_client import get_supabase


def _decode(payload: Any) -> Dict[str, Any]:
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8")
    if isinstance(payload, str):
        return json.loads(payload) if payload else {}
    return payload or {}


async def invoke_function(
    name: str, body: Dict[str, Any], client_factory: Callable = get_supabase
) -> Dict[str, Any]:
    """Invoke edge function ``name`` in a thread executor and decode its JSON reply."""
    loop = asyncio.get_running_loop()
    raw = await loop.run_in_executor(
        None,
        lambda: client_factory().functions.invoke(name, invoke_options={"body": body}),
    )
    data = _decode(raw)
    if isinstance(data, dict) and data.get("error"):
        raise RuntimeError(str(data["error"]))
    return data
