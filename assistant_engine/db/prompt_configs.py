"""Stored system-instruction overrides per capability (rag_prompt_configs)."""

from assistant_engine.core.logging import get_logger
from assistant_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)


def get_active_instructions(capability: str) -> str | None:
    """Active override for a capability, or None to use the built-in block."""
    supabase = get_supabase()
    response = (
        supabase.table("rag_prompt_configs")
        .select("system_instructions")
        .eq("capability", capability)
        .eq("is_active", True)
        .order("updated_at", desc=True)
        .limit(1)
        .execute()
    )
    if not response.data:
        return None
    return response.data[0].get("system_instructions") or None
