"""Chat messaging collaborator (Supabase chat RPCs and profiles)."""

from typing import Any, Optional

from libs.common.datetime_utils import utc_now_iso
from libs.common.service_client import (
    supabase_request,
    supabase_rpc,
    supabase_select_one,
)


class ChatMessenger:
    """Posts system messages into direct chat rooms."""

    async def get_or_create_direct_room(self, user1_id: str, user2_id: str) -> str:
        result = await supabase_rpc(
            "get_or_create_direct_room",
            {"user1_id": user1_id, "user2_id": user2_id},
        )
        room_id = _first_scalar(result)
        if not room_id:
            raise LookupError(
                f"Unable to resolve chat room for {user1_id} and {user2_id}"
            )
        return str(room_id)

    async def send_system_message(
        self, room_id: str, content: str, metadata: dict
    ) -> None:
        await supabase_rpc(
            "insert_system_chat_message",
            {
                "p_room_id": room_id,
                "p_content": content,
                "p_message_type": "text",
                "p_system_metadata": {**metadata, "is_system": True},
            },
        )
        # Bump the room so it sorts to the top of the chat list
        await supabase_request(
            method="PATCH",
            path="/chat_rooms",
            params={"id": f"eq.{room_id}"},
            json={"updated_at": utc_now_iso()},
        )

    async def get_display_name(self, user_id: str, fallback: str) -> str:
        profile = await supabase_select_one(
            "profiles",
            filters={"user_id": user_id},
            columns="first_name,display_name",
        )
        if not profile:
            return fallback
        return profile.get("display_name") or profile.get("first_name") or fallback


def _first_scalar(value: Any) -> Optional[Any]:
    if isinstance(value, list):
        return value[0] if value else None
    return value


def get_messenger() -> ChatMessenger:
    """FastAPI dependency; overridden in tests."""
    return ChatMessenger()
