"""
watchparty.schemas
~~~~~~~~~~~~~~~~~~
Pydantic schemas for the HTTP API and the WebSocket event protocol.
"""
from watchparty.schemas.api_response import ApiResponse
from watchparty.schemas.events import (
    ChatMessageData,
    MemberData,
    RoomInfoData,
    RoomSummaryData,
    VideoState,
)

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
