"""
app.schemas
~~~~~~~~~~~
Pydantic schemas and models for the API.
"""
from app.schemas.api_response import ApiResponse
from app.schemas.room_api import (
    AssistantReplyData,
    AssistantReplyRequest,
    RoomStateData,
)
from app.schemas.room_events import (
    ChatMessage,
    Instruction,
    Occupant,
    PendingRequest,
    Role,
    RoomSnapshot,
)

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
