"""
watchtogether.schemas
~~~~~~~~~~~~~~~~~~~~~
REST 与 WebSocket 的 Pydantic 模型。
"""
from watchtogether.schemas.api_response import ApiResponse
from watchtogether.schemas.rooms import CreateRoomData, CreateRoomRequest, RoomInfoData

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()

__all__ = ["ApiResponse", "CreateRoomData", "CreateRoomRequest", "RoomInfoData"]
