"""
watchtogether.schemas.rooms
~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间相关的 REST 请求/响应模型。
"""
from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from watchtogether.schemas.events import VideoData


class CreateRoomRequest(BaseModel):
    """创建房间请求体。兼容旧前端提交的 ``videoURL`` 字段名。"""

    video_url: str = Field(
        ...,
        min_length=1,
        max_length=2048,
        validation_alias=AliasChoices("videoUrl", "videoURL", "video_url"),
        description="YouTube / Google Drive / 直链视频地址",
    )


class CreateRoomData(BaseModel):
    """创建房间响应数据。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    room_code: str = Field(..., description="房间码")
    share_link: str = Field(..., description="房间分享链接")
    video: VideoData = Field(..., description="解析后的视频引用")


class RoomInfoData(BaseModel):
    """房间摘要信息。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    room_code: str = Field(..., description="房间码")
    member_count: int = Field(..., description="当前成员数")
    admin_id: str | None = Field(..., description="当前管理员连接 ID")
    is_playing: bool = Field(..., description="是否正在播放")
    video: VideoData = Field(..., description="当前视频")
