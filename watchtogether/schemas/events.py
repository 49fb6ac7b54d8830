"""
watchtogether.schemas.events
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 上下行事件模型。

每个事件都是以 ``type`` 为判别字段的封闭变体；``control`` 事件内部再以
``action`` 区分 play / pause / seek / changeVideo。任何不匹配已知结构的
入站消息都会在 ``parse_inbound`` 中被拒绝，不会依赖字段是否"碰巧存在"。

线上字段统一使用 camelCase（``roomCode``、``isPlaying`` …），Python 侧为 snake_case。
"""
from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from watchtogether.core.errors import MalformedEventError
from watchtogether.core.settings import settings

VideoKind = Literal["youtube", "drive", "generic"]
ControlAction = Literal["play", "pause", "seek", "changeVideo"]


class _WireModel(BaseModel):
    """线上模型基类：camelCase 别名，同时允许按字段名构造。"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ── 入站事件 ──────────────────────────────────────────────────────────

class _InboundModel(_WireModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        str_strip_whitespace=True,
        allow_inf_nan=False,
    )


class _RoomScoped(_InboundModel):
    room_code: str = Field(..., min_length=1, max_length=32, description="房间码")

    @field_validator("room_code")
    @classmethod
    def _normalize_code(cls, value: str) -> str:
        return value.upper()


class JoinEvent(_RoomScoped):
    """加入房间。昵称为空时由服务端生成。"""

    type: Literal["join"]
    display_name: str = Field(
        default="", max_length=settings.DISPLAY_NAME_MAX_LENGTH, description="自报昵称",
    )


class LeaveEvent(_InboundModel):
    """主动离开当前房间。携带 ``roomCode`` 时必须与当前所在房间一致。"""

    type: Literal["leave"]
    room_code: str | None = Field(default=None, description="房间码（可省略）")

    @field_validator("room_code")
    @classmethod
    def _normalize_code(cls, value: str | None) -> str | None:
        return value.upper() if value is not None else None


class PlayControl(_RoomScoped):
    type: Literal["control"]
    action: Literal["play"]
    position: float | None = Field(default=None, ge=0, description="播放位置（秒）")


class PauseControl(_RoomScoped):
    type: Literal["control"]
    action: Literal["pause"]
    position: float | None = Field(default=None, ge=0, description="暂停位置（秒）")


class SeekControl(_RoomScoped):
    type: Literal["control"]
    action: Literal["seek"]
    position: float = Field(..., ge=0, description="目标位置（秒）")


class ChangeVideoControl(_RoomScoped):
    type: Literal["control"]
    action: Literal["changeVideo"]
    video_reference: str = Field(..., min_length=1, max_length=2048, description="新视频地址")


ControlEvent = Annotated[
    Union[PlayControl, PauseControl, SeekControl, ChangeVideoControl],
    Field(discriminator="action"),
]


class ChatEvent(_RoomScoped):
    """聊天消息（原样转发，格式化由前端负责）。"""

    type: Literal["chat"]
    message: str = Field(..., min_length=1, max_length=settings.CHAT_MESSAGE_MAX_LENGTH)


InboundEvent = Annotated[
    Union[JoinEvent, LeaveEvent, ControlEvent, ChatEvent],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundEvent] = TypeAdapter(InboundEvent)


def parse_inbound(raw: str | bytes) -> InboundEvent:
    """把一帧原始 JSON 解析为入站事件。

    Raises:
        MalformedEventError: JSON 非法，或不匹配任何已知事件结构。
    """
    try:
        return _inbound_adapter.validate_json(raw)
    except PydanticValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        detail = first.get("msg", "invalid event")
        raise MalformedEventError(f"{location}: {detail}" if location else detail) from e


# ── 下行事件 ──────────────────────────────────────────────────────────

class VideoData(_WireModel):
    """当前加载的视频引用。"""

    source_url: str = Field(..., description="用户提交的原始地址")
    kind: VideoKind = Field(..., description="视频平台类型")
    resolved_id: str = Field(..., description="平台内视频 ID（generic 类型为原地址）")
    embed_url: str = Field(..., description="前端播放器使用的地址")


class MemberData(_WireModel):
    connection_id: str
    display_name: str


class RoomSnapshot(_WireModel):
    """房间完整状态快照，用于新加入连接的初始化。"""

    room_code: str
    video: VideoData
    playback_position: float
    is_playing: bool
    admin_id: str | None
    members: list[MemberData]


class _OutboundModel(_WireModel):
    def to_json(self) -> str:
        """序列化为下行帧文本（camelCase 字段名）。"""
        return self.model_dump_json(by_alias=True)


class StateSnapshotEvent(_OutboundModel):
    type: Literal["stateSnapshot"] = "stateSnapshot"
    connection_id: str
    is_admin: bool
    snapshot: RoomSnapshot


class MembershipChangedEvent(_OutboundModel):
    type: Literal["membershipChanged"] = "membershipChanged"
    members: list[MemberData]
    admin_id: str | None


class PlaybackSyncEvent(_OutboundModel):
    type: Literal["playbackSync"] = "playbackSync"
    action: ControlAction
    position: float
    is_playing: bool
    video: VideoData


class AdminTransferredEvent(_OutboundModel):
    type: Literal["adminTransferred"] = "adminTransferred"
    admin_id: str


class OperationRejectedEvent(_OutboundModel):
    type: Literal["operationRejected"] = "operationRejected"
    reason: str = Field(..., description="notAdmin / invalidVideo / roomNotFound / malformedEvent / rateLimited")
    message: str


class ChatMessageEvent(_OutboundModel):
    type: Literal["chatMessage"] = "chatMessage"
    connection_id: str
    display_name: str
    message: str
    time: str


OutboundEvent = Union[
    StateSnapshotEvent,
    MembershipChangedEvent,
    PlaybackSyncEvent,
    AdminTransferredEvent,
    OperationRejectedEvent,
    ChatMessageEvent,
]
