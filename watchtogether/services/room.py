"""
watchtogether.services.room
~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间领域模型 —— 一个一起看视频会话的权威状态。

``Room`` 只保存状态，不包含业务规则：成员变更由 ``MembershipManager`` 负责，
播放状态变更由 ``ControlProtocolHandler`` 负责。
"""
from __future__ import annotations

import time
from dataclasses import dataclass

from watchtogether.schemas.events import MemberData, RoomSnapshot
from watchtogether.services.video import VideoRef


@dataclass(frozen=True)
class Member:
    """房间成员。以 ``connection_id`` 唯一标识，昵称不参与去重。"""

    connection_id: str
    display_name: str

    def to_data(self) -> MemberData:
        return MemberData(connection_id=self.connection_id, display_name=self.display_name)


class Room:
    """一个房间的权威状态。

    Attributes:
        code: 房间码，创建后不可变。
        video: 当前加载的视频。
        playback_position: 最近一次确认的播放位置（秒），始终 ``>= 0``。
        is_playing: 是否处于播放状态。
        admin_id: 持有控制权的连接 ID；房间无人时为 ``None``。
        members: 成员列表，按加入顺序排列（故障转移按此顺序选择继任者）。
        created_at: 创建时间（单调时钟）。
        last_membership_change: 最近一次成员变更时间（单调时钟），空闲清理据此判断。
    """

    def __init__(self, code: str, video: VideoRef, now: float | None = None) -> None:
        created = time.monotonic() if now is None else now
        self.code: str = code
        self.video: VideoRef = video
        self.playback_position: float = 0.0
        self.is_playing: bool = False
        self.admin_id: str | None = None
        self.members: list[Member] = []
        self.created_at: float = created
        self.last_membership_change: float = created

    @property
    def member_count(self) -> int:
        """当前成员数。"""
        return len(self.members)

    @property
    def is_empty(self) -> bool:
        return not self.members

    def has_member(self, connection_id: str) -> bool:
        return any(m.connection_id == connection_id for m in self.members)

    def get_member(self, connection_id: str) -> Member | None:
        for member in self.members:
            if member.connection_id == connection_id:
                return member
        return None

    def member_data(self) -> list[MemberData]:
        return [m.to_data() for m in self.members]

    def snapshot(self) -> RoomSnapshot:
        """返回完整状态快照（视频、进度、播放状态、管理员、成员列表）。"""
        return RoomSnapshot(
            room_code=self.code,
            video=self.video.to_data(),
            playback_position=self.playback_position,
            is_playing=self.is_playing,
            admin_id=self.admin_id,
            members=self.member_data(),
        )

    def __repr__(self) -> str:
        return (
            f"Room(code={self.code!r}, members={self.member_count}, "
            f"admin={self.admin_id!r}, playing={self.is_playing})"
        )
