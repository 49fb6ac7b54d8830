"""
watchtogether.services.membership
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

成员管理 —— 加入 / 离开房间，以及管理员权限的分配与转移。

管理员规则:
  - 空房间的第一个加入者成为管理员
  - 管理员离开且仍有成员时，权限转给最早加入的剩余成员（成员列表首位）
  - 最后一个成员离开后，调用方负责销毁房间

继任者的选择只依赖加入顺序，是一个不需要任何协调的确定性结果。
"""
from __future__ import annotations

import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from watchtogether.core.logging import get_logger
from watchtogether.schemas.events import RoomSnapshot
from watchtogether.services.room import Member, Room

logger = get_logger(__name__)


@dataclass(frozen=True)
class JoinResult:
    """加入结果。"""

    is_admin: bool
    snapshot: RoomSnapshot


@dataclass(frozen=True)
class LeaveResult:
    """离开结果。

    Attributes:
        was_member: 离开前是否确实是成员（否则本次调用为空操作）。
        was_admin: 离开者是否为管理员。
        new_admin_id: 发生权限转移时的新管理员，否则为 ``None``。
        remaining: 剩余成员数；为 0 时调用方应销毁房间。
    """

    was_member: bool
    was_admin: bool
    new_admin_id: str | None
    remaining: int

    @property
    def admin_transferred(self) -> bool:
        return self.new_admin_id is not None

    @property
    def room_empty(self) -> bool:
        return self.was_member and self.remaining == 0


def remove_member(
    members: Sequence[Member],
    admin_id: str | None,
    leaving_id: str,
) -> tuple[list[Member], str | None]:
    """计算某个成员离开后的成员列表与管理员（纯函数）。

    Args:
        members: 按加入顺序排列的成员。
        admin_id: 当前管理员。
        leaving_id: 离开者的连接 ID。

    Returns:
        ``(new_members, new_admin_id)``。成员为空时管理员为 ``None``；
        否则管理员一定是剩余成员之一。
    """
    remaining = [m for m in members if m.connection_id != leaving_id]
    if not remaining:
        return remaining, None

    if admin_id != leaving_id and any(m.connection_id == admin_id for m in remaining):
        return remaining, admin_id
    return remaining, remaining[0].connection_id


def default_display_name() -> str:
    """昵称为空时使用的随机名称。"""
    return f"User-{uuid.uuid4().hex[:5]}"


class MembershipManager:
    """房间成员管理器。

    Attributes:
        clock: 时间源（单调时钟），用于记录成员变更时间。
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self.clock = clock

    def join(self, room: Room, connection_id: str, display_name: str) -> JoinResult:
        """把连接加入房间。

        空房间的第一个加入者成为管理员。同一连接重复加入不会产生重复成员；
        相同昵称的不同连接视为不同成员。

        Args:
            room: 目标房间。
            connection_id: 连接 ID。
            display_name: 自报昵称（为空时自动生成）。

        Returns:
            ``JoinResult``，包含是否为管理员及完整状态快照。
        """
        if not room.has_member(connection_id):
            name = display_name.strip() or default_display_name()
            was_empty = room.is_empty
            room.members.append(Member(connection_id=connection_id, display_name=name))
            if was_empty:
                room.admin_id = connection_id
            room.last_membership_change = self.clock()
            logger.info(
                "成员加入 | room=%s | conn=%s | name=%s | admin=%s | 成员数: %d",
                room.code, connection_id, name, was_empty, room.member_count,
            )

        return JoinResult(
            is_admin=room.admin_id == connection_id,
            snapshot=room.snapshot(),
        )

    def leave(self, room: Room, connection_id: str) -> LeaveResult:
        """把连接移出房间（幂等）。

        显式 leave 与断线可能先后到达，第二次调用为空操作。

        Args:
            room: 目标房间。
            connection_id: 离开者的连接 ID。

        Returns:
            ``LeaveResult``。
        """
        if not room.has_member(connection_id):
            return LeaveResult(
                was_member=False,
                was_admin=False,
                new_admin_id=None,
                remaining=room.member_count,
            )

        previous_admin = room.admin_id
        room.members, room.admin_id = remove_member(room.members, previous_admin, connection_id)
        room.last_membership_change = self.clock()

        was_admin = previous_admin == connection_id
        transferred_to = room.admin_id if room.admin_id != previous_admin else None
        logger.info(
            "成员离开 | room=%s | conn=%s | 剩余: %d", room.code, connection_id, room.member_count,
        )
        if transferred_to is not None:
            logger.info("管理员转移 | room=%s | %s -> %s", room.code, previous_admin, transferred_to)

        return LeaveResult(
            was_member=True,
            was_admin=was_admin,
            new_admin_id=transferred_to,
            remaining=room.member_count,
        )
