"""
watchtogether.services.control
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

播放控制协议处理器 —— 校验并应用 play / pause / seek / changeVideo。

每个房间只有一个写入者（管理员）。处理顺序:
  1. 权限校验：发起连接不是 ``room.admin_id`` 时抛出 ``AuthorityError``，状态不变
  2. 校验参数（changeVideo 先解析新地址），全部通过后才修改房间
  3. 返回需要广播给全体成员（包括管理员本人）的 ``PlaybackSyncEvent``

服务端不重试、不排队：每个事件都基于最新状态处理，后到者覆盖先到者。
"""
from __future__ import annotations

from collections.abc import Callable

from watchtogether.core.errors import AuthorityError
from watchtogether.core.logging import get_logger
from watchtogether.schemas.events import (
    ChangeVideoControl,
    ControlEvent,
    PauseControl,
    PlaybackSyncEvent,
    PlayControl,
    SeekControl,
)
from watchtogether.services.room import Room
from watchtogether.services.video import VideoRef, resolve_video

logger = get_logger(__name__)


class ControlProtocolHandler:
    """播放控制处理器。

    Attributes:
        resolver: 视频地址解析函数，解析失败时抛出 ``ValidationError``。
    """

    def __init__(self, resolver: Callable[[str], VideoRef] = resolve_video) -> None:
        self.resolver = resolver

    def apply(self, room: Room, connection_id: str, event: ControlEvent) -> PlaybackSyncEvent:
        """对房间应用一条控制事件。

        Args:
            room: 目标房间。
            connection_id: 发起连接。
            event: 已通过结构校验的控制事件。

        Returns:
            需要广播给房间全体成员的 ``PlaybackSyncEvent``。

        Raises:
            AuthorityError: 发起者不是当前管理员。
            ValidationError: changeVideo 的新地址无法解析。
        """
        if room.admin_id is None or connection_id != room.admin_id:
            raise AuthorityError("只有管理员可以控制播放")

        if isinstance(event, PlayControl):
            room.is_playing = True
            if event.position is not None:
                room.playback_position = event.position
        elif isinstance(event, PauseControl):
            room.is_playing = False
            if event.position is not None:
                room.playback_position = event.position
        elif isinstance(event, SeekControl):
            room.playback_position = event.position
        elif isinstance(event, ChangeVideoControl):
            # 先解析，失败时房间保持原样
            video = self.resolver(event.video_reference)
            room.video = video
            room.playback_position = 0.0
            room.is_playing = False
        else:  # pragma: no cover - 判别联合已限制取值
            raise TypeError(f"unknown control event: {event!r}")

        logger.debug(
            "控制已应用 | room=%s | action=%s | position=%.3f | playing=%s",
            room.code, event.action, room.playback_position, room.is_playing,
        )
        return PlaybackSyncEvent(
            action=event.action,
            position=room.playback_position,
            is_playing=room.is_playing,
            video=room.video.to_data(),
        )
