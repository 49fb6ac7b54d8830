"""
tests.test_control
~~~~~~~~~~~~~~~~~~

播放控制协议单元测试：权限校验、状态转移、changeVideo 重置与失败回滚。
"""
from __future__ import annotations

import pytest

from watchtogether.core.errors import AuthorityError, ValidationError
from watchtogether.schemas.events import (
    ChangeVideoControl,
    PauseControl,
    PlayControl,
    SeekControl,
)
from watchtogether.services.control import ControlProtocolHandler
from watchtogether.services.membership import MembershipManager
from watchtogether.services.room import Room
from watchtogether.services.video import resolve_video

CODE = "ROOM42"


def _play(position: float | None = None) -> PlayControl:
    return PlayControl(type="control", action="play", room_code=CODE, position=position)


def _pause(position: float | None = None) -> PauseControl:
    return PauseControl(type="control", action="pause", room_code=CODE, position=position)


def _seek(position: float) -> SeekControl:
    return SeekControl(type="control", action="seek", room_code=CODE, position=position)


def _change(reference: str) -> ChangeVideoControl:
    return ChangeVideoControl(type="control", action="changeVideo", room_code=CODE, video_reference=reference)


def _state(room: Room) -> tuple:
    return room.video, room.playback_position, room.is_playing


class TestControlProtocolHandler:

    def setup_method(self) -> None:
        self.handler = ControlProtocolHandler()
        self.room = Room(code=CODE, video=resolve_video("https://youtu.be/dQw4w9WgXcQ"))
        membership = MembershipManager()
        membership.join(self.room, "admin", "Alice")
        membership.join(self.room, "viewer", "Bob")

    # ── 权限 ──────────────────────────────────────────────────────────

    @pytest.mark.parametrize(
        "event",
        [
            _play(10.0),
            _pause(3.0),
            _seek(99.0),
            _change("https://youtu.be/9bZkp7q19f0"),
        ],
    )
    def test_non_admin_never_mutates(self, event) -> None:
        """非管理员的任何控制事件都被拒绝，且房间状态不变。"""
        before = _state(self.room)

        with pytest.raises(AuthorityError) as exc_info:
            self.handler.apply(self.room, "viewer", event)

        assert exc_info.value.reason == "notAdmin"
        assert _state(self.room) == before

    def test_outsider_is_rejected(self) -> None:
        with pytest.raises(AuthorityError):
            self.handler.apply(self.room, "stranger", _play())

    def test_leaderless_room_rejects_everyone(self) -> None:
        self.room.admin_id = None

        with pytest.raises(AuthorityError):
            self.handler.apply(self.room, "admin", _play())

    # ── 状态转移 ──────────────────────────────────────────────────────

    def test_play_with_position(self) -> None:
        sync = self.handler.apply(self.room, "admin", _play(42.0))

        assert self.room.is_playing is True
        assert self.room.playback_position == 42.0
        assert sync.action == "play"
        assert sync.position == 42.0
        assert sync.is_playing is True
        assert sync.video.resolved_id == "dQw4w9WgXcQ"

    def test_play_without_position_keeps_position(self) -> None:
        self.room.playback_position = 17.0

        sync = self.handler.apply(self.room, "admin", _play())

        assert sync.position == 17.0
        assert self.room.is_playing is True

    def test_pause_updates_position(self) -> None:
        self.handler.apply(self.room, "admin", _play(5.0))

        sync = self.handler.apply(self.room, "admin", _pause(8.5))

        assert sync.is_playing is False
        assert sync.position == 8.5

    def test_seek_does_not_change_play_state(self) -> None:
        self.handler.apply(self.room, "admin", _play(0.0))

        sync = self.handler.apply(self.room, "admin", _seek(120.0))

        assert sync.action == "seek"
        assert sync.is_playing is True
        assert self.room.playback_position == 120.0

    def test_seek_backwards_is_allowed(self) -> None:
        self.handler.apply(self.room, "admin", _seek(300.0))
        self.handler.apply(self.room, "admin", _seek(10.0))

        assert self.room.playback_position == 10.0

    # ── changeVideo ───────────────────────────────────────────────────

    @pytest.mark.parametrize("was_playing", [True, False])
    def test_change_video_resets_to_paused_start(self, was_playing: bool) -> None:
        self.room.is_playing = was_playing
        self.room.playback_position = 512.0

        sync = self.handler.apply(self.room, "admin", _change("https://youtu.be/9bZkp7q19f0"))

        assert self.room.playback_position == 0.0
        assert self.room.is_playing is False
        assert self.room.video.resolved_id == "9bZkp7q19f0"
        assert sync.action == "changeVideo"
        assert sync.position == 0.0
        assert sync.video.resolved_id == "9bZkp7q19f0"

    def test_change_video_same_url_still_resets(self) -> None:
        self.handler.apply(self.room, "admin", _play(60.0))

        self.handler.apply(self.room, "admin", _change("https://youtu.be/dQw4w9WgXcQ"))

        assert self.room.playback_position == 0.0
        assert self.room.is_playing is False

    def test_unresolvable_video_leaves_room_untouched(self) -> None:
        self.handler.apply(self.room, "admin", _play(33.0))
        before = _state(self.room)

        with pytest.raises(ValidationError) as exc_info:
            self.handler.apply(self.room, "admin", _change("https://example.com/not-a-video"))

        assert exc_info.value.reason == "invalidVideo"
        assert _state(self.room) == before

    def test_custom_resolver_is_used(self) -> None:
        calls: list[str] = []

        def resolver(reference: str):
            calls.append(reference)
            return resolve_video("https://cdn.example.com/clip.webm")

        handler = ControlProtocolHandler(resolver=resolver)
        handler.apply(self.room, "admin", _change("anything"))

        assert calls == ["anything"]
        assert self.room.video.kind == "generic"
