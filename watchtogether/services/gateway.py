"""
watchtogether.services.gateway
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

连接网关 —— 把一条 WebSocket 连接映射到（房间, 成员），分发入站事件并扇出广播。

设计要点:
  - 每条连接同一时刻最多属于一个房间
  - 断线等同于一次隐式 leave，管理员转移规则对主动离开和异常断开一视同仁
  - 下行消息写入每个连接自己的 ``asyncio.Queue``（``put_nowait``），
    由连接的发送协程异步取出发送。入站事件的"修改状态 + 生成广播"
    因此是一段没有 ``await`` 的同步代码，同一房间的事件天然串行，
    所有成员看到的控制事件顺序与服务端处理顺序一致
  - 下行队列积压到上限的连接会被踢出（隐式 leave），不会在漏收消息后继续留在房间里
  - 网关本身不包含播放逻辑，只负责路由
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from watchtogether.core.errors import NotFoundError, RateLimitedError, RoomError
from watchtogether.core.logging import get_logger
from watchtogether.core.rate_limit import WebSocketRateLimiter
from watchtogether.core.settings import settings
from watchtogether.schemas.events import (
    AdminTransferredEvent,
    ChatEvent,
    ChatMessageEvent,
    InboundEvent,
    JoinEvent,
    LeaveEvent,
    MembershipChangedEvent,
    OperationRejectedEvent,
    OutboundEvent,
    StateSnapshotEvent,
    parse_inbound,
)
from watchtogether.services.control import ControlProtocolHandler
from watchtogether.services.membership import MembershipManager
from watchtogether.services.registry import RoomRegistry
from watchtogether.services.room import Room

logger = get_logger(__name__)


@dataclass
class Session:
    """一条连接的会话状态。

    Attributes:
        connection_id: 连接唯一标识（服务端分配）。
        outbox: 下行消息队列，``None`` 为结束信号。
        room_code: 当前所在房间，未加入时为 ``None``。
        evicted: 是否因下行队列积压被服务端踢出；发送协程据此主动关闭连接。
    """

    connection_id: str
    outbox: asyncio.Queue[str | None] = field(default_factory=asyncio.Queue)
    room_code: str | None = None
    evicted: bool = False


class ConnectionGateway:
    """连接网关。

    - ``open_session()``   → 注册新连接，返回其会话
    - ``handle_message()`` → 处理一帧入站消息（解析 + 分发 + 拒绝回复）
    - ``close_session()``  → 连接断开，执行隐式 leave
    - ``send_to()`` / ``broadcast()`` → 单播 / 房间广播

    Attributes:
        registry: 房间注册表。
        membership: 成员管理器。
        control: 播放控制处理器。
        chat_limiter: 聊天消息限流器。
        outbox_size: 每个连接下行队列的容量上限。
    """

    def __init__(
        self,
        registry: RoomRegistry,
        membership: MembershipManager | None = None,
        control: ControlProtocolHandler | None = None,
        chat_limiter: WebSocketRateLimiter | None = None,
        outbox_size: int | None = None,
    ) -> None:
        self.registry = registry
        self.membership = membership or MembershipManager()
        self.control = control or ControlProtocolHandler()
        self.chat_limiter = chat_limiter or WebSocketRateLimiter(
            interval_seconds=settings.WS_CHAT_RATE_LIMIT_INTERVAL,
        )
        self.outbox_size: int = outbox_size if outbox_size is not None else settings.WS_OUTBOX_SIZE
        if self.outbox_size < 1:
            raise ValueError(f"outbox_size must be >= 1, got {self.outbox_size}")
        self._sessions: dict[str, Session] = {}
        # 本轮投递中队列溢出、待踢出的连接
        self._overflowed: list[str] = []

    @property
    def connection_count(self) -> int:
        """当前连接数。"""
        return len(self._sessions)

    def get_session(self, connection_id: str) -> Session | None:
        return self._sessions.get(connection_id)

    # ── 连接生命周期 ──────────────────────────────────────────────────

    def open_session(self, connection_id: str | None = None) -> Session:
        """注册一条新连接。

        Args:
            connection_id: 连接标识，省略时自动生成。

        Returns:
            新会话；调用方负责从 ``session.outbox`` 取出消息发送。
        """
        cid = connection_id or uuid.uuid4().hex
        session = Session(connection_id=cid)
        self._sessions[cid] = session
        logger.debug("连接已注册 | conn=%s | 在线连接: %d", cid, len(self._sessions))
        return session

    def close_session(self, connection_id: str) -> None:
        """连接断开：隐式离开所在房间并注销会话（幂等）。"""
        session = self._sessions.pop(connection_id, None)
        if session is None:
            return
        self._leave(session)
        self.chat_limiter.remove_client(connection_id)
        # 通知发送协程退出
        session.outbox.put_nowait(None)
        logger.debug("连接已注销 | conn=%s | 在线连接: %d", connection_id, len(self._sessions))

    # ── 入站 ──────────────────────────────────────────────────────────

    def handle_message(self, connection_id: str, raw: str | bytes) -> None:
        """处理一帧入站消息。

        任何 ``RoomError`` 都只转换为一条发给该连接的 ``operationRejected``，
        房间状态保持处理前的样子。
        """
        if connection_id not in self._sessions:
            logger.warning("收到未注册连接的消息，已忽略 | conn=%s", connection_id)
            return
        try:
            event = parse_inbound(raw)
            self.dispatch(connection_id, event)
        except RoomError as e:
            logger.info(
                "操作被拒绝 | conn=%s | reason=%s | %s", connection_id, e.reason, e.message,
            )
            self.send_to(
                connection_id,
                OperationRejectedEvent(reason=e.reason, message=e.message),
            )

    def dispatch(self, connection_id: str, event: InboundEvent) -> None:
        """按事件类型分发。

        Raises:
            RoomError: 房间不存在、无权限、参数非法等。
        """
        session = self._sessions[connection_id]
        if isinstance(event, JoinEvent):
            self._join(session, event)
        elif isinstance(event, LeaveEvent):
            if event.room_code is not None and event.room_code != session.room_code:
                raise NotFoundError(f"当前不在房间 {event.room_code} 中")
            self._leave(session)
        elif isinstance(event, ChatEvent):
            self._chat(session, event)
        else:
            room = self.registry.require_room(event.room_code)
            sync = self.control.apply(room, connection_id, event)
            self.broadcast(room.code, sync)

    def _join(self, session: Session, event: JoinEvent) -> None:
        room = self.registry.require_room(event.room_code)

        # 一条连接同时只属于一个房间
        if session.room_code is not None and session.room_code != room.code:
            self._leave(session)

        result = self.membership.join(room, session.connection_id, event.display_name)
        session.room_code = room.code

        self.send_to(
            session.connection_id,
            StateSnapshotEvent(
                connection_id=session.connection_id,
                is_admin=result.is_admin,
                snapshot=result.snapshot,
            ),
        )
        self._broadcast_membership(room)

    def _leave(self, session: Session) -> None:
        code = session.room_code
        if code is None:
            return
        session.room_code = None

        room = self.registry.get_room(code)
        if room is None:
            return

        result = self.membership.leave(room, session.connection_id)
        if not result.was_member:
            return
        if result.room_empty:
            self.registry.delete_room(code)
            return

        if result.new_admin_id is not None:
            self.broadcast(code, AdminTransferredEvent(admin_id=result.new_admin_id))
        self._broadcast_membership(room)

    def _chat(self, session: Session, event: ChatEvent) -> None:
        room = self.registry.require_room(event.room_code)
        member = room.get_member(session.connection_id)
        if member is None:
            raise NotFoundError(f"尚未加入房间 {room.code}")
        if not self.chat_limiter.is_allowed(session.connection_id):
            raise RateLimitedError("发送消息太快啦，请慢一点~")

        self.broadcast(
            room.code,
            ChatMessageEvent(
                connection_id=member.connection_id,
                display_name=member.display_name,
                message=event.message,
                time=datetime.now(timezone.utc).isoformat(),
            ),
        )

    # ── 出站 ──────────────────────────────────────────────────────────

    def _broadcast_membership(self, room: Room) -> None:
        self.broadcast(
            room.code,
            MembershipChangedEvent(members=room.member_data(), admin_id=room.admin_id),
        )

    def _enqueue(self, connection_id: str, text: str) -> None:
        session = self._sessions.get(connection_id)
        if session is None:
            return
        if session.outbox.qsize() >= self.outbox_size:
            if connection_id not in self._overflowed:
                logger.warning("下行队列已满，断开慢连接 | conn=%s", connection_id)
                self._overflowed.append(connection_id)
            return
        session.outbox.put_nowait(text)

    def _evict_overflowed(self) -> None:
        """踢出本轮溢出的连接。

        积压的消息直接丢弃，连接随后被关闭并执行隐式 leave；
        客户端重连后通过新的 ``stateSnapshot`` 追上房间状态。
        """
        while self._overflowed:
            connection_id = self._overflowed.pop(0)
            session = self._sessions.get(connection_id)
            if session is None:
                continue
            session.evicted = True
            while not session.outbox.empty():
                session.outbox.get_nowait()
            # 可能再次广播并产生新的溢出连接，由 while 循环继续处理
            self.close_session(connection_id)

    def send_to(self, connection_id: str, event: OutboundEvent) -> None:
        """只发给指定连接。"""
        self._enqueue(connection_id, event.to_json())
        self._evict_overflowed()

    def broadcast(self, room_code: str, event: OutboundEvent) -> None:
        """发给房间内的全部成员（包括发起者）。"""
        room = self.registry.get_room(room_code)
        if room is None:
            return
        text = event.to_json()
        for member in room.members:
            self._enqueue(member.connection_id, text)
        self._evict_overflowed()
