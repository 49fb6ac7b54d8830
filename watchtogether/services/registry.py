"""
watchtogether.services.registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间注册表 —— 房间码到 ``Room`` 的唯一映射，负责创建、查找、销毁房间。

注册表在应用启动时构造一次，通过 ``app.state`` 传给网关与路由，
不作为模块级全局变量访问。全部状态只保存在进程内存中，重启即丢失。
"""
from __future__ import annotations

import asyncio
import random
import secrets
import time
from collections.abc import Callable

from watchtogether.core.errors import CapacityError, NotFoundError
from watchtogether.core.logging import get_logger
from watchtogether.core.settings import settings
from watchtogether.services.room import Room
from watchtogether.services.video import VideoRef

logger = get_logger(__name__)


class RoomRegistry:
    """房间注册表。

    - ``create_room(video)`` → 分配新房间码并创建房间
    - ``get_room(code)``     → 查找房间，不存在返回 ``None``
    - ``require_room(code)`` → 查找房间，不存在抛出 ``NotFoundError``
    - ``delete_room(code)``  → 删除房间（幂等）
    - ``reap_idle()``        → 清理长时间无人的房间

    Attributes:
        code_length: 房间码长度。
        alphabet: 房间码字符集。
        max_retries: 随机生成的最大重试次数，超过后改用加后缀的房间码。
        idle_ttl: 无人房间的保留时间（秒）。
    """

    def __init__(
        self,
        code_length: int | None = None,
        alphabet: str | None = None,
        max_retries: int | None = None,
        idle_ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        self.code_length: int = code_length if code_length is not None else settings.ROOM_CODE_LENGTH
        self.alphabet: str = alphabet if alphabet is not None else settings.ROOM_CODE_ALPHABET
        self.max_retries: int = max_retries if max_retries is not None else settings.ROOM_CODE_MAX_RETRIES
        if self.code_length < 1:
            raise ValueError(f"code_length must be >= 1, got {self.code_length}")
        if len(self.alphabet) < 2:
            raise ValueError("alphabet must contain at least 2 characters")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        self.idle_ttl: float = idle_ttl if idle_ttl is not None else settings.ROOM_IDLE_TTL_SECONDS
        self.clock = clock
        self._rng: random.Random = rng or secrets.SystemRandom()
        self._rooms: dict[str, Room] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, code: object) -> bool:
        return code in self._rooms

    # ── 房间码生成 ────────────────────────────────────────────────────

    def _random_code(self) -> str:
        return "".join(self._rng.choice(self.alphabet) for _ in range(self.code_length))

    def _generate_code(self) -> str:
        """随机生成未被占用的房间码。

        Raises:
            CapacityError: 连续 ``max_retries`` 次都与现有房间冲突。
        """
        for _ in range(self.max_retries):
            candidate = self._random_code()
            if candidate not in self._rooms:
                return candidate
        raise CapacityError(f"连续 {self.max_retries} 次生成的房间码均已被占用")

    def _suffix(self, n: int) -> str:
        """把序号编码为字符集内的后缀。"""
        base = len(self.alphabet)
        digits = [self.alphabet[n % base]]
        n //= base
        while n:
            digits.append(self.alphabet[n % base])
            n //= base
        return "".join(reversed(digits))

    def _extend_code(self, base_code: str) -> str:
        """在冲突的房间码后追加序号后缀，直到找到空位。"""
        n = 0
        while True:
            candidate = base_code + self._suffix(n)
            if candidate not in self._rooms:
                return candidate
            n += 1

    # ── 增删查 ────────────────────────────────────────────────────────

    def create_room(self, video: VideoRef) -> str:
        """创建房间并返回房间码。新房间没有成员也没有管理员。

        Args:
            video: 已解析的视频引用。

        Returns:
            新房间的房间码。
        """
        try:
            code = self._generate_code()
        except CapacityError as e:
            code = self._extend_code(self._random_code())
            logger.warning("%s，改用加长房间码 | code=%s", e.message, code)

        self._rooms[code] = Room(code=code, video=video, now=self.clock())
        logger.info("房间已创建 | code=%s | kind=%s | 活跃房间: %d", code, video.kind, len(self._rooms))
        return code

    def get_room(self, code: str) -> Room | None:
        """按房间码查找房间。"""
        return self._rooms.get(code)

    def require_room(self, code: str) -> Room:
        """按房间码查找房间。

        Raises:
            NotFoundError: 房间不存在。
        """
        room = self._rooms.get(code)
        if room is None:
            raise NotFoundError(f"房间 {code} 不存在")
        return room

    def delete_room(self, code: str) -> None:
        """删除房间。房间不存在时为空操作。"""
        if self._rooms.pop(code, None) is not None:
            logger.info("房间已销毁 | code=%s | 活跃房间: %d", code, len(self._rooms))

    def list_rooms(self) -> list[Room]:
        """列出所有活跃房间。"""
        return list(self._rooms.values())

    def reap_idle(self, now: float | None = None) -> list[str]:
        """删除无人且超过保留时间的房间。

        主要针对创建后从未有人加入的房间；有成员的房间永远不会被清理。

        Returns:
            被清理的房间码列表。
        """
        current = self.clock() if now is None else now
        expired = [
            code for code, room in self._rooms.items()
            if room.is_empty and current - room.last_membership_change >= self.idle_ttl
        ]
        for code in expired:
            del self._rooms[code]
        if expired:
            logger.info("清理空闲房间 %d 个 | codes=%s", len(expired), ",".join(expired))
        return expired


async def reap_idle_rooms_forever(registry: RoomRegistry, interval_seconds: float) -> None:
    """后台任务：按固定间隔清理空闲房间，直到被取消。"""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            registry.reap_idle()
        except Exception as e:
            logger.error("空闲房间清理失败: %s", e, exc_info=True)
