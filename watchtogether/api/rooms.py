"""
watchtogether.api.rooms
~~~~~~~~~~~~~~~~~~~~~~~

房间 REST 接口 —— 创建房间 + 房间查询。

路由前缀 ``/api``。

端点:
  - ``POST /rooms``         → 创建房间（限流）
  - ``GET  /rooms``         → 获取活跃房间列表
  - ``GET  /rooms/{code}``  → 校验房间是否存在并返回摘要
"""
from fastapi import APIRouter, Depends, Request

from watchtogether.api.deps import get_registry
from watchtogether.core.rate_limit import limiter
from watchtogether.core.settings import settings
from watchtogether.schemas.api_response import ApiResponse
from watchtogether.schemas.rooms import CreateRoomData, CreateRoomRequest, RoomInfoData
from watchtogether.services.registry import RoomRegistry
from watchtogether.services.room import Room
from watchtogether.services.video import resolve_video

router: APIRouter = APIRouter()


def _room_info(room: Room) -> RoomInfoData:
    return RoomInfoData(
        room_code=room.code,
        member_count=room.member_count,
        admin_id=room.admin_id,
        is_playing=room.is_playing,
        video=room.video.to_data(),
    )


@router.post(
    "/rooms",
    summary="创建房间",
    response_model=ApiResponse[CreateRoomData],
)
@limiter.limit(settings.CREATE_ROOM_RATE_LIMIT)
async def create_room(
    request: Request,
    body: CreateRoomRequest,
    registry: RoomRegistry = Depends(get_registry),
) -> ApiResponse[CreateRoomData]:
    """解析视频地址并创建新房间。

    新房间没有成员，第一个通过 WebSocket 加入的连接成为管理员。
    视频地址无法解析时返回 400。

    Args:
        request: 原始请求（限流器按客户端 IP 计数）。
        body: 包含视频地址的请求体。
    """
    video = resolve_video(body.video_url)
    code = registry.create_room(video)
    return ApiResponse.ok(
        data=CreateRoomData(
            room_code=code,
            share_link=f"{settings.PUBLIC_BASE_URL.rstrip('/')}/room/{code}",
            video=video.to_data(),
        ),
    )


@router.get(
    "/rooms",
    summary="获取活跃房间列表",
    response_model=ApiResponse[list[RoomInfoData]],
)
async def list_rooms(registry: RoomRegistry = Depends(get_registry)) -> ApiResponse[list[RoomInfoData]]:
    """返回所有活跃房间的摘要。"""
    return ApiResponse.ok(data=[_room_info(room) for room in registry.list_rooms()])


@router.get(
    "/rooms/{code}",
    summary="获取房间详情",
    response_model=ApiResponse[RoomInfoData],
)
async def room_info(code: str, registry: RoomRegistry = Depends(get_registry)) -> ApiResponse[RoomInfoData]:
    """校验房间是否存在，存在则返回摘要，否则返回 404。

    Args:
        code: 房间码（不区分大小写）。
    """
    room = registry.require_room(code.strip().upper())
    return ApiResponse.ok(data=_room_info(room))
