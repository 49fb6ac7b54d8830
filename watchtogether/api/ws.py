"""
watchtogether.api.ws
~~~~~~~~~~~~~~~~~~~~

WebSocket 实时同步接口。

``/ws`` 端点只做传输适配：接收文本帧交给 ``ConnectionGateway``，
另一个协程把网关写入下行队列的消息发送出去。连接断开（无论是否先发过 leave）
都会触发一次隐式 leave。

消息协议见 ``watchtogether.schemas.events``。
"""
from __future__ import annotations

import asyncio
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from watchtogether.core.logging import get_logger, request_id_ctx_var
from watchtogether.services.gateway import ConnectionGateway

logger = get_logger(__name__)

router: APIRouter = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """WebSocket 房间同步端点。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    connection_id = uuid.uuid4().hex
    token = request_id_ctx_var.set(f"ws-{connection_id[:8]}")

    try:
        gateway: ConnectionGateway = websocket.app.state.gateway
        await websocket.accept()
        session = gateway.open_session(connection_id)
        logger.info("连接建立 | conn=%s | 在线连接: %d", connection_id, gateway.connection_count)

        async def receive_loop() -> None:
            try:
                while True:
                    raw: str = await websocket.receive_text()
                    gateway.handle_message(connection_id, raw)
            except WebSocketDisconnect:
                pass  # 正常断开
            except Exception as e:
                logger.error("WebSocket 接收异常: %s | conn=%s", e, connection_id, exc_info=True)
            finally:
                # 隐式 leave，并向发送协程投递结束信号
                gateway.close_session(connection_id)

        async def send_loop() -> None:
            try:
                while True:
                    message = await session.outbox.get()
                    if message is None:
                        break
                    await websocket.send_text(message)
                if session.evicted:
                    # 接收端读到关闭帧后退出，连接走正常断开流程
                    await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
            except Exception as e:
                logger.warning("WebSocket 发送失败: %s | conn=%s", e, connection_id)

        await asyncio.gather(receive_loop(), send_loop())
        logger.info("连接断开 | conn=%s | 在线连接: %d", connection_id, gateway.connection_count)
    finally:
        request_id_ctx_var.reset(token)
