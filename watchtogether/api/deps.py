from fastapi import Request

from watchtogether.services.gateway import ConnectionGateway
from watchtogether.services.registry import RoomRegistry


def get_registry(request: Request) -> RoomRegistry:
    return request.app.state.registry


def get_gateway(request: Request) -> ConnectionGateway:
    return request.app.state.gateway
