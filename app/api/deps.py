from fastapi import Request

from app.services.hub import RoomHub


def get_room_hub(request: Request) -> RoomHub:
    return request.app.state.room_hub
