"""
app.api.room
~~~~~~~~~~~~

聊天室 REST 接口 —— 状态查询 + AI 助手单次问答。

端点:
  - ``GET  /api/room``             → 当前席位、待审批队列与在线人数
  - ``POST /api/assistant/reply``  → 不经过聊天室，直接向 AI 助手提问（调试用）
"""
from fastapi import APIRouter, Depends, Request

from app.api.deps import get_room_hub
from app.core.rate_limit import HTTP_LIMIT, limiter
from app.schemas.api_response import ApiResponse
from app.schemas.room_api import AssistantReplyData, AssistantReplyRequest, RoomStateData
from app.services.hub import RoomHub

router: APIRouter = APIRouter()


@router.get("/room", summary="获取房间状态", response_model=ApiResponse[RoomStateData])
@limiter.limit(HTTP_LIMIT)
async def room_state(request: Request, hub: RoomHub = Depends(get_room_hub)):
    """返回管理员、访客席位、待审批队列以及在线连接数。

    Args:
        request: FastAPI Request 对象（用于限流判断）。
    """
    registry = hub.coordinator.registry
    return ApiResponse.ok(
        data=RoomStateData(
            room=registry.snapshot(),
            message_count=len(registry.messages),
            online_count=hub.gateway.online_count,
        ),
    )


@router.post(
    "/assistant/reply",
    summary="向 AI 助手提问",
    response_model=ApiResponse[AssistantReplyData],
)
@limiter.limit(HTTP_LIMIT)
async def assistant_reply(
    request: Request,
    reply_request: AssistantReplyRequest,
    hub: RoomHub = Depends(get_room_hub),
):
    """单次调用 AI 助手，不写入聊天记录、不广播。

    未配置 Gemini Key 时返回 503，模型调用失败时返回 502。

    Args:
        request: FastAPI Request 对象（用于限流判断）。
        reply_request: 包含访客消息与访客名的请求体。
    """
    if hub.responder is None:
        return ApiResponse.fail_response("Assistant is not configured", status_code=503)

    reply = await hub.responder.respond(reply_request.message, reply_request.guest_name)
    if not reply.ok:
        return ApiResponse.fail_response("Failed to generate response", status_code=502)
    return ApiResponse.ok(data=AssistantReplyData(response=reply.text))
