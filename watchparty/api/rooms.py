"""
watchparty.api.rooms
~~~~~~~~~~~~~~~~~~~~

房间 REST 接口 —— 只读查询，方便前端在连接 WebSocket 前检查房间。

端点:
  - ``GET /rooms``               → 获取活跃房间列表
  - ``GET /rooms/{room_code}``   → 获取房间快照（成员、剧集、播放状态）
"""
from fastapi import APIRouter, Depends, Request

from watchparty.api.deps import get_registry
from watchparty.core.rate_limit import limiter
from watchparty.schemas.api_response import ApiResponse
from watchparty.schemas.events import RoomInfoData, RoomSummaryData
from watchparty.services.errors import RoomNotFound
from watchparty.services.registry import RoomRegistry

router: APIRouter = APIRouter()


@router.get(
    "/rooms",
    summary="获取活跃房间列表",
    response_model=ApiResponse[list[RoomSummaryData]],
    response_model_by_alias=True,
)
@limiter.limit("10/second")
async def list_rooms(request: Request, registry: RoomRegistry = Depends(get_registry)):
    """返回所有活跃房间的摘要。"""
    summaries = []
    for room in registry.list_rooms():
        with room.lock():
            if room.members:
                summaries.append(room.summary())
    return ApiResponse.ok(data=summaries)


@router.get(
    "/rooms/{room_code}",
    summary="获取房间详情",
    response_model=ApiResponse[RoomInfoData],
    response_model_by_alias=True,
)
@limiter.limit("5/second")
async def room_info(request: Request, room_code: str, registry: RoomRegistry = Depends(get_registry)):
    """返回指定房间的快照（不含聊天记录）。

    Args:
        room_code: 五位数字房间号。
    """
    try:
        room = registry.lookup(room_code)
    except RoomNotFound as e:
        return ApiResponse.from_error(e, code=404).to_response()
    with room.lock():
        info = room.info()
    return ApiResponse.ok(data=info)
