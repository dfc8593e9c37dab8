"""
轮次管理API路由
"""

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session
from typing import Optional
from imposter.core.database import get_db
from imposter.services.auto_advance import get_auto_advance_scheduler
from imposter.services.change_notifier import get_change_notifier
from imposter.services.round_controller import RoundController
from imposter.schemas.round_schemas import (
    AcceptedResponse, AdvancePhaseRequest, AdvancePhaseResponse,
    ForceCompleteRequest, ForceCompleteResponse, GuessResponse, RoundSnapshot,
    StartRoundRequest, StartRoundResponse, SubmitAnswerRequest,
    SubmitGuessRequest, SubmitVoteRequest,
)

router = APIRouter()


def get_controller(db: Session = Depends(get_db)) -> RoundController:
    """每个请求使用自己的数据库会话，共享通知器和调度器"""
    return RoundController(
        db,
        notifier=get_change_notifier(),
        scheduler=get_auto_advance_scheduler(),
    )


@router.post("/rooms/{room_id}/start", response_model=StartRoundResponse)
async def start_round(
    room_id: int,
    request: StartRoundRequest,
    x_write_token: Optional[str] = Header(default=None),
    controller: RoundController = Depends(get_controller)
):
    """开始新一轮"""
    return await controller.start_round(room_id, request.prompt_count, actor_token=x_write_token)


@router.post("/{round_id}/advance", response_model=AdvancePhaseResponse)
async def advance_phase(
    round_id: int,
    request: AdvancePhaseRequest,
    x_write_token: Optional[str] = Header(default=None),
    controller: RoundController = Depends(get_controller)
):
    """推进到下一阶段（房主或系统计时器）"""
    return await controller.advance_phase(round_id, x_write_token, request.expected_phase)


@router.post("/{round_id}/answers", response_model=AcceptedResponse)
async def submit_answer(
    round_id: int,
    request: SubmitAnswerRequest,
    x_write_token: Optional[str] = Header(default=None),
    controller: RoundController = Depends(get_controller)
):
    """提交答案"""
    return await controller.submit_answer(
        round_id, request.player_id, request.prompt_id, request.text, x_write_token
    )


@router.post("/{round_id}/votes", response_model=AcceptedResponse)
async def submit_vote(
    round_id: int,
    request: SubmitVoteRequest,
    x_write_token: Optional[str] = Header(default=None),
    controller: RoundController = Depends(get_controller)
):
    """投票"""
    return await controller.submit_vote(round_id, request.voter_id, request.target_id, x_write_token)


@router.post("/{round_id}/guess", response_model=GuessResponse)
async def submit_imposter_guess(
    round_id: int,
    request: SubmitGuessRequest,
    x_write_token: Optional[str] = Header(default=None),
    controller: RoundController = Depends(get_controller)
):
    """卧底猜测秘密题目"""
    return await controller.submit_imposter_guess(round_id, request.guess_index, x_write_token)


@router.post("/{round_id}/force-complete", response_model=ForceCompleteResponse)
async def force_complete(
    round_id: int,
    request: ForceCompleteRequest,
    x_write_token: Optional[str] = Header(default=None),
    controller: RoundController = Depends(get_controller)
):
    """强制结束答题阶段"""
    return await controller.force_complete(round_id, x_write_token, confirm=request.confirm)


@router.get("/{round_id}", response_model=RoundSnapshot)
async def get_round_snapshot(
    round_id: int,
    controller: RoundController = Depends(get_controller)
):
    """获取轮次快照"""
    return await controller.get_round_snapshot(round_id)
