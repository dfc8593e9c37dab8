"""
轮次相关的数据模式
"""

from pydantic import BaseModel, Field, field_serializer
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime

def _serialize_dt(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() + 'Z'

class StartRoundRequest(BaseModel):
    """开始新一轮的请求模式"""
    prompt_count: int = Field(default=4, description="本轮候选题目数量（3-5）")

class StartRoundResponse(BaseModel):
    """开始新一轮的响应"""
    round_id: int
    imposter_id: int
    selected_prompt_index: int

class AdvancePhaseRequest(BaseModel):
    """推进阶段的请求模式"""
    expected_phase: Optional[str] = Field(default=None, description="调用方认为的当前阶段，不一致时拒绝")

class AdvancePhaseResponse(BaseModel):
    """推进阶段的响应"""
    new_phase: str
    deadline: Optional[datetime] = None

    @field_serializer('deadline')
    def serialize_dt(self, dt: Optional[datetime]) -> Optional[str]:
        return _serialize_dt(dt)

class SubmitAnswerRequest(BaseModel):
    """提交答案的请求模式"""
    player_id: int
    prompt_id: int
    text: str

class SubmitVoteRequest(BaseModel):
    """投票的请求模式"""
    voter_id: int
    target_id: int

class SubmitGuessRequest(BaseModel):
    """卧底猜词的请求模式"""
    guess_index: int

class ForceCompleteRequest(BaseModel):
    """强制结束答题的请求模式"""
    confirm: bool = Field(default=False, description="是否确认（确认后不可撤销）")

class AcceptedResponse(BaseModel):
    accepted: bool

class GuessResponse(BaseModel):
    correct: bool

class ForceCompleteResponse(BaseModel):
    """强制结束答题的响应"""
    requires_confirmation: bool
    countdown_seconds: int
    effective_at: Optional[datetime] = None

    @field_serializer('effective_at')
    def serialize_dt(self, dt: Optional[datetime]) -> Optional[str]:
        return _serialize_dt(dt)

class PromptInfo(BaseModel):
    """题目信息"""
    id: int
    prompt_order: int
    prompt_text: str

    class Config:
        from_attributes = True

class SubmissionInfo(BaseModel):
    """答案信息"""
    player_id: int
    prompt_id: int
    text: str
    submitted_at: Optional[datetime] = None

    @field_serializer('submitted_at')
    def serialize_dt(self, dt: Optional[datetime]) -> Optional[str]:
        return _serialize_dt(dt)

    class Config:
        from_attributes = True

class VoteInfo(BaseModel):
    """投票信息，揭晓前不包含投票目标"""
    voter_id: int
    target_id: Optional[int] = None

class ScoreInfo(BaseModel):
    """玩家得分"""
    player_id: int
    name: str
    total_score: int
    round_points: int = 0
    reasons: List[str] = []

class RoundSnapshot(BaseModel):
    """轮次快照"""
    round_id: int
    room_id: int
    round_number: int
    phase: str
    deadline: Optional[datetime] = None
    prompts: List[PromptInfo] = []
    progress: Dict[str, Any] = {}
    submissions: List[SubmissionInfo] = []
    votes: List[VoteInfo] = []
    scores: List[ScoreInfo] = []
    imposter_id: Optional[int] = None
    secret_prompt_index: Optional[int] = None
    imposter_guess: Optional[int] = None
    outcome: Optional[str] = None
    tally: Optional[Dict[str, Any]] = None
    scored: bool = False

    @field_serializer('deadline')
    def serialize_dt(self, dt: Optional[datetime]) -> Optional[str]:
        return _serialize_dt(dt)

EventType = Literal["RoundPhaseChanged", "SubmissionReceived", "VoteReceived", "RoundScored"]

class RoundEvent(BaseModel):
    """推送给订阅者的轮次事件"""
    type: EventType
    room_id: int
    round_id: int
    payload: Dict[str, Any] = {}
    timestamp: datetime

    @field_serializer('timestamp')
    def serialize_dt(self, dt: Optional[datetime]) -> Optional[str]:
        return _serialize_dt(dt)
