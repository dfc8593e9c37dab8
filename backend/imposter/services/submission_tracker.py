"""
答案提交进度统计
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence
from imposter.core.config import settings
from imposter.core.exceptions import StateError


@dataclass(frozen=True)
class PlayerProgress:
    """单个玩家的提交进度"""
    player_id: int
    submitted_count: int
    total_prompts: int

    @property
    def completeness(self) -> float:
        if self.total_prompts <= 0:
            return 1.0
        return min(self.submitted_count, self.total_prompts) / self.total_prompts

    @property
    def is_complete(self) -> bool:
        return self.completeness >= 1.0


@dataclass(frozen=True)
class SubmissionProgress:
    """整轮的提交进度"""
    players: List[PlayerProgress]
    total_prompts: int

    @property
    def completed_players(self) -> int:
        return sum(1 for p in self.players if p.is_complete)

    @property
    def aggregate_completeness(self) -> float:
        """已全部作答的玩家占比"""
        if not self.players:
            return 0.0
        return self.completed_players / len(self.players)

    @property
    def fully_answered(self) -> bool:
        return bool(self.players) and all(p.is_complete for p in self.players)

    def for_player(self, player_id: int) -> Optional[PlayerProgress]:
        for progress in self.players:
            if progress.player_id == player_id:
                return progress
        return None

    def to_dict(self) -> dict:
        return {
            "total_prompts": self.total_prompts,
            "completed_players": self.completed_players,
            "aggregate_completeness": self.aggregate_completeness,
            "fully_answered": self.fully_answered,
            "players": [
                {
                    "player_id": p.player_id,
                    "submitted_count": p.submitted_count,
                    "completeness": p.completeness,
                    "is_complete": p.is_complete,
                }
                for p in self.players
            ],
        }


@dataclass(frozen=True)
class ForceCompleteDecision:
    """强制结束答题的请求结果"""
    requires_confirmation: bool
    countdown_seconds: int
    effective_at: Optional[datetime] = None


class SubmissionTracker:
    """根据期望的 (玩家, 题目) 组合和已有提交计算完成度"""

    def __init__(
        self,
        threshold: Optional[float] = None,
        countdown_seconds: Optional[int] = None,
    ):
        self.threshold = settings.FORCE_COMPLETE_THRESHOLD if threshold is None else threshold
        self.countdown_seconds = (
            settings.FORCE_COMPLETE_COUNTDOWN_SECONDS if countdown_seconds is None else countdown_seconds
        )

    def progress(
        self,
        player_ids: Sequence[int],
        prompt_ids: Sequence[int],
        submissions: Iterable,
    ) -> SubmissionProgress:
        expected_prompts = set(prompt_ids)
        answered: Dict[int, set] = {player_id: set() for player_id in player_ids}
        for submission in submissions:
            player_id = getattr(submission, 'player_id')
            prompt_id = getattr(submission, 'prompt_id')
            # 只统计期望集合内的提交，已离开房间的玩家不计入
            if player_id in answered and prompt_id in expected_prompts:
                answered[player_id].add(prompt_id)

        total = len(expected_prompts)
        return SubmissionProgress(
            players=[
                PlayerProgress(player_id=player_id, submitted_count=len(answered[player_id]), total_prompts=total)
                for player_id in player_ids
            ],
            total_prompts=total,
        )

    def force_complete(
        self,
        progress: SubmissionProgress,
        confirm: bool,
        now: datetime,
        pending_at: Optional[datetime] = None,
    ) -> ForceCompleteDecision:
        """房主强制结束答题

        完成度低于阈值时直接拒绝；未确认时只返回倒计时，不产生任何效果；
        确认后生效时间固定为确认时刻加倒计时，重复确认返回同一时间，且不可撤销。
        """
        if progress.aggregate_completeness < self.threshold:
            raise StateError(
                f"完成度{progress.aggregate_completeness:.0%}低于{self.threshold:.0%}，不能强制结束答题",
                details={"aggregate_completeness": progress.aggregate_completeness},
            )
        if pending_at is not None:
            return ForceCompleteDecision(False, self.countdown_seconds, pending_at)
        if not confirm:
            return ForceCompleteDecision(True, self.countdown_seconds, None)
        return ForceCompleteDecision(False, self.countdown_seconds, now + timedelta(seconds=self.countdown_seconds))
