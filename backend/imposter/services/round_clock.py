"""
轮次计时工具
"""

from datetime import datetime, timedelta
from typing import Callable, Optional
from imposter.core.config import settings
from imposter.core.utils import utcnow
from imposter.models.round_model import Round, RoundPhase


def phase_durations() -> dict:
    """各阶段的默认时长，不在表中的阶段不限时"""
    return {
        RoundPhase.ROLE_REVEAL: settings.ROLE_REVEAL_SECONDS,
        RoundPhase.ANSWER_ENTRY: settings.ANSWER_ENTRY_SECONDS,
        RoundPhase.REVEAL_CLUES: settings.REVEAL_CLUES_SECONDS,
        RoundPhase.VOTE: settings.VOTE_SECONDS,
    }


class RoundClock:
    """比较当前时间与阶段截止时间，不保存任何状态"""

    def __init__(self, now: Optional[Callable[[], datetime]] = None):
        self._now = now or utcnow

    def now(self) -> datetime:
        return self._now()

    def deadline_for(self, phase: RoundPhase, start: Optional[datetime] = None) -> Optional[datetime]:
        """进入某阶段时的截止时间"""
        seconds = phase_durations().get(phase)
        if seconds is None:
            return None
        return (start or self.now()) + timedelta(seconds=seconds)

    def remaining(self, round_obj: Round) -> Optional[float]:
        """距离截止还剩多少秒，不限时的阶段返回None"""
        deadline = getattr(round_obj, 'phase_deadline', None)
        if deadline is None:
            return None
        return self.seconds_until(deadline)

    def is_expired(self, round_obj: Round) -> bool:
        return self.has_passed(getattr(round_obj, 'phase_deadline', None))

    def seconds_until(self, moment: datetime) -> float:
        return max(0.0, (_naive(moment) - self.now()).total_seconds())

    def has_passed(self, moment: Optional[datetime]) -> bool:
        return moment is not None and self.now() >= _naive(moment)


def _naive(moment: datetime) -> datetime:
    # SQLite取回的时间不带时区，统一按UTC比较
    if moment.tzinfo is not None:
        return moment.replace(tzinfo=None) - (moment.utcoffset() or timedelta(0))
    return moment
