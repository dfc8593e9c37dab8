"""
投票统计

纯函数：相同的投票集合总是得到相同的结果，不访问数据库也不读取时间。
平票候选人按玩家加入房间的顺序排列，不在名单中的目标排在最后并按ID排序。
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from imposter.models.round_model import RoundOutcome


@dataclass(frozen=True)
class VoteTallyResult:
    """一次统计的结果"""
    counts: Dict[int, int] = field(default_factory=dict)
    winners: Tuple[int, ...] = ()
    max_count: int = 0
    total_votes: int = 0

    @property
    def is_tie(self) -> bool:
        return len(self.winners) > 1

    @property
    def majority_suspect(self) -> Optional[int]:
        if not self.winners or self.is_tie:
            return None
        return self.winners[0]

    def to_dict(self) -> dict:
        return {
            "counts": dict(self.counts),
            "winners": list(self.winners),
            "max_count": self.max_count,
            "is_tie": self.is_tie,
            "majority_suspect": self.majority_suspect,
            "total_votes": self.total_votes,
        }


def _pairs(votes: Iterable) -> List[Tuple[int, int]]:
    pairs = []
    for vote in votes:
        if isinstance(vote, tuple):
            pairs.append(vote)
        else:
            pairs.append((getattr(vote, 'voter_id'), getattr(vote, 'target_id')))
    return pairs


def tally_votes(votes: Iterable, join_order: Sequence[int] = ()) -> VoteTallyResult:
    """统计投票

    votes 可以是 Vote 对象或 (voter_id, target_id) 元组；
    同一投票者出现多次时以最后一票为准，与存储层的覆盖语义一致。
    """
    latest: Dict[int, int] = {}
    for voter_id, target_id in _pairs(votes):
        latest[voter_id] = target_id

    counts: Dict[int, int] = {}
    for target_id in latest.values():
        counts[target_id] = counts.get(target_id, 0) + 1

    if not counts:
        return VoteTallyResult()

    max_count = max(counts.values())
    position = {player_id: index for index, player_id in enumerate(join_order)}
    unknown = len(position)
    winners = sorted(
        (target for target, count in counts.items() if count == max_count),
        key=lambda target: (position.get(target, unknown), target),
    )
    return VoteTallyResult(
        counts=counts,
        winners=tuple(winners),
        max_count=max_count,
        total_votes=len(latest),
    )


def classify_outcome(result: VoteTallyResult, imposter_id: int) -> RoundOutcome:
    """平票或没有多数嫌疑人时卧底逃脱"""
    if result.is_tie:
        return RoundOutcome.ESCAPED
    if result.majority_suspect is not None and result.majority_suspect == imposter_id:
        return RoundOutcome.CAUGHT
    return RoundOutcome.ESCAPED


def all_voted(votes: Iterable, player_ids: Iterable[int]) -> bool:
    """房间内每名玩家都已投票"""
    voters = {voter_id for voter_id, _ in _pairs(votes)}
    expected = set(player_ids)
    return bool(expected) and expected.issubset(voters)
