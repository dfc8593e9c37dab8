"""
计分引擎
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence
from imposter.models.round_model import Round, RoundOutcome

logger = logging.getLogger(__name__)

# 计分原因标签
REASON_CREW_CAUGHT = "crew_caught_imposter"
REASON_IMPOSTER_ESCAPED = "imposter_escaped"
REASON_CORRECT_GUESS = "imposter_correct_guess"

CREW_CAUGHT_POINTS = 1
IMPOSTER_ESCAPED_POINTS = 2
CORRECT_GUESS_POINTS = 1


@dataclass(frozen=True)
class ScoreChange:
    """尚未写入数据库的得分变化"""
    player_id: int
    points: int
    reason: str


class ScoringEngine:
    """根据投票结果和猜词结果计算一轮的得分，并保证每轮只结算一次"""

    def compute(
        self,
        player_ids: Sequence[int],
        imposter_id: int,
        outcome: RoundOutcome,
        imposter_guess: Optional[int] = None,
        secret_index: Optional[int] = None,
    ) -> List[ScoreChange]:
        changes: List[ScoreChange] = []
        if outcome is RoundOutcome.CAUGHT:
            # 卧底被抓：所有非卧底玩家各得1分
            changes.extend(
                ScoreChange(player_id, CREW_CAUGHT_POINTS, REASON_CREW_CAUGHT)
                for player_id in player_ids
                if player_id != imposter_id
            )
        else:
            changes.append(ScoreChange(imposter_id, IMPOSTER_ESCAPED_POINTS, REASON_IMPOSTER_ESCAPED))

        # 猜中秘密题目额外加分，与是否被抓无关
        if imposter_guess is not None and secret_index is not None and imposter_guess == secret_index:
            changes.append(ScoreChange(imposter_id, CORRECT_GUESS_POINTS, REASON_CORRECT_GUESS))
        return changes

    def score_round(self, store, round_obj: Round, player_ids: Sequence[int], outcome: RoundOutcome) -> List[ScoreChange]:
        """计算并写入得分；本轮已结算时返回空列表"""
        if getattr(round_obj, 'scored', False):
            logger.info(f"轮次 {round_obj.id} 已结算，跳过")
            return []

        changes = self.compute(
            player_ids,
            imposter_id=round_obj.imposter_id,
            outcome=outcome,
            imposter_guess=round_obj.imposter_guess,
            secret_index=round_obj.secret_prompt_index,
        )
        applied = store.apply_score_changes(round_obj.id, outcome, changes)
        if not applied:
            # 并发情况下另一个请求已经完成结算
            logger.info(f"轮次 {round_obj.id} 已被其他请求结算，跳过")
            return []

        logger.info(f"🏆 轮次 {round_obj.id} 结算完成: {outcome.value}, {len(changes)} 条得分变化")
        return changes
