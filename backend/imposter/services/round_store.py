"""
轮次数据存储服务
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import List, Optional, Sequence
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from imposter.core.exceptions import NotFoundError, StateError, TransientStoreError
from imposter.models.player import Player
from imposter.models.room import Room
from imposter.models.round_model import Round, RoundOutcome, RoundPhase, RoundPrompt
from imposter.models.score_delta import ScoreDelta
from imposter.models.submission import Submission
from imposter.models.vote import Vote

logger = logging.getLogger(__name__)


class RoundStore:
    """对轮次、提交、投票和得分的读写

    所有写操作在失败时回滚，并把数据库异常转换为可重试的 TransientStoreError。
    阶段切换和结算都使用带条件的 UPDATE，保证并发调用只有一个生效。
    """

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _guard(self, action: str):
        try:
            yield
        except IntegrityError:
            # 唯一约束冲突交给调用方处理
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"⚠️ 存储操作失败({action}): {e}")
            raise TransientStoreError(f"存储操作失败: {action}", details={"error": str(e)}) from e

    # ---- 读取 ----

    def get_room(self, room_id: int) -> Room:
        with self._guard("get_room"):
            room = self.db.query(Room).filter(Room.id == room_id).first()
        if not room:
            raise NotFoundError("房间", room_id)
        return room

    def get_round(self, round_id: int) -> Round:
        with self._guard("get_round"):
            round_obj = self.db.query(Round).filter(Round.id == round_id).first()
            if round_obj:
                # 条件更新可能绕过了会话缓存，这里总是读取最新值
                self.db.refresh(round_obj)
        if not round_obj:
            raise NotFoundError("轮次", round_id)
        return round_obj

    def get_active_round(self, room_id: int) -> Optional[Round]:
        with self._guard("get_active_round"):
            return self.db.query(Round).filter(
                Round.room_id == room_id,
                Round.phase != RoundPhase.DONE
            ).order_by(Round.round_number.desc()).first()

    def list_active_rounds(self) -> List[Round]:
        with self._guard("list_active_rounds"):
            return self.db.query(Round).filter(Round.phase != RoundPhase.DONE).all()

    def latest_round_number(self, room_id: int) -> int:
        with self._guard("latest_round_number"):
            latest = self.db.query(Round.round_number).filter(
                Round.room_id == room_id
            ).order_by(Round.round_number.desc()).first()
        return latest[0] if latest else 0

    def list_prompts(self, round_id: int) -> List[RoundPrompt]:
        with self._guard("list_prompts"):
            return self.db.query(RoundPrompt).filter(
                RoundPrompt.round_id == round_id
            ).order_by(RoundPrompt.prompt_order).all()

    def list_submissions(self, round_id: int) -> List[Submission]:
        with self._guard("list_submissions"):
            return self.db.query(Submission).filter(
                Submission.round_id == round_id
            ).order_by(Submission.player_id, Submission.prompt_id).all()

    def list_votes(self, round_id: int) -> List[Vote]:
        with self._guard("list_votes"):
            return self.db.query(Vote).filter(Vote.round_id == round_id).order_by(Vote.id).all()

    def list_score_deltas(self, round_id: int) -> List[ScoreDelta]:
        with self._guard("list_score_deltas"):
            return self.db.query(ScoreDelta).filter(ScoreDelta.round_id == round_id).order_by(ScoreDelta.id).all()

    # ---- 写入 ----

    def create_round(
        self,
        room: Room,
        round_number: int,
        imposter_id: int,
        secret_prompt_index: int,
        prompt_texts: Sequence[str],
        guess_enabled: bool,
        started_at: datetime,
        phase_deadline: Optional[datetime],
    ) -> Round:
        room_id = room.id
        try:
            with self._guard("create_round"):
                round_obj = Round(
                    room_id=room_id,
                    round_number=round_number,
                    phase=RoundPhase.ROLE_REVEAL,
                    imposter_id=imposter_id,
                    secret_prompt_index=secret_prompt_index,
                    prompt_count=len(prompt_texts),
                    guess_enabled=guess_enabled,
                    started_at=started_at,
                    phase_deadline=phase_deadline,
                    scored=False,
                )
                self.db.add(round_obj)
                self.db.flush()
                for order, text in enumerate(prompt_texts):
                    self.db.add(RoundPrompt(round_id=round_obj.id, prompt_order=order, prompt_text=text))
                room.status = "playing"
                room.current_round = round_number
                self.db.commit()
                self.db.refresh(round_obj)
        except IntegrityError as e:
            # 另一个请求已经用同一个轮次编号开始了新一轮
            raise StateError("房间已有进行中的轮次", details={"room_id": room_id}) from e
        return round_obj

    def transition_phase(
        self,
        round_id: int,
        from_phase: RoundPhase,
        to_phase: RoundPhase,
        deadline: Optional[datetime],
        **values,
    ) -> bool:
        """仅当轮次仍处于 from_phase 时切换阶段，返回是否由本次调用完成切换"""
        with self._guard("transition_phase"):
            updated = self.db.query(Round).filter(
                Round.id == round_id,
                Round.phase == from_phase
            ).update(
                {"phase": to_phase, "phase_deadline": deadline, **values},
                synchronize_session=False
            )
            self.db.commit()
        return updated == 1

    def set_force_complete_at(self, round_id: int, effective_at: datetime) -> bool:
        with self._guard("set_force_complete_at"):
            updated = self.db.query(Round).filter(
                Round.id == round_id,
                Round.phase == RoundPhase.ANSWER_ENTRY,
                Round.force_complete_at.is_(None)
            ).update({"force_complete_at": effective_at}, synchronize_session=False)
            self.db.commit()
        return updated == 1

    def set_imposter_guess(self, round_id: int, guess_index: int) -> bool:
        with self._guard("set_imposter_guess"):
            updated = self.db.query(Round).filter(
                Round.id == round_id,
                Round.phase == RoundPhase.IMPOSTER_GUESS
            ).update({"imposter_guess": guess_index}, synchronize_session=False)
            self.db.commit()
        return updated == 1

    def upsert_submission(self, round_id: int, player_id: int, prompt_id: int, text: str, submitted_at: datetime) -> Submission:
        """按 (轮次, 玩家, 题目) 覆盖写入"""
        with self._guard("upsert_submission"):
            for attempt in range(2):
                submission = self.db.query(Submission).filter(
                    Submission.round_id == round_id,
                    Submission.player_id == player_id,
                    Submission.prompt_id == prompt_id
                ).first()
                if submission:
                    submission.text = text
                    submission.submitted_at = submitted_at
                else:
                    submission = Submission(
                        round_id=round_id,
                        player_id=player_id,
                        prompt_id=prompt_id,
                        text=text,
                        submitted_at=submitted_at,
                    )
                    self.db.add(submission)
                try:
                    self.db.commit()
                    break
                except IntegrityError:
                    # 并发插入了同一个键，回滚后改为更新
                    self.db.rollback()
                    if attempt:
                        raise TransientStoreError("并发写入冲突，请重试")
            self.db.refresh(submission)
        return submission

    def upsert_vote(self, round_id: int, voter_id: int, target_id: int, created_at: datetime) -> Vote:
        """按 (轮次, 投票者) 覆盖写入"""
        with self._guard("upsert_vote"):
            for attempt in range(2):
                vote = self.db.query(Vote).filter(
                    Vote.round_id == round_id,
                    Vote.voter_id == voter_id
                ).first()
                if vote:
                    vote.target_id = target_id
                    vote.created_at = created_at
                else:
                    vote = Vote(round_id=round_id, voter_id=voter_id, target_id=target_id, created_at=created_at)
                    self.db.add(vote)
                try:
                    self.db.commit()
                    break
                except IntegrityError:
                    self.db.rollback()
                    if attempt:
                        raise TransientStoreError("并发写入冲突，请重试")
            self.db.refresh(vote)
        return vote

    def apply_score_changes(self, round_id: int, outcome: RoundOutcome, changes) -> bool:
        """在同一事务中设置结算标记、写入得分记录并累加玩家总分"""
        with self._guard("apply_score_changes"):
            claimed = self.db.query(Round).filter(
                Round.id == round_id,
                Round.scored.is_(False)
            ).update({"scored": True, "outcome": outcome}, synchronize_session=False)
            if claimed != 1:
                self.db.rollback()
                return False

            for change in changes:
                self.db.add(ScoreDelta(
                    round_id=round_id,
                    player_id=change.player_id,
                    points=change.points,
                    reason=change.reason,
                ))
                self.db.query(Player).filter(Player.id == change.player_id).update(
                    {"total_score": Player.total_score + change.points},
                    synchronize_session=False
                )
            self.db.commit()
        return True

    def mark_room_ended(self, room_id: int) -> None:
        with self._guard("mark_room_ended"):
            self.db.query(Room).filter(Room.id == room_id).update({"status": "ended"}, synchronize_session=False)
            self.db.commit()
