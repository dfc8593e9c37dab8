"""
轮次流程控制服务
"""

import logging
import random
from typing import List, Optional, Tuple
from sqlalchemy.orm import Session
from imposter.core.config import settings
from imposter.core.exceptions import AuthorizationError, NotFoundError, StateError, TransientStoreError, ValidationError
from imposter.core.utils import format_timestamp_with_timezone
from imposter.models.round_model import Round, RoundOutcome, RoundPhase
from imposter.schemas.round_schemas import (
    AcceptedResponse, AdvancePhaseResponse, ForceCompleteResponse, GuessResponse,
    PromptInfo, RoundEvent, RoundSnapshot, ScoreInfo, StartRoundResponse,
    SubmissionInfo, VoteInfo,
)
from imposter.services.authorizer import Authorizer
from imposter.services.player_directory import PlayerDirectory
from imposter.services.round_clock import RoundClock
from imposter.services.round_store import RoundStore
from imposter.services.scoring_engine import ScoreChange, ScoringEngine
from imposter.services.submission_tracker import SubmissionTracker
from imposter.services.vote_tally import all_voted, classify_outcome, tally_votes

logger = logging.getLogger(__name__)

# 自动推进的触发原因
TRIGGER_DEADLINE = "deadline"
TRIGGER_ALL_ANSWERED = "all_answered"
TRIGGER_ALL_VOTED = "all_voted"
TRIGGER_GUESS_SUBMITTED = "guess_submitted"
TRIGGER_FORCE_COMPLETE = "force_complete"


class RoundController:
    """轮次状态机

    每个请求使用独立的数据库会话创建一个实例；跨请求共享的只有通知器和自动推进调度器。
    """

    # 题目池
    PROMPT_POOL = [
        "描述一个完美的周末早晨",
        "说出一样你绝对不会借给别人的东西",
        "童年时最害怕的事情是什么",
        "如果只能带一件东西去荒岛，你会带什么",
        "形容你最近一次吃到的难忘的一餐",
        "说出一个你一直想学但还没学的技能",
        "描述你理想中的家",
        "哪一首歌会让你立刻想跳舞",
        "说出一个被严重高估的节日",
        "形容一下你最喜欢的季节的气味",
        "如果能和任何动物交谈，你选哪一种",
        "说出一部你看过不止三遍的电影",
    ]

    def __init__(
        self,
        db: Session,
        notifier=None,
        clock: Optional[RoundClock] = None,
        scheduler=None,
        rng=None,
    ):
        self.db = db
        self.store = RoundStore(db)
        self.directory = PlayerDirectory(db)
        self.authorizer = Authorizer(db)
        self.tracker = SubmissionTracker()
        self.scoring = ScoringEngine()
        self.clock = clock or RoundClock()
        self.notifier = notifier
        self.scheduler = scheduler
        self.rng = rng or random

    # ---- 开始新一轮 ----

    async def start_round(
        self,
        room_id: int,
        prompt_count: Optional[int] = None,
        actor_token: Optional[str] = None,
    ) -> StartRoundResponse:
        """开始新一轮：随机选择卧底和秘密题目"""
        prompt_count = settings.DEFAULT_PROMPT_COUNT if prompt_count is None else prompt_count
        if not settings.MIN_PROMPTS <= prompt_count <= min(settings.MAX_PROMPTS, len(self.PROMPT_POOL)):
            raise ValidationError(
                f"题目数量必须在{settings.MIN_PROMPTS}到{settings.MAX_PROMPTS}之间",
                field="prompt_count", value=prompt_count
            )

        room = self.store.get_room(room_id)
        if not self.authorizer.validate(actor_token, room_id):
            raise AuthorizationError("只有房主可以开始新一轮")
        if getattr(room, 'status', '') == "ended":
            raise StateError("游戏已经结束", details={"room_id": room_id})
        if self.store.get_active_round(room_id) is not None:
            raise StateError("房间已有进行中的轮次", details={"room_id": room_id})

        members = self.directory.list_members(room_id)
        if len(members) < settings.MIN_PLAYERS:
            raise ValidationError(
                f"玩家数量({len(members)})少于最少玩家数量({settings.MIN_PLAYERS})",
                field="players", value=len(members)
            )

        imposter = self.rng.choice(members)
        secret_index = self.rng.randrange(prompt_count)
        prompt_texts = self.rng.sample(self.PROMPT_POOL, prompt_count)

        now = self.clock.now()
        round_obj = self.store.create_round(
            room,
            round_number=self.store.latest_round_number(room_id) + 1,
            imposter_id=imposter.id,
            secret_prompt_index=secret_index,
            prompt_texts=prompt_texts,
            guess_enabled=settings.ENABLE_IMPOSTER_GUESS,
            started_at=now,
            phase_deadline=self.clock.deadline_for(RoundPhase.ROLE_REVEAL, now),
        )
        logger.info(f"🎮 房间 {room_id} 开始第{round_obj.round_number}轮，共{len(members)}名玩家，{prompt_count}道题目")

        await self._publish_phase(round_obj)
        self._schedule_pending(round_obj)
        return StartRoundResponse(
            round_id=round_obj.id,
            imposter_id=round_obj.imposter_id,
            selected_prompt_index=round_obj.secret_prompt_index,
        )

    # ---- 阶段推进 ----

    async def advance_phase(
        self,
        round_id: int,
        actor_token: Optional[str],
        expected_phase: Optional[str] = None,
    ) -> AdvancePhaseResponse:
        """推进到下一阶段

        expected_phase 不是轮次的当前阶段时视为过期请求并拒绝。
        并发推进同一阶段时只有一个调用真正写入，其余调用返回相同的结果。
        """
        round_obj = self.store.get_round(round_id)
        if not (self.authorizer.is_system(actor_token) or self.authorizer.validate(actor_token, round_obj.room_id)):
            raise AuthorizationError("只有房主或系统计时器可以推进阶段")
        expected = RoundPhase.parse(expected_phase) if expected_phase is not None else None
        return await self._advance(round_obj, expected)

    async def _advance(self, round_obj: Round, expected: Optional[RoundPhase]) -> AdvancePhaseResponse:
        round_id = round_obj.id
        current = round_obj.phase
        if expected is not None and expected is not current:
            raise StateError(
                f"阶段已变化：期望{expected.value}，实际{current.value}",
                round_id=round_id, expected_phase=expected.value, actual_phase=current.value
            )
        if current.is_terminal:
            raise StateError("轮次已经结束", round_id=round_id, actual_phase=current.value)

        nxt = current.successor(round_obj.guess_enabled)
        now = self.clock.now()
        deadline = self.clock.deadline_for(nxt, now)
        values = {}
        score_changes = []

        if nxt is RoundPhase.REVEAL:
            # 投票已经结束，揭晓时记录结果
            values["outcome"] = self._outcome(round_obj)
        elif nxt is RoundPhase.DONE:
            # 先结算再进入终止阶段，终止后的轮次不再修改
            score_changes = self._score(round_obj)
            values["ended_at"] = now

        advanced = self.store.transition_phase(round_id, current, nxt, deadline, **values)
        if not advanced:
            fresh = self.store.get_round(round_id)
            if fresh.phase is not nxt:
                raise StateError(
                    f"阶段已变化：期望{current.value}，实际{fresh.phase.value}",
                    round_id=round_id, expected_phase=current.value, actual_phase=fresh.phase.value
                )
            # 另一个并发调用完成了同样的切换
            if score_changes:
                await self._finish_scoring(fresh, score_changes)
            return AdvancePhaseResponse(new_phase=nxt.value, deadline=fresh.phase_deadline)

        logger.info(f"⏭️ 轮次 {round_id}: {current.value} -> {nxt.value}")
        if self.scheduler is not None:
            self.scheduler.cancel(round_id)

        round_obj = self.store.get_round(round_id)
        await self._publish_phase(round_obj)
        if score_changes:
            await self._finish_scoring(round_obj, score_changes)
        self._schedule_pending(round_obj)
        return AdvancePhaseResponse(new_phase=nxt.value, deadline=deadline)

    def _outcome(self, round_obj: Round) -> RoundOutcome:
        votes = self.store.list_votes(round_obj.id)
        result = tally_votes(votes, self.directory.member_ids(round_obj.room_id))
        return classify_outcome(result, round_obj.imposter_id)

    def _score(self, round_obj: Round):
        if round_obj.scored:
            # 上次结算后阶段切换失败，按已写入的得分记录补发结算事件
            return [
                ScoreChange(d.player_id, d.points, d.reason)
                for d in self.store.list_score_deltas(round_obj.id)
            ]
        outcome = round_obj.outcome or self._outcome(round_obj)
        player_ids = self.directory.member_ids(round_obj.room_id)
        return self.scoring.score_round(self.store, round_obj, player_ids, outcome)

    async def _finish_scoring(self, round_obj: Round, score_changes) -> None:
        """发布结算事件，并检查是否有玩家达到获胜分数"""
        room = self.store.get_room(round_obj.room_id)
        members = self.directory.list_members(round_obj.room_id)
        win_target = getattr(room, 'win_target', settings.DEFAULT_WIN_TARGET)
        # 同分时按加入顺序，members 已按加入顺序排列
        contenders = [p for p in members if (p.total_score or 0) >= win_target]
        winner = max(contenders, key=lambda p: p.total_score, default=None)
        if winner is not None:
            self.store.mark_room_ended(round_obj.room_id)
            logger.info(f"🏁 房间 {round_obj.room_id} 游戏结束，获胜者: {winner.name}")

        await self._publish(round_obj, "RoundScored", {
            "outcome": round_obj.outcome.value if round_obj.outcome else None,
            "deltas": [
                {"player_id": c.player_id, "points": c.points, "reason": c.reason}
                for c in score_changes
            ],
            "totals": {p.id: p.total_score for p in members},
            "game_winner_id": winner.id if winner is not None else None,
        })

    # ---- 玩家提交 ----

    async def submit_answer(
        self,
        round_id: int,
        player_id: int,
        prompt_id: int,
        text: str,
        actor_token: Optional[str],
    ) -> AcceptedResponse:
        """提交或覆盖某道题的答案"""
        round_obj = self.store.get_round(round_id)
        if not self.authorizer.validate_player(actor_token, player_id):
            raise AuthorizationError("令牌与玩家不匹配")
        self.directory.get_member(round_obj.room_id, player_id)
        self._require_phase(round_obj, RoundPhase.ANSWER_ENTRY)
        self._require_open(round_obj)

        cleaned = (text or "").strip()
        if not cleaned:
            raise ValidationError("答案不能为空", field="text", value=text)
        if len(cleaned) > settings.MAX_ANSWER_LENGTH:
            raise ValidationError(
                f"答案长度不能超过{settings.MAX_ANSWER_LENGTH}个字符", field="text", value=len(cleaned)
            )

        prompt_ids = [p.id for p in self.store.list_prompts(round_id)]
        if prompt_id not in prompt_ids:
            raise NotFoundError("题目", prompt_id)

        self.store.upsert_submission(round_id, player_id, prompt_id, cleaned, self.clock.now())
        progress = self.tracker.progress(
            self.directory.member_ids(round_obj.room_id), prompt_ids, self.store.list_submissions(round_id)
        )
        player_progress = progress.for_player(player_id)
        await self._publish(round_obj, "SubmissionReceived", {
            "player_id": player_id,
            "prompt_id": prompt_id,
            "submitted_count": player_progress.submitted_count if player_progress else 0,
            "completed_players": progress.completed_players,
            "fully_answered": progress.fully_answered,
        })
        await self.check_auto_advance(round_id)
        return AcceptedResponse(accepted=True)

    async def submit_vote(
        self,
        round_id: int,
        voter_id: int,
        target_id: int,
        actor_token: Optional[str],
    ) -> AcceptedResponse:
        """投票或改票"""
        round_obj = self.store.get_round(round_id)
        if not self.authorizer.validate_player(actor_token, voter_id):
            raise AuthorizationError("令牌与投票者不匹配")
        self.directory.get_member(round_obj.room_id, voter_id)
        self.directory.get_member(round_obj.room_id, target_id)
        self._require_phase(round_obj, RoundPhase.VOTE)
        self._require_open(round_obj)
        if voter_id == target_id and not settings.ALLOW_SELF_VOTE:
            raise ValidationError("不能投票给自己", field="target_id", value=target_id)

        self.store.upsert_vote(round_id, voter_id, target_id, self.clock.now())
        votes = self.store.list_votes(round_id)
        # 揭晓前只公布谁已投票，不公布投给谁
        await self._publish(round_obj, "VoteReceived", {
            "voter_id": voter_id,
            "voted_count": len(votes),
        })
        await self.check_auto_advance(round_id)
        return AcceptedResponse(accepted=True)

    async def submit_imposter_guess(
        self,
        round_id: int,
        guess_index: int,
        actor_token: Optional[str],
    ) -> GuessResponse:
        """卧底猜测秘密题目的序号"""
        round_obj = self.store.get_round(round_id)
        if not self.authorizer.validate_player(actor_token, round_obj.imposter_id):
            raise AuthorizationError("只有卧底可以猜测秘密题目")
        self._require_phase(round_obj, RoundPhase.IMPOSTER_GUESS)
        if not isinstance(guess_index, int) or not 0 <= guess_index < round_obj.prompt_count:
            raise ValidationError(
                f"猜测序号必须在0到{round_obj.prompt_count - 1}之间", field="guess_index", value=guess_index
            )

        if not self.store.set_imposter_guess(round_id, guess_index):
            raise StateError("猜词阶段已经结束", round_id=round_id)
        correct = guess_index == round_obj.secret_prompt_index
        logger.info(f"🎯 轮次 {round_id} 卧底猜测序号 {guess_index}，{'猜中' if correct else '未猜中'}")
        await self.check_auto_advance(round_id)
        return GuessResponse(correct=correct)

    async def force_complete(
        self,
        round_id: int,
        actor_token: Optional[str],
        confirm: bool = False,
    ) -> ForceCompleteResponse:
        """房主在多数玩家答完后强制结束答题阶段"""
        round_obj = self.store.get_round(round_id)
        if not self.authorizer.validate(actor_token, round_obj.room_id):
            raise AuthorizationError("只有房主可以强制结束答题")
        self._require_phase(round_obj, RoundPhase.ANSWER_ENTRY)

        progress = self._progress(round_obj)
        decision = self.tracker.force_complete(
            progress, confirm, self.clock.now(), pending_at=round_obj.force_complete_at
        )
        if decision.effective_at is not None and round_obj.force_complete_at is None:
            if not self.store.set_force_complete_at(round_id, decision.effective_at):
                fresh = self.store.get_round(round_id)
                self._require_phase(fresh, RoundPhase.ANSWER_ENTRY)
                return ForceCompleteResponse(
                    requires_confirmation=False,
                    countdown_seconds=decision.countdown_seconds,
                    effective_at=fresh.force_complete_at,
                )
            logger.info(f"⏳ 轮次 {round_id} 将在{decision.countdown_seconds}秒后强制结束答题")
            await self.check_auto_advance(round_id)

        return ForceCompleteResponse(
            requires_confirmation=decision.requires_confirmation,
            countdown_seconds=decision.countdown_seconds,
            effective_at=decision.effective_at,
        )

    # ---- 自动推进 ----

    def pending_auto_advance(self, round_obj: Round) -> Optional[Tuple[float, str]]:
        """返回最早的自动推进触发条件 (延迟秒数, 原因)，没有则返回None"""
        phase = round_obj.phase
        if phase.is_terminal:
            return None

        triggers: List[Tuple[float, str]] = []
        remaining = self.clock.remaining(round_obj)
        if remaining is not None:
            triggers.append((remaining, TRIGGER_DEADLINE))

        if phase is RoundPhase.ANSWER_ENTRY:
            force_at = round_obj.force_complete_at
            if force_at is not None:
                triggers.append((self.clock.seconds_until(force_at), TRIGGER_FORCE_COMPLETE))
            if self._progress(round_obj).fully_answered:
                triggers.append((settings.AUTO_ADVANCE_GRACE_SECONDS, TRIGGER_ALL_ANSWERED))
        elif phase is RoundPhase.VOTE:
            members = self.directory.member_ids(round_obj.room_id)
            if all_voted(self.store.list_votes(round_obj.id), members):
                triggers.append((settings.AUTO_ADVANCE_GRACE_SECONDS, TRIGGER_ALL_VOTED))
        elif phase is RoundPhase.IMPOSTER_GUESS:
            if round_obj.imposter_guess is not None:
                triggers.append((settings.GUESS_GRACE_SECONDS, TRIGGER_GUESS_SUBMITTED))

        if not triggers:
            return None
        return min(triggers, key=lambda t: t[0])

    async def check_auto_advance(self, round_id: int) -> Optional[AdvancePhaseResponse]:
        """评估自动推进条件：已到期则立即推进，否则交给调度器延迟执行"""
        round_obj = self.store.get_round(round_id)
        trigger = self.pending_auto_advance(round_obj)
        if trigger is None:
            return None
        delay, reason = trigger
        if delay <= 0:
            return await self.advance_due(round_obj, reason)
        if self.scheduler is not None:
            self.scheduler.schedule(round_id, round_obj.phase, delay, reason)
        return None

    async def advance_due(self, round_obj: Round, reason: str) -> Optional[AdvancePhaseResponse]:
        """以系统身份推进；阶段已经变化时什么也不做"""
        try:
            result = await self._advance(round_obj, round_obj.phase)
        except StateError as e:
            logger.debug(f"轮次 {round_obj.id} 自动推进跳过: {e.message}")
            return None
        logger.info(f"⏰ 轮次 {round_obj.id} 自动推进({reason}) -> {result.new_phase}")
        return result

    async def reconcile_round(self, round_id: int) -> Optional[AdvancePhaseResponse]:
        """对账：重新广播当前阶段并重新评估自动推进"""
        round_obj = self.store.get_round(round_id)
        if round_obj.phase.is_terminal:
            return None
        await self._publish_phase(round_obj)
        return await self.check_auto_advance(round_id)

    def _schedule_pending(self, round_obj: Round) -> None:
        if self.scheduler is None:
            return
        trigger = self.pending_auto_advance(round_obj)
        if trigger is not None:
            delay, reason = trigger
            self.scheduler.schedule(round_obj.id, round_obj.phase, max(delay, 0.0), reason)

    # ---- 快照 ----

    async def get_round_snapshot(self, round_id: int) -> RoundSnapshot:
        """获取轮次快照，未到揭晓阶段的信息不会包含在内"""
        round_obj = self.store.get_round(round_id)
        phase = round_obj.phase
        revealed = phase.at_least(RoundPhase.REVEAL)
        prompts = self.store.list_prompts(round_id)
        members = self.directory.list_members(round_obj.room_id)
        progress = self.tracker.progress([p.id for p in members], [p.id for p in prompts], self.store.list_submissions(round_id))

        submissions = []
        if phase.at_least(RoundPhase.REVEAL_CLUES):
            submissions = [SubmissionInfo.model_validate(s) for s in self.store.list_submissions(round_id)]

        votes = self.store.list_votes(round_id)
        vote_infos = [
            VoteInfo(voter_id=v.voter_id, target_id=v.target_id if revealed else None)
            for v in votes
        ]

        deltas = self.store.list_score_deltas(round_id)
        scores = []
        for player in members:
            mine = [d for d in deltas if d.player_id == player.id]
            scores.append(ScoreInfo(
                player_id=player.id,
                name=player.name,
                total_score=player.total_score or 0,
                round_points=sum(d.points for d in mine),
                reasons=[d.reason for d in mine],
            ))

        return RoundSnapshot(
            round_id=round_obj.id,
            room_id=round_obj.room_id,
            round_number=round_obj.round_number,
            phase=phase.value,
            deadline=round_obj.phase_deadline,
            prompts=[PromptInfo.model_validate(p) for p in prompts],
            progress=progress.to_dict(),
            submissions=submissions,
            votes=vote_infos,
            scores=scores,
            imposter_id=round_obj.imposter_id if revealed else None,
            secret_prompt_index=round_obj.secret_prompt_index if revealed else None,
            imposter_guess=round_obj.imposter_guess if revealed else None,
            outcome=round_obj.outcome.value if revealed and round_obj.outcome else None,
            tally=tally_votes(votes, [p.id for p in members]).to_dict() if revealed else None,
            scored=bool(round_obj.scored),
        )

    # ---- 内部工具 ----

    def _progress(self, round_obj: Round):
        prompt_ids = [p.id for p in self.store.list_prompts(round_obj.id)]
        return self.tracker.progress(
            self.directory.member_ids(round_obj.room_id), prompt_ids, self.store.list_submissions(round_obj.id)
        )

    def _require_phase(self, round_obj: Round, phase: RoundPhase) -> None:
        if round_obj.phase is not phase:
            raise StateError(
                f"当前阶段为{round_obj.phase.value}，不能执行该操作",
                round_id=round_obj.id, expected_phase=phase.value, actual_phase=round_obj.phase.value
            )

    def _require_open(self, round_obj: Round) -> None:
        """截止时间已过的阶段不再接受提交，等待计时器推进"""
        if self.clock.is_expired(round_obj):
            raise StateError(
                f"{round_obj.phase.value}阶段已经截止",
                round_id=round_obj.id, actual_phase=round_obj.phase.value
            )

    async def _publish_phase(self, round_obj: Round) -> None:
        await self._publish(round_obj, "RoundPhaseChanged", {
            "phase": round_obj.phase.value,
            "round_number": round_obj.round_number,
            "deadline": format_timestamp_with_timezone(round_obj.phase_deadline),
        })

    async def _publish(self, round_obj: Round, event_type: str, payload: dict) -> None:
        if self.notifier is None:
            return
        event = RoundEvent(
            type=event_type,
            room_id=round_obj.room_id,
            round_id=round_obj.id,
            payload=payload,
            timestamp=self.clock.now(),
        )
        try:
            await self.notifier.publish(event)
        except TransientStoreError as e:
            # 状态已经提交，对账时会重新广播当前阶段
            logger.warning(f"⚠️ 轮次 {round_obj.id} 事件 {event_type} 推送失败: {e.message}")
