"""
自动推进调度服务

宽限延迟任务是协作式、可取消的：阶段变化时待执行的任务会被取消，
即使没有被及时取消，任务执行时也会携带原阶段，阶段不一致则不做任何事。
周期性对账任务会重新评估所有进行中的轮次，作为通知丢失或进程重启后的兜底。
"""

import asyncio
import logging
from typing import Callable, Dict, Optional, Tuple
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from imposter.core.config import settings
from imposter.core.exceptions import RoundEngineError, TransientStoreError
from imposter.models.round_model import RoundPhase

logger = logging.getLogger(__name__)


class AutoAdvanceScheduler:
    """管理每个轮次的待执行自动推进，并运行周期性对账"""

    def __init__(
        self,
        session_factory: Optional[Callable] = None,
        notifier=None,
        clock=None,
        reconcile_interval: Optional[int] = None,
    ):
        if session_factory is None:
            from imposter.core.database import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory
        self.notifier = notifier
        self.clock = clock
        self.reconcile_interval = reconcile_interval or settings.RECONCILE_INTERVAL_SECONDS
        # round_id -> (阶段, 到期时间, 任务)
        self.pending: Dict[int, Tuple[RoundPhase, float, asyncio.Task]] = {}
        self._scheduler: Optional[AsyncIOScheduler] = None

    def _controller(self, db):
        from imposter.services.round_controller import RoundController
        return RoundController(db, notifier=self.notifier, clock=self.clock, scheduler=self)

    # ---- 延迟推进 ----

    def schedule(self, round_id: int, phase: RoundPhase, delay: float, reason: str) -> None:
        """安排在 delay 秒后推进；同一阶段已有更早的待执行任务时保留原任务"""
        loop = asyncio.get_running_loop()
        due = loop.time() + max(delay, 0.0)
        existing = self.pending.get(round_id)
        if existing is not None:
            existing_phase, existing_due, task = existing
            if existing_phase is phase and existing_due <= due and not task.done():
                return
            self._cancel_task(task)

        task = loop.create_task(self._fire(round_id, phase, delay, reason))
        self.pending[round_id] = (phase, due, task)
        logger.debug(f"轮次 {round_id} 将在{delay:.1f}秒后自动推进({reason})")

    def cancel(self, round_id: int) -> None:
        """阶段变化时取消该轮次的待执行任务"""
        existing = self.pending.pop(round_id, None)
        if existing is not None:
            self._cancel_task(existing[2])

    def cancel_all(self) -> None:
        for round_id in list(self.pending):
            self.cancel(round_id)

    def _cancel_task(self, task: asyncio.Task) -> None:
        # 正在执行推进的任务不能取消自己
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current and not task.done():
            task.cancel()

    async def _fire(self, round_id: int, phase: RoundPhase, delay: float, reason: str) -> None:
        try:
            if delay > 0:
                await asyncio.sleep(delay)
            await self._run_with_retry(round_id, phase, reason)
        except asyncio.CancelledError:
            logger.debug(f"轮次 {round_id} 的自动推进已取消")
            raise
        finally:
            entry = self.pending.get(round_id)
            if entry is not None and entry[2] is asyncio.current_task():
                del self.pending[round_id]

    async def _run_with_retry(self, round_id: int, phase: RoundPhase, reason: str) -> None:
        attempts = max(1, settings.STORE_RETRY_ATTEMPTS)
        for attempt in range(attempts):
            db = self.session_factory()
            try:
                controller = self._controller(db)
                round_obj = controller.store.get_round(round_id)
                if round_obj.phase is not phase:
                    logger.debug(f"轮次 {round_id} 已离开{phase.value}阶段，跳过自动推进")
                    return
                await controller.advance_due(round_obj, reason)
                return
            except TransientStoreError as e:
                if attempt == attempts - 1:
                    logger.error(f"❌ 轮次 {round_id} 自动推进失败，等待下次对账: {e.message}")
                    return
                backoff = settings.STORE_RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(f"⚠️ 轮次 {round_id} 自动推进遇到临时错误，{backoff}秒后重试")
                await asyncio.sleep(backoff)
            except RoundEngineError as e:
                logger.warning(f"⚠️ 轮次 {round_id} 自动推进被拒绝: {e.message}")
                return
            finally:
                db.close()

    # ---- 周期性对账 ----

    async def reconcile(self) -> int:
        """重新评估所有进行中的轮次，返回处理的轮次数量"""
        db = self.session_factory()
        try:
            controller = self._controller(db)
            try:
                round_ids = [r.id for r in controller.store.list_active_rounds()]
            except TransientStoreError as e:
                logger.warning(f"⚠️ 对账时读取轮次失败: {e.message}")
                return 0

            for round_id in round_ids:
                try:
                    await controller.reconcile_round(round_id)
                except RoundEngineError as e:
                    logger.warning(f"⚠️ 轮次 {round_id} 对账失败: {e.message}")
            return len(round_ids)
        finally:
            db.close()

    def start(self) -> None:
        """启动周期性对账任务"""
        if self._scheduler is not None:
            return
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.reconcile,
            "interval",
            seconds=self.reconcile_interval,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(f"🔄 自动推进对账已启动，间隔{self.reconcile_interval}秒")

    def shutdown(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        self.cancel_all()


# 全局调度器实例
_scheduler = None

def get_auto_advance_scheduler() -> AutoAdvanceScheduler:
    """获取全局自动推进调度器"""
    global _scheduler
    if _scheduler is None:
        from imposter.services.change_notifier import get_change_notifier
        _scheduler = AutoAdvanceScheduler(notifier=get_change_notifier())
    return _scheduler
