import random
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from imposter.core.config import settings
from imposter.core.database import init_db
from imposter.models.player import Player
from imposter.models.room import Room
from imposter.services.round_clock import RoundClock
from imposter.services.round_controller import RoundController

START = datetime(2026, 1, 1, 12, 0, 0)
PLAYER_NAMES = ["房主", "小明", "小红", "小刚"]


class FakeClock:
    """可以手动拨动的时钟"""

    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class RecordingNotifier:
    """记录所有发布的事件"""

    def __init__(self):
        self.events = []

    async def publish(self, event):
        self.events.append(event)

    def of_type(self, event_type: str):
        return [e for e in self.events if e.type == event_type]


def seed_room(db, names=PLAYER_NAMES, code="ABCD", win_target=5) -> Room:
    room = Room(code=code, status="lobby", win_target=win_target, current_round=0)
    db.add(room)
    db.flush()
    for index, name in enumerate(names):
        db.add(Player(
            room_id=room.id,
            name=name,
            is_host=index == 0,
            write_token=f"{code}-token-{index}",
            total_score=0,
            joined_at=START + timedelta(seconds=index),
        ))
    db.commit()
    db.refresh(room)
    return room


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def room(db):
    return seed_room(db)


@pytest.fixture
def players(db, room):
    return db.query(Player).filter(Player.room_id == room.id).order_by(Player.joined_at, Player.id).all()


@pytest.fixture
def host(players):
    return players[0]


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def clock(fake_clock):
    return RoundClock(now=fake_clock)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def controller(db, notifier, clock):
    return RoundController(db, notifier=notifier, clock=clock, rng=random.Random(7))


@pytest.fixture
def instant_auto_advance(monkeypatch):
    """全部提交后立即推进，不等待宽限时间"""
    monkeypatch.setattr(settings, "AUTO_ADVANCE_GRACE_SECONDS", 0)
    monkeypatch.setattr(settings, "GUESS_GRACE_SECONDS", 0)
