import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DEFAULT_TIMEZONE", "UTC")

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from goalcoach.core.context import RequestContext
from goalcoach.db.base import build_engine
from goalcoach.db.session import create_tables
from goalcoach.models import (
    GoalDefinition, GoalInstance, GoalStatus, HabitCompletion, HabitDefinition, HabitInstance, User
)
from goalcoach.services.habit_frequency import FrequencySettings
from goalcoach.services.time_windows import Cadence

# Wednesday, 13:00 in Chicago (CDT)
NOW = datetime(2025, 3, 12, 18, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(
        f"sqlite:///{tmp_path / 'goalcoach.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    create_tables(bind=engine)
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
def user(db):
    user = User(email="runner@example.com", timezone="America/Chicago")
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def ctx(user):
    return RequestContext.for_user(user, now=NOW)


@pytest.fixture
def factory(db, user):
    return Factory(db, user)


class Factory:
    """Builds goal/habit rows directly, bypassing the engine services"""

    def __init__(self, db, user):
        self.db = db
        self.user = user

    def goal(self, title="Run a half marathon", offset=0.0, status=GoalStatus.ACTIVE, target_date=None, user=None):
        user = user or self.user
        definition = GoalDefinition(user_id=user.id, title=title)
        self.db.add(definition)
        self.db.flush()
        goal = GoalInstance(
            goal_definition_id=definition.id,
            user_id=user.id,
            target_value=100,
            manual_progress_offset=offset,
            status=status,
            target_date=target_date,
        )
        self.db.add(goal)
        self.db.commit()
        return goal

    def habit(self, name="Morning run", active=True, user=None):
        user = user or self.user
        habit = HabitDefinition(user_id=user.id, name=name, is_active=active)
        self.db.add(habit)
        self.db.commit()
        return habit

    def link(self, habit, goal, target=10, current=0, cadence="daily", per_period_target=1, created_at=None):
        frequency = FrequencySettings(
            frequency=Cadence.parse(cadence),
            per_period_target=per_period_target,
            periods_count=max(1, target // per_period_target),
        )
        instance = HabitInstance(
            habit_definition_id=habit.id,
            goal_instance_id=goal.id,
            user_id=goal.user_id,
            target_value=target,
            current_value=current,
            frequency_settings=frequency.to_json(),
        )
        if created_at is not None:
            instance.created_at = created_at
        self.db.add(instance)
        self.db.commit()
        return instance

    def completion(self, habit, completed_at, slot=0):
        completion = HabitCompletion(
            habit_definition_id=habit.id,
            user_id=habit.user_id,
            completed_at=completed_at,
            period_start=completed_at,
            period_slot=slot,
        )
        self.db.add(completion)
        self.db.commit()
        return completion


def days_ago(n, base=NOW):
    return base - timedelta(days=n)
