from sqlalchemy import Column, String, Integer, DateTime, Text, Boolean, ForeignKey, JSON, UniqueConstraint, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from goalcoach.db.base import Base
import uuid


class HabitDefinition(Base):
    __tablename__ = "habit_definitions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    # Cached from the completion ledger, refreshed on every completion
    global_completions = Column(Integer, nullable=False, default=0)
    current_streak = Column(Integer, nullable=False, default=0)
    longest_streak = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    instances = relationship("HabitInstance", back_populates="habit_definition")

    def __repr__(self):
        return f"<HabitDefinition(name='{self.name}', active={self.is_active})>"


class HabitInstance(Base):
    __tablename__ = "habit_instances"
    __table_args__ = (
        UniqueConstraint("habit_definition_id", "goal_instance_id", name="uq_habit_instance_goal"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    habit_definition_id = Column(String, ForeignKey("habit_definitions.id", ondelete="CASCADE"), nullable=False, index=True)
    goal_instance_id = Column(String, ForeignKey("goal_instances.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False)
    target_value = Column(Integer, nullable=False)
    current_value = Column(Integer, nullable=False, default=0)
    goal_specific_streak = Column(Integer, nullable=False, default=0)
    frequency_settings = Column(JSON, nullable=True)  # {frequency, perPeriodTarget, periodsCount}
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    habit_definition = relationship("HabitDefinition", back_populates="instances")
    goal_instance = relationship("GoalInstance", back_populates="habit_instances")

    def __repr__(self):
        return f"<HabitInstance(habit='{self.habit_definition_id}', goal='{self.goal_instance_id}', {self.current_value}/{self.target_value})>"


class HabitCompletion(Base):
    """Append-only ledger row; never updated or deleted"""

    __tablename__ = "habit_completions"
    __table_args__ = (
        UniqueConstraint(
            "habit_definition_id", "user_id", "period_start", "period_slot",
            name="uq_habit_completion_period_slot",
        ),
        Index("ix_habit_completions_habit_user_completed_at", "habit_definition_id", "user_id", "completed_at"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    habit_definition_id = Column(String, ForeignKey("habit_definitions.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=False)
    notes = Column(Text, nullable=True)
    # Start of the frequency period the completion was counted against, and its
    # 0-based position within that period's capacity
    period_start = Column(DateTime(timezone=True), nullable=False)
    period_slot = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<HabitCompletion(habit='{self.habit_definition_id}', completed_at='{self.completed_at}')>"
