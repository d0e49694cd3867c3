from sqlalchemy import Column, String, Integer, DateTime, Text, Float, Boolean, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from goalcoach.db.base import Base
import uuid


class GoalStatus:
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class GoalDefinition(Base):
    __tablename__ = "goal_definitions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    unit = Column(String(50), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<GoalDefinition(title='{self.title}')>"


class GoalInstance(Base):
    __tablename__ = "goal_instances"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    goal_definition_id = Column(String, ForeignKey("goal_definitions.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, index=True)
    target_value = Column(Integer, nullable=False, default=100)
    # Percentage points added on top of habit-based progress
    manual_progress_offset = Column(Float, nullable=False, default=0.0)
    status = Column(String(20), nullable=False, default=GoalStatus.ACTIVE)  # active, completed, archived
    start_date = Column(DateTime(timezone=True), server_default=func.now())
    target_date = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    definition = relationship("GoalDefinition")
    habit_instances = relationship("HabitInstance", back_populates="goal_instance")

    def __repr__(self):
        return f"<GoalInstance(id='{self.id}', status='{self.status}', offset={self.manual_progress_offset})>"
