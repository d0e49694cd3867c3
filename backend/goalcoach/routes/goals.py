from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field, model_validator
from typing import List, Optional
from goalcoach.core.context import RequestContext
from goalcoach.core.deps import get_request_context
from goalcoach.core.errors import GoalNotFound
from goalcoach.db.session import get_db
from goalcoach.services.goal_progress import GoalProgress, ProgressAggregator
from goalcoach.services.habit_rebalancer import HabitGoalRebalancer, NewHabit
from goalcoach.services.time_windows import Cadence
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


class GoalProgressResponse(BaseModel):
    goal_instance_id: str
    percent: int
    is_complete: bool
    habit_based_progress: float
    manual_offset: float
    habit_count: int


class ProgressReport(BaseModel):
    percent: Optional[float] = Field(None, ge=0, le=100)
    increment: Optional[float] = Field(None, ge=0)

    @model_validator(mode="after")
    def _one_of(self):
        if self.percent is not None and self.increment is not None:
            raise ValueError("Provide either percent or increment, not both")
        return self


class ProgressReportResponse(BaseModel):
    goal_instance_id: str
    old_percent: int
    new_percent: int
    milestone_reached: Optional[int] = None
    completed: bool


class NewHabitIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    cadence: Cadence = Cadence.DAILY
    per_period_target: int = Field(1, ge=1)


class RebalanceRequest(BaseModel):
    remove: List[str] = []
    add: List[NewHabitIn] = []


class AddedHabitOut(BaseModel):
    habit_definition_id: str
    habit_instance_id: str
    title: str


class RebalanceResponse(BaseModel):
    goal_instance_id: str
    removed: List[str]
    added: List[AddedHabitOut]
    manual_offset: float


def _progress_response(progress: GoalProgress) -> GoalProgressResponse:
    return GoalProgressResponse(
        goal_instance_id=progress.goal_instance_id,
        percent=progress.percent,
        is_complete=progress.is_complete,
        habit_based_progress=progress.habit_based_progress,
        manual_offset=progress.manual_offset,
        habit_count=progress.habit_count
    )


@router.get("/{goal_instance_id}/progress", response_model=GoalProgressResponse)
async def get_goal_progress(
    goal_instance_id: str,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Current progress percentage for a goal"""

    try:
        progress = ProgressAggregator(db, ctx).compute_goal_progress(goal_instance_id)
    except GoalNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Goal not found")

    return _progress_response(progress)


@router.post("/{goal_instance_id}/progress", response_model=ProgressReportResponse)
async def report_goal_progress(
    goal_instance_id: str,
    report: ProgressReport,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Record user-reported progress on a goal"""

    try:
        update = ProgressAggregator(db, ctx).report_progress(
            goal_instance_id, percent=report.percent, increment=report.increment
        )
    except GoalNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Goal not found")
    except Exception as e:
        logger.error(f"Failed to report progress for goal {goal_instance_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update goal progress")

    return ProgressReportResponse(
        goal_instance_id=update.goal_instance_id,
        old_percent=update.old_percent,
        new_percent=update.new_percent,
        milestone_reached=update.milestone_reached,
        completed=update.completed
    )


@router.post("/{goal_instance_id}/complete", response_model=GoalProgressResponse)
async def complete_goal(
    goal_instance_id: str,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Explicitly mark a goal as completed"""

    try:
        progress = ProgressAggregator(db, ctx).complete_goal(goal_instance_id)
    except GoalNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Goal not found")
    except Exception as e:
        logger.error(f"Failed to complete goal {goal_instance_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to complete goal")

    return _progress_response(progress)


@router.post("/{goal_instance_id}/rebalance", response_model=RebalanceResponse)
async def rebalance_goal_habits(
    goal_instance_id: str,
    request: RebalanceRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Swap the habits supporting a goal while keeping its progress unchanged"""

    new_habits = [
        NewHabit(
            title=h.title,
            description=h.description,
            cadence=h.cadence.value,
            per_period_target=h.per_period_target
        )
        for h in request.add
    ]

    try:
        result = HabitGoalRebalancer(db, ctx).swap_habits(goal_instance_id, request.remove, new_habits)
    except GoalNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Goal not found")
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to rebalance habits for goal {goal_instance_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update goal habits")

    return RebalanceResponse(
        goal_instance_id=result.goal_instance_id,
        removed=result.removed,
        added=[AddedHabitOut(**added.__dict__) for added in result.added],
        manual_offset=result.manual_offset
    )
