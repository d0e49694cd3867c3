from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime
from goalcoach.core.context import RequestContext
from goalcoach.core.deps import get_request_context
from goalcoach.core.errors import AlreadyAtCapacity, HabitNotFound
from goalcoach.db.session import get_db
from goalcoach.services.completion_ledger import CompletionLedger
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


class CompletionCreate(BaseModel):
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None


class CompletionOut(BaseModel):
    id: str
    habit_id: str
    completed_at: str
    notes: Optional[str]


class GoalProgressChangeOut(BaseModel):
    goal_instance_id: str
    habit_instance_id: str
    old_percent: int
    new_percent: int
    milestone_reached: Optional[int] = None


class CompletionResponse(BaseModel):
    completion: CompletionOut
    current_streak: int
    longest_streak: int
    goals: List[GoalProgressChangeOut]


class PeriodStatusResponse(BaseModel):
    habit_id: str
    frequency: str
    per_period_target: int
    window_start: str
    window_end: str
    count: int
    capacity: int
    state: str
    can_complete: bool


@router.post("/{habit_id}/completions", response_model=CompletionResponse, status_code=status.HTTP_201_CREATED)
async def log_habit_completion(
    habit_id: str,
    payload: CompletionCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Record that the user did a habit"""

    ledger = CompletionLedger(db, ctx)
    try:
        result = ledger.log_completion(habit_id, completed_at=payload.completed_at, notes=payload.notes)
    except AlreadyAtCapacity as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "code": "AlreadyAtCapacity",
                "message": str(e),
                "count": e.count,
                "capacity": e.capacity,
                "frequency": e.cadence,
            }
        )
    except HabitNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Habit not found")
    except Exception as e:
        logger.error(f"Failed to log completion for habit {habit_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to log habit completion")

    completion = result.completion
    return CompletionResponse(
        completion=CompletionOut(
            id=completion.id,
            habit_id=completion.habit_definition_id,
            completed_at=completion.completed_at.isoformat(),
            notes=completion.notes
        ),
        current_streak=result.current_streak,
        longest_streak=result.longest_streak,
        goals=[GoalProgressChangeOut(**change.__dict__) for change in result.goals]
    )


@router.get("/{habit_id}/period", response_model=PeriodStatusResponse)
async def get_habit_period_status(
    habit_id: str,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """How many times the habit was done in its current period"""

    try:
        period = CompletionLedger(db, ctx).period_status(habit_id)
    except HabitNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Habit not found")

    return PeriodStatusResponse(
        habit_id=period.habit_id,
        frequency=period.frequency.frequency.value,
        per_period_target=period.frequency.per_period_target,
        window_start=period.window.start.isoformat(),
        window_end=period.window.end.isoformat(),
        count=period.count,
        capacity=period.capacity,
        state=period.state,
        can_complete=period.can_complete
    )
