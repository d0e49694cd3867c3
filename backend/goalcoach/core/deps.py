from typing import Optional
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session
from goalcoach.core.context import RequestContext
from goalcoach.db.session import get_db
from goalcoach.models.user import User


async def get_current_user(
    x_user_id: Optional[str] = Header(None),
    db: Session = Depends(get_db)
) -> User:
    """Resolve the calling user from the identity header set by the auth layer"""

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
    )

    if not x_user_id:
        raise credentials_exception

    user = db.query(User).filter(User.id == x_user_id).first()
    if user is None:
        raise credentials_exception

    return user


async def get_request_context(current_user: User = Depends(get_current_user)) -> RequestContext:
    return RequestContext.for_user(current_user)
