from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func
from goalcoach.db.base import Base
import uuid


class User(Base):
    __tablename__ = "app_user"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, nullable=True, index=True)
    timezone = Column(String, nullable=True)  # IANA zone, e.g. "America/Chicago"
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<User(email='{self.email}', timezone='{self.timezone}')>"
