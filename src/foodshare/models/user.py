from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, Integer, String

from ..database import Base


class Role(str, Enum):
    DONOR = "Donor"
    RECEIVER = "Receiver"
    ADMIN = "Admin"


class User(Base):
    """SQLAlchemy model for application users."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False)
    location = Column(String(255))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
