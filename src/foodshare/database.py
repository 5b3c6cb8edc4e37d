"""Database setup and models for food listings and their claims."""

from datetime import datetime

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from .config import settings

CATEGORIES = (
    "Cooked Meal",
    "Groceries",
    "Fruits & Vegetables",
    "Bakery",
    "Dairy",
    "Beverages",
    "Other",
)
DEFAULT_CATEGORY = "Other"


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(settings.database_url, future=True, **_engine_kwargs(settings.database_url))
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
Base = declarative_base()


class FoodListing(Base):
    """A donor's offer of surplus food with a bounded number of claim slots."""

    __tablename__ = "food_listings"

    id = Column(Integer, primary_key=True, index=True)
    donor_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    donor_name = Column(String(120), nullable=False)
    category = Column(String(40), default=DEFAULT_CATEGORY, nullable=False)
    description = Column(Text, nullable=False)
    quantity = Column(String(120), nullable=False)
    location = Column(String(255), nullable=False)
    image_url = Column(String(500), nullable=False)
    mfg_time = Column(DateTime, nullable=False)
    expiry_time = Column(DateTime, index=True, nullable=False)
    max_claims = Column(Integer, default=1, nullable=False)
    # mirrors len(claims); the conditional claim update compares against it
    claim_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    claims = relationship(
        "ListingClaim",
        back_populates="listing",
        order_by="ListingClaim.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class ListingClaim(Base):
    """One receiver's slot on a listing."""

    __tablename__ = "listing_claims"
    __table_args__ = (
        UniqueConstraint("listing_id", "receiver_id", name="uq_listing_claims_listing_receiver"),
    )

    id = Column(Integer, primary_key=True, index=True)
    listing_id = Column(
        Integer, ForeignKey("food_listings.id", ondelete="CASCADE"), index=True, nullable=False
    )
    receiver_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    receiver_name = Column(String(120), nullable=False)
    claimed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    listing = relationship("FoodListing", back_populates="claims")


def init_db() -> None:
    """Create database tables if they do not exist."""
    from .models import user  # noqa: F401

    Base.metadata.create_all(bind=engine)
