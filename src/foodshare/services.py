"""Service layer for users, food listings and claims."""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Type, TypeVar

from prometheus_client import Counter
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .access import Action, can, ensure_can_delete, ensure_can_edit
from .auth import hash_password, verify_password
from .claims import REJECT_MESSAGES, ClaimDecision, evaluate_claim
from .config import settings
from .database import FoodListing, ListingClaim, SessionLocal
from .errors import (
    AuthorizationError,
    ConflictError,
    FoodShareError,
    ForbiddenError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from .models.user import Role, User
from .schemas import (
    DashboardResponse,
    ListingCreate,
    ListingOut,
    ListingUpdate,
    UserCreate,
    UserOut,
)
from .storage import delete_image, public_image_url, save_image


logger = logging.getLogger(__name__)

LISTING_CREATED_COUNTER = Counter(
    "food_listings_created_total", "Total food listings created"
)
LISTING_DELETED_COUNTER = Counter(
    "food_listings_deleted_total", "Total food listings deleted"
)
CLAIM_COUNTER = Counter(
    "listing_claims_total", "Claim attempts by outcome", ["outcome"]
)

REGISTRABLE_ROLES = {Role.DONOR.value, Role.RECEIVER.value}

# admin list/dashboard windows, measured on created_at
PERIODS = {
    "1week": timedelta(days=7),
    "1month": timedelta(days=30),
    "3month": timedelta(days=90),
    "1year": timedelta(days=365),
}

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def _handle_service_error(session: Session, exc: Exception) -> None:
    """Rollback the transaction and re-raise as a reportable error."""
    session.rollback()
    if isinstance(exc, FoodShareError):
        raise exc
    logger.exception("service layer error", exc_info=exc)
    if isinstance(exc, SQLAlchemyError):
        raise StorageError() from exc
    if isinstance(exc, ValueError):
        raise ValidationError(str(exc)) from exc
    raise exc


def _parse(schema: Type[SchemaT], fields: Dict[str, Any]) -> SchemaT:
    """Validate raw form fields, dropping the ones the client did not send."""
    try:
        return schema(**{k: v for k, v in fields.items() if v is not None})
    except SchemaError as exc:
        messages = []
        for err in exc.errors():
            loc = ".".join(str(part) for part in err["loc"])
            messages.append(f"{loc}: {err['msg']}" if loc else err["msg"])
        raise ValidationError("; ".join(messages)) from exc


def _serialize(listing: FoodListing) -> ListingOut:
    out = ListingOut.model_validate(listing)
    out.image_url = public_image_url(listing.image_url)
    return out


def _period_start(period: Optional[str], now: datetime) -> Optional[datetime]:
    window = PERIODS.get(period or "")
    return now - window if window else None


def _available_filter(now: datetime):
    return (
        FoodListing.expiry_time > now,
        FoodListing.claim_count < FoodListing.max_claims,
    )


# --- users -----------------------------------------------------------------


def register_user(payload: UserCreate) -> User:
    """Create a Donor or Receiver account.

    The Admin role and the configured admin email cannot be registered; the
    admin account is created by :mod:`foodshare.provision` instead.
    """
    email = payload.email.lower()
    logger.info("register user email=%s role=%s", email, payload.role)
    session: Session = SessionLocal()
    try:
        if payload.role not in REGISTRABLE_ROLES or email == settings.admin_email.lower():
            raise ValidationError("Cannot register with this email or role.")
        if session.query(User).filter(User.email == email).first():
            raise ConflictError("User already exists")
        user = User(
            name=payload.name.strip(),
            email=email,
            password_hash=hash_password(payload.password),
            role=payload.role,
            location=payload.location,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        logger.info("registered user id=%s role=%s", user.id, user.role)
        return user
    except IntegrityError as exc:
        session.rollback()
        raise ConflictError("User already exists") from exc
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def authenticate_user(email: str, password: str) -> User:
    """Return the user for valid credentials, else raise AuthorizationError."""
    session: Session = SessionLocal()
    try:
        user = session.query(User).filter(User.email == email.lower()).first()
        if user is None or not verify_password(password, user.password_hash):
            logger.info("failed login email=%s", email)
            raise AuthorizationError("Invalid credentials")
        return user
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def list_users() -> List[UserOut]:
    session: Session = SessionLocal()
    try:
        users = session.query(User).order_by(User.created_at.desc(), User.id.desc()).all()
        return [UserOut.model_validate(u) for u in users]
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


# --- listings --------------------------------------------------------------


def create_listing(owner: User, fields: Dict[str, Any], image=None) -> ListingOut:
    """Persist a new listing for ``owner``.

    An uploaded ``image`` is written first; if the listing then fails
    validation or the write fails, the file is removed again.
    """
    logger.info("create listing donor=%s", owner.id)
    session: Session = SessionLocal()
    image_ref = None
    try:
        if not can(owner, Action.CREATE_LISTING):
            raise ForbiddenError("Only donors can create listings.")
        if image is not None:
            image_ref = save_image(image, owner.id)
        data = _parse(ListingCreate, fields)
        listing = FoodListing(
            donor_id=owner.id,
            donor_name=owner.name,
            image_url=image_ref or settings.placeholder_image_url,
            claim_count=0,
            **data.model_dump(),
        )
        session.add(listing)
        session.commit()
        session.refresh(listing)
        LISTING_CREATED_COUNTER.inc()
        logger.info("created listing id=%s donor=%s", listing.id, owner.id)
        return _serialize(listing)
    except Exception as exc:
        delete_image(image_ref)
        _handle_service_error(session, exc)
    finally:
        session.close()


def update_listing(user: User, listing_id: int, fields: Dict[str, Any], image=None) -> ListingOut:
    """Apply a partial edit by the owning donor.

    A new image replaces the old one; the old file is deleted only once the
    edit is committed. Lowering ``max_claims`` below the current number of
    claims is rejected.
    """
    logger.info("update listing id=%s user=%s", listing_id, user.id)
    session: Session = SessionLocal()
    pending_ref = None
    try:
        listing = session.get(FoodListing, listing_id)
        if listing is None:
            raise NotFoundError("Listing not found")
        ensure_can_edit(user, listing)

        changes = _parse(ListingUpdate, fields).model_dump(exclude_none=True)
        mfg_time = changes.get("mfg_time", listing.mfg_time)
        expiry_time = changes.get("expiry_time", listing.expiry_time)
        if expiry_time <= mfg_time:
            raise ValidationError("expiry_time must be after mfg_time")

        max_claims = changes.pop("max_claims", None)
        if max_claims is not None and max_claims != listing.max_claims:
            result = session.execute(
                update(FoodListing)
                .where(FoodListing.id == listing_id, FoodListing.claim_count <= max_claims)
                .values(max_claims=max_claims, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ValidationError("max_claims cannot be lower than the current number of claims")

        if image is not None:
            pending_ref = save_image(image, user.id)
        old_ref = listing.image_url
        for key, value in changes.items():
            setattr(listing, key, value)
        if pending_ref:
            listing.image_url = pending_ref

        session.commit()
        if pending_ref:
            pending_ref = None
            delete_image(old_ref)
        session.refresh(listing)
        logger.info("updated listing id=%s", listing_id)
        return _serialize(listing)
    except Exception as exc:
        delete_image(pending_ref)
        _handle_service_error(session, exc)
    finally:
        session.close()


def delete_listing(user: User, listing_id: int) -> None:
    """Remove a listing (owner or admin) together with its stored image."""
    logger.info("delete listing id=%s user=%s", listing_id, user.id)
    session: Session = SessionLocal()
    try:
        listing = session.get(FoodListing, listing_id)
        if listing is None:
            raise NotFoundError("Listing not found")
        ensure_can_delete(user, listing)
        image_ref = listing.image_url
        session.delete(listing)
        session.commit()
        LISTING_DELETED_COUNTER.inc()
        delete_image(image_ref)
        logger.info("deleted listing id=%s", listing_id)
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def claim_listing(receiver: User, listing_id: int, now: Optional[datetime] = None) -> ListingOut:
    """Append ``receiver`` to the listing's claims.

    The decision comes from :func:`evaluate_claim`. The slot itself is taken
    with a conditional UPDATE on ``claim_count`` so two concurrent claims
    cannot both pass the capacity check, and the unique constraint on
    ``(listing_id, receiver_id)`` rejects a concurrent duplicate.
    """
    now = now or datetime.utcnow()
    logger.info("claim listing id=%s receiver=%s", listing_id, receiver.id)
    session: Session = SessionLocal()
    try:
        if not can(receiver, Action.CLAIM):
            raise ForbiddenError("Only receivers can claim food.")
        listing = session.get(FoodListing, listing_id)
        if listing is None:
            raise NotFoundError("Listing not found")

        decision = evaluate_claim(listing, receiver.id, now)
        if decision is ClaimDecision.ALLOW:
            result = session.execute(
                update(FoodListing)
                .where(
                    FoodListing.id == listing_id,
                    FoodListing.claim_count < FoodListing.max_claims,
                    FoodListing.expiry_time > now,
                )
                .values(claim_count=FoodListing.claim_count + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # lost a race; report what the listing looks like now
                session.rollback()
                listing = session.get(FoodListing, listing_id)
                if listing is None:
                    raise NotFoundError("Listing not found")
                decision = evaluate_claim(listing, receiver.id, now)
                if decision is ClaimDecision.ALLOW:
                    decision = ClaimDecision.FULL

        if decision is not ClaimDecision.ALLOW:
            CLAIM_COUNTER.labels(outcome=decision.value).inc()
            logger.info(
                "rejected claim listing=%s receiver=%s reason=%s",
                listing_id,
                receiver.id,
                decision.value,
            )
            raise ConflictError(REJECT_MESSAGES[decision], reason=decision.value)

        session.add(
            ListingClaim(
                listing_id=listing_id,
                receiver_id=receiver.id,
                receiver_name=receiver.name,
                claimed_at=now,
            )
        )
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            CLAIM_COUNTER.labels(outcome=ClaimDecision.DUPLICATE.value).inc()
            raise ConflictError(
                REJECT_MESSAGES[ClaimDecision.DUPLICATE],
                reason=ClaimDecision.DUPLICATE.value,
            ) from exc

        session.refresh(listing)
        CLAIM_COUNTER.labels(outcome=ClaimDecision.ALLOW.value).inc()
        logger.info("claimed listing id=%s receiver=%s", listing_id, receiver.id)
        return _serialize(listing)
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


# --- queries ---------------------------------------------------------------


def list_available_listings(now: Optional[datetime] = None) -> List[ListingOut]:
    """Unexpired listings with a free slot, soonest-expiring first."""
    now = now or datetime.utcnow()
    session: Session = SessionLocal()
    try:
        listings = (
            session.query(FoodListing)
            .filter(*_available_filter(now))
            .order_by(FoodListing.expiry_time.asc(), FoodListing.id.asc())
            .all()
        )
        return [_serialize(listing) for listing in listings]
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def list_donor_listings(donor_id: int) -> List[ListingOut]:
    """All listings posted by ``donor_id``, newest first."""
    session: Session = SessionLocal()
    try:
        listings = (
            session.query(FoodListing)
            .filter(FoodListing.donor_id == donor_id)
            .order_by(FoodListing.created_at.desc(), FoodListing.id.desc())
            .all()
        )
        return [_serialize(listing) for listing in listings]
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def list_claimed_listings(receiver_id: int) -> List[ListingOut]:
    """Listings whose claims include ``receiver_id``, newest first."""
    session: Session = SessionLocal()
    try:
        listings = (
            session.query(FoodListing)
            .join(ListingClaim, ListingClaim.listing_id == FoodListing.id)
            .filter(ListingClaim.receiver_id == receiver_id)
            .order_by(FoodListing.created_at.desc(), FoodListing.id.desc())
            .all()
        )
        return [_serialize(listing) for listing in listings]
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def list_all_listings(period: Optional[str] = None, now: Optional[datetime] = None) -> List[ListingOut]:
    """Every listing for the admin view, optionally limited to a recent period."""
    start = _period_start(period, now or datetime.utcnow())
    session: Session = SessionLocal()
    try:
        query = session.query(FoodListing)
        if start:
            query = query.filter(FoodListing.created_at >= start)
        listings = query.order_by(FoodListing.created_at.desc(), FoodListing.id.desc()).all()
        return [_serialize(listing) for listing in listings]
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def dashboard_counts(period: Optional[str] = None, now: Optional[datetime] = None) -> DashboardResponse:
    """User and listing totals for the admin dashboard.

    The period filter applies to listings only; the user total is always
    the full count.
    """
    now = now or datetime.utcnow()
    start = _period_start(period, now)
    session: Session = SessionLocal()
    try:
        user_total = session.query(func.count(User.id)).scalar()
        listings = session.query(func.count(FoodListing.id))
        if start:
            listings = listings.filter(FoodListing.created_at >= start)
        listing_total = listings.scalar()
        available = listings.filter(*_available_filter(now)).scalar()
        return DashboardResponse(
            users={"total": user_total},
            listings={"total": listing_total, "available": available},
        )
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()
