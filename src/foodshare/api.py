"""FastAPI application exposing the food listing marketplace."""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from prometheus_client import Counter
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .access import Action, require
from .auth import create_access_token, get_current_user
from .config import settings
from .database import init_db
from .errors import AuthorizationError, FoodShareError, NotFoundError
from .models.user import User
from .schemas import (
    ClaimResponse,
    DashboardResponse,
    ListingOut,
    MessageResponse,
    TokenResponse,
    UserCreate,
    UserLogin,
    UserOut,
)
from .services import (
    authenticate_user,
    claim_listing,
    create_listing,
    dashboard_counts,
    delete_listing,
    list_all_listings,
    list_available_listings,
    list_claimed_listings,
    list_donor_listings,
    list_users,
    register_user,
    update_listing,
)
from .storage import UPLOAD_PREFIX, path_for, uploads_path


limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    uploads_path()
    yield


app = FastAPI(title=settings.api_title, lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger = logging.getLogger(__name__)

# Prometheus counter to track API requests by method, endpoint and status code
REQUEST_COUNTER = Counter(
    "api_requests_total",
    "Total API requests",
    ["method", "endpoint", "status"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log incoming requests and their outcomes while updating metrics."""
    logger.info("request %s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
        REQUEST_COUNTER.labels(
            method=request.method,
            endpoint=request.url.path,
            status=str(response.status_code),
        ).inc()
        logger.info(
            "response %s %s status %s",
            request.method,
            request.url.path,
            response.status_code,
        )
        return response
    except Exception:
        REQUEST_COUNTER.labels(
            method=request.method,
            endpoint=request.url.path,
            status="500",
        ).inc()
        logger.exception(
            "error handling %s %s", request.method, request.url.path
        )
        raise


@app.exception_handler(FoodShareError)
async def handle_foodshare_error(request: Request, exc: FoodShareError) -> JSONResponse:
    headers = None
    if type(exc) is AuthorizationError:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def listing_form(
    category: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    quantity: Optional[str] = Form(None),
    location: Optional[str] = Form(None),
    mfg_time: Optional[str] = Form(None),
    expiry_time: Optional[str] = Form(None),
    max_claims: Optional[str] = Form(None),
) -> Dict[str, Any]:
    """Collect listing fields from a multipart form; validation happens in the service."""
    return {
        "category": category,
        "description": description,
        "quantity": quantity,
        "location": location,
        "mfg_time": mfg_time,
        "expiry_time": expiry_time,
        "max_claims": max_claims,
    }


def _uploaded(image: Optional[UploadFile]) -> Optional[UploadFile]:
    # browsers submit an empty part when no file was chosen
    if image is None or not image.filename:
        return None
    return image


@app.get("/", tags=["root"])
def root():
    return {"name": settings.api_title}


@app.get(UPLOAD_PREFIX + "{filename}", include_in_schema=False)
def get_upload(filename: str):
    """Serve an uploaded image from the configured uploads directory."""
    path = path_for(UPLOAD_PREFIX + filename)
    if not path.is_file():
        raise NotFoundError("Image not found")
    return FileResponse(path)


@app.post("/auth/register", response_model=TokenResponse, status_code=201)
@limiter.limit(settings.auth_rate_limit)
def register(request: Request, payload: UserCreate):
    """Register a Donor or Receiver and return a bearer token."""
    user = register_user(payload)
    return TokenResponse(
        access_token=create_access_token(user),
        user=UserOut.model_validate(user),
    )


@app.post("/auth/login", response_model=TokenResponse)
@limiter.limit(settings.auth_rate_limit)
def login(request: Request, payload: UserLogin):
    user = authenticate_user(payload.email, payload.password)
    return TokenResponse(
        access_token=create_access_token(user),
        user=UserOut.model_validate(user),
    )


@app.get("/auth/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return UserOut.model_validate(user)


@app.post("/listings", response_model=ListingOut, status_code=201)
def post_listing(
    fields: Dict[str, Any] = Depends(listing_form),
    image: Optional[UploadFile] = File(None),
    user: User = Depends(require(Action.CREATE_LISTING)),
):
    """Create a listing owned by the current donor."""
    return create_listing(user, fields, _uploaded(image))


@app.get("/listings", response_model=List[ListingOut])
def get_available_listings(user: User = Depends(require(Action.VIEW_AVAILABLE))):
    """Unexpired listings with free slots, soonest-expiring first."""
    return list_available_listings()


@app.get("/listings/mine", response_model=List[ListingOut])
def get_my_listings(user: User = Depends(require(Action.VIEW_OWN_LISTINGS))):
    return list_donor_listings(user.id)


@app.get("/listings/claimed", response_model=List[ListingOut])
def get_my_claims(user: User = Depends(require(Action.VIEW_OWN_CLAIMS))):
    return list_claimed_listings(user.id)


@app.put("/listings/{listing_id}", response_model=ListingOut)
def put_listing(
    listing_id: int,
    fields: Dict[str, Any] = Depends(listing_form),
    image: Optional[UploadFile] = File(None),
    user: User = Depends(get_current_user),
):
    """Edit a listing; only its donor may do so."""
    return update_listing(user, listing_id, fields, _uploaded(image))


@app.delete("/listings/{listing_id}", response_model=MessageResponse)
def remove_listing(listing_id: int, user: User = Depends(get_current_user)):
    """Delete a listing as its donor or as an admin."""
    delete_listing(user, listing_id)
    return MessageResponse(message="Listing removed successfully")


@app.put("/listings/{listing_id}/claim", response_model=ClaimResponse)
def put_claim(listing_id: int, user: User = Depends(require(Action.CLAIM))):
    """Take one slot on a listing for the current receiver."""
    listing = claim_listing(user, listing_id)
    return ClaimResponse(message="Listing claimed successfully!", listing=listing)


@app.get("/admin/users", response_model=List[UserOut])
def get_admin_users(user: User = Depends(require(Action.VIEW_USERS))):
    return list_users()


@app.get("/admin/listings", response_model=List[ListingOut])
def get_admin_listings(
    period: Optional[str] = None,
    user: User = Depends(require(Action.VIEW_ALL_LISTINGS)),
):
    """All listings, newest first; ``period`` is 1week, 1month, 3month or 1year."""
    return list_all_listings(period)


@app.get("/admin/dashboard", response_model=DashboardResponse)
def get_admin_dashboard(
    period: Optional[str] = None,
    user: User = Depends(require(Action.VIEW_DASHBOARD)),
):
    return dashboard_counts(period)
