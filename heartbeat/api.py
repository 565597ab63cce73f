"""FastAPI endpoints for the heartbeat views (login, activity log, overview, dossier)."""

from datetime import date
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status

from heartbeat.aggregation import apply_activity_tags, compute_overview, compute_slots
from heartbeat.client import HeartbeatClient
from heartbeat.dossier import ActivityTagStore, DossierStore
from heartbeat.errors import RequestFailedError, SessionExpiredError
from heartbeat.models import (
    Activity,
    ActivityInput,
    ActivityViewResponse,
    AssignActivityRequest,
    DossierData,
    DossierResponse,
    LoginRequest,
    OverviewSummary,
    ProfileUpdate,
    RawMeasurement,
    RegisterRequest,
    SessionResponse,
    StatusResponse,
    TagRequest,
)
from heartbeat.session import SessionCache

router = APIRouter()

LOGIN_REDIRECT = {"Location": "/login"}


def login_required() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Session expired, please log in again",
        headers=LOGIN_REDIRECT,
    )


def upstream_failed(error: RequestFailedError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=error.message)


def get_session(request: Request) -> SessionCache:
    return request.app.state.session


def get_client(request: Request) -> HeartbeatClient:
    return request.app.state.client


def get_dossier_store(request: Request) -> DossierStore:
    return request.app.state.dossier


def get_tag_store(request: Request) -> ActivityTagStore:
    return request.app.state.tags


async def require_session(session: SessionCache = Depends(get_session)) -> SessionCache:
    """Route guard: validate the cached session or send the user to the login view."""
    if not await session.validate_session():
        raise login_required()
    return session


def session_response(session: SessionCache) -> SessionResponse:
    return SessionResponse(
        display_name=session.get_display_name(),
        age=session.get_age(),
        profile=session.get_user(),
    )


@router.post(
    "/login",
    response_model=SessionResponse,
    summary="Log in",
    description="Exchange credentials for a session token and cache the profile",
)
async def login(
    credentials: LoginRequest,
    session: SessionCache = Depends(get_session),
    client: HeartbeatClient = Depends(get_client),
) -> SessionResponse:
    """Log in, or return the current session when already authenticated."""
    if session.is_authenticated():
        return session_response(session)
    try:
        await client.login(credentials.email, credentials.password)
    except RequestFailedError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    return session_response(session)


@router.post(
    "/signup",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an account",
)
async def signup(
    values: RegisterRequest,
    session: SessionCache = Depends(get_session),
    client: HeartbeatClient = Depends(get_client),
) -> SessionResponse:
    if session.is_authenticated():
        return session_response(session)
    try:
        await client.register(values)
    except RequestFailedError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    return session_response(session)


@router.post("/logout", response_model=StatusResponse, summary="Log out")
async def logout(session: SessionCache = Depends(get_session)) -> StatusResponse:
    session.clear()
    return StatusResponse(status="logged_out")


@router.get("/session", response_model=SessionResponse, summary="Current session")
async def current_session(session: SessionCache = Depends(require_session)) -> SessionResponse:
    return session_response(session)


@router.get(
    "/activity",
    response_model=ActivityViewResponse,
    summary="Activity log",
    description="Half-hour heart rate slots for one day and across all loaded measurements",
)
async def activity_log(
    day: Optional[date] = None,
    _: SessionCache = Depends(require_session),
    client: HeartbeatClient = Depends(get_client),
    tag_store: ActivityTagStore = Depends(get_tag_store),
) -> ActivityViewResponse:
    """
    Build the activity log.

    Slots without a server-side activity show the label stored locally for
    that slot, if any.
    """
    try:
        measurements = await client.fetch_latest_measurements()
        activities = await client.list_activities()
    except SessionExpiredError:
        raise login_required()
    except RequestFailedError as e:
        raise upstream_failed(e)

    tags = tag_store.load()
    all_slots = apply_activity_tags(compute_slots(measurements, activities), tags)
    if day is None:
        day_slots = all_slots
    else:
        day_slots = apply_activity_tags(compute_slots(measurements, activities, day), tags)
    return ActivityViewResponse(
        day=day.isoformat() if day else None,
        slots=day_slots,
        all_slots=all_slots,
        activities=activities,
    )


@router.put(
    "/activity/slots/{measurement_id}",
    response_model=RawMeasurement,
    summary="Link a slot to an activity",
)
async def assign_slot_activity(
    measurement_id: int,
    body: AssignActivityRequest,
    _: SessionCache = Depends(require_session),
    client: HeartbeatClient = Depends(get_client),
) -> RawMeasurement:
    """Link the slot's representative measurement to an activity (or unlink it)."""
    try:
        return await client.assign_activity(measurement_id, body.activity_id)
    except SessionExpiredError:
        raise login_required()
    except RequestFailedError as e:
        raise upstream_failed(e)


@router.put("/activity/tags", response_model=Dict[str, str], summary="Tag a slot locally")
async def tag_slot(
    body: TagRequest,
    _: SessionCache = Depends(require_session),
    tag_store: ActivityTagStore = Depends(get_tag_store),
) -> Dict[str, str]:
    if body.label:
        return tag_store.tag(body.slot_start_iso, body.label)
    return tag_store.untag(body.slot_start_iso)


@router.get("/activities", response_model=List[Activity], summary="List activities")
async def list_activities(
    _: SessionCache = Depends(require_session),
    client: HeartbeatClient = Depends(get_client),
) -> List[Activity]:
    try:
        return await client.list_activities()
    except SessionExpiredError:
        raise login_required()
    except RequestFailedError as e:
        raise upstream_failed(e)


@router.post(
    "/activities",
    response_model=Activity,
    status_code=status.HTTP_201_CREATED,
    summary="Create an activity",
)
async def create_activity(
    activity: ActivityInput,
    _: SessionCache = Depends(require_session),
    client: HeartbeatClient = Depends(get_client),
) -> Activity:
    try:
        return await client.create_activity(activity)
    except SessionExpiredError:
        raise login_required()
    except RequestFailedError as e:
        raise upstream_failed(e)


@router.put("/activities/{activity_id}", response_model=Activity, summary="Update an activity")
async def update_activity(
    activity_id: int,
    activity: ActivityInput,
    _: SessionCache = Depends(require_session),
    client: HeartbeatClient = Depends(get_client),
) -> Activity:
    try:
        return await client.update_activity(activity_id, activity)
    except SessionExpiredError:
        raise login_required()
    except RequestFailedError as e:
        raise upstream_failed(e)


@router.get(
    "/overview",
    response_model=OverviewSummary,
    summary="Heart rate overview",
    description="Daily chart series, weekday averages and summary statistics",
)
async def overview(
    day: Optional[date] = None,
    _: SessionCache = Depends(require_session),
    client: HeartbeatClient = Depends(get_client),
) -> OverviewSummary:
    try:
        measurements = await client.fetch_latest_measurements()
    except SessionExpiredError:
        raise login_required()
    except RequestFailedError as e:
        raise upstream_failed(e)
    return compute_overview(measurements, day)


@router.get("/dossier", response_model=DossierResponse, summary="Personal dossier")
async def get_dossier(
    session: SessionCache = Depends(require_session),
    dossier_store: DossierStore = Depends(get_dossier_store),
) -> DossierResponse:
    """Local dossier merged with the freshest server profile (the cached one if refresh fails)."""
    profile = await session.refresh_user_from_api() or session.get_user()
    return DossierResponse(dossier=dossier_store.merged_with_profile(profile), profile=profile)


@router.put("/dossier", response_model=DossierResponse, summary="Save the local dossier")
async def save_dossier(
    dossier: DossierData,
    session: SessionCache = Depends(require_session),
    dossier_store: DossierStore = Depends(get_dossier_store),
) -> DossierResponse:
    dossier_store.save(dossier)
    return DossierResponse(dossier=dossier_store.load(), profile=session.get_user())


@router.put("/profile", response_model=DossierResponse, summary="Save profile edits")
async def update_profile(
    update: ProfileUpdate,
    session: SessionCache = Depends(require_session),
    client: HeartbeatClient = Depends(get_client),
    dossier_store: DossierStore = Depends(get_dossier_store),
) -> DossierResponse:
    """Send profile edits to the server and mirror body metrics into the local dossier."""
    try:
        profile = await client.update_profile(update)
    except SessionExpiredError:
        raise login_required()
    except RequestFailedError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    dossier = dossier_store.merged_with_profile(profile)
    dossier_store.save(dossier)
    return DossierResponse(dossier=dossier, profile=profile)


@router.get("/health", summary="Health check endpoint")
async def health_check() -> dict[str, str]:
    """Health check endpoint for monitoring."""
    return {"status": "healthy", "service": "heartbeat"}
