"""
Complaint API Routes: filing, listing and the status lifecycle.

1. POST /complaints - File a complaint (always starts pending)
2. GET /complaints - List with page/status/search filters
3. GET /complaints/{id} - Fetch one with its progress log
4. PUT /complaints/{id} - Advance status (staff only, append-only log)
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..core import AdminDep, CurrentUserDep, SessionDep, get_settings
from ..models import ComplaintStatus
from ..schemas import (
    ComplaintCreate,
    ComplaintOut,
    ComplaintPage,
    ComplaintStats,
    StatusTransitionRequest,
)
from ..services.complaints import (
    CategoryNotFoundError,
    ComplaintFilter,
    ComplaintNotFoundError,
    ComplaintService,
    ConcurrencyError,
    FileComplaintInput,
    InvalidTransitionError,
    StatusInconsistencyError,
)

router = APIRouter(prefix="/complaints", tags=["complaints"])


def get_complaint_service(session: SessionDep) -> ComplaintService:
    return ComplaintService(
        session,
        enforce_transitions=get_settings().enforce_status_transitions,
    )


ComplaintServiceDep = Annotated[ComplaintService, Depends(get_complaint_service)]


# =============================================================================
# ENDPOINTS
# =============================================================================


@router.get(
    "",
    response_model=list[ComplaintOut],
    summary="List complaints",
    description="""
    Complaints newest-first, each with its progress log.

    - Students see only their own complaints, except on the `history` page
    - The `tracking` page hides finished complaints unless `status` is given
    - `q` matches title or location, case-insensitively
    """,
)
async def list_complaints(
    current_user: CurrentUserDep,
    service: ComplaintServiceDep,
    page: ComplaintPage = Query(default=ComplaintPage.DASHBOARD),
    status_filter: ComplaintStatus | None = Query(default=None, alias="status"),
    q: str | None = Query(default=None, max_length=200),
):
    complaints = await service.list_complaints(
        ComplaintFilter(
            viewer_id=current_user.id,
            viewer_is_admin=current_user.is_admin,
            page=page,
            status=status_filter,
            query=q,
        )
    )
    return [ComplaintOut.model_validate(c) for c in complaints]


@router.post(
    "",
    response_model=ComplaintOut,
    status_code=status.HTTP_201_CREATED,
    summary="File a complaint",
)
async def file_complaint(
    request: ComplaintCreate,
    current_user: CurrentUserDep,
    service: ComplaintServiceDep,
):
    """File a new complaint. The status is always pending."""
    try:
        complaint = await service.file_complaint(
            FileComplaintInput(
                title=request.title,
                location=request.location,
                category_id=request.category_id,
                description=request.description,
                image_url=request.image_url,
            ),
            owner_id=current_user.id,
        )
    except CategoryNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    return ComplaintOut.model_validate(complaint)


@router.get(
    "/stats",
    response_model=ComplaintStats,
    summary="Complaint counters",
)
async def complaint_stats(
    current_user: CurrentUserDep,
    service: ComplaintServiceDep,
):
    stats = await service.complaint_stats()
    return ComplaintStats(
        total=stats.total,
        pending=stats.pending,
        in_progress=stats.in_progress,
        done=stats.done,
    )


@router.get(
    "/{complaint_id}",
    response_model=ComplaintOut,
    summary="Get a complaint with its progress log",
)
async def get_complaint(
    complaint_id: UUID,
    current_user: CurrentUserDep,
    service: ComplaintServiceDep,
):
    try:
        complaint = await service.get_complaint(complaint_id)
    except ComplaintNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Complaint {complaint_id} not found",
        )
    return ComplaintOut.model_validate(complaint)


@router.put(
    "/{complaint_id}",
    response_model=ComplaintOut,
    summary="Advance a complaint's status",
    description="""
    Append a progress entry and move the complaint to the requested status.

    **This endpoint never edits existing progress entries.**

    Both writes happen in one transaction; if either fails, neither is
    kept and the request can be retried as a whole.

    Allowed: `pending -> in_progress`, `in_progress -> done`. Staff only.
    """,
)
async def transition_status(
    complaint_id: UUID,
    request: StatusTransitionRequest,
    current_user: AdminDep,
    service: ComplaintServiceDep,
):
    try:
        complaint = await service.transition_status(
            complaint_id=complaint_id,
            target_status=request.status,
            note=request.description,
            actor_id=current_user.id,
        )
    except ComplaintNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Complaint {complaint_id} not found",
        )
    except (InvalidTransitionError, ConcurrencyError) as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        )
    except StatusInconsistencyError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        )
    return ComplaintOut.model_validate(complaint)
