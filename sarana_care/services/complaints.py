"""
Complaint Service: filing, listing and the status lifecycle.

Status changes follow an append-only rule:
- The progress log is never updated or deleted, only appended to
- Appending the entry and moving ``current_status`` happen in one
  transaction on a locked complaint row
- ``current_status`` always equals the newest entry's status (or pending
  when the log is empty); a violation is surfaced, never patched over
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..models import (
    Category,
    Complaint,
    ComplaintProgress,
    ComplaintStatus,
    User,
)
from ..schemas.complaints import ComplaintOut, ComplaintPage
from .reconciler import ComplaintSourceError


logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================


class ComplaintError(Exception):
    """Base exception for complaint operations."""
    pass


class ComplaintNotFoundError(ComplaintError):
    """Complaint does not exist."""
    pass


class CategoryNotFoundError(ComplaintError):
    """Referenced category does not exist."""
    pass


class InvalidTransitionError(ComplaintError):
    """Requested status change is not allowed from the current status."""
    pass


class ConcurrencyError(ComplaintError):
    """Another transition claimed the same progress log position."""
    pass


class StatusInconsistencyError(ComplaintError):
    """Header status and progress log disagree."""
    pass


# =============================================================================
# LIFECYCLE RULES
# =============================================================================


ALLOWED_TRANSITIONS: dict[ComplaintStatus, tuple[ComplaintStatus, ...]] = {
    ComplaintStatus.PENDING: (ComplaintStatus.IN_PROGRESS,),
    ComplaintStatus.IN_PROGRESS: (ComplaintStatus.DONE,),
    ComplaintStatus.DONE: (),
}

# Notes the staff actions attach when advancing a complaint
STAFF_ACTION_NOTES: dict[ComplaintStatus, str] = {
    ComplaintStatus.IN_PROGRESS: "Report is being handled by staff.",
    ComplaintStatus.DONE: "Facility has been repaired.",
}


def allowed_transitions(status: ComplaintStatus) -> tuple[ComplaintStatus, ...]:
    """Next statuses offered for a complaint in ``status``."""
    return ALLOWED_TRANSITIONS[ComplaintStatus(status)]


def default_progress_note(status: ComplaintStatus) -> str:
    return f"Status changed to {ComplaintStatus(status).value}"


def expected_status(progress: list[ComplaintProgress]) -> ComplaintStatus:
    """Status implied by a progress log."""
    if not progress:
        return ComplaintStatus.PENDING
    return max(progress, key=lambda entry: entry.sequence).status


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class FileComplaintInput:
    """Input for filing a new complaint."""
    title: str
    location: str
    category_id: UUID
    description: str
    image_url: str | None = None


@dataclass
class ComplaintFilter:
    """Visibility and search filter for complaint lists."""
    viewer_id: UUID | None = None
    viewer_is_admin: bool = False
    page: ComplaintPage = ComplaintPage.DASHBOARD
    status: ComplaintStatus | None = None
    query: str | None = None


@dataclass
class ComplaintStatsResult:
    total: int
    pending: int
    in_progress: int
    done: int


# =============================================================================
# COMPLAINT SERVICE
# =============================================================================


class ComplaintService:
    """
    Complaint store and status transition authority.

    Guarantees:
    1. New complaints always start as PENDING with an empty log
    2. Progress entries are INSERT-only
    3. A transition is all-or-nothing
    4. Concurrent transitions on one complaint cannot both claim the same
       log position
    """

    def __init__(self, session: AsyncSession, enforce_transitions: bool = True):
        self._session = session
        self._enforce_transitions = enforce_transitions

    # =========================================================================
    # FILE COMPLAINT
    # =========================================================================

    async def file_complaint(self, input: FileComplaintInput, owner_id: UUID) -> Complaint:
        """File a complaint. Status is forced to PENDING."""
        category = await self._session.get(Category, input.category_id)
        if category is None:
            raise CategoryNotFoundError(f"Category {input.category_id} not found")

        complaint = Complaint(
            title=input.title,
            location=input.location,
            category_id=input.category_id,
            description=input.description,
            image_url=input.image_url,
            user_id=owner_id,
            current_status=ComplaintStatus.PENDING,
        )
        self._session.add(complaint)
        await self._session.flush()

        logger.info(f"Complaint {complaint.id} filed by {owner_id}")
        return await self.get_complaint(complaint.id)

    # =========================================================================
    # TRANSITION STATUS
    # =========================================================================

    async def transition_status(
        self,
        complaint_id: UUID,
        target_status: ComplaintStatus,
        note: str | None = None,
        actor_id: UUID | None = None,
    ) -> Complaint:
        """
        Append a progress entry and move ``current_status`` to match.

        Flow:
        1. Lock the complaint row
        2. Verify the transition is allowed
        3. INSERT ComplaintProgress at the next log position
        4. UPDATE Complaint.current_status
        5. Flush once and re-check the header/log invariant

        Failure at any step leaves the caller's transaction to roll back
        both writes; callers retry the whole operation, never a half.
        """
        target_status = ComplaintStatus(target_status)

        # Step 1: Lock (no-op on backends without row locks)
        result = await self._session.execute(
            select(Complaint)
            .where(Complaint.id == complaint_id)
            .options(selectinload(Complaint.progress))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        complaint = result.scalar_one_or_none()
        if complaint is None:
            raise ComplaintNotFoundError(f"Complaint {complaint_id} not found")

        # Step 2: Lifecycle guard
        current = complaint.current_status
        if self._enforce_transitions and target_status not in allowed_transitions(current):
            raise InvalidTransitionError(
                f"Cannot move complaint {complaint_id} from {current.value} "
                f"to {target_status.value}"
            )

        # Step 3 + 4: append and update together
        next_sequence = len(complaint.progress) + 1
        entry = ComplaintProgress(
            complaint_id=complaint.id,
            sequence=next_sequence,
            status=target_status,
            description=note or default_progress_note(target_status),
            created_by=actor_id,
        )
        self._session.add(entry)
        complaint.progress.append(entry)
        complaint.current_status = target_status

        # Step 5: single flush, then verify
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise ConcurrencyError(
                f"Complaint {complaint_id} was transitioned concurrently: {e}"
            ) from e

        implied = expected_status(complaint.progress)
        if complaint.current_status != implied:
            logger.error(
                f"Complaint {complaint_id} inconsistent after transition: "
                f"header={complaint.current_status.value} log={implied.value}"
            )
            raise StatusInconsistencyError(
                f"Complaint {complaint_id} status {complaint.current_status.value} "
                f"does not match progress log ({implied.value})"
            )

        logger.info(
            f"Complaint {complaint_id}: {current.value} -> {target_status.value} "
            f"(entry #{next_sequence}, actor={actor_id})"
        )
        return await self.get_complaint(complaint_id)

    # =========================================================================
    # READ SIDE
    # =========================================================================

    async def get_complaint(self, complaint_id: UUID) -> Complaint:
        """Get a complaint with category, owner and progress loaded."""
        result = await self._session.execute(
            self._base_query()
            .where(Complaint.id == complaint_id)
            .execution_options(populate_existing=True)
        )
        complaint = result.scalar_one_or_none()
        if complaint is None:
            raise ComplaintNotFoundError(f"Complaint {complaint_id} not found")
        return complaint

    async def list_complaints(
        self,
        filter: ComplaintFilter | None = None,
        limit: int | None = None,
    ) -> list[Complaint]:
        """Complaints newest-first, narrowed by ``filter``.

        Non-admin viewers only see their own complaints, except on the
        public history page. The tracking page hides finished complaints
        unless a status is requested explicitly.
        """
        query = self._base_query()

        if filter is not None:
            if (
                not filter.viewer_is_admin
                and filter.page != ComplaintPage.HISTORY
            ):
                query = query.where(Complaint.user_id == filter.viewer_id)

            if filter.status is not None:
                query = query.where(Complaint.current_status == filter.status)
            elif filter.page == ComplaintPage.TRACKING:
                query = query.where(Complaint.current_status != ComplaintStatus.DONE)

            if filter.query and filter.query.strip():
                pattern = f"%{filter.query.strip().lower()}%"
                query = query.where(
                    or_(
                        func.lower(Complaint.title).like(pattern),
                        func.lower(Complaint.location).like(pattern),
                    )
                )

        query = query.order_by(Complaint.created_at.desc())
        if limit is not None:
            query = query.limit(limit)

        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def complaint_stats(self) -> ComplaintStatsResult:
        """Global counters across all complaints."""
        result = await self._session.execute(
            select(Complaint.current_status, func.count())
            .group_by(Complaint.current_status)
        )
        counts = {status: count for status, count in result.all()}
        return ComplaintStatsResult(
            total=sum(counts.values()),
            pending=counts.get(ComplaintStatus.PENDING, 0),
            in_progress=counts.get(ComplaintStatus.IN_PROGRESS, 0),
            done=counts.get(ComplaintStatus.DONE, 0),
        )

    async def list_categories(self) -> list[Category]:
        result = await self._session.execute(select(Category).order_by(Category.name))
        return list(result.scalars().all())

    async def get_profile(self, auth_user_id: str) -> User | None:
        result = await self._session.execute(
            select(User).where(User.auth_user_id == auth_user_id)
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    def _base_query(self):
        return select(Complaint).options(
            selectinload(Complaint.category),
            selectinload(Complaint.owner),
            selectinload(Complaint.progress),
        )


# =============================================================================
# NOTIFICATION SOURCE
# =============================================================================


class DatabaseComplaintSource:
    """Feeds the newest complaints to the notification reconciler.

    Notifications are drawn from the campus-wide list for every viewer,
    students included; only the complaint pages narrow by owner.
    """

    def __init__(self, service: ComplaintService, viewer: User, limit: int | None = None):
        self._service = service
        self._viewer = viewer
        self._limit = limit

    async def fetch_complaints(self) -> list[ComplaintOut]:
        try:
            complaints = await self._service.list_complaints(
                ComplaintFilter(
                    viewer_id=self._viewer.id,
                    viewer_is_admin=self._viewer.is_admin,
                    page=ComplaintPage.HISTORY,
                ),
                limit=self._limit,
            )
        except SQLAlchemyError as e:
            raise ComplaintSourceError(f"Failed to load complaints: {e}") from e
        return [ComplaintOut.model_validate(c) for c in complaints]
