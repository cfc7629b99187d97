"""
AssignmentManager: coach selection under capacity and cooldown rules.

Every check that guards a mutation runs inside the same transaction as the
mutation. The target CoachProfile and the client's active assignment are
read FOR UPDATE, and the capacity counter is bumped with a guarded UPDATE, so
two clients racing for the last slot cannot both win.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import StorageClock, storage_clock
from app.core.config import settings
from app.core.identity import Principal
from app.core.logger import get_logger
from app.database.transactions import run_transaction
from app.enums import AssignmentStatus, EndedReason, EventType, Plan, Role
from app.exceptions.errors import (
    CapacityExceeded,
    CoachUnavailable,
    CooldownNotElapsed,
    Forbidden,
    NotFound,
    PlanRequired,
)
from app.models import CoachAssignment, CoachProfile, Conversation, User, make_pair_key
from app.policies import row_policies as policy
from app.schemas.coaching_schemas import AssignmentView, CoachProfileUpdate, CoachProfileView
from app.services.presence_bus import Event, PresenceBus, presence_bus

logger = get_logger("assignment_service")

SECONDS_PER_DAY = 86400


@dataclass
class SelectionResult:
    assignment: CoachAssignment
    ended_previous: Optional[CoachAssignment] = None
    changed: bool = True


def cooldown_remaining_days(assigned_at: datetime, now: datetime, cooldown_days: int) -> int:
    """
    Whole days still blocking a coach change; 0 once the cooldown has elapsed.

    Blocking uses the floor of elapsed days; the reported remainder uses the
    ceiling so a blocked client never sees "0 days".
    """
    age_days = max((now - assigned_at).total_seconds(), 0) / SECONDS_PER_DAY
    if math.floor(age_days) >= cooldown_days:
        return 0
    return max(1, math.ceil(cooldown_days - age_days))


def coach_profile_view(profile: CoachProfile) -> CoachProfileView:
    return CoachProfileView(
        coach_id=profile.coach_id,
        full_name=profile.full_name,
        bio=profile.bio,
        is_available=profile.is_available,
        max_clients=profile.max_clients,
        active_clients=profile.active_clients,
        accepting_clients=profile.is_available and profile.active_clients < profile.max_clients,
    )


def assignment_payload(assignment: CoachAssignment) -> dict:
    return AssignmentView.model_validate(assignment).model_dump(mode="json")


class AssignmentService:
    """Service for client <-> coach assignments and coach capacity."""

    @staticmethod
    async def current_assignment(
        db: AsyncSession,
        principal: Principal,
        client_id: Optional[str] = None,
    ) -> Optional[CoachAssignment]:
        """Active assignment of `client_id` (defaults to the caller)."""
        client_id = client_id or principal.id

        async def work(session: AsyncSession):
            result = await session.execute(
                select(CoachAssignment).where(
                    CoachAssignment.client_id == client_id,
                    CoachAssignment.status == AssignmentStatus.ACTIVE.value,
                )
            )
            assignment = result.scalar_one_or_none()
            if assignment is None:
                # Only the client themselves or an admin may learn "no coach"
                policy.require(principal.is_admin or principal.id == client_id)
                return None
            policy.require(policy.can_read_assignment(principal, assignment))
            return assignment

        return await run_transaction(db, work, write=False, operation="current assignment")

    @staticmethod
    async def list_available_coaches(db: AsyncSession) -> List[CoachProfileView]:
        """Coaches accepting clients, least loaded first."""

        async def work(session: AsyncSession):
            result = await session.execute(
                select(CoachProfile)
                .join(User, User.id == CoachProfile.coach_id)
                .where(
                    User.type == Role.COACH.value,
                    User.is_active.is_(True),
                    User.is_deleted.is_(False),
                    CoachProfile.is_available.is_(True),
                    CoachProfile.active_clients < CoachProfile.max_clients,
                )
                .order_by(
                    CoachProfile.is_available.desc(),
                    CoachProfile.active_clients.asc(),
                    CoachProfile.coach_id.asc(),
                )
            )
            return [coach_profile_view(profile) for profile in result.scalars().all()]

        return await run_transaction(db, work, write=False, operation="list available coaches")

    @staticmethod
    async def select_coach(
        db: AsyncSession,
        principal: Principal,
        target_coach_id: str,
        client_id: Optional[str] = None,
        clock: StorageClock = storage_clock,
        bus: PresenceBus = presence_bus,
    ) -> SelectionResult:
        client_id = client_id or principal.id
        if principal.id != client_id:
            raise Forbidden("You can only choose a coach for yourself")
        if principal.role != Role.USER:
            raise Forbidden("Only users can select a coach")
        if principal.plan != Plan.PRO:
            raise PlanRequired()

        async def work(session: AsyncSession) -> SelectionResult:
            now = await clock.now(session)

            profile = (await session.execute(
                select(CoachProfile)
                .join(User, User.id == CoachProfile.coach_id)
                .where(
                    CoachProfile.coach_id == target_coach_id,
                    User.type == Role.COACH.value,
                    User.is_deleted.is_(False),
                )
                .with_for_update(of=CoachProfile)
            )).scalar_one_or_none()
            if profile is None:
                raise NotFound("Coach not found")

            existing = (await session.execute(
                select(CoachAssignment)
                .where(
                    CoachAssignment.client_id == client_id,
                    CoachAssignment.status == AssignmentStatus.ACTIVE.value,
                )
                .with_for_update()
            )).scalar_one_or_none()

            # Re-selecting the current coach never fails and keeps the cooldown anchor
            if existing is not None and existing.coach_id == target_coach_id:
                return SelectionResult(assignment=existing, changed=False)

            if not profile.is_available:
                raise CoachUnavailable()
            if profile.active_clients >= profile.max_clients:
                raise CapacityExceeded(max_capacity=profile.max_clients)

            if existing is not None:
                remaining = cooldown_remaining_days(existing.assigned_at, now, settings.COOLDOWN_DAYS)
                if remaining > 0:
                    raise CooldownNotElapsed(remaining_days=remaining, cooldown_days=settings.COOLDOWN_DAYS)

                policy.require(policy.can_write_assignment(principal, existing))
                existing.status = AssignmentStatus.ENDED.value
                existing.ended_at = now
                existing.ended_reason = EndedReason.SWITCHED_COACH.value
                await session.execute(
                    update(CoachProfile)
                    .where(CoachProfile.coach_id == existing.coach_id, CoachProfile.active_clients > 0)
                    .values(active_clients=CoachProfile.active_clients - 1)
                )
                # The partial unique index must see the old row ended before the insert
                await session.flush()

            # Capacity re-check and increment in one statement
            claimed = await session.execute(
                update(CoachProfile)
                .where(
                    CoachProfile.coach_id == target_coach_id,
                    CoachProfile.active_clients < CoachProfile.max_clients,
                )
                .values(active_clients=CoachProfile.active_clients + 1)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                raise CapacityExceeded(max_capacity=profile.max_clients)

            assignment = CoachAssignment(
                client_id=client_id,
                coach_id=target_coach_id,
                status=AssignmentStatus.ACTIVE.value,
                assigned_at=now,
            )
            policy.require(policy.can_write_assignment(principal, assignment))
            session.add(assignment)
            await AssignmentService._ensure_conversation(session, client_id, target_coach_id, now)
            await session.flush()
            return SelectionResult(assignment=assignment, ended_previous=existing)

        result = await run_transaction(
            db,
            work,
            isolation_level="REPEATABLE READ",
            retry_on_conflict=True,
            operation="select coach",
        )

        if result.changed:
            logger.info(
                f"Client {client_id} assigned to coach {target_coach_id}"
                + (f" (previous coach {result.ended_previous.coach_id})" if result.ended_previous else "")
            )
            await AssignmentService._publish_change(bus, result.assignment, result.ended_previous)
        return result

    @staticmethod
    async def end_assignment(
        db: AsyncSession,
        principal: Principal,
        client_id: Optional[str] = None,
        clock: StorageClock = storage_clock,
        bus: PresenceBus = presence_bus,
    ) -> CoachAssignment:
        """Client (or admin) leaves their current coach."""
        client_id = client_id or principal.id

        async def work(session: AsyncSession) -> CoachAssignment:
            now = await clock.now(session)
            assignment = (await session.execute(
                select(CoachAssignment)
                .where(
                    CoachAssignment.client_id == client_id,
                    CoachAssignment.status == AssignmentStatus.ACTIVE.value,
                )
                .with_for_update()
            )).scalar_one_or_none()
            if assignment is None:
                policy.require(principal.is_admin or principal.id == client_id)
                raise NotFound("No active coach assignment")
            policy.require(policy.can_write_assignment(principal, assignment))

            assignment.status = AssignmentStatus.ENDED.value
            assignment.ended_at = now
            assignment.ended_reason = EndedReason.ENDED_BY_CLIENT.value
            await session.execute(
                update(CoachProfile)
                .where(CoachProfile.coach_id == assignment.coach_id, CoachProfile.active_clients > 0)
                .values(active_clients=CoachProfile.active_clients - 1)
            )
            await session.flush()
            return assignment

        assignment = await run_transaction(db, work, operation="end assignment")
        logger.info(f"Client {client_id} ended assignment with coach {assignment.coach_id}")
        await bus.publish(
            [assignment.client_id, assignment.coach_id],
            Event(EventType.ASSIGNMENT_CHANGED, {"assignment": assignment_payload(assignment), "ended_previous": None}),
        )
        return assignment

    @staticmethod
    async def list_coach_clients(
        db: AsyncSession,
        principal: Principal,
        coach_id: Optional[str] = None,
    ) -> List[CoachAssignment]:
        coach_id = coach_id or principal.id
        policy.require(principal.is_admin or principal.id == coach_id)

        async def work(session: AsyncSession):
            result = await session.execute(
                select(CoachAssignment)
                .where(
                    CoachAssignment.coach_id == coach_id,
                    CoachAssignment.status == AssignmentStatus.ACTIVE.value,
                    policy.assignment_scope(principal),
                )
                .order_by(CoachAssignment.assigned_at.asc(), CoachAssignment.id.asc())
            )
            return list(result.scalars().all())

        return await run_transaction(db, work, write=False, operation="list coach clients")

    @staticmethod
    async def get_coach_profile(db: AsyncSession, principal: Principal, coach_id: str) -> CoachProfileView:
        async def work(session: AsyncSession):
            profile = await session.get(CoachProfile, coach_id)
            if profile is None:
                raise NotFound("Coach not found")
            policy.require(policy.can_read_coach_profile(principal, profile))
            return coach_profile_view(profile)

        return await run_transaction(db, work, write=False, operation="get coach profile")

    @staticmethod
    async def upsert_coach_profile(
        db: AsyncSession,
        principal: Principal,
        payload: CoachProfileUpdate,
        coach_id: Optional[str] = None,
    ) -> CoachProfileView:
        coach_id = coach_id or principal.id

        async def work(session: AsyncSession):
            coach = await session.get(User, coach_id)
            if coach is None or coach.type != Role.COACH.value:
                raise NotFound("Coach not found")

            profile = (await session.execute(
                select(CoachProfile).where(CoachProfile.coach_id == coach_id).with_for_update()
            )).scalar_one_or_none()
            if profile is None:
                profile = CoachProfile(
                    coach_id=coach_id,
                    is_available=True,
                    max_clients=settings.MAX_CLIENTS_PER_COACH,
                    active_clients=0,
                )
                policy.require(policy.can_write_coach_profile(principal, profile))
                session.add(profile)
            else:
                policy.require(policy.can_write_coach_profile(principal, profile))

            data = payload.model_dump(exclude_unset=True)
            new_max = data.get("max_clients")
            if new_max is not None and new_max < profile.active_clients:
                raise CapacityExceeded(
                    f"max_clients cannot be lower than the {profile.active_clients} active clients",
                    max_capacity=profile.max_clients,
                )
            for key, value in data.items():
                setattr(profile, key, value)
            await session.flush()
            return coach_profile_view(profile)

        view = await run_transaction(db, work, operation="upsert coach profile")
        logger.info(f"Coach profile {coach_id} updated by {principal.id}")
        return view

    @staticmethod
    async def ensure_coach_profile(session: AsyncSession, coach_id: str) -> CoachProfile:
        """Create the default profile for a principal that just became a coach."""
        profile = await session.get(CoachProfile, coach_id)
        if profile is None:
            profile = CoachProfile(
                coach_id=coach_id,
                is_available=True,
                max_clients=settings.MAX_CLIENTS_PER_COACH,
                active_clients=0,
            )
            session.add(profile)
            await session.flush()
        return profile

    @staticmethod
    async def _ensure_conversation(session: AsyncSession, client_id: str, coach_id: str, now: datetime) -> None:
        pair_key = make_pair_key(client_id, coach_id)
        existing = (await session.execute(
            select(Conversation.id).where(Conversation.pair_key == pair_key)
        )).scalar_one_or_none()
        if existing is None:
            session.add(Conversation(pair_key=pair_key, client_id=client_id, coach_id=coach_id, created_at=now))

    @staticmethod
    async def _publish_change(
        bus: PresenceBus,
        assignment: CoachAssignment,
        ended_previous: Optional[CoachAssignment],
    ) -> None:
        recipients = [assignment.client_id, assignment.coach_id]
        if ended_previous is not None:
            recipients.append(ended_previous.coach_id)
        await bus.publish(
            recipients,
            Event(
                EventType.ASSIGNMENT_CHANGED,
                {
                    "assignment": assignment_payload(assignment),
                    "ended_previous": assignment_payload(ended_previous) if ended_previous else None,
                },
            ),
        )
