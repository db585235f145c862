"""
Booking coordinator: re-validate a chosen slot and commit it atomically.

Each booking moves Proposed -> Validated -> Committed, or Proposed ->
Rejected when the slot no longer fits. There is no hold step; the
optimistic version check at commit time is the only serialization point,
and a lost race is reported to the caller rather than retried here.
"""

from enum import Enum
from typing import List, Optional

from .availability import AvailabilityEngine
from .errors import ConcurrencyConflictError, ConflictError, CrewmatchError, SlotUnavailableError
from .logger import get_logger
from .models import AssignmentCommand, AssignmentResult, ExistingAssignment

logger = get_logger()


class BookingState(str, Enum):
    PROPOSED = "proposed"
    VALIDATED = "validated"
    COMMITTED = "committed"
    REJECTED = "rejected"


_TRANSITIONS = {
    BookingState.PROPOSED: (BookingState.VALIDATED, BookingState.REJECTED),
    BookingState.VALIDATED: (BookingState.COMMITTED, BookingState.REJECTED),
    BookingState.COMMITTED: (),
    BookingState.REJECTED: (),
}


class Booking:
    """Tracks one booking attempt through its states."""

    def __init__(self, command: AssignmentCommand):
        self.command = command
        self.state = BookingState.PROPOSED
        self.history: List[BookingState] = [BookingState.PROPOSED]
        self.reason: Optional[str] = None

    def advance(self, state: BookingState, reason: Optional[str] = None) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise CrewmatchError(
                f"invalid booking transition {self.state.value} -> {state.value}",
                job_id=self.command.job_id,
            )
        self.state = state
        self.history.append(state)
        if reason:
            self.reason = reason


class BookingCoordinator:
    """AssignJob: idempotency, re-validation, overlap scan, optimistic commit."""

    def __init__(self, directory, store, engine: Optional[AvailabilityEngine] = None, audit=None):
        """
        Args:
            directory: Contractor/job lookups (get_job, get_contractor)
            store: Assignment store (find_for_job, snapshot, commit)
            engine: Availability engine used for re-validation
            audit: Audit store; the chosen candidate is marked when command.audit_id is set
        """
        self.directory = directory
        self.store = store
        self.engine = engine or AvailabilityEngine()
        self.audit = audit

    def assign_job(self, command: AssignmentCommand) -> AssignmentResult:
        """
        Book command.contractor_id for command.job_id over [start_utc, end_utc).

        Returns:
            AssignmentResult with status "committed"; idempotent=True when the
            identical booking already existed.

        Raises:
            NotFoundError: Unknown job or contractor
            SlotUnavailableError: Slot fails working hours, buffers or fatigue rules
            ConflictError: Slot overlaps an existing assignment (named in the error)
            ConcurrencyConflictError: Another booking for the contractor committed first
        """
        job = self.directory.get_job(command.job_id)
        profile = self.directory.get_contractor(command.contractor_id)
        booking = Booking(command)

        existing = self._find_identical(command)
        if existing is not None:
            logger.info(
                "Booking already exists, returning it",
                job_id=command.job_id,
                assignment_id=existing.assignment_id,
            )
            return AssignmentResult(existing.assignment_id, BookingState.COMMITTED.value, idempotent=True)

        version, current = self.store.snapshot(command.contractor_id)
        try:
            check = self.engine.check_slot(profile, job, current, command.window)
            if not check.feasible:
                if check.conflicting_assignment_id:
                    raise ConflictError(
                        f"slot overlaps assignment {check.conflicting_assignment_id}",
                        conflicting_assignment_id=check.conflicting_assignment_id,
                        reason=check.reason,
                    )
                raise SlotUnavailableError(f"slot is not available: {check.reason}", reason=check.reason)

            overlap = self._overlapping(current, command)
            if overlap is not None:
                raise ConflictError(
                    f"slot overlaps assignment {overlap.assignment_id}",
                    conflicting_assignment_id=overlap.assignment_id,
                    reason="overlaps an existing assignment",
                )
            booking.advance(BookingState.VALIDATED)

            assignment = self.store.commit(command, version, location=job.location)
        except ConflictError as e:
            booking.advance(BookingState.REJECTED, e.reason)
            logger.record_booking(committed=False)
            logger.info(
                "Booking rejected",
                job_id=command.job_id,
                contractor_id=command.contractor_id,
                reason=e.reason,
                conflicting_assignment_id=e.conflicting_assignment_id,
                concurrent=isinstance(e, ConcurrencyConflictError),
            )
            raise

        booking.advance(BookingState.COMMITTED)
        logger.record_booking(committed=True)
        logger.info(
            "Booking committed",
            job_id=command.job_id,
            contractor_id=command.contractor_id,
            assignment_id=assignment.assignment_id,
            source=command.source,
            flags=list(check.flags),
        )
        self._mark_selected(command)
        return AssignmentResult(assignment.assignment_id, BookingState.COMMITTED.value)

    def try_assign(self, command: AssignmentCommand) -> AssignmentResult:
        """Like assign_job, but a conflict comes back as a rejected result."""
        try:
            return self.assign_job(command)
        except ConflictError as e:
            return AssignmentResult(
                None,
                BookingState.REJECTED.value,
                conflict={
                    "type": type(e).__name__,
                    "message": e.message,
                    "reason": e.reason,
                    "conflicting_assignment_id": e.conflicting_assignment_id,
                },
            )

    def _find_identical(self, command: AssignmentCommand) -> Optional[ExistingAssignment]:
        for a in self.store.find_for_job(command.job_id):
            if (
                a.is_active
                and a.contractor_id == command.contractor_id
                and a.start_utc == command.start_utc
                and a.end_utc == command.end_utc
            ):
                return a
        return None

    @staticmethod
    def _overlapping(current: List[ExistingAssignment], command: AssignmentCommand) -> Optional[ExistingAssignment]:
        window = command.window
        for a in current:
            if a.is_active and a.window.overlaps(window):
                return a
        return None

    def _mark_selected(self, command: AssignmentCommand) -> None:
        if self.audit is None or not command.audit_id:
            return
        try:
            self.audit.mark_selected(command.audit_id, command.contractor_id)
        except Exception as e:
            logger.error(
                "Failed to mark audit record",
                audit_id=command.audit_id,
                error=str(e),
                error_type=type(e).__name__,
            )
