"""
Payment QR rotation.

An event owns an ordered list of QR slots and a pointer to the active one.
Each recorded payment bumps the active slot's usage counter; once the counter
reaches the slot capacity the pointer moves forward to the next active slot.
When there is no later active slot the current one keeps serving, over
capacity, so payers are never left without a QR code.

`record_usage` is a pure transition. Persisted state must only be changed
through `EventStore.update`, which applies the read-modify-write atomically
per event.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import copy
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
import logging
from threading import Lock
from typing import Callable, Dict, List, Optional

from .errors import EventAlreadyExistsError, EventNotFoundError, RotationConsistencyError

logger = logging.getLogger(__name__)

DEFAULT_QR_CAPACITY = 40


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class QRSlot:
    qr_locator: str
    payment_identifier: Optional[str] = None
    account_label: Optional[str] = None
    usage_count: int = 0
    capacity: int = DEFAULT_QR_CAPACITY
    active: bool = True
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if self.usage_count < 0:
            raise ValueError("usage_count cannot be negative")
        if self.capacity < 1:
            raise ValueError("capacity must be positive")


@dataclass
class EventPaymentState:
    event_id: str
    name: str = ""
    qr_slots: List[QRSlot] = field(default_factory=list)
    current_qr_index: int = 0
    # Legacy single-QR fields, used only when qr_slots is empty.
    payment_qr_code: Optional[str] = None
    payment_upi: Optional[str] = None
    payment_account_name: Optional[str] = None


@dataclass
class ActivePaymentQR:
    qr_locator: Optional[str]
    payment_identifier: Optional[str]
    account_label: Optional[str]
    usage_count: int = 0
    capacity: int = 0
    slot_index: Optional[int] = None

    @property
    def is_legacy(self) -> bool:
        return self.slot_index is None


@dataclass
class RotationOutcome:
    state: EventPaymentState
    rotated: bool = False
    exhausted: bool = False


def _check_index(state: EventPaymentState) -> None:
    if not 0 <= state.current_qr_index < len(state.qr_slots):
        raise RotationConsistencyError(
            f"QR index {state.current_qr_index} out of bounds for event {state.event_id} "
            f"with {len(state.qr_slots)} slots"
        )


def legacy_qr(state: EventPaymentState) -> ActivePaymentQR:
    return ActivePaymentQR(
        qr_locator=state.payment_qr_code,
        payment_identifier=state.payment_upi,
        account_label=state.payment_account_name,
    )


def get_active_qr(state: EventPaymentState) -> ActivePaymentQR:
    """
    The QR a payer should see. Falls back to the legacy fields when there are
    no slots or the slot under the pointer has been deactivated.

    Raises:
        RotationConsistencyError: the stored index is outside the slot list.
    """
    if not state.qr_slots:
        return legacy_qr(state)
    _check_index(state)
    slot = state.qr_slots[state.current_qr_index]
    if not slot.active:
        return legacy_qr(state)
    return ActivePaymentQR(
        qr_locator=slot.qr_locator,
        payment_identifier=slot.payment_identifier,
        account_label=slot.account_label,
        usage_count=slot.usage_count,
        capacity=slot.capacity,
        slot_index=state.current_qr_index,
    )


def record_usage(state: EventPaymentState) -> RotationOutcome:
    """
    Count one payment against the active slot and rotate if it is full.

    Returns a new state; `state` is left untouched. The forward scan never
    wraps, so slots before the pointer are not revisited.

    Raises:
        RotationConsistencyError: the stored index is outside the slot list.
    """
    if not state.qr_slots:
        return RotationOutcome(state=state)
    _check_index(state)

    slots = [replace(slot) for slot in state.qr_slots]
    index = state.current_qr_index
    current = slots[index]
    current.usage_count += 1

    rotated = exhausted = False
    if current.usage_count >= current.capacity:
        next_index = next(
            (i for i in range(index + 1, len(slots)) if slots[i].active),
            None,
        )
        if next_index is None:
            exhausted = True
            logger.warning(
                "No more QR codes available for event %s, continuing with slot %d (%d/%d)",
                state.event_id,
                index + 1,
                current.usage_count,
                current.capacity,
            )
        else:
            index = next_index
            rotated = True
            logger.info("Switched to QR code %d for event %s", index + 1, state.event_id)

    new_state = replace(state, qr_slots=slots, current_qr_index=index)
    return RotationOutcome(state=new_state, rotated=rotated, exhausted=exhausted)


class EventStore(ABC):
    """
    Persistence boundary for event payment state.

    `update` must apply `mutate` as one atomic read-modify-write per event so
    concurrent payments cannot lose increments.
    """

    @abstractmethod
    def get(self, event_id: str) -> EventPaymentState:
        ...

    @abstractmethod
    def save(self, state: EventPaymentState) -> None:
        ...

    @abstractmethod
    def create(self, state: EventPaymentState) -> None:
        """Insert a new event; raises `EventAlreadyExistsError` if the id is taken."""

    @abstractmethod
    def update(
        self, event_id: str, mutate: Callable[[EventPaymentState], RotationOutcome]
    ) -> RotationOutcome:
        ...


class InMemoryEventStore(EventStore):
    """Process-local store with one lock per event."""

    def __init__(self) -> None:
        self._events: Dict[str, EventPaymentState] = {}
        self._locks: Dict[str, Lock] = {}
        self._registry_lock = Lock()

    def _lock_for(self, event_id: str) -> Lock:
        with self._registry_lock:
            lock = self._locks.get(event_id)
            if lock is None:
                lock = self._locks[event_id] = Lock()
            return lock

    def get(self, event_id: str) -> EventPaymentState:
        with self._lock_for(event_id):
            state = self._events.get(event_id)
            if state is None:
                raise EventNotFoundError(f"Event not found: {event_id}")
            return copy.deepcopy(state)

    def save(self, state: EventPaymentState) -> None:
        with self._lock_for(state.event_id):
            self._events[state.event_id] = copy.deepcopy(state)

    def create(self, state: EventPaymentState) -> None:
        with self._lock_for(state.event_id):
            if state.event_id in self._events:
                raise EventAlreadyExistsError(f"Event already exists: {state.event_id}")
            self._events[state.event_id] = copy.deepcopy(state)

    def update(
        self, event_id: str, mutate: Callable[[EventPaymentState], RotationOutcome]
    ) -> RotationOutcome:
        with self._lock_for(event_id):
            state = self._events.get(event_id)
            if state is None:
                raise EventNotFoundError(f"Event not found: {event_id}")
            outcome = mutate(copy.deepcopy(state))
            self._events[event_id] = copy.deepcopy(outcome.state)
            return outcome


class QRRotationService:
    """Reads and advances QR rotation through an `EventStore`."""

    def __init__(self, store: EventStore, default_capacity: int = DEFAULT_QR_CAPACITY) -> None:
        self.store = store
        self.default_capacity = default_capacity

    def create_event(
        self,
        event_id: str,
        name: str = "",
        payment_qr_code: Optional[str] = None,
        payment_upi: Optional[str] = None,
        payment_account_name: Optional[str] = None,
    ) -> EventPaymentState:
        """Register an event with no slots; legacy QR fields are optional."""
        state = EventPaymentState(
            event_id=event_id,
            name=name,
            payment_qr_code=payment_qr_code,
            payment_upi=payment_upi,
            payment_account_name=payment_account_name,
        )
        self.store.create(state)
        logger.info("Registered event %s (%s)", event_id, name)
        return state

    def get_event(self, event_id: str) -> EventPaymentState:
        return self.store.get(event_id)

    def register_slot(
        self,
        event_id: str,
        qr_locator: str,
        payment_identifier: Optional[str] = None,
        account_label: Optional[str] = None,
        capacity: Optional[int] = None,
    ) -> EventPaymentState:
        """Append a new active slot at the end of the rotation order."""
        slot = QRSlot(
            qr_locator=qr_locator,
            payment_identifier=payment_identifier,
            account_label=account_label,
            capacity=capacity or self.default_capacity,
        )

        def _append(state: EventPaymentState) -> RotationOutcome:
            return RotationOutcome(state=replace(state, qr_slots=state.qr_slots + [slot]))

        outcome = self.store.update(event_id, _append)
        logger.info(
            "Registered QR slot %d for event %s (capacity %d)",
            len(outcome.state.qr_slots),
            event_id,
            slot.capacity,
        )
        return outcome.state

    def active_qr(self, event_id: str) -> ActivePaymentQR:
        state = self.store.get(event_id)
        try:
            return get_active_qr(state)
        except RotationConsistencyError as exc:
            logger.error("QR rotation inconsistent, serving legacy QR: %s", exc)
            return legacy_qr(state)

    def record_payment(self, event_id: str) -> RotationOutcome:
        """
        Count a confirmed payment for `event_id`.

        Inconsistent rotation state is logged and left as is.

        Raises:
            EventNotFoundError: unknown event.
        """

        def _mutate(state: EventPaymentState) -> RotationOutcome:
            try:
                return record_usage(state)
            except RotationConsistencyError as exc:
                logger.error("QR rotation inconsistent, usage not recorded: %s", exc)
                return RotationOutcome(state=state)

        return self.store.update(event_id, _mutate)
