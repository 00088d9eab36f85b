"""Best-effort onboarding progress tracking.

Events go to the ``onboarding_tracking`` table when it is reachable and to a
local JSON-lines buffer when it is not. ``OnboardingTracker.flush`` replays
the buffer once the table is back. Tracking never fails the request that
produced the event.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Literal, Protocol

from pydantic import BaseModel, Field, ValidationError, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.models.onboarding import OnboardingTracking

logger = logging.getLogger(__name__)

CUSTOMER_STEP_NAMES = {
    1: 'Vehicle Information',
    2: 'Referral Source',
    3: 'Previous Apps',
    4: 'Why Axle is Better',
    5: 'Last Service',
    6: 'Thank you for trusting us',
    8: 'Axle AI Benefits',
    10: 'Location',
    11: 'Notifications',
    12: 'Add Another Car',
    16: 'Maintenance Schedule',
    17: 'Setting Up',
    18: 'Plan Ready',
    19: 'Create Account',
}

POST_APPOINTMENT_STEP_NAMES = {
    2: 'Referral Source',
    3: 'Previous Apps',
    4: 'Why Axle is Better',
    5: 'Last Service',
    6: 'Thank you for trusting us',
    8: 'Location',
    9: 'Notifications',
    10: 'Add Another Car',
    11: 'Maintenance Schedule',
    12: 'Setting Up',
    13: 'Plan Ready',
    16: 'Free Trial',
    17: 'Choose Plan',
    18: 'Limited One Time Offer',
    19: 'Success',
}

STEP_NAMES = {
    'customer': CUSTOMER_STEP_NAMES,
    'post_appointment': POST_APPOINTMENT_STEP_NAMES,
    'mechanic': {},
}


def step_name_for(onboarding_type: str, step: int) -> str:
    return STEP_NAMES.get(onboarding_type, {}).get(step, f'Step {step}')


class TrackingEvent(BaseModel):
    kind: Literal['start', 'step', 'complete', 'drop_off']
    onboarding_type: Literal['customer', 'mechanic', 'post_appointment']
    session_id: str
    step: int = Field(ge=1)
    total_steps: int = Field(ge=1)
    step_name: str | None = None
    user_id: int | None = None
    appointment_id: int | None = None
    page: str | None = None
    time_on_step_seconds: int | None = None
    total_time_seconds: int | None = None
    occurred_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('session_id')
    @classmethod
    def validate_session_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Session id is required.')
        return normalized

    @property
    def resolved_step_name(self) -> str:
        return self.step_name or step_name_for(self.onboarding_type, self.step)


@dataclass
class TrackResult:
    ok: bool
    sink: str
    error: str | None = None


class TrackingSink(Protocol):
    name: str

    def record(self, event: TrackingEvent) -> TrackResult:
        ...


class RemoteSink:
    name = 'remote'

    def __init__(self, db: Session):
        self.db = db

    def record(self, event: TrackingEvent) -> TrackResult:
        try:
            self._apply(event)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            return TrackResult(ok=False, sink=self.name, error=str(exc))
        return TrackResult(ok=True, sink=self.name)

    def _apply(self, event: TrackingEvent) -> None:
        row = self.db.query(OnboardingTracking).filter(
            OnboardingTracking.onboarding_type == event.onboarding_type,
            OnboardingTracking.session_id == event.session_id,
        ).first()

        if row is None:
            row = OnboardingTracking(
                onboarding_type=event.onboarding_type,
                session_id=event.session_id,
                current_step=event.step,
                current_step_name=event.resolved_step_name,
                highest_step_reached=event.step,
                total_steps=event.total_steps,
                created_at=event.occurred_at,
            )
            self.db.add(row)

        if event.user_id is not None:
            row.user_id = event.user_id
        if event.appointment_id is not None:
            row.appointment_id = event.appointment_id
        row.last_active_at = event.occurred_at
        if event.total_time_seconds is not None:
            row.total_time_seconds = event.total_time_seconds

        if event.kind == 'step':
            row.current_step = event.step
            row.current_step_name = event.resolved_step_name
            row.highest_step_reached = max(row.highest_step_reached or 0, event.step)
            row.time_on_last_step_seconds = event.time_on_step_seconds
        elif event.kind == 'complete':
            row.completed_at = event.occurred_at
            row.dropped_off = False
        elif event.kind == 'drop_off' and row.completed_at is None and event.step < row.total_steps:
            row.dropped_off = True
            row.drop_off_step = event.step
            row.drop_off_step_name = event.resolved_step_name
            row.drop_off_page = event.page
            row.time_on_last_step_seconds = event.time_on_step_seconds


class LocalBufferSink:
    name = 'local'

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = Lock()

    def record(self, event: TrackingEvent) -> TrackResult:
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open('a', encoding='utf-8') as buffer:
                    buffer.write(event.model_dump_json() + '\n')
        except OSError as exc:
            return TrackResult(ok=False, sink=self.name, error=str(exc))
        return TrackResult(ok=True, sink=self.name)

    def pop_all(self) -> list[TrackingEvent]:
        with self._lock:
            if not self.path.exists():
                return []
            lines = self.path.read_text(encoding='utf-8').splitlines()
            self.path.unlink()

        events = []
        for line in lines:
            if not line.strip():
                continue
            try:
                events.append(TrackingEvent.model_validate(json.loads(line)))
            except (ValueError, ValidationError):
                logger.warning('Dropping unreadable onboarding buffer line')
        return events


class OnboardingTracker:
    """Writes to the remote sink first and falls back to the local buffer."""

    def __init__(self, remote: TrackingSink, local: LocalBufferSink):
        self.remote = remote
        self.local = local

    def record(self, event: TrackingEvent) -> TrackResult:
        result = self.remote.record(event)
        if result.ok:
            return result

        logger.warning(
            'Onboarding tracking for session %s fell back to local buffer: %s',
            event.session_id,
            result.error,
        )
        return self.local.record(event)

    def flush(self) -> int:
        flushed = 0
        for event in self.local.pop_all():
            if self.remote.record(event).ok:
                flushed += 1
            else:
                self.local.record(event)
        return flushed
