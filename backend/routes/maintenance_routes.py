import logging
import secrets

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from backend.core import config
from backend.core.exceptions import MarketplaceError
from backend.database import get_db
from backend.routes.errors import to_http_exception
from backend.routes.onboarding_routes import get_tracker
from backend.services.lifecycle import auto_cancel_overdue
from backend.store import AppointmentStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=['maintenance'])


class AutoCancelResponse(BaseModel):
    message: str
    eliminated_count: int
    eliminated_ids: list[int]


class FlushResponse(BaseModel):
    flushed: int


def verify_cron_secret(x_cron_secret: str | None = Header(default=None)) -> None:
    if not config.CRON_SECRET:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail='CRON_SECRET is not configured.')
    if not x_cron_secret or not secrets.compare_digest(x_cron_secret.encode(), config.CRON_SECRET.encode()):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Unauthorized')


@router.post('/auto-cancel', response_model=AutoCancelResponse, dependencies=[Depends(verify_cron_secret)])
def auto_cancel(db: Session = Depends(get_db)):
    try:
        result = auto_cancel_overdue(AppointmentStore(db))
    except MarketplaceError as exc:
        raise to_http_exception(exc) from exc

    logger.info(result.message)
    return AutoCancelResponse(
        message=result.message,
        eliminated_count=len(result.eliminated_ids),
        eliminated_ids=result.eliminated_ids,
    )


@router.post('/onboarding-flush', response_model=FlushResponse, dependencies=[Depends(verify_cron_secret)])
def flush_onboarding_buffer(db: Session = Depends(get_db)):
    return FlushResponse(flushed=get_tracker(db).flush())
