import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from audit_history.database import get_db
from audit_history.schemas import CapturedMutation, CaptureResult
from audit_history.services.capture_engine import capture_engine
from audit_history.services.snapshot_diff import UnsupportedCaptureError

router = APIRouter(prefix="/captures", tags=["Captures"])

logger = logging.getLogger(__name__)


@router.post("", response_model=CaptureResult, status_code=status.HTTP_201_CREATED)
def capture_mutation(payload: CapturedMutation, db: Session = Depends(get_db)) -> CaptureResult:
    """
    Record one captured mutation forwarded by a trigger, CDC stream or outbox relay.
    Resolution runs against the rows currently visible in the database.
    """
    try:
        event_ids = capture_engine.capture(db.connection(), payload)
    except UnsupportedCaptureError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    db.commit()
    return CaptureResult(event_ids=event_ids)
