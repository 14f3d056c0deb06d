# routers/batches.py

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from gradebook.database import get_db
from gradebook.exceptions import NotFoundError
from gradebook.schemas.workflow_schemas import Actor, BatchResponse
from gradebook.services.batches import get_batch, get_batch_row, recompute_batch_status
from gradebook.utils.auth import get_current_actor


router = APIRouter(prefix="/api/batches", tags=["Submission Batches"])


def _check_school(db: Session, batch_id: UUID, actor: Actor):
    batch = get_batch_row(db, batch_id)
    if actor.school_id is not None and batch.school_id != actor.school_id:
        raise NotFoundError(f"Grade submission batch {batch_id} not found")


@router.get("/{batch_id}", response_model=BatchResponse)
def read_batch(batch_id: UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    _check_school(db, batch_id, actor)
    return get_batch(db, batch_id)


@router.post("/{batch_id}/recompute", response_model=BatchResponse)
def recompute_batch(batch_id: UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    _check_school(db, batch_id, actor)
    recompute_batch_status(db, batch_id)
    return get_batch(db, batch_id)
