from datetime import datetime
from typing import List
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import schemas
from ..services import application_tracker as application_service
from ..services import board as board_service
from ..models.db.database import get_db
from ..utils.datetime_utils import utcnow
from .auth import get_current_active_user

router = APIRouter()

@router.post("/", response_model=schemas.Application, status_code=status.HTTP_201_CREATED)
def create_application(
    application: schemas.ApplicationCreate,
    db: Session = Depends(get_db),
    current_user: schemas.User = Depends(get_current_active_user)
):
    """
    Create a new job application entry for the current user.
    """
    return application_service.create_application_for_user(
        db=db, application=application, user_id=current_user.id
    )

@router.get("/", response_model=List[schemas.Application])
def read_applications(
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    current_user: schemas.User = Depends(get_current_active_user)
):
    """
    Retrieve all job applications for the current user.
    """
    applications = application_service.get_applications_for_user(
        db, user_id=current_user.id, skip=skip, limit=limit
    )
    return applications

@router.get("/board", response_model=schemas.Board)
def read_board(
    db: Session = Depends(get_db),
    current_user: schemas.User = Depends(get_current_active_user)
):
    """
    The current user's applications grouped into board columns.
    """
    applications = application_service.get_applications_for_user(
        db, user_id=current_user.id, limit=1000
    )
    return board_service.build_board(applications)

@router.get("/changes", response_model=schemas.ApplicationChanges)
def read_changes(
    since: datetime,
    db: Session = Depends(get_db),
    current_user: schemas.User = Depends(get_current_active_user)
):
    """
    Applications inserted, updated or deleted after ``since``. Pass the
    returned ``server_time`` as the next ``since``.
    """
    server_time = utcnow()
    applications = application_service.get_changes_since(db, user_id=current_user.id, since=since)
    return schemas.ApplicationChanges(server_time=server_time, applications=applications)

@router.get("/{application_id}", response_model=schemas.Application)
def read_application(
    application_id: str,
    db: Session = Depends(get_db),
    current_user: schemas.User = Depends(get_current_active_user)
):
    """
    Retrieve a specific job application by its ID.
    """
    db_application = application_service.get_application_by_id(
        db, application_id=application_id, user_id=current_user.id
    )
    if db_application is None:
        raise HTTPException(status_code=404, detail="Application not found")
    return db_application

@router.put("/{application_id}", response_model=schemas.Application)
@router.patch("/{application_id}", response_model=schemas.Application)
def update_application(
    application_id: str,
    application: schemas.ApplicationUpdate,
    db: Session = Depends(get_db),
    current_user: schemas.User = Depends(get_current_active_user)
):
    """
    Update a job application's details. Only the fields sent are changed.
    """
    db_application = application_service.update_application(
        db, application_id=application_id, application_update=application, user_id=current_user.id
    )
    if db_application is None:
        raise HTTPException(status_code=404, detail="Application not found")
    return db_application

@router.post("/{application_id}/move", response_model=schemas.Application)
def move_application(
    application_id: str,
    move: schemas.BoardMove,
    db: Session = Depends(get_db),
    current_user: schemas.User = Depends(get_current_active_user)
):
    """
    Move a card to another board column.
    """
    try:
        new_status = board_service.status_for_column(move.column)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    db_application = application_service.update_application(
        db,
        application_id=application_id,
        application_update=schemas.ApplicationUpdate(status=new_status),
        user_id=current_user.id
    )
    if db_application is None:
        raise HTTPException(status_code=404, detail="Application not found")
    return db_application

@router.delete("/{application_id}", response_model=schemas.Application)
def delete_application(
    application_id: str,
    db: Session = Depends(get_db),
    current_user: schemas.User = Depends(get_current_active_user)
):
    """
    Delete a job application. The row is kept, flagged as deleted.
    """
    db_application = application_service.delete_application(
        db, application_id=application_id, user_id=current_user.id
    )
    if db_application is None:
        raise HTTPException(status_code=404, detail="Application not found")
    return db_application
