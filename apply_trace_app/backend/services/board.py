"""
Kanban board view of a user's applications.

Cards are grouped into five columns keyed by the board's lower-case status
names; the maps below translate between those and the stored JobStatus.
"""
from typing import Iterable, List

from .. import schemas
from ..models.db.application import JobStatus

STATUS_TO_COLUMN = {
    JobStatus.APPLIED: "applied",
    JobStatus.INTERVIEW_SCHEDULED: "interviewing",
    JobStatus.OFFER_RECEIVED: "offer",
    JobStatus.REJECTED: "rejected",
    JobStatus.ARCHIVED: "archived",
}

COLUMN_TO_STATUS = {column: status for status, column in STATUS_TO_COLUMN.items()}

BOARD_COLUMNS = [
    ("applied", "Applied", "#8B7355"),
    ("interviewing", "Interviewing", "#87A987"),
    ("offer", "Offer", "#6B8E23"),
    ("rejected", "Rejected", "#BC8F8F"),
    ("archived", "Archived", "#9E9E9E"),
]


def to_card(application) -> schemas.BoardCard:
    return schemas.BoardCard(
        id=application.id,
        company=application.company_name,
        position=application.role_title,
        status=STATUS_TO_COLUMN[JobStatus(application.status)],
        last_updated=application.updated_at,
        applied_date=application.applied_date,
        location=application.location or None,
        notes=application.notes or None,
    )


def build_board(applications: Iterable) -> schemas.Board:
    cards = [to_card(application) for application in applications if not application.is_deleted]
    columns: List[schemas.BoardColumn] = []
    for status, title, color in BOARD_COLUMNS:
        columns.append(schemas.BoardColumn(
            status=status,
            title=title,
            color=color,
            jobs=[card for card in cards if card.status == status],
        ))
    return schemas.Board(columns=columns)


def status_for_column(column: str) -> JobStatus:
    try:
        return COLUMN_TO_STATUS[column]
    except KeyError:
        raise ValueError(f"Unknown board column: {column}")
