"""What a timer can point at.

A trackable is a tagged reference, ``ProjectRef(id)`` or ``IssueRef(id)``.
Resolving it loads the entity and checks ownership through the
``owner_id`` attribute every trackable model exposes; an entity owned by
someone else is reported exactly like a missing one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Union

from sqlalchemy.orm import Session as OrmSession

from ..database.models import Project, Issue
from ..errors import NotFoundError, ValidationError

PROJECT = "project"
ISSUE = "issue"
TRACKABLE_TYPES = (PROJECT, ISSUE)


class Ownable(Protocol):
    @property
    def owner_id(self) -> int: ...

    @property
    def display_name(self) -> str: ...


@dataclass(frozen=True)
class ProjectRef:
    id: int
    type: str = PROJECT


@dataclass(frozen=True)
class IssueRef:
    id: int
    type: str = ISSUE


TrackableRef = Union[ProjectRef, IssueRef]


@dataclass(frozen=True)
class ResolvedTrackable:
    """A trackable checked against its owner, with the denormalized ids."""

    ref: TrackableRef
    entity: Ownable
    project_id: int | None
    issue_id: int | None

    @property
    def name(self) -> str:
        return self.entity.display_name


def make_ref(trackable_type, trackable_id) -> TrackableRef:
    """Validate raw input into a :data:`TrackableRef`."""
    if trackable_type not in TRACKABLE_TYPES:
        raise ValidationError(
            "trackable_type must be 'project' or 'issue'", field="trackable_type"
        )
    if isinstance(trackable_id, bool) or not isinstance(trackable_id, int):
        raise ValidationError("trackable_id must be an integer", field="trackable_id")
    if trackable_id <= 0:
        raise ValidationError("trackable_id must be positive", field="trackable_id")
    if trackable_type == PROJECT:
        return ProjectRef(trackable_id)
    return IssueRef(trackable_id)


def resolve(db: OrmSession, ref: TrackableRef, user_id: int) -> ResolvedTrackable:
    """Load the entity behind ``ref`` if ``user_id`` owns it."""
    if isinstance(ref, ProjectRef):
        entity = db.get(Project, ref.id)
    else:
        entity = db.get(Issue, ref.id)

    if entity is None or entity.owner_id != user_id:
        raise NotFoundError("Project or issue not found")

    if isinstance(ref, ProjectRef):
        return ResolvedTrackable(ref, entity, project_id=entity.id, issue_id=None)
    return ResolvedTrackable(
        ref, entity, project_id=entity.project_id, issue_id=entity.id
    )
