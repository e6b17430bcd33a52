"""Demo data: one user with a few projects and issues."""

from __future__ import annotations

import logging

from .db import get_session
from .models import User, Project, Issue

log = logging.getLogger(__name__)

DEMO_PROJECTS = [
    ("Time Tracker App", "#3B82F6", "Timer core and client widget"),
    ("Client Website", "#10B981", "E-commerce website for client"),
    ("Mobile App", "#F59E0B", "Companion mobile application"),
]

# (project index or None, title, priority, status)
DEMO_ISSUES = [
    (0, "Implement timer widget", "high", "in_progress"),
    (0, "Add project/issue selection", "medium", "open"),
    (0, "Fix timer accuracy bug", "urgent", "closed"),
    (1, "Set up payment gateway", "high", "open"),
    (1, "Optimize product images", "low", "open"),
    (2, "Design onboarding flow", "medium", "in_progress"),
    (None, "Inbox triage", "low", "open"),
]


def seed_demo(name: str = "Demo User") -> int:
    """Create the demo user and data if no user by that name exists.

    Returns the user's id.
    """
    with get_session() as db:
        user = db.query(User).filter(User.name == name).first()
        if user is not None:
            return user.id

        user = User(name=name)
        db.add(user)
        db.flush()

        projects = []
        for project_name, color, description in DEMO_PROJECTS:
            project = Project(
                user_id=user.id,
                name=project_name,
                color=color,
                description=description,
            )
            db.add(project)
            projects.append(project)
        db.flush()

        for index, title, priority, status in DEMO_ISSUES:
            db.add(Issue(
                user_id=user.id,
                project_id=projects[index].id if index is not None else None,
                title=title,
                priority=priority,
                status=status,
            ))
        db.flush()
        log.info("Seeded demo user %s (id=%s)", name, user.id)
        return user.id
