"""Idea status transitions and race-free vote/counter updates."""
from flask import current_app
from sqlalchemy import and_, case, update
from sqlalchemy.exc import IntegrityError

from extensions import db
from models import IDEA_STATUSES, Idea, IdeaVote

_SIDE_BRANCHES = {"Rejected", "On Hold"}

# Forward path plus side branches; "Funded" is only reachable through budget approval.
IDEA_TRANSITIONS: dict[str, set[str]] = {
    "Submitted": {"Under Review"} | _SIDE_BRANCHES,
    "Under Review": {"Shortlisted", "Approved"} | _SIDE_BRANCHES,
    "Shortlisted": {"In Discussion", "Approved"} | _SIDE_BRANCHES,
    "In Discussion": {"Approved"} | _SIDE_BRANCHES,
    "Approved": {"Funded"} | _SIDE_BRANCHES,
    "Funded": {"Implemented"} | _SIDE_BRANCHES,
    "On Hold": {"Submitted", "Under Review", "Shortlisted", "In Discussion", "Approved", "Rejected"},
    "Implemented": set(),
    "Rejected": set(),
}


class IdeaTransitionError(ValueError):
    """Raised when a requested idea status change is not allowed."""


def transition_idea_status(idea: Idea, new_status: str, *, strict: bool | None = None) -> bool:
    """Move ``idea`` to ``new_status``; return False when it is already there.

    Moves outside ``IDEA_TRANSITIONS`` are logged and applied unless strict
    mode is on. Unknown states and manual moves to Funded always fail.
    """
    if new_status not in IDEA_STATUSES:
        raise IdeaTransitionError(f"Invalid status: {new_status}")
    if new_status == "Funded":
        raise IdeaTransitionError("Ideas become Funded only through an approved budget allocation")
    if idea.status == new_status:
        return False

    if strict is None:
        strict = bool(current_app.config.get("IDEA_STRICT_TRANSITIONS", False))
    if new_status not in IDEA_TRANSITIONS.get(idea.status, set()):
        if strict:
            raise IdeaTransitionError(f"Cannot move idea from {idea.status} to {new_status}")
        current_app.logger.warning(
            "Off-path idea status change",
            extra={"idea_id": idea.id, "from_status": idea.status, "to_status": new_status},
        )
    idea.status = new_status
    return True


def mark_funded(idea: Idea) -> None:
    if idea.status != "Approved":
        current_app.logger.warning(
            "Funding idea outside Approved state",
            extra={"idea_id": idea.id, "from_status": idea.status},
        )
    idea.status = "Funded"


def cast_vote(idea_id: str, user_id: str, direction: str) -> bool:
    """Record ``direction`` for ``user_id`` on ``idea_id``; return True if anything changed.

    Each path is a single conditional statement so concurrent voters never lose
    counter updates and a user is never counted in both directions.
    """
    if direction not in ("up", "down"):
        raise ValueError(f"Unknown vote direction: {direction}")
    opposite = "down" if direction == "up" else "up"
    gain = "upvote_count" if direction == "up" else "downvote_count"
    loss = "downvote_count" if direction == "up" else "upvote_count"

    flipped = db.session.execute(
        update(IdeaVote)
        .where(and_(IdeaVote.idea_id == idea_id, IdeaVote.user_id == user_id, IdeaVote.direction == opposite))
        .values(direction=direction)
    ).rowcount
    if flipped:
        db.session.execute(
            update(Idea)
            .where(Idea.id == idea_id)
            .values(
                {
                    gain: getattr(Idea, gain) + 1,
                    loss: case((getattr(Idea, loss) > 0, getattr(Idea, loss) - 1), else_=0),
                }
            )
        )
        db.session.commit()
        return True

    try:
        db.session.add(IdeaVote(idea_id=idea_id, user_id=user_id, direction=direction))
        db.session.flush()
    except IntegrityError:
        # Same-direction vote already present: repeating it is a no-op.
        db.session.rollback()
        return False
    db.session.execute(update(Idea).where(Idea.id == idea_id).values({gain: getattr(Idea, gain) + 1}))
    db.session.commit()
    return True


def increment_counter(model, row_id: str, column_name: str) -> None:
    column = getattr(model, column_name)
    db.session.execute(update(model).where(model.id == row_id).values({column_name: column + 1}))
    db.session.commit()
