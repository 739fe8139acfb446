"""Shared review decision function for protocol commands.

Converts review votes plus the required reviewer list into one canonical
decision so finish, merge, review, and resume never disagree on policy.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .adapters import ReviewDetail, ReviewVote


class ReviewGateStatus(str, Enum):
    APPROVED = "approved"
    BLOCKED = "blocked"
    NEEDS_REVIEW = "needs-review"


@dataclass(frozen=True)
class ReviewGateDecision:
    """Outcome of evaluating a review against the required reviewers."""

    status: ReviewGateStatus
    missing_approvals: tuple[str, ...] = ()
    approved_by: tuple[str, ...] = ()
    blocked_by: tuple[str, ...] = ()
    newer_block_after_lgtm: tuple[str, ...] = ()
    total_required: int = 0


def latest_votes(votes: list[ReviewVote]) -> dict[str, ReviewVote]:
    """Keep each reviewer's latest vote.

    RFC3339 timestamps are fixed-width and zero-padded, so string order is
    time order. On equal timestamps the later entry in the list wins.
    """
    latest: dict[str, ReviewVote] = {}
    for vote in votes:
        current = latest.get(vote.reviewer)
        if current is None or vote.voted_at >= current.voted_at:
            latest[vote.reviewer] = vote
    return latest


def evaluate_review_gate(
    review: ReviewDetail, required_reviewers: list[str]
) -> ReviewGateDecision:
    """Evaluate ``review`` against ``required_reviewers``.

    Votes from reviewers outside the required list are ignored. A required
    reviewer with no vote is missing; otherwise the latest vote decides.
    Status is NEEDS_REVIEW when anyone is missing (and also when nothing is
    required and nobody voted), BLOCKED when any latest vote is a block,
    APPROVED when every latest vote is lgtm, NEEDS_REVIEW otherwise.
    """
    latest = latest_votes(review.votes)
    ever_lgtm = {vote.reviewer for vote in review.votes if vote.is_lgtm}

    missing: list[str] = []
    approved: list[str] = []
    blocked: list[str] = []
    block_after_lgtm: list[str] = []
    for reviewer in required_reviewers:
        vote = latest.get(reviewer)
        if vote is None:
            missing.append(reviewer)
        elif vote.is_lgtm:
            approved.append(reviewer)
        elif vote.is_block:
            blocked.append(reviewer)
            if reviewer in ever_lgtm:
                block_after_lgtm.append(reviewer)

    # An empty required list with no votes is never vacuously approved.
    if missing or (not required_reviewers and not review.votes):
        status = ReviewGateStatus.NEEDS_REVIEW
    elif blocked:
        status = ReviewGateStatus.BLOCKED
    elif len(approved) == len(required_reviewers):
        status = ReviewGateStatus.APPROVED
    else:
        status = ReviewGateStatus.NEEDS_REVIEW

    return ReviewGateDecision(
        status=status,
        missing_approvals=tuple(missing),
        approved_by=tuple(approved),
        blocked_by=tuple(blocked),
        newer_block_after_lgtm=tuple(block_after_lgtm),
        total_required=len(required_reviewers),
    )
