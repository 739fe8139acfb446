"""Command implementations exposed by the Baton CLI."""

from .protocol import (
    cleanup_cmd,
    finish_cmd,
    merge_cmd,
    resume_cmd,
    review_cmd,
    start_cmd,
)

__all__ = [
    "cleanup_cmd",
    "finish_cmd",
    "merge_cmd",
    "resume_cmd",
    "review_cmd",
    "start_cmd",
]
