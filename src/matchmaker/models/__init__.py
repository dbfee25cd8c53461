"""Pydantic v2 models for all matchmaker documents.

Re-exports all model classes for convenient import::

    from matchmaker.models import MatchDraft, PublishedMatch, ...
"""

from .draft import DocumentModel, MatchDraft, MatchState, Team, TeamSide
from .match import PublishedMatch
from .profile import PlayerProfile

__all__ = [
    "DocumentModel",
    "MatchDraft",
    "MatchState",
    "Team",
    "TeamSide",
    "PublishedMatch",
    "PlayerProfile",
]
