"""Pydantic v2 model for cached Steam player profiles."""

from pydantic import Field

from .draft import DocumentModel


class PlayerProfile(DocumentModel):
    """Display data for one player, keyed by Steam id."""

    steam_id: str = Field(min_length=1)
    persona_name: str = Field(min_length=1)
    avatar: str | None = None
    profile_url: str | None = None
