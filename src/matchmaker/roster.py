"""Player display names backed by cached Steam profiles.

Profiles live at ``{collection}/{steam_id}`` in the document store and
are written by whatever handles sign-in; the match configuration only
reads them.
"""

import logging
from typing import Protocol

from matchmaker.exceptions import PlayerNotFound
from matchmaker.models import PlayerProfile
from matchmaker.store import DocumentStore

logger = logging.getLogger(__name__)

STEAM_UID_PREFIX = "steam:"


def steam_id_from_uid(uid: str) -> str:
    """Extract the Steam id from an identity-provider uid (``steam:<id>``).

    Raises:
        ValueError: ``uid`` is not a Steam uid.
    """
    if not uid.startswith(STEAM_UID_PREFIX) or len(uid) == len(STEAM_UID_PREFIX):
        raise ValueError(f"Not a Steam uid: {uid!r}")
    return uid[len(STEAM_UID_PREFIX):]


class PlayerRoster(Protocol):
    def resolve(self, player_ids: list[str]) -> dict[str, str]: ...


class StoreRoster:
    """Reads and writes ``PlayerProfile`` documents."""

    def __init__(self, store: DocumentStore, collection: str = "steamProfiles") -> None:
        self.store = store
        self.collection = collection

    def _path(self, steam_id: str) -> str:
        return f"{self.collection}/{steam_id}"

    def get(self, steam_id: str) -> PlayerProfile | None:
        data = self.store.get(self._path(steam_id))
        return PlayerProfile.from_document(data) if data is not None else None

    def upsert(self, profile: PlayerProfile) -> None:
        self.store.set(self._path(profile.steam_id), profile.to_document())
        logger.debug("Stored profile %s (%s)", profile.steam_id, profile.persona_name)

    def resolve(self, player_ids: list[str]) -> dict[str, str]:
        """Map each player id to its display name, preserving order.

        Raises:
            PlayerNotFound: For the first id without a stored profile.
        """
        names = {}
        for player_id in player_ids:
            profile = self.get(player_id)
            if profile is None:
                raise PlayerNotFound(player_id)
            names[player_id] = profile.persona_name
        return names
