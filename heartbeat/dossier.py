"""Client-local stores: the medical dossier and activity tags for half-hour slots."""

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from heartbeat.config import ACTIVITY_TAGS_KEY, DOSSIER_KEY
from heartbeat.errors import StorageCorruptError
from heartbeat.models import DossierData, DossierMeasurement, HeartHealth, PersonalInfo, UserProfile
from heartbeat.storage import KeyValueStore

logger = logging.getLogger(__name__)


def _string_fields(section: Any) -> Dict[str, str]:
    """Entries of a stored section whose values are strings. Anything else falls back to the default."""
    if not isinstance(section, dict):
        return {}
    return {key: value for key, value in section.items() if isinstance(value, str)}


class DossierStore:
    """Persisted dossier. Loading always returns a fully-shaped DossierData."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def load(self) -> DossierData:
        """
        Merge the stored dossier field by field over the defaults.

        Stored measurement rows replace the default rows only when at least one
        is stored. Unreadable data falls back to the defaults.
        """
        try:
            stored = self.store.get_json(DOSSIER_KEY)
        except StorageCorruptError as e:
            logger.warning("Could not load dossier data, using defaults: %s", e)
            return DossierData()
        if stored is None:
            return DossierData()
        if not isinstance(stored, dict):
            logger.warning("Could not load dossier data, using defaults: expected a JSON object")
            return DossierData()

        try:
            personal = PersonalInfo.model_validate(_string_fields(stored.get("personal")))
            heart = HeartHealth.model_validate(_string_fields(stored.get("heart")))
            rows = stored.get("measurements")
            if isinstance(rows, list) and rows:
                measurements = [DossierMeasurement.model_validate(_string_fields(row)) for row in rows]
            else:
                measurements = DossierData().measurements
        except ValidationError as e:
            logger.warning("Could not load dossier data, using defaults: %s", e)
            return DossierData()
        return DossierData(personal=personal, heart=heart, measurements=measurements)

    def save(self, data: DossierData) -> None:
        self.store.set_json(DOSSIER_KEY, data.model_dump(by_alias=True))

    def merged_with_profile(self, profile: Optional[UserProfile]) -> DossierData:
        """The dossier with personal fields taken from the server profile where it has them."""
        dossier = self.load()
        if profile is None:
            return dossier
        personal = dossier.personal.model_copy()
        if profile.height_cm is not None:
            personal.height = f"{profile.height_cm:g}"
        if profile.weight_kg is not None:
            personal.weight = f"{profile.weight_kg:g}"
        if profile.blood_type:
            personal.blood_type = profile.blood_type
        return dossier.model_copy(update={"personal": personal})


class ActivityTagStore:
    """Persisted labels for half-hour slots, keyed by slot start (UTC ISO 8601)."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def load(self) -> Dict[str, str]:
        try:
            stored = self.store.get_json(ACTIVITY_TAGS_KEY)
        except StorageCorruptError as e:
            logger.warning("Could not load activity tags, using defaults: %s", e)
            return {}
        if stored is None:
            return {}
        if not isinstance(stored, dict):
            logger.warning("Could not load activity tags, using defaults: expected a JSON object")
            return {}
        return {key: value for key, value in stored.items() if isinstance(value, str)}

    def save(self, tags: Dict[str, str]) -> None:
        self.store.set_json(ACTIVITY_TAGS_KEY, dict(tags))

    def tag(self, slot_start_iso: str, label: str) -> Dict[str, str]:
        tags = self.load()
        tags[slot_start_iso] = label
        self.save(tags)
        return tags

    def untag(self, slot_start_iso: str) -> Dict[str, str]:
        tags = self.load()
        if tags.pop(slot_start_iso, None) is not None:
            self.save(tags)
        return tags
