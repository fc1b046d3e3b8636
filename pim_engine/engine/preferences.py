"""
Preferences Store for the PIM Engine.

Keeps the defaults used by non-interactive runs (justification, ticket
number, duration) in a flat key-value JSON file.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import ValidationError

from ..models import Preferences

logger = logging.getLogger(__name__)

DEFAULT_PREFERENCES_FILE = Path.home() / ".pim_engine" / "preferences.json"


class PreferencesStore:
    """
    Reads and writes the preferences file.

    A missing file means default preferences. An unreadable file is
    logged and treated the same way so a run is never blocked by it.
    """

    def __init__(self, storage_path: Optional[Union[str, Path]] = None):
        """
        Initialize the store.

        Args:
            storage_path: Location of the JSON file, defaults to
                          ~/.pim_engine/preferences.json
        """
        self.storage_path = Path(storage_path).expanduser() if storage_path else DEFAULT_PREFERENCES_FILE

    def load(self) -> Preferences:
        if not self.storage_path.exists():
            return Preferences()

        try:
            with open(self.storage_path, encoding="utf-8") as f:
                data = json.load(f)
            prefs = Preferences(**data)
            logger.info(f"Loaded preferences from {self.storage_path}")
            return prefs
        except (OSError, ValueError, TypeError, ValidationError) as e:
            logger.error(f"Failed to load preferences from {self.storage_path}: {e}")
            return Preferences()

    def save(self, prefs: Preferences):
        """Write preferences, dropping unset keys."""
        try:
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.storage_path, "w", encoding="utf-8") as f:
                json.dump(prefs.model_dump(exclude_none=True), f, indent=2)
            logger.info(f"Saved preferences to {self.storage_path}")
        except OSError as e:
            logger.error(f"Failed to save preferences to {self.storage_path}: {e}")
            raise

    def update(self, **values: Any) -> Preferences:
        """Merge the given non-None values into the stored preferences and save."""
        current = self.load().model_dump()
        current.update({k: v for k, v in values.items() if v is not None})
        prefs = Preferences(**current)
        self.save(prefs)
        return prefs
