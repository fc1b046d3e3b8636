"""
Best-effort display-name resolution for users, groups and roles.
"""

import logging
from typing import Dict, Optional, Tuple

from .base_connector import BaseDirectoryClient

logger = logging.getLogger(__name__)


class NameResolver:
    """
    Resolves directory ids to display names.

    Lookups never raise: a failed lookup returns the fallback (the raw id
    unless a placeholder is given) and is cached like a successful one.
    """

    def __init__(self, client: BaseDirectoryClient):
        self.client = client
        self._cache: Dict[Tuple[str, str], Optional[str]] = {}

    def resolve_user_name(self, user_id: str, fallback: Optional[str] = None) -> str:
        return self._resolve("user", user_id, fallback)

    def resolve_group_name(self, group_id: str, fallback: Optional[str] = None) -> str:
        return self._resolve("group", group_id, fallback)

    def resolve_role_name(self, role_id: str, fallback: Optional[str] = None) -> str:
        return self._resolve("role", role_id, fallback)

    def _resolve(self, category: str, object_id: str, fallback: Optional[str]) -> str:
        default = fallback if fallback is not None else object_id
        if not object_id:
            return default

        key = (category, object_id)
        if key not in self._cache:
            lookup = {
                "user": self.client.get_user_name,
                "group": self.client.get_group_name,
                "role": self.client.get_role_name,
            }[category]

            try:
                result = lookup(object_id)
            except Exception as e:
                logger.debug(f"Name lookup for {category} {object_id} raised: {e}")
                result = None

            if result and result.data:
                self._cache[key] = result.data
            else:
                logger.debug(f"No display name for {category} {object_id}")
                self._cache[key] = None

        return self._cache[key] or default
