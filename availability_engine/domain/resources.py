"""
Read-only table of bookable resources and their resolved policies.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, Mapping

from .exceptions import UnknownResource
from .models import SchedulingPolicy


@dataclass(frozen=True)
class ResourceProfile:
    """A bookable resource (a clinician calendar) with its resolved policy."""
    id: str
    calendar_id: str
    policy: SchedulingPolicy
    name: str = ""

    def display_name(self) -> str:
        return self.name or self.id


class PolicyTable:
    """
    Immutable lookup of resources by id, name (case-insensitive) or calendar id.

    Built once at startup; there is no way to mutate it afterwards.
    """

    def __init__(self, profiles: Iterable[ResourceProfile]):
        by_id: Dict[str, ResourceProfile] = {}
        aliases: Dict[str, str] = {}

        for profile in profiles:
            by_id[profile.id] = profile
            if profile.name:
                aliases.setdefault(profile.name.lower(), profile.id)
            if profile.calendar_id:
                aliases.setdefault(profile.calendar_id.lower(), profile.id)

        self._profiles: Mapping[str, ResourceProfile] = MappingProxyType(by_id)
        self._aliases: Mapping[str, str] = MappingProxyType(aliases)

    def __iter__(self) -> Iterator[ResourceProfile]:
        return iter(self._profiles.values())

    def __len__(self) -> int:
        return len(self._profiles)

    def __contains__(self, identifier: object) -> bool:
        return isinstance(identifier, str) and self.find(identifier) is not None

    def find(self, identifier: str) -> ResourceProfile | None:
        """Find a resource by id, then by name or calendar id."""
        if not identifier:
            return None
        identifier = identifier.strip()
        if identifier in self._profiles:
            return self._profiles[identifier]
        resource_id = self._aliases.get(identifier.lower())
        if resource_id is None:
            return None
        return self._profiles[resource_id]

    def resolve(self, identifier: str) -> ResourceProfile:
        """
        Resolve a resource identifier.

        Raises:
            UnknownResource: If nothing matches
        """
        profile = self.find(identifier)
        if profile is None:
            raise UnknownResource(f"Unknown resource identifier: {identifier!r}")
        return profile
