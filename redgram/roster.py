"""Ordered, unique-by-username collection of profiles."""

from typing import Iterable, Iterator, Optional

from .protocol import Profile


class Roster:
    """Known profiles in registration order.

    Re-registering a username replaces the whole record but keeps its
    original position.
    """

    def __init__(self, profiles: Iterable[Profile] = ()):
        self._profiles: dict[str, Profile] = {}
        self.replace(profiles)

    def upsert(self, profile: Profile) -> bool:
        """Insert or replace by username. Returns True if the username is new."""
        created = profile.username not in self._profiles
        self._profiles[profile.username] = profile
        return created

    def replace(self, profiles: Iterable[Profile]):
        """Drop everything and load the given profiles."""
        self._profiles = {}
        for profile in profiles:
            self.upsert(profile)

    def snapshot(self) -> list[Profile]:
        return list(self._profiles.values())

    def get(self, username: str) -> Optional[Profile]:
        return self._profiles.get(username)

    def find(self, user_id: str) -> Optional[Profile]:
        """Look up a profile by its id rather than its username."""
        for profile in self._profiles.values():
            if profile.id == user_id:
                return profile
        return None

    def usernames(self) -> list[str]:
        return list(self._profiles.keys())

    def __contains__(self, username) -> bool:
        return username in self._profiles

    def __iter__(self) -> Iterator[Profile]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        return len(self._profiles)
