"""Venue -> connected (Stripe Connect) account lookup port."""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class VenueAccountResolver(Protocol):
    async def resolve(self, venue_id: Optional[str]) -> Optional[str]: ...
