"""Exception types shared across the resolver."""
from __future__ import annotations


class ResolverError(RuntimeError):
    pass


class LocalStoreError(ResolverError):
    """The primary place store failed; resolution cannot continue."""


class ProviderError(ResolverError):
    """An external geocoder call failed (timeout, HTTP error, bad payload)."""


class RoadSourceError(ResolverError):
    """The road-proximity source could not be queried."""


class PickupPointNotFoundError(ResolverError):
    pass
