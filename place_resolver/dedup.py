"""Cross-source de-duplication of place candidates."""
from __future__ import annotations

from typing import Iterable, List, Sequence, Set, Tuple

from . import config
from .geo import coord_key
from .models import Place


def identity_keys(place: Place) -> Tuple[str, str]:
    """Case-folded name and 4-decimal coordinate; either one identifies a place."""
    return (
        f"name:{place.name.casefold()}",
        f"coord:{coord_key(place.latitude, place.longitude, config.COORD_PRECISION)}",
    )


def merge_candidates(local: Sequence[Place], *provider_lists: Iterable[Place]) -> List[Place]:
    """Merge local results with provider results in source order.

    Local results are all kept, even when they collide with each other, and
    claim their keys first. A later candidate is dropped whole when either of
    its keys is already claimed; fields are never merged across sources.
    """
    merged: List[Place] = list(local)
    seen: Set[str] = set()
    for place in local:
        seen.update(identity_keys(place))

    for results in provider_lists:
        for place in results:
            name_key, coord = identity_keys(place)
            if name_key in seen or coord in seen:
                continue
            merged.append(place)
            seen.add(name_key)
            seen.add(coord)
    return merged
