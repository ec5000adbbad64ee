"""Combined (substitution) groups."""

from .resolver import CombinedGroupMap, CombinedGroupResolver

__all__ = ["CombinedGroupMap", "CombinedGroupResolver"]
