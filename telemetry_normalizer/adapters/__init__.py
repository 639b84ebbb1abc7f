from .legacy_entity import LegacyEntityAdapter

__all__ = ["LegacyEntityAdapter"]
