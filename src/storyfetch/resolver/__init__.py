"""Relation, link and asset resolution for story responses."""

from .assets import inline_assets
from .relations import RelationResolver, parse_patterns, wants_links

__all__ = ["RelationResolver", "inline_assets", "parse_patterns", "wants_links"]
