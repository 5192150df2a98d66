"""
sslib.tagging — Resource tags applied at creation and matched during cleanup.

Resources created by this toolkit carry ``redis-migration:component``. Cleanup
matches that tag exactly. Resources deployed by the legacy templates have no
tag, so a name-substring fallback can be enabled for them.
"""

from typing import Dict, Iterable, List, Mapping, Optional

TAG_COMPONENT = "redis-migration:component"
TAG_MANAGED_BY = "redis-migration:managed-by"
MANAGED_BY = "redis-migration-toolkit"

COMPONENT_VALIDATION = "validation"
COMPONENT_DATA_LOADER = "data-loader"
COMPONENT_TARGET_INFRASTRUCTURE = "target-infrastructure"

# Name fragments used by the legacy validation templates and scripts
VALIDATION_NAME_PATTERNS = ("validator", "validation", "redis-test", "migration-test")


def component_tags(component: str, extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    tags = {TAG_COMPONENT: component, TAG_MANAGED_BY: MANAGED_BY}
    if extra:
        tags.update(extra)
    return tags


def as_tag_list(tags: Mapping[str, str]) -> List[Dict[str, str]]:
    """Convert a tag mapping to the [{'Key':..., 'Value':...}] shape CloudFormation/IAM use."""
    return [{"Key": k, "Value": v} for k, v in tags.items()]


def tag_list_to_dict(tags: Optional[Iterable[Mapping[str, str]]]) -> Dict[str, str]:
    return {t["Key"]: t["Value"] for t in (tags or [])}


def has_component_tag(tags: Optional[Mapping[str, str]], component: str) -> bool:
    return bool(tags) and tags.get(TAG_COMPONENT) == component


def matches_validation_name(name: str) -> bool:
    """Case-insensitive substring match against VALIDATION_NAME_PATTERNS."""
    lowered = (name or "").lower()
    return any(pattern in lowered for pattern in VALIDATION_NAME_PATTERNS)


def is_validation_resource(name: str, tags: Optional[Mapping[str, str]], name_fallback: bool = True) -> bool:
    """
    Decide whether a stack, function or role belongs to migration validation.

    Args:
        name: Resource name
        tags: Resource tags as a mapping (None when unknown)
        name_fallback: Also accept untagged resources whose name matches a pattern

    Returns:
        bool: True when the resource should be cleaned up
    """
    if has_component_tag(tags, COMPONENT_VALIDATION):
        return True
    if tags and tags.get(TAG_COMPONENT):
        # Tagged for a different component; never fall back to the name.
        return False
    return name_fallback and matches_validation_name(name)
