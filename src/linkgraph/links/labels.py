from __future__ import annotations

from types import MappingProxyType

NO_LABEL = "related"

# Forward relationship label -> label shown when the edge is seen from its target.
INVERSE_LABEL = MappingProxyType(
    {
        "causes": "caused by",
        "cause": "caused by",
        "mitigates": "mitigated by",
        "mitigated-by": "mitigates",
        "mitigation": "mitigated by",
        "requires": "required by",
        "enables": "enabled by",
        "blocks": "blocked by",
        "supersedes": "superseded by",
        "increases": "increased by",
        "decreases": "decreased by",
        "supports": "supported by",
        "measures": "measured by",
        "measured-by": "measures",
        "analyzed-by": "analyzes",
        "analyzes": "analyzed by",
        "child-of": "parent of",
        "composed-of": "component of",
        "component": "composed of",
        "addresses": "addressed by",
        "affects": "affected by",
        "amplifies": "amplified by",
        "contributes-to": "receives contribution from",
        "driven-by": "drives",
        "driver": "driven by",
        "drives": "driven by",
        "leads-to": "leads",
        "shaped-by": "shapes",
        "prerequisite": "depends on",
        "research": "researched by",
        "models": "modeled by",
    }
)


def format_relationship_label(relationship: str | None, is_reverse: bool) -> str | None:
    """Display label for a relationship, inverted when the edge points at us.

    Unknown labels are shown in their forward form. Hyphens render as spaces.
    """
    if not relationship or relationship == NO_LABEL:
        return None
    label = INVERSE_LABEL.get(relationship, relationship) if is_reverse else relationship
    return label.replace("-", " ")
