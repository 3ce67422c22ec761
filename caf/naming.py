"""Installed-name strategies for resources discovered in nested categories.

A resource found at ``skills/frontend/react/patterns/SKILL.md`` has the
original name ``patterns`` and the categories ``["frontend", "react"]``.
"""

from collections import Counter

from caf.constants import DEFAULT_NAMING_STRATEGY, NAMING_STRATEGIES
from caf.exceptions import ValidationError
from caf.paths import sanitize_file_name


def prefixed_name(original: str, categories: list[str], strategy: str) -> str:
    """Apply a naming strategy to one resource, ignoring collisions.

    Examples:
        ("patterns", ["frontend", "react"], "full-path-prefix") -> "frontend-react-patterns"
        ("patterns", ["frontend", "react"], "category-prefix") -> "react-patterns"
        ("patterns", ["frontend", "react"], "original-name") -> "patterns"
    """
    if strategy not in NAMING_STRATEGIES:
        raise ValidationError(
            f"Unknown naming strategy '{strategy}'. Must be one of: {', '.join(NAMING_STRATEGIES)}"
        )
    base = sanitize_file_name(original)
    if strategy in ("full-path-prefix", "smart-disambiguation") and categories:
        return sanitize_file_name("-".join([*categories, base]))
    if strategy == "category-prefix" and categories:
        return sanitize_file_name(f"{categories[-1]}-{base}")
    return base


def assign_names(
    candidates: list[tuple[str, list[str]]],
    strategy: str = DEFAULT_NAMING_STRATEGY,
) -> list[str]:
    """Installed names for (original name, categories) pairs, in input order.

    ``smart-disambiguation`` keeps the original name unless another candidate
    shares it, in which case the full category path is prepended.
    """
    if strategy != "smart-disambiguation":
        return [prefixed_name(original, categories, strategy) for original, categories in candidates]

    counts = Counter(sanitize_file_name(original) for original, _ in candidates)
    names = []
    for original, categories in candidates:
        if counts[sanitize_file_name(original)] > 1:
            names.append(prefixed_name(original, categories, strategy))
        else:
            names.append(sanitize_file_name(original))
    return names
