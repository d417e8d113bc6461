"""Structural merge of stored revision patches.

Implements the subset of strategic merge patch semantics needed to restore a
LeaderWorkerSet from a controller revision:

- mappings are merged key by key
- a ``None`` value deletes the key
- ``{"$patch": "replace"}`` replaces the whole mapping with the patch contents
- ``{"$patch": "delete"}`` deletes the mapping
- lists and scalars are replaced
"""

import copy
from typing import Any

PATCH_DIRECTIVE = "$patch"
REPLACE = "replace"
DELETE = "delete"
MERGE = "merge"


def _without_directives(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: _without_directives(v)
            for k, v in value.items()
            if k != PATCH_DIRECTIVE and v is not None
        }
    if isinstance(value, list):
        return [_without_directives(v) for v in value]
    return value


def strategic_merge(original: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """
    Merge patch onto original and return the result.

    Neither argument is modified.

    Args:
        original: Object to patch
        patch: Patch mapping, possibly carrying ``$patch`` directives

    Returns:
        Patched mapping

    Raises:
        ValueError: If a directive is not supported
    """
    directive = patch.get(PATCH_DIRECTIVE, MERGE)
    if directive == REPLACE:
        return _without_directives(patch)
    if directive != MERGE:
        raise ValueError(f"Unsupported patch directive at top level: {directive}")

    merged = copy.deepcopy(original)
    for key, value in patch.items():
        if key == PATCH_DIRECTIVE:
            continue
        if value is None:
            merged.pop(key, None)
            continue
        if isinstance(value, dict):
            nested = value.get(PATCH_DIRECTIVE)
            if nested == DELETE:
                merged.pop(key, None)
                continue
            if nested not in (None, MERGE, REPLACE):
                raise ValueError(f"Unsupported patch directive for {key}: {nested}")
            current = merged.get(key)
            merged[key] = strategic_merge(current if isinstance(current, dict) else {}, value)
            continue
        merged[key] = _without_directives(value)
    return merged
