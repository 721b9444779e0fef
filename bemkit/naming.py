"""
Entity naming helpers shared by every level implementation.

An entity is a block, optionally narrowed to an element and/or a modifier:

    {"block": "menu"}                                  -> menu
    {"block": "menu", "elem": "item"}                  -> menu__item
    {"block": "menu", "mod": "theme", "val": "dark"}   -> menu_theme_dark

On disk every entity lives under its block directory:

    menu/menu.css
    menu/__item/menu__item.css
    menu/_theme/menu_theme_dark.css
"""

import os
from typing import Any, Dict, Iterable, List, Mapping, Optional

from bemkit.exceptions import DeclarationError

ELEM_DELIM = "__"
MOD_DELIM = "_"

# alternative spellings accepted in entity descriptors
_KEY_ALIASES = {
    "modifierName": "mod",
    "modifierValue": "val",
    "modName": "mod",
    "modVal": "val",
}


def normalize_entity(entity: Mapping[str, Any]) -> Dict[str, str]:
    """
    Normalize an entity descriptor to the ``block/elem/mod/val`` keys.

    Raises:
        DeclarationError: If the block name is missing
    """
    normalized: Dict[str, str] = {}
    for key, value in entity.items():
        key = _KEY_ALIASES.get(key, key)
        if key in ("block", "elem", "mod", "val") and value not in (None, ""):
            normalized[key] = str(value)

    if "block" not in normalized:
        raise DeclarationError(f"Entity descriptor without a block: {dict(entity)!r}")
    return normalized


def build_entity_name(entity: Mapping[str, Any]) -> str:
    entity = normalize_entity(entity)
    name = entity["block"]
    if "elem" in entity:
        name += ELEM_DELIM + entity["elem"]
    if "mod" in entity:
        name += MOD_DELIM + entity["mod"]
        if "val" in entity:
            name += MOD_DELIM + entity["val"]
    return name


def get_rel_path_by_obj(entity: Mapping[str, Any]) -> str:
    """Path prefix of an entity relative to its level, without suffix."""
    entity = normalize_entity(entity)
    parts = [entity["block"]]
    if "elem" in entity:
        parts.append(ELEM_DELIM + entity["elem"])
    if "mod" in entity:
        parts.append(MOD_DELIM + entity["mod"])
    parts.append(build_entity_name(entity))
    return os.path.join(*parts)


def get_path_by_obj(level_path: str, entity: Mapping[str, Any]) -> str:
    return os.path.join(level_path, get_rel_path_by_obj(entity))


def match_entity_files(level_path: str, entity: Mapping[str, Any], suffix: str) -> List[str]:
    """Existing files of ``entity`` with ``suffix`` on the level."""
    candidate = get_path_by_obj(level_path, entity) + suffix
    return [candidate] if os.path.isfile(candidate) else []


def list_level_files(level_path: str) -> List[str]:
    """All files under a level, skipping the ``.bem`` configuration directory."""
    found = []
    for root, dirs, files in os.walk(level_path):
        dirs[:] = sorted(d for d in dirs if d != ".bem")
        found.extend(os.path.join(root, name) for name in sorted(files))
    return found


def parse_declaration(decl: Any) -> List[Dict[str, str]]:
    """
    Flatten a declaration into an ordered, de-duplicated entity list.

    Accepts ``{"deps": [...]}`` or a bare list of entity descriptors.

    Raises:
        DeclarationError: If the declaration has an unexpected shape
    """
    if decl is None:
        return []
    if isinstance(decl, Mapping):
        deps: Optional[Iterable] = decl.get("deps")
        if deps is None:
            raise DeclarationError("Declaration mapping must contain a 'deps' list")
    elif isinstance(decl, (list, tuple)):
        deps = decl
    else:
        raise DeclarationError(f"Unsupported declaration type: {type(decl).__name__}")

    entities: List[Dict[str, str]] = []
    seen = set()
    for item in deps:
        if not isinstance(item, Mapping):
            raise DeclarationError(f"Declaration item must be a mapping, got {item!r}")
        entity = normalize_entity(item)
        key = build_entity_name(entity)
        if key not in seen:
            seen.add(key)
            entities.append(entity)
    return entities
