"""
Edit operations and change tracking for syltag.

Each factory returns a callable that applies one edit to a MetadataModel,
so a list of operations can be built once (e.g. from CLI arguments) and
replayed against every file being processed.
"""

import copy
from typing import Callable, Dict, List, Optional

from .model import CoverArt, MetadataModel, TAG_FIELDS, canon_key
from .core import ValidationError

# ---------- Type Definitions ----------
ModelOperation = Callable[[MetadataModel], None]
ChangedType = Dict[str, bool]

# ---------- Field Operations ----------
def write(field_name: str, value: str) -> ModelOperation:
    """
    Create an operation that sets a tag field.

    Examples:
        >>> model = MetadataModel()
        >>> write('albumArtist', 'Various')(model)
        >>> model.fields
        {'albumartist': 'Various'}
    """
    if canon_key(field_name) is None:
        raise ValidationError(f"Unknown field: {field_name!r}")

    def op(model: MetadataModel) -> None:
        model.set_field(field_name, value)
    return op

def clear(field_name: str) -> ModelOperation:
    """Create an operation that removes a tag field."""
    if canon_key(field_name) is None:
        raise ValidationError(f"Unknown field: {field_name!r}")

    def op(model: MetadataModel) -> None:
        model.clear_field(field_name)
    return op

def clear_all() -> ModelOperation:
    """Remove every field, all lyrics and the cover art."""
    def op(model: MetadataModel) -> None:
        for name in TAG_FIELDS:
            model.clear_field(name)
        while model.delete_group(len(model.groups) - 1):
            pass
        group = model.groups[0]
        group.synced_entries = []
        group.unsynced_lyrics = ''
        model.remove_cover_art()
    return op

# ---------- Lyric Operations ----------
def select_group(index: int) -> ModelOperation:
    """Select a lyric group; out-of-range indexes clamp."""
    def op(model: MetadataModel) -> None:
        model.set_active_group(index)
    return op

def add_group(language: Optional[str] = None, description: str = '') -> ModelOperation:
    """Append a lyric group and make it active."""
    def op(model: MetadataModel) -> None:
        model.add_group(language, description)
    return op

def delete_group(index: int) -> ModelOperation:
    def op(model: MetadataModel) -> None:
        model.delete_group(index)
    return op

def set_language(language: str) -> ModelOperation:
    def op(model: MetadataModel) -> None:
        model.set_language(language)
    return op

def set_description(description: str) -> ModelOperation:
    def op(model: MetadataModel) -> None:
        model.set_description(description)
    return op

def import_lrc(text: str) -> ModelOperation:
    """Replace the active group's synced entries with parsed LRC text."""
    def op(model: MetadataModel) -> None:
        model.import_lrc(text)
    return op

def set_unsynced(text: str) -> ModelOperation:
    def op(model: MetadataModel) -> None:
        model.set_unsynced_lyrics(text)
    return op

# ---------- Cover Operations ----------
def set_cover(cover_art: CoverArt) -> ModelOperation:
    def op(model: MetadataModel) -> None:
        model.set_cover_art(cover_art)
    return op

def remove_cover() -> ModelOperation:
    def op(model: MetadataModel) -> None:
        model.remove_cover_art()
    return op

# ---------- Applying ----------
def apply_operations(model: MetadataModel, ops: List[ModelOperation]) -> ChangedType:
    """
    Apply operations in order and report what changed.

    Returns:
        Mapping of each tag field plus 'lyrics' and 'cover' to whether it changed
    """
    before = copy.deepcopy(model.to_decoded())
    for op in ops:
        op(model)
    after = model.to_decoded()

    changed = {name: before.fields.get(name) != after.fields.get(name) for name in TAG_FIELDS}
    changed['lyrics'] = before.groups != after.groups
    changed['cover'] = before.cover_art != after.cover_art
    return changed
