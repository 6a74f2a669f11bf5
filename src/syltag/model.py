"""
In-memory metadata model: tag fields, lyric groups and cover art.

The model is what an editing session mutates. ``to_frames`` is the single,
one-way mapping from model to frames; ``from_frames`` rebuilds a model from
decoded frames when a file is loaded.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from mutagen.id3 import PictureType

from .core import (
    Frame,
    ValidationError,
    EncodeError,
    FRAME_DECODERS,
    TIMESTAMP_FORMAT_MS,
    encode_text_frame,
    encode_comment_frame,
    encode_picture_frame,
    encode_synced_lyrics_frame,
    encode_unsynced_lyrics_frame,
)
from .lrc import LyricEntry, parse_lrc
from .utils import Config

logger = logging.getLogger(__name__)

TagFields = Dict[str, str]

# Maps each canonical field name to the aliases it can be referred to as
# (UI-style camelCase, snake_case, frame ids).
CANON = {
    "title": {"title", "tit2"},
    "artist": {"artist", "tpe1"},
    "album": {"album", "talb"},
    "albumartist": {"albumartist", "albumartists", "album_artist", "album artist", "tpe2"},
    "year": {"year", "date", "tdrc", "tyer"},
    "genre": {"genre", "tcon"},
    "track": {"track", "tracknumber", "track_number", "trck"},
    "comment": {"comment", "comm"},
}

TAG_FIELDS = list(CANON.keys())

_CANON_LOOKUP = {}
for canon, aliases in CANON.items():
    _CANON_LOOKUP[canon] = canon
    for alias in aliases:
        _CANON_LOOKUP[alias] = canon
        _CANON_LOOKUP[alias.replace('-', '_').replace(' ', '_')] = canon

# Closed field -> frame id table for plain text frames; comment is structured
TEXT_FIELD_FRAMES = {
    "title": "TIT2",
    "artist": "TPE1",
    "album": "TALB",
    "albumartist": "TPE2",
    "genre": "TCON",
    "year": "TDRC",
    "track": "TRCK",
}

# Frame id -> field when loading; TYER is the v2.3 year frame some taggers write
FRAME_FIELDS = {frame_id: name for name, frame_id in TEXT_FIELD_FRAMES.items()}
FRAME_FIELDS["TYER"] = "year"

def canon_key(k: str) -> Optional[str]:
    """
    Normalize a field name to its canonical form.

    Handles case, hyphens, underscores and spaces (``albumArtist``,
    ``album-artist`` and ``album artist`` all map to ``albumartist``).

    Returns:
        Canonical name, or None for unknown fields
    """
    k_norm = k.strip().lower()
    if k_norm in _CANON_LOOKUP:
        return _CANON_LOOKUP[k_norm]
    return _CANON_LOOKUP.get(k_norm.replace('-', '_').replace(' ', '_'))

def _require_field(name: str) -> str:
    key = canon_key(name)
    if key is None:
        raise ValidationError(f"Unknown field: {name!r}. Must be one of: {', '.join(TAG_FIELDS)}")
    return key


@dataclass
class LyricGroup:
    """A SYLT/USLT frame pair sharing a language and description."""
    language: str = field(default_factory=lambda: Config.DEFAULT_LANGUAGE)
    description: str = ''
    synced_entries: List[LyricEntry] = field(default_factory=list)
    unsynced_lyrics: str = ''


@dataclass
class CoverArt:
    """Front cover image; at most one per tag."""
    mime_type: str
    data: bytes
    description: str = ''
    picture_type: int = PictureType.COVER_FRONT

    def __repr__(self) -> str:
        return f"CoverArt(mime_type={self.mime_type!r}, {len(self.data)} bytes)"


class DecodedTag(NamedTuple):
    """Result of decoding a tag: (fields, groups, cover_art)."""
    fields: TagFields
    groups: List[LyricGroup]
    cover_art: Optional[CoverArt]

# ---------- Pure helpers ----------
def auto_unsynced_text(group: LyricGroup) -> str:
    """
    Return the unsynchronized lyrics to present for ``group``.

    When the stored text is blank the synced entry texts, newline-joined in
    stored order, are used instead. Nothing is written back to the group.
    """
    if group.unsynced_lyrics.strip():
        return group.unsynced_lyrics
    return "\n".join(text for text, _ in group.synced_entries)

def group_key(group: LyricGroup) -> Tuple[str, str]:
    """The (language, description) pair that identifies a group's frames."""
    return group.language, group.description

def clamp_index(index: int, count: int) -> int:
    """Saturate ``index`` into ``[0, count-1]`` (0 for an empty arena)."""
    if count <= 0:
        return 0
    return max(0, min(index, count - 1))

def validate_language(language: str) -> str:
    """Check a 3-letter language code and return it unchanged."""
    if not isinstance(language, str) or not re.fullmatch(r'[A-Za-z]{3}', language):
        raise ValidationError(f"Language must be a 3-letter code, got {language!r}")
    return language

def validate_timestamp(timestamp_ms: Any) -> int:
    """Coerce a timestamp to a non-negative int."""
    try:
        value = int(timestamp_ms)
    except (TypeError, ValueError):
        raise ValidationError(f"Timestamp must be an integer, got {timestamp_ms!r}")
    if value < 0:
        raise ValidationError(f"Timestamp cannot be negative: {value}")
    return value

def to_frames(fields: TagFields, groups: List[LyricGroup],
              cover_art: Optional[CoverArt] = None) -> List[Frame]:
    """
    Map a model to the ordered frame list for one tag.

    Fields empty after trimming are omitted. Each lyric group yields a SYLT
    frame when it has entries and a USLT frame when its stored or derived
    unsynced text is non-empty. Cover art without data is skipped.

    Raises:
        EncodeError: If two groups that produce frames share a language and
            description
    """
    seen_keys = set()
    for group in groups:
        if not group.synced_entries and not auto_unsynced_text(group):
            continue
        key = group_key(group)
        if key in seen_keys:
            raise EncodeError(f"Duplicate lyric group {key[0]}/{key[1] or '-'}: "
                              "groups need distinct language or description")
        seen_keys.add(key)

    frames = []
    normalized = {}
    for name, value in fields.items():
        key = _require_field(name)
        if value is not None and str(value).strip():
            normalized[key] = str(value)

    for name, frame_id in TEXT_FIELD_FRAMES.items():
        if name in normalized:
            frames.append(encode_text_frame(frame_id, normalized[name]))
    if "comment" in normalized:
        frames.append(encode_comment_frame(normalized["comment"]))

    for group in groups:
        if group.synced_entries:
            frames.append(encode_synced_lyrics_frame(group.synced_entries, group.language, group.description))
        unsynced = auto_unsynced_text(group)
        if unsynced:
            frames.append(encode_unsynced_lyrics_frame(unsynced, group.language, group.description))

    if cover_art is not None:
        if cover_art.data and cover_art.mime_type:
            frames.append(encode_picture_frame(cover_art.mime_type, cover_art.data,
                                               cover_art.picture_type, cover_art.description))
        else:
            logger.warning("Cover art has no image data or MIME type, omitting APIC frame")

    return frames

def from_frames(frames: List[Frame]) -> DecodedTag:
    """
    Rebuild fields, lyric groups and cover art from decoded frames.

    First occurrence wins for text fields. SYLT and USLT frames pair up by
    (language, description) in order of first appearance. A stored USLT text
    identical to the text derived from its SYLT entries is treated as
    derived and not stored.

    Raises:
        TagDecodeError: If a known frame's payload is malformed
    """
    fields: TagFields = {}
    groups: Dict[Tuple[str, str], LyricGroup] = {}
    comments: List[Tuple[str, str]] = []
    pictures: List[CoverArt] = []

    def group_for(language: str, description: str) -> LyricGroup:
        if not re.fullmatch(r"[A-Za-z]{3}", language):
            logger.debug(f"Replacing invalid lyrics language {language!r} with {Config.DEFAULT_LANGUAGE}")
            language = Config.DEFAULT_LANGUAGE
        key = (language, description)
        if key not in groups:
            groups[key] = LyricGroup(language=language, description=description)
        return groups[key]

    for frame in frames:
        decoder = FRAME_DECODERS.get(frame.id)
        if decoder is None:
            logger.debug(f"Ignoring unsupported frame {frame.id}")
            continue
        value = decoder(frame.payload)

        if frame.id in FRAME_FIELDS:
            name = FRAME_FIELDS[frame.id]
            if name not in fields and value:
                fields[name] = value
        elif frame.id == 'COMM':
            _, description, text = value
            comments.append((description, text))
        elif frame.id == 'APIC':
            mime, picture_type, description, data = value
            pictures.append(CoverArt(mime, data, description, picture_type))
        elif frame.id == 'SYLT':
            language, description, timestamp_format, _, entries = value
            if timestamp_format != TIMESTAMP_FORMAT_MS:
                logger.warning(f"Skipping SYLT frame with unsupported timestamp format {timestamp_format}")
                continue
            group = group_for(language, description)
            if not group.synced_entries:
                group.synced_entries = entries
            elif entries:
                logger.warning(f"Ignoring extra SYLT frame for {group.language}/{description or '-'}")
        elif frame.id == 'USLT':
            language, description, text = value
            group = group_for(language, description)
            if not group.unsynced_lyrics:
                group.unsynced_lyrics = text

    # Prefer the plain comment (empty description) over tool-specific ones
    if comments:
        plain = [text for description, text in comments if not description]
        comment = plain[0] if plain else comments[0][1]
        if comment:
            fields["comment"] = comment

    result_groups = list(groups.values())
    for group in result_groups:
        if group.synced_entries and group.unsynced_lyrics == "\n".join(t for t, _ in group.synced_entries):
            group.unsynced_lyrics = ''
    if not result_groups:
        result_groups = [LyricGroup()]

    cover = None
    if pictures:
        fronts = [p for p in pictures if p.picture_type == PictureType.COVER_FRONT]
        cover = fronts[0] if fronts else pictures[0]

    return DecodedTag(fields, result_groups, cover)


class MetadataModel:
    """
    Editable metadata for one loaded file.

    Lyric groups are kept in an ordered arena with an active index. All index
    handling saturates instead of raising, and there is always at least one
    group.
    """

    def __init__(self, fields: Optional[TagFields] = None,
                 groups: Optional[List[LyricGroup]] = None,
                 cover_art: Optional[CoverArt] = None):
        self.fields: TagFields = {}
        for name, value in (fields or {}).items():
            self.set_field(name, value)
        self.groups: List[LyricGroup] = list(groups) if groups else [LyricGroup()]
        self.cover_art = cover_art
        self.active_index = 0

    @classmethod
    def from_decoded(cls, decoded: DecodedTag) -> 'MetadataModel':
        """Build a model from a decoded tag."""
        return cls(decoded.fields, decoded.groups, decoded.cover_art)

    def to_decoded(self) -> DecodedTag:
        return DecodedTag(dict(self.fields), self.groups, self.cover_art)

    def to_frames(self) -> List[Frame]:
        return to_frames(self.fields, self.groups, self.cover_art)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, MetadataModel):
            return NotImplemented
        return self.to_decoded() == other.to_decoded()

    def __repr__(self) -> str:
        return f"MetadataModel(fields={self.fields!r}, groups={len(self.groups)}, cover_art={self.cover_art!r})"

    # ---------- Fields ----------
    def set_field(self, name: str, value: Optional[str]) -> None:
        """Set a tag field; None or blank clears it."""
        key = _require_field(name)
        if value is None or not str(value).strip():
            self.fields.pop(key, None)
        else:
            self.fields[key] = str(value)

    def get_field(self, name: str) -> str:
        return self.fields.get(_require_field(name), '')

    def clear_field(self, name: str) -> None:
        self.set_field(name, None)

    # ---------- Lyric groups ----------
    @property
    def active_group(self) -> LyricGroup:
        return self.groups[clamp_index(self.active_index, len(self.groups))]

    def _group(self, index: Optional[int]) -> LyricGroup:
        if index is None:
            return self.active_group
        return self.groups[clamp_index(index, len(self.groups))]

    def _check_unique(self, language: str, description: str, skip: Optional[LyricGroup] = None) -> None:
        for other in self.groups:
            if other is not skip and group_key(other) == (language, description):
                raise ValidationError(f"A lyric group {language}/{description or '-'} already exists")

    def _free_description(self, language: str) -> str:
        """'' when no group uses (language, ''), else the first free 'Lyrics N'."""
        taken = {g.description for g in self.groups if g.language == language}
        if '' not in taken:
            return ''
        n = len(self.groups) + 1
        while f"Lyrics {n}" in taken:
            n += 1
        return f"Lyrics {n}"

    def add_group(self, language: Optional[str] = None, description: str = '') -> LyricGroup:
        """
        Append a new lyric group and select it.

        Without a description the group gets ``''``, or ``'Lyrics N'`` when
        another group in the same language already has the empty one.

        Raises:
            ValidationError: For a bad language code or an explicit
                description that another group in that language already uses
        """
        language = validate_language(language) if language else Config.DEFAULT_LANGUAGE
        if description:
            self._check_unique(language, description)
        else:
            description = self._free_description(language)
        group = LyricGroup(language=language, description=description)
        self.groups.append(group)
        self.active_index = len(self.groups) - 1
        return group

    def delete_group(self, index: int) -> bool:
        """
        Remove the group at ``index``.

        A no-op when it is the only group or ``index`` is out of range.
        Selection moves to the previous group.

        Returns:
            True if a group was removed
        """
        if len(self.groups) <= 1 or not 0 <= index < len(self.groups):
            return False
        del self.groups[index]
        self.active_index = clamp_index(max(0, index - 1), len(self.groups))
        return True

    def set_active_group(self, index: int) -> int:
        """Select a group, clamping out-of-range indexes. Returns the selected index."""
        self.active_index = clamp_index(index, len(self.groups))
        return self.active_index

    def set_language(self, language: str, index: Optional[int] = None) -> None:
        group = self._group(index)
        language = validate_language(language)
        self._check_unique(language, group.description, skip=group)
        group.language = language

    def set_description(self, description: str, index: Optional[int] = None) -> None:
        group = self._group(index)
        description = description or ''
        self._check_unique(group.language, description, skip=group)
        group.description = description

    def set_unsynced_lyrics(self, text: str, index: Optional[int] = None) -> None:
        self._group(index).unsynced_lyrics = text or ''

    def unsynced_text(self, index: Optional[int] = None) -> str:
        """Unsynced lyrics as presented, auto-derived when blank."""
        return auto_unsynced_text(self._group(index))

    def import_lrc(self, text: str, index: Optional[int] = None) -> int:
        """
        Parse LRC text and replace the target group's synced entries.

        Import always overwrites, it never appends.

        Returns:
            Number of entries imported
        """
        entries = parse_lrc(text)
        self._group(index).synced_entries = entries
        logger.debug(f"Imported {len(entries)} LRC entries")
        return len(entries)

    # ---------- Synced entries ----------
    def add_entry(self, text: str = '', timestamp_ms: int = 0, index: Optional[int] = None) -> None:
        self._group(index).synced_entries.append((text or '', validate_timestamp(timestamp_ms)))

    def update_entry(self, position: int, text: str, timestamp_ms: int, index: Optional[int] = None) -> bool:
        """Replace one entry; out-of-range positions are ignored."""
        entries = self._group(index).synced_entries
        if not 0 <= position < len(entries):
            return False
        entries[position] = (text or '', validate_timestamp(timestamp_ms))
        return True

    def delete_entry(self, position: int, index: Optional[int] = None) -> bool:
        entries = self._group(index).synced_entries
        if not 0 <= position < len(entries):
            return False
        del entries[position]
        return True

    def sort_entries(self, index: Optional[int] = None) -> None:
        """Stable-sort the group's entries by timestamp."""
        group = self._group(index)
        group.synced_entries = sorted(group.synced_entries, key=lambda entry: entry[1])

    # ---------- Cover art ----------
    def set_cover_art(self, cover_art: Optional[CoverArt]) -> None:
        self.cover_art = cover_art

    def remove_cover_art(self) -> None:
        self.cover_art = None

    # ---------- Display ----------
    def summary(self) -> Dict[str, List[str]]:
        """Printable view of the model: one list of strings per key."""
        out = {name: [self.fields[name]] if name in self.fields else [] for name in TAG_FIELDS}
        out['lyrics'] = [
            f"{g.language}/{g.description or '-'}: {len(g.synced_entries)} synced, "
            f"{'unsynced' if g.unsynced_lyrics.strip() else 'auto unsynced' if g.synced_entries else 'no unsynced'}"
            for g in self.groups
        ]
        out['cover'] = [f"{self.cover_art.mime_type}, {len(self.cover_art.data)} bytes"] if self.cover_art else []
        return out
