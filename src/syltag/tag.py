"""
Tag assembly: ID3v2 header handling and splicing a tag onto audio data.

``encode`` and ``decode`` are the public, stateless entry points; they never
touch the audio bytes beyond stripping the leading tag region.
"""

import struct
import logging
from typing import List, NamedTuple, Optional

from .core import Frame, EncodeError, TagDecodeError, read_frames, write_frame
from .model import CoverArt, DecodedTag, LyricGroup, TagFields, from_frames, to_frames
from .utils import Config

logger = logging.getLogger(__name__)

TAG_MAGIC = b'ID3'
TAG_HEADER_SIZE = 10
TAG_FOOTER_SIZE = 10
TAG_VERSION = (3, 0)
MAX_TAG_SIZE = (1 << 28) - 1

# Tag header flags
FLAG_UNSYNCHRONISATION = 0x80
FLAG_EXTENDED_HEADER = 0x40
FLAG_FOOTER = 0x10  # v2.4 only


class TagHeader(NamedTuple):
    major: int
    revision: int
    flags: int
    size: int  # body size as stored in the header, excluding header and footer

    @property
    def total_size(self) -> int:
        """Bytes the whole tag occupies at the start of the file."""
        footer = TAG_FOOTER_SIZE if self.major >= 4 and self.flags & FLAG_FOOTER else 0
        return TAG_HEADER_SIZE + self.size + footer


def encode_syncsafe(value: int) -> bytes:
    """Encode an int as a 4 byte sync-safe integer (7 bits per byte)."""
    if not 0 <= value <= MAX_TAG_SIZE:
        raise EncodeError(f"Tag size {value} out of range")
    return bytes([(value >> 21) & 0x7F, (value >> 14) & 0x7F, (value >> 7) & 0x7F, value & 0x7F])

def decode_syncsafe(data: bytes) -> int:
    if len(data) != 4 or any(b & 0x80 for b in data):
        raise TagDecodeError(f"Invalid sync-safe size bytes: {data!r}")
    return data[0] << 21 | data[1] << 14 | data[2] << 7 | data[3]

def parse_header(buffer: bytes) -> Optional[TagHeader]:
    """
    Parse an ID3v2 header at the start of ``buffer``.

    Returns:
        The header, or None when the buffer does not start with a tag

    Raises:
        TagDecodeError: If the magic is present but the header is invalid
            or the tag runs past the end of the buffer
    """
    if len(buffer) < TAG_HEADER_SIZE or buffer[:3] != TAG_MAGIC:
        return None
    major, revision, flags = buffer[3], buffer[4], buffer[5]
    if major == 0xFF or revision == 0xFF:
        raise TagDecodeError(f"Invalid ID3v2 version bytes: {major}.{revision}")
    header = TagHeader(major, revision, flags, decode_syncsafe(buffer[6:10]))
    if header.total_size > len(buffer):
        raise TagDecodeError(f"ID3v2 tag truncated: header claims {header.total_size} bytes, buffer has {len(buffer)}")
    return header

def strip_tags(buffer: bytes) -> bytes:
    """
    Return the audio payload: ``buffer`` minus any leading ID3v2 tags.

    Stacked tags are all removed. A malformed header is left in place, so
    audio bytes are never dropped on a guess.
    """
    offset = 0
    while True:
        try:
            header = parse_header(buffer[offset:])
        except TagDecodeError as e:
            logger.warning(f"Leaving malformed ID3v2 header in place: {e}")
            break
        if header is None:
            break
        offset += header.total_size
    if offset:
        logger.debug(f"Stripped {offset} bytes of existing tag data")
    return buffer[offset:]

def tag_size(frames: List[Frame], padding: int = 0) -> int:
    """Tag body size: every frame's header plus payload, plus padding."""
    return sum(len(frame) for frame in frames) + padding

def assemble_tag(frames: List[Frame], padding: Optional[int] = None) -> bytes:
    """Serialize frames into a complete ID3v2.3 tag (header + frames + padding)."""
    if padding is None:
        padding = Config.TAG_PADDING
    size = tag_size(frames, padding)
    header = TAG_MAGIC + bytes([TAG_VERSION[0], TAG_VERSION[1], 0]) + encode_syncsafe(size)
    return header + b''.join(write_frame(frame) for frame in frames) + b'\x00' * padding

def read_tag(buffer: bytes) -> DecodedTag:
    """
    Decode the leading ID3v2.3 tag of ``buffer``.

    A buffer without a tag yields empty metadata.

    Raises:
        TagDecodeError: On a bad header, an unsupported version or a
            malformed frame
    """
    header = parse_header(buffer)
    if header is None:
        return DecodedTag({}, [LyricGroup()], None)
    if header.major != TAG_VERSION[0]:
        raise TagDecodeError(f"Unsupported ID3v2 version 2.{header.major}")

    body = buffer[TAG_HEADER_SIZE:TAG_HEADER_SIZE + header.size]
    if header.flags & FLAG_UNSYNCHRONISATION:
        body = body.replace(b'\xff\x00', b'\xff')
    if header.flags & FLAG_EXTENDED_HEADER:
        if len(body) < 4:
            raise TagDecodeError("Extended header truncated")
        ext_size, = struct.unpack('>I', body[:4])
        if 4 + ext_size > len(body):
            raise TagDecodeError("Extended header overruns tag")
        body = body[4 + ext_size:]

    return from_frames(read_frames(body))

def decode(buffer: bytes) -> DecodedTag:
    """
    Decode metadata from a whole file buffer.

    Absent or unparseable tags are not errors: they yield empty metadata
    (no fields, one default lyric group, no cover art).
    """
    try:
        return read_tag(buffer)
    except TagDecodeError as e:
        logger.info(f"Existing tag could not be read, starting from empty metadata: {e}")
        return DecodedTag({}, [LyricGroup()], None)

def encode(fields: TagFields, groups: List[LyricGroup],
           cover_art: Optional[CoverArt] = None, payload: bytes = b'') -> bytes:
    """
    Build a re-tagged file: new tag followed by the untouched audio payload.

    Any tag still at the front of ``payload`` is replaced, never duplicated.

    Raises:
        SyltagError: If a value cannot be encoded; nothing partial is returned
    """
    frames = to_frames(fields, groups, cover_art)
    audio = strip_tags(payload)
    tag = assemble_tag(frames)
    logger.debug(f"Assembled tag: {len(frames)} frame(s), {len(tag)} bytes, audio {len(audio)} bytes")
    return tag + audio
