"""
ID3v2.3 frame codec - binary layout of the frames syltag reads and writes.

Each encoder turns a logical value into a frame payload; each decoder is the
byte-exact inverse. Frame headers (id + plain 32-bit size + flags) are also
handled here. Tag headers and splicing live in :mod:`syltag.tag`.
"""

import re
import struct
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from mutagen.id3 import Encoding, PictureType

from .utils import Config

logger = logging.getLogger(__name__)

class SyltagError(Exception):
    """Base exception for syltag errors."""
    pass

class ValidationError(SyltagError):
    """Raised when an edit or input value is rejected."""
    pass

class TagDecodeError(SyltagError):
    """Raised when an existing tag or frame cannot be parsed."""
    pass

class EncodeError(SyltagError):
    """Raised when a value cannot be represented in a frame."""
    pass

# ---------- Frame constants ----------
FRAME_HEADER_SIZE = 10

TEXT_FRAME_IDS = ('TIT2', 'TPE1', 'TALB', 'TPE2', 'TCON', 'TDRC', 'TRCK', 'TYER')

# SYLT header constants
TIMESTAMP_FORMAT_MPEG_FRAMES = 1
TIMESTAMP_FORMAT_MS = 2
CONTENT_TYPE_LYRICS = 1

# Frame header flags (second flag byte, ID3v2.3 section 3.3.1)
FLAG_COMPRESSION = 0x80
FLAG_ENCRYPTION = 0x40

MAX_TIMESTAMP = 0xFFFFFFFF
MAX_FRAME_SIZE = 0xFFFFFFFF

_FRAME_ID = re.compile(r'^[A-Z0-9]{4}$')

# Per encoding: python codec and string terminator
_CODECS = {
    Encoding.LATIN1: ('latin-1', b'\x00'),
    Encoding.UTF16: ('utf-16', b'\x00\x00'),
    Encoding.UTF16BE: ('utf-16-be', b'\x00\x00'),
    Encoding.UTF8: ('utf-8', b'\x00'),
}

UTF16_BOM = b'\xff\xfe'


@dataclass(frozen=True)
class Frame:
    """A single tag frame: 4-character id plus raw payload."""
    id: str
    payload: bytes

    def __len__(self) -> int:
        """Full on-disk size, header included."""
        return FRAME_HEADER_SIZE + len(self.payload)

# ---------- Text encoding helpers ----------
def choose_encoding(*texts: str) -> Encoding:
    """
    Pick the text encoding for a frame from its content.

    Latin-1 when every string is representable in it, otherwise UTF-16 with BOM.
    """
    for text in texts:
        try:
            text.encode('latin-1')
        except UnicodeEncodeError:
            return Encoding.UTF16
    return Encoding.LATIN1

def encode_text(text: str, encoding: Encoding, terminate: bool = False) -> bytes:
    """Encode a string in the given frame encoding, optionally null-terminated."""
    if encoding == Encoding.LATIN1:
        data = text.encode('latin-1')
    elif encoding == Encoding.UTF16:
        # Fixed little-endian with explicit BOM so output is platform independent
        data = UTF16_BOM + text.encode('utf-16-le')
    else:
        codec, _ = _CODECS[encoding]
        data = text.encode(codec)
    if terminate:
        data += _CODECS[encoding][1]
    return data

def _encoding_from_byte(value: int) -> Encoding:
    if value not in _CODECS:
        raise TagDecodeError(f"Invalid text encoding byte: {value}")
    return Encoding(value)

def _decode_text(data: bytes, encoding: Encoding) -> str:
    codec, _ = _CODECS[encoding]
    try:
        return data.decode(codec)
    except UnicodeDecodeError as e:
        raise TagDecodeError(f"Undecodable {codec} text: {e}")

def split_terminated(data: bytes, encoding: Encoding) -> Tuple[bytes, bytes]:
    """
    Split ``data`` at the first string terminator for ``encoding``.

    Two-byte terminators are only matched on even offsets.

    Returns:
        (string bytes without terminator, remaining bytes)

    Raises:
        TagDecodeError: If no terminator is present
    """
    _, term = _CODECS[encoding]
    if len(term) == 1:
        index = data.find(term)
        if index < 0:
            raise TagDecodeError("Missing string terminator")
        return data[:index], data[index + 1:]

    index = 0
    while True:
        index = data.find(term, index)
        if index < 0:
            raise TagDecodeError("Missing string terminator")
        if index % 2 == 0:
            return data[:index], data[index + 2:]
        index += 1

def _read_terminated_text(data: bytes, encoding: Encoding) -> Tuple[str, bytes]:
    raw, rest = split_terminated(data, encoding)
    return _decode_text(raw, encoding), rest

def _read_trailing_text(data: bytes, encoding: Encoding) -> str:
    """Decode text running to the end of the frame, dropping trailing terminators."""
    text = _decode_text(data, encoding)
    return text.rstrip('\x00')

def _language_bytes(language: str) -> bytes:
    if not re.fullmatch(r'[A-Za-z]{3}', language or ''):
        raise EncodeError(f"Language must be a 3-letter code, got {language!r}")
    return language.encode('ascii')

def _read_language(data: bytes) -> str:
    if len(data) < 3:
        raise TagDecodeError("Frame too short for language code")
    return data[:3].decode('latin-1').rstrip('\x00')

# ---------- Frame encoders ----------
def encode_text_frame(frame_id: str, text: str) -> Frame:
    """Encode a text information frame (TIT2, TPE1, ...)."""
    encoding = choose_encoding(text)
    return Frame(frame_id, bytes([encoding]) + encode_text(text, encoding))

def encode_comment_frame(text: str, language: Optional[str] = None, description: str = '') -> Frame:
    """Encode a COMM frame."""
    language = language or Config.DEFAULT_LANGUAGE
    encoding = choose_encoding(description, text)
    payload = (bytes([encoding]) + _language_bytes(language)
               + encode_text(description, encoding, terminate=True)
               + encode_text(text, encoding))
    return Frame('COMM', payload)

def encode_picture_frame(mime_type: str, data: bytes,
                         picture_type: int = PictureType.COVER_FRONT,
                         description: str = '') -> Frame:
    """Encode an APIC frame. The MIME type is always Latin-1."""
    try:
        mime = mime_type.encode('latin-1')
    except UnicodeEncodeError:
        raise EncodeError(f"MIME type is not Latin-1: {mime_type!r}")
    if not 0 <= picture_type <= 0xFF:
        raise EncodeError(f"Picture type out of range: {picture_type}")
    encoding = choose_encoding(description)
    payload = (bytes([encoding]) + mime + b'\x00' + bytes([picture_type])
               + encode_text(description, encoding, terminate=True) + data)
    return Frame('APIC', payload)

def encode_synced_lyrics_frame(entries: List[Tuple[str, int]], language: str,
                               description: str = '') -> Frame:
    """
    Encode a SYLT frame with millisecond timestamps.

    Entries are written in the given order; sorting is the caller's job.
    """
    encoding = choose_encoding(description, *(text for text, _ in entries))
    parts = [
        bytes([encoding]),
        _language_bytes(language),
        bytes([TIMESTAMP_FORMAT_MS, CONTENT_TYPE_LYRICS]),
        encode_text(description, encoding, terminate=True),
    ]
    for text, timestamp in entries:
        if not 0 <= timestamp <= MAX_TIMESTAMP:
            raise EncodeError(f"Timestamp out of range: {timestamp}")
        parts.append(encode_text(text, encoding, terminate=True))
        parts.append(struct.pack('>I', timestamp))
    return Frame('SYLT', b''.join(parts))

def encode_unsynced_lyrics_frame(text: str, language: str, description: str = '') -> Frame:
    """Encode a USLT frame."""
    encoding = choose_encoding(description, text)
    payload = (bytes([encoding]) + _language_bytes(language)
               + encode_text(description, encoding, terminate=True)
               + encode_text(text, encoding))
    return Frame('USLT', payload)

# ---------- Frame decoders ----------
def decode_text_frame(payload: bytes) -> str:
    """Decode a text information frame into a single string."""
    if not payload:
        raise TagDecodeError("Empty text frame")
    encoding = _encoding_from_byte(payload[0])
    text = _read_trailing_text(payload[1:], encoding)
    # Null separated multi-values (v2.4 style) are folded into the v2.3 separator
    return text.replace('\x00', '/')

def decode_comment_frame(payload: bytes) -> Tuple[str, str, str]:
    """Decode a COMM frame into (language, description, text)."""
    if not payload:
        raise TagDecodeError("Empty COMM frame")
    encoding = _encoding_from_byte(payload[0])
    language = _read_language(payload[1:])
    description, rest = _read_terminated_text(payload[4:], encoding)
    return language, description, _read_trailing_text(rest, encoding)

def decode_picture_frame(payload: bytes) -> Tuple[str, int, str, bytes]:
    """Decode an APIC frame into (mime_type, picture_type, description, data)."""
    if not payload:
        raise TagDecodeError("Empty APIC frame")
    encoding = _encoding_from_byte(payload[0])
    mime, rest = split_terminated(payload[1:], Encoding.LATIN1)
    if not rest:
        raise TagDecodeError("APIC frame truncated before picture type")
    picture_type = rest[0]
    description, data = _read_terminated_text(rest[1:], encoding)
    return mime.decode('latin-1'), picture_type, description, data

def decode_synced_lyrics_frame(payload: bytes) -> Tuple[str, str, int, int, List[Tuple[str, int]]]:
    """
    Decode a SYLT frame.

    Returns:
        (language, description, timestamp_format, content_type, entries)
    """
    if len(payload) < 6:
        raise TagDecodeError("SYLT frame too short")
    encoding = _encoding_from_byte(payload[0])
    language = _read_language(payload[1:])
    timestamp_format, content_type = payload[4], payload[5]
    description, rest = _read_terminated_text(payload[6:], encoding)

    entries = []
    while rest:
        text, rest = _read_terminated_text(rest, encoding)
        if len(rest) < 4:
            raise TagDecodeError("SYLT entry truncated before timestamp")
        timestamp, = struct.unpack('>I', rest[:4])
        entries.append((text, timestamp))
        rest = rest[4:]
    return language, description, timestamp_format, content_type, entries

def decode_unsynced_lyrics_frame(payload: bytes) -> Tuple[str, str, str]:
    """Decode a USLT frame into (language, description, text)."""
    if not payload:
        raise TagDecodeError("Empty USLT frame")
    encoding = _encoding_from_byte(payload[0])
    language = _read_language(payload[1:])
    description, rest = _read_terminated_text(payload[4:], encoding)
    return language, description, _read_trailing_text(rest, encoding)

# Closed table of decoders by frame id; ids not listed are ignored on load
FRAME_DECODERS: Dict[str, Callable[[bytes], object]] = {
    **{frame_id: decode_text_frame for frame_id in TEXT_FRAME_IDS},
    'COMM': decode_comment_frame,
    'APIC': decode_picture_frame,
    'SYLT': decode_synced_lyrics_frame,
    'USLT': decode_unsynced_lyrics_frame,
}

# ---------- Frame headers ----------
def write_frame(frame: Frame) -> bytes:
    """Serialize a frame with its ID3v2.3 header (plain big-endian size, no flags)."""
    if not _FRAME_ID.match(frame.id):
        raise EncodeError(f"Invalid frame id: {frame.id!r}")
    if len(frame.payload) > MAX_FRAME_SIZE:
        raise EncodeError(f"Frame {frame.id} too large: {len(frame.payload)} bytes")
    return frame.id.encode('ascii') + struct.pack('>I', len(frame.payload)) + b'\x00\x00' + frame.payload

def read_frames(data: bytes) -> List[Frame]:
    """
    Parse the frame area of an ID3v2.3 tag.

    Stops at padding (a zero byte where a frame id would start). Frames with
    compression or encryption flags are skipped.

    Raises:
        TagDecodeError: On an invalid frame id or a frame overrunning the data
    """
    frames = []
    offset = 0
    while offset + FRAME_HEADER_SIZE <= len(data):
        if data[offset] == 0:
            break
        raw_id = data[offset:offset + 4]
        try:
            frame_id = raw_id.decode('ascii')
        except UnicodeDecodeError:
            raise TagDecodeError(f"Invalid frame id bytes at offset {offset}: {raw_id!r}")
        if not _FRAME_ID.match(frame_id):
            raise TagDecodeError(f"Invalid frame id at offset {offset}: {frame_id!r}")

        size, = struct.unpack('>I', data[offset + 4:offset + 8])
        flags = data[offset + 9]
        start = offset + FRAME_HEADER_SIZE
        end = start + size
        if end > len(data):
            raise TagDecodeError(f"Frame {frame_id} truncated: needs {size} bytes, {len(data) - start} left")

        if flags & (FLAG_COMPRESSION | FLAG_ENCRYPTION):
            logger.debug(f"Skipping compressed/encrypted frame {frame_id}")
        else:
            frames.append(Frame(frame_id, data[start:end]))
        offset = end
    return frames
