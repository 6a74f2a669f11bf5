"""syltag – MP3 tags, synchronized lyrics and cover art."""

__version__ = "0.1.0"

from .core import SyltagError, ValidationError, TagDecodeError, EncodeError
from .lrc import parse_lrc, format_lrc_timestamp, entries_to_lrc
from .model import LyricGroup, CoverArt, DecodedTag, MetadataModel, auto_unsynced_text, to_frames, from_frames
from .tag import encode, decode, read_tag
from .session import EditSession, ProcessResult
from .utils import Config
from .processor import process_file, validate_file, verify_written, load_cover_art, collect_files_generator

__all__ = [
    "SyltagError",
    "ValidationError",
    "TagDecodeError",
    "EncodeError",
    "parse_lrc",
    "format_lrc_timestamp",
    "entries_to_lrc",
    "LyricGroup",
    "CoverArt",
    "DecodedTag",
    "MetadataModel",
    "auto_unsynced_text",
    "to_frames",
    "from_frames",
    "encode",
    "decode",
    "read_tag",
    "EditSession",
    "ProcessResult",
    "Config",
    "process_file",
    "validate_file",
    "verify_written",
    "load_cover_art",
    "collect_files_generator"
]
