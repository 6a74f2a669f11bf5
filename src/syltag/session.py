"""
Editing session: holds the mutable model between a load and a process.

The session is the only stateful piece. Loads are guarded by a freshness
token so a decode started for a file that has since been replaced is
dropped instead of overwriting the newer state.
"""

import logging
from pathlib import Path
from typing import NamedTuple, Optional, Union

from .core import SyltagError
from .model import MetadataModel
from .tag import decode, encode, strip_tags
from .utils import Config, safe_filename

logger = logging.getLogger(__name__)


class ProcessResult(NamedTuple):
    success: bool
    message: str
    data: Optional[bytes] = None
    filename: Optional[str] = None


def suggested_filename(title: Optional[str], original_name: str) -> str:
    """
    Name for the re-tagged file: ``<title-or-original-basename>_tagged.mp3``.

    Examples:
        >>> suggested_filename("Song", "input.mp3")
        'Song_tagged.mp3'
        >>> suggested_filename("", "input.mp3")
        'input_tagged.mp3'
    """
    base = (title or '').strip()
    if not base:
        base = Path(original_name or '').name
        if base.lower().endswith('.mp3'):
            base = base[:-4]
    return f"{safe_filename(base)}{Config.OUTPUT_SUFFIX}.mp3"


class EditSession:
    """Mutable editing state for one loaded file at a time."""

    def __init__(self):
        self.model = MetadataModel()
        self.source_name: Optional[str] = None
        self.payload: Optional[bytes] = None
        self._load_token = 0

    @property
    def loaded(self) -> bool:
        return self.payload is not None

    def begin_load(self) -> int:
        """Start a load and return its freshness token; older tokens go stale."""
        self._load_token += 1
        return self._load_token

    def is_current(self, token: int) -> bool:
        return token == self._load_token

    def complete_load(self, token: int, buffer: bytes, name: str) -> bool:
        """
        Finish a load started with ``begin_load``.

        Stale results are discarded silently. Otherwise the session gets a
        fresh model decoded from ``buffer``.

        Returns:
            True if the load was applied
        """
        if not self.is_current(token):
            logger.debug(f"Discarding stale load of {name} (token {token}, current {self._load_token})")
            return False
        self.model = MetadataModel.from_decoded(decode(buffer))
        self.payload = strip_tags(buffer)
        self.source_name = name
        logger.info(f"Loaded {name}: {len(self.model.fields)} field(s), {len(self.model.groups)} lyric group(s)")
        return True

    def load_bytes(self, buffer: bytes, name: str) -> bool:
        return self.complete_load(self.begin_load(), buffer, name)

    def load_file(self, path: Union[str, Path]) -> bool:
        """Read a file into memory and load it."""
        path = Path(path)
        token = self.begin_load()
        buffer = path.read_bytes()
        return self.complete_load(token, buffer, path.name)

    def import_lrc(self, text: str) -> Optional[int]:
        """
        Import LRC text into the active group, replacing its entries.

        Blank input is ignored and returns None.
        """
        if not text or not text.strip():
            return None
        count = self.model.import_lrc(text)
        logger.info(f"Imported {count} LRC entries into lyric group {self.model.active_index}")
        return count

    def suggested_filename(self) -> str:
        return suggested_filename(self.model.get_field('title'), self.source_name or '')

    def process(self) -> ProcessResult:
        """
        Encode the current model onto the loaded audio.

        Either the whole output buffer is produced or nothing is: failures
        come back as an unsuccessful result with a readable message.
        """
        if not self.loaded:
            return ProcessResult(False, "No file loaded")
        try:
            data = encode(self.model.fields, self.model.groups, self.model.cover_art, self.payload)
        except SyltagError as e:
            logger.error(f"Error processing {self.source_name}: {e}")
            return ProcessResult(False, f"Failed to process file: {e}")
        return ProcessResult(True, "File processed successfully!", data, self.suggested_filename())
