"""
File processing logic for syltag.

Reads a file into memory, applies edit operations through an EditSession,
writes the re-tagged result and verifies it by reading it back with mutagen.
"""

import io
import os
import sys
import signal
import logging
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator, Iterable, List, Optional, Set, Tuple, Union

import mutagen
from mutagen.id3 import ID3, ID3NoHeaderError
from mutagen.mp3 import MP3
from PIL import Image

from .core import SyltagError
from .model import CoverArt, MetadataModel, TEXT_FIELD_FRAMES
from .operations import ModelOperation, apply_operations
from .session import EditSession
from .tag import strip_tags
from .utils import Config, get_file_hash, EXIT_CODE_INTERRUPTED

logger = logging.getLogger(__name__)

SUPPORTED_EXT = {'.mp3'}

ProcessResultType = Dict[str, Any]

# ---------- Signal Handlers ----------
def register_signal_handlers():
    """Register signal handlers for graceful shutdown on Ctrl+C/SIGTERM."""
    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}, shutting down gracefully...")
        sys.exit(EXIT_CODE_INTERRUPTED)

    # Windows has limited signal support
    if sys.platform != "win32":
        try:
            signal.signal(signal.SIGINT, signal_handler)
            signal.signal(signal.SIGTERM, signal_handler)
        except ValueError:
            # Not on the main thread
            pass

def unregister_signal_handlers():
    """Unregister signal handlers (restore defaults)."""
    if sys.platform != "win32":
        try:
            signal.signal(signal.SIGINT, signal.SIG_DFL)
            signal.signal(signal.SIGTERM, signal.SIG_DFL)
        except ValueError:
            pass

# ---------- Audio & Artwork Inputs ----------
def probe_audio(buffer: bytes) -> Optional[Any]:
    """
    Check that the audio behind any tag looks like MPEG audio.

    Returns:
        mutagen's stream info (length, bitrate, ...) or None if not recognised
    """
    try:
        return MP3(io.BytesIO(strip_tags(buffer))).info
    except mutagen.MutagenError as e:
        logger.debug(f"MPEG probe failed: {e}")
        return None

def cover_art_from_bytes(data: bytes, label: str = 'cover art') -> Optional[CoverArt]:
    """
    Build CoverArt from raw image bytes, checking them with Pillow.

    Unreadable, unknown or oversized images give None so the picture frame
    is left out while everything else is still written.
    """
    if not data:
        logger.warning(f"{label}: empty image, cover art omitted")
        return None
    if len(data) > Config.MAX_COVER_ART_SIZE:
        logger.warning(f"{label}: image too large ({len(data)} bytes), cover art omitted")
        return None
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.verify()
            image_format = image.format
    except (OSError, SyntaxError, ValueError) as e:
        logger.warning(f"{label}: unreadable image ({e}), cover art omitted")
        return None

    mime = Image.MIME.get(image_format)
    if not mime:
        logger.warning(f"{label}: no MIME type for image format {image_format}, cover art omitted")
        return None
    return CoverArt(mime, data)

def load_cover_art(path: Union[str, Path]) -> Optional[CoverArt]:
    """Read an image file as cover art; None on any failure."""
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        logger.warning(f"Could not read cover art {path}: {e}")
        return None
    return cover_art_from_bytes(data, label=str(path))

# ---------- File Validation ----------
def validate_file(path: Path, force: bool = False) -> Tuple[bool, str]:
    """
    Comprehensive file validation.

    Unless ``force`` is set the audio must also be recognised as MPEG.
    """
    try:
        if not path.exists():
            return False, "File does not exist"
        if not path.is_file():
            return False, "Path is not a file"

        file_size = path.stat().st_size
        if file_size > Config.MAX_FILE_SIZE:
            return False, f"File too large ({file_size} bytes)"
        if file_size == 0:
            return False, "File is empty"

        if not os.access(path, os.R_OK):
            return False, "No read permission"

        ext = path.suffix.lower()
        if ext not in SUPPORTED_EXT:
            return False, f"Unsupported file extension: {ext}"

        if not force and probe_audio(path.read_bytes()) is None:
            return False, "No MPEG audio found (use --force to process anyway)"

        return True, "Valid"
    except OSError as e:
        return False, f"Validation error: {e}"

# ---------- Backups ----------
def create_backup_path(original_path: Path, backup_dir: Path) -> Path:
    """Create a secure backup path with collision handling."""
    base_backup_path = backup_dir / original_path.name

    backup_path = base_backup_path
    counter = 1
    while backup_path.exists():
        name, ext = os.path.splitext(base_backup_path.name)
        backup_path = backup_dir / f"{name}_{counter}{ext}"
        counter += 1
        if counter > Config.BACKUP_RETRY_LIMIT:
            raise RuntimeError(f"Could not find unique backup name after {Config.BACKUP_RETRY_LIMIT} attempts")

    return backup_path

def safe_file_copy(src: Path, dst: Path, exclusive: bool = False) -> bool:
    """Safely copy file with error handling and verification.

    Args:
        src: Source file path
        dst: Destination file path
        exclusive: If True, fail if destination already exists

    Raises:
        FileExistsError: If exclusive=True and destination exists
        RuntimeError: If file copy verification fails
    """
    src_hash = get_file_hash(src)

    mode = 'xb' if exclusive else 'wb'
    with open(src, 'rb') as f_src, open(dst, mode) as f_dst:
        for chunk in iter(lambda: f_src.read(Config.CHUNK_SIZE), b""):
            f_dst.write(chunk)

    dst_hash = get_file_hash(dst)
    if src_hash != dst_hash:
        raise RuntimeError("File copy verification failed - checksum mismatch")

    return True

def _create_backup(path: Path, backup_dir: Path) -> Tuple[Optional[Path], Optional[str]]:
    """Create backup of file, retrying if a name is taken between check and create."""
    try:
        backup_dir.mkdir(parents=True, exist_ok=True)
        for attempt in range(Config.BACKUP_RETRY_LIMIT):
            backup_path = create_backup_path(path, backup_dir)
            try:
                safe_file_copy(path, backup_path, exclusive=True)
                logger.info(f"Backup created: {backup_path}")
                return backup_path, None
            except FileExistsError:
                continue
        return None, f'backup failed: could not find unique name after {Config.BACKUP_RETRY_LIMIT} attempts'
    except (OSError, RuntimeError) as e:
        return None, f'backup failed: {e}'

# ---------- Output ----------
def unclaimed_output_path(dest: Path, claimed: Set[Path]) -> Path:
    """Return ``dest``, or ``name_N.ext`` if an earlier file in this run already wrote there."""
    candidate = dest
    counter = 1
    while candidate.resolve() in claimed:
        candidate = dest.with_name(f"{dest.stem}_{counter}{dest.suffix}")
        counter += 1
    return candidate

def write_output(dest: Path, data: bytes) -> None:
    """
    Write ``data`` to ``dest`` atomically.

    The bytes go to a temporary file in the same directory which then
    replaces ``dest``; on failure the temporary file is removed and ``dest``
    is untouched.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix='.syltag_', suffix='.tmp', dir=dest.parent)
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
        os.replace(tmp_name, dest)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise
    logger.info(f"Wrote {len(data)} bytes to {dest}")

def verify_written(path: Path, model: MetadataModel) -> Dict[str, bool]:
    """
    Re-read a written file with mutagen and compare it to the model.

    Checks title/artist/album text, synced lyric entry counts per group and
    cover art presence.
    """
    try:
        tags = ID3(str(path))
    except ID3NoHeaderError:
        tags = ID3()
    except mutagen.MutagenError as e:
        logger.error(f"Verification failed for {path}: {e}")
        return {'readable': False}

    results = {}
    for name in ('title', 'artist', 'album'):
        if name not in model.fields:
            continue
        frame = tags.get(TEXT_FIELD_FRAMES[name])
        got = '/'.join(str(t) for t in frame.text) if frame is not None else ''
        results[name] = (got == model.fields[name])

    expected_counts = sorted(len(g.synced_entries) for g in model.groups if g.synced_entries)
    got_counts = sorted(len(f.text) for f in tags.getall('SYLT'))
    results['lyrics'] = (expected_counts == got_counts)

    has_cover = bool(model.cover_art and model.cover_art.data and model.cover_art.mime_type)
    results['cover'] = (has_cover == bool(tags.getall('APIC')))
    return results

# ---------- Process One File ----------
def process_file(path: Union[str, Path],
                 ops: List[ModelOperation],
                 *,
                 output_dir: Optional[Union[str, Path]] = None,
                 in_place: bool = False,
                 dry_run: bool = False,
                 backup_dir: Optional[Union[str, Path]] = None,
                 force: bool = False,
                 verify: bool = True,
                 claimed_outputs: Optional[Set[Path]] = None) -> ProcessResultType:
    """
    Process a single file: load, edit, encode, write, verify.

    Output goes to ``<output_dir or source dir>/<suggested filename>`` unless
    ``in_place`` is set. Paths in ``claimed_outputs`` were written earlier in
    the same run; a clashing output gets a ``_N`` suffix instead of
    replacing them, and the path written is added to the set. Errors are
    reported in the returned record, never raised.
    """
    file_path = Path(path)
    ext = file_path.suffix.lower()
    record: ProcessResultType = {
        'path': str(file_path),
        'ext': ext,
        'wrote': False,
        'verified': {},
        'error': None,
        'exception': None,
        'passed': False,
    }

    is_valid, validation_msg = validate_file(file_path, force=force)
    if not is_valid:
        return {**record, 'error': f'file validation failed: {validation_msg}'}

    session = EditSession()
    try:
        session.load_file(file_path)
        record['original'] = session.model.summary()
        changed = apply_operations(session.model, ops)
    except (SyltagError, OSError) as e:
        return {**record, 'error': f'file error: {e}', 'exception': e}

    record['planned'] = session.model.summary()
    record['changed'] = changed

    if in_place and not any(changed.values()):
        return {**record, 'passed': True, 'note': 'no changes'}

    if dry_run:
        return {**record, 'passed': True, 'note': 'dry-run'}

    result = session.process()
    if not result.success:
        return {**record, 'error': result.message}

    dest = file_path if in_place else Path(output_dir or file_path.parent) / result.filename
    if claimed_outputs is not None and not in_place:
        dest = unclaimed_output_path(dest, claimed_outputs)
    record['output_path'] = str(dest)
    if not in_place and dest.exists() and not force:
        return {**record, 'error': f'output exists: {dest} (use --force to overwrite)'}

    if in_place and backup_dir:
        backup_path, backup_error = _create_backup(file_path, Path(backup_dir))
        if backup_error:
            return {**record, 'error': backup_error}
        record['backup_path'] = str(backup_path)

    try:
        write_output(dest, result.data)
        record['wrote'] = True
        if claimed_outputs is not None:
            claimed_outputs.add(dest.resolve())
    except OSError as e:
        return {**record, 'error': f'write failed: {e}', 'exception': e}

    if verify:
        record['verified'] = verify_written(dest, session.model)
        record['passed'] = all(record['verified'].values())
        if not record['passed']:
            logger.warning(f"Verification failed for {dest}: {record['verified']}")
    else:
        record['passed'] = True

    return record

def process_files(files: Iterable[Path], ops: List[ModelOperation], *, verbose: bool = False,
                  **kwargs) -> List[ProcessResultType]:
    """
    Process files one after another.

    Outputs are tracked across the run so two sources that map to the same
    output name (same title, or same basename under ``--recursive``) never
    overwrite each other, even with ``force``.
    """
    files_list = list(files)
    total_files = len(files_list)
    results = []
    kwargs.setdefault('claimed_outputs', set())
    for i, file_path in enumerate(files_list, 1):
        if verbose:
            print(f"Progress: {i}/{total_files} ({i/total_files*100:.1f}%)", end='\r' if i < total_files else '\n')
        result = process_file(file_path, ops, **kwargs)
        results.append(result)
        if verbose and result.get('error'):
            print(f"  ERROR: {result['error']}")
    return results

def collect_files_generator(path: Path, recursive: bool = False) -> Generator[Path, None, None]:
    """Generator to collect files efficiently without loading all into memory."""
    if path.is_file():
        yield path
        return

    walker = path.rglob('*') if recursive else path.glob('*')
    for item in sorted(walker):
        if item.is_file() and item.suffix.lower() in SUPPORTED_EXT:
            yield item
