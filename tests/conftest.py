"""
Pytest configuration and shared fixtures.
"""

import io
import pytest
import shutil
import subprocess
from pathlib import Path
from mutagen.id3 import ID3, TIT2, TPE1, TALB, TDRC, TCON, TRCK, COMM, USLT, SYLT, APIC
from PIL import Image

from syltag.utils import Config

# ---------- Constants ----------

# One MPEG-1 Layer III frame header (128 kbps, 44.1 kHz, no CRC) padded to the
# 417 byte frame length; a handful in a row is enough for mutagen to sniff.
MPEG_FRAME = b'\xff\xfb\x90\x00' + b'\x00' * 413
AUDIO_PAYLOAD = MPEG_FRAME * 8

# FFmpeg configuration for generating real audio files
FFMPEG = shutil.which("ffmpeg")

TAGS = {
    "title": "Test Title",
    "artist": "Test Artist",
    "album": "Test Album",
    "date": "2025",
    "genre": "TestGenre",
    "tracknumber": "1",
}

LRC_TEXT = "[00:01.40]Hello\n[00:00.50]World\n[00:02.00]Again\n"

ENV_VARS = [
    'SYLTAG_MAX_FILE_SIZE', 'SYLTAG_MAX_COVER_ART_SIZE', 'SYLTAG_BACKUP_RETRY_LIMIT',
    'SYLTAG_TAG_PADDING', 'SYLTAG_LANGUAGE', 'SYLTAG_OUTPUT_SUFFIX', 'SYLTAG_LOG_DIR',
    'SYLTAG_VERBOSE',
]

# ---------- Helper Functions ----------

def generate_audio(path: Path):
    """Generate a real MP3 file using ffmpeg."""
    if not FFMPEG:
        raise RuntimeError("ffmpeg not found on PATH")

    cmd = [
        FFMPEG,
        "-f", "lavfi",
        "-i", "sine=frequency=440:duration=1",
        "-ar", "44100",
        "-ac", "2",
        "-c:a", "libmp3lame",
        str(path),
        "-y",
        "-loglevel", "error",
    ]

    proc = subprocess.run(cmd, capture_output=True)
    if proc.returncode != 0:
        raise RuntimeError(f"ffmpeg failed: {proc.stderr.decode()}")

def write_mp3_tags(path: Path, cover: bytes = None):
    """Write a v2.3 ID3 tag to an MP3 file with mutagen."""
    tags = ID3()
    tags.add(TIT2(encoding=3, text=TAGS["title"]))
    tags.add(TPE1(encoding=3, text=TAGS["artist"]))
    tags.add(TALB(encoding=3, text=TAGS["album"]))
    tags.add(TDRC(encoding=3, text=TAGS["date"]))
    tags.add(TCON(encoding=3, text=TAGS["genre"]))
    tags.add(TRCK(encoding=3, text=TAGS["tracknumber"]))
    tags.add(COMM(encoding=3, lang='eng', desc='', text=["A comment"]))
    tags.add(SYLT(encoding=3, lang='eng', format=2, type=1, desc='',
                  text=[("World", 500), ("Hello", 1400)]))
    tags.add(USLT(encoding=3, lang='eng', desc='', text="World\nHello"))
    if cover:
        tags.add(APIC(encoding=3, mime='image/png', type=3, desc='', data=cover))
    tags.save(str(path), v2_version=3)

def make_png(size=(4, 4), color='red') -> bytes:
    buf = io.BytesIO()
    Image.new('RGB', size, color).save(buf, format='PNG')
    return buf.getvalue()

# ---------- Fixtures ----------

@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep Config and SYLTAG_* env vars from leaking between tests."""
    saved = {k: v for k, v in vars(Config).items() if k.isupper()}
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv('SYLTAG_LOG_DIR', str(tmp_path / 'logs'))
    yield
    for k, v in saved.items():
        setattr(Config, k, v)

@pytest.fixture
def audio_payload():
    return AUDIO_PAYLOAD

@pytest.fixture
def mp3_file(tmp_path):
    """Untagged MP3 made of synthetic MPEG frames."""
    path = tmp_path / "input.mp3"
    path.write_bytes(AUDIO_PAYLOAD)
    return path

@pytest.fixture
def png_bytes():
    return make_png()

@pytest.fixture
def png_file(tmp_path, png_bytes):
    path = tmp_path / "cover.png"
    path.write_bytes(png_bytes)
    return path

@pytest.fixture
def lrc_file(tmp_path):
    path = tmp_path / "lyrics.lrc"
    path.write_text(LRC_TEXT, encoding='utf-8')
    return path

@pytest.fixture
def tagged_mp3(mp3_file, png_bytes):
    """Synthetic MP3 carrying a mutagen-written ID3v2.3 tag with lyrics and cover."""
    write_mp3_tags(mp3_file, cover=png_bytes)
    return mp3_file

@pytest.fixture(scope="session")
def audio_template(tmp_path_factory):
    """Generate a single real MP3 file with actual audio and tags."""
    if not FFMPEG:
        pytest.skip("ffmpeg not found - cannot generate real audio files")

    template_dir = tmp_path_factory.mktemp("template")
    template_file = template_dir / "test.mp3"

    try:
        generate_audio(template_file)
        write_mp3_tags(template_file)
    except Exception as e:
        pytest.skip(f"Failed to generate audio template: {e}")

    return template_file

@pytest.fixture
def real_mp3(tmp_path, audio_template):
    """Writable copy of the ffmpeg-generated template."""
    source_dir = tmp_path / "source"
    source_dir.mkdir(exist_ok=True)
    temp_file = source_dir / audio_template.name
    shutil.copy2(audio_template, temp_file)
    return temp_file

@pytest.fixture
def temp_audio_dir(tmp_path):
    """Create a temporary directory with synthetic MP3 files and some non-MP3 noise."""
    audio_dir = tmp_path / "audio"
    audio_dir.mkdir()

    for i in range(3):
        (audio_dir / f"track_{i:02d}.mp3").write_bytes(AUDIO_PAYLOAD)
    (audio_dir / "notes.txt").write_text("not audio")
    (audio_dir / "cover.jpg").write_bytes(b'\xff\xd8\xff')

    # Add a subdirectory with more files
    subdir = audio_dir / "sub"
    subdir.mkdir()
    (subdir / "sub_track.MP3").write_bytes(AUDIO_PAYLOAD)

    return audio_dir
