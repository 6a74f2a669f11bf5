"""
Utility functions and configuration for syltag.
"""

import os
import re
import sys
import logging
import hashlib
from pathlib import Path
from typing import List
from logging.handlers import RotatingFileHandler

# ---------- Constants ----------
EXIT_CODE_SUCCESS = 0
EXIT_CODE_ERROR = 1
EXIT_CODE_USAGE = 2
EXIT_CODE_NO_FILES = 3
EXIT_CODE_PERMISSION = 4
EXIT_CODE_DISK_FULL = 5
EXIT_CODE_INTERRUPTED = 130

# ---------- Configuration ----------
class Config:
    """Configuration management with validation."""
    MAX_FILE_SIZE = 500 * 1024 * 1024  # 500MB, whole file is held in memory
    MAX_COVER_ART_SIZE = 5 * 1024 * 1024  # 5MB
    BACKUP_RETRY_LIMIT = 10
    DEFAULT_ENCODING = 'utf-8'
    CHUNK_SIZE = 64 * 1024  # 64KB for file operations

    DEFAULT_LANGUAGE = 'eng'
    # Zero keeps output length == header + frames + audio payload
    TAG_PADDING = 0
    OUTPUT_SUFFIX = '_tagged'
    LOG_DIR = 'logs'
    DEFAULT_VERBOSE = False

    @classmethod
    def validate(cls) -> None:
        """Validate configuration values."""
        if cls.MAX_FILE_SIZE <= 0:
            raise ValueError("MAX_FILE_SIZE must be positive")
        if cls.MAX_COVER_ART_SIZE <= 0:
            raise ValueError("MAX_COVER_ART_SIZE must be positive")
        if cls.BACKUP_RETRY_LIMIT <= 0:
            raise ValueError("BACKUP_RETRY_LIMIT must be positive")
        if cls.CHUNK_SIZE <= 0:
            raise ValueError("CHUNK_SIZE must be positive")
        if cls.TAG_PADDING < 0:
            raise ValueError("TAG_PADDING cannot be negative")
        if not re.fullmatch(r'[A-Za-z]{3}', cls.DEFAULT_LANGUAGE or ''):
            raise ValueError(f"Invalid DEFAULT_LANGUAGE: {cls.DEFAULT_LANGUAGE!r}")
        if not cls.OUTPUT_SUFFIX:
            raise ValueError("OUTPUT_SUFFIX cannot be empty")

    @classmethod
    def load_from_env(cls) -> None:
        """Load configuration from environment variables, updating class attributes."""
        if os.getenv('SYLTAG_MAX_FILE_SIZE'):
            cls.MAX_FILE_SIZE = int(os.getenv('SYLTAG_MAX_FILE_SIZE'))
        if os.getenv('SYLTAG_MAX_COVER_ART_SIZE'):
            cls.MAX_COVER_ART_SIZE = int(os.getenv('SYLTAG_MAX_COVER_ART_SIZE'))
        if os.getenv('SYLTAG_BACKUP_RETRY_LIMIT'):
            cls.BACKUP_RETRY_LIMIT = int(os.getenv('SYLTAG_BACKUP_RETRY_LIMIT'))
        if os.getenv('SYLTAG_TAG_PADDING'):
            cls.TAG_PADDING = int(os.getenv('SYLTAG_TAG_PADDING'))
        if os.getenv('SYLTAG_LANGUAGE'):
            cls.DEFAULT_LANGUAGE = os.getenv('SYLTAG_LANGUAGE')
        if os.getenv('SYLTAG_OUTPUT_SUFFIX'):
            cls.OUTPUT_SUFFIX = os.getenv('SYLTAG_OUTPUT_SUFFIX')
        if os.getenv('SYLTAG_LOG_DIR'):
            cls.LOG_DIR = os.getenv('SYLTAG_LOG_DIR')
        verbose_env = os.getenv('SYLTAG_VERBOSE')
        if verbose_env is not None:
            cls.DEFAULT_VERBOSE = verbose_env.lower() in ('1', 'true', 'yes')
        cls.validate()

# ---------- Logging Setup ----------
def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rotation and proper formatting."""
    log_level = logging.DEBUG if verbose else logging.INFO

    log_dir = Path(Config.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        log_dir / 'syltag.log',
        maxBytes=10*1024*1024,  # 10MB
        backupCount=5,
        encoding='utf-8'
    )

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            file_handler
        ]
    )

# ---------- Small Helpers ----------
def join_for_printing(lst: List[str]) -> str:
    """Join list for display, showing '(none)' for empty lists."""
    return '(none)' if not lst else '; '.join(lst)

def truncate(s: str, max_len: int = 50) -> str:
    """Truncate string for display."""
    s = str(s) if s is not None else ""
    return s if len(s) <= max_len else s[:max_len - 3] + "..."

def safe_filename(name: str) -> str:
    """
    Make a string usable as a single path component.

    Path separators, control characters and characters reserved on Windows
    are replaced with underscores; surrounding whitespace and dots are removed.
    """
    cleaned = re.sub(r'[\\/:*?"<>|\x00-\x1f]', '_', name)
    cleaned = cleaned.strip().strip('.')
    return cleaned or 'untitled'

def get_file_hash(file_path: Path) -> str:
    """Calculate file hash for verification."""
    hasher = hashlib.sha256()
    with open(file_path, 'rb') as f:
        for chunk in iter(lambda: f.read(Config.CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()
