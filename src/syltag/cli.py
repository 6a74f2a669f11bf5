"""syltag CLI - MP3 tag, lyrics and cover art editor for the command line."""
import os
import sys
import argparse
import json
import logging
from pathlib import Path
from typing import List, Optional, Tuple

from .core import SyltagError, ValidationError
from .lrc import entries_to_lrc
from .model import TAG_FIELDS, MetadataModel, canon_key, validate_language
from .session import EditSession
from .utils import (
    Config,
    setup_logging,
    join_for_printing,
    truncate,
    EXIT_CODE_SUCCESS,
    EXIT_CODE_ERROR,
    EXIT_CODE_USAGE,
    EXIT_CODE_PERMISSION,
    EXIT_CODE_INTERRUPTED,
    EXIT_CODE_NO_FILES,
    EXIT_CODE_DISK_FULL
)
from .operations import (
    ModelOperation,
    write,
    clear,
    clear_all,
    select_group,
    add_group,
    set_language,
    set_description,
    import_lrc,
    set_unsynced,
    set_cover,
    remove_cover
)
from .processor import (
    ProcessResultType,
    register_signal_handlers,
    unregister_signal_handlers,
    validate_file,
    load_cover_art,
    process_files,
    collect_files_generator
)

logger = logging.getLogger(__name__)

OPERATIONS = ['print', 'write', 'export-lrc', 'strip']

# ---------- CLI & Main ----------
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="syltag - MP3 tag, synced lyrics and cover art editor")

    # Core arguments
    parser.add_argument("path", nargs='?', default='.', help="MP3 file or directory to process")
    parser.add_argument("--operation", choices=OPERATIONS, default='print',
                        help="Operation (default: print)")

    # Field edits
    parser.add_argument("--set", action='append', metavar="FIELD=VALUE",
                        help=f"Set a tag field (repeatable). Fields: {', '.join(TAG_FIELDS)}")
    parser.add_argument("--clear", action='append', metavar="FIELD", help="Remove a tag field (repeatable)")

    # Lyric groups
    parser.add_argument("--group", type=int, help="Lyric group index to edit or export (default: first)")
    parser.add_argument("--add-group", action='store_true', help="Append a new lyric group and edit it")
    parser.add_argument("--language", help="Three-letter language code for the lyric group")
    parser.add_argument("--description", help="Content description for the lyric group")
    parser.add_argument("--lrc", help="LRC file to import as synced lyrics (replaces existing entries)")
    parser.add_argument("--lyrics", help="Text file to use as unsynchronized lyrics")

    # Cover art
    cover = parser.add_mutually_exclusive_group()
    cover.add_argument("--cover", help="Image file to embed as front cover (an unreadable image is skipped with a warning)")
    cover.add_argument("--remove-cover", action='store_true', help="Remove embedded cover art")

    # Output
    output = parser.add_mutually_exclusive_group()
    output.add_argument("--output", help="Directory for output files (default: next to the source)")
    output.add_argument("--in-place", action='store_true', help="Overwrite the source files")

    # File selection
    parser.add_argument("--recursive", action='store_true', help="Recurse into subdirectories")

    # Safety and reporting
    parser.add_argument("--dry-run", action='store_true', help="Do not write files")
    parser.add_argument("--backup", help="Backup directory for files modified in place")
    parser.add_argument("--force", action='store_true',
                        help="Overwrite existing output files and skip the MPEG audio check")
    parser.add_argument("--json-report", help="Write JSON report to file")

    # Logging
    parser.add_argument("--verbose", action='store_true', default=None,
                        help="Enable verbose logging (overrides SYLTAG_VERBOSE env var)")
    return parser

def parse_assignment(expr: str) -> Tuple[str, str]:
    """Parse a single FIELD=VALUE expression into (canonical field, value)."""
    if not expr or '=' not in expr:
        raise ValueError(f"--set expects FIELD=VALUE, got {expr!r}")
    name, value = expr.split('=', 1)
    key = canon_key(name) if name.strip() else None
    if key is None:
        raise ValueError(f"invalid field: {name.strip()!r}. Must be one of: {', '.join(TAG_FIELDS)}")
    return key, value

def has_edits(args: argparse.Namespace) -> bool:
    return bool(args.set or args.clear or args.add_group or args.language or args.description is not None
                or args.lrc or args.lyrics or args.cover or args.remove_cover)

def validate_args(args: argparse.Namespace) -> None:
    """Validate command line arguments comprehensively."""
    errors = []

    if args.operation == 'write' and not has_edits(args):
        errors.append("write operation requires at least one edit (--set, --clear, --lrc, --lyrics, --cover, ...)")
    if args.operation in ('print', 'export-lrc', 'strip') and has_edits(args):
        errors.append(f"{args.operation} operation does not take edit options")

    for expr in args.set or []:
        try:
            parse_assignment(expr)
        except ValueError as e:
            errors.append(str(e))
    for name in args.clear or []:
        if canon_key(name) is None:
            errors.append(f"invalid field: {name!r}. Must be one of: {', '.join(TAG_FIELDS)}")

    if args.language:
        try:
            validate_language(args.language)
        except ValidationError as e:
            errors.append(str(e))
    if args.group is not None and args.group < 0:
        errors.append("--group must be 0 or greater")

    for option, value in (('--lrc', args.lrc), ('--lyrics', args.lyrics), ('--cover', args.cover)):
        if value and not os.path.isfile(value):
            errors.append(f"{option} file does not exist: {value}")

    # Validate path
    if not os.path.exists(args.path):
        errors.append(f"Path does not exist: {args.path}")
    elif not os.access(args.path, os.R_OK):
        errors.append(f"No read permission for path: {args.path}")

    # Validate output and backup directories if provided
    for option, value in (('output', args.output), ('backup', args.backup)):
        if not value:
            continue
        try:
            Path(value).mkdir(parents=True, exist_ok=True)
            if not os.access(value, os.W_OK):
                errors.append(f"No write permission for {option} directory: {value}")
        except OSError as e:
            errors.append(f"Invalid {option} directory: {e}")

    if args.backup and not args.in_place:
        logger.warning("--backup only applies together with --in-place")

    if errors:
        raise ValueError("; ".join(errors))

def main(argv: Optional[List[str]] = None) -> None:
    """Main CLI entry point."""
    register_signal_handlers()
    try:
        parser = build_parser()
        args = parser.parse_args(argv)

        # Configuration precedence: CLI flag > environment variable > default
        try:
            Config.load_from_env()
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(EXIT_CODE_USAGE)

        if args.verbose is None:
            args.verbose = Config.DEFAULT_VERBOSE
        setup_logging(args.verbose)

        # Validate arguments
        try:
            validate_args(args)
        except ValueError as e:
            logger.error(f"Argument validation failed: {e}")
            print(f"Error: {e}", file=sys.stderr)
            if "permission" in str(e).lower():
                sys.exit(EXIT_CODE_PERMISSION)
            sys.exit(EXIT_CODE_USAGE)

        # Build operations from arguments
        try:
            ops = build_operations_from_args(args)
        except (ValueError, SyltagError, OSError) as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(EXIT_CODE_USAGE)

        # Process files
        try:
            exit_code = run_processing_session(args, ops)
            sys.exit(exit_code)
        except KeyboardInterrupt:
            sys.exit(EXIT_CODE_INTERRUPTED)
        except PermissionError as e:
            print(f"Permission denied: {e}", file=sys.stderr)
            sys.exit(EXIT_CODE_PERMISSION)
        except OSError as e:
            if e.errno == 28: # ENOSPC: No space left on device
                print(f"Error: {e}", file=sys.stderr)
                sys.exit(EXIT_CODE_DISK_FULL)
            logger.error(f"Unexpected error: {e}", exc_info=True)
            print(f"Unexpected error: {e}", file=sys.stderr)
            sys.exit(EXIT_CODE_ERROR)
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            print(f"Unexpected error: {e}", file=sys.stderr)
            sys.exit(EXIT_CODE_ERROR)

    finally:
        # Ensure signal handlers are unregistered on exit
        unregister_signal_handlers()

def build_operations_from_args(args: argparse.Namespace) -> List[ModelOperation]:
    """
    Build the edit operations for one run.

    Input files (LRC, lyrics, cover) are read once here and the resulting
    operations are replayed against every processed file.
    """
    if args.operation == 'strip':
        return [clear_all()]
    if args.operation != 'write':
        return []

    ops = []
    for expr in args.set or []:
        name, value = parse_assignment(expr)
        ops.append(write(name, value))
    for name in args.clear or []:
        ops.append(clear(name))

    # Group selection comes first so the group edits below target it
    if args.add_group:
        ops.append(add_group(args.language, args.description or ''))
    else:
        if args.group is not None:
            ops.append(select_group(args.group))
        if args.language:
            ops.append(set_language(args.language))
        if args.description is not None:
            ops.append(set_description(args.description))

    if args.lrc:
        ops.append(import_lrc(Path(args.lrc).read_text(encoding='utf-8-sig')))
    if args.lyrics:
        ops.append(set_unsynced(Path(args.lyrics).read_text(encoding='utf-8-sig')))

    if args.cover:
        cover_art = load_cover_art(args.cover)
        if cover_art is None:
            print(f"Warning: cover art {args.cover} could not be used; existing cover art is kept", file=sys.stderr)
        else:
            ops.append(set_cover(cover_art))
    elif args.remove_cover:
        ops.append(remove_cover())

    return ops

def run_processing_session(args: argparse.Namespace, ops: List[ModelOperation]) -> int:
    """Dispatch the selected operation over the collected files. Returns exit code."""
    files = list(collect_files_generator(Path(args.path), recursive=args.recursive))

    if not files:
        print("No files found matching criteria.")
        # Still create JSON report if requested (with empty results)
        if args.json_report:
            save_json_report([], args.json_report)
        return EXIT_CODE_NO_FILES

    if args.operation == 'print':
        return run_print(files, args)
    if args.operation == 'export-lrc':
        return run_export_lrc(files, args)

    print(f"Processing {len(files)} file(s)...", flush=True)
    results = process_files(
        files,
        ops,
        output_dir=args.output,
        in_place=args.in_place,
        dry_run=args.dry_run,
        backup_dir=args.backup,
        force=args.force,
        verbose=args.verbose
    )

    for rec in results:
        # Show details for small batches or verbose mode
        if len(files) <= 10 or args.verbose:
            print_file_result(rec, args)

    return generate_summary(results, args)

def load_model(path: Path, force: bool = False) -> MetadataModel:
    """Load a file's metadata for read-only operations."""
    is_valid, validation_msg = validate_file(path, force=force)
    if not is_valid:
        raise ValidationError(validation_msg)
    session = EditSession()
    session.load_file(path)
    return session.model

def run_print(files: List[Path], args: argparse.Namespace) -> int:
    failed = 0
    for path in files:
        print(f"\nFile: {path}")
        try:
            model = load_model(path, force=args.force)
        except (SyltagError, OSError) as e:
            print(f"  ERROR: {e}")
            failed += 1
            continue
        print_metadata(model.summary())
        if args.verbose:
            print_lyrics(model)
    return EXIT_CODE_ERROR if failed else EXIT_CODE_SUCCESS

def run_export_lrc(files: List[Path], args: argparse.Namespace) -> int:
    failed = 0
    for path in files:
        try:
            model = load_model(path, force=args.force)
        except (SyltagError, OSError) as e:
            print(f"{path}: ERROR: {e}", file=sys.stderr)
            failed += 1
            continue

        index = model.set_active_group(args.group or 0)
        text = entries_to_lrc(model.active_group.synced_entries)
        if not text:
            logger.info(f"{path}: lyric group {index} has no synced entries")

        if args.output:
            dest = Path(args.output) / f"{path.stem}.lrc"
            if dest.exists() and not args.force:
                print(f"{path}: ERROR: output exists: {dest} (use --force to overwrite)", file=sys.stderr)
                failed += 1
                continue
            dest.write_text(text + '\n' if text else '', encoding='utf-8')
            print(f"{path}: wrote {dest}")
        else:
            if len(files) > 1:
                print(f"# {path}")
            print(text)
    return EXIT_CODE_ERROR if failed else EXIT_CODE_SUCCESS

def print_file_result(rec: ProcessResultType, args: argparse.Namespace) -> None:
    """Print detailed result for a single file."""
    print(f"\nFile: {rec['path']}")

    if rec.get('error'):
        print(f"  ERROR: {rec.get('error')}")
        return

    orig = rec.get('original', {})
    planned = rec.get('planned', {})

    print("  Original:")
    print_metadata(orig)

    if args.dry_run:
        print("  Dry-run: planned result:")
        print_metadata(planned)
        return

    if rec.get('wrote'):
        verified = rec.get('verified', {})
        ok = all(verified.values()) if verified else False

        if ok:
            print(f"  Written: {rec.get('output_path')} (verified)")
        else:
            failed = [k for k, v in verified.items() if not v]
            print(f"  Written: {rec.get('output_path')} - FAILED verification for: {', '.join(failed)}")
        print("  Final metadata:")
        print_metadata(planned)
    else:
        print(f"  Note: {rec.get('note', 'NOT WRITTEN')}")

def print_metadata(metadata: dict, max_len: int = 150) -> None:
    """
    Print a model summary in a consistent format with truncation.

    Args:
        metadata: Summary dict as returned by ``MetadataModel.summary()``.
        max_len: Maximum length for displayed values before truncation.
    """
    fields = [
        ('Title', 'title'),
        ('Artist', 'artist'),
        ('Album', 'album'),
        ('AlbumArtist', 'albumartist'),
        ('Year', 'year'),
        ('Genre', 'genre'),
        ('Track', 'track'),
        ('Comment', 'comment'),
        ('Cover', 'cover'),
    ]
    for display_name, field_name in fields:
        print(f"    {display_name}: {truncate(join_for_printing(metadata.get(field_name, [])), max_len)}")
    for i, line in enumerate(metadata.get('lyrics', [])):
        print(f"    Lyrics[{i}]: {line}")

def print_lyrics(model: MetadataModel) -> None:
    """Print every lyric group's synced entries and unsynced text."""
    for i, group in enumerate(model.groups):
        print(f"  Lyric group {i} ({group.language}, {group.description or 'no description'}):")
        for line in entries_to_lrc(group.synced_entries).splitlines():
            print(f"    {line}")
        unsynced = model.unsynced_text(i)
        if unsynced and not group.synced_entries:
            for line in unsynced.splitlines():
                print(f"    {line}")

def generate_summary(results: List[ProcessResultType], args: argparse.Namespace) -> int:
    """Generate and print processing summary. Returns exit code."""
    total_files = len(results)
    successful = sum(1 for r in results if r.get('passed', False))
    failed = total_files - successful

    print(f"\n--- SUMMARY ---")
    print(f"Total files processed: {total_files}")
    print(f"Successful: {successful}")
    print(f"Failed: {failed}")

    # Save JSON report (always create, even if no files)
    if args.json_report:
        save_json_report(results, args.json_report)

    # Check for critical errors in results
    for r in results:
        exc = r.get('exception')
        if exc and isinstance(exc, OSError) and exc.errno == 28: # ENOSPC
            return EXIT_CODE_DISK_FULL

    return EXIT_CODE_ERROR if failed else EXIT_CODE_SUCCESS

def save_json_report(results: List[ProcessResultType], report_path: str) -> None:
    """Save processing results in documented JSON schema format."""
    from datetime import datetime

    # Calculate summary statistics
    total = len(results)
    success = sum(1 for r in results if r.get('passed', False))
    failed = sum(1 for r in results if r.get('error'))
    backups_created = sum(1 for r in results if r.get('backup_path'))

    report_data = {
        "version": "1.0",
        "timestamp": datetime.now().isoformat(),
        "summary": {
            "total": total,
            "success": success,
            "failed": failed,
            "backups_created": backups_created
        },
        "files": []
    }

    # Transform results to documented format
    for r in results:
        file_record = {
            "path": r.get('path', ''),
            "status": "error" if r.get('error') else "success"
        }
        if r.get('output_path'):
            file_record["output_path"] = r['output_path']

        # Add changes if present
        if r.get('original') and r.get('planned'):
            changes = {}
            for field, did_change in r.get('changed', {}).items():
                if did_change:
                    changes[field] = {
                        "old": r['original'].get(field, []),
                        "new": r['planned'].get(field, [])
                    }
            if changes:
                file_record["changes"] = changes

        if r.get('verified'):
            file_record["verified"] = r['verified']
        if r.get('error'):
            file_record["error"] = r['error']
        if r.get('backup_path'):
            file_record["backup_path"] = r['backup_path']

        report_data["files"].append(file_record)

    try:
        with open(report_path, 'w', encoding='utf-8') as f:
            json.dump(report_data, f, ensure_ascii=False, indent=2, default=str)
        print(f"JSON report written to {report_path}")
    except OSError as e:
        print(f"Failed to write JSON report: {e}", file=sys.stderr)


if __name__ == '__main__':
    main()
