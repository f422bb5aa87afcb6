#!/usr/bin/env python3
"""
XlsxUnlock - Excel Sheet & Workbook Protection Remover

CLI tool that removes sheet and workbook protection from .xlsx files and
views or edits their document properties, leaving everything else in the
file untouched.

Features:
- unprotect: Strip <workbookProtection> and <sheetProtection> markers
- info: Show file details and document properties
- edit: Change document properties (title, author, company, dates, ...)

Opening passwords ("Password to Open") are detected and reported; they
cannot be removed.
"""

import argparse
import json
import math
import os
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import yaml

from detection import check_extension
from errors import WorkbookError
from package import DEFAULT_COMPRESSLEVEL, PartLayout
from processor import Checkpoint, ProtectionConfig, UnprotectResult, unprotect_file
from properties import (
    BOOLEAN,
    PROPERTY_FIELDS,
    TIMESTAMP,
    PropertySet,
    changed_fields,
    format_timestamp,
    get_properties,
    update_properties,
)

__version__ = "1.0.0"

DEFAULT_CONFIG = Path(__file__).parent / "xlsxunlock.yaml"


@dataclass
class OutputOptions:
    """How output files are named and compressed."""
    compresslevel: int = DEFAULT_COMPRESSLEVEL
    unlocked_suffix: str = "_unlocked"
    processed_suffix: str = "_processed"

    @classmethod
    def from_config(cls, section: Optional[dict]) -> "OutputOptions":
        section = section or {}
        defaults = cls()
        return cls(
            compresslevel=int(section.get("compresslevel", defaults.compresslevel)),
            unlocked_suffix=section.get("unlocked_suffix", defaults.unlocked_suffix),
            processed_suffix=section.get("processed_suffix", defaults.processed_suffix),
        )


@dataclass
class Settings:
    layout: PartLayout
    protection: ProtectionConfig
    output: OutputOptions

    @classmethod
    def from_config(cls, config: dict) -> "Settings":
        return cls(
            layout=PartLayout.from_config(config.get("parts")),
            protection=ProtectionConfig.from_config(config.get("protection")),
            output=OutputOptions.from_config(config.get("output")),
        )


class UsageError(Exception):
    """Bad command line input."""


def load_config(config_path: Optional[Path]) -> dict:
    """
    Load configuration from YAML file.

    With no path the bundled xlsxunlock.yaml is used if present, otherwise
    the built-in defaults. A path that was given explicitly must exist.
    """
    if config_path is None:
        if not DEFAULT_CONFIG.exists():
            return {}
        config_path = DEFAULT_CONFIG
    elif not config_path.exists():
        raise UsageError(f"Config file not found: {config_path}")

    with open(config_path, "r") as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise UsageError(f"Invalid config file {config_path}: {e}") from e


def format_size(num_bytes: int) -> str:
    """Human readable size: 0 B, 512 B, 1.5 KB, 2.25 MB."""
    if num_bytes == 0:
        return "0 B"
    sizes = ["B", "KB", "MB", "GB"]
    i = min(int(math.floor(math.log(num_bytes, 1024))), len(sizes) - 1)
    return f"{round(num_bytes / 1024 ** i, 2):g} {sizes[i]}"


def format_value(value) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, bool):
        return "Yes" if value else "No"
    return str(value)


def parse_assignments(assignments: list[str]) -> PropertySet:
    """Turn ['title=Budget', 'scale=true'] into a PropertySet."""
    edits = PropertySet()
    for item in assignments or []:
        if "=" not in item:
            raise UsageError(f"Expected KEY=VALUE, got '{item}'")
        key, value = item.split("=", 1)
        try:
            edits.set(key.strip(), value)
        except ValueError as e:
            raise UsageError(str(e)) from e
    return edits


def default_output(input_path: Path, suffix: str) -> Path:
    return input_path.with_name(f"{input_path.stem}{suffix}.xlsx")


def check_output_args(args) -> None:
    if args.in_place and args.output is not None:
        raise UsageError("--in-place cannot be combined with an explicit OUTPUT")


def resolve_output(args, suffix: str) -> Path:
    """Where to write: the input itself, the given OUTPUT, or <stem><suffix>.xlsx."""
    if args.in_place:
        return args.input
    if args.output is not None:
        return args.output
    return default_output(args.input, suffix)


def write_output(path: Path, data: bytes) -> None:
    """Write via a temporary file so a failed write never leaves a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def read_input(input_path: Path) -> bytes:
    if not input_path.exists():
        raise UsageError(f"Input file not found: {input_path}")
    return input_path.read_bytes()


def print_result(input_path: Path, output_path: Optional[Path], result: UnprotectResult,
                 updated: Optional[list[str]] = None, verbose: bool = False):
    """Print unprotect summary."""
    strip = result.strip
    print()
    print("=" * 60)
    print("XlsxUnlock Report")
    print("=" * 60)
    print()
    print(f"Input:  {input_path}")
    print(f"Output: {output_path if output_path else '(dry-run)'}")
    print()
    print(f"Workbook protection removed: {'yes' if strip.workbook_markers_removed else 'no'}")
    print(f"Sheets unprotected:          {len(strip.sheets_unprotected)} of {strip.sheets_scanned}")

    if strip.sheets_unprotected:
        print()
        print("-" * 60)
        print("UNPROTECTED SHEETS:")
        print("-" * 60)
        for path in strip.sheets_unprotected:
            print(f"  • {path}")

    if updated:
        print()
        print(f"Properties updated: {', '.join(updated)}")

    if verbose:
        print()
        print(f"Markers removed: {strip.workbook_markers_removed} workbook, "
              f"{strip.sheet_markers_removed} sheet")
        print(f"Output size:     {format_size(len(result.data))}")

    print()
    if result.was_protected:
        print("✓ Protection detected and removed successfully.")
    else:
        print("✓ No protection found. File is already editable.")


def print_properties(input_path: Path, props: PropertySet):
    """Print file details and document properties."""
    stat = input_path.stat()
    print()
    print("=" * 60)
    print("File Details")
    print("=" * 60)
    print()
    print(f"  {'Name':<16}{input_path.name}")
    print(f"  {'Type':<16}{'Excel Workbook' if input_path.suffix.lower() == '.xlsx' else 'Unknown'}")
    print(f"  {'Size':<16}{format_size(stat.st_size)}")
    print(f"  {'Last modified':<16}{datetime.fromtimestamp(stat.st_mtime).strftime('%Y-%m-%d %H:%M:%S')}")
    print()
    print("-" * 60)
    print("Properties:")
    print("-" * 60)
    for field_def in PROPERTY_FIELDS:
        value = getattr(props, field_def.attr)
        print(f"  {field_def.label:<16}{format_value(value)}")
    print()


def cmd_unprotect(args, settings: Settings) -> int:
    check_extension(args.input)
    check_output_args(args)
    edits = parse_assignments(args.set)
    data = read_input(args.input)

    def on_progress(step: Checkpoint):
        if not args.quiet:
            print(f"  {step.value}")

    if not args.quiet:
        print(f"\nUNPROTECT: {args.input}")

    result = unprotect_file(
        data,
        args.input.name,
        on_progress=on_progress,
        layout=settings.layout,
        protection=settings.protection,
        compresslevel=settings.output.compresslevel,
        verbose=args.verbose,
    )

    updated = []
    if not edits.is_empty():
        before = get_properties(result.data, settings.layout)
        output_data = update_properties(
            result.data, edits,
            layout=settings.layout,
            compresslevel=settings.output.compresslevel,
            verbose=args.verbose,
        )
        updated = changed_fields(before, get_properties(output_data, settings.layout))
        result = UnprotectResult(data=output_data, strip=result.strip)

    output_path = None
    if not args.dry_run:
        suffix = (settings.output.unlocked_suffix if result.was_protected
                  else settings.output.processed_suffix)
        output_path = resolve_output(args, suffix)
        write_output(output_path, result.data)

    if not args.quiet:
        print_result(args.input, output_path, result, updated, verbose=args.verbose)
    return 0


def cmd_info(args, settings: Settings) -> int:
    check_extension(args.input)
    data = read_input(args.input)
    props = get_properties(data, settings.layout, verbose=args.verbose)

    if args.json:
        print(json.dumps(props.to_dict(), indent=2, default=format_timestamp))
    elif not args.quiet:
        print_properties(args.input, props)
    return 0


def cmd_edit(args, settings: Settings) -> int:
    check_extension(args.input)
    check_output_args(args)
    edits = parse_assignments(args.set)
    if edits.is_empty():
        raise UsageError("Nothing to edit: pass at least one --set KEY=VALUE")
    data = read_input(args.input)

    before = get_properties(data, settings.layout)
    output_data = update_properties(
        data, edits,
        filename=args.input.name,
        layout=settings.layout,
        compresslevel=settings.output.compresslevel,
        verbose=args.verbose,
    )

    output_path = resolve_output(args, settings.output.processed_suffix)
    write_output(output_path, output_data)

    if not args.quiet:
        updated = changed_fields(before, get_properties(output_data, settings.layout))
        print()
        print(f"Input:  {args.input}")
        print(f"Output: {output_path}")
        print(f"Properties updated: {', '.join(updated) if updated else '(none changed)'}")
        print()
        print("✓ Properties saved!")
    return 0


def _property_help() -> str:
    lines = []
    for field_def in PROPERTY_FIELDS:
        kind = {TIMESTAMP: "ISO 8601 timestamp", BOOLEAN: "true/false"}.get(field_def.kind, "text")
        lines.append(f"  {field_def.key:<16}{field_def.label} ({kind})")
    return "\n".join(lines)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xlsxunlock",
        description="Remove sheet/workbook protection and edit document properties of .xlsx files.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Examples:
  # Remove protection (writes Budget_unlocked.xlsx)
  xlsxunlock unprotect Budget.xlsx

  # Remove protection and set the author in one go
  xlsxunlock unprotect Budget.xlsx out.xlsx --set creator="Jane Doe"

  # Show document properties
  xlsxunlock info Budget.xlsx

  # Edit properties in place
  xlsxunlock edit Budget.xlsx --in-place --set title=Budget --set company=ACME

Properties:
{_property_help()}
        """
    )

    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: xlsxunlock.yaml next to this script)"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show each change as it is made"
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress all output except errors"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    unprotect = commands.add_parser("unprotect", help="Remove sheet and workbook protection")
    unprotect.add_argument("input", type=Path, help="Input XLSX file")
    unprotect.add_argument("output", type=Path, nargs="?", default=None,
                           help="Output XLSX file (default: <name>_unlocked.xlsx)")
    unprotect.add_argument("--in-place", action="store_true", help="Overwrite the input file")
    unprotect.add_argument("-d", "--dry-run", action="store_true",
                           help="Report what would be removed without writing anything")
    unprotect.add_argument("--set", action="append", metavar="KEY=VALUE",
                           help="Also set a document property (repeatable)")
    unprotect.set_defaults(handler=cmd_unprotect)

    info = commands.add_parser("info", help="Show file details and document properties")
    info.add_argument("input", type=Path, help="Input XLSX file")
    info.add_argument("--json", action="store_true", help="Print properties as JSON")
    info.set_defaults(handler=cmd_info)

    edit = commands.add_parser("edit", help="Edit document properties")
    edit.add_argument("input", type=Path, help="Input XLSX file")
    edit.add_argument("output", type=Path, nargs="?", default=None,
                      help="Output XLSX file (default: <name>_processed.xlsx)")
    edit.add_argument("--in-place", action="store_true", help="Overwrite the input file")
    edit.add_argument("--set", action="append", metavar="KEY=VALUE",
                      help="Property to set (repeatable)")
    edit.set_defaults(handler=cmd_edit)

    return parser


def main(argv=None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    try:
        settings = Settings.from_config(load_config(args.config))
        return args.handler(args, settings)
    except (WorkbookError, UsageError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
