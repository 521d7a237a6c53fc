"""
Command-line interface for geoip-tree.

Provides commands for looking up addresses, showing database metadata
and building databases from JSON.
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from .errors import GeoIP2Error
from .format import pretty_print, to_json
from .geoip import GeoIP2
from .writer import WriterConfig, DatabaseWriter, load_networks


# Default database path, overridden by -d/--database
DATABASE_ENV_VAR = "GEOIP_TREE_DATABASE"


def _add_database_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-d", "--database",
        type=Path,
        default=None,
        help=f"Database file (default: ${DATABASE_ENV_VAR})",
    )
    parser.add_argument(
        "--mode",
        choices=["mmap", "memory"],
        default="mmap",
        help="How to open the database (default: mmap)",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="geoip-tree",
        description="Look up addresses in MaxMind DB databases",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Log progress (-vv for debug output)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Lookup command
    lookup_parser = subparsers.add_parser(
        "lookup",
        help="Look up one or more addresses",
    )
    _add_database_argument(lookup_parser)
    lookup_parser.add_argument(
        "addresses",
        nargs="+",
        help="IPv4 or IPv6 addresses",
    )
    lookup_parser.add_argument(
        "--json",
        action="store_true",
        help="Print JSON instead of formatted text",
    )
    lookup_parser.add_argument(
        "--compact",
        action="store_true",
        help="Print JSON on a single line (implies --json)",
    )

    # Metadata command
    metadata_parser = subparsers.add_parser(
        "metadata",
        help="Show database metadata",
    )
    _add_database_argument(metadata_parser)
    metadata_parser.add_argument(
        "--json",
        action="store_true",
        help="Print JSON instead of formatted text",
    )

    # Build command
    build_parser = subparsers.add_parser(
        "build",
        help="Build a database from a JSON file of network -> record",
    )
    build_parser.add_argument(
        "input",
        type=Path,
        help="JSON file mapping CIDR networks to records",
    )
    build_parser.add_argument(
        "-o", "--output",
        type=Path,
        required=True,
        help="Output database path",
    )
    build_parser.add_argument(
        "--ip-version",
        type=int,
        choices=[4, 6],
        default=6,
        help="IP version of the search tree (default: 6)",
    )
    build_parser.add_argument(
        "--record-size",
        type=int,
        choices=[24, 28, 32],
        default=28,
        help="Bits per search tree record (default: 28)",
    )
    build_parser.add_argument(
        "--database-type",
        type=str,
        default="GeoIP2-City",
        help="database_type metadata value (default: GeoIP2-City)",
    )
    build_parser.add_argument(
        "--language",
        action="append",
        dest="languages",
        default=None,
        help="Language code for the metadata (repeatable, default: en)",
    )
    build_parser.add_argument(
        "--no-pointers",
        action="store_true",
        help="Write repeated strings in full instead of as pointers",
    )

    return parser


def _database_path(args: argparse.Namespace) -> Optional[Path]:
    if args.database is not None:
        return args.database
    env_path = os.environ.get(DATABASE_ENV_VAR)
    return Path(env_path) if env_path else None


def cmd_lookup(args: argparse.Namespace) -> int:
    """Handle the lookup command."""
    path = _database_path(args)
    if path is None:
        print(f"Error: no database given (use -d or set {DATABASE_ENV_VAR})", file=sys.stderr)
        return 1

    status = 0
    with GeoIP2(path, mode=args.mode) as db:
        for address in args.addresses:
            try:
                result = db.lookup(address)
                if args.json or args.compact:
                    text = result.to_json(pretty=not args.compact, sort_keys=True)
                else:
                    text = result.pretty_print()
            except GeoIP2Error as e:
                print(f"Error: {address}: {e}", file=sys.stderr)
                status = 1
                continue

            if len(args.addresses) > 1:
                print(f"{address}:")
            print(text)

    return status


def cmd_metadata(args: argparse.Namespace) -> int:
    """Handle the metadata command."""
    path = _database_path(args)
    if path is None:
        print(f"Error: no database given (use -d or set {DATABASE_ENV_VAR})", file=sys.stderr)
        return 1

    with GeoIP2(path, mode=args.mode) as db:
        metadata = db.metadata()

    if args.json:
        print(to_json(metadata, sort_keys=True))
    else:
        print(pretty_print(metadata))
    return 0


def cmd_build(args: argparse.Namespace) -> int:
    """Handle the build command."""
    print(f"Building {args.output} from {args.input}...")

    try:
        networks = load_networks(args.input)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    config = WriterConfig(
        ip_version=args.ip_version,
        record_size=args.record_size,
        database_type=args.database_type,
        languages=args.languages or ["en"],
        use_pointers=not args.no_pointers,
    )
    writer = DatabaseWriter(config)
    try:
        for network, record in networks:
            writer.insert(network, record)
        stats = writer.write(args.output)
    except (TypeError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print("\nBuild statistics:")
    print(f"  Networks inserted: {stats.networks_inserted}")
    print(f"  Search tree nodes: {stats.node_count}")
    print(f"  Records written: {stats.records_written}")
    print(f"  Pointers written: {stats.pointers_written}")
    print(f"  Data section size: {stats.data_section_size}")
    print(f"Wrote {stats.file_size} bytes to {args.output}")

    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        level = logging.DEBUG if args.verbose > 1 else logging.INFO
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    if args.command is None:
        parser.print_help()
        return 1

    try:
        if args.command == "lookup":
            return cmd_lookup(args)
        elif args.command == "metadata":
            return cmd_metadata(args)
        elif args.command == "build":
            return cmd_build(args)
    except GeoIP2Error as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
