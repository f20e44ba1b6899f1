"""Command-line runner for encounter closeout.

Subcommands:
1. slots        - list dosing slot labels and the sub-slots each requires
2. check-times  - validate medication times against a slot
3. closeout     - close out an encounter from a JSON closure file, against
                  the clinic REST API or a local SQLite store
"""

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

from .api_client import ClinicApiClient, get_api_stores
from .closeout import EncounterCloseout
from .config import config
from .db import ClinicDatabase, get_local_stores
from .errors import CollaboratorError, NotFoundError
from .models import DraftEncounterClosure
from .schedule import SLOT_SUB_SLOTS, validate_times

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def cmd_slots(args: argparse.Namespace) -> int:
    print("\n=== Dosing Slots ===")
    for slot, sub_slots in SLOT_SUB_SLOTS.items():
        print(f"  {slot.value:<20} -> {', '.join(s.value for s in sub_slots)}")
    print()
    return 0


def cmd_check_times(args: argparse.Namespace) -> int:
    check = validate_times(args.slot, args.times)
    if check.ok:
        print(f"OK: {len(args.times)} time(s) match slot '{args.slot}'")
        return 0
    print(f"Invalid at index {check.missing_index}: {check.reason}")
    return 1


def load_closure(path: str) -> tuple[DraftEncounterClosure, dict]:
    """Read a JSON closure file. Returns the closure and the raw document."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return DraftEncounterClosure.from_dict(data), data


def cmd_closeout(args: argparse.Namespace) -> int:
    try:
        closure, data = load_closure(args.file)
    except (OSError, ValueError, KeyError) as e:
        logger.error(f"Could not read closure file {args.file}: {e}")
        return 2

    if args.local or args.db_path:
        db = ClinicDatabase(args.db_path)
        try:
            db.get_encounter(closure.encounter.id)
        except NotFoundError:
            # Offline runs start from the encounter in the closure file
            db.save_encounter(closure.encounter)
        catalog, results, encounters = get_local_stores(db)
    else:
        api_url = args.api_url or config.API_BASE_URL
        if not api_url:
            logger.error("No API configured. Set API_BASE_URL, pass --api-url, or use --local")
            return 2
        catalog, results, encounters = get_api_stores(ClinicApiClient(base_url=api_url))

    # A loaded regimen may be referenced by id instead of embedded
    original_id = data.get("originalRegimenId")
    if closure.original_regimen is None and original_id:
        try:
            closure = replace(closure, original_regimen=catalog.get_by_id(original_id))
        except CollaboratorError as e:
            logger.error(f"Could not load regimen {original_id}: {e}")
            return 1

    engine = EncounterCloseout(catalog, results, encounters)
    outcome = engine.closeout(closure)

    print(json.dumps(outcome.to_dict(), indent=2, ensure_ascii=False))
    return 0 if outcome.success else 1


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Close out clinical encounters: record results, resolve ARV regimens, update booking status."
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    slots_parser = subparsers.add_parser("slots", help="List dosing slots")
    slots_parser.set_defaults(func=cmd_slots)

    times_parser = subparsers.add_parser(
        "check-times", help="Validate medication times against a dosing slot"
    )
    times_parser.add_argument("slot", help="Slot label, e.g. 'Sáng và Tối' or 'Morning+Evening'")
    times_parser.add_argument("times", nargs="*", help="Times of day (HH:MM), in sub-slot order")
    times_parser.set_defaults(func=cmd_check_times)

    closeout_parser = subparsers.add_parser(
        "closeout", help="Close out an encounter from a JSON closure file"
    )
    closeout_parser.add_argument("file", help="Path to the JSON closure")
    closeout_parser.add_argument(
        "--local",
        action="store_true",
        help="Use the local SQLite store at CLINIC_DB_PATH instead of the REST API",
    )
    closeout_parser.add_argument(
        "--db-path",
        help="Use the local SQLite store at this path",
    )
    closeout_parser.add_argument(
        "--api-url",
        help="Clinic API base URL (default: API_BASE_URL)",
    )
    closeout_parser.set_defaults(func=cmd_closeout)

    args = parser.parse_args()
    setup_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
