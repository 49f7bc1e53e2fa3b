#!/usr/bin/env python3
import argparse
import logging
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv

from graph_directory import GraphDirectoryClient, SessionError
from group_provisioner import BATCH, INCREMENTAL, GroupProvisioner, RowStatus
from group_sheet import GroupSheet, SheetSchemaError, default_output_path
from run_report import DEFAULT_CSV, DEFAULT_JSON, RunReporter

logger = logging.getLogger("provision_groups")


def configure_logging() -> None:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    log_file = os.getenv("LOG_FILE")
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )


def pick_spreadsheet() -> Optional[str]:
    """Ask for the input workbook with a file dialog; None when cancelled."""
    import tkinter as tk
    from tkinter import filedialog

    root = tk.Tk()
    root.withdraw()
    try:
        path = filedialog.askopenfilename(
            title="Select group definition spreadsheet",
            filetypes=[("Excel workbook", "*.xlsx"), ("All files", "*.*")],
        )
    finally:
        root.destroy()
    return path or None


def pause(enabled: bool) -> None:
    if enabled and sys.stdin.isatty():
        input("Press Enter to exit...")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Create Microsoft 365 mailing groups from a spreadsheet via Graph API")
    ap.add_argument("--xlsx", help="Input workbook (prompts for one when omitted)")
    ap.add_argument("--sheet", help="Worksheet name (default: active sheet)")
    ap.add_argument("--output", help="Annotated copy path (default: <input>_results.xlsx)")
    ap.add_argument("--report", default=DEFAULT_CSV, help="Output CSV report path")
    ap.add_argument("--json", default=DEFAULT_JSON, help="Output JSON report path")
    ap.add_argument("--batch", action="store_true",
                    help="Pass all members to the create call instead of adding them one by one "
                         "(Graph allows at most 20 owners + members per create)")
    ap.add_argument("--delegated", action="store_true",
                    help="Sign in as the principal (device code) instead of using the client secret; "
                         "needed to hide groups from address lists")
    ap.add_argument("--what-if", action="store_true", help="Dry run: log the changes without sending them")
    ap.add_argument("--skip-created", action="store_true",
                    help="Skip rows whose Status column already reads 'Created'")
    ap.add_argument("--principal", default=os.getenv("DEFAULT_OWNER") or None,
                    help="Identity the run acts for; owner of groups whose Owner cell is blank")
    ap.add_argument("--no-pause", action="store_true", help="Do not wait for Enter before exiting")
    return ap


def run(args, client: GraphDirectoryClient) -> int:
    try:
        if not client.has_open_session():
            client.open_session(args.principal)
    except SessionError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    try:
        sheet = GroupSheet.open(args.xlsx, args.sheet)
    except (OSError, SheetSchemaError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    reporter = RunReporter()
    provisioner = GroupProvisioner(
        client,
        mode=BATCH if args.batch else INCREMENTAL,
        default_owner=args.principal,
    )
    try:
        specs = list(sheet.read_specs())
        if args.skip_created:
            kept = [s for s in specs if sheet.existing_status(s.row) != RowStatus.CREATED.value]
            if len(kept) != len(specs):
                logger.info("Skipping %d row(s) already marked Created", len(specs) - len(kept))
            specs = kept
        logger.info("Processing %d group row(s) from %s", len(specs), args.xlsx)

        provisioner.process_all(specs, reporter, on_outcome=sheet.write_outcome)

        sheet.autofit_columns()
        output = args.output or default_output_path(args.xlsx)
        try:
            sheet.save_copy(output)
        except OSError as e:
            print(f"ERROR: could not save annotated copy {output}: {e}", file=sys.stderr)
            output = None
    finally:
        sheet.close()

    reporter.print_summary()
    reporter.export_csv(args.report)
    reporter.export_json(args.json)
    written = [p for p in (output, args.report, args.json) if p]
    print("\nDone. Report(s) written:\n" + "\n".join(f"  • {p}" for p in written))
    return 0 if output else 2


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    configure_logging()

    if not args.xlsx:
        args.xlsx = pick_spreadsheet()
        if not args.xlsx:
            print("Cancelled: no spreadsheet selected.", file=sys.stderr)
            return 1

    try:
        client = GraphDirectoryClient.from_env(what_if=args.what_if, delegated=args.delegated)
    except SessionError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        code = 2
    else:
        code = run(args, client)
    pause(not args.no_pause)
    return code


if __name__ == "__main__":
    sys.exit(main())
