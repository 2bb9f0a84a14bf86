from __future__ import annotations

import argparse
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from portfolio_import.config.paths import data_dir, default_db_path, mapping_store_path, private_dir
from portfolio_import.config.settings import get_settings
from portfolio_import.errors import CommitError, ImportFileError, InvalidTransition, MappingIncomplete
from portfolio_import.utils.logging import configure_logging
from portfolio_import.utils.money import format_money, format_shares


def _store(args: argparse.Namespace):
    from portfolio_import.db.repository import SqlHoldingsStore

    return SqlHoldingsStore.from_url(args.database_url, source="dev_cli")


def _cmd_init_db(args: argparse.Namespace) -> int:
    from portfolio_import.db.migrate import migrate

    migrate(args.database_url)
    print("Initialized database schema.")
    return 0


def _cmd_paths(_: argparse.Namespace) -> int:
    print(f"DATA_DIR={data_dir()}")
    print(f"PRIVATE_DIR={private_dir()}")
    print(f"DB_PATH={default_db_path()}")
    print(f"MAPPING_STORE={mapping_store_path()}")
    return 0


def _cmd_detect(args: argparse.Namespace) -> int:
    from portfolio_import.ingest.column_mapping import infer_mapping
    from portfolio_import.ingest.formats import BROKER_LABELS, builtin_mapping, detect_broker
    from portfolio_import.ingest.tables import read_csv_table

    table = read_csv_table(args.path, max_rows=get_settings().max_import_rows)
    broker = detect_broker(table.headers)
    if broker:
        print(f"Format: {BROKER_LABELS[broker]}")
        mapping = builtin_mapping(broker, table.headers)
    else:
        print("Format: unknown (column mapping wizard)")
        mapping = infer_mapping(table.headers)
    print(f"Rows: {table.row_count}")
    for field_name, header in mapping.assigned().items():
        print(f"  {field_name:<13} <- {header}")
    return 0


def _parse_overrides(pairs: list[str]) -> list[tuple[str, str]]:
    from portfolio_import.ingest.column_mapping import canonical_field

    overrides: list[tuple[str, str]] = []
    for pair in pairs:
        field_name, sep, header = pair.partition("=")
        canonical = canonical_field(field_name)
        if not sep or canonical is None:
            raise ValueError(f"Bad --map value '{pair}'; expected field=Header.")
        overrides.append((canonical, header.strip()))
    return overrides


def _run_wizard(session, overrides: list[tuple[str, str]]) -> None:
    wizard = session.wizard
    for field_name, header in overrides:
        if wizard.mapping.get(field_name) != header:
            wizard.select_column(header, field_name)
    print("Column mapping:")
    for field_name, header in wizard.mapping.assigned().items():
        print(f"  {field_name:<13} <- {header}")
    session.finish_mapping()


def _print_review(review, limit: int) -> None:
    from portfolio_import.ingest.issues import warnings_for_row

    stats = review.normalized.stats
    print(f"Rows: {stats.total} total, {stats.valid} valid, {stats.skipped} skipped")
    if review.normalized.needs_review:
        print("Screenshot data: check every row before importing.")
    for trade in review.trades:
        mark = " " if review.is_excluded(trade.row_index) else "x"
        flagged = "!" if warnings_for_row(review.warnings, trade.row_index) else " "
        when = trade.trade_date.date().isoformat() if trade.trade_date else "-"
        print(
            f"[{mark}]{flagged} {trade.row_index + 1:>4} {when:<10} {trade.ticker:<8} "
            f"{trade.action.value:<7} {format_shares(trade.shares):>12} {format_money(trade.price):>12}"
        )
    if review.warning_count:
        print(f"Warnings ({review.warning_count}):")
        for line in review.warning_lines(limit):
            print(f"  {line}")
    print("Positions:")
    for position in review.positions:
        print(
            f"  {position.ticker:<8} {format_shares(position.shares):>14} @ {format_money(position.average_cost)}"
        )


def _cmd_import(args: argparse.Namespace) -> int:
    from portfolio_import.pipeline.session import ImportSession, ImportStep
    from portfolio_import.providers.ocr import IMAGE_SUFFIXES, OcrClient
    from portfolio_import.providers.submission import SubmissionClient

    settings = get_settings()
    session = ImportSession(
        _store(args),
        normalizer=SubmissionClient() if args.remote else None,
        extractor=OcrClient(),
        settings=settings,
    )
    path = Path(args.path)
    if path.suffix.lower() in IMAGE_SUFFIXES:
        session.load_screenshot(path, path.name)
    else:
        session.load_csv(path)

    if session.step == ImportStep.MAPPING:
        _run_wizard(session, _parse_overrides(args.map or []))
    for row_number in args.exclude or []:
        session.review.toggle_row(row_number - 1)

    _print_review(session.review, settings.warning_display_limit)
    if args.dry_run:
        print("Dry run: nothing written.")
        return 0

    session.set_commit_mode(args.mode)
    summary = session.commit()
    print(f"Imported ({args.mode}): added={summary.added} updated={summary.updated} removed={summary.removed}")
    return 0


def _cmd_holdings(args: argparse.Namespace) -> int:
    holdings = _store(args).list_holdings()
    if not holdings:
        print("No holdings.")
        return 0
    for position in holdings:
        print(
            f"{position.ticker:<8} {format_shares(position.shares):>14} @ {format_money(position.average_cost)}"
        )
    return 0


def _cmd_clear(args: argparse.Namespace) -> int:
    from portfolio_import.pipeline.session import ImportSession

    removed = ImportSession(_store(args)).clear_portfolio(args.confirm)
    print(f"Cleared {removed} holdings.")
    return 0


def _cmd_symbols(args: argparse.Namespace) -> int:
    from portfolio_import.providers.symbols import SymbolSearchClient

    matches = SymbolSearchClient().search(args.query, limit=args.limit)
    if not matches:
        print("No matches.")
    for match in matches:
        print(f"{match.symbol:<8} {match.name}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Portfolio import developer CLI")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sp_init_db = subparsers.add_parser("init-db", help="Create/update local database schema")
    sp_init_db.set_defaults(func=_cmd_init_db)

    sp_paths = subparsers.add_parser("paths", help="Print configured project paths")
    sp_paths.set_defaults(func=_cmd_paths)

    sp_detect = subparsers.add_parser("detect", help="Detect the broker format of a CSV")
    sp_detect.add_argument("path")
    sp_detect.set_defaults(func=_cmd_detect)

    sp_import = subparsers.add_parser("import", help="Import a CSV export or screenshot")
    sp_import.add_argument("path")
    sp_import.add_argument("--mode", choices=["replace", "merge"], default="replace")
    sp_import.add_argument(
        "--map",
        action="append",
        metavar="FIELD=HEADER",
        help="Column for a field when the format is not recognized (repeatable).",
    )
    sp_import.add_argument(
        "--exclude",
        action="append",
        type=int,
        metavar="ROW",
        help="Row number to leave out of the position rebuild (repeatable).",
    )
    sp_import.add_argument(
        "--remote",
        action="store_true",
        help="Send mapped rows to the import service instead of normalizing locally.",
    )
    sp_import.add_argument("--dry-run", action="store_true", help="Review only; do not write holdings.")
    sp_import.set_defaults(func=_cmd_import)

    sp_holdings = subparsers.add_parser("holdings", help="List stored holdings")
    sp_holdings.set_defaults(func=_cmd_holdings)

    sp_clear = subparsers.add_parser("clear", help="Delete every stored holding")
    sp_clear.add_argument("--confirm", required=True, help="Type CLEAR to confirm.")
    sp_clear.set_defaults(func=_cmd_clear)

    sp_symbols = subparsers.add_parser("symbols", help="Search ticker symbols")
    sp_symbols.add_argument("query")
    sp_symbols.add_argument("--limit", type=int, default=6)
    sp_symbols.set_defaults(func=_cmd_symbols)

    return parser


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except (ImportFileError, MappingIncomplete, CommitError, InvalidTransition, KeyError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
