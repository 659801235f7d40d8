from __future__ import annotations

import argparse
import logging
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Sequence, TextIO

from pydantic import ValidationError

from config import config
from db.import_cache import ImportCacheRepository, init_import_cache_db
from domain.balance_check import BalanceFailure, check_balances
from domain.booking import BookingDiagnostic, book_ledger
from domain.closing import ClosingDecider, ClosingReport, apply_closing
from domain.ledger import Account, BeancountFile, Currency, Directive, Ledger
from domain.split import SplitError, apply_split
from importers.revolut_importer import RevolutImporter
from services.ledger_store import LedgerReadError, dump_file, dump_ledger, load_ledger, save_ledger
from utils.formatting import format_amount, format_decimal, render_directive, render_file, render_ledger

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_DIAGNOSTICS = 1
EXIT_FATAL = 2

REVOLUT_SOURCE = "revolut"


def run_normalize(args: argparse.Namespace) -> int:
    ledger = load_ledger(args.path)
    emit(ledger, in_place=args.in_place, output_format=args.format)
    return EXIT_OK


def run_check(args: argparse.Namespace) -> int:
    ledger = load_ledger(args.path)
    diagnostics = book_ledger(ledger)
    print_booking_diagnostics(diagnostics, stream=sys.stdout)
    if args.in_place:
        save_ledger(ledger)
    return EXIT_DIAGNOSTICS if diagnostics else EXIT_OK


def run_split(args: argparse.Namespace) -> int:
    ledger = load_ledger(args.path)
    diagnostics = book_ledger(ledger)
    report = apply_split(ledger, Currency(args.commodity), args.ratio)
    print_booking_diagnostics(diagnostics, stream=sys.stderr)
    print(
        f"Split {args.commodity} by {args.ratio}: {report.balances} balances, "
        f"{report.prices} prices, {report.postings} postings",
        file=sys.stderr,
    )
    emit(ledger, in_place=args.in_place, output_format=args.format)
    return EXIT_DIAGNOSTICS if diagnostics else EXIT_OK


def run_closing(args: argparse.Namespace) -> int:
    settings = config()
    ledger = load_ledger(args.path)
    diagnostics = book_ledger(ledger)
    decide = make_console_decider() if args.interactive else None
    report = apply_closing(
        ledger,
        args.days if args.days is not None else settings.closing_window_days,
        clearing_account=Account(args.account or settings.clearing_account),
        decide=decide,
        open_date=settings.closing_open_date,
        balance_date=settings.closing_balance_date,
        max_candidates=settings.closing_max_candidates,
    )
    print_booking_diagnostics(diagnostics, stream=sys.stderr)
    print_closing_report(report, stream=sys.stderr)
    emit(ledger, in_place=args.in_place, output_format=args.format)
    return EXIT_DIAGNOSTICS if diagnostics or report.skipped else EXIT_OK


def run_fix_balance(args: argparse.Namespace) -> int:
    ledger = load_ledger(args.path)
    diagnostics = book_ledger(ledger)
    tolerance = args.tolerance if args.tolerance is not None else config().balance_tolerance
    failures = check_balances(ledger, tolerance=tolerance)
    print_booking_diagnostics(diagnostics, stream=sys.stdout)
    print_balance_failures(failures, stream=sys.stdout)
    if args.in_place:
        save_ledger(ledger)
    return EXIT_DIAGNOSTICS if diagnostics or failures else EXIT_OK


def run_import_revolut(args: argparse.Namespace) -> int:
    repository: ImportCacheRepository | None = None
    known: set[str] = set()
    if not args.no_cache:
        cache_path = args.cache or config().import_cache_path
        repository = ImportCacheRepository(init_import_cache_db(cache_path))
        known = repository.known_ids(REVOLUT_SOURCE)

    imported = BeancountFile()
    for csv_path in args.csv:
        importer = RevolutImporter(csv_path, account_prefix=args.account_prefix, fee_account=args.fee_account)
        imported.directives.extend(importer.load_file(skip_ids=known).directives)
    imported.directives.sort(key=lambda directive: directive.date)

    if args.format == "json":
        sys.stdout.write(dump_file(imported))
    else:
        sys.stdout.write(render_file(imported))

    if repository is not None:
        import_ids = [
            link for _, _, transaction in Ledger.single(imported).transactions() for link in transaction.links
        ]
        repository.mark_imported(REVOLUT_SOURCE, import_ids)
    return EXIT_OK


def emit(ledger: Ledger, *, in_place: bool, output_format: str) -> None:
    if in_place:
        save_ledger(ledger)
        return
    if output_format == "json":
        sys.stdout.write(dump_ledger(ledger))
    elif len(ledger.files) == 1:
        sys.stdout.write(render_file(ledger.root))
    else:
        sys.stdout.write(render_ledger(ledger))


def print_booking_diagnostics(diagnostics: Sequence[BookingDiagnostic], *, stream: TextIO) -> None:
    for diagnostic in diagnostics:
        print(f"{diagnostic.path}: {diagnostic.error}", file=stream)
        print(render_directive(diagnostic.directive), file=stream)


def print_closing_report(report: ClosingReport, *, stream: TextIO) -> None:
    for match in report.matches:
        print(f"Closed {match.account} ({match.currency}):", file=stream)
        print(render_directive(match.first), file=stream)
        print(render_directive(match.second), file=stream)
    for skipped in report.skipped:
        print(str(skipped), file=stream)
        print(render_directive(skipped.directive), file=stream)
    print(f"Closing: {len(report.matches)} pairs matched, {len(report.skipped)} skipped", file=stream)


def print_balance_failures(failures: Sequence[BalanceFailure], *, stream: TextIO) -> None:
    for failure in failures:
        print(
            f"Balance failed for {failure.directive.date.isoformat()} {failure.balance.account}, "
            f"expected {format_amount(failure.balance.amount)} got {format_decimal(failure.actual)}"
            f"{' (but fixed later)' if failure.fixed_later else ''}",
            file=stream,
        )


def make_console_decider(
    read_line: Callable[[], str] | None = None,
    stream: TextIO | None = None,
) -> ClosingDecider:
    read = read_line or sys.stdin.readline
    out = stream or sys.stderr

    def decide(directive: Directive, candidates: Sequence[Directive]) -> int | None:
        print("No unique closing match for:", file=out)
        print(render_directive(directive), file=out)
        for number, candidate in enumerate(candidates, start=1):
            print(f"[{number}]", file=out)
            print(render_directive(candidate), file=out)
        print(f"Choose 1-{len(candidates)}, or press enter to skip: ", end="", file=out, flush=True)

        answer = read().strip().lower()
        if answer in ("", "n", "no"):
            return None
        try:
            choice = int(answer)
        except ValueError:
            logger.info("Ignoring closing answer %r", answer)
            return None
        if 1 <= choice <= len(candidates):
            return choice - 1
        return None

    return decide


def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid integer value: {value!r}") from exc
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {number}")
    return number


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"invalid decimal value: {value!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="beanbook", description="Balance, close and restate beancount ledgers.")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("path", type=Path, help="root ledger file (JSON)")
    common.add_argument("-i", "--in-place", action="store_true", help="rewrite the ledger files")
    common.add_argument("--format", choices=("text", "json"), default="text", help="stdout format")

    subparsers = parser.add_subparsers(dest="command", required=True)

    normalize = subparsers.add_parser("normalize", parents=[common], help="re-emit the ledger")
    normalize.set_defaults(handler=run_normalize)

    check = subparsers.add_parser("check", parents=[common], help="report unbalanced transactions")
    check.set_defaults(handler=run_check)

    split = subparsers.add_parser("split", parents=[common], help="restate a commodity after a split")
    split.add_argument("commodity")
    split.add_argument("ratio", type=_decimal)
    split.set_defaults(handler=run_split)

    closing = subparsers.add_parser("closing", parents=[common], help="pair postings to the clearing account")
    closing.add_argument("--days", type=_non_negative_int, default=None, help="matching window in days")
    closing.add_argument("--account", default=None, help="clearing account")
    closing.add_argument("--interactive", action="store_true", help="ask when no unique match exists")
    closing.set_defaults(handler=run_closing)

    fix_balance = subparsers.add_parser("fix-balance", parents=[common], help="report failing balance assertions")
    fix_balance.add_argument("--tolerance", type=_decimal, default=None)
    fix_balance.set_defaults(handler=run_fix_balance)

    revolut = subparsers.add_parser("import-revolut", help="import Revolut statement CSV files")
    revolut.add_argument("csv", type=Path, nargs="+")
    revolut.add_argument("--account-prefix", required=True)
    revolut.add_argument("--fee-account", required=True)
    revolut.add_argument("--cache", type=Path, default=None, help="sqlite import cache")
    revolut.add_argument("--no-cache", action="store_true")
    revolut.add_argument("--format", choices=("text", "json"), default="text")
    revolut.set_defaults(handler=run_import_revolut)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        return args.handler(args)
    except (LedgerReadError, SplitError, ValidationError) as err:
        print(f"error: {err}", file=sys.stderr)
        return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
