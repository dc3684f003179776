"""Command-line entry points for the warehouse ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the requests consumed by the business layer, and
printing results. Keeping the CLI thin ensures the same parser configuration
can be reused by tests, scripts, or any alternative front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, data_manager, log
from .constants import ALL_SUBWAREHOUSES, STOCK_LEVEL_BUCKETS
from .query_filter import FilterCriteria, FilterPanel, filter_entries, filter_exits, filter_stock


@dataclass(frozen=True)
class CommandSpec:
    """Name, help text, argument registrar, and executor of one sub-command."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Top-level ``warehouse-cli`` parser carrying the global ``--config`` option."""
    parser = argparse.ArgumentParser(
        prog="warehouse-cli",
        description="Command-line tools for the warehouse stock ledger.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Attach every write and read sub-command to ``parser``."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as entries, exits, and imports."""
    specs = {
        "add-product": _spec("add-product", "Register a new product in the catalog.", _add_product_arguments, run_add_product),
        "edit-product": _spec("edit-product", "Change a product's name or subwarehouse.", _edit_product_arguments, run_edit_product),
        "delete-product": _spec("delete-product", "Remove a product from the catalog.", _product_id_argument, run_delete_product),
        "entry": _spec("entry", "Record an entry (stock in).", _entry_arguments, run_entry),
        "exit": _spec("exit", "Record an exit (stock out); requires a batch.", _exit_arguments, run_exit),
        "delete": _spec("delete", "Delete a transaction by id.", _transaction_id_argument, run_delete),
        "import": _spec("import", "Import entries from a CSV or XLSX file.", _import_arguments, run_import),
        "mark": _spec("mark", "Toggle the mark on a transaction id.", _transaction_id_argument, run_mark),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as the stock and movement views."""
    specs = {
        "stock": _spec("stock", "Display current stock levels.", _stock_filter_arguments, run_stock_report),
        "entries": _spec("entries", "Display entry movements.", _entry_filter_arguments, run_entries_report),
        "exits": _spec("exits", "Display exit movements.", _exit_filter_arguments, run_exits_report),
        "marked": _spec("marked", "List marked transaction ids.", None, run_marked_report),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _spec(
    name: str,
    help_text: str,
    add_arguments: Optional[Callable[[argparse.ArgumentParser], None]],
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        if add_arguments is not None:
            add_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def _product_id_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--product-id", required=True)


def _transaction_id_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("transaction_id")


def _add_product_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--product-id", required=True)
    parser.add_argument("--product-name", required=True)
    parser.add_argument("--subwarehouse", required=True)


def _edit_product_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--product-id", required=True)
    parser.add_argument("--product-name", default=None)
    parser.add_argument("--subwarehouse", default=None)


def _entry_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--product-id", required=True)
    parser.add_argument("--quantity", type=int, required=True)
    parser.add_argument("--notes", default=None)


def _exit_arguments(parser: argparse.ArgumentParser) -> None:
    _entry_arguments(parser)
    parser.add_argument("--batch", default=None)


def _import_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("file", type=Path)
    parser.add_argument("--yes", action="store_true", help="Commit the valid rows without asking.")


def _search_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--search", action="append", default=[], help="Search text; repeat to match any of several terms.")


def _export_argument(parser: argparse.ArgumentParser, file_kind: str) -> None:
    parser.add_argument(
        "--export",
        type=Path,
        default=None,
        metavar="PATH",
        help=f"Write the listed rows to a {file_kind} report instead of printing them.",
    )


def _stock_filter_arguments(parser: argparse.ArgumentParser) -> None:
    _search_argument(parser)
    parser.add_argument("--subwarehouse", default=ALL_SUBWAREHOUSES)
    parser.add_argument(
        "--level",
        type=int,
        action="append",
        default=[],
        choices=STOCK_LEVEL_BUCKETS,
        help="Stock level bucket; %d means that many or more." % STOCK_LEVEL_BUCKETS[-1],
    )
    _export_argument(parser, "XLSX")


def _date_filter_arguments(parser: argparse.ArgumentParser) -> None:
    _search_argument(parser)
    parser.add_argument("--since", type=date.fromisoformat, default=None, help="First day (YYYY-MM-DD).")
    parser.add_argument("--until", type=date.fromisoformat, default=None, help="Last day (YYYY-MM-DD).")


def _entry_filter_arguments(parser: argparse.ArgumentParser) -> None:
    _date_filter_arguments(parser)
    _export_argument(parser, "XLSX")


def _exit_filter_arguments(parser: argparse.ArgumentParser) -> None:
    _date_filter_arguments(parser)
    _export_argument(parser, "CSV")
    parser.add_argument("--subwarehouse", default=ALL_SUBWAREHOUSES)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Load the context from ``--config`` (or ./config.ini) and check its schema."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    context = core_logic.load_runtime_context(target)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Run the executor registered for ``args.command``."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Index command specs by name, refusing duplicates."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_filters(args: argparse.Namespace) -> FilterCriteria:
    """Translate CLI filter options into applied criteria."""
    panel = FilterPanel()
    panel.set_search(list(getattr(args, "search", []) or []))
    panel.stage(
        subwarehouse=getattr(args, "subwarehouse", ALL_SUBWAREHOUSES),
        stock_levels=getattr(args, "level", []) or [],
        start=getattr(args, "since", None),
        end=getattr(args, "until", None),
    )
    return panel.apply()


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    product = core_logic.add_product(
        context,
        product_id=args.product_id,
        product_name=args.product_name,
        subwarehouse=args.subwarehouse,
    )
    print(f"Added product {product.product_id}: {product.product_name} [{product.subwarehouse}]")
    return 0


def run_edit_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    product = core_logic.update_product(
        context,
        args.product_id,
        product_name=args.product_name,
        subwarehouse=args.subwarehouse,
    )
    print(f"Updated product {product.product_id}: {product.product_name} [{product.subwarehouse}]")
    return 0


def run_delete_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_product(context, args.product_id)
    print(f"Deleted product {args.product_id}")
    return 0


def run_entry(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    transaction = core_logic.record_entry(context, args.product_id, args.quantity, notes=args.notes)
    print(f"Recorded entry {transaction.transaction_id}")
    return 0


def run_exit(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    transaction = core_logic.record_exit(context, args.product_id, args.quantity, args.batch, notes=args.notes)
    print(f"Recorded exit {transaction.transaction_id}")
    return 0


def run_delete(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_transaction(context, args.transaction_id)
    print(f"Deleted transaction {args.transaction_id}")
    return 0


def run_mark(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    marked = core_logic.toggle_mark(context, args.transaction_id)
    state = "marked" if args.transaction_id in marked else "unmarked"
    print(f"Transaction {args.transaction_id} {state}")
    return 0


def run_import(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Reconcile an import file, print the outcome, and commit on ``--yes``."""
    session = core_logic.import_file(context, args.file)
    outcome = session.outcome
    for error in outcome.errors:
        print(f"Row {error.row}: {error.reason.value} - {error.detail}")
    print(
        f"{outcome.valid_count} valid entr{'y' if outcome.valid_count == 1 else 'ies'}, "
        f"{len(outcome.errors)} rejected row(s), {len(outcome.skipped_rows)} zero-quantity row(s)"
    )
    if not session.can_confirm:
        print("Import failed: no valid entries found.")
        return 2
    if not args.yes:
        session.discard()
        print("Nothing committed; re-run with --yes to register the valid entries.")
        return 0
    committed = core_logic.confirm_import(context, session)
    print(f"Committed {len(committed)} entr{'y' if len(committed) == 1 else 'ies'}.")
    return 0


def _format_transaction(transaction: data_manager.TransactionRow, product_name: str, marked: bool) -> str:
    flag = "*" if marked else " "
    extra = f" batch={transaction.batch}" if transaction.batch else ""
    where = f" [{transaction.subwarehouse}]" if transaction.subwarehouse else ""
    return (
        f"{flag} {transaction.transaction_id}  {transaction.timestamp_iso}  "
        f"{transaction.product_id} {product_name}  x{transaction.quantity}{extra}{where}"
    )


def _report_exported(count: int, path: Path) -> int:
    print(f"Exported {count} row(s) to {path}")
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    snapshot = core_logic.recompute(context)
    rows = filter_stock(snapshot.stock_rows, translate_filters(args))
    if args.export is not None:
        return _report_exported(data_manager.export_stock_report(args.export, rows), args.export)
    for row in rows:
        print(f"{row.product_id}\t{row.product_name}\t{row.subwarehouse}\t{row.stock}")
    return 0


def run_entries_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    snapshot = core_logic.recompute(context)
    lookup = snapshot.product_lookup
    entries = filter_entries(snapshot.transactions, lookup, translate_filters(args))
    if args.export is not None:
        names = {product_id: product.product_name for product_id, product in lookup.items()}
        return _report_exported(data_manager.export_entries_report(args.export, entries, names), args.export)
    marked = core_logic.marked_ids(context)
    for transaction in entries:
        name = lookup[transaction.product_id].product_name
        print(_format_transaction(transaction, name, transaction.transaction_id in marked))
    return 0


def run_exits_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    snapshot = core_logic.recompute(context)
    lookup = snapshot.product_lookup
    exits = filter_exits(snapshot.transactions, lookup, translate_filters(args))
    if args.export is not None:
        return _report_exported(data_manager.export_exits_report(args.export, exits), args.export)
    marked = core_logic.marked_ids(context)
    for transaction in exits:
        name = lookup[transaction.product_id].product_name
        print(_format_transaction(transaction, name, transaction.transaction_id in marked))
    return 0


def run_marked_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for transaction_id in sorted(core_logic.marked_ids(context)):
        print(transaction_id)
    return 0


def handle_cli_error(error: Exception) -> int:
    """Log ``error`` and map it to the documented exit code."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, data_manager.PersistenceError):
        log.error("Storage failure: %s", error)
        return 4
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """Parse ``argv``, run one sub-command, and return its exit code."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:
        return handle_cli_error(error)
