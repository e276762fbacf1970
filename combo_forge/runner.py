"""
Combo Forge runner: CLI entry point.

Usage:
    # Batch search, results persisted per symbol
    python -m combo_forge.runner --symbols SPY QQQ AAPL

    # Single symbol, printed (add --save to persist)
    python -m combo_forge.runner --search SPY --save

    # Live BUY / SELL / HOLD from stored combinations
    python -m combo_forge.runner --signal SPY QQQ

    # Leaderboard of stored results
    python -m combo_forge.runner --best 20 --filtered --sort score_swing_trade

    # Pull bars from Yahoo instead of ./data/<SYMBOL>.csv
    python -m combo_forge.runner --symbols SPY --data-source yahoo

    # Every mix must contain each symbol's best single entry/exit kind
    python -m combo_forge.runner --symbols SPY QQQ --anchor-best-single

    # Strategy catalog
    python -m combo_forge.runner --strategies

Settings come from the environment / .env (see config.py); flags override
the data source and the mandatory / anchored strategy kinds.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path

from combo_forge.backtesting.combinations import ComboResult, SearchConfig
from combo_forge.backtesting.strategies import StrategyKind, get_all_strategies, kind_from_name
from combo_forge.config import get_settings
from combo_forge.services.orchestrator import BatchOrchestrator
from combo_forge.services.result_store import SORTABLE_COLUMNS, ResultStore
from combo_forge.services.series_source import CsvSeriesSource, YahooSeriesSource, source_from_settings
from combo_forge.services.signal_service import get_signal
from combo_forge.utils.db import close_engine

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)-20s %(levelname)-7s %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger("forge.runner")


def format_combo_table(combos: list[ComboResult]) -> str:
    """Leaderboard of stored results."""
    from tabulate import tabulate

    headers = [
        "Symbol", "Entry", "Exit", "Return%", "Check%", "Score", "MaxDD%",
        "Trades", "Win%", "PF", "Swing", "Folds", "Filtered",
    ]
    rows = []
    for c in combos:
        rows.append([
            c.symbol,
            "+".join(k.value for k in c.entry_kinds),
            "+".join(k.value for k in c.exit_kinds),
            f"{c.result.rendement * 100:.2f}",
            f"{c.check.rendement * 100:.2f}",
            f"{c.rendement_score:.4f}",
            f"{c.result.max_drawdown * 100:.1f}",
            c.result.trade_count,
            f"{c.result.win_rate * 100:.1f}",
            f"{c.result.profit_factor:.2f}",
            f"{c.result.swing_trade_score:.2f}",
            c.fold_count,
            "yes" if c.result.filtered_out else "",
        ])
    return tabulate(rows, headers=headers, tablefmt="grid")


def format_combo_detail(combo: ComboResult) -> str:
    lines = [
        f"  {combo.symbol}: {combo.combinations_tested} mixes tested, {combo.fold_count} folds on the winner",
        f"  Entry: {', '.join(f'{k.value} {p}' for k, p in combo.entry_params.items())}",
        f"  Exit:  {', '.join(f'{k.value} {p}' for k, p in combo.exit_params.items())}",
        f"  Walk-forward return {combo.result.rendement * 100:+.2f}%  "
        f"check {combo.check.rendement * 100:+.2f}%  score {combo.rendement_score:+.4f}",
        f"  Overfit ratio {combo.aggregate_overfit_ratio:.2f}  "
        f"{'FILTERED OUT' if combo.result.filtered_out else 'passes stability filter'}",
    ]
    return "\n".join(lines)


def format_strategy_table() -> str:
    """Catalog of strategy kinds with their default search ranges."""
    from tabulate import tabulate

    rows = []
    for strategy in get_all_strategies():
        meta = strategy.meta()
        ranges = ", ".join(f"{name} {lo}-{hi}" if lo != hi else f"{name} {lo}"
                           for name, (lo, hi) in meta.param_ranges.items())
        rows.append([meta.kind.value, meta.name, meta.param_count, ranges, meta.description])
    return tabulate(rows, headers=["Kind", "Name", "Params", "Search ranges", "Description"], tablefmt="grid")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Combo Forge: walk-forward strategy-mix search")

    # Modes
    parser.add_argument("--symbols", nargs="+", default=[], help="Batch search and persist (e.g. SPY QQQ AAPL)")
    parser.add_argument("--search", type=str, default="", help="Search a single symbol and print the result")
    parser.add_argument("--save", action="store_true", help="With --search: persist the result")
    parser.add_argument("--signal", nargs="+", default=[], help="Live signal from stored combinations")
    parser.add_argument("--best", type=int, default=0, help="Show the N best stored results")
    parser.add_argument("--filtered", action="store_true", help="With --best: only results passing the filter")
    parser.add_argument("--sort", type=str, default="rendement_score", choices=SORTABLE_COLUMNS,
                        help="With --best: sort column")
    parser.add_argument("--strategies", action="store_true", help="List the strategy catalog")

    # Search
    kinds = [k.value for k in StrategyKind]
    parser.add_argument("--mandatory-in", type=str, default="", choices=[""] + kinds,
                        help="Force this kind into every entry subset (overrides MANDATORY_ENTRY)")
    parser.add_argument("--mandatory-out", type=str, default="", choices=[""] + kinds,
                        help="Force this kind into every exit subset (overrides MANDATORY_EXIT)")
    parser.add_argument("--anchor-best-single", action="store_true",
                        help="Anchor unset sides on each symbol's best single in/out pair")

    # Data
    parser.add_argument("--data-source", type=str, default="", choices=["", "csv", "yahoo"],
                        help="Override DATA_SOURCE")
    parser.add_argument("--data-dir", type=str, default="", help="Override DATA_DIR (csv source)")

    # Output
    parser.add_argument("--output", type=str, default="", help="Save results to JSON file")
    parser.add_argument("--verbose", action="store_true", help="Verbose logging")

    args = parser.parse_args(argv)

    if not (args.symbols or args.search or args.signal or args.best or args.strategies):
        parser.print_help()
        return 2

    settings = get_settings()
    logging.getLogger().setLevel(logging.DEBUG if args.verbose else settings.log_level.upper())

    if args.data_source == "yahoo":
        source = YahooSeriesSource(settings.yahoo_period, settings.yahoo_interval)
    elif args.data_source == "csv" or args.data_dir:
        source = CsvSeriesSource(args.data_dir or settings.data_dir)
    else:
        source = source_from_settings(settings)

    mandatory_entry, mandatory_exit = settings.mandatory_kinds
    if args.mandatory_in:
        mandatory_entry = kind_from_name(args.mandatory_in)
    if args.mandatory_out:
        mandatory_exit = kind_from_name(args.mandatory_out)

    if args.strategies:
        print(format_strategy_table())
        if not (args.symbols or args.search or args.signal or args.best):
            return 0

    store = ResultStore()
    orchestrator = BatchOrchestrator(
        source,
        store,
        SearchConfig.from_settings(settings),
        max_workers=settings.resolved_workers,
        insert_only=settings.insert_only,
        max_bars=settings.max_bars,
        mandatory_entry=mandatory_entry,
        mandatory_exit=mandatory_exit,
        anchor_best_single=args.anchor_best_single or settings.anchor_best_single,
    )
    output: dict = {"timestamp": datetime.now(timezone.utc).isoformat()}
    start_time = time.time()
    exit_code = 0

    if args.search:
        combo = orchestrator.find_best_combination(args.search)
        print(f"\n{'═' * 60}")
        print(format_combo_detail(combo))
        print(f"{'═' * 60}")
        if args.save:
            store.upsert(combo.symbol, combo)
        output["search"] = combo.to_dict()

    if args.symbols:
        snap = orchestrator.run_batch(args.symbols)
        print(f"\n{'═' * 60}")
        print(f"  BATCH {snap.status.value.upper()}: {snap.processed}/{snap.total} processed, "
              f"{snap.inserted} inserted, {snap.updated} updated, "
              f"{snap.skipped} skipped, {snap.errors} errors")
        print(f"{'═' * 60}")
        output["batch"] = snap.to_dict()
        if snap.errors:
            exit_code = 1

    if args.signal:
        signals = {}
        for symbol in args.signal:
            signals[symbol] = get_signal(symbol, store, source, settings.signal_bars).value
            print(f"  {symbol:10s} {signals[symbol]}")
        output["signals"] = signals

    if args.best:
        combos = store.best_performers(limit=args.best, sort=args.sort, filtered=args.filtered)
        if combos:
            print(format_combo_table(combos))
        else:
            print("  No stored results match.")
        output["best"] = [c.to_dict() for c in combos]

    log.info("Done in %.1fs", time.time() - start_time)
    close_engine()

    if args.output:
        output_path = Path(args.output)
        with open(output_path, "w") as f:
            json.dump(output, f, indent=2, default=str)
        print(f"\n  Results saved to {output_path}")

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
