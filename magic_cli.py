#!/usr/bin/env python
"""
Command-line front-end for the evolutionary magic-square solver.

    magic-square                 # 10 000 iterations
    magic-square -i 2500         # 2 500 iterations
    magic-square -inf            # run until a square is found
    magic-square -i              # ask interactively
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence

import matplotlib.pyplot as plt

from magic_ea import EAConfig, MagicEA, plot_benchmark, save_benchmark
from magic_square import SIZE

MAX_ITERATIONS = 10000
PROMPT_MIN_ITERATIONS = 1000
PROMPT_MAX_ITERATIONS = 100000


# --------------------------------------------------------------------------- #
#  Prompt helpers
# --------------------------------------------------------------------------- #
def prompt_choice(msg: str, choices: Sequence[str]) -> str:
    while True:
        print(msg)
        raw = input().strip().lower()
        if raw in choices:
            return raw


def prompt_int(msg: str, min_val: int, max_val: int) -> int:
    while True:
        print(msg)
        raw = input().strip().replace(" ", "")
        try:
            val = int(raw)
        except ValueError:
            continue
        if min_val <= val <= max_val:
            return val


def ask_run_length() -> tuple[int, bool]:
    """Interactive replacement for ``-i N`` / ``-inf``."""
    if prompt_choice("Run in infinite loop? [y/n]", ("y", "n")) == "y":
        return MAX_ITERATIONS, True
    iterations = prompt_int("Amount of iterations? [1 000 - 100 000]",
                            PROMPT_MIN_ITERATIONS, PROMPT_MAX_ITERATIONS)
    return iterations, False


# --------------------------------------------------------------------------- #
#  CLI
# --------------------------------------------------------------------------- #
def _positive_int(raw: str) -> int:
    try:
        val = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {raw!r}")
    if val < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {val}")
    return val


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="magic-square",
                                description=f"Evolutionary {SIZE}x{SIZE} magic-square solver")
    p.add_argument("-i", dest="iterations", nargs="?", type=_positive_int,
                   const=None, default=MAX_ITERATIONS, metavar="N",
                   help="number of iterations; without a value, ask interactively "
                        "(the answer to the prompt overrides -inf)")
    p.add_argument("-inf", dest="infinite", action="store_true",
                   help="run until a magic square is found")
    p.add_argument("--pop", type=int, default=EAConfig.population_size,
                   help="population size (even, >= 4)")
    p.add_argument("--seed", type=int, default=None,
                   help="seed the random generator for a reproducible run")
    p.add_argument("--plot", action="store_true",
                   help="show a live plot (benchmark charts with --benchmark)")
    p.add_argument("--quiet", action="store_true",
                   help="only print the final result, not every generation")
    p.add_argument("--log-level", default="WARNING",
                   choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    p.add_argument("--benchmark", type=_positive_int, metavar="RUNS", default=None,
                   help="repeat silent runs and save a CSV summary instead of a single run")
    return p


def parse_args(argv: Sequence[str] | None = None) -> tuple[EAConfig, argparse.Namespace]:
    args = build_parser().parse_args(argv)

    if args.iterations is None:
        iterations, infinite = ask_run_length()
    else:
        iterations, infinite = args.iterations, args.infinite

    cfg = EAConfig(population_size=args.pop,
                   max_iterations=iterations,
                   infinite=infinite,
                   seed=args.seed,
                   plot=args.plot,
                   verbose=not args.quiet)
    return cfg, args


def main(argv: Sequence[str] | None = None) -> int:
    try:
        cfg, args = parse_args(argv)
    except EOFError:
        print("\nNo input, exiting.")
        return 1

    logging.basicConfig(level=getattr(logging, args.log_level),
                        format="[%(levelname)s] %(name)s: %(message)s")
    try:
        cfg.validate()
    except ValueError as exc:
        print(f"❌  {exc}", file=sys.stderr)
        return 2

    if args.benchmark:
        df = MagicEA.benchmark([cfg.order], cfg, runs=args.benchmark)
        path = save_benchmark(df)
        print(f"\nBenchmark complete – results saved to '{path}'\n")
        print(df.to_string(index=False))
        if args.plot:
            plot_benchmark(df)
            plt.show()
        return 0

    result = MagicEA(cfg).run()
    if result.solved:
        print(f"✨ Magic square found in {result.iterations} generations "
              f"({result.elapsed:.2f}s)")
    else:
        print(f"No solution after {result.iterations} generations – "
              f"best fitness {result.best.fitness}")
    if args.quiet:
        print(result.best)
    return 0


if __name__ == "__main__":
    sys.exit(main())
