"""
Generational evolutionary search for an N×N magic square.

Each generation: evaluate → report → select → breed → adapt mutation rate →
mutate → reshuffle or replace part of the population.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from magic_square import (
    REPAIR_ATTEMPTS,
    SIZE,
    Square,
    crossover,
    evaluate_population,
    magic_constant,
    make_rng,
    mutation,
    parent_selection,
    random_population,
    swap,
)

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------- #
#  Hyper-parameter bundle
# --------------------------------------------------------------------------- #
@dataclass
class EAConfig:
    order: int = SIZE                       # magic-square size N
    population_size: int = 10000
    max_iterations: int = 10000             # ignored when infinite
    infinite: bool = False
    base_mutation_probability: float = 0.1
    mutation_step: float = 0.1
    repair_attempts: int = REPAIR_ATTEMPTS
    preview_count: int = 5                  # fitness values shown per generation
    seed: int | None = None                 # None → OS entropy
    plot: bool = False
    verbose: bool = True

    def validate(self) -> "EAConfig":
        if self.order < 3:
            raise ValueError(f"order must be >= 3, got {self.order}")
        if self.population_size < 4 or self.population_size % 2:
            raise ValueError(
                f"population size must be an even number >= 4, got {self.population_size}")
        if not self.infinite and self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        for name in ("base_mutation_probability", "mutation_step"):
            value = getattr(self, name)
            if not 0 < value <= 1:
                raise ValueError(f"{name} must be in (0, 1], got {value}")
        if self.repair_attempts < 1:
            raise ValueError(f"repair_attempts must be >= 1, got {self.repair_attempts}")
        return self


class RunState(enum.Enum):
    RUNNING = "running"
    SOLVED = "solved"
    EXHAUSTED = "exhausted"


@dataclass
class RunResult:
    state: RunState
    best: Square
    iterations: int
    history: List[int] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def solved(self) -> bool:
        return self.state is RunState.SOLVED


# --------------------------------------------------------------------------- #
#  Evolution loop
# --------------------------------------------------------------------------- #
class MagicEA:
    def __init__(self, cfg: EAConfig | None = None) -> None:
        self.cfg = (cfg or EAConfig()).validate()
        self.rng = make_rng(self.cfg.seed)
        self.magic_sum = magic_constant(self.cfg.order)
        self.population = random_population(self.cfg.population_size, self.cfg.order, self.rng)

        self.state = RunState.RUNNING
        self.iteration = 0
        self.last_fitness = -1
        self.mutation_probability = self.cfg.base_mutation_probability
        self.unchanged_count = 0
        self.best: Square | None = None
        self.history: List[int] = []
        self.avg_history: List[float] = []

        self._fig = None
        self._ax = None
        self._fitness_ax = None

    # ---------- One generation ------------------------------------------- #
    def step(self) -> RunState:
        """Run a single generation and return the resulting state."""
        if self.state is not RunState.RUNNING:
            return self.state
        cfg = self.cfg
        population = self.population

        fitness = evaluate_population(population, self.magic_sum)
        best_idx = int(fitness.argmin())
        best_fit = int(fitness[best_idx])
        self.iteration += 1
        self.history.append(best_fit)
        self.avg_history.append(float(fitness.mean()))
        if self.best is None or best_fit < self.best.fitness:
            self.best = population[best_idx].copy()

        if best_fit == 0:
            self.state = RunState.SOLVED
            self._report_solution(population[best_idx])
            self._show(population[best_idx])
            return self.state

        self._report(population[best_idx], fitness)
        self._show(population[best_idx])

        selected = parent_selection(population)
        offspring = crossover(selected, population, self.magic_sum, self.rng, cfg.repair_attempts)

        self._adapt_mutation(best_fit)
        mutation(offspring, self.mutation_probability, self.rng)
        self.last_fitness = best_fit

        self._reshuffle(offspring)

        if not cfg.infinite and self.iteration >= cfg.max_iterations:
            self.state = RunState.EXHAUSTED
        return self.state

    def _adapt_mutation(self, best_fit: int) -> None:
        cfg = self.cfg
        base = cfg.base_mutation_probability
        p = self.mutation_probability
        if best_fit == self.last_fitness:
            self.unchanged_count += 1
            p += cfg.mutation_step
        else:
            if self.unchanged_count > 0:
                self.unchanged_count -= 1
            if p >= 1:
                p = base
            elif p > base:
                p = max(base, p - cfg.mutation_step)
        # keep repeated ±step from drifting off the grid of step multiples
        self.mutation_probability = round(p, 9)
        logger.debug("generation %d: mutation probability %.2f, unchanged %d",
                     self.iteration, self.mutation_probability, self.unchanged_count)

    def _reshuffle(self, offspring: List[Square]) -> None:
        """Perturb a stagnating population, otherwise refill it with new blood and offspring."""
        population = self.population
        size = len(population)
        count = self.unchanged_count

        if count % 50 != 0:
            if count % 100 != 0:
                for square in population[:-1]:
                    swap(square, self.rng)
                self.unchanged_count = 0
                logger.debug("generation %d: stagnation, perturbed all but the last square",
                             self.iteration)
                return
            for square in population[1:-1]:
                swap(square, self.rng)
            logger.debug("generation %d: stagnation, perturbed all but first and last square",
                         self.iteration)
            return

        quarter, half = size // 4, size // 2
        population[quarter:half] = random_population(half - quarter, self.cfg.order, self.rng)
        population[half:] = offspring[:size - half]

    # ---------- Driver ---------------------------------------------------- #
    def run(self) -> RunResult:
        cfg = self.cfg
        budget = "unbounded" if cfg.infinite else cfg.max_iterations
        logger.info("searching %dx%d magic square (sum %d), population %d, iterations %s",
                    cfg.order, cfg.order, self.magic_sum, cfg.population_size, budget)
        start = time.perf_counter()
        while self.step() is RunState.RUNNING:
            pass
        elapsed = time.perf_counter() - start
        logger.info("finished after %d generations in %.2fs: %s (best fitness %d)",
                    self.iteration, elapsed, self.state.value, self.best.fitness)
        if cfg.plot:
            plt.show()
        return RunResult(state=self.state,
                         best=self.best,
                         iterations=self.iteration,
                         history=list(self.history),
                         elapsed=elapsed)

    # ---------- Output ---------------------------------------------------- #
    def _report(self, best: Square, fitness: np.ndarray) -> None:
        if not self.cfg.verbose:
            return
        print("Best solution:")
        print(best)
        print()
        for value in np.sort(fitness)[:self.cfg.preview_count]:
            print(int(value))

    def _report_solution(self, square: Square) -> None:
        if not self.cfg.verbose:
            return
        print("Right solution:")
        print(square)
        print()

    def _show(self, square: Square) -> None:
        if not self.cfg.plot:
            return
        n = square.order
        board = square.values
        norm = board.astype(float) / (n * n)

        if self._fig is None:
            self._fig, (self._ax, self._fitness_ax) = plt.subplots(1, 2, figsize=(12, 5))

        self._ax.clear()
        tbl = self._ax.table(cellText=board.tolist(),
                             cellColours=plt.get_cmap("YlGnBu")(norm),
                             cellLoc="center",
                             loc="center")
        tbl.auto_set_font_size(False)
        tbl.set_fontsize(12)
        tbl.scale(1, 2)
        self._ax.axis("off")
        self._ax.set_title(f"Generation {self.iteration} | Fitness {self.history[-1]}")

        self._fitness_ax.clear()
        self._fitness_ax.plot(self.history, label="Best fitness", color="blue", linewidth=2)
        self._fitness_ax.plot(self.avg_history, label="Average fitness", color="red", alpha=0.7)
        self._fitness_ax.set_xlabel("Generation")
        self._fitness_ax.set_ylabel("Fitness (lower is better)")
        self._fitness_ax.set_ylim(bottom=0)
        self._fitness_ax.grid(True, alpha=0.3)
        self._fitness_ax.legend()

        plt.tight_layout()
        plt.pause(0.001)

    # ------------------------------------------------------------------- #
    # Benchmarking
    # ------------------------------------------------------------------- #
    @staticmethod
    def benchmark(orders: List[int], cfg: EAConfig, runs: int = 5) -> pd.DataFrame:
        """Repeat silent runs per order and tabulate the averages."""
        rows = []
        for n in orders:
            results = []
            for i in range(runs):
                seed = None if cfg.seed is None else cfg.seed + i
                run_cfg = replace(cfg, order=n, seed=seed, plot=False, verbose=False, infinite=False)
                results.append(MagicEA(run_cfg).run())
            solved = [r for r in results if r.solved]
            rows.append(dict(N=n,
                             Runs=runs,
                             SuccessRate=100 * len(solved) / runs,
                             AvgGenSolve=np.mean([r.iterations for r in solved]) if solved else np.nan,
                             AvgTime=np.mean([r.elapsed for r in results]),
                             StdTime=np.std([r.elapsed for r in results]),
                             AvgFitness=np.mean([r.best.fitness for r in results])))
        return pd.DataFrame(rows)


def save_benchmark(df: pd.DataFrame, path: str | Path = "magic_ea_benchmark.csv") -> Path:
    path = Path(path)
    df.to_csv(path, index=False)
    return path


def plot_benchmark(df: pd.DataFrame):
    """Success rate and run time per order, side by side."""
    fig, (rate_ax, time_ax) = plt.subplots(1, 2, figsize=(10, 4))
    rate_ax.bar(df.N.astype(str), df.SuccessRate, color="tab:green")
    rate_ax.set_xlabel("Order N")
    rate_ax.set_ylabel("Success rate (%)")
    rate_ax.set_ylim(0, 100)
    rate_ax.set_title("Solved runs")

    time_ax.errorbar(df.N, df.AvgTime, yerr=df.StdTime, marker="o", capsize=4)
    time_ax.set_xlabel("Order N")
    time_ax.set_ylabel("Time per run (s)")
    time_ax.set_title("Run time")
    time_ax.grid(alpha=0.3)

    fig.tight_layout()
    return fig
