"""
Magic-square building blocks for the evolutionary solver: the square itself,
fitness evaluation, parent selection, crossover and swap mutation.

Every stochastic function takes the generator it should draw from; nothing in
this module owns random state.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np

logger = logging.getLogger(__name__)

# Size of the square searched for by the program
SIZE = 5

# Random samples tried per empty cell before crossover falls back to a scan
REPAIR_ATTEMPTS = 1000


# --------------------------------------------------------------------------- #
#  Utility
# --------------------------------------------------------------------------- #
def magic_constant(n: int) -> int:
    """Return the row/col/diag sum of an n×n magic square."""
    return n * (n**2 + 1) // 2


def make_rng(seed: int | None = None) -> random.Random:
    """New generator; ``seed=None`` seeds it from OS entropy."""
    return random.Random(seed)


# --------------------------------------------------------------------------- #
#  Square representation
# --------------------------------------------------------------------------- #
@dataclass(eq=False)
class Square:
    """
    N×N grid holding the values 1..N² once each.

    ``fitness`` is None until the square is evaluated and is reset to None
    whenever the grid is changed through :meth:`swap`.
    """
    values: np.ndarray
    fitness: int | None = None

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[int]]) -> "Square":
        board = np.asarray(rows, dtype=int)
        if board.ndim != 2 or board.shape[0] != board.shape[1]:
            raise ValueError(f"square must be N×N, got shape {board.shape}")
        square = cls(board)
        if not square.is_permutation():
            n_sq = board.size
            raise ValueError(f"square must hold the values 1..{n_sq} exactly once")
        return square

    @property
    def order(self) -> int:
        return self.values.shape[0]

    def copy(self) -> "Square":
        return Square(self.values.copy(), self.fitness)

    def swap(self, a: tuple[int, int], b: tuple[int, int]) -> None:
        """Exchange two cells in place; swapping a cell with itself is a no-op."""
        v = self.values
        v[a], v[b] = v[b], v[a]
        self.fitness = None

    def is_permutation(self) -> bool:
        n_sq = self.values.size
        return np.array_equal(np.sort(self.values, axis=None), np.arange(1, n_sq + 1))

    def as_lists(self) -> list[list[int]]:
        return self.values.tolist()

    def __str__(self) -> str:
        return "\n".join(" ".join(str(x) for x in row) for row in self.values.tolist())


def random_square(n: int, rng: random.Random) -> Square:
    """Uniformly random arrangement of 1..n²."""
    seq = list(range(1, n * n + 1))
    rng.shuffle(seq)
    return Square(np.asarray(seq, dtype=int).reshape(n, n))


def random_population(size: int, n: int, rng: random.Random) -> list[Square]:
    return [random_square(n, rng) for _ in range(size)]


# --------------------------------------------------------------------------- #
#  Fitness
# --------------------------------------------------------------------------- #
def fitness_rows(square: Square, magic_sum: int) -> int:
    return int(np.abs(square.values.sum(axis=1) - magic_sum).sum())


def fitness_columns(square: Square, magic_sum: int) -> int:
    return int(np.abs(square.values.sum(axis=0) - magic_sum).sum())


def fitness_diagonal1(square: Square, magic_sum: int) -> int:
    """Top-left to bottom-right."""
    return int(abs(square.values.trace() - magic_sum))


def fitness_diagonal2(square: Square, magic_sum: int) -> int:
    """Bottom-left to top-right."""
    return int(abs(np.fliplr(square.values).trace() - magic_sum))


def evaluate_fitness(square: Square, magic_sum: int) -> int:
    """
    Total absolute deviation of rows, columns and both diagonals from
    ``magic_sum``. Lower is better; 0 means the square is magic.
    The score is cached on the square.
    """
    square.fitness = (fitness_rows(square, magic_sum)
                      + fitness_columns(square, magic_sum)
                      + fitness_diagonal1(square, magic_sum)
                      + fitness_diagonal2(square, magic_sum))
    return square.fitness


def evaluate_population(population: Iterable[Square], magic_sum: int) -> np.ndarray:
    return np.fromiter((evaluate_fitness(sq, magic_sum) for sq in population), dtype=int)


# --------------------------------------------------------------------------- #
#  Selection
# --------------------------------------------------------------------------- #
def parent_selection(population: list[Square]) -> list[Square]:
    """
    Sort ``population`` in place by fitness and return its better half.
    Equal scores keep their previous relative order.
    """
    if any(sq.fitness is None for sq in population):
        raise ValueError("parent selection needs an evaluated population")
    population.sort(key=lambda sq: sq.fitness)
    return population[:len(population) // 2]


# --------------------------------------------------------------------------- #
#  Crossover
# --------------------------------------------------------------------------- #
def breed(parent1: Square,
          parent2: Square,
          magic_sum: int,
          rng: random.Random,
          repair_attempts: int = REPAIR_ATTEMPTS) -> Square:
    """
    Child keeps every row and column of ``parent1`` that already hits the
    magic sum, takes what it can from ``parent2`` at the same positions
    without repeating a value, and fills the remaining holes at random.
    """
    n = parent1.order
    n_sq = n * n
    p1 = parent1.values
    child = np.zeros((n, n), dtype=int)   # 0 marks an unassigned cell

    rows = p1.sum(axis=1) == magic_sum
    child[rows, :] = p1[rows, :]
    cols = p1.sum(axis=0) == magic_sum
    child[:, cols] = p1[:, cols]

    used = set(child[child != 0].tolist())

    flat = child.reshape(-1)
    for pos, value in enumerate(parent2.values.reshape(-1).tolist()):
        if flat[pos] == 0 and value not in used:
            flat[pos] = value
            used.add(value)

    for pos in np.flatnonzero(flat == 0).tolist():
        value = 0
        for _ in range(repair_attempts):
            draw = rng.randint(1, n_sq)
            if draw not in used:
                value = draw
                break
        if not value:
            value = min(set(range(1, n_sq + 1)) - used)
            logger.debug("random repair gave up after %d draws, using %d",
                         repair_attempts, value)
        flat[pos] = value
        used.add(value)

    return Square(child)


def crossover(selected: Sequence[Square],
              population: Sequence[Square],
              magic_sum: int,
              rng: random.Random,
              repair_attempts: int = REPAIR_ATTEMPTS) -> list[Square]:
    """One child per selected parent; the mate is drawn from the whole population."""
    offspring = []
    for parent1 in selected:
        parent2 = population[rng.randrange(len(population))]
        offspring.append(breed(parent1, parent2, magic_sum, rng, repair_attempts))
    return offspring


# --------------------------------------------------------------------------- #
#  Mutation
# --------------------------------------------------------------------------- #
def swap(square: Square, rng: random.Random) -> None:
    """Exchange two random cells (possibly the same one)."""
    n = square.order
    from_row, to_row = rng.randrange(n), rng.randrange(n)
    from_col, to_col = rng.randrange(n), rng.randrange(n)
    square.swap((from_row, from_col), (to_row, to_col))


def mutation(pool: Iterable[Square], probability: float, rng: random.Random) -> int:
    """Swap-mutate each square with ``probability``; returns how many were hit."""
    hits = 0
    for square in pool:
        if rng.random() <= probability:
            swap(square, rng)
            hits += 1
    return hits
