"""
Tests for the generation controller.

Run with: python -m pytest tests/test_magic_ea.py -v
"""

import matplotlib.pyplot as plt
import pandas as pd
import pytest

from magic_ea import EAConfig, MagicEA, RunState, plot_benchmark, save_benchmark
from magic_square import Square, evaluate_fitness, random_population

LO_SHU = [[2, 7, 6], [9, 5, 1], [4, 3, 8]]


def small_cfg(**kw):
    params = dict(order=3, population_size=20, max_iterations=10, seed=1234, verbose=False)
    params.update(kw)
    return EAConfig(**params)


class TestEAConfig:

    def test_defaults(self):
        cfg = EAConfig()
        assert cfg.order == 5
        assert cfg.population_size == 10000
        assert cfg.max_iterations == 10000
        assert cfg.base_mutation_probability == 0.1
        assert cfg.validate() is cfg

    @pytest.mark.parametrize("kw", [
        dict(order=2),
        dict(population_size=2),
        dict(population_size=21),
        dict(max_iterations=0),
        dict(base_mutation_probability=0.0),
        dict(mutation_step=1.5),
        dict(repair_attempts=0),
    ])
    def test_invalid(self, kw):
        with pytest.raises(ValueError):
            small_cfg(**kw).validate()

    def test_infinite_ignores_budget(self):
        small_cfg(max_iterations=0, infinite=True).validate()

    def test_controller_validates(self):
        with pytest.raises(ValueError):
            MagicEA(small_cfg(population_size=3))


class TestMutationAdaptation:

    def test_first_generation_counts_as_improvement(self):
        ea = MagicEA(small_cfg())
        assert ea.last_fitness == -1
        ea._adapt_mutation(12)
        assert ea.unchanged_count == 0
        assert ea.mutation_probability == pytest.approx(0.1)

    def test_no_improvement_raises_rate(self):
        ea = MagicEA(small_cfg())
        ea.last_fitness = 10
        ea._adapt_mutation(10)
        assert ea.unchanged_count == 1
        assert ea.mutation_probability == pytest.approx(0.2)

    def test_rate_is_uncapped_upward(self):
        ea = MagicEA(small_cfg())
        ea.last_fitness = 10
        for _ in range(12):
            ea._adapt_mutation(10)
        assert ea.unchanged_count == 12
        assert ea.mutation_probability == pytest.approx(1.3)

    def test_improvement_after_saturation_resets(self):
        ea = MagicEA(small_cfg())
        ea.last_fitness = 10
        ea.unchanged_count = 3
        ea.mutation_probability = 1.0
        ea._adapt_mutation(8)
        assert ea.unchanged_count == 2
        assert ea.mutation_probability == pytest.approx(0.1)

    def test_improvement_steps_down(self):
        ea = MagicEA(small_cfg())
        ea.last_fitness = 10
        ea.mutation_probability = 0.5
        ea._adapt_mutation(8)
        assert ea.mutation_probability == pytest.approx(0.4)

    def test_floors(self):
        ea = MagicEA(small_cfg())
        ea.last_fitness = 10
        ea.mutation_probability = 0.15
        ea._adapt_mutation(8)
        assert ea.unchanged_count == 0
        assert ea.mutation_probability == pytest.approx(0.1)
        ea._adapt_mutation(6)
        assert ea.mutation_probability == pytest.approx(0.1)


class TestReshuffle:

    def test_replacement(self):
        ea = MagicEA(small_cfg())
        before = list(ea.population)
        offspring = random_population(10, 3, ea.rng)
        ea._reshuffle(offspring)
        assert ea.population[:5] == before[:5]
        assert all(a is not b for a, b in zip(ea.population[5:10], before[5:10]))
        assert ea.population[10:] == offspring
        assert len(ea.population) == 20

    def test_stagnation_perturbs_in_place(self):
        ea = MagicEA(small_cfg())
        before = list(ea.population)
        last = ea.population[-1].as_lists()
        offspring = random_population(10, 3, ea.rng)
        ea.unchanged_count = 1
        ea._reshuffle(offspring)
        assert ea.unchanged_count == 0
        assert ea.population == before
        assert ea.population[-1].as_lists() == last
        assert all(sq.is_permutation() for sq in ea.population)

    def test_hundred_unchanged_generations_replace(self):
        ea = MagicEA(small_cfg())
        offspring = random_population(10, 3, ea.rng)
        ea.unchanged_count = 100
        ea._reshuffle(offspring)
        assert ea.unchanged_count == 100
        assert ea.population[10:] == offspring


class TestStep:

    def test_solution_in_population(self, capsys):
        ea = MagicEA(small_cfg(verbose=True))
        ea.population[7] = Square.from_rows(LO_SHU)
        assert ea.step() is RunState.SOLVED
        assert ea.iteration == 1
        assert ea.best.as_lists() == LO_SHU
        assert ea.best.fitness == 0
        out = capsys.readouterr().out
        assert out.startswith("Right solution:\n2 7 6\n9 5 1\n4 3 8\n")

    def test_terminal_state_is_sticky(self):
        ea = MagicEA(small_cfg())
        ea.state = RunState.SOLVED
        assert ea.step() is RunState.SOLVED
        assert ea.iteration == 0

    def test_progress_report(self, capsys):
        ea = MagicEA(small_cfg(order=4, verbose=True, preview_count=5))
        assert ea.step() is RunState.RUNNING
        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == "Best solution:"
        assert len(lines[1].split()) == 4
        assert lines[5] == ""
        preview = [int(x) for x in lines[6:]]
        assert len(preview) == 5
        assert preview == sorted(preview)
        assert preview[0] == ea.history[0]

    def test_quiet(self, capsys):
        ea = MagicEA(small_cfg(order=4))
        ea.step()
        assert capsys.readouterr().out == ""

    def test_population_stays_valid(self):
        ea = MagicEA(small_cfg(order=4, population_size=40, max_iterations=15))
        while ea.step() is RunState.RUNNING:
            assert len(ea.population) == 40
            assert all(sq.is_permutation() for sq in ea.population)

    def test_live_plot(self, monkeypatch):
        monkeypatch.setattr(plt, "pause", lambda interval: None)
        ea = MagicEA(small_cfg(order=4, plot=True))
        ea.step()
        ea.step()
        assert ea._fig is not None
        assert ea._ax.get_title().startswith("Generation 2")
        plt.close("all")


class TestRun:

    def test_exhausted(self):
        result = MagicEA(small_cfg(order=5, max_iterations=3)).run()
        assert result.state is RunState.EXHAUSTED
        assert not result.solved
        assert result.iterations == 3
        assert len(result.history) == 3
        assert result.best.fitness == min(result.history)
        assert evaluate_fitness(result.best.copy(), 65) == result.best.fitness

    def test_small_budget_terminates(self):
        result = MagicEA(small_cfg(population_size=200, max_iterations=50)).run()
        assert result.state in (RunState.SOLVED, RunState.EXHAUSTED)
        assert result.iterations <= 50
        assert result.best.is_permutation()
        if result.solved:
            assert evaluate_fitness(result.best.copy(), 15) == 0
        else:
            assert result.iterations == 50

    @pytest.mark.parametrize("seed", [0, 1, 2])
    def test_best_never_regresses_after_replacement(self, seed):
        # only a stagnating generation perturbs the population in place; every
        # other generation keeps the top quarter, so the best cannot get worse
        cfg = small_cfg(order=4, population_size=200, max_iterations=200, seed=seed)
        history = MagicEA(cfg).run().history
        regressions = [i for i in range(2, len(history))
                       if history[i - 1] != history[i - 2] and history[i] > history[i - 1]]
        assert regressions == []

    def test_seed_reproducible(self):
        a = MagicEA(small_cfg(order=4, max_iterations=8)).run()
        b = MagicEA(small_cfg(order=4, max_iterations=8)).run()
        assert a.history == b.history
        assert a.best.as_lists() == b.best.as_lists()


class TestBenchmark:

    def test_table_and_csv(self, tmp_path):
        cfg = small_cfg(max_iterations=3)
        df = MagicEA.benchmark([3, 4], cfg, runs=2)
        assert list(df.N) == [3, 4]
        assert {"SuccessRate", "AvgGenSolve", "AvgTime", "AvgFitness"} <= set(df.columns)
        assert ((df.SuccessRate >= 0) & (df.SuccessRate <= 100)).all()

        path = save_benchmark(df, tmp_path / "bench.csv")
        loaded = pd.read_csv(path)
        assert list(loaded.N) == [3, 4]

    def test_plot(self):
        df = pd.DataFrame(dict(N=[3, 4], SuccessRate=[100.0, 50.0],
                               AvgTime=[0.1, 0.4], StdTime=[0.01, 0.05]))
        fig = plot_benchmark(df)
        rate_ax, time_ax = fig.axes
        assert rate_ax.get_ylabel() == "Success rate (%)"
        assert [p.get_height() for p in rate_ax.patches] == [100.0, 50.0]
        assert time_ax.get_title() == "Run time"
        plt.close(fig)
