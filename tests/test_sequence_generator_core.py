from __future__ import annotations

import pytest

from nback_trainer.nback_core import ConfigurationError, SeededRng
from nback_trainer.sequence_generator import (
    NBackSequenceGenerator,
    count_matches,
    generate_nback_sequence,
    match_indices,
    target_match_count,
)


class _ScriptedGenerator(NBackSequenceGenerator):
    """Returns canned sequences so collision handling can be observed."""

    def __init__(self, scripted: list[tuple[int, ...]]) -> None:
        super().__init__(SeededRng(0))
        self._scripted = list(scripted)
        self.calls = 0

    def generate(self, **kwargs: object) -> tuple[int, ...]:
        self.calls += 1
        if len(self._scripted) > 1:
            return self._scripted.pop(0)
        return self._scripted[0]


CONFIGS = [
    (10, 9, 30, 2),
    (20, 9, 50, 1),
    (25, 25, 20, 3),
    (12, 2, 100, 2),
    (30, 4, 0, 4),
    (7, 9, 33, 6),
]


@pytest.mark.parametrize(("length", "alphabet", "pct", "n"), CONFIGS)
def test_sequence_has_requested_length_and_value_range(length: int, alphabet: int, pct: int, n: int) -> None:
    gen = NBackSequenceGenerator(SeededRng(2024))
    for _ in range(25):
        seq = gen.generate(sequence_length=length, alphabet_size=alphabet, match_percentage=pct, n_back=n)
        assert len(seq) == length
        assert all(1 <= v <= alphabet for v in seq)


@pytest.mark.parametrize(("length", "alphabet", "pct", "n"), CONFIGS)
def test_match_count_is_exact(length: int, alphabet: int, pct: int, n: int) -> None:
    expected = target_match_count(sequence_length=length, match_percentage=pct, n_back=n)
    gen = NBackSequenceGenerator(SeededRng(77))
    for _ in range(25):
        seq = gen.generate(sequence_length=length, alphabet_size=alphabet, match_percentage=pct, n_back=n)
        assert count_matches(seq, n) == expected
        assert all(i >= n for i in match_indices(seq, n))


def test_target_match_count_rounds_halves_to_even_and_clamps() -> None:
    assert target_match_count(sequence_length=10, match_percentage=30, n_back=2) == 2
    assert target_match_count(sequence_length=12, match_percentage=25, n_back=2) == 2  # 2.5
    assert target_match_count(sequence_length=12, match_percentage=35, n_back=2) == 4  # 3.5
    assert target_match_count(sequence_length=10, match_percentage=100, n_back=2) == 8
    assert target_match_count(sequence_length=10, match_percentage=0, n_back=2) == 0


@pytest.mark.parametrize(
    ("length", "pct", "n"),
    [(7, 50, 2), (12, 25, 2), (9, 50, 2), (6, 50, 1)],
)
def test_match_count_on_half_boundary_follows_builtin_round(length: int, pct: int, n: int) -> None:
    gen = NBackSequenceGenerator(SeededRng(13))
    for _ in range(20):
        seq = gen.generate(sequence_length=length, alphabet_size=9, match_percentage=pct, n_back=n)
        assert count_matches(seq, n) == round(pct / 100 * (length - n))


def test_zero_percent_never_repeats_the_n_back_value() -> None:
    gen = NBackSequenceGenerator(SeededRng(5))
    seq = gen.generate(sequence_length=40, alphabet_size=2, match_percentage=0, n_back=1)
    # With two symbols and no matches the sequence must alternate.
    assert all(seq[i] != seq[i - 1] for i in range(1, len(seq)))


def test_generator_is_deterministic_for_same_seed() -> None:
    a = generate_nback_sequence(sequence_length=15, alphabet_size=9, match_percentage=40, n_back=2, seed=31)
    b = generate_nback_sequence(sequence_length=15, alphabet_size=9, match_percentage=40, n_back=2, seed=31)
    assert a == b


@pytest.mark.parametrize(
    ("length", "alphabet", "pct", "n"),
    [
        (5, 9, 30, 5),
        (5, 9, 30, 7),
        (10, 1, 30, 2),
        (10, 9, -1, 2),
        (10, 9, 101, 2),
        (10, 9, 30, 0),
    ],
)
def test_invalid_parameters_raise_configuration_error(length: int, alphabet: int, pct: int, n: int) -> None:
    gen = NBackSequenceGenerator(SeededRng(1))
    with pytest.raises(ConfigurationError):
        gen.generate(sequence_length=length, alphabet_size=alphabet, match_percentage=pct, n_back=n)


def test_distinct_sequence_differs_from_reference() -> None:
    gen = NBackSequenceGenerator(SeededRng(8))
    params = dict(sequence_length=4, alphabet_size=2, match_percentage=100, n_back=1)
    for _ in range(50):
        first = gen.generate(**params)
        second = gen.generate_distinct(first, **params)
        assert second != first
        assert count_matches(second, 1) == 3


def test_distinct_regenerates_on_collision() -> None:
    ref = (1, 2, 1, 2)
    gen = _ScriptedGenerator([ref, ref, (2, 1, 2, 1)])
    out = gen.generate_distinct(ref, sequence_length=4, alphabet_size=2, match_percentage=100, n_back=2)
    assert out == (2, 1, 2, 1)
    assert gen.calls == 3


def test_distinct_gives_up_after_max_attempts() -> None:
    ref = (1, 2, 1, 2)
    gen = _ScriptedGenerator([ref])
    with pytest.raises(RuntimeError):
        gen.generate_distinct(
            ref, sequence_length=4, alphabet_size=2, match_percentage=100, n_back=2, max_attempts=5
        )
    assert gen.calls == 5
