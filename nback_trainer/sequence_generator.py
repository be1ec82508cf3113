from __future__ import annotations

from collections.abc import Sequence

from .nback_core import SeededRng, validate_sequence_parameters


def target_match_count(*, sequence_length: int, match_percentage: float, n_back: int) -> int:
    """Number of eligible positions engineered to repeat their N-back value."""

    eligible = max(0, sequence_length - n_back)
    # Builtin round(): halves go to the even neighbour (2.5 -> 2, 3.5 -> 4).
    target = round(match_percentage * eligible / 100.0)
    return max(0, min(eligible, target))


def match_indices(sequence: Sequence[int], n_back: int) -> list[int]:
    return [i for i in range(n_back, len(sequence)) if sequence[i] == sequence[i - n_back]]


def count_matches(sequence: Sequence[int], n_back: int) -> int:
    return len(match_indices(sequence, n_back))


class NBackSequenceGenerator:
    """Builds stimulus sequences with an exact number of N-back repeats.

    Values are 1-based symbols in ``[1, alphabet_size]``. The first ``n_back``
    values have no reference and are drawn freely. Of the remaining positions,
    exactly ``target_match_count(...)`` copy the value ``n_back`` steps back;
    every other one is drawn from the alphabet minus that value, so no
    accidental repeat can inflate the match count.
    """

    def __init__(self, rng: SeededRng) -> None:
        self._rng = rng

    def generate(
        self,
        *,
        sequence_length: int,
        alphabet_size: int,
        match_percentage: float,
        n_back: int,
    ) -> tuple[int, ...]:
        validate_sequence_parameters(
            sequence_length=sequence_length,
            alphabet_size=alphabet_size,
            match_percentage=match_percentage,
            n_back=n_back,
        )
        target = target_match_count(
            sequence_length=sequence_length,
            match_percentage=match_percentage,
            n_back=n_back,
        )
        match_positions = set(self._rng.sample(range(n_back, sequence_length), target))

        values = [self._rng.randint(1, alphabet_size) for _ in range(n_back)]
        for i in range(n_back, sequence_length):
            reference = values[i - n_back]
            if i in match_positions:
                values.append(reference)
            else:
                values.append(self._draw_excluding(alphabet_size, reference))
        return tuple(values)

    def generate_distinct(
        self,
        reference: Sequence[int],
        *,
        sequence_length: int,
        alphabet_size: int,
        match_percentage: float,
        n_back: int,
        max_attempts: int = 1000,
    ) -> tuple[int, ...]:
        """Generate a sequence that differs from ``reference`` as a whole."""

        ref = tuple(reference)
        for _ in range(max_attempts):
            candidate = self.generate(
                sequence_length=sequence_length,
                alphabet_size=alphabet_size,
                match_percentage=match_percentage,
                n_back=n_back,
            )
            if candidate != ref:
                return candidate
        raise RuntimeError(f"no distinct sequence after {max_attempts} attempts")

    def _draw_excluding(self, alphabet_size: int, excluded: int) -> int:
        if alphabet_size < 2:
            return self._rng.randint(1, alphabet_size)
        # Draw from size-1 slots and skip over the excluded value.
        value = self._rng.randint(1, alphabet_size - 1)
        return value + 1 if value >= excluded else value


def generate_nback_sequence(
    *,
    sequence_length: int,
    alphabet_size: int,
    match_percentage: float,
    n_back: int,
    seed: int | None = None,
) -> tuple[int, ...]:
    return NBackSequenceGenerator(SeededRng(seed)).generate(
        sequence_length=sequence_length,
        alphabet_size=alphabet_size,
        match_percentage=match_percentage,
        n_back=n_back,
    )
