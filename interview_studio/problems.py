from __future__ import annotations

import random
from collections.abc import Iterable

from .model import Problem

BUILTIN_PROBLEMS: tuple[Problem, ...] = (
    Problem(
        id="two-sum",
        title="Two Sum",
        description=(
            "Given an array of integers and a target, return the indices of the two numbers "
            "that add up to the target. Exactly one solution exists; the same element may "
            "not be used twice."
        ),
        difficulty="easy",
        patterns=("hash map",),
    ),
    Problem(
        id="valid-parentheses",
        title="Valid Parentheses",
        description=(
            "Given a string containing only ()[]{}, decide whether every opening bracket is "
            "closed by the same type of bracket in the correct order."
        ),
        difficulty="easy",
        patterns=("stack",),
    ),
    Problem(
        id="merge-intervals",
        title="Merge Intervals",
        description=(
            "Given a list of [start, end] intervals, merge all overlapping intervals and "
            "return the non-overlapping result sorted by start."
        ),
        difficulty="medium",
        patterns=("sorting", "intervals"),
    ),
    Problem(
        id="longest-substring-no-repeat",
        title="Longest Substring Without Repeating Characters",
        description="Return the length of the longest substring of s that contains no repeated character.",
        difficulty="medium",
        patterns=("sliding window", "hash map"),
    ),
    Problem(
        id="course-schedule",
        title="Course Schedule",
        description=(
            "Given n courses and prerequisite pairs [a, b] meaning b must be taken before a, "
            "decide whether all courses can be finished."
        ),
        difficulty="medium",
        patterns=("graph", "topological sort"),
    ),
    Problem(
        id="median-two-sorted-arrays",
        title="Median of Two Sorted Arrays",
        description="Return the median of two sorted arrays in O(log(m + n)) time.",
        difficulty="hard",
        patterns=("binary search",),
    ),
)

PROBLEMS_BY_ID: dict[str, Problem] = {p.id: p for p in BUILTIN_PROBLEMS}


class SeededRng:
    """Simple seeded RNG wrapper to keep deterministic streams explicit."""

    def __init__(self, seed: int) -> None:
        self._rng = random.Random(int(seed))

    def choice(self, seq: list[Problem]) -> Problem:
        return self._rng.choice(seq)


def pick_problem(
    rng: SeededRng,
    *,
    problems: Iterable[Problem] = BUILTIN_PROBLEMS,
    exclude: Iterable[str] = (),
) -> Problem:
    """Uniform pick, skipping ids in ``exclude`` unless that would leave nothing."""

    pool = list(problems)
    if not pool:
        raise ValueError("problems must not be empty")
    skipped = set(exclude)
    candidates = [p for p in pool if p.id not in skipped]
    return rng.choice(candidates or pool)
