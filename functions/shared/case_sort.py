# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

import re
from dataclasses import dataclass
from functools import total_ordering
from typing import Iterable, List, Tuple

_NUMBER_RUN = re.compile(r"\d+")
_LETTER_RUN = re.compile(r"[A-Za-z]+")


@total_ordering
@dataclass(frozen=True)
class CaseSortKey:
    """Natural ordering key for a case number.

    Digit runs are compared as integers from left to right, a missing run
    counting as 0. Only when every run is equal are the concatenated letter
    runs compared, case-insensitively first. The raw string is the last
    tie-break so that two distinct case numbers never compare equal.
    """

    numbers: Tuple[int, ...]
    letters: str
    raw: str

    def __lt__(self, other: "CaseSortKey") -> bool:
        return _compare(self, other) < 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CaseSortKey):
            return NotImplemented
        return _compare(self, other) == 0

    def __hash__(self) -> int:
        return hash(self.raw)


def case_sort_key(case_number: str) -> CaseSortKey:
    return CaseSortKey(
        numbers=tuple(int(run) for run in _NUMBER_RUN.findall(case_number)),
        letters="".join(_LETTER_RUN.findall(case_number)),
        raw=case_number,
    )


def compare_case_numbers(a: str, b: str) -> int:
    """Three-way comparison of two case numbers (-1, 0 or 1)."""
    return _compare(case_sort_key(a), case_sort_key(b))


def sort_case_numbers(case_numbers: Iterable[str]) -> List[str]:
    """Returns the case numbers in natural order, e.g. 1A, 1B, 2, 10."""
    return sorted(case_numbers, key=case_sort_key)


def _compare(a: CaseSortKey, b: CaseSortKey) -> int:
    width = max(len(a.numbers), len(b.numbers))
    for i in range(width):
        a_num = a.numbers[i] if i < len(a.numbers) else 0
        b_num = b.numbers[i] if i < len(b.numbers) else 0
        if a_num != b_num:
            return -1 if a_num < b_num else 1
    a_folded, b_folded = a.letters.casefold(), b.letters.casefold()
    if a_folded != b_folded:
        return -1 if a_folded < b_folded else 1
    if a.letters != b.letters:
        return -1 if a.letters < b.letters else 1
    if a.raw != b.raw:
        return -1 if a.raw < b.raw else 1
    return 0
