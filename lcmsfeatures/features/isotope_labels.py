"""Isotopic labeling schemes for light/heavy relative quantitation.

A label is written as ``<light>+<heavyDelta>[#<maxCount>][@<residue>]``:

- ``light``: mass of the light tag (>= 0)
- ``heavyDelta``: mass difference between heavy and light tag (> 0)
- ``maxCount``: most labels considered per peptide (>= 1, default 3)
- ``residue``: labeled amino acid, or none for terminal/non-specific labels

Examples
--------
>>> IsotopicLabel.parse("227.1263+9.0297@C")
IsotopicLabel(light=227.1263, heavy=9.0297, residue='C', max_label_count=3, name='')
>>> str(IsotopicLabel.parse("0+4.0085#1"))
'0.0+4.0085#1'
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping

from lcmsfeatures.constants import FIRST_RESIDUE, LAST_RESIDUE, NO_RESIDUE

DEFAULT_MAX_LABEL_COUNT = 3


@dataclass(frozen=True)
class IsotopicLabel:
    """An immutable light/heavy labeling scheme."""
    light: float
    heavy: float
    residue: str = NO_RESIDUE
    max_label_count: int = DEFAULT_MAX_LABEL_COUNT
    name: str = ""

    def __post_init__(self):
        if self.light < 0:
            raise ValueError(f"Light label mass must be >= 0, got {self.light}")
        if not self.heavy > 0:
            raise ValueError(f"Heavy label delta must be > 0, got {self.heavy}")
        if self.max_label_count < 1:
            raise ValueError(f"Maximum label count must be >= 1, got {self.max_label_count}")
        if len(self.residue) != 1:
            raise ValueError(f"Label residue must be a single character, got {self.residue!r}")
        if self.residue != NO_RESIDUE and not FIRST_RESIDUE <= self.residue <= LAST_RESIDUE:
            raise ValueError(
                f"Label residue must be in {FIRST_RESIDUE}-{LAST_RESIDUE}, got {self.residue!r}")

    @classmethod
    def parse(cls, text: str, name: str = "") -> 'IsotopicLabel':
        """Parse ``<light>+<heavyDelta>[#<maxCount>][@<residue>]``.

        Raises:
            ValueError: On a missing '+', misplaced '#'/'@', bad numbers or
                a residue outside A-Y
        """
        text = text.strip()
        plus = text.find("+")
        hash_pos = text.find("#")
        at = text.find("@")

        if plus < 0:
            raise ValueError(f"Isotopic label {text!r} is missing the '+' separator")
        if 0 <= hash_pos < plus:
            raise ValueError(f"Isotopic label {text!r}: '#' must follow the heavy delta")
        if 0 <= at < plus:
            raise ValueError(f"Isotopic label {text!r}: '@' must follow the heavy delta")
        if 0 <= at < hash_pos:
            raise ValueError(f"Isotopic label {text!r}: '@' must come after '#'")

        heavy_end = len(text)
        for position in (hash_pos, at):
            if position >= 0:
                heavy_end = min(heavy_end, position)

        try:
            light = float(text[:plus])
            heavy = float(text[plus + 1:heavy_end])
        except ValueError as e:
            raise ValueError(f"Isotopic label {text!r}: invalid mass") from e

        max_label_count = DEFAULT_MAX_LABEL_COUNT
        if hash_pos >= 0:
            count_end = at if at >= 0 else len(text)
            try:
                max_label_count = int(text[hash_pos + 1:count_end])
            except ValueError as e:
                raise ValueError(f"Isotopic label {text!r}: invalid label count") from e

        residue = NO_RESIDUE
        if at >= 0:
            residue = text[at + 1:]
            if len(residue) != 1:
                raise ValueError(f"Isotopic label {text!r}: residue must be one character")

        return cls(light, heavy, residue, max_label_count, name)

    def __str__(self) -> str:
        text = f"{self.light}+{self.heavy}"
        if self.max_label_count != DEFAULT_MAX_LABEL_COUNT:
            text += f"#{self.max_label_count}"
        if self.residue != NO_RESIDUE:
            text += f"@{self.residue}"
        return text

    @property
    def is_residue_specific(self) -> bool:
        return self.residue != NO_RESIDUE

    def count_labeled_residues(self, peptide: str) -> int:
        """Number of labeled residues in a peptide sequence (0 if not residue specific)."""
        if not self.is_residue_specific:
            return 0
        return peptide.count(self.residue)


class LabelRegistry(Mapping):
    """Read-only name -> IsotopicLabel mapping.

    Build one at startup and pass it to whatever resolves label names.
    """

    def __init__(self, labels: Iterable[IsotopicLabel]):
        by_name = {}
        for label in labels:
            if not label.name:
                raise ValueError(f"Registered label {label} needs a name")
            if label.name in by_name:
                raise ValueError(f"Duplicate label name {label.name!r}")
            by_name[label.name] = label
        self._labels = MappingProxyType(by_name)

    def __getitem__(self, name: str) -> IsotopicLabel:
        return self._labels[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._labels)

    def __len__(self) -> int:
        return len(self._labels)

    def resolve(self, name_or_text: str) -> IsotopicLabel:
        """Registered label by name, else parse the text as a label string."""
        if name_or_text in self._labels:
            return self._labels[name_or_text]
        return IsotopicLabel.parse(name_or_text)


ICAT_LABEL = IsotopicLabel(227.1263, 9.0297, "C", 3, "Cleavable ICAT")

DEFAULT_LABEL_REGISTRY = LabelRegistry([
    ICAT_LABEL,
    IsotopicLabel(0.0, 4.0085, NO_RESIDUE, 1, "O18"),
    IsotopicLabel(0.0, 6.0201, "K", 3, "Silac"),
    IsotopicLabel(100.4, 4.0313, "K", 3, "N-terminal"),
    IsotopicLabel(71.03657, 3.0188, "C", 3, "Acrylamide (D0/D3)"),
])
