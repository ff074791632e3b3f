"""
Read-only absorption-line reference database.

A database is an immutable snapshot: it is loaded once, shared freely between
threads, and "updated" only by building a new snapshot with with_lines().
"""
import csv
import logging
import math
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Mapping, Tuple, Union

from atmosense.data_models import AbsorptionLine
from atmosense.errors import InvalidInput

logger = logging.getLogger(__name__)

CSV_FIELDS = ("molecule", "center_wavelength", "line_strength", "line_width")


def _validate_line(line: AbsorptionLine) -> AbsorptionLine:
    if not line.molecule:
        raise InvalidInput("Absorption line without molecule name")
    for name in ("center_wavelength", "line_strength", "line_width"):
        value = getattr(line, name)
        if not math.isfinite(value):
            raise InvalidInput(f"{line.molecule} line has non-finite {name}: {value}")
    if line.line_strength <= 0:
        raise InvalidInput(f"{line.molecule} line strength must be positive: {line.line_strength}")
    if line.line_width <= 0:
        raise InvalidInput(f"{line.molecule} line width must be positive: {line.line_width}")
    return line


class AbsorptionDatabase:
    """
    Immutable collection of AbsorptionLine entries, kept in insertion order.
    """

    __slots__ = ("_lines", "_by_molecule")

    def __init__(self, lines: Iterable[AbsorptionLine] = ()):
        self._lines: Tuple[AbsorptionLine, ...] = tuple(_validate_line(l) for l in lines)
        by_molecule: Dict[str, List[AbsorptionLine]] = {}
        for line in self._lines:
            by_molecule.setdefault(line.molecule, []).append(line)
        self._by_molecule = {k: tuple(v) for k, v in by_molecule.items()}

    @classmethod
    def from_lines(cls, *lines: AbsorptionLine) -> "AbsorptionDatabase":
        return cls(lines)

    @classmethod
    def from_records(cls, records: Iterable[Mapping]) -> "AbsorptionDatabase":
        """Build a database from dicts with molecule/center_wavelength/line_strength/line_width keys."""
        lines = []
        for i, rec in enumerate(records):
            try:
                lines.append(AbsorptionLine(
                    molecule=str(rec["molecule"]).strip(),
                    center_wavelength=float(rec["center_wavelength"]),
                    line_strength=float(rec["line_strength"]),
                    line_width=float(rec["line_width"]),
                ))
            except (KeyError, TypeError, ValueError) as e:
                raise InvalidInput(f"Invalid absorption line record #{i}: {e}") from e
        return cls(lines)

    @classmethod
    def load_csv(cls, path: Union[str, Path]) -> "AbsorptionDatabase":
        """
        Load lines from a CSV file with a header row naming the four line fields.
        """
        path = Path(path)
        with open(path, newline='', encoding='utf-8') as f:
            reader = csv.DictReader(f)
            missing = [name for name in CSV_FIELDS if name not in (reader.fieldnames or [])]
            if missing:
                raise InvalidInput(f"{path}: missing column(s) {', '.join(missing)}")
            db = cls.from_records(reader)
        logger.info(f"Loaded {len(db)} absorption line(s) for {len(db.molecules)} molecule(s) from {path}")
        return db

    def with_lines(self, *lines: AbsorptionLine) -> "AbsorptionDatabase":
        """Return a new database with the given lines appended."""
        return AbsorptionDatabase(self._lines + tuple(lines))

    def lines_for(self, molecule: str) -> Tuple[AbsorptionLine, ...]:
        return self._by_molecule.get(molecule, ())

    @property
    def lines(self) -> Tuple[AbsorptionLine, ...]:
        return self._lines

    @property
    def molecules(self) -> List[str]:
        return list(self._by_molecule)

    def __iter__(self) -> Iterator[AbsorptionLine]:
        return iter(self._lines)

    def __len__(self) -> int:
        return len(self._lines)

    def __bool__(self) -> bool:
        return bool(self._lines)

    def __repr__(self) -> str:
        return f"AbsorptionDatabase({len(self._lines)} lines, molecules={self.molecules})"
