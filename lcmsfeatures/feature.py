"""Feature data model.

A Feature is one detected peptide signal in one LC-MS run. Features are
immutable values: clustering, deconvolution and quantitation build new
Features (``Feature.evolve``) instead of editing the ones they were given,
so the same Feature can be handed to independent passes safely.

Optional extra information is carried as typed sub-records:

- ``IdentificationInfo``: peptide/protein assignments
- ``QuantitationInfo``: light/heavy isotope-label quantitation
"""

from dataclasses import dataclass, field, replace
from typing import Optional, Sequence, Tuple

from lcmsfeatures.constants import LIST_SEPARATOR
from lcmsfeatures.mass import convert_mass_to_mz, convert_mz_to_mass


# Column layout of the tab-separated feature format
FEATURE_COLUMNS = (
    "scan", "time", "mz", "accurateMZ", "mass", "intensity", "charge",
    "chargeStates", "kl", "background", "median", "peaks", "scanFirst",
    "scanLast", "scanCount", "totalIntensity", "sumSquaresDist",
)
DESCRIPTION_COLUMN = "description"


@dataclass(frozen=True)
class IdentificationInfo:
    """Peptide (and protein) identifications attached to a feature.

    ``peptides`` and ``proteins`` are parallel when both are present; the
    first peptide is the one used for grouping and reconciliation.
    """
    peptides: Tuple[str, ...] = ()
    proteins: Tuple[str, ...] = ()
    peptide_prophet: float = 0.0

    @classmethod
    def single(
        cls,
        peptide: str,
        protein: Optional[str] = None,
        peptide_prophet: float = 0.0
    ) -> 'IdentificationInfo':
        proteins = (protein,) if protein is not None else ()
        return cls((peptide,), proteins, peptide_prophet)

    @property
    def first_peptide(self) -> Optional[str]:
        return self.peptides[0] if self.peptides else None

    @property
    def first_protein(self) -> Optional[str]:
        return self.proteins[0] if self.proteins else None

    def collapse_sequential_duplicates(self) -> 'IdentificationInfo':
        """Drop peptides that repeat the one right before them.

        Proteins are kept in step with their peptides when the lists are
        parallel.
        """
        parallel = len(self.proteins) == len(self.peptides)
        peptides = []
        proteins = []
        for i, peptide in enumerate(self.peptides):
            if peptides and peptides[-1] == peptide:
                continue
            peptides.append(peptide)
            if parallel:
                proteins.append(self.proteins[i])
        if not parallel:
            proteins = list(self.proteins)
        return replace(self, peptides=tuple(peptides), proteins=tuple(proteins))

    def peptide_list_string(self) -> str:
        return LIST_SEPARATOR.join(self.peptides)

    def protein_list_string(self) -> str:
        return LIST_SEPARATOR.join(self.proteins)


@dataclass(frozen=True)
class QuantitationInfo:
    """Isotope-label quantitation of a light/heavy feature pair."""
    light_intensity: float
    heavy_intensity: float
    ratio: Optional[float]
    label_count: int
    label: str = ""
    light_mass: float = 0.0
    heavy_mass: float = 0.0
    light_first_scan: int = 0
    light_last_scan: int = 0
    heavy_first_scan: int = 0
    heavy_last_scan: int = 0


@dataclass(frozen=True, eq=False)
class Feature:
    """A detected analyte signal.

    Equality is identity: two detections with the same values are still
    two detections. ``mass`` must agree with ``mz`` and ``charge``; use
    ``from_mz``/``from_mass`` to construct features from one of the two.

    ``comprised`` holds the raw features that were collapsed into this one
    (e.g. by charge-state deconvolution).
    """
    scan: int
    time: float
    mz: float
    mass: float
    charge: int
    intensity: float
    total_intensity: float = 0.0
    charge_states: int = 1
    kl: float = -1.0
    peaks: int = 1
    scan_first: Optional[int] = None
    scan_last: Optional[int] = None
    scan_count: int = 1
    background: float = 0.0
    median: float = 0.0
    accurate_mz: bool = False
    sum_squares_dist: float = 0.0
    description: Optional[str] = None
    identification: Optional[IdentificationInfo] = None
    quantitation: Optional[QuantitationInfo] = None
    comprised: Tuple['Feature', ...] = field(default=(), repr=False)

    def __post_init__(self):
        if self.scan_first is None:
            object.__setattr__(self, "scan_first", self.scan)
        if self.scan_last is None:
            object.__setattr__(self, "scan_last", self.scan)
        if not isinstance(self.comprised, tuple):
            object.__setattr__(self, "comprised", tuple(self.comprised))

    @classmethod
    def from_mz(cls, scan: int, time: float, mz: float, charge: int,
                intensity: float, **kwargs) -> 'Feature':
        """Create a feature from m/z, deriving its neutral mass."""
        return cls(scan=scan, time=time, mz=mz,
                   mass=convert_mz_to_mass(mz, charge), charge=charge,
                   intensity=intensity, **kwargs)

    @classmethod
    def from_mass(cls, scan: int, time: float, mass: float, charge: int,
                  intensity: float, **kwargs) -> 'Feature':
        """Create a feature from neutral mass, deriving its m/z."""
        return cls(scan=scan, time=time, mz=convert_mass_to_mz(mass, charge),
                   mass=mass, charge=charge, intensity=intensity, **kwargs)

    def evolve(self, **changes) -> 'Feature':
        """Copy of this feature with some fields replaced."""
        return replace(self, **changes)

    def with_updated_mass(self) -> 'Feature':
        """Copy with mass recomputed from mz and charge."""
        return replace(self, mass=convert_mz_to_mass(self.mz, self.charge))

    def with_updated_mz(self) -> 'Feature':
        """Copy with mz recomputed from mass and charge."""
        return replace(self, mz=convert_mass_to_mz(self.mass, self.charge))

    def has_identification(self) -> bool:
        return self.identification is not None and len(self.identification.peptides) > 0

    def has_quantitation(self) -> bool:
        return self.quantitation is not None

    @property
    def first_peptide(self) -> Optional[str]:
        if self.identification is None:
            return None
        return self.identification.first_peptide

    @property
    def first_protein(self) -> Optional[str]:
        if self.identification is None:
            return None
        return self.identification.first_protein

    def to_row(self, extra_values: Sequence = ()) -> list:
        """Values in FEATURE_COLUMNS order, then extra values, then description."""
        return [
            self.scan, self.time, self.mz,
            "true" if self.accurate_mz else "false",
            self.mass, self.intensity, self.charge, self.charge_states,
            self.kl, self.background, self.median, self.peaks,
            self.scan_first, self.scan_last, self.scan_count,
            self.total_intensity, self.sum_squares_dist,
            *extra_values,
            self.description or "",
        ]


# =============================================================================
# Sort keys
# =============================================================================
#
# Python's sort is stable, so each key combined with the input order gives a
# strict total order: ties keep their original relative position.

def mz_scan_key(feature: Feature) -> Tuple[float, int]:
    return feature.mz, feature.scan


def mz_key(feature: Feature) -> float:
    return feature.mz


def mass_key(feature: Feature) -> float:
    return feature.mass


def scan_key(feature: Feature) -> int:
    return feature.scan


def intensity_desc_key(feature: Feature) -> float:
    return -feature.intensity


def total_intensity_desc_key(feature: Feature) -> float:
    return -feature.total_intensity


def quality_key(feature: Feature) -> Tuple[int, bool, float]:
    """More isotope peaks first, then lower (better) KL score.

    A negative KL means no score was computed and ranks after any real score.
    """
    return -feature.peaks, feature.kl < 0, feature.kl


def scan_charge_mz_key(feature: Feature) -> Tuple[int, int, float]:
    return feature.scan, feature.charge, feature.mz
