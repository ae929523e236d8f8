"""Pytest configuration for lcmsfeatures tests.

This module provides common fixtures and configuration for all tests.
Features are built synthetically; no input files are needed.
"""

import numpy as np
import pytest

from lcmsfeatures.feature import Feature, IdentificationInfo
from lcmsfeatures.feature_set import FeatureSet


def make_feature(mass, time=100.0, charge=2, intensity=1e5, total_intensity=None,
                 scan=None, peptide=None, protein=None, **kwargs):
    """Feature from neutral mass, with scan derived from time if not given."""
    if total_intensity is None:
        total_intensity = intensity
    if scan is None:
        scan = int(round(time))
    if peptide is not None:
        kwargs["identification"] = IdentificationInfo.single(peptide, protein)
    return Feature.from_mass(scan=scan, time=time, mass=mass, charge=charge,
                             intensity=intensity, total_intensity=total_intensity, **kwargs)


@pytest.fixture
def feature_factory():
    """The make_feature helper, for tests that build their own features."""
    return make_feature


@pytest.fixture
def icat_pair_features():
    """Light/heavy ICAT pair two scans apart."""
    return [
        make_feature(1000.0, time=100.0, intensity=2e5),
        make_feature(1009.03, time=102.0, intensity=1e5),
    ]


@pytest.fixture
def multi_charge_feature_set():
    """One run with two peptides, each seen at charges 2 and 3."""
    features = [
        make_feature(1500.0, time=300.0, charge=2, intensity=4e5, total_intensity=8e5),
        make_feature(1500.005, time=305.0, charge=3, intensity=1e5, total_intensity=2e5),
        make_feature(2200.0, time=900.0, charge=2, intensity=3e5, total_intensity=3e5),
        make_feature(2200.01, time=910.0, charge=3, intensity=6e5, total_intensity=9e5),
    ]
    return FeatureSet(features, source="/data/run1.peptides.tsv")


@pytest.fixture
def proton_mass():
    """Proton mass constant."""
    from lcmsfeatures.constants import PROTON_MASS
    return PROTON_MASS


# Random seed for reproducibility
@pytest.fixture(scope="session", autouse=True)
def set_random_seed():
    """Set random seed for reproducible tests."""
    np.random.seed(42)
