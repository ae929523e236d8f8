"""Tests for light/heavy isotope pair matching and quantitation.

Tests:
- Simple ICAT pair with both matching strategies
- Candidate ladders: even-fill resolution and best-distance search
- At most one pairing per feature, light member first
- Inputs are never modified
- Pair quantitation and identification reconciliation
"""

import numpy as np
import pytest

from lcmsfeatures.feature import IdentificationInfo
from lcmsfeatures.feature_set import EXTRA_INFO_QUANTITATION, FeatureSet
from lcmsfeatures.features.isotope_labels import DEFAULT_LABEL_REGISTRY, ICAT_LABEL
from lcmsfeatures.features.isotope_pairs import (
    IntensityType,
    IsotopePairMatcher,
    Pair,
    PairMatchingParams,
    analyze,
    analyze1,
    overlapping_scan_start,
    quantitate,
    quantitate_pair,
    reconcile_identification,
)
from lcmsfeatures.mass import ToleranceType

HEAVY = ICAT_LABEL.heavy


def _assert_valid_pairs(pairs, features):
    seen = set()
    for pair in pairs:
        assert pair.first.mass <= pair.second.mass
        for member in pair:
            assert id(member) not in seen
            seen.add(id(member))
    ids = {id(f) for f in features}
    assert seen <= ids


class TestSimplePair:
    """Two co-eluting features one ICAT label apart."""

    def test_analyze(self, icat_pair_features):
        pairs = analyze(icat_pair_features)
        assert len(pairs) == 1
        assert pairs[0].first is icat_pair_features[0]
        assert pairs[0].second is icat_pair_features[1]

    def test_analyze1(self, icat_pair_features):
        pairs = analyze1(icat_pair_features)
        assert pairs == [Pair(icat_pair_features[0], icat_pair_features[1])]

    def test_heavy_anchor_pairs_downward(self, feature_factory):
        light = feature_factory(1000.0, intensity=1e4)
        heavy = feature_factory(1000.0 + HEAVY, intensity=1e6)
        pairs = analyze([heavy, light])
        assert pairs == [Pair(light, heavy)]

    def test_charge_must_match(self, feature_factory):
        features = [feature_factory(1000.0, charge=2), feature_factory(1000.0 + HEAVY, charge=3)]
        assert analyze(features) == []
        assert analyze1(features) == []

    def test_outside_time_tolerance(self, feature_factory):
        features = [feature_factory(1000.0, time=100.0), feature_factory(1000.0 + HEAVY, time=111.0)]
        assert analyze(features) == []

    def test_ppm_mass_tolerance(self, feature_factory):
        features = [feature_factory(1000.0), feature_factory(1000.0 + HEAVY + 0.05)]
        params = PairMatchingParams(mass_tolerance=20.0, mass_tolerance_type=ToleranceType.PPM)
        # 20 ppm of 1000 Da is 0.02 Da
        assert analyze(features, params=params) == []
        assert len(analyze(features)) == 1

    def test_empty_input(self):
        assert analyze([]) == []
        assert analyze1([]) == []

    def test_invalid_params(self):
        with pytest.raises(ValueError):
            PairMatchingParams(mass_tolerance=0)
        with pytest.raises(ValueError):
            PairMatchingParams(time_tolerance=-1.0)


class TestCandidateLadders:
    """Anchors with more than one candidate partner."""

    def test_anchor_kept_in_closest_pair(self, feature_factory):
        a = feature_factory(1000.0, time=100.0, intensity=1e6)
        b = feature_factory(1000.0 + HEAVY, time=100.0, intensity=5e5)
        c = feature_factory(1000.0 + 2 * HEAVY, time=105.0, intensity=1e5)
        pairs = analyze([a, b, c])
        assert pairs == [Pair(a, b)]

    def test_anchor_dropped_then_neighbours_pair(self, feature_factory):
        """The closest pair excludes the anchor: anchor is consumed unpaired."""
        a = feature_factory(1000.0, time=100.0, intensity=1e6)
        b = feature_factory(1000.0 + HEAVY, time=109.0, intensity=1e5)
        c = feature_factory(1000.0 + 2 * HEAVY, time=109.0, intensity=1e5)
        pairs = analyze([a, b, c])
        assert pairs == [Pair(b, c)]

    def test_even_ladder_pairs_by_slot_parity(self, feature_factory):
        a = feature_factory(1000.0, intensity=1e5)
        b = feature_factory(1000.0 + HEAVY, intensity=1e6)
        c = feature_factory(1000.0 + 2 * HEAVY, intensity=5e5)
        d = feature_factory(1000.0 + 3 * HEAVY, intensity=1e5)
        pairs = analyze([a, b, c, d])
        assert pairs == [Pair(a, b), Pair(c, d)]

    def test_most_intense_candidate_per_label_count(self, feature_factory):
        light = feature_factory(1000.0, intensity=1e6)
        weak = feature_factory(1000.0 + HEAVY - 0.1, intensity=1e4)
        strong = feature_factory(1000.0 + HEAVY + 0.1, intensity=1e5)
        pairs = analyze([light, weak, strong])
        assert pairs == [Pair(light, strong)]

    def test_intensity_anchored_takes_last_hit(self, feature_factory):
        light = feature_factory(1000.0, intensity=1e6)
        heavy1 = feature_factory(1000.0 + HEAVY - 0.05, intensity=1e5)
        heavy2 = feature_factory(1000.0 + HEAVY + 0.05, intensity=1e4)
        pairs = analyze1([light, heavy1, heavy2])
        assert pairs == [Pair(light, heavy2)]


class TestPairingInvariants:
    """Properties that hold for any input."""

    def _random_features(self, feature_factory, n_peptides=80):
        features = []
        for _ in range(n_peptides):
            mass = float(np.random.uniform(800, 3000))
            time = float(np.random.uniform(0, 2000))
            charge = int(np.random.choice([2, 3]))
            for count in range(int(np.random.randint(1, 4))):
                features.append(feature_factory(
                    mass + count * HEAVY + float(np.random.normal(0, 0.02)),
                    time=time + float(np.random.uniform(-3, 3)),
                    charge=charge,
                    intensity=float(np.random.uniform(1e4, 1e6)),
                ))
        return features

    @pytest.mark.parametrize("match", [analyze, analyze1])
    def test_each_feature_paired_at_most_once(self, feature_factory, match):
        features = self._random_features(feature_factory)
        pairs = match(features)
        assert len(pairs) > 0
        _assert_valid_pairs(pairs, features)

    @pytest.mark.parametrize("match", [analyze, analyze1])
    def test_input_not_modified(self, feature_factory, match):
        features = self._random_features(feature_factory, 20)
        before = list(features)
        match(features)
        assert all(x is y for x, y in zip(features, before))
        assert len(features) == len(before)

    def test_passes_are_independent(self, icat_pair_features):
        matcher = IsotopePairMatcher()
        assert len(matcher.match(icat_pair_features)) == 1
        assert len(matcher.match(icat_pair_features)) == 1


class TestQuantitation:
    """Pair ratios and the quantitated feature set."""

    def test_quantitate_pair(self, icat_pair_features):
        light, heavy = icat_pair_features
        feature = quantitate_pair(Pair(light, heavy), ICAT_LABEL)
        q = feature.quantitation
        assert q.light_intensity == 2e5
        assert q.heavy_intensity == 1e5
        assert q.ratio == pytest.approx(2.0)
        assert q.label_count == 1
        assert q.label == "227.1263+9.0297@C"
        assert feature.total_intensity == pytest.approx(3e5)
        assert feature.mass == light.mass
        assert light.quantitation is None

    def test_max_intensity_type(self, feature_factory):
        light = feature_factory(1000.0, intensity=10.0, total_intensity=100.0)
        heavy = feature_factory(1000.0 + 2 * HEAVY, intensity=5.0, total_intensity=100.0)
        q = quantitate_pair(Pair(light, heavy), ICAT_LABEL, IntensityType.MAX).quantitation
        assert q.ratio == pytest.approx(2.0)
        assert q.label_count == 2

    def test_zero_heavy_intensity(self, feature_factory):
        light = feature_factory(1000.0, intensity=10.0)
        heavy = feature_factory(1000.0 + HEAVY, intensity=0.0)
        assert quantitate_pair(Pair(light, heavy), ICAT_LABEL).quantitation.ratio is None

    def test_overlapping_scan_start(self, feature_factory):
        light = feature_factory(1000.0, scan=100, scan_first=95, scan_last=110)
        heavy = feature_factory(1000.0 + HEAVY, scan=105, scan_first=100, scan_last=120)
        assert overlapping_scan_start(Pair(light, heavy)) == 100
        apart = feature_factory(1000.0 + HEAVY, scan=200)
        assert overlapping_scan_start(Pair(light, apart)) == 0

    def test_quantitate_feature_set(self, icat_pair_features, feature_factory):
        unpaired = feature_factory(3000.0)
        fs = FeatureSet(icat_pair_features + [unpaired], source="/data/icat.tsv")
        result = quantitate(fs)

        assert len(result) == 2
        assert result[0].has_quantitation()
        assert result[1] is unpaired
        assert result.has_extra_information_type(EXTRA_INFO_QUANTITATION)
        assert result.properties["label"] == str(ICAT_LABEL)
        assert len(fs) == 3

        assert len(quantitate(fs, pairs_only=True)) == 1


class TestIdentificationReconciliation:
    """Peptide assignment of a quantitated pair."""

    def _pair(self, feature_factory, light_peptide, heavy_peptide, count=1):
        light = feature_factory(1000.0, peptide=light_peptide, protein="PL")
        heavy = feature_factory(1000.0 + count * HEAVY, peptide=heavy_peptide, protein="PH")
        return light, heavy

    def test_one_sided_identification(self, feature_factory):
        light, heavy = self._pair(feature_factory, None, "ACDK")
        info = reconcile_identification(light, heavy, ICAT_LABEL, 1)
        assert info.peptides == ("ACDK",)
        assert info.proteins == ("PH",)

    def test_agreeing_identification(self, feature_factory):
        light, heavy = self._pair(feature_factory, "ACDK", "ACDK")
        assert reconcile_identification(light, heavy, ICAT_LABEL, 1).peptides == ("ACDK",)

    def test_disagreeing_identification(self, feature_factory):
        light, heavy = self._pair(feature_factory, "ACDK", "CEFK")
        assert reconcile_identification(light, heavy, ICAT_LABEL, 1) is None

    def test_labeled_residue_count_must_match(self, feature_factory):
        light, heavy = self._pair(feature_factory, "ACDCK", None)
        assert reconcile_identification(light, heavy, ICAT_LABEL, 1) is None
        assert reconcile_identification(light, heavy, ICAT_LABEL, 2).peptides == ("ACDCK",)

    def test_non_residue_label_ignores_residue_count(self, feature_factory):
        light, heavy = self._pair(feature_factory, "PEPTIDEK", None)
        o18 = DEFAULT_LABEL_REGISTRY["O18"]
        assert reconcile_identification(light, heavy, o18, 1).peptides == ("PEPTIDEK",)

    def test_common_peptide_from_lists(self, feature_factory):
        light = feature_factory(1000.0, identification=IdentificationInfo(("AAK", "ACK"), ("P1", "P2")))
        heavy = feature_factory(1000.0 + HEAVY, identification=IdentificationInfo(("ACK", "CEK"), ("P2", "P3")))
        info = reconcile_identification(light, heavy, ICAT_LABEL, 1)
        assert info.peptides == ("ACK",)
        assert info.proteins == ("P2",)

    def test_quantitated_feature_carries_identification(self, feature_factory):
        light, heavy = self._pair(feature_factory, "ACDCK", "ACDCK", count=2)
        feature = quantitate_pair(Pair(light, heavy), ICAT_LABEL)
        assert feature.first_peptide == "ACDCK"
        assert feature.quantitation.label_count == 2
