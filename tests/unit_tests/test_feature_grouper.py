"""Tests for FeatureClusterer and FeatureGrouper.

Tests:
- Coordinate modes and ppm validation
- Conflict resolution (sum / best / max)
- Group-by-charge partitioning with aligned set indices
- Peptide array streaming and identification cells
- Bucket evaluation by peptide agreement
- Alignment filtering
"""

import io
import unittest

import pytest

from lcmsfeatures.clustering.feature_clusterer import (
    ElutionMode,
    FeatureClusterer,
    MassMzMode,
)
from lcmsfeatures.clustering.feature_grouper import (
    BucketEvaluationMode,
    ConflictResolver,
    FeatureGrouper,
    cell_identifications,
    order_cluster_features,
)
from lcmsfeatures.feature import Feature, IdentificationInfo
from lcmsfeatures.feature_set import FeatureSet
from lcmsfeatures.mass import ToleranceType


def _feature(mz, scan, charge=2, intensity=100.0, peptide=None, protein=None, **kwargs):
    if peptide is not None:
        kwargs["identification"] = IdentificationInfo.single(peptide, protein)
    return Feature.from_mz(scan=scan, time=scan * 1.5, mz=mz, charge=charge,
                           intensity=intensity, **kwargs)


class TestFeatureClusterer(unittest.TestCase):
    """Test coordinate selection."""

    def test_ppm_requires_mass_mode(self):
        with self.assertRaises(ValueError):
            FeatureClusterer(MassMzMode.MZ, ElutionMode.SCAN, ToleranceType.PPM)

    def test_mass_time_mode(self):
        clusterer = FeatureClusterer(MassMzMode.MASS, ElutionMode.TIME)
        feature = _feature(500.0, 10)
        clusterer.add_set(FeatureSet([feature]))
        clusterable = clusterer.clusterable_sets[0][0]
        self.assertEqual(clusterable.dimension1_value, feature.mass)
        self.assertEqual(clusterable.dimension2_value, feature.time)
        self.assertIs(clusterable.feature, feature)

    def test_get_set(self):
        clusterer = FeatureClusterer()
        fs = FeatureSet([_feature(500.0, 10)])
        self.assertEqual(clusterer.add_set(fs), 0)
        self.assertIs(clusterer.get_set(0), fs)

    def test_ppm_clustering_on_mass(self):
        clusterer = FeatureClusterer(MassMzMode.MASS, ElutionMode.SCAN, ToleranceType.PPM)
        a = Feature.from_mass(scan=10, time=15.0, mass=2000.0, charge=2, intensity=1.0)
        b = Feature.from_mass(scan=11, time=16.5, mass=2000.015, charge=2, intensity=1.0)
        clusterer.add_set([a, b])
        clusterer.split2d(10.0, 5)
        self.assertEqual(clusterer.num_buckets(), 1)
        clusterer.split2d(5.0, 5)
        self.assertEqual(clusterer.num_buckets(), 2)


class TestConflictResolution:
    """Test ordering of same-set features in a bucket."""

    def _bucket(self, features):
        clusterer = FeatureClusterer()
        clusterer.add_set(FeatureSet(features))
        clusterer.split2d(0.1, 10)
        summaries = clusterer.summarize()
        assert len(summaries) == 1
        return summaries[0]

    def test_best_orders_by_peaks_then_kl(self):
        a = _feature(500.00, 10, peaks=3, kl=0.2, intensity=900.0)
        b = _feature(500.01, 10, peaks=5, kl=0.4, intensity=100.0)
        c = _feature(500.02, 10, peaks=5, kl=0.1, intensity=10.0)
        ordered = order_cluster_features(self._bucket([a, b, c]), 1, ConflictResolver.BEST)
        assert ordered[0] == [c, b, a]

    def test_max_orders_by_intensity(self):
        a = _feature(500.00, 10, peaks=3, intensity=900.0)
        b = _feature(500.01, 10, peaks=5, intensity=100.0)
        ordered = order_cluster_features(self._bucket([a, b]), 1, ConflictResolver.MAX)
        assert ordered[0] == [a, b]

    def test_best_ties_keep_insertion_order(self):
        a = _feature(500.00, 10, peaks=2, kl=0.3)
        b = _feature(500.01, 10, peaks=2, kl=0.3)
        ordered = order_cluster_features(self._bucket([a, b]), 1, ConflictResolver.BEST)
        assert ordered[0] == [a, b]

    @pytest.mark.parametrize("resolver", [ConflictResolver.BEST, ConflictResolver.MAX])
    def test_ties_prefer_earlier_inserted_over_lower_mz(self, resolver):
        first = _feature(500.01, 10, peaks=2, kl=0.3, intensity=500.0)
        second = _feature(500.00, 10, peaks=2, kl=0.3, intensity=500.0)
        ordered = order_cluster_features(self._bucket([first, second]), 1, resolver)
        assert ordered[0] == [first, second]

    def test_best_tie_cell_intensity_from_first_inserted(self):
        grouper = FeatureGrouper(conflict_resolver=ConflictResolver.BEST)
        grouper.add_set(FeatureSet([
            _feature(500.01, 10, peaks=2, kl=0.3, intensity=111.0),
            _feature(500.00, 10, peaks=2, kl=0.3, intensity=999.0),
        ]))
        grouper.split2d(0.1, 10)
        rows = list(grouper.iter_peptide_array_rows())
        assert len(rows) == 1
        assert rows[0].intensities == [pytest.approx(111.0)]

    @pytest.mark.parametrize("resolver,expected", [
        (ConflictResolver.SUM, 1000.0),
        (ConflictResolver.BEST, 100.0),
        (ConflictResolver.MAX, 900.0),
    ])
    def test_cell_intensity(self, resolver, expected):
        set_a = FeatureSet([
            _feature(500.00, 10, peaks=3, intensity=900.0),
            _feature(500.01, 10, peaks=5, intensity=100.0),
        ])
        grouper = FeatureGrouper(conflict_resolver=resolver)
        grouper.add_set(set_a)
        grouper.split2d(0.1, 10)
        rows = list(grouper.iter_peptide_array_rows())
        assert len(rows) == 1
        assert rows[0].intensities == [pytest.approx(expected)]


class TestGroupByCharge:
    """Test per-charge partitioning."""

    def test_new_charge_padded_for_earlier_sets(self):
        grouper = FeatureGrouper(group_by_charge=True)
        grouper.add_set(FeatureSet([_feature(500.0, 10, charge=2)]))
        grouper.add_set(FeatureSet([_feature(500.0, 10, charge=2),
                                    _feature(400.0, 10, charge=3),
                                    _feature(300.0, 10, charge=0)]))

        assert grouper.observed_charges == [2, 3]
        for _, clusterer in grouper.clusterers():
            assert clusterer.num_sets == 2

        grouper.split2d(0.1, 5)
        by_charge = grouper.summarize_by_charge()
        assert by_charge[2][0].set_count == 2
        assert by_charge[3][0].entries[0].set_index == 1
        # charge 0 dropped
        assert grouper.num_buckets() == 2
        assert grouper.rows_with_one_from_each() == 1

    def test_negative_charges_grouped_separately(self):
        grouper = FeatureGrouper(group_by_charge=True)
        grouper.add_set(FeatureSet([_feature(500.0, 10, charge=-2), _feature(500.0, 10, charge=2)]))
        grouper.split2d(0.1, 5)
        assert grouper.observed_charges == [-2, 2]
        assert grouper.num_buckets() == 2


class TestPeptideArray:
    """Test the aligned output."""

    def _grouper(self, with_ids=False):
        pep = (lambda p: p) if with_ids else (lambda p: None)
        run1 = FeatureSet([
            _feature(500.0, 100, intensity=10.0, peptide=pep("AAAK"), protein="P1"),
            _feature(700.0, 300, intensity=30.0),
        ], source="/data/run one.tsv")
        run2 = FeatureSet([
            _feature(500.02, 102, intensity=20.0, peptide=pep("AAAK"), protein="P1"),
            _feature(500.03, 103, intensity=5.0, peptide=pep("CCCK"), protein="P2"),
        ], source="/data/run2.tsv")
        grouper = FeatureGrouper()
        grouper.add_set(run1)
        grouper.add_set(run2)
        grouper.split2d(0.1, 10)
        return grouper

    def test_columns(self):
        grouper = self._grouper()
        assert grouper.peptide_array_columns() == [
            "id", "minMz", "maxMz", "minScan", "maxScan", "featureCount", "setCount",
            "intensity_run_one", "intensity_run2",
        ]

    def test_columns_with_identifications(self):
        grouper = self._grouper(with_ids=True)
        columns = grouper.peptide_array_columns()
        assert columns[-3:] == ["intensity_run2", "peptide_run2", "protein_run2"]

    def test_write_peptide_array(self):
        grouper = self._grouper()
        out = io.StringIO()
        n_rows = grouper.write_peptide_array(out)
        lines = out.getvalue().splitlines()

        assert n_rows == 2
        assert len(lines) == 3
        first = lines[1].split("\t")
        assert first[0] == "1"
        assert first[3:7] == ["100", "103", "3", "2"]
        assert first[7:] == ["10.0", "25.0"]
        second = lines[2].split("\t")
        assert second[7:] == ["30.0", ""]

    def test_multiple_identifications_bracketed(self):
        grouper = self._grouper(with_ids=True)
        out = io.StringIO()
        grouper.write_peptide_array(out)
        first = out.getvalue().splitlines()[1].split("\t")
        assert first[7:10] == ["10.0", "AAAK", "P1"]
        assert first[10:13] == ["25.0", "[AAAK][CCCK]", "[P1][P2]"]
        assert grouper.num_identification_conflicts == 1

    def test_cell_identifications_dedups_lists(self):
        features = [_feature(500.0, 1, peptide="AAK"), _feature(500.0, 1, peptide="AAK")]
        assert cell_identifications(features) == ("AAK", "", False)
        assert cell_identifications([]) == ("", "", False)

    def test_write_array_details(self):
        grouper = self._grouper()
        out = io.StringIO()
        assert grouper.write_array_details(out) == 4
        lines = out.getvalue().splitlines()
        assert lines[0].startswith("id\tfile\tscan\ttime\tmz")
        assert lines[1].split("\t")[:2] == ["1", "run one.tsv"]

    def test_filter_by_grouped_alignment(self):
        grouper = self._grouper()
        filtered = grouper.filter_by_grouped_alignment(2)
        assert [len(fs) for fs in filtered] == [1, 2]
        assert filtered[0].source == "/data/run one.tsv"


class TestBucketEvaluation:
    """Test tolerance search scores."""

    def _runs(self, peptides_run2):
        run1 = FeatureSet([
            _feature(500.0, 100, peptide="AAAK"),
            _feature(600.0, 200, peptide="CCCK"),
        ])
        run2 = FeatureSet([
            _feature(500.05, 101, peptide=peptides_run2[0]),
            _feature(600.05, 201, peptide=peptides_run2[1]),
        ])
        grouper = FeatureGrouper()
        grouper.add_set(run1)
        grouper.add_set(run2)
        return grouper

    def test_peptide_agreement_score(self):
        grouper = self._runs(("AAAK", "DDDK"))
        grouper.split2d(0.1, 5)
        # one agreeing bucket, one mismatching bucket
        assert grouper.peptide_agreement_score() == 0

    def test_best_buckets_peptide_agreement(self):
        grouper = self._runs(("AAAK", "CCCK"))
        best = grouper.calculate_best_buckets([0.01, 0.1], [5], BucketEvaluationMode.PEPTIDE_AGREEMENT)
        assert best == (0.1, 5)
        assert grouper.peptide_agreement_score() == 2

    def test_best_buckets_one_from_each(self):
        grouper = self._runs(("AAAK", "CCCK"))
        best = grouper.calculate_best_buckets([0.01, 0.1, 1.0], [5])
        assert best == (0.1, 5)
        assert grouper.rows_with_one_from_each() == 2
