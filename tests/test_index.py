"""Tests for catmix.index — agent buckets and the categorical index."""

import itertools

import numpy as np
import pytest

from catmix.errors import CompoundIndexError, EmptyBucket, IndexNotBuilt
from catmix.index import AgentBucket, CategoricalIndex
from catmix.types import PERSON_DTYPE, Sex, allocate_persons


# ─── Helpers ──────────────────────────────────────────────────────────

def _make_persons(rows):
    """Population store from (age, sex, location, sb[, alive]) tuples."""
    persons = allocate_persons(len(rows))
    for i, row in enumerate(rows):
        age, sex, loc, sb = row[:4]
        alive = row[4] if len(row) > 4 else True
        persons['age'][i] = age
        persons['sex'][i] = sex
        persons['location'][i] = loc
        persons['social_behaviour'][i] = sb
        persons['alive'][i] = alive
    return persons


def _make_random_persons(n, n_locations, n_sb, seed=0):
    rng = np.random.default_rng(seed)
    persons = allocate_persons(n)
    persons['age'] = rng.uniform(0.0, 70.0, n)
    persons['sex'] = rng.integers(0, 2, n)
    persons['location'] = rng.integers(0, n_locations, n)
    persons['social_behaviour'] = rng.integers(0, n_sb, n)
    persons['alive'] = rng.random(n) < 0.9
    return persons


def _bucket_contents(index):
    """{(loc, age, sb): array of refs} for every bucket."""
    A, L, S = index.n_age_categories, index.n_locations, index.n_sb_categories
    return {
        (loc, age, sb): np.array(index.bucket(loc, age, sb).agents)
        for loc, age, sb in itertools.product(range(L), range(A), range(S))
    }


# ── AgentBucket ───────────────────────────────────────────────────────

class TestAgentBucket:
    def test_empty(self):
        b = AgentBucket(location=1, age=2, sb=0)
        assert len(b) == 0
        assert b.get_num_agents() == 0
        assert b.key == (1, 2, 0)

    def test_append_and_extend(self):
        b = AgentBucket()
        b.append(5)
        b.extend([7, 9])
        assert len(b) == 3
        assert list(b) == [5, 7, 9]
        assert 7 in b
        assert 8 not in b

    def test_growth_keeps_contents(self):
        b = AgentBucket(capacity=2)
        b.extend(range(100))
        assert len(b) == 100
        np.testing.assert_array_equal(b.agents, np.arange(100))
        assert b.capacity >= 100

    def test_clear_keeps_capacity(self):
        b = AgentBucket()
        b.extend(range(50))
        cap = b.capacity
        b.clear()
        assert len(b) == 0
        assert b.capacity == cap

    def test_agents_read_only(self):
        b = AgentBucket()
        b.extend([1, 2])
        with pytest.raises(ValueError):
            b.agents[0] = 3

    def test_random_agent_empty_raises(self):
        b = AgentBucket(location=2, age=1, sb=1)
        with pytest.raises(EmptyBucket) as exc_info:
            b.random_agent(np.random.default_rng(0))
        assert exc_info.value.location == 2
        assert exc_info.value.age == 1
        assert exc_info.value.sb == 1

    def test_random_agent_uniform(self):
        """10,000 draws over {a1, a2, a3} are uniform within 5%."""
        b = AgentBucket()
        b.extend([10, 11, 12])
        rng = np.random.default_rng(12345)
        draws = np.array([b.random_agent(rng) for _ in range(10_000)])
        assert set(np.unique(draws)) == {10, 11, 12}
        for ref in (10, 11, 12):
            freq = np.mean(draws == ref)
            assert freq == pytest.approx(1.0 / 3.0, rel=0.05)

    def test_single_agent_always_returned(self):
        b = AgentBucket()
        b.append(42)
        rng = np.random.default_rng(1)
        assert all(b.random_agent(rng) == 42 for _ in range(20))


# ── Construction & keys ───────────────────────────────────────────────

class TestConstruction:
    def test_dimensions(self):
        idx = CategoricalIndex(n_age_categories=3, n_locations=4, n_sb_categories=2)
        assert idx.n_buckets == 24
        assert idx.shape == (2, 4, 3)

    def test_defaults(self):
        idx = CategoricalIndex()
        assert idx.min_age == 15
        assert idx.max_age == 40
        assert idx.n_age_categories == 1
        assert idx.n_sb_categories == 1
        assert idx.partner_sex == Sex.FEMALE

    @pytest.mark.parametrize('kwargs', [
        {'n_age_categories': 0},
        {'n_locations': 0},
        {'n_sb_categories': -1},
        {'n_locations': 2.5},
    ])
    def test_invalid_dimensions(self, kwargs):
        with pytest.raises(ValueError):
            CategoricalIndex(**kwargs)

    def test_invalid_window(self):
        with pytest.raises(ValueError, match="min_age"):
            CategoricalIndex(min_age=40, max_age=15)

    def test_not_built_initially(self):
        idx = CategoricalIndex()
        assert not idx.is_built
        with pytest.raises(IndexNotBuilt):
            idx.count_at(0, 0, 0)


class TestCompoundIndex:
    def test_bijection(self):
        """Every (location, age, sb) maps to a distinct key in [0, A·L·S)."""
        A, L, S = 3, 4, 2
        idx = CategoricalIndex(n_age_categories=A, n_locations=L, n_sb_categories=S)
        keys = [idx.compute_compound_index(loc, age, sb)
                for loc, age, sb in itertools.product(range(L), range(A), range(S))]
        assert sorted(keys) == list(range(A * L * S))

    def test_layout(self):
        """Age varies fastest, then location, then sb."""
        idx = CategoricalIndex(n_age_categories=3, n_locations=4, n_sb_categories=2)
        assert idx.compute_compound_index(0, 1, 0) == 1
        assert idx.compute_compound_index(1, 0, 0) == 3
        assert idx.compute_compound_index(0, 0, 1) == 12
        assert idx.compute_compound_index(3, 2, 1) == 23

    @pytest.mark.parametrize('loc,age,sb', [
        (4, 0, 0), (-1, 0, 0), (0, 3, 0), (0, 0, 2), (0, -1, 0),
    ])
    def test_out_of_range(self, loc, age, sb):
        idx = CategoricalIndex(n_age_categories=3, n_locations=4, n_sb_categories=2)
        with pytest.raises(CompoundIndexError):
            idx.compute_compound_index(loc, age, sb)

    def test_compound_error_is_index_error(self):
        idx = CategoricalIndex(n_locations=2)
        with pytest.raises(IndexError):
            idx.compute_compound_index(5, 0, 0)

    @pytest.mark.parametrize('loc,age,sb', [
        (0.5, 0, 0), (1.0, 0, 0), (0, 1.5, 0), (0, 0, '1'), (0, 0, None),
    ])
    def test_non_integer_rejected(self, loc, age, sb):
        idx = CategoricalIndex(n_age_categories=3, n_locations=4, n_sb_categories=2)
        with pytest.raises(CompoundIndexError, match="must be an integer"):
            idx.compute_compound_index(loc, age, sb)

    def test_numpy_integers_accepted(self):
        idx = CategoricalIndex(n_age_categories=3, n_locations=4, n_sb_categories=2)
        assert idx.compute_compound_index(np.int8(1), np.int64(2), np.int16(1)) == 17


class TestAgeBands:
    def test_equal_width(self):
        idx = CategoricalIndex(min_age=15, max_age=40, n_age_categories=5)
        assert idx.age_band_of(15.0) == 0
        assert idx.age_band_of(19.9) == 0
        assert idx.age_band_of(20.0) == 1
        assert idx.age_band_of(39.9) == 4

    def test_max_age_in_last_band(self):
        idx = CategoricalIndex(min_age=15, max_age=40, n_age_categories=5)
        assert idx.age_band_of(40.0) == 4

    def test_single_band(self):
        idx = CategoricalIndex()
        assert idx.age_band_of(15.0) == 0
        assert idx.age_band_of(40.0) == 0

    def test_array_input(self):
        idx = CategoricalIndex(min_age=10, max_age=30, n_age_categories=2)
        bands = idx.age_band_of(np.array([10.0, 19.0, 20.0, 30.0]))
        np.testing.assert_array_equal(bands, [0, 0, 1, 1])


# ── Rebuild ───────────────────────────────────────────────────────────

class TestRebuild:
    def test_basic_membership(self):
        persons = _make_persons([
            (20, Sex.FEMALE, 0, 0),
            (25, Sex.FEMALE, 1, 0),
            (30, Sex.MALE, 0, 0),        # wrong sex
            (10, Sex.FEMALE, 0, 0),      # too young
            (50, Sex.FEMALE, 1, 0),      # too old
            (22, Sex.FEMALE, 1, 0, False),  # dead
        ])
        idx = CategoricalIndex(n_locations=2)
        n = idx.rebuild(persons)
        assert n == 2
        assert idx.n_eligible == 2
        assert list(idx.bucket(0, 0, 0)) == [0]
        assert list(idx.bucket(1, 0, 0)) == [1]

    def test_window_bounds_inclusive(self):
        persons = _make_persons([
            (15, Sex.FEMALE, 0, 0),
            (40, Sex.FEMALE, 0, 0),
        ])
        idx = CategoricalIndex(n_locations=1)
        assert idx.rebuild(persons) == 2

    def test_every_eligible_in_exactly_one_bucket(self):
        A, L, S = 5, 3, 2
        persons = _make_random_persons(2000, L, S, seed=7)
        idx = CategoricalIndex(n_age_categories=A, n_locations=L, n_sb_categories=S)
        idx.rebuild(persons)

        eligible = set(np.flatnonzero(idx.eligible_mask(persons)).tolist())
        seen = {}
        for (loc, age, sb), refs in _bucket_contents(idx).items():
            for ref in refs.tolist():
                assert ref not in seen
                seen[ref] = (loc, age, sb)
        assert set(seen) == eligible
        for ref, (loc, age, sb) in seen.items():
            p = persons[ref]
            assert p['location'] == loc
            assert p['social_behaviour'] == sb
            assert idx.age_band_of(float(p['age'])) == age

    def test_ineligible_never_indexed(self):
        persons = _make_random_persons(500, 2, 1, seed=3)
        idx = CategoricalIndex(n_locations=2)
        idx.rebuild(persons)
        ineligible = np.flatnonzero(~idx.eligible_mask(persons))
        all_refs = np.concatenate(list(_bucket_contents(idx).values()))
        assert not np.isin(ineligible, all_refs).any()

    def test_sum_of_counts(self):
        persons = _make_random_persons(1000, 4, 2, seed=11)
        idx = CategoricalIndex(n_age_categories=3, n_locations=4, n_sb_categories=2)
        n = idx.rebuild(persons)
        assert idx.counts().sum() == n
        assert idx.location_counts().sum() == n
        assert idx.counts().shape == (2, 4, 3)

    def test_idempotent(self):
        """Rebuilding twice from the same store gives identical buckets."""
        persons = _make_random_persons(800, 3, 2, seed=5)
        idx = CategoricalIndex(n_age_categories=4, n_locations=3, n_sb_categories=2)
        idx.rebuild(persons)
        first = _bucket_contents(idx)
        idx.rebuild(persons)
        second = _bucket_contents(idx)
        for key in first:
            np.testing.assert_array_equal(first[key], second[key])

    def test_buckets_in_row_order(self):
        persons = _make_random_persons(300, 2, 1, seed=9)
        idx = CategoricalIndex(n_locations=2)
        idx.rebuild(persons)
        for refs in _bucket_contents(idx).values():
            assert np.all(np.diff(refs) > 0)

    def test_rebuild_replaces_previous_step(self):
        persons = _make_persons([(20, Sex.FEMALE, 0, 0), (20, Sex.FEMALE, 1, 0)])
        idx = CategoricalIndex(n_locations=2)
        idx.rebuild(persons)
        persons['alive'][0] = False
        idx.rebuild(persons)
        assert idx.count_at(0, 0, 0) == 0
        assert idx.count_at(1, 0, 0) == 1

    def test_empty_population(self):
        idx = CategoricalIndex(n_locations=3)
        assert idx.rebuild(allocate_persons(0)) == 0
        assert idx.is_built
        assert idx.location_counts().tolist() == [0, 0, 0]

    def test_location_out_of_range(self):
        persons = _make_persons([(20, Sex.FEMALE, 5, 0)])
        idx = CategoricalIndex(n_locations=2)
        with pytest.raises(CompoundIndexError, match="location"):
            idx.rebuild(persons)

    def test_sb_out_of_range(self):
        persons = _make_persons([(20, Sex.FEMALE, 0, 3)])
        idx = CategoricalIndex(n_locations=2, n_sb_categories=2)
        with pytest.raises(CompoundIndexError, match="social_behaviour"):
            idx.rebuild(persons)

    def test_out_of_range_ignored_when_ineligible(self):
        """Only eligible persons are classified."""
        persons = _make_persons([(20, Sex.MALE, 9, 0)])
        idx = CategoricalIndex(n_locations=2)
        assert idx.rebuild(persons) == 0

    def test_male_partner_index(self):
        persons = _make_persons([(20, Sex.FEMALE, 0, 0), (20, Sex.MALE, 0, 0)])
        idx = CategoricalIndex(n_locations=1, partner_sex=Sex.MALE)
        idx.rebuild(persons)
        assert list(idx.bucket(0, 0, 0)) == [1]

    def test_dtype_of_store(self):
        persons = _make_random_persons(10, 1, 1)
        assert persons.dtype == PERSON_DTYPE


# ── Incremental adds & window ─────────────────────────────────────────

class TestAddAgent:
    def test_add_after_clear(self):
        idx = CategoricalIndex(n_age_categories=2, n_locations=2)
        idx.clear()
        idx.add_agent_to_index(3, location=1, age=1, sb=0)
        idx.add_agent_to_index(4, location=1, age=1, sb=0)
        assert idx.count_at(1, 1, 0) == 2
        assert idx.n_eligible == 2
        assert list(idx.bucket(1, 1, 0)) == [3, 4]

    def test_add_out_of_range(self):
        idx = CategoricalIndex(n_locations=2)
        idx.clear()
        with pytest.raises(CompoundIndexError):
            idx.add_agent_to_index(0, location=2, age=0, sb=0)


class TestWindow:
    def test_setter_marks_stale(self):
        persons = _make_persons([(20, Sex.FEMALE, 0, 0)])
        idx = CategoricalIndex(n_locations=1)
        idx.rebuild(persons)
        idx.min_age = 18
        assert not idx.is_built
        with pytest.raises(IndexNotBuilt):
            idx.sample_at(0, 0, 0, np.random.default_rng(0))

    def test_new_window_applies_on_rebuild(self):
        persons = _make_persons([(20, Sex.FEMALE, 0, 0), (45, Sex.FEMALE, 0, 0)])
        idx = CategoricalIndex(n_locations=1)
        assert idx.rebuild(persons) == 1
        idx.max_age = 50
        assert idx.rebuild(persons) == 2

    def test_invalid_setter(self):
        idx = CategoricalIndex()
        with pytest.raises(ValueError):
            idx.min_age = 45
        with pytest.raises(ValueError):
            idx.max_age = 10
        assert idx.min_age == 15
        assert idx.max_age == 40


# ── Queries ───────────────────────────────────────────────────────────

class TestQueries:
    def test_sample_at_returns_member(self):
        persons = _make_persons([(20, Sex.FEMALE, 0, 0)] * 3)
        idx = CategoricalIndex(n_locations=2)
        idx.rebuild(persons)
        rng = np.random.default_rng(0)
        for _ in range(50):
            assert idx.sample_at(0, 0, 0, rng) in {0, 1, 2}

    def test_sample_at_empty(self):
        persons = _make_persons([(20, Sex.FEMALE, 0, 0)])
        idx = CategoricalIndex(n_locations=2)
        idx.rebuild(persons)
        with pytest.raises(EmptyBucket):
            idx.sample_at(1, 0, 0, np.random.default_rng(0))

    def test_counts_are_copies(self):
        idx = CategoricalIndex(n_locations=2)
        idx.clear()
        c = idx.counts()
        c[:] = 99
        assert idx.counts().sum() == 0

    def test_describe_population(self):
        persons = _make_persons([(20, Sex.FEMALE, 0, 0), (30, Sex.FEMALE, 1, 0)])
        idx = CategoricalIndex(n_locations=2)
        idx.rebuild(persons)
        text = idx.describe_population()
        assert "female" in text
        assert ": 2" in text
        assert len(text.splitlines()) == 5

    def test_describe_population_empty_rows(self):
        idx = CategoricalIndex(n_age_categories=2, n_locations=2, n_sb_categories=2)
        idx.clear()
        assert len(idx.describe_population().splitlines()) == 3
        assert len(idx.describe_population(include_empty=True).splitlines()) == 3 + 8
