"""Tests for haversine distance, skill overlap and the match score."""

from __future__ import annotations

import math

import pytest

from modules.marketplace.geo import (
    EARTH_RADIUS_KM,
    distance_between,
    haversine_km,
    match_score,
    skill_overlap,
)
from shared.schemas.marketplace import GeoPoint

KM_PER_DEGREE = EARTH_RADIUS_KM * math.pi / 180

POINTS = [
    (17.3850, 78.4741),
    (-41.28, 174.77),
    (51.5074, -0.1278),
    (0.0, 0.0),
    (89.9, 179.9),
    (-89.9, -179.9),
]


class TestHaversine:
    @pytest.mark.parametrize("a", POINTS)
    @pytest.mark.parametrize("b", POINTS)
    def test_symmetric(self, a, b):
        assert haversine_km(*a, *b) == pytest.approx(haversine_km(*b, *a))

    @pytest.mark.parametrize("a", POINTS)
    def test_identical_points_are_zero(self, a):
        assert haversine_km(*a, *a) == 0

    def test_antipodal_points(self):
        """Half the circumference, with no math domain error."""
        assert haversine_km(0, 0, 0, 180) == pytest.approx(math.pi * EARTH_RADIUS_KM)
        assert haversine_km(90, 0, -90, 0) == pytest.approx(math.pi * EARTH_RADIUS_KM)

    def test_one_degree_of_latitude(self):
        assert haversine_km(10, 20, 11, 20) == pytest.approx(KM_PER_DEGREE)

    def test_known_distance_london_paris(self):
        assert haversine_km(51.5074, -0.1278, 48.8566, 2.3522) == pytest.approx(343.5, abs=1)

    def test_distance_between_unknown_point_is_infinite(self):
        here = GeoPoint(lat=1, lng=1)
        assert distance_between(here, None) == math.inf
        assert distance_between(None, here) == math.inf


class TestSkillOverlap:
    def test_counts_required_skills_present(self):
        assert skill_overlap({"plumbing", "cleaning"}, {"plumbing"}) == 1

    def test_case_and_whitespace_insensitive(self):
        assert skill_overlap(["Plumbing ", "CLEANING"], ["plumbing", "cleaning"]) == 2

    def test_no_overlap(self):
        assert skill_overlap(["gardening"], ["plumbing"]) == 0

    def test_duplicate_required_skills_count_once(self):
        assert skill_overlap(["plumbing"], ["plumbing", "plumbing"]) == 1

    def test_empty_sets(self):
        assert skill_overlap([], ["plumbing"]) == 0
        assert skill_overlap(["plumbing"], []) == 0


class TestMatchScore:
    def test_formula(self):
        assert match_score(0, 1) == 60
        assert match_score(60, 1) == 10
        assert match_score(20, 3) == 60

    def test_proximity_clamped_at_zero(self):
        assert match_score(5000, 0) == 0

    def test_unknown_distance_scores_skills_only(self):
        assert match_score(None, 2) == 20

    @pytest.mark.parametrize("overlap", [0, 1, 4])
    def test_non_increasing_in_distance(self, overlap):
        distances = [0, 0.5, 10, 49.9, 50, 51, 100, 1000]
        scores = [match_score(d, overlap) for d in distances]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.parametrize("distance", [0, 25, 50, 75, None])
    def test_strictly_increasing_in_overlap(self, distance):
        scores = [match_score(distance, n) for n in range(6)]
        assert all(a < b for a, b in zip(scores, scores[1:]))
