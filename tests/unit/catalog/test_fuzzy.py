"""Unit tests for edit-distance column suggestions."""

from planqa.catalog.fuzzy import find_closest_columns, levenshtein


class TestLevenshtein:
    def test_identical(self):
        assert levenshtein("JobName", "JobName") == 0

    def test_empty_side(self):
        assert levenshtein("", "abc") == 3
        assert levenshtein("abc", "") == 3

    def test_classic_pair(self):
        assert levenshtein("kitten", "sitting") == 3


class TestFindClosestColumns:
    def test_nearest_first(self):
        columns = ["PlantName", "JobId", "JobName"]
        assert find_closest_columns(columns, "JobNam")[0] == "JobName"

    def test_case_insensitive(self):
        assert find_closest_columns(["JobName"], "JOBNAME") == ["JobName"]

    def test_prefix_kept_beyond_cutoff(self):
        assert find_closest_columns(["EndDateTime", "StartDate"], "End") == ["EndDateTime"]

    def test_prefix_beats_non_prefix_at_same_distance(self):
        assert find_closest_columns(["Slant", "Plants"], "Plant") == ["Plants", "Slant"]

    def test_distant_columns_dropped(self):
        assert find_closest_columns(["CompletelyDifferent"], "Qty") == []

    def test_limit(self):
        columns = [f"Col{i}" for i in range(10)]
        assert len(find_closest_columns(columns, "Col", limit=3)) == 3

    def test_duplicate_spellings_collapsed(self):
        assert find_closest_columns(["JobId", "JOBID"], "jobid") == ["JobId"]
