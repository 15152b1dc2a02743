"""
SEIDO - Matching des disponibilités (fonctions pures)
"""

from services.availability_matcher import (
    find_overlaps_for_date,
    find_matches,
    find_conflicts,
    empty_result,
)

DAY = "2030-06-10"


def avail(user_id, start, end, date=DAY, role="locataire"):
    return {
        "user_id": user_id,
        "user_name": user_id.capitalize(),
        "user_role": role,
        "date": date,
        "start_time": start,
        "end_time": end,
    }


class TestOverlaps:
    def test_single_user_has_no_overlap(self):
        assert find_overlaps_for_date([avail("ana", "09:00", "12:00")], DAY) == []

    def test_two_users_overlap(self):
        matches = find_overlaps_for_date([
            avail("ana", "09:00", "12:00"),
            avail("bob", "10:00", "13:00", role="prestataire"),
        ], DAY)
        assert len(matches) == 1
        m = matches[0]
        assert (m["start_time"], m["end_time"]) == ("10:00", "12:00")
        assert m["match_score"] == 100
        assert m["overlap_duration"] == 120
        assert set(m["participant_user_ids"]) == {"ana", "bob"}

    def test_overlap_under_30_minutes_is_ignored(self):
        matches = find_overlaps_for_date([
            avail("ana", "09:00", "10:20"),
            avail("bob", "10:00", "12:00"),
        ], DAY)
        assert matches == []

    def test_greedy_extension_to_third_user(self):
        matches = find_overlaps_for_date([
            avail("ana", "08:00", "12:00"),
            avail("bob", "09:00", "13:00"),
            avail("cat", "10:00", "11:00"),
        ], DAY)
        best = matches[0]
        assert best["match_score"] == 100
        assert (best["start_time"], best["end_time"]) == ("10:00", "11:00")
        assert len(best["participant_user_ids"]) == 3

    def test_same_user_ranges_never_match(self):
        matches = find_overlaps_for_date([
            avail("ana", "09:00", "10:00"),
            avail("ana", "09:30", "11:00"),
            avail("bob", "14:00", "16:00"),
        ], DAY)
        assert matches == []

    def test_score_counts_people_not_ranges(self):
        matches = find_overlaps_for_date([
            avail("ana", "09:00", "11:00"),
            avail("ana", "09:30", "10:30"),
            avail("bob", "10:00", "12:00"),
            avail("cat", "14:00", "16:00"),
        ], DAY)
        best = matches[0]
        assert sorted(best["participant_user_ids"]) == ["ana", "bob"]
        assert best["match_score"] == 67


class TestFindMatches:
    def test_empty(self):
        assert find_matches([]) == empty_result()

    def test_partial_match_lists_missing_users(self):
        result = find_matches([
            avail("ana", "09:00", "12:00"),
            avail("bob", "10:00", "12:00"),
            avail("cat", "09:00", "10:00", date="2030-06-11"),
        ])
        assert len(result["perfectMatches"]) == 1
        assert len(result["partialMatches"]) == 1
        partial = result["partialMatches"][0]
        assert partial["date"] == DAY
        assert [u["user_id"] for u in partial["missing_users"]] == ["cat"]
        assert result["statistics"]["total_users"] == 3
        assert result["statistics"]["total_availability_slots"] == 3
        assert result["statistics"]["best_match_score"] == 100

    def test_suggestions_when_no_perfect_match(self):
        result = find_matches([
            avail("ana", "09:00", "12:00"),
            avail("bob", "10:00", "12:00"),
            avail("cat", "15:00", "17:00"),
        ])
        assert result["perfectMatches"] == []
        assert len(result["suggestions"]) == 1
        assert result["suggestions"][0]["alternatives"]


class TestConflicts:
    def test_same_user_overlapping_ranges(self):
        items = [avail("ana", "09:00", "11:00"), avail("ana", "10:00", "12:00")]
        conflicts = find_conflicts(items, {"ana": {"user_id": "ana", "name": "Ana", "role": "locataire"}})
        assert len(conflicts) == 1
        assert conflicts[0]["user_id"] == "ana"

    def test_disjoint_ranges_are_fine(self):
        items = [avail("ana", "09:00", "10:00"), avail("ana", "10:00", "12:00")]
        assert find_conflicts(items, {"ana": {"user_id": "ana", "name": "Ana", "role": "locataire"}}) == []
