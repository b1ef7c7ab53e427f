"""Tests for rank checks and the rank-relative permission rules."""

import itertools

import pytest

from factionbot.core.authorization import (
    can_fine,
    can_remove_fine,
    can_remove_member,
    can_set_rank,
    can_view_fines_of,
    has_rank,
)
from factionbot.models.faction import RANK_ORDER, Rank


class TestHasRank:
    @pytest.mark.parametrize(("rank", "minimum"), list(itertools.product(Rank, Rank)))
    def test_total_order(self, rank: Rank, minimum: Rank) -> None:
        assert has_rank(rank, minimum) is (RANK_ORDER[rank] >= RANK_ORDER[minimum])

    def test_explicit_pairs(self) -> None:
        assert has_rank(Rank.LEADER, Rank.OFFICER)
        assert has_rank(Rank.OFFICER, Rank.OFFICER)
        assert not has_rank(Rank.MEMBER, Rank.OFFICER)
        assert not has_rank(Rank.OFFICER, Rank.LEADER)

    def test_accepts_stored_strings(self) -> None:
        assert has_rank("LEADER", "MEMBER")


class TestCanFine:
    def test_officer_cannot_fine_leader(self) -> None:
        assert not can_fine(Rank.OFFICER, "2", Rank.LEADER, "1")

    def test_officer_cannot_fine_officer(self) -> None:
        assert not can_fine(Rank.OFFICER, "2", Rank.OFFICER, "3")

    def test_officer_fines_member(self) -> None:
        assert can_fine(Rank.OFFICER, "2", Rank.MEMBER, "3")

    def test_leader_fines_self(self) -> None:
        assert can_fine(Rank.LEADER, "1", Rank.LEADER, "1")

    def test_leader_cannot_fine_other_leader(self) -> None:
        assert not can_fine(Rank.LEADER, "1", Rank.LEADER, "9")

    def test_leader_fines_officer(self) -> None:
        assert can_fine(Rank.LEADER, "1", Rank.OFFICER, "2")

    def test_member_never_fines(self) -> None:
        assert not can_fine(Rank.MEMBER, "3", Rank.MEMBER, "4")


class TestOtherRules:
    def test_issuer_removes_own_fine(self) -> None:
        assert can_remove_fine(Rank.OFFICER, "2", issuer_id="2")

    def test_officer_cannot_remove_others_fine(self) -> None:
        assert not can_remove_fine(Rank.OFFICER, "2", issuer_id="7")

    def test_leader_removes_any_fine(self) -> None:
        assert can_remove_fine(Rank.LEADER, "1", issuer_id="7")

    def test_remove_member_requires_higher_rank(self) -> None:
        assert can_remove_member(Rank.OFFICER, "2", Rank.MEMBER, "3")
        assert not can_remove_member(Rank.OFFICER, "2", Rank.OFFICER, "4")
        assert not can_remove_member(Rank.LEADER, "1", Rank.LEADER, "1")

    def test_only_leader_sets_rank_and_never_own(self) -> None:
        assert can_set_rank(Rank.LEADER, "1", "2")
        assert not can_set_rank(Rank.LEADER, "1", "1")
        assert not can_set_rank(Rank.OFFICER, "2", "3")

    def test_fine_history_visibility(self) -> None:
        assert can_view_fines_of(Rank.MEMBER, "3", "3")
        assert not can_view_fines_of(Rank.MEMBER, "3", "4")
        assert not can_view_fines_of(Rank.MEMBER, "3", None)
        assert can_view_fines_of(Rank.OFFICER, "2", None)
