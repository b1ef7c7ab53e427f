"""Rank checks for faction commands.

All permission decisions go through ``has_rank`` plus the rank-relative
predicates below. The relative predicates assume the base rank check for
the command has already passed.
"""

from __future__ import annotations

from factionbot.models.faction import RANK_ORDER, Rank


def has_rank(rank: Rank | str, minimum: Rank | str) -> bool:
    """Return True if *rank* is at least *minimum* under LEADER > OFFICER > MEMBER."""
    return RANK_ORDER[Rank(rank)] >= RANK_ORDER[Rank(minimum)]


def outranks(rank: Rank | str, other: Rank | str) -> bool:
    return RANK_ORDER[Rank(rank)] > RANK_ORDER[Rank(other)]


def can_fine(
    issuer_rank: Rank | str,
    issuer_id: str,
    target_rank: Rank | str,
    target_id: str,
) -> bool:
    """Whether an issuer may fine a target.

    Officers may only fine plain members. Leaders may fine anyone except
    another leader, though a leader may fine themself.
    """
    issuer = Rank(issuer_rank)
    target = Rank(target_rank)
    if issuer is Rank.LEADER:
        return target is not Rank.LEADER or issuer_id == target_id
    if issuer is Rank.OFFICER:
        return target is Rank.MEMBER
    return False


def can_remove_fine(requester_rank: Rank | str, requester_id: str, issuer_id: str) -> bool:
    """Leaders may remove any fine; everyone else only the fines they issued."""
    return Rank(requester_rank) is Rank.LEADER or requester_id == issuer_id


def can_remove_member(
    actor_rank: Rank | str,
    actor_id: str,
    target_rank: Rank | str,
    target_id: str,
) -> bool:
    """Members can only be removed by someone strictly above them, never by themselves."""
    return actor_id != target_id and outranks(actor_rank, target_rank)


def can_set_rank(actor_rank: Rank | str, actor_id: str, target_id: str) -> bool:
    """Only a leader may change ranks, and never their own (a faction keeps its leader)."""
    return Rank(actor_rank) is Rank.LEADER and actor_id != target_id


def can_view_fines_of(viewer_rank: Rank | str, viewer_id: str, target_id: str | None) -> bool:
    """Officers may browse any fine history; members only their own."""
    if has_rank(viewer_rank, Rank.OFFICER):
        return True
    return target_id == viewer_id
