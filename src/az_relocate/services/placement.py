"""Proximity placement group compatibility.

A proximity placement group pins itself to physical hardware through its
members: once any zonal VM exists in the group, the group lives in that
zone; a running regional VM pins it to hardware whose zone is unknown.
Deallocated / stopped regional members hold no hardware and pin nothing;
a member whose power state could not be read is assumed to be running.

:func:`resolve_placement_group` is pure: it looks only at the captured
:class:`PlacementGroupFacts` and never at member order.  Whether an
incompatible decision stops the move or merely drops the group is the
caller's policy (``RelocateSettings.placement_group_policy``).
"""

from __future__ import annotations

import logging

from az_relocate.models.migration import PlacementDecision
from az_relocate.models.resources import PlacementGroupFacts, PlacementGroupMember

logger = logging.getLogger(__name__)

# Power states in which a regional member occupies hardware.
RUNNING_STATES: frozenset[str] = frozenset({"running", "starting"})


def _is_running(member: PlacementGroupMember) -> bool:
    if member.power_state is None:
        return True
    return member.power_state.lower() in RUNNING_STATES


def _label(member: PlacementGroupMember) -> str:
    name = member.id.rsplit("/", 1)[-1]
    return name if member.power_state is not None else f"{name} (power state unknown)"


def resolve_placement_group(
    group: PlacementGroupFacts | None,
    source_vm_id: str,
    target_zone: str,
) -> PlacementDecision:
    """Decide whether the replica may join *group* in *target_zone*.

    Raises :class:`~az_relocate.errors.PlacementGroupStateError` when the
    group's zonal members disagree about their zone.
    """
    if group is None:
        return PlacementDecision(useGroup=False, reason="no_group")

    others = group.others(source_vm_id)
    if not others:
        return PlacementDecision(
            useGroup=True,
            reason="open",
            groupId=group.id,
            detail="Placement group has no other members; it is fully open.",
        )

    pinned = group.pinned_zone(source_vm_id)
    if pinned is not None:
        if pinned == target_zone:
            return PlacementDecision(
                useGroup=True,
                reason="pinned_to_target",
                groupId=group.id,
                pinnedZone=pinned,
                detail=f"Placement group is pinned to zone {pinned}, the target zone.",
            )
        return PlacementDecision(
            useGroup=False,
            reason="pinned_to_other_zone",
            groupId=group.id,
            pinnedZone=pinned,
            detail=(
                f"Placement group is pinned to zone {pinned} by its zonal members; "
                f"it cannot accept a member in zone {target_zone}."
            ),
        )

    for member in others:
        if member.power_state is None:
            logger.warning(
                "Power state of placement group member %s is unknown; assuming it is running",
                member.id,
            )
    running = sorted(_label(m) for m in others if _is_running(m))
    if running:
        return PlacementDecision(
            useGroup=False,
            reason="regional_members_running",
            groupId=group.id,
            detail=(
                "Placement group is held on regional hardware by running member(s) "
                f"{', '.join(running)}; deallocate them or move without the group."
            ),
        )

    return PlacementDecision(
        useGroup=True,
        reason="unpinned",
        groupId=group.id,
        detail="Placement group only has deallocated regional members; it is not pinned.",
    )
