"""
Tests for the membership mutation guard.

Slots in the fixture org: 1 administrator, 2 manager (holds
settings:manage), 3 producer, 4 host, 5 viewer; 6-10 inactive.
"""

from __future__ import annotations

import asyncio
import random
import uuid

import pytest

from slotguard.access.catalog import MANAGER_PERMISSION
from slotguard.access.guard import MutationKind
from slotguard.core.errors import (
    ConfirmationRequired,
    Forbidden,
    GuardError,
    InvalidSlot,
    LastManager,
    MembershipNotFound,
    RoleInactive,
)

MANAGER, PRODUCER, HOST, VIEWER = 2, 3, 4, 5


async def manager_count(access, store, org_id) -> int:
    async with store.transaction(org_id) as tx:
        roster = await tx.roster()
    count = 0
    for _, slot in roster:
        if (await access.resolver.resolve(org_id, slot)).has(MANAGER_PERMISSION):
            count += 1
    return count


# ---------------------------------------------------------------------------
# Named scenarios
# ---------------------------------------------------------------------------

class TestScenarios:
    async def test_sole_manager_self_demotion(self, access, store, org_id, add_member):
        manager = await add_member(org_id, MANAGER)

        with pytest.raises(ConfirmationRequired):
            await access.change_slot(manager, manager, org_id, PRODUCER)
        with pytest.raises(LastManager):
            await access.change_slot(manager, manager, org_id, PRODUCER, confirm=True)

        assert await store.get_membership_slot(manager, org_id) == MANAGER

    async def test_non_admin_cannot_touch_administrator(self, access, org_id, add_member):
        # Give the host slot every management permission; still not enough.
        await access.upsert_org_role(
            org_id,
            HOST,
            {"overrides": [
                {"key": "settings:manage", "allowed": True},
                {"key": "roles:manage", "allowed": True},
                {"key": "staff:delete", "allowed": True},
            ]},
        )
        actor = await add_member(org_id, HOST)
        admin = await add_member(org_id, 1)

        with pytest.raises(Forbidden):
            await access.change_slot(actor, admin, org_id, HOST)
        with pytest.raises(Forbidden):
            await access.remove_membership(actor, admin, org_id)

    async def test_actor_without_settings_manage(self, access, org_id, add_member):
        actor = await add_member(org_id, PRODUCER)
        target = await add_member(org_id, VIEWER)
        with pytest.raises(Forbidden):
            await access.change_slot(actor, target, org_id, PRODUCER)


# ---------------------------------------------------------------------------
# Individual checks
# ---------------------------------------------------------------------------

class TestChecks:
    @pytest.mark.parametrize("slot", [0, 11, True, None])
    async def test_invalid_destination(self, access, org_id, add_member, slot):
        admin = await add_member(org_id, 1)
        target = await add_member(org_id, VIEWER)
        with pytest.raises(InvalidSlot):
            await access.change_slot(admin, target, org_id, slot)

    async def test_missing_target(self, access, org_id, add_member):
        admin = await add_member(org_id, 1)
        with pytest.raises(MembershipNotFound) as exc_info:
            await access.change_slot(admin, uuid.uuid4(), org_id, VIEWER)
        assert exc_info.value.status_code == 404

    async def test_only_admin_grants_slot_one(self, access, org_id, add_member):
        manager = await add_member(org_id, MANAGER)
        target = await add_member(org_id, VIEWER)
        with pytest.raises(Forbidden):
            await access.change_slot(manager, target, org_id, 1)

        admin = await add_member(org_id, 1)
        view = await access.change_slot(admin, target, org_id, 1)
        assert view.slot == 1
        assert view.is_active is True

    async def test_destination_must_be_active(self, access, org_id, add_member):
        admin = await add_member(org_id, 1)
        target = await add_member(org_id, VIEWER)
        with pytest.raises(RoleInactive):
            await access.change_slot(admin, target, org_id, 9)

    async def test_self_demotion_with_other_manager(self, access, store, org_id, add_member):
        manager = await add_member(org_id, MANAGER)
        await add_member(org_id, MANAGER)

        with pytest.raises(ConfirmationRequired):
            await access.change_slot(manager, manager, org_id, VIEWER)
        view = await access.change_slot(manager, manager, org_id, VIEWER, confirm=True)
        assert view.slot == VIEWER
        assert view.label == "Role 5"

    async def test_self_move_between_manager_slots_needs_no_confirm(
        self, access, org_id, add_member
    ):
        manager = await add_member(org_id, MANAGER)
        await access.upsert_org_role(
            org_id, PRODUCER, {"overrides": [{"key": "settings:manage", "allowed": True}]}
        )
        view = await access.change_slot(manager, manager, org_id, PRODUCER)
        assert view.slot == PRODUCER

    async def test_last_manager_removed_by_admin_is_fine(self, access, org_id, add_member):
        admin = await add_member(org_id, 1)
        manager = await add_member(org_id, MANAGER)
        await access.remove_membership(admin, manager, org_id)
        assert await access.get_user_slot(manager, org_id) is None

    async def test_admin_cannot_remove_themselves_when_alone(self, access, org_id, add_member):
        admin = await add_member(org_id, 1)
        with pytest.raises(ConfirmationRequired):
            await access.remove_membership(admin, admin, org_id)
        with pytest.raises(LastManager):
            await access.remove_membership(admin, admin, org_id, confirm=True)

    async def test_removing_non_manager(self, access, store, org_id, add_member):
        manager = await add_member(org_id, MANAGER)
        viewer = await add_member(org_id, VIEWER)
        await access.remove_membership(manager, viewer, org_id)
        assert await store.get_membership_slot(viewer, org_id) is None

    async def test_commit_reports_the_affected_role(self, access, org_id, add_member):
        admin = await add_member(org_id, 1)
        target = await add_member(org_id, HOST)

        moved = await access.guard._apply(
            MutationKind.CHANGE_SLOT, admin, target, org_id, VIEWER, False
        )
        assert (moved.slot, moved.label) == (VIEWER, "Role 5")
        removed = await access.guard._apply(MutationKind.REMOVE, admin, target, org_id, None, False)
        assert (removed.slot, removed.label) == (VIEWER, "Role 5")


# ---------------------------------------------------------------------------
# Side effects
# ---------------------------------------------------------------------------

class TestSideEffects:
    async def test_commit_invalidates_user_slot(self, access, org_id, add_member):
        admin = await add_member(org_id, 1)
        target = await add_member(org_id, VIEWER)
        assert not await access.has_permission(target, org_id, "booking:create")

        await access.change_slot(admin, target, org_id, PRODUCER)
        assert await access.has_permission(target, org_id, "booking:create")

    async def test_rejection_writes_nothing_and_keeps_cache(
        self, access, store, metrics, org_id, add_member
    ):
        manager = await add_member(org_id, MANAGER)
        await access.get_user_slot(manager, org_id)
        invalidations = metrics.get("cache_invalidations_total", scope="org")

        with pytest.raises(ConfirmationRequired):
            await access.change_slot(manager, manager, org_id, VIEWER)

        assert await store.get_membership_slot(manager, org_id) == MANAGER
        assert metrics.get("cache_invalidations_total", scope="org") == invalidations
        assert metrics.get("guard_rejections_total", code="CONFIRM_REQUIRED") == 1

    async def test_guard_errors_are_distinguishable(self):
        assert issubclass(LastManager, GuardError)
        assert issubclass(ConfirmationRequired, GuardError)
        assert not issubclass(LastManager, Forbidden)
        assert not issubclass(ConfirmationRequired, Forbidden)
        assert LastManager.code != Forbidden.code != ConfirmationRequired.code


# ---------------------------------------------------------------------------
# Last-manager invariant
# ---------------------------------------------------------------------------

class TestLastManagerInvariant:
    async def test_random_guarded_sequences(self, access, store, org_id, add_member):
        rng = random.Random(1234)
        members = [await add_member(org_id, MANAGER)]
        for slot in (PRODUCER, HOST, VIEWER, MANAGER, VIEWER):
            members.append(await add_member(org_id, slot))

        for _ in range(120):
            actor = rng.choice(members)
            target = rng.choice(members)
            try:
                if rng.random() < 0.8:
                    await access.change_slot(
                        actor,
                        target,
                        org_id,
                        rng.choice([1, MANAGER, PRODUCER, HOST, VIEWER, 9]),
                        confirm=rng.random() < 0.5,
                    )
                else:
                    await access.remove_membership(
                        actor, target, org_id, confirm=rng.random() < 0.5
                    )
                    members.remove(target)
            except GuardError:
                pass
            assert await manager_count(access, store, org_id) >= 1
            if len(members) < 3:
                members.append(await add_member(org_id, rng.choice([PRODUCER, VIEWER])))

    async def test_concurrent_demotions_cannot_both_pass(self, access, store, org_id, add_member):
        a = await add_member(org_id, MANAGER)
        b = await add_member(org_id, MANAGER)

        results = await asyncio.gather(
            access.change_slot(a, b, org_id, VIEWER),
            access.change_slot(b, a, org_id, VIEWER),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], (Forbidden, LastManager))
        assert await manager_count(access, store, org_id) == 1
