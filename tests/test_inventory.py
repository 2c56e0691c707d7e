from datetime import timedelta

import pytest
from bson import ObjectId

from bloodnet.errors import AuthorizationError, NotFoundError, ValidationError
from bloodnet.models.enums import BLOOD_GROUPS, BloodGroup, InventorySource
from bloodnet.models.inventory import InventoryCreate, InventoryItem, InventoryUpdate
from bloodnet.services import inventory

from conftest import NOW


def stock(blood_group="O+", quantity=10, days=30, **extra):
    return InventoryCreate(
        blood_group=blood_group,
        quantity=quantity,
        expiry_date=NOW + timedelta(days=days),
        **extra,
    )


async def test_add_stock_creates_item(db, make_user):
    hospital = await make_user("hospital")
    item, created = await inventory.add_stock(db, hospital, stock(quantity=4), now=NOW)

    assert created
    assert item.hospital_id == hospital.id
    assert item.quantity == 4
    assert item.source == InventorySource.DONATION
    assert await db.inventory.count_documents({}) == 1


async def test_restock_with_same_batch_merges(db, make_user):
    hospital = await make_user("hospital")
    first, _ = await inventory.add_stock(db, hospital, stock(quantity=4, batch_number="B-1"), now=NOW)
    merged, created = await inventory.add_stock(
        db, hospital, stock(quantity=6, days=40, batch_number="B-1"), now=NOW
    )

    assert not created
    assert merged.id == first.id
    assert merged.quantity == 10
    assert merged.expiry_date == NOW + timedelta(days=40)
    assert await db.inventory.count_documents({}) == 1


async def test_same_batch_number_in_other_group_is_a_new_item(db, make_user):
    hospital = await make_user("hospital")
    await inventory.add_stock(db, hospital, stock(blood_group="O+", batch_number="B-1"), now=NOW)
    _, created = await inventory.add_stock(db, hospital, stock(blood_group="A-", batch_number="B-1"), now=NOW)
    assert created


async def test_add_stock_rejects_past_expiry(db, make_user):
    hospital = await make_user("hospital")
    with pytest.raises(ValidationError):
        await inventory.add_stock(db, hospital, stock(days=-1), now=NOW)


async def test_admin_must_name_an_existing_hospital(db, make_user):
    admin = await make_user("admin")
    with pytest.raises(NotFoundError):
        await inventory.add_stock(db, admin, stock(hospital_id=str(ObjectId())), now=NOW)

    hospital = await make_user("hospital")
    item, _ = await inventory.add_stock(db, admin, stock(hospital_id=hospital.id), now=NOW)
    assert item.hospital_id == hospital.id


async def test_only_owner_or_admin_can_change_stock(db, make_user):
    owner = await make_user("hospital")
    other = await make_user("hospital")
    admin = await make_user("admin")
    item, _ = await inventory.add_stock(db, owner, stock(), now=NOW)

    with pytest.raises(AuthorizationError):
        await inventory.update_stock(db, other, item.id, InventoryUpdate(quantity=1))
    with pytest.raises(AuthorizationError):
        await inventory.remove_stock(db, other, item.id)

    updated = await inventory.update_stock(db, admin, item.id, InventoryUpdate(quantity=2, notes="recount"))
    assert updated.quantity == 2
    assert updated.notes == "recount"


async def test_malformed_and_unknown_ids_are_not_found(db, make_user):
    hospital = await make_user("hospital")
    with pytest.raises(NotFoundError):
        await inventory.get_item(db, hospital, "not-an-id")
    with pytest.raises(NotFoundError):
        await inventory.get_item(db, hospital, str(ObjectId()))


async def test_remove_stock_is_a_soft_delete(db, make_user):
    hospital = await make_user("hospital")
    item, _ = await inventory.add_stock(db, hospital, stock(), now=NOW)
    await inventory.remove_stock(db, hospital, item.id, now=NOW)

    stored = await db.inventory.find_one({"_id": ObjectId(item.id)})
    assert stored["is_active"] is False
    assert await inventory.list_stock(db, ObjectId(hospital.id)) == []


async def test_search_groups_usable_units_by_hospital(db, make_user):
    pune = await make_user("hospital", city="Pune")
    mumbai = await make_user("hospital", city="Mumbai")
    await inventory.insert_stock(db, ObjectId(pune.id), BloodGroup.O_POSITIVE, 5, NOW + timedelta(days=10), now=NOW)
    await inventory.insert_stock(db, ObjectId(pune.id), BloodGroup.O_POSITIVE, 2, NOW + timedelta(days=20), now=NOW)
    await inventory.insert_stock(db, ObjectId(mumbai.id), BloodGroup.O_POSITIVE, 3, NOW + timedelta(days=5), now=NOW)
    # expired, empty and other-group stock never shows up
    await inventory.insert_stock(db, ObjectId(pune.id), BloodGroup.O_POSITIVE, 9, NOW - timedelta(days=1), now=NOW)
    await inventory.insert_stock(db, ObjectId(pune.id), BloodGroup.O_POSITIVE, 0, NOW + timedelta(days=10), now=NOW)
    await inventory.insert_stock(db, ObjectId(pune.id), BloodGroup.A_NEGATIVE, 4, NOW + timedelta(days=10), now=NOW)

    groups, count = await inventory.search_available(db, BloodGroup.O_POSITIVE, now=NOW)
    assert count == 3
    by_hospital = {group["hospital"]["_id"]: group["bloodUnits"] for group in groups}
    assert sorted(unit["quantity"] for unit in by_hospital[pune.id]) == [2, 5]
    assert [unit["quantity"] for unit in by_hospital[mumbai.id]] == [3]

    groups, count = await inventory.search_available(db, BloodGroup.O_POSITIVE, city="mum", now=NOW)
    assert count == 1
    assert groups[0]["hospital"]["city"] == "Mumbai"


async def test_search_with_unknown_city_is_empty(db, make_user):
    hospital = await make_user("hospital")
    await inventory.insert_stock(db, ObjectId(hospital.id), BloodGroup.O_POSITIVE, 5, NOW + timedelta(days=10), now=NOW)
    assert await inventory.search_available(db, BloodGroup.O_POSITIVE, city="Atlantis", now=NOW) == ([], 0)


async def test_summary_lists_every_group_in_order(db, make_user):
    hospital = await make_user("hospital")
    hospital_id = ObjectId(hospital.id)
    await inventory.insert_stock(db, hospital_id, BloodGroup.AB_NEGATIVE, 3, NOW + timedelta(days=10), now=NOW)
    await inventory.insert_stock(db, hospital_id, BloodGroup.AB_NEGATIVE, 2, NOW + timedelta(days=12), now=NOW)
    await inventory.insert_stock(db, hospital_id, BloodGroup.AB_NEGATIVE, 7, NOW - timedelta(days=1), now=NOW)

    rows = await inventory.summary(db, hospital_id, now=NOW)
    assert [row["bloodGroup"] for row in rows] == BLOOD_GROUPS
    totals = {row["bloodGroup"]: (row["totalQuantity"], row["itemCount"]) for row in rows}
    assert totals["AB-"] == (5, 2)
    assert totals["O+"] == (0, 0)


async def test_alerts(db, make_user):
    hospital = await make_user("hospital")
    hospital_id = ObjectId(hospital.id)
    await inventory.insert_stock(db, hospital_id, BloodGroup.B_POSITIVE, 2, NOW + timedelta(days=3), now=NOW)
    await inventory.insert_stock(db, hospital_id, BloodGroup.B_POSITIVE, 20, NOW + timedelta(days=30), now=NOW)
    await inventory.insert_stock(db, hospital_id, BloodGroup.B_POSITIVE, 8, NOW - timedelta(days=2), now=NOW)

    low = await inventory.low_stock_alerts(db, hospital_id)
    assert [item.quantity for item in low] == [2]

    alerts = await inventory.expiry_alerts(db, hospital_id, now=NOW)
    assert [item.quantity for item in alerts["expiring_soon"]] == [2]
    assert [item.quantity for item in alerts["expired"]] == [8]


async def test_consume_takes_oldest_batch_that_covers_quantity(db, make_user):
    hospital = await make_user("hospital")
    hospital_id = ObjectId(hospital.id)
    small = await inventory.insert_stock(db, hospital_id, BloodGroup.O_NEGATIVE, 1, NOW + timedelta(days=2), now=NOW)
    older = await inventory.insert_stock(db, hospital_id, BloodGroup.O_NEGATIVE, 4, NOW + timedelta(days=5), now=NOW)
    newer = await inventory.insert_stock(db, hospital_id, BloodGroup.O_NEGATIVE, 9, NOW + timedelta(days=20), now=NOW)

    consumed = await inventory.consume_stock(db, hospital_id, BloodGroup.O_NEGATIVE, 3, now=NOW)
    assert consumed.id == older.id
    assert consumed.quantity == 1

    quantities = {str(doc["_id"]): doc["quantity"] async for doc in db.inventory.find({})}
    assert quantities[small.id] == 1
    assert quantities[newer.id] == 9


async def test_consume_never_drives_stock_negative(db, make_user):
    hospital = await make_user("hospital")
    hospital_id = ObjectId(hospital.id)
    item = await inventory.insert_stock(db, hospital_id, BloodGroup.A_POSITIVE, 2, NOW + timedelta(days=5), now=NOW)

    assert await inventory.consume_stock(db, hospital_id, BloodGroup.A_POSITIVE, 2, now=NOW) is not None
    assert await inventory.consume_stock(db, hospital_id, BloodGroup.A_POSITIVE, 2, now=NOW) is None

    stored = await db.inventory.find_one({"_id": ObjectId(item.id)})
    assert stored["quantity"] == 0


def test_status_flags_are_derived_from_dates():
    item = InventoryItem(
        _id=str(ObjectId()),
        hospital_id=str(ObjectId()),
        blood_group="O+",
        quantity=3,
        expiry_date=NOW + timedelta(days=6, hours=1),
    )
    assert item.days_until_expiry(NOW) == 7
    assert item.is_expiring_soon(NOW)
    assert not item.is_expired(NOW)
    assert item.is_low_stock()

    later = NOW + timedelta(days=8)
    assert item.is_expired(later)
    assert not item.is_expiring_soon(later)


def test_ten_day_batch_is_not_yet_expiring_soon():
    item = InventoryItem(
        _id=str(ObjectId()),
        hospital_id=str(ObjectId()),
        blood_group="B+",
        quantity=10,
        expiry_date=NOW + timedelta(days=10),
    )
    assert item.days_until_expiry(NOW) == 10
    assert not item.is_expired(NOW)
    assert not item.is_expiring_soon(NOW)
    assert not item.is_low_stock()
