from datetime import timedelta

import pytest
from bson import ObjectId

from bloodnet.errors import AuthorizationError, NotFoundError, ValidationError
from bloodnet.models.donation import DonationCreate, DonationUpdate
from bloodnet.models.enums import DonationStatus
from bloodnet.services import donations
from bloodnet.utils.pagination import Pagination

from conftest import NOW


def donation_for(donor, **overrides):
    fields = {"donor_id": donor.id, "blood_group": donor.blood_group, "quantity": 1}
    fields.update(overrides)
    return DonationCreate(**fields)


async def test_completed_donation_updates_donor_and_stocks_units(db, make_user):
    hospital = await make_user("hospital")
    donor = await make_user("donor", name="Ravi")

    donation = await donations.record_donation(db, hospital, donation_for(donor, quantity=2), now=NOW)

    assert donation.status == DonationStatus.COMPLETED
    stored_donor = await db.users.find_one({"_id": ObjectId(donor.id)})
    assert stored_donor["last_donation_date"] == NOW
    assert stored_donor["is_available"] is False

    item = await db.inventory.find_one({"hospital_id": ObjectId(hospital.id)})
    assert item["quantity"] == 2
    assert item["blood_group"] == "O+"
    assert item["source"] == "donation"
    assert item["batch_number"] == f"DON-{donation.id[-8:].upper()}"
    assert item["expiry_date"] == NOW + timedelta(days=42)
    assert "Ravi" in item["notes"]


async def test_recent_donor_is_refused(db, make_user):
    hospital = await make_user("hospital")
    donor = await make_user("donor", last_donation_date=NOW - timedelta(days=30))

    with pytest.raises(ValidationError, match="not eligible"):
        await donations.record_donation(db, hospital, donation_for(donor), now=NOW)
    assert await db.donations.count_documents({}) == 0
    assert await db.inventory.count_documents({}) == 0


async def test_unknown_or_inactive_donor_is_not_found(db, make_user):
    hospital = await make_user("hospital")
    inactive = await make_user("donor", is_active=False)
    patient = await make_user("patient")

    with pytest.raises(NotFoundError):
        await donations.record_donation(db, hospital, donation_for(inactive), now=NOW)
    with pytest.raises(NotFoundError):
        await donations.record_donation(
            db, hospital, DonationCreate(donor_id=patient.id, blood_group="A+"), now=NOW
        )


async def test_pending_donation_stocks_only_when_completed(db, make_user):
    hospital = await make_user("hospital")
    donor = await make_user("donor")
    donation = await donations.record_donation(
        db, hospital, donation_for(donor, status=DonationStatus.PENDING), now=NOW
    )
    assert await db.inventory.count_documents({}) == 0

    completed = await donations.update_donation(
        db, hospital, donation.id, DonationUpdate(status=DonationStatus.COMPLETED), now=NOW
    )
    assert completed.status == DonationStatus.COMPLETED
    assert await db.inventory.count_documents({}) == 1

    with pytest.raises(ValidationError):
        await donations.update_donation(
            db, hospital, donation.id, DonationUpdate(status=DonationStatus.PENDING), now=NOW
        )
    assert await db.inventory.count_documents({}) == 1


async def test_rejection_keeps_reason(db, make_user):
    hospital = await make_user("hospital")
    donor = await make_user("donor")
    donation = await donations.record_donation(
        db, hospital, donation_for(donor, status=DonationStatus.PENDING), now=NOW
    )
    rejected = await donations.update_donation(
        db,
        hospital,
        donation.id,
        DonationUpdate(status=DonationStatus.REJECTED, rejection_reason="Low hemoglobin"),
        now=NOW,
    )
    assert rejected.rejection_reason == "Low hemoglobin"
    assert await db.inventory.count_documents({}) == 0


async def test_only_collecting_hospital_or_admin_may_update(db, make_user):
    hospital = await make_user("hospital")
    other = await make_user("hospital")
    admin = await make_user("admin")
    donor = await make_user("donor")
    donation = await donations.record_donation(db, hospital, donation_for(donor), now=NOW)

    with pytest.raises(AuthorizationError):
        await donations.update_donation(db, other, donation.id, DonationUpdate(notes="x"), now=NOW)
    updated = await donations.update_donation(db, admin, donation.id, DonationUpdate(notes="checked"), now=NOW)
    assert updated.notes == "checked"


async def test_listing_is_scoped_by_role(db, make_user):
    first = await make_user("hospital")
    second = await make_user("hospital")
    donor_a = await make_user("donor")
    donor_b = await make_user("donor")
    patient = await make_user("patient")
    await donations.record_donation(db, first, donation_for(donor_a), now=NOW)
    await donations.record_donation(db, second, donation_for(donor_b), now=NOW)

    rows, total, users = await donations.list_donations(db, first, Pagination())
    assert total == 1
    assert rows[0].hospital_id == first.id
    assert donor_a.id in users

    _, total, _ = await donations.list_donations(db, donor_b, Pagination())
    assert total == 1

    with pytest.raises(AuthorizationError):
        await donations.list_donations(db, patient, Pagination())


async def test_statistics_per_role(db, make_user):
    hospital = await make_user("hospital")
    admin = await make_user("admin")
    donor = await make_user("donor")
    await donations.record_donation(db, hospital, donation_for(donor, quantity=2), now=NOW)

    donor_stats = await donations.statistics(db, donor, now=NOW)
    assert donor_stats["totalDonations"] == 1
    assert donor_stats["totalUnits"] == 2
    assert donor_stats["donationsByType"] == [{"donationType": "whole_blood", "count": 1}]

    hospital_stats = await donations.statistics(db, hospital, now=NOW)
    assert hospital_stats["total"] == 1
    assert hospital_stats["thisMonth"] == 1
    assert hospital_stats["byBloodGroup"] == [{"bloodGroup": "O+", "totalDonations": 1, "totalUnits": 2}]

    admin_stats = await donations.statistics(db, admin, now=NOW)
    assert len(admin_stats["recent"]) == 1
    assert admin_stats["recent"][0]["donor"]["_id"] == donor.id


async def test_completing_for_deactivated_donor_leaves_donation_pending(db, make_user):
    hospital = await make_user("hospital")
    donor = await make_user("donor")
    donation = await donations.record_donation(
        db, hospital, donation_for(donor, status=DonationStatus.PENDING), now=NOW
    )
    await db.users.update_one({"_id": ObjectId(donor.id)}, {"$set": {"is_active": False}})

    with pytest.raises(NotFoundError):
        await donations.update_donation(
            db, hospital, donation.id, DonationUpdate(status=DonationStatus.COMPLETED), now=NOW
        )
    stored = await db.donations.find_one({"_id": ObjectId(donation.id)})
    assert stored["status"] == "pending"
    assert await db.inventory.count_documents({}) == 0

    await db.users.update_one({"_id": ObjectId(donor.id)}, {"$set": {"is_active": True}})
    completed = await donations.update_donation(
        db, hospital, donation.id, DonationUpdate(status=DonationStatus.COMPLETED), now=NOW
    )
    assert completed.status == DonationStatus.COMPLETED
    assert await db.inventory.count_documents({}) == 1
