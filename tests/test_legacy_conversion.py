import itertools

import pytest

from services.legacy_conversion import (
    MAIN_OFFICE_NAME,
    LegacyCustomer,
    MigrationError,
    convert_legacy_customer,
    merge_phone_numbers,
)


def counter_ids():
    counter = itertools.count(1)
    return lambda: f"N{next(counter)}"


def build_customer(locations, contacts, **overrides):
    row = {"id": "C1", "name": "Acme Chemicals", "po_rupture_discs": 1, "created_by_id": "E1"}
    row.update(overrides)
    return LegacyCustomer.from_rows(row, locations, contacts)


def test_merge_phone_numbers_prefers_official_cell():
    assert merge_phone_numbers("111", "222") == "111"
    assert merge_phone_numbers(None, "222") == "222"
    assert merge_phone_numbers("", "222") == "222"
    assert merge_phone_numbers(None, None) is None


def test_offices_and_plants_follow_location_type_and_order():
    customer = build_customer(
        [
            {"id": "L1", "type": "PLANT", "name": "Works"},
            {"id": "L2", "type": "OFFICE", "name": "HQ"},
            {"id": "L3", "type": "OFFICE", "name": "Branch"},
        ],
        [],
    )

    converted = convert_legacy_customer(customer, id_factory=counter_ids())

    assert [office["name"] for office in converted.offices] == ["HQ", "Branch"]
    assert [office["is_head_office"] for office in converted.offices] == [1, 0]
    assert [plant["name"] for plant in converted.plants] == ["Works"]
    assert converted.plants[0]["plant_type"] is None
    assert all(row["company_id"] == converted.company_id for row in converted.offices + converted.plants)


def test_company_copies_flags_and_owner():
    customer = build_customer([], [], problems_faced="Leaks", po_thermowells=True)

    company = convert_legacy_customer(customer, id_factory=counter_ids()).company

    assert company["name"] == "Acme Chemicals"
    assert company["created_by_id"] == "E1"
    assert company["po_rupture_discs"] == 1
    assert company["po_thermowells"] == 1
    assert company["po_heat_exchanger"] == 0
    assert company["problems_faced"] == "Leaks"


def test_contacts_attach_to_their_location():
    customer = build_customer(
        [{"id": "L1", "type": "OFFICE"}, {"id": "L2", "type": "PLANT"}],
        [
            {"id": "K1", "name": "Ravi", "location_id": "L1", "official_cell_number": "111"},
            {"id": "K2", "name": "Meena", "location_id": "L2", "personal_cell_number": "333"},
        ],
    )

    converted = convert_legacy_customer(customer, id_factory=counter_ids())
    people = {person["name"]: person for person in converted.contact_persons}

    assert people["Ravi"]["office_id"] == converted.offices[0]["id"]
    assert people["Ravi"]["plant_id"] is None
    assert people["Ravi"]["phone_number"] == "111"
    assert people["Meena"]["plant_id"] == converted.plants[0]["id"]
    assert people["Meena"]["office_id"] is None
    assert people["Meena"]["phone_number"] == "333"
    assert all(person["company_id"] == converted.company_id for person in converted.contact_persons)


def test_direct_contacts_use_head_office():
    customer = build_customer(
        [{"id": "L1", "type": "OFFICE"}, {"id": "L2", "type": "OFFICE"}],
        [{"id": "K1", "name": "Sunil", "location_id": None}],
    )

    converted = convert_legacy_customer(customer, id_factory=counter_ids())

    assert len(converted.offices) == 2
    assert converted.contact_persons[0]["office_id"] == converted.offices[0]["id"]


def test_direct_contacts_without_office_get_main_office():
    customer = build_customer(
        [{"id": "L1", "type": "PLANT"}],
        [{"id": "K1", "name": "Gopal", "customer_id": "C1"}],
    )

    converted = convert_legacy_customer(customer, id_factory=counter_ids())

    assert len(converted.offices) == 1
    office = converted.offices[0]
    assert office["name"] == MAIN_OFFICE_NAME
    assert office["is_head_office"] == 1
    assert converted.contact_persons[0]["office_id"] == office["id"]


def test_no_placeholder_office_without_direct_contacts():
    customer = build_customer([{"id": "L1", "type": "PLANT"}], [{"id": "K1", "name": "A", "location_id": "L1"}])

    converted = convert_legacy_customer(customer, id_factory=counter_ids())

    assert converted.offices == []


def test_preserve_ids_is_deterministic():
    customer = build_customer(
        [{"id": "L1", "type": "PLANT"}],
        [{"id": "K1", "name": "Gopal"}, {"id": "K2", "name": "Farah", "location_id": "L1"}],
    )

    first = convert_legacy_customer(customer, preserve_ids=True)
    second = convert_legacy_customer(customer, preserve_ids=True)

    assert first.company_id == "C1"
    assert first.plants[0]["id"] == "L1"
    assert {person["id"] for person in first.contact_persons} == {"K1", "K2"}
    assert first.offices[0]["id"] == second.offices[0]["id"]
    assert first.offices[0]["id"] not in {"C1", "L1"}


def test_camel_case_rows_are_understood():
    customer = LegacyCustomer.from_rows(
        {"id": "C9", "name": "Delta", "poWaterJetSteamJet": True, "createdById": "E2"},
        [{"id": "L1", "type": "office", "receptionNumber": "999"}],
        [{"id": "K1", "name": "Asha", "locationId": "L1", "officialCellNumber": "777"}],
    )

    converted = convert_legacy_customer(customer, id_factory=counter_ids())

    assert converted.company["po_water_jet_steam_jet"] == 1
    assert converted.company["created_by_id"] == "E2"
    assert converted.offices[0]["reception_number"] == "999"
    assert converted.contact_persons[0]["phone_number"] == "777"


def test_duplicate_contacts_are_collapsed():
    contact = {"id": "K1", "name": "Ravi", "location_id": "L1"}
    customer = build_customer([{"id": "L1", "type": "OFFICE"}], [contact, dict(contact)])

    assert len(convert_legacy_customer(customer, id_factory=counter_ids()).contact_persons) == 1


def test_unknown_location_type_raises():
    customer = build_customer([{"id": "L1", "type": "WAREHOUSE"}], [])

    with pytest.raises(MigrationError):
        convert_legacy_customer(customer)


def test_customer_details_become_primary_contact_on_main_office():
    customer = build_customer(
        [{"id": "L1", "type": "PLANT"}],
        [],
        designation="Owner",
        phone_number="999",
        email_id="owner@acme.example",
    )

    converted = convert_legacy_customer(customer, id_factory=counter_ids())

    assert [office["name"] for office in converted.offices] == [MAIN_OFFICE_NAME]
    office = converted.offices[0]
    assert office["reception_number"] == "999"
    assert len(converted.contact_persons) == 1
    person = converted.contact_persons[0]
    assert person["name"] == "Acme Chemicals"
    assert person["designation"] == "Owner"
    assert person["phone_number"] == "999"
    assert person["email_id"] == "owner@acme.example"
    assert person["is_primary"] == 1
    assert person["office_id"] == office["id"]
    assert person["plant_id"] is None


def test_customer_details_attach_to_existing_head_office():
    customer = build_customer(
        [{"id": "L1", "type": "OFFICE", "name": "HQ"}],
        [{"id": "K1", "name": "Ravi", "location_id": "L1"}],
        emailId="sales@acme.example",
    )

    converted = convert_legacy_customer(customer, id_factory=counter_ids())

    assert [office["name"] for office in converted.offices] == ["HQ"]
    primary = [person for person in converted.contact_persons if person["is_primary"]]
    assert len(primary) == 1
    assert primary[0]["email_id"] == "sales@acme.example"
    assert primary[0]["phone_number"] is None
    assert primary[0]["office_id"] == converted.offices[0]["id"]


def test_customer_designation_alone_adds_nothing():
    customer = build_customer([], [], designation="Owner")

    converted = convert_legacy_customer(customer, id_factory=counter_ids())

    assert converted.offices == []
    assert converted.contact_persons == []


def test_primary_contact_id_is_stable_with_preserved_ids():
    customer = build_customer([], [], phoneNumber="999")

    first = convert_legacy_customer(customer, preserve_ids=True)
    second = convert_legacy_customer(customer, preserve_ids=True)

    assert first.contact_persons[0]["id"] == second.contact_persons[0]["id"]
    assert first.contact_persons[0]["id"] != first.offices[0]["id"]
    assert first.contact_persons[0]["phone_number"] == "999"
