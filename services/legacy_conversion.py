"""Convert legacy customers into the company/office/plant/contact-person model.

Legacy data stored a customer with a flat list of type-tagged locations and a
list of contacts that either belong to one of those locations or hang off the
customer directly.  The current schema splits locations into offices and
plants and merges the two legacy phone columns into one.  A phone number or
email on the customer row itself becomes the primary contact person on the
head office.  Every entry point that needs this conversion (the live migrator
and the customer-form restore) goes through :func:`convert_legacy_customer`
so that both produce identical rows.

Rows read from older JSON exports may use camelCase keys, so field lookups
accept either spelling.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

__all__ = [
    "ConvertedCompany",
    "LegacyContact",
    "LegacyCustomer",
    "LegacyLocation",
    "MAIN_OFFICE_NAME",
    "MigrationError",
    "PO_FLAGS",
    "convert_legacy_customer",
    "merge_phone_numbers",
]

MAIN_OFFICE_NAME = "Main Office"
PLACEHOLDER_NAMESPACE = uuid.UUID("5b0f3a52-8f43-4c7e-9a51-2d0c7f1e6a10")

PO_FLAGS = (
    "po_rupture_discs",
    "po_thermowells",
    "po_heat_exchanger",
    "po_miscellaneous",
    "po_water_jet_steam_jet",
)

LOCATION_TYPES = {"OFFICE", "PLANT"}


class MigrationError(RuntimeError):
    """Raised when a legacy record cannot be converted or migrated."""


@dataclass
class LegacyContact:
    id: str
    name: str
    customer_id: Optional[str] = None
    location_id: Optional[str] = None
    designation: Optional[str] = None
    official_cell_number: Optional[str] = None
    personal_cell_number: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "LegacyContact":
        return cls(
            id=_required(row, "contact", "id"),
            name=_first_value(row, "name") or "",
            customer_id=_first_value(row, "customer_id", "customerId"),
            location_id=_first_value(row, "location_id", "locationId"),
            designation=_first_value(row, "designation"),
            official_cell_number=_first_value(row, "official_cell_number", "officialCellNumber"),
            personal_cell_number=_first_value(row, "personal_cell_number", "personalCellNumber"),
            created_at=_first_value(row, "created_at", "createdAt"),
            updated_at=_first_value(row, "updated_at", "updatedAt"),
        )


@dataclass
class LegacyLocation:
    id: str
    type: str
    customer_id: Optional[str] = None
    name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    reception_number: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "LegacyLocation":
        return cls(
            id=_required(row, "location", "id"),
            type=str(_first_value(row, "type") or "").upper(),
            customer_id=_first_value(row, "customer_id", "customerId"),
            name=_first_value(row, "name"),
            address=_first_value(row, "address"),
            city=_first_value(row, "city"),
            state=_first_value(row, "state"),
            country=_first_value(row, "country"),
            reception_number=_first_value(row, "reception_number", "receptionNumber"),
            created_at=_first_value(row, "created_at", "createdAt"),
            updated_at=_first_value(row, "updated_at", "updatedAt"),
        )


@dataclass
class LegacyCustomer:
    id: str
    name: str
    designation: Optional[str] = None
    phone_number: Optional[str] = None
    email_id: Optional[str] = None
    created_by_id: Optional[str] = None
    po_flags: Dict[str, bool] = field(default_factory=dict)
    existing_graphite_suppliers: Optional[str] = None
    problems_faced: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    locations: List[LegacyLocation] = field(default_factory=list)
    contacts: List[LegacyContact] = field(default_factory=list)

    @property
    def has_direct_details(self) -> bool:
        """Whether the customer row itself carries a phone number or email."""
        return bool(self.phone_number or self.email_id)

    @classmethod
    def from_rows(
        cls,
        customer_row: Mapping[str, Any],
        location_rows: Iterable[Mapping[str, Any]] = (),
        contact_rows: Iterable[Mapping[str, Any]] = (),
    ) -> "LegacyCustomer":
        """Build a customer from its own row plus its location and contact rows.

        Contacts are de-duplicated by id because nested exports list a located
        contact both under its location and under the customer.
        """

        contacts: Dict[str, LegacyContact] = {}
        for row in contact_rows:
            contact = LegacyContact.from_row(row)
            contacts.setdefault(contact.id, contact)
        return cls(
            id=_required(customer_row, "customer", "id"),
            name=_first_value(customer_row, "name") or "",
            designation=_first_value(customer_row, "designation"),
            phone_number=_first_value(customer_row, "phone_number", "phoneNumber"),
            email_id=_first_value(customer_row, "email_id", "emailId"),
            created_by_id=_first_value(customer_row, "created_by_id", "createdById"),
            po_flags={flag: _coerce_bool(_flag_value(customer_row, flag)) for flag in PO_FLAGS},
            existing_graphite_suppliers=_first_value(
                customer_row, "existing_graphite_suppliers", "existingGraphiteSuppliers"
            ),
            problems_faced=_first_value(customer_row, "problems_faced", "problemsFaced"),
            created_at=_first_value(customer_row, "created_at", "createdAt"),
            updated_at=_first_value(customer_row, "updated_at", "updatedAt"),
            locations=[LegacyLocation.from_row(row) for row in location_rows],
            contacts=list(contacts.values()),
        )


@dataclass
class ConvertedCompany:
    """Rows produced for one legacy customer, ready to insert."""

    customer_id: str
    company: Dict[str, Any]
    offices: List[Dict[str, Any]] = field(default_factory=list)
    plants: List[Dict[str, Any]] = field(default_factory=list)
    contact_persons: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def company_id(self) -> str:
        return self.company["id"]

    @property
    def head_office(self) -> Optional[Dict[str, Any]]:
        for office in self.offices:
            if office["is_head_office"]:
                return office
        return None


def merge_phone_numbers(official: Optional[str], personal: Optional[str]) -> Optional[str]:
    """Prefer the official cell number and fall back to the personal one."""
    return official or personal or None


def convert_legacy_customer(
    customer: LegacyCustomer,
    *,
    preserve_ids: bool = False,
    id_factory: Optional[Callable[[], str]] = None,
) -> ConvertedCompany:
    """Translate ``customer`` into company, office, plant and contact-person rows.

    With ``preserve_ids`` the new rows reuse the legacy identifiers so that a
    repeated restore upserts the same rows instead of creating new ones.
    """

    new_id = id_factory or _fresh_id

    def _identity(legacy_id: str) -> str:
        return legacy_id if preserve_ids else new_id()

    company = {
        "id": _identity(customer.id),
        "name": customer.name,
        "website": None,
        "industry": None,
        "created_by_id": customer.created_by_id,
        "existing_graphite_suppliers": customer.existing_graphite_suppliers,
        "problems_faced": customer.problems_faced,
        "created_at": customer.created_at,
        "updated_at": customer.updated_at,
    }
    for flag in PO_FLAGS:
        company[flag] = 1 if customer.po_flags.get(flag) else 0

    converted = ConvertedCompany(customer_id=customer.id, company=company)
    parents: Dict[str, tuple[str, str]] = {}

    for location in customer.locations:
        if location.type not in LOCATION_TYPES:
            raise MigrationError(
                f"Location {location.id} of customer {customer.id} has unknown type {location.type!r}"
            )
        row = {
            "id": _identity(location.id),
            "company_id": company["id"],
            "name": location.name,
            "address": location.address,
            "area": None,
            "city": location.city,
            "state": location.state,
            "country": location.country,
            "pincode": None,
            "reception_number": location.reception_number,
            "created_at": location.created_at,
            "updated_at": location.updated_at,
        }
        if location.type == "OFFICE":
            row["is_head_office"] = 0 if converted.offices else 1
            converted.offices.append(row)
            parents[location.id] = ("office_id", row["id"])
        else:
            row["plant_type"] = None
            converted.plants.append(row)
            parents[location.id] = ("plant_id", row["id"])

    direct_contacts = []
    for contact in customer.contacts:
        parent = parents.get(contact.location_id) if contact.location_id else None
        if parent is None:
            direct_contacts.append(contact)
            continue
        converted.contact_persons.append(
            _contact_person_row(contact, company["id"], parent, _identity(contact.id))
        )

    if direct_contacts or customer.has_direct_details:
        head_office = converted.head_office
        if head_office is None:
            head_office = _placeholder_office(customer, company["id"], preserve_ids, new_id)
            converted.offices.append(head_office)
        for contact in direct_contacts:
            converted.contact_persons.append(
                _contact_person_row(
                    contact, company["id"], ("office_id", head_office["id"]), _identity(contact.id)
                )
            )
        if customer.has_direct_details:
            converted.contact_persons.append(
                _primary_contact_row(customer, company["id"], head_office["id"], preserve_ids, new_id)
            )

    return converted


def _contact_person_row(
    contact: LegacyContact, company_id: str, parent: tuple[str, str], person_id: str
) -> Dict[str, Any]:
    parent_column, parent_id = parent
    row = {
        "id": person_id,
        "name": contact.name,
        "designation": contact.designation,
        "phone_number": merge_phone_numbers(
            contact.official_cell_number, contact.personal_cell_number
        ),
        "email_id": None,
        "is_primary": 0,
        "office_id": None,
        "plant_id": None,
        "company_id": company_id,
        "created_at": contact.created_at,
        "updated_at": contact.updated_at,
    }
    row[parent_column] = parent_id
    return row


def _primary_contact_row(
    customer: LegacyCustomer,
    company_id: str,
    office_id: str,
    preserve_ids: bool,
    new_id: Callable[[], str],
) -> Dict[str, Any]:
    if preserve_ids:
        person_id = uuid.uuid5(PLACEHOLDER_NAMESPACE, f"{customer.id}:primary-contact").hex
    else:
        person_id = new_id()
    return {
        "id": person_id,
        "name": customer.name,
        "designation": customer.designation,
        "phone_number": customer.phone_number,
        "email_id": customer.email_id,
        "is_primary": 1,
        "office_id": office_id,
        "plant_id": None,
        "company_id": company_id,
        "created_at": customer.created_at,
        "updated_at": customer.updated_at,
    }


def _placeholder_office(
    customer: LegacyCustomer,
    company_id: str,
    preserve_ids: bool,
    new_id: Callable[[], str],
) -> Dict[str, Any]:
    if preserve_ids:
        office_id = uuid.uuid5(PLACEHOLDER_NAMESPACE, f"{customer.id}:main-office").hex
    else:
        office_id = new_id()
    return {
        "id": office_id,
        "company_id": company_id,
        "name": MAIN_OFFICE_NAME,
        "address": None,
        "area": None,
        "city": None,
        "state": None,
        "country": None,
        "pincode": None,
        "is_head_office": 1,
        "reception_number": customer.phone_number,
        "created_at": customer.created_at,
        "updated_at": customer.updated_at,
    }


def _fresh_id() -> str:
    return uuid.uuid4().hex


def _first_value(payload: Mapping[str, Any], *candidates: str) -> Optional[Any]:
    for candidate in candidates:
        if candidate in payload:
            value = payload[candidate]
            if value not in (None, ""):
                return value
    return None


def _required(payload: Mapping[str, Any], label: str, key: str) -> str:
    value = _first_value(payload, key)
    if value is None:
        raise MigrationError(f"Legacy {label} row is missing '{key}'")
    return str(value)


def _flag_value(payload: Mapping[str, Any], flag: str) -> Any:
    camel = flag.split("_")[0] + "".join(part.title() for part in flag.split("_")[1:])
    if flag in payload:
        return payload[flag]
    return payload.get(camel)


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return bool(value)
