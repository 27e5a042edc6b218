import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .errors import CheckoutValidationError
from .schemas import AddressIn, VehicleIn

REQUIRED_ADDRESS_FIELDS = ("line1", "postal_code", "city")
MIN_PLATE_LENGTH = 5
MIN_VIN_LENGTH = 11


@dataclass(frozen=True)
class VehicleDetails:
    identifier_type: str = ""
    plate: str = ""
    vin: str = ""
    consent_at: Optional[datetime] = None
    provided_at: Optional[datetime] = None


def normalize_vehicle_identifier(value) -> str:
    if not isinstance(value, str):
        return ""
    return re.sub(r"[^A-Z0-9]", "", value.upper())


def address_snapshot(address: AddressIn) -> dict:
    return {
        "label": address.label.strip(),
        "full_name": address.full_name.strip(),
        "phone": address.phone.strip(),
        "line1": address.line1.strip(),
        "line2": address.line2.strip(),
        "postal_code": address.postal_code.strip(),
        "city": address.city.strip(),
        "country": address.country.strip() or "France",
    }


def is_address_complete(snapshot: dict) -> bool:
    return all(snapshot.get(key) for key in REQUIRED_ADDRESS_FIELDS)


def validated_addresses(
    shipping: AddressIn, billing: Optional[AddressIn], billing_same_as_shipping: bool
) -> tuple[dict, dict]:
    shipping_snapshot = address_snapshot(shipping)
    if not is_address_complete(shipping_snapshot):
        raise CheckoutValidationError(
            "Your shipping address is incomplete (street, postal code, city)."
        )

    if billing_same_as_shipping:
        return shipping_snapshot, dict(shipping_snapshot)

    if billing is None:
        raise CheckoutValidationError("Billing address not found.")
    billing_snapshot = address_snapshot(billing)
    if not is_address_complete(billing_snapshot):
        raise CheckoutValidationError(
            "Your billing address is incomplete (street, postal code, city)."
        )
    return shipping_snapshot, billing_snapshot


def validated_vehicle(vehicle: Optional[VehicleIn], now: datetime) -> VehicleDetails:
    if vehicle is None:
        return VehicleDetails()

    identifier_type = "vin" if vehicle.identifier_type.strip().lower() == "vin" else "plate"
    plate = normalize_vehicle_identifier(vehicle.plate) if identifier_type == "plate" else ""
    vin = normalize_vehicle_identifier(vehicle.vin) if identifier_type == "vin" else ""
    if not plate and not vin:
        return VehicleDetails()

    if not vehicle.consent:
        raise CheckoutValidationError(
            "Please agree to the use of your plate/VIN to check part compatibility."
        )
    if plate and len(plate) < MIN_PLATE_LENGTH:
        raise CheckoutValidationError("The plate looks too short. Please check it.")
    if vin and len(vin) < MIN_VIN_LENGTH:
        raise CheckoutValidationError("The VIN looks too short. Please check it.")

    return VehicleDetails(
        identifier_type=identifier_type,
        plate=plate,
        vin=vin,
        consent_at=now,
        provided_at=now,
    )
