"""Wire representations of remote catalog resources.

The remote service is loose about integer fields: the same id can come
back as a JSON number, a numeric string, or null. ``coerce_int`` accepts
all three and turns anything else into ``None`` instead of raising.
Whole payloads of the wrong shape raise ``DecodeError``.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from .errors import DecodeError

_INT_PATTERN = re.compile(r"[+-]?\d+")


def coerce_int(value) -> Optional[int]:
    """Decode an integer field tolerantly; invalid input yields None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str) and _INT_PATTERN.fullmatch(value):
        return int(value)
    return None


def _require_object(payload, what: str) -> dict:
    if not isinstance(payload, dict):
        raise DecodeError(
            f"Expected a JSON object for {what}, got {type(payload).__name__}"
        )
    return payload


def _require_list(payload, what: str) -> list:
    if not isinstance(payload, list):
        raise DecodeError(
            f"Expected a JSON array of {what}, got {type(payload).__name__}"
        )
    return payload


def _text(data: dict, key: str, default: str = "") -> str:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise DecodeError(f"Field {key!r} must be a string, got {value!r}")
    return str(value)


def _optional_text(data: dict, key: str) -> Optional[str]:
    if data.get(key) is None:
        return None
    return _text(data, key)


def _price(data: dict) -> float:
    value = data.get("price")
    if value is None:
        return 0.0
    if isinstance(value, bool):
        raise DecodeError(f"Field 'price' must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise DecodeError(f"Field 'price' must be a number, got {value!r}")


def _images(data: dict) -> list[str]:
    value = data.get("images")
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(i, str) for i in value):
        raise DecodeError(f"Field 'images' must be a list of strings, got {value!r}")
    return list(value)


def _drop_none(data: dict) -> dict:
    return {k: v for k, v in data.items() if v is not None}


@dataclass
class MerchantDTO:
    id: Optional[int] = None
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    storefront_name: str = ""
    photo_url: Optional[str] = None

    @classmethod
    def from_json(cls, payload) -> "MerchantDTO":
        data = _require_object(payload, "merchant")
        return cls(
            id=coerce_int(data.get("id")),
            first_name=_text(data, "name"),
            last_name=_text(data, "lastname"),
            email=_text(data, "email"),
            phone=_text(data, "phone"),
            address=_text(data, "address"),
            storefront_name=_text(data, "entrepreneurship"),
            photo_url=_optional_text(data, "photoUrl"),
        )

    @classmethod
    def list_from_json(cls, payload) -> list["MerchantDTO"]:
        return [cls.from_json(item) for item in _require_list(payload, "merchants")]

    def to_json(self) -> dict:
        return _drop_none({
            "id": self.id,
            "name": self.first_name,
            "lastname": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "entrepreneurship": self.storefront_name,
            "photoUrl": self.photo_url,
        })


@dataclass
class MerchantPatchDTO:
    """The editable subset of a merchant profile."""

    first_name: str = ""
    last_name: str = ""
    phone: str = ""
    address: str = ""
    storefront_name: str = ""
    photo_url: Optional[str] = None

    def to_json(self) -> dict:
        return _drop_none({
            "name": self.first_name,
            "lastname": self.last_name,
            "phone": self.phone,
            "address": self.address,
            "entrepreneurship": self.storefront_name,
            "photoUrl": self.photo_url,
        })


@dataclass
class ListingDTO:
    id: Optional[int] = None
    name: str = ""
    description: str = ""
    producer: str = ""
    category: str = ""
    owner_id: Optional[int] = None
    images: list[str] = field(default_factory=list)
    price: float = 0.0
    location: str = ""

    @classmethod
    def from_json(cls, payload) -> "ListingDTO":
        data = _require_object(payload, "listing")
        return cls(
            id=coerce_int(data.get("id")),
            name=_text(data, "name"),
            description=_text(data, "description"),
            producer=_text(data, "producer"),
            category=_text(data, "category"),
            owner_id=coerce_int(data.get("ownerId")),
            images=_images(data),
            price=_price(data),
            location=_text(data, "location"),
        )

    @classmethod
    def list_from_json(cls, payload) -> list["ListingDTO"]:
        return [cls.from_json(item) for item in _require_list(payload, "listings")]

    def to_json(self) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "producer": self.producer,
            "category": self.category,
            "ownerId": self.owner_id,
            "images": list(self.images),
            "price": self.price,
            "location": self.location,
        }
        # ownerId stays explicit: null marks a public listing
        if data["id"] is None:
            del data["id"]
        return data
