"""Data models for the database layer."""

import json
import time
from dataclasses import dataclass, field
from typing import Optional

ROLE_CLIENT = "CLIENT"
ROLE_MERCHANT = "MERCHANT"
ACCOUNT_ROLES = (ROLE_CLIENT, ROLE_MERCHANT)

MIN_LISTING_IMAGES = 1
MAX_LISTING_IMAGES = 10


class ValidationError(ValueError):
    """A model value violates a stored invariant."""


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Account:
    id: Optional[int] = None
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    password_hash: str = ""
    phone: str = ""
    address: str = ""
    role: str = ROLE_CLIENT
    photo_url: Optional[str] = None
    is_email_verified: int = 0
    verification_code: Optional[str] = None
    created_at: int = field(default_factory=_now_ms)

    @property
    def is_merchant(self) -> bool:
        return self.role == ROLE_MERCHANT

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class Merchant:
    # Always equal to the owning Account id
    id: Optional[int] = None
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    storefront_name: str = ""
    photo_url: Optional[str] = None
    # Id the remote authority last reported; never used for writes
    remote_id: Optional[int] = None


@dataclass
class Listing:
    id: Optional[int] = None
    name: str = ""
    description: str = ""
    producer: str = ""
    category: str = ""
    owner_id: Optional[int] = None  # None = public seed item
    owner_remote_id: Optional[int] = None
    images: list[str] = field(default_factory=list)
    price: float = 0.0
    location: str = ""

    @classmethod
    def from_row(cls, row) -> "Listing":
        data = dict(row)
        raw = data.get("images")
        if isinstance(raw, str):
            try:
                data["images"] = json.loads(raw)
            except json.JSONDecodeError:
                data["images"] = []
        return cls(**data)

    @property
    def images_json(self) -> str:
        return json.dumps(list(self.images))

    @property
    def is_public(self) -> bool:
        return self.owner_id is None and self.owner_remote_id is None

    def validate(self):
        """Raise ValidationError if the listing breaks a stored invariant."""
        count = len(self.images)
        if not MIN_LISTING_IMAGES <= count <= MAX_LISTING_IMAGES:
            raise ValidationError(
                f"Listing {self.id} must have between {MIN_LISTING_IMAGES} "
                f"and {MAX_LISTING_IMAGES} images, got {count}"
            )
        if self.price < 0:
            raise ValidationError(
                f"Listing {self.id} has a negative price: {self.price}"
            )


@dataclass
class Bookmark:
    account_id: int = 0
    listing_id: int = 0
    created_at: Optional[str] = None
