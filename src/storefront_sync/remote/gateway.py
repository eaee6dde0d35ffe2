"""HTTP client for the remote catalog/identity service.

The gateway maps endpoints to typed calls and HTTP failures to the
exceptions in ``remote.errors``. It holds no business rules and never
retries; retry policy belongs to the sync orchestrator.
"""

import logging
from typing import Optional

import httpx

from storefront_sync.config import Config

from .dto import ListingDTO, MerchantDTO, MerchantPatchDTO
from .errors import (
    ConflictError,
    DecodeError,
    DuplicateIdentityError,
    NetworkError,
    NotFoundError,
    RemoteError,
    ServerError,
)

logger = logging.getLogger(__name__)


class RemoteGateway:
    """Typed access to the ``/merchants`` and ``/listings`` resources."""

    def __init__(self, base_url: Optional[str] = None,
                 timeout: Optional[float] = None,
                 transport: Optional[httpx.BaseTransport] = None):
        kwargs = {"base_url": base_url or Config.API_BASE_URL}
        timeout = timeout if timeout is not None else Config.API_TIMEOUT
        # No timeout configured: keep httpx's own default
        if timeout is not None:
            kwargs["timeout"] = httpx.Timeout(timeout)
        if transport is not None:
            kwargs["transport"] = transport
        self.client = httpx.Client(**kwargs)

    def close(self):
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ── Transport ───────────────────────────────────────────────

    def _request(self, method: str, path: str, **kwargs):
        """Send a request and return the decoded JSON body (or None)."""
        try:
            response = self.client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{method} {path} timed out: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e

        status = response.status_code
        logger.debug("%s %s -> %d", method, path, status)
        if status == 404:
            raise NotFoundError(f"{method} {path}: not found", status)
        if status == 409:
            raise ConflictError(f"{method} {path}: conflict", status)
        if status >= 500:
            raise ServerError(f"{method} {path}: server error {status}", status)
        if status >= 400:
            raise RemoteError(f"{method} {path}: HTTP {status}", status)

        if status == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise DecodeError(f"{method} {path}: invalid JSON body") from e

    # ── Merchants ───────────────────────────────────────────────

    def fetch_merchants(self) -> list[MerchantDTO]:
        return MerchantDTO.list_from_json(self._request("GET", "merchants"))

    def fetch_merchant(self, merchant_id: int) -> MerchantDTO:
        return MerchantDTO.from_json(
            self._request("GET", f"merchants/{merchant_id}")
        )

    def find_merchants_by_email(self, email: str) -> list[MerchantDTO]:
        payload = self._request("GET", "merchants", params={"email": email})
        # Guard against a server that ignores the filter
        return [m for m in MerchantDTO.list_from_json(payload) if m.email == email]

    def find_merchant_by_email(self, email: str) -> Optional[MerchantDTO]:
        """The single remote merchant registered under *email*, if any.

        Raises DuplicateIdentityError when several records share the
        email, since picking one would risk writing to the wrong seller.
        """
        matches = self.find_merchants_by_email(email)
        if len(matches) > 1:
            raise DuplicateIdentityError(email, [m.id for m in matches])
        return matches[0] if matches else None

    def create_merchant(self, merchant: MerchantDTO) -> MerchantDTO:
        return MerchantDTO.from_json(
            self._request("POST", "merchants", json=merchant.to_json())
        )

    def update_merchant(self, merchant_id: int,
                        patch: MerchantPatchDTO) -> MerchantDTO:
        """Replace the editable fields of a merchant (PUT)."""
        return MerchantDTO.from_json(
            self._request("PUT", f"merchants/{merchant_id}", json=patch.to_json())
        )

    def patch_merchant(self, merchant_id: int,
                       patch: MerchantPatchDTO) -> MerchantDTO:
        return MerchantDTO.from_json(
            self._request("PATCH", f"merchants/{merchant_id}", json=patch.to_json())
        )

    def delete_merchant(self, merchant_id: int):
        self._request("DELETE", f"merchants/{merchant_id}")

    # ── Listings ────────────────────────────────────────────────

    def fetch_listings(self) -> list[ListingDTO]:
        return ListingDTO.list_from_json(self._request("GET", "listings"))

    def fetch_listings_by_owner(self, owner_id: int) -> list[ListingDTO]:
        return ListingDTO.list_from_json(
            self._request("GET", "listings", params={"ownerId": owner_id})
        )

    def create_listing(self, listing: ListingDTO) -> ListingDTO:
        return ListingDTO.from_json(
            self._request("POST", "listings", json=listing.to_json())
        )

    def update_listing(self, listing_id: int, listing: ListingDTO) -> ListingDTO:
        return ListingDTO.from_json(
            self._request("PUT", f"listings/{listing_id}", json=listing.to_json())
        )

    def delete_listing(self, listing_id: int):
        self._request("DELETE", f"listings/{listing_id}")
