"""User-initiated actions on accounts, merchants, listings and bookmarks.

Unlike background sync, explicit actions report back: every method
returns an ``ActionResult`` whose status the caller can branch on. Remote
writes go first; when the remote service cannot be reached the local
edit is still applied and the result says ``LOCAL_ONLY``. The next
refresh replaces local-only data with whatever the remote service holds.
"""

import logging
import secrets
from dataclasses import dataclass, replace
from typing import Any, Optional

from storefront_sync.credentials import check_password, hash_password
from storefront_sync.database.models import (
    ROLE_MERCHANT,
    Account,
    Listing,
    Merchant,
    ValidationError,
)
from storefront_sync.database.repository import Repository
from storefront_sync.remote.dto import ListingDTO, MerchantDTO, MerchantPatchDTO
from storefront_sync.remote.errors import (
    DuplicateIdentityError,
    NotFoundError,
    RemoteError,
)
from storefront_sync.remote.gateway import RemoteGateway
from storefront_sync.session import SessionStore
from storefront_sync.sync.reconcilers import AccountReconciler, MerchantReconciler

logger = logging.getLogger(__name__)

OK = "OK"
LOCAL_ONLY = "LOCAL_ONLY"
ALREADY_EXISTS = "ALREADY_EXISTS"
NOT_FOUND = "NOT_FOUND"
CONFLICT = "CONFLICT"
ERROR = "ERROR"
INVALID = "INVALID"
UNAUTHENTICATED = "UNAUTHENTICATED"


@dataclass
class ActionResult:
    status: str
    message: str = ""
    value: Any = None

    @property
    def ok(self) -> bool:
        """True when the change was applied, remotely or at least locally."""
        return self.status in (OK, LOCAL_ONLY)


def generate_verification_code() -> str:
    """A 4-digit code, never starting with zero."""
    return str(1000 + secrets.randbelow(9000))


class AccountService:
    """Local registration, login and credential management."""

    def __init__(self, repo: Repository, session: SessionStore):
        self.repo = repo
        self.session = session

    def register(self, account: Account, plaintext: str) -> ActionResult:
        """Create an account and log it in.

        *account* carries the profile; its ``password_hash`` is ignored
        and replaced with the hash of *plaintext*.
        """
        if not account.email or not plaintext:
            return ActionResult(INVALID, "Email and password are required")
        if self.repo.email_exists(account.email):
            return ActionResult(ALREADY_EXISTS, "Email is already registered")

        new = replace(account, id=None, password_hash=hash_password(plaintext))
        account_id = self.repo.insert_account(new)
        self.session.login(account_id, new.email, new.role)
        logger.info("Registered account %d", account_id)
        return ActionResult(OK, value=account_id)

    def login(self, email: str, plaintext: str) -> ActionResult:
        account = self.repo.get_account_by_email(email)
        if account is None or not check_password(plaintext, account.password_hash):
            return ActionResult(UNAUTHENTICATED, "Invalid credentials")
        if not account.is_email_verified:
            return ActionResult(UNAUTHENTICATED, "Email is not verified")
        self.session.login(account.id, account.email, account.role)
        return ActionResult(OK, value=account)

    def logout(self):
        self.session.logout()

    def current_account(self) -> Optional[Account]:
        """The logged-in account; a session for a deleted account is cleared."""
        account_id = self.session.current_account_id
        if account_id is None:
            return None
        account = self.repo.get_account_by_id(account_id)
        if account is None:
            logger.info("Session account %d no longer exists; logging out", account_id)
            self.session.logout()
        return account

    def set_verification_code(self, email: str) -> ActionResult:
        code = generate_verification_code()
        if self.repo.set_verification_code(email, code) == 0:
            return ActionResult(NOT_FOUND, "No account with that email")
        return ActionResult(OK, value=code)

    def verify_email(self, email: str, code: Optional[str] = None) -> ActionResult:
        """Mark *email* verified; with *code*, only if it matches the stored one."""
        account = self.repo.get_account_by_email(email)
        if account is None:
            return ActionResult(NOT_FOUND, "No account with that email")
        if code is not None and code != account.verification_code:
            return ActionResult(INVALID, "Verification code does not match")
        self.repo.mark_email_verified(email)
        return ActionResult(OK)

    def change_password(self, email: str, current: str, new: str) -> ActionResult:
        account = self.repo.get_account_by_email(email)
        if account is None or not check_password(current, account.password_hash):
            return ActionResult(UNAUTHENTICATED, "Invalid credentials")
        if not new:
            return ActionResult(INVALID, "New password is empty")
        self.repo.update_password(email, hash_password(new))
        return ActionResult(OK)

    def reset_password(self, email: str, code: str, new: str) -> ActionResult:
        """Set a new password after proving ownership with a mailed code."""
        account = self.repo.get_account_by_email(email)
        if account is None:
            return ActionResult(NOT_FOUND, "No account with that email")
        if not account.verification_code or code != account.verification_code:
            return ActionResult(INVALID, "Verification code does not match")
        if not new:
            return ActionResult(INVALID, "New password is empty")
        self.repo.update_password(email, hash_password(new))
        self.repo.mark_email_verified(email)
        return ActionResult(OK)

    def delete_account(self, account_id: int) -> ActionResult:
        """Delete an account with its merchant row and bookmarks."""
        if self.repo.get_account_by_id(account_id) is None:
            return ActionResult(NOT_FOUND, "No such account")
        self.repo.delete_account(account_id)
        if self.session.current_account_id == account_id:
            self.session.logout()
        return ActionResult(OK)


class MerchantService:
    """Merchant actions that write to the remote service first."""

    def __init__(self, repo: Repository, gateway: RemoteGateway,
                 session: Optional[SessionStore] = None):
        self.repo = repo
        self.gateway = gateway
        self.session = session

    def _next_remote_id(self) -> int:
        ids = [m.id for m in self.gateway.fetch_merchants() if m.id is not None]
        return max(ids, default=0) + 1

    def become_merchant(self, account_id: int, storefront_name: str,
                        phone: Optional[str] = None,
                        address: Optional[str] = None) -> ActionResult:
        """Register the account as a seller with the remote service.

        A remote merchant with the same email means the account already
        sells; nothing is created in that case.
        """
        account = self.repo.get_account_by_id(account_id)
        if account is None:
            return ActionResult(NOT_FOUND, "No such account")
        if not storefront_name.strip():
            return ActionResult(INVALID, "Storefront name is required")

        try:
            existing = self.gateway.find_merchant_by_email(account.email)
            if existing is not None:
                return ActionResult(
                    ALREADY_EXISTS, "Already registered as a merchant", existing
                )
            dto = MerchantDTO(
                id=self._next_remote_id(),
                first_name=account.first_name,
                last_name=account.last_name,
                email=account.email,
                phone=phone if phone is not None else account.phone,
                address=address if address is not None else account.address,
                storefront_name=storefront_name,
                photo_url=account.photo_url,
            )
            created = self.gateway.create_merchant(dto)
        except DuplicateIdentityError as e:
            return ActionResult(CONFLICT, str(e))
        except RemoteError as e:
            logger.error("Could not register merchant %s: %s", account.email, e)
            return ActionResult(ERROR, str(e))

        merchant = Merchant(
            id=account.id,
            first_name=dto.first_name,
            last_name=dto.last_name,
            email=dto.email,
            phone=dto.phone,
            address=dto.address,
            storefront_name=dto.storefront_name,
            photo_url=dto.photo_url,
            remote_id=created.id if created.id is not None else dto.id,
        )
        self.repo.upsert_merchant(merchant)
        self.repo.set_account_role(account.id, ROLE_MERCHANT)
        if self.session is not None and self.session.current_account_id == account.id:
            self.session.set_role(ROLE_MERCHANT)
        logger.info("Account %d is now merchant %s", account.id, merchant.remote_id)
        return ActionResult(OK, value=merchant)

    def update_profile(self, account_id: int,
                       patch: MerchantPatchDTO) -> ActionResult:
        """Edit a merchant profile remotely and locally.

        The remote id is looked up by email right before the write, since
        the cached one may be stale. The local account, merchant row and
        the producer of every owned listing change in one transaction,
        even when the remote write fails. A remote identity conflict
        leaves everything untouched.
        """
        account = self.repo.get_account_by_id(account_id)
        merchant = self.repo.get_merchant_by_id(account_id)
        if account is None or merchant is None:
            return ActionResult(NOT_FOUND, "Account is not a merchant")

        merchant = replace(
            merchant,
            first_name=patch.first_name,
            last_name=patch.last_name,
            phone=patch.phone,
            address=patch.address,
            storefront_name=patch.storefront_name,
            photo_url=patch.photo_url if patch.photo_url is not None else merchant.photo_url,
        )
        account = replace(
            account,
            first_name=patch.first_name,
            last_name=patch.last_name,
            phone=patch.phone,
            address=patch.address,
            photo_url=merchant.photo_url,
        )

        status, message = OK, ""
        try:
            remote = self.gateway.find_merchant_by_email(account.email)
            if remote is None or remote.id is None:
                status, message = LOCAL_ONLY, "No remote merchant with this email"
            else:
                self.gateway.update_merchant(remote.id, patch)
                merchant.remote_id = remote.id
        except DuplicateIdentityError as e:
            return ActionResult(CONFLICT, str(e))
        except RemoteError as e:
            logger.warning("Profile of %s saved locally only: %s", account.email, e)
            status, message = LOCAL_ONLY, str(e)

        touched = self.repo.save_merchant_profile(merchant, account)
        if status == OK:
            self._push_producer(merchant)
        return ActionResult(status, message, touched)

    def _push_producer(self, merchant: Merchant):
        """Send the new producer name of each owned listing upstream."""
        owner = merchant.remote_id
        for listing in self.repo.get_listings_by_owner(merchant.id):
            try:
                self.gateway.update_listing(listing.id, listing_to_dto(listing, owner))
            except RemoteError as e:
                logger.warning(
                    "Producer of listing %d not updated remotely: %s", listing.id, e
                )

    def refresh_all(self) -> ActionResult:
        """Replace every cached merchant with the remote set."""
        try:
            dtos = self.gateway.fetch_merchants()
        except RemoteError as e:
            return ActionResult(ERROR, str(e))
        account_ids, _ = AccountReconciler(self.repo).derive_from_merchants(dtos)
        report = MerchantReconciler(self.repo).replace_all(dtos, account_ids)
        return ActionResult(OK, value=report)


def listing_to_dto(listing: Listing, remote_owner_id: Optional[int]) -> ListingDTO:
    return ListingDTO(
        id=listing.id,
        name=listing.name,
        description=listing.description,
        producer=listing.producer,
        category=listing.category,
        owner_id=remote_owner_id,
        images=list(listing.images),
        price=listing.price,
        location=listing.location,
    )


class ListingService:
    """Listing and bookmark actions for the logged-in account."""

    def __init__(self, repo: Repository, gateway: RemoteGateway,
                 session: Optional[SessionStore] = None):
        self.repo = repo
        self.gateway = gateway
        self.session = session

    def _remote_owner_id(self, owner_id: Optional[int]) -> Optional[int]:
        if owner_id is None:
            return None
        merchant = self.repo.get_merchant_by_id(owner_id)
        return merchant.remote_id if merchant is not None else None

    def create(self, listing: Listing) -> ActionResult:
        """Publish a new listing; the producer is the owner's storefront."""
        merchant = (
            self.repo.get_merchant_by_id(listing.owner_id)
            if listing.owner_id is not None else None
        )
        new = replace(
            listing,
            images=list(listing.images),
            producer=merchant.storefront_name if merchant else listing.producer,
            owner_remote_id=merchant.remote_id if merchant else None,
        )
        try:
            new.validate()
        except ValidationError as e:
            return ActionResult(INVALID, str(e))

        try:
            remote_ids = [d.id for d in self.gateway.fetch_listings() if d.id is not None]
            new.id = max(remote_ids, default=0) + 1
            created = self.gateway.create_listing(
                listing_to_dto(new, new.owner_remote_id)
            )
            if created.id is not None:
                new.id = created.id
        except RemoteError as e:
            new.id = self.repo.get_max_listing_id() + 1
            logger.warning("Listing %d created locally only: %s", new.id, e)
            self.repo.upsert_listing(new)
            return ActionResult(LOCAL_ONLY, str(e), new)

        self.repo.upsert_listing(new)
        return ActionResult(OK, value=new)

    def update(self, listing: Listing) -> ActionResult:
        if listing.id is None or self.repo.get_listing_by_id(listing.id) is None:
            return ActionResult(NOT_FOUND, "No such listing")
        try:
            listing.validate()
        except ValidationError as e:
            return ActionResult(INVALID, str(e))

        if listing.owner_id is not None:
            listing.owner_remote_id = self._remote_owner_id(listing.owner_id)
        status, message = OK, ""
        try:
            self.gateway.update_listing(
                listing.id, listing_to_dto(listing, listing.owner_remote_id)
            )
        except RemoteError as e:
            logger.warning("Listing %d updated locally only: %s", listing.id, e)
            status, message = LOCAL_ONLY, str(e)
        self.repo.upsert_listing(listing)
        return ActionResult(status, message, listing)

    def delete(self, listing_id: int) -> ActionResult:
        """Remove a listing; bookmarks on it go with it."""
        if self.repo.get_listing_by_id(listing_id) is None:
            return ActionResult(NOT_FOUND, "No such listing")
        status, message = OK, ""
        try:
            self.gateway.delete_listing(listing_id)
        except NotFoundError:
            pass  # Already gone remotely
        except RemoteError as e:
            logger.warning("Listing %d deleted locally only: %s", listing_id, e)
            status, message = LOCAL_ONLY, str(e)
        self.repo.delete_listing(listing_id)
        return ActionResult(status, message)

    # ── Bookmarks ───────────────────────────────────────────────

    def _bookmark_target(self, listing_id: int):
        account_id = self.session.current_account_id if self.session else None
        if account_id is None:
            return None, ActionResult(UNAUTHENTICATED, "Not logged in")
        if self.repo.get_listing_by_id(listing_id) is None:
            return None, ActionResult(NOT_FOUND, "No such listing")
        return account_id, None

    def bookmark(self, listing_id: int) -> ActionResult:
        account_id, failure = self._bookmark_target(listing_id)
        if failure is not None:
            return failure
        self.repo.add_bookmark(account_id, listing_id)
        return ActionResult(OK)

    def unbookmark(self, listing_id: int) -> ActionResult:
        account_id, failure = self._bookmark_target(listing_id)
        if failure is not None:
            return failure
        self.repo.remove_bookmark(account_id, listing_id)
        return ActionResult(OK)

    def toggle_bookmark(self, listing_id: int) -> ActionResult:
        """Flip the bookmark; the result value is the new state."""
        account_id, failure = self._bookmark_target(listing_id)
        if failure is not None:
            return failure
        if self.repo.is_bookmarked(account_id, listing_id):
            self.repo.remove_bookmark(account_id, listing_id)
            return ActionResult(OK, value=False)
        self.repo.add_bookmark(account_id, listing_id)
        return ActionResult(OK, value=True)
