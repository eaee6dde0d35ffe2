"""Entity reconcilers mapping remote DTOs onto cached rows.

Each reconciler upserts whole rows keyed by primary key and skips a
single bad entity rather than abandoning its batch. Merchant rows are
keyed by the local account id, so accounts must be derived (or already
exist) before merchants are written; the foreign key on merchants(id)
rejects anything else.
"""

import logging
import sqlite3
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from storefront_sync.config import Config
from storefront_sync.credentials import placeholder_hash
from storefront_sync.database.models import (
    ROLE_MERCHANT,
    Account,
    Listing,
    Merchant,
    ValidationError,
)
from storefront_sync.database.repository import Repository
from storefront_sync.remote.dto import ListingDTO, MerchantDTO

logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    """What one reconciler pass did to the cache."""

    entity: str
    created: int = 0
    upserted: int = 0
    removed: int = 0
    skipped: list[tuple[str, str]] = field(default_factory=list)

    def skip(self, key, reason: str):
        logger.warning("Skipping %s %s: %s", self.entity, key, reason)
        self.skipped.append((str(key), reason))

    def as_dict(self) -> dict:
        return {
            "created": self.created,
            "upserted": self.upserted,
            "removed": self.removed,
            "skipped": len(self.skipped),
        }


def duplicate_emails(dtos: list[MerchantDTO]) -> set[str]:
    """Emails claimed by more than one remote merchant in a batch."""
    counts = Counter(d.email for d in dtos if d.email)
    return {email for email, n in counts.items() if n > 1}


class AccountReconciler:
    """Derives local accounts for remote merchants that lack one."""

    def __init__(self, repo: Repository,
                 placeholder_password: Optional[str] = None):
        self.repo = repo
        self.placeholder_password = (
            placeholder_password or Config.PLACEHOLDER_PASSWORD
        )

    def account_from_merchant(self, dto: MerchantDTO) -> Account:
        return Account(
            first_name=dto.first_name,
            last_name=dto.last_name,
            email=dto.email,
            password_hash=placeholder_hash(dto.email, self.placeholder_password),
            phone=dto.phone,
            address=dto.address,
            role=ROLE_MERCHANT,
            photo_url=dto.photo_url,
            # The remote authority already vouched for this address
            is_email_verified=1,
        )

    def derive_from_merchants(
        self, dtos: list[MerchantDTO]
    ) -> tuple[dict[str, int], ReconcileReport]:
        """Ensure every merchant email has a local account.

        Returns ``{email: local account id}`` for every merchant that
        could be matched or created, plus the pass report. Emails shared
        by several remote merchants are reported and left alone.
        """
        report = ReconcileReport("account")
        account_ids: dict[str, Optional[int]] = {}
        ambiguous = duplicate_emails(dtos)

        for dto in dtos:
            if not dto.email:
                report.skip(dto.id, "remote merchant has no email")
                continue
            if dto.email in ambiguous:
                if dto.email not in account_ids:
                    report.skip(dto.email, "email shared by several remote merchants")
                    account_ids[dto.email] = None
                continue

            existing = self.repo.get_account_by_email(dto.email)
            if existing is None:
                try:
                    account_ids[dto.email] = self.repo.insert_account(
                        self.account_from_merchant(dto)
                    )
                    report.created += 1
                    continue
                except sqlite3.IntegrityError:
                    # Another writer derived it between our read and insert
                    existing = self.repo.get_account_by_email(dto.email)
                    if existing is None:
                        raise

            if existing.role != ROLE_MERCHANT:
                self.repo.set_account_role(existing.id, ROLE_MERCHANT)
                report.upserted += 1
            account_ids[dto.email] = existing.id

        return (
            {email: aid for email, aid in account_ids.items() if aid is not None},
            report,
        )


class MerchantReconciler:
    """Writes remote merchants under their owning account's local id."""

    def __init__(self, repo: Repository):
        self.repo = repo

    @staticmethod
    def to_local(dto: MerchantDTO, account_id: int) -> Merchant:
        return Merchant(
            id=account_id,
            first_name=dto.first_name,
            last_name=dto.last_name,
            email=dto.email,
            phone=dto.phone,
            address=dto.address,
            storefront_name=dto.storefront_name,
            photo_url=dto.photo_url,
            remote_id=dto.id,
        )

    def _resolve(self, dtos, account_ids, report) -> list[Merchant]:
        ambiguous = duplicate_emails(dtos)
        merchants = []
        seen: set[str] = set()
        for dto in dtos:
            if dto.email in ambiguous:
                if dto.email not in seen:
                    report.skip(dto.email, "email shared by several remote merchants")
                    seen.add(dto.email)
                continue
            account_id = account_ids.get(dto.email) if account_ids else None
            if account_id is None and dto.email:
                account = self.repo.get_account_by_email(dto.email)
                account_id = account.id if account else None
            if account_id is None:
                report.skip(dto.email or dto.id, "no local account to own merchant")
                continue
            merchants.append(self.to_local(dto, account_id))
        return merchants

    def persist(self, dtos: list[MerchantDTO],
                account_ids: Optional[dict[str, int]] = None) -> ReconcileReport:
        """Upsert merchants whose owning account exists locally.

        A changed storefront name is written together with the producer
        of every listing the merchant owns. Listings are then re-linked to
        their owners by remote id, which also repairs listings cached
        before their merchant was.
        """
        report = ReconcileReport("merchant")
        plain = []
        for merchant in self._resolve(dtos, account_ids, report):
            current = self.repo.get_merchant_by_id(merchant.id)
            if current is not None and current.storefront_name != merchant.storefront_name:
                touched = self.repo.save_merchant_profile(merchant)
                logger.info(
                    "Storefront of merchant %d renamed %r -> %r (%d listings)",
                    merchant.id, current.storefront_name,
                    merchant.storefront_name, touched,
                )
            else:
                plain.append(merchant)
            report.upserted += 1
        self.repo.upsert_merchants(plain)
        relinked = self.repo.relink_listing_owners()
        if relinked:
            logger.info("Re-linked %d listings to their merchants", relinked)
        return report

    def replace_all(self, dtos: list[MerchantDTO],
                    account_ids: Optional[dict[str, int]] = None) -> ReconcileReport:
        """Replace the cached merchant table with the remote set."""
        report = ReconcileReport("merchant")
        merchants = self._resolve(dtos, account_ids, report)
        before = len(self.repo.get_all_merchants())
        self.repo.replace_all_merchants(merchants)
        report.upserted = len(merchants)
        report.removed = max(before - len(merchants), 0)
        return report


class ListingReconciler:
    """Mirrors remote listings into the cache."""

    def __init__(self, repo: Repository, prune: bool = True):
        self.repo = repo
        self.prune = prune

    @staticmethod
    def to_local(dto: ListingDTO, merchants: dict[int, Merchant]) -> Listing:
        """Map a remote listing onto the cache.

        *merchants* is keyed by remote merchant id. A known owner supplies
        the local owner id and the producer; an unknown one leaves the
        listing without a local owner until its merchant is cached.
        """
        owner = merchants.get(dto.owner_id) if dto.owner_id is not None else None
        return Listing(
            id=dto.id,
            name=dto.name,
            description=dto.description,
            producer=owner.storefront_name if owner else dto.producer,
            category=dto.category,
            owner_id=owner.id if owner else None,
            owner_remote_id=dto.owner_id,
            images=list(dto.images),
            price=dto.price,
            location=dto.location,
        )

    def sync(self, dtos: list[ListingDTO]) -> ReconcileReport:
        """Upsert every valid listing; with pruning, drop the rest.

        Listings the remote no longer returns are deleted. A listing that
        came back but failed validation keeps its previous cached copy.
        """
        report = ReconcileReport("listing")
        merchants = self.repo.get_merchants_by_remote_id()
        valid: list[Listing] = []
        rejected_ids: list[int] = []
        seen: set[int] = set()

        for dto in dtos:
            if dto.id is None:
                report.skip(dto.name or "?", "remote listing has no usable id")
                continue
            if dto.id in seen:
                report.skip(dto.id, "listed twice in one response")
                continue
            seen.add(dto.id)
            listing = self.to_local(dto, merchants)
            try:
                listing.validate()
            except ValidationError as e:
                report.skip(dto.id, str(e))
                rejected_ids.append(dto.id)
                continue
            valid.append(listing)

        if self.prune:
            report.removed = self.repo.replace_all_listings(valid, keep_ids=rejected_ids)
        else:
            self.repo.upsert_listings(valid)
        report.upserted = len(valid)
        return report
