# app/payouts/scheduling.py
from __future__ import annotations

import logging
from typing import Optional, Protocol
from uuid import UUID

from app.errors import DeveloperProfileMissing
from app.payouts.model import Payout
from app.payouts.store import SettlementStore
from services.redaction import mask_ln_address

logger = logging.getLogger("marketplace.payouts.scheduling")


class DeveloperDirectory(Protocol):
    def payout_address(self, developer_user_id: UUID) -> Optional[str]: ...


def schedule_payout(
    store: SettlementStore,
    directory: DeveloperDirectory,
    *,
    purchase_id: UUID,
    developer_user_id: UUID,
    amount_msat: int,
) -> Payout:
    """
    Create the single payout for a settled purchase, or refresh its destination
    and amount while it has not reached a provider yet.
    """
    if int(amount_msat) <= 0:
        raise ValueError("amount_msat must be positive")

    address = (directory.payout_address(developer_user_id) or "").strip()
    if not address:
        raise DeveloperProfileMissing(developer_user_id)

    with store.transaction() as tx:
        payout = tx.upsert_scheduled_payout(
            purchase_id=purchase_id,
            developer_user_id=developer_user_id,
            destination_address=address,
            amount_msat=int(amount_msat),
        )

    logger.info(
        "payout_scheduled payout_id=%s purchase_id=%s status=%s destination=%s",
        payout.id,
        purchase_id,
        payout.status.value,
        mask_ln_address(address),
    )
    return payout
