from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from bidcore.core.errors import NotFoundError
from bidcore.core.models import (
    Auction,
    AuctionStatus,
    Bid,
    BidKind,
    BidStatus,
    TrustRecord,
    as_utc,
)
from bidcore.core.storage.sqlite_adapter import SQLiteAdapter
from bidcore.core.unit import AuctionUnit
from bidcore.utils.logger import get_logger
from bidcore.utils.validation import from_cents, to_cents

logger = get_logger("storage.manager")

DEFAULT_TRUST_SCORE = 500.0


def _ts(moment: datetime) -> str:
    return as_utc(moment).isoformat(timespec="microseconds")


def _parse_ts(value: str) -> datetime:
    return as_utc(datetime.fromisoformat(value))


def _cents_or_none(value):
    return None if value is None else to_cents(value)


class StorageManager:
    """
    Manages persistent storage for the engine.

    Converts between records and rows and exposes:
    - Auction loading and listing
    - Bid ledger queries
    - Trust records
    - Atomic per-auction commits (AuctionUnit)
    """

    def __init__(self, data_dir: Path, db_name: str = "bidcore.db"):
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_name
        self.adapter = SQLiteAdapter(self.db_path)

        logger.info(f"StorageManager initialized at {self.db_path}")

    # =========================================================================
    # Row Conversion
    # =========================================================================

    @staticmethod
    def _auction_values(auction: Auction) -> dict:
        return {
            "seller_id": auction.seller_id,
            "title": auction.title,
            "description": auction.description,
            "starting_price": to_cents(auction.starting_price),
            "current_price": _cents_or_none(auction.current_price),
            "reserve_price": _cents_or_none(auction.reserve_price),
            "buy_now_price": _cents_or_none(auction.buy_now_price),
            "start_time": _ts(auction.start_time),
            "end_time": _ts(auction.end_time),
            "status": auction.status.name,
            "bid_count": auction.bid_count,
            "winner_id": auction.winner_id,
            "final_price": _cents_or_none(auction.final_price),
            "attributes": auction.attributes,
            "created_at": _ts(auction.created_at),
        }

    @staticmethod
    def _auction_from_row(row) -> Auction:
        return Auction(
            auction_id=row["auction_id"],
            seller_id=row["seller_id"],
            title=row["title"],
            description=row["description"],
            starting_price=from_cents(row["starting_price"]),
            current_price=from_cents(row["current_price"]),
            reserve_price=from_cents(row["reserve_price"]),
            buy_now_price=from_cents(row["buy_now_price"]),
            start_time=_parse_ts(row["start_time"]),
            end_time=_parse_ts(row["end_time"]),
            status=AuctionStatus[row["status"]],
            bid_count=row["bid_count"],
            winner_id=row["winner_id"],
            final_price=from_cents(row["final_price"]),
            attributes=row["attributes"],
            created_at=_parse_ts(row["created_at"]),
            version=row["version"],
        )

    @staticmethod
    def _bid_values(bid: Bid) -> dict:
        return {
            "auction_id": bid.auction_id,
            "bidder_id": bid.bidder_id,
            "amount": to_cents(bid.amount),
            "max_amount": _cents_or_none(bid.max_amount),
            "status": bid.status.name,
            "kind": bid.kind.name,
            "created_at": _ts(bid.created_at),
            "notes": bid.notes,
        }

    @staticmethod
    def _bid_from_row(row) -> Bid:
        return Bid(
            bid_id=row["bid_id"],
            auction_id=row["auction_id"],
            bidder_id=row["bidder_id"],
            amount=from_cents(row["amount"]),
            max_amount=from_cents(row["max_amount"]),
            status=BidStatus[row["status"]],
            kind=BidKind[row["kind"]],
            created_at=_parse_ts(row["created_at"]),
            notes=row["notes"],
        )

    # =========================================================================
    # Auctions
    # =========================================================================

    def save_new_auction(self, auction: Auction) -> Auction:
        """Insert a new auction and assign its id."""
        auction.auction_id = self.adapter.insert_auction(self._auction_values(auction))
        auction.version = 0
        return auction

    def load_auction(self, auction_id: int) -> Optional[Auction]:
        row = self.adapter.get_auction(auction_id)
        return self._auction_from_row(row) if row else None

    def list_auctions(
        self,
        status: Optional[AuctionStatus] = None,
        seller_id: Optional[int] = None,
    ) -> List[Auction]:
        rows = self.adapter.get_auctions(
            status=status.name if status is not None else None,
            seller_id=seller_id,
        )
        return [self._auction_from_row(r) for r in rows]

    def auctions_due_to_start(self, now: datetime) -> List[Auction]:
        rows = self.adapter.get_auctions_due(AuctionStatus.UPCOMING.name, "start_time", _ts(now))
        return [self._auction_from_row(r) for r in rows]

    def auctions_due_to_close(self, now: datetime) -> List[Auction]:
        rows = self.adapter.get_auctions_due(AuctionStatus.ACTIVE.name, "end_time", _ts(now))
        return [self._auction_from_row(r) for r in rows]

    def auctions_ending_between(self, start: datetime, end: datetime) -> List[Auction]:
        rows = self.adapter.get_auctions_ending_between(
            AuctionStatus.ACTIVE.name, _ts(start), _ts(end)
        )
        return [self._auction_from_row(r) for r in rows]

    # =========================================================================
    # Bid Ledger
    # =========================================================================

    def load_bid(self, bid_id: int) -> Optional[Bid]:
        row = self.adapter.get_bid(bid_id)
        return self._bid_from_row(row) if row else None

    def load_bids_for_auction(self, auction_id: int) -> List[Bid]:
        return [self._bid_from_row(r) for r in self.adapter.get_bids_for_auction(auction_id)]

    def load_bids_by_user(self, user_id: int, status: Optional[BidStatus] = None) -> List[Bid]:
        rows = self.adapter.get_bids_by_user(user_id, status.name if status is not None else None)
        return [self._bid_from_row(r) for r in rows]

    def load_highest_live_bid(self, auction_id: int) -> Optional[Bid]:
        """Highest ACTIVE or WINNING bid for an auction."""
        row = self.adapter.get_highest_bid(
            auction_id, (BidStatus.ACTIVE.name, BidStatus.WINNING.name)
        )
        return self._bid_from_row(row) if row else None

    def load_status_history(self, bid_id: int) -> List[Tuple[BidStatus, datetime]]:
        return [
            (BidStatus[status], _parse_ts(changed_at))
            for status, changed_at in self.adapter.get_status_history(bid_id)
        ]

    # =========================================================================
    # Trust
    # =========================================================================

    def load_trust(self, user_id: int) -> TrustRecord:
        """Trust record for a user; unknown users get the default record."""
        row = self.adapter.get_trust(user_id)
        if row is None:
            return TrustRecord(user_id=user_id, trust_score=DEFAULT_TRUST_SCORE)
        return TrustRecord(
            user_id=row["user_id"],
            trust_score=row["trust_score"],
            successful_transactions=row["successful_transactions"],
            failed_transactions=row["failed_transactions"],
            total_bid_amount=from_cents(row["total_bid_amount"]),
        )

    def apply_trust_changes(self, unit_deltas, rescore: Callable[[int, int], float]):
        """Persist trust deltas that do not belong to an auction commit."""
        self.adapter.apply_trust_deltas(
            self._trust_rows(unit_deltas), rescore, DEFAULT_TRUST_SCORE
        )

    @staticmethod
    def _trust_rows(deltas) -> List[Tuple[int, int, int, int]]:
        return [
            (user_id, d.successes, d.failures, to_cents(d.bid_amount))
            for user_id, d in sorted(deltas.items())
            if not d.is_empty
        ]

    # =========================================================================
    # Units of Work
    # =========================================================================

    def open_unit(self, auction_id: int, now: datetime) -> AuctionUnit:
        """Load an auction and its full bid ledger for one atomic operation."""
        auction = self.load_auction(auction_id)
        if auction is None:
            raise NotFoundError("Auction", auction_id)
        return AuctionUnit(auction, self.load_bids_for_auction(auction_id), now)

    def commit_unit(self, unit: AuctionUnit, rescore: Callable[[int, int], float]):
        """
        Persist everything a unit changed in one transaction.

        Raises:
            VersionConflictError: the auction row moved since open_unit()
        """
        changed_at = _ts(unit.now)
        new_bids = unit.new_bids
        new_index = {id(b): -(i + 1) for i, b in enumerate(new_bids)}

        history = []
        for bid in unit.status_changes():
            ref = bid.bid_id if bid.bid_id is not None else new_index[id(bid)]
            history.append((ref, bid.status.name, changed_at))

        new_ids = self.adapter.commit_auction_unit(
            auction_id=unit.auction.auction_id,
            auction_values=self._auction_values(unit.auction),
            expected_version=unit.auction.version,
            new_bids=[self._bid_values(b) for b in new_bids],
            updated_bids=[(b.bid_id, self._bid_values(b)) for b in unit.dirty_bids],
            history=history,
            trust_deltas=self._trust_rows(unit.trust_deltas),
            rescore=rescore,
            default_score=DEFAULT_TRUST_SCORE,
        )

        for bid, bid_id in zip(new_bids, new_ids):
            bid.bid_id = bid_id
        unit.auction.version += 1
        unit.mark_committed()
        logger.debug(
            f"Committed auction {unit.auction.auction_id} v{unit.auction.version}: "
            f"{len(new_ids)} new bids, {len(unit.dirty_bids)} updated"
        )

    def close(self) -> None:
        """Close the calling thread's database connection."""
        self.adapter.close()
