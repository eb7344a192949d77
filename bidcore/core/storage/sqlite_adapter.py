import sqlite3
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from bidcore.core.errors import VersionConflictError
from bidcore.utils.logger import get_logger

logger = get_logger("storage.sqlite")

AUCTION_COLUMNS = (
    "seller_id", "title", "description", "starting_price", "current_price",
    "reserve_price", "buy_now_price", "start_time", "end_time", "status",
    "bid_count", "winner_id", "final_price", "attributes", "created_at",
)

BID_COLUMNS = (
    "auction_id", "bidder_id", "amount", "max_amount", "status", "kind",
    "created_at", "notes",
)

# Only these columns may be used for time-based auction lookups
TIME_COLUMNS = frozenset({"start_time", "end_time"})


class SQLiteAdapter:
    """
    SQLite backend for the auction and bid ledgers.

    Provides:
    1. Auction rows with an optimistic version counter.
    2. Bid rows plus an append-only status history.
    3. Per-user trust counters.
    4. A single-transaction commit covering all three for one auction.

    Money columns hold integer cents; timestamps are ISO-8601 UTC strings.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn_local = threading.local()

        # Ensure directory exists
        if not db_path.parent.exists():
            db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_schema()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create connection for current thread."""
        if not hasattr(self._conn_local, "conn"):
            self._conn_local.conn = sqlite3.connect(
                self.db_path,
                timeout=30.0,
                check_same_thread=False
            )
            self._conn_local.conn.row_factory = sqlite3.Row
            # Enable WAL mode for better concurrency
            self._conn_local.conn.execute("PRAGMA journal_mode=WAL;")
            self._conn_local.conn.execute("PRAGMA synchronous=NORMAL;")
        return self._conn_local.conn

    def close(self):
        """Close the connection owned by the current thread."""
        conn = getattr(self._conn_local, "conn", None)
        if conn is not None:
            conn.close()
            del self._conn_local.conn

    def _init_schema(self):
        """Initialize database schema."""
        conn = self._get_conn()
        with conn:
            # 1. Auctions
            conn.execute("""
                CREATE TABLE IF NOT EXISTS auctions (
                    auction_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    seller_id INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    starting_price INTEGER NOT NULL,
                    current_price INTEGER,
                    reserve_price INTEGER,
                    buy_now_price INTEGER,
                    start_time TEXT NOT NULL,
                    end_time TEXT NOT NULL,
                    status TEXT NOT NULL,
                    bid_count INTEGER NOT NULL DEFAULT 0,
                    winner_id INTEGER,
                    final_price INTEGER,
                    attributes TEXT,
                    created_at TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_auction_status_end ON auctions(status, end_time);")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_auction_seller ON auctions(seller_id);")

            # 2. Bids
            conn.execute("""
                CREATE TABLE IF NOT EXISTS bids (
                    bid_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    auction_id INTEGER NOT NULL REFERENCES auctions(auction_id),
                    bidder_id INTEGER NOT NULL,
                    amount INTEGER NOT NULL,
                    max_amount INTEGER,
                    status TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    notes TEXT NOT NULL DEFAULT ''
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_bid_auction ON bids(auction_id);")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_bid_bidder ON bids(bidder_id);")

            # 3. Bid status history (append-only)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS bid_status_history (
                    entry_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    bid_id INTEGER NOT NULL REFERENCES bids(bid_id),
                    status TEXT NOT NULL,
                    changed_at TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_history_bid ON bid_status_history(bid_id);")

            # 4. Trust counters
            conn.execute("""
                CREATE TABLE IF NOT EXISTS trust_records (
                    user_id INTEGER PRIMARY KEY,
                    trust_score REAL NOT NULL,
                    successful_transactions INTEGER NOT NULL DEFAULT 0,
                    failed_transactions INTEGER NOT NULL DEFAULT 0,
                    total_bid_amount INTEGER NOT NULL DEFAULT 0
                )
            """)

    # =========================================================================
    # Auction Operations
    # =========================================================================

    def insert_auction(self, values: Dict[str, Any]) -> int:
        """Insert a new auction row and return its id."""
        conn = self._get_conn()
        placeholders = ", ".join("?" for _ in AUCTION_COLUMNS)
        with conn:
            cursor = conn.execute(
                f"INSERT INTO auctions ({', '.join(AUCTION_COLUMNS)}, version) VALUES ({placeholders}, 0)",
                tuple(values[c] for c in AUCTION_COLUMNS)
            )
        return cursor.lastrowid

    def get_auction(self, auction_id: int) -> Optional[sqlite3.Row]:
        conn = self._get_conn()
        cursor = conn.execute("SELECT * FROM auctions WHERE auction_id = ?", (auction_id,))
        return cursor.fetchone()

    def get_auctions(
        self,
        status: Optional[str] = None,
        seller_id: Optional[int] = None,
    ) -> List[sqlite3.Row]:
        """Get auctions, optionally filtered by status and/or seller."""
        clauses, params = [], []
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if seller_id is not None:
            clauses.append("seller_id = ?")
            params.append(seller_id)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        conn = self._get_conn()
        cursor = conn.execute(f"SELECT * FROM auctions{where} ORDER BY auction_id ASC", params)
        return cursor.fetchall()

    def get_auctions_due(self, status: str, time_column: str, cutoff: str) -> List[sqlite3.Row]:
        """Get auctions in `status` whose `time_column` is at or before cutoff."""
        if time_column not in TIME_COLUMNS:
            raise ValueError(f"Unsupported time column: {time_column}")
        conn = self._get_conn()
        cursor = conn.execute(
            f"SELECT * FROM auctions WHERE status = ? AND {time_column} <= ? ORDER BY {time_column} ASC",
            (status, cutoff)
        )
        return cursor.fetchall()

    def get_auctions_ending_between(self, status: str, start: str, end: str) -> List[sqlite3.Row]:
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT * FROM auctions WHERE status = ? AND end_time BETWEEN ? AND ? ORDER BY end_time ASC",
            (status, start, end)
        )
        return cursor.fetchall()

    # =========================================================================
    # Bid Operations
    # =========================================================================

    def get_bid(self, bid_id: int) -> Optional[sqlite3.Row]:
        conn = self._get_conn()
        cursor = conn.execute("SELECT * FROM bids WHERE bid_id = ?", (bid_id,))
        return cursor.fetchone()

    def get_bids_for_auction(self, auction_id: int) -> List[sqlite3.Row]:
        """All bids for an auction, highest first, earliest first on ties."""
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT * FROM bids WHERE auction_id = ? ORDER BY amount DESC, created_at ASC, bid_id ASC",
            (auction_id,)
        )
        return cursor.fetchall()

    def get_bids_by_user(self, user_id: int, status: Optional[str] = None) -> List[sqlite3.Row]:
        """Bids placed by a user, newest first."""
        conn = self._get_conn()
        if status is None:
            cursor = conn.execute(
                "SELECT * FROM bids WHERE bidder_id = ? ORDER BY created_at DESC, bid_id DESC",
                (user_id,)
            )
        else:
            cursor = conn.execute(
                "SELECT * FROM bids WHERE bidder_id = ? AND status = ? ORDER BY created_at DESC, bid_id DESC",
                (user_id, status)
            )
        return cursor.fetchall()

    def get_highest_bid(self, auction_id: int, statuses: Tuple[str, ...]) -> Optional[sqlite3.Row]:
        """Highest bid among the given statuses, earliest first on ties."""
        placeholders = ", ".join("?" for _ in statuses)
        conn = self._get_conn()
        cursor = conn.execute(
            f"SELECT * FROM bids WHERE auction_id = ? AND status IN ({placeholders}) "
            "ORDER BY amount DESC, created_at ASC, bid_id ASC LIMIT 1",
            (auction_id, *statuses)
        )
        return cursor.fetchone()

    def get_status_history(self, bid_id: int) -> List[Tuple[str, str]]:
        """Get (status, changed_at) entries for a bid, oldest first."""
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT status, changed_at FROM bid_status_history WHERE bid_id = ? ORDER BY entry_id ASC",
            (bid_id,)
        )
        return [(row["status"], row["changed_at"]) for row in cursor]

    # =========================================================================
    # Trust Operations
    # =========================================================================

    def get_trust(self, user_id: int) -> Optional[sqlite3.Row]:
        conn = self._get_conn()
        cursor = conn.execute("SELECT * FROM trust_records WHERE user_id = ?", (user_id,))
        return cursor.fetchone()

    def apply_trust_deltas(
        self,
        deltas: List[Tuple[int, int, int, int]],
        rescore: Callable[[int, int], float],
        default_score: float,
    ):
        """Apply trust counter deltas in their own transaction."""
        conn = self._get_conn()
        with conn:
            conn.execute("BEGIN IMMEDIATE")
            self._apply_trust_deltas(conn, deltas, rescore, default_score)

    def _apply_trust_deltas(
        self,
        conn: sqlite3.Connection,
        deltas: List[Tuple[int, int, int, int]],
        rescore: Callable[[int, int], float],
        default_score: float,
    ):
        # Counters are incremented in SQL so concurrent commits for
        # different auctions never lose each other's updates.
        for user_id, successes, failures, bid_cents in deltas:
            conn.execute(
                "INSERT OR IGNORE INTO trust_records (user_id, trust_score) VALUES (?, ?)",
                (user_id, default_score)
            )
            conn.execute(
                "UPDATE trust_records SET successful_transactions = successful_transactions + ?, "
                "failed_transactions = failed_transactions + ?, "
                "total_bid_amount = total_bid_amount + ? WHERE user_id = ?",
                (successes, failures, bid_cents, user_id)
            )
            row = conn.execute(
                "SELECT successful_transactions, failed_transactions FROM trust_records WHERE user_id = ?",
                (user_id,)
            ).fetchone()
            score = rescore(row["successful_transactions"], row["failed_transactions"])
            conn.execute(
                "UPDATE trust_records SET trust_score = ? WHERE user_id = ?",
                (score, user_id)
            )

    # =========================================================================
    # Atomic Auction Commit
    # =========================================================================

    def commit_auction_unit(
        self,
        auction_id: int,
        auction_values: Optional[Dict[str, Any]],
        expected_version: int,
        new_bids: List[Dict[str, Any]],
        updated_bids: List[Tuple[int, Dict[str, Any]]],
        history: List[Tuple[Optional[int], str, str]],
        trust_deltas: List[Tuple[int, int, int, int]],
        rescore: Callable[[int, int], float],
        default_score: float,
    ) -> List[int]:
        """
        Atomically persist every record changed by one auction operation.

        Args:
            auction_id: Auction being changed
            auction_values: Full column set for the auction row
            expected_version: Version read when the operation started
            new_bids: Column sets for bids to insert
            updated_bids: (bid_id, columns) for bids to update
            history: (bid_id or None for new bid index, status, changed_at);
                new bids are referenced as negative indexes -1, -2, ...
            trust_deltas: (user_id, successes, failures, bid_cents)
            rescore: Score function over (successful, failed)
            default_score: Score for a user seen for the first time

        Returns:
            Ids assigned to the inserted bids, in order

        Raises:
            VersionConflictError: auction row changed since it was read
        """
        conn = self._get_conn()
        new_ids: List[int] = []
        with conn:
            conn.execute("BEGIN IMMEDIATE")

            # Version-checked auction update; the version always advances
            # so competing writers from other processes are detected.
            assignments = ", ".join(f"{c} = ?" for c in AUCTION_COLUMNS)
            params = tuple(auction_values[c] for c in AUCTION_COLUMNS)
            cursor = conn.execute(
                f"UPDATE auctions SET {assignments}, version = version + 1 "
                "WHERE auction_id = ? AND version = ?",
                (*params, auction_id, expected_version)
            )
            if cursor.rowcount != 1:
                raise VersionConflictError(
                    f"Auction {auction_id} changed concurrently (expected version {expected_version})",
                    auction_id=auction_id,
                )

            placeholders = ", ".join("?" for _ in BID_COLUMNS)
            for values in new_bids:
                cursor = conn.execute(
                    f"INSERT INTO bids ({', '.join(BID_COLUMNS)}) VALUES ({placeholders})",
                    tuple(values[c] for c in BID_COLUMNS)
                )
                new_ids.append(cursor.lastrowid)

            bid_assignments = ", ".join(f"{c} = ?" for c in BID_COLUMNS)
            for bid_id, values in updated_bids:
                conn.execute(
                    f"UPDATE bids SET {bid_assignments} WHERE bid_id = ?",
                    (*(values[c] for c in BID_COLUMNS), bid_id)
                )

            for ref, status, changed_at in history:
                bid_id = new_ids[-ref - 1] if ref < 0 else ref
                conn.execute(
                    "INSERT INTO bid_status_history (bid_id, status, changed_at) VALUES (?, ?, ?)",
                    (bid_id, status, changed_at)
                )

            self._apply_trust_deltas(conn, trust_deltas, rescore, default_score)

        return new_ids
