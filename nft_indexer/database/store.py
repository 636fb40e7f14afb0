"""
Record store: SQLAlchemy-backed minted items, owner levels, and buyback events.

Uses DATABASE_URL (PostgreSQL in production via psycopg2); SQLite otherwise.
Writes are idempotent on natural keys; the unique constraints are the real
guard against two ingestion attempts racing on the same item. Also runs the
ownership reconciliation sweep.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterable, Iterator, Protocol

from sqlalchemy import and_, create_engine, func, or_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from nft_indexer.core.exceptions import RpcError, StorageError, ValidationError
from nft_indexer.database.levels import calculate_level
from nft_indexer.database.models import NewBuybackEvent, NewMintedItem, OwnerStats, ShardStatus, SweepResult
from nft_indexer.database.orm import Base, BuybackEvent, MintedItem, OwnerLevel
from nft_indexer.database.shards import RECENT_WINDOW_DAYS, calculate_shard_status
from nft_indexer.indexer_logging import get_logger

logger = get_logger(__name__)

DEFAULT_SWEEP_BATCH_SIZE = 50
DEFAULT_VERIFICATION_AGE_SEC = 24 * 3600
DEFAULT_RPC_DELAY_SEC = 0.05
MAX_PAGE_SIZE = 100
_LEVEL_RECOMPUTE_ATTEMPTS = 3


class OwnershipVerifier(Protocol):
    """Anything that can answer "does owner currently hold mint?" (LedgerReader in production)."""

    def is_owned_by(self, mint: str, owner: str) -> bool: ...


def _short(value: str | None) -> str:
    if not value:
        return "?"
    return value[:16] + "..." if len(value) > 16 else value


def _redact_url(url: str) -> str:
    return url.split("?")[0].split("@")[-1].split("//")[-1]


class RecordStore:
    """
    Durable store for the indexer.

    Args:
        database_url: SQLAlchemy URL (sqlite:///path.db, postgresql+psycopg2://...).
        ownership: Optional verifier used at write time (best effort) and by the sweep.
        verify_on_write: Check ownership in save_minted_item when a verifier is set.
        sweep_batch_size: Rows per sweep batch.
        verification_age_sec: Rows not touched for this long are re-verified by the sweep.
        rpc_delay_sec: Pause between ownership checks during a sweep.
        clock: Returns current Unix time; injectable for tests.
    """

    def __init__(
        self,
        database_url: str,
        *,
        ownership: OwnershipVerifier | None = None,
        verify_on_write: bool = True,
        sweep_batch_size: int = DEFAULT_SWEEP_BATCH_SIZE,
        verification_age_sec: float = DEFAULT_VERIFICATION_AGE_SEC,
        rpc_delay_sec: float = DEFAULT_RPC_DELAY_SEC,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not database_url or not database_url.strip():
            raise ValueError("database_url must be non-empty")
        if sweep_batch_size < 1:
            raise ValueError("sweep_batch_size must be >= 1")
        self._url = database_url.strip()
        self._ownership = ownership
        self._verify_on_write = verify_on_write
        self._batch_size = sweep_batch_size
        self._verification_age = verification_age_sec
        self._rpc_delay = rpc_delay_sec
        self._clock = clock
        self._sleep = sleep

        connect_args: dict[str, Any] = {}
        if self._url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = 30
        self._engine: Engine = create_engine(self._url, connect_args=connect_args, pool_pre_ping=True)
        self._session_factory = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self._engine
        )

        self._sweep_lock = threading.Lock()
        self._sweep_in_progress = False
        logger.info("record_store_engine", url=_redact_url(self._url))

    # -------------------------------------------------------------------------
    # Engine and session
    # -------------------------------------------------------------------------

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        """Context manager for a single session. Commits on success, rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _now(self) -> int:
        return int(self._clock())

    def set_ownership_verifier(self, ownership: OwnershipVerifier | None) -> None:
        self._ownership = ownership

    def ensure_schema(self) -> None:
        """
        Create tables and indexes if they do not exist.
        Uses Base.metadata.create_all. Safe to call on every startup.
        """
        try:
            Base.metadata.create_all(bind=self._engine)
            logger.info("record_store_schema_ready", url=_redact_url(self._url))
        except SQLAlchemyError as e:
            logger.exception("record_store_schema_failed", error=str(e))
            raise StorageError(f"could not create schema: {e}") from e

    def dispose(self) -> None:
        self._engine.dispose()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _find_item(self, session: Session, mint: str, signature: str | None = None) -> MintedItem | None:
        row = session.query(MintedItem).filter(MintedItem.mint == mint).first()
        if row is None and signature:
            row = session.query(MintedItem).filter(MintedItem.transaction_signature == signature).first()
        return row

    def _check_ownership(self, candidate: NewMintedItem) -> None:
        """Reject only on a confirmed "not owned". Verification failures are logged and ignored."""
        if self._ownership is None or not self._verify_on_write:
            return
        try:
            owned = self._ownership.is_owned_by(candidate.mint, candidate.owner)
        except RpcError as e:
            logger.warning(
                "mint_ownership_check_failed_proceeding",
                signature=candidate.transaction_signature,
                mint=candidate.mint,
                owner=_short(candidate.owner),
                error=str(e),
            )
            return
        if not owned:
            raise ValidationError(
                f"owner {candidate.owner} does not hold mint {candidate.mint}",
                signature=candidate.transaction_signature,
            )

    def save_minted_item(self, candidate: NewMintedItem) -> MintedItem:
        """
        Insert the item if its mint address is new; otherwise return the existing row unchanged.

        The insert and the owner's level recompute commit in one transaction.
        Raises ValidationError for incomplete candidates or a confirmed ownership
        mismatch, StorageError when the database fails.
        """
        if not candidate.mint or not candidate.owner:
            raise ValidationError("minted item needs both mint and owner", signature=candidate.transaction_signature)
        if not candidate.transaction_signature:
            raise ValidationError("minted item needs a transaction signature")
        sig = candidate.transaction_signature

        existing = self._existing_item(candidate.mint, sig)
        if existing is not None:
            logger.debug("mint_item_exists", mint=candidate.mint, signature=sig)
            return existing

        # No session is open across the RPC call
        self._check_ownership(candidate)

        for attempt in range(1, _LEVEL_RECOMPUTE_ATTEMPTS + 1):
            now = self._now()
            try:
                with self._session_scope() as session:
                    row = MintedItem(
                        mint=candidate.mint,
                        owner=candidate.owner,
                        name=candidate.name or "",
                        symbol=candidate.symbol or "",
                        uri=candidate.uri or "",
                        transaction_signature=sig,
                        slot=candidate.slot or 0,
                        block_time=candidate.block_time,
                        event_timestamp=candidate.event_timestamp,
                        heuristic=candidate.heuristic,
                        created_at=now,
                        updated_at=now,
                    )
                    session.add(row)
                    session.flush()
                    self._recalculate_owner_level_in(session, candidate.owner, now)
            except IntegrityError:
                # Either the item lost an insert race or a concurrent first owner_levels insert won
                existing = self._existing_item(candidate.mint, sig, with_signature=True)
                if existing is not None:
                    logger.info("mint_item_insert_race", mint=candidate.mint, signature=sig)
                    return existing
                logger.debug("owner_level_insert_conflict", owner=_short(candidate.owner), attempt=attempt)
                continue
            except SQLAlchemyError as e:
                logger.exception("mint_item_insert_failed", mint=candidate.mint, error=str(e))
                raise StorageError(f"insert failed: {e}", signature=sig) from e
            logger.info(
                "mint_item_saved",
                signature=sig,
                mint=candidate.mint,
                owner=_short(candidate.owner),
                heuristic=candidate.heuristic,
            )
            return row
        raise StorageError(f"insert kept conflicting for {candidate.mint}", signature=sig)

    def _existing_item(self, mint: str, signature: str, with_signature: bool = False) -> MintedItem | None:
        """
        Look up an already stored item. When its owner's level row is missing or
        does not match the item count, the level is recomputed before returning.
        """
        try:
            with self._session_scope() as session:
                existing = self._find_item(session, mint, signature if with_signature else None)
                stale = existing is not None and not self._owner_level_current(session, existing.owner)
        except SQLAlchemyError as e:
            logger.exception("mint_item_lookup_failed", mint=mint, error=str(e))
            raise StorageError(f"lookup failed: {e}", signature=signature) from e
        if stale:
            logger.warning("owner_level_stale_repairing", owner=_short(existing.owner), mint=mint)
            self.recalculate_owner_level(existing.owner)
        return existing

    @staticmethod
    def _owner_level_current(session: Session, owner: str) -> bool:
        count = session.query(func.count(MintedItem.id)).filter(MintedItem.owner == owner).scalar() or 0
        total = session.query(OwnerLevel.total_items).filter(OwnerLevel.owner == owner).scalar()
        if count == 0:
            return total is None
        return total == count

    def save_buyback_event(self, candidate: NewBuybackEvent) -> BuybackEvent:
        """Insert the buyback if its transaction signature is new; otherwise return the existing row."""
        if not candidate.transaction_signature:
            raise ValidationError("buyback event needs a transaction signature")
        sig = candidate.transaction_signature
        try:
            with self._session_scope() as session:
                existing = session.query(BuybackEvent).filter(BuybackEvent.transaction_signature == sig).first()
                if existing is not None:
                    return existing
                row = BuybackEvent(
                    transaction_signature=sig,
                    amount_lamports=candidate.amount_lamports,
                    token_amount=candidate.token_amount,
                    event_timestamp=candidate.event_timestamp,
                    slot=candidate.slot or 0,
                    block_time=candidate.block_time,
                    heuristic=candidate.heuristic,
                    created_at=self._now(),
                )
                session.add(row)
                session.flush()
        except IntegrityError:
            with self._session_scope() as session:
                existing = session.query(BuybackEvent).filter(BuybackEvent.transaction_signature == sig).first()
            if existing is None:
                raise StorageError("unique conflict but no existing buyback found", signature=sig)
            return existing
        except SQLAlchemyError as e:
            logger.exception("buyback_insert_failed", signature=sig, error=str(e))
            raise StorageError(f"insert failed: {e}", signature=sig) from e
        logger.info(
            "buyback_event_saved",
            signature=sig,
            amount_lamports=candidate.amount_lamports,
            token_amount=candidate.token_amount,
            heuristic=candidate.heuristic,
        )
        return row

    def recalculate_owner_level(self, owner: str) -> OwnerLevel | None:
        """
        Recompute owner_levels for `owner` from the current minted_items count.
        Deletes the row when the owner has no items. Returns the row, or None when deleted/absent.
        """
        for attempt in range(1, _LEVEL_RECOMPUTE_ATTEMPTS + 1):
            try:
                return self._recalculate_owner_level_once(owner)
            except IntegrityError:
                # Concurrent first insert of the same owner row; recount and update
                logger.debug("owner_level_recompute_conflict", owner=_short(owner), attempt=attempt)
            except SQLAlchemyError as e:
                logger.exception("owner_level_recompute_failed", owner=_short(owner), error=str(e))
                raise StorageError(f"level recompute failed for {owner}: {e}") from e
        raise StorageError(f"level recompute kept conflicting for {owner}")

    def _recalculate_owner_level_once(self, owner: str) -> OwnerLevel | None:
        with self._session_scope() as session:
            return self._recalculate_owner_level_in(session, owner, self._now())

    def _recalculate_owner_level_in(self, session: Session, owner: str, now: int) -> OwnerLevel | None:
        """Recount and upsert/delete the owner's level row inside the caller's transaction."""
        count = session.query(func.count(MintedItem.id)).filter(MintedItem.owner == owner).scalar() or 0
        row = session.query(OwnerLevel).filter(OwnerLevel.owner == owner).first()
        if count == 0:
            if row is not None:
                session.delete(row)
                logger.info("owner_level_removed", owner=_short(owner))
            return None
        info = calculate_level(count)
        if row is None:
            row = OwnerLevel(
                owner=owner,
                total_items=count,
                level=info.level,
                experience=info.experience,
                next_level_items=info.next_level_items,
                created_at=now,
                updated_at=now,
                version=1,
            )
            session.add(row)
        else:
            row.total_items = count
            row.level = info.level
            row.experience = info.experience
            row.next_level_items = info.next_level_items
            row.updated_at = now
            row.version = (row.version or 0) + 1
        session.flush()
        logger.debug("owner_level_recomputed", owner=_short(owner), total_items=count, level=info.level)
        return row

    # -------------------------------------------------------------------------
    # Ownership reconciliation
    # -------------------------------------------------------------------------

    def is_sweep_in_progress(self) -> bool:
        with self._sweep_lock:
            return self._sweep_in_progress

    def reconcile_ownership(self, now: int | None = None) -> SweepResult:
        """
        Re-verify items not touched within the verification age, oldest first, in batches.

        Confirmed-owned rows get updated_at=now; rows whose check errors are left
        as they are; confirmed-not-owned rows are deleted and their owner's level
        recomputed. If a sweep is already running this call returns skipped=True.
        """
        with self._sweep_lock:
            if self._sweep_in_progress:
                logger.info("ownership_sweep_skipped_in_progress")
                return SweepResult(skipped=True)
            self._sweep_in_progress = True
        try:
            return self._run_sweep(self._now() if now is None else int(now))
        finally:
            with self._sweep_lock:
                self._sweep_in_progress = False

    def _next_batch(self, cutoff: int, cursor: tuple[int, int] | None) -> list[tuple[int, str, str, int]]:
        with self._session_scope() as session:
            q = session.query(MintedItem.id, MintedItem.mint, MintedItem.owner, MintedItem.updated_at).filter(
                MintedItem.updated_at < cutoff
            )
            if cursor is not None:
                last_updated, last_id = cursor
                q = q.filter(
                    or_(
                        MintedItem.updated_at > last_updated,
                        and_(MintedItem.updated_at == last_updated, MintedItem.id > last_id),
                    )
                )
            rows = q.order_by(MintedItem.updated_at, MintedItem.id).limit(self._batch_size).all()
            return [(r[0], r[1], r[2], r[3]) for r in rows]

    def _remove_not_owned(self, item_id: int, owner: str, now: int) -> bool:
        """Delete the item and recompute its owner's level in one transaction. False if already gone."""
        for attempt in range(1, _LEVEL_RECOMPUTE_ATTEMPTS + 1):
            try:
                with self._session_scope() as session:
                    deleted = (
                        session.query(MintedItem)
                        .filter(MintedItem.id == item_id, MintedItem.owner == owner)
                        .delete(synchronize_session=False)
                    )
                    if deleted:
                        self._recalculate_owner_level_in(session, owner, now)
                return bool(deleted)
            except IntegrityError:
                logger.debug("owner_level_recompute_conflict", owner=_short(owner), attempt=attempt)
        raise StorageError(f"level recompute kept conflicting for {owner}")

    def _run_sweep(self, now: int) -> SweepResult:
        result = SweepResult()
        if self._ownership is None:
            logger.warning("ownership_sweep_no_verifier")
            return result
        cutoff = now - int(self._verification_age)
        cursor: tuple[int, int] | None = None
        logger.info("ownership_sweep_started", cutoff=cutoff, batch_size=self._batch_size)
        try:
            while True:
                batch = self._next_batch(cutoff, cursor)
                if not batch:
                    break
                for item_id, mint, owner, updated_at in batch:
                    if result.checked > 0 and self._rpc_delay > 0:
                        self._sleep(self._rpc_delay)
                    result.checked += 1
                    try:
                        owned = self._ownership.is_owned_by(mint, owner)
                    except RpcError as e:
                        result.errors += 1
                        logger.warning("ownership_check_failed", mint=mint, owner=_short(owner), error=str(e))
                        continue
                    if owned:
                        with self._session_scope() as session:
                            session.query(MintedItem).filter(MintedItem.id == item_id).update(
                                {MintedItem.updated_at: now}, synchronize_session=False
                            )
                        result.confirmed += 1
                    elif self._remove_not_owned(item_id, owner, now):
                        result.removed += 1
                        result.owners_recomputed += 1
                        logger.info("minted_item_removed_not_owned", mint=mint, owner=_short(owner))
                cursor = (batch[-1][3], batch[-1][0])
                if len(batch) < self._batch_size:
                    break
        except SQLAlchemyError as e:
            logger.exception("ownership_sweep_storage_failed", error=str(e))
            raise StorageError(f"ownership sweep failed: {e}") from e
        logger.info("ownership_sweep_finished", **result.to_dict())
        return result

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _read(self, op: str, fn: Callable[[Session], Any]) -> Any:
        try:
            with self._session_scope() as session:
                return fn(session)
        except SQLAlchemyError as e:
            logger.exception("record_store_read_failed", op=op, error=str(e))
            raise StorageError(f"{op} failed: {e}") from e

    def get_item_by_mint(self, mint: str) -> dict[str, Any] | None:
        def q(session: Session) -> dict[str, Any] | None:
            row = session.query(MintedItem).filter(MintedItem.mint == mint).first()
            return row.to_dict() if row else None

        return self._read("get_item_by_mint", q)

    def get_items_by_owner(self, owner: str, limit: int = MAX_PAGE_SIZE, offset: int = 0) -> list[dict[str, Any]]:
        limit, offset = _page_bounds(limit, offset)

        def q(session: Session) -> list[dict[str, Any]]:
            rows = (
                session.query(MintedItem)
                .filter(MintedItem.owner == owner)
                .order_by(MintedItem.created_at.desc(), MintedItem.id.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            return [r.to_dict() for r in rows]

        return self._read("get_items_by_owner", q)

    def get_owner_level(self, owner: str) -> dict[str, Any] | None:
        def q(session: Session) -> dict[str, Any] | None:
            row = session.query(OwnerLevel).filter(OwnerLevel.owner == owner).first()
            return row.to_dict() if row else None

        return self._read("get_owner_level", q)

    def get_owner_shard_status(self, owner: str, earned: Iterable[str] = ()) -> ShardStatus:
        """
        Shard progress for `owner`. Counts come from the owner's current items;
        recent mints are items created within the last RECENT_WINDOW_DAYS.
        Unique mints equal the collection size (no content hashing is stored).
        """
        since = self._now() - RECENT_WINDOW_DAYS * 24 * 3600

        def q(session: Session) -> OwnerStats:
            owned = session.query(func.count(MintedItem.id)).filter(MintedItem.owner == owner).scalar() or 0
            recent = (
                session.query(func.count(MintedItem.id))
                .filter(MintedItem.owner == owner, MintedItem.created_at > since)
                .scalar()
                or 0
            )
            return OwnerStats(
                total_mints=int(owned),
                collection_size=int(owned),
                recent_mints=int(recent),
                unique_mints=int(owned),
            )

        return calculate_shard_status(self._read("get_owner_shard_status", q), earned)

    def get_buyback_events(self, limit: int = 20, offset: int = 0) -> list[dict[str, Any]]:
        """Newest first. limit is clamped to 1..100, offset to >= 0."""
        limit, offset = _page_bounds(limit, offset)

        def q(session: Session) -> list[dict[str, Any]]:
            rows = (
                session.query(BuybackEvent)
                .order_by(BuybackEvent.event_timestamp.desc(), BuybackEvent.id.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            return [r.to_dict() for r in rows]

        return self._read("get_buyback_events", q)

    def get_buyback_statistics(self) -> dict[str, Any]:
        def q(session: Session) -> dict[str, Any]:
            count, lamports, tokens, first_ts, last_ts = session.query(
                func.count(BuybackEvent.id),
                func.coalesce(func.sum(BuybackEvent.amount_lamports), 0),
                func.coalesce(func.sum(BuybackEvent.token_amount), 0),
                func.min(BuybackEvent.event_timestamp),
                func.max(BuybackEvent.event_timestamp),
            ).one()
            return {
                "total_buybacks": int(count or 0),
                "total_lamports": int(lamports or 0),
                "total_sol": int(lamports or 0) / 1_000_000_000.0,
                "total_tokens": int(tokens or 0),
                "first_event_timestamp": first_ts,
                "last_event_timestamp": last_ts,
            }

        return self._read("get_buyback_statistics", q)

    def get_statistics(self) -> dict[str, Any]:
        since = self._now() - 24 * 3600

        def q(session: Session) -> dict[str, Any]:
            return {
                "total_items": session.query(func.count(MintedItem.id)).scalar() or 0,
                "total_owners": session.query(func.count(OwnerLevel.owner)).scalar() or 0,
                "total_buybacks": session.query(func.count(BuybackEvent.id)).scalar() or 0,
                "items_last_24h": session.query(func.count(MintedItem.id))
                .filter(MintedItem.created_at >= since)
                .scalar()
                or 0,
                "max_level": session.query(func.max(OwnerLevel.level)).scalar() or 0,
            }

        return self._read("get_statistics", q)

    def count_minted_items(self, owner: str | None = None) -> int:
        def q(session: Session) -> int:
            query = session.query(func.count(MintedItem.id))
            if owner:
                query = query.filter(MintedItem.owner == owner)
            return int(query.scalar() or 0)

        return self._read("count_minted_items", q)

    def is_transaction_processed(self, signature: str) -> bool:
        """True when the signature already produced a minted item or buyback row."""

        def q(session: Session) -> bool:
            if session.query(MintedItem.id).filter(MintedItem.transaction_signature == signature).first():
                return True
            return (
                session.query(BuybackEvent.id).filter(BuybackEvent.transaction_signature == signature).first()
                is not None
            )

        return self._read("is_transaction_processed", q)


def _page_bounds(limit: int, offset: int) -> tuple[int, int]:
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        limit = MAX_PAGE_SIZE
    try:
        offset = int(offset)
    except (TypeError, ValueError):
        offset = 0
    return max(1, min(limit, MAX_PAGE_SIZE)), max(0, offset)


def get_record_store(database_url: str | None = None, **kwargs: Any) -> RecordStore:
    """
    Return a RecordStore for database_url (defaults to Settings.database_url) with the schema ensured.
    """
    if database_url is None:
        from nft_indexer.config import get_settings

        database_url = get_settings().database_url
    store = RecordStore(database_url, **kwargs)
    store.ensure_schema()
    return store
