"""Block scanner: sequential, reorg-aware ingestion of Ethereum blocks."""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import structlog

from ethrelay.config import settings
from ethrelay.utils.exceptions import (
    BlockNotFoundError,
    ForkResolutionError,
    RetryTimeoutError,
    ScannerAlreadyRunningError,
    ScannerUsageError,
)
from .chain_store import BlockDescriptor, ChainStore
from .error_handler import ErrorHandler, RetryPolicy
from .eth_rpc import EthereumRPCService, FullBlock
from .reorg_handler import ReorgHandler

_DEFAULT = object()


class ScanCancelled(Exception):
    """Stop was requested while the scanner was waiting inside a step."""


@dataclass
class ScanStepResult:

    height: int
    block_hash: str
    tx_count: int
    fork_detected: bool
    processing_time: float
    fork_point_height: Optional[int] = None


class BlockScanner:
    """
    Advance a persisted cursor block by block, detect forks against the last
    accepted block and repair persisted history.

    The loop runs in one background thread. stop() is cooperative: it is
    observed between steps and during the scanner's own waits, never inside
    an RPC call or a database transaction.
    """

    def __init__(
        self,
        store: ChainStore,
        rpc: EthereumRPCService,
        scan_interval: Optional[float] = None,
        tip_poll_interval: Optional[float] = None,
        tip_wait_timeout: Any = _DEFAULT,
        fetch_policy: Optional[RetryPolicy] = None,
        ancestor_fetch_policy: Optional[RetryPolicy] = None,
        max_fork_depth: Optional[int] = None,
    ):
        self.store = store
        self.rpc = rpc

        self.scan_interval = scan_interval if scan_interval is not None else settings.SCAN_INTERVAL
        self.tip_poll_interval = tip_poll_interval if tip_poll_interval is not None else settings.TIP_POLL_INTERVAL
        self.tip_wait_timeout = settings.TIP_WAIT_TIMEOUT if tip_wait_timeout is _DEFAULT else tip_wait_timeout
        self.fetch_policy = fetch_policy or RetryPolicy.from_settings()
        self.ancestor_fetch_policy = ancestor_fetch_policy or RetryPolicy(
            max_attempts=settings.ANCESTOR_FETCH_MAX_ATTEMPTS,
            base_delay=settings.BLOCK_FETCH_BASE_DELAY,
            max_delay=settings.BLOCK_FETCH_MAX_DELAY,
        )

        self.reorg_handler = ReorgHandler(
            store,
            lambda block_hash: self._fetch_with_retry(self.rpc.get_block_by_hash, block_hash, self.ancestor_fetch_policy),
            max_depth=max_fork_depth,
        )
        self.error_handler = ErrorHandler()
        self.logger = structlog.get_logger()

        self.last_accepted: Optional[BlockDescriptor] = None
        self.cursor_height: Optional[int] = None
        self.fork_pending = False
        self.fatal_error: Optional[Exception] = None

        self._stop_event = threading.Event()
        self._run_lock = threading.Lock()
        self._started = False
        self._thread: Optional[threading.Thread] = None
        self._blocks_processed = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def resume(self) -> None:
        """
        Rebuild cursor state from the store.

        The most recent non-forked block becomes the last accepted block and
        scanning resumes one height above it. On an empty store the node's
        tip block is persisted as the anchor and scanning starts above it.
        """
        with self.store.session_scope() as session:
            latest = self.store.most_recent_non_forked_block(session)
            if latest is not None:
                self.last_accepted = BlockDescriptor.from_model(latest)
                self.cursor_height = self.last_accepted.height + 1
                self.logger.info(
                    "Resuming block scanner",
                    last_accepted_height=self.last_accepted.height,
                    last_accepted_hash=self.last_accepted.hash,
                    cursor_height=self.cursor_height,
                )
                return

        tip = self.rpc.get_latest_block_number()
        tip_block = self._fetch_with_retry(self.rpc.get_block_by_number, tip, self.fetch_policy)

        with self.store.session_scope() as session:
            block, inserted = self.store.insert_block_if_absent(session, tip_block)
            if not inserted and block.fork:
                self.store.reinstate_block(session, block)
            self.store.insert_transactions(session, tip_block)

        self.last_accepted = BlockDescriptor.from_full_block(tip_block)
        self.cursor_height = tip_block.number + 1
        self.logger.info(
            "First start, seeded block scanner from chain tip",
            tip_height=tip_block.number,
            tip_hash=tip_block.hash,
            cursor_height=self.cursor_height,
        )

    def start(self) -> None:
        """
        Resume cursor state and launch the scan loop in a background thread.

        Raises:
            ScannerAlreadyRunningError: If this scanner is already started
        """
        if not self._run_lock.acquire(blocking=False):
            raise ScannerAlreadyRunningError("Block scanner is already running")

        try:
            if self._thread is not None and self._thread.is_alive():
                self._thread.join()

            self._stop_event.clear()
            self.fork_pending = False
            self.fatal_error = None
            self.resume()
        except Exception:
            self._run_lock.release()
            raise

        self._started = True
        self._thread = threading.Thread(target=self._run, name="block-scanner", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """
        Release the run lock and signal the loop to exit.

        Raises:
            ScannerUsageError: If start() has not succeeded before
        """
        if not self._started:
            raise ScannerUsageError("Block scanner stop() called without a successful start()")

        self._started = False
        self._stop_event.set()
        self._run_lock.release()
        self.logger.info("Block scanner stop requested", cursor_height=self.cursor_height)

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self) -> None:
        self.logger.info("Block scanner started", cursor_height=self.cursor_height)

        while not self._stop_event.is_set():
            if self.fork_pending:
                try:
                    self.resume()
                    self.fork_pending = False
                except Exception as e:
                    self.error_handler.handle_scan_error(e, {"phase": "resume_after_fork"})
                    self._wait(self.scan_interval)
                continue

            try:
                self.scan_step()
            except ScanCancelled:
                break
            except ForkResolutionError as e:
                self.fatal_error = e
                self.logger.critical(
                    "Fork resolution failed, stopping block scanner",
                    error=str(e),
                    cursor_height=self.cursor_height,
                )
                break
            except Exception as e:
                self.error_handler.handle_scan_error(e, {"cursor_height": self.cursor_height})

            self._wait(self.scan_interval)

        self.logger.info("Finish block scanner", cursor_height=self.cursor_height, blocks_processed=self._blocks_processed)

    def _wait(self, seconds: float) -> bool:
        """Sleep unless stop is requested. Returns True if stop was requested."""
        return self._stop_event.wait(seconds)

    def _wait_for_tip(self) -> int:
        """
        Block until the node's tip reaches the cursor.

        Raises:
            RetryTimeoutError: If TIP_WAIT_TIMEOUT elapses first
            ScanCancelled: If stop is requested while waiting
        """
        tip = self.rpc.get_latest_block_number()
        if tip >= self.cursor_height:
            return tip

        self.logger.debug("Waiting for new blocks", tip_height=tip, cursor_height=self.cursor_height)
        deadline = time.monotonic() + self.tip_wait_timeout if self.tip_wait_timeout is not None else None

        while True:
            if self._wait(self.tip_poll_interval):
                raise ScanCancelled()

            try:
                tip = self.rpc.get_latest_block_number()
                if tip >= self.cursor_height:
                    return tip
            except Exception as e:
                self.logger.warning("Polling chain tip failed", error=str(e), cursor_height=self.cursor_height)

            if deadline is not None and time.monotonic() >= deadline:
                raise RetryTimeoutError(
                    f"Chain tip did not reach height {self.cursor_height} within {self.tip_wait_timeout}s"
                )

    def _fetch_with_retry(self, fetch: Callable[[Any], FullBlock], identifier: Any, policy: RetryPolicy) -> FullBlock:
        """
        Call fetch(identifier), retrying while the node reports the block as
        not found yet. Any other error propagates immediately.
        """
        attempts = 0
        while True:
            try:
                return fetch(identifier)
            except BlockNotFoundError:
                attempts += 1
                if policy.exhausted(attempts):
                    raise RetryTimeoutError(
                        f"Block {identifier} still not available after {attempts} attempts",
                        attempts=attempts,
                    )
                delay = policy.delay(attempts)
                self.logger.info(
                    "Block info empty, retrying",
                    identifier=str(identifier),
                    attempt=attempts,
                    retry_delay=delay,
                )
                if self._wait(delay):
                    raise ScanCancelled()

    def scan_step(self) -> ScanStepResult:
        """
        Fetch, check and persist the block at the cursor.

        On a fork the block insert and the fork flags are committed, the fork
        point becomes the last accepted block and fork_pending is set so the
        loop resynchronizes before scanning again. On any error the
        transaction is rolled back and cursor state is left untouched.
        """
        start_time = time.time()
        self._wait_for_tip()

        target_height = self.cursor_height
        full_block = self._fetch_with_retry(self.rpc.get_block_by_number, target_height, self.fetch_policy)

        fork_point = None
        tx_count = 0
        with self.store.session_scope() as session:
            block, _ = self.store.insert_block_if_absent(session, full_block)

            if ReorgHandler.is_fork(self.last_accepted, block.block_hash, block.parent_hash):
                fork_point = self.reorg_handler.handle_fork(session, block, self.last_accepted)
            else:
                if block.fork:
                    self.store.reinstate_block(session, block)
                tx_count = self.store.insert_transactions(session, full_block)

        processing_time = time.time() - start_time

        if fork_point is not None:
            self.last_accepted = fork_point
            self.fork_pending = True
            return ScanStepResult(
                height=full_block.number,
                block_hash=full_block.hash,
                tx_count=0,
                fork_detected=True,
                processing_time=processing_time,
                fork_point_height=fork_point.height,
            )

        self.last_accepted = BlockDescriptor.from_full_block(full_block)
        self.cursor_height = target_height + 1
        self._blocks_processed += 1

        self.logger.info(
            "Block scanned",
            height=full_block.number,
            block_hash=full_block.hash,
            tx_count=len(full_block.transactions),
            tx_inserted=tx_count,
            processing_time=round(processing_time, 3),
        )

        return ScanStepResult(
            height=full_block.number,
            block_hash=full_block.hash,
            tx_count=tx_count,
            fork_detected=False,
            processing_time=processing_time,
        )

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "cursor_height": self.cursor_height,
            "last_accepted_height": self.last_accepted.height if self.last_accepted else None,
            "last_accepted_hash": self.last_accepted.hash if self.last_accepted else None,
            "fork_pending": self.fork_pending,
            "blocks_processed": self._blocks_processed,
            "fatal_error": str(self.fatal_error) if self.fatal_error else None,
        }
