"""
Tests for BlockScanner.

Tests cover:
- First start and resume from the store
- Sequential scanning and idempotent re-scans
- Reorg detection and recovery
- Waiting for the chain tip and "block not found" retries
- Start/stop lifecycle and fatal errors
"""

from unittest.mock import Mock, patch

import pytest

from ethrelay.models.block import Block
from ethrelay.models.transaction import Transaction
from ethrelay.services.block_scanner import BlockScanner, ScanCancelled
from ethrelay.services.error_handler import RetryPolicy
from ethrelay.utils.exceptions import (
    ForkResolutionError,
    RPCError,
    RetryTimeoutError,
    ScannerAlreadyRunningError,
    ScannerUsageError,
)
from tests.chain_fixtures import block_hash, make_block

FAST_POLICY = RetryPolicy(max_attempts=None, base_delay=0.001, max_delay=0.001, jitter=0.0)


def build_scanner(chain_store, node, **kwargs):
    kwargs.setdefault("scan_interval", 0.01)
    kwargs.setdefault("tip_poll_interval", 0.01)
    kwargs.setdefault("tip_wait_timeout", None)
    kwargs.setdefault("fetch_policy", FAST_POLICY)
    kwargs.setdefault("ancestor_fetch_policy", RetryPolicy(max_attempts=2, base_delay=0.001, max_delay=0.001))
    return BlockScanner(chain_store, node, **kwargs)


def persist(chain_store, full_blocks, fork=False):
    with chain_store.session_scope() as session:
        for full_block in full_blocks:
            block, _ = chain_store.insert_block_if_absent(session, full_block)
            block.fork = fork


def scan_to_tip(scanner, node):
    while scanner.cursor_height <= node.tip:
        if scanner.scan_step().fork_detected:
            scanner.resume()


class TestResume:
    def test_first_start_seeds_from_tip(self, chain_store, db_session, fake_node):
        fake_node.add_chain(98, 100, tx_count=2)
        scanner = build_scanner(chain_store, fake_node)

        scanner.resume()

        assert scanner.cursor_height == 101
        assert scanner.last_accepted.height == 100
        assert scanner.last_accepted.hash == block_hash("a", 100)

        blocks = db_session.query(Block).all()
        assert [(b.block_number, b.fork) for b in blocks] == [(100, False)]
        assert db_session.query(Transaction).count() == 2

    def test_resume_from_store_without_node_history(self, chain_store, fake_node):
        persist(chain_store, [make_block(n) for n in range(48, 51)])
        scanner = build_scanner(chain_store, fake_node)

        scanner.resume()

        assert scanner.cursor_height == 51
        assert scanner.last_accepted.hash == block_hash("a", 50)
        assert fake_node.calls == []

    def test_resume_skips_forked_blocks(self, chain_store, fake_node):
        persist(chain_store, [make_block(n) for n in range(48, 51)])
        persist(chain_store, [make_block(51, label="b", parent=block_hash("a", 50))], fork=True)
        scanner = build_scanner(chain_store, fake_node)

        scanner.resume()

        assert scanner.cursor_height == 51


class TestScanStep:
    def test_scans_sequentially(self, chain_store, db_session, fake_node):
        fake_node.add_chain(100, 103, tx_count=1)
        persist(chain_store, [make_block(100)])
        scanner = build_scanner(chain_store, fake_node)
        scanner.resume()

        results = [scanner.scan_step() for _ in range(3)]

        assert [r.height for r in results] == [101, 102, 103]
        assert not any(r.fork_detected for r in results)
        assert scanner.cursor_height == 104
        assert scanner.last_accepted.hash == block_hash("a", 103)
        assert db_session.query(Transaction).count() == 3

    def test_rescan_of_accepted_height_is_idempotent(self, chain_store, db_session, fake_node):
        fake_node.add_chain(100, 101, tx_count=2)
        persist(chain_store, [make_block(100)])
        scanner = build_scanner(chain_store, fake_node)
        scanner.resume()
        scanner.scan_step()

        scanner.cursor_height = 101
        result = scanner.scan_step()

        assert result.fork_detected is False
        assert result.tx_count == 0
        assert db_session.query(Block).count() == 2
        assert db_session.query(Transaction).count() == 2
        assert scanner.cursor_height == 102

    def test_reorg_flags_old_branch_and_recovers(self, chain_store, db_session, fake_node):
        fake_node.add_chain(100, 103, tx_count=1)
        persist(chain_store, [make_block(100)])
        scanner = build_scanner(chain_store, fake_node)
        scanner.resume()
        for _ in range(3):
            scanner.scan_step()

        fake_node.add_chain(101, 105, label="b", parent=block_hash("a", 100), tx_count=1)

        result = scanner.scan_step()

        assert result.fork_detected is True
        assert result.height == 104
        assert result.fork_point_height == 100
        assert scanner.fork_pending is True
        assert scanner.last_accepted.hash == block_hash("a", 100)

        forked = {b.block_hash for b in db_session.query(Block).filter(Block.fork.is_(True))}
        assert forked == {block_hash("a", n) for n in range(101, 104)} | {block_hash("b", 104)}

        scanner.resume()
        assert scanner.cursor_height == 101
        for _ in range(5):
            assert scanner.scan_step().fork_detected is False

        db_session.expire_all()
        canonical = [b.block_hash for b in db_session.query(Block).filter(Block.fork.is_(False)).order_by(Block.block_number)]
        assert canonical == [block_hash("a", 100)] + [block_hash("b", n) for n in range(101, 106)]
        assert scanner.cursor_height == 106

    def test_reorg_back_to_abandoned_branch_restores_chain(self, chain_store, db_session, fake_node):
        fake_node.add_chain(100, 103, tx_count=1)
        persist(chain_store, [make_block(100)])
        scanner = build_scanner(chain_store, fake_node)
        scanner.resume()
        scan_to_tip(scanner, fake_node)

        fake_node.add_chain(101, 104, label="b", parent=block_hash("a", 100))
        scan_to_tip(scanner, fake_node)
        assert scanner.last_accepted.hash == block_hash("b", 104)

        fake_node.add_chain(101, 106)
        scan_to_tip(scanner, fake_node)

        db_session.expire_all()
        canonical = db_session.query(Block).filter(Block.fork.is_(False)).order_by(Block.block_number).all()
        assert [b.block_hash for b in canonical] == [block_hash("a", n) for n in range(100, 107)]
        for parent, child in zip(canonical, canonical[1:]):
            assert child.parent_hash == parent.block_hash

        forked = {b.block_hash for b in db_session.query(Block).filter(Block.fork.is_(True))}
        assert forked == {block_hash("b", n) for n in range(101, 105)}
        assert scanner.last_accepted.hash == block_hash("a", 106)

    def test_fork_resolution_failure_rolls_back(self, chain_store, db_session, fake_node):
        fake_node.add_chain(100, 101)
        persist(chain_store, [make_block(100)])
        scanner = build_scanner(chain_store, fake_node)
        scanner.resume()
        scanner.scan_step()

        # parent of the new block is unknown everywhere
        fake_node.add(make_block(102, label="b", parent=block_hash("c", 101)))

        with pytest.raises(ForkResolutionError):
            scanner.scan_step()

        assert db_session.query(Block).filter_by(block_hash=block_hash("b", 102)).first() is None
        assert scanner.cursor_height == 102
        assert scanner.last_accepted.hash == block_hash("a", 101)

    def test_retries_block_not_found(self, chain_store, fake_node):
        fake_node.add_chain(100, 101)
        persist(chain_store, [make_block(100)])
        fake_node.missing[101] = 2
        scanner = build_scanner(chain_store, fake_node)
        scanner.resume()

        result = scanner.scan_step()

        assert result.height == 101
        assert fake_node.calls.count(("get_block_by_number", 101)) == 3

    def test_bounded_retry_times_out(self, chain_store, db_session, fake_node):
        fake_node.add_chain(100, 101)
        persist(chain_store, [make_block(100)])
        fake_node.missing[101] = 5
        scanner = build_scanner(
            chain_store, fake_node, fetch_policy=RetryPolicy(max_attempts=2, base_delay=0.001, max_delay=0.001)
        )
        scanner.resume()

        with pytest.raises(RetryTimeoutError):
            scanner.scan_step()

        assert scanner.cursor_height == 101
        assert db_session.query(Block).count() == 1

    def test_waits_for_tip_before_fetching(self, chain_store, fake_node):
        fake_node.add_chain(100, 100)
        persist(chain_store, [make_block(100)])
        scanner = build_scanner(chain_store, fake_node)
        scanner.resume()

        waits = []

        def produce_block(seconds):
            waits.append(seconds)
            if len(waits) == 2:
                fake_node.add(make_block(101))
            return False

        scanner._wait = produce_block
        result = scanner.scan_step()

        assert result.height == 101
        assert waits == [0.01, 0.01]
        fetched = [call[1] for call in fake_node.calls if call[0] == "get_block_by_number"]
        assert fetched == [101]

    def test_tip_wait_timeout(self, chain_store, fake_node):
        fake_node.add_chain(100, 100)
        persist(chain_store, [make_block(100)])
        scanner = build_scanner(chain_store, fake_node, tip_wait_timeout=0.0)
        scanner.resume()
        scanner._wait = Mock(return_value=False)

        with pytest.raises(RetryTimeoutError):
            scanner.scan_step()

    def test_stop_during_tip_wait_cancels_step(self, chain_store, fake_node):
        fake_node.add_chain(100, 100)
        persist(chain_store, [make_block(100)])
        scanner = build_scanner(chain_store, fake_node)
        scanner.resume()
        scanner._wait = Mock(return_value=True)

        with pytest.raises(ScanCancelled):
            scanner.scan_step()


class TestRunLoop:
    def test_errors_are_logged_and_retried(self, chain_store, fake_node):
        scanner = build_scanner(chain_store, fake_node)
        scanner.scan_step = Mock(side_effect=[RPCError("boom"), ScanCancelled()])
        scanner._wait = Mock(return_value=False)

        with patch.object(scanner.error_handler, "handle_scan_error") as mock_handle:
            scanner._run()

        assert scanner.scan_step.call_count == 2
        mock_handle.assert_called_once()
        scanner._wait.assert_called_once_with(scanner.scan_interval)
        assert scanner.fatal_error is None

    def test_fork_resolution_error_is_fatal(self, chain_store, fake_node):
        scanner = build_scanner(chain_store, fake_node)
        error = ForkResolutionError("no ancestor")
        scanner.scan_step = Mock(side_effect=error)
        scanner._wait = Mock(return_value=False)

        scanner._run()

        assert scanner.fatal_error is error
        assert scanner.scan_step.call_count == 1

    def test_fork_pending_resumes_before_next_step(self, chain_store, fake_node):
        scanner = build_scanner(chain_store, fake_node)
        scanner.fork_pending = True
        scanner.resume = Mock()
        scanner.scan_step = Mock(side_effect=ScanCancelled())

        scanner._run()

        scanner.resume.assert_called_once()
        assert scanner.fork_pending is False


class TestLifecycle:
    def test_stop_without_start(self, chain_store, fake_node):
        scanner = build_scanner(chain_store, fake_node)
        with pytest.raises(ScannerUsageError):
            scanner.stop()

    def test_double_start_rejected(self, chain_store, fake_node):
        fake_node.add_chain(100, 100)
        scanner = build_scanner(chain_store, fake_node)

        scanner.start()
        try:
            with pytest.raises(ScannerAlreadyRunningError):
                scanner.start()
        finally:
            scanner.stop()
            scanner.join(timeout=5)

        assert scanner.is_running is False

    def test_restart_after_stop(self, chain_store, fake_node):
        fake_node.add_chain(100, 100)
        scanner = build_scanner(chain_store, fake_node)

        scanner.start()
        scanner.stop()
        scanner.join(timeout=5)

        scanner.start()
        assert scanner.cursor_height == 101
        scanner.stop()
        scanner.join(timeout=5)
        assert scanner.is_running is False

    def test_failed_resume_releases_lock(self, chain_store):
        node = Mock()
        node.get_latest_block_number.side_effect = RPCError("node down")
        scanner = build_scanner(chain_store, node)

        with pytest.raises(RPCError):
            scanner.start()
        with pytest.raises(RPCError):
            scanner.start()
        with pytest.raises(ScannerUsageError):
            scanner.stop()

    def test_fatal_error_ends_thread(self, chain_store, fake_node):
        fake_node.add_chain(100, 100)
        persist(chain_store, [make_block(100)])
        fake_node.add(make_block(101, label="b", parent=block_hash("c", 100)))
        scanner = build_scanner(chain_store, fake_node)

        scanner.start()
        scanner.join(timeout=5)

        assert scanner.is_running is False
        assert isinstance(scanner.fatal_error, ForkResolutionError)
        assert scanner.get_status()["fatal_error"] is not None
