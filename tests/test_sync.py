"""
Tests for SheetVerifier.core.sync
(update submission, server reassignment, the in-flight guard and background refresh).

The remote endpoint is replaced by :class:`tests.base.StubSheetsAPI`.

Run:
    python -m unittest tests.test_sync
"""
import logging
import unittest

from SheetVerifier.core.cache import SheetCache
from SheetVerifier.core.service import UpdateResult
from SheetVerifier.core.signals import signals
from SheetVerifier.core.sync import BackgroundRefresher, UpdateReconciler, parse_numeric_draft
from SheetVerifier.log.log import get_tank_handler, setup_logging
from SheetVerifier.status import status
from tests.base import BaseTestCase, StubSheetsAPI, make_rows


class ParseNumericDraftTests(unittest.TestCase):
    def test_blank_means_absent(self):
        for value in ('', '   ', None):
            with self.subTest(value=value):
                self.assertEqual(parse_numeric_draft(value), '')

    def test_numbers(self):
        self.assertEqual(parse_numeric_draft('12'), 12)
        self.assertIsInstance(parse_numeric_draft('12.0'), int)
        self.assertEqual(parse_numeric_draft(' 12.5 '), 12.5)
        self.assertEqual(parse_numeric_draft('-3'), -3)
        self.assertEqual(parse_numeric_draft(7), 7)
        self.assertEqual(parse_numeric_draft(3.0), 3)

    def test_invalid(self):
        for value in ('abc', '1,5', 'nan', 'inf', True, float('nan')):
            with self.subTest(value=value):
                with self.assertRaises(status.ValidationException):
                    parse_numeric_draft(value)


class SyncTestBase(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.rows = make_rows(
            (5, 'H-1', False, 'B1'),
            (9, 'H-1', False, ''),
            (12, 'H-1', False, 'B3'),
            (14, 'H-2', False, 'C1'),
        )
        self.other_rows = make_rows((2, 'H-1', False, 'X1'))

        self.cache = SheetCache()
        self.cache.load(['Index', 'A', 'B'], {'Index': [], 'A': self.rows, 'B': self.other_rows})
        self.api = StubSheetsAPI({'Index': [], 'A': self.rows, 'B': self.other_rows})
        self.reconciler = UpdateReconciler(self.api, self.cache)

        self.saving = []
        self.reconciler.savingChanged.connect(self.saving.append)

    def tearDown(self) -> None:
        self.reconciler.wait()
        self.reconciler.refresher.wait()
        super().tearDown()

    def row(self, sheet: str, row_index: int):
        return next(r for r in self.cache.get_rows(sheet) if r.row_index == row_index)


class ReconcileTests(SyncTestBase):

    def test_confirmed_update_in_place(self):
        self.api.update_response = UpdateResult(updated=True)

        outcome = self.reconciler.submit('A', self.rows[0], True, '4.5', key_value='H-1')

        self.assertEqual(self.api.actions('updateRow'), [('updateRow', 'A', 5, True, 4.5)])
        self.assertTrue(outcome.success)
        self.assertFalse(outcome.was_reassigned)
        self.assertEqual(outcome.row_index, 5)
        self.assertEqual(outcome.displayed_label, 'B1')
        self.assertTrue(self.row('A', 5).is_verified)
        self.assertIs(outcome.record, self.row('A', 5))
        self.assertEqual(outcome.selection.record.row_index, 9)
        self.assertFalse(outcome.selection.all_verified)

    def test_reassignment_follows_server_row(self):
        self.api.update_response = UpdateResult(updated=True, row_index=9, batch_label='B2', was_reassigned=True)
        before = self.cache.get_rows('A')

        outcome = self.reconciler.submit('A', self.rows[0], True, '', key_value='H-1')

        self.assertTrue(outcome.was_reassigned)
        self.assertEqual(outcome.displayed_label, 'B2')
        self.assertEqual(outcome.row_index, 9)

        self.assertTrue(self.row('A', 9).is_verified)
        self.assertEqual(self.row('A', 9).batch_label, 'B2')
        # The submitted row is left as it was
        self.assertIs(self.row('A', 5), before[0])
        self.assertFalse(self.row('A', 5).is_verified)
        # Other sheets are untouched
        self.assertEqual(self.cache.get_rows('B'), tuple(self.other_rows))

    def test_reassignment_without_flag(self):
        self.api.update_response = UpdateResult(updated=True, row_index=12, batch_label='B3')
        outcome = self.reconciler.submit('A', self.rows[0], True)
        self.assertTrue(outcome.was_reassigned)
        self.assertTrue(self.row('A', 12).is_verified)

    def test_row_index_zero_is_authoritative(self):
        self.cache.set_rows('A', make_rows((0, 'H-1', False, ''), (5, 'H-1', False, 'B1')))
        self.api.update_response = UpdateResult(updated=True, row_index=0, batch_label='')

        outcome = self.reconciler.submit('A', self.row('A', 5), True)

        self.assertEqual(outcome.row_index, 0)
        self.assertTrue(outcome.was_reassigned)
        self.assertEqual(outcome.displayed_label, '')
        self.assertTrue(self.row('A', 0).is_verified)

    def test_uncached_server_row_is_left_to_refresh(self):
        self.api.update_response = UpdateResult(updated=True, row_index=40, batch_label='Z9', was_reassigned=True)
        before = self.cache.get_rows('A')

        outcome = self.reconciler.submit('A', self.rows[0], True)

        self.assertIsNone(outcome.record)
        self.assertTrue(outcome.was_reassigned)
        self.assertIs(self.cache.get_rows('A'), before)

    def test_all_verified_after_last_candidate(self):
        self.cache.set_rows('A', make_rows((3, 'H-7', True, 'L1'), (4, 'H-7', False, 'L2')))
        self.api.update_response = UpdateResult(updated=True)

        outcome = self.reconciler.submit('A', self.row('A', 4), True)

        self.assertEqual(outcome.selection.record.row_index, 4)
        self.assertTrue(outcome.selection.all_verified)

    def test_guard_released_and_signalled(self):
        self.reconciler.submit('A', self.rows[0], True)
        self.assertFalse(self.reconciler.is_saving)
        self.assertEqual(self.saving, [True, False])

    def test_outcome_reported_before_guard_released(self):
        events = []

        def on_finished(outcome):
            events.append(('finished', outcome.selection.record.row_index, self.reconciler.is_saving))

        def on_saving(value):
            events.append(('saving', value))

        self.reconciler.saveFinished.connect(on_finished)
        self.reconciler.savingChanged.connect(on_saving)

        outcome = self.reconciler.submit('A', self.rows[0], True)

        self.assertEqual(events, [('saving', True), ('finished', 9, True), ('saving', False)])
        self.assertEqual(outcome.selection.record.row_index, 9)


class ValidationTests(SyncTestBase):

    def test_verification_must_be_enabled(self):
        with self.assertRaises(status.ValidationException):
            self.reconciler.submit('A', self.rows[0], False)
        self.assertEqual(self.api.calls, [])
        self.assertFalse(self.reconciler.is_saving)
        self.assertEqual(self.saving, [])

    def test_record_must_be_selected(self):
        with self.assertRaises(status.ValidationException):
            self.reconciler.submit('A', None, True)
        with self.assertRaises(status.ValidationException):
            self.reconciler.submit('', self.rows[0], True)
        self.assertEqual(self.api.calls, [])

    def test_numeric_draft_must_be_a_number(self):
        with self.assertRaises(status.ValidationException):
            self.reconciler.submit('A', self.rows[0], True, 'twelve')
        self.assertEqual(self.api.calls, [])
        self.assertFalse(self.reconciler.is_saving)


class ExclusivityTests(SyncTestBase):

    def test_second_submit_rejected_while_first_pending(self):
        rejected = []

        def reenter():
            try:
                self.reconciler.submit('A', self.rows[1], True)
            except status.SaveInProgressException as ex:
                rejected.append(ex)

        self.api.on_update = reenter
        self.reconciler.submit('A', self.rows[0], True)

        self.assertEqual(len(rejected), 1)
        self.assertEqual(len(self.api.actions('updateRow')), 1)
        self.assertFalse(self.reconciler.is_saving)

    def test_async_second_submit_rejected(self):
        self.reconciler.submit_async('A', self.rows[0], True)
        self.assertTrue(self.reconciler.is_saving)

        with self.assertRaises(status.SaveInProgressException):
            self.reconciler.submit_async('A', self.rows[1], True)
        with self.assertRaises(status.SaveInProgressException):
            self.reconciler.submit('A', self.rows[1], True)

        self.reconciler.wait()
        self.assertFalse(self.reconciler.is_saving)
        self.assertEqual(len(self.api.actions('updateRow')), 1)


class FailureTests(SyncTestBase):

    def test_transport_failure_leaves_cache_unchanged(self):
        self.api.update_error = status.TransportException('HTTP Error: 500')
        before = self.cache.get_rows('A')

        with self.assertRaises(status.SaveFailedException) as cm:
            self.reconciler.submit('A', self.rows[0], True)

        self.assertEqual(cm.exception.message, 'HTTP Error: 500')
        self.assertIs(self.cache.get_rows('A'), before)
        self.assertFalse(self.reconciler.is_saving)
        self.assertEqual(self.saving, [True, False])
        self.assertEqual(self.api.actions('getSheetData'), [])

    def test_unconfirmed_update_is_a_failure(self):
        self.api.update_response = UpdateResult(updated=False)
        before = self.cache.get_rows('A')

        with self.assertRaises(status.SaveFailedException) as cm:
            self.reconciler.submit('A', self.rows[0], True)

        self.assertIsInstance(cm.exception.__cause__, status.UpdateRejectedException)
        self.assertIs(self.cache.get_rows('A'), before)
        self.assertFalse(self.reconciler.is_saving)

    def test_guard_released_so_retry_is_possible(self):
        self.api.update_error = status.TransportException()
        with self.assertRaises(status.SaveFailedException):
            self.reconciler.submit('A', self.rows[0], True)

        self.api.update_error = None
        self.assertTrue(self.reconciler.submit('A', self.rows[0], True).success)


class AsyncSubmitTests(SyncTestBase):

    def test_async_outcome_is_reported(self):
        finished, failed = [], []
        self.reconciler.saveFinished.connect(finished.append)
        self.reconciler.saveFailed.connect(failed.append)
        self.api.update_response = UpdateResult(updated=True, row_index=9, batch_label='B2', was_reassigned=True)

        self.reconciler.submit_async('A', self.rows[0], True, '7', key_value='H-1')
        self.reconciler.wait()

        self.assertEqual(failed, [])
        self.assertEqual(len(finished), 1)
        self.assertTrue(finished[0].was_reassigned)
        self.assertEqual(finished[0].displayed_label, 'B2')
        self.assertTrue(self.row('A', 9).is_verified)
        self.assertEqual(self.api.actions('updateRow'), [('updateRow', 'A', 5, True, 7)])
        self.assertFalse(self.reconciler.is_saving)

    def test_async_failure_is_reported(self):
        finished, failed = [], []
        self.reconciler.saveFinished.connect(finished.append)
        self.reconciler.saveFailed.connect(failed.append)
        self.api.update_error = status.ApplicationException('Sheet not found')
        before = self.cache.get_rows('A')

        self.reconciler.submit_async('A', self.rows[0], True)
        self.reconciler.wait()

        self.assertEqual(finished, [])
        self.assertEqual(failed, ['Sheet not found'])
        self.assertIs(self.cache.get_rows('A'), before)
        self.assertFalse(self.reconciler.is_saving)

    def test_async_outcome_reported_before_guard_released(self):
        events = []

        def on_finished(outcome):
            events.append(('finished', self.reconciler.is_saving))

        def on_saving(value):
            events.append(('saving', value))

        self.reconciler.saveFinished.connect(on_finished)
        self.reconciler.savingChanged.connect(on_saving)

        self.reconciler.submit_async('A', self.rows[0], True)
        self.reconciler.wait()

        self.assertEqual(events, [('saving', True), ('finished', True), ('saving', False)])

    def test_async_workers_are_owned_and_replaced(self):
        self.reconciler.submit_async('A', self.rows[0], True)
        self.reconciler.wait()
        first = self.reconciler._worker
        self.assertIs(first.parent(), self.reconciler)

        self.reconciler.submit_async('A', self.rows[1], True)
        self.reconciler.wait()

        self.assertIsNot(self.reconciler._worker, first)
        self.assertIs(self.reconciler._worker.parent(), self.reconciler)
        self.assertEqual(len(self.api.actions('updateRow')), 2)

    def test_async_validation_is_synchronous(self):
        with self.assertRaises(status.ValidationException):
            self.reconciler.submit_async('A', self.rows[0], False)
        self.assertFalse(self.reconciler.is_saving)


class BackgroundRefreshTests(SyncTestBase):

    def test_refresh_after_save_replaces_sheet_rows(self):
        server_rows = make_rows(
            (5, 'H-1', True, 'B1'),
            (9, 'H-1', True, 'B2'),
            (12, 'H-1', False, 'B3'),
            (14, 'H-2', False, 'C1'),
        )
        self.api.sheets_data['A'] = server_rows
        self.api.update_response = UpdateResult(updated=True, row_index=9, batch_label='B2', was_reassigned=True)
        other_before = self.cache.get_rows('B')

        self.reconciler.submit('A', self.rows[0], True)
        self.reconciler.refresher.wait()

        self.assertEqual(self.api.actions('getSheetData'), [('getSheetData', 'A')])
        self.assertEqual(self.cache.get_rows('A'), tuple(server_rows))
        self.assertIs(self.cache.get_rows('B'), other_before)
        self.assertEqual(self.reconciler.refresher.pending(), 0)

    def test_refresh_failure_is_ignored(self):
        refresher = BackgroundRefresher(self.api, self.cache)
        failed, refreshed = [], []
        refresher.refreshFailed.connect(lambda sheet, msg: failed.append(sheet))
        refresher.refreshed.connect(refreshed.append)
        self.api.sheet_data_error = lambda: status.TransportException('offline')
        before = self.cache.get_rows('A')

        refresher.refresh('A')
        refresher.wait()

        self.assertEqual(failed, ['A'])
        self.assertEqual(refreshed, [])
        self.assertIs(self.cache.get_rows('A'), before)

    def test_refresh_failure_is_logged_as_warning_only(self):
        setup_logging(enable_stream_handler=False, enable_qt_handler=False, log_level=logging.DEBUG)
        tank = get_tank_handler()
        errors, show_logs = [], []

        def on_error(message):
            errors.append(message)

        def on_show_logs():
            show_logs.append(True)

        signals.error.connect(on_error)
        signals.showLogs.connect(on_show_logs)
        self.addCleanup(signals.error.disconnect, on_error)
        self.addCleanup(signals.showLogs.disconnect, on_show_logs)

        refresher = BackgroundRefresher(self.api, self.cache)
        self.api.sheet_data_error = lambda: status.ProtocolException('bad rows')

        refresher.refresh('A')
        refresher.wait()

        self.assertEqual(errors, [])
        self.assertEqual(show_logs, [])
        self.assertEqual(tank.get_logs(logging.ERROR), [])
        self.assertTrue(tank.get_logs(logging.WARNING, status=status.Status.ProtocolInvalid))

    def test_invalid_refreshed_rows_are_logged_as_warning_only(self):
        errors = []

        def on_error(message):
            errors.append(message)

        signals.error.connect(on_error)
        self.addCleanup(signals.error.disconnect, on_error)

        refresher = BackgroundRefresher(self.api, self.cache)
        failed = []
        refresher.refreshFailed.connect(lambda sheet, msg: failed.append(sheet))
        # Duplicate row indexes violate the cache invariants
        self.api.sheets_data['A'] = make_rows((5, 'H-1'), (5, 'H-1'))
        before = self.cache.get_rows('A')

        refresher.refresh('A')
        refresher.wait()

        self.assertEqual(failed, ['A'])
        self.assertEqual(errors, [])
        self.assertIs(self.cache.get_rows('A'), before)

    def test_finished_workers_are_released(self):
        refresher = BackgroundRefresher(self.api, self.cache)

        refresher.refresh('A')
        refresher.refresh('B')
        self.assertTrue(all(w.parent() is refresher for w in refresher._workers))
        refresher.wait()
        refresher.refresh('B')
        refresher.wait()

        self.assertLessEqual(len(refresher._workers), 1)
        self.assertEqual(refresher.pending(), 0)

    def test_refresh_signals_success(self):
        refresher = BackgroundRefresher(self.api, self.cache)
        refreshed = []
        refresher.refreshed.connect(refreshed.append)

        refresher.refresh('B')
        refresher.wait()

        self.assertEqual(refreshed, ['B'])
        self.assertEqual(self.cache.get_rows('B'), tuple(self.other_rows))
