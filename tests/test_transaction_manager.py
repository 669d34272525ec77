'''
Tests for TransactionManager.
'''
import io
import unittest
from replsim import TransactionManager, parse_commands, request
from replsim.config import standard_layout, build_sites
from replsim.request import Request, RequestType
from replsim.util import TransactionStatus

COMMITTED, ABORTED = TransactionManager.COMMITTED, TransactionManager.ABORTED
RUNNING = TransactionStatus.RUNNING

class TransactionManagerTest(unittest.TestCase):

	def setUp(self):
		''' Standard layout of 10 sites and 20 variables. '''

		sites, resources = build_sites(standard_layout())
		self._out = io.StringIO()
		self._tm = TransactionManager(sites, resources, out=self._out)

	def _send(self, line):
		''' Send one tick worth of commands. '''
		self._tm.send_requests(parse_commands(line) or [])

	def _status(self, txid):
		return self._tm.transaction(txid).status

	@property
	def _trace(self):
		return self._out.getvalue()

	def test_younger_dies(self):
		''' A younger reader conflicting with an older writer aborts. '''

		self._send('begin(T1); begin(T2)')
		self._send('W(T1, x1, 101)')
		self._send('R(T2, x1)')

		self.assertIs(ABORTED, self._status('T2'))
		self.assertIn('killing by wait-die', self._trace)
		self.assertEqual((), self._tm.waiting_requests())

		self._send('end(T1)')
		self.assertEqual((('T2', 3, ABORTED), ('T1', 4, COMMITTED)),
				self._tm.get_commit_abort_log())

	def test_older_waits(self):
		''' An older reader waits for a younger writer and reads its value. '''

		self._send('begin(T1); begin(T2)')
		self._send('W(T2, x1, 5)')
		self._send('R(T1, x1)')

		self.assertIs(RUNNING, self._status('T1'))
		self.assertEqual((Request(RequestType.READ, 'x1', 'T1'),),
				self._tm.waiting_requests())
		self.assertIn('blocked by T2 reading x1', self._trace)

		self._send('end(T2)')
		self.assertEqual(1, len(self._tm.waiting_requests()))

		self._send('')
		self.assertEqual((), self._tm.waiting_requests())
		self.assertIn('read x1: 5 from site 2', self._trace)
		self.assertEqual(set(('T1',)), set(self._tm.visitors(2)))

	def test_end_waits_for_own_requests(self):
		''' End is held back until the transaction's queued work drains. '''

		self._send('begin(T1); begin(T2)')
		self._send('W(T2, x2, 1)')
		self._send('W(T1, x2, 2); end(T1)')

		self.assertEqual(2, len(self._tm.waiting_requests()))
		self.assertIs(RUNNING, self._status('T1'))

		self._send('end(T2)')
		self._send('')

		self.assertIs(COMMITTED, self._status('T1'))
		self.assertIs(COMMITTED, self._status('T2'))
		self.assertEqual((), self._tm.waiting_requests())

		self._send('dump(x2)')
		self.assertIn('site 10 - x2: 2', self._trace)

	def test_cascading_drain(self):
		''' A commit during a retry pass wakes earlier waiters in the same tick. '''

		self._send('begin(T1); begin(T2); begin(T3)')
		self._send('W(T3, x6, 66); W(T2, x4, 44)')
		self._send('R(T1, x4)')
		self._send('W(T2, x6, 60); end(T2)')
		self.assertEqual(3, len(self._tm.waiting_requests()))

		self._send('end(T3)')
		self.assertEqual(3, len(self._tm.waiting_requests()))

		self._send('')
		self.assertEqual((), self._tm.waiting_requests())
		self.assertEqual((('T3', 5, COMMITTED), ('T2', 6, COMMITTED)),
				self._tm.get_commit_abort_log())
		self.assertIn('read x4: 44 from site 1', self._trace)

	def test_drain_without_progress(self):
		''' Retrying with nothing released leaves the queue unchanged. '''

		self._send('begin(T1); begin(T2)')
		self._send('W(T2, x2, 1)')
		self._send('R(T1, x2); W(T1, x4, 3); R(T1, x4)')

		waiting = self._tm.waiting_requests()
		self.assertEqual(1, len(waiting))

		self._send('')
		self._send('')
		self.assertEqual(waiting, self._tm.waiting_requests())

	def test_waiting_list_gate(self):
		''' A write behind a queued read of the same resource is queued. '''

		self._send('begin(T1); begin(T2); begin(T3)')
		self._send('W(T2, x2, 1)')
		self._send('R(T1, x2)')
		self._send('W(T3, x2, 9)')

		self.assertIs(RUNNING, self._status('T3'))
		self.assertEqual(
				(Request(RequestType.READ, 'x2', 'T1'),
					Request(RequestType.WRITE, 'x2', 'T3', value=9)),
				self._tm.waiting_requests())
		self.assertIn('conflict with waiting request R(T1, x2)', self._trace)

	def test_fail_aborts_visitors(self):
		''' Failing a site aborts its visitors and only them. '''

		self._send('begin(T1); begin(T2)')
		self._send('R(T1, x3); R(T2, x1)')
		self.assertEqual(('T1',), self._tm.visitors(4))

		self._send('fail(4)')
		self.assertIs(ABORTED, self._status('T1'))
		self.assertIs(RUNNING, self._status('T2'))
		self.assertEqual((), self._tm.visitors(4))

		self._send('R(T1, x2)')
		self.assertIn('error: transaction [T1] has been aborted', self._trace)
		self.assertEqual((), self._tm.waiting_requests())

	def test_fail_discards_writes(self):
		''' Writes buffered before a failure are not revived on recovery. '''

		self._send('begin(T1)')
		self._send('W(T1, x2, 5)')
		self._send('fail(1)')
		self._send('recover(1)')
		self._send('dump(x2)')

		self.assertIs(ABORTED, self._status('T1'))
		self.assertIn('site 1 - x2: 20', self._trace)
		self.assertIn('site 2 - x2: 20', self._trace)

	def test_recovering_copy_skipped(self):
		''' A replicated copy is readable again only after a committed write. '''

		self._send('fail(1)')
		self._send('recover(1)')
		self._send('begin(T1)')
		self._send('R(T1, x2); end(T1)')
		self.assertIn('read x2: 20 from site 2', self._trace)

		self._send('begin(T2)')
		self._send('W(T2, x2, 9); end(T2)')
		self._send('begin(T3)')
		self._send('R(T3, x2)')
		self.assertIn('read x2: 9 from site 1', self._trace)

	def test_owned_copy_after_recovery(self):
		''' An unreplicated resource is readable right after recovery. '''

		self._send('fail(2)')
		self._send('begin(T1)')
		self._send('R(T1, x1)')
		self.assertIn('waiting to read x1; no available sites', self._trace)
		self.assertEqual(1, len(self._tm.waiting_requests()))

		self._send('recover(2)')
		self.assertEqual(1, len(self._tm.waiting_requests()))

		self._send('')
		self.assertEqual((), self._tm.waiting_requests())
		self.assertIn('read x1: 10 from site 2', self._trace)

	def test_write_skips_down_sites(self):
		''' Writes go to every site that is up. '''

		self._send('fail(3)')
		self._send('begin(T1)')
		self._send('W(T1, x2, 7); end(T1)')
		self._send('recover(3)')
		self._send('dump(x2)')

		self.assertEqual((), self._tm.visitors(3))
		self.assertIn('site 3 - x2: 20', self._trace)
		self.assertIn('site 4 - x2: 7', self._trace)

	def test_write_waits_with_no_site(self):
		''' A write to a resource with no site up waits. '''

		self._send('fail(2)')
		self._send('begin(T1)')
		self._send('W(T1, x1, 7)')
		self.assertIn('waiting to write x1; no available sites', self._trace)

		self._send('recover(2)')
		self._send('end(T1)')
		self.assertIs(COMMITTED, self._status('T1'))
		self._send('dump(x1)')
		self.assertIn('site 2 - x1: 7', self._trace)

	def test_write_dies_on_single_read_lock(self):
		''' A read lock at one replica kills a younger writer everywhere. '''

		self._send('begin(T1); begin(T2)')
		self._send('R(T1, x2)')
		self._send('W(T2, x2, 5)')

		self.assertIs(ABORTED, self._status('T2'))
		self.assertIn('killing by wait-die on x2', self._trace)
		self.assertEqual(frozenset(), self._tm.transaction('T2').visited)
		for site_id in range(2, 11):
			site = self._tm.topology.site(site_id)
			self.assertEqual(set(),
					site.check_conflict(request.write('T3', 'x2', 1)))
		self.assertEqual((), self._tm.waiting_requests())

		self._send('end(T1)')
		self._send('dump(x2)')
		lines = self._trace.splitlines()
		for site_id in (1, 2, 10):
			self.assertIn('site {} - x2: 20'.format(site_id), lines)

	def test_write_waits_between_blockers(self):
		''' A writer older than one reader and younger than another waits. '''

		self._send('begin(T1); begin(T2); begin(T3)')
		self._send('R(T1, x2); R(T3, x2)')
		self._send('W(T2, x2, 5)')

		self.assertIs(RUNNING, self._status('T2'))
		self.assertEqual((request.write('T2', 'x2', 5),),
				self._tm.waiting_requests())
		self.assertIn('blocked by T1, T3 writing x2', self._trace)

	def test_read_only_snapshot(self):
		''' Read-only transactions read their snapshot and never wait. '''

		self._send('begin(T1)')
		self._send('W(T1, x2, 5)')
		self._send('beginRO(T2)')
		self._send('R(T2, x2)')
		self._send('end(T1)')
		self._send('R(T2, x4)')
		self._send('begin(T3); R(T3, x2)')

		self.assertIn('read x2: 20 from snapshot at site 1', self._trace)
		self.assertIn('read x2: 5 from site 1', self._trace)
		self.assertEqual((), self._tm.waiting_requests())
		self.assertEqual(frozenset(), self._tm.transaction('T2').visited)

		self._send('end(T2)')
		self.assertIs(COMMITTED, self._status('T2'))

	def test_read_only_survives_failure(self):
		''' Failing a snapshot site does not abort a read-only transaction. '''

		self._send('beginRO(T1)')
		self._send('fail(1)')
		self._send('R(T1, x2)')

		self.assertIs(RUNNING, self._status('T1'))
		self.assertIn('read x2: 20 from snapshot at site 2', self._trace)

	def test_read_only_confined_to_snapshot_sites(self):
		''' Sites that were down at begin are never read by the transaction. '''

		self._send('fail(2)')
		self._send('beginRO(T1)')
		self._send('recover(2)')
		self._send('R(T1, x1)')
		self._send('')

		self.assertNotIn(2, self._tm.transaction('T1').snapshot_sites)
		self.assertEqual((Request(RequestType.READ, 'x1', 'T1'),),
				self._tm.waiting_requests())

	def test_read_only_skips_copy_recovering_at_begin(self):
		''' A copy that was stale at begin is never read from the snapshot. '''

		self._send('fail(2)')
		self._send('begin(T1)')
		self._send('W(T1, x2, 22); end(T1)')
		self._send('recover(2)')
		self._send('beginRO(T2)')
		self._send('fail(1); fail(3); fail(4); fail(5); fail(6); fail(7); '
				'fail(8); fail(9); fail(10)')
		self._send('begin(T3)')
		self._send('W(T3, x2, 33); end(T3)')
		self._send('R(T2, x2)')

		self.assertIs(COMMITTED, self._status('T3'))
		self.assertNotIn('read x2: 20 from snapshot', self._trace)
		self.assertIn('waiting to read x2; no snapshot site available',
				self._trace)
		self.assertEqual((Request(RequestType.READ, 'x2', 'T2'),),
				self._tm.waiting_requests())
		self.assertFalse(self._tm.topology.site(2).has_snapshot('T2', 'x2'))
		self.assertTrue(self._tm.topology.site(2).has_snapshot('T2', 'x1'))

	def test_recover_drops_finished_snapshots(self):
		''' Snapshots left at a down site are dropped when it recovers. '''

		self._send('beginRO(T1); beginRO(T2)')
		self._send('fail(3)')
		self._send('end(T1)')
		self._send('recover(3)')

		site = self._tm.topology.site(3)
		self.assertFalse(site.has_snapshot('T1', 'x2'))
		self.assertTrue(site.has_snapshot('T2', 'x2'))
		self.assertIn('site 3 is up; dropped snapshots of T1', self._trace)
		self.assertFalse(self._tm.topology.site(1).has_snapshot('T1', 'x2'))

	def test_read_only_write_rejected(self):
		''' Read-only transactions cannot write. '''

		self._send('beginRO(T1)')
		self._send('W(T1, x2, 5)')
		self.assertIn('error: read-only transaction [T1] cannot write [x2]',
				self._trace)
		self.assertEqual((), self._tm.visitors(1))

	def test_abort_releases_locks(self):
		''' An aborted transaction frees its locks for others. '''

		self._send('begin(T1); begin(T2)')
		self._send('W(T1, x2, 5)')
		self._send('abort(T1)')
		self._send('R(T2, x2)')

		self.assertIs(ABORTED, self._status('T1'))
		self.assertIn('read x2: 20 from site 1', self._trace)

	def test_invalid_requests(self):
		''' Invalid requests are reported and never queued. '''

		self._send('begin(T1)')
		self._send('R(T1, y9)')
		self._send('R(T5, x2)')
		self._send('begin(T1)')
		self._send('fail(11)')
		self._send('dump(y9)')

		trace = self._trace
		self.assertIn('error: no site holds the resource [y9]', trace)
		self.assertIn('error: transaction [T5] has not begun', trace)
		self.assertIn('error: transaction [T1] already exists', trace)
		self.assertIn('error: site [11] does not exist', trace)
		self.assertEqual((), self._tm.waiting_requests())

	def test_fail_recover_twice(self):
		''' Failing a down site warns; recovering a running site errors. '''

		self._send('recover(1)')
		self._send('fail(1)')
		self._send('fail(1)')

		self.assertIn('error: site 1 is running; cannot recover', self._trace)
		self.assertIn('warning: site 1 is already down', self._trace)

	def test_dump(self):
		''' Dump all sites, one site or one resource. '''

		self._send('fail(3)')
		self._send('dump()')
		self._send('dump(3)')
		self._send('dump(x1)')

		lines = self._trace.splitlines()
		self.assertEqual(2, lines.count('site 3 - down'))
		self.assertIn('site 2 - x1: 10', lines)
		self.assertIn(
				'site 1 - x2: 20, x4: 40, x6: 60, x8: 80, x10: 100, '
				'x12: 120, x14: 140, x16: 160, x18: 180, x20: 200', lines)

	def test_site_requests_rejected(self):
		''' Requests meant for sites are a programming error. '''

		self._send('begin(T1)')
		self.assertRaises(ValueError, self._tm.send_requests,
				[Request(RequestType.COMMIT, transaction='T1')])
		self.assertRaises(ValueError, self._tm.send_requests, [('R', 'T1')])


if __name__ == '__main__':
	unittest.main()
