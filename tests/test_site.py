'''
Tests for Site.
'''
import unittest
from replsim import Site, request
from replsim.request import Request, RequestType
from replsim.util import ExecutionError

class SiteTest(unittest.TestCase):

	def setUp(self):
		''' Site holding a replicated x2 and an owned x1. '''
		self._site = Site(2, {'x1': 10, 'x2': 20}, owned_resources=('x1',))

	def _commit(self, txid):
		return self._site.execute(Request(RequestType.COMMIT, transaction=txid))

	def test_read_write_commit(self):
		''' Buffered writes are visible to the writer and committed on end. '''

		site = self._site
		self.assertEqual('x2: 20', site.execute(request.read('T1', 'x2')))
		self.assertEqual(set(), site.check_conflict(request.write('T1', 'x2', 5)))
		site.execute(request.write('T1', 'x2', 5))

		# Own write is visible; committed data is unchanged.
		self.assertEqual('x2: 5', site.execute(request.read('T1', 'x2')))
		self.assertEqual('site 2 - x2: 20', site.execute(request.dump('x2')))

		self.assertEqual(set(('T1',)),
				site.check_conflict(request.read('T2', 'x2')))

		self._commit('T1')
		self.assertEqual('site 2 - x1: 10, x2: 5', site.execute(request.dump()))
		self.assertEqual(set(), site.check_conflict(request.read('T2', 'x2')))

	def test_abort_discards_writes(self):
		''' Aborting leaves committed data untouched and frees locks. '''

		site = self._site
		site.execute(request.write('T1', 'x2', 5))
		site.execute(Request(RequestType.ABORT, transaction='T1'))

		self.assertEqual('x2: 20', site.execute(request.read('T2', 'x2')))
		self.assertEqual(set(), site.check_conflict(request.write('T2', 'x2', 1)))

	def test_conflicting_execute_raises(self):
		''' Executing a conflicting request is an error. '''

		site = self._site
		site.execute(request.read('T1', 'x2'))
		self.assertRaises(ExecutionError,
				site.execute, request.write('T2', 'x2', 1))

	def test_fail_recover(self):
		''' Failure erases locks; replicated copies recover on commit. '''

		site = self._site
		site.execute(request.write('T1', 'x2', 5))
		site.fail()

		self.assertFalse(site.is_running())
		self.assertRaises(ExecutionError,
				site.execute, request.read('T2', 'x2'))
		self.assertRaises(ExecutionError,
				site.check_conflict, request.read('T2', 'x2'))
		self.assertRaises(ExecutionError, site.create_snapshot, 'T3')

		site.recover()
		self.assertTrue(site.is_running())
		self.assertRaises(ExecutionError, site.recover)

		# Owned resources are readable at once; replicated ones are not.
		self.assertFalse(site.is_recovering('x1'))
		self.assertTrue(site.is_recovering('x2'))
		self.assertEqual('x1: 10', site.execute(request.read('T2', 'x1')))
		self.assertRaises(ExecutionError,
				site.execute, request.read('T2', 'x2'))

		# The buffered write before the failure is gone.
		self.assertEqual('site 2 - x2: 20', site.execute(request.dump('x2')))
		self.assertEqual(set(), site.check_conflict(request.write('T2', 'x2', 7)))

		# A write lock on a recovering copy is visible to conflict checks.
		site.execute(request.write('T2', 'x2', 7))
		self.assertFalse(site.is_recovering('x2'))
		self.assertEqual(set(('T2',)),
				site.check_conflict(request.write('T3', 'x2', 8)))

		self._commit('T2')
		self.assertFalse(site.is_recovering('x2'))
		self.assertEqual('x2: 7', site.execute(request.read('T3', 'x2')))

	def test_snapshot(self):
		''' Read-only reads see the data as of the snapshot. '''

		site = self._site
		site.execute(Request(RequestType.SNAPSHOT, transaction='T9'))

		site.execute(request.write('T1', 'x2', 5))
		self._commit('T1')

		roread = Request(RequestType.ROREAD, resource='x2', transaction='T9')
		self.assertEqual(set(), site.check_conflict(roread))
		self.assertEqual('x2: 20', site.execute(roread))

		# Snapshots survive a failure.
		site.fail()
		site.recover()
		self.assertEqual('x2: 20', site.execute(roread))

		# Commit releases the snapshot.
		self._commit('T9')
		self.assertRaises(ExecutionError, site.execute, roread)

	def test_snapshot_skips_recovering_copy(self):
		''' A snapshot taken after recovery leaves out stale copies. '''

		site = self._site
		site.fail()
		site.recover()
		site.execute(Request(RequestType.SNAPSHOT, transaction='T9'))

		self.assertTrue(site.has_snapshot('T9', 'x1'))
		self.assertFalse(site.has_snapshot('T9', 'x2'))
		self.assertFalse(site.has_snapshot('T8', 'x1'))
		self.assertEqual('x1: 10', site.execute(Request(RequestType.ROREAD,
			resource='x1', transaction='T9')))
		self.assertRaises(ExecutionError, site.execute, Request(
			RequestType.ROREAD, resource='x2', transaction='T9'))

	def test_retain_snapshots(self):
		''' Snapshots of transactions not retained are dropped. '''

		site = self._site
		for txid in ('T7', 'T8', 'T9'):
			site.execute(Request(RequestType.SNAPSHOT, transaction=txid))

		self.assertEqual(['T7', 'T9'], site.retain_snapshots(iter(('T8',))))
		self.assertTrue(site.has_snapshot('T8', 'x2'))
		self.assertFalse(site.has_snapshot('T7', 'x2'))
		self.assertFalse(site.has_snapshot('T9', 'x2'))
		self.assertEqual([], site.retain_snapshots(('T8',)))

	def test_missing_resource(self):
		''' Requests for resources the site does not hold fail. '''

		site = self._site
		self.assertFalse(site.contains_resource('x3'))
		self.assertRaises(ExecutionError,
				site.execute, request.read('T1', 'x3'))
		self.assertRaises(ExecutionError,
				site.execute, request.dump('x3'))

	def test_manager_only_requests(self):
		''' Requests meant for the transaction manager are rejected. '''

		site = self._site
		for req in (request.begin('T1'), request.end('T1'), request.fail(2),
				request.recover(2), request.begin_ro('T1')):
			self.assertRaises(ValueError, site.execute, req)
			self.assertRaises(ValueError, site.check_conflict, req)

	def test_resources_order(self):
		''' Resources sort naturally. '''

		site = Site(1, {'x10': 100, 'x2': 20, 'x1': 10})
		self.assertEqual(['x1', 'x2', 'x10'], site.resources)


if __name__ == '__main__':
	unittest.main()
