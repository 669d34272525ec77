'''
The database site has a LockManager and a DatabaseManager and executes
two-phase locked operations on resources for the transaction manager. Writes
are buffered per transaction and reach the DatabaseManager atomically on
commit.

The site keeps track of resources that are available for reading. After a
failure the lock table and buffered writes are erased. After recovery a
resource this site serves alone is readable right away, while a replicated
resource stays recovering until a write to it commits here.

Sites also keep multiversion read clones for read-only transactions. A clone
is taken when the transaction begins and holds only the copies readable at that
time. It is released when the transaction commits or aborts. Clones survive a
failure of the site since they hold committed data only; the transaction
manager drops the clones of finished transactions when the site recovers.

(c) 2013 Brandon Reiss
'''

from replsim.lock_manager import LockManager
from replsim.database_manager import DatabaseManager
from replsim.request import RequestType
from replsim.util import ExecutionError, delegator

import collections
import logging
import re

logger = logging.getLogger(__name__)

def natural_key(name):
	''' Sort key ordering x2 before x10. '''
	return [int(part) if part.isdigit() else part
			for part in re.split(r'(\d+)', name)]

class Site(object):
	''' Represents a database site. '''

	def __init__(self, site_id, resource_defaults, owned_resources=()):
		'''
		Initialize the site.

		Parameters
		----------
		site_id : integer
			The integer id of the site.
		resource_defaults : dict
			Dict of resources replicated at this site and their initial values.
		owned_resources : iterable of resources
			Resources that are served exclusively by this site.
		'''

		self._site_id = site_id
		self._resources = set(resource_defaults)
		self._owned_resources = set(owned_resources)
		self._available_resources = set(self._resources)
		self._running = True

		self._database_manager = DatabaseManager(resource_defaults)
		self._lock_manager = LockManager()

		self._pending_writes = collections.defaultdict(list)
		self._snapshots = dict()

	def __repr__(self):
		return '{{ \'site\': {}, \'data\': {}, \'locks\': {} }}'.format(
				self._site_id, self._database_manager, self._lock_manager)

	def _raise_if_down(self, request):
		''' Raise ExecutionError when site is down. '''
		if not self._running:
			raise ExecutionError('Site {} is down; cannot serve {}'.format(
				self._site_id, request))

	def _raise_if_missing(self, request):
		''' Raise ExecutionError when the site does not hold the resource. '''
		if request.resource not in self._resources:
			raise ExecutionError('Site {} does not hold {}; cannot serve {}'
					.format(self._site_id, request.resource, request))

	@property
	def site_id(self):
		''' The site id. '''
		return self._site_id

	@property
	def resources(self):
		''' Resources held at this site ordered by name. '''
		return sorted(self._resources, key=natural_key)

	def is_running(self):
		''' Query whether site is up. '''
		return self._running

	def contains_resource(self, resource):
		''' Check if this site holds a copy of the resource. '''
		return resource in self._resources

	def is_recovering(self, resource):
		'''
		Check if the copy of a resource is stale since the last recovery.

		A copy with a write lock held on it is not reported as recovering so
		that the lock is visible to check_conflict(). The write that holds the
		lock is the one that will refresh the copy on commit.
		'''

		if resource in self._owned_resources \
				or resource in self._available_resources:
			return False
		return not self._lock_manager.locked_by_writer(resource)

	def fail(self):
		''' Fail the site. Locks and buffered writes are lost. '''

		self._running = False
		self._available_resources = set()
		self._lock_manager = LockManager()
		self._pending_writes = collections.defaultdict(list)
		logger.debug('site %s failed', self._site_id)

	def recover(self):
		''' Recover downed site. '''

		if self._running:
			raise ExecutionError(
					'Site {} is not down to recover()'.format(self._site_id))

		assert len(self._available_resources) == 0, \
				'Site was down with available resources'

		self._running = True
		logger.debug('site %s recovered', self._site_id)

	def create_snapshot(self, txid):
		'''
		Take a multiversion clone of committed data for txid. Only copies that
		are readable now are captured; recovering copies are left out.
		'''

		if not self._running:
			raise ExecutionError('Site {} is down; cannot snapshot for {}'
					.format(self._site_id, txid))
		self._snapshots[txid] = self._database_manager.multiversion_clone(
				self._owned_resources | self._available_resources)

	def has_snapshot(self, txid, resource):
		''' Check if the snapshot of txid captured a resource. '''

		snapshot = self._snapshots.get(txid)
		return snapshot is not None and snapshot.has_resource(resource)

	def retain_snapshots(self, txids):
		'''
		Drop the snapshots of transactions not in txids. Returns the ids of the
		dropped snapshots.
		'''

		keep = set(txids)
		dropped = sorted(txid for txid in self._snapshots if txid not in keep)
		for txid in dropped:
			del self._snapshots[txid]
		if len(dropped) > 0:
			logger.debug('site %s dropped snapshots of %s', self._site_id,
					', '.join(dropped))
		return dropped

	def _release_snapshot(self, txid):
		''' Drop the multiversion clone of txid if there is one. '''
		self._snapshots.pop(txid, None)

	def check_conflict(self, request):
		'''
		Find the transactions whose locks conflict with a request.

		Parameters
		----------
		request : Request
			Request from the transaction manager.

		Returns
		-------
		conflicts : set of txid
			Empty set when the request may be executed.
		'''
		return self._CONFLICT_DELEGATORS[request.kind](self, request)

	def _no_conflict(self, request):
		''' Requests that take no locks never conflict. '''
		return set()

	def _read_conflict(self, request):
		''' Conflicts with a shared lock request. '''
		self._raise_if_down(request)
		self._raise_if_missing(request)
		return self._lock_manager.conflicts(
				request.resource, request.transaction, LockManager.R_LOCK)

	def _write_conflict(self, request):
		''' Conflicts with an exclusive lock request. '''
		self._raise_if_down(request)
		self._raise_if_missing(request)
		return self._lock_manager.conflicts(
				request.resource, request.transaction, LockManager.RW_LOCK)

	def execute(self, request):
		'''
		Execute a request. This must be called after check_conflict()
		reported no conflict.

		Returns
		-------
		response : string
			Response text for the trace.
		'''
		return self._EXECUTE_DELEGATORS[request.kind](self, request)

	def _read(self, request):
		''' Read the latest value visible to the transaction. '''

		self._raise_if_down(request)
		self._raise_if_missing(request)
		txid, resource = request.transaction, request.resource

		if self.is_recovering(resource):
			raise ExecutionError('Site {} is recovering {}; cannot serve {}'
					.format(self._site_id, resource, request))

		if not self._lock_manager.try_lock(resource, txid, LockManager.R_LOCK):
			raise ExecutionError('Site {} has lock conflicts for {}'.format(
				self._site_id, request))

		# A transaction reads its own buffered write. Later writes win.
		value = self._database_manager.read(resource)
		for pend_resource, pend_value in self._pending_writes.get(txid, ()):
			if pend_resource == resource:
				value = pend_value

		return '{}: {}'.format(resource, value)

	def _read_only_read(self, request):
		''' Read from the multiversion clone of a read-only transaction. '''

		self._raise_if_down(request)
		self._raise_if_missing(request)

		if not self.has_snapshot(request.transaction, request.resource):
			raise ExecutionError('Site {} has no snapshot of {} for {}'.format(
				self._site_id, request.resource, request.transaction))

		value = self._snapshots[request.transaction].read(request.resource)
		return '{}: {}'.format(request.resource, value)

	def _write(self, request):
		''' Lock the resource and buffer the write until commit. '''

		self._raise_if_down(request)
		self._raise_if_missing(request)
		txid, resource = request.transaction, request.resource

		if not self._lock_manager.try_lock(resource, txid, LockManager.RW_LOCK):
			raise ExecutionError('Site {} has lock conflicts for {}'.format(
				self._site_id, request))

		self._pending_writes[txid].append((resource, request.value))
		return '{} <- {} at site {}'.format(
				resource, request.value, self._site_id)

	def _commit(self, request):
		'''
		Commit all pending writes for a transaction atomically and free its
		locks and snapshot.
		'''

		self._raise_if_down(request)
		txid = request.transaction

		pending = self._pending_writes.pop(txid, ())
		self._database_manager.batch_write(pending)
		# Written resources are now available for reading.
		for resource, _ in pending:
			self._available_resources.add(resource)

		self._lock_manager.unlock_all(txid)
		self._release_snapshot(txid)
		return 'site {} committed {}'.format(self._site_id, txid)

	def _abort(self, request):
		'''
		Abort an open transaction with zero side-effects on the site data.
		'''

		self._raise_if_down(request)
		txid = request.transaction

		self._pending_writes.pop(txid, None)
		self._lock_manager.unlock_all(txid)
		self._release_snapshot(txid)
		return 'site {} aborted {}'.format(self._site_id, txid)

	def _snapshot(self, request):
		''' Take a snapshot for a read-only transaction. '''
		self.create_snapshot(request.transaction)
		return 'site {} snapshot for {}'.format(
				self._site_id, request.transaction)

	def _dump(self, request):
		''' Dump committed values at this site. '''

		self._raise_if_down(request)

		if request.resource is not None:
			self._raise_if_missing(request)
			resources = (request.resource,)
		else:
			resources = self.resources

		values = self._database_manager.dump()
		return 'site {} - {}'.format(self._site_id, ', '.join(
			'{}: {}'.format(resource, values[resource])
			for resource in resources))

	def _not_for_sites(self, request):
		''' Transaction manager requests never reach a site. '''
		raise ValueError('Request {} is not served by sites'.format(request))

	_CONFLICT_DELEGATORS = {
			RequestType.READ: delegator('_read_conflict'),
			RequestType.WRITE: delegator('_write_conflict'),
			RequestType.ROREAD: delegator('_no_conflict'),
			RequestType.COMMIT: delegator('_no_conflict'),
			RequestType.ABORT: delegator('_no_conflict'),
			RequestType.SNAPSHOT: delegator('_no_conflict'),
			RequestType.DUMP: delegator('_no_conflict'),
			RequestType.BEGIN: delegator('_not_for_sites'),
			RequestType.BEGINRO: delegator('_not_for_sites'),
			RequestType.END: delegator('_not_for_sites'),
			RequestType.FAIL: delegator('_not_for_sites'),
			RequestType.RECOVER: delegator('_not_for_sites'),
			}

	_EXECUTE_DELEGATORS = {
			RequestType.READ: delegator('_read'),
			RequestType.WRITE: delegator('_write'),
			RequestType.ROREAD: delegator('_read_only_read'),
			RequestType.COMMIT: delegator('_commit'),
			RequestType.ABORT: delegator('_abort'),
			RequestType.SNAPSHOT: delegator('_snapshot'),
			RequestType.DUMP: delegator('_dump'),
			RequestType.BEGIN: delegator('_not_for_sites'),
			RequestType.BEGINRO: delegator('_not_for_sites'),
			RequestType.END: delegator('_not_for_sites'),
			RequestType.FAIL: delegator('_not_for_sites'),
			RequestType.RECOVER: delegator('_not_for_sites'),
			}
