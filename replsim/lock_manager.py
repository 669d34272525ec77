'''
Site lock manager. Holds shared read locks and exclusive write locks per
resource for a single site.
'''
import logging

logger = logging.getLogger(__name__)

class LockManager(object):
	''' Site lock manager. '''

	_ALLOWED_MODES = range(3)
	_UNLOCKED, R_LOCK, RW_LOCK = _ALLOWED_MODES

	_LOCK_TABLE_STATES = {
			_UNLOCKED: 'U',
			R_LOCK: 'R',
			RW_LOCK: 'W',
			}

	def __init__(self):
		'''
		Initialize the lock manager. All resources are unlocked initially.
		'''
		self._lock_table = dict()

	def __repr__(self):
		def fmt_lock_state(txids, state):
			''' Format lock state string. '''
			if len(txids) > 0:
				return '{} <- {}'.format(
						txids, self._LOCK_TABLE_STATES[state])
			else:
				return self._LOCK_TABLE_STATES[self._UNLOCKED]

		return '\n'.join('{}: {}'.format(resource, fmt_lock_state(txids, state))
				for resource, (txids, state) in sorted(self._lock_table.items()))

	def get_locks(self, resource):
		'''
		Get the locks for a resource.

		Parameters
		----------
		resource : string
			Name of resource for which to query locks.

		Returns
		-------
		lock_state : tuple of (txids, mode) or None
			Ids of transactions holding a lock for the resource and the mode of
			the lock or None if no locks are held.
		'''

		if resource not in self._lock_table:
			return None

		txids, state = self._lock_table[resource]
		if len(txids) == 0:
			return None
		return tuple(txids), state

	def conflicts(self, resource, txid, mode):
		'''
		Find the transactions whose locks prevent a lock request.

		Parameters
		----------
		resource : string
			Resource to lock.
		txid : string
			Transaction id requesting the lock.
		mode : LockManager.R_LOCK or LockManager.RW_LOCK
			The lock type.

		Returns
		-------
		conflicts : set of txid
			Empty when the lock may be granted.
		'''

		if mode not in (self.R_LOCK, self.RW_LOCK):
			raise ValueError(
					'Lock mode {} is not recognized'.format(mode))

		if resource not in self._lock_table:
			return set()

		txids, state = self._lock_table[resource]
		others = set(txids) - set((txid,))

		# Readers share; a writer needs the lock alone.
		if len(others) == 0 or (state == self.R_LOCK and mode == self.R_LOCK):
			return set()
		return others

	def try_lock(self, resource, txid, mode):
		'''
		Try to lock a resource for a given transaction and mode.

		Returns
		-------
		lock_state : boolean
			True if locked and False otherwise.
		'''

		if len(self.conflicts(resource, txid, mode)) > 0:
			return False

		txids, state = self._lock_table.get(resource, ([], self._UNLOCKED))

		if len(txids) == 0:
			# The lock is not claimed. Claim it.
			self._lock_table[resource] = ([txid], mode)

		elif txid in txids:
			# Either the txid has the desired lock type already, or it is the
			# sole holder promoting to a write lock.
			if mode == self.RW_LOCK:
				self._lock_table[resource] = (txids, mode)

		else:
			# Add a new read lock client.
			txids.append(txid)

		logger.debug('%s locked %s (%s)', txid, resource,
				self._LOCK_TABLE_STATES[self._lock_table[resource][1]])
		return True

	def unlock(self, resource, txid):
		''' Unlock a resource. '''

		if resource not in self._lock_table:
			raise ValueError('Resource {} not locked at all'.format(resource))

		# Lookup lock state.
		txids, _ = self._lock_table[resource]

		# Must be locked by this transaction.
		if txid not in txids:
			raise ValueError(('Resource {} is not locked by '
				'transaction {}').format(resource, txid))

		txids.remove(txid)
		if len(txids) == 0:
			self._lock_table[resource] = ([], self._UNLOCKED)

	def unlock_all(self, txid):
		''' Batch unlock all locks held by the given transaction. '''

		for resource, (txids, _) in list(self._lock_table.items()):
			if txid in txids:
				self.unlock(resource, txid)

	def locked_by_writer(self, resource):
		''' Check whether some transaction holds a write lock. '''

		locks = self.get_locks(resource)
		return locks is not None and locks[1] == self.RW_LOCK
