'''
The transaction registry owns every transaction record along with the index of
which transactions are visiting which sites.

A transaction visits a site once it holds locks or buffered writes there. The
registry is the only writer of both directions of that relation so that the
visited sites of a running transaction and the visitors of a site are always
inverses of each other.

(c) 2013 Brandon Reiss
'''
from replsim.util import \
		TxRecord, TransactionStatus, DuplicateTransaction, TransactionNotFound, \
		TransactionNotLiving

import collections
import itertools as it

class TransactionRegistry(object):
	''' Registry of transaction records. '''

	def __init__(self, clock=None):
		'''
		Initialize the registry.

		Parameters
		----------
		clock : callable or None
			Returns the next logical timestamp each time it is called. The
			values must be strictly increasing. Defaults to a counter from 1.
		'''
		self._clock = clock if clock is not None else it.count(1).__next__
		self._records = dict()
		self._visiting = collections.defaultdict(set)
		self._commit_abort_log = []

	def begin(self, txid, read_only=False, snapshot_sites=()):
		'''
		Create a running transaction with the next timestamp.

		Parameters
		----------
		txid : string
			Id of the transaction.
		read_only : boolean
			Whether or not the transaction is read-only.
		snapshot_sites : iterable of integer
			Sites holding a snapshot for a read-only transaction.
		'''

		if txid in self._records:
			raise DuplicateTransaction(txid)

		record = TxRecord(txid, self._clock(), read_only, snapshot_sites)
		self._records[txid] = record
		return record

	def get(self, txid):
		''' Return the record of a transaction. '''

		if txid not in self._records:
			raise TransactionNotFound(txid)
		return self._records[txid]

	def living(self, txid):
		''' Return the record of a transaction that must be running. '''

		record = self.get(txid)
		if not record.alive:
			raise TransactionNotLiving(txid, record.status)
		return record

	def visit(self, txid, site_id):
		''' Record that a running transaction visited a site. '''

		self.get(txid).mark_site_visited(site_id)
		self._visiting[site_id].add(txid)

	def visitors(self, site_id):
		''' Ids of transactions visiting a site ordered by age. '''
		return tuple(sorted(self._visiting.get(site_id, ()),
			key=lambda txid: self._records[txid].timestamp))

	def finish(self, txid, status, tick=None):
		'''
		Move a running transaction to ABORTED or COMMITTED. The transaction
		leaves every site it visited and its visited sites are frozen.
		'''

		record = self.living(txid)
		record.finish(status)
		for site_id in record.visited:
			self._visiting[site_id].discard(txid)
		self._commit_abort_log.append((txid, tick, status))

	def commit_abort_log(self):
		'''
		Get the commit and abort log. Entries are of the form
			(TXID, TICK_END, STATUS)
		where status is one of TransactionStatus.COMMITTED or
		TransactionStatus.ABORTED.
		'''
		return tuple(self._commit_abort_log)

	def running(self):
		''' Records of running transactions ordered by age. '''
		return sorted((record for record in self._records.values()
			if record.alive), key=lambda record: record.timestamp)
