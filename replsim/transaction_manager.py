'''
The transaction manager is the database request processor. It takes a
serialized stream of incoming requests from multiple database clients and
submits operations to database sites in such a manner as to avoid deadlocks and
keep the database in a consistent state.

This transaction manager uses wait-die for conflict resolution and the
available copies algorithm for replication. Read-only transactions read from
snapshots taken at the sites that were up when they began and never lock.

Requests pass two admission gates. The first holds back a request that
conflicts with work already in the waiting list. The second asks the sites for
lock conflicts and applies wait-die. Blocked requests are retried at the start
of every tick, and the whole waiting list is retried again whenever a
transaction commits during the retry.

(c) 2013 Brandon Reiss
'''
from replsim.registry import TransactionRegistry
from replsim.request import Request, RequestType
from replsim.topology import SiteTopology
from replsim.util import \
		WaitDie, TransactionStatus, RequestError, ResourceNotFound, \
		ReadOnlyWrite, delegator
from replsim.waiting_list import WaitingList

import sys

class TransactionManager(object):
	''' Database transaction manager. '''

	COMMITTED, ABORTED = TransactionStatus.COMMITTED, TransactionStatus.ABORTED

	def __init__(self, sites, resources, out=None, clock=None):
		'''
		Initialize the transaction manager over a set of sites.

		Parameters
		----------
		sites : iterable of Site
			All sites in topology order. Reads try replicas in this order.
		resources : iterable of resource names
			Candidate resources. Resources that no site holds are dropped.
		out : file-like or None
			Stream receiving the decision trace. Defaults to sys.stdout.
		clock : callable or None
			Source of transaction timestamps. See TransactionRegistry.
		'''

		self._topology = SiteTopology(sites, resources)
		self._registry = TransactionRegistry(clock)
		self._waiting = WaitingList()
		self._tick = 0
		self._out = out if out is not None else sys.stdout

	def _log_at_time(self, txid, msg):
		''' Log a message with timestamp for the given txid. '''

		print('{:<5s} {:>4s} : {}'.format(
			't{},'.format(self._tick),
			txid if txid is not None else '--', msg), file=self._out)

	@staticmethod
	def _wait_die_reason(resource, wait_die, record):
		''' Assemble wait-die reason string. '''

		blocker, blocker_age = wait_die.youngest_blocker
		return ('killing by wait-die on {}; '
				'({}, ts{}) is older than ({}, ts{})').format(
						resource, blocker, blocker_age,
						record.txid, record.timestamp)

	@property
	def tick(self):
		''' Number of request batches received. '''
		return self._tick

	@property
	def topology(self):
		''' The resource to site index. '''
		return self._topology

	def transaction(self, txid):
		''' Return the record of a transaction. '''
		return self._registry.get(txid)

	def visitors(self, site_id):
		''' Ids of running transactions visiting a site. '''
		return self._registry.visitors(site_id)

	def waiting_requests(self):
		''' Queued requests in arrival order. '''
		return tuple(self._waiting)

	def get_commit_abort_log(self):
		'''
		Get TransactionManager commit and abort log. Entries are of the form
			(TXID, TICK_END, STATUS)
		where status is one of TransactionManager.COMMITTED or
		TransactionManager.ABORTED.
		'''
		return self._registry.commit_abort_log()

	def _wait(self, request, reason):
		''' Append a request to the waiting list. '''

		self._log_at_time(request.transaction,
				'{}; {} goes to the waiting list'.format(reason, request))
		self._waiting.append(request)
		return False

	def _blocked_by_waiting_list(self, request):
		'''
		Queue the request when it conflicts with a waiting request.

		Reads and writes wait behind queued requests on the same resource
		when either is a write. End waits behind any queued request of the same
		transaction.
		'''

		if request.kind in (RequestType.READ, RequestType.WRITE):
			waiting = self._waiting.resource_conflict(request)
		elif request.kind is RequestType.END:
			waiting = self._waiting.transaction_conflict(request)
		else:
			raise ValueError(
					'Request {} is not checked against the waiting list'
					.format(request))

		if waiting is None:
			return False

		self._wait(request, 'conflict with waiting request {}'.format(waiting))
		return True

	def _wait_or_die(self, request, record, conflicts, action):
		'''
		Apply wait-die against the transactions holding conflicting locks. The
		request always fails; it either waits or its transaction aborts.
		'''

		wait_die = WaitDie(self._registry, record.timestamp)
		wait_die.append_blockers(conflicts)

		if wait_die.should_die():
			self._log_at_time(record.txid,
					self._wait_die_reason(request.resource, wait_die, record))
			self._abort_transaction(record)
			return False

		return self._wait(request, 'blocked by {} {} {}'.format(
			', '.join(wait_die.blocked_by), action, request.resource))

	def _begin(self, request, is_ro=False):
		'''
		Begin a transaction. This request does not block.

		When is_ro is True, every site that is up takes a snapshot for the
		transaction. Those sites are the only ones it will ever read from.
		'''

		txid = request.transaction

		if is_ro is False:
			record = self._registry.begin(txid)
			self._log_at_time(txid, 'started at ts{}'.format(record.timestamp))
			return True

		sites = [site for site in self._topology.sites if site.is_running()]
		record = self._registry.begin(
				txid, True, [site.site_id for site in sites])
		snapshot = Request(RequestType.SNAPSHOT, transaction=txid)
		for site in sites:
			site.execute(snapshot)
		self._log_at_time(txid,
				'started at ts{} (read-only) with snapshots at sites {{{}}}'
				.format(record.timestamp,
					', '.join(str(site.site_id) for site in sites)))
		return True

	def _beginro(self, request):
		'''
		Begin a read-only transaction. See _begin() for more information.
		'''
		return self._begin(request, is_ro=True)

	def _read(self, request):
		''' Read a resource for a transaction. '''

		self._topology.sites_for(request.resource)
		record = self._registry.living(request.transaction)

		# Read-only transactions bypass locking and the waiting list.
		if record.is_read_only:
			return self._read_only(request, record)

		if self._blocked_by_waiting_list(request):
			return False

		return self._locked_read(request, record)

	def _locked_read(self, request, record):
		'''
		Read a resource from the first site that is up and whose copy is not
		recovering. Uses the wait-die algorithm when that site reports lock
		conflicts, and does not try further replicas in that case.
		'''

		resource = request.resource
		for site in self._topology.sites_for(resource):
			if not site.is_running() or site.is_recovering(resource):
				continue

			conflicts = site.check_conflict(request)
			if len(conflicts) > 0:
				return self._wait_or_die(request, record, conflicts, 'reading')

			response = site.execute(request)
			self._registry.visit(record.txid, site.site_id)
			self._log_at_time(record.txid, 'read {} from site {}'.format(
				response, site.site_id))
			return True

		return self._wait(request,
				'waiting to read {}; no available sites'.format(resource))

	def _read_only(self, request, record):
		'''
		Read a resource from a snapshot taken when the transaction began. A
		snapshot site is skipped when its copy was recovering at begin, since
		the snapshot did not capture it.
		'''

		resource = request.resource
		serving = set(site.site_id
				for site in self._topology.sites_for(resource))

		for site_id in record.snapshot_sites:
			if site_id not in serving:
				continue

			site = self._topology.site(site_id)
			if not site.is_running() or site.is_recovering(resource) \
					or not site.has_snapshot(record.txid, resource):
				continue

			response = site.execute(request.derive(RequestType.ROREAD))
			self._log_at_time(record.txid,
					'read {} from snapshot at site {}'.format(
						response, site_id))
			return True

		return self._wait(request,
				'waiting to read {}; no snapshot site available'.format(
					resource))

	def _write(self, request):
		'''
		Write a resource at every site that is up. Every such site whose copy
		is not recovering must grant the lock before any site is written.
		'''

		resource = request.resource
		sites = self._topology.sites_for(resource)
		record = self._registry.living(request.transaction)
		if record.is_read_only:
			raise ReadOnlyWrite(record.txid, resource)

		if self._blocked_by_waiting_list(request):
			return False

		running = [site for site in sites if site.is_running()]

		conflicts = set()
		for site in running:
			if not site.is_recovering(resource):
				conflicts |= site.check_conflict(request)

		if len(conflicts) > 0:
			return self._wait_or_die(request, record, conflicts, 'writing')

		if len(running) == 0:
			return self._wait(request,
					'waiting to write {}; no available sites'.format(resource))

		for site in running:
			site.execute(request)
			self._registry.visit(record.txid, site.site_id)

		self._log_at_time(record.txid, 'write {} <- {} to sites {{{}}}'.format(
			resource, request.value,
			', '.join(str(site.site_id) for site in running)))
		return True

	def _end(self, request):
		''' End a running transaction by committing it at every site. '''

		record = self._registry.living(request.transaction)

		if self._blocked_by_waiting_list(request):
			return False

		self._finish(record, RequestType.COMMIT, self.COMMITTED)
		self._log_at_time(record.txid, 'committed')
		return True

	def _abort(self, request):
		''' Abort a running transaction on request. '''

		record = self._registry.living(request.transaction)
		self._abort_transaction(record)
		return True

	def _abort_transaction(self, record):
		'''
		Abort a transaction. Its waiting requests are dropped and every site
		that is up discards its locks, buffered writes and snapshot.
		'''

		dropped = self._waiting.remove_transaction(record.txid)
		self._finish(record, RequestType.ABORT, self.ABORTED)

		msg = 'aborted'
		if len(dropped) > 0:
			msg += '; dropped waiting {}'.format(
					', '.join(str(request) for request in dropped))
		self._log_at_time(record.txid, msg)

	def _finish(self, record, kind, status):
		'''
		Send a commit or abort to every visited or snapshot site that is up and
		then move the transaction out of the running state.
		'''

		site_request = Request(kind, transaction=record.txid)
		for site_id in sorted(record.visited | set(record.snapshot_sites)):
			site = self._topology.site(site_id)
			if site.is_running():
				site.execute(site_request)

		self._registry.finish(record.txid, status, self._tick)

	def _fail(self, request):
		'''
		Fail a site and abort every transaction visiting it.
		'''

		site = self._topology.site(request.site)
		if not site.is_running():
			self._log_at_time(None,
					'warning: site {} is already down'.format(site.site_id))
			return False

		site.fail()
		self._log_at_time(None, 'site {} is down'.format(site.site_id))

		for txid in self._registry.visitors(site.site_id):
			self._log_at_time(txid,
					'aborting; visited site {} which failed'.format(
						site.site_id))
			self._abort_transaction(self._registry.get(txid))
		return True

	def _recover(self, request):
		'''
		Recover a failed site. Replicated copies there stay unreadable until a
		write commits to them. Snapshots of read-only transactions that ended
		while the site was down are dropped.
		'''

		site = self._topology.site(request.site)
		if site.is_running():
			self._log_at_time(None,
					'error: site {} is running; cannot recover'.format(
						site.site_id))
			return False

		site.recover()
		dropped = site.retain_snapshots(
				record.txid for record in self._registry.running())

		msg = 'site {} is up'.format(site.site_id)
		if len(dropped) > 0:
			msg += '; dropped snapshots of {}'.format(', '.join(dropped))
		self._log_at_time(None, msg)
		return True

	def _dump(self, request):
		''' Dump committed values of all sites, one site or one resource. '''

		if request.resource is not None \
				and request.resource not in self._topology:
			raise ResourceNotFound(request.resource)

		if request.site is not None:
			sites = (self._topology.site(request.site),)
		else:
			sites = self._topology.sites

		if request.resource is not None:
			sites = [site for site in sites
					if site.contains_resource(request.resource)]

		self._log_at_time(None, 'dumping {}'.format(request))
		for site in sites:
			if site.is_running():
				print(site.execute(request), file=self._out)
			else:
				print('site {} - down'.format(site.site_id), file=self._out)
		return True

	def _not_for_manager(self, request):
		''' Site requests are never sent to the transaction manager. '''
		raise ValueError(
				'Request {} is not handled by the transaction manager'
				.format(request))

	# Map of request types to their function delegates.
	_REQUEST_DELEGATORS = {
			RequestType.BEGIN: delegator('_begin'),
			RequestType.BEGINRO: delegator('_beginro'),
			RequestType.READ: delegator('_read'),
			RequestType.WRITE: delegator('_write'),
			RequestType.END: delegator('_end'),
			RequestType.ABORT: delegator('_abort'),
			RequestType.FAIL: delegator('_fail'),
			RequestType.RECOVER: delegator('_recover'),
			RequestType.DUMP: delegator('_dump'),
			RequestType.ROREAD: delegator('_not_for_manager'),
			RequestType.COMMIT: delegator('_not_for_manager'),
			RequestType.SNAPSHOT: delegator('_not_for_manager'),
			}

	def _handle(self, request):
		'''
		Send one request through admission. Returns True when the request
		succeeded. Invalid requests are reported and dropped.
		'''

		if not isinstance(request, Request):
			raise ValueError('Request {!r} is not recognized'.format(request))

		try:
			return self._REQUEST_DELEGATORS[request.kind](self, request)
		except RequestError as error:
			self._log_at_time(request.transaction, 'error: {}'.format(error))
			return False

	def _drain_waiting_list(self):
		'''
		Retry every waiting request in arrival order. Requests that are still
		blocked go back to the waiting list. When a transaction commits during
		a pass, locks may have been released, so the whole list is retried
		again.
		'''

		while len(self._waiting) > 0:
			pending = self._waiting.take_all()
			self._log_at_time(None, 'retrying waiting requests {}'.format(
				', '.join(str(request) for request in pending)))

			committed = False
			for request in pending:
				if self._handle(request) and request.kind is RequestType.END:
					committed = True

			if not committed:
				break

	def send_requests(self, requests):
		''' Advance tick, retry waiting requests and execute new requests. '''

		self._tick += 1
		requests = tuple(requests)

		self._log_at_time(None, 'sending requests {}'.format(
			', '.join(str(request) for request in requests)))

		if len(self._waiting) > 0:
			self._drain_waiting_list()

		for request in requests:
			self._handle(request)
