'''
Common utilities for ReplSim including a wait-die implementation, a transaction
record, the request error hierarchy and argument checking helpers used by the
command parser.

(c) 2013 Brandon Reiss
'''

import enum

class TransactionStatus(enum.Enum):
	''' Transaction status. NOT_BEGUN is reported for unknown ids only. '''

	RUNNING = 'running'
	ABORTED = 'aborted'
	COMMITTED = 'committed'
	NOT_BEGUN = 'not begun'


class RequestError(ValueError):
	''' A request failed validation. The request is reported and dropped. '''


class ResourceNotFound(RequestError):
	''' No site holds the resource. '''

	def __init__(self, resource):
		super().__init__(
				'no site holds the resource [{}]'.format(resource))
		self.resource = resource


class SiteNotFound(RequestError):
	''' The site id is unknown. '''

	def __init__(self, site_id):
		super().__init__('site [{}] does not exist'.format(site_id))
		self.site_id = site_id


class DuplicateTransaction(RequestError):
	''' A transaction id was begun twice. '''

	def __init__(self, txid):
		super().__init__('transaction [{}] already exists'.format(txid))
		self.txid = txid


class TransactionNotLiving(RequestError):
	''' The transaction is not running. '''

	_MESSAGES = {
			TransactionStatus.ABORTED: 'transaction [{}] has been aborted',
			TransactionStatus.COMMITTED: 'transaction [{}] has been committed',
			TransactionStatus.NOT_BEGUN: 'transaction [{}] has not begun',
			}

	def __init__(self, txid, status):
		super().__init__(self._MESSAGES[status].format(txid))
		self.txid = txid
		self.status = status


class TransactionNotFound(TransactionNotLiving):
	''' The transaction id is unknown. '''

	def __init__(self, txid):
		super().__init__(txid, TransactionStatus.NOT_BEGUN)


class ReadOnlyWrite(RequestError):
	''' A read-only transaction tried to write. '''

	def __init__(self, txid, resource):
		super().__init__('read-only transaction [{}] cannot write [{}]'.format(
			txid, resource))
		self.txid = txid
		self.resource = resource


class ExecutionError(RuntimeError):
	''' A site was asked to execute a request it cannot serve. '''


class WaitDie(object):
	''' State management for wait-die algorithm. '''

	def __init__(self, registry, timestamp):
		'''
		Initialize wait-die algorithm.

		Parameters
		----------
		registry : TransactionRegistry
			Registry used to determine the age of any blockers.
		timestamp : integer
			Age of the transaction that is potentially blocked.
		'''
		self._timestamp = timestamp
		self._registry = registry
		self._blockers = dict()

	def append_blockers(self, waits_for):
		''' Append blockers to this transaction. '''

		for txid in waits_for:
			self._blockers[txid] = self._registry.get(txid).timestamp

	@property
	def blocked(self):
		''' True when any blocker was appended. '''
		return len(self._blockers) > 0

	def should_die(self):
		'''
		Check if transaction should die. A transaction younger than every
		blocker aborts rather than wait for older ones.
		'''
		return self.blocked and all(self._timestamp > timestamp
				for timestamp in self._blockers.values())

	@property
	def blocked_by(self):
		''' Ids of blocking transactions ordered oldest first. '''
		return sorted(self._blockers, key=self._blockers.get)

	@property
	def youngest_blocker(self):
		''' Return (txid, timestamp) of the youngest blocker or None. '''
		if not self.blocked:
			return None
		txid = max(self._blockers, key=self._blockers.get)
		return txid, self._blockers[txid]


class TxRecord(object):
	''' Record tracking transaction in the database system. '''

	def __init__(self, txid, timestamp, is_ro, snapshot_sites=()):
		'''
		Initialize a transaction record.

		Parameters
		----------
		txid : string
			Id of the transaction.
		timestamp : integer
			Logical time when the transaction began. Smaller is older.
		is_ro : boolean
			Whether or not the transaction is read-only.
		snapshot_sites : iterable of integer
			Ids of sites holding a snapshot for a read-only transaction.
		'''
		self._txid = txid
		self._timestamp = timestamp
		self._is_ro = is_ro
		self._status = TransactionStatus.RUNNING
		self._visited = set()
		self._snapshot_sites = tuple(snapshot_sites)

	def __repr__(self):
		return '{{ \'txid\': {}, \'timestamp\': {}, \'status\': {} }}'.format(
				self._txid, self._timestamp, self._status.value)

	@property
	def txid(self):
		''' Get transaction id. '''
		return self._txid

	@property
	def timestamp(self):
		''' Get transaction timestamp. '''
		return self._timestamp

	@property
	def is_read_only(self):
		''' Check if the transaction is read-only. '''
		return self._is_ro

	@property
	def status(self):
		''' Get transaction status. '''
		return self._status

	@property
	def alive(self):
		''' Check if the transaction is running. '''
		return self._status is TransactionStatus.RUNNING

	@property
	def visited(self):
		''' Ids of sites where the transaction holds locks or buffered writes. '''
		return frozenset(self._visited)

	@property
	def snapshot_sites(self):
		''' Ids of sites with a snapshot in topology order. '''
		return self._snapshot_sites

	def mark_site_visited(self, site_id):
		''' Mark that transaction visited a site. '''

		if not self.alive:
			raise TransactionNotLiving(self._txid, self._status)
		self._visited.add(site_id)

	def finish(self, status):
		''' Leave the running state and freeze the visited sites. '''

		if status not in (TransactionStatus.ABORTED, TransactionStatus.COMMITTED):
			raise ValueError('Cannot finish {} with status {}'.format(
				self._txid, status))
		if not self.alive:
			raise TransactionNotLiving(self._txid, self._status)

		self._status = status
		self._visited = frozenset(self._visited)


def delegator(method):
	''' Create a method delegator for a method name. '''

	def call_method(delegate, *args, **kwargs):
		''' Call method on delegate. '''
		func = getattr(delegate, method)
		return func(*args, **kwargs)

	return call_method

def format_command(cmd, args):
	''' Format command string as command(args, ...). '''
	return '{}({})'.format(cmd, ', '.join(args))

def check_args_len(cmd, args, *expect_lens):
	''' Check command arguments length matches one of the expected lengths. '''

	if len(args) not in expect_lens:
		raise ValueError(('Command {} should have {} '
			'argument(s)').format(format_command(cmd, args),
				' or '.join(str(expect) for expect in expect_lens)))

def cmd_error(cmd, args, msg):
	''' Command error string with standard prefix. '''
	return 'ERROR CMD {} : {}'.format(format_command(cmd, args), msg)

def parse_name(cmd, args, idx, name):
	'''
	Parse an identifier argument such as T1 or x4.

	Parameters
	----------
	cmd : string
		Command name used for error messages.
	args : list of arguments
		List of string arguments.
	idx : integer
		Index of argument to parse.
	name : string
		Name of the id used for logging.
	'''

	raw = args[idx]
	if len(raw) == 0 or not raw.isidentifier():
		raise ValueError(cmd_error(cmd, args,
			'{} {!r} is not a valid name'.format(name, raw)))
	return raw

def parse_int(cmd, args, idx, name):
	''' Parse an integer argument. '''

	try:
		return int(args[idx])
	except ValueError:
		raise ValueError(cmd_error(cmd, args,
			'{} {!r} is not an integer'.format(name, args[idx])))
