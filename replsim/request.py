'''
Requests exchanged between the front end, the transaction manager and the
database sites.

A request is an immutable tuple tagged by a RequestType. The set of request
types is closed; every stage that dispatches on the type keeps a table keyed by
all members and treats anything else as a programming error.

(c) 2013 Brandon Reiss
'''
import collections
import enum

class RequestType(enum.Enum):
	'''
	Kinds of requests.

	READ, WRITE, ABORT and DUMP are sent both to the transaction manager and to
	sites. ROREAD, COMMIT and SNAPSHOT are sent only to sites. BEGIN, BEGINRO,
	END, FAIL and RECOVER are handled by the transaction manager alone.
	'''

	READ = 'R'
	WRITE = 'W'
	ROREAD = 'RO'
	BEGIN = 'begin'
	BEGINRO = 'beginRO'
	END = 'end'
	ABORT = 'abort'
	DUMP = 'dump'
	FAIL = 'fail'
	RECOVER = 'recover'
	COMMIT = 'commit'
	SNAPSHOT = 'snapshot'


class Request(collections.namedtuple('Request',
		('kind', 'resource', 'transaction', 'site', 'value'))):
	'''
	An immutable request.

	Parameters
	----------
	kind : RequestType
		The request type.
	resource : string or None
		Name of the resource to read, write or dump.
	transaction : string or None
		Id of the transaction issuing the request.
	site : integer or None
		Site id for fail, recover and single site dumps.
	value : integer or None
		Value to write.
	'''

	__slots__ = ()

	def __new__(cls, kind, resource=None, transaction=None, site=None,
			value=None):
		if not isinstance(kind, RequestType):
			raise ValueError('Request type {!r} is not recognized'.format(kind))
		return super().__new__(cls, kind, resource, transaction, site, value)

	def __str__(self):
		return format_request(self)

	def derive(self, kind):
		''' Same transaction and resource addressed with a different type. '''
		return Request(kind, self.resource, self.transaction, self.site,
				self.value)


def format_request(request):
	''' Format request string as command(args, ...). '''

	args = [arg for arg in (
		request.transaction, request.resource, request.site, request.value)
		if arg is not None]
	return '{}({})'.format(
			request.kind.value, ', '.join(str(arg) for arg in args))

def begin(txid):
	''' Begin a read-write transaction. '''
	return Request(RequestType.BEGIN, transaction=txid)

def begin_ro(txid):
	''' Begin a read-only transaction. '''
	return Request(RequestType.BEGINRO, transaction=txid)

def read(txid, resource):
	''' Read a resource. '''
	return Request(RequestType.READ, resource=resource, transaction=txid)

def write(txid, resource, value):
	''' Write a value to a resource. '''
	return Request(RequestType.WRITE, resource=resource, transaction=txid,
			value=value)

def end(txid):
	''' End (commit) a transaction. '''
	return Request(RequestType.END, transaction=txid)

def abort(txid):
	''' Abort a transaction. '''
	return Request(RequestType.ABORT, transaction=txid)

def fail(site_id):
	''' Fail a site. '''
	return Request(RequestType.FAIL, site=site_id)

def recover(site_id):
	''' Recover a failed site. '''
	return Request(RequestType.RECOVER, site=site_id)

def dump(resource=None, site_id=None):
	''' Dump all sites, a single site or a single resource. '''
	return Request(RequestType.DUMP, resource=resource, site=site_id)
