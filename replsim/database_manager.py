'''
The database manager is the low-level store of committed values for one site.

Values live in memory only. Batched writes are validated before any value
changes so that a commit either applies every buffered write or none.
Multiversion clones capture the committed state at a point in time for
read-only transactions.

(c) 2013 Brandon Reiss
'''
import copy

class DatabaseManager(object):
	''' The committed value store. '''

	class MultiversionClone(object):
		''' A multiversion read consistency clone. '''

		def __init__(self, data):
			''' Initialize from committed data. '''
			self._cache = copy.deepcopy(data)

		def read(self, resource):
			''' Read a resource from the clone. '''

			if resource not in self._cache:
				raise ValueError(('Resource {} '
					'is not managed by this clone').format(resource))

			return self._cache[resource]

		def has_resource(self, resource):
			''' Check that the clone holds a given resource. '''
			return resource in self._cache


	def __init__(self, resources):
		'''
		Initialize the database.

		Parameters
		----------
		resources : dict
			Dict of resources replicated at this site and their initial values.
		'''

		self._cache = dict(resources)

	def __repr__(self):
		return self._cache.__repr__()

	def has_resource(self, resource):
		''' Check that the database manages a given resource. '''
		return resource in self._cache

	def read(self, resource):
		''' Get the committed value of a resource. '''

		if not self.has_resource(resource):
			raise ValueError(('Resource {} '
					'is not managed by this database').format(resource))

		return self._cache[resource]

	def batch_write(self, values):
		'''
		Write tuples of the form (resource, value).

		Invalid resources are rejected and the database is not modified.
		'''

		# Copy in case incoming is a generator. We need to iterate twice since
		# we can have no side effects until we are sure that all values are
		# valid.
		values = tuple(values)

		for resource, _ in values:
			if not self.has_resource(resource):
				raise ValueError(('Resource {} '
					'is not managed by this database').format(resource))

		for resource, value in values:
			self._cache[resource] = value

	def multiversion_clone(self, resources=None):
		'''
		Return a multiversion clone of the database with a read-only interface.

		Parameters
		----------
		resources : iterable of resources or None
			Resources to capture. None captures every resource. Resources this
			database does not manage are ignored.
		'''

		if resources is None:
			return DatabaseManager.MultiversionClone(self._cache)

		return DatabaseManager.MultiversionClone(dict(
			(resource, self._cache[resource]) for resource in resources
			if resource in self._cache))

	def dump(self):
		''' Dump a copy of every committed value keyed by resource. '''
		return copy.deepcopy(self._cache)
