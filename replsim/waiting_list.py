'''
Queue of requests blocked by lock conflicts, by earlier queued work or by sites
that are unavailable.

(c) 2013 Brandon Reiss
'''
from replsim.request import RequestType

class WaitingList(object):
	''' First in, first out queue of blocked requests. '''

	def __init__(self):
		self._requests = []

	def __len__(self):
		return len(self._requests)

	def __iter__(self):
		return iter(tuple(self._requests))

	def append(self, request):
		''' Queue a request at the tail. '''
		self._requests.append(request)

	def take_all(self):
		''' Remove and return every queued request in arrival order. '''

		requests, self._requests = self._requests, []
		return requests

	def remove_transaction(self, txid):
		''' Drop every queued request of a transaction. '''

		removed = [request for request in self._requests
				if request.transaction == txid]
		self._requests = [request for request in self._requests
				if request.transaction != txid]
		return removed

	def resource_conflict(self, request):
		'''
		Return the first queued request on the same resource where either of
		the two requests is a write, or None.
		'''

		for waiting in self._requests:
			if waiting.resource == request.resource \
					and RequestType.WRITE in (waiting.kind, request.kind):
				return waiting
		return None

	def transaction_conflict(self, request):
		''' Return the first queued request of the same transaction, or None. '''

		for waiting in self._requests:
			if waiting.transaction == request.transaction:
				return waiting
		return None
