'''
Static index from resource names to the sites that replicate them.

(c) 2013 Brandon Reiss
'''
from replsim.util import ResourceNotFound, SiteNotFound

import logging

logger = logging.getLogger(__name__)

class SiteTopology(object):
	''' Resource to site index built once from site membership queries. '''

	def __init__(self, sites, resources):
		'''
		Discover which sites serve which resources.

		Resources that no site serves are dropped. Requests that name them are
		rejected later as unknown.

		Parameters
		----------
		sites : iterable of Site
			All sites in topology order.
		resources : iterable of resource names
			Candidate resources.
		'''

		self._sites = tuple(sites)
		self._site_map = dict((site.site_id, site) for site in self._sites)
		if len(self._site_map) != len(self._sites):
			raise ValueError('Site ids must be unique')

		self._serving = dict()
		for resource in resources:
			serving = tuple(site for site in self._sites
					if site.contains_resource(resource))
			if len(serving) > 0:
				self._serving[resource] = serving
			else:
				logger.warning('dropping resource %s; no site holds it',
						resource)

	@property
	def sites(self):
		''' All sites in topology order. '''
		return self._sites

	@property
	def resources(self):
		''' Resources served by at least one site. '''
		return tuple(self._serving)

	def __contains__(self, resource):
		return resource in self._serving

	def sites_for(self, resource):
		''' Sites serving a resource in topology order. '''

		if resource not in self._serving:
			raise ResourceNotFound(resource)
		return self._serving[resource]

	def site(self, site_id):
		''' Look up a site by id. '''

		if site_id not in self._site_map:
			raise SiteNotFound(site_id)
		return self._site_map[site_id]
