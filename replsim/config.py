'''
Site layouts. A layout maps each site id to the resources it holds and their
initial values.

The standard layout has 20 distinct variables x1, ..., x20 and 10 sites
numbered 1 to 10. The odd indexed variables are at one site each (i.e. 1 +
index number mod 10). Even indexed variables are at all sites. Each variable is
initialized to the value 10i.

Layouts may also be read from TOML files. Either the standard layout is sized

	[layout]
	sites = 4
	variables = 8

or every site is listed explicitly

	[sites.1]
	x1 = 10
	x2 = 20

	[sites.2]
	x2 = 20

(c) 2013 Brandon Reiss
'''
from replsim.site import Site, natural_key

import collections
import logging
import tomllib

logger = logging.getLogger(__name__)

def standard_layout(num_sites=10, num_variables=20):
	'''
	Build the standard layout.

	Parameters
	----------
	num_sites : integer
		Number of sites numbered from 1.
	num_variables : integer
		Number of variables numbered from 1.

	Returns
	-------
	layout : dict
		Dict of site id to a dict of resource names and initial values.
	'''

	if num_sites < 1 or num_variables < 1:
		raise ValueError('Layout needs at least one site and one variable')

	layout = dict((site_id, dict()) for site_id in range(1, num_sites + 1))
	for index in range(1, num_variables + 1):
		resource = 'x{}'.format(index)
		if index % 2 == 0:
			holders = layout.keys()
		else:
			holders = (1 + (index % num_sites),)
		for site_id in holders:
			layout[site_id][resource] = 10 * index
	return layout

def _explicit_layout(sites, path):
	''' Convert [sites.N] tables into a layout. '''

	layout = dict()
	for key, values in sites.items():
		try:
			site_id = int(key)
		except ValueError:
			raise ValueError('Site id {!r} in {} is not an integer'.format(
				key, path))
		if not isinstance(values, dict):
			raise ValueError('Site {} in {} must be a table'.format(
				site_id, path))
		for resource, value in values.items():
			if not isinstance(value, int):
				raise ValueError(
						'Initial value of {} at site {} in {} must be an integer'
						.format(resource, site_id, path))
		layout[site_id] = dict(values)
	return layout

def load_layout(path):
	'''
	Load a layout from a TOML file.

	Parameters
	----------
	path : string
		Path to the layout file.

	Returns
	-------
	layout : dict
		Dict of site id to a dict of resource names and initial values.
	'''

	with open(path, 'rb') as layout_file:
		config = tomllib.load(layout_file)

	if 'sites' in config:
		layout = _explicit_layout(config['sites'], path)
	elif 'layout' in config:
		size = config['layout']
		layout = standard_layout(size.get('sites', 10),
				size.get('variables', 20))
	else:
		raise ValueError(
				'Layout file {} needs a [layout] or [sites] table'.format(path))

	if len(layout) == 0:
		raise ValueError('Layout file {} has no sites'.format(path))

	logger.info('loaded layout of %d sites from %s', len(layout), path)
	return layout

def layout_resources(layout):
	''' Resources named anywhere in a layout ordered by name. '''

	resources = set()
	for values in layout.values():
		resources.update(values)
	return sorted(resources, key=natural_key)

def build_sites(layout):
	'''
	Build sites for a layout in site id order. A resource held by a single site
	is owned by that site and stays readable there across recovery.

	Returns
	-------
	sites : list of Site
	resources : list of resource names
	'''

	holders = collections.Counter()
	for values in layout.values():
		holders.update(values)

	sites = []
	for site_id in sorted(layout):
		values = layout[site_id]
		owned = [resource for resource in values if holders[resource] == 1]
		sites.append(Site(site_id, values, owned))
		logger.debug('site %s holds %d resources, owns %d', site_id,
				len(values), len(owned))

	return sites, layout_resources(layout)
