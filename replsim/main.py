'''
Command line entry point. Reads commands from a file or stdin, one tick per
line, and writes the transaction manager trace to stdout.

(c) 2013 Brandon Reiss
'''
from replsim.commands import CommandStreamReader
from replsim.config import standard_layout, load_layout, build_sites
from replsim.transaction_manager import TransactionManager

import argparse
import logging
import sys

logger = logging.getLogger(__name__)

def _setup_logging(args):
	''' Configure diagnostics on stderr from the verbosity flags. '''

	if args.quiet:
		logging.basicConfig(level=logging.ERROR,
				format='%(levelname)s: %(message)s')
	elif args.verbose:
		logging.basicConfig(level=logging.DEBUG,
				format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
	else:
		logging.basicConfig(level=logging.INFO, format='%(message)s')

def build_parser():
	''' Build the argument parser. '''

	parser = argparse.ArgumentParser(
			description='Replicated concurrency control and recovery simulator')
	parser.add_argument('file', nargs='?', default=None,
			help='Path to a command file (default: stdin)')
	parser.add_argument('--layout', default=None,
			help='Path to a TOML site layout file')
	parser.add_argument('--sites', type=int, default=10,
			help='Number of sites in the standard layout (default: 10)')
	parser.add_argument('--variables', type=int, default=20,
			help='Number of variables in the standard layout (default: 20)')

	verbosity = parser.add_mutually_exclusive_group()
	verbosity.add_argument('-v', '--verbose', action='store_true',
			help='Enable verbose logging')
	verbosity.add_argument('-q', '--quiet', action='store_true',
			help='Suppress all logging except errors')
	return parser

def run(stream, layout, out=None):
	'''
	Feed a command stream through a new transaction manager.

	Returns
	-------
	transaction_manager : TransactionManager
		The manager after the last tick.
	'''

	sites, resources = build_sites(layout)
	transaction_manager = TransactionManager(sites, resources, out=out)
	for requests in CommandStreamReader(stream):
		transaction_manager.send_requests(requests)
	return transaction_manager

def main(argv=None):
	''' Main method. '''

	args = build_parser().parse_args(argv)
	_setup_logging(args)

	try:
		if args.layout is not None:
			layout = load_layout(args.layout)
		else:
			layout = standard_layout(args.sites, args.variables)

		if args.file is not None:
			with open(args.file, 'r') as stream:
				run(stream, layout)
		else:
			run(sys.stdin, layout)
	except (OSError, ValueError) as error:
		logger.error('%s', error)
		return 1
	return 0

if __name__ == '__main__':
	sys.exit(main())
