'''
ReplSim command utilities. These classes and functions are used to read
commands as strings and produce Request objects for processing with
TransactionManager.send_requests().

A line holds the requests of one tick. Commands are separated by ';' and '//'
starts a comment. Command names are case-insensitive:

	begin(T1); beginRO(T2); R(T1, x1); W(T1, x1, 101); end(T1); abort(T1)
	fail(3); recover(3); dump(); dump(3); dump(x4)

Beyond the standard commands, we support the special debug commands
assertCommitted() and assertAborted() used to check the results of test files.

(c) 2013 Brandon Reiss
'''
from replsim import request
from replsim.util import \
		TransactionStatus, delegator, check_args_len, cmd_error, parse_name, \
		parse_int

import os
import re
import sys

_COMMAND_RE = re.compile(r'([a-zA-Z0-9]+)\(([^)]*)\)')

def split_commands(line):
	'''
	Split a line into raw (command, (args, ...)) tuples.

	Parameters
	----------
	line : string
		A line from command input.

	Returns
	-------
	commands : list of tuples or None
		List of (command, (args, ...)) tuples, or None when the line holds no
		commands.
	'''

	# Ignore comments.
	cmd_groups, _, _ = line.partition('//')
	commands = []

	for cmd_group in cmd_groups.split(';'):
		cmd_group = cmd_group.strip()
		if len(cmd_group) == 0:
			continue

		match = _COMMAND_RE.fullmatch(cmd_group)
		if match is None:
			raise ValueError('Failed parsing command {}'.format(cmd_group))

		cmd, args = match.groups()
		args = tuple(arg.strip() for arg in args.split(',')
				if len(arg.strip()) > 0)
		commands.append((cmd.strip(), args))

	if len(commands) > 0:
		return commands
	else:
		return None

def _parse_begin(cmd, args):
	check_args_len(cmd, args, 1)
	return request.begin(parse_name(cmd, args, 0, 'transaction'))

def _parse_begin_ro(cmd, args):
	check_args_len(cmd, args, 1)
	return request.begin_ro(parse_name(cmd, args, 0, 'transaction'))

def _parse_read(cmd, args):
	check_args_len(cmd, args, 2)
	return request.read(parse_name(cmd, args, 0, 'transaction'),
			parse_name(cmd, args, 1, 'resource'))

def _parse_write(cmd, args):
	check_args_len(cmd, args, 3)
	return request.write(parse_name(cmd, args, 0, 'transaction'),
			parse_name(cmd, args, 1, 'resource'),
			parse_int(cmd, args, 2, 'value'))

def _parse_end(cmd, args):
	check_args_len(cmd, args, 1)
	return request.end(parse_name(cmd, args, 0, 'transaction'))

def _parse_abort(cmd, args):
	check_args_len(cmd, args, 1)
	return request.abort(parse_name(cmd, args, 0, 'transaction'))

def _parse_fail(cmd, args):
	check_args_len(cmd, args, 1)
	return request.fail(parse_int(cmd, args, 0, 'site'))

def _parse_recover(cmd, args):
	check_args_len(cmd, args, 1)
	return request.recover(parse_int(cmd, args, 0, 'site'))

def _parse_dump(cmd, args):
	''' Dump takes no argument, a site id or a resource name. '''

	check_args_len(cmd, args, 0, 1)
	if len(args) == 0:
		return request.dump()
	elif args[0].isdigit():
		return request.dump(site_id=parse_int(cmd, args, 0, 'site'))
	else:
		return request.dump(resource=parse_name(cmd, args, 0, 'resource'))

# Map of lower case command names to their parsers.
_COMMAND_PARSERS = {
		'begin': _parse_begin,
		'beginro': _parse_begin_ro,
		'r': _parse_read,
		'w': _parse_write,
		'end': _parse_end,
		'abort': _parse_abort,
		'fail': _parse_fail,
		'recover': _parse_recover,
		'dump': _parse_dump,
		}

def parse_request(cmd, args):
	''' Parse one raw command into a Request. '''

	parser = _COMMAND_PARSERS.get(cmd.lower())
	if parser is None:
		raise ValueError(cmd_error(cmd, args, 'unknown command'))
	return parser(cmd, args)

def parse_commands(line):
	'''
	Parse lines containing commands into the format accepted by
	TransactionManager.send_requests().

	Parameters
	----------
	line : string
		A line from command input.

	Returns
	-------
	requests : list of Request or None
		Requests ready for processing by TransactionManager.send_requests(),
		or None when the line holds no commands.
	'''

	commands = split_commands(line)
	if commands is None:
		return None
	return [parse_request(cmd, args) for cmd, args in commands]

class CommandStreamReader(object):
	''' Read commands from a file stream. '''

	def __init__(self, stream):
		''' Initialize from a file stream. '''
		self._stream = stream

	def __iter__(self):
		'''
		Iterate over command stream returning lists of requests, one list per
		line that holds commands.

		Note that this may be used only once since the underlying stream is
		spent in the process. An example usage is

			for requests in CommandStreamReader(sys.stdin):
				transaction_manager.send_requests(requests)

		where transaction_manager is an instance of
		replsim.TransactionManager. Reading stops at a '---' line, which starts
		the debug commands of a test file.
		'''

		for line_num, line in enumerate(self._stream, 1):
			if line.strip() == '---':
				return
			try:
				requests = parse_commands(line)
			except ValueError as error:
				raise ValueError('Error parsing line {}: {} ({})'.format(
					line_num, line.rstrip(), error))
			if requests is not None:
				yield requests

class TestFile(object):
	''' Load a database test file and read commands. '''

	__test__ = False

	def _parse(self):
		''' Parse the input file. '''

		# Open and parse the file.
		standard_commands = True
		with open(self._file_path, 'r') as test_data:
			for line_num, line in enumerate(test_data, 1):
				# Transition to debug when line matches '---'.
				if line.strip() == '---':
					standard_commands = False
					continue
				try:
					if standard_commands is True:
						data = parse_commands(line)
					else:
						data = split_commands(line)
				except ValueError:
					raise ValueError(
							'Error parsing line {}: {}'.format(line_num, line))
				if data is None:
					continue

				# If we switched to debug commands, then verify them now.
				if standard_commands is True:
					self._commands.append(data)
				else:
					for cmd, args in data:
						if cmd not in self._DEBUG_CMD_DELEGATORS:
							raise ValueError(('Bad debug command '
								'on line {}: {}').format(line_num, line))
						else:
							args_checker = self._DEBUG_CMD_DELEGATORS[cmd][0]
							args = args_checker(self, cmd, args)
						self._debug_commands.append((cmd, args))

	def __init__(self, file_path):
		''' Initialize from file path. '''

		if not os.path.isfile(file_path):
			raise ValueError(
					'Test file {} does not exist'.format(file_path))

		self._file_path = os.path.abspath(file_path)
		self._commands = []
		self._debug_commands = []

		self._parse()

	def __iter__(self):
		'''
		Iterate over request lists. Clients may iterate over commands as many
		times as is needed since all requests are stored in memory within the
		TestFile instance.
		'''
		return iter(self._commands)

	@property
	def debug_commands(self):
		''' Parsed (command, (args, ...)) debug commands. '''
		return tuple(self._debug_commands)

	# Delegators for (ARGUMENT_CHECKING, EXECUTION).
	_DEBUG_CMD_DELEGATORS = {
			'assertCommitted':
			(delegator('_get_txid_arg'), delegator('_assert_committed')),
			'assertAborted':
			(delegator('_get_txid_arg'), delegator('_assert_aborted')),
			}

	@staticmethod
	def _get_txid_arg(cmd, args):
		''' Check that this is a single transaction id argument. '''
		check_args_len(cmd, args, 1)
		return (parse_name(cmd, args, 0, 'transaction'),)

	@staticmethod
	def _assert_ended(args, status_name, target_status, commit_abort_log):
		''' Check that some transaction ended. '''

		check_txid = args[0]

		for txid, _, status in commit_abort_log:
			if txid == check_txid:
				return (status is target_status,
						'expecting {} for {}'.format(status_name, txid))

		return (False, '{} not found in the log'.format(check_txid))

	@classmethod
	def _assert_committed(cls, args, commit_abort_log):
		''' Check that some transaction committed. '''
		return cls._assert_ended(args, 'COMMITTED',
				TransactionStatus.COMMITTED, commit_abort_log)

	@classmethod
	def _assert_aborted(cls, args, commit_abort_log):
		''' Check that some transaction aborted. '''
		return cls._assert_ended(args, 'ABORTED',
				TransactionStatus.ABORTED, commit_abort_log)

	def assert_debug_commands(self, commit_abort_log, out=None):
		'''
		Check debug assertions made in the test file.

		Parameters
		----------
		commit_abort_log : iterable of tuples
			Iterable of (txid, tick, status) tuples where status is one of
			TransactionManager.COMMITTED or TransactionManager.ABORTED.
		out : file-like or None
			Stream receiving one SUCCESS or FAILURE line per assertion.
			Defaults to sys.stdout.

		Returns
		-------
		results : list of tuples
			List of (passed, message) tuples in file order.
		'''

		out = out if out is not None else sys.stdout
		commit_abort_log = tuple(commit_abort_log)

		results = []
		for cmd, args in self._debug_commands:
			result, msg = self._DEBUG_CMD_DELEGATORS[cmd][1](
					self, args, commit_abort_log)
			print('debug {} : {}'.format(
				'SUCCESS' if result is True else 'FAILURE', msg), file=out)
			results.append((result, msg))
		return results
