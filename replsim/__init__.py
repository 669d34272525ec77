'''
Modules supporting the replicated concurrency control and recovery simulator
(ReplSim).

Description
-----------
A transaction manager routes the requests of many transactions to database
sites that each hold full or partial replicas of the resources. Sites fail and
recover independently. Each site has an independent lock table. If that site
fails, the lock table is erased.

Conflicts are resolved with wait-die by transaction age. Replicas follow the
available copies algorithm: reads go to one available copy and writes go to
every site that is up. Read-only transactions read from multiversion snapshots
and take no locks.
'''
from replsim.database_manager import DatabaseManager
from replsim.lock_manager import LockManager
from replsim.site import Site
from replsim.request import Request, RequestType
from replsim.transaction_manager import TransactionManager
from replsim.commands import CommandStreamReader, TestFile, parse_commands
from replsim.config import standard_layout, load_layout, build_sites
