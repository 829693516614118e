# shardbank

A small sharded bank ledger. Client accounts are split into shards, and each
shard is served by a cluster of replicas. Transactions inside one cluster are
agreed on with Paxos. Transactions that span two clusters use two-phase
commit: each cluster prepares and votes, the client collects the acks, and
then sends commit or abort to both. All state is kept in MongoDB.

## Installation

```
pip install shardbank
```

To run the test suite:

```
pip install "shardbank[test]"
pytest
```

## Command line

The `shardbank` command writes the global shard map and suggests a new
sharding based on past traffic. Both subcommands take exactly three
arguments. If a subcommand fails, its error message is printed to standard
error and the exit status is 1.

### Creating the shards

```
shardbank shard shards.csv mongodb://localhost:27017 global
```

`shards.csv` starts with a header row. After it comes one row per shard: the
shard name, the cluster that serves the shard, and an inclusive range of
client ids:

```
shard,cluster,range
D1,C1,1-1000
D2,C2,1001-2000
D3,C3,2001-3000
```

Each client in a range gets one document in the `shards` collection, with a
starting balance of 10. The command prints one line per shard, for example:

```
shard D1 mapped to cluster C1 with 1000 clients (1-1000).
```

### Suggesting a rebalance

```
shardbank rebalance 3 mongodb://localhost:27017 global
```

This command reads the stored sessions from the `sessions` collection and
groups them by account pair. It keeps each pair with more transactions than
the given count and sorts the pairs by transaction count, then by total
amount, both in descending order. Only pairs whose first recorded
transaction type is `cross-shard` are written. They go to `new-schema.txt` in
the current directory, one line per pair:

```
{clusters: [C1 C2], accounts: [12, 1500], transactions: 5, total: 40.000000}
```

## Library

Each module can be used on its own.

- `shardbank.config`: `default_config()` and `load_config(path, environ=None)`
  both return a `Config` with a nested `PaxosConfig`. The YAML file overrides
  the defaults. A missing or unreadable file is logged and skipped.
  Environment variables whose names start with `2pc_` override the file. The
  rest of the name is lowercased, and `__` in it selects a nested key, as in
  `2pc_paxos__majority`. If a value cannot be converted to its setting's
  type, `ValueError` is raised.
- `shardbank.tables`: `parse_iptable` reads the iptable file, which has one
  `name-address` pair per line. `parse_datastore_csv`, `parse_shards_csv` and
  `parse_testcases_csv` read the CSV inputs. `average` is also provided.
- `shardbank.models` and `shardbank.messages`: `models` holds the stored
  records (`Client`, `ClientShard`, `Log`, `Lock`, `Session`, `Shard`,
  `AggregationResult`, `Testcase`, ...). `messages` holds the messages
  exchanged between client and replicas (`RequestMsg`, `PrepareMsg`,
  `AcceptMsg`, `BallotNumber`, `SyncMsg`, ...), together with converters
  between database and consensus requests.
- `shardbank.enums`: response texts (`Response`), write-ahead log kinds
  (`WALMessage`) and packet labels (`PacketLabel`, `ClientPacketLabel`).
- `shardbank.locks.LockManager`: per-record locks, each owned by a session id.
- `shardbank.memory`: `SharedMemory` holds one replica's state: leader,
  ballot numbers, accepted values and block status. `SessionCounter` hands
  out session ids, starting from the current Unix time.
- `shardbank.storage`: `ClusterStore` reads the global shard map.
  `NodeStore` holds a replica's balances, write-ahead logs and lock records.
  A query that finds nothing raises `RecordNotFound`.
- `shardbank.timers`: `LeaderTimer` handles the leader timeout and periodic
  pings. `PaxosTimer` handles the timeout of each consensus round.
- `shardbank.database_handler.DatabaseHandler` and
  `shardbank.paxos_handler.PaxosHandler`: the replica-side logic for
  requests, prepare/commit/abort, and the Paxos rounds.
- `shardbank.csm`: `ConsensusManager` wires up a `Dispatcher` and one or more
  `ConsensusStateMachine`s. These take packets from queues and route them to
  the handlers.
- `shardbank.client_manager.Manager` and `shardbank.client_storage.SessionStore`
  make up the client side. `Manager` sends transactions and tracks each
  session until every participant has replied. It resends sessions that have
  timed out, runs loaded test sets and reports throughput and latency. A
  failing command raises `CommandError`, whose message is meant for the user.
- `shardbank.shard_store.ShardStore`: inserts shards and runs the rebalance
  aggregation (`rebalance_pipeline`) used by the command line.
- `shardbank.logs.new_file_logger(level, prefix, directory=None)`: returns a
  logger that writes to `logs<prefix>.csv`. The file must already exist, and
  it is emptied when the logger is created.

### Example

```python
from shardbank.config import load_config
from shardbank.tables import parse_iptable

config = load_config("config.yml", {"2pc_replicas": "3"})
nodes = parse_iptable("iptable.txt")
print(config.cluster_name, config.replicas, nodes.get("all"))
```

## What it does not do

The package contains no network transport. There are no RPC servers and no
code that dials remote nodes. `Manager` needs a dialer object that makes the
calls to cluster nodes and holds a `nodes` table. `ConsensusManager.initialize`
and the handlers need a client object that sends the replica-to-replica and
replica-to-client messages. The caller has to provide both.

There is also no command that starts a cluster of replicas, and no
interactive client shell. The only command is `shardbank`, with its `shard`
and `rebalance` subcommands.