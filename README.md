# mongoproxy

Building blocks for a proxy that sits in front of MongoDB. Each command
goes through a pipeline of plugins. A plugin can inspect the command, change
it, answer it itself, or pass it on to the next stage.

Commands and replies are plain Python dictionaries. The first key of a
command is its name, and `$db` holds the database.

## Installation

```
pip install .
```

To install the test tools as well:

```
pip install .[test]
```

## Pipelines

`mongoproxy.plugins.pipeline` holds the interface and helpers that every
plugin uses:

- `Plugin` is the abstract base class. Each plugin has `name()`,
  `configure(config)` and `process(request, next_)`.
- `Request` has these fields:
  - `command`: the command dictionary.
  - `command_name`: taken from the command's first key when not given.
  - `client`: a `ClientConnection`, which holds `addr`, `identities` and a
    `data` dictionary.
  - `cursor_cache`: a `CursorCache`.
  - `data`: a dictionary.

  `database()`, `collection()` and `read_preference_mode()` read these out
  of the command.
- `CursorCache.get_cursor(cursor_id)` returns a `CursorCacheEntry` and
  creates one if there is none. `close_cursor(cursor_id)` removes it.
- `StaticIdentity(source, user, roles)` is a fixed client identity. Any
  object with `source`, `user` and `roles` attributes satisfies
  `ClientIdentity`.
- `build_pipeline(plugins, base)` chains the plugins in order in front of
  `base`. It returns a single callable that takes a `Request`.
- `register(factory)` adds a plugin to the registry and `get_plugin(name)`
  looks one up. Registering two plugins under the same name raises
  `PluginAlreadyRegistered`. Importing a plugin module registers that
  plugin.
- `error_document(code_name, message)` builds an error reply. It knows the
  codes `Unauthorized`, `AuthenticationFailed`, `IllegalOperation`,
  `CursorNotFound` and `CommandNotFound`.
- `lookup(document, *keys)` reads a value from nested documents.
- `is_ok(document)` tells whether a reply reports success.

```python
from mongoproxy.plugins.pipeline import Request, build_pipeline
from mongoproxy.plugins.filtercommand import FilterCommandPlugin

plugin = FilterCommandPlugin()
plugin.configure({"filterCommands": ["dropDatabase"]})

pipeline = build_pipeline([plugin], lambda request: {"ok": 1})
reply = pipeline(Request({"dropDatabase": 1, "$db": "db"}))
# reply == {"ok": 0, "errmsg": "no such command: 'dropDatabase'",
#           "code": 59, "codeName": "CommandNotFound"}
```

## Plugins

| Module | Plugin | Configuration keys | What it does |
|---|---|---|---|
| `mongoproxy.plugins.authz` | `AuthzPlugin` | `paths`, `logUnauthenticated`, `denyByDefault`, `denyByDefaultNamespaces` | Checks each command against role and policy files. |
| `mongoproxy.plugins.filtercommand` | `FilterCommandPlugin` | `filterCommands` | Answers the listed commands with `CommandNotFound`. |
| `mongoproxy.plugins.insort` | `InSortPlugin` | `inlimit` | Sorts the `$in`/`$nin` lists in `find`, `findAndModify` and `update` filters. A list longer than a positive limit is answered with `IllegalOperation`. |
| `mongoproxy.plugins.defaults` | `DefaultPlugin` | `defaultReadConcern`, `defaultMaxTimeMS` | Adds `readConcern` and `maxTimeMS` to `aggregate`, `count`, `distinct` and `find` when they are missing. |
| `mongoproxy.plugins.dedupe` | `DedupePlugin` | none | Merges identical concurrent `find` commands into one downstream call. This applies only to commands with `singleBatch: true` and a `secondary`, `secondaryPreferred` or `nearest` read preference. |
| `mongoproxy.plugins.limits` | `LimitsPlugin` | `batchSizeLimit` (default 10000), `getMoreStreamRatelimit` (default 20000) | Fills in or caps `batchSize` on `find` and `getMore`. It also rate-limits `getMore` per connection. |

A configuration key that a plugin does not know raises `ValueError`.

The modules also expose these helpers:

- `insort`: `preprocess_filter`, `generic_less` and `sort_values`.
  `InLenError` carries `bson_error()`.
- `dedupe`: `SingleFlight.do(key, func)` returns `(value, shared)`, and
  `dedupe_key(command)`.
- `limits`: `RateLimiter(rate, burst).wait_n(n)` is a blocking token
  bucket. `LimitsPlugin` raises `LimitError` when `batchSize` exceeds the
  limit.

## Authorization

The policy engine is in the `mongoproxy.authz` package. `AuthzPlugin` uses
it.

Each configured directory holds two files:

- `roles.json` maps each role to the names of its policies.
- `policies.json` maps each policy name to a list of rules. A rule has
  these keys:
  - `Effect`: `Allow` or `Deny`.
  - `Action`: a list of `Create`, `Read`, `Update` and `Delete`.
  - `Resource`: a list of objects with `Global`, `Database`, `Collection`
    and `Field`.
  - `Condition`: this must be empty, because conditions are not
    implemented.
  - `Policy` (optional): `LogOnly` for rules that are only logged.
  - `Message` (optional).

A malformed file raises `PolicyError`.

`Authz.load_config(paths)` loads and merges every directory into a new
schema. `Authz.querier()` returns the `AuthzSchema` that is loaded, or
`None` if nothing is loaded yet.
`AuthzSchema.authorize(identities, method, resource)` returns an
`AuthorizeResult` that holds the deciding `rule`, the `identity_name` that
brought it, and any `log_only_rules`. The rules work like this:

- A deny rule from any policy takes precedence over an allow rule.
- A `*` entry for the database, collection or field matches every name at
  that level (see `expand_resource`).

```python
from mongoproxy.authz.querier import Authz
from mongoproxy.authz.resource import resource_from_uri
from mongoproxy.authz.types import AuthorizationMethod

authz = Authz()
authz.load_config(["/etc/mongoproxy/authz"])
result = authz.querier().authorize(
    ["role1"], AuthorizationMethod.READ, resource_from_uri("db1/coll2/field2")
)
allowed = result.rule is not None and result.rule.effect.is_allow()
```

Resources are written as `db/collection/field` URIs. A lone `-` stands for
the global resource.

`AuthzPlugin` works out the resources, for each CRUD method, that a command
touches:

- For `find` it uses the projection.
- For `update` and `findAndModify` it uses the update operators.
- A `getMore` reuses the resources that were stored for its cursor.

Commands such as `ping`, `isMaster` and `saslStart` pass without a check.
A connection without identities is checked under the role
`UNAUTHENTICATED`. When no rule matches, `denyByDefaultNamespaces`
(`"db.collection"` mapped to a boolean) is consulted first and then
`denyByDefault`. Denials are answered with `Unauthorized`. After
`configure`, a background thread polls the configured directories and
reloads them when a file changes. A reload that fails keeps the old
schema.

## What this package does not do

- It does not listen for client connections and does not speak the MongoDB
  wire protocol.
- It does not forward commands to a MongoDB server. The `base` handler
  given to `build_pipeline` has to do that.
- It does not authenticate clients. Identities are whatever the caller puts
  on `ClientConnection.identities`.
- It exports no metrics. Timings, denials and deduplications are written to
  the `logging` module at debug level.
- It has no command-line program.