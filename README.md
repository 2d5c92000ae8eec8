# pipekit

Building blocks for local automation pipelines:

- a per-step result cache with expiry rules (`pipekit.cache`),
- a dependency graph builder for pipeline steps (`pipekit.graph`),
- a content-addressed store for pipelines pulled from a hub (`pipekit.store`),
- an HTTP client for the hub (`pipekit.hubclient`) and for its device-login
  flow and stored credentials (`pipekit.auth`),
- validation helpers for names, tags and `KEY=value` overrides
  (`pipekit.helpers`),
- a small command line for the cache and the hub account (`pipekit.cli`).

Everything is kept under `~/.pipe` in your home directory:

| Path                          | Holds                                    |
|-------------------------------|------------------------------------------|
| `~/.pipe/files/`              | local pipeline files                     |
| `~/.pipe/hub/<owner>/<name>/` | pulled hub pipelines (blobs, tags, HEAD) |
| `~/.pipe/cache/`              | cached step results, one JSON per step   |
| `~/.pipe/state/`, `logs/`     | created by `config.ensure_dirs`          |
| `~/.pipe/credentials.json`    | hub credentials (mode 0600)              |

## Installing

```
pip install pipekit
```

Python 3.11 or newer is required. The hub store uses symbolic links, so a
POSIX system is expected.

## Command line

```
pipekit cache list            # show cached step results
pipekit cache clear           # remove every cache entry
pipekit cache clear build     # remove the entry for step "build"
pipekit whoami                # show the user the stored credentials belong to
pipekit logout                # revoke the credentials on the hub and delete them
pipekit --version
```

Add `-v` for verbose output, `-vv` for debug logging. Errors are logged to
standard error and the command exits with status 1.

The hub address is taken from the `PIPEHUB_URL` environment variable when
it is set; otherwise `https://hub.getpipe.dev` is used. Credentials that
carry their own base address use that one instead.

`pipekit cache list` prints one row per entry with its step ID, when it
was cached, when it expires (`never` if it has no expiry) and its run type.

`pipekit logout` treats an already revoked key as success; if revoking on
the server fails for another reason it warns and still deletes the local
credentials. `pipekit whoami` warns instead of failing when the stored key
is no longer valid.

## Library use

### Cache

`cache.parse_expiry` turns an expiry value into a concrete time. It
accepts a duration (`"30s"`, `"10m"`, `"1h"`, `"1h30m"`), a wall-clock time
in UTC (`"18:10 UTC"`), or a wall-clock time in the timezone of
`cached_at` (`"18:10"`). A wall-clock time that has already passed moves
to the next day. An empty string returns `None`: the entry never expires.
Anything else raises `ValueError`.

```python
from datetime import datetime, timezone
from pipekit import cache

cached_at = datetime(2026, 2, 17, 20, 0, tzinfo=timezone.utc)
cache.parse_expiry("1h", cached_at)         # 2026-02-17 21:00 UTC
cache.parse_expiry("18:10 UTC", cached_at)  # 2026-02-18 18:10 UTC
```

Entries (`cache.Entry`, with `cache.SubEntry` for sub-runs) are written
atomically with `cache.save`, read back with `cache.load` (which returns
`None` for a missing step), checked with `cache.is_valid(entry, now)`, and
removed with `cache.clear` or `cache.clear_all`. `cache.list_entries()`
returns every readable entry and skips corrupt ones. Failures raise
`cache.CacheError`.

### Step dependency graphs

`graph.build(steps)` takes a list of `graph.GraphStep` objects (a single
`run` command, a `strings` list of commands, `sub_runs` as `(id, command)`
pairs, and `depends_on`) and returns a `graph.Graph` with `deps`,
`dependents`, `in_degree`, `order` and `warnings`.

Edges come from each step's `depends_on` and, implicitly, from references
to `$PIPE_<STEP>` or `${PIPE_<STEP>_<SUBRUN>}` in its commands; duplicate
edges are merged and a step's references to itself are ignored. A step
that lists itself in `depends_on`, or a cycle between steps, raises
`graph.GraphError`; a dependency on an unknown step is dropped and
reported in `warnings`. `graph.env_key("get-version")` gives
`"PIPE_GET_VERSION"`.

### Hub store

Pulled pipelines live in a content-addressed layout: blobs are stored by
SHA-256 under `blobs/sha256/`, tags are relative symlinks to blobs (or
plain files for editable tags), `HEAD` points at a tag or directly at a
blob, and `index.json` records each tag's checksums and the active tag.

```python
from pipekit import store

content = b"name: demo\n"
sha256_hex, md5_hex = store.compute_checksums(content)
store.save_content("alice", "deploy", "latest", content)
store.update_index("alice", "deploy", "latest", sha256_hex, md5_hex, len(content))
store.is_dirty("alice", "deploy", "latest")   # False until the tag is edited
```

Other functions cover tags and HEAD (`create_tag_symlink`,
`create_editable_tag`, `is_tag_editable`, `set_head`, `set_head_blob`,
`read_head_ref`, `read_head`, `delete_tag`), the index (`load_index`,
`save_index`), integrity (`verify_checksum`), cleanup
(`garbage_collect_blobs`), upgrading the older flat `{tag}.yaml` layout
(`migrate_v1_to_v2`, run automatically by `load_index`) and listing
(`list_pipes`). Errors raise `store.StoreError`. The record types
(`Index`, `TagRecord`, `HeadRef`, `HeadKind`) are in `pipekit.models`.

### Hub client

`hubclient.HubClient(base_url, api_key)` offers `get_pipe`, `create_pipe`,
`get_tag`, `download_tag`, `download_by_digest` and `push`. `get_pipe` and
`get_tag` return `None` for a 404; other failures raise
`hubclient.HubError`.

### Device login and credentials

`auth.AuthClient(base_url)` offers `initiate_device_auth`,
`poll_device_auth_status`, `validate` and `logout`.
`auth.poll_for_authorization(client, device_code, interval, expires_in)`
polls until the device is authorized and raises `auth.AuthError` if it is
denied or the time runs out. `auth.collect_device_info()` describes this
machine. Credentials are kept with `auth.save_credentials`,
`auth.load_credentials` (returns `None` when there are none) and
`auth.delete_credentials`.

### Validation helpers

```python
from pipekit import helpers

helpers.valid_owner("alice")                        # True
helpers.valid_owner("Alice")                        # False
helpers.parse_var_overrides(["DSN=host=db user=admin"])
# {"DSN": "host=db user=admin"}
```

Owner names are 4 to 30 characters of lowercase letters, digits, hyphens
and dots, and may not start with a hyphen or a dot. `helpers.valid_tag`
raises `helpers.UsageError` with the reason a tag is rejected.

### Rotation limits

`config.parse_rotate_env(env_name, default)` reads an integer limit from
the environment. Unset or empty gives the default, `0` disables rotation,
and a negative or non-numeric value falls back to the default with a
warning.

## What pipekit does not do

- It does not read pipeline YAML files or run pipelines; there is no
  command to run, create, lint, inspect, list or remove a pipeline, and
  nothing writes run state or logs.
- The command line has no `login`, `pull`, `push`, `tag`, `switch`, `mv`
  or `alias` commands. The device-login flow, the hub client and the hub
  store are available as library functions only.