# netcheckop

netcheckop runs periodic TCP connectivity checks from a pod to target endpoints.
It records each result as a success or failure log entry, opens and closes
outages, and sets a `Reachable` condition on the check. It also merges desired
cluster objects into existing ones before an update, and includes a small HTTP
server that checks can connect to.

It has no runtime dependencies outside the standard library.

## Installation

```
pip install .
```

## Modules

- `netcheckop.connectivity`: the data classes `ConnectivityCheck`, `CheckSpec`,
  `CheckStatus`, `LogEntry`, `OutageEntry` and `CheckCondition`, and helpers that
  edit a status:
  - `add_success_log_entry` and `add_failure_log_entry` keep logs newest first and
    trim them to 10 entries.
  - `set_condition` adds or updates a condition. It resets the transition time only
    when the status changes.
  - `update_status(client, name, *updates)` applies the updates. It writes only if
    the status changed, and retries a few times on `ConflictError`.
- `netcheckop.templates`: `new_check_template` builds a check named
  `$(SOURCE)-to-$(TARGET)`. The options `with_source`, `with_target` and
  `with_tls_client_cert` fill in the name and the client-certificate secret.
- `netcheckop.trace`: `dial_tcp(address, timeout)` opens a TCP connection and
  records lookup and connect timings in a `LatencyInfo`. A failure raises
  `DialError`, which wraps a `DNSError` when the host lookup failed;
  `is_dns_error` tells the two cases apart.
- `netcheckop.checker`:
  - `manage_status_logs` turns a check result into status updates.
  - `manage_status_outage` opens, extends and closes outages. An outage keeps at
    most 5 start and 5 end log entries; a status keeps at most 20 outages.
  - `manage_status_conditions` sets `Reachable`.
  - `ConnectionChecker` repeats the check every minute (by default) until
    `stop()` is called. After the TCP connect it attempts a TLS handshake and
    ignores any handshake error.
- `netcheckop.checkcontroller`: `PodNetworkConnectivityCheckController.sync()` starts
  a `ConnectionChecker` thread for each check whose source pod is this pod. It stops
  the checkers for checks that are gone. Client certificates are read from the
  secret named by the check and written to a private temporary directory.
- `netcheckop.updates`: `UpdatesManager` holds status updates back and releases them
  in timestamp order. `process(flush)` hands them to the processor once more than
  20 are ready, or all of them when `flush` is true.
- `netcheckop.backoff`: `BackoffEventRecorder` wraps another recorder. It stops
  passing events on when they arrive too fast, by default more than 30 in
  30 seconds or 600 in 10 minutes. It then waits out a backoff of 30 minutes and
  sends one summary event per type and reason.
- `netcheckop.eventrecorder`: `LoggingRecorder` writes events to the log;
  `InMemoryRecorder` keeps them as `RecordedEvent` values.
- `netcheckop.metrics`: in-process `CounterVec` and `GaugeVec` metrics.
  `register_metrics()` creates them once per process. `MetricsContext.update` counts
  check outcomes and records latencies in nanoseconds.
- `netcheckop.apply`:
  - `merge_object_for_update(current, desired)` changes the desired object in place.
    It copies the read-only metadata from the live object. It merges labels and
    annotations, with the desired object winning. It keeps a Deployment's revision
    annotation. For a Service it keeps `clusterIP`, `clusterIPs` and `ipFamilies`,
    and also `ipFamilyPolicy` when the desired object sets none. For a
    ServiceAccount it keeps `secrets` and `imagePullSecrets`.
  - `is_object_supported` raises `ValueError` for a ServiceAccount that carries
    secrets.
  - `apply_object(client, obj)` creates or updates through a client you supply. The
    client has `get(api_version, kind, namespace, name)` raising `NotFoundError`,
    `create(obj)` and `update(obj)`.
- `netcheckop.egress`: `allowed_destinations_config_json` encodes `L4RedirectRule`
  values as a JSON list. `is_valid_cidr` and `is_valid_ip_address` validate addresses.

## Check target server

```
netcheckop-check-target
```

This serves HTTP on port 8080 on all interfaces. Every GET request gets a greeting
that names the client address, the address reached and the node name from
`K8S_NODE_NAME`:

```
Hello, 10.128.0.5. You have reached 10.129.0.7 on worker-0
```

## Examples

```python
from netcheckop.templates import new_check_template, with_source, with_target

check = new_check_template("10.0.0.1:6443", "openshift-network-diagnostics",
                           with_target("kubernetes-apiserver-endpoint-master0"))
with_source("network-check-source-worker0")(check)
print(check.name)
# network-check-source-worker0-to-kubernetes-apiserver-endpoint-master0
```

```python
from netcheckop.apply import merge_object_for_update

live = {"apiVersion": "v1", "kind": "Service", "metadata": {"name": "web"},
        "spec": {"clusterIP": "10.0.0.10"}}
desired = {"apiVersion": "v1", "kind": "Service", "metadata": {"name": "web"},
           "spec": {"clusterIP": ""}}
merge_object_for_update(live, desired)
print(desired["spec"]["clusterIP"])
# 10.0.0.10
```

## What it does not do

- It does not talk to a cluster API server itself. Check listers, status clients,
  secret listers and object clients are objects you pass in.
- It has no command that runs the connectivity checks. You build a
  `PodNetworkConnectivityCheckController` and call `sync()` yourself.
- It does not decide which checks should exist.
- Metrics are kept in memory only and are not served over HTTP.
- The egress helpers only build and validate configuration. They do not render
  or apply any egress router objects.

## Running the tests

```
pip install .[test]
pytest
```