# tkresults

A small library of pieces for storing and reporting the results of
pipeline and task runs. It uses only the standard library.

## What is in it

- `tkresults.logwriter`: `BufferedLog` splits a stream of log bytes
  into chunks of a fixed size and hands each chunk to a sender's
  `send` method as a `Log` or `HttpBody` message. Build one with
  `new_buffered_writer` or `new_buffered_http_writer`; a size below 1
  means the default of 64 KiB. `write` returns the number of bytes
  given, and `flush()` sends whatever is left in the buffer.
- `tkresults.convert`: turns `TaskRun` and `PipelineRun` objects (or
  plain mappings) into `AnyMessage` payloads with `to_proto`.
  `type_name` and `infer_gvk` give an object's type as a
  `GroupVersionKind`, and `status` maps a run's `Succeeded`
  `Condition` to a `RecordStatus`.
- `tkresults.format`: `print_proto` writes a `ListResultsResponse` or
  `ListRecordsResponse` as an aligned table (`tab`), and any of the
  `Result`, `Record` and listing messages as text proto (`textproto`)
  or JSON (`json`). Any other format raises `ValueError`.
- `tkresults.flags`: `add_list_flags` adds `--filter`, `--limit`,
  `--page` and `--output` to an `argparse` parser, and `add_get_flags`
  adds `--output`. `ListOptions.from_namespace` and
  `GetOptions.from_namespace` collect the parsed values.
- `tkresults.metrics`: `PipelineRunRecorder` and `TaskRunRecorder`
  record how many runs were deleted and how long after completion or
  failure. The values go into an in-memory `MetricsRegistry`, whose
  views are set up from a `MetricsConfig` by
  `register_pipelinerun_views` and `register_taskrun_views`, or by the
  callbacks from `pipelinerun_metrics_on_store` and
  `taskrun_metrics_on_store`. Read them back with
  `MetricsRegistry.last_value` and `MetricsRegistry.count`.
- `tkresults.retention`: an `Agent` that runs its `job` on a
  `CronSchedule` (five fields, `@daily`-style descriptors or
  `@every <duration>`) and deletes rows from the `records` and
  `results` tables of an `sqlite3` connection whose `updated_time`
  is older than the `RetentionPolicy` allows. `agent_on_store` returns
  a callback that applies a new policy and restarts the schedule.
- `tkresults.client`: a `Factory` built from a `ClientConfig` that
  works out the bearer token (the configured one, else one from a
  token requester for the `ServiceAccount`) and a TLS context trusting
  the system roots plus the file in `SSLConfig.roots_file_path`.
  `pick_free_port` finds an unused local TCP port.

## Example

```python
from tkresults.logwriter import new_buffered_writer


class Collector:
    def __init__(self):
        self.chunks = []

    def send(self, message):
        self.chunks.append(message.data)


collector = Collector()
writer = new_buffered_writer(collector, "default/results/run", 4)
writer.write(b"Testing!")
writer.flush()
assert b"".join(collector.chunks) == b"Testing!"
```

## What it does not do

- There is no command-line program; the flag helpers only add options
  to a parser you build.
- It does not connect to a results API server or serve one: `Factory`
  prepares a token and a TLS context, but opens no connection, and
  there is no port forwarding.
- It does not create or migrate a database. The retention agent only
  deletes from `records` and `results` tables that already exist.
- Metrics stay in memory in a `MetricsRegistry`; nothing exports them.

## Running the tests

```
pip install -e ".[test]"
pytest
```