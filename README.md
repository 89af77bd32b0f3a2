# thermofridge

A small service that sits between a temperature-controlled fridge and the
rest of a home automation setup.

- An HTTP API reads and changes the **target state** (mode and target
  temperature) and reads the **current state** (operating state and measured
  temperature).
- Every accepted target-state change is published over MQTT to
  `thermofridge/set/target-state`.
- Current-state reports from the device arrive on `thermofridge/current-state`.
  They are validated and stored.
- State is kept in a small JSON file. Metrics are exposed in the Prometheus
  text format.

## Installation

```
pip install .
```

## Running

```
thermofridge
```

On start the service opens (or creates) the state file and connects to the MQTT
broker. It waits until the broker accepts the connection, so a broker must be
reachable. It then serves HTTP and listens for device reports. SIGINT (Ctrl+C)
or SIGTERM stops it. It then stops the HTTP server, waiting up to 5 seconds,
closes the broker connection and closes the state file.

### Configuration

Settings come from environment variables. A `.env` file in the working
directory is read too, when there is one. Real environment variables take
precedence over the `.env` file, and variables set to an empty value fall back
to the default.

| Variable                     | Default             | Notes                                         |
|------------------------------|---------------------|-----------------------------------------------|
| `LOG_LEVEL`                  | `debug`             | `debug`, `info`, `warn` or `error`            |
| `LOG_FORMAT`                 | `text`              | `text` gives key=value lines, anything else JSON |
| `HOST`                       | `localhost`         | HTTP listen address                           |
| `PORT`                       | `8000`              | 0–65535                                       |
| `DATABASE_FILENAME`          | `./database.json`   | state file                                    |
| `DEFAULT_MODE`               | `OFF`               | used when the state file has no mode yet      |
| `DEFAULT_TARGET_TEMPERATURE` | `20`                | used when the state file has none yet         |
| `PUBSUB_HOST`                | `localhost`         | MQTT broker host                              |
| `PUBSUB_PORT`                | `1883`              | 0–65535                                       |
| `PUBSUB_CLIENT_ID`           | `thermofridge-api`  | MQTT client id                                |
| `PUBSUB_QOS`                 | `1`                 | QoS for publishing and subscribing            |

The service exits with status 1 if a variable cannot be parsed, or if the state
file or the broker connection cannot be set up.

## HTTP API

| Method | Path                       | Description                               |
|--------|----------------------------|-------------------------------------------|
| GET    | `/_healthz`                | Health check, returns `{"status":"OK"}`   |
| any    | `/metrics`                 | Metrics in the Prometheus text format     |
| GET    | `/api/v1/target-state`     | Stored mode and target temperature        |
| POST   | `/api/v1/target-state`     | Update mode and/or target temperature     |
| GET    | `/api/v1/current-state`    | Last reported operating state and reading |

A target state looks like this:

```json
{"mode": "COOL", "targetTemperature": 4}
```

`mode` is one of `OFF`, `HEAT`, `COOL` or `AUTO`. `targetTemperature` is an
integer from 0 to 25. Either field may be left out of a POST, and only the
fields that are given are changed. The response is the full stored target
state, which is also what gets published over MQTT.

The device reports its current state like this:

```json
{"operatingState": "COOLING", "currentTemperature": 5.25}
```

`operatingState` is one of `IDLE`, `HEATING` or `COOLING`. `currentTemperature`
is a number from -55 to 125 and is stored rounded to two decimals. Reports that
cannot be decoded or fall outside these rules are logged and discarded.
`GET /api/v1/current-state` answers 404 until both fields have been reported.

Errors come back as `{"error": "...", "statusCode": 400}`. For server errors
(5xx) the message shows only the status, such as
`"Internal Server Error: 500"`. Unknown paths answer 404 with
`404 page not found`, and a wrong method answers 405 with an `Allow` header.

### Metrics

`/metrics` exposes these series:

- `requests_handled{route_name,status_code}` and `requests_duration` for
  requests under `/api/v1`
- `events_processed{event_name,status}` (`OK` or `ERR`) and
  `events_duration{event_name}` for MQTT events
- `thermofridge_mode`: OFF=0, HEAT=1, COOL=2, AUTO=3
- `thermofridge_target_temperature`
- `thermofridge_operating_state`: IDLE=0, HEATING=1, COOLING=2
- `thermofridge_current_temperature`

The `thermofridge` command registers these series at start. When the package is
used as a library, call `thermofridge.metrics.register_collectors()` before
serving to get them on `/metrics`.

## Using it as a library

```python
from thermofridge.database import Database
from thermofridge.model import Mode, TargetState

with Database("state.json", {"mode": "OFF", "targetTemperature": "20"}) as db:
    state = TargetState(mode=Mode.COOL, target_temperature=4)
    state.validate()
    print(db.update_target_state(state).to_dict())
    # {'mode': 'COOL', 'targetTemperature': 4}
```

The modules you can use on their own:

- `thermofridge.model`: `TargetState`, `CurrentState`, `Mode`,
  `OperatingState`, with `validate()`, `to_dict()` and `from_dict()`.
  Invalid values raise `ValidationError`.
- `thermofridge.database`: `Database`, a JSON-file key/value store. It has
  `get_str`, `get_int`, `get_float`, `set`, `delete` and the
  fetch/update methods for target and current state. A missing key raises
  `thermofridge.errors.NotFoundError`, and a file or value problem raises
  `DatabaseError`.
- `thermofridge.pubsub`: `PubSub`, an MQTT v5 client with `connect`,
  `publish`, `subscribe`, `publish_target_state` and `close`. Failures raise
  `PubSubError`.
- `thermofridge.server`: `Server`, a WSGI application with `start(errors)` and
  `stop(timeout)`.
- `thermofridge.processor`: `Processor`, which subscribes the current-state
  handler.
- `thermofridge.app`: `create_app(config)` and `App.launch(stop_event)`, which
  runs the services until the event is set or a service fails.
- `thermofridge.config`: `load_config(environ, dotenv_path)`.
- `thermofridge.logsetup`: `init_logging(level, fmt, stream)`.

## What it does not do

The HTTP API has no authentication and serves plain HTTP only. The MQTT
connection has no TLS and no username or password. Put the service behind
something that provides these if you need them.

## Development

```
pip install -e ".[test]"
pytest
```