# rfidvault

A small access-control registry for RFID cards. It records every card it
has seen, how often each card was presented and when, and keeps a rolling
log of access events. The package has four modules:

- `rfidvault.database`: cards and an access log on top of a simple
  key-value store that is saved as a JSON file,
- `rfidvault.rc522`: a driver for the RC522 reader chip. It talks to the
  chip through an SPI transport that you supply,
- `rfidvault.webapi`: a WSGI application that serves a JSON API over the
  database,
- `rfidvault.controller`: ties the reader, the database and the web API
  together. It also provides the `rfidvault` command.

It has no dependencies outside the standard library.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## The card database

`KeyValueStore(path)` holds keyed values in memory. `commit()` writes them
atomically to `path` as JSON. When the file exists, its contents are
loaded on construction. With `path=None` the store lives in memory only.
`CardDatabase` keeps cards and access logs in such a store.

```python
from rfidvault.database import AccessLevel, CardDatabase, KeyValueStore

db = CardDatabase(KeyValueStore("cards.json"))

db.add_card("DE:AD:BE:EF", "Front desk", AccessLevel.USER)
db.update_card_access("DE:AD:BE:EF")
db.add_access_log("DE:AD:BE:EF", "ACCESS_GRANTED")

card = db.get_card("DE:AD:BE:EF")
print(card.name, card.access_count)

for record in db.get_all_cards():
    print(record.uid, record.name)

print(db.get_stats())   # (cards ever added, log entries ever written)
db.close()
```

- `add_card` returns the new `CardRecord`.
  - It raises `DuplicateCardError` when the UID is already registered.
  - It cuts UIDs to 31 characters and names to 63.
- `get_card` and `update_card_access` raise `CardNotFoundError` for an
  unknown UID.
- `delete_card` removes a card. A missing card is not an error.
- All of these errors derive from `DatabaseError`. After `close()`, every
  operation raises `DatabaseError`.
- `get_stats()` counts every card ever added, so deleting a card does not
  lower the count.

The access log is a ring buffer that keeps the latest 50 entries.
`get_access_logs(limit)` returns them in storage-slot order. When `limit`
is positive, it returns at most `limit` entries. Actions are cut to 15
characters.

Access levels are `AccessLevel.USER`, `AccessLevel.ADMIN` and
`AccessLevel.MASTER`.

## The RC522 reader

`RC522` drives the reader chip through an `SpiTransport`. This is an
abstract class whose `transfer(data)` method sends bytes and returns the
bytes received in the same exchange. Subclass it for your hardware, then:

```python
import time
from rfidvault.rc522 import RC522, NoCardError

reader = RC522(my_transport, time.sleep)
reader.init()
reader.test_communication()   # returns the version register, if readable

if reader.card_present():
    try:
        print(reader.read_card_uid())   # e.g. "DE:AD:BE:EF"
    except NoCardError:
        print("card left the field")
```

- `read_card()` returns a `Card` with the 4-byte UID.
- `read_card_uid()` returns that UID formatted by `format_uid`, as
  upper-case hex pairs joined by colons.
- Failures are raised as subclasses of `RC522Error`: `CardTimeoutError`,
  `NoCardError` and `CrcError`.
- `Register` and `Command` list the chip's register addresses and
  commands.

## The web API

`RfidWebApp` is a WSGI application. `make_server(app, host, port)` returns
a `wsgiref` server for it. The default port is 80.

```python
from rfidvault.webapi import RfidWebApp, make_server

app = RfidWebApp(db)
make_server(app, "0.0.0.0", 8080).serve_forever()
```

Every endpoint answers with JSON that carries a `success` flag. Messages
are in Portuguese.

| Method | Path                | Purpose                                               |
|--------|---------------------|-------------------------------------------------------|
| GET    | `/api/stats`        | `total_cards` and `total_accesses`                    |
| GET    | `/api/cards`        | every registered card                                 |
| POST   | `/api/cards`        | add a card from JSON `uid`, `name`, `access_level`    |
| DELETE | `/api/cards/<uid>`  | remove a card (the UID may be percent-encoded)        |
| GET    | `/api/logs`         | up to 50 access log entries                           |
| GET    | `/api/last_card`    | the last card scanned, with its details, if known     |
| GET    | `/api/scan`         | the last card scanned, cleared once it is returned    |

The app answers other errors with plain-text status responses:

- an unknown path returns 404,
- a wrong method returns 405,
- an empty POST body returns 500.

POST bodies are read up to 511 bytes. The same operations can be called
directly as methods: `stats()`, `cards()`, `add_card(body)`,
`delete_card(path)`, `logs()`, `scan()` and `last_card()`. Report a
scanned card to the app with `set_last_card(uid)`. `url_decode` is the
percent-decoder used for UIDs in paths.

## The controller

`AccessController(database, web, reader, sleep)` handles scanned cards:

- A known card gets its access counted and an `ACCESS_GRANTED` log entry.
- An unknown card is registered as a user-level card named
  `Cartao_<uid>`. This logs `CARD_ADDED`, then the card is granted access.
- If registration fails, it logs `ADD_FAILED`.

Its methods:

- `handle_card(uid)` processes one UID and returns the final action.
- `poll_once()` checks the reader once. It makes up to three read
  attempts and waits for the card to leave the field.
- `run(stop_event)` polls until the event is set.
- `monitor_stats()` logs and returns the totals.

### The `rfidvault` command

```
rfidvault --db rfid_storage.json --host 0.0.0.0 --port 8080 --stdin
```

This opens the database file and serves the web API. It logs statistics
every three minutes. With `--stdin`, it treats each non-empty line of
standard input as a scanned card UID. The default port is 80, which
usually needs elevated privileges.

## What this package does not do

- **Hardware access:** there is no SPI transport for real hardware. The
  `rfidvault` command does not drive an RC522 reader; cards reach it only
  through `--stdin` or through `AccessController.handle_card`.
- **Web pages:** the web app serves only the JSON API, not an HTML
  interface. `/` answers 404.
- **Network and clock:** there is no network or clock setup; the host
  system provides both.