"""Access control loop: reads cards, registers new ones and logs every access."""

from __future__ import annotations

import argparse
import contextlib
import logging
import sys
import threading
import time
from typing import Callable, Protocol

from .database import AccessLevel, CardDatabase, DatabaseError, KeyValueStore
from .rc522 import RC522Error
from .webapi import WEB_SERVER_PORT, RfidWebApp, make_server

logger = logging.getLogger(__name__)

ACTION_GRANTED = "ACCESS_GRANTED"
ACTION_ADDED = "CARD_ADDED"
ACTION_ADD_FAILED = "ADD_FAILED"

READ_ATTEMPTS = 3
POLL_INTERVAL = 0.1
SETTLE_DELAY = 0.05
RETRY_DELAY = 0.05
REMOVAL_POLL = 0.1
HEARTBEAT_EVERY = 500
MONITOR_PERIOD = 30.0
MONITOR_EVERY = 6


class CardReader(Protocol):
    """What the controller needs from a card reader."""

    def card_present(self) -> bool: ...

    def read_card_uid(self) -> str: ...


class AccessController:
    """Grants access to known cards and enrols unknown ones automatically."""

    def __init__(
        self,
        database: CardDatabase,
        web: RfidWebApp | None = None,
        reader: CardReader | None = None,
        sleep: Callable[[float], object] = time.sleep,
    ) -> None:
        self.database = database
        self.web = web
        self.reader = reader
        self._sleep = sleep
        self._loops = 0

    def handle_card(self, uid: str) -> str:
        """Process a scanned UID and return the final action logged for it."""
        logger.info("Card detected: %s", uid)
        if self.web is not None:
            self.web.set_last_card(uid)

        try:
            card = self.database.get_card(uid)
        except DatabaseError:
            card = None

        if card is not None:
            logger.info("Access granted for: %s (%s)", card.name, uid)
            with contextlib.suppress(DatabaseError):
                self.database.update_card_access(uid)
            self.database.add_access_log(uid, ACTION_GRANTED)
            return ACTION_GRANTED

        default_name = f"Cartao_{uid}"
        logger.info("New card detected: %s - adding it", uid)
        try:
            self.database.add_card(uid, default_name, AccessLevel.USER)
        except DatabaseError:
            logger.warning("Failed to add card: %s", uid)
            self.database.add_access_log(uid, ACTION_ADD_FAILED)
            return ACTION_ADD_FAILED

        self.database.add_access_log(uid, ACTION_ADDED)
        with contextlib.suppress(DatabaseError):
            self.database.update_card_access(uid)
        self.database.add_access_log(uid, ACTION_GRANTED)
        logger.info("Access granted for new card: %s", uid)
        return ACTION_GRANTED

    def _read_uid(self) -> str | None:
        assert self.reader is not None
        for attempt in range(1, READ_ATTEMPTS + 1):
            try:
                return self.reader.read_card_uid()
            except RC522Error:
                logger.warning("Read attempt %d/%d failed", attempt, READ_ATTEMPTS)
                self._sleep(RETRY_DELAY)
        return None

    def poll_once(self) -> str | None:
        """Check the reader once; return the UID handled, or None.

        Raises RuntimeError when no reader is attached.
        """
        if self.reader is None:
            raise RuntimeError("no card reader attached")
        if not self.reader.card_present():
            return None

        self._sleep(SETTLE_DELAY)
        uid = self._read_uid()
        if uid is None:
            logger.warning("Failed to read UID of detected card")
            return None

        self.handle_card(uid)
        # Wait for the card to leave the field to avoid duplicate reads.
        while self.reader.card_present():
            self._sleep(REMOVAL_POLL)
        return uid

    def run(self, stop_event: threading.Event) -> None:
        """Poll the reader until ``stop_event`` is set."""
        logger.info("RFID loop started")
        while not stop_event.is_set():
            if self._loops % HEARTBEAT_EVERY == 0:
                logger.info("RFID loop active - checking for cards")
            self._loops += 1
            self.poll_once()
            self._sleep(POLL_INTERVAL)

    def monitor_stats(self) -> tuple[int, int]:
        """Log and return (total cards, total accesses)."""
        total_cards, total_accesses = self.database.get_stats()
        logger.info("System active - cards: %d, accesses: %d", total_cards, total_accesses)
        return total_cards, total_accesses

    def _monitor_loop(self, stop_event: threading.Event) -> None:
        counter = 0
        while not stop_event.wait(MONITOR_PERIOD):
            counter += 1
            if counter % MONITOR_EVERY == 0:
                with contextlib.suppress(DatabaseError):
                    self.monitor_stats()


def _stdin_cards(controller: AccessController, stop_event: threading.Event) -> None:
    for line in sys.stdin:
        if stop_event.is_set():
            break
        uid = line.strip()
        if uid:
            controller.handle_card(uid)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="rfidvault", description="RFID card database")
    parser.add_argument("--db", default="rfid_storage.json", help="storage file")
    parser.add_argument("--host", default="0.0.0.0", help="address to listen on")
    parser.add_argument("--port", type=int, default=WEB_SERVER_PORT, help="web port")
    parser.add_argument(
        "--stdin",
        action="store_true",
        help="read scanned card UIDs from standard input, one per line",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Start the database, the web interface and the monitoring loop."""
    args = _parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    database = CardDatabase(KeyValueStore(args.db))
    web = RfidWebApp(database)
    controller = AccessController(database, web)
    stop_event = threading.Event()

    threading.Thread(
        target=controller._monitor_loop, args=(stop_event,), daemon=True
    ).start()
    if args.stdin:
        threading.Thread(
            target=_stdin_cards, args=(controller, stop_event), daemon=True
        ).start()

    server = make_server(web, args.host, args.port)
    logger.info("Web interface at http://%s:%d", args.host, server.server_port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        stop_event.set()
        server.server_close()
        database.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())