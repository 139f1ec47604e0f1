"""JSON web interface over the card database, served as a WSGI application."""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Callable, Iterable
from wsgiref.simple_server import WSGIServer, make_server as _wsgi_make_server

from .database import (
    MAX_UID_LENGTH,
    AccessLevel,
    CardDatabase,
    DatabaseError,
)

logger = logging.getLogger(__name__)

WEB_SERVER_PORT = 80
MAX_BODY_SIZE = 511
MAX_PATH_UID = 63
LOG_LIMIT = 50
CARDS_PREFIX = "/api/cards/"

_HEX_DIGITS = "0123456789abcdefABCDEF"

_STATUS_TEXT = {
    200: "200 OK",
    404: "404 Not Found",
    405: "405 Method Not Allowed",
    500: "500 Internal Server Error",
}


def _hex_prefix_value(text: str) -> int:
    """Value of the leading hex digits of ``text``, 0 when there are none."""
    digits = ""
    for char in text:
        if char not in _HEX_DIGITS:
            break
        digits += char
    return int(digits, 16) if digits else 0


def url_decode(src: str) -> str:
    """Decode %XX escapes; a '%' without two following characters stays as is.

    The result is at most 63 characters long.
    """
    out: list[str] = []
    chars = iter(enumerate(src))
    for index, char in chars:
        if len(out) >= MAX_PATH_UID:
            break
        if char == "%" and index + 2 < len(src):
            out.append(chr(_hex_prefix_value(src[index + 1 : index + 3]) & 0xFF))
            next(chars)
            next(chars)
        else:
            out.append(char)
    return "".join(out)


def _get_item(obj: dict[str, Any], key: str) -> Any:
    """Case-insensitive object lookup returning the first matching member."""
    if key in obj:
        return obj[key]
    lowered = key.lower()
    for name, value in obj.items():
        if name.lower() == lowered:
            return value
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class RfidWebApp:
    """WSGI application exposing cards, logs and the last scanned card."""

    def __init__(self, database: CardDatabase) -> None:
        self.database = database
        self._lock = threading.Lock()
        self._last_uid = ""
        self._new_card = False
        self._routes: dict[str, dict[str, Callable[..., dict[str, Any]]]] = {
            "/api/stats": {"GET": lambda env: self.stats()},
            "/api/cards": {
                "GET": lambda env: self.cards(),
                "POST": self._handle_add,
            },
            "/api/logs": {"GET": lambda env: self.logs()},
            "/api/last_card": {"GET": lambda env: self.last_card()},
            "/api/scan": {"GET": lambda env: self.scan()},
        }

    # -- scanned card ----------------------------------------------------

    def set_last_card(self, uid: str | None) -> None:
        """Remember ``uid`` as the most recently scanned card."""
        if uid is None:
            logger.warning("Null UID received for web")
            return
        with self._lock:
            self._last_uid = uid[: MAX_UID_LENGTH - 1]
            self._new_card = True
        logger.info("Card stored for web: %s", uid)

    # -- API endpoints ---------------------------------------------------

    def stats(self) -> dict[str, Any]:
        """Totals of cards and accesses."""
        try:
            total_cards, total_accesses = self.database.get_stats()
        except DatabaseError:
            return {"success": False, "message": "Erro ao obter estatísticas"}
        return {
            "total_cards": total_cards,
            "total_accesses": total_accesses,
            "success": True,
        }

    def cards(self) -> dict[str, Any]:
        """All stored cards."""
        try:
            records = self.database.get_all_cards()
        except DatabaseError as exc:
            logger.warning("Failed to list cards: %s", exc)
            return {"success": False, "message": "Erro ao obter cartões"}
        return {
            "cards": [
                {
                    "uid": card.uid,
                    "name": card.name,
                    "access_level": card.access_level,
                    "first_seen": card.first_seen,
                    "last_seen": card.last_seen,
                    "access_count": card.access_count,
                }
                for card in records
            ],
            "success": True,
        }

    def add_card(self, body: bytes | str) -> dict[str, Any]:
        """Register a card from a JSON body with uid, name and access_level.

        Raises ValueError when the body is empty.
        """
        if isinstance(body, str):
            body = body.encode("utf-8")
        body = body[:MAX_BODY_SIZE]
        if not body:
            raise ValueError("empty request body")
        text = body.decode("utf-8", errors="replace")
        try:
            data, _ = json.JSONDecoder().raw_decode(text.lstrip())
        except json.JSONDecodeError:
            return {"success": False, "message": "JSON inválido"}

        fields = (
            [_get_item(data, key) for key in ("uid", "name", "access_level")]
            if isinstance(data, dict)
            else [None, None, None]
        )
        uid, name, level = fields
        if not (isinstance(uid, str) and isinstance(name, str) and _is_number(level)):
            return {"success": False, "message": "Dados inválidos"}

        try:
            self.database.add_card(uid, name, int(level) & 0xFF)
        except DatabaseError:
            return {
                "success": False,
                "message": "Erro ao adicionar cartão no banco de dados",
            }
        logger.info("Card added via API: %s - %s", uid, name)
        return {"success": True, "message": "Cartão adicionado com sucesso"}

    def delete_card(self, path: str) -> dict[str, Any]:
        """Delete the card named by the last path segment.

        Raises LookupError when the path ends without a UID.
        """
        _, slash, segment = path.rpartition("/")
        if not slash or not segment:
            raise LookupError(path)
        uid = url_decode(segment[:MAX_PATH_UID])
        try:
            self.database.delete_card(uid)
        except DatabaseError:
            return {"success": False, "message": "Erro ao excluir cartão"}
        logger.info("Card deleted via API: %s", uid)
        return {"success": True, "message": "Cartão excluído com sucesso"}

    def logs(self) -> dict[str, Any]:
        """The stored access log entries."""
        try:
            entries = self.database.get_access_logs(LOG_LIMIT)
        except DatabaseError:
            return {"success": False, "message": "Erro ao obter logs"}
        return {
            "logs": [
                {"uid": e.uid, "action": e.action, "timestamp": e.timestamp}
                for e in entries
            ],
            "success": True,
        }

    def scan(self) -> dict[str, Any]:
        """Hand out the last scanned card once, then forget it."""
        with self._lock:
            if self._new_card and self._last_uid:
                uid = self._last_uid
                self._new_card = False
                self._last_uid = ""
                return {"success": True, "uid": uid, "message": "Cartão detectado"}
        return {"success": False, "message": "Nenhum cartão detectado"}

    def last_card(self) -> dict[str, Any]:
        """Details of the last scanned card, without consuming it."""
        with self._lock:
            uid = self._last_uid if self._new_card else ""
        if not uid:
            return {"success": False, "message": "Nenhum cartão escaneado"}
        result: dict[str, Any] = {"uid": uid, "success": True}
        try:
            card = self.database.get_card(uid)
        except DatabaseError:
            result.update(
                name="Cartão novo",
                access_level=int(AccessLevel.USER),
                access_count=0,
            )
        else:
            result.update(
                name=card.name,
                access_level=card.access_level,
                access_count=card.access_count,
            )
        return result

    # -- WSGI ------------------------------------------------------------

    def _handle_add(self, environ: dict[str, Any]) -> dict[str, Any]:
        try:
            length = int(environ.get("CONTENT_LENGTH") or 0)
        except ValueError:
            length = 0
        length = min(length, MAX_BODY_SIZE)
        body = environ["wsgi.input"].read(length) if length > 0 else b""
        return self.add_card(body)

    def __call__(
        self,
        environ: dict[str, Any],
        start_response: Callable[..., Any],
    ) -> Iterable[bytes]:
        method = environ.get("REQUEST_METHOD", "GET").upper()
        path = environ.get("PATH_INFO", "") or "/"
        query = environ.get("QUERY_STRING", "")
        uri = f"{path}?{query}" if query else path

        try:
            if path.startswith(CARDS_PREFIX):
                if method != "DELETE":
                    return self._send_status(start_response, 405)
                payload = self.delete_card(uri)
            else:
                handlers = self._routes.get(path)
                if handlers is None:
                    return self._send_status(start_response, 404)
                handler = handlers.get(method)
                if handler is None:
                    return self._send_status(start_response, 405)
                payload = handler(environ)
        except LookupError:
            return self._send_status(start_response, 404)
        except ValueError:
            return self._send_status(start_response, 500)

        body = json.dumps(payload, indent="\t", ensure_ascii=False).encode("utf-8")
        start_response(
            _STATUS_TEXT[200],
            [
                ("Content-Type", "application/json"),
                ("Content-Length", str(len(body))),
            ],
        )
        return [body]

    @staticmethod
    def _send_status(start_response: Callable[..., Any], code: int) -> list[bytes]:
        status = _STATUS_TEXT[code]
        body = status.encode("ascii")
        start_response(
            status,
            [("Content-Type", "text/plain"), ("Content-Length", str(len(body)))],
        )
        return [body]


def make_server(
    app: RfidWebApp,
    host: str = "0.0.0.0",
    port: int = WEB_SERVER_PORT,
) -> WSGIServer:
    """Create a WSGI server for ``app``; call serve_forever() to run it."""
    logger.info("Starting web server on port %d", port)
    return _wsgi_make_server(host, port, app)