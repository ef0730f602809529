"""Test bootstrap for cuke-importer."""

from __future__ import annotations

import json
import sys
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Any

import pytest

APP_ROOT = Path(__file__).resolve().parents[1]
if str(APP_ROOT) not in sys.path:
    sys.path.insert(0, str(APP_ROOT))

from cuke_importer.client import FinishLaunchResponse, PortalClientError  # noqa: E402


class RecordingClient:
    """In-memory reporting client recording every call in order.

    Each recorded call carries the generated ``id`` next to its arguments.
    """

    def __init__(self, finish_launch_failures: int = 0) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.attachments: dict[str, bytes] = {}
        self.closed = False
        self.finish_launch_failures = finish_launch_failures
        self._lock = threading.Lock()
        self._counter = 0

    def __enter__(self) -> "RecordingClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.closed = True

    def _record(self, name: str, kwargs: dict[str, Any]) -> str:
        with self._lock:
            self._counter += 1
            call_id = f"{name}-{self._counter}"
            self.calls.append((name, dict(kwargs, id=call_id)))
            return call_id

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def of(self, name: str) -> list[dict[str, Any]]:
        return [kwargs for call, kwargs in self.calls if call == name]

    def item_named(self, name: str) -> dict[str, Any]:
        matches = [kwargs for kwargs in self.of("start_item") if kwargs["name"] == name]
        assert len(matches) == 1, f"expected one item named {name!r}, got {len(matches)}"
        return matches[0]

    def finish_of(self, item_id: str) -> dict[str, Any]:
        matches = [kwargs for kwargs in self.of("finish_item") if kwargs["item_id"] == item_id]
        assert len(matches) == 1, f"expected one finish for {item_id!r}, got {len(matches)}"
        return matches[0]

    def children_of(self, parent_id: str) -> list[dict[str, Any]]:
        return [kwargs for kwargs in self.of("start_item") if kwargs["parent_id"] == parent_id]

    def start_launch(self, **kwargs: Any) -> str:
        return self._record("start_launch", kwargs)

    def finish_launch(self, **kwargs: Any) -> FinishLaunchResponse:
        self._record("finish_launch", kwargs)
        with self._lock:
            if self.finish_launch_failures > 0:
                self.finish_launch_failures -= 1
                raise PortalClientError(None, "connection reset")
        launch_id = kwargs["launch_id"]
        return FinishLaunchResponse(id=launch_id, number=1, link=f"http://portal/ui/launches/{launch_id}")

    def start_item(self, **kwargs: Any) -> str:
        return self._record("start_item", kwargs)

    def finish_item(self, **kwargs: Any) -> None:
        self._record("finish_item", kwargs)

    def add_log(self, **kwargs: Any) -> None:
        self._record("add_log", kwargs)

    def add_file_attachment(self, **kwargs: Any) -> None:
        call_id = self._record("add_file_attachment", kwargs)
        content = Path(kwargs["file_path"]).read_bytes()
        with self._lock:
            self.attachments[call_id] = content


@pytest.fixture()
def recording_client() -> RecordingClient:
    return RecordingClient()


class FakePortal:
    """Fake portal answering from a queue of (status, headers, body)."""

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []
        self.responses: list[tuple[int, dict[str, str], bytes]] = []
        portal = self

        class Handler(BaseHTTPRequestHandler):
            def _handle(self) -> None:
                length = int(self.headers.get("Content-Length") or 0)
                portal.requests.append(
                    {
                        "method": self.command,
                        "path": self.path,
                        "headers": dict(self.headers),
                        "body": self.rfile.read(length),
                    }
                )
                if portal.responses:
                    status, headers, body = portal.responses.pop(0)
                else:
                    status, headers, body = 200, {"Content-Type": "application/json"}, b'{"id": "generated"}'
                self.send_response(status)
                for name, value in headers.items():
                    self.send_header(name, value)
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            do_GET = do_POST = do_PUT = _handle  # noqa: N815 - HTTP handler requirement

            def log_message(self, format: str, *args: object) -> None:  # pragma: no cover - silence logs
                return

        self.server = HTTPServer(("127.0.0.1", 0), Handler)
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)

    @property
    def endpoint(self) -> str:
        return f"http://127.0.0.1:{self.server.server_address[1]}"

    def reply(self, status: int, body: bytes = b"", content_type: str = "application/json", **headers: str) -> None:
        self.responses.append((status, {"Content-Type": content_type, **headers}, body))

    def json_body(self, index: int = -1) -> Any:
        return json.loads(self.requests[index]["body"])


@pytest.fixture()
def portal():
    fake = FakePortal()
    fake.thread.start()
    yield fake
    fake.server.shutdown()
    fake.server.server_close()
