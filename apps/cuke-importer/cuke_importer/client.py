"""HTTP client for the ReportPortal v1 API."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Protocol

import requests
import structlog

LOGGER = structlog.get_logger("cuke_importer")

DEFAULT_CONNECT_TIMEOUT = 5.0
DEFAULT_READ_TIMEOUT = 30.0
REDIRECT_MESSAGE = "Redirection responses are not expected. Please check if server is running properly"
UNPARSEABLE_MESSAGE = "Failed to parse response as String"


class PortalClientError(RuntimeError):
    """Raised for every non-2xx response and for transport failures."""

    def __init__(
        self,
        status_code: int | None,
        message: str,
        *,
        error_code: int | None = None,
    ) -> None:
        super().__init__(f"[{status_code}] {message}" if status_code else message)
        self.status_code = status_code
        self.message = message
        self.error_code = error_code


@dataclass
class FinishLaunchResponse:
    id: str | None = None
    number: int | None = None
    link: str | None = None


class ReportingClient(Protocol):
    """Operations the importers need from the reporting service."""

    def start_launch(
        self,
        *,
        name: str,
        description: Optional[str],
        start_time: datetime,
        attributes: Optional[str],
        rerun_of: Optional[str],
        mode: str,
    ) -> str: ...

    def finish_launch(
        self,
        *,
        launch_id: str,
        end_time: datetime,
        status: Optional[str] = None,
    ) -> FinishLaunchResponse: ...

    def start_item(
        self,
        *,
        launch_id: str,
        parent_id: Optional[str],
        name: str,
        start_time: datetime,
        item_type: str,
        has_stats: Optional[bool] = None,
        code_ref: Optional[str] = None,
        attributes: Optional[str] = None,
        description: Optional[str] = None,
    ) -> str: ...

    def finish_item(self, *, launch_id: str, item_id: str, end_time: datetime, status: str) -> None: ...

    def add_log(self, *, launch_id: str, item_id: str, level: str, time: datetime, message: str) -> None: ...

    def add_file_attachment(
        self,
        *,
        launch_id: str,
        item_id: Optional[str],
        level: str,
        time: datetime,
        message: str,
        file_path: Path,
    ) -> None: ...


def parse_attributes(raw: Optional[str]) -> list[dict[str, str]]:
    """Parse ``key:value;value`` attribute strings into API attribute objects."""

    attributes: list[dict[str, str]] = []
    if not raw:
        return attributes
    for chunk in raw.split(";"):
        chunk = chunk.strip()
        if not chunk:
            continue
        if ":" in chunk:
            key, value = chunk.split(":", 1)
        else:
            key, value = "", chunk
        key, value = key.strip(), value.strip()
        if not value:
            continue
        attribute = {"value": value}
        if key:
            attribute["key"] = key
        attributes.append(attribute)
    return attributes


def format_time(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


class PortalClient:
    """Talks to one project of a ReportPortal instance.

    Pass a custom ``session`` in tests to intercept HTTP calls. Redirects
    are reported as errors instead of being followed.
    """

    def __init__(
        self,
        endpoint: str,
        project_name: str,
        api_key: str,
        *,
        session: requests.Session | None = None,
        timeout: tuple[float, float] = (DEFAULT_CONNECT_TIMEOUT, DEFAULT_READ_TIMEOUT),
    ) -> None:
        self._base_url = f"{endpoint.rstrip('/')}/api/v1/{project_name}"
        self._api_key = api_key
        self._session = session or requests.Session()
        self._timeout = timeout
        self._logger = LOGGER.bind(project=project_name)

    @classmethod
    def from_settings(cls, settings: Any) -> "PortalClient":
        portal = settings.portal
        return cls(portal.endpoint, portal.project_name, portal.api_key)

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "PortalClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def start_launch(
        self,
        *,
        name: str,
        description: Optional[str],
        start_time: datetime,
        attributes: Optional[str],
        rerun_of: Optional[str],
        mode: str,
    ) -> str:
        body: dict[str, Any] = {"name": name, "startTime": format_time(start_time), "mode": mode}
        if rerun_of and rerun_of.strip():
            body["rerun"] = True
            body["rerunOf"] = rerun_of.strip()
        if description is not None:
            body["description"] = description
        if attributes is not None:
            body["attributes"] = parse_attributes(attributes)
        payload = self._request("POST", "/launch", json_body=body)
        return str(payload["id"])

    def finish_launch(
        self,
        *,
        launch_id: str,
        end_time: datetime,
        status: Optional[str] = None,
    ) -> FinishLaunchResponse:
        body: dict[str, Any] = {"endTime": format_time(end_time)}
        if status:
            body["status"] = status
        payload = self._request("PUT", f"/launch/{launch_id}/finish", json_body=body)
        return FinishLaunchResponse(
            id=payload.get("id"),
            number=payload.get("number"),
            link=payload.get("link"),
        )

    def start_item(
        self,
        *,
        launch_id: str,
        parent_id: Optional[str],
        name: str,
        start_time: datetime,
        item_type: str,
        has_stats: Optional[bool] = None,
        code_ref: Optional[str] = None,
        attributes: Optional[str] = None,
        description: Optional[str] = None,
    ) -> str:
        body: dict[str, Any] = {
            "name": name,
            "startTime": format_time(start_time),
            "type": item_type,
            "launchUuid": launch_id,
        }
        if has_stats is not None:
            body["hasStats"] = has_stats
        if code_ref is not None:
            body["codeRef"] = code_ref
        if description is not None:
            body["description"] = description
        if attributes is not None:
            body["attributes"] = parse_attributes(attributes)
        path = f"/item/{parent_id}" if parent_id and parent_id.strip() else "/item"
        payload = self._request("POST", path, json_body=body)
        return str(payload["id"])

    def finish_item(self, *, launch_id: str, item_id: str, end_time: datetime, status: str) -> None:
        body = {"endTime": format_time(end_time), "launchUuid": launch_id, "status": status}
        self._request("PUT", f"/item/{item_id}", json_body=body)

    def add_log(self, *, launch_id: str, item_id: str, level: str, time: datetime, message: str) -> None:
        body = {
            "launchUuid": launch_id,
            "itemUuid": item_id,
            "level": level,
            "time": format_time(time),
            "message": message,
        }
        self._request("POST", "/log", json_body=body)

    def add_file_attachment(
        self,
        *,
        launch_id: str,
        item_id: Optional[str],
        level: str,
        time: datetime,
        message: str,
        file_path: Path,
    ) -> None:
        log_request: dict[str, Any] = {
            "launchUuid": launch_id,
            "level": level,
            "time": format_time(time),
            "message": message,
            "file": {"name": message},
        }
        if item_id:
            log_request["itemUuid"] = item_id
        file_path = Path(file_path)
        with file_path.open("rb") as handle:
            files = {
                "json_request_part": (None, json.dumps([log_request]), "application/json"),
                "file": (message, handle, "application/octet-stream"),
            }
            self._request("POST", "/log", files=files)

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        files: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Accept": "application/json",
        }
        kwargs: dict[str, Any] = {
            "headers": headers,
            "timeout": self._timeout,
            "allow_redirects": False,
        }
        if json_body is not None:
            kwargs["json"] = json_body
        if files is not None:
            kwargs["files"] = files
        try:
            response = self._session.request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise PortalClientError(None, f"HTTP request failed for {method} {url}: {exc}") from exc

        self._logger.debug("portal_request", method=method, path=path, status=response.status_code)
        if 300 <= response.status_code < 400:
            raise PortalClientError(response.status_code, REDIRECT_MESSAGE)
        if response.status_code >= 400:
            raise _error_from_response(response)
        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}


def _error_from_response(response: requests.Response) -> PortalClientError:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("message"):
        error_code = payload.get("errorCode")
        return PortalClientError(
            response.status_code,
            str(payload["message"]),
            error_code=error_code if isinstance(error_code, int) else None,
        )
    try:
        text = response.text
    except (UnicodeDecodeError, LookupError):
        text = ""
    return PortalClientError(response.status_code, text or UNPARSEABLE_MESSAGE)
