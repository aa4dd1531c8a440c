"""
foundry/client.py

Signing client for the helper's HTTP API.

    client = FoundryClient("http://127.0.0.1:8787", secret)
    for event in client.run("plugin list --format=json"):
        print(event["type"], event["data"])
    client.download(token, Path("backup.zip"))

Every request gets a fresh nonce and timestamp; a rejected request is never
retried automatically.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import httpx

from foundry import API_PREFIX
from foundry.errors import ErrorCode, FoundryError
from foundry.security.signing import sign_headers

logger = logging.getLogger(__name__)


class FoundryClient:
    def __init__(
        self,
        base_url: str,
        secret: str,
        operator: Optional[Tuple[str, str]] = None,
        timeout: float = 300.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.secret = secret
        self.operator = operator
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            auth=self.operator,
            transport=self._transport,
        )

    def _signed(
        self,
        method: str,
        route: str,
        params: Optional[List[Tuple[str, str]]] = None,
        body: bytes = b"",
        content_type: Optional[str] = None,
    ) -> Dict[str, str]:
        headers = sign_headers(self.secret, method, API_PREFIX + route, params=params, body=body)
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    @staticmethod
    def _raise_for_error(response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        response.read()
        try:
            payload = response.json()
            raise FoundryError.from_dict(payload)
        except (ValueError, KeyError):
            raise FoundryError(
                ErrorCode.INTERNAL_ERROR,
                f"Unexpected {response.status_code} response",
                http_status=response.status_code,
            )

    def run(self, command: str) -> Iterator[Dict[str, Any]]:
        """Yield decoded stream events for one command as they arrive."""
        body = json.dumps({"command": command}).encode("utf-8")
        headers = self._signed("POST", "/run", body=body, content_type="application/json")

        with self._client() as client:
            with client.stream("POST", API_PREFIX + "/run", content=body, headers=headers) as response:
                self._raise_for_error(response)
                name, data_lines = None, []
                for line in response.iter_lines():
                    if line == "":
                        if data_lines:
                            payload = json.loads("\n".join(data_lines))
                            logger.debug(f"[Client] {name}: {payload.get('data')}")
                            yield payload
                        name, data_lines = None, []
                    elif line.startswith(":"):
                        continue
                    elif line.startswith("event:"):
                        name = line[len("event:"):].strip()
                    elif line.startswith("data:"):
                        data_lines.append(line[len("data:"):].lstrip())
                if data_lines:
                    yield json.loads("\n".join(data_lines))

    def download(self, token: str, destination: Path) -> Path:
        params = [("token", token)]
        headers = self._signed("GET", "/download", params=params)
        with self._client() as client:
            with client.stream("GET", API_PREFIX + "/download", params=params, headers=headers) as response:
                self._raise_for_error(response)
                with open(destination, "wb") as fh:
                    for chunk in response.iter_bytes():
                        fh.write(chunk)
        return Path(destination)

    def upload(self, path: Path) -> Dict[str, Any]:
        data = Path(path).read_bytes()
        params = [("filename", Path(path).name)]
        headers = self._signed("POST", "/upload", params=params, body=data, content_type="application/zip")
        with self._client() as client:
            response = client.post(API_PREFIX + "/upload", params=params, content=data, headers=headers)
            self._raise_for_error(response)
            return response.json()

    def delete_upload(self, token: str) -> Dict[str, Any]:
        body = json.dumps({"token": token}).encode("utf-8")
        headers = self._signed("POST", "/upload/delete", body=body, content_type="application/json")
        with self._client() as client:
            response = client.post(API_PREFIX + "/upload/delete", content=body, headers=headers)
            self._raise_for_error(response)
            return response.json()
