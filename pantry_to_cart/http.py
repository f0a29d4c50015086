from __future__ import annotations

from dataclasses import dataclass
import requests


@dataclass(frozen=True)
class HttpClient:
    """Bearer-token JSON client for the text-generation endpoint."""

    base_url: str
    token: str
    timeout_s: float = 15.0

    def _url(self, path: str) -> str:
        return self.base_url.rstrip("/") + "/" + path.lstrip("/")

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def post(self, path: str, *, json: dict) -> requests.Response:
        return requests.post(
            self._url(path),
            json=json,
            headers=self._headers(),
            timeout=self.timeout_s,
        )
