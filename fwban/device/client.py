"""Device client contract and its RouterOS REST implementation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx

from fwban.device.entry import AddressFamily
from fwban.device.exceptions import (
    ConnectionFailure,
    DuplicateEntry,
    EntryNotFound,
    MissingField,
    RemoteError,
)

logger = logging.getLogger(__name__)

DEFAULT_QUERY_TIMEOUT_SECONDS = 5.0
DEFAULT_MUTATION_TIMEOUT_SECONDS = 30.0
DEFAULT_CONNECT_TIMEOUT_SECONDS = 60.0


@dataclass(frozen=True, slots=True)
class AddressListRow:
    """One address-list entry as reported by the device."""

    address: str
    dynamic: bool
    timeout: Optional[str]
    row_id: str


class DeviceClient(Protocol):
    """Operations the banlist engine needs from a device session."""

    name: str

    async def connect(self) -> None: ...

    async def query(self, family: AddressFamily, list_name: str) -> list[AddressListRow]: ...

    async def add(
        self,
        family: AddressFamily,
        address: str,
        list_name: str,
        timeout: Optional[str] = None,
        comment: str = "",
    ) -> Optional[str]: ...

    async def remove(self, family: AddressFamily, row_id: str) -> None: ...

    async def close(self) -> None: ...


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:256]
    if isinstance(payload, dict):
        return str(payload.get("detail") or payload.get("message") or "")
    return str(payload)[:256]


class RouterOSClient:
    """
    Talks to the RouterOS v7 REST API.

    Queries and the login check are bounded by the query deadline, list
    mutations by the longer mutation deadline. A missed deadline or a
    refused login raises ConnectionFailure; there is no retry.
    """

    def __init__(
        self,
        name: str,
        address: str,
        user: str,
        passwd: str,
        *,
        use_tls: bool = False,
        verify_tls: bool = True,
        query_timeout: float = DEFAULT_QUERY_TIMEOUT_SECONDS,
        mutation_timeout: float = DEFAULT_MUTATION_TIMEOUT_SECONDS,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.name = name
        self.address = address
        self.query_timeout = query_timeout
        self.mutation_timeout = mutation_timeout
        self.connect_timeout = connect_timeout

        scheme = "https" if use_tls else "http"
        self._http = httpx.AsyncClient(
            base_url=f"{scheme}://{address}/rest",
            auth=(user, passwd),
            verify=verify_tls,
            timeout=httpx.Timeout(query_timeout, connect=connect_timeout),
            transport=transport,
        )

    @classmethod
    def from_settings(cls, name: str, device: Any, settings: Any) -> "RouterOSClient":
        return cls(
            name,
            device.address,
            device.user,
            device.passwd,
            use_tls=device.use_tls,
            verify_tls=device.verify_tls,
            query_timeout=settings.QUERY_TIMEOUT_SECONDS,
            mutation_timeout=settings.MUTATION_TIMEOUT_SECONDS,
            connect_timeout=settings.CONNECT_TIMEOUT_SECONDS,
        )

    async def _request(
        self,
        method: str,
        path: str,
        deadline: float,
        *,
        params: dict[str, str] | None = None,
        payload: dict[str, str] | None = None,
    ) -> Any:
        try:
            response = await self._http.request(
                method,
                path,
                params=params,
                json=payload,
                timeout=httpx.Timeout(deadline, connect=self.connect_timeout),
            )
        except httpx.TimeoutException as exc:
            raise ConnectionFailure(f"{self.name}: deadline exceeded on {method} {path}") from exc
        except httpx.TransportError as exc:
            raise ConnectionFailure(f"{self.name}: {method} {path} failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise ConnectionFailure(f"{self.name}: login refused (status={response.status_code})")

        if response.status_code >= 400:
            detail = _error_detail(response)
            message = f"{self.name}: {method} {path} failed status={response.status_code} detail={detail}"
            if "already have" in detail:
                raise DuplicateEntry(message, response.status_code, detail)
            if "no such item" in detail:
                raise EntryNotFound(message, response.status_code, detail)
            raise RemoteError(message, response.status_code, detail)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteError(f"{self.name}: malformed reply on {method} {path}", response.status_code) from exc

    async def connect(self) -> None:
        reply = await self._request("GET", "/system/identity", self.query_timeout)
        identity = reply.get("name", "") if isinstance(reply, dict) else ""
        logger.info("%s: connected to %s (identity=%s)", self.name, self.address, identity or "?")

    async def query(self, family: AddressFamily, list_name: str) -> list[AddressListRow]:
        reply = await self._request(
            "GET",
            f"/{family.value}/firewall/address-list",
            self.query_timeout,
            params={"list": list_name},
        )
        rows: list[AddressListRow] = []
        for item in reply or []:
            if item.get("list", list_name) != list_name:
                continue
            row_id = item.get(".id")
            if not row_id:
                raise MissingField(".id", f"{self.name}({list_name})")
            rows.append(
                AddressListRow(
                    address=item.get("address", ""),
                    dynamic=str(item.get("dynamic", "false")).lower() == "true",
                    timeout=item.get("timeout") or None,
                    row_id=row_id,
                )
            )
        return rows

    async def add(
        self,
        family: AddressFamily,
        address: str,
        list_name: str,
        timeout: Optional[str] = None,
        comment: str = "",
    ) -> Optional[str]:
        payload = {"address": address, "list": list_name}
        if timeout:
            payload["timeout"] = timeout
        if comment:
            payload["comment"] = comment

        reply = await self._request(
            "POST",
            f"/{family.value}/firewall/address-list/add",
            self.mutation_timeout,
            payload=payload,
        )
        if isinstance(reply, dict):
            return reply.get("ret")
        return None

    async def remove(self, family: AddressFamily, row_id: str) -> None:
        await self._request(
            "POST",
            f"/{family.value}/firewall/address-list/remove",
            self.mutation_timeout,
            payload={".id": row_id},
        )

    async def close(self) -> None:
        await self._http.aclose()
