"""Built-in tools available to every workflow."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import requests

from workflow_dsl.tools.base import FunctionTool, Tool, Toolkit

logger = logging.getLogger(__name__)

BUILTIN_TOOLKIT_ID = "builtin-toolkit"

_DELTA_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days", "w": "weeks"}


def _parse_delta(delta: str) -> timedelta:
    value = delta.strip().lower()
    sign = -1 if value.startswith("-") else 1
    value = value.lstrip("+-")
    if len(value) < 2 or value[-1] not in _DELTA_UNITS:
        raise ValueError(f"Invalid delta: {delta!r} (expected e.g. '5m', '-2d')")
    try:
        amount = int(value[:-1])
    except ValueError as e:
        raise ValueError(f"Invalid delta: {delta!r}") from e
    return sign * timedelta(**{_DELTA_UNITS[value[-1]]: amount})


def get_current_time(timezone: str = "UTC", delta: str | None = None) -> str:
    """Return the current time in ``timezone`` as an ISO-8601 string."""

    try:
        tz = UTC if timezone.upper() == "UTC" else ZoneInfo(timezone)
    except ZoneInfoNotFoundError as e:
        raise ValueError(f"Unknown timezone: {timezone}") from e
    now = datetime.now(tz=tz)
    if delta:
        now = now + _parse_delta(delta)
    return now.isoformat()


class HttpRequestTool(Tool):
    """Perform an HTTP request and return status plus decoded body."""

    def __init__(self, timeout_seconds: float) -> None:
        self._timeout = timeout_seconds

    @property
    def name(self) -> str:
        return "httpRequest"

    @property
    def description(self) -> str:
        return "Send an HTTP request and return the response status and body."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "url": {"type": "string"},
                "method": {"type": "string", "default": "GET"},
                "params": {"type": "object"},
                "headers": {"type": "object"},
                "json": {"type": "object"},
            },
            "required": ["url"],
        }

    def _request(self, args: Mapping[str, Any]) -> dict[str, Any]:
        method = str(args.get("method") or "GET").upper()
        logger.debug("HTTP tool request", extra={"method": method, "url": args["url"]})
        resp = requests.request(
            method,
            args["url"],
            params=args.get("params"),
            headers=args.get("headers"),
            json=args.get("json"),
            timeout=self._timeout,
        )
        body: Any
        if "application/json" in resp.headers.get("Content-Type", ""):
            try:
                body = resp.json()
            except ValueError:
                body = resp.text
        else:
            body = resp.text
        return {"status": resp.status_code, "ok": resp.ok, "body": body}

    async def call(self, args: Mapping[str, Any] | None = None) -> Any:
        args = dict(args or {})
        if not args.get("url"):
            raise ValueError("httpRequest requires 'url'")
        return await asyncio.to_thread(self._request, args)


class BuiltinToolkit(Toolkit):
    id = BUILTIN_TOOLKIT_ID
    name = "Built-in Toolkit"
    description = "Time and HTTP utilities"

    def default_settings(self) -> dict[str, Any]:
        return {"http_timeout_seconds": 30.0}

    def validate_settings(self) -> None:
        timeout = self.settings["http_timeout_seconds"]
        if not isinstance(timeout, int | float) or timeout <= 0:
            raise ValueError("http_timeout_seconds must be a positive number")

    async def get_tools(
        self, agent_id: str | None = None, caller_id: str | None = None
    ) -> list[Tool]:
        return [
            FunctionTool(
                get_current_time,
                name="getCurrentTime",
                description=(
                    "Get the current time as an ISO-8601 string. "
                    "Accepts an IANA timezone (default 'UTC') and an optional delta like '5m' or '-2d'."
                ),
                parameters={
                    "type": "object",
                    "properties": {
                        "timezone": {"type": "string", "default": "UTC"},
                        "delta": {"type": "string"},
                    },
                },
            ),
            HttpRequestTool(timeout_seconds=float(self.settings["http_timeout_seconds"])),
        ]
