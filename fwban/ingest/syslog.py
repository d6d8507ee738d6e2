"""Syslog receiver turning log lines into ban requests."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from fwban.device.entry import IPNetwork, parse_cidr

logger = logging.getLogger(__name__)

# <PRI>VERSION TIMESTAMP HOSTNAME APP-NAME PROCID MSGID STRUCTURED-DATA [MSG]
_RFC5424 = re.compile(
    r"^<(?P<pri>\d{1,3})>(?P<version>\d{1,2}) (?P<timestamp>\S+) (?P<host>\S+) "
    r"(?P<app>\S+) (?P<procid>\S+) (?P<msgid>\S+) "
    r"(?P<sd>-|(?:\[(?:[^\]\\]|\\.)*\])+)(?: (?P<msg>.*))?$",
    re.DOTALL,
)
# <PRI>Mmm dd hh:mm:ss HOSTNAME MSG
_RFC3164 = re.compile(
    r"^<(?P<pri>\d{1,3})>(?P<timestamp>[A-Z][a-z]{2} [ \d]\d \d{2}:\d{2}:\d{2}) (?P<host>\S+) (?P<msg>.*)$",
    re.DOTALL,
)


@dataclass(slots=True)
class BanRequest:
    network: IPNetwork
    message: str
    received_at: datetime


def extract_message(datagram: bytes) -> Optional[str]:
    """Return the message part of an RFC 5424 or RFC 3164 syslog datagram."""
    text = datagram.decode("utf-8", errors="replace").rstrip("\r\n\x00")

    match = _RFC5424.match(text)
    if match:
        return (match.group("msg") or "").lstrip("\ufeff")

    match = _RFC3164.match(text)
    if match:
        return match.group("msg")
    return None


class OffenderMatcher:
    """Finds the offending address in a message using regexps with a named ``IP`` group."""

    def __init__(self, patterns: Iterable[str], verbose: bool = False):
        self.patterns = [re.compile(pattern) for pattern in patterns]
        self.verbose = verbose

    def match(self, message: str) -> Optional[IPNetwork]:
        for pattern in self.patterns:
            found = pattern.search(message)
            if found:
                return parse_cidr(found.group("IP"), self.verbose)
        return None


class SyslogProtocol(asyncio.DatagramProtocol):
    def __init__(self, matcher: OffenderMatcher, queue: "asyncio.Queue[BanRequest]"):
        self.matcher = matcher
        self.queue = queue

    def datagram_received(self, data: bytes, addr: Any) -> None:
        source = addr[0] if addr else "unknown"
        message = extract_message(data)
        if message is None:
            logger.debug("Unparsable syslog datagram from %s", source)
            return

        network = self.matcher.match(message)
        if network is None:
            return
        logger.debug("MATCH from %s: %s", source, message)

        request = BanRequest(network=network, message=message, received_at=datetime.now(timezone.utc))
        try:
            self.queue.put_nowait(request)
        except asyncio.QueueFull:
            logger.warning(
                "Ban queue full (size=%s). Dropping ban for %s",
                self.queue.maxsize,
                network,
            )

    def error_received(self, exc: Exception) -> None:
        logger.warning("Syslog socket error: %s", exc)


async def ban_worker(fleet: Any, queue: "asyncio.Queue[BanRequest]", worker_id: int, block_time: timedelta) -> None:
    while True:
        request = await queue.get()
        try:
            await fleet.ban(request.network, block_time)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Ban worker %s crashed while banning %s", worker_id, request.network)
        finally:
            queue.task_done()


async def start_syslog_listener(
    host: str,
    port: int,
    matcher: OffenderMatcher,
    queue: "asyncio.Queue[BanRequest]",
) -> asyncio.DatagramTransport:
    loop = asyncio.get_running_loop()
    transport, _ = await loop.create_datagram_endpoint(
        lambda: SyslogProtocol(matcher, queue),
        local_addr=(host, port),
    )
    logger.info("Listening for syslog messages on [%s]:%d", host, port)
    return transport
