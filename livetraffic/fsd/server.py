"""TCP listener that hands each FSD connection to a ClientSession."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from livetraffic.services.delivery import SnapshotFeed
from livetraffic.services.weather_cache import WeatherCache

from .session import ClientSession, SessionConfig

logger = logging.getLogger("livetraffic.fsd.server")


class ProtocolServer:
    """Accept ATC clients and serve every one of them the same snapshot feed."""

    def __init__(
        self,
        *,
        feed: SnapshotFeed,
        weather: WeatherCache,
        host: str = "127.0.0.1",
        port: int = 6809,
        config: SessionConfig | None = None,
    ) -> None:
        self.feed = feed
        self.weather = weather
        self.host = host
        self.port = port
        self.config = config or SessionConfig()
        self.sessions: set[ClientSession] = set()
        self._handlers: set[asyncio.Task] = set()
        self._server: asyncio.AbstractServer | None = None

    @property
    def is_serving(self) -> bool:
        return self._server is not None and self._server.is_serving()

    @property
    def bound_port(self) -> int | None:
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        """Bind the listener; raise RuntimeError when the address is unavailable."""

        try:
            self._server = await asyncio.start_server(self._handle_client, self.host, self.port)
        except OSError as exc:
            logger.error("Could not listen on %s:%s: %s", self.host, self.port, exc)
            raise RuntimeError(f"Unable to listen on {self.host}:{self.port}") from exc
        logger.info("Listening for ATC clients on %s:%s", self.host, self.bound_port)

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        session = ClientSession(
            reader, writer, feed=self.feed, weather=self.weather, config=self.config
        )
        task = asyncio.current_task()
        self.sessions.add(session)
        if task is not None:
            self._handlers.add(task)
        try:
            await session.run()
        except asyncio.CancelledError:
            await session.close()
            raise
        except Exception:  # pragma: no cover
            logger.exception("Session %s failed", session.callsign or session.peer)
            await session.close()
        finally:
            self.sessions.discard(session)
            if task is not None:
                self._handlers.discard(task)

    def active_sessions(self) -> list[ClientSession]:
        return [session for session in self.sessions if session.callsign is not None]

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        for session in list(self.sessions):
            await session.close()
        for task in list(self._handlers):
            task.cancel()
        if self._handlers:
            await asyncio.gather(*list(self._handlers), return_exceptions=True)
        with contextlib.suppress(Exception):  # pragma: no cover - best effort close
            await self._server.wait_closed()
        self._server = None
        logger.info("ATC listener stopped")


__all__ = ["ProtocolServer"]
