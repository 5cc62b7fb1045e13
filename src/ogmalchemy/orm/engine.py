# src/ogmalchemy/orm/engine.py
"""
Neo4j driver ownership.

A ``GraphEngine`` holds one ``AsyncDriver`` and its connection pool for a
database URI. Graph stores borrow short-lived driver sessions from it; the
engine itself knows nothing about entities.

Example:
    ```python
    async with create_graph_engine("bolt://localhost:7687", ("neo4j", "secret")) as engine:
        store = Neo4jGraphStore(engine, database="recipes")
    ```
"""
import asyncio
from neo4j import AsyncGraphDatabase, AsyncDriver, AsyncSession
from typing import Optional, Tuple, Dict, Any, cast, TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from ogmalchemy.config import OGMSettings


logger = structlog.get_logger(__name__)

DRIVER_DEFAULTS: Dict[str, Any] = {
    "max_connection_lifetime": 30 * 24 * 3600,
    "keep_alive": True,
    "user_agent": "ogmalchemy/0.1.0",
}


class GraphEngine:
    """
    Connection pool for one Neo4j deployment.

    Nothing is opened on construction. ``connect()`` creates the driver and
    verifies connectivity; ``close()`` releases it. Both are idempotent and
    serialized, so concurrent callers share a single driver.

    Args:
        uri: Bolt or neo4j URI of the server
        auth: ``(user, password)``
        database: Database used by sessions that do not name one
        driver_config: Driver options, merged over ``DRIVER_DEFAULTS``
    """

    def __init__(
        self,
        uri: str,
        auth: Tuple[str, str],
        database: str = "neo4j",
        driver_config: Optional[Dict[str, Any]] = None
    ):
        self.uri = uri
        self.auth = auth
        self.default_database = database
        self.driver_config: Dict[str, Any] = dict(DRIVER_DEFAULTS)
        self.driver_config.update(driver_config or {})

        self._driver: Optional[AsyncDriver] = None
        self._is_connected = False
        self._connection_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: "OGMSettings", **driver_config: Any) -> "GraphEngine":
        """Engine for the server described by ``OGMSettings``."""
        return cls(settings.uri, settings.auth, database=settings.database, driver_config=driver_config)

    @property
    def connected(self) -> bool:
        return self._is_connected

    @property
    def driver(self) -> AsyncDriver:
        """The underlying driver; ``get_session()`` is the usual entry point."""
        return self._require_driver()

    async def connect(self) -> None:
        async with self._connection_lock:
            if self._is_connected and self._driver is not None:
                return

            log = logger.bind(uri=self.uri, database=self.default_database)
            log.info("engine.connecting")
            try:
                driver = AsyncGraphDatabase.driver(self.uri, auth=self.auth, **self.driver_config)
                self._driver = driver
                await driver.verify_connectivity()
            except Exception as exc:
                self._driver = None
                self._is_connected = False
                log.error("engine.connect_failed", error=str(exc))
                raise ConnectionError(f"Failed to connect to Neo4j at {self.uri}: {exc}") from exc

            self._is_connected = True
            log.info("engine.connected")

    async def close(self) -> None:
        async with self._connection_lock:
            driver, self._driver = self._driver, None
            if driver is None:
                return
            if not self._is_connected:
                logger.warning("engine.closing_unverified_driver", uri=self.uri)
            self._is_connected = False
            await driver.close()
            logger.info("engine.closed", uri=self.uri)

    def get_session(self, database: Optional[str] = None) -> AsyncSession:
        """
        Borrow a driver session; the caller closes it.

        Raises:
            ConnectionError: ``connect()`` has not succeeded yet
        """
        driver = self._require_driver()
        return cast(AsyncSession, driver.session(database=database or self.default_database))

    def _require_driver(self) -> AsyncDriver:
        if self._driver is None or not self._is_connected:
            raise ConnectionError(
                f"GraphEngine for {self.uri} is not connected. Call `await engine.connect()` first."
            )
        return self._driver

    async def __aenter__(self) -> "GraphEngine":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        state = "connected" if self._is_connected else "disconnected"
        return f"GraphEngine({self.uri!r}, database={self.default_database!r}, {state})"


def create_graph_engine(
    uri: str,
    auth: Tuple[str, str],
    database: str = "neo4j",
    **driver_config: Any
) -> GraphEngine:
    """
    Build a ``GraphEngine``; connect it with ``await engine.connect()`` or ``async with``.

    Extra keyword arguments are passed to the driver (``max_connection_pool_size``,
    ``user_agent``, ``keep_alive``, ...).
    """
    logger.debug("engine.created", uri=uri, database=database)
    return GraphEngine(uri, auth, database=database, driver_config=driver_config)
