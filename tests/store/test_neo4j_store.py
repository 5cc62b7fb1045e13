"""
Tests for Neo4jGraphStore with a stubbed driver.

These tests verify:
- Cypher and parameters sent for reads and writes
- Conversion of driver records into NodeRecord / RelationshipRecord
- Commit and rollback of write transactions
- Missing targets reported as EntityNotFoundError
"""

import pytest
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock

from ogmalchemy import OGMSettings
from ogmalchemy.exceptions import EntityNotFoundError, QueryExecutionError
from ogmalchemy.query.model import NodeQuery, Predicate
from ogmalchemy.store.base import NodeRecord, RelationshipRecord
from ogmalchemy.store.neo4j_store import Neo4jGraphStore, convert_value


Responder = Callable[[str, Dict[str, Any]], List[Dict[str, Any]]]


class FakeResult:
    def __init__(self, records: List[Dict[str, Any]]):
        self._records = list(records)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for record in self._records:
            yield record

    async def single(self) -> Optional[Dict[str, Any]]:
        return self._records[0] if self._records else None


class FakeRunner:
    def __init__(self, responder: Responder, calls: List[tuple]):
        self.responder = responder
        self.calls = calls

    async def run(self, cypher: str, parameters: Dict[str, Any]) -> FakeResult:
        self.calls.append((cypher, parameters))
        return FakeResult(self.responder(cypher, parameters))


class FakeTransaction(FakeRunner):
    def __init__(self, responder: Responder, calls: List[tuple]):
        super().__init__(responder, calls)
        self.commit = AsyncMock()
        self.rollback = AsyncMock()


class FakeSession(FakeRunner):
    def __init__(self, responder: Responder, calls: List[tuple]):
        super().__init__(responder, calls)
        self.transactions: List[FakeTransaction] = []
        self.closed = False

    async def begin_transaction(self) -> FakeTransaction:
        tx = FakeTransaction(self.responder, self.calls)
        self.transactions.append(tx)
        return tx

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True


class FakeEngine:
    uri = "bolt://fake:7687"
    default_database = "neo4j"

    def __init__(self, responder: Optional[Responder] = None):
        self.responder = responder or (lambda cypher, parameters: [])
        self.connected = True
        self.connect = AsyncMock()
        self.calls: List[tuple] = []
        self.sessions: List[FakeSession] = []
        self.databases: List[Optional[str]] = []
        self.close = AsyncMock()

    def get_session(self, database: Optional[str] = None) -> FakeSession:
        self.databases.append(database)
        session = FakeSession(self.responder, self.calls)
        self.sessions.append(session)
        return session


NODE_ROW = {"identity": "4:db:1", "labels": ["Ingredient"], "properties": {"name": "Basil"}}
REL_ROW = {"identity": "5:db:7", "type": "SIMILAR_TO", "start": "4:db:1", "end": "4:db:2", "properties": {}}


class TestReads:
    """Test auto-commit reads."""

    async def test_find_nodes(self):
        engine = FakeEngine(lambda cypher, parameters: [NODE_ROW])
        store = Neo4jGraphStore(engine, database="kitchen")

        query = NodeQuery(
            label="Ingredient",
            predicates=(Predicate(property="name", parameter="p0"),),
            parameters={"p0": "Basil"},
            limit=1,
        )
        [record] = await store.find_nodes(query)

        assert record == NodeRecord(identity="4:db:1", labels=("Ingredient",), properties={"name": "Basil"})
        cypher, parameters = engine.calls[0]
        assert cypher.startswith("MATCH (n:`Ingredient`)")
        assert parameters == {"p0": "Basil", "limit": 1}
        assert engine.databases == ["kitchen"]
        assert engine.sessions[0].closed

    async def test_count_nodes(self):
        store = Neo4jGraphStore(FakeEngine(lambda cypher, parameters: [{"count": 3}]))
        assert await store.count_nodes(NodeQuery(label="Ingredient")) == 3

        empty = Neo4jGraphStore(FakeEngine())
        with pytest.raises(QueryExecutionError):
            await empty.count_nodes(NodeQuery(label="Ingredient"))

    async def test_fetch_and_expand(self):
        def responder(cypher, parameters):
            return [REL_ROW] if "type(r)" in cypher else [NODE_ROW]

        engine = FakeEngine(responder)
        store = Neo4jGraphStore(engine)

        assert await store.fetch_nodes([]) == []
        assert engine.calls == []

        [node] = await store.fetch_nodes(["4:db:1", "4:db:1"])
        [rel] = await store.expand(["4:db:1"], ["SIMILAR_TO"])
        [fetched] = await store.fetch_relationships(["5:db:7"])

        assert node.identity == "4:db:1"
        assert rel == RelationshipRecord(**REL_ROW)
        assert fetched.type == "SIMILAR_TO"
        assert engine.calls[0][1] == {"ids": ["4:db:1"]}
        assert engine.calls[1][1] == {"ids": ["4:db:1"], "types": ["SIMILAR_TO"]}

    async def test_expand_all_types(self):
        engine = FakeEngine()
        await Neo4jGraphStore(engine).expand(["4:db:1"])
        assert engine.calls[0][1]["types"] is None

    async def test_run_converts_graph_values(self):
        node = SimpleNamespace(element_id="4:db:1", labels={"Ingredient"}, items=lambda: [("name", "Basil")])
        engine = FakeEngine(lambda cypher, parameters: [{"i": node, "total": 2}])

        [row] = await Neo4jGraphStore(engine).run("MATCH (i) RETURN i, 2 AS total", {"0": "x"})

        assert row["i"] == NodeRecord(identity="4:db:1", labels=("Ingredient",), properties={"name": "Basil"})
        assert row["total"] == 2


class TestWrites:
    """Test explicit write transactions."""

    async def test_commit(self):
        engine = FakeEngine(lambda cypher, parameters: [{"identity": "4:db:9"}])
        store = Neo4jGraphStore(engine)

        async with store.transaction() as tx:
            identity = await tx.create_node(["Ingredient"], {"name": "Basil"})

        assert identity == "4:db:9"
        cypher, parameters = engine.calls[0]
        assert cypher.startswith("CREATE (n:`Ingredient`) SET n = $props")
        assert parameters == {"props": {"name": "Basil"}}
        [transaction] = engine.sessions[0].transactions
        transaction.commit.assert_awaited_once()
        transaction.rollback.assert_not_awaited()

    async def test_rollback_on_error(self):
        store = Neo4jGraphStore(FakeEngine())

        with pytest.raises(RuntimeError, match="boom"):
            async with store.transaction():
                raise RuntimeError("boom")

        [transaction] = store.engine.sessions[0].transactions
        transaction.rollback.assert_awaited_once()
        transaction.commit.assert_not_awaited()

    async def test_relationship_writes(self):
        engine = FakeEngine(lambda cypher, parameters: [{"identity": "5:db:1"}])
        store = Neo4jGraphStore(engine)

        async with store.transaction() as tx:
            await tx.create_relationship("HAS_CATEGORY", "4:db:1", "4:db:2", {})
            await tx.merge_relationship("SIMILAR_TO", "4:db:1", "4:db:3", {}, undirected=True)
            await tx.merge_relationship("CONTAINS", "4:db:4", "4:db:1", {})
            await tx.update_relationship("5:db:1", {"affinity": "great"})

        create, undirected, directed, update = [cypher for cypher, _ in engine.calls]
        assert "CREATE (a)-[r:`HAS_CATEGORY`]->(b)" in create
        assert "MERGE (a)-[r:`SIMILAR_TO`]-(b)" in undirected
        assert "MERGE (a)-[r:`CONTAINS`]->(b)" in directed
        assert "SET r += $props" in update
        assert engine.calls[0][1] == {"start": "4:db:1", "end": "4:db:2", "props": {}}

    async def test_missing_targets(self):
        store = Neo4jGraphStore(FakeEngine(lambda cypher, parameters: [{"deleted": 0}] if "DELETE" in cypher else []))

        with pytest.raises(EntityNotFoundError):
            async with store.transaction() as tx:
                await tx.update_node("4:db:404", {"name": "Ghost"})

        with pytest.raises(EntityNotFoundError):
            async with store.transaction() as tx:
                await tx.delete_node("4:db:404")

        with pytest.raises(EntityNotFoundError):
            async with store.transaction() as tx:
                await tx.delete_relationship("5:db:404")


class TestLifecycle:
    """Test store construction and closing."""

    async def test_connects_engine_on_first_use(self):
        engine = FakeEngine()
        engine.connected = False
        store = Neo4jGraphStore(engine)

        await store.find_nodes(NodeQuery(label="Ingredient"))
        engine.connect.assert_awaited_once()

        engine.connect.reset_mock()
        engine.connected = True
        async with store.transaction():
            pass
        engine.connect.assert_not_awaited()

    async def test_close_owned_engine(self):
        engine = FakeEngine()

        await Neo4jGraphStore(engine).close()
        engine.close.assert_not_awaited()

        await Neo4jGraphStore(engine, owns_engine=True).close()
        engine.close.assert_awaited_once()

    def test_from_settings(self):
        settings = OGMSettings(_env_file=None, uri="bolt://db:7687", database="kitchen")

        store = Neo4jGraphStore.from_settings(settings)

        assert store.owns_engine is True
        assert store.database == "kitchen"
        assert store.engine.uri == "bolt://db:7687"
        assert repr(store) == "Neo4jGraphStore(uri='bolt://db:7687', database='kitchen')"


def test_convert_value_relationship_and_nested():
    start = SimpleNamespace(element_id="4:db:1")
    end = SimpleNamespace(element_id="4:db:2")
    rel = SimpleNamespace(
        element_id="5:db:3", type="PAIRS_WITH", start_node=start, end_node=end,
        items=lambda: [("affinity", "good")],
    )

    converted = convert_value({"pairs": [rel], "n": 1})

    assert converted["pairs"] == [RelationshipRecord(
        identity="5:db:3", type="PAIRS_WITH", start="4:db:1", end="4:db:2", properties={"affinity": "good"}
    )]
    assert converted["n"] == 1
