"""Tests for staged imports: init, parent/child chunks and progress."""

import pytest

from app.cache.layer import cache_layer
from app.services.staged_import import new_import_id
from tests.fixtures import InMemoryRedis, csv_upload, json_upload

PROJECTS = [
    {"id": "p1", "title": "Launch website"},
    {"id": "t1", "title": "Write copy", "parentId": "p1"},
    {"id": "t2", "title": "Pick colors", "parentId": "p1"},
    {"id": "t3", "title": "Stray task", "parentId": "missing"},
]


async def start(client, todos) -> dict:
    resp = await client.post("/api/import/init", files=json_upload(todos))
    assert resp.status_code == 200, resp.text
    return resp.json()


async def drain(client, group, import_id, **body) -> list[dict]:
    """Request chunks until the group reports done."""
    chunks = []
    cursor = 0
    while True:
        resp = await client.post(
            f"/api/import/{group}", json={"importId": import_id, "cursor": cursor, **body}
        )
        assert resp.status_code == 200, resp.text
        chunk = resp.json()
        chunks.append(chunk)
        cursor = chunk["nextCursor"]
        if chunk["done"]:
            return chunks


def test_import_ids_are_unique():
    ids = {new_import_id() for _ in range(50)}
    assert len(ids) == 50
    assert all("-" in i for i in ids)


class TestInit:
    async def test_partitions_and_stores_session(self, client, upstream, fake_redis):
        body = await start(client, PROJECTS)

        assert body["total"] == 4
        assert body["parents"] == 1
        assert body["children"] == 3
        assert body["importId"]

        keys = fake_redis.keys_matching(f"import:user-1:{body['importId']}:")
        assert sorted(k.rsplit(":", 1)[1] for k in keys) == [
            "children",
            "existing",
            "idmap",
            "parents",
            "status",
        ]
        assert all(fake_redis.ttls[k] == 1800 for k in keys)
        assert upstream.created == []
        assert upstream.list_calls == 0

    @pytest.mark.parametrize("text", ["", "Title,Priority\n"])
    async def test_empty_csv_creates_no_session(self, client, fake_redis, text):
        resp = await client.post("/api/import/init", files=csv_upload(text))
        assert resp.status_code == 400
        assert fake_redis.keys_matching("import:") == []

    async def test_missing_file(self, client):
        resp = await client.post("/api/import/init")
        assert resp.status_code == 400

    async def test_progress_starts_ready(self, client):
        body = await start(client, PROJECTS)
        resp = await client.get("/api/import/progress", params={"importId": body["importId"]})
        assert resp.status_code == 200
        assert resp.json() == {
            "importId": body["importId"],
            "stage": "ready",
            "parents": {"total": 1, "processed": 0, "imported": 0, "skipped": 0},
            "children": {"total": 3, "processed": 0, "imported": 0, "skipped": 0},
        }


class TestParents:
    async def test_chunks_cover_every_parent(self, client, upstream):
        todos = [{"id": str(i), "title": f"Parent {i}"} for i in range(5)]
        body = await start(client, todos)

        chunks = await drain(client, "parents", body["importId"])

        assert [c["nextCursor"] for c in chunks] == [2, 4, 5]
        assert sum(c["imported"] + c["skipped"] for c in chunks) == 5
        assert len(upstream.created) == 5

        progress = (
            await client.get("/api/import/progress", params={"importId": body["importId"]})
        ).json()
        assert progress["stage"] == "parents"
        assert progress["parents"] == {
            "total": 5,
            "processed": 5,
            "imported": 5,
            "skipped": 0,
        }

    async def test_explicit_limit(self, client):
        todos = [{"title": f"Parent {i}"} for i in range(5)]
        body = await start(client, todos)
        resp = await client.post(
            "/api/import/parents", json={"importId": body["importId"], "limit": 10}
        )
        assert resp.json() == {"nextCursor": 5, "done": True, "imported": 5, "skipped": 0}

    async def test_negative_cursor_starts_at_zero(self, client):
        body = await start(client, [{"title": "A"}, {"title": "B"}])
        resp = await client.post(
            "/api/import/parents", json={"importId": body["importId"], "cursor": -3}
        )
        assert resp.json()["nextCursor"] == 2

    async def test_shared_external_id_imports_once(self, client, upstream):
        todos = [
            {"title": "Alpha", "externalId": "ext-1"},
            {"title": "Beta", "externalId": "ext-1"},
        ]
        body = await start(client, todos)

        first = await client.post("/api/import/parents", json={"importId": body["importId"]})
        assert first.json() == {"nextCursor": 2, "done": True, "imported": 1, "skipped": 1}
        assert upstream.titles() == ["Alpha"]

        # replaying the group matches against the todos stored by the first pass
        again = await client.post(
            "/api/import/parents", json={"importId": body["importId"], "cursor": 0}
        )
        assert again.json()["imported"] == 0
        assert again.json()["skipped"] == 2
        assert upstream.titles() == ["Alpha"]

        progress = (
            await client.get("/api/import/progress", params={"importId": body["importId"]})
        ).json()
        assert progress["parents"]["processed"] == 2

    async def test_chunk_after_done_is_a_no_op(self, client, upstream):
        body = await start(client, [{"title": "A"}, {"title": "B"}])
        await drain(client, "parents", body["importId"])

        resp = await client.post(
            "/api/import/parents", json={"importId": body["importId"], "cursor": 2}
        )
        assert resp.json() == {"nextCursor": 2, "done": True, "imported": 0, "skipped": 0}
        assert len(upstream.created) == 2

    async def test_failed_creates_are_skipped(self, client, upstream):
        upstream.fail_titles = {"B"}
        body = await start(client, [{"title": "A"}, {"title": "B"}])
        resp = await client.post("/api/import/parents", json={"importId": body["importId"]})
        assert resp.json()["imported"] == 1
        assert resp.json()["skipped"] == 1


class TestChildren:
    async def test_children_attach_to_mapped_parents(self, client, upstream):
        body = await start(client, PROJECTS)
        await drain(client, "parents", body["importId"])
        chunks = await drain(client, "children", body["importId"])

        assert sum(c["imported"] for c in chunks) == 2
        assert sum(c["skipped"] for c in chunks) == 1
        assert upstream.titles() == ["Launch website", "Write copy", "Pick colors"]
        parent_id = upstream.created[0]["id"]
        assert [c.get("parentId") for c in upstream.created] == [None, parent_id, parent_id]

        progress = (
            await client.get("/api/import/progress", params={"importId": body["importId"]})
        ).json()
        assert progress["stage"] == "children"
        assert progress["children"] == {
            "total": 3,
            "processed": 3,
            "imported": 2,
            "skipped": 1,
        }

    async def test_duplicate_parent_still_receives_children(self, client, upstream):
        todos = [
            {"id": "p1", "title": "Launch website"},
            {"id": "p2", "title": "launch website"},
            {"title": "Write copy", "parentId": "p2"},
        ]
        body = await start(client, todos)
        parents = await drain(client, "parents", body["importId"])
        assert sum(c["skipped"] for c in parents) == 1

        await drain(client, "children", body["importId"])
        assert upstream.titles() == ["Launch website", "Write copy"]
        assert upstream.created[1]["parentId"] == upstream.created[0]["id"]

    async def test_children_before_parents_are_skipped(self, client, upstream):
        body = await start(client, PROJECTS)
        chunks = await drain(client, "children", body["importId"])

        assert sum(c["skipped"] for c in chunks) == 3
        assert upstream.created == []

    async def test_duplicate_children_under_same_parent(self, client, upstream):
        todos = [
            {"id": "p1", "title": "Launch website"},
            {"title": "Write copy", "parentId": "p1"},
            {"title": "write copy!", "parentId": "p1"},
        ]
        body = await start(client, todos)
        await drain(client, "parents", body["importId"])
        chunks = await drain(client, "children", body["importId"], limit=1)

        assert [c["imported"] for c in chunks] == [1, 0]
        assert upstream.titles() == ["Launch website", "Write copy"]

    async def test_same_title_under_different_parents(self, client, upstream):
        todos = [
            {"id": "p1", "title": "Project one"},
            {"id": "p2", "title": "Project two"},
            {"title": "Kickoff", "parentId": "p1"},
            {"title": "Kickoff", "parentId": "p2"},
        ]
        body = await start(client, todos)
        await drain(client, "parents", body["importId"])
        chunks = await drain(client, "children", body["importId"])

        assert sum(c["imported"] for c in chunks) == 2
        assert upstream.titles().count("Kickoff") == 2


class TestSeedExisting:
    async def test_existing_todos_seed_the_pool(self, client, upstream, settings):
        settings.import_seed_existing = True
        upstream.existing = [{"id": "e1", "title": "Launch website"}]
        body = await start(client, PROJECTS[:2])
        assert upstream.list_calls == 1

        parents = await drain(client, "parents", body["importId"])
        assert parents[0]["skipped"] == 1
        await drain(client, "children", body["importId"])

        assert upstream.titles() == ["Write copy"]
        assert upstream.created[0]["parentId"] == "e1"

    async def test_chunk_refreshes_cached_todo_list(
        self, client, upstream, settings, fake_redis
    ):
        settings.import_seed_existing = True
        body = await start(client, [{"title": "Write report"}])
        assert fake_redis.keys_matching("todos:user:user-1")

        await drain(client, "parents", body["importId"])
        assert fake_redis.keys_matching("todos:user:user-1") == []

        resp = await client.post("/api/import", files=json_upload([{"title": "Write report"}]))
        assert resp.json()["importedCount"] == 0
        assert resp.json()["skippedCount"] == 1
        assert upstream.titles() == ["Write report"]
        assert upstream.list_calls == 2

    async def test_chunk_without_imports_keeps_cache(
        self, client, upstream, settings, fake_redis
    ):
        settings.import_seed_existing = True
        upstream.existing = [{"id": "e1", "title": "Write report"}]
        body = await start(client, [{"title": "Write report"}])

        await drain(client, "parents", body["importId"])
        assert fake_redis.keys_matching("todos:user:user-1")


class TestErrors:
    async def test_expired_session_is_not_found(self, client, fake_redis):
        body = await start(client, PROJECTS)
        fake_redis.expire_all()

        for group in ("parents", "children"):
            resp = await client.post(f"/api/import/{group}", json={"importId": body["importId"]})
            assert resp.status_code == 404
            assert resp.json()["detail"] == "Import not found or expired"

        resp = await client.get("/api/import/progress", params={"importId": body["importId"]})
        assert resp.status_code == 404

    async def test_unknown_import_id(self, client):
        resp = await client.post("/api/import/parents", json={"importId": "nope"})
        assert resp.status_code == 404

    async def test_sessions_are_per_user(self, client):
        body = await start(client, PROJECTS)
        resp = await client.get(
            "/api/import/progress",
            params={"importId": body["importId"]},
            headers={"X-User-Id": "google_someone-else"},
        )
        assert resp.status_code == 404

    @pytest.mark.parametrize("group", ["parents", "children"])
    async def test_import_id_required(self, client, group):
        resp = await client.post(f"/api/import/{group}", json={"cursor": 0})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "importId required"

    @pytest.mark.parametrize("field", ["cursor", "limit"])
    async def test_non_integer_paging_is_bad_request(self, client, field):
        body = await start(client, PROJECTS)
        resp = await client.post(
            "/api/import/parents", json={"importId": body["importId"], field: "abc"}
        )
        assert resp.status_code == 400
        assert resp.json()["detail"][0]["loc"][-1] == field

    async def test_progress_requires_import_id(self, client):
        resp = await client.get("/api/import/progress")
        assert resp.status_code == 400

    async def test_requires_user(self, client):
        resp = await client.get(
            "/api/import/progress", params={"importId": "x"}, headers={"X-User-Id": ""}
        )
        assert resp.status_code == 401


class TestWithoutRedis:
    @pytest.fixture
    async def offline(self, client, settings):
        cache_layer.reset()
        await cache_layer.init_cache(settings=settings, redis=InMemoryRedis(fail_ping=True))
        return client

    async def test_staged_import_unavailable(self, offline):
        resp = await offline.post("/api/import/init", files=json_upload(PROJECTS))
        assert resp.status_code == 503

    async def test_single_request_import_still_works(self, offline, upstream):
        resp = await offline.post("/api/import", files=json_upload([{"title": "A"}]))
        assert resp.status_code == 200
        assert resp.json()["importedCount"] == 1
        assert cache_layer.get_stats()["redis_connected"] is False
