"""
HTTP-level tests: authentication, error mapping and the main endpoints.

The app runs against the in-memory test database through a dependency
override; the lifespan is not started, so app state is set up here.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from conftest import RecordingAuditSink
from ops_journal.core import (
    InMemoryRateLimitStore,
    RateLimiter,
    create_access_token,
    get_session,
    get_settings,
)
from ops_journal.main import app
from ops_journal.models import AuditEventType, User

API = get_settings().api_prefix


def auth(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
async def client(session_factory, audit: RecordingAuditSink):
    async def override_session():
        async with session_factory() as session:
            yield session
            await session.commit()

    app.dependency_overrides[get_session] = override_session
    previous_sink = getattr(app.state, "audit_sink", None)
    previous_limiter = app.state.rate_limiter
    app.state.audit_sink = audit
    app.state.rate_limiter = RateLimiter(InMemoryRateLimitStore(), limit=100, period_seconds=60)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.audit_sink = previous_sink
    app.state.rate_limiter = previous_limiter


# =============================================================================
# TEST: AUTH
# =============================================================================


class TestAuth:
    async def test_health_is_public(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_missing_token(self, client: AsyncClient):
        response = await client.get(f"{API}/nodes")
        assert response.status_code == 401

    async def test_garbage_token(self, client: AsyncClient):
        response = await client.get(f"{API}/nodes", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    async def test_me(self, client: AsyncClient, editor_user: User):
        response = await client.get(f"{API}/me", headers=auth(editor_user))
        assert response.status_code == 200
        assert response.json()["email"] == "editor@example.com"
        assert response.json()["role"] == "editor"

    async def test_admin_audit_requires_admin(self, client: AsyncClient, editor_user: User):
        response = await client.get(f"{API}/admin/audit", headers=auth(editor_user))
        assert response.status_code == 403


# =============================================================================
# TEST: NODES
# =============================================================================


class TestNodesApi:
    async def test_create_and_tree(self, client: AsyncClient, admin_user: User):
        headers = auth(admin_user)
        root = await client.post(f"{API}/nodes", json={"name": "Platform", "type": "org"}, headers=headers)
        assert root.status_code == 201
        root_id = root.json()["id"]
        assert root.json()["path"] == "/platform"

        child = await client.post(
            f"{API}/nodes", json={"name": "API", "parent_id": root_id}, headers=headers
        )
        assert child.json()["path"] == "/platform/api"

        tree = (await client.get(f"{API}/nodes/tree", headers=headers)).json()
        assert [n["name"] for n in tree] == ["Platform"]
        assert [c["name"] for c in tree[0]["children"]] == ["API"]

    async def test_domain_errors_map_to_status(
        self, client: AsyncClient, admin_user: User, editor_user: User
    ):
        await client.post(f"{API}/nodes", json={"name": "Payments"}, headers=auth(admin_user))

        conflict = await client.post(f"{API}/nodes", json={"name": "payments"}, headers=auth(admin_user))
        assert conflict.status_code == 409
        assert conflict.json()["error"] == "conflict"

        forbidden = await client.post(
            f"{API}/nodes",
            json={"name": "Vault", "visibility_mode": "restricted", "allowed_roles": ["admin"]},
            headers=auth(editor_user),
        )
        assert forbidden.status_code == 403

        missing = await client.get(
            f"{API}/nodes/00000000-0000-0000-0000-000000000000", headers=auth(admin_user)
        )
        assert missing.status_code == 404
        assert missing.json()["error"] == "not_found"

    async def test_patch_moves_to_root(self, client: AsyncClient, admin_user: User):
        headers = auth(admin_user)
        root = (await client.post(f"{API}/nodes", json={"name": "Platform"}, headers=headers)).json()
        child = (
            await client.post(f"{API}/nodes", json={"name": "Web", "parent_id": root["id"]}, headers=headers)
        ).json()

        moved = await client.patch(f"{API}/nodes/{child['id']}", json={"parent_id": None}, headers=headers)

        assert moved.status_code == 200
        assert moved.json()["parent_id"] is None
        assert moved.json()["path"] == "/web"

    async def test_editor_rename_with_unchanged_parent(
        self, client: AsyncClient, admin_user: User, editor_user: User
    ):
        root = (await client.post(f"{API}/nodes", json={"name": "Platform"}, headers=auth(admin_user))).json()
        web = (
            await client.post(f"{API}/nodes", json={"name": "Web", "parent_id": root["id"]}, headers=auth(admin_user))
        ).json()

        response = await client.patch(
            f"{API}/nodes/{web['id']}",
            json={"name": "Frontend", "parent_id": root["id"]},
            headers=auth(editor_user),
        )

        assert response.status_code == 200
        assert response.json()["path"] == "/platform/frontend"

    async def test_rejected_patch_saves_nothing(
        self, client: AsyncClient, admin_user: User, editor_user: User
    ):
        headers = auth(admin_user)
        root = (await client.post(f"{API}/nodes", json={"name": "Platform"}, headers=headers)).json()
        other = (await client.post(f"{API}/nodes", json={"name": "Payments"}, headers=headers)).json()
        web = (
            await client.post(f"{API}/nodes", json={"name": "Web", "parent_id": root["id"]}, headers=headers)
        ).json()

        response = await client.patch(
            f"{API}/nodes/{web['id']}",
            json={"name": "Frontend", "parent_id": other["id"]},
            headers=auth(editor_user),
        )
        assert response.status_code == 403

        stored = (await client.get(f"{API}/nodes/{web['id']}", headers=headers)).json()
        assert stored["name"] == "Web"
        assert stored["path"] == "/platform/web"

    async def test_patch_type_and_roles_alone(self, client: AsyncClient, admin_user: User):
        headers = auth(admin_user)
        vault = (
            await client.post(
                f"{API}/nodes",
                json={"name": "Vault", "visibility_mode": "restricted", "allowed_roles": ["admin"]},
                headers=headers,
            )
        ).json()

        retyped = await client.patch(f"{API}/nodes/{vault['id']}", json={"type": "team"}, headers=headers)
        assert retyped.status_code == 200
        assert retyped.json()["type"] == "team"

        widened = await client.patch(
            f"{API}/nodes/{vault['id']}", json={"allowed_roles": ["admin", "editor"]}, headers=headers
        )
        assert widened.status_code == 200
        assert widened.json()["visibility_mode"] == "restricted"
        assert widened.json()["allowed_roles"] == ["admin", "editor"]

    async def test_restricted_node_is_hidden(
        self, client: AsyncClient, admin_user: User, viewer_user: User
    ):
        await client.post(
            f"{API}/nodes",
            json={"name": "Vault", "visibility_mode": "restricted", "allowed_roles": ["admin"]},
            headers=auth(admin_user),
        )
        roots = (await client.get(f"{API}/nodes", headers=auth(viewer_user))).json()
        assert roots == []


# =============================================================================
# TEST: RECORDS, FEED, SUBSCRIPTIONS
# =============================================================================


class TestRecordsApi:
    async def test_record_lifecycle(
        self, client: AsyncClient, admin_user: User, editor_user: User, audit: RecordingAuditSink
    ):
        node = (await client.post(f"{API}/nodes", json={"name": "Billing"}, headers=auth(admin_user))).json()

        created = await client.post(
            f"{API}/records",
            json={
                "node_id": node["id"],
                "title": "Enable invoice batching",
                "description": "Feature flag flipped for all tenants.",
                "change_type": "config",
                "impact": "low",
            },
            headers=auth(editor_user),
        )
        assert created.status_code == 201
        record_id = created.json()["id"]

        fetched = await client.get(f"{API}/records/{record_id}", headers=auth(editor_user))
        assert fetched.json()["node_name"] == "Billing"
        assert fetched.json()["node_path"] == "/billing"

        edited = await client.patch(
            f"{API}/records/{record_id}", json={"status": "completed"}, headers=auth(editor_user)
        )
        assert edited.json()["status"] == "completed"

        revisions = (await client.get(f"{API}/records/{record_id}/revisions", headers=auth(editor_user))).json()
        assert len(revisions) == 2

        feed = (await client.get(f"{API}/feed", headers=auth(editor_user))).json()
        assert feed["total"] == 1
        assert feed["items"][0]["title"] == "Enable invoice batching"

        deleted = await client.delete(f"{API}/records/{record_id}", headers=auth(editor_user))
        assert deleted.status_code == 204
        assert (await client.get(f"{API}/records/{record_id}", headers=auth(editor_user))).status_code == 404

        assert audit.types[-3:] == [
            AuditEventType.RECORD_CREATE,
            AuditEventType.RECORD_EDIT,
            AuditEventType.RECORD_DELETE,
        ]

    async def test_explicit_null_clears_reason(self, client: AsyncClient, admin_user: User):
        headers = auth(admin_user)
        node = (await client.post(f"{API}/nodes", json={"name": "Billing"}, headers=headers)).json()
        record = (
            await client.post(
                f"{API}/records",
                json={"node_id": node["id"], "title": "Rotate keys", "description": "Quarterly.", "reason": "Audit"},
                headers=headers,
            )
        ).json()

        kept = await client.patch(f"{API}/records/{record['id']}", json={"title": "Rotate KMS keys"}, headers=headers)
        assert kept.json()["reason"] == "Audit"

        cleared = await client.patch(f"{API}/records/{record['id']}", json={"reason": None}, headers=headers)
        assert cleared.status_code == 200
        assert cleared.json()["reason"] is None
        assert cleared.json()["title"] == "Rotate KMS keys"

    async def test_unacknowledged_secret_is_400(
        self, client: AsyncClient, admin_user: User
    ):
        node = (await client.post(f"{API}/nodes", json={"name": "Billing"}, headers=auth(admin_user))).json()
        response = await client.post(
            f"{API}/records",
            json={"node_id": node["id"], "title": "Rotate", "description": "password=hunter2hunter2"},
            headers=auth(admin_user),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    async def test_feed_limit_is_bounded(self, client: AsyncClient, viewer_user: User):
        response = await client.get(f"{API}/feed?limit=500", headers=auth(viewer_user))
        assert response.status_code == 422

    async def test_subscribe_and_list(
        self, client: AsyncClient, admin_user: User, viewer_user: User
    ):
        node = (await client.post(f"{API}/nodes", json={"name": "Billing"}, headers=auth(admin_user))).json()

        created = await client.post(
            f"{API}/subscriptions",
            json={"node_id": node["id"], "impact_threshold": "high"},
            headers=auth(viewer_user),
        )
        assert created.status_code == 201

        listed = (await client.get(f"{API}/subscriptions", headers=auth(viewer_user))).json()
        assert [s["node_id"] for s in listed] == [node["id"]]

        removed = await client.delete(f"{API}/subscriptions/{created.json()['id']}", headers=auth(viewer_user))
        assert removed.status_code == 204


# =============================================================================
# TEST: RATE LIMIT
# =============================================================================


class TestRateLimitApi:
    async def test_writes_are_rate_limited(self, client: AsyncClient, admin_user: User):
        app.state.rate_limiter = RateLimiter(InMemoryRateLimitStore(), limit=2, period_seconds=60)
        headers = auth(admin_user)

        codes = [
            (await client.post(f"{API}/nodes", json={"name": f"Node {i}"}, headers=headers)).status_code
            for i in range(3)
        ]

        assert codes == [201, 201, 429]

    async def test_reads_are_not_rate_limited(self, client: AsyncClient, admin_user: User):
        app.state.rate_limiter = RateLimiter(InMemoryRateLimitStore(), limit=1, period_seconds=60)
        headers = auth(admin_user)
        codes = [(await client.get(f"{API}/nodes", headers=headers)).status_code for _ in range(3)]
        assert codes == [200, 200, 200]
