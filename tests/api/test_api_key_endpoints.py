"""
API tests for key management and key-authenticated endpoints.
"""

import pytest
from httpx import AsyncClient

from agencyhub.core.context import get_request_context
from agencyhub.core.exceptions import UNIFORM_AUTH_MESSAGE
from agencyhub.features.api_keys.dependencies import ApiKeyPrincipal, CurrentUser

API_KEYS_URL = "/api/v1/api-keys"
WHOAMI_URL = "/api/v1/integrations/me"


@pytest.fixture
def context_routes(app):
    """Routes that echo the logging context seen inside a handler."""

    @app.get("/context/api-key")
    async def api_key_context(principal: ApiKeyPrincipal) -> dict:
        return get_request_context()

    @app.get("/context/user")
    async def user_context(current_user: CurrentUser) -> dict:
        return get_request_context()

    return app


def key_headers(api_key: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {api_key}"}


async def create_key(client: AsyncClient, headers: dict, **payload) -> dict:
    payload.setdefault("name", "svc-key")
    response = await client.post(API_KEYS_URL, json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.api
class TestApiKeyManagement:
    """Test the key management endpoints."""

    async def test_create_api_key(self, client: AsyncClient, auth_headers, sub_agency):
        response = await client.post(
            API_KEYS_URL,
            json={"name": "svc-key", "scope_id": sub_agency.id, "expires_in_days": 30},
            headers=auth_headers,
        )

        assert response.status_code == 201
        data = response.json()

        assert data["api_key"].startswith("ahk_")
        assert len(data["api_key"]) == 68
        assert data["display_prefix"] == data["api_key"][:8]
        assert data["name"] == "svc-key"
        assert data["scope_id"] == sub_agency.id
        assert data["expires_at"] is not None

    async def test_create_requires_user_token(self, client: AsyncClient):
        response = await client.post(API_KEYS_URL, json={"name": "svc-key"})

        assert response.status_code == 401

    async def test_create_for_foreign_sub_agency(
        self, client: AsyncClient, auth_headers, foreign_sub_agency
    ):
        response = await client.post(
            API_KEYS_URL,
            json={"name": "svc-key", "scope_id": foreign_sub_agency.id},
            headers=auth_headers,
        )

        assert response.status_code == 403

    @pytest.mark.parametrize("payload", [
        {"name": "ab"},
        {"name": "x" * 51},
        {"name": "svc-key", "expires_in_days": 0},
        {"name": "svc-key", "expires_in_days": 366},
        {},
    ])
    async def test_create_validation(self, client: AsyncClient, auth_headers, payload):
        response = await client.post(API_KEYS_URL, json=payload, headers=auth_headers)

        assert response.status_code == 422

    async def test_list_never_returns_secrets(self, client: AsyncClient, auth_headers):
        created = await create_key(client, auth_headers)

        response = await client.get(API_KEYS_URL, headers=auth_headers)

        assert response.status_code == 200
        keys = response.json()["data"]
        assert [k["id"] for k in keys] == [created["id"]]
        assert "api_key" not in keys[0]
        assert "secret_hash" not in keys[0]
        assert "lookup_hash" not in keys[0]
        assert created["api_key"] not in response.text

    async def test_list_includes_scope_name(
        self, client: AsyncClient, auth_headers, sub_agency
    ):
        await create_key(client, auth_headers, name="scoped", scope_id=sub_agency.id)

        response = await client.get(API_KEYS_URL, headers=auth_headers)

        assert response.json()["data"][0]["scope_name"] == sub_agency.name

    async def test_list_filters_by_scope(
        self, client: AsyncClient, auth_headers, sub_agency
    ):
        scoped = await create_key(client, auth_headers, name="scoped", scope_id=sub_agency.id)
        await create_key(client, auth_headers, name="unscoped")

        response = await client.get(
            API_KEYS_URL,
            params={"scope_id": sub_agency.id},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert [k["id"] for k in response.json()["data"]] == [scoped["id"]]

    async def test_list_is_per_user(self, client: AsyncClient, auth_headers, other_auth_headers):
        await create_key(client, auth_headers)

        response = await client.get(API_KEYS_URL, headers=other_auth_headers)

        assert response.json()["data"] == []

    async def test_delete_api_key(self, client: AsyncClient, auth_headers):
        created = await create_key(client, auth_headers)

        response = await client.delete(f"{API_KEYS_URL}/{created['id']}", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["message"] == "API key deleted successfully"

        response = await client.get(WHOAMI_URL, headers=key_headers(created["api_key"]))
        assert response.status_code == 401

    async def test_delete_missing_key(self, client: AsyncClient, auth_headers):
        response = await client.delete(f"{API_KEYS_URL}/does-not-exist", headers=auth_headers)

        assert response.status_code == 404

    async def test_delete_someone_elses_key(
        self, client: AsyncClient, auth_headers, other_auth_headers
    ):
        created = await create_key(client, auth_headers)

        response = await client.delete(
            f"{API_KEYS_URL}/{created['id']}",
            headers=other_auth_headers,
        )

        assert response.status_code == 404
        response = await client.get(WHOAMI_URL, headers=key_headers(created["api_key"]))
        assert response.status_code == 200

    async def test_creation_is_rate_limited(self, client: AsyncClient, auth_headers):
        for i in range(5):
            await create_key(client, auth_headers, name=f"key-{i}")

        response = await client.post(API_KEYS_URL, json={"name": "key-6"}, headers=auth_headers)

        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) == 3600
        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.json()["detail"]["retry_after"] == 3600

        listed = await client.get(API_KEYS_URL, headers=auth_headers)
        assert len(listed.json()["data"]) == 5

    async def test_rate_limit_is_per_user(
        self, client: AsyncClient, auth_headers, other_auth_headers
    ):
        for i in range(5):
            await create_key(client, auth_headers, name=f"key-{i}")

        response = await client.post(
            API_KEYS_URL,
            json={"name": "other-key"},
            headers=other_auth_headers,
        )

        assert response.status_code == 201

    async def test_rate_limit_window_resets(self, client: AsyncClient, auth_headers, timer):
        for i in range(5):
            await create_key(client, auth_headers, name=f"key-{i}")

        timer.advance(3600)

        response = await client.post(API_KEYS_URL, json={"name": "key-6"}, headers=auth_headers)
        assert response.status_code == 201


@pytest.mark.api
class TestApiKeyAuthentication:
    """Test requests authenticated with an API key."""

    async def test_whoami(self, client: AsyncClient, auth_headers, test_user):
        created = await create_key(client, auth_headers)

        response = await client.get(WHOAMI_URL, headers=key_headers(created["api_key"]))

        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == test_user.id
        assert data["email"] == test_user.email
        assert data["key_id"] == created["id"]
        assert data["scope_id"] is None
        assert data["auth_method"] == "api_key"

    @pytest.mark.parametrize("headers", [
        {},
        {"Authorization": "Basic dXNlcjpwYXNz"},
        {"Authorization": "Bearer not-a-key"},
        {"Authorization": "Bearer ahk_" + "0" * 64},
    ])
    async def test_rejected_credentials_share_one_message(self, client: AsyncClient, headers):
        response = await client.get(WHOAMI_URL, headers=headers)

        assert response.status_code == 401
        assert response.json() == {"detail": UNIFORM_AUTH_MESSAGE}
        assert response.headers["WWW-Authenticate"] == "Bearer"

    async def test_user_token_is_not_an_api_key(self, client: AsyncClient, auth_headers):
        response = await client.get(WHOAMI_URL, headers=auth_headers)

        assert response.status_code == 401

    async def test_unscoped_key_reads_owned_sub_agencies(
        self, client: AsyncClient, auth_headers, sub_agency, second_sub_agency
    ):
        created = await create_key(client, auth_headers)
        headers = key_headers(created["api_key"])

        for target in (sub_agency, second_sub_agency):
            response = await client.get(
                f"/api/v1/integrations/sub-agencies/{target.id}",
                headers=headers,
            )
            assert response.status_code == 200
            assert response.json()["id"] == target.id

    async def test_unscoped_key_cannot_read_foreign_sub_agency(
        self, client: AsyncClient, auth_headers, foreign_sub_agency
    ):
        created = await create_key(client, auth_headers)

        response = await client.get(
            f"/api/v1/integrations/sub-agencies/{foreign_sub_agency.id}",
            headers=key_headers(created["api_key"]),
        )

        assert response.status_code == 404

    async def test_scoped_key_lifecycle(
        self,
        client: AsyncClient,
        auth_headers,
        sub_agency,
        second_sub_agency,
        clock,
        auth_components,
    ):
        """Create a scoped 30-day key, use it, then watch it expire."""
        created = await create_key(
            client,
            auth_headers,
            name="svc-key",
            scope_id=sub_agency.id,
            expires_in_days=30,
        )
        headers = key_headers(created["api_key"])

        response = await client.get(WHOAMI_URL, headers=headers)
        assert response.status_code == 200
        assert response.json()["scope_id"] == sub_agency.id

        response = await client.get(
            f"/api/v1/integrations/sub-agencies/{sub_agency.id}",
            headers=headers,
        )
        assert response.status_code == 200

        response = await client.get(
            f"/api/v1/integrations/sub-agencies/{second_sub_agency.id}",
            headers=headers,
        )
        assert response.status_code == 403

        await auth_components.spawner.drain()
        listed = await client.get(API_KEYS_URL, headers=auth_headers)
        assert listed.json()["data"][0]["last_used_at"] is not None

        clock.advance(days=31)

        response = await client.get(WHOAMI_URL, headers=headers)
        assert response.status_code == 401
        assert response.json() == {"detail": UNIFORM_AUTH_MESSAGE}

    async def test_log_context_carries_key_identity(
        self, client: AsyncClient, auth_headers, test_user, sub_agency, context_routes
    ):
        created = await create_key(client, auth_headers, scope_id=sub_agency.id)

        response = await client.get(
            "/context/api-key",
            headers={**key_headers(created["api_key"]), "X-Request-ID": "req-ctx"},
        )

        assert response.status_code == 200
        context = response.json()
        assert context["request_id"] == "req-ctx"
        assert context["user_id"] == test_user.id
        assert context["scope_id"] == sub_agency.id

    async def test_log_context_carries_session_user(
        self, client: AsyncClient, auth_headers, test_user, context_routes
    ):
        response = await client.get("/context/user", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["user_id"] == test_user.id
        assert "scope_id" not in response.json()

    async def test_responses_carry_request_id(self, client: AsyncClient):
        response = await client.get(WHOAMI_URL, headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
