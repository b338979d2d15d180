"""Tests for SendGridClient API key operations against the in-memory fake."""

from __future__ import annotations

import json

import httpx
import pytest

from gridsync.errors import DecodeError, PreconditionError, RemoteRejection, Requirement
from gridsync.models import APIKeyCreate, APIKeyUpdate

pytestmark = pytest.mark.unit


class TestCreateAPIKey:
    async def test_create_returns_id_and_secret(self, sendgrid_client, fake_sendgrid):
        created = await sendgrid_client.create_api_key(
            APIKeyCreate(name="deploy", scopes=["mail.send", "alerts.read"])
        )

        assert created.api_key_id == "key-1"
        assert created.api_key == "SG.key-1.secret"
        assert created.scopes == ["alerts.read", "mail.send"]
        [request] = fake_sendgrid.calls("POST", "/api_keys")
        assert json.loads(request.content) == {
            "name": "deploy",
            "scopes": ["alerts.read", "mail.send"],
        }

    async def test_create_without_scopes_omits_field(self, sendgrid_client, fake_sendgrid):
        await sendgrid_client.create_api_key(APIKeyCreate(name="deploy"))
        [request] = fake_sendgrid.calls("POST", "/api_keys")
        assert json.loads(request.content) == {"name": "deploy"}

    async def test_create_without_name_is_precondition(self, sendgrid_client, fake_sendgrid):
        with pytest.raises(PreconditionError) as exc_info:
            await sendgrid_client.create_api_key(APIKeyCreate(name="  "))
        assert exc_info.value.requirement is Requirement.NAME_REQUIRED
        assert fake_sendgrid.requests == []

    async def test_create_response_not_object(self, sendgrid_client, fake_sendgrid):
        fake_sendgrid.queue("POST", "/api_keys", httpx.Response(201, json=["key-1"]))
        with pytest.raises(DecodeError, match="JSON object"):
            await sendgrid_client.create_api_key(APIKeyCreate(name="deploy"))


class TestReadAPIKey:
    async def test_read_existing(self, sendgrid_client):
        created = await sendgrid_client.create_api_key(
            APIKeyCreate(name="deploy", scopes=["mail.send"])
        )
        key = await sendgrid_client.read_api_key(created.api_key_id)
        assert key is not None
        assert key.name == "deploy"
        assert key.scopes == ["mail.send"]
        assert key.api_key is None

    async def test_read_missing_returns_none(self, sendgrid_client):
        assert await sendgrid_client.read_api_key("key-404") is None

    async def test_read_unauthorized_raises(self, sendgrid_client, fake_sendgrid):
        fake_sendgrid.queue("GET", "/api_keys/key-1", httpx.Response(401, text="unauthorized"))
        with pytest.raises(RemoteRejection) as exc_info:
            await sendgrid_client.read_api_key("key-1")
        assert exc_info.value.status_code == 401

    async def test_read_blank_id_is_precondition(self, sendgrid_client):
        with pytest.raises(PreconditionError) as exc_info:
            await sendgrid_client.read_api_key("")
        assert exc_info.value.requirement is Requirement.API_KEY_ID_REQUIRED


class TestUpdateAPIKey:
    async def test_rename_uses_patch_and_keeps_scopes(self, sendgrid_client, fake_sendgrid):
        created = await sendgrid_client.create_api_key(
            APIKeyCreate(name="deploy", scopes=["mail.send"])
        )
        updated = await sendgrid_client.update_api_key(
            created.api_key_id, APIKeyUpdate(name="deploy-v2")
        )

        assert updated is not None
        assert updated.name == "deploy-v2"
        assert updated.scopes == ["mail.send"]
        [patch] = fake_sendgrid.calls("PATCH", "/api_keys/key-1")
        assert json.loads(patch.content) == {"name": "deploy-v2"}
        assert fake_sendgrid.calls("PUT") == []

    async def test_scopes_use_put_with_current_name(self, sendgrid_client, fake_sendgrid):
        created = await sendgrid_client.create_api_key(
            APIKeyCreate(name="deploy", scopes=["mail.send"])
        )
        updated = await sendgrid_client.update_api_key(
            created.api_key_id, APIKeyUpdate(scopes=["mail.send", "stats.read"])
        )

        assert updated is not None
        assert updated.scopes == ["mail.send", "stats.read"]
        [put] = fake_sendgrid.calls("PUT", "/api_keys/key-1")
        assert json.loads(put.content) == {
            "name": "deploy",
            "scopes": ["mail.send", "stats.read"],
        }

    async def test_name_and_scopes_in_one_put(self, sendgrid_client, fake_sendgrid):
        created = await sendgrid_client.create_api_key(APIKeyCreate(name="deploy"))
        fake_sendgrid.requests.clear()

        await sendgrid_client.update_api_key(
            created.api_key_id, APIKeyUpdate(name="ops", scopes=["stats.read"])
        )

        assert [r.method for r in fake_sendgrid.requests] == ["PUT", "GET"]

    async def test_empty_patch_only_reads(self, sendgrid_client, fake_sendgrid):
        created = await sendgrid_client.create_api_key(APIKeyCreate(name="deploy"))
        fake_sendgrid.requests.clear()

        key = await sendgrid_client.update_api_key(created.api_key_id, APIKeyUpdate())

        assert key is not None
        assert key.name == "deploy"
        assert [r.method for r in fake_sendgrid.requests] == ["GET"]

    async def test_scope_change_on_missing_key_returns_none(self, sendgrid_client):
        assert (
            await sendgrid_client.update_api_key("key-404", APIKeyUpdate(scopes=["mail.send"]))
            is None
        )

    async def test_rename_of_missing_key_returns_none(self, sendgrid_client, fake_sendgrid):
        key = await sendgrid_client.update_api_key("key-404", APIKeyUpdate(name="deploy-v2"))

        assert key is None
        assert [r.method for r in fake_sendgrid.requests] == ["PATCH"]

    async def test_name_and_scopes_on_missing_key_returns_none(
        self, sendgrid_client, fake_sendgrid
    ):
        key = await sendgrid_client.update_api_key(
            "key-404", APIKeyUpdate(name="deploy", scopes=["mail.send"])
        )

        assert key is None
        assert [r.method for r in fake_sendgrid.requests] == ["PUT"]


class TestDeleteAPIKey:
    async def test_delete_is_idempotent(self, sendgrid_client, fake_sendgrid):
        created = await sendgrid_client.create_api_key(APIKeyCreate(name="deploy"))
        assert await sendgrid_client.delete_api_key(created.api_key_id) is True
        assert await sendgrid_client.delete_api_key(created.api_key_id) is True
        assert fake_sendgrid.api_keys == {}

    async def test_delete_server_error_raises(self, sendgrid_client, fake_sendgrid):
        fake_sendgrid.queue("DELETE", "/api_keys/key-1", httpx.Response(500, text="oops"))
        with pytest.raises(RemoteRejection) as exc_info:
            await sendgrid_client.delete_api_key("key-1")
        assert exc_info.value.status_code == 500
