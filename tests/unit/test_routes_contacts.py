"""
Tests for the contact and label HTTP routes.
"""

import json
from unittest.mock import patch

import psycopg
import pytest
from fastapi.testclient import TestClient

from rolodex.config import settings
from rolodex.db.helpers import DatabaseError
from rolodex.main import app
from rolodex.repositories.contact_repository import LabelExistsError, LabelRepository
from rolodex.routes.dependencies import get_contact_gateway
from rolodex.services.contact_gateway import ContactGateway
from rolodex.services.extraction_service import ExtractionService
from rolodex.services.label_matcher import LabelMatcher
from rolodex.services.openai_service import OpenAIServiceError

client = TestClient(app)


@pytest.fixture
def use_gateway(apply_auth_override, fake_openai, fake_contact_repository, fake_label_repository):
    def _use(*replies, fallback_on_request_error=True):
        openai_service = fake_openai(*replies)
        gateway = ContactGateway(
            ExtractionService(openai_service, fallback_on_request_error=fallback_on_request_error),
            LabelMatcher(openai_service),
            contact_repository=fake_contact_repository,
            label_repository=fake_label_repository,
        )
        apply_auth_override(app)
        app.dependency_overrides[get_contact_gateway] = lambda: gateway
        return gateway

    yield _use
    app.dependency_overrides.clear()


def test_ingest_contact(use_gateway):
    use_gateway(json.dumps({"name": "Jane Doe", "email": "jane@x.io"}))

    response = client.post("/contacts", json={"text": "Jane Doe jane@x.io"})

    assert response.status_code == 201
    data = response.json()
    assert data["contact"]["name"] == "Jane Doe"
    assert data["contact"]["user_id"] == "user-123"
    assert data["contact"]["email"] == "jane@x.io"
    assert data["side_effects"] == [{"name": "refresh_contacts", "ok": True, "error": None}]


def test_ingest_without_name_is_unprocessable(use_gateway, fake_contact_repository):
    use_gateway(json.dumps({"description": "someone from the gym"}))

    response = client.post("/contacts", json={"text": "someone from the gym"})

    assert response.status_code == 422
    assert fake_contact_repository.created == []


def test_ingest_extraction_failure_without_fallback(use_gateway):
    use_gateway(OpenAIServiceError("down"), fallback_on_request_error=False)

    response = client.post("/contacts", json={"text": "Jane Doe"})

    assert response.status_code == 502


def test_ingest_rejects_empty_text(use_gateway):
    use_gateway()

    response = client.post("/contacts", json={"text": ""})

    assert response.status_code == 422


def test_list_contacts(use_gateway, fake_contact_repository, contact_factory):
    fake_contact_repository.contacts = [
        contact_factory(name="Older"),
        contact_factory(name="Newer"),
    ]
    use_gateway()

    response = client.get("/contacts")

    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 2
    assert [contact["name"] for contact in data["contacts"]] == ["Newer", "Older"]


def test_list_contacts_store_failure(use_gateway, fake_contact_repository):
    fake_contact_repository.list_error = DatabaseError("down", operation="fetch_all")
    use_gateway()

    response = client.get("/contacts")

    assert response.status_code == 503


def test_search_contacts(use_gateway, fake_contact_repository, contact_factory):
    fake_contact_repository.contacts = [
        contact_factory(name="Sam", text_description="We discussed his love of hiking"),
    ]
    use_gateway()

    response = client.get("/contacts/search", params={"q": "loves hiking"})

    assert response.status_code == 200
    assert [contact["name"] for contact in response.json()["contacts"]] == ["Sam"]


def test_assign_and_remove_label(
    use_gateway, fake_contact_repository, fake_label_repository, contact_factory, label_factory
):
    contact = contact_factory(name="Jane Doe")
    label = label_factory("Sales")
    fake_contact_repository.contacts = [contact]
    fake_label_repository.labels = [label]
    use_gateway()

    assigned = client.post(f"/contacts/{contact.id}/labels/{label.id}")
    removed = client.delete(f"/contacts/{contact.id}/labels/{label.id}")

    assert assigned.status_code == 201
    assert assigned.json()["label_id"] == label.id
    assert removed.status_code == 204
    assert fake_label_repository.assignments == []


def test_label_links_of_another_user_are_not_found(
    use_gateway, fake_contact_repository, fake_label_repository, contact_factory, label_factory
):
    contact = contact_factory(user_id="other-user", name="Jane Doe")
    label = label_factory("Sales", user_id="other-user")
    fake_contact_repository.contacts = [contact]
    fake_label_repository.labels = [label]
    fake_label_repository.assignments = [(contact.id, label.id)]
    use_gateway()

    assigned = client.post(f"/contacts/{contact.id}/labels/{label.id}")
    removed = client.delete(f"/contacts/{contact.id}/labels/{label.id}")

    assert assigned.status_code == 404
    assert removed.status_code == 404
    assert fake_label_repository.assignments == [(contact.id, label.id)]


def test_assigning_label_twice_conflicts(
    use_gateway, fake_contact_repository, fake_label_repository, contact_factory, label_factory
):
    contact = contact_factory(name="Jane Doe")
    label = label_factory("Sales")
    fake_contact_repository.contacts = [contact]
    fake_label_repository.labels = [label]
    use_gateway()

    client.post(f"/contacts/{contact.id}/labels/{label.id}")
    again = client.post(f"/contacts/{contact.id}/labels/{label.id}")

    assert again.status_code == 409


def test_removing_unassigned_label_is_not_found(
    use_gateway, fake_contact_repository, fake_label_repository, contact_factory, label_factory
):
    contact = contact_factory(name="Jane Doe")
    label = label_factory("Sales")
    fake_contact_repository.contacts = [contact]
    fake_label_repository.labels = [label]
    use_gateway()

    response = client.delete(f"/contacts/{contact.id}/labels/{label.id}")

    assert response.status_code == 404


@pytest.fixture
def use_store_labels(apply_auth_override, fake_openai, fake_contact_repository):
    """Gateway whose label operations go through LabelRepository SQL helpers."""
    openai_service = fake_openai()
    gateway = ContactGateway(
        ExtractionService(openai_service),
        LabelMatcher(openai_service),
        contact_repository=fake_contact_repository,
        label_repository=LabelRepository,
    )
    apply_auth_override(app)
    app.dependency_overrides[get_contact_gateway] = lambda: gateway
    yield gateway
    app.dependency_overrides.clear()


def _failing_statement(cause: Exception):
    async def _run(*args, **kwargs):
        error = DatabaseError(f"Query failed: {cause}", recoverable=False)
        error.__cause__ = cause
        raise error

    return _run


@pytest.mark.parametrize(
    "cause, expected_status",
    [
        (psycopg.errors.UniqueViolation("duplicate key"), 409),
        (psycopg.errors.ForeignKeyViolation("violates foreign key"), 404),
        (psycopg.errors.InvalidTextRepresentation("invalid input syntax for type uuid"), 422),
    ],
)
def test_assign_label_maps_constraint_failures(
    use_store_labels, monkeypatch, cause, expected_status
):
    monkeypatch.setattr(
        "rolodex.repositories.contact_repository.fetch_one", _failing_statement(cause)
    )

    response = client.post("/contacts/c1/labels/l1")

    assert response.status_code == expected_status


@pytest.mark.parametrize(
    "cause, expected_status",
    [
        (psycopg.errors.ForeignKeyViolation("violates foreign key"), 404),
        (psycopg.errors.InvalidTextRepresentation("invalid input syntax for type uuid"), 422),
    ],
)
def test_remove_label_maps_constraint_failures(
    use_store_labels, monkeypatch, cause, expected_status
):
    monkeypatch.setattr(
        "rolodex.repositories.contact_repository.execute_query", _failing_statement(cause)
    )

    response = client.delete("/contacts/c1/labels/l1")

    assert response.status_code == expected_status


def test_assign_label_store_outage_is_unavailable(use_store_labels, monkeypatch):
    monkeypatch.setattr(
        "rolodex.repositories.contact_repository.fetch_one",
        _failing_statement(psycopg.OperationalError("connection refused")),
    )

    response = client.post("/contacts/c1/labels/l1")

    assert response.status_code == 503


@pytest.fixture
def without_model_client(
    apply_auth_override, fake_contact_repository, fake_label_repository, monkeypatch
):
    monkeypatch.setattr("rolodex.routes.dependencies.ContactRepository", fake_contact_repository)
    monkeypatch.setattr("rolodex.routes.dependencies.LabelRepository", fake_label_repository)
    apply_auth_override(app)
    with patch.object(app.state, "openai_service", None, create=True):
        yield
    app.dependency_overrides.clear()


def test_ingest_without_model_client_uses_local_extraction(
    without_model_client, fake_contact_repository
):
    response = client.post("/contacts", json={"text": "John Smith 555-123-4567 met at conf"})

    assert response.status_code == 201
    contact = response.json()["contact"]
    assert contact["name"] == "John Smith"
    assert contact["phone_number"] == "555-123-4567"
    assert len(fake_contact_repository.created) == 1


def test_ingest_without_model_client_and_fallback_disabled(without_model_client, monkeypatch):
    monkeypatch.setattr(settings, "EXTRACTION_FALLBACK_ON_REQUEST_ERROR", False)

    response = client.post("/contacts", json={"text": "John Smith 555-123-4567"})

    assert response.status_code == 503


def test_listing_without_model_client_still_works(
    without_model_client, fake_contact_repository, contact_factory
):
    fake_contact_repository.contacts = [contact_factory(name="Jane Doe")]

    response = client.get("/contacts")

    assert response.status_code == 200
    assert response.json()["count"] == 1


def test_create_and_list_labels(use_gateway):
    use_gateway()

    client.post("/labels", json={"name": "Sales"})
    created = client.post("/labels", json={"name": " Engineering "})
    listed = client.get("/labels")

    assert created.status_code == 201
    assert created.json()["name"] == "Engineering"
    assert [label["name"] for label in listed.json()["labels"]] == ["Engineering", "Sales"]


def test_create_duplicate_label_conflicts(use_gateway, fake_label_repository, monkeypatch):
    async def duplicate(user_id, name):
        raise LabelExistsError("Label 'Sales' already exists", operation="create_label")

    monkeypatch.setattr(fake_label_repository, "create_label", duplicate)
    use_gateway()

    response = client.post("/labels", json={"name": "Sales"})

    assert response.status_code == 409


def test_blank_label_name_is_unprocessable(use_gateway):
    use_gateway()

    response = client.post("/labels", json={"name": "   "})

    assert response.status_code == 422


def test_routes_require_auth():
    response = client.get("/contacts")

    assert response.status_code in (401, 403)
