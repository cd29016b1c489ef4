"""Ownership checks for catalog entities referenced by a submission."""

import json

import httpx
import pytest

from genflow.services.correlation import (
    HttpCorrelationValidator,
    TrustingCorrelationValidator,
    build_correlation_validator,
)
from genflow.services.exceptions import CollaboratorUnavailableError, NotFoundError

REFS = {"template_id": "tpl-1", "character_id": "chr-1", "campaign": "spring"}


def make_validator(handler) -> HttpCorrelationValidator:
    return HttpCorrelationValidator(
        "https://catalog.test/", transport=httpx.MockTransport(handler)
    )


def test_build_without_catalog_trusts_caller():
    assert isinstance(build_correlation_validator(""), TrustingCorrelationValidator)
    assert isinstance(
        build_correlation_validator("https://catalog.test"), HttpCorrelationValidator
    )


@pytest.mark.asyncio
async def test_owned_refs_are_verified():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"valid": True})

    await make_validator(handler).validate("u1", REFS)

    assert seen["path"] == "/ownership/verify"
    assert seen["body"] == {
        "owner_ref": "u1",
        "refs": {"template_id": "tpl-1", "character_id": "chr-1"},
    }


@pytest.mark.asyncio
async def test_refs_without_catalog_entities_skip_the_call():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("catalog must not be called")

    await make_validator(handler).validate("u1", {"campaign": "spring"})


@pytest.mark.asyncio
async def test_foreign_entity_is_not_found():
    validator = make_validator(
        lambda request: httpx.Response(200, json={"valid": False, "missing": ["template_id"]})
    )

    with pytest.raises(NotFoundError):
        await validator.validate("u1", REFS)


@pytest.mark.asyncio
async def test_missing_entity_is_not_found():
    validator = make_validator(lambda request: httpx.Response(404))

    with pytest.raises(NotFoundError):
        await validator.validate("u1", REFS)


@pytest.mark.asyncio
async def test_catalog_outage_is_collaborator_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(CollaboratorUnavailableError):
        await make_validator(handler).validate("u1", REFS)

    with pytest.raises(CollaboratorUnavailableError):
        await make_validator(lambda request: httpx.Response(500)).validate("u1", REFS)
