"""Tests for the billing entitlement check and artifact key layout."""

import re

import httpx
import pytest

from pixelbatch.services.artifact_storage import generate_artifact_key
from pixelbatch.services.entitlements import HttpEntitlementChecker


def _checker(handler) -> HttpEntitlementChecker:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpEntitlementChecker("https://billing.example.com/", client=http)


@pytest.mark.asyncio
async def test_entitled_user_allowed():
    def handler(request):
        assert request.url.path == "/entitlements/user_alice"
        return httpx.Response(200, json={"allowed": True})

    result = await _checker(handler).check("user_alice")
    assert result.allowed
    assert result.reason is None


@pytest.mark.asyncio
async def test_denial_carries_reason():
    def handler(request):
        return httpx.Response(200, json={"allowed": False, "reason": "Trial expired"})

    result = await _checker(handler).check("user_alice")
    assert not result.allowed
    assert result.reason == "Trial expired"


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [httpx.Response(503), httpx.Response(200, text="<html>")])
async def test_unreachable_billing_denies(response):
    result = await _checker(lambda request: response).check("user_alice")
    assert not result.allowed
    assert "try again" in result.reason


def test_artifact_key_layout():
    key = generate_artifact_key("user/../alice", "image/jpeg")
    assert re.fullmatch(r"generated/user____alice/\d+_[0-9a-f]{8}\.jpg", key)
    assert generate_artifact_key("u", "application/x-unknown").endswith(".bin")
