import asyncio
import json

import httpx
import pytest

from snapfest.core.exceptions import BackendError, NetworkError, NotFoundError, ValidationError
from snapfest.services.backend_client import BackendClient


def _client(handler, token="user-token"):
    return BackendClient(
        base_url="http://backend.test/api",
        token=token,
        transport=httpx.MockTransport(handler),
    )


def _call(handler, method="GET", path="/cart", **kwargs):
    async def scenario():
        async with _client(handler) as client:
            return await client.request(method, path, **kwargs)

    return asyncio.run(scenario())


def test_unwraps_envelope_and_forwards_bearer_token():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("Authorization")
        seen["url"] = str(request.url)
        return httpx.Response(200, json={"success": True, "message": "ok", "data": {"cartItems": []}})

    data = _call(handler)

    assert data == {"cartItems": []}
    assert seen["auth"] == "Bearer user-token"
    assert seen["url"] == "http://backend.test/api/cart"


def test_sends_json_body():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"success": True, "data": {"booking": {"_id": "b1"}}})

    data = _call(handler, "POST", "/bookings", json={"packageId": "p1"})

    assert seen["body"] == {"packageId": "p1"}
    assert data["booking"]["_id"] == "b1"


@pytest.mark.parametrize("status_code, error", [
    (400, ValidationError),
    (422, ValidationError),
    (404, NotFoundError),
    (401, BackendError),
    (403, BackendError),
    (500, NetworkError),
    (503, NetworkError),
])
def test_maps_status_codes(status_code, error):
    def handler(request):
        return httpx.Response(status_code, json={"success": False, "message": "nope"})

    with pytest.raises(error, match="nope"):
        _call(handler)


def test_success_false_with_2xx_is_backend_error():
    def handler(request):
        return httpx.Response(200, json={"success": False, "message": "Package unavailable"})

    with pytest.raises(BackendError, match="Package unavailable"):
        _call(handler)


def test_transport_errors_and_timeouts_are_network_errors():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    def slow(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(NetworkError) as refused:
        _call(refuse)
    with pytest.raises(NetworkError, match="timed out"):
        _call(slow)
    assert refused.value.retryable is True


def test_non_json_5xx_is_network_error():
    def handler(request):
        return httpx.Response(502, text="<html>Bad Gateway</html>")

    with pytest.raises(NetworkError):
        _call(handler)
