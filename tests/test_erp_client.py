import json

import httpx
import pytest

from erp_sync.core.exceptions import ErpApiError, ErpAuthError
from erp_sync.erp.client import HttpErpClient
from erp_sync.erp import filters


class ErpServer:
    """Scripted ERP responses keyed by (method, path suffix)."""

    def __init__(self):
        self.requests = []
        self.responses = {}
        self.logins = 0
        self.reject_next_session = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.split("/b1s/v1/", 1)[1]
        if path == "Login":
            self.logins += 1
            body = json.loads(request.content)
            if body["Password"] != "secret":
                return httpx.Response(401, json={"error": {"code": 100, "message": {"value": "Invalid login"}}})
            return httpx.Response(200, json={"SessionId": f"s{self.logins}", "SessionTimeout": 30})
        if self.reject_next_session:
            self.reject_next_session = False
            return httpx.Response(401, json={"error": {"message": {"value": "Session expired"}}})
        return self.responses.get((request.method, path), httpx.Response(404, json={
            "error": {"code": -2028, "message": {"lang": "en-us", "value": "No matching records found"}},
        }))


def make_client(server: ErpServer, password: str = "secret") -> HttpErpClient:
    return HttpErpClient(
        base_url="https://erp.test/b1s/v1",
        company_db="SBODEMO",
        username="manager",
        password=password,
        transport=httpx.MockTransport(server),
    )


@pytest.mark.asyncio
async def test_logs_in_once_and_reuses_session():
    server = ErpServer()
    server.responses[("GET", "Orders(12)")] = httpx.Response(200, json={"DocEntry": 12, "CardCode": "C1"})
    client = make_client(server)

    first = await client.get("Orders(12)")
    await client.get("Orders(12)")

    assert first == {"DocEntry": 12, "CardCode": "C1"}
    assert server.logins == 1
    login_body = json.loads(server.requests[0].content)
    assert login_body == {"CompanyDB": "SBODEMO", "UserName": "manager", "Password": "secret"}
    await client.close()


@pytest.mark.asyncio
async def test_query_params_are_sent():
    server = ErpServer()
    server.responses[("GET", "Orders")] = httpx.Response(200, json={"value": []})
    client = make_client(server)

    await client.get("Orders", {"$filter": filters.equals("NumAtCard", "WEB-SO-000001"), "$top": 1})

    request = server.requests[-1]
    assert request.url.params["$filter"] == "NumAtCard eq 'WEB-SO-000001'"
    assert request.url.params["$top"] == "1"
    await client.close()


@pytest.mark.asyncio
async def test_relogs_in_once_on_expired_session():
    server = ErpServer()
    server.responses[("POST", "Orders")] = httpx.Response(201, json={"DocEntry": 5, "DocNum": 900})
    client = make_client(server)
    await client.login()
    server.reject_next_session = True

    result = await client.post("Orders", {"CardCode": "C1"})

    assert result == {"DocEntry": 5, "DocNum": 900}
    assert server.logins == 2
    await client.close()


@pytest.mark.asyncio
async def test_failed_login_raises_auth_error():
    client = make_client(ErpServer(), password="wrong")

    with pytest.raises(ErpAuthError) as exc:
        await client.get("Orders(1)")

    assert exc.value.status_code == 401
    assert "Invalid login" in str(exc.value)
    await client.close()


@pytest.mark.asyncio
async def test_error_body_message_is_surfaced():
    client = make_client(ErpServer())

    with pytest.raises(ErpApiError) as exc:
        await client.get("Orders(404)")

    assert exc.value.status_code == 404
    assert "No matching records found" in str(exc.value)
    await client.close()


@pytest.mark.asyncio
async def test_no_content_returns_empty_dict():
    server = ErpServer()
    server.responses[("POST", "Orders(7)/Cancel")] = httpx.Response(204)
    client = make_client(server)

    assert await client.post("Orders(7)/Cancel") == {}
    await client.close()


@pytest.mark.asyncio
async def test_transport_error_becomes_erp_error():
    def broken(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/Login"):
            return httpx.Response(200, json={"SessionTimeout": 30})
        raise httpx.ConnectError("connection refused", request=request)

    client = HttpErpClient(base_url="https://erp.test/b1s/v1", password="secret", transport=httpx.MockTransport(broken))

    with pytest.raises(ErpApiError) as exc:
        await client.get("Items('A')")

    assert "connection refused" in str(exc.value)
    await client.close()


def test_filter_helpers_escape_quotes():
    assert filters.equals("ItemCode", "O'Neil") == "ItemCode eq 'O''Neil'"
    assert filters.entity("Items", "O'Neil") == "Items('O''Neil')"
    assert filters.entity("Orders", 12) == "Orders(12)"
    assert filters.or_filter(filters.equals("A", 1), filters.equals("B", 2)) == "(A eq '1' or B eq '2')"
