"""Tests for request building and the HTTP transport."""

import json

import httpx
import pytest

from replica.errors import ErrorCode, ReplicaError
from replica.schema.query import DataQuery, Operation
from replica.transport import HttpTransport, build_request, normalize_response
from replica.transport.request import Request


class TestRequestBuilding:
    """Tests for turning queries into requests."""

    def test_read_with_filter(self):
        request = build_request(DataQuery("Tasks", Operation.READ, filter={"Done": False}))

        assert (request.method, request.endpoint) == ("GET", "Tasks")
        assert json.loads(request.headers["X-Replica-Filter"]) == {"Done": False}
        assert request.authenticate

    def test_single_item_endpoints(self):
        assert build_request(DataQuery("Tasks", Operation.READ_BY_ID, item_id="t1")).endpoint == "Tasks/t1"
        assert build_request(DataQuery("Tasks", Operation.COUNT)).endpoint == "Tasks/_count"
        assert build_request(DataQuery("Tasks", Operation.DESTROY_SINGLE, item_id="t1")).method == "DELETE"

        acl = build_request(DataQuery("Tasks", Operation.SET_ACL, item_id="t1", options={"acl": {"read": []}}))
        assert (acl.method, acl.endpoint, acl.data) == ("PUT", "Tasks/t1/_acl", {"read": []})

        owner = build_request(DataQuery("Tasks", Operation.SET_OWNER, item_id="t1", options={"owner": "u1"}))
        assert (owner.endpoint, owner.data) == ("Tasks/t1/_owner", {"Owner": "u1"})

    def test_update_by_filter(self):
        request = build_request(
            DataQuery("Tasks", Operation.UPDATE, filter={"Id": "t1", "ModifiedAt": "x"}, data={"$set": {"A": 1}})
        )

        assert (request.method, request.endpoint) == ("PUT", "Tasks")
        assert request.header_json("X-Replica-Filter") == {"Id": "t1", "ModifiedAt": "x"}
        assert request.data == {"$set": {"A": 1}}

    def test_sync_and_skip_auth_flags(self):
        request = build_request(DataQuery("Tasks", Operation.CREATE, data=[{}], is_sync=True, skip_auth=True))

        assert request.headers["X-Replica-Sync"] == "true"
        assert not request.authenticate

    def test_missing_id(self):
        with pytest.raises(ReplicaError) as exc_info:
            build_request(DataQuery("Tasks", Operation.DESTROY_SINGLE))
        assert exc_info.value.code == ErrorCode.INVALID_REQUEST


class TestResponseNormalization:
    """Tests for the response envelope mapping."""

    def test_envelope(self):
        assert normalize_response({"Result": [1], "Count": 1}) == {"result": [1], "count": 1}
        assert normalize_response({"result": 1, "ModifiedAt": "x"}) == {"result": 1, "ModifiedAt": "x"}
        assert normalize_response([1, 2]) == {"result": [1, 2]}


def _transport(handler, auth=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpTransport("https://api.example.com/v1", "key", auth=auth, client=client)


class TestHttpTransport:
    """Tests for the httpx based transport."""

    @pytest.mark.asyncio
    async def test_send(self):
        from replica.auth import TokenAuthentication

        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"Result": [{"Id": "t1"}], "Count": 1})

        transport = _transport(handler, auth=TokenAuthentication("abc"))
        response = await transport.send(Request("GET", "Tasks", {"X-Replica-Filter": '{"Id": "t1"}'}))

        assert response == {"result": [{"Id": "t1"}], "count": 1}
        (request,) = seen
        assert str(request.url) == "https://api.example.com/v1/key/Tasks"
        assert request.headers["Authorization"] == "Bearer abc"
        assert request.headers["X-Replica-Filter"] == '{"Id": "t1"}'
        assert request.headers["X-Replica-Sdk"] == "replica-python"
        await transport.close()

    @pytest.mark.asyncio
    async def test_unauthenticated_request_has_no_token(self):
        from replica.auth import TokenAuthentication

        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"Result": {}})

        transport = _transport(handler, auth=TokenAuthentication("abc"))
        await transport.send(Request("POST", "Users/login", data={"a": 1}, authenticate=False))

        assert "Authorization" not in seen[0].headers
        assert json.loads(seen[0].content) == {"a": 1}

    @pytest.mark.asyncio
    async def test_server_error_code(self):
        transport = _transport(
            lambda request: httpx.Response(401, json={"errorCode": 302, "message": "Expired access token."})
        )

        with pytest.raises(ReplicaError) as exc_info:
            await transport.send(Request("GET", "Tasks"))
        assert exc_info.value.code == ErrorCode.EXPIRED_TOKEN

    @pytest.mark.asyncio
    async def test_error_without_body(self):
        transport = _transport(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(ReplicaError) as exc_info:
            await transport.send(Request("GET", "Tasks"))
        assert exc_info.value.code == ErrorCode.GENERAL

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(ReplicaError):
            await _transport(handler).send(Request("GET", "Tasks"))

    @pytest.mark.asyncio
    async def test_empty_body(self):
        transport = _transport(lambda request: httpx.Response(204))
        assert await transport.send(Request("DELETE", "Tasks/t1")) == {"result": None}

    @pytest.mark.asyncio
    async def test_upload(self, temp_dir):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"Result": [{"Id": "f1", "Uri": "https://cdn/f1"}]})

        path = temp_dir / "notes.txt"
        path.write_bytes(b"hello")
        result = await _transport(handler).upload(Request("POST", "Files"), path, {"Filename": "notes.txt"})

        assert result["result"] == {"Id": "f1", "Uri": "https://cdn/f1"}
        body = seen[0].content
        assert b'name="fileUpload_Filename"' in body
        assert b'name="fileUpload"; filename="notes.txt"' in body
        assert b"hello" in body

    @pytest.mark.asyncio
    async def test_rejected_upload(self, temp_dir):
        path = temp_dir / "empty.bin"
        path.write_bytes(b"")
        transport = _transport(lambda request: httpx.Response(200, json={"Result": False}))

        with pytest.raises(ReplicaError) as exc_info:
            await transport.upload(Request("POST", "Files"), path, {})
        assert exc_info.value.code == ErrorCode.MISSING_OR_INVALID_FILE_CONTENT

    @pytest.mark.asyncio
    async def test_download(self):
        transport = _transport(lambda request: httpx.Response(200, content=b"bytes"))
        assert await transport.download("https://cdn/f1") == b"bytes"
