import asyncio
import json

import httpx
import pytest

from dockrevui.backend import ApiError, DockrevApi, extract_error_detail
from dockrevui.model import BackupTargetOverrides, ServiceSettings


def make_api(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DockrevApi("http://dockrev.local/", client=client)


class TestErrorDetail:
    def test_json_message_preferred(self):
        resp = httpx.Response(400, json={"message": "  bad scope  ", "code": 7})
        assert extract_error_detail(resp) == "bad scope"

    def test_text_fallback_is_truncated(self):
        resp = httpx.Response(500, text="  " + "e" * 500)
        assert extract_error_detail(resp) == "e" * 240

    def test_json_without_message_uses_body(self):
        resp = httpx.Response(500, json={"error": "nope"})
        assert "nope" in extract_error_detail(resp)

    def test_empty_body(self):
        assert extract_error_detail(httpx.Response(503)) == ""
        assert ApiError.from_response(httpx.Response(503)).message == "HTTP 503"

    def test_from_transport(self):
        request = httpx.Request("GET", "http://dockrev.local/")
        err = ApiError.from_transport(httpx.ReadTimeout("slow", request=request))
        assert err.message == "request timed out: slow"
        assert err.status is None
        err = ApiError.from_transport(httpx.ConnectError("refused", request=request))
        assert err.message == "refused"


def test_get_stack_parses_services():
    def handler(request):
        assert request.url.raw_path == b"/api/stacks/stk%2F1"
        return httpx.Response(200, json={"stack": {
            "id": "stk/1",
            "name": "media",
            "compose": {"composeFiles": ["/srv/media/compose.yml"], "envFile": None},
            "services": [{
                "id": "svc_1",
                "name": "jellyfin",
                "image": {"ref": "jellyfin/jellyfin", "tag": "10.9", "resolvedTag": "10.9.2"},
                "candidate": {"tag": "10.9.3", "digest": "sha256:a", "archMatch": "match",
                              "arch": ["linux/amd64"]},
                "ignore": None,
                "settings": {"autoRollback": True,
                             "backupTargets": {"bindPaths": {"/srv": "force"}, "volumeNames": {}}},
            }],
        }})

    api = make_api(handler)
    stack = asyncio.run(api.get_stack("stk/1"))

    assert stack.name == "media"
    assert stack.compose_files == ["/srv/media/compose.yml"]
    svc = stack.services[0]
    assert svc.image.resolved_tag == "10.9.2"
    assert svc.candidate.tag == "10.9.3"
    assert svc.settings.auto_rollback is True
    assert svc.settings.backup_targets.has_force()


def test_list_stacks_and_jobs():
    def handler(request):
        if request.url.path == "/api/stacks":
            return httpx.Response(200, json={"stacks": [
                {"id": "s1", "name": "web", "status": "healthy", "services": 3, "updates": 1,
                 "lastCheckAt": "2026-01-01T00:00:00Z"},
            ]})
        return httpx.Response(200, json={"jobs": [
            {"id": "j1", "type": "update", "scope": "service", "status": "running",
             "createdAt": "2026-01-01T00:00:00Z", "stackId": "s1", "serviceId": "svc"},
        ]})

    api = make_api(handler)

    async def scenario():
        return await api.list_stacks(), await api.list_jobs()

    stacks, jobs = asyncio.run(scenario())
    assert stacks[0].updates == 1
    assert stacks[0].last_check_at == "2026-01-01T00:00:00Z"
    assert jobs[0].status == "running"
    assert jobs[0].service_id == "svc"


def test_list_service_candidates():
    def handler(request):
        assert request.url.path == "/api/services/svc_1/candidates"
        return httpx.Response(200, json={"candidates": [
            {"tag": "5.2.4", "digest": "sha256:1", "archMatch": "match", "ignored": False},
            {"tag": "5.3.0", "digest": "", "archMatch": "mismatch", "ignored": True},
        ]})

    options = asyncio.run(make_api(handler).list_service_candidates("svc_1"))
    assert [o.tag for o in options] == ["5.2.4", "5.3.0"]
    assert options[1].digest is None
    assert options[1].ignored is True


def test_trigger_update_sends_target():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(201, json={"jobId": "job_9"})

    api = make_api(handler)
    job_id = asyncio.run(api.trigger_update(
        "service", "stk", "svc", target_tag="5.2.4", target_digest="sha256:1",
    ))

    assert job_id == "job_9"
    assert bodies[0] == {
        "scope": "service",
        "stackId": "stk",
        "serviceId": "svc",
        "mode": "apply",
        "allowArchMismatch": False,
        "backupMode": "inherit",
        "reason": "ui",
        "targetTag": "5.2.4",
        "targetDigest": "sha256:1",
    }


def test_trigger_check_without_target():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"checkId": "chk_1"})

    check_id = asyncio.run(make_api(handler).trigger_check("all"))
    assert check_id == "chk_1"
    assert bodies[0]["scope"] == "all"
    assert "targetTag" not in bodies[0]


def test_error_response_raises_api_error():
    api = make_api(lambda request: httpx.Response(409, json={"message": "job already running"}))
    with pytest.raises(ApiError) as exc_info:
        asyncio.run(api.list_jobs())
    assert exc_info.value.status == 409
    assert exc_info.value.message == "HTTP 409: job already running"


def test_transport_failure_raises_api_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ApiError) as exc_info:
        asyncio.run(make_api(handler).list_stacks())
    assert exc_info.value.status is None
    assert "connection refused" in exc_info.value.message


def test_close_leaves_injected_client_open(mocker):
    client = mocker.MagicMock()
    client.aclose = mocker.AsyncMock()
    api = DockrevApi("http://dockrev.local", client=client)
    asyncio.run(api.close())
    client.aclose.assert_not_awaited()


def test_non_json_success_body_raises_api_error():
    api = make_api(lambda request: httpx.Response(200, text="<html>proxy</html>"))
    with pytest.raises(ApiError) as exc_info:
        asyncio.run(api.list_service_candidates("svc"))
    assert exc_info.value.status == 200
    assert exc_info.value.message == "HTTP 200: response is not JSON"


@pytest.mark.parametrize("payload", [["not", "an", "object"], {"stacks": "nope"}, {"stacks": [1, 2]}])
def test_unexpected_json_shapes_raise_api_error(payload):
    api = make_api(lambda request: httpx.Response(200, json=payload))
    with pytest.raises(ApiError):
        asyncio.run(api.list_stacks())


def test_get_stack_without_stack_object():
    api = make_api(lambda request: httpx.Response(200, json={"stack": None}))
    with pytest.raises(ApiError):
        asyncio.run(api.get_stack("stk"))


def test_empty_success_body():
    api = make_api(lambda request: httpx.Response(204))
    assert asyncio.run(api.trigger_check("all")) == ""
    assert asyncio.run(api.list_jobs()) == []


def test_put_service_settings_sends_camel_case_body():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"ok": True})

    settings = ServiceSettings(
        auto_rollback=True,
        backup_targets=BackupTargetOverrides(bind_paths={"/srv/data": "skip"}),
    )
    asyncio.run(make_api(handler).put_service_settings("svc 1", settings))

    assert requests[0].method == "PUT"
    assert requests[0].url.raw_path == b"/api/services/svc%201/settings"
    assert json.loads(requests[0].content) == {
        "autoRollback": True,
        "backupTargets": {"bindPaths": {"/srv/data": "skip"}, "volumeNames": {}},
    }
