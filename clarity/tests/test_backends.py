"""Backend tests, including the full browser-to-proxy sequence.

The end-to-end tests point ``ProxyBackend`` at the FastAPI app through
``TestClient`` so the workflow, the HTTP contract and the router are
exercised together with only the upstream model faked.
"""
import asyncio
import json

import pytest
import requests
from fastapi.testclient import TestClient

from clarity.api import main
from clarity.api.main import app, get_transport
from clarity.models.backends import DirectBackend, ProxyBackend
from clarity.models.schemas import QAPair
from clarity.models.workflow import MSG_MALFORMED, MSG_TIMEOUT, Mode, Workflow, WorkflowStatus
from clarity.utils import telemetry
from clarity.utils.errors import (
    InvalidAction,
    MalformedUpstreamJSON,
    NetworkFailure,
    Unauthorized,
    UpstreamHTTPError,
    UpstreamTimeout,
)
from clarity.utils.storage import CredentialStore, LocalStore

QUESTIONS = {
    "questions": [
        {"id": "q1", "text": "受众？", "options": [
            {"id": "a", "label": "新手", "value": "beginners"},
            {"id": "b", "label": "专家", "value": "experts"},
        ]},
        {"id": "q2", "text": "格式？", "options": [
            {"id": "a", "label": "列表", "value": "bullet list"},
            {"id": "b", "label": "段落", "value": "prose"},
        ]},
    ]
}


class ScriptedTransport:
    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def generate(self, prompt, api_key, schema=None):
        self.calls.append({"prompt": prompt, "api_key": api_key, "schema": schema})
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeResponse:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.sent = []

    def post(self, url, json=None, timeout=None):
        self.sent.append({"url": url, "json": json, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture(autouse=True)
def _isolate(tmp_path, monkeypatch):
    monkeypatch.setattr(telemetry, "LOG_PATH", str(tmp_path / "events.jsonl"))
    monkeypatch.setattr(main, "SERVER_API_KEY", None)
    yield
    app.dependency_overrides.clear()


def run(coro):
    return asyncio.run(coro)


def test_proxy_backend_sends_camel_case_payload():
    session = FakeSession(FakeResponse(200, {"result": "ok"}))
    backend = ProxyBackend("https://clarity.test/api", timeout=12, session=session)
    body = run(backend.call("clarify_final", "idea", [QAPair(question="Q", answer="A")], api_key="k"))
    assert body == {"result": "ok"}
    sent = session.sent[0]
    assert sent["url"] == "https://clarity.test/api"
    assert sent["timeout"] == 12
    assert sent["json"] == {
        "action": "clarify_final",
        "input": "idea",
        "qaPairs": [{"question": "Q", "answer": "A"}],
        "apiKey": "k",
    }


def test_proxy_backend_omits_empty_optional_fields():
    session = FakeSession(FakeResponse(200, {"result": "ok"}))
    run(ProxyBackend("u", session=session).call("fast", "idea"))
    assert session.sent[0]["json"] == {"action": "fast", "input": "idea"}


@pytest.mark.parametrize("status,payload,error", [
    (504, {"message": "AI service timed out.", "error": "upstream_timeout"}, UpstreamTimeout),
    (502, {"message": "Failed to parse AI response.", "error": "malformed_upstream_json"}, MalformedUpstreamJSON),
    (401, {"message": "Missing API key.", "error": "unauthorized"}, Unauthorized),
    (504, None, UpstreamTimeout),
])
def test_proxy_backend_rebuilds_typed_errors(status, payload, error):
    backend = ProxyBackend("u", session=FakeSession(FakeResponse(status, payload)))
    with pytest.raises(error):
        run(backend.call("fast", "idea"))


def test_proxy_backend_keeps_upstream_status():
    payload = {"message": "AI Service Unavailable: 403", "error": "upstream_http_error", "upstream_status": 403}
    backend = ProxyBackend("u", session=FakeSession(FakeResponse(502, payload)))
    with pytest.raises(UpstreamHTTPError) as info:
        run(backend.call("fast", "idea"))
    assert info.value.upstream_status == 403
    assert info.value.message == "AI Service Unavailable: 403"


def test_proxy_backend_transport_failures():
    with pytest.raises(UpstreamTimeout):
        run(ProxyBackend("u", session=FakeSession(error=requests.ReadTimeout())).call("fast", "x"))
    with pytest.raises(NetworkFailure):
        run(ProxyBackend("u", session=FakeSession(error=requests.ConnectionError())).call("fast", "x"))


def test_proxy_backend_success_body_must_be_an_object():
    backend = ProxyBackend("u", session=FakeSession(FakeResponse(200, ["x"])))
    with pytest.raises(MalformedUpstreamJSON):
        run(backend.call("fast", "idea"))


def test_direct_backend_runs_router_in_process():
    transport = ScriptedTransport(json.dumps(QUESTIONS))
    body = run(DirectBackend(transport).call("clarify_questions", "idea", api_key="k"))
    assert [q["id"] for q in body["questions"]] == ["q1", "q2"]
    assert transport.calls[0]["api_key"] == "k"


def test_direct_backend_rejects_unknown_action_and_missing_key():
    with pytest.raises(InvalidAction):
        run(DirectBackend(ScriptedTransport()).call("nope", "idea", api_key="k"))
    with pytest.raises(Unauthorized):
        run(DirectBackend(ScriptedTransport()).call("fast", "idea"))

# End to end through the proxy


def proxied_workflow(tmp_path, transport, mode):
    app.dependency_overrides[get_transport] = lambda: transport
    creds = CredentialStore(LocalStore(str(tmp_path / "local.db")))
    creds.save("AIza-e2e")
    backend = ProxyBackend("/api", session=TestClient(app))
    return Workflow(backend, creds, mode=mode)


def test_clarify_sequence_through_the_proxy(tmp_path):
    transport = ScriptedTransport(json.dumps(QUESTIONS, ensure_ascii=False), "  最终指令  ")
    wf = proxied_workflow(tmp_path, transport, Mode.CLARIFY)
    wf.set_input("写一篇关于 Python 的教程")
    run(wf.generate())
    assert wf.status == WorkflowStatus.AWAITING_INPUT
    wf.select_answer("q1", "b")
    wf.select_answer("q2", "a")
    run(wf.submit_answers())
    assert wf.status == WorkflowStatus.COMPLETED
    assert wf.result == "最终指令"
    assert all(c["api_key"] == "AIza-e2e" for c in transport.calls)
    assert "User Choice: experts" in transport.calls[1]["prompt"]


def test_timeout_through_the_proxy(tmp_path):
    wf = proxied_workflow(tmp_path, ScriptedTransport(UpstreamTimeout()), Mode.FAST)
    wf.set_input("写一篇文章")
    run(wf.generate())
    assert wf.status == WorkflowStatus.ERROR
    assert wf.error == MSG_TIMEOUT
    assert wf.input == "写一篇文章"


def test_invalid_questions_json_through_the_proxy(tmp_path):
    wf = proxied_workflow(tmp_path, ScriptedTransport("{oops"), Mode.CLARIFY)
    wf.set_input("idea")
    run(wf.generate())
    assert wf.status == WorkflowStatus.ERROR
    assert wf.error == MSG_MALFORMED
    assert wf.questions == []
