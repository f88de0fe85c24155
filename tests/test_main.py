"""HTTP-level tests for the chat participant app."""

import json

import httpx
import pytest

from app.main import _event_stream, create_app
from checker.core.models import ChatRequest
from checker.errors import CompletionServiceError, ConfigurationError, RetrievalError
from conftest import FakeCompletionClient, FakeFetcher


def _client(app):
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


def _parse_events(body: str):
    events = []
    for frame in body.strip().split("\n\n"):
        if not frame:
            continue
        lines = frame.split("\n")
        event = lines[0][len("event: "):]
        data = json.loads(lines[1][len("data: "):])
        events.append((event, data))
    return events


def _app(settings, client, fetcher=None):
    return create_app(
        settings,
        fetcher=fetcher or FakeFetcher(),
        client_factory=lambda _settings: client,
    )


class TestChatJson:
    @pytest.mark.asyncio
    async def test_basic_request(self, settings):
        completion = FakeCompletionClient(["No ", "issues."])
        app = _app(settings, completion)
        async with _client(app) as client:
            r = await client.post(
                "/chat/security-checker",
                json={"prompt": "Review this snippet", "stream": False},
            )
        assert r.status_code == 200
        body = r.json()
        assert body == {
            "markdown": "No issues.",
            "fragments": 2,
            "references": [],
            "cancelled": False,
            "reference": None,
        }
        sent = completion.calls[0]
        assert "Rule 1: escape output." in sent[0].content
        assert sent[1].content == "Review this snippet"

    @pytest.mark.asyncio
    async def test_history_and_document(self, settings):
        completion = FakeCompletionClient(["ok"])
        app = _app(settings, completion)
        payload = {
            "prompt": "Check",
            "stream": False,
            "history": [
                {"role": "user", "prompt": "before"},
                {"role": "assistant", "response": [{"kind": "markdown", "value": "answer"}]},
            ],
            "active_document": {"uri": "file:///app.py", "text": "os.system(cmd)\n"},
        }
        async with _client(app) as client:
            r = await client.post("/chat/security-checker", json=payload)
        assert r.status_code == 200
        assert r.json()["references"] == ["file:///app.py"]
        assert r.json()["reference"] == "file:///app.py"
        contents = [m.content for m in completion.calls[0]]
        assert contents[1] == "before"
        assert contents[-1] == "Check\n\n# Source Code\n```\nos.system(cmd)\n```"

    @pytest.mark.asyncio
    async def test_retrieval_error_envelope(self, settings):
        completion = FakeCompletionClient(["never"])
        fetcher = FakeFetcher(error=RetrievalError("Checklist not found: gs://security-docs/checklist.md"))
        app = _app(settings, completion, fetcher)
        async with _client(app) as client:
            r = await client.post("/chat/security-checker", json={"prompt": "p", "stream": False})
        assert r.status_code == 502
        err = r.json()["error"]
        assert err["code"] == "RETRIEVAL_ERROR"
        assert "not found" in err["message"]
        assert completion.calls == []

    @pytest.mark.asyncio
    async def test_unknown_participant(self, settings):
        app = _app(settings, FakeCompletionClient([]))
        async with _client(app) as client:
            r = await client.post("/chat/other", json={"prompt": "p", "stream": False})
        assert r.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_turn_rejected(self, settings):
        app = _app(settings, FakeCompletionClient([]))
        async with _client(app) as client:
            r = await client.post(
                "/chat/security-checker",
                json={"prompt": "p", "history": [{"role": "system", "prompt": "x"}]},
            )
        assert r.status_code == 422


class TestChatStream:
    @pytest.mark.asyncio
    async def test_streams_reference_fragments_and_done(self, settings):
        completion = FakeCompletionClient(["Line 3 ", "uses eval."])
        app = _app(settings, completion)
        payload = {
            "prompt": "Check",
            "active_document": {"uri": "file:///app.py", "text": "eval(x)"},
        }
        async with _client(app) as client:
            r = await client.post("/chat/security-checker", json=payload)
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/event-stream")
        events = _parse_events(r.text)
        assert events == [
            ("reference", {"uri": "file:///app.py"}),
            ("markdown", {"text": "Line 3 "}),
            ("markdown", {"text": "uses eval."}),
            ("done", {"fragments": 2, "cancelled": False, "reference": "file:///app.py"}),
        ]

    @pytest.mark.asyncio
    async def test_retrieval_failure_single_error_event(self, settings):
        completion = FakeCompletionClient(["never"])
        fetcher = FakeFetcher(error=RetrievalError("Checklist not found"))
        app = _app(settings, completion, fetcher)
        async with _client(app) as client:
            r = await client.post("/chat/security-checker", json={"prompt": "p"})
        events = _parse_events(r.text)
        assert len(events) == 1
        assert events[0][0] == "error"
        assert events[0][1]["code"] == "RETRIEVAL_ERROR"
        assert completion.calls == []

    @pytest.mark.asyncio
    async def test_completion_failure_keeps_partial_output(self, settings):
        completion = FakeCompletionClient(["partial"], error=CompletionServiceError("quota exceeded"))
        app = _app(settings, completion)
        async with _client(app) as client:
            r = await client.post("/chat/security-checker", json={"prompt": "p"})
        events = _parse_events(r.text)
        assert events[0] == ("markdown", {"text": "partial"})
        assert events[1][0] == "error"
        assert events[1][1]["code"] == "COMPLETION_SERVICE_ERROR"
        assert len(events) == 2

    @pytest.mark.asyncio
    async def test_configuration_failure_single_error_event(self, settings):
        completion = FakeCompletionClient(["never"])
        fetcher = FakeFetcher(error=ConfigurationError("Invalid storage credentials"))
        app = _app(settings, completion, fetcher)
        async with _client(app) as client:
            r = await client.post("/chat/security-checker", json={"prompt": "p"})
        events = _parse_events(r.text)
        assert len(events) == 1
        assert events[0][0] == "error"
        assert events[0][1]["code"] == "CONFIGURATION_ERROR"
        assert completion.calls == []

    @pytest.mark.asyncio
    async def test_client_disconnect_stops_streaming(self, settings):
        completion = FakeCompletionClient([f"chunk {i} " for i in range(20)], delay=0.01)
        app = _app(settings, completion)
        participant = app.state.registry.get("security-checker")

        frames = _event_stream(participant, ChatRequest(prompt="p"))
        first = await frames.__anext__()
        await frames.aclose()

        assert first.startswith("event: markdown")
        assert completion.produced < 20
        assert completion.closed


class TestAuxiliaryRoutes:
    @pytest.mark.asyncio
    async def test_health(self, settings):
        app = _app(settings, FakeCompletionClient([]))
        async with _client(app) as client:
            r = await client.get("/health")
        assert r.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_participants(self, settings):
        app = _app(settings, FakeCompletionClient([]))
        async with _client(app) as client:
            r = await client.get("/participants")
        assert r.json() == {"participants": ["security-checker"]}
