"""Tests for the transport pillar: HTTP client and in-process service."""

from unittest.mock import MagicMock, Mock

import pytest
import requests
from chatpipe.api import Api, Http, Local
from chatpipe.errors import TransportError
from chatpipe.frames import FrameDecoder
from chatpipe.llm import Echo
from chatpipe.models import FrameKind, Note, Page
from chatpipe.store import InMemory


def make_response(status=200, json_data=None, chunks=None, reason="OK"):
    response = MagicMock(spec=requests.Response)
    response.status_code = status
    response.ok = status < 400
    response.reason = reason
    if json_data is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = json_data
    response.iter_content.return_value = iter(chunks or [])
    return response


@pytest.fixture
def session():
    return Mock(spec=requests.Session)


@pytest.fixture
def http(session):
    return Http(base_url="http://chat.test/", timeout=5, session=session)


def decode_all(chunks):
    decoder = FrameDecoder()
    frames = [f for chunk in chunks for f in decoder.decode(chunk)]
    return frames + list(decoder.close())


class TestApiInterface:
    def test_api_is_abstract(self):
        with pytest.raises(TypeError):
            Api()


class TestHttp:
    def test_base_url_trailing_slash_is_stripped(self, http):
        assert http.base_url == "http://chat.test"

    def test_stream_message_posts_and_yields_chunks(self, http, session):
        response = make_response(chunks=[b'data: {"content": "Hi"}\n\n', b"", b'data: {"done": true}\n\n'])
        session.request.return_value = response

        body = http.stream_message("Hello", client_token="tok")
        chunks = list(body)

        session.request.assert_called_once_with(
            "POST",
            "http://chat.test/api/assistant/chat",
            timeout=5,
            json={"message": "Hello", "clientToken": "tok"},
            headers={"Accept": "text/event-stream"},
            stream=True,
        )
        assert chunks == [b'data: {"content": "Hi"}\n\n', b'data: {"done": true}\n\n']
        response.close.assert_called_once()

    def test_stream_message_omits_missing_token(self, http, session):
        session.request.return_value = make_response(chunks=[])
        list(http.stream_message("Hello"))
        assert session.request.call_args.kwargs["json"] == {"message": "Hello"}

    def test_error_status_raises_with_server_message(self, http, session):
        session.request.return_value = make_response(
            status=503, json_data={"error": "AI Assistant is not configured."}
        )

        with pytest.raises(TransportError) as exc_info:
            http.stream_message("Hello")

        assert exc_info.value.status_code == 503
        assert "not configured" in str(exc_info.value)

    def test_error_status_without_json_body(self, http, session):
        session.request.return_value = make_response(status=502, reason="Bad Gateway")

        with pytest.raises(TransportError) as exc_info:
            http.fetch_page(1)

        assert "502" in str(exc_info.value)

    def test_network_failure_raises_transport_error(self, http, session):
        session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(TransportError):
            http.fetch_page(1)

    def test_timeout_is_a_transport_error(self, http, session):
        session.request.side_effect = requests.Timeout("slow")

        with pytest.raises(TransportError):
            http.stream_message("Hello")

    def test_interrupted_stream_raises_transport_error(self, http, session):
        def broken(chunk_size=None):
            yield b'data: {"content": "Hi"}\n\n'
            raise requests.ConnectionError("reset")

        response = make_response()
        response.iter_content.side_effect = broken
        session.request.return_value = response

        body = http.stream_message("Hello")
        assert next(body) == b'data: {"content": "Hi"}\n\n'
        with pytest.raises(TransportError):
            next(body)
        response.close.assert_called_once()

    def test_fetch_page_parses_service_payload(self, http, session):
        session.request.return_value = make_response(
            json_data={
                "messages": [
                    {"id": 7, "userId": "u1", "role": "user", "content": "Hello", "createdAt": "2024-05-01T12:00:00.000Z"},
                    {"id": 8, "userId": "u1", "role": "assistant", "content": "Hi", "createdAt": "2024-05-01T12:00:05.000Z"},
                ],
                "total": 52,
                "totalPages": 2,
            }
        )

        page = http.fetch_page(2)

        assert session.request.call_args.args == ("GET", "http://chat.test/api/assistant/chat/page/2")
        assert isinstance(page, Page)
        assert page.number == 2
        assert [m.id for m in page.messages] == [7, 8]
        assert page.total == 52
        assert page.total_pages == 2

    def test_invalid_json_raises_transport_error(self, http, session):
        session.request.return_value = make_response(json_data=None)
        with pytest.raises(TransportError):
            http.fetch_page(1)

    def test_clear_history(self, http, session):
        session.request.return_value = make_response(json_data={"success": True})
        http.clear_history()
        assert session.request.call_args.args == ("DELETE", "http://chat.test/api/assistant/chat")

    def test_archive_endpoints(self, http, session):
        session.request.side_effect = [
            make_response(json_data={"success": True, "archivedCount": 4}),
            make_response(json_data=[{"archivedAt": "2024-05-01T12:00:00Z", "messageCount": 4, "preview": "Hello"}]),
            make_response(json_data={"success": True, "unarchivedCount": 4}),
        ]

        assert http.archive_history() == 4
        archives = http.list_archives()
        assert archives[0].message_count == 4
        assert http.restore_archive("2024-05-01T12:00:00Z") == 4
        assert session.request.call_args.kwargs["json"] == {"archivedAt": "2024-05-01T12:00:00Z"}

    def test_notes_round_trip(self, http, session):
        session.request.side_effect = [
            make_response(json_data={"content": "draft"}),
            make_response(json_data={"id": 1, "content": "new", "updatedAt": "2024-05-01T12:00:00Z"}),
        ]

        assert http.get_notes().content == "draft"
        saved = http.save_notes("new")
        assert saved.content == "new"
        assert session.request.call_args.kwargs["json"] == {"content": "new"}


class TestLocal:
    def test_stream_persists_both_messages_and_frames_reply(self, local_api):
        frames = decode_all(local_api.stream_message("Hello there", client_token="t1"))

        assert frames[-1].kind is FrameKind.DONE
        reply = "".join(f.content for f in frames if f.kind is FrameKind.DELTA)
        assert reply == "Echo: Hello there"

        page = local_api.fetch_page(1)
        assert [(m.role, m.content) for m in page.messages] == [
            ("user", "Hello there"),
            ("assistant", "Echo: Hello there"),
        ]
        assert {m.client_token for m in page.messages} == {"t1"}

    def test_user_message_stored_before_first_frame(self, local_api):
        body = local_api.stream_message("Hello")

        assert local_api.fetch_page(1).total == 1
        list(body)
        assert local_api.fetch_page(1).total == 2

    def test_assistant_message_not_stored_when_stream_abandoned(self, local_api):
        body = local_api.stream_message("one two three")
        next(body)
        body.close()

        assert [m.role for m in local_api.fetch_page(1).messages] == ["user"]

    @pytest.mark.parametrize("message", ["", "x" * 10001, None])
    def test_invalid_message_rejected_with_400(self, local_api, message):
        with pytest.raises(TransportError) as exc_info:
            local_api.stream_message(message)

        assert exc_info.value.status_code == 400
        assert local_api.fetch_page(1).total == 0

    def test_llm_receives_system_prompt_and_history(self):
        llm = Mock()
        llm.generate_response.return_value = "native"
        llm.extract_deltas.side_effect = lambda response: iter(["ok"])
        api = Local(store=InMemory(), llm=llm, system_prompt="Be brief.")

        list(api.stream_message("first"))
        list(api.stream_message("second"))

        sent = llm.generate_response.call_args.args[0]
        assert sent[0] == {"role": "system", "content": "Be brief."}
        assert [m["content"] for m in sent[1:]] == ["first", "ok", "second"]

    def test_generation_failure_before_stream_is_500(self):
        llm = Mock()
        llm.generate_response.side_effect = RuntimeError("provider down")
        api = Local(store=InMemory(), llm=llm)

        with pytest.raises(TransportError) as exc_info:
            api.stream_message("Hello")

        assert exc_info.value.status_code == 500

    def test_generation_failure_mid_stream_emits_error_frame(self):
        def deltas(response):
            yield "partial"
            raise RuntimeError("connection lost")

        llm = Mock()
        llm.generate_response.return_value = "native"
        llm.extract_deltas.side_effect = deltas
        api = Local(store=InMemory(), llm=llm)

        frames = decode_all(api.stream_message("Hello"))

        assert [f.kind for f in frames] == [FrameKind.DELTA, FrameKind.ERROR]
        assert [m.role for m in api.fetch_page(1).messages] == ["user"]

    def test_fetch_page_below_one_reads_page_one(self, local_api):
        list(local_api.stream_message("Hello"))
        assert local_api.fetch_page(0).number == 1

    def test_notes_default_to_empty(self, local_api):
        assert local_api.get_notes() == Note(content="")
        local_api.save_notes("scratch")
        assert local_api.get_notes().content == "scratch"

    def test_clear_and_archive(self, local_api):
        list(local_api.stream_message("Hello"))

        assert local_api.archive_history() == 2
        archived_at = local_api.list_archives()[0].archived_at
        assert local_api.restore_archive(archived_at) == 2

        local_api.clear_history()
        assert local_api.fetch_page(1).total == 0

    def test_defaults_to_openai_with_echo_fallback(self, monkeypatch):
        import chatpipe.llm as llm_module

        def missing_openai(*args, **kwargs):
            raise ImportError("No module named 'openai'")

        monkeypatch.setattr(llm_module, "OpenAI", missing_openai)

        with pytest.warns(UserWarning, match="Echo"):
            api = Local()

        assert isinstance(api.llm, Echo)
        assert isinstance(api.store, InMemory)
