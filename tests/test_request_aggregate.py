"""
Behavioral tests for the Request aggregate lifecycle.

Tests cover creation guards, the state machine, the attempt ceiling,
event recording and replay.
"""

from datetime import UTC, datetime, timedelta

import pytest

import persona_relay.domain.request as request_module
from persona_relay.domain import (
    MAX_ATTEMPTS,
    Content,
    IncompatibleContentError,
    InvalidContentError,
    InvalidRequestError,
    InvalidStateTransitionError,
    MaxRetriesExceededError,
    Model,
    PersonalityId,
    Request,
    RequestCreated,
    RequestFailed,
    RequestId,
    RequestRateLimited,
    RequestRetried,
    RequestSent,
    RequestState,
    RequestStatus,
    ResponseReceived,
    UserId,
    apply_event,
)


class CodedError(Exception):
    def __init__(self, message, code):
        super().__init__(message)
        self.code = code


def fail_attempt(request, error=None, can_retry=True):
    request.mark_sent()
    request.record_failure(error or RuntimeError("boom"), can_retry=can_retry)


class TestRequestCreation:
    """Tests for Request.create validation."""

    def test_create_records_single_event(self, make_request):
        request = make_request("Hello")
        events = request.get_uncommitted_events()
        assert [type(e) for e in events] == [RequestCreated]
        assert request.status == RequestStatus.PENDING
        assert request.attempts == 0
        assert request.version == 1

    def test_create_defaults_model(self, make_request):
        assert make_request().model == Model.create_default()

    def test_create_keeps_optional_fields(self, make_request):
        referenced = Content.from_text("earlier message")
        request = make_request(referenced_content=referenced, conversation_id="conv-9")
        assert request.referenced_content == referenced
        assert request.conversation_id == "conv-9"

    def test_incompatible_content_rejected_without_events(self):
        """Image content for a text-only model fails before anything is recorded."""
        content = Content.from_text("look").add_image("https://x.test/cat.png")
        with pytest.raises(IncompatibleContentError, match="Content not compatible with model capabilities"):
            Request.create(
                user_id=UserId("u1"),
                personality_id=PersonalityId("p1"),
                content=content,
                model=Model.create_default(),
            )

    def test_image_content_accepted_by_vision_model(self, make_request, vision_model):
        content = Content.from_text("look").add_image("https://x.test/cat.png")
        request = make_request(content=content, model=vision_model)
        assert request.content.has_images()

    @pytest.mark.parametrize(
        ("field", "value", "message"),
        [
            ("user_id", "u1", "Invalid UserId"),
            ("personality_id", "p1", "Invalid PersonalityId"),
            ("content", "hello", "Invalid Content"),
            ("model", "gpt", "Invalid Model"),
        ],
    )
    def test_create_rejects_wrong_types(self, field, value, message):
        kwargs = {
            "user_id": UserId("u1"),
            "personality_id": PersonalityId("p1"),
            "content": Content.from_text("x"),
        }
        kwargs[field] = value
        with pytest.raises(InvalidRequestError, match=message):
            Request.create(**kwargs)

    def test_constructor_requires_request_id(self):
        with pytest.raises(InvalidRequestError):
            Request("air_123")


class TestRequestLifecycle:
    """Tests for lifecycle transitions."""

    def test_happy_path(self, make_request):
        request = make_request()
        request.mark_sent()
        assert request.status == RequestStatus.SENT
        assert request.attempts == 1

        response = Content.from_text("Hi!")
        request.record_response(response)
        assert request.status == RequestStatus.COMPLETED
        assert request.response == response

    def test_cannot_send_twice(self, make_request):
        request = make_request()
        request.mark_sent()
        with pytest.raises(InvalidStateTransitionError, match="Can only send pending or retrying requests"):
            request.mark_sent()

    def test_response_requires_sent_state(self, make_request):
        with pytest.raises(InvalidStateTransitionError, match="Can only record response for sent requests"):
            make_request().record_response(Content.from_text("x"))

    def test_response_must_be_content(self, make_request):
        request = make_request()
        request.mark_sent()
        with pytest.raises(InvalidContentError, match="Invalid response content"):
            request.record_response("plain string")

    def test_failure_stores_error_code(self, make_request):
        request = make_request()
        fail_attempt(request, CodedError("slow down", "RATE_LIMIT_EXCEEDED"))
        assert request.status == RequestStatus.FAILED
        assert request.error.code == "RATE_LIMIT_EXCEEDED"
        assert request.error.message == "slow down"

    def test_failure_without_code_is_unknown(self, make_request):
        request = make_request()
        fail_attempt(request, RuntimeError("boom"))
        assert request.error.code == "UNKNOWN"

    def test_cannot_fail_completed_request(self, make_request):
        request = make_request()
        request.mark_sent()
        request.record_response(Content.from_text("done"))
        with pytest.raises(InvalidStateTransitionError, match="Cannot fail completed or failed request"):
            request.record_failure(RuntimeError("late"))

    def test_cannot_fail_twice(self, make_request):
        request = make_request()
        fail_attempt(request)
        with pytest.raises(InvalidStateTransitionError):
            request.record_failure(RuntimeError("again"))

    def test_rate_limit_keeps_attempts(self, make_request):
        """Rate limiting is informational and does not count as an attempt."""
        request = make_request()
        request.mark_sent()
        request.record_rate_limit(retry_after=12.0)
        assert request.status == RequestStatus.RATE_LIMITED
        assert request.state.retry_after == 12.0
        assert request.attempts == 1

    def test_rate_limit_rejected_when_completed(self, make_request):
        request = make_request()
        request.mark_sent()
        request.record_response(Content.from_text("done"))
        with pytest.raises(InvalidStateTransitionError):
            request.record_rate_limit()


class TestRetryCeiling:
    """Tests for the attempt ceiling and can_retry rules."""

    def test_retry_only_from_failed(self, make_request):
        with pytest.raises(InvalidStateTransitionError, match="Can only retry failed requests"):
            make_request().schedule_retry(1.0)

    def test_attempts_never_exceed_ceiling(self, make_request):
        request = make_request()
        for _ in range(MAX_ATTEMPTS - 1):
            fail_attempt(request)
            assert request.can_retry()
            request.schedule_retry(0.5)
            assert request.status == RequestStatus.RETRYING

        fail_attempt(request)
        assert request.attempts == MAX_ATTEMPTS
        assert not request.can_retry()
        with pytest.raises(MaxRetriesExceededError, match="Maximum retry attempts exceeded"):
            request.schedule_retry(0.5)
        assert request.attempts == MAX_ATTEMPTS

    def test_non_retryable_failure_blocks_retry(self, make_request):
        request = make_request()
        fail_attempt(request, can_retry=False)
        assert request.attempts == 1
        assert not request.can_retry()

    def test_can_retry_false_outside_failed(self, make_request):
        request = make_request()
        assert not request.can_retry()
        request.mark_sent()
        assert not request.can_retry()

    def test_retry_event_carries_scheduled_time(self, make_request):
        request = make_request()
        fail_attempt(request)
        request.schedule_retry(30.0)
        retried = request.get_uncommitted_events()[-1]
        assert isinstance(retried, RequestRetried)
        assert retried.retry_at - retried.occurred_at >= timedelta(seconds=29)


class TestEventSourcing:
    """Tests for event recording and replay."""

    def test_every_transition_records_one_event(self, make_request):
        request = make_request()
        fail_attempt(request)
        request.schedule_retry(0)
        request.mark_sent()
        request.record_response(Content.from_text("ok"))
        assert [type(e) for e in request.events] == [
            RequestCreated,
            RequestSent,
            RequestFailed,
            RequestRetried,
            RequestSent,
            ResponseReceived,
        ]
        assert request.version == 6

    def test_commit_clears_uncommitted_only(self, make_request):
        request = make_request()
        request.mark_events_as_committed()
        assert request.get_uncommitted_events() == []
        assert request.version == 1

    def test_replay_reproduces_state(self, make_request):
        """Replaying the full history yields the same observable state."""
        original = make_request(conversation_id="c1")
        fail_attempt(original, CodedError("down", "SERVICE_UNAVAILABLE"))
        original.schedule_retry(0)
        original.mark_sent()
        original.record_response(Content.from_text("ok"))

        replayed = Request(original.request_id)
        replayed.load_from_history(list(original.events))

        assert replayed.state == original.state
        assert replayed.to_json() == original.to_json()
        assert replayed.get_uncommitted_events() == []

    def test_replay_rejects_foreign_events(self, make_request):
        first, second = make_request("a"), make_request("b")
        shell = Request(RequestId("air_other"))
        with pytest.raises(InvalidRequestError):
            shell.load_from_history(list(first.events) + list(second.events))

    def test_apply_event_is_pure(self, make_request):
        request = make_request()
        created = request.events[0]
        state = RequestState(request_id=request.id)
        new_state = apply_event(state, created)
        assert state.status == RequestStatus.PENDING
        assert state.content is None
        assert new_state.content == request.content

    def test_apply_event_rejects_unknown_events(self):
        with pytest.raises(TypeError):
            apply_event(RequestState(request_id="r"), object())

    def test_rate_limited_event_replays(self, make_request):
        request = make_request()
        request.mark_sent()
        request.record_rate_limit(5.0)
        assert isinstance(request.events[-1], RequestRateLimited)
        replayed = Request(request.request_id)
        replayed.load_from_history(list(request.events))
        assert replayed.status == RequestStatus.RATE_LIMITED


class TestResponseTime:
    """Tests for get_response_time."""

    def test_none_until_completed(self, make_request):
        request = make_request()
        assert request.get_response_time() is None
        request.mark_sent()
        assert request.get_response_time() is None

    def test_measures_send_to_completion(self, make_request, monkeypatch):
        start = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)
        times = iter([start, start + timedelta(milliseconds=1500)])
        request = make_request()
        monkeypatch.setattr(request_module, "utc_now", lambda: next(times))
        request.mark_sent()
        request.record_response(Content.from_text("ok"))
        assert request.get_response_time() == pytest.approx(1.5)

    def test_to_json_exposes_status_and_attempts(self, make_request):
        request = make_request()
        request.mark_sent()
        data = request.to_json()
        assert data["status"] == "sent"
        assert data["attempts"] == 1
        assert data["content"] == [{"type": "text", "text": "Hello"}]
