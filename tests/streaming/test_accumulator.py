"""Tests for the delta accumulator."""

import pytest

from threadline.messages import MalformedStreamEvent, OrphanToolResult, StreamFailed
from threadline.messages.types import (
    FilePart,
    ReasoningPart,
    ReasoningTextDetail,
    RedactedReasoningDetail,
    SourcePart,
    StepStartPart,
    TextPart,
    ToolInvocationPart,
)
from threadline.streaming import MessageAccumulator
from threadline.streaming.events import TextDeltaEvent
from threadline.testing import event_stream

from conftest import call, canonical, states, text


@pytest.fixture
def accumulator(identity) -> MessageAccumulator:
    return MessageAccumulator(identity=identity)


def feed(accumulator, *events):
    return [accumulator.apply(event) for event in events]


class TestTextAndSteps:
    """Tests for text deltas and step boundaries."""

    def test_hi_there(self, accumulator):
        feed(
            accumulator,
            {"type": "step-start", "messageId": "msg-1"},
            {"type": "text-delta", "text": "Hi"},
            {"type": "text-delta", "text": " there"},
            {"type": "finish", "finishReason": "stop"},
        )

        message = accumulator.message
        text_parts = [p for p in message.content.parts if isinstance(p, TextPart)]
        assert text_parts == [TextPart(text="Hi there")]
        assert message.id == "msg-1"
        assert message.role == "assistant"
        assert accumulator.finish_reason == "stop"

    def test_step_start_appends_boundary(self, accumulator):
        feed(
            accumulator,
            {"type": "step-start", "messageId": "msg-1"},
            {"type": "text-delta", "text": "a"},
            {"type": "step-finish"},
            {"type": "step-start", "messageId": "ignored"},
            {"type": "text-delta", "text": "b"},
        )

        message = accumulator.message
        assert message.id == "msg-1"
        assert message.content.parts == [
            StepStartPart(),
            TextPart(text="a"),
            StepStartPart(),
            TextPart(text="b"),
        ]

    def test_continued_step_keeps_text_open(self, accumulator):
        feed(
            accumulator,
            {"type": "step-start", "messageId": "msg-1"},
            {"type": "text-delta", "text": "Hello "},
            {"type": "step-finish", "isContinued": True},
            {"type": "step-start"},
            {"type": "text-delta", "text": "world"},
        )

        assert accumulator.message.content.parts == [StepStartPart(), TextPart(text="Hello world")]

    def test_non_text_event_closes_text(self, accumulator):
        feed(
            accumulator,
            {"type": "text-delta", "text": "a"},
            {"type": "source", "source": {"url": "https://example.com"}},
            {"type": "text-delta", "text": "b"},
        )

        assert accumulator.message.content.parts == [
            TextPart(text="a"),
            SourcePart(source={"url": "https://example.com"}),
            TextPart(text="b"),
        ]

    def test_message_without_step_start_gets_generated_id(self, accumulator):
        feed(accumulator, {"type": "text-delta", "text": "x"})

        assert accumulator.message.id == "id-1"

    def test_file_event(self, accumulator):
        feed(accumulator, {"type": "file", "mimeType": "image/png", "data": "aGVsbG8="})

        assert accumulator.message.content.parts == [
            FilePart(mime_type="image/png", data="aGVsbG8=")
        ]


class TestReasoning:
    """Tests for reasoning deltas, signatures and redacted segments."""

    def test_reasoning_details(self, accumulator):
        feed(
            accumulator,
            {"type": "reasoning-delta", "text": "Let me "},
            {"type": "reasoning-delta", "text": "think."},
            {"type": "reasoning-signature", "signature": "sig-1"},
            {"type": "redacted-reasoning", "data": "opaque"},
            {"type": "reasoning-delta", "text": "Done."},
        )

        [reasoning] = accumulator.message.content.parts
        assert isinstance(reasoning, ReasoningPart)
        assert reasoning.reasoning == "Let me think.Done."
        assert reasoning.details == [
            ReasoningTextDetail(text="Let me think.", signature="sig-1"),
            RedactedReasoningDetail(data="opaque"),
            ReasoningTextDetail(text="Done."),
        ]

    def test_reasoning_stays_open_across_text(self, accumulator):
        feed(
            accumulator,
            {"type": "reasoning-delta", "text": "a"},
            {"type": "text-delta", "text": "answer"},
            {"type": "reasoning-delta", "text": "b"},
        )

        parts = accumulator.message.content.parts
        assert [p.type for p in parts] == ["reasoning", "text"]
        assert parts[0].reasoning == "ab"

    def test_step_finish_closes_reasoning(self, accumulator):
        feed(
            accumulator,
            {"type": "reasoning-delta", "text": "a"},
            {"type": "step-finish"},
            {"type": "reasoning-delta", "text": "b"},
        )

        assert [p.type for p in accumulator.message.content.parts] == ["reasoning", "reasoning"]

    def test_signature_without_reasoning_is_ignored(self, accumulator):
        assert accumulator.apply({"type": "reasoning-signature", "signature": "s"}) is None


class TestToolCalls:
    """Tests for the streamed tool-call lifecycle."""

    def test_full_lifecycle(self, accumulator):
        feed(
            accumulator,
            {"type": "step-start", "messageId": "msg-1"},
            {"type": "tool-call-start", "toolCallId": "c1", "toolName": "weather"},
            {"type": "tool-call-delta", "toolCallId": "c1", "argsTextDelta": '{"city": "L'},
        )
        partial = accumulator.message.content.parts[1].tool_invocation
        assert partial.state == "partial-call"
        assert partial.args == {"city": "L"}

        feed(
            accumulator,
            {"type": "tool-call-delta", "toolCallId": "c1", "argsTextDelta": 'A"}'},
            {"type": "tool-call", "toolCallId": "c1", "toolName": "weather", "args": {"city": "LA"}},
            {"type": "tool-result", "toolCallId": "c1", "result": "sunny"},
        )

        message = accumulator.message
        assert states(message) == [("c1", "result")]
        invocation = message.content.tool_invocations[0]
        assert invocation.args == {"city": "LA"}
        assert invocation.result == "sunny"
        assert invocation.step == 0

    def test_tool_call_without_announcement_is_appended(self, accumulator):
        feed(
            accumulator,
            {"type": "text-delta", "text": "Checking."},
            {"type": "tool-call", "toolCallId": "c1", "toolName": "weather", "args": '{"city": "LA"}'},
        )

        parts = accumulator.message.content.parts
        assert isinstance(parts[1], ToolInvocationPart)
        assert parts[1].tool_invocation.args == {"city": "LA"}

    def test_malformed_final_args_raise(self, accumulator):
        with pytest.raises(MalformedStreamEvent):
            accumulator.apply(
                {"type": "tool-call", "toolCallId": "c1", "toolName": "weather", "args": '{"city'}
            )

    def test_delta_for_unknown_call_raises(self, accumulator):
        with pytest.raises(MalformedStreamEvent):
            accumulator.apply({"type": "tool-call-delta", "toolCallId": "c9", "argsTextDelta": "{"})

    def test_orphan_tool_result_raises(self, accumulator):
        """A tool-result for a call never announced is an orphan."""
        feed(accumulator, {"type": "step-start", "messageId": "msg-1"})

        with pytest.raises(OrphanToolResult) as exc_info:
            accumulator.apply({"type": "tool-result", "toolCallId": "never", "result": 1})

        assert exc_info.value.tool_call_id == "never"

    def test_steps_are_recorded_on_calls(self, accumulator):
        feed(
            accumulator,
            {"type": "tool-call", "toolCallId": "a", "toolName": "t", "args": {}},
            {"type": "step-finish"},
            {"type": "tool-call", "toolCallId": "b", "toolName": "t", "args": {}},
        )

        assert [i.step for i in accumulator.message.content.tool_invocations] == [0, 1]

    def test_step_finish_keeps_tool_calls_open(self, accumulator):
        feed(
            accumulator,
            {"type": "tool-call-start", "toolCallId": "c1", "toolName": "weather"},
            {"type": "step-finish"},
            {"type": "tool-call", "toolCallId": "c1", "toolName": "weather", "args": {}},
        )

        assert states(accumulator.message) == [("c1", "call")]
        assert len(accumulator.message.content.parts) == 1


class TestSnapshots:
    """Tests for snapshot emission."""

    def test_snapshots_are_independent(self, accumulator):
        first, second = feed(
            accumulator,
            {"type": "text-delta", "text": "Hi"},
            {"type": "text-delta", "text": " there"},
        )

        assert first.message.content.parts == [TextPart(text="Hi")]
        assert second.message.content.parts == [TextPart(text="Hi there")]
        assert first.revision_id != second.revision_id

        second.message.content.parts.clear()
        assert accumulator.message.content.parts == [TextPart(text="Hi there")]

    def test_non_mutating_events_emit_nothing(self, accumulator):
        snapshots = feed(
            accumulator,
            {"type": "text-delta", "text": "x"},
            {"type": "step-finish"},
            {"type": "finish", "finishReason": "stop", "usage": {"totalTokens": 3}},
        )

        assert snapshots[1:] == [None, None]
        assert accumulator.usage.total_tokens == 3

    def test_data_annotations_ride_along(self, accumulator):
        feed(accumulator, {"type": "text-delta", "text": "x"})

        snapshot = accumulator.apply({"type": "data", "data": [{"progress": 0.5}]})

        assert snapshot.data == [{"progress": 0.5}]
        assert accumulator.data == [{"progress": 0.5}]


class TestErrors:
    """Tests for failed streams."""

    def test_error_event_raises_and_closes(self, accumulator, caplog):
        feed(accumulator, {"type": "text-delta", "text": "partial"})

        with pytest.raises(StreamFailed) as exc_info:
            accumulator.apply({"type": "error", "error": "rate limited"})

        assert exc_info.value.error == "rate limited"
        assert accumulator.closed
        assert "rate limited" in caplog.text
        with pytest.raises(MalformedStreamEvent):
            accumulator.apply(TextDeltaEvent(text="more"))

    def test_malformed_event_closes(self, accumulator):
        with pytest.raises(MalformedStreamEvent):
            accumulator.apply({"type": "bogus"})

        assert accumulator.closed


class TestContinuation:
    """Tests for continuing an existing assistant message."""

    def test_keeps_id_and_resolves_earlier_calls(self, identity):
        base = canonical("msg-1", text("Checking."), call("c1", step=0))
        accumulator = MessageAccumulator(identity=identity, message=base)

        feed(
            accumulator,
            {"type": "step-start", "messageId": "msg-2"},
            {"type": "tool-result", "toolCallId": "c1", "result": "sunny"},
            {"type": "text-delta", "text": "It is sunny."},
        )

        message = accumulator.message
        assert message.id == "msg-1"
        assert states(message) == [("c1", "result")]
        assert message.content.parts[-1] == TextPart(text="It is sunny.")
        assert base.content.parts[1].tool_invocation.state == "call"

    def test_step_counter_resumes(self, identity):
        base = canonical("msg-1", call("c1", step=2))

        accumulator = MessageAccumulator(identity=identity, message=base)

        assert accumulator.step == 2


class TestConsume:
    """Tests for driving a whole stream."""

    async def test_consume_collects_snapshots(self, accumulator):
        snapshots = []

        result = await accumulator.consume(
            event_stream(
                {"type": "step-start", "messageId": "msg-1"},
                {"type": "text-delta", "text": "Hi"},
                {"type": "finish", "finishReason": "stop"},
            ),
            on_snapshot=snapshots.append,
        )

        assert len(snapshots) == 2
        assert result.message.content.parts[-1] == TextPart(text="Hi")
        assert result.finish_reason == "stop"

    async def test_client_side_tool_round_trip(self, accumulator):
        seen = []

        async def run_tool(invocation):
            seen.append(invocation)
            return {"temperature": 21}

        result = await accumulator.consume(
            event_stream(
                {"type": "tool-call", "toolCallId": "c1", "toolName": "weather", "args": {"city": "LA"}},
                {"type": "finish", "finishReason": "tool-calls"},
            ),
            on_tool_call=run_tool,
        )

        assert [i.tool_call_id for i in seen] == ["c1"]
        assert states(result.message) == [("c1", "result")]
        assert result.message.content.tool_invocations[0].result == {"temperature": 21}

    async def test_tool_handler_returning_none_leaves_call_open(self, accumulator):
        result = await accumulator.consume(
            [{"type": "tool-call", "toolCallId": "c1", "toolName": "weather", "args": {}}],
            on_tool_call=lambda invocation: None,
        )

        assert states(result.message) == [("c1", "call")]


class TestReplayedEvents:
    """Tests for events that repeat earlier progress."""

    def test_call_after_result_is_ignored(self, accumulator, caplog):
        feed(
            accumulator,
            {"type": "step-start", "messageId": "m1"},
            {"type": "tool-call", "toolCallId": "X", "toolName": "weather", "args": {}},
            {"type": "tool-result", "toolCallId": "X", "result": "sunny"},
        )

        snapshot = accumulator.apply(
            {"type": "tool-call", "toolCallId": "X", "toolName": "weather", "args": {}}
        )

        assert snapshot is None
        assert not accumulator.closed
        assert states(accumulator.message) == [("X", "result")]
        assert "regression" in caplog.text

    def test_repeated_tool_call_start_is_ignored(self, accumulator):
        feed(
            accumulator,
            {"type": "tool-call-start", "toolCallId": "X", "toolName": "weather"},
            {"type": "tool-call-delta", "toolCallId": "X", "argsTextDelta": '{"city": "LA"}'},
        )

        snapshot = accumulator.apply(
            {"type": "tool-call-start", "toolCallId": "X", "toolName": "weather"}
        )

        assert snapshot is None
        assert accumulator.message.content.parts[0].tool_invocation.args == {"city": "LA"}

    def test_stream_naming_base_message_rebuilds_it(self, identity):
        base = canonical("m1", StepStartPart(), text("Hi"), call("X", step=0), text("Done."))
        accumulator = MessageAccumulator(identity=identity, message=base)

        feed(
            accumulator,
            {"type": "step-start", "messageId": "m1"},
            {"type": "text-delta", "text": "Hi"},
            {"type": "tool-call-start", "toolCallId": "X", "toolName": "weather"},
            {"type": "tool-call-delta", "toolCallId": "X", "argsTextDelta": "{}"},
            {"type": "tool-call", "toolCallId": "X", "toolName": "weather", "args": {}},
            {"type": "text-delta", "text": "Done."},
        )

        message = accumulator.message
        assert message.id == "m1"
        assert message.created_at == base.created_at
        assert message.content.parts == base.content.parts
        assert accumulator.step == 0

    def test_replay_resolves_restored_call(self, identity):
        base = canonical("m1", StepStartPart(), call("X", step=0))
        accumulator = MessageAccumulator(identity=identity, message=base)

        feed(
            accumulator,
            {"type": "step-start", "messageId": "m1"},
            {"type": "tool-result", "toolCallId": "X", "result": "sunny"},
        )

        assert states(accumulator.message) == [("X", "result")]

    def test_later_step_start_with_same_id_continues(self, identity):
        base = canonical("m1", text("earlier"))
        accumulator = MessageAccumulator(identity=identity, message=base)

        feed(
            accumulator,
            {"type": "text-delta", "text": "more"},
            {"type": "step-start", "messageId": "m1"},
        )

        assert [p.type for p in accumulator.message.content.parts] == [
            "text",
            "text",
            "step-start",
        ]
