"""Tests for the generation controller."""
import asyncio
import json

import pytest

from artifact_engine.core.artifact_types import ArtifactKind, LineRange, StreamEventType, UpdateType
from artifact_engine.core.config import settings
from artifact_engine.core.errors import (
    InvalidRange,
    NotFound,
    PersistenceError,
    UnsupportedKind,
    UpstreamGenerationError,
    ValidationFailed,
)
from artifact_engine.core.llm_rate_limiter import LLMRateLimiter
from artifact_engine.services.delta_stream import CollectingStreamWriter, StreamClosed
from artifact_engine.services.generation_controller import GenerationController


class FailingStore:
    """Store whose writes always fail."""

    def __init__(self, inner):
        self.inner = inner

    def get_latest(self, artifact_id):
        return self.inner.get_latest(artifact_id)

    def create(self, *args, **kwargs):
        raise PersistenceError("database unavailable")


class DisconnectingWriter(CollectingStreamWriter):
    """Consumer that goes away after a number of events."""

    def __init__(self, accept):
        super().__init__()
        self.accept = accept

    def write(self, event):
        if len(self.events) >= self.accept:
            raise StreamClosed("client went away")
        super().write(event)


async def _seed(controller, kind=ArtifactKind.CODE, content="def f():\n    return 1\n\nx = f()", **kwargs):
    return await controller.inject(kind, "Seed", content, CollectingStreamWriter(), **kwargs)


class TestCreate:
    """Test create()."""

    @pytest.mark.asyncio
    async def test_streams_model_snapshots_as_deltas(self, make_controller, scripted_producer, store):
        """Each snapshot increment becomes one delta, in order."""
        producer = scripted_producer(["def f():", "def f():\n    pass"])
        controller = make_controller(producer=producer)
        writer = CollectingStreamWriter()

        result = await controller.create(ArtifactKind.CODE, "F", writer, instruction="write f")

        assert writer.types == [
            StreamEventType.KIND,
            StreamEventType.ID,
            StreamEventType.TITLE,
            StreamEventType.CONTENT_DELTA,
            StreamEventType.CONTENT_DELTA,
            StreamEventType.FINISH,
        ]
        assert writer.deltas == ["def f():", "\n    pass"]
        assert writer.events[1].payload == result.id
        assert writer.of_type(StreamEventType.CONTENT_DELTA)[0].wire_type == "data-codeDelta"
        assert StreamEventType.ERROR not in writer.types
        assert StreamEventType.CLEAR not in writer.types

        assert result.content == "def f():\n    pass"
        assert result.version_number == 1
        assert result.valid

        stored = store.get_latest(result.id)
        assert stored.version_number == 1
        assert stored.content == "def f():\n    pass"
        assert stored.metadata["agent"] == "PythonAgent"
        assert stored.metadata["updateType"] == "create"
        assert stored.metadata["modelUsed"] == "scripted-model"
        assert stored.metadata["isPreGenerated"] is False
        assert "createdAt" in stored.metadata

    @pytest.mark.asyncio
    async def test_prompt_carries_title_and_instruction(self, make_controller, scripted_producer):
        producer = scripted_producer(["# Plan"])
        controller = make_controller(producer=producer)

        await controller.create(ArtifactKind.TEXT, "Plan", CollectingStreamWriter(), instruction="draft a plan")

        call = producer.calls[0]
        assert "Plan" in call["prompt"]
        assert "draft a plan" in call["prompt"]
        assert call["kind"] == ArtifactKind.TEXT
        assert "Markdown" in call["system"]

    @pytest.mark.asyncio
    async def test_literal_content_is_one_delta(self, controller, store):
        writer = CollectingStreamWriter()
        result = await controller.create(ArtifactKind.SHEET, "Budget", writer, content="a,b\n1,2")

        assert writer.deltas == ["a,b\n1,2"]
        assert writer.events[3].wire_type == "data-sheetDelta"
        assert result.content == "a,b\n1,2"
        assert store.get_latest(result.id).metadata["modelUsed"] is None

    @pytest.mark.asyncio
    async def test_invalid_code_is_saved_with_warning(self, make_controller, scripted_producer, store):
        """Code that fails the heuristic is still persisted."""
        controller = make_controller(producer=scripted_producer(["just words"]))
        writer = CollectingStreamWriter()

        result = await controller.create(ArtifactKind.CODE, "Words", writer, instruction="x")

        assert not result.valid
        assert result.validation_reason
        assert writer.types[-1] == StreamEventType.FINISH
        stored = store.get_latest(result.id)
        assert stored.metadata["validation"]["ok"] is False

    @pytest.mark.asyncio
    async def test_invalid_diagram_is_rejected(self, make_controller, scripted_producer, store):
        controller = make_controller(producer=scripted_producer(["Sure! Here it is"]))
        writer = CollectingStreamWriter()

        with pytest.raises(ValidationFailed):
            await controller.create(ArtifactKind.DIAGRAM, "Flow", writer, instruction="x")

        assert writer.types[-1] == StreamEventType.ERROR
        assert StreamEventType.FINISH not in writer.types
        artifact_id = writer.of_type(StreamEventType.ID)[0].payload
        assert store.get_latest(artifact_id) is None

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, controller):
        first = await controller.create(ArtifactKind.TEXT, "A", CollectingStreamWriter(), content="a")
        second = await controller.create(ArtifactKind.TEXT, "A", CollectingStreamWriter(), content="a")
        assert first.id != second.id

    @pytest.mark.asyncio
    async def test_simulated_producer_end_to_end(self, controller, store):
        writer = CollectingStreamWriter()
        result = await controller.create(ArtifactKind.DIAGRAM, "Login", writer, instruction="login flow")

        assert result.content.startswith("flowchart TD")
        assert "".join(writer.deltas) == result.content
        assert len(writer.deltas) > 1
        assert store.get_latest(result.id).metadata["modelUsed"] == "SimulatedModelProducer"

    @pytest.mark.asyncio
    async def test_requires_exactly_one_source(self, controller):
        with pytest.raises(ValueError):
            await controller.create(ArtifactKind.TEXT, "A", CollectingStreamWriter())
        with pytest.raises(ValueError):
            await controller.create(ArtifactKind.TEXT, "A", CollectingStreamWriter(), instruction="x", content="y")

    @pytest.mark.asyncio
    async def test_rejects_empty_title(self, controller):
        writer = CollectingStreamWriter()
        with pytest.raises(ValueError):
            await controller.create(ArtifactKind.TEXT, "  ", writer, content="x")
        assert writer.events == []


class TestInject:
    """Test inject()."""

    @pytest.mark.asyncio
    async def test_inject_diagram(self, controller, store):
        writer = CollectingStreamWriter()
        result = await controller.inject(
            ArtifactKind.DIAGRAM,
            "Flow",
            "graph TD\n  A --> B",
            writer,
            conversation_id="chat-1"
        )

        assert writer.deltas == ["graph TD\n  A --> B"]
        assert writer.types[-1] == StreamEventType.FINISH
        stored = store.get_latest(result.id)
        assert stored.conversation_id == "chat-1"
        assert stored.metadata["updateType"] == "inject"
        assert stored.metadata["agent"] == "MermaidAgent"
        assert stored.metadata["isPreGenerated"] is True

    @pytest.mark.asyncio
    async def test_inject_invalid_diagram_persists_nothing(self, controller, store):
        writer = CollectingStreamWriter()

        with pytest.raises(ValidationFailed) as exc_info:
            await controller.inject(ArtifactKind.DIAGRAM, "Flow", "Hello", writer)

        assert exc_info.value.kind == "diagram"
        assert writer.types[-1] == StreamEventType.ERROR
        artifact_id = writer.of_type(StreamEventType.ID)[0].payload
        assert store.list_versions(artifact_id) == []

    @pytest.mark.asyncio
    async def test_inject_does_not_call_the_model(self, make_controller, scripted_producer):
        producer = scripted_producer(["unused"])
        controller = make_controller(producer=producer)
        await controller.inject(ArtifactKind.TEXT, "Notes", "hello", CollectingStreamWriter())
        assert producer.calls == []

    @pytest.mark.asyncio
    async def test_extra_metadata_is_merged(self, controller, store):
        result = await controller.inject(
            ArtifactKind.TEXT, "Notes", "hello", CollectingStreamWriter(),
            metadata={"source": "upload"}
        )
        stored = store.get_latest(result.id)
        assert stored.metadata["source"] == "upload"
        assert stored.metadata["updateType"] == "inject"


class TestUpdate:
    """Test update() and fix()."""

    @pytest.mark.asyncio
    async def test_full_replacement(self, controller, store):
        seed = await _seed(controller, owner_id="user-1", conversation_id="chat-1")
        writer = CollectingStreamWriter()

        result = await controller.update(seed.id, writer, content="x = 2")

        assert writer.types == [
            StreamEventType.KIND,
            StreamEventType.ID,
            StreamEventType.TITLE,
            StreamEventType.CLEAR,
            StreamEventType.CONTENT_DELTA,
            StreamEventType.FINISH,
        ]
        assert writer.events[0].payload == "code"
        assert result.version_number == 2
        assert result.content == "x = 2"

        stored = store.get_latest(seed.id)
        assert stored.parent_version_id == seed.id
        assert stored.owner_id == "user-1"
        assert stored.conversation_id == "chat-1"
        assert stored.title == "Seed"
        assert stored.metadata["updateType"] == "update"
        assert stored.metadata["previousVersion"] == 1
        assert stored.metadata["lineRange"] is None
        assert "updatedAt" in stored.metadata

    @pytest.mark.asyncio
    async def test_line_range_replaces_only_that_block(self, controller, store):
        seed = await _seed(controller, content="a\nb\nc\nd", kind=ArtifactKind.TEXT)
        writer = CollectingStreamWriter()

        result = await controller.update(seed.id, writer, content="X\nY", line_range=LineRange(2, 3))

        assert result.content == "a\nX\nY\nd"
        assert writer.deltas == ["X\nY"]
        stored = store.get_latest(seed.id)
        assert stored.metadata["lineRange"] == {"start": 2, "end": 3}
        assert store.get_by_number(seed.id, 1).content == "a\nb\nc\nd"

    @pytest.mark.asyncio
    async def test_line_range_with_model(self, make_controller, scripted_producer, store):
        producer = scripted_producer(["    return", "    return 2"])
        controller = make_controller(producer=producer)
        seed = await _seed(controller)

        result = await controller.update(
            seed.id, CollectingStreamWriter(), instruction="return 2", line_range=LineRange(2, 2)
        )

        assert result.content == "def f():\n    return 2\n\nx = f()"
        call = producer.calls[0]
        assert "lines 2-2" in call["system"]
        assert "2:     return 1" in call["prompt"]
        assert "return 2" in call["prompt"]
        assert store.get_latest(seed.id).metadata["modelUsed"] == "scripted-model"

    @pytest.mark.asyncio
    async def test_model_sees_the_lines_it_will_replace(self, make_controller, scripted_producer):
        producer = scripted_producer(["only line, revised"])
        controller = make_controller(producer=producer)
        seed = await _seed(controller, content="only line", kind=ArtifactKind.TEXT)

        result = await controller.update(
            seed.id, CollectingStreamWriter(), instruction="revise", line_range=LineRange(5, 5)
        )

        assert result.content == "only line, revised"
        call = producer.calls[0]
        assert "Lines 1-1 to replace:\n```\n1: only line\n```" in call["prompt"]
        assert "lines 1-1" in call["system"]

    @pytest.mark.asyncio
    async def test_empty_block_allowed_with_line_range(self, controller):
        seed = await _seed(controller, content="a\nb\nc", kind=ArtifactKind.TEXT)
        result = await controller.update(seed.id, CollectingStreamWriter(), content="", line_range=LineRange(2, 2))
        assert result.content == "a\n\nc"

    @pytest.mark.asyncio
    async def test_invalid_range_persists_nothing(self, controller, store):
        seed = await _seed(controller, content="a\nb", kind=ArtifactKind.TEXT)
        writer = CollectingStreamWriter()

        with pytest.raises(InvalidRange):
            await controller.update(seed.id, writer, content="X", line_range=LineRange(2, 1))

        assert writer.types[-1] == StreamEventType.ERROR
        assert len(store.list_versions(seed.id)) == 1

    @pytest.mark.asyncio
    async def test_unknown_artifact(self, controller):
        writer = CollectingStreamWriter()

        with pytest.raises(NotFound):
            await controller.update("missing", writer, content="x")

        assert writer.types == [StreamEventType.ERROR]
        assert "missing" in writer.events[0].payload

    @pytest.mark.asyncio
    async def test_fix_is_recorded(self, controller, store):
        seed = await _seed(controller)
        result = await controller.fix(seed.id, CollectingStreamWriter(), content="y = 1")
        assert result.version_number == 2
        assert store.get_latest(seed.id).metadata["updateType"] == "fix"

    @pytest.mark.asyncio
    async def test_update_type_must_be_update_or_fix(self, controller):
        seed = await _seed(controller)
        with pytest.raises(ValueError):
            await controller.update(seed.id, CollectingStreamWriter(), content="x", update_type=UpdateType.INJECT)

    @pytest.mark.asyncio
    async def test_update_can_rename(self, controller, store):
        seed = await _seed(controller)
        writer = CollectingStreamWriter()
        await controller.update(seed.id, writer, content="x = 3", title="Renamed")
        assert writer.of_type(StreamEventType.TITLE)[0].payload == "Renamed"
        assert store.get_latest(seed.id).title == "Renamed"
        assert store.get_by_number(seed.id, 1).title == "Seed"

    @pytest.mark.asyncio
    async def test_diagram_update_that_breaks_declaration_is_rejected(self, controller, store):
        seed = await _seed(controller, kind=ArtifactKind.DIAGRAM, content="graph TD\n  A --> B")
        with pytest.raises(ValidationFailed):
            await controller.update(seed.id, CollectingStreamWriter(), content="oops", line_range=LineRange(1, 1))
        assert len(store.list_versions(seed.id)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_updates_get_distinct_numbers(self, file_store):
        """Parallel updates on one artifact never share or skip a number."""
        controller = GenerationController(
            store=file_store,
            rate_limiter=LLMRateLimiter(max_concurrent_calls=3)
        )
        seed = await _seed(controller, kind=ArtifactKind.TEXT, content="v1")
        updates = 6

        results = await asyncio.gather(*[
            controller.update(seed.id, CollectingStreamWriter(), content=f"update {i}")
            for i in range(updates)
        ])

        assert sorted(r.version_number for r in results) == list(range(2, updates + 2))
        assert [r.version_number for r in file_store.list_versions(seed.id)] == list(range(updates + 1, 0, -1))


class TestFailures:
    """Test upstream and persistence failures."""

    @pytest.mark.asyncio
    async def test_upstream_failure_mid_stream(self, make_controller, scripted_producer, store):
        controller = make_controller(producer=scripted_producer(["def f():", "def f():\n"], fail_after=1))
        writer = CollectingStreamWriter()

        with pytest.raises(UpstreamGenerationError):
            await controller.create(ArtifactKind.CODE, "F", writer, instruction="x")

        assert writer.deltas == ["def f():"]
        assert writer.types[-1] == StreamEventType.ERROR
        assert StreamEventType.FINISH not in writer.types
        artifact_id = writer.of_type(StreamEventType.ID)[0].payload
        assert store.get_latest(artifact_id) is None

    @pytest.mark.asyncio
    async def test_upstream_failure_during_update_keeps_current_version(self, make_controller, scripted_producer, store):
        controller = make_controller(producer=scripted_producer([], fail_after=0))
        seed = await _seed(controller)

        with pytest.raises(UpstreamGenerationError):
            await controller.update(seed.id, CollectingStreamWriter(), instruction="change it")

        assert store.get_latest(seed.id).version_number == 1

    @pytest.mark.asyncio
    async def test_persistence_failure(self, store, make_controller):
        controller = make_controller(store_override=FailingStore(store))
        writer = CollectingStreamWriter()

        with pytest.raises(PersistenceError):
            await controller.create(ArtifactKind.TEXT, "Notes", writer, content="hello")

        assert writer.types[-1] == StreamEventType.ERROR
        assert "database unavailable" in writer.events[-1].payload

    @pytest.mark.asyncio
    async def test_disconnected_consumer_still_persists(self, make_controller, scripted_producer, store):
        """A closed UI stream drops events but the version is still written."""
        controller = make_controller(producer=scripted_producer(["x", "x = 1"]))
        writer = DisconnectingWriter(accept=3)

        result = await controller.create(ArtifactKind.CODE, "X", writer, instruction="x")

        assert result.content == "x = 1"
        assert len(writer.events) == 3
        assert store.get_latest(result.id).content == "x = 1"

    @pytest.mark.asyncio
    async def test_non_prefix_snapshot_keeps_last_snapshot(self, make_controller, scripted_producer):
        """A snapshot that rewrites earlier text still ends with the final snapshot as content."""
        controller = make_controller(producer=scripted_producer(["abc", "xyz12"]))
        writer = CollectingStreamWriter()

        result = await controller.create(ArtifactKind.TEXT, "T", writer, instruction="x")

        assert result.content == "xyz12"
        assert writer.deltas == ["abc", "12"]


def _suggestion_line(original, suggested, description="Clearer wording"):
    return json.dumps({
        "originalText": original,
        "suggestedText": suggested,
        "description": description,
    })


class TestSuggest:
    """Test suggest()."""

    @pytest.mark.asyncio
    async def test_streams_each_suggestion_once(self, make_controller, scripted_producer, store):
        first = _suggestion_line("It were late.", "It was late.")
        second = _suggestion_line("We goes home.", "We went home.")
        producer = scripted_producer([
            first[:12],
            f"{first}\n",
            f"{first}\n{second[:20]}",
            f"{first}\n{second}",
        ])
        controller = make_controller(producer=producer)
        seed = await _seed(controller, content="It were late.\nWe goes home.", kind=ArtifactKind.TEXT)
        writer = CollectingStreamWriter()

        batch = await controller.suggest(seed.id, writer, instruction="grammar")

        assert writer.types == [
            StreamEventType.KIND,
            StreamEventType.ID,
            StreamEventType.TITLE,
            StreamEventType.SUGGESTION,
            StreamEventType.SUGGESTION,
            StreamEventType.FINISH,
        ]
        payloads = [e.payload for e in writer.of_type(StreamEventType.SUGGESTION)]
        assert [p["suggestedText"] for p in payloads] == ["It was late.", "We went home."]
        assert all(p["artifactId"] == seed.id and p["versionNumber"] == 1 for p in payloads)
        assert writer.deltas == []

        assert batch.id == seed.id
        assert batch.version_number == 1
        assert [s.id for s in batch.suggestions] == [p["id"] for p in payloads]
        assert {s.id for s in store.list_suggestions(seed.id, 1)} == {p["id"] for p in payloads}

    @pytest.mark.asyncio
    async def test_requests_json_lines_with_document(self, make_controller, scripted_producer):
        producer = scripted_producer([""])
        controller = make_controller(producer=producer)
        seed = await _seed(controller, content="Some text.", kind=ArtifactKind.TEXT)

        await controller.suggest(seed.id, CollectingStreamWriter(), instruction="tone")

        call = producer.calls[0]
        assert call["response_format"] == "json_lines"
        assert call["kind"] == ArtifactKind.TEXT
        assert "```\nSome text.\n```" in call["prompt"]
        assert "Focus: tone" in call["prompt"]
        assert "originalText" in call["system"]

    @pytest.mark.asyncio
    async def test_no_new_version_is_written(self, make_controller, scripted_producer, store):
        producer = scripted_producer([_suggestion_line("a.", "A.")])
        controller = make_controller(producer=producer)
        seed = await _seed(controller, content="a.", kind=ArtifactKind.TEXT)

        await controller.suggest(seed.id, CollectingStreamWriter())

        assert len(store.list_versions(seed.id)) == 1
        assert store.get_latest(seed.id).content == "a."

    @pytest.mark.asyncio
    async def test_suggestions_are_capped(self, make_controller, scripted_producer, store, monkeypatch):
        monkeypatch.setattr(settings, "max_suggestions", 2)
        lines = "".join(f"{_suggestion_line(f'line {i}.', f'Line {i}.')}\n" for i in range(4))
        controller = make_controller(producer=scripted_producer([lines]))
        seed = await _seed(controller, content="x", kind=ArtifactKind.TEXT)
        writer = CollectingStreamWriter()

        batch = await controller.suggest(seed.id, writer)

        assert len(batch.suggestions) == 2
        assert len(writer.of_type(StreamEventType.SUGGESTION)) == 2
        assert len(store.list_suggestions(seed.id)) == 2

    @pytest.mark.asyncio
    async def test_simulated_producer(self, controller, store):
        seed = await _seed(controller, content="# Notes\n\nhello world", kind=ArtifactKind.TEXT)
        writer = CollectingStreamWriter()

        batch = await controller.suggest(seed.id, writer)

        assert [s.suggested_text for s in batch.suggestions] == ["Hello world."]
        assert writer.types[-1] == StreamEventType.FINISH

    @pytest.mark.asyncio
    async def test_non_text_artifact_is_rejected(self, make_controller, scripted_producer, store):
        producer = scripted_producer([_suggestion_line("a", "b")])
        controller = make_controller(producer=producer)
        seed = await _seed(controller)
        writer = CollectingStreamWriter()

        with pytest.raises(UnsupportedKind):
            await controller.suggest(seed.id, writer)

        assert writer.types == [StreamEventType.ERROR]
        assert "text artifacts" in writer.events[0].payload
        assert producer.calls == []
        assert store.list_suggestions(seed.id) == []

    @pytest.mark.asyncio
    async def test_unknown_artifact(self, controller):
        writer = CollectingStreamWriter()

        with pytest.raises(NotFound):
            await controller.suggest("missing", writer)

        assert writer.types == [StreamEventType.ERROR]

    @pytest.mark.asyncio
    async def test_upstream_failure_stores_nothing(self, make_controller, scripted_producer, store):
        producer = scripted_producer([f"{_suggestion_line('a.', 'A.')}\n"], fail_after=1)
        controller = make_controller(producer=producer)
        seed = await _seed(controller, content="a.", kind=ArtifactKind.TEXT)
        writer = CollectingStreamWriter()

        with pytest.raises(UpstreamGenerationError):
            await controller.suggest(seed.id, writer)

        assert writer.types[-1] == StreamEventType.ERROR
        assert store.list_suggestions(seed.id) == []
