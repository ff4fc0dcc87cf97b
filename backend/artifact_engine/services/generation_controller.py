"""Generation controller: one artifact lifecycle operation, end to end."""
import asyncio
import functools
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from artifact_engine.core.artifact_types import ArtifactKind, ArtifactResult, LineRange, UpdateType
from artifact_engine.core.config import LINE_RANGE_PROMPT_SUFFIX, SUGGESTIONS_SYSTEM_PROMPT, settings
from artifact_engine.core.errors import (
    ArtifactEngineError,
    NotFound,
    PersistenceError,
    UnsupportedKind,
    UpstreamGenerationError,
    ValidationFailed,
)
from artifact_engine.core.llm_rate_limiter import LLMRateLimiter
from artifact_engine.core.metrics import MetricsCollector
from artifact_engine.core.structured_logging import ArtifactOperationLogger, get_logger
from artifact_engine.services.delta_stream import DeltaStreamEmitter, UIStreamWriter, compute_delta
from artifact_engine.services.model_producer import JSON_LINES_FORMAT, ModelProducer, get_default_producer
from artifact_engine.services.patch import clamp_range, patch
from artifact_engine.services.suggestions import SuggestionBatch, SuggestionStreamParser
from artifact_engine.services.validation import ArtifactKindPolicy, ValidationResult, get_policy, validate
from artifact_engine.services.version_store import ArtifactVersionRecord, SuggestionRecord, VersionStore

logger = logging.getLogger(__name__)
struct_logger = get_logger(__name__)


class GenerationController:
    """
    Drives create, inject and update of artifacts of every kind, and
    suggestions on text artifacts.

    Each operation streams its progress to a UI stream writer in the order
    kind, id, title, (clear on update), content deltas, then finish or error,
    and persists exactly one new version on success. Failures are reported
    with a best-effort ``error`` event and then raised; nothing is retried.

    The controller holds no mutable state of its own. Two operations on the
    same artifact are serialized only by the version store's atomic
    version assignment.

    Args:
        store: Version store adapter
        producer: Model producer (default: configured real or simulated producer)
        rate_limiter: Limiter shared by concurrent model calls
        system_prompts: System prompt per kind value
    """

    def __init__(
        self,
        store: VersionStore,
        producer: Optional[ModelProducer] = None,
        rate_limiter: Optional[LLMRateLimiter] = None,
        system_prompts: Optional[Dict[str, str]] = None
    ):
        self.store = store
        self.producer = producer or get_default_producer()
        self.rate_limiter = rate_limiter or LLMRateLimiter.get_instance_sync()
        self.system_prompts = system_prompts or settings.default_system_prompts

    async def create(
        self,
        kind: ArtifactKind,
        title: str,
        writer: UIStreamWriter,
        instruction: Optional[str] = None,
        content: Optional[str] = None,
        owner_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ArtifactResult:
        """
        Create a new artifact from a model instruction or literal content.

        Invalid content is persisted with a warning, except for kinds whose
        validator is a hard stop (diagrams), which raise ValidationFailed.

        Args:
            kind: Artifact kind
            title: Artifact title
            writer: UI stream consumer
            instruction: Natural-language request for the model
            content: Literal content (mutually exclusive with instruction)
            owner_id: Owner attribution
            conversation_id: Conversation grouping
            metadata: Extra provenance merged into the version metadata

        Returns:
            ArtifactResult for version 1 of the new artifact
        """
        self._check_source(instruction, content)
        self._check_title(title)
        policy = get_policy(kind)
        artifact_id = str(uuid.uuid4())
        emitter = DeltaStreamEmitter(writer, policy)

        async with self._operation("create", policy, artifact_id, emitter):
            emitter.kind()
            emitter.id(artifact_id)
            emitter.title(title)

            if instruction is not None:
                text = await self._generate(
                    policy,
                    emitter,
                    system=self._system_prompt(policy),
                    prompt=f"Title: {title}\n\n{instruction}"
                )
            else:
                text = content
                emitter.content_delta(text)

            validation = self._validate(policy, text, artifact_id)
            record = await self._persist(
                artifact_id=artifact_id,
                title=title,
                policy=policy,
                content=text,
                owner_id=owner_id,
                conversation_id=conversation_id,
                metadata=self._metadata(
                    policy,
                    UpdateType.CREATE,
                    validation,
                    extra=metadata,
                    generated=instruction is not None,
                )
            )
            emitter.finish()

        return self._result(record, validation)

    async def inject(
        self,
        kind: ArtifactKind,
        title: str,
        content: str,
        writer: UIStreamWriter,
        owner_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ArtifactResult:
        """
        Create a new artifact from pre-authored content, without a model call.

        Returns:
            ArtifactResult for version 1 of the new artifact

        Raises:
            ValidationFailed: For a diagram that does not declare a diagram type
        """
        self._check_source(None, content)
        self._check_title(title)
        policy = get_policy(kind)
        artifact_id = str(uuid.uuid4())
        emitter = DeltaStreamEmitter(writer, policy)

        async with self._operation("inject", policy, artifact_id, emitter):
            emitter.kind()
            emitter.id(artifact_id)
            emitter.title(title)
            emitter.content_delta(content)

            validation = self._validate(policy, content, artifact_id)
            record = await self._persist(
                artifact_id=artifact_id,
                title=title,
                policy=policy,
                content=content,
                owner_id=owner_id,
                conversation_id=conversation_id,
                metadata=self._metadata(
                    policy,
                    UpdateType.INJECT,
                    validation,
                    extra=metadata,
                    generated=False,
                )
            )
            emitter.finish()

        return self._result(record, validation)

    async def update(
        self,
        artifact_id: str,
        writer: UIStreamWriter,
        instruction: Optional[str] = None,
        content: Optional[str] = None,
        line_range: Optional[LineRange] = None,
        update_type: UpdateType = UpdateType.UPDATE,
        title: Optional[str] = None,
        owner_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ArtifactResult:
        """
        Write a new version of an existing artifact.

        Without ``line_range`` the new content replaces the whole artifact.
        With it, the generated block (or literal content) replaces only that
        inclusive range of lines of the current version.

        Args:
            artifact_id: Artifact to update
            writer: UI stream consumer
            instruction: Natural-language change request for the model
            content: Literal replacement (mutually exclusive with instruction)
            line_range: Inclusive 1-indexed lines to replace
            update_type: Provenance recorded in metadata (update or fix)
            title: New title (default: keep the current one)
            owner_id: Owner attribution (default: the current version's)
            conversation_id: Conversation grouping (default: the current version's)
            metadata: Extra provenance merged into the version metadata

        Returns:
            ArtifactResult for the new version

        Raises:
            NotFound: If the artifact has no versions
            InvalidRange: If the line range is empty after clamping
        """
        self._check_source(instruction, content, allow_empty_content=line_range is not None)
        update_type = UpdateType(update_type)
        if update_type not in (UpdateType.UPDATE, UpdateType.FIX):
            raise ValueError(f"update_type must be update or fix, not {update_type.value}")

        emitter = DeltaStreamEmitter(writer)
        try:
            current = await self._load_current(artifact_id)
        except ArtifactEngineError as e:
            emitter.error(e.message)
            raise

        policy = get_policy(current.kind)
        title = title or current.title

        async with self._operation(update_type.value, policy, artifact_id, emitter) as op:
            op.add_context(previous_version=current.version_number, partial=line_range is not None)
            emitter.kind(policy)
            emitter.id(artifact_id)
            emitter.title(title)
            emitter.clear()
            target = None
            if line_range is not None:
                target = clamp_range(len(current.content.split("\n")), line_range)

            if instruction is not None:
                block = await self._generate(
                    policy,
                    emitter,
                    system=self._system_prompt(policy, target),
                    prompt=self._update_prompt(current.content, instruction, target)
                )
            else:
                block = content
                emitter.content_delta(block)

            if line_range is not None:
                text = patch(current.content, block, line_range)
            else:
                text = block

            validation = self._validate(policy, text, artifact_id)
            record = await self._persist(
                artifact_id=artifact_id,
                title=title,
                policy=policy,
                content=text,
                parent_version_id=current.id,
                owner_id=owner_id or current.owner_id,
                conversation_id=conversation_id or current.conversation_id,
                metadata=self._metadata(
                    policy,
                    update_type,
                    validation,
                    extra=metadata,
                    generated=instruction is not None,
                    previous=current,
                    line_range=line_range,
                )
            )
            emitter.finish()

        return self._result(record, validation)

    async def fix(
        self,
        artifact_id: str,
        writer: UIStreamWriter,
        instruction: Optional[str] = None,
        content: Optional[str] = None,
        line_range: Optional[LineRange] = None,
        **kwargs
    ) -> ArtifactResult:
        """Update recorded as a fix (metadata.updateType == "fix")."""
        return await self.update(
            artifact_id,
            writer,
            instruction=instruction,
            content=content,
            line_range=line_range,
            update_type=UpdateType.FIX,
            **kwargs
        )

    async def suggest(
        self,
        artifact_id: str,
        writer: UIStreamWriter,
        instruction: Optional[str] = None,
        owner_id: Optional[str] = None
    ) -> SuggestionBatch:
        """
        Propose edits to the current version of a text artifact.

        Streams kind, id and title, then one ``suggestion`` event per complete
        suggestion as the model produces it, then finish. The suggestions are
        stored against the current version; no new version is written.

        Args:
            artifact_id: Artifact to review
            writer: UI stream consumer
            instruction: Optional focus for the review
            owner_id: Owner attribution (default: the current version's)

        Returns:
            SuggestionBatch with the stored suggestions

        Raises:
            NotFound: If the artifact has no versions
            UnsupportedKind: If the artifact is not a text document
        """
        emitter = DeltaStreamEmitter(writer)
        try:
            current = await self._load_current(artifact_id)
        except ArtifactEngineError as e:
            emitter.error(e.message)
            raise

        policy = get_policy(current.kind)
        owner_id = owner_id or current.owner_id

        async with self._operation("suggest", policy, artifact_id, emitter) as op:
            if current.kind != ArtifactKind.TEXT:
                raise UnsupportedKind(
                    f"Suggestions are only available for text artifacts, not {current.kind.value}",
                    artifact_id=artifact_id
                )
            op.add_context(version=current.version_number)
            emitter.kind(policy)
            emitter.id(artifact_id)
            emitter.title(current.title)

            parser = SuggestionStreamParser()
            proposals: List[Dict[str, Any]] = []

            def relay(found: List[Dict[str, str]]) -> None:
                for suggestion in found:
                    if len(proposals) >= settings.max_suggestions:
                        return
                    proposal = {"id": str(uuid.uuid4()), **suggestion}
                    proposals.append(proposal)
                    emitter.suggestion({
                        "id": proposal["id"],
                        "artifactId": artifact_id,
                        "versionNumber": current.version_number,
                        "originalText": proposal["originalText"],
                        "suggestedText": proposal["suggestedText"],
                        "description": proposal["description"],
                        "isResolved": False,
                    })

            final = await self._generate(
                policy,
                emitter,
                system=SUGGESTIONS_SYSTEM_PROMPT.format(max_suggestions=settings.max_suggestions),
                prompt=self._suggestions_prompt(current.content, instruction),
                on_snapshot=lambda snapshot: relay(parser.feed(snapshot)),
                response_format=JSON_LINES_FORMAT
            )
            relay(parser.close(final))

            records = await self._persist_suggestions(
                artifact_id, current.version_number, proposals, owner_id
            )
            MetricsCollector.record_suggestions(len(records))
            op.add_context(suggestions=len(records))
            emitter.finish()

        return SuggestionBatch(
            id=artifact_id,
            version_number=current.version_number,
            suggestions=tuple(records)
        )

    @asynccontextmanager
    async def _operation(
        self,
        operation: str,
        policy: ArtifactKindPolicy,
        artifact_id: str,
        emitter: DeltaStreamEmitter
    ):
        MetricsCollector.operation_started()
        try:
            async with ArtifactOperationLogger(
                struct_logger, operation, policy.kind.value, artifact_id
            ) as op:
                try:
                    yield op
                except ArtifactEngineError as e:
                    emitter.error(e.message)
                    raise
                except Exception as e:
                    emitter.error(f"Failed to {operation} {policy.kind.value} artifact: {e}")
                    raise
        finally:
            MetricsCollector.operation_finished()

    async def _generate(
        self,
        policy: ArtifactKindPolicy,
        emitter: DeltaStreamEmitter,
        system: str,
        prompt: str,
        on_snapshot: Optional[Callable[[str], None]] = None,
        response_format: Optional[str] = None
    ) -> str:
        """
        Relay every snapshot increment as a delta; return the final snapshot.

        With ``on_snapshot`` each snapshot goes to the callback instead and no
        content delta is emitted.
        """
        text = ""
        snapshots = 0
        async with self.rate_limiter.acquire():
            try:
                stream = self.producer.stream(
                    system, prompt, kind=policy.kind, response_format=response_format
                )
            except Exception as e:
                raise UpstreamGenerationError(f"Model generation failed: {e}") from e

            try:
                while True:
                    try:
                        snapshot = await stream.__anext__()
                    except StopAsyncIteration:
                        break
                    except Exception as e:
                        raise UpstreamGenerationError(f"Model generation failed: {e}") from e

                    if snapshot is None:
                        continue
                    snapshots += 1
                    if not snapshot.startswith(text):
                        logger.warning(
                            f"Model snapshot {snapshots} does not extend the previous one; "
                            f"continuing from its length"
                        )
                    delta = compute_delta(text, snapshot)
                    text = snapshot
                    if on_snapshot is not None:
                        on_snapshot(snapshot)
                    else:
                        emitter.content_delta(delta)
            finally:
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    await aclose()

        logger.info(f"Model generation complete: {snapshots} snapshot(s), {len(text)} chars")
        return text

    def _validate(self, policy: ArtifactKindPolicy, text: str, artifact_id: str) -> ValidationResult:
        result = validate(policy.kind, text)
        if result.ok:
            return result

        if policy.hard_fail_on_invalid:
            MetricsCollector.record_validation_failure(policy.kind.value, "fatal")
            raise ValidationFailed(policy.kind.value, result.reason, artifact_id=artifact_id)

        MetricsCollector.record_validation_failure(policy.kind.value, "warning")
        logger.warning(
            f"Content of {policy.kind.value} artifact {artifact_id} may be invalid, "
            f"saving anyway: {result.reason}"
        )
        return result

    async def _load_current(self, artifact_id: str) -> ArtifactVersionRecord:
        loop = asyncio.get_running_loop()
        current = await loop.run_in_executor(None, self.store.get_latest, artifact_id)
        if current is None:
            logger.warning(f"Update requested for unknown artifact {artifact_id}")
            raise NotFound(f"Artifact with id {artifact_id} not found", artifact_id=artifact_id)
        return current

    async def _persist(
        self,
        artifact_id: str,
        title: str,
        policy: ArtifactKindPolicy,
        content: str,
        metadata: Dict[str, Any],
        parent_version_id: Optional[str] = None,
        owner_id: Optional[str] = None,
        conversation_id: Optional[str] = None
    ) -> ArtifactVersionRecord:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                None,
                functools.partial(
                    self.store.create,
                    artifact_id,
                    title,
                    policy.kind,
                    content,
                    parent_version_id=parent_version_id,
                    owner_id=owner_id,
                    conversation_id=conversation_id,
                    metadata=metadata
                )
            )
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(
                f"Failed to save version of artifact {artifact_id}: {e}",
                artifact_id=artifact_id
            ) from e

    async def _persist_suggestions(
        self,
        artifact_id: str,
        version_number: int,
        proposals: List[Dict[str, Any]],
        owner_id: Optional[str]
    ) -> List[SuggestionRecord]:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                None,
                functools.partial(
                    self.store.save_suggestions,
                    artifact_id,
                    version_number,
                    proposals,
                    owner_id=owner_id
                )
            )
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(
                f"Failed to save suggestions for artifact {artifact_id}: {e}",
                artifact_id=artifact_id
            ) from e

    def _metadata(
        self,
        policy: ArtifactKindPolicy,
        update_type: UpdateType,
        validation: ValidationResult,
        extra: Optional[Dict[str, Any]] = None,
        generated: bool = False,
        previous: Optional[ArtifactVersionRecord] = None,
        line_range: Optional[LineRange] = None
    ) -> Dict[str, Any]:
        now = datetime.now(timezone.utc).isoformat()
        metadata: Dict[str, Any] = dict(extra or {})
        metadata.update({
            "agent": policy.agent_name,
            "updateType": update_type.value,
            "modelUsed": getattr(self.producer, "model", type(self.producer).__name__) if generated else None,
            "isPreGenerated": not generated,
            "validation": {"ok": validation.ok, "reason": validation.reason},
        })
        if previous is None:
            metadata["createdAt"] = now
        else:
            metadata["updatedAt"] = now
            metadata["previousVersion"] = previous.version_number
            metadata["lineRange"] = line_range.to_dict() if line_range else None
        return metadata

    def _system_prompt(self, policy: ArtifactKindPolicy, line_range: Optional[LineRange] = None) -> str:
        system = self.system_prompts.get(policy.kind.value, "")
        if line_range is not None:
            system = f"{system}\n\n{LINE_RANGE_PROMPT_SUFFIX.format(start=line_range.start, end=line_range.end)}"
        return system

    @staticmethod
    def _update_prompt(current: str, instruction: str, line_range: Optional[LineRange]) -> str:
        prompt = f"Current content:\n```\n{current}\n```\n\n"
        if line_range is not None:
            lines = current.split("\n")[line_range.start - 1:line_range.end]
            selected = "\n".join(
                f"{number}: {line}" for number, line in enumerate(lines, start=line_range.start)
            )
            prompt += f"Lines {line_range.start}-{line_range.end} to replace:\n```\n{selected}\n```\n\n"
        return prompt + f"Update instructions: {instruction}"

    @staticmethod
    def _suggestions_prompt(current: str, instruction: Optional[str]) -> str:
        prompt = f"Document:\n```\n{current}\n```"
        if instruction:
            prompt += f"\n\nFocus: {instruction}"
        return prompt

    @staticmethod
    def _check_source(
        instruction: Optional[str],
        content: Optional[str],
        allow_empty_content: bool = False
    ) -> None:
        if (instruction is None) == (content is None):
            raise ValueError("Exactly one of instruction or content must be given")
        if instruction is not None and not instruction.strip():
            raise ValueError("instruction must not be empty")
        if content is not None and not allow_empty_content and not content.strip():
            raise ValueError("content must not be empty")

    @staticmethod
    def _check_title(title: str) -> None:
        if not title or not title.strip():
            raise ValueError("title must not be empty")

    @staticmethod
    def _result(record: ArtifactVersionRecord, validation: ValidationResult) -> ArtifactResult:
        return ArtifactResult(
            id=record.id,
            content=record.content,
            version_number=record.version_number,
            kind=record.kind,
            title=record.title,
            valid=validation.ok,
            validation_reason=validation.reason,
        )
