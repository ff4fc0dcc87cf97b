"""Model producers: sources of cumulative content snapshots."""
import asyncio
import json
import logging
import re
from typing import AsyncIterator, Dict, Optional, Protocol

import httpx

from artifact_engine.core.artifact_types import ArtifactKind
from artifact_engine.core.config import settings

logger = logging.getLogger(__name__)

# Structured output: one JSON object per line
JSON_LINES_FORMAT = "json_lines"


class ModelProducer(Protocol):
    """
    Opaque producer of generated content.

    ``stream`` returns a lazy, finite, non-restartable sequence of
    cumulative snapshots: each item is the whole text produced so far.
    ``response_format`` names a structured output format (``"json_lines"``
    for suggestions); None means the plain content of ``kind``.
    """

    def stream(
        self,
        system: str,
        prompt: str,
        kind: Optional[ArtifactKind] = None,
        response_format: Optional[str] = None
    ) -> AsyncIterator[str]:
        ...


class OpenAICompatibleProducer:
    """
    Streams a chat completion from an OpenAI-compatible endpoint.

    Tokens arrive as server-sent events; they are accumulated and each new
    token yields the cumulative text so far. Structured formats are requested
    through the system prompt, so ``response_format`` is not sent upstream.

    Args:
        base_url: API root, e.g. "https://api.openai.com"
        api_key: Bearer token
        model: Model id sent with every request
        timeout: Read timeout in seconds for the streaming response
        client: Optional preconfigured httpx.AsyncClient (tests inject a mock transport)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = (base_url or settings.llm_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.llm_api_key
        self.model = model or settings.llm_model
        self.timeout = timeout or settings.llm_timeout_seconds
        self._client = client

    async def stream(
        self,
        system: str,
        prompt: str,
        kind: Optional[ArtifactKind] = None,
        response_format: Optional[str] = None
    ) -> AsyncIterator[str]:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "stream": True,
        }
        headers: Dict[str, str] = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        logger.debug(f"Model stream starting (model={self.model}, base_url={self.base_url})")

        client = self._client or httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=self.timeout))
        try:
            async with client.stream(
                "POST",
                f"{self.base_url}/v1/chat/completions",
                json=payload,
                headers=headers,
            ) as resp:
                resp.raise_for_status()
                text = ""
                async for line in resp.aiter_lines():
                    if not line or not line.startswith("data:"):
                        continue
                    data = line[5:].strip()
                    if data == "[DONE]":
                        break
                    try:
                        parsed = json.loads(data)
                    except json.JSONDecodeError:
                        continue
                    delta = (parsed.get("choices") or [{}])[0].get("delta") or {}
                    token = delta.get("content") or ""
                    if token:
                        text += token
                        yield text
        finally:
            if self._client is None:
                await client.aclose()


_SIMULATED_BODIES: Dict[ArtifactKind, str] = {
    ArtifactKind.TEXT: "# {title}\n\n{instruction}\n",
    ArtifactKind.SHEET: "item,value\n{instruction},1\n",
    ArtifactKind.CODE: (
        "def main():\n"
        "    \"\"\"{instruction}\"\"\"\n"
        "    print(\"ok\")\n"
        "\n"
        "\n"
        "if __name__ == \"__main__\":\n"
        "    main()\n"
    ),
    ArtifactKind.DIAGRAM: "flowchart TD\n    A[Start] --> B[{instruction}]\n    B --> C[End]\n",
}


class SimulatedModelProducer:
    """
    Deterministic producer for test mode and local development.

    Renders a small per-kind template around the prompt, or suggestions as
    JSON lines, and streams it in fixed-size chunks as cumulative snapshots.

    Args:
        chunk_size: Characters added per snapshot
        delay: Seconds to sleep between snapshots
    """

    def __init__(self, chunk_size: int = 16, delay: float = 0.0):
        self.chunk_size = max(1, chunk_size)
        self.delay = delay

    def render_suggestions(self, prompt: str) -> str:
        """Propose a capitalized, full-stopped version of each of the first plain lines."""
        match = re.search(r"```\n(.*?)\n```", prompt, re.DOTALL)
        lines = []
        for line in (match.group(1) if match else "").split("\n"):
            original = line.strip()
            if not original or original.startswith(("#", "-", "*", "|")):
                continue
            suggested = original[0].upper() + original[1:].rstrip(".!?") + "."
            if suggested != original:
                lines.append(json.dumps({
                    "originalText": original,
                    "suggestedText": suggested,
                    "description": "Start with a capital letter and end with a full stop",
                }))
            if len(lines) == 3:
                break
        return "".join(f"{line}\n" for line in lines)

    def render(self, prompt: str, kind: Optional[ArtifactKind]) -> str:
        template = _SIMULATED_BODIES.get(ArtifactKind(kind) if kind else ArtifactKind.TEXT)
        instruction = prompt.strip().splitlines()[-1] if prompt.strip() else "Untitled"
        return template.format(title=instruction[:60], instruction=instruction[:200])

    async def stream(
        self,
        system: str,
        prompt: str,
        kind: Optional[ArtifactKind] = None,
        response_format: Optional[str] = None
    ) -> AsyncIterator[str]:
        if response_format == JSON_LINES_FORMAT:
            content = self.render_suggestions(prompt)
        else:
            content = self.render(prompt, kind)
        for end in range(self.chunk_size, len(content) + self.chunk_size, self.chunk_size):
            if self.delay:
                await asyncio.sleep(self.delay)
            yield content[:end]


def get_default_producer() -> ModelProducer:
    """Real producer when a key is configured, simulated otherwise."""
    if settings.use_simulated_producer:
        logger.info("Using simulated model producer (test mode or no API key)")
        return SimulatedModelProducer()
    return OpenAICompatibleProducer()
