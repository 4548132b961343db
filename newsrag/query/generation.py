"""
Generation Provider

Answers questions with a ranked list of Ollama chat models (via
langchain-ollama). Each model is retried with exponential backoff on
transient errors (rate limits, overload) before falling through to the next
one, and the model that last succeeded is tried first on the next call.

All requests go through a single asyncio lock, so at most one generation is
in flight per process and callers are served in arrival order.
"""

import asyncio
import inspect
import logging
import random
import re
from typing import Any, Callable, Dict, List, Optional, Sequence

from langchain_ollama import ChatOllama

from ..models import SearchResult

logger = logging.getLogger(__name__)


RETRYABLE_STATUS_CODES = (429, 503)
RETRYABLE_PATTERN = re.compile(r'\b(?:429|503)\b|overloaded|rate limit|quota', re.IGNORECASE)

NO_CONTEXT_TEXT = "No relevant context found."

PROMPT_TEMPLATE = """You are a helpful AI assistant for a news website. Answer the user's question based on the provided news articles context. If the context doesn't contain relevant information, politely say so and provide what general knowledge you can while being clear about the limitations.

Context from recent news articles:
{context}

User Question: {query}

Please provide a comprehensive answer based on the context above. If you reference information from the articles, be specific about which source you're referencing. Keep your response informative but concise."""


class AllModelsExhaustedError(Exception):
    """Raised when every candidate model failed for a request."""

    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.last_error = last_error


def is_retryable_error(error: BaseException) -> bool:
    """
    Whether an error is transient and worth retrying on the same model.

    Args:
        error: Exception raised by the model call

    Returns:
        True for HTTP 429/503 and overload, rate-limit or quota messages
    """
    status_code = getattr(error, 'status_code', None)
    if status_code in RETRYABLE_STATUS_CODES:
        return True

    return RETRYABLE_PATTERN.search(str(error)) is not None


def format_context(passages: Sequence[SearchResult]) -> str:
    """Render passages as numbered, labelled blocks for the prompt."""
    if not passages:
        return NO_CONTEXT_TEXT

    blocks = []
    for i, passage in enumerate(passages, 1):
        label = passage.metadata.title or passage.metadata.url or f"Source {i}"
        blocks.append(f"[{i}] {label}\n{passage.text}")
    return "\n\n".join(blocks)


def _response_text(response: Any) -> str:
    """Extract text from a chat model response or stream chunk."""
    content = response.content if hasattr(response, 'content') else response
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part if isinstance(part, str) else str(part.get('text', ''))
            for part in content
        )
    return str(content) if content is not None else ""


class _ChunkForwarder:
    """Passes chunks to a callback until the callback first fails."""

    def __init__(self, on_chunk: Optional[Callable[[str], Any]]):
        self.on_chunk = on_chunk
        self.disabled = on_chunk is None

    async def __call__(self, text: str) -> None:
        if self.disabled:
            return
        try:
            result = self.on_chunk(text)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.disabled = True
            logger.warning(f"Chunk consumer failed, dropping further chunks: {e}")


class GenerationProvider:
    """
    Resilient LLM generation over ranked Ollama models.

    Features:
    - Preferred-model memory (last successful model goes first)
    - Exponential backoff with jitter on transient errors
    - Fallback to the next model on terminal errors or exhausted retries
    - Single-flight FIFO request queue
    - Batch and streaming generation
    """

    def __init__(
        self,
        models: Sequence[str] = ("llama3.1:latest", "llama3.2:latest", "mistral:latest"),
        base_url: str = "http://localhost:11434",
        temperature: float = 0.7,
        max_tokens: int = 1000,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_jitter: float = 1.0,
        timeout: Optional[float] = None,
        llm_factory: Optional[Callable[[str], Any]] = None
    ):
        """
        Initialize the generation provider.

        Args:
            models: Ollama model names in preference order
            base_url: Base URL for the Ollama service
            temperature: LLM temperature
            max_tokens: Maximum tokens in a generated answer
            max_retries: Retries per model for transient errors
            base_delay: Backoff base in seconds (doubles each attempt)
            max_jitter: Upper bound of the random delay added to each backoff
            timeout: Seconds before an Ollama request is abandoned (None: no limit)
            llm_factory: Callable building a chat model from a model name
                (default: ChatOllama)
        """
        if not models:
            raise ValueError("At least one generation model is required")

        self.models: List[str] = list(models)
        self.base_url = base_url
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_jitter = max_jitter
        self.timeout = timeout

        self._llm_factory = llm_factory or self._create_llm
        self._llms: Dict[str, Any] = {}
        self.current_model_index = 0
        self._lock = asyncio.Lock()

    def _create_llm(self, model: str) -> ChatOllama:
        return ChatOllama(
            model=model,
            temperature=self.temperature,
            base_url=self.base_url,
            num_predict=self.max_tokens,
            client_kwargs={'timeout': self.timeout}
        )

    def _get_llm(self, model: str) -> Any:
        if model not in self._llms:
            self._llms[model] = self._llm_factory(model)
        return self._llms[model]

    @property
    def current_model(self) -> str:
        return self.models[self.current_model_index]

    @property
    def available_models(self) -> List[str]:
        return list(self.models)

    def build_prompt(self, query: str, passages: Sequence[SearchResult]) -> str:
        """
        Build the grounded prompt sent to the model.

        Args:
            query: User question
            passages: Retrieved passages used as context

        Returns:
            Prompt string
        """
        return PROMPT_TEMPLATE.format(context=format_context(passages), query=query)

    def _backoff_delay(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt) + random.uniform(0, self.max_jitter)

    def _model_order(self) -> List[int]:
        start = self.current_model_index
        return [(start + offset) % len(self.models) for offset in range(len(self.models))]

    async def _run_with_fallback(self, operation: Callable[[Any], Any]) -> str:
        """
        Run ``operation(llm)`` across models with retry and fallback.

        Raises:
            AllModelsExhaustedError: If every model failed
        """
        async with self._lock:
            last_error: Optional[BaseException] = None

            for index in self._model_order():
                model = self.models[index]

                for attempt in range(self.max_retries + 1):
                    try:
                        result = await operation(self._get_llm(model))
                    except Exception as e:
                        last_error = e
                        if is_retryable_error(e) and attempt < self.max_retries:
                            delay = self._backoff_delay(attempt)
                            logger.warning(
                                f"Model {model} attempt {attempt + 1} failed with transient error, "
                                f"retrying in {delay:.2f}s: {e}"
                            )
                            await asyncio.sleep(delay)
                            continue

                        logger.warning(f"Model {model} failed, trying next model: {e}")
                        break

                    if index != self.current_model_index:
                        logger.info(f"Switched preferred model to {model}")
                    self.current_model_index = index
                    return result

            logger.error(f"All {len(self.models)} models failed: {last_error}")
            raise AllModelsExhaustedError(
                f"All models failed. Last error: {last_error}",
                last_error=last_error
            ) from last_error

    async def generate(self, query: str, passages: Sequence[SearchResult]) -> str:
        """
        Generate a complete answer.

        Args:
            query: User question
            passages: Retrieved context passages

        Returns:
            Answer text

        Raises:
            AllModelsExhaustedError: If every model failed
        """
        prompt = self.build_prompt(query, passages)

        async def invoke(llm) -> str:
            response = await llm.ainvoke(prompt)
            return _response_text(response).strip()

        return await self._run_with_fallback(invoke)

    async def generate_streaming(
        self,
        query: str,
        passages: Sequence[SearchResult],
        on_chunk: Optional[Callable[[str], Any]] = None
    ) -> str:
        """
        Generate an answer, passing each text fragment to ``on_chunk``.

        A stream that breaks mid-way counts as a failed attempt; fragments
        already delivered are not withdrawn and the retry streams afresh.

        Args:
            query: User question
            passages: Retrieved context passages
            on_chunk: Sync or async callable receiving each non-empty fragment

        Returns:
            Concatenated text of the successful attempt

        Raises:
            AllModelsExhaustedError: If every model failed
        """
        prompt = self.build_prompt(query, passages)
        forward = _ChunkForwarder(on_chunk)

        async def stream(llm) -> str:
            parts = []
            async for chunk in llm.astream(prompt):
                text = _response_text(chunk)
                if not text:
                    continue
                parts.append(text)
                await forward(text)
            return "".join(parts)

        return await self._run_with_fallback(stream)

    async def test_connection(self) -> bool:
        """
        Probe the preferred model, then every model in order.

        The first model that answers becomes the preferred one.

        Returns:
            True if any model answered
        """
        async with self._lock:
            preferred = self.current_model_index
            order = [preferred] + [i for i in range(len(self.models)) if i != preferred]

            for index in order:
                model = self.models[index]
                try:
                    await self._get_llm(model).ainvoke("Test connection")
                except Exception as e:
                    logger.warning(f"Connection test failed for {model}: {e}")
                    continue

                self.current_model_index = index
                logger.info(f"Connection test successful with {model}")
                return True

            logger.error("No generation model is reachable")
            return False

    def __repr__(self) -> str:
        return f"GenerationProvider(models={self.models}, current={self.current_model!r})"
