"""
Chat Service Module

Connects generation sessions to an OpenAI-compatible endpoint (LM Studio,
Ollama, vLLM, OpenRouter, ...). Provides the stream producer a
GenerationSession consumes.
"""

import logging
from typing import AsyncIterator

from openai import AsyncOpenAI, OpenAIError

from thinkstream.models.analytics_types import GenerationParameters
from thinkstream.models.llm_types import LLMConfiguration

from .errors import BackendFailureError
from .stream_parser import ThinkingDelimiters

# Configure logger
logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."
MAX_HISTORY_MESSAGES = 10


class OpenAIStreamProducer:
    """
    Stream producer backed by a chat completions call.

    Servers that return reasoning in a separate `reasoning_content` delta
    field get it re-wrapped in the configured delimiters, so the session
    sees a single tagged text stream either way.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        messages: list[dict[str, str]],
        parameters: GenerationParameters,
        streaming: bool = True,
        delimiters: ThinkingDelimiters | None = None,
    ):
        self.client = client
        self.model = model
        self.messages = messages
        self.parameters = parameters
        self.streaming = streaming
        self.delimiters = delimiters or ThinkingDelimiters()
        self._cancelled = False
        self._started = False
        self._reported_output_tokens: int | None = None

    @property
    def reported_output_tokens(self) -> int | None:
        return self._reported_output_tokens

    def cancel(self) -> None:
        self._cancelled = True

    def _request_kwargs(self) -> dict:
        kwargs = {
            "model": self.model,
            "messages": self.messages,
            "temperature": self.parameters.temperature,
            "max_tokens": self.parameters.max_tokens,
        }
        if self.parameters.top_p is not None:
            kwargs["top_p"] = self.parameters.top_p
        if self.parameters.top_k is not None:
            # Not part of the OpenAI schema; local servers read it from the body
            kwargs["extra_body"] = {"top_k": self.parameters.top_k}
        return kwargs

    def _record_usage(self, usage) -> None:
        if usage is not None and getattr(usage, "completion_tokens", None) is not None:
            self._reported_output_tokens = usage.completion_tokens

    async def fragments(self) -> AsyncIterator[str]:
        if self._started:
            raise BackendFailureError("Stream producer cannot be restarted")
        self._started = True

        logger.info(
            f"[LLM] Requesting completion - model: {self.model}, "
            f"streaming: {self.streaming}"
        )

        if not self.streaming:
            try:
                response = await self.client.chat.completions.create(
                    **self._request_kwargs()
                )
            except OpenAIError as e:
                raise BackendFailureError(f"Generation backend error: {e}") from e
            self._record_usage(response.usage)
            message = response.choices[0].message
            reasoning = getattr(message, "reasoning_content", None)
            content = message.content or ""
            if reasoning:
                content = (
                    f"{self.delimiters.open_tag}{reasoning}"
                    f"{self.delimiters.close_tag}{content}"
                )
            if content and not self._cancelled:
                yield content
            return

        try:
            stream = await self.client.chat.completions.create(
                **self._request_kwargs(),
                stream=True,
                stream_options={"include_usage": True},
            )
        except OpenAIError as e:
            raise BackendFailureError(f"Generation backend error: {e}") from e

        in_reasoning = False
        try:
            async for chunk in stream:
                if self._cancelled:
                    logger.info("[LLM] Stream cancelled, closing connection")
                    break

                self._record_usage(getattr(chunk, "usage", None))
                if not chunk.choices:
                    continue

                delta = chunk.choices[0].delta
                reasoning = getattr(delta, "reasoning_content", None)
                if reasoning:
                    if not in_reasoning:
                        in_reasoning = True
                        yield self.delimiters.open_tag
                    yield reasoning

                if delta.content:
                    if in_reasoning:
                        in_reasoning = False
                        yield self.delimiters.close_tag
                    yield delta.content
        except OpenAIError as e:
            raise BackendFailureError(f"Generation backend error: {e}") from e
        finally:
            await stream.close()


class ChatService:
    """Builds chat requests and stream producers for the active LLM configuration"""

    def __init__(self, config: LLMConfiguration | None = None):
        self.config = config or LLMConfiguration()
        self.client = AsyncOpenAI(
            base_url=self.config.base_url, api_key=self.config.api_key
        )
        logger.info(
            f"Chat service using {self.config.name}: {self.config.base_url} "
            f"(model: {self.config.model_name or '<server default>'})"
        )

    def reload_configuration(self, config: LLMConfiguration):
        """
        Switch to a new LLM configuration.
        Sessions already streaming keep the client they were created with.
        """
        logger.info(f"🔄 Reloading LLM configuration: {config.name}")
        self.config = config
        self.client = AsyncOpenAI(base_url=config.base_url, api_key=config.api_key)

    @property
    def delimiters(self) -> ThinkingDelimiters:
        return ThinkingDelimiters(
            assume_open=self.config.always_starts_with_thinking
        )

    def build_messages(
        self,
        message: str,
        chat_history: list[dict[str, str]] | None = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ) -> list[dict[str, str]]:
        """
        Assemble the chat completion messages.

        Only the last MAX_HISTORY_MESSAGES history entries are sent.
        """
        messages = [{"role": "system", "content": system_prompt}]
        if chat_history:
            for msg in chat_history[-MAX_HISTORY_MESSAGES:]:
                if msg.get("role") in ("user", "assistant") and msg.get("content"):
                    messages.append({"role": msg["role"], "content": msg["content"]})
        messages.append({"role": "user", "content": message})
        return messages

    def create_producer(
        self,
        message: str,
        chat_history: list[dict[str, str]] | None = None,
        parameters: GenerationParameters | None = None,
        streaming: bool = True,
    ) -> OpenAIStreamProducer:
        """Create a producer for one generation request"""
        return OpenAIStreamProducer(
            client=self.client,
            model=self.config.model_name,
            messages=self.build_messages(message, chat_history),
            parameters=parameters or GenerationParameters(),
            streaming=streaming,
            delimiters=self.delimiters,
        )

    async def test_connection(self) -> dict[str, object]:
        """Check that the endpoint answers a model listing"""
        try:
            models = await self.client.models.list()
            model_ids = [model.id for model in models.data]
            return {
                "status": "connected",
                "base_url": self.config.base_url,
                "models": model_ids,
            }
        except OpenAIError as e:
            logger.error(f"LLM connection test failed: {e}")
            return {"status": "error", "base_url": self.config.base_url, "error": str(e)}


# Global instance
chat_service = ChatService()
