"""Streaming conversation channel: one model request as a cancellable stream of text deltas."""

import asyncio
import re
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from anthropic import APIConnectionError, APIStatusError
from pydantic import BaseModel, ValidationError

from lorekeeper.models.llm import LLMUsage, StreamResult, TextBlock
from lorekeeper.utils.logging import get_logger

if TYPE_CHECKING:
    from lorekeeper.clients.anthropic import AnthropicClient

logger = get_logger(__name__)

_CODE_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL)

_DONE = object()


class StreamAbortedError(Exception):
    """The stream was aborted before the model finished its turn."""


class StructuredOutputError(Exception):
    """Streamed text did not parse into the requested schema. Safe to retry."""

    def __init__(self, message: str, raw_text: str, usage: LLMUsage | None = None):
        super().__init__(message)
        self.raw_text = raw_text
        self.usage = usage or LLMUsage()


class ConversationStream:
    """A single streamed request to the model.

    Iterate `text_deltas()` for incremental text, then await `final_message()` for the content blocks,
    stop reason and usage. `abort()`, or setting the cancel event given at construction, makes any pending
    or later `final_message()` raise `StreamAbortedError`.
    """

    def __init__(
        self,
        client: "AnthropicClient",
        params: dict[str, Any],
        *,
        output_schema: type[BaseModel] | None = None,
        cancel: asyncio.Event | None = None,
        estimated_tokens: int = 0,
    ):
        self._client = client
        self._params = params
        self._output_schema = output_schema
        self._cancel = cancel
        self._estimated_tokens = estimated_tokens

        self._deltas: asyncio.Queue[Any] = asyncio.Queue()
        self._text_parts: list[str] = []
        self._result: asyncio.Future[StreamResult] | None = None
        self._pump: asyncio.Task[None] | None = None
        self._watcher: asyncio.Task[None] | None = None
        self._aborted = False

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def text(self) -> str:
        """Text received so far."""
        return "".join(self._text_parts)

    async def text_deltas(self) -> AsyncIterator[str]:
        """Yield text deltas until the turn finishes or the stream is aborted."""
        self._start()
        while True:
            item = await self._deltas.get()
            if item is _DONE:
                return
            yield item

    async def final_message(self) -> StreamResult:
        """Wait for the complete turn.

        Raises:
            StreamAbortedError: If the stream was aborted
            StructuredOutputError: If an output schema was requested and the text does not match it
        """
        if self._aborted:
            raise StreamAbortedError("Stream aborted")
        self._start()
        if self._result is None:
            raise StreamAbortedError("Stream aborted")
        return await self._result

    def abort(self) -> None:
        """Stop streaming. Idempotent."""
        if self._aborted:
            return
        self._aborted = True
        logger.info("Aborting model stream")

        if self._result is not None and not self._result.done():
            self._result.set_exception(StreamAbortedError("Stream aborted"))
        if self._pump is not None and not self._pump.done():
            self._pump.cancel()
        if self._watcher is not None and self._watcher is not asyncio.current_task():
            self._watcher.cancel()
        self._deltas.put_nowait(_DONE)

    def _start(self) -> None:
        if self._pump is not None or self._aborted:
            return
        if self._cancel is not None and self._cancel.is_set():
            self.abort()
            return

        self._result = asyncio.get_running_loop().create_future()
        # Mark the exception as retrieved when nobody awaits an aborted turn
        self._result.add_done_callback(lambda future: future.cancelled() or future.exception())
        self._pump = asyncio.create_task(self._run())
        if self._cancel is not None:
            self._watcher = asyncio.create_task(self._watch_cancel())

    async def _watch_cancel(self) -> None:
        assert self._cancel is not None
        await self._cancel.wait()
        self.abort()

    async def _run(self) -> None:
        assert self._result is not None
        try:
            result = await self._stream_with_retries()
        except asyncio.CancelledError:
            if not self._result.done():
                self._result.set_exception(StreamAbortedError("Stream aborted"))
            raise
        except Exception as e:
            if not self._result.done():
                self._result.set_exception(e)
        else:
            if not self._result.done():
                self._result.set_result(result)
        finally:
            self._deltas.put_nowait(_DONE)
            if self._watcher is not None and not self._watcher.done():
                self._watcher.cancel()

    async def _stream_with_retries(self) -> StreamResult:
        await self._client.rate_limiter.check_rate_limit(self._estimated_tokens)

        attempt = 0
        while True:
            try:
                async with self._client.client.messages.stream(**self._params) as stream:
                    async for delta in stream.text_stream:
                        self._text_parts.append(delta)
                        self._deltas.put_nowait(delta)
                    message = await stream.get_final_message()
                break
            except (APIStatusError, APIConnectionError) as e:
                delay = self._client.retry_delay(e, attempt)
                # Deltas already reached the caller, so a replay would duplicate them
                if self._text_parts or delay is None:
                    raise
                logger.warning(f"Model request failed ({e}), retrying in {delay:.1f}s (attempt {attempt + 1})")
                await asyncio.sleep(delay)
                attempt += 1

        return self._build_result(message)

    def _build_result(self, message: Any) -> StreamResult:
        usage = LLMUsage()
        if message.usage:
            usage = LLMUsage(
                input_tokens=message.usage.input_tokens,
                output_tokens=message.usage.output_tokens,
                total_tokens=message.usage.input_tokens + message.usage.output_tokens,
                cache_creation_input_tokens=getattr(message.usage, "cache_creation_input_tokens", None) or 0,
                cache_read_input_tokens=getattr(message.usage, "cache_read_input_tokens", None) or 0,
            )

        content = self._client.convert_content_blocks(message.content)
        text = self.text or "".join(block.text for block in content if isinstance(block, TextBlock))

        logger.debug(f"Stream finished - stop reason: {message.stop_reason}, content blocks: {len(content)}")

        parsed = self._parse_structured_output(text, usage) if self._output_schema is not None else None
        return StreamResult(
            content=content,
            stop_reason=message.stop_reason,
            usage=usage,
            model=message.model,
            text=text,
            parsed=parsed,
        )

    def _parse_structured_output(self, text: str, usage: LLMUsage) -> BaseModel:
        assert self._output_schema is not None
        fenced = _CODE_FENCE_RE.match(text)
        payload = fenced.group(1) if fenced else text
        try:
            return self._output_schema.model_validate_json(payload)
        except ValidationError as e:
            raise StructuredOutputError(
                f"Structured output did not match {self._output_schema.__name__}: {e.error_count()} error(s)",
                raw_text=text,
                usage=usage,
            ) from e
