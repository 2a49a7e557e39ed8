"""Scripted stand-ins for the generation client."""

import asyncio

QUERY_RESPONSE = (
    "Here are your users.\n\n**Query:**\n\n```sql\nSELECT name FROM users ORDER BY name\n```\n\n"
    "Two users so far."
)
PROSE_RESPONSE = "I couldn't find anything about shipments in this database."


class ScriptedStream:
    """Async iterator standing in for GenerationStream."""

    def __init__(self, fragments, tokens_used=11, fail_with=None, hang=False):
        self._fragments = list(fragments)
        self._final_tokens = tokens_used
        self._fail_with = fail_with
        self._hang = hang
        self.tokens_used = 0
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._fragments:
            return self._fragments.pop(0)
        if self._fail_with is not None:
            raise self._fail_with
        if self._hang:
            await asyncio.Event().wait()
        self.tokens_used = self._final_tokens
        raise StopAsyncIteration

    async def aclose(self):
        self.closed = True


class ScriptedClient:
    """Generation client returning a fixed response in both modes.

    Attributes:
        calls: One dict per request with message, history and system prompt.
        streams: Streams handed out by chat_stream, in order.
    """

    def __init__(self, text=QUERY_RESPONSE, tokens_used=11, fail_with=None, hang=False, fragment_size=8):
        self.text = text
        self.tokens_used = tokens_used
        self.fail_with = fail_with
        self.hang = hang
        self.fragment_size = fragment_size
        self.calls: list[dict] = []
        self.streams: list[ScriptedStream] = []

    async def chat(self, message, history=(), schema_context=None):
        self.calls.append({"message": message, "history": list(history), "system": schema_context})
        if self.fail_with is not None:
            raise self.fail_with
        return self.text, self.tokens_used

    def chat_stream(self, message, history=(), schema_context=None):
        self.calls.append({"message": message, "history": list(history), "system": schema_context})
        size = self.fragment_size
        fragments = [self.text[i:i + size] for i in range(0, len(self.text), size)]
        stream = ScriptedStream(fragments, self.tokens_used, self.fail_with, self.hang)
        self.streams.append(stream)
        return stream
