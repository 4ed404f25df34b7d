"""
GptRelayBot - OpenAI-compatible chat completion client.

One prompt in, one reply out. No conversation state is kept between calls.
"""
import asyncio, logging
import aiohttp

logger = logging.getLogger("gptrelaybot")

DEFAULT_API_BASE = "https://api.openai.com"
DEFAULT_MODEL = "gpt-4.1"
DEFAULT_TIMEOUT = 60.0


class CompletionError(Exception):
    """The assistant could not produce a reply."""


class CompletionTransportError(CompletionError):
    """Network failure or timeout talking to the endpoint."""


class CompletionProtocolError(CompletionError):
    """Bad HTTP status or a response body without usable content."""

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


def build_payload(model: str, prompt: str) -> dict:
    return {
        "model": model,
        "messages": [{"role": "user", "content": prompt}],
    }


def extract_content(data) -> str:
    """Return choices[0].message.content from a decoded response body."""
    if not isinstance(data, dict):
        raise CompletionProtocolError("Response body is not a JSON object")
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        raise CompletionProtocolError("Response has no choices")
    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str) or not content.strip():
        raise CompletionProtocolError("First choice has no text content")
    return content


class CompletionBridge:
    """Sends single-message chat requests with bearer auth."""

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL,
                 api_base: str = DEFAULT_API_BASE, timeout: float = DEFAULT_TIMEOUT):
        self.api_key = api_key
        self.model = model
        self.api_base = api_base
        self.timeout = timeout
        self._http = None  # aiohttp session, created lazily

    @property
    def url(self):
        return "%s/v1/chat/completions" % self.api_base.rstrip("/")

    @property
    def headers(self):
        return {
            "Content-Type": "application/json",
            "Authorization": "Bearer %s" % self.api_key,
        }

    async def _get_http(self):
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession()
        return self._http

    async def close(self):
        if self._http and not self._http.closed:
            await self._http.close()

    async def complete(self, prompt: str) -> str:
        """Return the assistant's reply to `prompt`, or raise CompletionError."""
        http = await self._get_http()
        payload = build_payload(self.model, prompt)
        try:
            async with http.post(self.url, json=payload, headers=self.headers,
                                 timeout=aiohttp.ClientTimeout(total=self.timeout)) as resp:
                if resp.status >= 300:
                    body = await resp.text()
                    raise CompletionProtocolError(
                        "HTTP %d from %s: %s" % (resp.status, self.url, body[:200]),
                        status=resp.status)
                try:
                    data = await resp.json(content_type=None)
                except ValueError as e:
                    raise CompletionProtocolError("Response body is not JSON: %s" % e,
                                                  status=resp.status) from e
        except asyncio.TimeoutError as e:
            raise CompletionTransportError("Timed out after %.0fs" % self.timeout) from e
        except aiohttp.ClientError as e:
            raise CompletionTransportError("%s: %s" % (type(e).__name__, e)) from e
        return extract_content(data)
