# src/llmbridge/providers/parsing.py
"""
Normalization of provider responses into `ParsedResponse`.

Each known response shape is a Pydantic model; a raw body is decoded into the
first variant that validates, with `UnrecognizedPayload` as the explicit
fallback. Shape problems never raise: an unrecognized payload is returned as
its string form so callers always get displayable text. Only an empty body is
a hard failure (`EmptyResponseError`).
"""

import json
import logging
from typing import Any, Iterable, List, Optional, Sequence, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..exceptions import EmptyResponseError
from ..models import ParsedResponse, Provider, UsageStats

logger = logging.getLogger(__name__)

# Alternate text fields some local model server builds and proxies use.
ALTERNATE_TEXT_FIELDS = ("output", "text", "content", "completion", "answer")

STREAM_MARKER = '{"model":'


# ---------------------------------------------------------------------------
# Payload variants
# ---------------------------------------------------------------------------


class _Payload(BaseModel):
    model_config = ConfigDict(extra="allow")


class OpenAIUsage(_Payload):
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class OpenAIChoiceMessage(_Payload):
    content: Optional[str] = None


class OpenAIChoice(_Payload):
    message: Optional[OpenAIChoiceMessage] = None
    text: Optional[str] = None


class OpenAIChatPayload(_Payload):
    """`choices[0].message.content`, used by OpenAI, Groq, DeepSeek and compatible servers."""
    choices: List[OpenAIChoice] = Field(min_length=1)
    usage: Optional[OpenAIUsage] = None

    def to_parsed(self) -> ParsedResponse:
        choice = self.choices[0]
        text = choice.message.content if choice.message is not None else choice.text
        usage = None
        if self.usage is not None:
            usage = UsageStats.from_counts(self.usage.prompt_tokens, self.usage.completion_tokens)
            if self.usage.total_tokens is not None:
                usage.total_tokens = self.usage.total_tokens
        return ParsedResponse(text=text or "", usage=usage)


class AnthropicContentBlock(_Payload):
    type: Optional[str] = None
    text: Optional[str] = None


class AnthropicUsage(_Payload):
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


class AnthropicPayload(_Payload):
    """`content[0].text` of the Anthropic messages API."""
    content: List[AnthropicContentBlock] = Field(min_length=1)
    usage: Optional[AnthropicUsage] = None

    def to_parsed(self) -> ParsedResponse:
        usage = None
        if self.usage is not None:
            usage = UsageStats.from_counts(self.usage.input_tokens, self.usage.output_tokens)
        return ParsedResponse(text=self.content[0].text or "", usage=usage)


class GeminiPart(_Payload):
    text: Optional[str] = None


class GeminiContent(_Payload):
    parts: List[GeminiPart] = Field(default_factory=list)


class GeminiCandidate(_Payload):
    content: GeminiContent


class GeminiUsage(_Payload):
    promptTokenCount: Optional[int] = None
    candidatesTokenCount: Optional[int] = None


class GeminiPayload(_Payload):
    """`candidates[0].content.parts[*].text` of the Gemini generateContent API."""
    candidates: List[GeminiCandidate] = Field(min_length=1)
    usageMetadata: Optional[GeminiUsage] = None

    def to_parsed(self) -> ParsedResponse:
        text = "".join(part.text or "" for part in self.candidates[0].content.parts)
        usage = None
        if self.usageMetadata is not None:
            usage = UsageStats.from_counts(self.usageMetadata.promptTokenCount, self.usageMetadata.candidatesTokenCount)
        return ParsedResponse(text=text, usage=usage)


class LocalGeneratePayload(_Payload):
    """Local model server `/api/generate` response."""
    response: str
    prompt_eval_count: Optional[int] = None
    eval_count: Optional[int] = None

    def to_parsed(self) -> ParsedResponse:
        return ParsedResponse(
            text=self.response,
            usage=UsageStats.from_counts(self.prompt_eval_count, self.eval_count),
        )


class LocalChatMessage(_Payload):
    content: str


class LocalChatPayload(_Payload):
    """Local model server `/api/chat` response."""
    message: LocalChatMessage
    prompt_eval_count: Optional[int] = None
    eval_count: Optional[int] = None

    def to_parsed(self) -> ParsedResponse:
        return ParsedResponse(
            text=self.message.content,
            usage=UsageStats.from_counts(self.prompt_eval_count, self.eval_count),
        )


class UnrecognizedPayload(BaseModel):
    """Any body no other variant accepts. Rendered as its string form."""
    raw: Any

    def to_parsed(self) -> ParsedResponse:
        if isinstance(self.raw, str):
            return ParsedResponse(text=self.raw)
        return ParsedResponse(text=json.dumps(self.raw, indent=2, ensure_ascii=False, default=str))


_CLOUD_VARIANTS: Sequence[Type[BaseModel]] = (OpenAIChatPayload, AnthropicPayload, GeminiPayload)
_PREFERRED_VARIANT = {
    Provider.ANTHROPIC: AnthropicPayload,
    Provider.GEMINI: GeminiPayload,
}


def _first_valid(body: Any, variants: Iterable[Type[BaseModel]]) -> Optional[BaseModel]:
    if not isinstance(body, dict):
        return None
    for variant in variants:
        try:
            return variant.model_validate(body)
        except ValidationError:
            continue
    return None


def decode_cloud_payload(body: Any, provider: Provider) -> BaseModel:
    """Decodes a cloud provider (or proxy) body into a payload variant."""
    preferred = _PREFERRED_VARIANT.get(Provider(provider), OpenAIChatPayload)
    variants = [preferred] + [v for v in _CLOUD_VARIANTS if v is not preferred]
    return _first_valid(body, variants) or UnrecognizedPayload(raw=body)


# ---------------------------------------------------------------------------
# Stream-shaped payloads
# ---------------------------------------------------------------------------


def _fragment_text(fragment: dict) -> Optional[str]:
    candidates = [fragment.get("response"), fragment.get("content")]
    message = fragment.get("message")
    if isinstance(message, dict):
        candidates.append(message.get("content"))
    candidates.append(fragment.get("text"))
    choices = fragment.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        candidates.append(choices[0].get("text"))
        choice_message = choices[0].get("message")
        if isinstance(choice_message, dict):
            candidates.append(choice_message.get("content"))
    for value in candidates:
        if value and isinstance(value, str):
            return value
    return None


def _stream_fragments(payload: Any) -> List[Any]:
    if isinstance(payload, str):
        if "\n" in payload:
            lines = [line for line in payload.split("\n") if line.strip()]
        else:
            lines = [payload]
        fragments: List[Any] = []
        for line in lines:
            try:
                fragments.append(json.loads(line))
            except json.JSONDecodeError:
                fragments.append(line)
        return fragments
    if isinstance(payload, list):
        return list(payload)
    return [payload]


def extract_stream_text(payload: Any) -> ParsedResponse:
    """
    Concatenates the text of newline-delimited or arrayed JSON fragments in
    order and sums their token counts. Non-JSON lines contribute as raw text;
    fragments without a recognized text field are skipped.
    """
    text_parts: List[str] = []
    prompt_tokens = 0
    completion_tokens = 0
    for fragment in _stream_fragments(payload):
        if isinstance(fragment, str):
            text_parts.append(fragment)
            continue
        if not isinstance(fragment, dict):
            continue
        text = _fragment_text(fragment)
        if text:
            text_parts.append(text)
        if isinstance(fragment.get("prompt_eval_count"), int):
            prompt_tokens += fragment["prompt_eval_count"]
        if isinstance(fragment.get("eval_count"), int):
            completion_tokens += fragment["eval_count"]
    return ParsedResponse(text="".join(text_parts), usage=UsageStats.from_counts(prompt_tokens, completion_tokens))


# ---------------------------------------------------------------------------
# ResponseParser
# ---------------------------------------------------------------------------


class ResponseParser:
    """Turns `(body, provider)` into a `ParsedResponse`."""

    def parse(self, body: Any, provider: Provider) -> ParsedResponse:
        """
        Raises:
            EmptyResponseError: The body is empty or null.
        """
        provider = Provider(provider)
        if body is None or (isinstance(body, str) and not body.strip()):
            raise EmptyResponseError(provider.value)
        if provider.is_local:
            return self.parse_local(body)
        payload = decode_cloud_payload(body, provider)
        if isinstance(payload, UnrecognizedPayload):
            logger.warning(f"Unrecognized response shape from provider '{provider.value}'; returning it as text.")
        return payload.to_parsed()

    def parse_local(self, body: Any) -> ParsedResponse:
        """Parses a local model server body. Never raises."""
        try:
            payload = _first_valid(body, (LocalGeneratePayload, LocalChatPayload))
            if payload is not None:
                return payload.to_parsed()

            if isinstance(body, list) or (isinstance(body, str) and STREAM_MARKER in body):
                logger.debug("Local model response looks stream-shaped; extracting fragments.")
                return extract_stream_text(body)

            if isinstance(body, dict):
                for field_name in ALTERNATE_TEXT_FIELDS:
                    value = body.get(field_name)
                    if value and isinstance(value, str):
                        logger.debug(f"Found local model response text in field '{field_name}'.")
                        return ParsedResponse(text=value)

            logger.warning("Unrecognized local model response shape; returning it as text.")
            return UnrecognizedPayload(raw=body).to_parsed()
        except Exception as e:
            logger.error(f"Error while processing local model response: {e}", exc_info=True)
            return ParsedResponse(text=f"Error processing response: {e}")
