# src/llmbridge/providers/formatting.py
"""
Flattening of role-tagged conversations into single prompt strings.

Generate-style endpoints accept one prompt string instead of structured chat
messages. The template used depends on the model family, which is resolved
from the model id through an ordered rule table: the first rule with a marker
contained in the (lower-cased) model id wins, and models matching no rule use
the generic `Role: content` template. Adding a family means adding a rule.

All formatters are pure functions and never return an empty string.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from ..models import Message, Role

Formatter = Callable[[Sequence[Message]], str]


def _system_text(messages: Sequence[Message]) -> str:
    return "\n\n".join(m.content for m in messages if m.role == Role.SYSTEM)


def format_chatml(messages: Sequence[Message]) -> str:
    """`<|im_start|>role ... <|im_end|>` markup used by the Qwen family."""
    parts: List[str] = []
    system = _system_text(messages)
    if system:
        parts.append(f"<|im_start|>system\n{system}<|im_end|>\n")
    for message in messages:
        if message.role == Role.USER:
            parts.append(f"<|im_start|>user\n{message.content}<|im_end|>\n")
        elif message.role == Role.ASSISTANT:
            parts.append(f"<|im_start|>assistant\n{message.content}<|im_end|>\n")
        elif message.role == Role.FUNCTION:
            parts.append(f"<|im_start|>function\n{message.name}: {message.content}<|im_end|>\n")
    parts.append("<|im_start|>assistant\n")
    return "".join(parts)


def format_inst(messages: Sequence[Message]) -> str:
    """`[INST]` markup with an optional `<<SYS>>` block (Llama, Mistral)."""
    system = _system_text(messages)
    prompt = f"<s>[INST] <<SYS>>\n{system}\n<</SYS>>\n\n" if system else "<s>[INST] "
    first_user = True
    last_role: Optional[Role] = None
    for message in messages:
        if message.role == Role.SYSTEM:
            continue
        if message.role == Role.USER:
            if first_user:
                prompt += f"{message.content} [/INST]"
                first_user = False
            elif last_role == Role.ASSISTANT:
                prompt += f"\n\n[INST] {message.content} [/INST]"
            else:
                prompt += f" {message.content} [/INST]"
        elif message.role == Role.ASSISTANT:
            prompt += f" {message.content} </s>"
        elif message.role == Role.FUNCTION:
            prompt += f" Function {message.name}: {message.content}"
        last_role = message.role
    if last_role == Role.USER:
        prompt += " "
    return prompt


def format_gemma(messages: Sequence[Message]) -> str:
    """
    `<start_of_turn>` markup. Gemma has no system role, so system text is
    prepended to the first user turn.
    """
    system = _system_text(messages)
    pending_system = f"System instructions: {system}\n\n" if system else ""
    parts: List[str] = []
    for message in messages:
        if message.role == Role.USER:
            parts.append(f"<start_of_turn>user\n{pending_system}{message.content}<end_of_turn>\n")
            pending_system = ""
        elif message.role == Role.ASSISTANT:
            parts.append(f"<start_of_turn>model\n{message.content}<end_of_turn>\n")
    if pending_system:
        parts.insert(0, f"<start_of_turn>user\n{pending_system.rstrip()}<end_of_turn>\n")
    parts.append("<start_of_turn>model\n")
    return "".join(parts)


def format_phi(messages: Sequence[Message]) -> str:
    """`<|system|>`, `<|user|>`, `<|assistant|>` markup (Phi)."""
    parts: List[str] = []
    system = _system_text(messages)
    if system:
        parts.append(f"<|system|>\n{system}\n")
    for message in messages:
        if message.role == Role.USER:
            parts.append(f"<|user|>\n{message.content}\n")
        elif message.role == Role.ASSISTANT:
            parts.append(f"<|assistant|>\n{message.content}\n")
    parts.append("<|assistant|>\n")
    return "".join(parts)


_GENERIC_LABELS = {
    Role.SYSTEM: "System",
    Role.USER: "User",
    Role.ASSISTANT: "Assistant",
}


def format_generic(messages: Sequence[Message]) -> str:
    """One `Label: content` paragraph per message, ending with an open `Assistant: `."""
    parts: List[str] = []
    for message in messages:
        if message.role == Role.FUNCTION:
            parts.append(f"Function({message.name}): {message.content}\n\n")
        else:
            parts.append(f"{_GENERIC_LABELS[message.role]}: {message.content}\n\n")
    parts.append("Assistant: ")
    return "".join(parts)


@dataclass(frozen=True)
class FamilyRule:
    """Maps model ids containing any of `markers` to `formatter`."""
    name: str
    markers: Tuple[str, ...]
    formatter: Formatter

    def matches(self, model_id: str) -> bool:
        lowered = model_id.lower()
        return any(marker in lowered for marker in self.markers)


DEFAULT_FAMILY_RULES: Tuple[FamilyRule, ...] = (
    FamilyRule("chatml", ("qwen",), format_chatml),
    FamilyRule("inst", ("llama", "mistral"), format_inst),
    FamilyRule("gemma", ("gemma",), format_gemma),
    FamilyRule("phi", ("phi",), format_phi),
)

GENERIC_RULE = FamilyRule("generic", (), format_generic)


class PromptFormatter:
    """Resolves a model family and renders its prompt template."""

    def __init__(self, rules: Optional[Sequence[FamilyRule]] = None, fallback: FamilyRule = GENERIC_RULE):
        self._rules: List[FamilyRule] = list(DEFAULT_FAMILY_RULES if rules is None else rules)
        self._fallback = fallback

    @property
    def rules(self) -> Tuple[FamilyRule, ...]:
        return tuple(self._rules)

    def register(self, rule: FamilyRule, first: bool = False) -> None:
        """Adds a family rule; `first=True` gives it precedence over existing rules."""
        if first:
            self._rules.insert(0, rule)
        else:
            self._rules.append(rule)

    def resolve(self, model_id: Optional[str]) -> FamilyRule:
        if model_id:
            for rule in self._rules:
                if rule.matches(model_id):
                    return rule
        return self._fallback

    def format(self, messages: Sequence[Message], model_id: Optional[str] = None) -> str:
        return self.resolve(model_id).formatter(messages)
