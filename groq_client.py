import os
from typing import List, Dict, Any, Optional

import groq

from context_descriptor import ContextDescriptor
from logger_config import get_logger

logger = get_logger("completion.generation", "generation")

SYSTEM_PROMPT = (
    "You are a code completion assistant. When given incomplete code, suggest "
    "what should come next on the current line. Focus on useful, practical "
    "completions. Return only the completed code without explanations."
)

# Lines of preceding code included in the prompt
PROMPT_CONTEXT_LINES = 15


class GroqClient:
    """Minimal wrapper around the Groq Python SDK used to generate completions.

    All interaction goes through :py:meth:`generate_chat_completion`; calling
    the client with a :class:`ContextDescriptor` builds the prompt and returns
    the raw suggestion text, which makes an instance usable directly as the
    generator of a :class:`completion_client.CompletionClient`.

    Connection and timeout errors are not swallowed so the caller can retry
    them; any other API error is reported in the returned dictionary.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        model: str = "llama-3.1-8b-instant",
        temperature: float = 0.3,
        max_tokens: int = 100,
        timeout: float = 3.0,
    ) -> None:
        self.api_key: Optional[str] = api_key or os.getenv("GROQ_API_KEY")
        self.default_model: str = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

        if self.api_key is None:
            logger.warning("GROQ_API_KEY not set - GroqClient will operate in stub mode")
            self._client = None
        else:
            self._client = groq.Groq(api_key=self.api_key, timeout=timeout)

    @classmethod
    def from_config(cls, config_manager) -> "GroqClient":
        return cls(
            api_key=config_manager.get_api_key(),
            model=config_manager.get("generation.model", "llama-3.1-8b-instant"),
            temperature=float(config_manager.get("generation.temperature", 0.3)),
            max_tokens=int(config_manager.get("generation.max_tokens", 100)),
            timeout=float(config_manager.get("generation.timeout", 3.0)),
        )

    @property
    def available(self) -> bool:
        return self._client is not None

    # ------------------------------------------------------------------
    def generate_chat_completion(
        self,
        messages: List[Dict[str, str]],
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Return a chat completion following the OpenAI-compatible schema.

        The dictionary returned always contains the *content* key; if the call
        failed it also contains an *error* key with a description.
        """
        if not self._client:
            return {
                "content": "",
                "error": "Groq client not initialised - check API key",
            }
        try:
            rsp = self._client.chat.completions.create(
                model=model or self.default_model,
                messages=messages,
                temperature=self.temperature if temperature is None else temperature,
                max_tokens=self.max_tokens if max_tokens is None else max_tokens,
                stop=["\n\n\n"],
            )
        except (groq.APIConnectionError, groq.RateLimitError):
            # APITimeoutError is a subclass of APIConnectionError
            raise
        except groq.APIError as exc:
            logger.error("Groq chat completion error: %s", exc)
            return {"content": "", "error": str(exc)}

        choice = rsp.choices[0]
        return {
            "content": choice.message.content or "",
            "model": rsp.model,
            "finish_reason": choice.finish_reason,
            "usage": rsp.usage.to_dict() if getattr(rsp, "usage", None) else {},
        }

    # ------------------------------------------------------------------
    @staticmethod
    def build_prompt(descriptor: ContextDescriptor) -> str:
        """Render the request context as a completion prompt."""
        lines = [f"Language: {descriptor.language or 'unknown'}"]
        if descriptor.current_class:
            fields = ", ".join(descriptor.class_fields)
            lines.append(f"Inside class: {descriptor.current_class}" + (f" (fields: {fields})" if fields else ""))
        if descriptor.current_function:
            params = ", ".join(descriptor.function_parameters)
            lines.append(f"Inside function: {descriptor.current_function}({params})")
        if descriptor.imports:
            lines.append("Imports: " + "; ".join(descriptor.imports))
        if descriptor.variables:
            lines.append("Variables in scope: " + ", ".join(descriptor.variables))
        if descriptor.previous_lines:
            lines.append("Preceding code:")
            lines.extend(descriptor.previous_lines[-PROMPT_CONTEXT_LINES:])
        lines.append("Complete this line:")
        lines.append(descriptor.current_line)
        return "\n".join(lines)

    def suggest_completion(self, descriptor: ContextDescriptor) -> str:
        """Ask the model to complete the current line; empty string on failure."""
        response = self.generate_chat_completion(messages=[
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": self.build_prompt(descriptor)},
        ])
        if "error" in response:
            return ""
        return response["content"]

    def __call__(self, descriptor: ContextDescriptor) -> str:
        return self.suggest_completion(descriptor)

