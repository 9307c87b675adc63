# api_handler.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import openai

LOGGER = logging.getLogger(__name__)


class OpenAIUnifiedGenerator:
    """
    Unified wrapper that auto-selects between the Responses and Chat Completions
    APIs depending on the model name.

    - GPT-5 / o3 / o4 / 4.1(x) → Responses API
    - everything else (gpt-4o, gpt-4o-mini, gpt-3.5-turbo, …) → Chat Completions API

    Both paths accept an optional system instruction and an optional JSON schema.
    When a schema is given the model is asked for strict structured output and the
    raw JSON text is returned; parsing is left to the caller.

    Compatible with OpenAI Python SDK >= 1.0.
    """

    def __init__(
        self,
        model_name: str,
        api_key: str,
        default_max_tokens: int = 4096,
        *,
        base_url: Optional[str] = None,
    ) -> None:
        self.model_name = (model_name or "").strip()
        self.api_key = (api_key or "").strip()
        self.default_max_tokens = int(default_max_tokens or 4096)
        if not self.model_name:
            raise ValueError("model_name must be a non-empty string.")
        if not self.api_key:
            raise ValueError("An OpenAI API key is required.")

        client_kwargs: Dict[str, Any] = {"api_key": self.api_key}
        if base_url:
            client_kwargs["base_url"] = base_url
        self._client = openai.OpenAI(**client_kwargs)

    # ---------------- heuristics ----------------
    @staticmethod
    def _uses_responses_api(model_name: str) -> bool:
        """
        Newer families (gpt-5, o3, o4, 4.1 variants) use Responses.
        """
        name = model_name.lower()
        return name.startswith(("gpt-5", "o3", "o4", "gpt-4.1"))

    @staticmethod
    def _is_reasoning_model(model_name: str) -> bool:
        name = model_name.lower()
        return name.startswith(("gpt-5", "o3", "o4"))

    # ---------------- public API ----------------
    def generate_response(
        self,
        prompt: str,
        *,
        system_instruction: Optional[str] = None,
        response_schema: Optional[Dict[str, Any]] = None,
        schema_name: str = "structured_output",
        model: Optional[str] = None,
        max_new_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
    ) -> str:
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("prompt must be a non-empty string.")
        max_tokens = int(max_new_tokens if max_new_tokens is not None else self.default_max_tokens)
        if max_tokens <= 0:
            raise ValueError("max_new_tokens must be positive.")

        model_name = (model or self.model_name).strip()
        LOGGER.debug(
            "Calling %s (structured=%s, prompt_chars=%d)",
            model_name,
            response_schema is not None,
            len(prompt),
        )
        if self._uses_responses_api(model_name):
            return self._call_responses(
                model_name, prompt, system_instruction, response_schema, schema_name, max_tokens, temperature, top_p
            )
        return self._call_chat(
            model_name, prompt, system_instruction, response_schema, schema_name, max_tokens, temperature, top_p
        )

    def signature(self) -> Tuple[str, str]:
        # Never return raw secrets
        redacted = (self.api_key[:4] + "…" + self.api_key[-4:]) if self.api_key else ""
        return (self.model_name, redacted)

    # ---------------- internal callers ----------------
    def _call_responses(
        self,
        model_name: str,
        prompt: str,
        system_instruction: Optional[str],
        response_schema: Optional[Dict[str, Any]],
        schema_name: str,
        max_tokens: int,
        temperature: Optional[float],
        top_p: Optional[float],
    ) -> str:
        """
        Use the Responses API for GPT-5 / o3 / o4 / 4.1… families.
        Reasoning models reject sampling parameters, so those are dropped for them.
        """
        def clean_kwargs(d: dict) -> dict:
            return {k: v for k, v in d.items() if v is not None}

        reasoning = self._is_reasoning_model(model_name)
        payload = clean_kwargs({
            "model": model_name,
            "input": prompt,
            "instructions": system_instruction or None,
            "max_output_tokens": max_tokens,
            "temperature": float(temperature) if temperature is not None and not reasoning else None,
            "top_p": float(top_p) if top_p is not None and not reasoning else None,
            # keep the model from invoking tools:
            "tool_choice": "none",
            # hint for minimal hidden reasoning:
            "reasoning": {"effort": "low"} if reasoning else None,
        })
        if response_schema is not None:
            payload["text"] = {
                "format": {
                    "type": "json_schema",
                    "name": schema_name,
                    "schema": response_schema,
                    "strict": True,
                }
            }

        resp = self._client.responses.create(**payload)
        text = (getattr(resp, "output_text", None) or self._deep_collect_text(resp)).strip()
        if text:
            return text

        status = getattr(resp, "status", None)
        reason = getattr(getattr(resp, "incomplete_details", None), "reason", None)
        snippet = self._shorten_debug(str(resp))
        raise RuntimeError(
            f"Model returned no text content (status={status}, reason={reason}). Raw response (truncated): {snippet}"
        )

    def _call_chat(
        self,
        model_name: str,
        prompt: str,
        system_instruction: Optional[str],
        response_schema: Optional[Dict[str, Any]],
        schema_name: str,
        max_tokens: int,
        temperature: Optional[float],
        top_p: Optional[float],
    ) -> str:
        messages: List[Dict[str, str]] = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})
        messages.append({"role": "user", "content": prompt})

        kwargs: Dict[str, Any] = {
            "model": model_name,
            "messages": messages,
            "max_tokens": max_tokens,
            "n": 1,
        }
        if temperature is not None:
            kwargs["temperature"] = float(temperature)
        if top_p is not None:
            kwargs["top_p"] = float(top_p)
        if response_schema is not None:
            kwargs["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": schema_name,
                    "strict": True,
                    "schema": response_schema,
                },
            }

        resp = self._client.chat.completions.create(**kwargs)
        text = self._extract_text_from_chat(resp).strip()
        if text:
            return text
        snippet = self._shorten_debug(str(resp))
        raise RuntimeError(f"Chat completion returned no text. Raw response (truncated): {snippet}")

    # ---------------- extractors ----------------
    def _extract_text_from_chat(self, resp: Any) -> str:
        choices = getattr(resp, "choices", []) or []
        if not choices:
            return ""
        first = choices[0]
        msg = getattr(first, "message", None)
        if isinstance(msg, dict):
            content = msg.get("content")
            refusal = msg.get("refusal")
        else:
            content = getattr(msg, "content", None)
            refusal = getattr(msg, "refusal", None)
        if refusal and not content:
            raise RuntimeError(f"Model refused the request: {refusal}")
        if isinstance(content, list):
            parts: List[str] = []
            for p in content:
                if isinstance(p, dict) and p.get("type") == "text":
                    parts.append(str(p.get("text") or ""))
            return "\n".join([p for p in parts if p])
        return str(content or "")

    # ---- deep collector for Responses API (handles many shapes) ----
    def _deep_collect_text(self, obj: Any) -> str:
        bucket: List[str] = []

        def walk(node: Any) -> None:
            if node is None:
                return
            if hasattr(node, "__dict__"):
                walk(vars(node))
                return
            if isinstance(node, dict):
                for key in ("output_text", "text", "value"):
                    v = node.get(key)
                    if isinstance(v, str) and v.strip():
                        bucket.append(v.strip())
                for key in ("output", "content", "message", "parts", "items"):
                    if key in node:
                        walk(node[key])
                return
            if isinstance(node, (list, tuple)):
                for item in node:
                    walk(item)

        walk(obj)

        # de-dup while preserving order
        seen = set()
        ordered: List[str] = []
        for t in bucket:
            if t not in seen:
                seen.add(t)
                ordered.append(t)
        return "\n".join(ordered).strip()

    @staticmethod
    def _shorten_debug(s: str, limit: int = 1200) -> str:
        s = s.replace("\n", " ")
        return (s[:limit] + "…") if len(s) > limit else s
