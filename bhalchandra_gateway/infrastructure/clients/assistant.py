"""Conversational AI client backing the chat widget"""

import httpx
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from bhalchandra_gateway.domain.exceptions import AssistantError
from bhalchandra_gateway.config import settings

SYSTEM_PROMPT = """You are an AI financial assistant for Bhalchandra Finance, a financial services company.

Current Context:
- User is currently on page: "{current_page}"
- Customer name: {customer_name}

Company Information:
- Bhalchandra Finance offers EMI calculations, gold loans, personal loans, home loans, car loans, business loans and education loans
- Gold loans offer up to {ltv}% of gold value with minimal documentation

Guidelines:
- Be helpful, professional, and knowledgeable about financial services
- Provide context-aware responses based on the current page
- Use Indian currency (₹) and local references
- Suggest the EMI or gold loan calculator when the customer asks about repayments
- Never promise approval or quote a final rate; point to the loan application instead"""


@dataclass
class ChatMessage:
    """Single turn of a conversation; role is "user" or "model" """

    role: str
    content: str


class AssistantClient:
    """Client for the Gemini generateContent REST API"""

    def __init__(
        self,
        api_base: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ):
        self.api_base = api_base or settings.assistant_api_base
        self.api_key = api_key if api_key is not None else settings.assistant_api_key
        self.model = model or settings.assistant_model
        self.timeout = timeout or settings.http_timeout_seconds

    def build_request(
        self,
        message: str,
        current_page: str,
        history: List[ChatMessage],
        customer_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Assemble the generateContent body: system prompt, prior turns, new message"""
        system_prompt = SYSTEM_PROMPT.format(
            current_page=current_page,
            customer_name=customer_name or "unknown",
            ltv=f"{settings.gold_ltv_percent:f}",
        )
        contents = [{"role": turn.role, "parts": [{"text": turn.content}]} for turn in history]
        contents.append({"role": "user", "parts": [{"text": message}]})

        return {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": contents,
        }

    async def generate_reply(
        self,
        message: str,
        current_page: str = "home",
        history: Optional[List[ChatMessage]] = None,
        customer_name: Optional[str] = None,
    ) -> str:
        """
        Ask the model for a reply.

        Raises:
            AssistantError: Missing API key, timeout, HTTP errors, or a response without text
        """
        if not self.api_key:
            raise AssistantError("Assistant API key is not configured")

        body = self.build_request(message, current_page, history or [], customer_name)

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(
                    f"{self.api_base}/v1beta/models/{self.model}:generateContent",
                    params={"key": self.api_key},
                    json=body,
                )
                response.raise_for_status()
                data = response.json()

                parts = data["candidates"][0]["content"]["parts"]
                return "".join(part.get("text", "") for part in parts).strip()

            except httpx.TimeoutException as e:
                raise AssistantError(f"Assistant timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise AssistantError(f"Assistant API error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise AssistantError(f"Assistant unreachable: {e}") from e
            except (KeyError, IndexError, ValueError, TypeError) as e:
                raise AssistantError(f"Invalid assistant response: {e}") from e
