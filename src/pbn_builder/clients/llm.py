"""OpenAI chat completion 客戶端：產生單頁 HTML。"""

import asyncio
import json
import logging

import httpx

from pbn_builder.config import settings
from pbn_builder.errors import LLMBadRequestError, LLMError, LLMTransientError

logger = logging.getLogger(__name__)

TRANSIENT_STATUS = {429, 502}


class LLMClient:
    def __init__(self, client: httpx.AsyncClient | None = None):
        self.url = settings.openai_url
        self.model = settings.openai_model
        self.max_retries = settings.llm_max_retries
        self.retry_delay = settings.llm_retry_delay
        self.client = client or httpx.AsyncClient(timeout=settings.openai_timeout)

    async def _complete(self, system_prompt: str, user_prompt: str) -> str:
        try:
            resp = await self.client.post(
                self.url,
                headers={"Authorization": f"Bearer {settings.openai_api_key}"},
                json={
                    "model": self.model,
                    "messages": [
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_prompt},
                    ],
                    "temperature": settings.openai_temperature,
                    "response_format": {"type": "json_object"},
                },
            )
        except (httpx.ConnectError, httpx.ReadError, httpx.RemoteProtocolError) as e:
            # 連線被重置等網路層錯誤
            raise LLMTransientError(f"Connection error: {e}") from e

        if resp.status_code == 400:
            try:
                message = resp.json().get("error", {}).get("message", "Invalid request")
            except ValueError:
                message = "Invalid request"
            raise LLMBadRequestError(f"Bad request to OpenAI: {message}")
        if resp.status_code in TRANSIENT_STATUS:
            raise LLMTransientError(f"OpenAI returned {resp.status_code}")
        resp.raise_for_status()

        data = resp.json()
        return data["choices"][0]["message"]["content"]

    async def generate_html(self, system_prompt: str, user_prompt: str) -> str:
        """呼叫 LLM 並回傳 JSON 回應中的 html 字串，暫時性錯誤會重試。"""
        retries_left = self.max_retries
        while True:
            logger.info("Sending request to OpenAI (%s)", self.model)
            try:
                content = await self._complete(system_prompt, user_prompt)
                break
            except LLMTransientError as e:
                if retries_left <= 0:
                    raise
                logger.warning(
                    "%s; retrying in %.0fs (%d attempts left)", e, self.retry_delay, retries_left
                )
                retries_left -= 1
                await asyncio.sleep(self.retry_delay)

        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            raise LLMError("OpenAI response is not valid JSON") from e
        html = payload.get("html") if isinstance(payload, dict) else None
        if not isinstance(html, str) or not html.strip():
            raise LLMError("OpenAI response does not contain an 'html' string")
        return html

    async def close(self):
        await self.client.aclose()
