"""Summarizer - optional LLM narrative over structured findings"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
from openai import AsyncOpenAI

from .config import Settings
from .exceptions import SummarizerException

logger = logging.getLogger("homelab_insights.summarizer")

PROMPTS = {
    "anomalies": (
        "You are an expert system administrator analyzing server anomalies.",
        "Analyze these system anomalies and provide a concise summary:\n\n"
        "{findings}\n\n"
        "Provide:\n"
        "1. Overall severity assessment\n"
        "2. Most critical issues\n"
        "3. Prioritized action plan (max 3 steps)\n\n"
        "Be concise and actionable.",
    ),
    "cost": (
        "You are a cost optimization expert for home lab infrastructure.",
        "Analyze these cost optimization opportunities:\n\n"
        "{findings}\n\n"
        "Provide:\n"
        "1. Top 3 highest impact optimizations\n"
        "2. Implementation priority\n"
        "3. Estimated ROI timeline\n\n"
        "Be specific and actionable.",
    ),
}


class Summarizer(ABC):
    """Abstract base class for narrative providers"""

    name = "base"

    @abstractmethod
    async def is_available(self) -> bool:
        """Cheap probe; must return False rather than raise"""
        pass

    @abstractmethod
    async def complete(self, system_prompt: str, prompt: str) -> str:
        """Send one prompt and return the model's text"""
        pass

    async def summarize(self, findings: List[Dict[str, Any]], topic: str = "anomalies") -> str:
        """Narrative for structured findings; raises SummarizerException on failure"""
        system_prompt, template = PROMPTS.get(topic, PROMPTS["anomalies"])
        prompt = template.format(findings=json.dumps(findings, indent=2, default=str))

        try:
            text = await self.complete(system_prompt, prompt)
        except SummarizerException:
            raise
        except Exception as e:
            raise SummarizerException(self.name, str(e)) from e

        text = (text or "").strip()
        if not text:
            raise SummarizerException(self.name, "empty response")
        return text


class OllamaSummarizer(Summarizer):
    """Local Ollama provider over its REST API"""

    name = "ollama"

    def __init__(
        self,
        host: str = "localhost",
        port: int = 11434,
        model: str = "llama3.1",
        probe_timeout: float = 2.0,
        request_timeout: float = 30.0,
    ):
        self.base_url = f"http://{host}:{port}"
        self.model = model
        self.probe_timeout = probe_timeout
        self.request_timeout = request_timeout

    async def is_available(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self.probe_timeout) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                return response.status_code == 200
        except httpx.HTTPError as e:
            logger.debug(f"Ollama probe failed: {e}")
            return False

    async def complete(self, system_prompt: str, prompt: str) -> str:
        data = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "stream": False,
        }

        async with httpx.AsyncClient(timeout=self.request_timeout) as client:
            response = await client.post(f"{self.base_url}/api/chat", json=data)
            response.raise_for_status()
            result = response.json()

        return result.get("message", {}).get("content", "")


class OpenAISummarizer(Summarizer):
    """OpenAI chat completions provider"""

    name = "openai"

    def __init__(self, api_key: Optional[str] = None, model: str = "gpt-4o-mini"):
        if not api_key:
            raise ValueError("OpenAI API key not provided")
        self.model = model
        self.client = AsyncOpenAI(api_key=api_key)

    async def is_available(self) -> bool:
        # No cheap probe exists; a configured key is treated as available
        return True

    async def complete(self, system_prompt: str, prompt: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            temperature=0.3,
        )
        return response.choices[0].message.content or ""


def build_summarizer(config: Settings) -> Optional[Summarizer]:
    """Summarizer for the configured provider, None when disabled or misconfigured"""
    provider = config.SUMMARIZER_PROVIDER

    if provider == "ollama":
        return OllamaSummarizer(
            host=config.OLLAMA_HOST,
            port=config.OLLAMA_PORT,
            model=config.OLLAMA_MODEL,
            probe_timeout=config.SUMMARIZER_PROBE_TIMEOUT_SECONDS,
            request_timeout=config.SUMMARIZER_TIMEOUT_SECONDS,
        )

    if provider == "openai":
        try:
            return OpenAISummarizer(api_key=config.OPENAI_API_KEY, model=config.OPENAI_MODEL)
        except ValueError as e:
            logger.warning(f"OpenAI summarizer disabled: {e}")
            return None

    return None
