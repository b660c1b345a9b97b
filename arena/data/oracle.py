"""Client for an Ollama-compatible judging service.

``OllamaJudge`` implements the ``Judge`` interface from
``arena.core.scoring``. It never returns a made-up judgment: if the
service is down, slow or answers with something unusable it raises
``DependencyUnavailable`` and leaves the fallback to its caller.
"""

from __future__ import annotations

import json
import logging
import time

import httpx
from pydantic import ValidationError as PydanticValidationError

from arena.core.errors import DependencyUnavailable
from arena.core.scoring import Judgment

logger = logging.getLogger(__name__)

JUDGE_PROMPT = """You are the judge of a legendary battle arena. Two fighters have \
each made a battle declaration and you must decide the winner.

Fighter 1 declares: "{text1}"
Fighter 2 declares: "{text2}"

Criteria:
1. Character (25 points): identity, consistency and immersion
2. Combat description (25 points): vivid, concrete attacks and defence
3. Creativity (20 points): original expression and unexpected turns
4. Impact (20 points): power, presence and charisma
5. Strategy (10 points): reading the opponent, tactical edge

Keep the verdict to one short sentence.

Answer in JSON:
{{
  "winner": "player1" or "player2",
  "reason": "short verdict",
  "score1": number,
  "score2": number
}}"""


class OllamaJudge:
    """Judge battle lines with a language model served over HTTP."""

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout: float = 10.0,
        probe_interval: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.probe_interval = probe_interval
        self._transport = transport
        self._available: bool | None = None
        self._checked_at: float = 0.0

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or self.timeout,
            transport=self._transport,
        )

    async def is_available(self) -> bool:
        """Liveness probe, cached for ``probe_interval`` seconds."""
        now = time.monotonic()
        if self._available is not None and (now - self._checked_at) < self.probe_interval:
            return self._available

        try:
            async with self._client(timeout=min(5.0, self.timeout)) as client:
                response = await client.get("/api/tags")
                self._available = response.status_code == 200
        except httpx.HTTPError as exc:
            logger.debug("Oracle probe failed: %s", exc)
            self._available = False
        except Exception:
            logger.exception("Oracle probe raised unexpectedly")
            self._available = False

        self._checked_at = now
        logger.debug("Oracle availability: %s", self._available)
        return self._available

    def reset_availability(self) -> None:
        self._available = None
        self._checked_at = 0.0

    async def try_judge(self, text1: str, text2: str) -> Judgment:
        if not await self.is_available():
            raise DependencyUnavailable(f"Judging oracle at {self.base_url} is not reachable.")

        payload = {
            "model": self.model,
            "prompt": JUDGE_PROMPT.format(text1=text1, text2=text2),
            "stream": False,
            "format": "json",
            "options": {"temperature": 0.3, "top_p": 0.9},
        }
        try:
            async with self._client() as client:
                response = await client.post("/api/generate", json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            # Force a fresh probe next time
            self.reset_availability()
            raise DependencyUnavailable(f"Judging oracle request failed: {exc}") from exc
        except ValueError as exc:
            raise DependencyUnavailable("Judging oracle returned invalid JSON.") from exc
        except Exception as exc:
            logger.exception("Judging oracle request raised unexpectedly")
            self.reset_availability()
            raise DependencyUnavailable(f"Judging oracle request failed: {exc}") from exc

        try:
            result = json.loads(data["response"])
            return Judgment(
                winner=result["winner"],
                score1=max(0, round(float(result["score1"]))),
                score2=max(0, round(float(result["score2"]))),
                reason=str(result.get("reason", "")),
                source="oracle",
            )
        except (KeyError, TypeError, ValueError, PydanticValidationError) as exc:
            raise DependencyUnavailable(f"Judging oracle answer was unusable: {exc}") from exc
