"""
AI field mapping for headers the synonym dictionary cannot resolve.

Cache first, then one completion call per header. Malformed answers and
service failures come back as MappingError values, never as exceptions;
the caller decides to leave the header unmapped.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Union

from pydantic import ValidationError

from core.config import ProcessorConfig, get_config
from core.errors import CompletionError, MappingError
from core.logger import log_json
from ingest.field_synonyms import FIELD_SYNONYMS, is_canonical_field, normalize_header
from ingest.llm_client import CompletionClient, get_completion_client, parse_json_object
from ingest.mapping_cache import DEFAULT_TTL_SECONDS, MappingCache, TTLMappingCache
from ingest.validation import AIMappingResponse

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You map spreadsheet column headers from logistics shipment reports to canonical field names. "
    "Reply ONLY with a JSON object: {\"field\": <canonical field or \"unknown\">, \"confidence\": <0..1>}."
)

_ai_mapping_service = None


@dataclass(frozen=True)
class AIMappingResult:
    header: str
    field: str
    confidence: float
    from_cache: bool = False


MappingOutcome = Union[AIMappingResult, MappingError]


def build_mapping_prompt(raw_header: str) -> str:
    """User prompt listing canonical fields with a few synonyms each."""
    lines = []
    for canonical, synonyms in FIELD_SYNONYMS.items():
        lines.append(f"- {canonical}: {', '.join(synonyms[:4])}")
    fields_block = "\n".join(lines)
    return (
        f"Column header: \"{raw_header}\"\n\n"
        f"Canonical fields (with example headers):\n{fields_block}\n\n"
        "Pick the single canonical field this header denotes. "
        "Use \"unknown\" when none fits. Confidence reflects how sure you are."
    )


class AIFieldMappingService:
    """
    Maps raw headers to canonical fields through the completion service.

    Args:
        client: Completion client
        cache: Mapping cache (a private TTLMappingCache when None)
        ttl_seconds: Lifetime of cached answers
        model: Model name
        max_tokens: Token limit per call
        max_concurrency: Parallel calls allowed by map_headers
    """

    def __init__(
        self,
        client: CompletionClient,
        cache: Optional[MappingCache] = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        model: str = "gpt-4o-mini",
        max_tokens: int = 150,
        max_concurrency: int = 4,
    ):
        self.client = client
        self.cache = cache if cache is not None else TTLMappingCache()
        self.ttl_seconds = ttl_seconds
        self.model = model
        self.max_tokens = max_tokens
        self.max_concurrency = max_concurrency
        self._key_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @classmethod
    def from_config(
        cls,
        config: Optional[ProcessorConfig] = None,
        client: Optional[CompletionClient] = None,
        cache: Optional[MappingCache] = None,
    ) -> "AIFieldMappingService":
        config = config or get_config()
        return cls(
            client=client or get_completion_client(),
            cache=cache,
            ttl_seconds=config.ai_cache_ttl_seconds,
            model=config.openai_model,
            max_tokens=config.max_llm_tokens,
            max_concurrency=config.ai_max_concurrency,
        )

    @staticmethod
    def cache_key(raw_header: str) -> str:
        return normalize_header(raw_header)

    def _acquire_lock(self, key: str) -> asyncio.Lock:
        lock = self._key_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._key_locks[key] = lock
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        return lock

    def _release_lock(self, key: str) -> None:
        # The last user of a key drops its lock so the map only holds in-flight headers
        self._lock_users[key] -= 1
        if not self._lock_users[key]:
            del self._lock_users[key]
            del self._key_locks[key]

    async def map_field(self, raw_header: str) -> MappingOutcome:
        """
        Map one raw header.

        Args:
            raw_header: Header as it appears in the sheet

        Returns:
            AIMappingResult, or MappingError when the answer is unusable
            or the service failed
        """
        key = self.cache_key(raw_header)
        if not key:
            return MappingError("Empty header", code="empty_header", header=raw_header)

        entry = self.cache.get(key)
        if entry is not None:
            return AIMappingResult(raw_header, entry.field, entry.confidence, from_cache=True)

        # Concurrent requests for one header share a single external call
        lock = self._acquire_lock(key)
        try:
            async with lock:
                entry = self.cache.get(key)
                if entry is not None:
                    return AIMappingResult(raw_header, entry.field, entry.confidence, from_cache=True)
                return await self._request_mapping(raw_header, key)
        finally:
            self._release_lock(key)

    async def _request_mapping(self, raw_header: str, key: str) -> MappingOutcome:
        start_time = time.time()
        try:
            answer = await self.client.complete(
                system_prompt=SYSTEM_PROMPT,
                user_prompt=build_mapping_prompt(raw_header),
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=0.0,
            )
        except CompletionError as e:
            logger.warning(f"[AI_MAPPING] Service failure for '{raw_header}': {e.code}")
            return MappingError(f"AI service failure: {e.message}", code=e.code, header=raw_header)

        try:
            parsed = AIMappingResponse.model_validate(parse_json_object(answer))
        except (ValueError, ValidationError) as e:
            logger.warning(f"[AI_MAPPING] Malformed answer for '{raw_header}': {answer[:200]!r}")
            return MappingError(f"Malformed AI answer: {e}", code="malformed_response", header=raw_header)

        if not is_canonical_field(parsed.field):
            logger.info(f"[AI_MAPPING] No canonical field for '{raw_header}' (answer: {parsed.field})")
            return MappingError(
                f"AI could not map header to a known field (answer: {parsed.field})",
                code="unknown_field",
                header=raw_header,
            )

        entry = self.cache.set(key, parsed.field, parsed.confidence, self.ttl_seconds)
        elapsed_ms = (time.time() - start_time) * 1000
        log_json(
            level='info',
            message=f"AI mapped header '{raw_header}' -> {entry.field}",
            stage='ai_mapping',
            elapsed_ms=round(elapsed_ms, 1),
            confidence=entry.confidence,
        )
        return AIMappingResult(raw_header, entry.field, entry.confidence)

    async def map_headers(self, headers: Iterable[str]) -> Dict[str, MappingOutcome]:
        """
        Map several headers concurrently (bounded by max_concurrency).

        Returns:
            header -> AIMappingResult or MappingError
        """
        headers = list(dict.fromkeys(headers))
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(header: str) -> MappingOutcome:
            async with semaphore:
                return await self.map_field(header)

        outcomes = await asyncio.gather(*(_bounded(h) for h in headers))
        return dict(zip(headers, outcomes))


def get_ai_mapping_service() -> AIFieldMappingService:
    """Process-wide AI mapping service built from configuration (singleton)."""
    global _ai_mapping_service
    if _ai_mapping_service is None:
        _ai_mapping_service = AIFieldMappingService.from_config()
    return _ai_mapping_service
