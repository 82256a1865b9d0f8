"""Single-flight generation: one physical generation per cache key at a time.

Every generation runs on a small ThreadPoolExecutor. The first caller for a
key submits the work and registers the resulting Future; concurrent callers
for the same key find that Future and wait on it. Callers (the first one
included) only ever wait, so a caller that times out walks away without
cancelling work other callers still depend on.

The registry lock guards dict access only. It is never held across the
generation call or any database/file I/O.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.orm import Session, sessionmaker

from brightsteps.core.assets import AssetStore
from brightsteps.core.cache_key import derive_cache_key
from brightsteps.core.cache_store import GenerationCacheStore
from brightsteps.core.history import GenerationHistoryLog
from brightsteps.db import session_scope
from brightsteps.errors import (
    GenerationFailure,
    GenerationTimeout,
    InvalidRequest,
    StorageFailure,
)
from brightsteps.models.generation import GenerationStatus
from brightsteps.models.pack import AssetKind, ModuleType
from brightsteps.models.schemas import CacheEntry, GenerationRequest

logger = logging.getLogger(__name__)

DEFAULT_AUDIO_MIME = "audio/mpeg"


@dataclass
class GeneratedContent:
    """What the generation capability hands back for one request."""

    content_payload: dict
    audio_bytes: bytes | None = None
    audio_mime_type: str | None = None
    flagged: bool = False


GenerateFn = Callable[[GenerationRequest], GeneratedContent]


@dataclass
class _Flight:
    """One registered generation for a cache key."""

    forced: bool
    future: Future | None = None
    generated: bool = False


class SingleFlightCoordinator:

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        cache_store: GenerationCacheStore,
        history_log: GenerationHistoryLog,
        asset_store: AssetStore,
        max_workers: int = 4,
        wait_timeout: float | None = None,
    ):
        self._session_factory = session_factory
        self._cache = cache_store
        self._history = history_log
        self._assets = asset_store
        self._wait_timeout = wait_timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="brightsteps-gen",
        )
        self._in_flight: dict[str, _Flight] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_or_generate(
        self,
        request: GenerationRequest,
        generate_fn: GenerateFn,
        force: bool = False,
        timeout: float | None = None,
    ) -> CacheEntry:
        """Return the cached entry for ``request`` or generate it once.

        Args:
            force: Ignore an existing entry. Concurrent forced calls for the
                same key still collapse into one generation. A forced caller
                that joins a non-forced flight which only reused a stored
                entry starts a forced generation of its own afterwards.
            timeout: Seconds this caller is willing to wait. Falls back to
                the coordinator default; None waits indefinitely.

        Raises:
            InvalidRequest: Malformed request fields.
            GenerationFailure: The generation failed (shared by all waiters).
            GenerationTimeout: This caller gave up waiting.
            StorageFailure: Results could not be persisted.
        """
        try:
            ModuleType(request.module_type)
        except ValueError:
            raise InvalidRequest(
                f"Unknown module type: {request.module_type}",
                pack_id=request.pack_id,
                item_id=request.item_id,
            )

        cache_key = derive_cache_key(request)

        if not force:
            entry = self._cache.get(cache_key)
            if entry is not None and not entry.flagged:
                logger.debug("Cache hit: %s (%s/%s)", cache_key[:12], request.pack_id, request.item_id)
                return entry

        effective = timeout if timeout is not None else self._wait_timeout
        deadline = time.monotonic() + effective if effective is not None else None
        while True:
            flight = self._join_or_start(cache_key, request, generate_fn, force)
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            entry = self._wait(flight.future, cache_key, request, remaining)
            if not force or flight.generated:
                return entry
            # The joined flight served a stored entry; a forced caller needs a new one.
            logger.info(
                "Joined flight for %s reused a stored entry; starting a forced generation",
                cache_key[:12],
            )

    def is_in_flight(self, cache_key: str) -> bool:
        with self._lock:
            return cache_key in self._in_flight

    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _join_or_start(
        self,
        cache_key: str,
        request: GenerationRequest,
        generate_fn: GenerateFn,
        force: bool,
    ) -> _Flight:
        with self._lock:
            flight = self._in_flight.get(cache_key)
            if flight is not None:
                logger.info(
                    "Joining in-flight generation %s (%s/%s)",
                    cache_key[:12], request.pack_id, request.item_id,
                )
                return flight
            # Registered under the lock, so _run cannot deregister before this.
            flight = _Flight(forced=force)
            flight.future = self._executor.submit(self._run, cache_key, request, generate_fn, flight)
            self._in_flight[cache_key] = flight
            return flight

    def _wait(
        self,
        future: Future,
        cache_key: str,
        request: GenerationRequest,
        timeout: float | None,
    ) -> CacheEntry:
        try:
            return future.result(timeout=timeout)
        except FuturesTimeoutError:
            logger.warning(
                "Stopped waiting for %s after %.1fs (%s/%s); generation continues",
                cache_key[:12], timeout, request.pack_id, request.item_id,
            )
            raise GenerationTimeout(
                f"Timed out after {timeout}s waiting for generation",
                pack_id=request.pack_id,
                item_id=request.item_id,
            )

    # ------------------------------------------------------------------
    # Executor entry point
    # ------------------------------------------------------------------

    def _run(
        self,
        cache_key: str,
        request: GenerationRequest,
        generate_fn: GenerateFn,
        flight: _Flight,
    ) -> CacheEntry:
        try:
            if not flight.forced:
                # A flight that finished between the caller's lookup and
                # registration already stored the result.
                entry = self._cache.get(cache_key)
                if entry is not None and not entry.flagged:
                    return entry
            entry = self._generate(cache_key, request, generate_fn)
            flight.generated = True
            return entry
        finally:
            # Persisted before deregistering: late arrivals see either this
            # flight or its stored result.
            with self._lock:
                self._in_flight.pop(cache_key, None)

    def _generate(
        self,
        cache_key: str,
        request: GenerationRequest,
        generate_fn: GenerateFn,
    ) -> CacheEntry:
        logger.info(
            "Generating %s/%s (%s %s %s)",
            request.pack_id, request.item_id,
            request.provider, request.model, request.prompt_version,
        )

        try:
            output = generate_fn(request)
            if not isinstance(output, GeneratedContent) or not isinstance(output.content_payload, dict):
                raise GenerationFailure("Generation returned no content payload")
        except Exception as e:
            failure = self._as_failure(e, request)
            logger.warning(
                "Generation failed for %s/%s: %s",
                request.pack_id, request.item_id, failure.message,
            )
            self._history.append(
                request, cache_key, GenerationStatus.FAILURE,
                error_message=failure.message,
            )
            if failure is e:
                raise
            raise failure from e

        audio_asset = None
        if output.audio_bytes:
            audio_asset = self._assets.put(
                request.pack_id,
                AssetKind.AUDIO,
                output.audio_bytes,
                output.audio_mime_type or DEFAULT_AUDIO_MIME,
            )

        try:
            with session_scope(self._session_factory) as s:
                previous = self._cache.get(cache_key, session=s)
                self._history.append(
                    request, cache_key, GenerationStatus.SUCCESS,
                    output_payload=output.content_payload, session=s,
                )
                entry = self._cache.upsert(
                    cache_key=cache_key,
                    module_type=request.module_type,
                    pack_id=request.pack_id,
                    item_id=request.item_id,
                    prompt_version=request.prompt_version,
                    provider=request.provider,
                    model=request.model,
                    content_payload=output.content_payload,
                    audio_asset_id=audio_asset.asset_id if audio_asset else None,
                    audio_relative_path=audio_asset.relative_path if audio_asset else None,
                    audio_mime_type=audio_asset.mime_type if audio_asset else None,
                    flagged=output.flagged,
                    session=s,
                )
        except StorageFailure:
            logger.error(
                "Failed to persist generation for %s/%s",
                request.pack_id, request.item_id, exc_info=True,
            )
            if audio_asset is not None:
                self._discard_asset(audio_asset.asset_id)
            raise

        if previous is not None and previous.audio_asset_id:
            if previous.audio_asset_id != entry.audio_asset_id:
                self._discard_asset(previous.audio_asset_id)

        return entry

    @staticmethod
    def _as_failure(error: Exception, request: GenerationRequest) -> GenerationFailure:
        if isinstance(error, GenerationFailure):
            error.pack_id = error.pack_id or request.pack_id
            error.item_id = error.item_id or request.item_id
            return error
        message = str(error) or type(error).__name__
        return GenerationFailure(message, pack_id=request.pack_id, item_id=request.item_id)

    def _discard_asset(self, asset_id: str) -> None:
        try:
            self._assets.delete(asset_id)
        except StorageFailure:
            logger.warning("Could not remove orphaned asset %s", asset_id, exc_info=True)
