"""
SessionController: one interaction, end to end.

    lock(key) -> ensure tab -> prepare -> snapshot (turns, visible text)
      -> uploads -> set input -> submit -> CompletionDetector -> StabilityDetector
      -> ExtractionPipeline -> staleness check -> exact-token check -> release

Only the staleness and exact-token re-extractions are handled here as recovery
attempts; every other failure surfaces as a typed ControllerError carrying the
platform and the request id.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from .apps.base import CapabilityAdapter
from .apps.registry import AdapterRegistry, default_registry
from .attachments import Attachment, decode_all
from .blockers import detect_block
from .browser_session import TabHandle
from .config import ControllerConfig
from .connection_manager import ConnectionManager
from .detectors import Clock, CompletionDetector, StabilityDetector, SystemClock
from .errors import (
    AttachmentsUnsupported,
    ConnectionFailure,
    ControllerError,
    ExpectationMismatch,
    ExtractionEmpty,
    InputNotFound,
    PlatformBlocked,
    ResponseTimeout,
    SubmitNotFound,
)
from .extraction import ExtractionContext, ExtractionPipeline
from .http_client import HttpClientError
from .models import ExtractionResult, InteractionRequest, InteractionResult, new_request_id
from .request_lock import RequestLock
from .text_cleaning import clean_text

logger = logging.getLogger("lotl.controller.controller")


def _preview(text: str, limit: int = 40) -> str:
    flat = " ".join((text or "").split())
    return flat if len(flat) <= limit else flat[: limit - 1] + "…"


class SessionController:
    def __init__(
        self,
        config: ControllerConfig,
        *,
        registry: AdapterRegistry | None = None,
        connections: ConnectionManager | None = None,
        lock: RequestLock | None = None,
        pipeline: ExtractionPipeline | None = None,
        clock: Clock | None = None,
        settle_delay: float = 0.5,
    ) -> None:
        self.config = config
        self.registry = registry or default_registry()
        self.connections = connections or ConnectionManager(config, self.registry, clock=clock)
        self.lock = lock or RequestLock()
        self.pipeline = pipeline or ExtractionPipeline()
        self.clock = clock or SystemClock()
        self.settle_delay = settle_delay

    async def send(self, request: InteractionRequest) -> InteractionResult:
        adapter = self.registry.require(request.platform)
        platform = adapter.name
        request_id = new_request_id()

        if request.has_attachments and not adapter.supports_attachments:
            raise AttachmentsUnsupported(
                platform=platform,
                reason=f"{adapter.label or platform} does not accept attachments",
                suggestion="Send a text-only request or use a platform that supports attachments",
                details={"requestId": request_id},
            )
        attachments = decode_all(list(request.attachments), platform=platform)

        key = self.connections.key_for(platform, request.session_id)
        timeout = self.config.lock_timeout_for(platform, bool(attachments))
        logger.info(
            "request_start id=%s key=%s chars=%d attachments=%d preview=%r",
            request_id,
            key,
            len(request.prompt),
            len(attachments),
            _preview(request.prompt),
        )

        try:
            result = await self.lock.with_lock(
                key,
                timeout,
                lambda: self._interact(request, adapter, attachments, request_id),
                label=request_id,
            )
        except ControllerError as exc:
            exc.details.setdefault("requestId", request_id)
            logger.warning("request_failed id=%s code=%s %s", request_id, exc.code, exc)
            raise
        logger.info("request_done id=%s chars=%d strategy=%s", request_id, len(result.text), result.strategy)
        return result

    async def close_session(self, platform: str, session_id: str) -> bool:
        """Close a multi-mode session tab once any interaction on it has settled."""
        adapter = self.registry.require(platform)
        key = self.connections.key_for(adapter.name, session_id)
        if key == adapter.name:
            return False
        closed = await self.lock.with_lock(
            key,
            self.config.lock_timeout_for(adapter.name, False),
            lambda: self.connections.drop_session(adapter.name, session_id),
            label="close_session",
        )
        logger.info("close_session key=%s closed=%s", key, closed)
        return bool(closed)

    async def close(self) -> None:
        await self.connections.close()

    async def _interact(
        self,
        request: InteractionRequest,
        adapter: CapabilityAdapter,
        attachments: list[Attachment],
        request_id: str,
    ) -> InteractionResult:
        started = self.clock.monotonic()
        tab = await self.connections.ensure(adapter.name, session_id=request.session_id)
        try:
            return await self._drive(tab, adapter, request, attachments, request_id, started)
        except ControllerError:
            raise
        except HttpClientError as exc:
            raise ConnectionFailure(
                platform=adapter.name,
                reason=f"Browser protocol error during interaction: {exc}",
                suggestion="Check that the tab is still open; the next request reconnects automatically",
            ) from exc
        finally:
            await self.connections.release(tab)

    async def _drive(
        self,
        tab: TabHandle,
        adapter: CapabilityAdapter,
        request: InteractionRequest,
        attachments: list[Attachment],
        request_id: str,
        started: float,
    ) -> InteractionResult:
        platform = adapter.name
        chrome = adapter.chrome_regexes()

        await self._prepare(tab)
        turns_before = int(await adapter.count_turns(tab))
        before_text = clean_text(await adapter.extract_text(tab), extra_chrome=chrome)
        logger.info("turns_before id=%s platform=%s turns=%d", request_id, platform, turns_before)

        for index, attachment in enumerate(attachments, start=1):
            logger.info("attachment_upload id=%s index=%d/%d size_kb=%d", request_id, index, len(attachments), attachment.size_kb)
            await adapter.upload_attachment(tab, attachment)

        if not await adapter.set_input(tab, request.prompt):
            await self._raise_blocked_or(
                tab,
                InputNotFound(
                    platform=platform,
                    reason="Input field not found or did not accept the prompt",
                    suggestion=f"Make sure the {adapter.label or platform} chat page is open and idle",
                ),
            )
        await self.clock.sleep(self.settle_delay)

        if not await adapter.trigger_submit(tab):
            raise SubmitNotFound(
                platform=platform,
                reason="Submit button not found or disabled",
                suggestion="Check whether a previous generation is still running in the tab",
            )

        completion = CompletionDetector(
            count_turns=lambda: adapter.count_turns(tab),
            is_busy=lambda: adapter.is_busy(tab),
            required_delta=adapter.required_turn_delta,
            platform=platform,
            poll_interval=self.config.poll_interval,
            max_polls=self.config.max_polls(self.config.response_timeout),
            clock=self.clock,
        )
        try:
            await completion.wait(turns_before)
        except ResponseTimeout as exc:
            await self._raise_blocked_or(tab, exc)

        stability = StabilityDetector(
            sample=lambda: adapter.extract_text(tab),
            platform=platform,
            poll_interval=self.config.poll_interval,
            max_polls=self.config.max_polls(self.config.stability_timeout),
            stable_samples=self.config.stable_samples,
            clock=self.clock,
        )
        settled = await stability.wait()

        ctx = ExtractionContext(tab=tab, adapter=adapter, prompt=request.prompt, platform=platform)
        result = await self.pipeline.extract(ctx)
        attempts = list(result.attempts)
        stale = False

        if result.text and before_text and result.text == before_text:
            logger.warning("stale_extraction id=%s platform=%s strategy=%s", request_id, platform, result.strategy)
            retry = await self.pipeline.extract(replace(ctx, reject=frozenset({before_text})), include_primary=False)
            attempts.extend(retry.attempts)
            if retry.text:
                result = retry
            else:
                stale = True
                logger.warning("stale_kept id=%s platform=%s (no newer text in fallbacks)", request_id, platform)

        exact_match: bool | None = None
        if request.expected_reply is not None:
            result, exact_match, stale = await self._check_token(ctx, request, result, attempts, stale)

        if not result.text:
            await self._raise_blocked_or(
                tab,
                ExtractionEmpty(
                    platform=platform,
                    reason="No reply text could be extracted",
                    suggestion="Inspect the tab; the reply may be rendered in an unsupported layout",
                    details={"attempts": attempts},
                ),
            )

        return InteractionResult(
            text=result.text,
            platform=platform,
            request_id=request_id,
            strategy=result.strategy,
            stale=stale,
            exact_match=exact_match,
            stable=settled.stable,
            elapsed=self.clock.monotonic() - started,
            attempts=tuple(attempts),
        )

    async def _check_token(
        self,
        ctx: ExtractionContext,
        request: InteractionRequest,
        result: ExtractionResult,
        attempts: list[str],
        stale: bool,
    ) -> tuple[ExtractionResult, bool, bool]:
        token = (request.expected_reply or "").strip()
        if result.text == token:
            return result, True, stale

        logger.info("exact_token_retry platform=%s got=%r", ctx.platform, _preview(result.text))
        retry = await self.pipeline.extract(replace(ctx, token=token, reject=frozenset()), include_primary=False)
        attempts.extend(retry.attempts)
        if retry.text:
            return retry, True, False
        if token and token in result.text:
            logger.warning("exact_token_not_isolated platform=%s; returning containing text", ctx.platform)
            return result, False, stale
        if not result.text:
            # Empty everywhere: a visible block explains it better than a mismatch.
            await self._raise_blocked_or(tab=ctx.tab, error=None)
        raise ExpectationMismatch(
            platform=ctx.platform,
            reason=f"Expected reply {token!r} was not found in the page",
            suggestion="Retry, or check that the prompt asks for the exact literal",
            details={"got": _preview(result.text, 200), "attempts": list(attempts)},
        )

    async def _prepare(self, tab: TabHandle) -> None:
        try:
            await tab.bring_to_front()
            await tab.scroll_to_bottom()
        except HttpClientError as exc:
            logger.info("prepare_failed platform=%s error=%s", tab.platform, exc)
        await self.clock.sleep(self.settle_delay)

    async def _raise_blocked_or(self, tab: TabHandle, error: ControllerError | None) -> None:
        """Raise PlatformBlocked when the page shows a block condition, otherwise `error` (if any)."""
        try:
            block = await detect_block(tab)
        except HttpClientError as exc:
            logger.info("block_probe_failed platform=%s error=%s", tab.platform, exc)
            block = None
        if block is not None:
            raise PlatformBlocked(
                platform=tab.platform,
                reason=f"Platform blocked ({block.kind.replace('_', ' ')}): {block.evidence}",
                suggestion=block.suggestion,
                details={"kind": block.kind, "url": block.url, "cause": error.code if error else None},
            ) from error
        if error is not None:
            raise error
