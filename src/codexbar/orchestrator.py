import dataclasses
import time
from typing import Sequence

import httpx
import structlog

from codexbar.errors import AllProvidersFailed, UnknownProvider
from codexbar.metrics import MetricsUpdater
from codexbar.models import ProviderResult, ResolutionResult
from codexbar.provider.base import UsageProvider
from codexbar.status import fetch_status

logger = structlog.get_logger()

# selectors that expand to every registered provider
_ALL_SELECTORS = ("all", "both")


class Resolver:
    """
    Resolver turns a provider selector into usage results.

    Each provider's strategies are tried in their declared order and
    the first one producing data wins. A strategy that raises is
    logged and counted, then treated exactly like one that returned
    nothing. Providers with no result are dropped; only when nothing
    at all resolves does the call fail with AllProvidersFailed.

    Providers are resolved one after another on the calling thread.
    """

    def __init__(
        self,
        providers: "Sequence[UsageProvider]",
        metrics_updater: "MetricsUpdater",
        source_override: "str | None" = None,
        status_client: "httpx.Client | None" = None,
    ) -> "None":
        self._providers: "dict[str, UsageProvider]" = {p.name: p for p in providers}
        self._metrics = metrics_updater
        self._source_override = source_override
        self._status_client = status_client

    def requested_providers(self, selector: "str") -> "list[UsageProvider]":
        """
        expands a selector ("all", "both" or a provider name, case
        and surrounding whitespace ignored) into providers.
        """
        normalized = selector.strip().lower()
        if normalized in _ALL_SELECTORS:
            return list(self._providers.values())

        provider = self._providers.get(normalized)
        if provider is None:
            raise UnknownProvider(selector)
        return [provider]

    def resolve(self, selector: "str" = "all") -> "ResolutionResult":
        providers = self.requested_providers(selector)
        results: "list[ProviderResult]" = []

        for provider in providers:
            result = self.resolve_provider(provider)
            if result is None:
                logger.warning("provider_no_data", provider=provider.name)
                continue
            results.append(result)

        if not results:
            raise AllProvidersFailed(selector)

        return ResolutionResult(results=results)

    def resolve_provider(self, provider: "UsageProvider") -> "ProviderResult | None":
        started = time.monotonic()
        result = None

        for strategy in provider.strategies():
            self._metrics.inc_strategy_attempt(provider.name, strategy.name)
            try:
                candidate = strategy.fetch()
            except Exception as exc:
                logger.warning(
                    "strategy_failed",
                    provider=provider.name,
                    strategy=strategy.name,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                self._metrics.inc_strategy_error(provider.name, strategy.name)
                continue

            if candidate is None or not candidate.has_data:
                logger.debug(
                    "strategy_no_data",
                    provider=provider.name,
                    strategy=strategy.name,
                )
                continue

            result = candidate
            break

        self._metrics.observe_resolve_duration(provider.name, time.monotonic() - started)
        if result is None:
            return None

        result = self._finalize(provider, result)
        self._metrics.update_usage(result)
        self._metrics.set_last_resolve_success(provider.name, time.time())
        logger.info(
            "provider_resolved",
            provider=provider.name,
            source=result.source_label,
        )
        return result

    def _finalize(
        self,
        provider: "UsageProvider",
        result: "ProviderResult",
    ) -> "ProviderResult":
        """
        applies the caller's source override and status enrichment.
        """
        changes: "dict[str, object]" = {}
        if self._source_override:
            changes["source_label"] = self._source_override

        if self._status_client is not None and provider.status_page_url:
            changes["status"] = fetch_status(provider.status_page_url, self._status_client)

        if not changes:
            return result
        return dataclasses.replace(result, **changes)
