from dataclasses import dataclass
from typing import Callable, Protocol, Sequence

from codexbar.models import ProviderResult


@dataclass(frozen=True, slots=True)
class Strategy:
    """
    Strategy is one way of acquiring usage for a provider. fetch
    returns a fully formed ProviderResult, or None when the channel
    yields no data. It may also raise; the resolver treats that the
    same as None.
    """

    # source label stamped on results this strategy produces
    name: "str"
    fetch: "Callable[[], ProviderResult | None]"


class UsageProvider(Protocol):
    """
    UsageProvider stands as a common protocol that all
    AI providers must satisfy.

    strategies() returns the acquisition strategies in the fixed
    order they must be tried.
    """

    @property
    def name(self) -> "str": ...

    @property
    def status_page_url(self) -> "str | None": ...

    def strategies(self) -> "Sequence[Strategy]": ...
