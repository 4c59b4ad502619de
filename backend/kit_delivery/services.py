from __future__ import annotations

from dataclasses import dataclass

from kit_delivery.infra.metrics import Metrics, configure_metrics
from kit_delivery.infra.security import RateLimiter, create_rate_limiter


@dataclass
class AppServices:
    """Typed container for runtime services stored on `app.state.services`."""

    rate_limiter: RateLimiter
    metrics: Metrics

    async def close(self) -> None:
        await self.rate_limiter.close()


def build_app_services(app_settings, *, metrics: Metrics | None = None) -> AppServices:
    metrics_client = metrics or configure_metrics(app_settings.metrics_enabled)
    return AppServices(
        rate_limiter=create_rate_limiter(app_settings),
        metrics=metrics_client,
    )

