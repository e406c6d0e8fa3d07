"""Prometheus collectors shared by the HTTP layer and the mint pipeline."""

from prometheus_client import REGISTRY, Counter, Gauge


# Registration must survive double imports under uvicorn --reload
def _get_or_create_counter(name: str, *args, **kwargs) -> Counter:
    existing = REGISTRY._names_to_collectors.get(name)  # type: ignore[attr-defined]
    if existing:
        return existing
    return Counter(name, *args, **kwargs)


def _get_or_create_gauge(name: str, *args, **kwargs) -> Gauge:
    existing = REGISTRY._names_to_collectors.get(name)  # type: ignore[attr-defined]
    if existing:
        return existing
    return Gauge(name, *args, **kwargs)


http_requests_total = _get_or_create_counter(
    "minter_http_requests_total", "Total HTTP requests", ["method", "path", "status"]
)
http_inprogress = _get_or_create_gauge("minter_http_inprogress", "In-flight HTTP requests")
mint_attempts_total = _get_or_create_counter(
    "minter_mint_attempts_total", "Mint attempts by trigger and outcome", ["trigger_id", "outcome"]
)
active_triggers = _get_or_create_gauge("minter_active_triggers", "Trigger sources currently listening")
