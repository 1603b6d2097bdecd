"""
Proxy Service package for the CourtListener Proxy.

The proxy fronts the upstream CourtListener REST API, providing:
- Read-through caching of GET requests with endpoint-based TTLs
- Path-safety validation for the generic pass-through proxy
- Method-aware forwarding with sanitized upstream errors
- Webhook receipt with idempotency-key deduplication

Structure:
- app.main: FastAPI app, routes, and response headers.
- app.adapters: Key-value backend and upstream HTTP client.
- app.caching: Cache keys, TTL policy and the expiring store.
- app.proxy: Path resolution and the dispatcher.
- app.webhooks: Delivery models, idempotency guard and receiver.
"""
