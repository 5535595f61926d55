from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Resolver metrics
resolutions_total = Counter('resolver_resolutions_total', 'Utterance resolutions by path', ['path'])
resolution_duration_seconds = Histogram('resolver_resolution_duration_seconds', 'Utterance resolution duration')
decisions_total = Counter('resolver_decisions_total', 'Decisions by cascade step and source', ['rule_id', 'source'])
decision_confidence_score = Histogram('resolver_decision_confidence_score', 'Final decision confidence scores')
external_classifier_failures_total = Counter('resolver_external_classifier_failures_total',
                                             'External classifier failures', ['reason'])

# Memory metrics
memory_cache_requests_total = Counter('resolver_memory_cache_requests_total', 'Memory cache lookups', ['result'])
memory_flush_total = Counter('resolver_memory_flush_total', 'Batched memory writes', ['status'])
memory_pending_writes = Gauge('resolver_memory_pending_writes', 'Memory snapshots waiting for a batched flush')
memory_cache_entries = Gauge('resolver_memory_cache_entries', 'User memories held in the LRU cache')
active_contexts = Gauge('resolver_active_contexts', 'Unexpired short-term contexts')


def record_resolution(path: str, duration: float, rule_id: str = None, source: str = None, confidence: float = None):
    """Record utterance resolution metrics"""
    resolutions_total.labels(path=path).inc()
    resolution_duration_seconds.observe(duration)
    if rule_id and source:
        decisions_total.labels(rule_id=rule_id, source=source).inc()
    if confidence is not None:
        decision_confidence_score.observe(confidence)


def record_classifier_failure(reason: str):
    external_classifier_failures_total.labels(reason=reason).inc()


def record_cache_lookup(hit: bool):
    memory_cache_requests_total.labels(result="hit" if hit else "miss").inc()


def record_flush(succeeded: int, failed: int):
    if succeeded:
        memory_flush_total.labels(status="success").inc(succeeded)
    if failed:
        memory_flush_total.labels(status="error").inc(failed)


async def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


def update_gauges(stats: dict):
    """Refresh point-in-time gauges from orchestrator stats"""
    memory = stats.get("memory", {})
    queue = memory.get("write_queue") or {}
    memory_pending_writes.set(queue.get("pending", 0))
    memory_cache_entries.set(memory.get("cache", {}).get("entries", 0))
    active_contexts.set(stats.get("context", {}).get("active_contexts", 0))
