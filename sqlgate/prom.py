from prometheus_client import CollectorRegistry

# Package-wide registry, served by the HTTP app at /metrics.
REGISTRY = CollectorRegistry(auto_describe=True)
