"""gpu_metrics
GPU utilization telemetry: edge collector + central ingestion service.

Modules
-------
types    : wire contract (GPUMetric, MetricsPayload) shared by both roles
collector: nvidia-smi polling and HTTP push
api      : FastAPI ingestion endpoint (POST /metrics, GET /health)
db       : SQLite store (instance lookup, atomic metric batches)
config   : collector / server configuration and logging setup
cli      : `gpu-metrics` command line
"""

__all__ = ["types", "collector", "api", "db", "config", "cli", "errors"]
