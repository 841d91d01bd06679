"""gpu_metrics.collector
Edge-side GPU metrics collector.

Modules
-------
poller : collect-then-send loop that calls `nvidia-smi` and POSTs to the ingestion API
parsers: helpers to turn `nvidia-smi --format=csv,noheader,nounits` rows into GPUMetric records
"""

__all__ = ["poller", "parsers"]
