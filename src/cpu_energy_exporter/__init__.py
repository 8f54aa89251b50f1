"""Per-process CPU time and energy estimate exporter for Prometheus."""
