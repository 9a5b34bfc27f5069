"""
Observability Package

Wires the three signals of the demo to a Grafana-compatible OTLP backend:
1. TRACES: OpenTelemetry spans for every DynamoDB call (botocore instrumentation)
2. METRICS: operation count / error count / duration histogram per DynamoDB operation
3. LOGS: structlog events mirrored to stdout (JSON) and exported as OTLP log records

FAILURE MODE:
If the collector is unreachable, exports fail with a logged warning and the
telemetry is dropped. The DynamoDB workload keeps running either way.
"""
