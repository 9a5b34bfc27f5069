"""
Service resource attributes.

These four labels are attached to every span, metric point and log record
emitted by the demo, which is how Grafana tells this service apart from
everything else shipping to the same stack.
"""
from typing import Dict

from opentelemetry.sdk.resources import (
    DEPLOYMENT_ENVIRONMENT,
    SERVICE_NAME,
    SERVICE_NAMESPACE,
    SERVICE_VERSION,
    Resource,
)

from otel_dynamodb_demo.config import TelemetryConfig


def build_resource_attributes(config: TelemetryConfig) -> Dict[str, str]:
    """
    Build the identity attributes shared by the trace, metric and log providers.

    Args:
        config: Telemetry configuration

    Returns:
        Mapping with exactly service.name, service.namespace, service.version
        and deployment.environment
    """
    return {
        SERVICE_NAME: config.service_name,
        SERVICE_NAMESPACE: config.service_namespace,
        SERVICE_VERSION: config.service_version,
        DEPLOYMENT_ENVIRONMENT: config.environment,
    }


def create_resource(config: TelemetryConfig) -> Resource:
    """Wrap the identity attributes in an OpenTelemetry Resource."""
    return Resource(attributes=build_resource_attributes(config))
