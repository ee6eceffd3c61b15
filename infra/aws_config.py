"""AWS SDK configuration for the blob store.

The S3 blob store factory imports from this module to keep AWS/client tuning
in one place. Retries on throttling and transient errors happen here, inside
botocore, never in the fetch orchestrator.
"""

from __future__ import annotations

from typing import Any

import boto3
from botocore.config import Config

from infra.config import AWSConfig
from version import ENGINE_NAME, ENGINE_VERSION


def build_sdk_config(aws: AWSConfig) -> Config:
    return Config(
        retries={"max_attempts": int(aws.max_retries), "mode": "adaptive"},
        user_agent_extra=f"{ENGINE_NAME}/{ENGINE_VERSION}",
        connect_timeout=int(aws.connect_timeout),
        read_timeout=int(aws.timeout),
    )


def build_s3_client(aws: AWSConfig) -> Any:
    """Create an S3 client from settings (endpoint override supports MinIO/LocalStack)."""
    return boto3.client(
        "s3",
        region_name=aws.region,
        endpoint_url=aws.endpoint_url,
        config=build_sdk_config(aws),
    )
