"""AWS backend (SNS + SQS + EventBridge + KMS) over aiobotocore."""

from __future__ import annotations

from .broker import AwsBroker
from .connection import AWSConnectionManager
from .kms import AwsKeyManagement

__all__ = [
    "AWSConnectionManager",
    "AwsBroker",
    "AwsKeyManagement",
]
