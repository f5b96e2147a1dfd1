"""Shared test fixtures."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from check_elb_health import CheckConfig
from elb_health import MemberHealthRecord


@pytest.fixture
def config() -> CheckConfig:
    return CheckConfig(elb_name="web-elb", aws_region="eu-west-1")


@pytest.fixture
def verbose_config() -> CheckConfig:
    return CheckConfig(elb_name="web-elb", aws_region="eu-west-1", verbose=True)


@pytest.fixture
def mixed_report() -> list[MemberHealthRecord]:
    return [
        MemberHealthRecord("i-1", "InService"),
        MemberHealthRecord("i-2", "OutOfService"),
    ]


@pytest.fixture
def elb_client() -> MagicMock:
    """An ELB client whose describe_instance_health reports two healthy instances."""
    client = MagicMock()
    client.describe_instance_health.return_value = {
        "InstanceStates": [
            {"InstanceId": "i-1", "State": "InService", "ReasonCode": "N/A"},
            {"InstanceId": "i-2", "State": "InService", "ReasonCode": "N/A"},
        ]
    }
    return client
