from enum import IntEnum
from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence


HEALTHY_STATE = "InService"


class Status(IntEnum):
    # values double as process exit codes
    OK = 0
    WARNING = 1
    CRITICAL = 2
    UNKNOWN = 3


@dataclass(frozen=True)
class MemberHealthRecord:
    member_id: str
    state: str


HealthReport = Sequence[MemberHealthRecord]


@dataclass(frozen=True)
class Verdict:
    status: Status
    message: str

    def __str__(self) -> str:
        return f"{self.status.name}: {self.message}"


class CheckError(Exception):
    """Base for the terminal failures of a check. All of them are critical."""

    message = "ELB health check failed"

    def __init__(self, cause: str | None = None):
        super().__init__(cause or self.message)
        self.cause = cause

    def describe(self) -> str:
        return self.message


class RegionResolutionError(CheckError):
    message = "Cannot obtain this instance's Availability Zone. Maybe not running on AWS?"


class HealthQueryError(CheckError):
    message = "An issue occurred while communicating with the AWS ELB API"

    def describe(self) -> str:
        return f"{self.message}: {self.cause}"


class EmptyReportError(CheckError):
    message = "Failed to retrieve ELB instance health data"


DescribeHealth = Callable[[str, List[str] | None], HealthReport | HealthQueryError]


def verdict_for_error(error: CheckError) -> Verdict:
    return Verdict(Status.CRITICAL, error.describe())


def find_unhealthy(report: HealthReport) -> Dict[str, str]:
    """
    Map member id -> state for every member not InService.
    Keeps report order; a repeated id keeps its last state.
    """
    unhealthy: Dict[str, str] = {}
    for record in report:
        if record.state != HEALTHY_STATE:
            unhealthy[record.member_id] = record.state
    return unhealthy


def evaluate(config, region: str, describe_health: DescribeHealth) -> Verdict:
    result = describe_health(config.elb_name, config.instances)
    if isinstance(result, HealthQueryError):
        return verdict_for_error(result)

    if not result:
        return verdict_for_error(EmptyReportError())

    unhealthy = find_unhealthy(result)
    if not unhealthy:
        return Verdict(Status.OK, f"All instances on ELB {region}::{config.elb_name} healthy!")

    if config.verbose:
        listing = " ".join(f"[{member_id}::{state}]" for member_id, state in unhealthy.items())
        return Verdict(Status.CRITICAL, f"Unhealthy instances detected: {listing}")
    return Verdict(Status.CRITICAL, f"Detected [{len(unhealthy)}] unhealthy instances")
