#!/usr/bin/env python3

import os
import sys
import logging
import argparse
import requests
import boto3
from botocore.exceptions import BotoCoreError, ClientError
from typing import List, Sequence
from dataclasses import dataclass

from elb_health import (
    HealthQueryError,
    HealthReport,
    MemberHealthRecord,
    RegionResolutionError,
    Status,
    Verdict,
    evaluate,
    verdict_for_error,
)


METADATA_AZ_URL = "http://169.254.169.254/latest/meta-data/placement/availability-zone/"
DEFAULT_LOG_LEVEL = "WARNING"
DEFAULT_METADATA_TIMEOUT = "3"


def get_env(name: str, default: str | None = None, required: bool = False) -> str:
    value = os.getenv(name, default)
    if required and not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def get_log_level() -> int:
    # unknown names fall back to the default instead of failing at import
    level = logging.getLevelName(get_env("LOG_LEVEL", DEFAULT_LOG_LEVEL).strip().upper())
    if isinstance(level, int):
        return level
    return logging.getLevelName(DEFAULT_LOG_LEVEL)


def get_metadata_timeout() -> float:
    raw = get_env("METADATA_TIMEOUT", DEFAULT_METADATA_TIMEOUT)
    try:
        timeout = float(raw)
    except ValueError:
        timeout = 0.0
    if timeout <= 0:
        raise ValueError(f"METADATA_TIMEOUT must be a positive number of seconds, got {raw!r}")
    return timeout


def setup_logger() -> logging.Logger:
    # stderr only; stdout is reserved for the status line
    logging.basicConfig(
        level=get_log_level(),
        format="%(asctime)s [%(levelname)s] %(message)s",
        stream=sys.stderr,
    )
    return logging.getLogger("check-elb-health")


logger = setup_logger()


@dataclass(frozen=True)
class CheckConfig:
    elb_name: str
    aws_access_key: str | None = None
    aws_secret_access_key: str | None = None
    aws_region: str | None = None
    instances: List[str] | None = None
    verbose: bool = False


def parse_instances(instances_arg: str | None) -> List[str] | None:
    if not instances_arg:
        return None
    instances = [raw.strip() for raw in instances_arg.split(",") if raw.strip()]
    return instances or None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="check-elb-health",
        description="Check the health of the instances behind an Elastic Load Balancer.",
    )
    parser.add_argument("-a", "--aws-access-key", dest="aws_access_key",
                        help="AWS Access Key. Either set AWS_ACCESS_KEY or provide it as an option")
    parser.add_argument("-k", "--aws-secret-access-key", dest="aws_secret_access_key",
                        help="AWS Secret Access Key. Either set AWS_SECRET_KEY or provide it as an option")
    parser.add_argument("-r", "--aws-region", dest="aws_region",
                        help="AWS Region (such as eu-west-1). Detected from the instance metadata if omitted")
    parser.add_argument("-n", "--elb-name", dest="elb_name", required=True,
                        help="The Elastic Load Balancer name of which you want to check the health")
    parser.add_argument("-i", "--instances", dest="instances",
                        help="Comma separated list of specific instance IDs inside the ELB to check")
    parser.add_argument("-v", "--verbose", action="store_true", default=False,
                        help="List every unhealthy instance with its state")
    return parser


def load_config(argv: Sequence[str] | None = None) -> CheckConfig:
    args = build_parser().parse_args(argv)
    return CheckConfig(
        elb_name=args.elb_name,
        aws_access_key=args.aws_access_key or get_env("AWS_ACCESS_KEY"),
        aws_secret_access_key=args.aws_secret_access_key or get_env("AWS_SECRET_KEY"),
        aws_region=args.aws_region,
        instances=parse_instances(args.instances),
        verbose=args.verbose,
    )


def query_instance_region(timeout: float) -> str | RegionResolutionError:
    try:
        resp = requests.get(METADATA_AZ_URL, timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as e:
        return RegionResolutionError(f"Metadata lookup failed: {e}")

    zone = resp.text.strip()
    if len(zone) < 2 or not zone[-1].isalpha():
        return RegionResolutionError(f"Unexpected availability zone from metadata: {zone!r}")

    logger.debug("Detected availability zone: %s", zone)
    return zone[:-1]


def resolve_region(config: CheckConfig, timeout: float) -> str | RegionResolutionError:
    if config.aws_region:
        return config.aws_region
    return query_instance_region(timeout)


def make_elb_client(config: CheckConfig, region: str):
    try:
        session = boto3.Session(
            aws_access_key_id=config.aws_access_key,
            aws_secret_access_key=config.aws_secret_access_key,
            region_name=region,
        )
        return session.client("elb")
    except (BotoCoreError, ClientError) as e:
        return HealthQueryError(str(e))


def describe_instance_health(client, elb_name: str,
                             instances: List[str] | None) -> HealthReport | HealthQueryError:
    kwargs = {"LoadBalancerName": elb_name}
    if instances:
        kwargs["Instances"] = [{"InstanceId": instance_id} for instance_id in instances]

    try:
        resp = client.describe_instance_health(**kwargs)
    except (BotoCoreError, ClientError) as e:
        return HealthQueryError(str(e))

    try:
        states = resp.get("InstanceStates", [])
        records = [MemberHealthRecord(member_id=s["InstanceId"], state=s["State"]) for s in states]
    except (AttributeError, KeyError, TypeError) as e:
        return HealthQueryError(f"Malformed DescribeInstanceHealth response: {e!r}")

    logger.info("Received health for %d instance(s) on %s", len(records), elb_name)
    return records


def report(verdict: Verdict) -> int:
    print(verdict)
    return int(verdict.status)


def run_check(config: CheckConfig, metadata_timeout: float) -> Verdict:
    region = resolve_region(config, metadata_timeout)
    if isinstance(region, RegionResolutionError):
        logger.error("Region resolution failed: %s", region.cause)
        return verdict_for_error(region)

    logger.info("Checking ELB %s in %s", config.elb_name, region)
    client = make_elb_client(config, region)
    if isinstance(client, HealthQueryError):
        logger.error("Could not create ELB client: %s", client.cause)
        return verdict_for_error(client)

    verdict = evaluate(
        config,
        region,
        lambda elb_name, instances: describe_instance_health(client, elb_name, instances),
    )
    if verdict.status != Status.OK:
        logger.warning("ELB %s: %s", config.elb_name, verdict.message)
    return verdict


def main(argv: Sequence[str] | None = None) -> int:
    config = load_config(argv)

    try:
        metadata_timeout = get_metadata_timeout()
        verdict = run_check(config, metadata_timeout)
    except KeyboardInterrupt:
        verdict = Verdict(Status.UNKNOWN, "Interrupted")
    except Exception as e:
        logger.exception("Unexpected error while checking ELB %s", config.elb_name)
        verdict = Verdict(Status.UNKNOWN, f"Unexpected error: {e}")

    return report(verdict)


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
