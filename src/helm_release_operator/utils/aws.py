"""
AWS collaborators used to reach a target cluster.

Key functionality:
- Client construction with a shared retry policy
- EKS cluster lookup and bearer-token generation
- Secrets Manager and S3 retrieval
- Caller role resolution for the bridge function
- Private-cluster detection and NAT subnet selection
"""

import base64
import logging
from dataclasses import dataclass, field
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from botocore.signers import RequestSigner

from helm_release_operator.constants import PUBLIC_ACCESS_CIDR
from helm_release_operator.errors import (
    ConfigurationError,
    RemoteOperationError,
    ValidationError,
)
from helm_release_operator.models import DesiredSpec, VPCConfiguration

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "k8s-aws-v1."
TOKEN_EXPIRES_SECONDS = 60
CLUSTER_NAME_HEADER = "x-k8s-aws-id"

_RETRY_CONFIG = Config(retries={"max_attempts": 10, "mode": "standard"})


def aws_error(error: Exception) -> RemoteOperationError:
    """Translate a botocore failure into the operator error hierarchy."""
    if isinstance(error, ClientError):
        details = error.response.get("Error", {})
        logger.error(
            f"AWS Error: {details.get('Code')} - {details.get('Message')}",
            extra={"component": "aws", "error_type": details.get("Code")},
        )
        return RemoteOperationError.from_client_error("aws", error)
    logger.error(f"AWS Error: {error}", extra={"component": "aws"})
    return RemoteOperationError("aws", str(error), cause=error)


def error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


class AWSClients:
    """Factory for boto3 clients bound to one session and region."""

    def __init__(self, session: boto3.Session | None = None, region: str | None = None):
        self.session = session or boto3.Session(region_name=region or None)
        self.region = region or self.session.region_name

    def client(self, service: str, region: str | None = None) -> Any:
        return self.session.client(
            service, region_name=region or self.region, config=_RETRY_CONFIG
        )

    def eks(self):
        return self.client("eks")

    def ec2(self):
        return self.client("ec2")

    def sts(self):
        return self.client("sts")

    def secrets_manager(self):
        return self.client("secretsmanager")

    def lambda_(self):
        return self.client("lambda")

    def s3(self, region: str | None = None):
        return self.client("s3", region=region)


@dataclass
class ClusterData:
    endpoint: str
    ca_data: bytes
    vpc_config: dict[str, Any] = field(default_factory=dict)


def get_cluster_details(eks: Any, cluster_name: str) -> ClusterData:
    """
    Describe an EKS cluster.

    Raises:
        ConfigurationError: If the cluster is not ACTIVE
        RemoteOperationError: On API failures
    """
    logger.info(f"Getting cluster data for {cluster_name}...")
    try:
        cluster = eks.describe_cluster(name=cluster_name)["cluster"]
    except (BotoCoreError, ClientError) as e:
        raise aws_error(e) from e

    status = cluster.get("status")
    if status != "ACTIVE":
        raise ConfigurationError(
            f"cluster {cluster_name} in unexpected state {status}", retryable=True
        )
    try:
        ca_data = base64.b64decode(cluster["certificateAuthority"]["data"])
    except (KeyError, ValueError) as e:
        raise RemoteOperationError("aws", f"Decoding CA: {e}") from e
    return ClusterData(
        endpoint=cluster["endpoint"],
        ca_data=ca_data,
        vpc_config=cluster.get("resourcesVpcConfig", {}),
    )


def generate_kube_token(session: boto3.Session, cluster_name: str, region: str) -> str:
    """
    Produce an EKS bearer token from a presigned STS GetCallerIdentity URL.

    This is the same token format aws-iam-authenticator issues.
    """
    try:
        sts = session.client("sts", region_name=region)
        signer = RequestSigner(
            sts.meta.service_model.service_id,
            region,
            "sts",
            "v4",
            session.get_credentials(),
            session.events,
        )
        url = signer.generate_presigned_url(
            {
                "method": "GET",
                "url": f"https://sts.{region}.amazonaws.com/"
                "?Action=GetCallerIdentity&Version=2011-06-15",
                "body": {},
                "headers": {CLUSTER_NAME_HEADER: cluster_name},
                "context": {},
            },
            region_name=region,
            expires_in=TOKEN_EXPIRES_SECONDS,
            operation_name="",
        )
    except (BotoCoreError, ClientError) as e:
        raise RemoteOperationError("aws", f"Could not get token: {e}", cause=e) from e

    encoded = base64.urlsafe_b64encode(url.encode("utf-8")).decode("utf-8")
    return TOKEN_PREFIX + encoded.rstrip("=")


def get_secret(secrets_manager: Any, secret_id: str) -> bytes:
    """Fetch the current version of a secret as raw bytes."""
    logger.info("Getting data from Secrets Manager...")
    try:
        result = secrets_manager.get_secret_value(
            SecretId=secret_id, VersionStage="AWSCURRENT"
        )
    except (BotoCoreError, ClientError) as e:
        raise aws_error(e) from e
    if result.get("SecretString") is not None:
        return result["SecretString"].encode("utf-8")
    return result["SecretBinary"]


def get_bucket_region(s3: Any, bucket: str) -> str:
    logger.info(f"Checking S3 bucket region for {bucket}...")
    try:
        location = s3.get_bucket_location(Bucket=bucket).get("LocationConstraint")
    except (BotoCoreError, ClientError) as e:
        raise aws_error(e) from e
    # Legacy constraint values
    if not location:
        return "us-east-1"
    if location == "EU":
        return "eu-west-1"
    return location


def download_s3(s3: Any, bucket: str, key: str, filename: str) -> None:
    logger.info(f"Getting s3://{bucket}/{key} ...")
    try:
        s3.download_file(bucket, key, filename)
    except (BotoCoreError, ClientError) as e:
        raise aws_error(e) from e
    logger.info(f"Downloaded {filename}")


def to_role_arn(arn: str) -> str:
    """
    Convert an STS assumed-role ARN into the IAM role ARN.

    ``arn:aws:sts::123:assumed-role/Role/session`` becomes
    ``arn:aws:iam::123:role/Role``; any other ARN is returned unchanged.
    """
    parts = arn.split(":")
    if len(parts) < 6 or parts[2] != "sts" or not parts[5].startswith("assumed-role"):
        return arn
    head, role_name = arn.split("/")[:2]
    head = head.replace("assumed-role", "role", 1).replace(":sts:", ":iam:", 1)
    return f"{head}/{role_name}"


def get_current_role_arn(sts: Any) -> str:
    try:
        identity = sts.get_caller_identity()
    except (BotoCoreError, ClientError) as e:
        raise aws_error(e) from e
    return to_role_arn(identity["Arn"])


def filter_natted_subnets(ec2: Any, subnet_ids: list[str]) -> list[str]:
    """
    Keep only subnets whose route table sends traffic through a NAT gateway.

    A subnet without an explicit route table association uses the main route
    table of its VPC.
    """
    try:
        subnets = ec2.describe_subnets(SubnetIds=subnet_ids)["Subnets"]
        filtered: list[str] = []
        for subnet in subnets:
            vpc_filter = {"Name": "vpc-id", "Values": [subnet["VpcId"]]}
            tables = ec2.describe_route_tables(
                Filters=[
                    {"Name": "association.subnet-id", "Values": [subnet["SubnetId"]]},
                    vpc_filter,
                ]
            )["RouteTables"]
            if not tables:
                tables = ec2.describe_route_tables(
                    Filters=[
                        {"Name": "association.main", "Values": ["true"]},
                        vpc_filter,
                    ]
                )["RouteTables"]
            if not tables:
                continue
            if any(route.get("NatGatewayId") for route in tables[0].get("Routes", [])):
                filtered.append(subnet["SubnetId"])
    except (BotoCoreError, ClientError) as e:
        raise aws_error(e) from e
    return filtered


def is_publicly_reachable(vpc_config: dict[str, Any]) -> bool:
    """
    Whether the cluster endpoint is open to the whole internet.

    Only the first public access CIDR is consulted; an empty list counts as
    not reachable.
    """
    if not vpc_config.get("endpointPublicAccess"):
        return False
    cidrs = vpc_config.get("publicAccessCidrs") or []
    return bool(cidrs) and cidrs[0] == PUBLIC_ACCESS_CIDR


def detect_vpc_configuration(
    eks: Any, ec2: Any, spec: DesiredSpec
) -> VPCConfiguration | None:
    """
    Work out whether a bridge is needed to reach the target cluster.

    Explicit configuration wins. Clusters located through a kubeconfig secret
    are never inspected.

    Raises:
        ValidationError: If the cluster is private and has no NAT subnets
    """
    if spec.vpc_configuration is not None and not spec.vpc_configuration.is_empty():
        return spec.vpc_configuration
    if not spec.cluster_id:
        return None

    cluster = get_cluster_details(eks, spec.cluster_id)
    if is_publicly_reachable(cluster.vpc_config):
        return None

    logger.info("Detected private cluster, adding VPC Configuration...")
    subnets = filter_natted_subnets(ec2, cluster.vpc_config.get("subnetIds", []))
    if not subnets:
        raise ValidationError(
            f"no subnets with NAT Gateway found for the cluster {spec.cluster_id}, "
            "use VPCConfiguration to specify VPC settings",
            field="vpcConfiguration",
        )
    security_groups = cluster.vpc_config.get("securityGroupIds", [])
    logger.info(f"Using Subnets: {subnets}, SecurityGroups: {security_groups}")
    return VPCConfiguration(security_group_ids=security_groups, subnet_ids=subnets)
