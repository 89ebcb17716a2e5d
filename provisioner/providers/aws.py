"""AWS resource handlers driven through the ``aws`` CLI.

Each handler maps one resource kind onto the describe / create / modify /
delete operations of the owning AWS service and blocks on the CLI's
built-in waiters where the service provisions asynchronously.
"""

import json
from typing import Any, Callable, Dict, List, Optional, Tuple

from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from provisioner.core.exceptions import ProviderCommandError
from provisioner.core.logging import get_provider_logger
from provisioner.providers.base import ResourceHandler
from provisioner.providers.cli import AwsCli

logger = get_provider_logger("aws")


def _is_dependency_violation(exc: BaseException) -> bool:
    return isinstance(exc, ProviderCommandError) and (
        "DependencyViolation" in exc.stderr or "ResourceInUse" in exc.stderr
    )


# Network interfaces released by deleted tasks and load balancers linger for a while
retry_dependency_violation = retry(
    retry=retry_if_exception(_is_dependency_violation),
    stop=stop_after_attempt(10),
    wait=wait_exponential(multiplier=2, min=5, max=60),
    reraise=True,
)


def tag_list(tags: Optional[Dict[str, Any]], key: str = "Key", value: str = "Value") -> List[Dict[str, str]]:
    return [{key: k, value: str(v)} for k, v in sorted((tags or {}).items())]


def tag_specifications(resource_type: str, tags: Optional[Dict[str, Any]]) -> str:
    return json.dumps([{"ResourceType": resource_type, "Tags": tag_list(tags)}])


def ignore_not_found(fn: Callable[[], Any]) -> Any:
    """Run fn, returning None if the provider reports the target missing."""
    try:
        return fn()
    except ProviderCommandError as e:
        if e.is_not_found:
            return None
        raise


def created_but_not_ready(error: ProviderCommandError, resource_id: str) -> ProviderCommandError:
    """Tag a waiter failure with the id of the resource that was created."""
    error.details["resource_id"] = resource_id
    return error


class AwsResourceHandler(ResourceHandler):
    """Base class binding a handler to an ``AwsCli``."""

    def __init__(self, aws: AwsCli):
        self.aws = aws
        self.logger = logger.bind(kind=self.kind)


class Ec2TaggedHandler(AwsResourceHandler):
    def _update_tags(self, resource_id: str, before: Dict[str, Any], after: Dict[str, Any]) -> None:
        old_tags = before.get("tags") or {}
        new_tags = after.get("tags") or {}
        removed = [k for k in old_tags if k not in new_tags]
        if removed:
            self.aws.call(
                "ec2", "delete-tags", "--resources", resource_id,
                "--tags", json.dumps([{"Key": k} for k in removed]),
            )
        if new_tags and new_tags != old_tags:
            self.aws.call(
                "ec2", "create-tags", "--resources", resource_id,
                "--tags", json.dumps(tag_list(new_tags)),
            )


# =============================================================================
# NETWORK
# =============================================================================

class VpcHandler(Ec2TaggedHandler):
    kind = "aws_vpc"
    required = frozenset({"cidr_block"})
    force_new = frozenset({"cidr_block"})

    def read(self, resource_id, attributes):
        response = ignore_not_found(
            lambda: self.aws.call("ec2", "describe-vpcs", "--vpc-ids", resource_id)
        )
        if not response or not response.get("Vpcs"):
            return None
        vpc = response["Vpcs"][0]
        return {"id": vpc["VpcId"], "cidr_block": vpc["CidrBlock"], "owner_id": vpc.get("OwnerId")}

    def _set_dns(self, vpc_id: str, inputs: Dict[str, Any]) -> None:
        for flag in ("enable_dns_support", "enable_dns_hostnames"):
            if flag in inputs:
                self.aws.call(
                    "ec2", "modify-vpc-attribute", "--vpc-id", vpc_id,
                    f"--{flag.replace('_', '-')}", json.dumps({"Value": bool(inputs[flag])}),
                )

    def create(self, inputs):
        response = self.aws.call(
            "ec2", "create-vpc",
            "--cidr-block", inputs["cidr_block"],
            "--tag-specifications", tag_specifications("vpc", inputs.get("tags")),
        )
        vpc_id = response["Vpc"]["VpcId"]
        try:
            self.aws.wait("ec2", "vpc-available", "--vpc-ids", vpc_id)
        except ProviderCommandError as e:
            raise created_but_not_ready(e, vpc_id)
        self._set_dns(vpc_id, inputs)
        return vpc_id, self.read(vpc_id, {}) or {"id": vpc_id, "cidr_block": inputs["cidr_block"]}

    def update(self, resource_id, before, after, attributes):
        self._set_dns(resource_id, {k: v for k, v in after.items() if before.get(k) != v})
        self._update_tags(resource_id, before, after)
        return self.read(resource_id, attributes) or attributes

    def delete(self, resource_id, attributes):
        ignore_not_found(lambda: self._delete(resource_id))

    @retry_dependency_violation
    def _delete(self, resource_id):
        self.aws.call("ec2", "delete-vpc", "--vpc-id", resource_id)


class SubnetHandler(Ec2TaggedHandler):
    kind = "aws_subnet"
    required = frozenset({"vpc_id", "cidr_block"})
    force_new = frozenset({"vpc_id", "cidr_block", "availability_zone"})

    def read(self, resource_id, attributes):
        response = ignore_not_found(
            lambda: self.aws.call("ec2", "describe-subnets", "--subnet-ids", resource_id)
        )
        if not response or not response.get("Subnets"):
            return None
        subnet = response["Subnets"][0]
        return {
            "id": subnet["SubnetId"],
            "vpc_id": subnet["VpcId"],
            "cidr_block": subnet["CidrBlock"],
            "availability_zone": subnet["AvailabilityZone"],
        }

    def _set_public_ip(self, subnet_id: str, enabled: bool) -> None:
        flag = "--map-public-ip-on-launch" if enabled else "--no-map-public-ip-on-launch"
        self.aws.call("ec2", "modify-subnet-attribute", "--subnet-id", subnet_id, flag)

    def create(self, inputs):
        args = [
            "--vpc-id", inputs["vpc_id"],
            "--cidr-block", inputs["cidr_block"],
            "--tag-specifications", tag_specifications("subnet", inputs.get("tags")),
        ]
        if inputs.get("availability_zone"):
            args += ["--availability-zone", inputs["availability_zone"]]
        response = self.aws.call("ec2", "create-subnet", *args)
        subnet_id = response["Subnet"]["SubnetId"]
        try:
            self.aws.wait("ec2", "subnet-available", "--subnet-ids", subnet_id)
        except ProviderCommandError as e:
            raise created_but_not_ready(e, subnet_id)
        if inputs.get("map_public_ip_on_launch"):
            self._set_public_ip(subnet_id, True)
        return subnet_id, self.read(subnet_id, {}) or {"id": subnet_id}

    def update(self, resource_id, before, after, attributes):
        if before.get("map_public_ip_on_launch") != after.get("map_public_ip_on_launch"):
            self._set_public_ip(resource_id, bool(after.get("map_public_ip_on_launch")))
        self._update_tags(resource_id, before, after)
        return self.read(resource_id, attributes) or attributes

    def delete(self, resource_id, attributes):
        ignore_not_found(lambda: self._delete(resource_id))

    @retry_dependency_violation
    def _delete(self, resource_id):
        self.aws.call("ec2", "delete-subnet", "--subnet-id", resource_id)


class InternetGatewayHandler(Ec2TaggedHandler):
    kind = "aws_internet_gateway"
    required = frozenset({"vpc_id"})
    force_new = frozenset({"vpc_id"})

    def read(self, resource_id, attributes):
        response = ignore_not_found(
            lambda: self.aws.call(
                "ec2", "describe-internet-gateways", "--internet-gateway-ids", resource_id
            )
        )
        if not response or not response.get("InternetGateways"):
            return None
        gateway = response["InternetGateways"][0]
        attachments = gateway.get("Attachments") or []
        return {
            "id": gateway["InternetGatewayId"],
            "vpc_id": attachments[0]["VpcId"] if attachments else None,
        }

    def create(self, inputs):
        response = self.aws.call(
            "ec2", "create-internet-gateway",
            "--tag-specifications", tag_specifications("internet-gateway", inputs.get("tags")),
        )
        gateway_id = response["InternetGateway"]["InternetGatewayId"]
        try:
            self.aws.call(
                "ec2", "attach-internet-gateway",
                "--internet-gateway-id", gateway_id, "--vpc-id", inputs["vpc_id"],
            )
        except ProviderCommandError as e:
            raise created_but_not_ready(e, gateway_id)
        return gateway_id, {"id": gateway_id, "vpc_id": inputs["vpc_id"]}

    def update(self, resource_id, before, after, attributes):
        self._update_tags(resource_id, before, after)
        return attributes

    def delete(self, resource_id, attributes):
        live = self.read(resource_id, attributes)
        if live is None:
            return
        if live.get("vpc_id"):
            self._detach(resource_id, live["vpc_id"])
        ignore_not_found(
            lambda: self.aws.call(
                "ec2", "delete-internet-gateway", "--internet-gateway-id", resource_id
            )
        )

    @retry_dependency_violation
    def _detach(self, gateway_id, vpc_id):
        self.aws.call(
            "ec2", "detach-internet-gateway",
            "--internet-gateway-id", gateway_id, "--vpc-id", vpc_id,
        )


class RouteTableHandler(Ec2TaggedHandler):
    """Route table together with its routes and subnet associations."""

    kind = "aws_route_table"
    required = frozenset({"vpc_id"})
    supports_update = False

    def read(self, resource_id, attributes):
        response = ignore_not_found(
            lambda: self.aws.call("ec2", "describe-route-tables", "--route-table-ids", resource_id)
        )
        if not response or not response.get("RouteTables"):
            return None
        table = response["RouteTables"][0]
        return {
            "id": table["RouteTableId"],
            "vpc_id": table["VpcId"],
            "association_ids": [
                a["RouteTableAssociationId"]
                for a in table.get("Associations") or []
                if not a.get("Main")
            ],
        }

    def create(self, inputs):
        response = self.aws.call(
            "ec2", "create-route-table",
            "--vpc-id", inputs["vpc_id"],
            "--tag-specifications", tag_specifications("route-table", inputs.get("tags")),
        )
        table_id = response["RouteTable"]["RouteTableId"]
        association_ids = []
        try:
            for route in inputs.get("routes") or []:
                self.aws.call(
                    "ec2", "create-route",
                    "--route-table-id", table_id,
                    "--destination-cidr-block", route["cidr_block"],
                    "--gateway-id", route["gateway_id"],
                )
            for subnet_id in inputs.get("subnet_ids") or []:
                association = self.aws.call(
                    "ec2", "associate-route-table",
                    "--route-table-id", table_id, "--subnet-id", subnet_id,
                )
                association_ids.append(association["AssociationId"])
        except ProviderCommandError as e:
            raise created_but_not_ready(e, table_id)
        return table_id, {"id": table_id, "vpc_id": inputs["vpc_id"], "association_ids": association_ids}

    def delete(self, resource_id, attributes):
        live = self.read(resource_id, attributes)
        if live is None:
            return
        for association_id in live["association_ids"]:
            ignore_not_found(
                lambda: self.aws.call(
                    "ec2", "disassociate-route-table", "--association-id", association_id
                )
            )
        ignore_not_found(
            lambda: self.aws.call("ec2", "delete-route-table", "--route-table-id", resource_id)
        )


def _ip_permissions(rules: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    permissions = []
    for rule in rules:
        permission = {
            "IpProtocol": rule.get("protocol", "tcp"),
            "FromPort": int(rule["from_port"]),
            "ToPort": int(rule["to_port"]),
        }
        if rule.get("cidr_blocks"):
            permission["IpRanges"] = [{"CidrIp": cidr} for cidr in rule["cidr_blocks"]]
        if rule.get("security_groups"):
            permission["UserIdGroupPairs"] = [{"GroupId": g} for g in rule["security_groups"]]
        permissions.append(permission)
    return permissions


class SecurityGroupHandler(Ec2TaggedHandler):
    kind = "aws_security_group"
    required = frozenset({"name", "vpc_id"})
    force_new = frozenset({"name", "description", "vpc_id"})

    def read(self, resource_id, attributes):
        response = ignore_not_found(
            lambda: self.aws.call("ec2", "describe-security-groups", "--group-ids", resource_id)
        )
        if not response or not response.get("SecurityGroups"):
            return None
        group = response["SecurityGroups"][0]
        return {"id": group["GroupId"], "name": group["GroupName"], "vpc_id": group["VpcId"]}

    def _authorize(self, group_id: str, rules: List[Dict[str, Any]]) -> None:
        if rules:
            self.aws.call(
                "ec2", "authorize-security-group-ingress",
                "--group-id", group_id, "--ip-permissions", json.dumps(_ip_permissions(rules)),
            )

    def create(self, inputs):
        response = self.aws.call(
            "ec2", "create-security-group",
            "--group-name", inputs["name"],
            "--description", inputs.get("description") or inputs["name"],
            "--vpc-id", inputs["vpc_id"],
            "--tag-specifications", tag_specifications("security-group", inputs.get("tags")),
        )
        group_id = response["GroupId"]
        try:
            self._authorize(group_id, inputs.get("ingress") or [])
        except ProviderCommandError as e:
            raise created_but_not_ready(e, group_id)
        return group_id, {"id": group_id, "name": inputs["name"], "vpc_id": inputs["vpc_id"]}

    def update(self, resource_id, before, after, attributes):
        if before.get("ingress") != after.get("ingress"):
            if before.get("ingress"):
                ignore_not_found(
                    lambda: self.aws.call(
                        "ec2", "revoke-security-group-ingress",
                        "--group-id", resource_id,
                        "--ip-permissions", json.dumps(_ip_permissions(before["ingress"])),
                    )
                )
            self._authorize(resource_id, after.get("ingress") or [])
        self._update_tags(resource_id, before, after)
        return attributes

    def delete(self, resource_id, attributes):
        ignore_not_found(lambda: self._delete(resource_id))

    @retry_dependency_violation
    def _delete(self, resource_id):
        self.aws.call("ec2", "delete-security-group", "--group-id", resource_id)


# =============================================================================
# DATABASE
# =============================================================================

class DbSubnetGroupHandler(AwsResourceHandler):
    kind = "aws_db_subnet_group"
    required = frozenset({"name", "subnet_ids"})
    force_new = frozenset({"name"})

    def read(self, resource_id, attributes):
        response = ignore_not_found(
            lambda: self.aws.call(
                "rds", "describe-db-subnet-groups", "--db-subnet-group-name", resource_id
            )
        )
        if not response or not response.get("DBSubnetGroups"):
            return None
        group = response["DBSubnetGroups"][0]
        return {
            "id": group["DBSubnetGroupName"],
            "name": group["DBSubnetGroupName"],
            "arn": group.get("DBSubnetGroupArn"),
        }

    def create(self, inputs):
        response = self.aws.call(
            "rds", "create-db-subnet-group",
            "--db-subnet-group-name", inputs["name"],
            "--db-subnet-group-description", inputs.get("description") or inputs["name"],
            "--subnet-ids", *inputs["subnet_ids"],
            "--tags", json.dumps(tag_list(inputs.get("tags"))),
        )
        group = response["DBSubnetGroup"]
        return inputs["name"], {
            "id": inputs["name"],
            "name": inputs["name"],
            "arn": group.get("DBSubnetGroupArn"),
        }

    def update(self, resource_id, before, after, attributes):
        self.aws.call(
            "rds", "modify-db-subnet-group",
            "--db-subnet-group-name", resource_id,
            "--db-subnet-group-description", after.get("description") or resource_id,
            "--subnet-ids", *after["subnet_ids"],
        )
        return attributes

    def delete(self, resource_id, attributes):
        ignore_not_found(
            lambda: self.aws.call(
                "rds", "delete-db-subnet-group", "--db-subnet-group-name", resource_id
            )
        )


class DbInstanceHandler(AwsResourceHandler):
    """Managed PostgreSQL instance; the password travels on stdin only."""

    kind = "aws_db_instance"
    required = frozenset(
        {"identifier", "engine", "instance_class", "allocated_storage", "username", "password"}
    )
    force_new = frozenset(
        {"identifier", "engine", "db_name", "username", "db_subnet_group_name", "storage_encrypted"}
    )
    sensitive_inputs = frozenset({"password"})

    def read(self, resource_id, attributes):
        response = ignore_not_found(
            lambda: self.aws.call(
                "rds", "describe-db-instances", "--db-instance-identifier", resource_id
            )
        )
        if not response or not response.get("DBInstances"):
            return None
        instance = response["DBInstances"][0]
        if instance.get("DBInstanceStatus") == "deleting":
            return None
        endpoint = instance.get("Endpoint") or {}
        address = endpoint.get("Address")
        port = endpoint.get("Port")
        return {
            "id": instance["DBInstanceIdentifier"],
            "arn": instance.get("DBInstanceArn"),
            "address": address,
            "port": port,
            "endpoint": f"{address}:{port}" if address else None,
            "db_name": instance.get("DBName"),
            "username": instance.get("MasterUsername"),
            "status": instance.get("DBInstanceStatus"),
        }

    def create(self, inputs):
        payload = {
            "DBInstanceIdentifier": inputs["identifier"],
            "Engine": inputs["engine"],
            "DBInstanceClass": inputs["instance_class"],
            "AllocatedStorage": int(inputs["allocated_storage"]),
            "MasterUsername": inputs["username"],
            "MasterUserPassword": inputs["password"],
            "PubliclyAccessible": bool(inputs.get("publicly_accessible", False)),
            "StorageEncrypted": bool(inputs.get("storage_encrypted", True)),
            "BackupRetentionPeriod": int(inputs.get("backup_retention_period", 7)),
            "StorageType": inputs.get("storage_type", "gp3"),
            "Tags": tag_list(inputs.get("tags")),
        }
        optional = {
            "EngineVersion": inputs.get("engine_version"),
            "DBName": inputs.get("db_name"),
            "DBSubnetGroupName": inputs.get("db_subnet_group_name"),
            "VpcSecurityGroupIds": inputs.get("vpc_security_group_ids"),
        }
        payload.update({k: v for k, v in optional.items() if v is not None})

        self.logger.info(
            "Creating database instance (this may take 5-10 minutes)",
            identifier=inputs["identifier"],
        )
        self.aws.call_with_input("rds", "create-db-instance", payload)
        self._wait_available(inputs["identifier"])
        return inputs["identifier"], self.read(inputs["identifier"], {})

    def _wait_available(self, identifier: str) -> None:
        try:
            self.aws.wait("rds", "db-instance-available", "--db-instance-identifier", identifier)
        except ProviderCommandError as e:
            raise created_but_not_ready(e, identifier)

    def update(self, resource_id, before, after, attributes):
        payload: Dict[str, Any] = {"DBInstanceIdentifier": resource_id, "ApplyImmediately": True}
        mapping = {
            "instance_class": "DBInstanceClass",
            "allocated_storage": "AllocatedStorage",
            "password": "MasterUserPassword",
            "vpc_security_group_ids": "VpcSecurityGroupIds",
            "backup_retention_period": "BackupRetentionPeriod",
            "engine_version": "EngineVersion",
            "publicly_accessible": "PubliclyAccessible",
        }
        for key, field in mapping.items():
            if before.get(key) != after.get(key) and after.get(key) is not None:
                payload[field] = after[key]
        if "EngineVersion" in payload:
            payload["AllowMajorVersionUpgrade"] = True
        self.aws.call_with_input("rds", "modify-db-instance", payload)
        self._wait_available(resource_id)
        return self.read(resource_id, attributes) or attributes

    def delete(self, resource_id, attributes):
        args = ["--db-instance-identifier", resource_id]
        if attributes.get("skip_final_snapshot", True):
            args += ["--skip-final-snapshot", "--delete-automated-backups"]
        else:
            args += ["--final-db-snapshot-identifier", f"{resource_id}-final"]
        if ignore_not_found(lambda: self.aws.call("rds", "delete-db-instance", *args)) is None:
            return
        self.aws.wait("rds", "db-instance-deleted", "--db-instance-identifier", resource_id)


# =============================================================================
# SECRETS
# =============================================================================

class SecretHandler(AwsResourceHandler):
    kind = "aws_secretsmanager_secret"
    required = frozenset({"name"})
    force_new = frozenset({"name"})

    def read(self, resource_id, attributes):
        response = ignore_not_found(
            lambda: self.aws.call("secretsmanager", "describe-secret", "--secret-id", resource_id)
        )
        if not response or response.get("DeletedDate"):
            return None
        return {"id": response["ARN"], "arn": response["ARN"], "name": response["Name"]}

    def create(self, inputs):
        args = ["--name", inputs["name"], "--tags", json.dumps(tag_list(inputs.get("tags")))]
        if inputs.get("description"):
            args += ["--description", inputs["description"]]
        response = self.aws.call("secretsmanager", "create-secret", *args)
        arn = response["ARN"]
        return arn, {"id": arn, "arn": arn, "name": response["Name"]}

    def update(self, resource_id, before, after, attributes):
        if before.get("description") != after.get("description"):
            self.aws.call(
                "secretsmanager", "update-secret",
                "--secret-id", resource_id, "--description", after.get("description") or "",
            )
        if after.get("tags") and before.get("tags") != after.get("tags"):
            self.aws.call(
                "secretsmanager", "tag-resource",
                "--secret-id", resource_id, "--tags", json.dumps(tag_list(after["tags"])),
            )
        return attributes

    def delete(self, resource_id, attributes):
        recovery_window = int(attributes.get("recovery_window_in_days", 0) or 0)
        args = ["--secret-id", resource_id]
        if recovery_window:
            args += ["--recovery-window-in-days", str(recovery_window)]
        else:
            args += ["--force-delete-without-recovery"]
        ignore_not_found(lambda: self.aws.call("secretsmanager", "delete-secret", *args))


class SecretVersionHandler(AwsResourceHandler):
    """One stored value of a secret; a new value means a new version."""

    kind = "aws_secretsmanager_secret_version"
    required = frozenset({"secret_id", "secret_string"})
    supports_update = False
    sensitive_inputs = frozenset({"secret_string"})

    def read(self, resource_id, attributes):
        secret_arn, _, version_id = resource_id.partition("|")
        response = ignore_not_found(
            lambda: self.aws.call("secretsmanager", "describe-secret", "--secret-id", secret_arn)
        )
        if not response or response.get("DeletedDate"):
            return None
        if version_id not in (response.get("VersionIdsToStages") or {}):
            return None
        return {"id": resource_id, "arn": secret_arn, "version_id": version_id}

    def create(self, inputs):
        response = self.aws.call_with_input(
            "secretsmanager", "put-secret-value",
            {"SecretId": inputs["secret_id"], "SecretString": inputs["secret_string"]},
        )
        version_id = response["VersionId"]
        resource_id = f"{response['ARN']}|{version_id}"
        return resource_id, {"id": resource_id, "arn": response["ARN"], "version_id": version_id}

    def delete(self, resource_id, attributes):
        # The current version cannot be removed on its own; it goes with its secret
        self.logger.info("Leaving secret version to its secret", id=resource_id.partition("|")[2])


# =============================================================================
# IAM / LOGGING / REGISTRY
# =============================================================================

class LogGroupHandler(AwsResourceHandler):
    kind = "aws_cloudwatch_log_group"
    required = frozenset({"name"})
    force_new = frozenset({"name"})

    def read(self, resource_id, attributes):
        response = self.aws.call(
            "logs", "describe-log-groups", "--log-group-name-prefix", resource_id
        )
        for group in response.get("logGroups") or []:
            if group["logGroupName"] == resource_id:
                return {
                    "id": resource_id,
                    "name": resource_id,
                    "arn": group.get("arn"),
                    "retention_in_days": group.get("retentionInDays"),
                }
        return None

    def _set_retention(self, name: str, days: Optional[int]) -> None:
        if days:
            self.aws.call(
                "logs", "put-retention-policy",
                "--log-group-name", name, "--retention-in-days", str(days),
            )
        else:
            ignore_not_found(
                lambda: self.aws.call("logs", "delete-retention-policy", "--log-group-name", name)
            )

    def create(self, inputs):
        name = inputs["name"]
        args = ["--log-group-name", name]
        if inputs.get("tags"):
            args += ["--tags", json.dumps({k: str(v) for k, v in inputs["tags"].items()})]
        self.aws.call("logs", "create-log-group", *args)
        try:
            if inputs.get("retention_in_days"):
                self._set_retention(name, inputs["retention_in_days"])
        except ProviderCommandError as e:
            raise created_but_not_ready(e, name)
        return name, self.read(name, {}) or {"id": name, "name": name}

    def update(self, resource_id, before, after, attributes):
        if before.get("retention_in_days") != after.get("retention_in_days"):
            self._set_retention(resource_id, after.get("retention_in_days"))
        return self.read(resource_id, attributes) or attributes

    def delete(self, resource_id, attributes):
        ignore_not_found(
            lambda: self.aws.call("logs", "delete-log-group", "--log-group-name", resource_id)
        )


class IamRoleHandler(AwsResourceHandler):
    kind = "aws_iam_role"
    required = frozenset({"name", "assume_role_policy"})
    force_new = frozenset({"name", "path"})

    def read(self, resource_id, attributes):
        response = ignore_not_found(
            lambda: self.aws.call("iam", "get-role", "--role-name", resource_id)
        )
        if not response:
            return None
        role = response["Role"]
        return {"id": role["RoleName"], "name": role["RoleName"], "arn": role["Arn"]}

    def create(self, inputs):
        args = [
            "--role-name", inputs["name"],
            "--assume-role-policy-document", json.dumps(inputs["assume_role_policy"]),
        ]
        if inputs.get("path"):
            args += ["--path", inputs["path"]]
        if inputs.get("tags"):
            args += ["--tags", json.dumps(tag_list(inputs["tags"]))]
        response = self.aws.call("iam", "create-role", *args)
        role = response["Role"]
        return role["RoleName"], {"id": role["RoleName"], "name": role["RoleName"], "arn": role["Arn"]}

    def update(self, resource_id, before, after, attributes):
        if before.get("assume_role_policy") != after.get("assume_role_policy"):
            self.aws.call(
                "iam", "update-assume-role-policy",
                "--role-name", resource_id,
                "--policy-document", json.dumps(after["assume_role_policy"]),
            )
        return attributes

    def delete(self, resource_id, attributes):
        ignore_not_found(lambda: self._delete(resource_id))

    @retry_dependency_violation
    def _delete(self, resource_id):
        self.aws.call("iam", "delete-role", "--role-name", resource_id)


class IamRolePolicyAttachmentHandler(AwsResourceHandler):
    kind = "aws_iam_role_policy_attachment"
    required = frozenset({"role", "policy_arn"})
    supports_update = False

    def read(self, resource_id, attributes):
        role, _, policy_arn = resource_id.partition("/")
        response = ignore_not_found(
            lambda: self.aws.call("iam", "list-attached-role-policies", "--role-name", role)
        )
        if not response:
            return None
        attached = [p["PolicyArn"] for p in response.get("AttachedPolicies") or []]
        if policy_arn not in attached:
            return None
        return {"id": resource_id, "role": role, "policy_arn": policy_arn}

    def create(self, inputs):
        self.aws.call(
            "iam", "attach-role-policy",
            "--role-name", inputs["role"], "--policy-arn", inputs["policy_arn"],
        )
        resource_id = f"{inputs['role']}/{inputs['policy_arn']}"
        return resource_id, {"id": resource_id, "role": inputs["role"], "policy_arn": inputs["policy_arn"]}

    def delete(self, resource_id, attributes):
        role, _, policy_arn = resource_id.partition("/")
        ignore_not_found(
            lambda: self.aws.call(
                "iam", "detach-role-policy", "--role-name", role, "--policy-arn", policy_arn
            )
        )


class IamRolePolicyHandler(AwsResourceHandler):
    """Inline policy embedded in a role."""

    kind = "aws_iam_role_policy"
    required = frozenset({"role", "name", "policy"})
    force_new = frozenset({"role", "name"})

    def read(self, resource_id, attributes):
        role, _, name = resource_id.partition(":")
        response = ignore_not_found(
            lambda: self.aws.call("iam", "get-role-policy", "--role-name", role, "--policy-name", name)
        )
        if not response:
            return None
        return {"id": resource_id, "role": role, "name": name}

    def _put(self, inputs: Dict[str, Any]) -> None:
        self.aws.call(
            "iam", "put-role-policy",
            "--role-name", inputs["role"],
            "--policy-name", inputs["name"],
            "--policy-document", json.dumps(inputs["policy"]),
        )

    def create(self, inputs):
        self._put(inputs)
        resource_id = f"{inputs['role']}:{inputs['name']}"
        return resource_id, {"id": resource_id, "role": inputs["role"], "name": inputs["name"]}

    def update(self, resource_id, before, after, attributes):
        self._put(after)
        return attributes

    def delete(self, resource_id, attributes):
        role, _, name = resource_id.partition(":")
        ignore_not_found(
            lambda: self.aws.call("iam", "delete-role-policy", "--role-name", role, "--policy-name", name)
        )


class EcrRepositoryHandler(AwsResourceHandler):
    kind = "aws_ecr_repository"
    required = frozenset({"name"})
    force_new = frozenset({"name"})

    @staticmethod
    def _attributes(repository: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": repository["repositoryName"],
            "name": repository["repositoryName"],
            "arn": repository["repositoryArn"],
            "registry_id": repository.get("registryId"),
            "repository_url": repository["repositoryUri"],
        }

    def read(self, resource_id, attributes):
        response = ignore_not_found(
            lambda: self.aws.call("ecr", "describe-repositories", "--repository-names", resource_id)
        )
        if not response or not response.get("repositories"):
            return None
        return self._attributes(response["repositories"][0])

    def create(self, inputs):
        scan = "true" if inputs.get("scan_on_push", True) else "false"
        args = [
            "--repository-name", inputs["name"],
            "--image-tag-mutability", inputs.get("image_tag_mutability", "MUTABLE"),
            "--image-scanning-configuration", f"scanOnPush={scan}",
        ]
        if inputs.get("tags"):
            args += ["--tags", json.dumps(tag_list(inputs["tags"]))]
        response = self.aws.call("ecr", "create-repository", *args)
        attributes = self._attributes(response["repository"])
        return attributes["id"], attributes

    def update(self, resource_id, before, after, attributes):
        if before.get("image_tag_mutability") != after.get("image_tag_mutability"):
            self.aws.call(
                "ecr", "put-image-tag-mutability",
                "--repository-name", resource_id,
                "--image-tag-mutability", after.get("image_tag_mutability", "MUTABLE"),
            )
        if before.get("scan_on_push") != after.get("scan_on_push"):
            scan = "true" if after.get("scan_on_push", True) else "false"
            self.aws.call(
                "ecr", "put-image-scanning-configuration",
                "--repository-name", resource_id,
                "--image-scanning-configuration", f"scanOnPush={scan}",
            )
        return attributes

    def delete(self, resource_id, attributes):
        args = ["--repository-name", resource_id]
        if attributes.get("force_delete", True):
            args.append("--force")
        ignore_not_found(lambda: self.aws.call("ecr", "delete-repository", *args))


# =============================================================================
# CONTAINERS
# =============================================================================

class EcsClusterHandler(AwsResourceHandler):
    kind = "aws_ecs_cluster"
    required = frozenset({"name"})
    force_new = frozenset({"name"})

    def read(self, resource_id, attributes):
        response = self.aws.call("ecs", "describe-clusters", "--clusters", resource_id)
        clusters = [c for c in response.get("clusters") or [] if c.get("status") == "ACTIVE"]
        if not clusters:
            return None
        cluster = clusters[0]
        return {"id": cluster["clusterName"], "name": cluster["clusterName"], "arn": cluster["clusterArn"]}

    @staticmethod
    def _settings(inputs: Dict[str, Any]) -> str:
        value = "enabled" if inputs.get("container_insights") else "disabled"
        return f"name=containerInsights,value={value}"

    def create(self, inputs):
        args = ["--cluster-name", inputs["name"], "--settings", self._settings(inputs)]
        if inputs.get("tags"):
            args += ["--tags", json.dumps(tag_list(inputs["tags"], "key", "value"))]
        response = self.aws.call("ecs", "create-cluster", *args)
        cluster = response["cluster"]
        return cluster["clusterName"], {
            "id": cluster["clusterName"],
            "name": cluster["clusterName"],
            "arn": cluster["clusterArn"],
        }

    def update(self, resource_id, before, after, attributes):
        if before.get("container_insights") != after.get("container_insights"):
            self.aws.call(
                "ecs", "update-cluster-settings",
                "--cluster", resource_id, "--settings", self._settings(after),
            )
        return attributes

    def delete(self, resource_id, attributes):
        ignore_not_found(lambda: self._delete(resource_id))

    @retry_dependency_violation
    def _delete(self, resource_id):
        self.aws.call("ecs", "delete-cluster", "--cluster", resource_id)


class EcsTaskDefinitionHandler(AwsResourceHandler):
    """Task definition revisions are immutable; any change registers a new one."""

    kind = "aws_ecs_task_definition"
    required = frozenset({"family", "container_definitions", "cpu", "memory"})
    supports_update = False

    def read(self, resource_id, attributes):
        response = ignore_not_found(
            lambda: self.aws.call("ecs", "describe-task-definition", "--task-definition", resource_id)
        )
        if not response:
            return None
        definition = response["taskDefinition"]
        if definition.get("status") != "ACTIVE":
            return None
        return {
            "id": definition["taskDefinitionArn"],
            "arn": definition["taskDefinitionArn"],
            "family": definition["family"],
            "revision": definition["revision"],
        }

    def create(self, inputs):
        payload = {
            "family": inputs["family"],
            "networkMode": inputs.get("network_mode", "awsvpc"),
            "requiresCompatibilities": inputs.get("requires_compatibilities", ["FARGATE"]),
            "cpu": str(inputs["cpu"]),
            "memory": str(inputs["memory"]),
            "containerDefinitions": inputs["container_definitions"],
        }
        if inputs.get("execution_role_arn"):
            payload["executionRoleArn"] = inputs["execution_role_arn"]
        if inputs.get("task_role_arn"):
            payload["taskRoleArn"] = inputs["task_role_arn"]
        if inputs.get("tags"):
            payload["tags"] = tag_list(inputs["tags"], "key", "value")
        response = self.aws.call_with_input("ecs", "register-task-definition", payload)
        definition = response["taskDefinition"]
        arn = definition["taskDefinitionArn"]
        return arn, {
            "id": arn,
            "arn": arn,
            "family": definition["family"],
            "revision": definition["revision"],
        }

    def delete(self, resource_id, attributes):
        ignore_not_found(
            lambda: self.aws.call("ecs", "deregister-task-definition", "--task-definition", resource_id)
        )


class EcsServiceHandler(AwsResourceHandler):
    kind = "aws_ecs_service"
    required = frozenset({"name", "cluster", "task_definition"})
    force_new = frozenset({"name", "cluster", "launch_type", "load_balancers"})

    def read(self, resource_id, attributes):
        cluster = attributes.get("cluster")
        if not cluster:
            return None
        response = ignore_not_found(
            lambda: self.aws.call("ecs", "describe-services", "--cluster", cluster, "--services", resource_id)
        )
        if not response:
            return None
        services = [s for s in response.get("services") or [] if s.get("status") == "ACTIVE"]
        if not services:
            return None
        service = services[0]
        return {
            "id": service["serviceName"],
            "name": service["serviceName"],
            "arn": service["serviceArn"],
            "cluster": cluster,
            "task_definition": service.get("taskDefinition"),
            "desired_count": service.get("desiredCount"),
        }

    @staticmethod
    def _network_configuration(inputs: Dict[str, Any]) -> Dict[str, Any]:
        network = inputs.get("network_configuration") or {}
        return {
            "awsvpcConfiguration": {
                "subnets": network.get("subnets", []),
                "securityGroups": network.get("security_groups", []),
                "assignPublicIp": "ENABLED" if network.get("assign_public_ip") else "DISABLED",
            }
        }

    def _wait_stable(self, cluster: str, name: str) -> None:
        try:
            self.aws.wait("ecs", "services-stable", "--cluster", cluster, "--services", name)
        except ProviderCommandError as e:
            raise created_but_not_ready(e, name)

    def create(self, inputs):
        payload = {
            "cluster": inputs["cluster"],
            "serviceName": inputs["name"],
            "taskDefinition": inputs["task_definition"],
            "desiredCount": int(inputs.get("desired_count", 1)),
            "launchType": inputs.get("launch_type", "FARGATE"),
            "networkConfiguration": self._network_configuration(inputs),
            "loadBalancers": [
                {
                    "targetGroupArn": lb["target_group_arn"],
                    "containerName": lb["container_name"],
                    "containerPort": int(lb["container_port"]),
                }
                for lb in inputs.get("load_balancers") or []
            ],
        }
        if inputs.get("health_check_grace_period_seconds") is not None:
            payload["healthCheckGracePeriodSeconds"] = int(inputs["health_check_grace_period_seconds"])
        if inputs.get("tags"):
            payload["tags"] = tag_list(inputs["tags"], "key", "value")

        response = self.aws.call_with_input("ecs", "create-service", payload)
        service = response["service"]
        self._wait_stable(inputs["cluster"], inputs["name"])
        return inputs["name"], {
            "id": inputs["name"],
            "name": inputs["name"],
            "arn": service["serviceArn"],
            "cluster": inputs["cluster"],
            "task_definition": inputs["task_definition"],
            "desired_count": payload["desiredCount"],
        }

    def update(self, resource_id, before, after, attributes):
        payload = {
            "cluster": after["cluster"],
            "service": resource_id,
            "taskDefinition": after["task_definition"],
            "desiredCount": int(after.get("desired_count", 1)),
            "networkConfiguration": self._network_configuration(after),
        }
        if after.get("health_check_grace_period_seconds") is not None:
            payload["healthCheckGracePeriodSeconds"] = int(after["health_check_grace_period_seconds"])
        self.aws.call_with_input("ecs", "update-service", payload)
        self._wait_stable(after["cluster"], resource_id)
        return self.read(resource_id, {**attributes, "cluster": after["cluster"]}) or attributes

    def delete(self, resource_id, attributes):
        cluster = attributes["cluster"]
        scaled = ignore_not_found(
            lambda: self.aws.call(
                "ecs", "update-service", "--cluster", cluster,
                "--service", resource_id, "--desired-count", "0",
            )
        )
        if scaled is None:
            return
        self.aws.call("ecs", "delete-service", "--cluster", cluster, "--service", resource_id, "--force")
        self.aws.wait("ecs", "services-inactive", "--cluster", cluster, "--services", resource_id)


# =============================================================================
# LOAD BALANCING
# =============================================================================

class LoadBalancerHandler(AwsResourceHandler):
    kind = "aws_lb"
    required = frozenset({"name", "subnets"})
    force_new = frozenset({"name", "internal", "load_balancer_type"})

    @staticmethod
    def _attributes(lb: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": lb["LoadBalancerArn"],
            "arn": lb["LoadBalancerArn"],
            "name": lb["LoadBalancerName"],
            "dns_name": lb["DNSName"],
            "zone_id": lb.get("CanonicalHostedZoneId"),
        }

    def read(self, resource_id, attributes):
        response = ignore_not_found(
            lambda: self.aws.call("elbv2", "describe-load-balancers", "--load-balancer-arns", resource_id)
        )
        if not response or not response.get("LoadBalancers"):
            return None
        return self._attributes(response["LoadBalancers"][0])

    def create(self, inputs):
        args = [
            "--name", inputs["name"],
            "--type", inputs.get("load_balancer_type", "application"),
            "--scheme", "internal" if inputs.get("internal") else "internet-facing",
            "--subnets", *inputs["subnets"],
        ]
        if inputs.get("security_groups"):
            args += ["--security-groups", *inputs["security_groups"]]
        if inputs.get("tags"):
            args += ["--tags", json.dumps(tag_list(inputs["tags"]))]
        response = self.aws.call("elbv2", "create-load-balancer", *args)
        attributes = self._attributes(response["LoadBalancers"][0])
        try:
            self.aws.wait("elbv2", "load-balancer-available", "--load-balancer-arns", attributes["arn"])
        except ProviderCommandError as e:
            raise created_but_not_ready(e, attributes["arn"])
        return attributes["arn"], attributes

    def update(self, resource_id, before, after, attributes):
        if before.get("security_groups") != after.get("security_groups"):
            self.aws.call(
                "elbv2", "set-security-groups",
                "--load-balancer-arn", resource_id,
                "--security-groups", *(after.get("security_groups") or []),
            )
        if before.get("subnets") != after.get("subnets"):
            self.aws.call(
                "elbv2", "set-subnets",
                "--load-balancer-arn", resource_id, "--subnets", *after["subnets"],
            )
        return attributes

    def delete(self, resource_id, attributes):
        deleted = ignore_not_found(
            lambda: self.aws.call("elbv2", "delete-load-balancer", "--load-balancer-arn", resource_id)
        )
        if deleted is None:
            return
        self.aws.wait("elbv2", "load-balancers-deleted", "--load-balancer-arns", resource_id)


class TargetGroupHandler(AwsResourceHandler):
    kind = "aws_lb_target_group"
    required = frozenset({"name", "port", "vpc_id"})
    force_new = frozenset({"name", "port", "protocol", "vpc_id", "target_type"})

    @staticmethod
    def _health_check_args(inputs: Dict[str, Any]) -> List[str]:
        check = inputs.get("health_check") or {}
        args = [
            "--health-check-protocol", check.get("protocol", "HTTP"),
            "--health-check-path", check.get("path", "/"),
            "--matcher", f"HttpCode={check.get('matcher', '200')}",
        ]
        options = {
            "interval": "--health-check-interval-seconds",
            "timeout": "--health-check-timeout-seconds",
            "healthy_threshold": "--healthy-threshold-count",
            "unhealthy_threshold": "--unhealthy-threshold-count",
        }
        for key, flag in options.items():
            if check.get(key) is not None:
                args += [flag, str(check[key])]
        return args

    def read(self, resource_id, attributes):
        response = ignore_not_found(
            lambda: self.aws.call("elbv2", "describe-target-groups", "--target-group-arns", resource_id)
        )
        if not response or not response.get("TargetGroups"):
            return None
        group = response["TargetGroups"][0]
        return {"id": group["TargetGroupArn"], "arn": group["TargetGroupArn"], "name": group["TargetGroupName"]}

    def create(self, inputs):
        args = [
            "--name", inputs["name"],
            "--protocol", inputs.get("protocol", "HTTP"),
            "--port", str(inputs["port"]),
            "--vpc-id", inputs["vpc_id"],
            "--target-type", inputs.get("target_type", "ip"),
            *self._health_check_args(inputs),
        ]
        if inputs.get("tags"):
            args += ["--tags", json.dumps(tag_list(inputs["tags"]))]
        response = self.aws.call("elbv2", "create-target-group", *args)
        group = response["TargetGroups"][0]
        arn = group["TargetGroupArn"]
        return arn, {"id": arn, "arn": arn, "name": group["TargetGroupName"]}

    def update(self, resource_id, before, after, attributes):
        if before.get("health_check") != after.get("health_check"):
            self.aws.call(
                "elbv2", "modify-target-group",
                "--target-group-arn", resource_id, *self._health_check_args(after),
            )
        return attributes

    def delete(self, resource_id, attributes):
        ignore_not_found(lambda: self._delete(resource_id))

    @retry_dependency_violation
    def _delete(self, resource_id):
        self.aws.call("elbv2", "delete-target-group", "--target-group-arn", resource_id)


class ListenerHandler(AwsResourceHandler):
    kind = "aws_lb_listener"
    required = frozenset({"load_balancer_arn", "port", "default_action"})
    force_new = frozenset({"load_balancer_arn"})

    @staticmethod
    def _actions(inputs: Dict[str, Any]) -> str:
        action = inputs["default_action"]
        return json.dumps(
            [{"Type": action.get("type", "forward"), "TargetGroupArn": action["target_group_arn"]}]
        )

    def read(self, resource_id, attributes):
        response = ignore_not_found(
            lambda: self.aws.call("elbv2", "describe-listeners", "--listener-arns", resource_id)
        )
        if not response or not response.get("Listeners"):
            return None
        listener = response["Listeners"][0]
        return {"id": listener["ListenerArn"], "arn": listener["ListenerArn"], "port": listener["Port"]}

    def create(self, inputs):
        response = self.aws.call(
            "elbv2", "create-listener",
            "--load-balancer-arn", inputs["load_balancer_arn"],
            "--protocol", inputs.get("protocol", "HTTP"),
            "--port", str(inputs["port"]),
            "--default-actions", self._actions(inputs),
        )
        listener = response["Listeners"][0]
        arn = listener["ListenerArn"]
        return arn, {"id": arn, "arn": arn, "port": listener["Port"]}

    def update(self, resource_id, before, after, attributes):
        self.aws.call(
            "elbv2", "modify-listener",
            "--listener-arn", resource_id,
            "--protocol", after.get("protocol", "HTTP"),
            "--port", str(after["port"]),
            "--default-actions", self._actions(after),
        )
        return {**attributes, "port": after["port"]}

    def delete(self, resource_id, attributes):
        ignore_not_found(
            lambda: self.aws.call("elbv2", "delete-listener", "--listener-arn", resource_id)
        )


AWS_HANDLERS: Tuple[type, ...] = (
    VpcHandler,
    SubnetHandler,
    InternetGatewayHandler,
    RouteTableHandler,
    SecurityGroupHandler,
    DbSubnetGroupHandler,
    DbInstanceHandler,
    SecretHandler,
    SecretVersionHandler,
    LogGroupHandler,
    IamRoleHandler,
    IamRolePolicyAttachmentHandler,
    IamRolePolicyHandler,
    EcrRepositoryHandler,
    EcsClusterHandler,
    EcsTaskDefinitionHandler,
    EcsServiceHandler,
    LoadBalancerHandler,
    TargetGroupHandler,
    ListenerHandler,
)


def aws_handlers(aws: AwsCli) -> List[AwsResourceHandler]:
    return [handler_class(aws) for handler_class in AWS_HANDLERS]
