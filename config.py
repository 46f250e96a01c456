"""
This module defines the data structures for our configuration and loads them.

A deployment is described by two sources: the YAML layout file, which says
which resources to compose and under which logical names, and the Pulumi
stack configuration, which carries sizing, credentials and the name of the
identity stack. Both are read once into a StackConfig that is handed to the
builder explicitly.
"""

import yaml
import pulumi
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

DEFAULT_LAYOUT = "config.yaml"
ADMIN_GROUPS = ["system:masters"]
DEFAULT_ROLE_OUTPUTS = ["infraRoleArn", "appRoleArn"]


@dataclass
class RoleMapping:
    output: str
    groups: List[str] = field(default_factory=lambda: list(ADMIN_GROUPS))
    # Defaults to the role ARN itself when unset.
    username: Optional[str] = None


@dataclass
class IngressPolicy:
    protocol: str = "tcp"
    cidr_blocks: List[str] = field(default_factory=lambda: ["0.0.0.0/0"])
    ipv6_cidr_blocks: List[str] = field(default_factory=lambda: ["::/0"])


@dataclass
class DatabaseConfig:
    username: str
    password: Any
    name: str = "blogDatabase"
    export: str = "blog"
    db_name: str = "blog"
    engine: str = "mysql"
    port: int = 3306
    instance_class: str = "db.t2.small"
    allocated_storage: int = 20
    subnet_group_name: str = "dbSubnetGroup"
    security_group_name: str = "dbSecurityGroup"
    final_snapshot_bucket: str = "blogDatabaseFinalSnapshot"
    ingress: IngressPolicy = field(default_factory=IngressPolicy)


@dataclass
class ClusterConfig:
    name: str = "cluster"
    instance_type: Optional[str] = None
    desired_capacity: Optional[int] = None
    min_size: Optional[int] = None
    max_size: Optional[int] = None
    storage_class: Optional[str] = None
    deploy_dashboard: bool = False
    role_mappings: List[RoleMapping] = field(default_factory=list)


@dataclass
class StackConfig:
    identity_stack_name: str
    cluster: ClusterConfig
    identity_name: str = "identityStack"
    network_name: str = "network"
    use_private_subnets: bool = False
    database: Optional[DatabaseConfig] = None
    tags: Dict[str, str] = field(default_factory=dict)


def load_layout(file_path: str) -> Dict[str, Any]:
    """Load and validate the YAML layout from the given file path."""
    with open(file_path, "r") as file:
        layout = yaml.safe_load(file) or {}

    # Ensure required keys exist
    required_keys = ["network", "cluster"]
    for key in required_keys:
        if key not in layout:
            raise ValueError(f"Missing required configuration key: {key}")

    return layout


def parse_role_mappings(identity: Dict[str, Any]) -> List[RoleMapping]:
    entries = identity.get("roleMappings")
    if entries is None:
        return [RoleMapping(output=name) for name in DEFAULT_ROLE_OUTPUTS]

    mappings = []
    for index, entry in enumerate(entries):
        if not entry or "output" not in entry:
            raise ValueError(f"Role mapping #{index} is missing its 'output' key")
        mappings.append(RoleMapping(
            output=entry["output"],
            groups=list(entry.get("groups", ADMIN_GROUPS)),
            username=entry.get("username"),
        ))
    return mappings


def parse_database(section: Dict[str, Any], stack_settings: pulumi.Config) -> DatabaseConfig:
    username_key = section.get("usernameKey", "blogDatabaseUsername")
    password_key = section.get("passwordKey", "blogDatabasePassword")
    ingress = section.get("ingress") or {}
    defaults = IngressPolicy()

    return DatabaseConfig(
        username=stack_settings.require(username_key),
        password=stack_settings.require_secret(password_key),
        name=section.get("name", "blogDatabase"),
        export=section.get("export", "blog"),
        db_name=section.get("dbName", "blog"),
        engine=section.get("engine", "mysql"),
        port=int(section.get("port", 3306)),
        instance_class=section.get("instanceClass", "db.t2.small"),
        allocated_storage=int(section.get("allocatedStorage", 20)),
        subnet_group_name=section.get("subnetGroupName", "dbSubnetGroup"),
        security_group_name=section.get("securityGroupName", "dbSecurityGroup"),
        final_snapshot_bucket=section.get("finalSnapshotBucket", "blogDatabaseFinalSnapshot"),
        ingress=IngressPolicy(
            protocol=ingress.get("protocol", defaults.protocol),
            cidr_blocks=list(ingress.get("cidrBlocks", defaults.cidr_blocks)),
            ipv6_cidr_blocks=list(ingress.get("ipv6CidrBlocks", defaults.ipv6_cidr_blocks)),
        ),
    )


def check_capacity(cluster: ClusterConfig) -> None:
    bounds = (cluster.min_size, cluster.desired_capacity, cluster.max_size)
    if None in bounds:
        return
    if not cluster.min_size <= cluster.desired_capacity <= cluster.max_size:
        pulumi.log.warn(
            f"Capacity bounds look inconsistent: minSize={cluster.min_size}, "
            f"desiredCapacity={cluster.desired_capacity}, maxSize={cluster.max_size}"
        )


def load_stack_config(layout: Dict[str, Any], stack_settings: pulumi.Config) -> StackConfig:
    """
    Build the StackConfig for this deployment.

    All required stack settings are read here, so a missing one raises
    pulumi.ConfigMissingError before any resource has been described.
    """
    identity = layout.get("identity") or {}
    network = layout.get("network") or {}
    cluster_layout = layout.get("cluster") or {}

    identity_stack_name = stack_settings.require("identityStackName")

    cluster = ClusterConfig(
        name=cluster_layout.get("name", "cluster"),
        instance_type=stack_settings.get("instanceType"),
        desired_capacity=stack_settings.get_int("desiredCapacity"),
        min_size=stack_settings.get_int("minSize"),
        max_size=stack_settings.get_int("maxSize"),
        storage_class=stack_settings.get("storageClass"),
        deploy_dashboard=bool(stack_settings.get_bool("deployDashboard")),
        role_mappings=parse_role_mappings(identity),
    )
    check_capacity(cluster)

    database = None
    if layout.get("database") is not None:
        database = parse_database(layout["database"], stack_settings)

    return StackConfig(
        identity_stack_name=identity_stack_name,
        cluster=cluster,
        identity_name=identity.get("name", "identityStack"),
        network_name=network.get("name", "network"),
        use_private_subnets=bool(network.get("usePrivateSubnets", False)),
        database=database,
        tags={str(k): str(v) for k, v in (layout.get("tags") or {}).items()},
    )
