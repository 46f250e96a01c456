import pulumi
import pulumi_aws as aws
import pulumi_awsx as awsx
import pulumi_eks as eks
import pulumi_kubernetes as k8s
from typing import Any, Dict, List, Optional, Tuple

from config import DatabaseConfig, StackConfig

DASHBOARD_CHART = "kubernetes-dashboard"
DASHBOARD_REPO = "https://kubernetes.github.io/dashboard/"
DASHBOARD_NAMESPACE = "kubernetes-dashboard"


def split_endpoint(endpoint: str) -> Tuple[str, Optional[int]]:
    """Split an RDS ``address:port`` endpoint into its host and port.

    The port is only stripped when the text after the last colon is numeric;
    anything else is returned unchanged with no port.
    """
    host, sep, port = endpoint.rpartition(":")
    if sep and host and port.isdigit():
        return host, int(port)
    return endpoint, None


def endpoint_host(endpoint: str) -> str:
    return split_endpoint(endpoint)[0]


class EKSStackBuilder:
    def __init__(self, stack_config: StackConfig):
        self.config = stack_config
        self.resources: Dict[str, pulumi.Resource] = {}
        self.outputs: Dict[str, Any] = {}
        self.role_arns: Dict[str, pulumi.Output] = {}
        self.subnet_ids: Optional[pulumi.Output] = None

    def _tags(self) -> Optional[Dict[str, str]]:
        return dict(self.config.tags) if self.config.tags else None

    def _register(self, key: str, resource: pulumi.Resource, resource_type: str) -> pulumi.Resource:
        self.resources[key] = resource
        pulumi.log.info(f"Created resource: {key} ({resource_type})")
        return resource

    def resolve_identity(self) -> Dict[str, pulumi.Output]:
        identity_stack = pulumi.StackReference(
            self.config.identity_name,
            stack_name=self.config.identity_stack_name,
        )
        self._register("identity", identity_stack, "pulumi:StackReference")
        for mapping in self.config.cluster.role_mappings:
            if mapping.output not in self.role_arns:
                self.role_arns[mapping.output] = identity_stack.require_output(mapping.output)
        return self.role_arns

    def build_network(self) -> awsx.ec2.Vpc:
        network = awsx.ec2.Vpc(self.config.network_name, tags=self._tags())
        if self.config.use_private_subnets:
            self.subnet_ids = network.private_subnet_ids
        else:
            self.subnet_ids = network.public_subnet_ids
        return self._register("network", network, "awsx.ec2.Vpc")

    def role_mappings(self) -> List[eks.RoleMappingArgs]:
        mappings = []
        for mapping in self.config.cluster.role_mappings:
            role_arn = self.role_arns[mapping.output]
            mappings.append(eks.RoleMappingArgs(
                role_arn=role_arn,
                username=mapping.username if mapping.username else role_arn,
                groups=mapping.groups,
            ))
        return mappings

    def build_cluster(self) -> eks.Cluster:
        settings = self.config.cluster
        network = self.resources["network"]
        cluster = eks.Cluster(
            settings.name,
            vpc_id=network.vpc_id,
            subnet_ids=self.subnet_ids,
            instance_type=settings.instance_type,
            desired_capacity=settings.desired_capacity,
            min_size=settings.min_size,
            max_size=settings.max_size,
            storage_classes=settings.storage_class,
            role_mappings=self.role_mappings(),
            tags=self._tags(),
        )
        self._register("cluster", cluster, "eks.Cluster")
        self.outputs["kubeconfig"] = cluster.kubeconfig
        return cluster

    def build_dashboard(self, cluster: eks.Cluster) -> k8s.helm.v3.Release:
        provider = k8s.Provider(
            f"{self.config.cluster.name}-k8s",
            kubeconfig=cluster.kubeconfig_json,
        )
        self._register("k8sProvider", provider, "kubernetes.Provider")
        dashboard = k8s.helm.v3.Release(
            DASHBOARD_CHART,
            k8s.helm.v3.ReleaseArgs(
                chart=DASHBOARD_CHART,
                namespace=DASHBOARD_NAMESPACE,
                create_namespace=True,
                repository_opts=k8s.helm.v3.RepositoryOptsArgs(repo=DASHBOARD_REPO),
            ),
            opts=pulumi.ResourceOptions(provider=provider, depends_on=[cluster]),
        )
        return self._register("dashboard", dashboard, "kubernetes.helm.v3.Release")

    def build_database(self, database: DatabaseConfig) -> aws.rds.Instance:
        network = self.resources["network"]
        tags = self._tags()

        subnet_group = aws.rds.SubnetGroup(
            database.subnet_group_name.lower(),
            subnet_ids=self.subnet_ids,
            tags=tags,
        )
        self._register("dbSubnetGroup", subnet_group, "aws.rds.SubnetGroup")

        # One port value drives both the ingress rule and the instance.
        security_group = aws.ec2.SecurityGroup(
            database.security_group_name.lower(),
            vpc_id=network.vpc_id,
            ingress=[aws.ec2.SecurityGroupIngressArgs(
                from_port=database.port,
                to_port=database.port,
                protocol=database.ingress.protocol,
                cidr_blocks=database.ingress.cidr_blocks,
                ipv6_cidr_blocks=database.ingress.ipv6_cidr_blocks,
            )],
            tags=tags,
        )
        self._register("dbSecurityGroup", security_group, "aws.ec2.SecurityGroup")

        # The bucket id stands in as the final snapshot identifier.
        snapshot_bucket = aws.s3.Bucket(database.final_snapshot_bucket.lower(), tags=tags)
        self._register("dbFinalSnapshot", snapshot_bucket, "aws.s3.Bucket")

        instance = aws.rds.Instance(
            database.name.lower(),
            engine=database.engine,
            port=database.port,
            db_name=database.db_name,
            username=database.username,
            password=database.password,
            instance_class=database.instance_class,
            allocated_storage=database.allocated_storage,
            vpc_security_group_ids=[security_group.id],
            db_subnet_group_name=subnet_group.id,
            final_snapshot_identifier=snapshot_bucket.id,
            tags=tags,
        )
        self._register("database", instance, "aws.rds.Instance")

        self.outputs["dbConfig"] = {
            database.export: {
                "client": database.engine,
                "host": instance.endpoint.apply(endpoint_host),
                "port": database.port,
                "user": instance.username,
                "password": instance.password,
                "database": instance.db_name,
            },
        }
        return instance

    def build(self):
        self.resolve_identity()
        self.build_network()
        cluster = self.build_cluster()
        if self.config.cluster.deploy_dashboard:
            self.build_dashboard(cluster)
        if self.config.database is not None:
            self.build_database(self.config.database)
        else:
            pulumi.log.info("No database declared in layout; skipping database group.")
