import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List

import pulumi
import pytest

ROOT = Path(__file__).resolve().parent.parent
DEFAULT_LAYOUT = ROOT / "config.yaml"
CLUSTER_ONLY_LAYOUT = ROOT / "layouts" / "cluster-only.yaml"

IDENTITY_OUTPUTS = {
    "infraRoleArn": "arn:aws:iam::123456789012:role/infra",
    "appRoleArn": "arn:aws:iam::123456789012:role/app",
}
PUBLIC_SUBNETS = ["subnet-pub-a", "subnet-pub-b"]
PRIVATE_SUBNETS = ["subnet-priv-a", "subnet-priv-b"]
VPC_ID = "vpc-0abc"


class StackMocks(pulumi.runtime.Mocks):
    """Records every registered resource and fakes provider-computed outputs."""

    def __init__(self):
        self.created: List[pulumi.runtime.MockResourceArgs] = []

    def new_resource(self, args: pulumi.runtime.MockResourceArgs):
        self.created.append(args)
        outputs = dict(args.inputs)
        if args.typ == "pulumi:pulumi:StackReference":
            outputs["outputs"] = dict(IDENTITY_OUTPUTS)
            outputs["secretOutputNames"] = []
        elif args.typ == "awsx:ec2:Vpc":
            outputs.update(
                vpcId=VPC_ID,
                publicSubnetIds=list(PUBLIC_SUBNETS),
                privateSubnetIds=list(PRIVATE_SUBNETS),
            )
        elif args.typ == "eks:index:Cluster":
            outputs.update(
                kubeconfig={"apiVersion": "v1", "kind": "Config"},
                kubeconfigJson='{"apiVersion": "v1", "kind": "Config"}',
            )
        elif args.typ == "aws:rds/instance:Instance":
            port = int(args.inputs.get("port", 3306))
            outputs["endpoint"] = f"{args.name}.c1x2y3.us-west-2.rds.amazonaws.com:{port}"
        return [f"{args.name}_id", outputs]

    def call(self, args: pulumi.runtime.MockCallArgs):
        return {}

    def named(self, name: str) -> pulumi.runtime.MockResourceArgs:
        matches = [r for r in self.created if r.name == name]
        assert len(matches) == 1, f"expected one resource named {name}, got {len(matches)}"
        return matches[0]

    def of_type(self, prefix: str) -> List[pulumi.runtime.MockResourceArgs]:
        return [r for r in self.created if r.typ.startswith(prefix)]


@dataclass
class MockedStack:
    project: str
    mocks: StackMocks

    def configure(self, **values: Any) -> None:
        for key, value in values.items():
            if isinstance(value, bool):
                value = "true" if value else "false"
            pulumi.runtime.set_config(f"{self.project}:{key}", str(value))

    def settings(self) -> pulumi.Config:
        return pulumi.Config(self.project)


BASE_SETTINGS: Dict[str, Any] = {
    "identityStackName": "acme/identity/dev",
    "instanceType": "t3.medium",
    "desiredCapacity": 2,
    "minSize": 1,
    "maxSize": 3,
    "storageClass": "gp2",
    "blogDatabaseUsername": "blogadmin",
    "blogDatabasePassword": "s3cr3t-pass",
}


@pytest.fixture
def stack() -> MockedStack:
    # A fresh project name per test keeps stack settings from leaking between tests.
    project = f"eksblog{uuid.uuid4().hex[:8]}"
    mocks = StackMocks()
    pulumi.runtime.set_mocks(mocks, project=project, stack="test", preview=False)
    return MockedStack(project=project, mocks=mocks)
