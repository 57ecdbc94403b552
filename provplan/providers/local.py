"""
In-process stand-in for a cloud control plane.

Used for rehearsals and CI dry runs: every create succeeds (unless the kind
is listed in fail_kinds) and returns deterministic identifiers and endpoints,
so downstream references can be exercised end to end without credentials.
"""
import hashlib
from typing import Any, Dict, Iterable, Optional

from provplan.models.errors import ProvisioningError
from provplan.models.resource import RealizedResource, ResourceKey
from provplan.providers.base import ProvisioningAPI

# CloudFormation spells GetAtt attributes differently
_CFN_ATTRIBUTE_NAMES = {
    "arn": "Arn",
    "domain_name": "DomainName",
    "bucket_regional_domain_name": "RegionalDomainName",
    "repository_url": "RepositoryUri",
    "public_ip": "PublicIp",
    "private_ip": "PrivateIp",
    "unique_id": "RoleId",
}

# kind keyword → (id prefix, service)
_KIND_HINTS = [
    ("bucket_public_access_block", ("pab", "s3")),
    ("bucket_policy", ("bp", "s3")),
    ("bucket", ("bkt", "s3")),
    ("origin_access_identity", ("oai", "cloudfront")),
    ("cloudfront", ("E", "cloudfront")),
    ("distribution", ("E", "cloudfront")),
    ("ecr", ("repo", "ecr")),
    ("repository", ("repo", "ecr")),
    ("registry", ("repo", "ecr")),
    ("instance_profile", ("aip", "iam")),
    ("role_policy", ("pol", "iam")),
    ("iam_role", ("role", "iam")),
    ("role", ("role", "iam")),
    ("policy", ("pol", "iam")),
    ("security_group", ("sg", "ec2")),
    ("securitygroup", ("sg", "ec2")),
    ("instance", ("i", "ec2")),
    ("virtual_machine", ("i", "ec2")),
]


def _digest(*parts: str) -> str:
    return hashlib.sha1("/".join(parts).encode("utf-8")).hexdigest()


def _hint(kind: str):
    k = kind.lower().replace("::", "_")
    for keyword, hint in _KIND_HINTS:
        if keyword in k:
            return keyword, hint
    return None, ("res", "generic")


class LocalProvider(ProvisioningAPI):
    name = "local"

    def __init__(
        self,
        region: str = "us-east-1",
        account_id: str = "123456789012",
        fail_kinds: Optional[Iterable[str]] = None,
    ):
        self.region = region
        self.account_id = account_id
        self.fail_kinds = set(fail_kinds or [])
        self.calls = []

    def _outputs(self, kind: str, name: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        keyword, (prefix, service) = _hint(kind)
        digest = _digest(self.account_id, self.region, kind, name)
        physical = str(
            attributes.get("bucket")
            or attributes.get("BucketName")
            or attributes.get("RepositoryName")
            or attributes.get("RoleName")
            or attributes.get("name")
            or attributes.get("Name")
            or name
        )
        out: Dict[str, Any] = {
            "id": f"{prefix}-{digest[:17]}",
            "arn": f"arn:aws:{service}:{self.region}:{self.account_id}:{physical}",
        }

        if keyword == "bucket":
            out["id"] = physical
            out["arn"] = f"arn:aws:s3:::{physical}"
            out["bucket_domain_name"] = f"{physical}.s3.amazonaws.com"
            out["bucket_regional_domain_name"] = f"{physical}.s3.{self.region}.amazonaws.com"
            out["domain_name"] = out["bucket_regional_domain_name"]
        elif keyword == "origin_access_identity":
            out["id"] = f"E{digest[:13].upper()}"
            out["iam_arn"] = (
                f"arn:aws:iam::cloudfront:user/CloudFront Origin Access Identity {out['id']}"
            )
            out["cloudfront_access_identity_path"] = f"origin-access-identity/cloudfront/{out['id']}"
        elif keyword in ("cloudfront", "distribution"):
            out["id"] = f"E{digest[:13].upper()}"
            out["arn"] = f"arn:aws:cloudfront::{self.account_id}:distribution/{out['id']}"
            out["domain_name"] = f"d{digest[13:26]}.cloudfront.net"
        elif keyword in ("ecr", "repository", "registry"):
            out["id"] = physical
            out["arn"] = f"arn:aws:ecr:{self.region}:{self.account_id}:repository/{physical}"
            out["repository_url"] = (
                f"{self.account_id}.dkr.ecr.{self.region}.amazonaws.com/{physical}"
            )
        elif keyword in ("iam_role", "role"):
            out["id"] = physical
            out["arn"] = f"arn:aws:iam::{self.account_id}:role/{physical}"
            out["unique_id"] = f"AROA{digest[:17].upper()}"
        elif keyword == "instance_profile":
            out["id"] = physical
            out["arn"] = f"arn:aws:iam::{self.account_id}:instance-profile/{physical}"
        elif keyword == "policy":
            out["arn"] = f"arn:aws:iam::{self.account_id}:policy/{physical}"
        elif keyword in ("instance", "virtual_machine"):
            n = int(digest[:8], 16)
            out["public_ip"] = f"203.0.113.{n % 254 + 1}"
            out["private_ip"] = f"10.0.{(n >> 8) % 256}.{(n >> 16) % 254 + 1}"
            out["public_dns"] = f"ec2-{out['public_ip'].replace('.', '-')}.compute-1.amazonaws.com"

        if kind.startswith("AWS::"):
            for tf_name, cfn_name in _CFN_ATTRIBUTE_NAMES.items():
                if tf_name in out:
                    out[cfn_name] = out[tf_name]

        return out

    def create(self, kind: str, name: str, attributes: Dict[str, Any]) -> RealizedResource:
        self.calls.append((kind, name))
        if kind in self.fail_kinds:
            raise ProvisioningError(ResourceKey(kind, name), f"simulated failure for kind '{kind}'")
        outputs = dict(attributes)
        outputs.update(self._outputs(kind, name, attributes))
        return RealizedResource(kind=kind, name=name, outputs=outputs)
