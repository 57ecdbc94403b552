"""
Resolver tests: ordering, determinism and static error detection.
"""
import os
import random

import pytest

from provplan.models.errors import CycleDetected, DanglingReference, DuplicateResource
from provplan.models.resource import Reference, Resource, ResourceKey, Template
from provplan.planner.resolver import resolve

FIXTURES = os.path.join(os.path.dirname(__file__), "fixtures")
SAMPLES = os.path.join(os.path.dirname(__file__), os.pardir, "samples")


def _res(name, *refs, kind="node", depends_on=()):
    """Build a resource whose attributes reference node.<target>.<attr> strings like 'b.x'."""
    attributes = {}
    for i, ref in enumerate(refs):
        target, _, attr = ref.partition(".")
        attributes[f"ref{i}"] = Reference("node", target, (attr,) if attr else ())
    return Resource(
        kind=kind,
        name=name,
        attributes=attributes,
        depends_on=[ResourceKey("node", d) for d in depends_on],
    )


def _names(plan):
    return [r.name for r in plan]


def _assert_topological(plan):
    for r in plan:
        for dep in r.dependencies():
            assert plan.position(dep) < plan.position(r.key), (
                f"{r.address} placed before its dependency {dep.address}"
            )


class TestOrdering:
    def test_reference_orders_target_first(self):
        plan = resolve([_res("a"), _res("b", "a.id")])
        assert _names(plan) == ["a", "b"]

    def test_reverse_declaration_still_ordered(self):
        plan = resolve([_res("b", "a.id"), _res("a")])
        assert _names(plan) == ["a", "b"]

    def test_ties_broken_by_declaration_order(self):
        plan = resolve([_res("c"), _res("a"), _res("b")])
        assert _names(plan) == ["c", "a", "b"]

    def test_earliest_declared_ready_resource_first(self):
        # d becomes ready only after a; b and c were ready from the start
        plan = resolve([_res("d", "a.id"), _res("a"), _res("c"), _res("b")])
        assert _names(plan) == ["a", "d", "c", "b"]

    def test_explicit_depends_on(self):
        plan = resolve([_res("web", depends_on=["db"]), _res("db")])
        assert _names(plan) == ["db", "web"]
        assert plan.dependencies(ResourceKey("node", "web")) == [ResourceKey("node", "db")]

    def test_template_reference_counts(self):
        a = _res("a")
        b = Resource("node", "b", {"url": Template(("http://", Reference("node", "a", ("ip",))))})
        assert _names(resolve([b, a])) == ["a", "b"]

    def test_diamond(self):
        plan = resolve([
            _res("top", "left.id", "right.id"),
            _res("left", "base.id"),
            _res("right", "base.id"),
            _res("base"),
        ])
        assert _names(plan) == ["base", "left", "right", "top"]
        _assert_topological(plan)

    def test_duplicate_reference_single_edge(self):
        plan = resolve([_res("a"), _res("b", "a.id", "a.arn")])
        assert plan.dependencies(ResourceKey("node", "b")) == [ResourceKey("node", "a")]

    def test_dependents(self):
        plan = resolve([_res("a"), _res("b", "a.id"), _res("c", "a.id")])
        assert plan.dependents(ResourceKey("node", "a")) == [
            ResourceKey("node", "b"), ResourceKey("node", "c")
        ]

    def test_empty_set(self):
        plan = resolve([])
        assert len(plan) == 0

    def test_same_name_different_kind_are_distinct(self):
        bucket = Resource("bucket", "site")
        cdn = Resource("cdn", "site", {"origin": Reference("bucket", "site", ("domain",))})
        plan = resolve([cdn, bucket])
        assert [r.address for r in plan] == ["bucket.site", "cdn.site"]


class TestProperties:
    def _random_dag(self, seed, size=25):
        rng = random.Random(seed)
        resources = []
        for i in range(size):
            refs = [f"n{j}.id" for j in range(i) if rng.random() < 0.2]
            resources.append(_res(f"n{i}", *refs))
        rng.shuffle(resources)
        return resources

    @pytest.mark.parametrize("seed", range(10))
    def test_every_dependency_precedes_dependent(self, seed):
        plan = resolve(self._random_dag(seed))
        assert len(plan) == 25
        _assert_topological(plan)

    @pytest.mark.parametrize("seed", range(5))
    def test_deterministic(self, seed):
        resources = self._random_dag(seed)
        assert plan_keys(resolve(resources)) == plan_keys(resolve(list(resources)))

    def test_input_not_mutated(self):
        resources = [_res("b", "a.id"), _res("a")]
        resolve(resources)
        assert _names(resources) == ["b", "a"]


def plan_keys(plan):
    return [r.key for r in plan]


class TestStaticErrors:
    def test_two_node_cycle(self):
        with pytest.raises(CycleDetected) as exc:
            resolve([_res("a", "b.x"), _res("b", "a.y")])
        assert exc.value.cycle == [ResourceKey("node", "a"), ResourceKey("node", "b")]
        assert "node.a -> node.b -> node.a" in str(exc.value)

    def test_cycle_starts_at_earliest_declared_member(self):
        with pytest.raises(CycleDetected) as exc:
            resolve([_res("z"), _res("c", "b.id"), _res("b", "a.id"), _res("a", "c.id")])
        assert [k.name for k in exc.value.cycle] == ["c", "b", "a"]

    def test_self_reference(self):
        with pytest.raises(CycleDetected) as exc:
            resolve([_res("a", "a.id")])
        assert exc.value.cycle == [ResourceKey("node", "a")]

    def test_cycle_reported_past_acyclic_prefix(self):
        # d depends on the cycle but is not part of it
        with pytest.raises(CycleDetected) as exc:
            resolve([_res("d", "a.id"), _res("a", "b.id"), _res("b", "a.id"), _res("e")])
        assert {k.name for k in exc.value.cycle} == {"a", "b"}

    def test_cycle_through_depends_on(self):
        with pytest.raises(CycleDetected):
            resolve([_res("a", depends_on=["b"]), _res("b", "a.id")])

    def test_dangling_reference(self):
        with pytest.raises(DanglingReference) as exc:
            resolve([_res("a", "c.id")])
        assert exc.value.source == ResourceKey("node", "a")
        assert exc.value.target == ResourceKey("node", "c")

    def test_dangling_checked_before_cycles(self):
        with pytest.raises(DanglingReference):
            resolve([_res("a", "b.id"), _res("b", "a.id", "missing.id")])

    def test_duplicate_identity(self):
        with pytest.raises(DuplicateResource) as exc:
            resolve([_res("a"), _res("a")])
        assert exc.value.key == ResourceKey("node", "a")


class TestFixtures:
    def test_webstack_order(self):
        from provplan.parsers import terraform
        plan = resolve(terraform.parse_file(os.path.join(FIXTURES, "webstack.tf")))
        assert [r.address for r in plan] == [
            "aws_security_group.web",
            "aws_iam_role.web",
            "aws_iam_instance_profile.web",
            "aws_ecr_repository.api",
            "aws_instance.web",
            "aws_s3_bucket.logs",
            "aws_s3_bucket_policy.logs",
        ]

    def test_cloudformation_order(self):
        from provplan.parsers import cloudformation
        plan = resolve(cloudformation.parse_file(os.path.join(FIXTURES, "stack.yaml")))
        assert [r.name for r in plan] == [
            "SiteBucket", "Distribution", "BucketPolicy", "BackendRepository", "AppRole",
        ]

    def test_manifest_order(self):
        from provplan.parsers import manifest
        plan = resolve(manifest.parse_file(os.path.join(FIXTURES, "manifest.yaml")))
        assert [r.address for r in plan] == [
            "storage_bucket.site",
            "cdn_distribution.site",
            "container_registry.backend",
            "virtual_machine.app",
        ]

    def test_manifest_cycle(self):
        from provplan.parsers import manifest
        with pytest.raises(CycleDetected):
            resolve(manifest.parse_file(os.path.join(FIXTURES, "cycle.yaml")))

    def test_terraform_dangling(self):
        from provplan.parsers import terraform
        with pytest.raises(DanglingReference) as exc:
            resolve(terraform.parse_file(os.path.join(FIXTURES, "dangling.tf")))
        assert exc.value.target == ResourceKey("aws_s3_bucket", "missing")

    def test_sample_pipeline_is_valid(self):
        from provplan.parsers import terraform
        plan = resolve(terraform.parse_file(os.path.join(SAMPLES, "pipeline.tf")))
        assert len(plan) == 12
        _assert_topological(plan)
        assert plan.keys()[-1] == ResourceKey("aws_instance", "app")
