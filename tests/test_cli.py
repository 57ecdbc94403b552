import json
import os
import subprocess
import sys

from click.testing import CliRunner

from provplan.cli import apply, plan

FIXTURES = os.path.join(os.path.dirname(__file__), "fixtures")
SAMPLES = os.path.join(os.path.dirname(__file__), os.pardir, "samples")


def test_module_execution():
    """Test that 'python -m provplan' works."""
    result = subprocess.run(
        [sys.executable, "-m", "provplan", "--help"],
        capture_output=True,
        text=True
    )
    assert result.returncode == 0
    assert "provplan" in result.stdout


def _invoke(command, args):
    return CliRunner().invoke(command, args, catch_exceptions=False)


class TestPlanCommand:
    def test_valid_plan_exits_0(self, tmp_path):
        out = str(tmp_path / "plan.json")
        result = _invoke(plan, [os.path.join(FIXTURES, "webstack.tf"), "--format", "json", "-o", out])
        assert result.exit_code == 0
        with open(out) as fh:
            data = json.load(fh)
        assert [row["address"] for row in data["plan"]][:2] == [
            "aws_security_group.web", "aws_iam_role.web",
        ]
        assert all(row["status"] == "planned" for row in data["plan"])
        assert "result" not in data

    def test_cycle_exits_1(self):
        result = _invoke(plan, [os.path.join(FIXTURES, "cycle.yaml")])
        assert result.exit_code == 1

    def test_dangling_exits_1(self):
        result = _invoke(plan, [os.path.join(FIXTURES, "dangling.tf")])
        assert result.exit_code == 1

    def test_no_files_exits_2(self, tmp_path):
        result = _invoke(plan, [str(tmp_path / "missing")])
        assert result.exit_code == 2

    def test_strict_parse_error_exits_2(self, tmp_path):
        bad = tmp_path / "bad.tf"
        bad.write_text("this is not valid hcl {{{")
        result = _invoke(plan, [str(bad), "--strict"])
        assert result.exit_code == 2

    def test_directory_of_mixed_formats(self, tmp_path):
        import shutil
        shutil.copy(os.path.join(FIXTURES, "manifest.yaml"), tmp_path / "a.yaml")
        shutil.copy(os.path.join(FIXTURES, "manifest.json"), tmp_path / "b.json")
        out = str(tmp_path / "plan.json")
        result = _invoke(plan, [str(tmp_path), "--format", "json", "-o", out])
        assert result.exit_code == 0
        with open(out) as fh:
            assert len(json.load(fh)["plan"]) == 6

    def test_markdown_encoding_and_newline(self, tmp_path):
        out = tmp_path / "plan.md"
        result = _invoke(plan, [os.path.join(SAMPLES, "pipeline.tf"), "--output", str(out)])
        assert result.exit_code == 0
        with open(out, "rb") as f:
            content = f.read()
            assert b"\r\n" not in content
            assert b"\n" in content
        text = content.decode("utf-8")
        assert "```mermaid" in text
        assert "aws_instance.app" in text

    def test_ascii_mode(self, tmp_path):
        out = tmp_path / "plan.md"
        _invoke(plan, [os.path.join(FIXTURES, "manifest.yaml"), "--ascii", "-o", str(out)])
        text = out.read_text(encoding="utf-8")
        assert "[PLANNED]" in text
        assert "📝" not in text


class TestApplyCommand:
    def test_apply_success_writes_state(self, tmp_path):
        state = str(tmp_path / "state.json")
        result = _invoke(apply, [
            os.path.join(SAMPLES, "pipeline.tf"), "--state", state, "--summary",
        ])
        assert result.exit_code == 0
        with open(state) as fh:
            data = json.load(fh)
        assert data["version"] == 1
        assert len(data["resources"]) == 12

    def test_second_apply_bumps_version(self, tmp_path):
        state = str(tmp_path / "state.json")
        args = [os.path.join(FIXTURES, "manifest.yaml"), "--state", state, "--summary"]
        _invoke(apply, args)
        _invoke(apply, args)
        with open(state) as fh:
            assert json.load(fh)["version"] == 2

    def test_provider_failure_exits_1_and_keeps_partial_state(self, tmp_path):
        config = tmp_path / "provplan.yaml"
        config.write_text(
            "providers:\n"
            "  local:\n"
            "    fail_kinds: [container_registry]\n"
        )
        state = str(tmp_path / "state.json")
        out = str(tmp_path / "report.json")
        result = _invoke(apply, [
            os.path.join(FIXTURES, "manifest.yaml"),
            "--config", str(config), "--state", state, "--format", "json", "-o", out,
        ])
        assert result.exit_code == 1

        with open(out) as fh:
            report = json.load(fh)
        assert report["result"]["failed"] == "container_registry.backend"
        assert report["result"]["pending"] == ["virtual_machine.app"]
        statuses = [row["status"] for row in report["plan"]]
        assert statuses == ["created", "created", "failed", "pending"]

        with open(state) as fh:
            names = {r["name"] for r in json.load(fh)["resources"]}
        assert names == {"site"}  # storage_bucket.site and cdn_distribution.site

    def test_static_error_makes_no_calls(self, tmp_path):
        state = tmp_path / "state.json"
        result = _invoke(apply, [os.path.join(FIXTURES, "cycle.yaml"), "--state", str(state)])
        assert result.exit_code == 1
        assert not state.exists()

    def test_unknown_provider_exits_2(self, tmp_path):
        result = _invoke(apply, [
            os.path.join(FIXTURES, "manifest.yaml"),
            "--provider", "nope", "--state", str(tmp_path / "s.json"),
        ])
        assert result.exit_code == 2

    def test_markdown_report_shows_point_of_failure(self, tmp_path):
        config = tmp_path / "provplan.yaml"
        config.write_text("providers:\n  local:\n    fail_kinds: [aws_instance]\n")
        out = tmp_path / "apply.md"
        result = _invoke(apply, [
            os.path.join(FIXTURES, "webstack.tf"),
            "--config", str(config), "--state", str(tmp_path / "s.json"), "-o", str(out),
        ])
        assert result.exit_code == 1
        text = out.read_text(encoding="utf-8")
        assert "## Point of Failure" in text
        assert "`aws_instance.web`" in text
        assert "**Step:** 5 of 7" in text


class TestApplyProviderBehavior:
    def test_timeout_flag_overrides_settings(self, tmp_path, monkeypatch):
        import threading
        from provplan import providers
        from provplan.providers.local import LocalProvider

        release = threading.Event()

        class SlowProvider(LocalProvider):
            def create(self, kind, name, attributes):
                release.wait(5)
                return super().create(kind, name, attributes)

        monkeypatch.setitem(providers.PROVIDERS, "slow", SlowProvider)
        config = tmp_path / "provplan.yaml"
        config.write_text("timeouts:\n  default: 60\n")
        out = str(tmp_path / "report.json")
        try:
            result = _invoke(apply, [
                os.path.join(FIXTURES, "manifest.yaml"),
                "--config", str(config), "--provider", "slow", "--timeout", "0.1",
                "--state", str(tmp_path / "s.json"), "--format", "json", "-o", out,
            ])
        finally:
            release.set()
        assert result.exit_code == 1
        with open(out) as fh:
            report = json.load(fh)
        assert report["result"]["failed"] == "storage_bucket.site"
        assert "no response within 0.1s" in report["result"]["error"]

    def test_provider_crash_keeps_created_resources(self, tmp_path, monkeypatch):
        from provplan import providers
        from provplan.providers.local import LocalProvider

        class CrashingProvider(LocalProvider):
            def create(self, kind, name, attributes):
                if kind == "cdn_distribution":
                    raise RuntimeError("connection reset")
                return super().create(kind, name, attributes)

        monkeypatch.setitem(providers.PROVIDERS, "crashing", CrashingProvider)
        state = str(tmp_path / "state.json")
        out = str(tmp_path / "report.json")
        result = _invoke(apply, [
            os.path.join(FIXTURES, "manifest.yaml"), "--provider", "crashing",
            "--state", state, "--format", "json", "-o", out,
        ])
        assert result.exit_code == 1
        with open(state) as fh:
            data = json.load(fh)
        assert data["version"] == 1
        assert [(r["kind"], r["name"]) for r in data["resources"]] == [("storage_bucket", "site")]
        with open(out) as fh:
            report = json.load(fh)
        assert report["result"]["failed"] == "cdn_distribution.site"
        assert "RuntimeError" in report["result"]["error"]

    def test_corrupt_state_record_exits_2(self, tmp_path):
        state = tmp_path / "state.json"
        state.write_text(json.dumps({"format": 1, "resources": [{"name": "a"}]}))
        result = _invoke(apply, [os.path.join(FIXTURES, "manifest.yaml"), "--state", str(state)])
        assert result.exit_code == 2
