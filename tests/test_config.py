import os

from provplan.config import Settings, load_settings
from provplan.planner.driver import TimeoutPolicy


class TestSettings:
    def test_defaults_when_no_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        settings = load_settings()
        assert settings == Settings()
        assert settings.provider == "local"
        assert settings.default_timeout is None

    def test_reads_provplan_yaml_from_working_directory(self, tmp_path, monkeypatch):
        (tmp_path / "provplan.yaml").write_text("state_file: infra.state.json\n")
        monkeypatch.chdir(tmp_path)
        assert load_settings().state_file == "infra.state.json"

    def test_timeouts_parsed(self, tmp_path):
        f = tmp_path / "provplan.yaml"
        f.write_text(
            "timeouts:\n"
            "  default: 300\n"
            "  per_kind:\n"
            "    aws_cloudfront_distribution: 1800\n"
        )
        settings = load_settings(str(f))
        assert settings.default_timeout == 300.0
        assert settings.timeouts == {"aws_cloudfront_distribution": 1800.0}

        policy = TimeoutPolicy(settings.default_timeout, settings.timeouts)
        assert policy.for_kind("aws_cloudfront_distribution") == 1800.0
        assert policy.for_kind("aws_s3_bucket") == 300.0

    def test_provider_settings(self, tmp_path):
        f = tmp_path / "provplan.yaml"
        f.write_text(
            "provider: local\n"
            "providers:\n"
            "  local:\n"
            "    region: eu-west-1\n"
            "    fail_kinds: [aws_instance]\n"
        )
        settings = load_settings(str(f))
        assert settings.provider_settings("local") == {
            "region": "eu-west-1", "fail_kinds": ["aws_instance"],
        }
        assert settings.provider_settings("other") == {}

    def test_malformed_yaml_falls_back_to_defaults(self, tmp_path, capsys):
        f = tmp_path / "provplan.yaml"
        f.write_text("timeouts: [unclosed\n")
        assert load_settings(str(f)) == Settings()
        assert "ignoring invalid config" in capsys.readouterr().err

    def test_non_mapping_falls_back_to_defaults(self, tmp_path, capsys):
        f = tmp_path / "provplan.yaml"
        f.write_text("- just\n- a list\n")
        assert load_settings(str(f)) == Settings()
        assert "Warning" in capsys.readouterr().err

    def test_bad_timeout_value_falls_back_to_defaults(self, tmp_path):
        f = tmp_path / "provplan.yaml"
        f.write_text("timeouts:\n  default: soon\n")
        assert load_settings(str(f)) == Settings()

    def test_missing_explicit_file_warns(self, tmp_path, capsys):
        settings = load_settings(os.path.join(str(tmp_path), "nope.yaml"))
        assert settings == Settings()
        assert "Warning" in capsys.readouterr().err
