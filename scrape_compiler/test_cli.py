"""
Tests for the command-line interface.
"""

import gzip
from pathlib import Path

import yaml
from click.testing import CliRunner

from scrape_compiler.cli import cli

TESTDATA = Path(__file__).parent / "testdata"
COMPLETE = str(TESTDATA / "complete_manifests.yaml")
MISSING = str(TESTDATA / "missing_credentials_manifests.yaml")


def expected(name: str) -> str:
    return (TESTDATA / f"{name}.yaml").read_text(encoding="utf-8")


class TestCompileCommand:
    """Tests for `scrape-compiler compile`."""

    def test_writes_document_to_file(self, tmp_path):
        output = tmp_path / "vmagent.yaml"
        result = CliRunner().invoke(cli, [
            "compile", "-f", COMPLETE, "--owner", "default/test", "-o", str(output),
        ])
        assert result.exit_code == 0, result.output
        assert output.read_text(encoding="utf-8") == expected("complete")

    def test_writes_document_to_stdout(self):
        result = CliRunner().invoke(cli, ["compile", "-f", COMPLETE, "--owner", "default/test"])
        assert result.exit_code == 0, result.output
        assert expected("complete") in result.output

    def test_persists_and_lays_out_tls_files(self, tmp_path):
        result = CliRunner().invoke(cli, [
            "compile", "-f", COMPLETE, "--owner", "default/test",
            "-o", str(tmp_path / "out.yaml"),
            "--persist-dir", str(tmp_path / "persist"),
            "--tls-dir", str(tmp_path / "tls"),
        ])
        assert result.exit_code == 0, result.output

        stored = tmp_path / "persist" / "default" / "test" / "vmagent.yaml.gz"
        assert gzip.decompress(stored.read_bytes()).decode("utf-8") == expected("complete")
        assert sorted(p.name for p in (tmp_path / "tls").iterdir()) == [
            "default_access-creds_ca",
            "default_access-creds_cert",
            "default_access-creds_key",
        ]

    def test_dropped_endpoints_are_reported(self, tmp_path):
        output = tmp_path / "vmagent.yaml"
        result = CliRunner().invoke(cli, [
            "compile", "-f", MISSING, "--owner", "default/test", "-o", str(output),
        ])
        assert result.exit_code == 0, result.output
        assert output.read_text(encoding="utf-8") == expected("missing_credentials")
        assert "Dropped" in result.output

    def test_scrape_interval_option(self, tmp_path):
        output = tmp_path / "vmagent.yaml"
        result = CliRunner().invoke(cli, [
            "compile", "-f", COMPLETE, "--owner", "default/test",
            "-o", str(output), "--scrape-interval", "1m",
        ])
        assert result.exit_code == 0, result.output
        assert output.read_text(encoding="utf-8").startswith("global:\n  scrape_interval: 1m\n")

    def test_invalid_owner(self):
        result = CliRunner().invoke(cli, ["compile", "-f", COMPLETE, "--owner", "test"])
        assert result.exit_code == 2
        assert "namespace/name" in result.output

    def test_invalid_config_file(self, tmp_path):
        config = tmp_path / "config.yaml"
        config.write_text("workers: 0\n")
        result = CliRunner().invoke(cli, [
            "-c", str(config), "compile", "-f", COMPLETE, "--owner", "default/test",
        ])
        assert result.exit_code == 1
        assert "Validation Error" in result.output

    def test_invalid_manifest(self, tmp_path):
        manifest = tmp_path / "bad.yaml"
        manifest.write_text("kind: VMProbe\nmetadata:\n  name: p\nspec: {}\n")
        result = CliRunner().invoke(cli, ["compile", "-f", str(manifest), "--owner", "default/test"])
        assert result.exit_code == 1
        assert "Validation Error" in result.output

    def test_unparsable_yaml(self, tmp_path):
        manifest = tmp_path / "bad.yaml"
        manifest.write_text("kind: [VMProbe\n")
        result = CliRunner().invoke(cli, ["compile", "-f", str(manifest), "--owner", "default/test"])
        assert result.exit_code == 1
        assert "Validation Error" in result.output

    def test_secret_with_invalid_base64(self, tmp_path):
        manifest = tmp_path / "secret.yaml"
        manifest.write_text(
            "kind: Secret\nmetadata:\n  name: creds\ndata:\n  token: not base64!\n"
        )
        result = CliRunner().invoke(cli, ["compile", "-f", str(manifest), "--owner", "default/test"])
        assert result.exit_code == 1
        assert "Validation Error" in result.output

    def test_non_numeric_workers_from_environment(self):
        result = CliRunner().invoke(
            cli, ["compile", "-f", COMPLETE, "--owner", "default/test"],
            env={"SCRAPE_COMPILER_WORKERS": "abc"},
        )
        assert result.exit_code == 1
        assert "Validation Error" in result.output



class TestValidateCommand:
    """Tests for `scrape-compiler validate`."""

    def test_valid_manifests(self):
        result = CliRunner().invoke(cli, ["validate", "-f", COMPLETE])
        assert result.exit_code == 0, result.output
        assert "Manifest Validation" in result.output

    def test_invalid_manifest_fails(self, tmp_path):
        manifest = tmp_path / "bad.yaml"
        manifest.write_text("kind: VMPodScrape\nmetadata:\n  name: p\nspec:\n  sampleLimit: -5\n")
        result = CliRunner().invoke(cli, ["validate", "-f", str(manifest)])
        assert result.exit_code == 1


class TestServiceScrapeCommand:
    """Tests for `scrape-compiler service-scrape`."""

    def test_derives_scrapes_from_services(self, tmp_path):
        services = tmp_path / "services.yaml"
        services.write_text(
            "apiVersion: v1\n"
            "kind: Service\n"
            "metadata:\n"
            "  name: vmagent-main\n"
            "  namespace: monitoring\n"
            "spec:\n"
            "  selector:\n"
            "    app: vmagent\n"
            "  ports:\n"
            "  - name: http\n"
            "    port: 8429\n"
            "  - name: debug\n"
            "    port: 6060\n",
            encoding="utf-8",
        )
        result = CliRunner().invoke(cli, [
            "service-scrape", "-f", str(services), "--path", "/metrics", "--port", "http",
        ])
        assert result.exit_code == 0, result.output
        start = result.output.index("apiVersion:")
        scrape = yaml.safe_load(result.output[start:])
        assert scrape["kind"] == "VMServiceScrape"
        assert scrape["metadata"] == {"name": "vmagent-main", "namespace": "monitoring"}
        assert scrape["spec"]["endpoints"] == [{"port": "http", "path": "/metrics"}]

    def test_no_services(self):
        result = CliRunner().invoke(cli, ["service-scrape", "-f", COMPLETE])
        assert result.exit_code == 1
        assert "no Service manifests" in result.output


def test_version():
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output
