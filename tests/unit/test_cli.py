"""
Unit tests for the command-line interface.
"""

import pytest

from historize.cli import run_cli
from historize.core.config import EntityConfigLoader
from historize.core.errors import ConfigurationError
from historize.core.timeutil import parse_timestamp
from historize.warehouse import InMemoryTableStore

HOSTS_YAML = """
entities:
  - name: dim_hosts
    kind: historized
    strategy: check
    business_key: [HOST_ID]
    change_timestamp: CREATED_AT
    columns: [HOST_ID, HOST_NAME, CREATED_AT]
    tracked_attributes: [HOST_NAME]
"""


class FakeSpark:
    stopped = False

    def stop(self):
        self.stopped = True


class FakeReader:
    """Stands in for the Spark CSV reader, serving rows per file"""

    rows: dict = {}

    def __init__(self, spark):
        self.spark = spark

    def iter_rows(self, path, options=None, columns=None):
        yield from self.rows[path]


@pytest.fixture
def hosts_config(tmp_path):
    path = tmp_path / "entities.yaml"
    path.write_text(HOSTS_YAML)
    return str(path)


@pytest.fixture
def hosts_file(tmp_path):
    path = tmp_path / "hosts.csv"
    path.write_text("HOST_ID,HOST_NAME,CREATED_AT\n")
    return str(path)


@pytest.fixture
def fake_spark(monkeypatch):
    spark = FakeSpark()
    monkeypatch.setattr(run_cli, "create_spark_session", lambda app_name="historize": spark)
    monkeypatch.setattr(run_cli, "SparkCSVReader", FakeReader)
    return spark


def run_main(argv) -> int:
    with pytest.raises(SystemExit) as exc_info:
        run_cli.main(argv)
    return exc_info.value.code


class TestParsing:
    """Tests for argument helpers"""

    def test_input_overrides(self):
        """Test NAME=PATH pairs are parsed"""
        assert run_cli.parse_input_overrides(["a=x.csv", "b=dir/y=z.csv"]) == {"a": "x.csv", "b": "dir/y=z.csv"}

    @pytest.mark.parametrize("value", ["a", "=x.csv", "a="])
    def test_malformed_input_override(self, value):
        """Test malformed overrides are configuration errors"""
        with pytest.raises(ConfigurationError):
            run_cli.parse_input_overrides([value])

    def test_no_command_prints_help(self, capsys):
        """Test running without a command fails"""
        assert run_main([]) == run_cli.EXIT_FATAL
        assert "usage" in capsys.readouterr().out.lower()


class TestValidateConfig:
    """Tests for the validate-config command"""

    def test_project_configuration_is_valid(self, entities_yaml, capsys):
        """Test the shipped configuration validates"""
        assert run_main(["validate-config", "--config", entities_yaml]) == run_cli.EXIT_OK
        out = capsys.readouterr().out
        assert "silver_bookings" in out
        assert "6 entities OK" in out

    def test_invalid_configuration_fails(self, tmp_path):
        """Test configuration errors exit with status 1"""
        path = tmp_path / "bad.yaml"
        path.write_text("entities:\n  - name: dim_hosts\n    kind: snapshot\n    business_key: [HOST_ID]\n    change_timestamp: TS\n")

        assert run_main(["validate-config", "--config", str(path)]) == run_cli.EXIT_FATAL


class TestRunCommand:
    """Tests for the run command with the in-memory store"""

    def test_successful_run(self, hosts_config, hosts_file, fake_spark, capsys):
        """Test a clean run exits 0 and prints the summary"""
        FakeReader.rows = {hosts_file: [
            {"HOST_ID": "H1", "HOST_NAME": "Ana", "CREATED_AT": "2024-01-01"},
        ]}

        code = run_main([
            "run", "--config", hosts_config, "--store", "memory",
            "--input", f"dim_hosts={hosts_file}",
        ])

        assert code == run_cli.EXIT_OK
        assert fake_spark.stopped
        assert "dim_hosts" in capsys.readouterr().out

    def test_rejects_fail_only_when_asked(self, hosts_config, hosts_file, fake_spark):
        """Test --fail-on-rejects turns rejections into exit status 2"""
        FakeReader.rows = {hosts_file: [
            {"HOST_ID": "H1", "HOST_NAME": "Ana", "CREATED_AT": "2024-01-01"},
            {"HOST_ID": "", "HOST_NAME": "Bo", "CREATED_AT": "2024-01-01"},
        ]}
        argv = ["run", "--config", hosts_config, "--store", "memory", "--input", f"dim_hosts={hosts_file}"]

        assert run_main(argv) == run_cli.EXIT_OK
        assert run_main(argv + ["--fail-on-rejects"]) == run_cli.EXIT_REJECTS

    def test_missing_input_file_is_fatal(self, hosts_config, fake_spark, tmp_path):
        """Test a missing staged file exits with status 1"""
        code = run_main([
            "run", "--config", hosts_config, "--store", "memory",
            "--input", f"dim_hosts={tmp_path / 'absent.csv'}",
        ])

        assert code == run_cli.EXIT_FATAL
        assert fake_spark.stopped

    def test_unknown_entity_is_fatal(self, hosts_config, fake_spark):
        """Test selecting an undeclared entity exits with status 1"""
        assert run_main(["run", "--config", hosts_config, "--store", "memory", "--entity", "gold_obt"]) == run_cli.EXIT_FATAL

    def test_fatal_entity_failure(self, tmp_path, hosts_file, fake_spark, monkeypatch):
        """Test an entity whose state cannot be read exits with status 1"""
        path = tmp_path / "single_attempt.yaml"
        path.write_text(HOSTS_YAML + "    retry:\n      max_attempts: 1\n")
        store = InMemoryTableStore()
        store.fail_next("load_watermark", times=1)
        monkeypatch.setattr(run_cli, "open_store", lambda args, settings: store)
        FakeReader.rows = {hosts_file: [{"HOST_ID": "H1", "HOST_NAME": "Ana", "CREATED_AT": "2024-01-01"}]}

        code = run_main(["run", "--config", str(path), "--input", f"dim_hosts={hosts_file}"])

        assert code == run_cli.EXIT_FATAL


class TestStatusCommand:
    """Tests for the status command"""

    def test_status_lists_watermarks(self, hosts_config, monkeypatch, capsys):
        """Test committed watermarks and rejection counts are shown per entity"""
        store = InMemoryTableStore()
        entity = EntityConfigLoader(hosts_config).load_entity("dim_hosts")
        with store.transaction(entity) as tx:
            tx.save_watermark(parse_timestamp("2024-03-01"))
        monkeypatch.setattr(run_cli, "open_store", lambda args, settings: store)

        assert run_main(["status", "--config", hosts_config]) == run_cli.EXIT_OK

        out = capsys.readouterr().out
        assert "dim_hosts" in out
        assert "2024-03-01T00:00:00+00:00" in out
