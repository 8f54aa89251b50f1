"""Tests for CLI commands."""

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from cpu_energy_exporter.cli import main
from cpu_energy_exporter.clock import ClockRate
from cpu_energy_exporter.config import Config
from cpu_energy_exporter.energy import PowerModel
from cpu_energy_exporter.errors import ClockRateError, ExporterBindError, PowerModelError
from tests.conftest import make_proc, write_stat


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    """Location of a config file that does not exist yet."""
    return tmp_path / "config" / "config.toml"


@pytest.fixture
def mock_run_daemon():
    """Replace the daemon with a coroutine mock; logging is left untouched."""
    with (
        patch("cpu_energy_exporter.daemon.run_daemon", new_callable=AsyncMock) as mock_run,
        patch("cpu_energy_exporter.logging.configure"),
    ):
        yield mock_run


def _write_config(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


class TestRunCommand:
    """Tests for the run command."""

    def test_run_defaults(self, runner, config_path, mock_run_daemon) -> None:
        """run with no file and no flags uses the built-in defaults."""
        result = runner.invoke(main, ["run", "--config", str(config_path)], env={})

        assert result.exit_code == 0
        cfg = mock_run_daemon.call_args.args[0]
        assert cfg.exporter.metrics_address == "127.0.0.1:9090"
        assert cfg.sampling.collection_interval == 100
        assert cfg.power.average_die_power == 35.0
        assert "Exporter stopped" in result.output

    def test_flags_override_file(self, runner, config_path, mock_run_daemon) -> None:
        """Command-line flags win over values from the config file."""
        _write_config(config_path, "[sampling]\ncollection_interval = 500\n")

        result = runner.invoke(
            main,
            [
                "run",
                "--config",
                str(config_path),
                "-c",
                "250",
                "-m",
                "0.0.0.0:9100",
                "--average-die-power=65",
            ],
        )

        assert result.exit_code == 0
        cfg = mock_run_daemon.call_args.args[0]
        assert cfg.sampling.collection_interval == 250
        assert cfg.exporter.metrics_address == "0.0.0.0:9100"
        assert cfg.power.average_die_power == 65.0

    def test_env_overrides_file(self, runner, config_path, mock_run_daemon) -> None:
        """Environment variables win over values from the config file."""
        _write_config(config_path, "[power]\naverage_die_power = 15.0\n")

        result = runner.invoke(
            main,
            ["run", "--config", str(config_path)],
            env={"AVERAGE_DIE_POWER": "45", "METRICS_ADDRESS": "127.0.0.1:9200"},
        )

        assert result.exit_code == 0
        cfg = mock_run_daemon.call_args.args[0]
        assert cfg.power.average_die_power == 45.0
        assert cfg.exporter.metrics_address == "127.0.0.1:9200"

    def test_flag_overrides_env(self, runner, config_path, mock_run_daemon) -> None:
        """A flag wins over its environment variable."""
        result = runner.invoke(
            main,
            ["run", "--config", str(config_path), "-c", "50"],
            env={"COLLECTION_INTERVAL": "75"},
        )

        assert result.exit_code == 0
        assert mock_run_daemon.call_args.args[0].sampling.collection_interval == 50

    def test_config_path_from_env(self, runner, config_path, mock_run_daemon) -> None:
        """The config file location can come from the environment."""
        _write_config(config_path, '[exporter]\nmetrics_address = "127.0.0.1:9300"\n')

        result = runner.invoke(
            main, ["run"], env={"CPU_ENERGY_EXPORTER_CONFIG": str(config_path)}
        )

        assert result.exit_code == 0
        assert mock_run_daemon.call_args.args[0].exporter.metrics_address == "127.0.0.1:9300"

    def test_invalid_config_file_exits_1(self, runner, config_path, mock_run_daemon) -> None:
        """An invalid config value stops the process before startup."""
        _write_config(config_path, "[power]\naverage_die_power = -1.0\n")

        result = runner.invoke(main, ["run", "--config", str(config_path)])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output
        mock_run_daemon.assert_not_called()

    def test_wrong_type_in_file_exits_1(self, runner, config_path, mock_run_daemon) -> None:
        """A string where a number belongs stops the process before startup."""
        _write_config(config_path, '[sampling]\ncollection_interval = "fast"\n')

        result = runner.invoke(main, ["run", "--config", str(config_path)])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output
        assert "collection_interval" in result.output
        mock_run_daemon.assert_not_called()

    def test_invalid_flag_value_exits_1(self, runner, config_path, mock_run_daemon) -> None:
        """A non-positive die power from the command line is rejected."""
        result = runner.invoke(
            main, ["run", "--config", str(config_path), "--average-die-power=0"]
        )

        assert result.exit_code == 1
        mock_run_daemon.assert_not_called()

    def test_invalid_address_exits_1(self, runner, config_path, mock_run_daemon) -> None:
        """A metrics address without a port is rejected."""
        result = runner.invoke(main, ["run", "--config", str(config_path), "-m", "localhost"])

        assert result.exit_code == 1
        assert "metrics_address" in result.output
        mock_run_daemon.assert_not_called()

    @pytest.mark.parametrize(
        "error",
        [
            ClockRateError("sysconf(SC_CLK_TCK) failed"),
            PowerModelError("physical core count unavailable"),
            ExporterBindError("address in use"),
        ],
    )
    def test_startup_failure_exits_1(self, runner, config_path, mock_run_daemon, error) -> None:
        """Any startup failure terminates with a nonzero status."""
        mock_run_daemon.side_effect = error

        result = runner.invoke(main, ["run", "--config", str(config_path)])

        assert result.exit_code == 1
        assert "Startup failed" in result.output
        assert str(error) in result.output


class TestSampleCommand:
    """Tests for the sample command."""

    def test_sample_prints_heaviest_first(self, runner, config_path, tmp_path) -> None:
        """sample runs one pass and lists processes by CPU seconds."""
        proc_root = tmp_path / "proc"
        write_stat(proc_root, 10, utime=500, stime=500)
        write_stat(proc_root, 20, utime=600_000, stime=400_000)
        _write_config(config_path, f'[sampling]\nproc_root = "{proc_root}"\n')
        procs = [
            make_proc(10, "light", ["/usr/bin/light"]),
            make_proc(20, "heavy", ["/usr/bin/heavy", "--busy"]),
            make_proc(30, "vanished", ["/usr/bin/vanished"]),
        ]

        with (
            patch("cpu_energy_exporter.clock.ClockRate.resolve", return_value=ClockRate(100)),
            patch(
                "cpu_energy_exporter.energy.PowerModel.resolve",
                return_value=PowerModel(average_die_power=35.0, num_physical_cores=7),
            ),
            patch("cpu_energy_exporter.collector.psutil.process_iter", return_value=procs),
            patch("cpu_energy_exporter.logging.configure"),
        ):
            result = runner.invoke(main, ["sample", "--config", str(config_path)])

        assert result.exit_code == 0
        assert "3 processes, 1 unreadable, 5.00 W/core" in result.output
        lines = result.output.splitlines()
        heavy = next(i for i, line in enumerate(lines) if "heavy" in line)
        light = next(i for i, line in enumerate(lines) if "light" in line)
        assert heavy < light
        assert "10000" in lines[heavy]
        assert "13" in lines[heavy]

    def test_sample_limit(self, runner, config_path, tmp_path) -> None:
        """--limit caps the number of rows."""
        proc_root = tmp_path / "proc"
        for pid in range(1, 6):
            write_stat(proc_root, pid, utime=pid * 100, stime=0)
        _write_config(config_path, f'[sampling]\nproc_root = "{proc_root}"\n')
        procs = [make_proc(pid, f"worker{pid}", [f"worker{pid}"]) for pid in range(1, 6)]

        with (
            patch("cpu_energy_exporter.clock.ClockRate.resolve", return_value=ClockRate(100)),
            patch(
                "cpu_energy_exporter.energy.PowerModel.resolve",
                return_value=PowerModel(average_die_power=35.0, num_physical_cores=7),
            ),
            patch("cpu_energy_exporter.collector.psutil.process_iter", return_value=procs),
            patch("cpu_energy_exporter.logging.configure"),
        ):
            result = runner.invoke(main, ["sample", "--config", str(config_path), "-n", "2"])

        assert result.exit_code == 0
        assert "worker5" in result.output
        assert "worker4" in result.output
        assert "worker3" not in result.output

    def test_sample_startup_failure(self, runner, config_path) -> None:
        """sample exits 1 when the power model cannot be built."""
        with (
            patch("cpu_energy_exporter.clock.ClockRate.resolve", return_value=ClockRate(100)),
            patch(
                "cpu_energy_exporter.energy.PowerModel.resolve",
                side_effect=PowerModelError("physical core count unavailable"),
            ),
            patch("cpu_energy_exporter.logging.configure"),
        ):
            result = runner.invoke(main, ["sample", "--config", str(config_path)])

        assert result.exit_code == 1
        assert "physical core count unavailable" in result.output


class TestConfigCommands:
    """Tests for the config command group."""

    def test_config_show_defaults(self, runner, config_path) -> None:
        """config show prints every section with default values."""
        result = runner.invoke(main, ["config", "show", "--config", str(config_path)])

        assert result.exit_code == 0
        assert f"Config file: {config_path}" in result.output
        assert "Exists: False" in result.output
        assert "[exporter]" in result.output
        assert "metrics_address = 127.0.0.1:9090" in result.output
        assert "collection_interval = 100" in result.output
        assert "average_die_power = 35.0" in result.output
        assert "level = info" in result.output

    def test_config_show_file_values(self, runner, config_path) -> None:
        """config show reflects the values stored in the file."""
        _write_config(config_path, "[power]\naverage_die_power = 95.0\n")

        result = runner.invoke(main, ["config", "show", "--config", str(config_path)])

        assert result.exit_code == 0
        assert "Exists: True" in result.output
        assert "average_die_power = 95.0" in result.output

    def test_config_init_creates_file(self, runner, config_path) -> None:
        """config init writes a loadable default config."""
        result = runner.invoke(main, ["config", "init", "--config", str(config_path)])

        assert result.exit_code == 0
        assert config_path.exists()
        assert Config.load(config_path) == Config()

    def test_config_init_keeps_existing(self, runner, config_path) -> None:
        """config init does not overwrite an existing file."""
        _write_config(config_path, "[power]\naverage_die_power = 95.0\n")

        result = runner.invoke(main, ["config", "init", "--config", str(config_path)])

        assert result.exit_code == 0
        assert "Config already exists" in result.output
        assert Config.load(config_path).power.average_die_power == 95.0

    def test_config_reset(self, runner, config_path) -> None:
        """config reset --yes restores defaults."""
        _write_config(config_path, "[power]\naverage_die_power = 95.0\n")

        result = runner.invoke(main, ["config", "reset", "--config", str(config_path), "--yes"])

        assert result.exit_code == 0
        assert "Config reset to defaults" in result.output
        assert Config.load(config_path).power.average_die_power == 35.0

    def test_config_reset_aborted(self, runner, config_path) -> None:
        """Declining the reset prompt leaves the file alone."""
        _write_config(config_path, "[power]\naverage_die_power = 95.0\n")

        result = runner.invoke(
            main, ["config", "reset", "--config", str(config_path)], input="n\n"
        )

        assert result.exit_code == 1
        assert Config.load(config_path).power.average_die_power == 95.0

    @pytest.mark.parametrize(
        "body",
        [
            '[sampling]\ncollection_interval = "fast"\n',
            '[power]\naverage_die_power = "lots"\n',
            "[exporter]\nmetrics_address = 9090\n",
        ],
    )
    def test_config_show_wrong_type_exits_1(self, runner, config_path, body) -> None:
        """A wrongly typed value is reported instead of crashing."""
        _write_config(config_path, body)

        result = runner.invoke(main, ["config", "show", "--config", str(config_path)])

        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert "Invalid configuration" in result.output
