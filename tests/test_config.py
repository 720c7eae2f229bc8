import json
import logging
import textwrap

import pytest

from overwatch.cli import build_pipeline, main, parse_level
from overwatch.config import DEFAULT_CONFIG, deep_merge, load_config, reactor_params
from overwatch.errors import ConfigurationError, UnknownReactorKind

BASE = """
[monitor]
dir = "{dir}"

[evaluator]
events = ["add"]
regex = '\\.zip$'
reactors = {reactors}

[reactor.mkdir]
target = "/work/{{{{ioEvent.context.timestamp}}}}"

[reactor.extractFileTo]
target = "{{{{ioEvent.context.mkdir.target}}}}"

[reactor.sqlInsert]
table = "arrivals"
columns = ["filename"]
values = ["{{{{ioEvent.filename}}}}"]
"""


def write_config(tmp_path, reactors='["mkdir", "extractFileTo"]', extra=""):
    path = tmp_path / "overwatch.toml"
    path.write_text(BASE.format(dir=tmp_path, reactors=reactors) + textwrap.dedent(extra))
    return str(path)


class TestLoadConfig:

    def test_defaults_are_merged(self, tmp_path):
        config = load_config(write_config(tmp_path))
        assert config["monitor"]["stability_threshold"] == 30000
        assert config["reactor"]["shell"]["pool_size"] == 1
        assert config["evaluator"]["reactors"] == ["mkdir", "extractFileTo"]
        assert config["reactor"]["mkdir"]["target"] == "/work/{{ioEvent.context.timestamp}}"

    def test_unknown_reactor_kind(self, tmp_path):
        with pytest.raises(UnknownReactorKind):
            load_config(write_config(tmp_path, reactors='["mkdir", "explode"]'))

    def test_sql_requires_db_host(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(write_config(tmp_path, reactors='["sqlInsert"]'))

    def test_sql_with_db_host(self, tmp_path):
        config = load_config(write_config(
            tmp_path, reactors='["sqlInsert"]', extra='\n[reactor.db]\nhost = "db"\n'))
        assert config["reactor"]["db"]["port"] == 3306

    def test_unknown_event_type(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text(f'[monitor]\ndir = "{tmp_path}"\n[evaluator]\nevents = ["created"]\n'
                        'regex = "x"\nreactors = ["mkdir"]\n')
        with pytest.raises(ConfigurationError):
            load_config(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(str(tmp_path / "nope.toml"))

    def test_invalid_toml(self, tmp_path):
        path = tmp_path / "broken.toml"
        path.write_text("[monitor\n")
        with pytest.raises(ConfigurationError):
            load_config(str(path))


def test_deep_merge_does_not_mutate_defaults():
    merged = deep_merge(DEFAULT_CONFIG, {"reactor": {"shell": {"pool_size": 2}}})
    assert merged["reactor"]["shell"]["pool_size"] == 2
    assert merged["reactor"]["shell"]["cwd"] == "./"
    assert DEFAULT_CONFIG["reactor"]["shell"]["pool_size"] == 1


def test_reactor_params_ignores_shell_and_db_tables(tmp_path):
    params = reactor_params(load_config(write_config(tmp_path)))
    assert "shell" not in params and "db" not in params
    assert params["copyFile"] == {}


def test_parse_level_accepts_aliases():
    assert parse_level("warn") == logging.WARNING
    assert parse_level("silly") == logging.DEBUG
    assert parse_level("error") == logging.ERROR
    assert parse_level(None) == logging.INFO


def test_build_pipeline_ids(tmp_path):
    config = load_config(write_config(tmp_path))
    runner = build_pipeline(config, dry_run=True)
    try:
        assert runner.reactor_ids == ["genTimestamp", "mkdir1", "extractFileTo2"]
    finally:
        runner.close()


def test_main_print_config(tmp_path, capsys):
    assert main(["--config", write_config(tmp_path), "--print-config"]) == 0
    printed = json.loads(capsys.readouterr().out)
    assert printed["evaluator"]["regex"] == "\\.zip$"


def test_main_rejects_bad_config(tmp_path, capsys):
    assert main(["--config", str(tmp_path / "missing.toml")]) == 1
    assert "ERROR" in capsys.readouterr().err


class TestValidateSettings:

    @pytest.mark.parametrize("extra", [
        '\n[reactor.shell]\npool_size = "two"\n',
        '\n[reactor.shell]\nidle_timeout_ms = 1.5\n',
        '\n[runner]\nworkers = "x"\n',
        '\n[runner]\nhealth_port = true\n',
        '\n[reactor.db]\nport = "3306"\n',
        '\n[reactor.shell]\nuid = "root"\n',
    ])
    def test_non_integer_setting_rejected(self, tmp_path, extra):
        with pytest.raises(ConfigurationError, match="integer"):
            load_config(write_config(tmp_path, reactors='["mkdir"]', extra=extra))

    def test_non_integer_monitor_setting_rejected(self, tmp_path):
        path = write_config(tmp_path)
        with open(path) as f:
            text = f.read()
        with open(path, "w") as f:
            f.write(text.replace("[monitor]\n", "[monitor]\nstability_threshold = \"30s\"\n", 1))
        with pytest.raises(ConfigurationError, match="monitor.stability_threshold"):
            load_config(path)

    def test_pool_size_below_one_rejected(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(write_config(tmp_path, extra='\n[reactor.shell]\npool_size = 0\n'))

    def test_invalid_regex_rejected(self, tmp_path):
        path = write_config(tmp_path)
        with open(path) as f:
            text = f.read()
        with open(path, "w") as f:
            f.write(text.replace("regex = '\\.zip$'", "regex = '(unclosed'"))
        with pytest.raises(ConfigurationError, match="evaluator.regex"):
            load_config(path)

    def test_missing_target_rejected_at_load(self, tmp_path):
        with pytest.raises(ConfigurationError, match="reactor.copyFile.target"):
            load_config(write_config(tmp_path, reactors='["copyFile"]'))


def test_main_reports_malformed_setting(tmp_path, capsys):
    path = write_config(tmp_path, extra='\n[reactor.shell]\npool_size = "two"\n')
    assert main(["--config", path, "--print-config"]) == 1
    assert "pool_size" in capsys.readouterr().err
