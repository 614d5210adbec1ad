"""
Unit tests for worker configuration loading and validation
"""

from dataclasses import replace

import pytest
import yaml

from pydistrib_worker.controller.config_loader import BackoffPolicy, ConfigLoader, WorkerConfig


class TestDefaults:

    def test_default_values(self):
        config = WorkerConfig()

        assert config.multicast_group == "224.1.1.1"
        assert config.discovery_port == 5007
        assert config.listen_timeout == 30.0
        assert config.handshake_timeout == 30.0
        assert config.max_retries == 5
        assert config.backoff.initial_delay == 0.0
        assert config.metrics_port == 0

    def test_defaults_are_valid(self):
        assert ConfigLoader.validate(WorkerConfig())

    def test_load_without_file_gives_defaults(self):
        assert ConfigLoader.load() == WorkerConfig()


class TestBackoffPolicy:

    def test_zero_initial_delay_never_waits(self):
        policy = BackoffPolicy()
        assert [policy.delay_for(n) for n in range(1, 6)] == [0.0] * 5

    def test_exponential_growth_is_capped(self):
        policy = BackoffPolicy(initial_delay=1.0, multiplier=3.0, max_delay=5.0)
        assert [policy.delay_for(n) for n in range(1, 5)] == [1.0, 3.0, 5.0, 5.0]


class TestYamlLoading:

    def test_load_full_file(self, tmp_path):
        path = tmp_path / "worker.yaml"
        path.write_text(yaml.safe_dump({
            'multicast_group': '239.1.2.3',
            'discovery_port': 6007,
            'listen_timeout': 2.5,
            'handshake_timeout': 1.5,
            'max_retries': 8,
            'metrics_port': 9100,
            'backoff': {'initial_delay': 0.25, 'multiplier': 2, 'max_delay': 4},
        }))

        config = ConfigLoader.load(str(path))

        assert config.multicast_group == '239.1.2.3'
        assert config.discovery_port == 6007
        assert config.listen_timeout == 2.5
        assert config.handshake_timeout == 1.5
        assert config.max_retries == 8
        assert config.metrics_port == 9100
        assert config.backoff == BackoffPolicy(initial_delay=0.25, multiplier=2.0, max_delay=4.0)

    def test_partial_file_keeps_defaults(self, tmp_path):
        path = tmp_path / "worker.yaml"
        path.write_text("max_retries: 2\n")

        config = ConfigLoader.load(str(path))

        assert config == replace(WorkerConfig(), max_retries=2)

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "worker.yaml"
        path.write_text("")

        assert ConfigLoader.load(str(path)) == WorkerConfig()

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ConfigLoader.load(str(tmp_path / "absent.yaml"))

    def test_bad_yaml_raises(self, tmp_path):
        path = tmp_path / "worker.yaml"
        path.write_text("max_retries: [1, 2\n")

        with pytest.raises(yaml.YAMLError):
            ConfigLoader.load(str(path))


class TestEnvironmentOverrides:

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "worker.yaml"
        path.write_text("max_retries: 2\nlisten_timeout: 4\n")
        monkeypatch.setenv('PYDISTRIB_MAX_RETRIES', '9')

        config = ConfigLoader.load(str(path))

        assert config.max_retries == 9
        assert config.listen_timeout == 4.0

    def test_backoff_env_overrides_merge(self):
        environ = {'PYDISTRIB_BACKOFF_INITIAL': '0.5', 'PYDISTRIB_BACKOFF_MAX': '2'}

        config = ConfigLoader.from_env(WorkerConfig(), environ=environ)

        assert config.backoff == BackoffPolicy(initial_delay=0.5, multiplier=2.0, max_delay=2.0)

    def test_empty_values_ignored(self):
        config = ConfigLoader.from_env(WorkerConfig(), environ={'PYDISTRIB_MAX_RETRIES': ''})

        assert config == WorkerConfig()

    def test_unparsable_value_raises(self):
        with pytest.raises(ValueError):
            ConfigLoader.from_env(WorkerConfig(), environ={'PYDISTRIB_DISCOVERY_PORT': 'five'})


class TestValidation:

    @pytest.mark.parametrize("overrides", [
        {'multicast_group': 'not-an-ip'},
        {'multicast_group': '10.0.0.1'},
        {'multicast_group': 'ff02::123'},
        {'discovery_port': 0},
        {'discovery_port': 70000},
        {'metrics_port': -1},
        {'listen_timeout': 0},
        {'handshake_timeout': -1.0},
        {'max_retries': 0},
        {'backoff': BackoffPolicy(initial_delay=-1.0)},
        {'backoff': BackoffPolicy(multiplier=0.5)},
    ])
    def test_invalid_configs_rejected(self, overrides):
        assert not ConfigLoader.validate(replace(WorkerConfig(), **overrides))


class TestWrongShape:

    @pytest.mark.parametrize("content", [
        "max_retries: null\n",
        "- 1\n- 2\n",
        "backoff: 5\n",
        "backoff:\n  max_delay: [1]\n",
    ])
    def test_wrong_shape_raises_value_error(self, tmp_path, content):
        path = tmp_path / "worker.yaml"
        path.write_text(content)

        with pytest.raises(ValueError):
            ConfigLoader.load(str(path))
