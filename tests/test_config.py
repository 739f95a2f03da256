"""
Tests for configuration loading and validation.
"""
import pytest
import tempfile
from pathlib import Path

from tarstitch import config as config_mod
from tarstitch.config import find_config, load_config
from tarstitch.errors import ConfigurationError
from tarstitch.types import KB


def test_load_config_basic(temp_config_file):
    """Test full configuration loading."""
    config = load_config(temp_config_file)

    assert config.region == "eu-west-1"
    assert config.endpoint_url == "http://localhost:9000"
    assert config.connect_timeout == 5
    assert config.read_timeout == 30
    assert config.tar_format == "pax"
    assert config.manifest_header is True
    assert config.external_toc == "s3://toc-bucket/toc.csv"
    assert config.delete_source is True
    assert config.strict is False
    assert config.split == "min"
    assert config.workers == 12
    assert config.debug
    assert config.run_summary_dir == Path("/tmp/tarstitch-test-logs")
    assert config.limits.min_size == 8 * KB * KB
    assert config.limits.max_size == 1024 * KB * KB
    assert config.limits.max_count == 5000


def test_config_defaults():
    """Test that configuration uses proper defaults."""
    toml_content = """
[store]
region = "us-east-2"
"""

    with tempfile.NamedTemporaryFile(mode='w', suffix='.toml', delete=False) as f:
        f.write(toml_content)
        f.flush()

        config = load_config(Path(f.name))

        assert config.region == "us-east-2"
        assert config.tar_format == "gnu"
        assert config.manifest_header is False
        assert config.strict is True
        assert config.split == "mid"
        assert config.workers == 0  # auto
        assert config.run_summary_dir is None
        assert config.limits.min_size == 5 * KB * KB
        assert config.limits.max_size == 5 * KB * KB * KB
        assert config.limits.max_count == 10000


def test_no_config_file_means_defaults():
    config = load_config(None)
    assert config.tar_format == "gnu"
    assert not config.debug


@pytest.mark.parametrize(
    "snippet",
    [
        '[archive]\ntar_format = "v7"\n',
        '[parts]\nsplit = "max"\n',
        '[parts]\nmin_size_mb = 10\nmax_size_mb = 5\n',
        '[parts]\nmax_count = 1\n',
        '[runtime]\nworkers = -2\n',
    ],
)
def test_invalid_values(tmp_path, snippet):
    path = tmp_path / "bad.toml"
    path.write_text(snippet)
    with pytest.raises(ConfigurationError):
        load_config(path)


def test_find_config_explicit_missing():
    with pytest.raises(FileNotFoundError):
        find_config("/nonexistent/tarstitch.toml")


def test_find_config_search_order(tmp_path, monkeypatch):
    first = tmp_path / "tarstitch.toml"
    second = tmp_path / "etc.toml"
    monkeypatch.setattr(config_mod, "DEFAULT_CONFIG_PATHS", (first, second))
    assert find_config(None) is None
    second.write_text("")
    assert find_config(None) == second
    first.write_text("")
    assert find_config(None) == first
