"""
Tests for configuration and environment variables.
"""
import pytest
from syltag.utils import Config


class TestConfig:
    """Tests for Config class and SYLTAG_* environment variables."""

    def test_defaults(self):
        assert Config.DEFAULT_LANGUAGE == 'eng'
        assert Config.TAG_PADDING == 0
        assert Config.OUTPUT_SUFFIX == '_tagged'
        assert Config.MAX_COVER_ART_SIZE == 5 * 1024 * 1024

    def test_verbose_env_var_variants(self, monkeypatch):
        variants = [
            ('1', True), ('true', True), ('TRUE', True), ('yes', True),
            ('0', False), ('false', False), ('no', False), ('invalid', False), ('', False)
        ]
        for val, expected in variants:
            monkeypatch.setenv('SYLTAG_VERBOSE', val)
            Config.DEFAULT_VERBOSE = False
            Config.load_from_env()
            assert Config.DEFAULT_VERBOSE is expected, f"Failed for value: {val}"

    def test_numeric_env_vars(self, monkeypatch):
        monkeypatch.setenv('SYLTAG_MAX_FILE_SIZE', '1024')
        monkeypatch.setenv('SYLTAG_MAX_COVER_ART_SIZE', '2048')
        monkeypatch.setenv('SYLTAG_TAG_PADDING', '256')
        Config.load_from_env()
        assert Config.MAX_FILE_SIZE == 1024
        assert Config.MAX_COVER_ART_SIZE == 2048
        assert Config.TAG_PADDING == 256

    def test_string_env_vars(self, monkeypatch, tmp_path):
        monkeypatch.setenv('SYLTAG_LANGUAGE', 'jpn')
        monkeypatch.setenv('SYLTAG_OUTPUT_SUFFIX', '_lyrics')
        monkeypatch.setenv('SYLTAG_LOG_DIR', str(tmp_path / 'custom'))
        Config.load_from_env()
        assert Config.DEFAULT_LANGUAGE == 'jpn'
        assert Config.OUTPUT_SUFFIX == '_lyrics'
        assert Config.LOG_DIR == str(tmp_path / 'custom')

    @pytest.mark.parametrize("var,value", [
        ('SYLTAG_MAX_FILE_SIZE', 'big'),
        ('SYLTAG_MAX_FILE_SIZE', '0'),
        ('SYLTAG_TAG_PADDING', '-1'),
        ('SYLTAG_LANGUAGE', 'english'),
    ])
    def test_invalid_env_vars(self, monkeypatch, var, value):
        monkeypatch.setenv(var, value)
        with pytest.raises(ValueError):
            Config.load_from_env()
