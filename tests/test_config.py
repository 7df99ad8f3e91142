"""
Config System (config.py)

Tests BinderConfig, ConfigLoader layering and build_decoders.
"""

import json
import pytest

from formbind.config import BinderConfig, ConfigLoader, RequestLimits, build_decoders
from formbind.binding import FieldCache, FormURLDecoder, MultipartDecoder, JSONDecoder, XMLDecoder
from formbind.faults import ConfigInvalidFault


class TestConfigLoader:

    def test_init_defaults(self):
        loader = ConfigLoader()
        assert loader.env_prefix == "FORMBIND_"
        assert loader.config_data == {}

    def test_merge_dict(self):
        loader = ConfigLoader()
        target = {"a": 1, "b": {"c": 2}}
        loader._merge_dict(target, {"b": {"d": 3}, "e": 4})
        assert target == {"a": 1, "b": {"c": 2, "d": 3}, "e": 4}

    def test_get_dot_path(self):
        loader = ConfigLoader()
        loader.config_data = {"request": {"max_body_size": 10}}
        assert loader.get("request.max_body_size") == 10
        assert loader.get("request.missing", "default") == "default"

    def test_parse_value(self):
        loader = ConfigLoader()
        assert loader._parse_value("true") is True
        assert loader._parse_value("off") is False
        assert loader._parse_value("1") == 1
        assert loader._parse_value("0") == 0
        assert loader._parse_value("2.5") == 2.5
        assert loader._parse_value('{"k": "v"}') == {"k": "v"}
        assert loader._parse_value(";") == ";"

    def test_set_nested(self):
        loader = ConfigLoader()
        loader._set_nested("FORMBIND_REQUEST__MAX_BODY_SIZE", "2048")
        assert loader.config_data == {"request": {"max_body_size": 2048}}

    def test_to_dict_is_copy(self):
        loader = ConfigLoader()
        loader.config_data = {"key": "value"}
        loader.to_dict()["new"] = "val"
        assert "new" not in loader.config_data

    def test_load_json_file(self, tmp_path):
        path = tmp_path / "formbind.json"
        path.write_text(json.dumps({"split_symbol": ";", "request": {"max_field_count": 10}}))

        loader = ConfigLoader.load(paths=[str(path)])
        assert loader.get("split_symbol") == ";"
        assert loader.get("request.max_field_count") == 10

    def test_load_json_file_invalid(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with pytest.raises(ConfigInvalidFault):
            ConfigLoader.load(paths=[str(path)])

    def test_load_env_file(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text(
            "# binder settings\n"
            "FORMBIND_SKIP_FILLED=false\n"
            'FORMBIND_SPLIT_SYMBOL=";"\n'
            "OTHER_SETTING=ignored\n"
        )
        loader = ConfigLoader.load(env_file=str(path))
        assert loader.config_data == {"skip_filled": False, "split_symbol": ";"}

    def test_missing_env_file_is_ignored(self, tmp_path):
        loader = ConfigLoader.load(env_file=str(tmp_path / "absent.env"))
        assert loader.config_data == {}

    def test_precedence(self, tmp_path, monkeypatch):
        config_file = tmp_path / "formbind.json"
        config_file.write_text(json.dumps({"max_memory": 100, "split_symbol": "|", "split": False}))
        env_file = tmp_path / ".env"
        env_file.write_text("FORMBIND_MAX_MEMORY=200\nFORMBIND_SPLIT_SYMBOL=;\n")
        monkeypatch.setenv("FORMBIND_MAX_MEMORY", "300")

        loader = ConfigLoader.load(
            paths=[str(config_file)],
            env_file=str(env_file),
            overrides={"split": True},
        )
        config = loader.get_binder_config()

        assert config.max_memory == 300
        assert config.split_symbol == ";"
        assert config.split is True


class TestBinderConfig:

    def test_defaults(self):
        config = ConfigLoader().get_binder_config()
        assert config == BinderConfig()
        assert config.skip_filled is True
        assert config.split is True
        assert config.split_symbol == ","
        assert config.max_memory == 32 << 20

    def test_nested_request_limits(self):
        loader = ConfigLoader.load(overrides={"request": {"max_field_count": 5}})
        config = loader.get_binder_config()
        assert isinstance(config.request, RequestLimits)
        assert config.request.max_field_count == 5
        assert config.request.max_body_size == RequestLimits().max_body_size

    def test_wrong_type_rejected(self):
        loader = ConfigLoader.load(overrides={"max_memory": "lots"})
        with pytest.raises(ConfigInvalidFault) as exc_info:
            loader.get_binder_config()
        assert exc_info.value.metadata["key"] == "max_memory"

    def test_bool_is_not_an_int(self):
        loader = ConfigLoader.load(overrides={"max_memory": True})
        with pytest.raises(ConfigInvalidFault):
            loader.get_binder_config()

    def test_empty_split_symbol_rejected(self):
        loader = ConfigLoader.load(overrides={"split_symbol": ""})
        with pytest.raises(ConfigInvalidFault):
            loader.get_binder_config()

    def test_non_positive_limit_rejected(self):
        loader = ConfigLoader.load(overrides={"request": {"max_body_size": 0}})
        with pytest.raises(ConfigInvalidFault) as exc_info:
            loader.get_binder_config()
        assert exc_info.value.metadata["key"] == "request.max_body_size"

    def test_request_section_must_be_mapping(self):
        loader = ConfigLoader.load(overrides={"request": 5})
        with pytest.raises(ConfigInvalidFault):
            loader.get_binder_config()


class TestBuildDecoders:

    def test_default_registry(self):
        decoders = build_decoders()
        kinds = {type(d) for d in decoders}
        assert kinds == {FormURLDecoder, MultipartDecoder, JSONDecoder, XMLDecoder}
        assert len(decoders) == 4

    def test_options_applied(self):
        config = BinderConfig(skip_filled=False, split=False, split_symbol=";", max_memory=1024)
        decoders = build_decoders(config)

        multipart = decoders.get("multipart/form-data; boundary=x")
        assert isinstance(multipart, MultipartDecoder)
        assert multipart.max_memory == 1024
        assert multipart.skip_filled is False
        assert multipart.options.split is False
        assert multipart.options.split_symbol == ";"

    def test_custom_content_type(self):
        decoders = build_decoders(BinderConfig(json_content_type="application/vnd.api+json"))
        assert isinstance(decoders.get("application/vnd.api+json"), JSONDecoder)
        assert decoders.get("application/json") is None

    def test_shared_field_cache(self):
        cache = FieldCache()
        decoders = build_decoders(field_cache=cache)
        assert all(d.field_cache is cache for d in decoders)
