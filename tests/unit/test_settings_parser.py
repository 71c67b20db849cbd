import pytest

from devpipe.errors import ConfigError
from devpipe.PARSERS.settings_parser import SettingsParser
from devpipe.UTILS.string_interpolation import EnvironmentInterpolator


class TestSettingsParser:

    def test_missing_default_file_gives_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        settings = SettingsParser(context={}).load()
        assert settings.registry == "ghcr.io"
        assert settings.ci_platforms == ["linux/amd64", "linux/arm64"]
        assert settings.validation.strict is False

    def test_missing_explicit_file_raises(self, tmp_path):
        with pytest.raises(ConfigError):
            SettingsParser(context={}).load(str(tmp_path / "nope.yml"))

    def test_load_file(self, tmp_path):
        path = tmp_path / "devpipe.yml"
        path.write_text(
            "registry: ${REGISTRY:-ghcr.io}\n"
            "image_repo: ${OWNER}/devcontainer\n"
            "build:\n"
            "  context_dir: images/base\n"
            "  build_args:\n"
            "    NODE_VERSION: '20'\n"
            "validation:\n"
            "  strict: true\n"
            "  groups:\n"
            "    - name: smoke\n"
            "      checks:\n"
            "        - name: echo\n"
            "          script: echo hi\n"
        )
        settings = SettingsParser(context={"OWNER": "acme"}).load(str(path))
        assert settings.registry == "ghcr.io"
        assert settings.image_repo == "acme/devcontainer"
        assert settings.build.context_dir == "images/base"
        assert settings.build.build_args == {"NODE_VERSION": "20"}
        assert settings.validation.strict is True
        assert settings.validation.groups[0].checks[0].name == "echo"

    def test_unknown_key_raises(self):
        with pytest.raises(ConfigError) as excinfo:
            SettingsParser(context={}).parse_from_string("registyr: ghcr.io\n")
        assert excinfo.value.exit_code == 2

    def test_invalid_yaml_raises(self):
        with pytest.raises(ConfigError):
            SettingsParser(context={}).parse_from_string("registry: [unclosed\n")

    def test_non_mapping_raises(self):
        with pytest.raises(ConfigError):
            SettingsParser(context={}).parse_from_string("- a\n- b\n")

    def test_empty_document_gives_defaults(self):
        settings = SettingsParser(context={}).parse_from_string("")
        assert settings.tags_file == "final-tags.txt"

    def test_group_without_checks_raises(self):
        content = "validation:\n  groups:\n    - name: empty\n      checks: []\n"
        with pytest.raises(ConfigError):
            SettingsParser(context={}).parse_from_string(content)


class TestInterpolation:

    def test_default_and_alternative(self):
        context = {"SET": "x"}
        text = "${SET:-d} ${UNSET:-d} ${SET:+alt} ${UNSET:+alt}|"
        assert EnvironmentInterpolator.interpolate(text, context) == "x d alt |"

    def test_dollar_escape(self):
        assert EnvironmentInterpolator.interpolate("$${HOME}", {"HOME": "/root"}) == "${HOME}"

    def test_missing_reported(self):
        text, missing = EnvironmentInterpolator.interpolate_with_missing("${A}-${B}", {"A": "1"})
        assert text == "1-"
        assert missing == ["B"]

    def test_strict_raises(self):
        with pytest.raises(KeyError):
            EnvironmentInterpolator.interpolate("${A}", {}, strict=True)
