"""
Tests for template rendering and variable validation.
"""

from pathlib import Path

import pytest

from provisionctl.errors import RenderError
from provisionctl.rendering import DEFAULT_TEMPLATE_ROOT, TemplateRenderer, check_variables


@pytest.fixture
def template_root(tmp_path):
    root = tmp_path / "templates"
    demo = root / "demo"
    (demo / "nested").mkdir(parents=True)
    (demo / "main.tf.j2").write_text('name = "{{ name }}"\n')
    (demo / "static.yml").write_text("value: {{ left_alone }}\n")
    (demo / "nested" / "note.txt.j2").write_text("{{ items | join(',') }}")
    (root / "broken").mkdir()
    (root / "broken" / "bad.j2").write_text("{% if %}")
    return root


@pytest.fixture
def renderer(tmp_path, template_root):
    return TemplateRenderer(build_dir=tmp_path / "build", template_root=template_root)


class TestRender:

    def test_renders_templates_and_copies_files(self, renderer, tmp_path):
        artifacts = renderer.render(
            "e1", "provisioning", "demo", {"name": "web", "items": ["a", "b"]}, steps=["x.yml"]
        )

        root = tmp_path / "build" / "e1" / "provisioning"
        assert artifacts.root == root
        assert artifacts.files == [Path("main.tf"), Path("nested/note.txt"), Path("static.yml")]
        assert artifacts.steps == ["x.yml"]
        assert (root / "main.tf").read_text() == 'name = "web"\n'
        assert (root / "static.yml").read_text() == "value: {{ left_alone }}\n"
        assert (root / "nested" / "note.txt").read_text() == "a,b"

    def test_output_directory_is_regenerated(self, renderer, tmp_path):
        renderer.render("e1", "provisioning", "demo", {"name": "one", "items": []})
        stale = tmp_path / "build" / "e1" / "provisioning" / "stale.txt"
        stale.write_text("left over")

        renderer.render("e1", "provisioning", "demo", {"name": "two", "items": []})

        assert not stale.exists()

    def test_undefined_variable_fails(self, renderer):
        with pytest.raises(RenderError, match="main.tf.j2"):
            renderer.render("e1", "provisioning", "demo", {"items": []})

    def test_syntax_error_fails(self, renderer):
        with pytest.raises(RenderError):
            renderer.render("e1", "provisioning", "broken", {})

    def test_unknown_template_set(self, renderer):
        with pytest.raises(RenderError, match="not found"):
            renderer.render("e1", "provisioning", "missing", {})

    def test_unsafe_variable_renders_nothing(self, renderer, tmp_path):
        with pytest.raises(RenderError):
            renderer.render("e1", "provisioning", "demo", {"name": "x; rm -rf /", "items": []})
        assert not (tmp_path / "build" / "e1" / "provisioning").exists()


class TestCheckVariables:

    @pytest.mark.parametrize(
        "value",
        ["a;b", "a&b", "a|b", "$HOME", "`id`", "<in", "out>", "back\\slash", 'quote"', "it's",
         "line\nbreak", "carriage\rreturn", "nul\0byte", "../etc/passwd", "dir/../x", ".."],
    )
    def test_rejects_unsafe_strings(self, value):
        with pytest.raises(RenderError):
            check_variables({"value": value})

    def test_rejects_unsafe_nested_values_and_keys(self):
        with pytest.raises(RenderError, match=r"outer\.inner\[1\]"):
            check_variables({"outer": {"inner": ["ok", "bad;"]}})
        with pytest.raises(RenderError, match="key"):
            check_variables({"env": {"BAD;KEY": "v"}})

    def test_accepts_typical_values(self):
        check_variables({
            "image": "torrust/tracker:develop",
            "ports": ["6969/udp", "7070"],
            "ssh_public_key": "ssh-ed25519 AAAAC3Nza+/= deployer@example",
            "state_path": "/var/lib/provisionctl/e1/tofu/terraform.tfstate",
            "file": "my..file",
            "port": 22,
            "enabled": True,
            "nothing": None,
        })

    def test_rejects_unsupported_types(self):
        with pytest.raises(RenderError, match="unsupported type"):
            check_variables({"obj": object()})


class TestPackagedTemplates:

    @pytest.mark.parametrize(
        "template_set,expected",
        [
            ("tofu/lxd", {"main.tf", "variables.tfvars", "cloud-init.yml"}),
            ("tofu/hetzner", {"main.tf", "variables.tfvars", "cloud-init.yml"}),
            ("ansible/configure", {"inventory.yml", "variables.yml", "wait-cloud-init.yml",
                                   "update-apt-cache.yml", "install-docker.yml",
                                   "install-docker-compose.yml",
                                   "configure-security-updates.yml", "configure-firewall.yml"}),
            ("ansible/release", {"inventory.yml", "variables.yml", "docker-compose.yml", ".env",
                                 "deploy-compose-files.yml"}),
            ("ansible/run", {"inventory.yml", "variables.yml", "run-compose-services.yml"}),
        ],
    )
    def test_template_sets_exist(self, template_set, expected):
        source = DEFAULT_TEMPLATE_ROOT / template_set
        names = {p.name[:-3] if p.suffix == ".j2" else p.name for p in source.iterdir()}
        assert names == expected
