from pathlib import Path

import pytest

from hostforge_automation.errors import MalformedTemplate, RenderError, TemplateMissing, UnresolvedVariable
from hostforge_automation.renderer import Renderer
from hostforge_automation.types import Check, FailurePolicy, OperationSpec, Playbook


def playbook(*operations: OperationSpec, source_dir=None) -> Playbook:
    return Playbook(name="demo", hosts="all", operations=list(operations), source_dir=source_dir)


def test_render_substitutes_bindings_in_order():
    book = playbook(
        OperationSpec(name="dir for {{ domain }}", type="file", data={"path": "/var/www/{{ domain }}", "state": "directory"}),
        OperationSpec(name="restart", type="service", data={"service": "nginx", "state": "restarted"}),
        OperationSpec(
            name="user",
            type="user",
            data={"user": "{{ service }}", "groups": ["{{ service }}", "adm"]},
            on_failure=FailurePolicy.CONTINUE,
        ),
    )

    rendered = Renderer().render(book, {"domain": "example.org", "service": "app"})

    assert [op.index for op in rendered] == [0, 1, 2]
    assert rendered[0].name == "dir for example.org"
    assert rendered[0].data["path"] == "/var/www/example.org"
    assert rendered[2].data["groups"] == ["app", "adm"]
    assert rendered[2].on_failure is FailurePolicy.CONTINUE


def test_render_does_not_mutate_playbook():
    spec = OperationSpec(name="x", type="file", data={"path": "/srv/{{ name }}"})
    Renderer().render(playbook(spec), {"name": "a"})

    assert spec.data["path"] == "/srv/{{ name }}"


def test_render_reports_unresolved_variable_with_field():
    book = playbook(
        OperationSpec(name="ok", type="file", data={"path": "/tmp/x"}),
        OperationSpec(name="bad", type="file", data={"path": "/etc/{{ domain_name }}"}),
    )

    with pytest.raises(UnresolvedVariable) as excinfo:
        Renderer().render(book, {})

    assert excinfo.value.variable == "domain_name"
    assert excinfo.value.field == "operations[1].path"


def test_render_catches_attribute_of_missing_binding():
    book = playbook(OperationSpec(name="x", type="file", data={"path": "{{ site.root }}"}))

    with pytest.raises(UnresolvedVariable) as excinfo:
        Renderer().render(book, {"other": 1})

    assert excinfo.value.variable == "site"


def test_render_reports_malformed_template_line():
    book = playbook(OperationSpec(name="x", type="file", data={"content": "line one\n{{ broken"}))

    with pytest.raises(MalformedTemplate) as excinfo:
        Renderer().render(book, {"broken": 1})

    assert excinfo.value.line == 2
    assert isinstance(excinfo.value, RenderError)


def test_render_guard_params():
    guard = Check("path_exists", {"path": "/etc/letsencrypt/live/{{ domain }}"}, negate=True)
    book = playbook(OperationSpec(name="x", type="exec", data={"command": "true"}, guard=guard))

    rendered = Renderer().render(book, {"domain": "example.org"})

    assert rendered[0].guard == Check("path_exists", {"path": "/etc/letsencrypt/live/example.org"}, negate=True)


def test_render_template_source_into_content(tmp_path: Path):
    (tmp_path / "templates").mkdir()
    (tmp_path / "templates" / "site.j2").write_text("server_name {{ domain }};\n")
    book = playbook(
        OperationSpec(name="site", type="template", data={"src": "site.j2", "dest": "/etc/nginx/site"}),
        source_dir=tmp_path,
    )

    rendered = Renderer().render(book, {"domain": "example.org"})

    assert rendered[0].data["content"] == "server_name example.org;\n"


def test_render_template_from_configured_dir(tmp_path: Path):
    shared = tmp_path / "shared"
    shared.mkdir()
    (shared / "unit.j2").write_text("User={{ service }}\n")
    book = playbook(OperationSpec(name="unit", type="template", data={"src": "unit.j2", "dest": "/etc/unit"}))

    rendered = Renderer([shared]).render(book, {"service": "app"})

    assert rendered[0].data["content"] == "User=app\n"


def test_render_template_missing(tmp_path: Path):
    book = playbook(
        OperationSpec(name="site", type="template", data={"src": "nope.j2", "dest": "/etc/x"}),
        source_dir=tmp_path,
    )

    with pytest.raises(TemplateMissing) as excinfo:
        Renderer().render(book, {})

    assert excinfo.value.source == "nope.j2"


def test_render_template_source_unresolved_variable(tmp_path: Path):
    (tmp_path / "templates").mkdir()
    (tmp_path / "templates" / "site.j2").write_text("{% if tls %}ssl on;{% endif %}\n")
    book = playbook(
        OperationSpec(name="site", type="template", data={"src": "site.j2", "dest": "/etc/x"}),
        source_dir=tmp_path,
    )

    with pytest.raises(UnresolvedVariable) as excinfo:
        Renderer().render(book, {})

    assert excinfo.value.variable == "tls"
    assert excinfo.value.field == "site.j2"


def test_render_allows_defaults_and_defined_tests():
    book = playbook(
        OperationSpec(
            name="x",
            type="file",
            data={
                "path": "/srv/{{ site | default('main') }}",
                "content": "{% if tls is defined %}ssl on;{% else %}ssl off;{% endif %}",
            },
        )
    )

    rendered = Renderer().render(book, {})

    assert rendered[0].data["path"] == "/srv/main"
    assert rendered[0].data["content"] == "ssl off;"


def test_render_default_does_not_hide_other_missing_names():
    book = playbook(OperationSpec(name="x", type="file", data={"path": "/srv/{{ site | default(root) }}"}))

    with pytest.raises(UnresolvedVariable) as excinfo:
        Renderer().render(book, {})

    assert excinfo.value.variable == "root"
