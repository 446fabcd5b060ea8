"""Tests for cloudspec.hcl."""

from __future__ import annotations

from pathlib import Path

import pytest
from lark.exceptions import LarkError

from cloudspec.context import Context
from cloudspec.hcl import load, loads, scan
from cloudspec.projects import Project
from cloudspec.spec import Specification, _spec_registry
from cloudspec.workspace import Workspace


class AccountProject(Project):
    account_id: str = ""


class NoteSpec(Specification[Project]):
    def __init__(self, **kwargs):
        self.kwargs = kwargs

    def equals(self, ctx: Context[Project]) -> bool:
        return False

    def apply(self, ctx: Context[Project]) -> None:
        pass

    def remove(self, ctx: Context[Project]) -> None:
        pass


def _write_hcl(root: Path, relpath: str, content: str) -> Path:
    f = root / relpath
    f.parent.mkdir(parents=True, exist_ok=True)
    f.write_text(content)
    return f


@pytest.fixture(autouse=True)
def _clean_registry():
    saved = _spec_registry.copy()
    _spec_registry.clear()
    _spec_registry["note"] = NoteSpec
    yield
    _spec_registry.clear()
    _spec_registry.update(saved)


class TestLoad:
    def test_parses_blocks(self, tmp_path):
        f = _write_hcl(
            tmp_path,
            "main.hcl",
            """
            blueprint "alerts" {
                ensure "note" { text = "hi" }
            }
            """,
        )
        data = load(f)
        assert data["blueprint"][0]["alerts"]["ensure"][0]["note"]["text"] == "hi"

    def test_renders_jinja_context(self, tmp_path):
        f = _write_hcl(
            tmp_path,
            "main.hcl",
            """
            project "{{ name }}" {
                region = "{{ region }}"
            }
            """,
        )
        data = load(f, context={"name": "billing", "region": "us-east-1"})
        assert data["project"][0]["billing"]["region"] == "us-east-1"

    def test_jinja_loops(self, tmp_path):
        f = _write_hcl(
            tmp_path,
            "main.hcl",
            """
            blueprint "notes" {
            {% for n in names %}
                ensure "note" { text = "{{ n }}" }
            {% endfor %}
            }
            """,
        )
        data = load(f, context={"names": ["a", "b"]})
        ensures = data["blueprint"][0]["notes"]["ensure"]
        assert [e["note"]["text"] for e in ensures] == ["a", "b"]

    def test_undefined_template_variable(self, tmp_path):
        f = _write_hcl(tmp_path, "main.hcl", 'project "{{ missing }}" {}\n')
        with pytest.raises(ValueError, match="main.hcl"):
            load(f)

    def test_invalid_hcl(self, tmp_path):
        f = _write_hcl(tmp_path, "bad.hcl", 'project "x" {\n  = broken\n')
        with pytest.raises(ValueError, match="unable to parse HCL"):
            load(f)

    def test_interpolation_left_for_resolver(self, tmp_path):
        f = _write_hcl(tmp_path, "main.hcl", 'project "p" { region = "${env.AWS_REGION}" }\n')
        assert load(f)["project"][0]["p"]["region"] == "${env.AWS_REGION}"

    def test_loads_text(self):
        data = loads('project "{{ name }}" {\n  region = "eu-west-1"\n}\n', context={"name": "web"})
        assert data["project"][0]["web"]["region"] == "eu-west-1"

    def test_loads_error_names_source(self):
        with pytest.raises(ValueError, match="inline.hcl: unable to parse HCL"):
            loads('project "x" {\n  = broken\n', source="inline.hcl")

    def test_parse_error_chains_parser_error(self):
        with pytest.raises(ValueError) as info:
            loads('blueprint "b" {\n  ensure "x" {\n')
        assert isinstance(info.value.__cause__, LarkError)


class TestScan:
    def test_returns_workspace(self, tmp_path):
        _write_hcl(tmp_path, "p.hcl", 'project "billing" { description = "costs" }\n')
        ws = scan(tmp_path)
        assert isinstance(ws, Workspace)
        assert ws["billing"].description == "costs"

    def test_project_type(self, tmp_path):
        _write_hcl(tmp_path, "p.hcl", 'project "billing" { account_id = "123456789012" }\n')
        ws = scan(tmp_path, project_type=AccountProject)
        proj = ws["billing"]
        assert isinstance(proj, AccountProject)
        assert proj.account_id == "123456789012"

    def test_recurses_by_default(self, tmp_path):
        _write_hcl(tmp_path, "nested/deeper/p.hcl", 'project "deep" {}\n')
        assert "deep" in scan(tmp_path)

    def test_no_recurse(self, tmp_path):
        _write_hcl(tmp_path, "top.hcl", 'project "top" {}\n')
        _write_hcl(tmp_path, "nested/p.hcl", 'project "deep" {}\n')
        ws = scan(tmp_path, recurse=False)
        assert "top" in ws
        assert "deep" not in ws

    def test_context_reaches_templates_and_references(self, tmp_path):
        _write_hcl(
            tmp_path,
            "p.hcl",
            """
            project "{{ name }}" {
                description = "${owner.team}"
            }
            """,
        )
        ws = scan(tmp_path, context={"name": "billing", "owner": {"team": "finops"}})
        assert ws["billing"].description == "finops"

    def test_missing_directory(self, tmp_path, caplog):
        ws = scan(tmp_path / "nope")
        assert len(ws) == 0
        assert "not a directory" in caplog.text
