"""
Tests for scripts/check_tenant_scoping.py.

The script lives outside the package, so it is loaded from its path.

Run with: pytest tests/test_tenant_scoping_lint.py -v
"""

import importlib.util
from pathlib import Path

import pytest

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "check_tenant_scoping.py"


@pytest.fixture(scope="module")
def lint():
    spec = importlib.util.spec_from_file_location("check_tenant_scoping", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def severities(findings) -> list[str]:
    return [f.severity for f in findings]


class TestScanSource:

    def test_hardcoded_business_constant(self, lint):
        findings = lint.scan_source(Path("x.py"), "BUSINESS_ID = 1\n")
        assert "CRITICAL" in severities(findings)

    def test_unscoped_select(self, lint):
        source = "stmt = select(Appointment)\nrows = await session.execute(stmt)\n"
        findings = lint.scan_source(Path("x.py"), source)
        assert severities(findings) == ["HIGH"]
        assert findings[0].line_num == 1

    def test_select_scoped_nearby(self, lint):
        source = (
            "stmt = (\n"
            "    select(Appointment)\n"
            "    .where(Appointment.business_id == actor.business_id)\n"
            ")\n"
        )
        assert lint.scan_source(Path("x.py"), source) == []

    def test_comments_and_suppressions_ignored(self, lint):
        source = (
            "# select(Client) in a comment\n"
            "stmt = select(Client)  # noqa: tenant-scoping\n"
        )
        assert lint.scan_source(Path("x.py"), source) == []

    def test_hardcoded_branch_id_warning(self, lint):
        findings = lint.scan_source(Path("x.py"), "load(branch_id=3)\n")
        assert severities(findings) == ["WARNING"]

    def test_tenancy_helpers_excluded(self, lint):
        assert lint.should_exclude(Path("Backend/kyros/tenancy/queries.py"))
        assert not lint.should_exclude(Path("Backend/kyros/booking.py"))


class TestPackageIsScoped:

    def test_no_critical_or_high_findings(self, lint):
        findings = lint.scan_directory(lint.SCAN_ROOT)
        assert [f for f in findings if f.severity in ("CRITICAL", "HIGH")] == []


class TestCommandLine:

    @pytest.fixture
    def leaky_tree(self, tmp_path):
        (tmp_path / "leaky.py").write_text("BUSINESS_ID = 1\nload(branch_id=3)\n")
        return tmp_path

    def test_strict_fails_on_critical(self, lint, leaky_tree, capsys):
        assert lint.main(["--strict", "--path", str(leaky_tree)]) == 1
        assert "1 critical" in capsys.readouterr().out

    def test_without_strict_reports_only(self, lint, leaky_tree):
        assert lint.main(["--path", str(leaky_tree)]) == 0

    def test_min_severity_hides_warnings(self, lint, leaky_tree, capsys):
        lint.main(["-v", "--min-severity", "HIGH", "--path", str(leaky_tree)])
        out = capsys.readouterr().out
        assert "CRITICAL" in out
        assert "WARNING" not in out

    def test_missing_directory(self, lint, tmp_path):
        assert lint.main(["--path", str(tmp_path / "nope")]) == 1
