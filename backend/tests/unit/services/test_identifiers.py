"""
Unit Tests for identifier normalization
"""
import pytest
from app.services.identifiers import normalize_id, normalize_path, build_project_path


class TestNormalizeId:
    """Test hyphen collapsing"""

    def test_collapses_double_hyphen(self):
        """Test a--b becomes a-b"""
        assert normalize_id("a--b") == "a-b"

    def test_collapses_long_runs(self):
        """Test any run of hyphens becomes one"""
        assert normalize_id("a---b----c") == "a-b-c"

    def test_leaves_clean_ids_alone(self):
        """Test normal UUIDs pass through unchanged"""
        value = "7f1c2a3b-1111-4222-8333-944445555666"
        assert normalize_id(value) == value

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty_input(self, value):
        """Test None and empty string give empty string"""
        assert normalize_id(value) == ""

    @pytest.mark.parametrize("value", ["a--b", "---", "x-y--z---", "plain"])
    def test_idempotent(self, value):
        """Test normalizing twice equals normalizing once"""
        assert normalize_id(normalize_id(value)) == normalize_id(value)


class TestNormalizePath:
    """Test slash and hyphen collapsing"""

    def test_collapses_slashes_and_hyphens(self):
        """Test /root//x--y becomes /root/x-y"""
        assert normalize_path("/root//x--y") == "/root/x-y"

    def test_collapses_many_slashes(self):
        """Test triple slashes collapse"""
        assert normalize_path("///a///b") == "/a/b"

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty_input(self, value):
        """Test None and empty string give empty string"""
        assert normalize_path(value) == ""

    @pytest.mark.parametrize("value", ["/root//x--y", "//a--//--b", "/ok/path"])
    def test_idempotent(self, value):
        """Test normalizing twice equals normalizing once"""
        assert normalize_path(normalize_path(value)) == normalize_path(value)


class TestBuildProjectPath:
    """Test three-level project paths"""

    def test_three_level_layout(self):
        """Test <root>/<user>/<sandbox>/<project>"""
        path = build_project_path("u1", "s1", "p1", root="/root/projects")
        assert path == "/root/projects/u1/s1/p1"

    def test_components_are_normalized(self):
        """Test doubled separators in components and root are collapsed"""
        path = build_project_path("u--1", "s--1", "p--1", root="/root//projects/")
        assert path == "/root/projects/u-1/s-1/p-1"

    def test_uses_configured_root_by_default(self):
        """Test PROJECTS_ROOT is used when no root is passed"""
        from app.core.config import settings

        path = build_project_path("u", "s", "p")
        assert path.startswith(normalize_path(settings.PROJECTS_ROOT))
        assert path.endswith("/u/s/p")
