"""
Tests for entity naming helpers and declaration parsing.
"""

import pytest

from bemkit import naming
from bemkit.exceptions import BemkitError, DeclarationError


class TestEntityNames:
    """Test entity names and paths."""

    @pytest.mark.parametrize(
        "entity, name, rel_path",
        [
            ({"block": "menu"}, "menu", "menu/menu"),
            ({"block": "menu", "elem": "item"}, "menu__item", "menu/__item/menu__item"),
            ({"block": "menu", "mod": "theme", "val": "dark"}, "menu_theme_dark", "menu/_theme/menu_theme_dark"),
            ({"block": "menu", "mod": "visible"}, "menu_visible", "menu/_visible/menu_visible"),
            (
                {"block": "menu", "elem": "item", "mod": "active", "val": "yes"},
                "menu__item_active_yes",
                "menu/__item/_active/menu__item_active_yes",
            ),
        ],
    )
    def test_names_and_paths(self, entity, name, rel_path):
        assert naming.build_entity_name(entity) == name
        assert naming.get_rel_path_by_obj(entity) == rel_path

    def test_aliases(self):
        entity = {"block": "b", "modifierName": "m", "modifierValue": "v"}
        assert naming.normalize_entity(entity) == {"block": "b", "mod": "m", "val": "v"}

    def test_empty_values_dropped(self):
        assert naming.normalize_entity({"block": "b", "elem": "", "mod": None}) == {"block": "b"}

    def test_block_required(self):
        with pytest.raises(DeclarationError):
            naming.normalize_entity({"elem": "item"})

    def test_path_on_level(self):
        assert naming.get_path_by_obj("/blocks", {"block": "menu"}) == "/blocks/menu/menu"


class TestEntityFiles:
    """Test file lookup on the real filesystem."""

    def test_match_entity_files(self, tmp_path):
        (tmp_path / "menu").mkdir()
        (tmp_path / "menu" / "menu.css").write_text("")

        assert naming.match_entity_files(str(tmp_path), {"block": "menu"}, ".css") == [
            str(tmp_path / "menu" / "menu.css")
        ]
        assert naming.match_entity_files(str(tmp_path), {"block": "menu"}, ".js") == []

    def test_list_level_files_skips_config(self, tmp_path):
        (tmp_path / ".bem" / "techs").mkdir(parents=True)
        (tmp_path / ".bem" / "techs" / "css.py").write_text("")
        (tmp_path / "menu").mkdir()
        (tmp_path / "menu" / "menu.css").write_text("")

        assert naming.list_level_files(str(tmp_path)) == [str(tmp_path / "menu" / "menu.css")]


class TestParseDeclaration:
    """Test flattening declarations."""

    def test_deps_mapping(self):
        decl = {"deps": [{"block": "a"}, {"block": "a", "elem": "e"}]}
        assert naming.parse_declaration(decl) == [{"block": "a"}, {"block": "a", "elem": "e"}]

    def test_bare_list_deduplicated_in_order(self):
        decl = [{"block": "b"}, {"block": "a"}, {"block": "b"}]
        assert naming.parse_declaration(decl) == [{"block": "b"}, {"block": "a"}]

    def test_none(self):
        assert naming.parse_declaration(None) == []

    @pytest.mark.parametrize("decl", [{"blocks": []}, "menu", [["menu"]], [{"elem": "x"}]])
    def test_invalid(self, decl):
        with pytest.raises(DeclarationError) as exc_info:
            naming.parse_declaration(decl)

        assert isinstance(exc_info.value, BemkitError)
