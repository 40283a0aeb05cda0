"""Tests for pkgsmith.substitution."""

from pkgsmith.substitution import Replacer, placeholder_tokens


class TestPlaceholderTokens:
    def test_both_forms(self):
        assert placeholder_tokens("inputs.prefix") == ("${{inputs.prefix}}", "${{ inputs.prefix }}")


class TestReplacer:
    """Tests single-pass token replacement."""

    def test_compact_and_spaced_forms(self):
        replacer = Replacer.from_variables({"package.name": "hello"})
        assert replacer.replace("${{package.name}}-${{ package.name }}") == "hello-hello"

    def test_unknown_placeholder_left_verbatim(self):
        replacer = Replacer.from_variables({"package.name": "hello"})
        assert replacer.replace("${{package.version}}") == "${{package.version}}"

    def test_text_without_placeholders_unchanged(self):
        replacer = Replacer.from_variables({"package.name": "hello"})
        text = "make install DESTDIR=/out"
        assert replacer.replace(text) == text
        assert replacer.replace(replacer.replace(text)) == text

    def test_produced_text_not_rescanned(self):
        replacer = Replacer.from_variables({"a": "${{b}}", "b": "X"})
        assert replacer.replace("${{a}} ${{b}}") == "${{b}} X"

    def test_longest_token_wins(self):
        replacer = Replacer({"ab": "1", "abc": "2"})
        assert replacer.replace("abc ab") == "2 1"

    def test_empty_mapping(self):
        assert Replacer({}).replace("${{x}}") == "${{x}}"

    def test_empty_text(self):
        assert Replacer({"a": "b"}).replace("") == ""

    def test_replacements_property(self):
        replacer = Replacer.from_variables({"range.key": "a"})
        assert replacer.replacements == {"${{range.key}}": "a", "${{ range.key }}": "a"}

    def test_values_with_regex_characters(self):
        replacer = Replacer.from_variables({"inputs.pattern": r"\1 $& (.*)"})
        assert replacer.replace("s/${{inputs.pattern}}/") == r"s/\1 $& (.*)/"
