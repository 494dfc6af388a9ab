import pytest

from intent_warden.scope import glob_to_regex, is_in_scope, normalize_path

SAMPLE_PATHS = [
    "src/auth/login.ts",
    "README.md",
    "",
    "/etc/passwd",
    "./a/b/c.py",
    "deep/nested/dir/file.txt",
]


class TestNormalizePath:
    def test_strips_dot_slash(self):
        assert normalize_path("./src/a.ts") == "src/a.ts"

    def test_strips_leading_slash(self):
        assert normalize_path("/src/a.ts") == "src/a.ts"

    def test_backslashes(self):
        assert normalize_path("src\\auth\\a.ts") == "src/auth/a.ts"

    def test_collapses_double_slashes(self):
        assert normalize_path("src//auth///a.ts") == "src/auth/a.ts"


class TestIsInScope:
    @pytest.mark.parametrize("path", SAMPLE_PATHS)
    @pytest.mark.parametrize("patterns", [[], None, ()])
    def test_empty_patterns_deny_everything(self, path, patterns):
        assert is_in_scope(path, patterns) is False

    def test_double_star_allows_nested(self):
        assert is_in_scope("src/auth/middleware.ts", ["src/auth/**"]) is True
        assert is_in_scope("src/auth/deep/x/y.ts", ["src/auth/**"]) is True

    def test_double_star_denies_sibling(self):
        assert is_in_scope("src/utils/helper.ts", ["src/auth/**"]) is False

    def test_single_star_stays_in_segment(self):
        assert is_in_scope("docs/intro.md", ["docs/*.md"]) is True
        assert is_in_scope("docs/api/intro.md", ["docs/*.md"]) is False

    def test_question_mark_is_one_char(self):
        assert is_in_scope("v1.txt", ["v?.txt"]) is True
        assert is_in_scope("v10.txt", ["v?.txt"]) is False

    def test_double_star_slash_matches_zero_dirs(self):
        assert is_in_scope("src/a.ts", ["src/**/*.ts"]) is True
        assert is_in_scope("src/x/y/a.ts", ["src/**/*.ts"]) is True

    def test_exact_file(self):
        assert is_in_scope("src/middleware/jwt.ts", ["src/middleware/jwt.ts"]) is True
        assert is_in_scope("src/middleware/jwtXts", ["src/middleware/jwt.ts"]) is False

    def test_patterns_are_ored(self):
        pats = ["docs/*.md", "src/auth/**"]
        assert is_in_scope("docs/a.md", pats)
        assert is_in_scope("src/auth/a.ts", pats)
        assert not is_in_scope("lib/a.ts", pats)

    def test_anchored_full_match(self):
        assert is_in_scope("other/src/auth/a.ts", ["src/auth/**"]) is False

    def test_leading_dot_slash_normalized(self):
        assert is_in_scope("./src/auth/a.ts", ["src/auth/**"]) is True
        assert is_in_scope("/src/auth/a.ts", ["./src/auth/**"]) is True

    def test_blank_patterns_ignored(self):
        assert is_in_scope("a.txt", ["", "   "]) is False

    def test_regex_metacharacters_are_literal(self):
        assert is_in_scope("a+b.txt", ["a+b.txt"]) is True
        assert is_in_scope("aab.txt", ["a+b.txt"]) is False


class TestGlobToRegex:
    def test_compiled_pattern_is_cached(self):
        assert glob_to_regex("src/**") is glob_to_regex("src/**")
