"""Integer coercion and limit clamping tests."""

from tarbiya.engagement.limits import normalize_limit, to_int


class TestToInt:
    def test_truncates_floats_and_strings(self):
        """Numbers and numeric strings truncate toward zero."""
        assert to_int(3.9) == 3
        assert to_int("7.5") == 7
        assert to_int(-2.5) == -2

    def test_fallback_for_junk(self):
        """None, empty, text, NaN and infinity use the fallback."""
        assert to_int(None, 4) == 4
        assert to_int("", 4) == 4
        assert to_int("abc", 4) == 4
        assert to_int(float("nan"), 4) == 4
        assert to_int(float("inf"), 4) == 4


class TestNormalizeLimit:
    def test_clamps(self):
        """Values are held inside [minimum, maximum]."""
        assert normalize_limit(0, 1, 50) == 1
        assert normalize_limit(500, 1, 50) == 50
        assert normalize_limit("25", 1, 50) == 25

    def test_default_when_missing(self):
        """None takes the default."""
        assert normalize_limit(None, 1, 50, default=10) == 10
