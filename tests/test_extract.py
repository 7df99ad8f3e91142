"""
Form value lookup (binding/extract.py)
"""

from formbind._datastructures import MultiDict
from formbind.binding.extract import lookup


class TestLookup:

    def test_missing_key(self):
        assert lookup(MultiDict([("a", "1")]), "b") == (None, False)

    def test_single_value_is_plain_string(self):
        assert lookup(MultiDict([("a", "1")]), "a") == ("1", True)

    def test_empty_value_is_found(self):
        assert lookup(MultiDict([("a", "")]), "a") == ("", True)

    def test_several_values_in_order(self):
        form = MultiDict([("a", "1"), ("b", "x"), ("a", "2")])
        assert lookup(form, "a") == (["1", "2"], True)

    def test_list_is_a_copy(self):
        form = MultiDict([("a", "1"), ("a", "2")])
        value, _ = lookup(form, "a")
        value.append("3")
        assert form.get_all("a") == ["1", "2"]

    def test_key_with_no_values(self):
        form = MultiDict()
        form["a"] = []
        assert lookup(form, "a") == (None, False)
