from mes_automation.services.path_resolver import MISSING, is_present, normalize_path, resolve_path


def test_dollar_and_empty_path_return_whole_payload():
    payload = {"a": 1}
    assert resolve_path(payload, "$") is payload
    assert resolve_path(payload, "") is payload
    assert resolve_path(payload, None) is payload


def test_nested_keys_match_repeated_lookup():
    payload = {"order": {"customer": {"name": "Acme"}}}
    assert resolve_path(payload, "order.customer.name") == payload["order"]["customer"]["name"]
    assert resolve_path(payload, "$.order.customer") == {"name": "Acme"}


def test_array_index_segment():
    payload = {"a": [{}, {}, {"b": 5}]}
    assert resolve_path(payload, "$.a[2].b") == 5


def test_index_out_of_range_is_missing():
    assert resolve_path({"a": [{}]}, "$.a[2].b") is MISSING


def test_index_on_non_list_is_missing():
    assert resolve_path({"a": {"0": 1}}, "a[0]") is MISSING


def test_missing_intermediate_key_does_not_raise():
    assert resolve_path({"a": None}, "a.b.c") is MISSING
    assert resolve_path({}, "x.y") is MISSING
    assert resolve_path("scalar", "x") is MISSING


def test_explicit_null_is_distinct_from_missing():
    payload = {"a": None}
    assert resolve_path(payload, "a") is None
    assert not is_present(resolve_path(payload, "a"))
    assert resolve_path(payload, "b") is MISSING


def test_nested_indexes_and_root_index():
    assert resolve_path({"grid": [[1, 2], [3, 4]]}, "grid[1][0]") == 3
    assert resolve_path([{"id": 7}], "$[0].id") == 7


def test_malformed_paths_are_missing():
    assert resolve_path({"a": {"b": 1}}, "a..b") is MISSING
    assert resolve_path({"a": [1]}, "a[x]") is MISSING


def test_normalize_path_strips_legacy_prefix():
    assert normalize_path("$.a.b") == "a.b"
    assert normalize_path("$a") == "a"
    assert normalize_path("a") == "a"
