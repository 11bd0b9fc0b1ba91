"""
Idempotency key derivation tests.

Reference digests are 32-bit FNV-1a over the UTF-16 code units of
"{scope}:{canonical json}".
"""

from datetime import date

import pytest

from bcl_workflow.core.exceptions import ValidationError
from bcl_workflow.services.idempotency import canonicalize, derive_key, fnv1a_32
from bcl_workflow.services.status_model import ReviewOutcome


class TestFnv1a:
    def test_empty_string_is_offset_basis(self):
        assert fnv1a_32("") == 0x811C9DC5

    def test_known_vectors(self):
        assert fnv1a_32("a") == 0xE40C292C
        assert fnv1a_32("foobar") == 0xBF9CF968

    def test_non_ascii_hashes_per_code_unit(self):
        assert fnv1a_32("é") != fnv1a_32("e")


class TestCanonicalize:
    def test_keys_sorted_recursively(self):
        assert canonicalize({"b": 1, "a": {"d": 2, "c": [3, {"f": 4, "e": 5}]}}) == \
            '{"a":{"c":[3,{"e":5,"f":4}],"d":2},"b":1}'

    def test_arrays_keep_order(self):
        assert canonicalize([2, 1]) != canonicalize([1, 2])

    def test_enums_and_dates(self):
        assert canonicalize({"o": ReviewOutcome.ACCEPTABLE, "d": date(2026, 2, 9)}) == \
            '{"d":"2026-02-09","o":"ACCEPTABLE"}'


class TestDeriveKey:
    def test_format(self):
        key = derive_key("evidence-submit", {"id": "ev-1"})
        scope, digest = key.rsplit(":", 1)
        assert scope == "evidence-submit"
        assert len(digest) == 8
        int(digest, 16)

    def test_insertion_order_does_not_matter(self):
        first = derive_key("period-approve", {"project_id": "p", "period_id": "w6", "reason": "ok"})
        second = derive_key("period-approve", {"reason": "ok", "period_id": "w6", "project_id": "p"})
        assert first == second

    def test_value_types_matter(self):
        assert derive_key("s", {"version": "1"}) != derive_key("s", {"version": 1})

    def test_scope_matters(self):
        assert derive_key("period-approve", {"x": 1}) != derive_key("period-reject", {"x": 1})

    def test_any_value_change_changes_key(self):
        assert derive_key("s", {"reason": "now ready"}) != derive_key("s", {"reason": "now ready!"})

    def test_digest_covers_scope_and_payload(self):
        expected = fnv1a_32('s:{"a":1}')
        assert derive_key("s", {"a": 1}) == f"s:{expected:08x}"

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), object()])
    def test_unrepresentable_payload_is_validation(self, value):
        with pytest.raises(ValidationError) as exc:
            derive_key("s", {"title": value})
        assert "payload" in exc.value.details
