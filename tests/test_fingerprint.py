"""Tests for deterministic cache-key fingerprints."""

from __future__ import annotations

from conduit.cache.fingerprint import compute_fingerprint, data_source_tag, fetch_fingerprint


class TestComputeFingerprint:
    def test_key_order_does_not_matter(self) -> None:
        assert compute_fingerprint("ns", {"a": 1, "b": 2}) == compute_fingerprint(
            "ns", {"b": 2, "a": 1}
        )

    def test_namespace_prefix(self) -> None:
        key = compute_fingerprint("ns", {"a": 1})
        namespace, digest = key.split(":")
        assert namespace == "ns"
        assert len(digest) == 64

    def test_namespaces_do_not_collide(self) -> None:
        assert compute_fingerprint("a", {"x": 1}) != compute_fingerprint("b", {"x": 1})


class TestFetchFingerprint:
    def test_method_case_is_normalized(self) -> None:
        assert fetch_fingerprint(
            data_source_id="ds", method="get", endpoint="/users"
        ) == fetch_fingerprint(data_source_id="ds", method="GET", endpoint="/users")

    def test_none_params_are_ignored(self) -> None:
        assert fetch_fingerprint(
            data_source_id="ds", method="GET", endpoint="/users", params={"page": None}
        ) == fetch_fingerprint(data_source_id="ds", method="GET", endpoint="/users")

    def test_data_source_and_params_distinguish_keys(self) -> None:
        base = fetch_fingerprint(data_source_id="ds", method="GET", endpoint="/users")
        assert base != fetch_fingerprint(data_source_id="other", method="GET", endpoint="/users")
        assert base != fetch_fingerprint(
            data_source_id="ds", method="GET", endpoint="/users", params={"page": 2}
        )

    def test_headers_distinguish_keys(self) -> None:
        tenant_a = fetch_fingerprint(
            data_source_id="ds", method="GET", endpoint="/users", headers={"X-Tenant": "A"}
        )
        tenant_b = fetch_fingerprint(
            data_source_id="ds", method="GET", endpoint="/users", headers={"X-Tenant": "B"}
        )
        assert tenant_a != tenant_b
        assert tenant_a != fetch_fingerprint(data_source_id="ds", method="GET", endpoint="/users")

    def test_header_names_are_case_insensitive(self) -> None:
        assert fetch_fingerprint(
            data_source_id="ds",
            method="GET",
            endpoint="/users",
            headers={"X-Tenant": "A", "Accept": "application/json"},
        ) == fetch_fingerprint(
            data_source_id="ds",
            method="GET",
            endpoint="/users",
            headers={"accept": "application/json", "x-tenant": "A"},
        )

    def test_data_source_tag(self) -> None:
        assert data_source_tag("ds-1") == "data_source:ds-1"
