"""Tests for the link cycle guard."""

from __future__ import annotations

import pytest

from schemalink.domain.cycles import would_create_cycle


class TestWouldCreateCycle:
    def test_closing_a_chain_is_a_cycle(self) -> None:
        # A -> B, B -> C
        linked_from = {2: {1}, 3: {2}}
        assert would_create_cycle(linked_from, 3, 1) is True

    def test_unconnected_target_is_not_a_cycle(self) -> None:
        linked_from = {2: {1}, 3: {2}}
        assert would_create_cycle(linked_from, 1, 4) is False

    def test_self_link_is_a_cycle(self) -> None:
        assert would_create_cycle({}, 5, 5) is True

    def test_empty_graph(self) -> None:
        assert would_create_cycle({}, 1, 2) is False

    def test_direct_back_edge(self) -> None:
        # A -> B; adding B -> A
        assert would_create_cycle({2: {1}}, 2, 1) is True

    def test_parallel_path_is_not_a_cycle(self) -> None:
        # A -> B, A -> C; adding B -> C only forms a diamond
        linked_from = {2: {1}, 3: {1}}
        assert would_create_cycle(linked_from, 2, 3) is False

    def test_long_chain(self) -> None:
        linked_from = {i + 1: {i} for i in range(1, 200)}
        assert would_create_cycle(linked_from, 200, 1) is True
        assert would_create_cycle(linked_from, 1, 200) is False

    def test_terminates_on_malformed_graph(self) -> None:
        # 1 -> 2 -> 3 -> 1 already exists; unrelated candidate 4 -> 5
        linked_from = {2: {1}, 3: {2}, 1: {3}, 5: set()}
        assert would_create_cycle(linked_from, 4, 5) is False

    def test_detects_cycle_through_malformed_graph(self) -> None:
        linked_from = {2: {1}, 3: {2}, 1: {3}}
        assert would_create_cycle(linked_from, 3, 4) is False
        assert would_create_cycle({**linked_from, 3: {2, 4}}, 1, 4) is True

    def test_input_not_mutated(self) -> None:
        linked_from = {2: {1}}
        would_create_cycle(linked_from, 3, 2)
        assert linked_from == {2: {1}}

    @pytest.mark.parametrize(
        ("local_id", "remote_id", "expected"),
        [(4, 1, True), (4, 2, True), (1, 4, False), (5, 1, False)],
    )
    def test_against_diamond(self, local_id: int, remote_id: int, expected: bool) -> None:
        # 1 -> 2, 1 -> 3, 2 -> 4, 3 -> 4
        linked_from = {2: {1}, 3: {1}, 4: {2, 3}}
        assert would_create_cycle(linked_from, local_id, remote_id) is expected
