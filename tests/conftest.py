"""
Shared fixtures for the Policy ACL client tests.
"""
import copy
from typing import List, Optional

import pytest

from acl_ctl import E_FAIL, E_NOT_FOUND, RemoteError
from acl_rule import FlowRule, default_rule


def make_rule(last_octet: int, priority: int = 0) -> FlowRule:
    """Default rule with the destination MAC ending in last_octet."""
    rule = copy.deepcopy(default_rule())
    rule.priority = priority
    rule.match.dest_mac.value = bytes([0x00, 0x01, 0x03, 0x05, 0x07, last_octet])
    return rule


class FakeFlowTable:
    """
    In-memory stand-in for FlowTableClient.

    Entries are ordered by destination MAC; get_next returns the first entry
    whose destination MAC is greater than the cursor's.
    """

    def __init__(self, rules: Optional[List[FlowRule]] = None) -> None:
        self.rules: List[FlowRule] = [copy.deepcopy(r) for r in (rules or [])]
        self.calls: List[tuple] = []
        # call index (1-based, per operation) -> RemoteError to raise
        self.add_errors = {}
        self.delete_errors = {}
        self.get_error: Optional[RemoteError] = None
        self.stats_error: Optional[RemoteError] = None
        self._adds = 0
        self._deletes = 0

    def _key(self, rule: FlowRule) -> bytes:
        return rule.match.dest_mac.value

    def add(self, rule: FlowRule) -> None:
        self._adds += 1
        self.calls.append(("add", copy.deepcopy(rule)))
        if self._adds in self.add_errors:
            raise self.add_errors[self._adds]
        self.rules.append(copy.deepcopy(rule))
        self.rules.sort(key=self._key)

    def delete(self, rule: FlowRule) -> None:
        self._deletes += 1
        self.calls.append(("delete", copy.deepcopy(rule)))
        if self._deletes in self.delete_errors:
            raise self.delete_errors[self._deletes]
        self.rules = [r for r in self.rules if r != rule]

    def get(self, rule: FlowRule) -> Optional[FlowRule]:
        self.calls.append(("get", copy.deepcopy(rule)))
        if self.get_error is not None:
            raise self.get_error
        for r in self.rules:
            if r == rule:
                return copy.deepcopy(r)
        return None

    def get_next(self, rule: FlowRule) -> Optional[FlowRule]:
        self.calls.append(("get_next", copy.deepcopy(rule)))
        for r in sorted(self.rules, key=self._key):
            if self._key(r) > self._key(rule):
                return copy.deepcopy(r)
        return None

    def get_stats(self, rule: FlowRule):
        self.calls.append(("get_stats", copy.deepcopy(rule)))
        if self.stats_error is not None:
            raise self.stats_error
        return None

    def ops(self, name: str) -> List[FlowRule]:
        return [rule for op, rule in self.calls if op == name]


@pytest.fixture
def fake_table():
    """Empty fake flow table."""
    return FakeFlowTable()


@pytest.fixture
def remote_fail():
    """A generic non not-found remote failure."""
    return RemoteError("ofdpa_flow_add", E_FAIL, "table full")


@pytest.fixture
def remote_not_found():
    return RemoteError("ofdpa_flow_get", E_NOT_FOUND, "not found")
