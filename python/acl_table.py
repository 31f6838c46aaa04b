#!/usr/bin/env python3
"""
acl_table.py - Policy ACL flow table client and batch add/list/delete driver.

Depends on:
  - ControlClient from acl_ctl.py for the JSON RPC transport
  - FlowRule from acl_rule.py for the rule model
"""

from __future__ import annotations

import copy
import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from prettytable import PrettyTable

from acl_ctl import ControlClient, RemoteError
from acl_fields import format_ipv4, format_ipv6, format_mac_dotted, increment_mac
from acl_rule import FlowRule

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# High-level client wrapper
# ---------------------------------------------------------------------------

@dataclass
class FlowStats:
    duration_sec: int = 0
    received_packets: int = 0
    received_bytes: int = 0

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "FlowStats":
        return cls(
            duration_sec=int(data.get("duration_sec", 0)),
            received_packets=int(data.get("received_packets", 0)),
            received_bytes=int(data.get("received_bytes", 0)),
        )


class FlowTableClient:
    """
    High-level wrapper around the flow table RPC commands.

    Lookups (get, get_next, get_stats) return None when the remote side
    reports "not found"; every other failure raises RemoteError.
    """

    CMD_CLIENT_INIT = "ofdpa_client_initialize"
    CMD_FLOW_ENTRY_INIT = "ofdpa_flow_entry_init"
    CMD_FLOW_ADD = "ofdpa_flow_add"
    CMD_FLOW_GET = "ofdpa_flow_get"
    CMD_FLOW_NEXT_GET = "ofdpa_flow_next_get"
    CMD_FLOW_DELETE = "ofdpa_flow_delete"
    CMD_FLOW_STATS_GET = "ofdpa_flow_stats_get"

    def __init__(self, ctl: ControlClient) -> None:
        self.ctl = ctl

    # ---- Session ----------------------------------------------------------

    def initialize(self, client_name: str) -> None:
        self.ctl.call(self.CMD_CLIENT_INIT, args={"client_name": client_name})

    def prepare_rule(self, table_id: int) -> FlowRule:
        """Return a rule record default-initialized by the server for table_id."""
        reply = self.ctl.call(self.CMD_FLOW_ENTRY_INIT, args={"table_id": int(table_id)})
        return FlowRule.from_wire(reply.get("flow", {}))

    # ---- Modify -----------------------------------------------------------

    def add(self, rule: FlowRule) -> None:
        self.ctl.call(self.CMD_FLOW_ADD, args={"flow": rule.to_wire()})

    def delete(self, rule: FlowRule) -> None:
        self.ctl.call(self.CMD_FLOW_DELETE, args={"flow": rule.to_wire()})

    # ---- Lookups ----------------------------------------------------------

    def _lookup(self, cmd: str, rule: FlowRule) -> Optional[Dict[str, Any]]:
        try:
            return self.ctl.call(cmd, args={"flow": rule.to_wire()})
        except RemoteError as e:
            if e.not_found:
                return None
            raise

    def get(self, rule: FlowRule) -> Optional[FlowRule]:
        """Stored rule matching `rule` exactly, or None."""
        reply = self._lookup(self.CMD_FLOW_GET, rule)
        if reply is None:
            return None
        return FlowRule.from_wire(reply.get("flow", {}))

    def get_next(self, rule: FlowRule) -> Optional[FlowRule]:
        """Stored rule following the `rule` cursor, or None at the end of the table."""
        reply = self._lookup(self.CMD_FLOW_NEXT_GET, rule)
        if reply is None:
            return None
        return FlowRule.from_wire(reply.get("flow", {}))

    def get_stats(self, rule: FlowRule) -> Optional[FlowStats]:
        reply = self._lookup(self.CMD_FLOW_STATS_GET, rule)
        if reply is None:
            return None
        return FlowStats.from_wire(reply.get("stats", {}))


# ---------------------------------------------------------------------------
# Pretty display helpers
# ---------------------------------------------------------------------------

def rule_rows(rule: FlowRule) -> List[Tuple[str, Any]]:
    """Rows of (field, value) for the parts of a rule that are in effect."""
    m = rule.match
    a = rule.actions
    rows: List[Tuple[str, Any]] = [("Priority", rule.priority)]

    if not m.in_port.wildcard:
        rows.append(("Interface", m.in_port.value))
    if not m.vlan_id.wildcard:
        rows.append(("VLAN ID", m.vlan_id.value))
    if m.tunnel_id:
        rows.append(("Tunnel ID", m.tunnel_id))
    if not m.vlan_pcp.wildcard:
        rows.append(("VLAN Priority", m.vlan_pcp.value))
    if not m.src_mac.wildcard:
        rows.append(("Source MAC address", format_mac_dotted(m.src_mac.value)))
        rows.append(("Source MAC Mask", format_mac_dotted(m.src_mac.mask)))
    if not m.dest_mac.wildcard:
        rows.append(("Destination MAC address", format_mac_dotted(m.dest_mac.value)))
        rows.append(("Destination MAC Mask", format_mac_dotted(m.dest_mac.mask)))

    rows.append(("Ethertype", f"0x{m.ether_type:04x}"))

    if not m.src_ip4.wildcard:
        rows.append(("Source IPv4 address", format_ipv4(m.src_ip4.value)))
        rows.append(("Source IPv4 Mask", format_ipv4(m.src_ip4.mask)))
    if not m.dest_ip4.wildcard:
        rows.append(("Destination IPv4 address", format_ipv4(m.dest_ip4.value)))
        rows.append(("Destination IPv4 Mask", format_ipv4(m.dest_ip4.mask)))
    if not m.src_ip6.wildcard:
        rows.append(("Source IPv6 address", format_ipv6(m.src_ip6.value)))
        rows.append(("Source IPv6 Mask", format_ipv6(m.src_ip6.mask)))
    if not m.dest_ip6.wildcard:
        rows.append(("Destination IPv6 address", format_ipv6(m.dest_ip6.value)))
        rows.append(("Destination IPv6 Mask", format_ipv6(m.dest_ip6.mask)))
    if not m.dscp.wildcard:
        rows.append(("DSCP", m.dscp.value))
    if not m.ip_proto.wildcard:
        rows.append(("IP Protocol", f"0x{m.ip_proto.value:02x}"))
    if not m.src_l4_port.wildcard:
        rows.append(("Source L4 Port", m.src_l4_port.value))
    if not m.dest_l4_port.wildcard:
        rows.append(("Destination L4 Port", m.dest_l4_port.value))
    if not m.icmp_type.wildcard:
        rows.append(("ICMP Type", m.icmp_type.value))
    if not m.icmp_code.wildcard:
        rows.append(("ICMP Code", m.icmp_code.value))

    rows.append(("Idle Time", rule.idle_time))

    if a.copy_to_controller:
        rows.append(("Action", "Copy to controller"))
    if a.discard:
        # the remote side ignores every other action on a dropped packet
        rows.append(("Action", "Drop packet"))
    else:
        if a.group_id is not None:
            rows.append(("Action", f"Set output group ID = 0x{a.group_id:08x}"))
        if a.queue_id is not None:
            rows.append(("Action", f"Set CoS queue = {a.queue_id}"))
        if a.vlan_pcp is not None:
            rows.append(("Action", f"Set VLAN priority = {a.vlan_pcp}"))
        if a.dscp is not None:
            rows.append(("Action", f"Set DSCP = {a.dscp}"))
        if a.output_tunnel_port is not None:
            rows.append(("Action", f"Output tunnel port = 0x{a.output_tunnel_port:x}"))
    return rows


def display_rule(rule: FlowRule, stats: Optional[FlowStats] = None) -> None:
    table = PrettyTable()
    table.field_names = ["Field", "Value"]
    table.align = "l"
    for name, value in rule_rows(rule):
        table.add_row([name, value])
    if stats is not None:
        table.add_row(["Duration (sec)", stats.duration_sec])
        table.add_row(["Received Packets", stats.received_packets])
        table.add_row(["Received Bytes", stats.received_bytes])
    print(table)


# ---------------------------------------------------------------------------
# Batch driver
# ---------------------------------------------------------------------------

class WalkState(enum.Enum):
    SEEKING = "seeking"
    ITERATING = "iterating"
    DONE = "done"


@dataclass
class BatchResult:
    processed: int = 0
    failures: int = 0
    state: WalkState = WalkState.SEEKING
    # True when the walk stopped because the table had no further entry
    exhausted: bool = False
    error: Optional[RemoteError] = None

    @property
    def ok(self) -> bool:
        return self.failures == 0


class TableDriver:
    """
    Runs the batch operations against a FlowTableClient, one blocking call
    at a time.

    :param client: flow table client
    :param show: called with (rule, stats) for every rule added, listed or deleted
    :param with_stats: fetch usage counters for listed/deleted rules
    :param say: called with each progress or error line; None keeps the
        driver quiet
    """

    def __init__(
        self,
        client: FlowTableClient,
        show: Optional[Callable[[FlowRule, Optional[FlowStats]], None]] = None,
        with_stats: bool = False,
        say: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.client = client
        self.show = show
        self.with_stats = with_stats
        self.say = say

    def _show(self, rule: FlowRule, stats: Optional[FlowStats] = None) -> None:
        if self.show is not None:
            self.show(rule, stats)

    def _say(self, line: str) -> None:
        if self.say is not None:
            self.say(line)

    def add_batch(self, rule: FlowRule, count: int) -> BatchResult:
        """
        Add `count` copies of rule, incrementing the destination MAC after
        each one. Stops at the first failure; rules already added stay.
        """
        result = BatchResult(state=WalkState.ITERATING)
        rule = copy.deepcopy(rule)

        for i in range(count):
            try:
                self.client.add(rule)
            except RemoteError as e:
                logger.error("Add of flow %d/%d failed: %s", i + 1, count, e)
                self._say(f"\nFailed to add Policy ACL flow entry. rc = {e.rc}.")
                self._show(rule)
                result.failures += 1
                result.error = e
                break
            result.processed += 1
            logger.debug("Added flow %d/%d", i + 1, count)
            rule.match.dest_mac.value = increment_mac(rule.match.dest_mac.value)

        result.state = WalkState.DONE
        return result

    def list_batch(self, template: FlowRule, count: int) -> BatchResult:
        """List up to count rules starting at template. count 0 lists them all."""
        return self._walk(template, count, delete=False)

    def delete_batch(self, template: FlowRule, count: int) -> BatchResult:
        """Delete up to count rules starting at template. count 0 deletes them all."""
        return self._walk(template, count, delete=True)

    def _stats_for(self, rule: FlowRule, result: BatchResult) -> Optional[FlowStats]:
        """Counters for rule, or None. A failed read is reported and counted, never fatal."""
        try:
            return self.client.get_stats(rule)
        except RemoteError as e:
            logger.warning("Stats read for flow %d failed: %s", result.processed, e)
            self._say(f"\nError getting Policy ACL flow statistics rc = {e.rc}.")
            result.failures += 1
            result.error = e
            return None

    def _walk(self, template: FlowRule, count: int, delete: bool) -> BatchResult:
        result = BatchResult()

        # Seeking: the template itself if it is stored, else its successor
        current = self.client.get(template)
        if current is None:
            current = self.client.get_next(template)
        if current is not None:
            result.state = WalkState.ITERATING

        while current is not None:
            result.processed += 1
            self._say(f"{'Deleting f' if delete else 'F'}low number {result.processed}.")
            stats = self._stats_for(current, result) if self.with_stats else None
            self._show(current, stats)

            if delete:
                try:
                    self.client.delete(current)
                except RemoteError as e:
                    logger.warning("Delete of flow %d failed: %s", result.processed, e)
                    self._say(f"\nError deleting Policy ACL flow entry rc = {e.rc}.")
                    result.failures += 1
                    result.error = e

            if count and result.processed >= count:
                break
            current = self.client.get_next(current)
        else:
            result.exhausted = True

        result.state = WalkState.DONE
        if not delete and result.exhausted and result.processed < count:
            self._say("\nNo more entries found.")
        logger.debug("%s walk finished after %d flows", "Delete" if delete else "List",
                     result.processed)
        return result
