#!/usr/bin/env python3
"""
acl_client.py - Adds, deletes or lists Policy ACL flows.

Field options are decoded in command-line order on top of the default
rule. Without a verb, `--count` flows are added with the destination MAC
incremented for each one; `list` and `delete` walk the flow table
starting at the given rule.
"""

from __future__ import annotations

import argparse
import logging
from typing import Optional, Sequence

from acl_ctl import ControlClient, ControlError
from acl_fields import ParseError, format_ipv4, format_mac_dotted, parse_uint
from acl_rule import (
    DEFAULT_COUNT,
    DEFAULT_IDLE_TIME,
    FIELDS,
    TABLE_ID_ACL_POLICY,
    FlowRule,
    MatchBuilder,
    ValidationError,
    default_rule,
)
from acl_table import FlowTableClient, TableDriver, display_rule

VERSION = "1.0"
CLIENT_NAME = "ofdpa Policy ACL client"

ARG_DELETE = "delete"
ARG_LIST = "list"

logger = logging.getLogger("acl_client")


class _FieldAction(argparse.Action):
    """Record (field key, raw text) in `namespace.fields`, keeping command-line order."""

    def __call__(self, parser, namespace, values, option_string=None):
        items = list(getattr(namespace, "fields", None) or [])
        items.append((self.dest, values if self.nargs != 0 else None))
        setattr(namespace, "fields", items)


def _defaults_epilog(rule: Optional[FlowRule] = None) -> str:
    m = (rule or default_rule()).match
    lines = ["Default values:", f"COUNT     = {DEFAULT_COUNT}", f"IFNUM     = {m.in_port.value}"]
    if not m.src_mac.wildcard:
        lines.append(f"SRCMAC    = {format_mac_dotted(m.src_mac.value)}")
    if not m.dest_mac.wildcard:
        lines.append(f"DESTMAC   = {format_mac_dotted(m.dest_mac.value)}")
    if not m.vlan_id.wildcard:
        lines.append(f"VLANID    = {m.vlan_id.value}")
    lines.append(f"TUNNELID  = {m.tunnel_id}")
    lines.append(f"ETHERTYPE = 0x{m.ether_type:04x}")
    if not m.dscp.wildcard:
        lines.append(f"DSCP      = {m.dscp.value}")
    if not m.src_ip4.wildcard:
        lines.append(f"SOURCEIP  = {format_ipv4(m.src_ip4.value)}")
    if not m.dest_ip4.wildcard:
        lines.append(f"DESTIP    = {format_ipv4(m.dest_ip4.value)}")
    if not m.ip_proto.wildcard:
        lines.append(f"PROTOCOL  = {m.ip_proto.value}")
    if not m.src_l4_port.wildcard:
        lines.append(f"SRCPORT   = {m.src_l4_port.value}")
    if not m.dest_l4_port.wildcard:
        lines.append(f"DSTPORT   = {m.dest_l4_port.value}")
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="acl_client",
        description="Adds, deletes or lists Policy ACL flows.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=_defaults_epilog(),
    )

    p.add_argument("-p", "--port", type=int, default=9000, help="RPC Server Port")
    p.add_argument("-i", "--hostip", type=str, default="localhost", help="RPC Server Address")
    p.add_argument("--timeout", type=float, default=2.0, help="RPC socket timeout in seconds")
    p.add_argument("-d", "--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--stats", action="store_true", help="Show flow counters when listing or deleting")
    p.add_argument("-V", "--version", action="version", version=f"%(prog)s v{VERSION}")

    p.add_argument("-c", "--count", default=None, metavar="COUNT",
                   help="Number of ACLs to add, delete or list (0 = all).")

    groups = {}
    for spec in FIELDS.values():
        group = groups.get(spec.group)
        if group is None:
            group = groups[spec.group] = p.add_argument_group(spec.group.rstrip(":"))
        kwargs = {"dest": spec.key, "action": _FieldAction, "default": argparse.SUPPRESS,
                  "help": spec.help}
        if spec.metavar is None:
            kwargs["nargs"] = 0
        else:
            kwargs["metavar"] = spec.metavar
        group.add_argument(f"--{spec.key}", **kwargs)

    p.add_argument(
        "verb",
        nargs="?",
        type=str.lower,
        choices=[ARG_DELETE, ARG_LIST],
        help="Delete or list flows instead of adding them",
    )
    return p


def setup_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="[%(asctime)s] [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def compose_rule(prepared: FlowRule, built: FlowRule, listing: bool) -> FlowRule:
    """
    Overlay the built rule on the rule the server prepared. Listing walks
    from the prepared rule as-is.
    """
    prepared.idle_time = DEFAULT_IDLE_TIME
    if not listing:
        prepared.priority = built.priority
        prepared.match = built.match
        prepared.actions = built.actions
    return prepared


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.debug)

    try:
        count = DEFAULT_COUNT if args.count is None else parse_uint(args.count, "count")
        built = MatchBuilder().apply_all(getattr(args, "fields", None) or []).finish()
    except (ParseError, ValidationError) as e:
        print(f"ERROR: {e}")
        return 2

    listing = args.verb == ARG_LIST
    deleting = args.verb == ARG_DELETE

    ctl = ControlClient(hostip=args.hostip, port=args.port, timeout=args.timeout)
    table = FlowTableClient(ctl)

    try:
        table.initialize(CLIENT_NAME)
    except ControlError as e:
        print(f"ERROR: {e}")
        return 2

    try:
        prepared = table.prepare_rule(TABLE_ID_ACL_POLICY)
    except ControlError as e:
        print(f"\nFailed to initialize Policy ACL Flow Table. ({e})")
        return 2

    rule = compose_rule(prepared, built, listing)
    driver = TableDriver(table, show=display_rule, with_stats=args.stats, say=print)

    try:
        if listing or deleting:
            print(f"{'Listing' if listing else 'Deleting'} up to {count} Policy ACL flows.")
            result = driver.list_batch(rule, count) if listing else driver.delete_batch(rule, count)
        else:
            print(f"Adding {count} Policy ACL flows with the following parameters:")
            display_rule(rule)
            print("\nDestination MAC address is incremented in each additional flow.\n")
            result = driver.add_batch(rule, count)
    except ControlError as e:
        print(f"ERROR: {e}")
        return 2

    logger.debug("Processed %d flows, %d failures", result.processed, result.failures)
    return 0 if result.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
