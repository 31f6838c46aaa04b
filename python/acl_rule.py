#!/usr/bin/env python3
"""
acl_rule.py - Policy ACL flow rule model and the builder that fills it
from decoded command-line fields.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from acl_fields import (
    EXACT_MAC_MASK,
    IPV4_EXACT_MASK,
    U8_MAX,
    U32_MAX,
    ParseError,
    format_ipv4,
    format_ipv6,
    format_mac,
    parse_below,
    parse_interface,
    parse_ipv4,
    parse_ipv4_prefix,
    parse_ipv6,
    parse_ipv6_prefix,
    parse_mac,
    parse_uint,
)

TABLE_ID_ACL_POLICY = 60

ETHERTYPE_IPV4 = 0x0800
ETHERTYPE_IPV6 = 0x86DD

# Ethertype and IP protocol values must stay below these
INVALID_ETHERTYPE = 0xFFFF
INVALID_PROTOCOL = 0xFFFF

VLANID_MAX = 4095
VLANPRIO_MAX = 7
DSCP_MAX = 63
PORTNUM_MAX = 65535

IN_PORT_EXACT_MASK = U32_MAX
VLANID_EXACT_MASK = 0x1FFF
VLANPRIO_EXACT_MASK = 0x7
PROTOCOL_EXACT_MASK = 0xFF
DSCP_EXACT_MASK = 0xFF
L4PORT_EXACT_MASK = U32_MAX
ICMP_EXACT_MASK = 0xFF

DEFAULT_COUNT = 1
DEFAULT_IDLE_TIME = 30


class ValidationError(ValueError):
    """Fields that are individually valid but inconsistent with each other."""
    pass


# ---------------------------------------------------------------------------
# Dataclasses representing a flow rule
# ---------------------------------------------------------------------------

@dataclass
class MatchField:
    """Value/mask pair. An all-zero mask means the field is not matched."""
    value: Any = 0
    mask: Any = 0

    @property
    def wildcard(self) -> bool:
        return _is_zero(self.mask)


def _is_zero(v: Any) -> bool:
    if isinstance(v, (bytes, bytearray)):
        return not any(v)
    return v == 0


def _zero_like(v: Any) -> Any:
    if isinstance(v, (bytes, bytearray)):
        return bytes(len(v))
    return 0


def _mac_field(value: bytes = bytes(6), mask: bytes = bytes(6)) -> MatchField:
    return MatchField(value, mask)


def _ip4_from_wire(v: Any) -> int:
    return int(v) if isinstance(v, int) else parse_ipv4(v)


def _ip6_from_wire(v: Any) -> int:
    return int(v) if isinstance(v, int) else parse_ipv6(v)


# field name -> (to wire, from wire); anything else travels as an integer
_WIRE_CODECS: Dict[str, Tuple[Callable[[Any], Any], Callable[[Any], Any]]] = {
    "src_mac": (format_mac, parse_mac),
    "dest_mac": (format_mac, parse_mac),
    "src_ip4": (format_ipv4, _ip4_from_wire),
    "dest_ip4": (format_ipv4, _ip4_from_wire),
    "src_ip6": (format_ipv6, _ip6_from_wire),
    "dest_ip6": (format_ipv6, _ip6_from_wire),
}
_INT_CODEC = (int, int)


@dataclass
class MatchCriteria:
    in_port: MatchField = field(default_factory=MatchField)
    vlan_id: MatchField = field(default_factory=MatchField)
    vlan_pcp: MatchField = field(default_factory=MatchField)
    tunnel_id: int = 0
    src_mac: MatchField = field(default_factory=_mac_field)
    dest_mac: MatchField = field(default_factory=_mac_field)
    ether_type: int = 0
    src_ip4: MatchField = field(default_factory=MatchField)
    dest_ip4: MatchField = field(default_factory=MatchField)
    src_ip6: MatchField = field(default_factory=MatchField)
    dest_ip6: MatchField = field(default_factory=MatchField)
    ip_proto: MatchField = field(default_factory=MatchField)
    dscp: MatchField = field(default_factory=MatchField)
    src_l4_port: MatchField = field(default_factory=MatchField)
    dest_l4_port: MatchField = field(default_factory=MatchField)
    icmp_type: MatchField = field(default_factory=MatchField)
    icmp_code: MatchField = field(default_factory=MatchField)

    def to_wire(self) -> Dict[str, Any]:
        """Flatten into {"name": value, "name_mask": mask, ...}."""
        cfg: Dict[str, Any] = {}
        for f in fields(self):
            enc, _ = _WIRE_CODECS.get(f.name, _INT_CODEC)
            attr = getattr(self, f.name)
            if isinstance(attr, MatchField):
                cfg[f.name] = enc(attr.value)
                cfg[f.name + "_mask"] = enc(attr.mask)
            else:
                cfg[f.name] = enc(attr)
        return cfg

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "MatchCriteria":
        match = cls()
        for f in fields(match):
            if f.name not in data:
                continue
            _, dec = _WIRE_CODECS.get(f.name, _INT_CODEC)
            attr = getattr(match, f.name)
            if isinstance(attr, MatchField):
                attr.value = dec(data[f.name])
                if f.name + "_mask" in data:
                    attr.mask = dec(data[f.name + "_mask"])
            else:
                setattr(match, f.name, dec(data[f.name]))
        return match


@dataclass
class ActionSet:
    """Write actions. None means the action is not applied."""
    group_id: Optional[int] = None
    queue_id: Optional[int] = None
    vlan_pcp: Optional[int] = None
    dscp: Optional[int] = None
    output_tunnel_port: Optional[int] = None
    discard: bool = False
    copy_to_controller: bool = False

    def to_wire(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "ActionSet":
        actions = cls()
        for f in fields(actions):
            v = data.get(f.name)
            if f.type == "bool":
                setattr(actions, f.name, bool(v))
            elif v is not None:
                setattr(actions, f.name, int(v))
        return actions


@dataclass
class FlowRule:
    """One entry of the policy ACL flow table."""
    priority: int = 0
    match: MatchCriteria = field(default_factory=MatchCriteria)
    actions: ActionSet = field(default_factory=ActionSet)
    idle_time: int = 0
    table_id: int = TABLE_ID_ACL_POLICY

    def to_wire(self) -> Dict[str, Any]:
        return {
            "table_id": int(self.table_id),
            "priority": int(self.priority),
            "idle_time": int(self.idle_time),
            "match": self.match.to_wire(),
            "actions": self.actions.to_wire(),
        }

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "FlowRule":
        return cls(
            priority=int(data.get("priority", 0)),
            match=MatchCriteria.from_wire(data.get("match", {})),
            actions=ActionSet.from_wire(data.get("actions", {})),
            idle_time=int(data.get("idle_time", 0)),
            table_id=int(data.get("table_id", TABLE_ID_ACL_POLICY)),
        )


_DEFAULT_RULE = FlowRule(
    priority=0,
    match=MatchCriteria(
        in_port=MatchField(1, IN_PORT_EXACT_MASK),
        vlan_id=MatchField(1, VLANID_EXACT_MASK),
        vlan_pcp=MatchField(0, 0),
        tunnel_id=0,
        src_mac=MatchField(bytes.fromhex("000907050301"), EXACT_MAC_MASK),
        dest_mac=MatchField(bytes.fromhex("000103050709"), EXACT_MAC_MASK),
        ether_type=ETHERTYPE_IPV4,
        src_ip4=MatchField(0x01010101, IPV4_EXACT_MASK),
        dest_ip4=MatchField(0x02020202, IPV4_EXACT_MASK),
        ip_proto=MatchField(17, PROTOCOL_EXACT_MASK),
        dscp=MatchField(0, 0),
        src_l4_port=MatchField(100, L4PORT_EXACT_MASK),
        dest_l4_port=MatchField(200, L4PORT_EXACT_MASK),
    ),
)


def default_rule() -> FlowRule:
    """Fresh copy of the baseline rule every command line is overlaid on."""
    return copy.deepcopy(_DEFAULT_RULE)


# Fields where a zero value means "not matched": the mask is forced to
# zero whatever mask was asked for. Otherwise the field gets the explicit
# mask if one was given, else the exact mask below.
ZERO_WILDCARD_MASKS: Dict[str, Any] = {
    "vlan_id": VLANID_EXACT_MASK,
    "src_mac": EXACT_MAC_MASK,
    "dest_mac": EXACT_MAC_MASK,
    "src_ip4": IPV4_EXACT_MASK,
    "dest_ip4": IPV4_EXACT_MASK,
    "ip_proto": PROTOCOL_EXACT_MASK,
    "dscp": DSCP_EXACT_MASK,
    "src_l4_port": L4PORT_EXACT_MASK,
    "dest_l4_port": L4PORT_EXACT_MASK,
}


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

class MatchBuilder:
    """
    Accumulates decoded command-line fields on top of a copy of a default
    rule. Fields may arrive in any order; writing the same field twice keeps
    the last value. Call finish() once all input has been applied.
    """

    def __init__(self, default: Optional[FlowRule] = None) -> None:
        self.rule = default_rule() if default is None else copy.deepcopy(default)
        self.ipv4_found = False
        self.ipv6_found = False
        self._masks: Dict[str, Any] = {}

    def apply(self, key: str, text: Optional[str]) -> None:
        """Decode one raw option value and write it into the rule."""
        try:
            spec = FIELDS[key]
        except KeyError:
            raise ParseError("option", key, "unknown field") from None
        spec.apply(self, spec.decode(text))

    def apply_all(self, items: Iterable[Tuple[str, Optional[str]]]) -> "MatchBuilder":
        for key, text in items:
            self.apply(key, text)
        return self

    def set_value(self, name: str, value: Any, mask: Any = None) -> None:
        match_field = getattr(self.rule.match, name)
        match_field.value = value
        if name in ZERO_WILDCARD_MASKS:
            if _is_zero(value):
                match_field.mask = _zero_like(value)
            else:
                match_field.mask = self._masks.get(name, ZERO_WILDCARD_MASKS[name])
        elif mask is not None:
            match_field.mask = mask

    def set_mask(self, name: str, mask: Any) -> None:
        match_field = getattr(self.rule.match, name)
        self._masks[name] = mask
        if name in ZERO_WILDCARD_MASKS and _is_zero(match_field.value):
            return
        match_field.mask = mask

    def finish(self) -> FlowRule:
        """Run the cross-field checks and return the finished rule."""
        ether_type = self.rule.match.ether_type
        if self.ipv6_found and ether_type == ETHERTYPE_IPV4:
            raise ValidationError("Incorrect ethertype for IPv6 address")
        if self.ipv4_found and ether_type == ETHERTYPE_IPV6:
            raise ValidationError("Incorrect ethertype for IPv4 address")
        return self.rule


# ---------------------------------------------------------------------------
# Field table: option key -> decoder + setter
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldSpec:
    key: str
    group: str
    help: str
    decode: Callable[[Optional[str]], Any]
    apply: Callable[[MatchBuilder, Any], None]
    # None for flags that take no argument
    metavar: Optional[str] = None


def _flag(text: Optional[str]) -> bool:
    return True


def _uint(desc: str, maximum: int = U32_MAX) -> Callable[[Optional[str]], int]:
    return lambda text: parse_uint(text, desc, maximum)


def _below(desc: str, limit: int) -> Callable[[Optional[str]], int]:
    return lambda text: parse_below(text, desc, limit)


def _priority(b: MatchBuilder, v: int) -> None:
    b.rule.priority = v


def _match_attr(name: str) -> Callable[[MatchBuilder, Any], None]:
    def _apply(b: MatchBuilder, v: Any) -> None:
        setattr(b.rule.match, name, v)
    return _apply


def _value(name: str, mask: Any = None) -> Callable[[MatchBuilder, Any], None]:
    return lambda b, v: b.set_value(name, v, mask)


def _mask(name: str) -> Callable[[MatchBuilder, Any], None]:
    return lambda b, v: b.set_mask(name, v)


def _ipv4(name: str) -> Callable[[MatchBuilder, int], None]:
    def _apply(b: MatchBuilder, v: int) -> None:
        b.set_value(name, v)
        if v != 0:
            b.ipv4_found = True
    return _apply


def _ipv6(name: str) -> Callable[[MatchBuilder, int], None]:
    def _apply(b: MatchBuilder, v: int) -> None:
        b.set_value(name, v)
        b.ipv6_found = True
    return _apply


def _action(name: str) -> Callable[[MatchBuilder, Any], None]:
    def _apply(b: MatchBuilder, v: Any) -> None:
        setattr(b.rule.actions, name, v)
    return _apply


GENERAL = "General:"
L2 = "L2 Qualifiers:"
L3 = "L3 Qualifiers:"
L4 = "L4 Qualifiers:"
WRITE_ACTIONS = "Write Actions:"
OTHER_ACTIONS = "Other Actions:"

_FIELD_LIST: List[FieldSpec] = [
    FieldSpec("priority", GENERAL, "The priority of the rule.",
              _uint("priority"), _priority, "PRIORITY"),
    FieldSpec("intf", GENERAL, 'The ingress interface number (or "all").',
              parse_interface, lambda b, v: b.set_value("in_port", *v), "IFNUM"),

    FieldSpec("vlan", L2, "The VLAN to which the ACL should be applied.",
              _uint("VLAN ID", VLANID_MAX), _value("vlan_id"), "VLANID"),
    FieldSpec("tunnelid", L2, "The tenant identifier.",
              _uint("tunnel ID"), _match_attr("tunnel_id"), "TUNNELID"),
    FieldSpec("vlanpri", L2, "The VLAN priority tag.",
              _uint("VLAN priority", VLANPRIO_MAX), _value("vlan_pcp", VLANPRIO_EXACT_MASK), "VLANPRI"),
    FieldSpec("ether", L2, "The ethertype.",
              _below("Ethertype", INVALID_ETHERTYPE), _match_attr("ether_type"), "ETHERTYPE"),
    FieldSpec("srcmac", L2, "The source MAC address.",
              lambda text: parse_mac(text, "source MAC address"), _value("src_mac"), "SRCMAC"),
    FieldSpec("dstmac", L2, "The destination MAC address.",
              lambda text: parse_mac(text, "destination MAC address"), _value("dest_mac"), "DESTMAC"),
    FieldSpec("srcmacmask", L2, "The source MAC address Mask (Default: ff:ff:ff:ff:ff:ff).",
              lambda text: parse_mac(text, "source MAC mask"), _mask("src_mac"), "MASK"),
    FieldSpec("dstmacmask", L2, "The destination MAC address Mask (Default: ff:ff:ff:ff:ff:ff).",
              lambda text: parse_mac(text, "destination MAC mask"), _mask("dest_mac"), "MASK"),

    FieldSpec("dstip4", L3, "The destination IPv4 address.",
              lambda text: parse_ipv4(text, "destination IPv4 address"), _ipv4("dest_ip4"), "DESTIP4"),
    FieldSpec("dstip4pfx", L3, "The destination IPv4 prefix length (Default = 32).",
              lambda text: parse_ipv4_prefix(text, "destination IPv4 prefix length"),
              _mask("dest_ip4"), "PREFIXLEN"),
    FieldSpec("proto", L3, "The IP protocol.",
              _below("IP protocol", INVALID_PROTOCOL), _value("ip_proto"), "PROTOCOL"),
    FieldSpec("srcip4", L3, "The source IPv4 address.",
              lambda text: parse_ipv4(text, "source IPv4 address"), _ipv4("src_ip4"), "SOURCEIP4"),
    FieldSpec("srcip4pfx", L3, "The source IPv4 prefix length (Default = 32).",
              lambda text: parse_ipv4_prefix(text, "source IPv4 prefix length"),
              _mask("src_ip4"), "PREFIXLEN"),
    FieldSpec("srcip6", L3, "The source IPv6 address.",
              lambda text: parse_ipv6(text, "source IPv6 address"), _ipv6("src_ip6"), "SOURCEIP6"),
    FieldSpec("srcip6pfx", L3, "The source IPv6 prefix length (Default = 0).",
              lambda text: parse_ipv6_prefix(text, "source IPv6 prefix length"),
              _mask("src_ip6"), "PREFIXLEN"),
    FieldSpec("dstip6", L3, "The destination IPv6 address.",
              lambda text: parse_ipv6(text, "destination IPv6 address"), _ipv6("dest_ip6"), "DESTIP6"),
    FieldSpec("dstip6pfx", L3, "The destination IPv6 prefix length (Default = 0).",
              lambda text: parse_ipv6_prefix(text, "destination IPv6 prefix length"),
              _mask("dest_ip6"), "PREFIXLEN"),
    FieldSpec("dscp", L3, "The DSCP.",
              _uint("DSCP", DSCP_MAX), _value("dscp"), "DSCP"),

    FieldSpec("srcport", L4, "The source L4 port.",
              _uint("source L4 port", PORTNUM_MAX), _value("src_l4_port"), "SRCPORT"),
    FieldSpec("dstport", L4, "The destination L4 port.",
              _uint("destination L4 port", PORTNUM_MAX), _value("dest_l4_port"), "DSTPORT"),
    FieldSpec("icmptype", L4, "The ICMP packet type.",
              _uint("ICMP type", U8_MAX), _value("icmp_type", ICMP_EXACT_MASK), "ICMPTYPE"),
    FieldSpec("icmpcode", L4, "The ICMP packet code.",
              _uint("ICMP code", U8_MAX), _value("icmp_code", ICMP_EXACT_MASK), "ICMPCODE"),

    FieldSpec("setgroup", WRITE_ACTIONS, "Set the output group for packets in this flow.",
              _uint("group ID"), _action("group_id"), "GROUP"),
    FieldSpec("setqueue", WRITE_ACTIONS, "Set the output queue for packets in this flow.",
              _uint("queue ID"), _action("queue_id"), "QUEUE"),
    FieldSpec("setvlanp", WRITE_ACTIONS, "Set the VLAN priority for packets in this flow.",
              _uint("VLAN priority value", VLANPRIO_MAX), _action("vlan_pcp"), "PRIORITY"),
    FieldSpec("setdscp", WRITE_ACTIONS, "Set the DSCP for packets in this flow.",
              _uint("DSCP value", DSCP_MAX), _action("dscp"), "DSCP"),
    FieldSpec("outtunnelport", WRITE_ACTIONS, "Output tunnel port for Tenant type flows.",
              _uint("output tunnel port"), _action("output_tunnel_port"), "OUTTUNNELPORT"),

    FieldSpec("discard", OTHER_ACTIONS, "Discard matching flows.",
              _flag, _action("discard")),
    FieldSpec("copy", OTHER_ACTIONS, "Copy matching flows to the CPU.",
              _flag, _action("copy_to_controller")),
]

FIELDS: Dict[str, FieldSpec] = {spec.key: spec for spec in _FIELD_LIST}
