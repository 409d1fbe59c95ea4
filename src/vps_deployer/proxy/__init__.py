from .routing import ParsedMapping, ParsedRoutingTable, RoutingTable, parse_routing_table

__all__ = ["ParsedMapping", "ParsedRoutingTable", "RoutingTable", "parse_routing_table"]
