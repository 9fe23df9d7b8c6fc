"""Protocol layer: line framing, command builders, reply parsing and dispatch."""

from .framing import LineFramer, encode_frame
from .commands import Command, CommandType, build_command
from .parser import Response, ResponseStatus, parse_response
