"""Reliable Line Transfer Protocol (RLTP)

A client uploads a closed set of line-oriented files over UDP, one chunk of
up to three lines at a time, stop-and-wait. The server merges them in name
order and sends the merged artifact back with the same mechanism.

- `packet`: fixed-layout framing
- `sender` / `receiver`: the two halves of one phase
- `scheduler`: which item feeds the next chunk
- `session`: upload, merge, download
"""

__all__ = []
