"""
topicchat — signed chat events and peer identity probes for topic-based rooms.

Two halves:
- events: build, sign, serialize and strictly verify chat events so a
  receiver knows exactly which key said what.
- challenge / discovery: prove that an address holds a key (UDP WHOAMI)
  and find addresses for a topic through a DHT.

Around them: config (salt, derived identity, friend list), ticket (invites),
node (chat session glue) and run_node (CLI).
"""
__all__ = ["challenge", "config", "crypto", "discovery", "errors", "events", "framing", "node", "run_node", "ticket"]
