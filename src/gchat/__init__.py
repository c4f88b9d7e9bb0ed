# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""gchat node - a self-hosted peer node reachable over an onion rendezvous address.

Architecture:
  Identity   (seed phrase -> keypairs -> tripcode / rendezvous address)
  Supervisor (tor subprocess lifecycle, service keys, circuit stats)
  Transport  (control/bulk clients through the SOCKS proxy, peer endpoint)
  Policy     (inbound firewall, media access keys, trusted relay fetches)
  Migration  (encrypted, atomically restored state packages)

The local UI talks to the node over the control channel
(``gchat.server.channel``); ``gchat.node.GchatNode`` wires everything up.

CLI entry point: ``gchat-node``
"""

__version__ = "0.1.0"
