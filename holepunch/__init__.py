"""
holepunch

Direct peer-to-peer UDP connectivity through NAT gateways:
- STUN binding discovery of the public endpoint
- Cooperative hole punching, optionally fired at a wall-clock minute
- Keep-alive heartbeats and a simple chat channel once connected
"""

__version__ = "0.1.0"
