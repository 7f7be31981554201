"""
patron_gate: membership-gated content for static sites.

- `patron_gate.relay`: stateless OAuth relay that holds the client secret.
- `patron_gate.client`: session controller driven by the hosting page.
"""
