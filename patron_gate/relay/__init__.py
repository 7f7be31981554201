"""
OAuth relay (server-side half).

Design goals:
- The only component trusted with the OAuth client secret.
- Stateless: every request is handled independently.
- Narrow provider responses down to the shape the browser needs.
"""
