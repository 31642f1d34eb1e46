"""
CI Server module.

Serves build artifacts per virtual host and the dashboard status pages.
"""
