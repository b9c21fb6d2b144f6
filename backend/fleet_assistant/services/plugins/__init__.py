"""
Capability-based integration plugins.

Agents declare the capabilities they need; the PluginResolver maps a tenant's
enabled integrations onto tool bundles that offer them.
"""
