"""orderbridge — payment callback and order webhook bridge.

Connects the storefront's order webhooks, the ProCard payment dispatcher,
the PostOffice shipping intake and transactional email.
"""

__version__ = "0.1.0"
