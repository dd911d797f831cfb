"""Webhook ingestion — ProCard payment callbacks and Shopify order webhooks.

Flows:
- ``reconciler``: approved payment callback -> mark paid -> ship
- ``payment_links``: ``orders/create`` -> payment link -> email
- ``fulfillment``: ``orders/fulfilled`` -> ship
"""
