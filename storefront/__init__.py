"""Storefront order, inventory and account service."""
