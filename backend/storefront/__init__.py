"""Storefront order lifecycle service."""
