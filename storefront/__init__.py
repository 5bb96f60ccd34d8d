"""Storefront HTTP entry points for the mirrored catalog."""
