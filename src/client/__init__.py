"""Storefront-side popup engine: trigger, flow controller and API transport."""
