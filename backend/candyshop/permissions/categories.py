# Overview: Capability category constants for grouping related actions.


class CapabilityCategory:
    """Capability categories for organization and UI display."""
    CHECKOUT = "CHECKOUT"
    ORDERS = "ORDERS"
    FULFILLMENT = "FULFILLMENT"
    INVENTORY = "INVENTORY"
    CATALOG = "CATALOG"
    AUDIT = "AUDIT"
