# Overview: All capability definitions and the (role, action) allow table.
# Each capability is defined as: (code, name, description, category)

from .categories import CapabilityCategory


ADMIN = "admin"
OPERATOR = "operator"
CUSTOMER = "customer"
GUEST = "guest"

ROLES = (ADMIN, OPERATOR, CUSTOMER, GUEST)
STAFF_ROLES = frozenset({ADMIN, OPERATOR})


# -- CHECKOUT --

CHECKOUT_CAPABILITIES = [
    (
        "ORDER_CREATE",
        "Create Order",
        "Submit a checkout (guest checkout included)",
        CapabilityCategory.CHECKOUT,
    ),
    (
        "CART_VALIDATE",
        "Validate Cart",
        "Re-price a cart server-side before checkout",
        CapabilityCategory.CHECKOUT,
    ),
]


# -- ORDERS --

ORDER_CAPABILITIES = [
    (
        "ORDER_VIEW_ALL",
        "View All Orders",
        "List and read any customer's orders",
        CapabilityCategory.ORDERS,
    ),
    (
        "ORDER_VIEW_OWN",
        "View Own Orders",
        "List and read orders placed by the same customer session",
        CapabilityCategory.ORDERS,
    ),
    (
        "ORDER_CANCEL",
        "Cancel Order",
        "Cancel any order that still holds its stock reservation",
        CapabilityCategory.ORDERS,
    ),
    (
        "ORDER_CANCEL_OWN",
        "Cancel Own Order",
        "Cancel an own order while it is still pending_whatsapp",
        CapabilityCategory.ORDERS,
    ),
    (
        "ORDER_ATTACH_PAYMENT_PROOF",
        "Attach Payment Proof",
        "Attach a transfer receipt URL to an order",
        CapabilityCategory.ORDERS,
    ),
]


# -- FULFILLMENT --

FULFILLMENT_CAPABILITIES = [
    (
        "ORDER_CONFIRM",
        "Confirm Order",
        "Confirm a pending order and set its shipping cost",
        CapabilityCategory.FULFILLMENT,
    ),
    (
        "ORDER_ADVANCE",
        "Advance Order",
        "Move a confirmed order through preparing, shipped, completed",
        CapabilityCategory.FULFILLMENT,
    ),
    (
        "ORDER_EDIT_ITEMS",
        "Edit Order Items",
        "Replace an order's lines (re-priced and re-reserved)",
        CapabilityCategory.FULFILLMENT,
    ),
    (
        "ORDER_UPDATE_SHIPPING",
        "Update Shipping Cost",
        "Change the shipping cost of a non-terminal order",
        CapabilityCategory.FULFILLMENT,
    ),
    (
        "ORDER_MARK_NOTIFIED",
        "Mark Notification Sent",
        "Record that the WhatsApp message was sent",
        CapabilityCategory.FULFILLMENT,
    ),
]


# -- INVENTORY --

INVENTORY_CAPABILITIES = [
    (
        "STOCK_VIEW",
        "View Stock",
        "View stock levels, low-stock alerts and movements",
        CapabilityCategory.INVENTORY,
    ),
    (
        "STOCK_ADJUST",
        "Adjust Stock",
        "Create manual adjustment and restock movements",
        CapabilityCategory.INVENTORY,
    ),
]


# -- CATALOG --

CATALOG_CAPABILITIES = [
    (
        "CATALOG_MANAGE",
        "Manage Catalog",
        "Create and edit products, variants and their discounts",
        CapabilityCategory.CATALOG,
    ),
]


# -- AUDIT --

AUDIT_CAPABILITIES = [
    (
        "AUDIT_VIEW",
        "View Audit Trail",
        "Read before/after snapshots of order mutations",
        CapabilityCategory.AUDIT,
    ),
]


CAPABILITY_DEFINITIONS = (
    CHECKOUT_CAPABILITIES
    + ORDER_CAPABILITIES
    + FULFILLMENT_CAPABILITIES
    + INVENTORY_CAPABILITIES
    + CATALOG_CAPABILITIES
    + AUDIT_CAPABILITIES
)


# (role, action) pairs that are allowed; anything absent is denied.
_STAFF_COMMON = {
    "ORDER_CREATE",
    "CART_VALIDATE",
    "ORDER_VIEW_ALL",
    "ORDER_VIEW_OWN",
    "ORDER_CANCEL",
    "ORDER_ATTACH_PAYMENT_PROOF",
    "ORDER_CONFIRM",
    "ORDER_ADVANCE",
    "ORDER_EDIT_ITEMS",
    "ORDER_UPDATE_SHIPPING",
    "ORDER_MARK_NOTIFIED",
    "STOCK_VIEW",
}

ROLE_CAPABILITIES = {
    ADMIN: frozenset(_STAFF_COMMON | {"STOCK_ADJUST", "CATALOG_MANAGE", "AUDIT_VIEW"}),
    OPERATOR: frozenset(_STAFF_COMMON),
    CUSTOMER: frozenset({
        "ORDER_CREATE",
        "CART_VALIDATE",
        "ORDER_VIEW_OWN",
        "ORDER_CANCEL_OWN",
        "ORDER_ATTACH_PAYMENT_PROOF",
    }),
    GUEST: frozenset({"ORDER_CREATE", "CART_VALIDATE"}),
}

CAPABILITY_TABLE = {
    (role, code): code in ROLE_CAPABILITIES[role]
    for role in ROLES
    for code, _name, _description, _category in CAPABILITY_DEFINITIONS
}
