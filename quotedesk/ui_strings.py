from __future__ import annotations

from typing import Dict, List

from quotedesk.negotiation.transition_policy import policy_bundle


FRIENDLY_TERMS: Dict[str, str] = {
    "app_name": "AgriParts Quotes",
    "quote": "Quote",
    "quote_item": "Quote line",
    "client": "Customer",
    "vendor": "Vendor",
    "total_amount": "Total",
    "valid_until": "Valid until",
}


STATUS_GROUPS: Dict[str, List[Dict[str, str]]] = {
    "quote": [
        {
            "key": "pending",
            "label": "Pending",
            "badge": "outline",
            "description": "Requested by the customer and waiting for the vendor.",
        },
        {
            "key": "revised",
            "label": "Revised",
            "badge": "secondary",
            "description": "Adjusted by the vendor and not yet sent back to the customer.",
        },
        {
            "key": "sent",
            "label": "Sent",
            "badge": "secondary",
            "description": "Sent to the customer for a decision.",
        },
        {
            "key": "accepted",
            "label": "Accepted",
            "badge": "default",
            "description": "Accepted by the customer. The quote is closed.",
        },
        {
            "key": "rejected",
            "label": "Rejected",
            "badge": "destructive",
            "description": "Rejected. The quote is closed.",
        },
        {
            "key": "cancelled",
            "label": "Cancelled",
            "badge": "destructive",
            "description": "Cancelled by an administrator. The quote is closed.",
        },
    ],
}


UI_TEXTS: Dict[str, str] = {
    "title.quotes": "Quotes | AgriParts",
    "title.quote_detail": "Quote",
    "page.quotes.customer": "My quote requests",
    "page.quotes.vendor": "Quotes to answer",
    "page.quotes.admin": "Quotes to answer",
    "page.quotes.super_admin": "All quotes",
    "label.edit_quote": "Edit quote",
    "label.save_quote": "Save changes",
    "label.discard_changes": "Discard changes",
    "label.cancel_action": "Cancel",
    "label.confirm_action": "Confirm",
    "label.notes": "Notes",
    "label.expired": "Past validity date",
    "text.retry_later": "Something went wrong while saving. Please try again.",
    "text.back_to_list": "This quote is not available. Returning to your quotes.",
    "impact.send_quote": "The customer will be able to accept or reject the quote.",
    "impact.accept_quote": "The quote is closed and can no longer be changed.",
    "impact.reject_quote": "The quote is closed and can no longer be changed.",
    "impact.cancel_quote": "The quote is closed for both parties and can no longer be changed.",
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "success": {
        "quote_requested": "Your quote request has been submitted.",
        "quote_sent": "Quote sent successfully.",
        "quote_revised": "Quote revised successfully.",
        "quote_accepted": "Quote accepted successfully.",
        "quote_rejected": "Quote rejected successfully.",
        "quote_cancelled": "Quote cancelled successfully.",
        "edit_discarded": "Changes discarded.",
    },
    "error": {
        "auth_required": "Please sign in to continue.",
        "permission_denied": "You do not have permission for this action.",
        "quote_not_found": "Quote not found.",
        "quote_item_not_found": "The quote line does not belong to this quote.",
        "action_not_allowed_for_status": "This action is not available for the current quote status.",
        "validation_error": "Some of the values are not valid.",
        "quantity_invalid": "Quantity must be a whole number greater than zero.",
        "price_invalid": "Price must be a number of zero or more with at most two decimals.",
        "field_invalid": "Only quantity and price can be edited on a quote line.",
        "notes_invalid": "Notes must be text.",
        "items_required": "Add at least one product to the quote request.",
        "product_name_required": "Every quote line needs a product name.",
        "vendor_required": "Choose the vendor who should answer the quote.",
        "no_draft_open": "There is no open edit for this quote.",
        "confirmation_required": "Please confirm this action before continuing.",
        "storage_unavailable": "We could not save your changes. Please try again.",
        "unexpected_error": "The operation could not be completed. Please try again shortly.",
    },
    "confirm": {
        "send_quote": "Are you sure you want to send this quote to the client? This action cannot be undone.",
        "revise_quote": "Are you sure you want to revise this quote? This will update the quote with your changes.",
        "accept_quote": "Are you sure you want to accept this quote?",
        "reject_quote": "Are you sure you want to reject this quote? This action cannot be undone.",
        "cancel_quote": "Are you sure you want to cancel this quote for both parties?",
    },
}


def status_keys_for_group(group: str) -> List[str]:
    return [item["key"] for item in STATUS_GROUPS.get(group, [])]


def build_status_labels() -> Dict[str, str]:
    labels: Dict[str, str] = {}
    for group_items in STATUS_GROUPS.values():
        for item in group_items:
            labels[item["key"]] = item["label"]
    return labels


def build_status_badges() -> Dict[str, str]:
    badges: Dict[str, str] = {}
    for group_items in STATUS_GROUPS.values():
        for item in group_items:
            badges[item["key"]] = item["badge"]
    return badges


STATUS_LABELS = build_status_labels()
STATUS_BADGES = build_status_badges()


def status_label(status: str | None) -> str:
    key = str(status or "").strip()
    return STATUS_LABELS.get(key, key)


def status_badge(status: str | None) -> str:
    return STATUS_BADGES.get(str(status or "").strip(), "secondary")


def get_ui_text(key: str, default: str | None = None) -> str:
    if key in UI_TEXTS:
        return UI_TEXTS[key]
    if default is not None:
        return default
    return key


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)


def confirm_message(key: str, default: str | None = None) -> str:
    return get_message("confirm", key, default)


def frontend_bundle() -> Dict[str, object]:
    return {
        "terms": FRIENDLY_TERMS,
        "status_groups": STATUS_GROUPS,
        "status_labels": STATUS_LABELS,
        "status_badges": STATUS_BADGES,
        "messages": MESSAGES,
        "texts": UI_TEXTS,
        "flow": policy_bundle(),
    }
