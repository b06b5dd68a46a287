"""Internal constants shared across the library."""

TOOL_VERSION = "2.3.0"

DEFAULT_BASE_URL = "http://localhost/wp-json"
DEFAULT_NAMESPACE = "mas-v2/v1"
DEFAULT_AJAX_PATH = "http://localhost/wp-admin/admin-ajax.php"
DEFAULT_PREVIEW_STYLE_ELEMENT_ID = "mas-preview-styles"

USER_AGENT = "pystylesync"

# ------------------------------------------------------------------
# Response headers
# ------------------------------------------------------------------

HEADER_ETAG = "ETag"
HEADER_IF_NONE_MATCH = "If-None-Match"
HEADER_RETRY_AFTER = "Retry-After"
HEADER_NONCE = "X-WP-Nonce"
HEADER_DEPRECATED = "X-API-Deprecated"
HEADER_REMOVAL_DATE = "X-API-Removal-Date"
HEADER_WARNING = "Warning"

# ------------------------------------------------------------------
# Transport names
# ------------------------------------------------------------------

TRANSPORT_REST = "rest"
TRANSPORT_AJAX = "ajax"
KNOWN_TRANSPORTS: frozenset[str] = frozenset({TRANSPORT_REST, TRANSPORT_AJAX})

# Request fields that never influence duplicate detection.
FINGERPRINT_EXCLUDED_FIELDS: frozenset[str] = frozenset({"_wpnonce", "_wp_http_referer", "timestamp", "request_id"})

# Settings keys that survive into the minimal fallback stylesheet.
FALLBACK_COLOR_SELECTORS: dict[str, str] = {
    "menu_background": "#adminmenu, #adminmenuback, #adminmenuwrap",
    "menu_text_color": "#adminmenu a",
    "admin_bar_background": "#wpadminbar",
    "admin_bar_text_color": "#wpadminbar .ab-item",
    "submenu_background": "#adminmenu .wp-submenu",
}
