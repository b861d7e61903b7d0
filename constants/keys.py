class UIKeys:
    """Keys for UI widgets in ``st.session_state``."""

    LANG_SELECT = "ui.lang_select"
    SERVICE_SELECT = "ui.services.select"
    DOCUMENT_UPLOADER = "ui.documents.uploader"
    DELIVERY_RADIO = "ui.delivery.method"
    CURRENCY_SELECT = "ui.currency.select"
    STORAGE_NOTICE_DISMISSED = "ui.storage_notice.dismissed"


class StateKeys:
    """Keys for data stored in ``st.session_state``."""

    WIZARD_SESSION = "wizard.session"
    TRANSITION_ERROR = "wizard.transition_error"
    FLASH_MESSAGE = "wizard.flash_message"
    CHECKOUT_REDIRECT = "wizard.checkout_redirect"


class StorageKeys:
    """Keys of the persisted local draft store."""

    FORM_STATE = "form-state"
    COMPLETED_STEPS = "completed-steps"
    SESSION_ID = "session-id"
    CURRENCY_PREFERENCE = "currency-preference"
    LAST_CHECKOUT_RETURN = "last-checkout-return"


class QueryParams:
    """Recognized URL query parameters."""

    STEP = "step"
    DRAFT = "draft"
    SERVICE = "service"
    CURRENCY = "currency"
    AD_CLICK_ID = "gclid"
    CHECKOUT = "checkout"
    CHECKOUT_SESSION = "checkout_session"
